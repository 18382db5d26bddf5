"""
Unit tests for the Cypher envelope store.
"""

import io
import itertools
import os
import threading
import uuid
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from cypherbox.core.cypher import Cypher, open_shared
from cypherbox.core.exceptions import (
    AccessDeniedError,
    DecryptionError,
    KeyFormatError,
    NotFoundError,
    StorageError,
    UnwrapError,
)
from cypherbox.core.models import IngestResult, Metadata, RetrievedObject
from cypherbox.database.store import InMemoryObjectStore
from cypherbox.security import cipher
from cypherbox.security.kdf import derive_key
from cypherbox.security.wrapping import generate_key_pair, unwrap_key


MASTER_KEY = "test-master-key"


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture
def store():
    return InMemoryObjectStore()


@pytest.fixture
def cypher(store):
    return Cypher(MASTER_KEY, store=store)


@pytest.fixture
def test_metadata():
    now = datetime.now(timezone.utc)
    return Metadata(
        filename="test.txt",
        mimetype="text/plain",
        size=13,
        created_at=now,
        modified_at=now,
    )


@pytest.fixture
def ingested(cypher, test_metadata):
    return cypher.ingest(b"Hello, World!", test_metadata)


@pytest.fixture(scope="module")
def alice():
    return generate_key_pair()


@pytest.fixture(scope="module")
def bob():
    return generate_key_pair()


# ==============================================================================
# Tests: Construction
# ==============================================================================

def test_empty_master_key_rejected():
    with pytest.raises(ValueError, match="master_key"):
        Cypher("")


def test_invalid_iterations_rejected():
    with pytest.raises(ValueError, match="kdf_iterations"):
        Cypher(MASTER_KEY, kdf_iterations=0)


def test_default_store_is_in_memory():
    assert isinstance(Cypher(MASTER_KEY).store, InMemoryObjectStore)


# ==============================================================================
# Tests: Ingest
# ==============================================================================

class TestIngest:
    def test_returns_ids(self, ingested):
        assert isinstance(ingested, IngestResult)
        assert isinstance(ingested.object_id, str)
        assert isinstance(ingested.metadata_id, str)
        assert ingested.object_id != ingested.metadata_id

    def test_different_files_get_different_ids(self, cypher, test_metadata):
        meta2 = Metadata("test2.txt", "text/plain", 17)
        r1 = cypher.ingest(b"Hello, World!", test_metadata)
        r2 = cypher.ingest(b"Different content", meta2)
        assert r1.object_id != r2.object_id
        assert r1.metadata_id != r2.metadata_id

    def test_record_starts_with_empty_key_map(self, cypher, store, ingested):
        record = store.get(ingested.object_id)
        assert record.key_map == {}
        assert record.object_id == ingested.object_id
        assert record.metadata_id == ingested.metadata_id
        assert cypher.recipients(ingested.object_id) == []

    def test_payload_and_metadata_use_independent_ivs(self, store, ingested):
        record = store.get(ingested.object_id)
        assert record.payload.iv != record.metadata.iv

    def test_ciphertext_does_not_contain_plaintext(self, store, ingested):
        record = store.get(ingested.object_id)
        assert "Hello" not in record.payload.ciphertext
        assert "test.txt" not in record.metadata.ciphertext

    def test_injected_id_factory(self, store, test_metadata):
        ids = (f"id-{i}" for i in itertools.count())
        cypher = Cypher(MASTER_KEY, store=store, id_factory=lambda: next(ids))
        result = cypher.ingest(b"Hello, World!", test_metadata)
        assert result == IngestResult("id-0", "id-1")
        assert store.get("id-0") is not None

    def test_id_factory_repeating_itself_is_rejected(self, store, test_metadata):
        cypher = Cypher(MASTER_KEY, store=store, id_factory=lambda: "same")
        with pytest.raises(ValueError, match="same id"):
            cypher.ingest(b"x", test_metadata)
        assert len(store) == 0

    def test_rejects_non_bytes_payload(self, cypher, test_metadata):
        with pytest.raises(TypeError, match="payload"):
            cypher.ingest("Hello, World!", test_metadata)

    def test_rejects_untyped_metadata(self, cypher):
        with pytest.raises(TypeError, match="Metadata"):
            cypher.ingest(b"x", {"filename": "a"})

    def test_nothing_persisted_when_store_fails(self, cypher, store, test_metadata):
        with patch.object(store, "put", side_effect=StorageError("disk full")):
            with pytest.raises(StorageError):
                cypher.ingest(b"Hello, World!", test_metadata)
        assert len(store) == 0

    def test_ingest_file_from_path(self, cypher, tmp_path):
        src = tmp_path / "notes.txt"
        src.write_bytes(b"some notes")
        result = cypher.ingest_file(src)

        obj = cypher.retrieve(result.object_id)
        assert obj.payload == b"some notes"
        assert obj.filename == "notes.txt"
        assert obj.mimetype == "text/plain"
        assert obj.metadata.size == 10

    def test_ingest_file_object_requires_metadata(self, cypher, test_metadata):
        with pytest.raises(ValueError, match="metadata is required"):
            cypher.ingest_file(io.BytesIO(b"Hello, World!"))

        result = cypher.ingest_file(io.BytesIO(b"Hello, World!"), test_metadata)
        assert cypher.retrieve(result.object_id).payload == b"Hello, World!"


# ==============================================================================
# Tests: Retrieve
# ==============================================================================

class TestRetrieve:
    def test_hello_world_scenario(self, cypher, ingested, test_metadata):
        obj = cypher.retrieve(ingested.object_id)

        assert isinstance(obj, RetrievedObject)
        assert obj.payload == b"Hello, World!"
        assert obj.filename == "test.txt"
        assert obj.mimetype == "text/plain"
        assert obj.size == 13
        assert obj.metadata == test_metadata

    def test_unpacks_to_payload_and_metadata(self, cypher, ingested, test_metadata):
        payload, metadata = cypher.retrieve(ingested.object_id)
        assert payload == b"Hello, World!"
        assert metadata == test_metadata
        assert isinstance(metadata.created_at, datetime)

    @pytest.mark.parametrize("payload", [b"", b"\x00\xff" * 100, os.urandom(4097)])
    def test_binary_roundtrip(self, cypher, payload):
        meta = Metadata("blob.bin", size=len(payload))
        result = cypher.ingest(payload, meta)
        assert cypher.retrieve(result.object_id) == (payload, meta)

    def test_payload_clamped_to_declared_size(self, cypher):
        result = cypher.ingest(b"abcdef", Metadata("a.txt", "text/plain", 3))
        assert cypher.retrieve(result.object_id).payload == b"abc"

    def test_unknown_id(self, cypher):
        with pytest.raises(NotFoundError, match="non-existent-id"):
            cypher.retrieve("non-existent-id")

    def test_exists(self, cypher, ingested):
        assert cypher.exists(ingested.object_id)
        assert not cypher.exists("non-existent-id")

    def test_key_is_rederived_not_stored(self, store, ingested):
        """A second Cypher with the same master key over the same store can read."""
        other = Cypher(MASTER_KEY, store=store)
        assert other.retrieve(ingested.object_id).payload == b"Hello, World!"

    def test_wrong_master_key_fails(self, store, ingested):
        other = Cypher("another-master-key", store=store)
        with pytest.raises(DecryptionError):
            other.retrieve(ingested.object_id)

    def test_different_kdf_iterations_fail(self, store, ingested):
        other = Cypher(MASTER_KEY, store=store, kdf_iterations=2000)
        with pytest.raises(DecryptionError):
            other.retrieve(ingested.object_id)

    def test_malformed_metadata_plaintext(self, store, ingested):
        record = store.get(ingested.object_id)
        key = derive_key(MASTER_KEY, ingested.object_id)
        broken = type(record)(
            object_id=record.object_id,
            metadata_id=record.metadata_id,
            payload=record.payload,
            metadata=cipher.encrypt(b'{"filename": "only"}', key),
        )
        store.put(ingested.object_id, broken)

        with pytest.raises(DecryptionError, match="metadata is malformed"):
            Cypher(MASTER_KEY, store=store).retrieve(ingested.object_id)

    def test_malformed_payload_plaintext(self, store, ingested):
        record = store.get(ingested.object_id)
        key = derive_key(MASTER_KEY, ingested.object_id)
        broken = type(record)(
            object_id=record.object_id,
            metadata_id=record.metadata_id,
            payload=cipher.encrypt(b"*** not base64 ***", key),
            metadata=record.metadata,
        )
        store.put(ingested.object_id, broken)

        with pytest.raises(DecryptionError, match="payload is malformed"):
            Cypher(MASTER_KEY, store=store).retrieve(ingested.object_id)


# ==============================================================================
# Tests: Share
# ==============================================================================

class TestShare:
    def test_share_adds_entry_keyed_by_pem(self, cypher, ingested, alice):
        cypher.share(ingested.object_id, alice[1])
        assert cypher.recipients(ingested.object_id) == [alice[1]]
        entry = cypher.get_wrapped_key(ingested.object_id, alice[1])
        assert entry.public_key == alice[1]

    def test_wrapped_key_unwraps_to_derived_key(self, cypher, ingested, alice):
        cypher.share(ingested.object_id, alice[1])
        entry = cypher.get_wrapped_key(ingested.object_id, alice[1])
        assert unwrap_key(entry.wrapped_key, alice[0]) == derive_key(MASTER_KEY, ingested.object_id)

    def test_wrong_private_key_cannot_unwrap(self, cypher, ingested, alice, bob):
        cypher.share(ingested.object_id, alice[1])
        entry = cypher.get_wrapped_key(ingested.object_id, alice[1])
        with pytest.raises(UnwrapError):
            unwrap_key(entry.wrapped_key, bob[0])

    def test_share_is_idempotent_per_recipient(self, cypher, ingested, alice):
        cypher.share(ingested.object_id, alice[1])
        cypher.share(ingested.object_id, alice[1])
        assert cypher.recipients(ingested.object_id) == [alice[1]]

    def test_share_accepts_bytes_pem(self, cypher, ingested, alice):
        cypher.share(ingested.object_id, alice[1].encode())
        assert cypher.recipients(ingested.object_id) == [alice[1]]

    def test_multiple_recipients(self, cypher, ingested, alice, bob):
        cypher.share(ingested.object_id, alice[1])
        cypher.share(ingested.object_id, bob[1])
        assert set(cypher.recipients(ingested.object_id)) == {alice[1], bob[1]}

    def test_share_does_not_touch_envelopes(self, cypher, store, ingested, alice):
        before = store.get(ingested.object_id)
        cypher.share(ingested.object_id, alice[1])
        after = store.get(ingested.object_id)
        assert after.payload == before.payload
        assert after.metadata == before.metadata

    def test_share_unknown_id(self, cypher, alice):
        with pytest.raises(NotFoundError):
            cypher.share("non-existent-id", alice[1])

    def test_share_non_ascii_bytes_pem(self, cypher, ingested):
        with pytest.raises(KeyFormatError, match="ASCII"):
            cypher.share(ingested.object_id, "-----BEGIN PUBLIC KEY-----\ncl\u00e9\n".encode("utf-8"))
        assert cypher.recipients(ingested.object_id) == []

    def test_share_malformed_key_leaves_map_unchanged(self, cypher, ingested):
        with pytest.raises(KeyFormatError):
            cypher.share(ingested.object_id, "not a pem")
        assert cypher.recipients(ingested.object_id) == []


# ==============================================================================
# Tests: Revoke
# ==============================================================================

class TestRevoke:
    def test_revoke_removes_entry(self, cypher, ingested, alice, test_metadata):
        cypher.share(ingested.object_id, alice[1])
        cypher.revoke(ingested.object_id, alice[1])

        assert alice[1] not in cypher.recipients(ingested.object_id)
        assert cypher.retrieve(ingested.object_id) == (b"Hello, World!", test_metadata)

    def test_revoke_keeps_other_recipients(self, cypher, ingested, alice, bob):
        cypher.share(ingested.object_id, alice[1])
        cypher.share(ingested.object_id, bob[1])
        cypher.revoke(ingested.object_id, alice[1])
        assert cypher.recipients(ingested.object_id) == [bob[1]]

    def test_revoke_never_shared_is_noop(self, cypher, store, ingested, alice):
        before = store.get(ingested.object_id)
        cypher.revoke(ingested.object_id, alice[1])
        assert store.get(ingested.object_id) == before

    def test_revoke_does_not_touch_envelopes(self, cypher, store, ingested, alice):
        cypher.share(ingested.object_id, alice[1])
        before = store.get(ingested.object_id)
        cypher.revoke(ingested.object_id, alice[1])
        after = store.get(ingested.object_id)
        assert after.payload == before.payload
        assert after.metadata == before.metadata

    def test_revoke_unknown_id(self, cypher, alice):
        with pytest.raises(NotFoundError):
            cypher.revoke("non-existent-id", alice[1])

    def test_cached_wrapped_key_still_works_after_revoke(self, cypher, ingested, alice):
        """Revocation does not rotate the object key."""
        cypher.share(ingested.object_id, alice[1])
        cached = cypher.get_wrapped_key(ingested.object_id, alice[1])
        cypher.revoke(ingested.object_id, alice[1])

        key = unwrap_key(cached.wrapped_key, alice[0])
        assert key == derive_key(MASTER_KEY, ingested.object_id)


# ==============================================================================
# Tests: Recipient-side access
# ==============================================================================

class TestRetrieveShared:
    def test_recipient_can_open(self, cypher, ingested, alice, test_metadata):
        cypher.share(ingested.object_id, alice[1])
        obj = cypher.retrieve_shared(ingested.object_id, alice[1], alice[0])
        assert obj == (b"Hello, World!", test_metadata)

    def test_open_shared_needs_no_master_key(self, cypher, store, ingested, alice):
        cypher.share(ingested.object_id, alice[1])
        record = store.get(ingested.object_id)
        assert open_shared(record, alice[1], alice[0]).payload == b"Hello, World!"

    def test_wrong_private_key(self, cypher, ingested, alice, bob):
        cypher.share(ingested.object_id, alice[1])
        with pytest.raises(UnwrapError):
            cypher.retrieve_shared(ingested.object_id, alice[1], bob[0])

    def test_not_shared(self, cypher, ingested, alice):
        with pytest.raises(AccessDeniedError):
            cypher.retrieve_shared(ingested.object_id, alice[1], alice[0])
        with pytest.raises(AccessDeniedError):
            cypher.get_wrapped_key(ingested.object_id, alice[1])

    def test_denied_after_revoke(self, cypher, ingested, alice):
        cypher.share(ingested.object_id, alice[1])
        cypher.revoke(ingested.object_id, alice[1])
        with pytest.raises(AccessDeniedError):
            cypher.retrieve_shared(ingested.object_id, alice[1], alice[0])

    def test_unknown_id(self, cypher, alice):
        with pytest.raises(NotFoundError):
            cypher.retrieve_shared("non-existent-id", alice[1], alice[0])
        with pytest.raises(NotFoundError):
            cypher.recipients("non-existent-id")


# ==============================================================================
# Tests: Concurrency
# ==============================================================================

@pytest.fixture(scope="module")
def recipients():
    return [generate_key_pair(1024)[1] for _ in range(6)]


def test_concurrent_shares_lose_no_updates(cypher, ingested, recipients):
    barrier = threading.Barrier(len(recipients))
    errors = []

    def worker(pem):
        try:
            barrier.wait()
            cypher.share(ingested.object_id, pem)
        except Exception as e:  # surfaced below
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(pem,)) for pem in recipients]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert set(cypher.recipients(ingested.object_id)) == set(recipients)


def test_concurrent_share_and_revoke(cypher, ingested, recipients):
    keep, drop = recipients[:3], recipients[3:]
    for pem in drop:
        cypher.share(ingested.object_id, pem)

    threads = [threading.Thread(target=cypher.share, args=(ingested.object_id, p)) for p in keep]
    threads += [threading.Thread(target=cypher.revoke, args=(ingested.object_id, p)) for p in drop]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert set(cypher.recipients(ingested.object_id)) == set(keep)


def test_unknown_ids_leave_no_locks_behind(cypher, alice):
    for _ in range(100):
        with pytest.raises(NotFoundError):
            cypher.revoke(str(uuid.uuid4()), alice[1])
        with pytest.raises(NotFoundError):
            cypher.share(str(uuid.uuid4()), alice[1])
    assert len(cypher._locks) == 0


def test_lock_released_from_map_after_use(cypher, ingested, alice):
    cypher.share(ingested.object_id, alice[1])
    cypher.revoke(ingested.object_id, alice[1])
    assert len(cypher._locks) == 0
