"""
Command line front end for CypherBox.

Records live in the SQLite database named by ``CYPHERBOX_DB_PATH``; the
master key comes from ``CYPHERBOX_MASTER_KEY`` or the OS keyring (see
:mod:`cypherbox.config`). Examples:

    cypherbox keygen --out-dir ~/.keys --name alice
    cypherbox ingest report.pdf
    cypherbox share <object-id> ~/.keys/alice.pub.pem
    cypherbox open <object-id> ~/.keys/alice.pub.pem ~/.keys/alice.pem -o report.pdf
"""

from __future__ import annotations

import argparse
import hashlib
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from .config import CypherConfig, build_cypher, load_config
from .core.cypher import open_shared
from .core.exceptions import CypherBoxError, KeyFormatError, NotFoundError
from .core.models import Metadata, RetrievedObject
from .core.reader import metadata_from_path
from .database.sqlite_store import SQLiteObjectStore
from .logging_config import configure_logging
from .security.wrapping import DEFAULT_KEY_SIZE, generate_key_pair


logger = logging.getLogger(__name__)


def fingerprint(pem: str) -> str:
    """Short SHA-256 fingerprint of a recipient identity for display."""
    return hashlib.sha256(pem.encode("utf-8")).hexdigest()[:16]


def _read_text(path: str) -> str:
    try:
        return Path(path).expanduser().read_text(encoding="ascii")
    except UnicodeDecodeError as e:
        raise KeyFormatError(f"{path} is not a PEM text file") from e


def _write_output(obj: RetrievedObject, output: Optional[str]) -> None:
    if output:
        destination = Path(output).expanduser()
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(obj.payload)
        print(f"{obj.filename} ({obj.mimetype}, {obj.size} bytes) -> {destination}")
    else:
        sys.stdout.buffer.write(obj.payload)
        sys.stdout.buffer.flush()


def cmd_keygen(args, config: CypherConfig) -> int:
    out_dir = Path(args.out_dir).expanduser()
    out_dir.mkdir(parents=True, exist_ok=True)
    private_path = out_dir / f"{args.name}.pem"
    public_path = out_dir / f"{args.name}.pub.pem"
    if private_path.exists() and not args.force:
        raise CypherBoxError(f"{private_path} already exists; pass --force to overwrite")

    private_pem, public_pem = generate_key_pair(args.bits)
    private_path.write_text(private_pem, encoding="ascii")
    os.chmod(private_path, 0o600)
    public_path.write_text(public_pem, encoding="ascii")
    print(f"private key: {private_path}")
    print(f"public key:  {public_path}")
    return 0


def cmd_ingest(args, config: CypherConfig) -> int:
    metadata = metadata_from_path(args.path)
    if args.filename or args.mimetype:
        metadata = Metadata(
            filename=args.filename or metadata.filename,
            mimetype=args.mimetype or metadata.mimetype,
            size=metadata.size,
            created_at=metadata.created_at,
            modified_at=metadata.modified_at,
        )
    cypher = build_cypher(config)
    try:
        result = cypher.ingest_file(args.path, metadata)
    finally:
        cypher.store.close()
    print(f"object_id:   {result.object_id}")
    print(f"metadata_id: {result.metadata_id}")
    return 0


def cmd_retrieve(args, config: CypherConfig) -> int:
    cypher = build_cypher(config)
    try:
        obj = cypher.retrieve(args.object_id)
    finally:
        cypher.store.close()
    _write_output(obj, args.output)
    return 0


def cmd_share(args, config: CypherConfig) -> int:
    public_pem = _read_text(args.public_key)
    cypher = build_cypher(config)
    try:
        cypher.share(args.object_id, public_pem)
    finally:
        cypher.store.close()
    print(f"shared {args.object_id} with {fingerprint(public_pem)}")
    return 0


def cmd_revoke(args, config: CypherConfig) -> int:
    public_pem = _read_text(args.public_key)
    cypher = build_cypher(config)
    try:
        cypher.revoke(args.object_id, public_pem)
    finally:
        cypher.store.close()
    print(f"revoked {fingerprint(public_pem)} on {args.object_id}")
    return 0


def cmd_recipients(args, config: CypherConfig) -> int:
    cypher = build_cypher(config)
    try:
        recipients = cypher.recipients(args.object_id)
    finally:
        cypher.store.close()
    for recipient in recipients:
        print(fingerprint(recipient))
    return 0


def cmd_open(args, config: CypherConfig) -> int:
    # recipient side: no master key involved
    store = SQLiteObjectStore(config.db_path)
    try:
        record = store.get(args.object_id)
        if record is None:
            raise NotFoundError(f"Object '{args.object_id}' not found")
        obj = open_shared(record, _read_text(args.public_key), _read_text(args.private_key))
    finally:
        store.close()
    _write_output(obj, args.output)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cypherbox",
        description="Per-object envelope encryption with multi-recipient sharing.",
    )
    parser.add_argument("--db", help="SQLite database path (overrides CYPHERBOX_DB_PATH)")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("keygen", help="generate an RSA key pair for a recipient")
    p.add_argument("--out-dir", default=".", help="directory for the PEM files")
    p.add_argument("--name", default="recipient", help="base file name")
    p.add_argument("--bits", type=int, default=DEFAULT_KEY_SIZE, help="RSA modulus size")
    p.add_argument("--force", action="store_true", help="overwrite existing files")
    p.set_defaults(func=cmd_keygen)

    p = sub.add_parser("ingest", help="encrypt and store a file")
    p.add_argument("path")
    p.add_argument("--filename", help="override the stored file name")
    p.add_argument("--mimetype", help="override the guessed mimetype")
    p.set_defaults(func=cmd_ingest)

    p = sub.add_parser("retrieve", help="decrypt an object with the master key")
    p.add_argument("object_id")
    p.add_argument("-o", "--output", help="write payload here instead of stdout")
    p.set_defaults(func=cmd_retrieve)

    p = sub.add_parser("share", help="wrap an object key for a recipient public key")
    p.add_argument("object_id")
    p.add_argument("public_key", help="recipient PEM public key file")
    p.set_defaults(func=cmd_share)

    p = sub.add_parser("revoke", help="remove a recipient's wrapped key")
    p.add_argument("object_id")
    p.add_argument("public_key", help="recipient PEM public key file")
    p.set_defaults(func=cmd_revoke)

    p = sub.add_parser("recipients", help="list recipient fingerprints of an object")
    p.add_argument("object_id")
    p.set_defaults(func=cmd_recipients)

    p = sub.add_parser("open", help="decrypt a shared object with a recipient private key")
    p.add_argument("object_id")
    p.add_argument("public_key", help="recipient PEM public key file (identity)")
    p.add_argument("private_key", help="recipient PEM private key file")
    p.add_argument("-o", "--output", help="write payload here instead of stdout")
    p.set_defaults(func=cmd_open)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config()
        if args.db:
            config.db_path = Path(args.db).expanduser()
        configure_logging("DEBUG" if args.verbose else config.log_level)
        return args.func(args, config)
    except CypherBoxError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
