"""OS keystore integration using keyring for optional master-key storage.

The master key is an opaque secret string. This module lets a host
application keep it in the platform keystore instead of an environment
variable. Use this only for opt-in convenience storage; do not assume
keyring provides hardware-backed security on all platforms.
"""
from typing import Optional

try:
    import keyring
    from keyring.errors import KeyringError, PasswordDeleteError
except Exception:
    keyring = None

from cypherbox.core.exceptions import ConfigurationError


DEFAULT_SERVICE = "cypherbox"
DEFAULT_ACCOUNT = "master-key"


def _require_keyring():
    if keyring is None:
        raise ConfigurationError("keyring package is not available; install keyring to use keystore features")


def assess_keyring_backend() -> tuple[bool, str]:
    """Return (is_secure, message) describing the current keyring backend.

    Heuristics are used because `keyring` exposes different backends
    across platforms.
    """
    if keyring is None:
        return False, "keyring package is not installed"

    try:
        backend = keyring.get_keyring()
    except Exception as e:
        return False, f"failed to get keyring backend: {e}"

    name = backend.__class__.__name__
    priority = getattr(backend, "priority", None)

    insecure_indicators = ("Plaintext", "Uncrypted", "Simple", "File", "fail")
    if any(tok in name for tok in insecure_indicators):
        return False, f"insecure backend detected: {name}"

    if priority is not None and priority <= 0:
        return False, f"no suitable secure keyring backend available (priority={priority}, backend={name})"

    return True, f"backend looks acceptable: {name} (priority={priority})"


def save_master_key(
    master_key: str,
    service: str = DEFAULT_SERVICE,
    account: str = DEFAULT_ACCOUNT,
    force: bool = False,
) -> None:
    """Persist ``master_key`` in the OS keystore under (service, account).

    Refuses insecure backends unless ``force`` is set.
    """
    _require_keyring()
    if not master_key:
        raise ConfigurationError("refusing to store an empty master key")
    if not force:
        secure, msg = assess_keyring_backend()
        if not secure:
            raise ConfigurationError(
                f"refusing to persist master key to OS keystore: {msg}; "
                "pass force=True to override if you understand the risk"
            )
    try:
        keyring.set_password(service, account, master_key)
    except KeyringError as e:
        raise ConfigurationError(f"failed to store master key: {e}") from e


def load_master_key(service: str = DEFAULT_SERVICE, account: str = DEFAULT_ACCOUNT) -> Optional[str]:
    """Load the master key from the OS keystore; returns None when absent."""
    _require_keyring()
    try:
        return keyring.get_password(service, account)
    except KeyringError as e:
        raise ConfigurationError(f"failed to read master key: {e}") from e


def delete_master_key(service: str = DEFAULT_SERVICE, account: str = DEFAULT_ACCOUNT) -> bool:
    """Remove the master key from the OS keystore. Returns False if none was stored."""
    _require_keyring()
    try:
        keyring.delete_password(service, account)
    except PasswordDeleteError:
        return False
    return True
