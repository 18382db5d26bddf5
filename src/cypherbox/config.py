"""Runtime configuration for hosting applications.

Values come from the environment:

- ``CYPHERBOX_MASTER_KEY``: the master key. When unset, the OS keyring is
  consulted (service ``cypherbox``) if ``use_keyring`` is enabled.
- ``CYPHERBOX_DB_PATH``: SQLite database path (default ``~/.cypherbox/cypherbox.db``).
- ``CYPHERBOX_KDF_ITERATIONS``: stage-2 PBKDF2 iterations (default 1000).
  Changing it makes objects written under another count unreadable.
- ``CYPHERBOX_LOG_LEVEL``: logging level name (default ``INFO``).
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from .core.cypher import Cypher
from .core.exceptions import ConfigurationError
from .database.sqlite_store import SQLiteObjectStore
from .security import keystore
from .security.kdf import ITERATIONS


logger = logging.getLogger(__name__)

ENV_MASTER_KEY = "CYPHERBOX_MASTER_KEY"
ENV_DB_PATH = "CYPHERBOX_DB_PATH"
ENV_KDF_ITERATIONS = "CYPHERBOX_KDF_ITERATIONS"
ENV_LOG_LEVEL = "CYPHERBOX_LOG_LEVEL"

DEFAULT_DB_PATH = Path.home() / ".cypherbox" / "cypherbox.db"


@dataclass
class CypherConfig:
    """Settings needed to build a Cypher over persistent storage."""

    master_key: Optional[str] = None
    db_path: Path = DEFAULT_DB_PATH
    kdf_iterations: int = ITERATIONS
    log_level: str = "INFO"

    def require_master_key(self) -> str:
        if not self.master_key:
            raise ConfigurationError(
                f"No master key configured; set {ENV_MASTER_KEY} or store one in the OS keyring"
            )
        return self.master_key


def _parse_iterations(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{ENV_KDF_ITERATIONS} must be an integer, got {raw!r}") from None
    if value < 1:
        raise ConfigurationError(f"{ENV_KDF_ITERATIONS} must be positive, got {value}")
    return value


def load_config(env: Optional[Mapping[str, str]] = None, use_keyring: bool = True) -> CypherConfig:
    """Build a CypherConfig from ``env`` (defaults to ``os.environ``)."""
    if env is None:
        env = os.environ

    master_key = env.get(ENV_MASTER_KEY) or None
    if master_key is None and use_keyring:
        try:
            master_key = keystore.load_master_key()
        except ConfigurationError as e:
            # keyring missing or failing is not fatal for commands that need no key
            logger.debug("Master key not loaded from keyring: %s", e)

    db_path = Path(env[ENV_DB_PATH]).expanduser() if env.get(ENV_DB_PATH) else DEFAULT_DB_PATH

    iterations = ITERATIONS
    if env.get(ENV_KDF_ITERATIONS):
        iterations = _parse_iterations(env[ENV_KDF_ITERATIONS])

    log_level = env.get(ENV_LOG_LEVEL, "INFO").upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigurationError(f"Unknown log level {log_level!r}")

    return CypherConfig(
        master_key=master_key,
        db_path=db_path,
        kdf_iterations=iterations,
        log_level=log_level,
    )


def build_cypher(config: CypherConfig) -> Cypher:
    """Wire a Cypher over a SQLite store as described by ``config``."""
    master_key = config.require_master_key()
    store = SQLiteObjectStore(config.db_path)
    return Cypher(
        master_key,
        store=store,
        kdf_iterations=config.kdf_iterations,
    )
