"""
Credential store selection.

`PORTAL_STORE` picks the backend explicitly (`postgres` | `memory`); when unset,
Postgres is used iff a DSN can be assembled from the environment.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from portal.store.base import CredentialStore

logger = logging.getLogger(__name__)

BACKEND_POSTGRES = "postgres"
BACKEND_MEMORY = "memory"

_DSN_PARTS = ("host", "port", "dbname", "user", "password")


@dataclass(frozen=True)
class StoreConfig:
    backend: str  # postgres|memory
    postgres_dsn: Optional[str]  # set iff backend == postgres
    db_auto_migrate: bool


def _postgres_dsn_from_env() -> Optional[str]:
    explicit = (os.getenv("POSTGRES_DSN") or "").strip()
    if explicit:
        return explicit

    parts = {
        "host": os.getenv("POSTGRES_HOST"),
        "port": os.getenv("POSTGRES_PORT") or "5432",
        "dbname": os.getenv("POSTGRES_DB"),
        "user": os.getenv("POSTGRES_USER"),
        "password": os.getenv("POSTGRES_PASSWORD"),
    }
    parts = {k: (v or "").strip() for k, v in parts.items()}
    if not all(parts[k] for k in _DSN_PARTS):
        return None

    # make_conninfo quotes spaces/quotes in passwords correctly.
    from psycopg.conninfo import make_conninfo

    return make_conninfo(**parts)


@lru_cache(maxsize=1)
def load_store_config() -> StoreConfig:
    """
    Resolve which credential store this process uses.

    Raises ValueError when PORTAL_STORE asks for something that cannot be built.
    """
    requested = (os.getenv("PORTAL_STORE") or "").strip().lower()
    if requested not in ("", BACKEND_POSTGRES, BACKEND_MEMORY):
        raise ValueError(f"PORTAL_STORE must be '{BACKEND_POSTGRES}' or '{BACKEND_MEMORY}', got {requested!r}")

    auto_migrate = (os.getenv("DB_AUTO_MIGRATE") or "").strip().lower() in ("1", "true", "yes", "on")

    if requested == BACKEND_MEMORY:
        return StoreConfig(backend=BACKEND_MEMORY, postgres_dsn=None, db_auto_migrate=auto_migrate)

    dsn = _postgres_dsn_from_env()
    if dsn:
        return StoreConfig(backend=BACKEND_POSTGRES, postgres_dsn=dsn, db_auto_migrate=auto_migrate)
    if requested == BACKEND_POSTGRES:
        raise ValueError("PORTAL_STORE=postgres requires POSTGRES_DSN or POSTGRES_HOST/DB/USER/PASSWORD")
    return StoreConfig(backend=BACKEND_MEMORY, postgres_dsn=None, db_auto_migrate=auto_migrate)


def build_credential_store(cfg: StoreConfig) -> CredentialStore:
    if cfg.backend == BACKEND_POSTGRES and cfg.postgres_dsn:
        from portal.store.postgres import PostgresCredentialStore

        logger.info("Credential store: postgres")
        return PostgresCredentialStore.from_dsn(cfg.postgres_dsn)

    from portal.store.memory import InMemoryCredentialStore

    logger.warning("Credential store: in-memory (identities and tokens are lost on restart)")
    return InMemoryCredentialStore()
