from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import psycopg

from portal.store.config import BACKEND_POSTGRES, StoreConfig, load_store_config

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

# Stable advisory lock key so concurrent replicas don't race on startup.
MIGRATION_LOCK_KEY = 604118322915  # bigint


@dataclass(frozen=True)
class Migration:
    version: str
    path: Path
    checksum: str
    sql: str


def load_migrations(directory: Path = MIGRATIONS_DIR) -> List[Migration]:
    migrations: List[Migration] = []
    if not directory.exists():
        return migrations
    for p in sorted(x for x in directory.iterdir() if x.is_file() and x.name.endswith(".sql")):
        raw = p.read_bytes()
        migrations.append(
            Migration(
                version=p.name.split(".")[0],
                path=p,
                checksum=hashlib.sha256(raw).hexdigest(),
                sql=raw.decode("utf-8"),
            )
        )
    return migrations


def _ensure_schema_migrations_table(conn) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
          version text PRIMARY KEY,
          checksum text NOT NULL,
          applied_at timestamptz NOT NULL DEFAULT now()
        );
        """)


def apply_migrations(conn, migrations: Optional[Iterable[Migration]] = None) -> List[str]:
    """
    Apply pending migrations on an open connection, one transaction each.

    Returns the versions applied by this call.
    """
    migs = list(migrations) if migrations is not None else load_migrations()
    applied_versions: List[str] = []

    conn.execute("SELECT pg_advisory_lock(%s);", (MIGRATION_LOCK_KEY,))
    try:
        _ensure_schema_migrations_table(conn)
        rows = conn.execute("SELECT version, checksum FROM schema_migrations;").fetchall()
        applied = {str(r[0]): str(r[1]) for r in rows}

        for m in migs:
            prev = applied.get(m.version)
            if prev is not None:
                if prev != m.checksum:
                    raise RuntimeError(
                        f"Migration checksum mismatch for {m.version}: db={prev[:12]} file={m.checksum[:12]}"
                    )
                continue

            with conn.transaction():
                conn.execute(m.sql)
                conn.execute(
                    "INSERT INTO schema_migrations(version, checksum) VALUES (%s, %s);",
                    (m.version, m.checksum),
                )
            logger.info("Applied migration %s", m.version)
            applied_versions.append(m.version)
    finally:
        conn.execute("SELECT pg_advisory_unlock(%s);", (MIGRATION_LOCK_KEY,))

    return applied_versions


def migrate(dsn: str) -> List[str]:
    with psycopg.connect(dsn, autocommit=True) as conn:
        return apply_migrations(conn)


def maybe_auto_migrate(cfg: Optional[StoreConfig] = None) -> Tuple[bool, str]:
    """
    Auto-migrate on startup when DB_AUTO_MIGRATE=1 and Postgres is configured.

    Returns: (did_attempt, message)
    """
    cfg = cfg or load_store_config()
    if not cfg.db_auto_migrate:
        return False, "DB_AUTO_MIGRATE is disabled"
    if cfg.backend != BACKEND_POSTGRES or not cfg.postgres_dsn:
        return False, "Postgres DSN not configured"
    versions = migrate(cfg.postgres_dsn)
    if versions:
        return True, f"Applied {len(versions)} migration(s): {', '.join(versions)}"
    return True, "No pending migrations"
