from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional

import pytest
from psycopg import errors as pg_errors

from portal.store.base import DuplicateEmail
from portal.store.postgres import PostgresCredentialStore

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


class _FakeConn:
    def __init__(self, rows: List[Optional[tuple]], raise_on_execute: Optional[Exception] = None) -> None:
        self.rows = rows
        self.calls: List[tuple] = []
        self.raise_on_execute = raise_on_execute
        self.closed = False

    def __enter__(self) -> "_FakeConn":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.closed = True

    def execute(self, sql: str, params=None):  # type: ignore[no-untyped-def]
        self.calls.append((sql, params))
        if self.raise_on_execute is not None:
            raise self.raise_on_execute
        return self

    def fetchone(self):  # type: ignore[no-untyped-def]
        return self.rows.pop(0) if self.rows else None


def _store(conn: _FakeConn) -> PostgresCredentialStore:
    return PostgresCredentialStore(lambda: conn)


def test_create_identity_inserts_normalized_email() -> None:
    conn = _FakeConn([(1, "Andrew", "andrew@example.com", "$2b$hash")])
    identity = _store(conn).create_identity(name="Andrew", email=" Andrew@Example.com ", password_hash="$2b$hash")

    assert identity.id == 1
    assert identity.email == "andrew@example.com"
    sql, params = conn.calls[-1]
    assert "INSERT INTO users" in sql
    assert params == ("Andrew", "andrew@example.com", "$2b$hash")
    assert conn.closed


def test_create_identity_unique_violation_maps_to_duplicate_email() -> None:
    conn = _FakeConn([], raise_on_execute=pg_errors.UniqueViolation("duplicate key"))
    with pytest.raises(DuplicateEmail):
        _store(conn).create_identity(name="Andrew", email="andrew@example.com", password_hash="h")


def test_lookups_return_none_when_missing() -> None:
    store = _store(_FakeConn([]))
    assert store.get_identity(1) is None
    assert store.get_identity_by_email("x@example.com") is None
    assert store.find_token("digest") is None


def test_find_token_maps_row() -> None:
    conn = _FakeConn([(5, 1, "digest", NOW, None)])
    rec = _store(conn).find_token("digest")
    assert rec is not None
    assert rec.id == 5 and rec.identity_id == 1 and rec.valid
    assert "FROM personal_access_tokens" in conn.calls[-1][0]


def test_add_token_returns_record() -> None:
    conn = _FakeConn([(9, 1, "digest", NOW, None)])
    rec = _store(conn).add_token(identity_id=1, token_hash="digest")
    assert rec.id == 9
    assert conn.calls[-1][1] == (1, "digest")


def test_revoke_token_only_flips_valid_tokens() -> None:
    conn = _FakeConn([(5,), None])
    store = _store(conn)
    assert store.revoke_token("digest") is True
    assert store.revoke_token("digest") is False
    sql, params = conn.calls[-1]
    assert "revoked_at IS NULL" in sql
    assert params == ("digest",)
