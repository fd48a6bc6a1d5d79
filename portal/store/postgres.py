from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Sequence

import psycopg
from psycopg import errors as pg_errors

from portal.auth.models import Identity
from portal.store.base import DuplicateEmail, TokenRecord

logger = logging.getLogger(__name__)

_IDENTITY_COLUMNS = "id, name, email, password_hash"
_TOKEN_COLUMNS = "id, user_id, token_hash, created_at, revoked_at"


def _identity_from_row(row: Sequence[Any]) -> Identity:
    user_id, name, email, password_hash = row
    return Identity(id=int(user_id), name=str(name), email=str(email), password_hash=str(password_hash))


def _token_from_row(row: Sequence[Any]) -> TokenRecord:
    token_id, user_id, token_hash, created_at, revoked_at = row
    return TokenRecord(
        id=int(token_id),
        identity_id=int(user_id),
        token_hash=str(token_hash),
        created_at=created_at,
        revoked_at=revoked_at,
    )


class PostgresCredentialStore:
    """
    Credential store backed by the `users` / `personal_access_tokens` tables.

    Each call opens a short-lived connection from `connect` (psycopg commits on
    clean exit of the connection context). Uniqueness of emails and the
    single valid->revoked transition are enforced by SQL, not by Python locks.
    """

    def __init__(self, connect: Callable[[], psycopg.Connection]) -> None:
        self._connect = connect

    @classmethod
    def from_dsn(cls, dsn: str) -> "PostgresCredentialStore":
        return cls(lambda: psycopg.connect(dsn))

    def create_identity(self, *, name: str, email: str, password_hash: str) -> Identity:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"""
                    INSERT INTO users (name, email, password_hash)
                    VALUES (%s, %s, %s)
                    RETURNING {_IDENTITY_COLUMNS}
                    """,
                    (name, email.strip().lower(), password_hash),
                ).fetchone()
        except pg_errors.UniqueViolation as e:
            raise DuplicateEmail(email) from e
        if not row:
            raise RuntimeError("Failed to create user")
        return _identity_from_row(row)

    def get_identity(self, identity_id: int) -> Optional[Identity]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_IDENTITY_COLUMNS} FROM users WHERE id = %s",
                (identity_id,),
            ).fetchone()
        return _identity_from_row(row) if row else None

    def get_identity_by_email(self, email: str) -> Optional[Identity]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_IDENTITY_COLUMNS} FROM users WHERE email = %s",
                (email.strip().lower(),),
            ).fetchone()
        return _identity_from_row(row) if row else None

    def add_token(self, *, identity_id: int, token_hash: str) -> TokenRecord:
        with self._connect() as conn:
            row = conn.execute(
                f"""
                INSERT INTO personal_access_tokens (user_id, token_hash)
                VALUES (%s, %s)
                RETURNING {_TOKEN_COLUMNS}
                """,
                (identity_id, token_hash),
            ).fetchone()
        if not row:
            raise RuntimeError("Failed to store token")
        return _token_from_row(row)

    def find_token(self, token_hash: str) -> Optional[TokenRecord]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_TOKEN_COLUMNS} FROM personal_access_tokens WHERE token_hash = %s",
                (token_hash,),
            ).fetchone()
        return _token_from_row(row) if row else None

    def revoke_token(self, token_hash: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE personal_access_tokens
                SET revoked_at = now()
                WHERE token_hash = %s AND revoked_at IS NULL
                RETURNING id
                """,
                (token_hash,),
            ).fetchone()
        return row is not None
