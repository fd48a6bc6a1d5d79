from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Optional

from portal.auth.models import Identity
from portal.store.base import DuplicateEmail, TokenRecord


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryCredentialStore:
    """
    Process-local credential store for dev and tests.

    A single lock guards every mutation, which gives the same guarantees the
    Postgres UNIQUE constraints give in deployments.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._identities: Dict[int, Identity] = {}
        self._by_email: Dict[str, int] = {}
        self._tokens: Dict[str, TokenRecord] = {}
        self._next_identity_id = 1
        self._next_token_id = 1

    def create_identity(self, *, name: str, email: str, password_hash: str) -> Identity:
        key = email.strip().lower()
        with self._lock:
            if key in self._by_email:
                raise DuplicateEmail(key)
            identity = Identity(id=self._next_identity_id, name=name, email=key, password_hash=password_hash)
            self._next_identity_id += 1
            self._identities[identity.id] = identity
            self._by_email[key] = identity.id
            return identity

    def get_identity(self, identity_id: int) -> Optional[Identity]:
        with self._lock:
            return self._identities.get(identity_id)

    def get_identity_by_email(self, email: str) -> Optional[Identity]:
        key = email.strip().lower()
        with self._lock:
            identity_id = self._by_email.get(key)
            return self._identities.get(identity_id) if identity_id is not None else None

    def add_token(self, *, identity_id: int, token_hash: str) -> TokenRecord:
        with self._lock:
            if identity_id not in self._identities:
                raise KeyError(f"unknown identity {identity_id}")
            if token_hash in self._tokens:
                raise ValueError("token hash collision")
            rec = TokenRecord(
                id=self._next_token_id,
                identity_id=identity_id,
                token_hash=token_hash,
                created_at=_utcnow(),
            )
            self._next_token_id += 1
            self._tokens[token_hash] = rec
            return rec

    def find_token(self, token_hash: str) -> Optional[TokenRecord]:
        with self._lock:
            return self._tokens.get(token_hash)

    def revoke_token(self, token_hash: str) -> bool:
        with self._lock:
            rec = self._tokens.get(token_hash)
            if rec is None or not rec.valid:
                return False
            self._tokens[token_hash] = replace(rec, revoked_at=_utcnow())
            return True
