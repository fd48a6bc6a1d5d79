from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from portal.auth.models import Identity


class DuplicateEmail(Exception):
    """Raised by a store when the email uniqueness constraint is violated."""


@dataclass(frozen=True)
class TokenRecord:
    """Stored bearer token. Only the digest is persisted, never the plaintext."""

    id: int
    identity_id: int
    token_hash: str
    created_at: datetime
    revoked_at: Optional[datetime] = None

    @property
    def valid(self) -> bool:
        return self.revoked_at is None


class CredentialStore(Protocol):
    """
    Persistence contract consumed by the auth flows.

    Implementations must serialize concurrent writes themselves: two concurrent
    `create_identity` calls with the same email must leave exactly one row, and
    `revoke_token` must flip a token at most once.
    """

    def create_identity(self, *, name: str, email: str, password_hash: str) -> Identity:
        """
        Insert a new identity.

        Raises DuplicateEmail if the (normalized) email already exists.
        """

    def get_identity(self, identity_id: int) -> Optional[Identity]:
        ...

    def get_identity_by_email(self, email: str) -> Optional[Identity]:
        ...

    def add_token(self, *, identity_id: int, token_hash: str) -> TokenRecord:
        ...

    def find_token(self, token_hash: str) -> Optional[TokenRecord]:
        ...

    def revoke_token(self, token_hash: str) -> bool:
        """
        Transition a token valid -> revoked.

        Returns True only for the call that performed the transition; False when
        the token is unknown or already revoked.
        """
