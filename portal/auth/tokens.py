"""
Bearer token issuance and resolution.

Tokens are opaque random strings. The store only ever sees their SHA-256 digest,
so a leaked table cannot be replayed against the API.
"""

from __future__ import annotations

import logging
from typing import Optional

from portal.auth.config import load_auth_config
from portal.auth.errors import TokenInvalid, TokenMissing
from portal.auth.models import Identity
from portal.auth.util import random_token, token_digest
from portal.store.base import CredentialStore

logger = logging.getLogger(__name__)

_BEARER_SCHEME = "bearer"


def issue_token(store: CredentialStore, identity: Identity) -> str:
    """
    Mint a new valid token bound to `identity` and return its plaintext.

    The caller is responsible for having verified the identity first.
    """
    cfg = load_auth_config()
    token = random_token(cfg.token_bytes)
    rec = store.add_token(identity_id=identity.id, token_hash=token_digest(token))
    logger.info("Issued token id=%s for user id=%s", rec.id, identity.id)
    return token


def resolve_token(store: CredentialStore, token: Optional[str]) -> Identity:
    """
    Resolve a bearer token to its identity.

    Raises TokenMissing when no token was supplied, TokenInvalid when the token is
    unknown, revoked, or bound to an identity that no longer exists.
    """
    if not token:
        raise TokenMissing()
    rec = store.find_token(token_digest(token))
    if rec is None or not rec.valid:
        raise TokenInvalid()
    identity = store.get_identity(rec.identity_id)
    if identity is None:
        raise TokenInvalid()
    return identity


def revoke_token(store: CredentialStore, token: str) -> None:
    """Flip a single token to revoked. Raises TokenInvalid if it was not valid."""
    if not store.revoke_token(token_digest(token)):
        raise TokenInvalid()


def parse_bearer(header_value: Optional[str]) -> Optional[str]:
    """
    Extract the token from an `Authorization: Bearer <token>` header value.

    Returns None for a missing header, another scheme, or an empty token.
    """
    raw = (header_value or "").strip()
    if not raw:
        return None
    scheme, _, credentials = raw.partition(" ")
    if scheme.lower() != _BEARER_SCHEME:
        return None
    return credentials.strip() or None
