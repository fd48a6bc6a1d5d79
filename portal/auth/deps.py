from __future__ import annotations

from fastapi import Request

from portal.auth.models import Identity
from portal.auth.tokens import parse_bearer, resolve_token
from portal.store.base import CredentialStore


def bearer_token(request: Request) -> str | None:
    return parse_bearer(request.headers.get("authorization"))


def authenticate_request(request: Request, store: CredentialStore) -> Identity:
    """
    Resolve the request's bearer token to an Identity.

    Raises TokenMissing / TokenInvalid (rendered as 401 by the app).
    """
    return resolve_token(store, bearer_token(request))
