from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Dict, List, Optional

import bcrypt

from portal.auth.config import load_auth_config
from portal.auth.errors import EmailTaken, InvalidCredentials, TooManyAttempts, ValidationFailed
from portal.auth.models import AuthResult, Identity
from portal.auth.rate_limit import RateLimiter
from portal.auth.tokens import issue_token, resolve_token, revoke_token
from portal.auth.util import random_token
from portal.store.base import CredentialStore, DuplicateEmail

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_MAX_FIELD_LENGTH = 255
# bcrypt silently ignores (or newer releases reject) anything past 72 bytes.
_BCRYPT_MAX_BYTES = 72


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    """
    Hash password with bcrypt.

    Args:
        password: Plain text password
        rounds: Cost factor (defaults to AUTH_BCRYPT_ROUNDS)

    Returns:
        Bcrypt hash string
    """
    if rounds is None:
        rounds = load_auth_config().bcrypt_rounds
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash with constant-time comparison.

    Returns:
        True if password matches, False otherwise (including malformed hashes)
    """
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


@lru_cache(maxsize=4)
def _dummy_hash(rounds: int) -> str:
    return hash_password(random_token(16), rounds=rounds)


def warm_dummy_hash() -> None:
    """Build the unknown-email comparison hash up front so no login pays for it."""
    _dummy_hash(load_auth_config().bcrypt_rounds)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def validate_registration(
    name: str,
    email: str,
    password: str,
    password_confirmation: str,
) -> Dict[str, List[str]]:
    """Return field -> messages for every rule the registration payload breaks."""
    cfg = load_auth_config()
    errors: Dict[str, List[str]] = {}

    def add(field: str, msg: str) -> None:
        errors.setdefault(field, []).append(msg)

    if not name.strip():
        add("name", "The name field is required.")
    elif len(name.strip()) > _MAX_FIELD_LENGTH:
        add("name", f"The name may not be greater than {_MAX_FIELD_LENGTH} characters.")

    if not email.strip():
        add("email", "The email field is required.")
    elif len(email.strip()) > _MAX_FIELD_LENGTH:
        add("email", f"The email may not be greater than {_MAX_FIELD_LENGTH} characters.")
    elif not _EMAIL_RE.match(email.strip()):
        add("email", "The email must be a valid email address.")

    if not password:
        add("password", "The password field is required.")
    else:
        if len(password) < cfg.password_min_length:
            add("password", f"The password must be at least {cfg.password_min_length} characters.")
        if len(password.encode("utf-8")) > _BCRYPT_MAX_BYTES:
            add("password", f"The password may not be greater than {_BCRYPT_MAX_BYTES} bytes.")
        if password != password_confirmation:
            add("password", "The password confirmation does not match.")

    return errors


def register(
    store: CredentialStore,
    name: str,
    email: str,
    password: str,
    password_confirmation: str,
) -> AuthResult:
    """
    Create a new identity and issue its first token.

    Raises:
        ValidationFailed: missing/malformed fields or password mismatch
        EmailTaken: the email is already registered
    """
    name = name or ""
    email = email or ""
    password = password or ""
    password_confirmation = password_confirmation or ""

    errors = validate_registration(name, email, password, password_confirmation)
    if errors:
        raise ValidationFailed(errors)

    try:
        identity = store.create_identity(
            name=name.strip(),
            email=normalize_email(email),
            password_hash=hash_password(password),
        )
    except DuplicateEmail as e:
        logger.info("Registration rejected: email already taken")
        raise EmailTaken() from e

    token = issue_token(store, identity)
    logger.info("Registered user id=%s", identity.id)
    return AuthResult(identity=identity, token=token)


def login(
    store: CredentialStore,
    email: str,
    password: str,
    *,
    limiter: Optional[RateLimiter] = None,
) -> AuthResult:
    """
    Verify credentials and issue an additional token.

    Unknown email and wrong password raise the same InvalidCredentials; an unknown
    email still pays for a bcrypt check so response timing stays flat.
    """
    key = normalize_email(email)
    password = password or ""

    if limiter is not None:
        allowed, _ = limiter.check_and_increment(key)
        if not allowed:
            logger.warning("Login rate limited")
            raise TooManyAttempts()

    identity: Optional[Identity] = store.get_identity_by_email(key) if key else None
    if identity is None:
        verify_password(password, _dummy_hash(load_auth_config().bcrypt_rounds))
        logger.info("Login failed")
        raise InvalidCredentials()
    if not verify_password(password, identity.password_hash):
        logger.info("Login failed")
        raise InvalidCredentials()

    if limiter is not None:
        limiter.reset(key)

    token = issue_token(store, identity)
    logger.info("Login succeeded for user id=%s", identity.id)
    return AuthResult(identity=identity, token=token)


def logout(store: CredentialStore, token: Optional[str]) -> Identity:
    """
    Revoke exactly the presented token. Other tokens of the same identity stay valid.

    Raises TokenMissing / TokenInvalid; a second logout with the same token fails.
    """
    identity = resolve_token(store, token)
    # resolve_token guarantees a non-empty token here.
    revoke_token(store, token or "")
    logger.info("Logged out user id=%s", identity.id)
    return identity
