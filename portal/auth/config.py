from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class AuthConfig:
    # HTTP surface
    api_prefix: str  # e.g. "/api"

    # Password hashing / validation
    bcrypt_rounds: int
    password_min_length: int

    # Token minting
    token_bytes: int

    # Login rate limiting (per email)
    login_max_attempts: int
    login_window_seconds: int


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name, "") or "").strip()
    if not raw:
        return default
    try:
        return int(float(raw))
    except ValueError:
        return default


def _normalize_prefix(value: str) -> str:
    p = (value or "").strip().rstrip("/")
    if not p:
        return ""
    if not p.startswith("/"):
        p = "/" + p
    return p


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load authentication configuration from environment variables.

    Tests lower AUTH_BCRYPT_ROUNDS to keep hashing fast; call
    `load_auth_config.cache_clear()` after changing env vars.
    """
    rounds = _env_int("AUTH_BCRYPT_ROUNDS", 12)
    # bcrypt only accepts 4..31; anything past 15 is unusably slow for login.
    rounds = min(max(rounds, 4), 15)

    min_len = max(_env_int("AUTH_PASSWORD_MIN_LENGTH", 8), 1)

    token_bytes = _env_int("AUTH_TOKEN_BYTES", 40)
    if token_bytes < 16:
        token_bytes = 16

    return AuthConfig(
        api_prefix=_normalize_prefix(os.getenv("AUTH_API_PREFIX", "/api") or ""),
        bcrypt_rounds=rounds,
        password_min_length=min_len,
        token_bytes=token_bytes,
        login_max_attempts=max(_env_int("AUTH_LOGIN_MAX_ATTEMPTS", 5), 1),
        login_window_seconds=max(_env_int("AUTH_LOGIN_WINDOW_SECONDS", 300), 1),
    )
