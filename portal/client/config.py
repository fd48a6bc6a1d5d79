from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


@dataclass(frozen=True)
class ClientConfig:
    api_base_url: str  # includes the API prefix, e.g. http://localhost:8080/api
    token_file: Path
    http_timeout_seconds: float


@lru_cache(maxsize=1)
def load_client_config() -> ClientConfig:
    base = (os.getenv("PORTAL_API_BASE_URL", "") or "").strip() or "http://localhost:8080/api"
    token_file = (os.getenv("PORTAL_TOKEN_FILE", "") or "").strip() or "~/.portal/session.json"
    try:
        timeout = float((os.getenv("PORTAL_HTTP_TIMEOUT_SECONDS", "") or "10").strip() or "10")
    except ValueError:
        timeout = 10.0
    if timeout <= 0:
        timeout = 10.0
    return ClientConfig(
        api_base_url=base.rstrip("/"),
        token_file=Path(token_file).expanduser(),
        http_timeout_seconds=timeout,
    )
