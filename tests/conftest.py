"""
Pytest config.

Tests import the local `portal/` package from the repo root; pin it on sys.path so
a global `pytest` entrypoint works without an editable install.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

_DB_ENV_VARS = (
    "POSTGRES_DSN",
    "POSTGRES_HOST",
    "POSTGRES_PORT",
    "POSTGRES_DB",
    "POSTGRES_USER",
    "POSTGRES_PASSWORD",
    "DB_AUTO_MIGRATE",
    "PORTAL_STORE",
)


def _clear_config_caches() -> None:
    from portal.auth.config import load_auth_config
    from portal.auth.rate_limit import reset_rate_limiter
    from portal.client.config import load_client_config
    from portal.store.config import load_store_config

    load_auth_config.cache_clear()
    load_store_config.cache_clear()
    load_client_config.cache_clear()
    reset_rate_limiter()


@pytest.fixture(autouse=True)
def _isolated_auth_env(monkeypatch: pytest.MonkeyPatch):
    """
    Keep unit tests fast and hermetic: minimum bcrypt cost, no Postgres, fresh
    config caches and rate limiter per test.
    """
    monkeypatch.setenv("AUTH_BCRYPT_ROUNDS", "4")
    for name in _DB_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    _clear_config_caches()
    yield
    _clear_config_caches()


@pytest.fixture
def store():
    from portal.store.memory import InMemoryCredentialStore

    return InMemoryCredentialStore()


@pytest.fixture
def api_client(monkeypatch: pytest.MonkeyPatch, store):
    """TestClient bound to the app, with the credential store swapped for `store`."""
    from fastapi.testclient import TestClient

    import portal.api.server as srv

    monkeypatch.setattr(srv, "_get_store", lambda: store)
    with TestClient(srv.app) as c:
        yield c
