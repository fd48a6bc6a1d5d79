from __future__ import annotations

import asyncio
import time

import pytest

from portal.auth.config import load_auth_config
from portal.auth.rate_limit import reset_rate_limiter
from portal.store.memory import InMemoryCredentialStore

REGISTER_BODY = {
    "name": "Andrew",
    "email": "andrew@example.com",
    "password": "password",
    "password_confirmation": "password",
}


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def test_healthz_is_public(api_client) -> None:
    r = api_client.get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_user_can_register(api_client) -> None:
    r = api_client.post("/api/register", json=REGISTER_BODY)
    assert r.status_code == 201
    body = r.json()
    assert set(body) == {"user", "token"}
    assert body["user"]["name"] == "Andrew"
    assert body["user"]["email"] == "andrew@example.com"
    assert "password_hash" not in body["user"]
    assert r.headers.get("cache-control") == "no-store"


def test_register_login_user_logout_scenario(api_client) -> None:
    r = api_client.post("/api/register", json=REGISTER_BODY)
    assert r.status_code == 201
    token = r.json()["token"]

    r = api_client.get("/api/user", headers=_bearer(token))
    assert r.status_code == 200
    assert r.json()["name"] == "Andrew"

    r = api_client.post("/api/logout", headers=_bearer(token))
    assert r.status_code == 200
    assert r.json() == {"ok": True}

    r = api_client.get("/api/user", headers=_bearer(token))
    assert r.status_code == 401
    assert r.json()["error"] == "token_invalid"


def test_register_duplicate_email_is_422(api_client) -> None:
    assert api_client.post("/api/register", json=REGISTER_BODY).status_code == 201
    r = api_client.post("/api/register", json=REGISTER_BODY)
    assert r.status_code == 422
    body = r.json()
    assert body["error"] == "email_taken"
    assert "email" in body["errors"]


def test_register_validation_errors_are_422_with_fields(api_client) -> None:
    r = api_client.post(
        "/api/register",
        json={"name": "", "email": "bad", "password": "password", "password_confirmation": "other"},
    )
    assert r.status_code == 422
    body = r.json()
    assert body["error"] == "validation_failed"
    assert {"name", "email", "password"} <= set(body["errors"])


def test_register_wrong_types_are_rendered_as_validation_failed(api_client) -> None:
    r = api_client.post("/api/register", json={"name": ["x"], "email": 1})
    assert r.status_code == 422
    body = r.json()
    assert body["error"] == "validation_failed"
    assert "name" in body["errors"]


def test_login_success_returns_user_and_new_token(api_client) -> None:
    reg = api_client.post("/api/register", json=REGISTER_BODY).json()
    r = api_client.post("/api/login", json={"email": "andrew@example.com", "password": "password"})
    assert r.status_code == 200
    body = r.json()
    assert body["user"]["id"] == reg["user"]["id"]
    assert body["token"] != reg["token"]

    # Both tokens are valid concurrently.
    for token in (reg["token"], body["token"]):
        assert api_client.get("/api/user", headers=_bearer(token)).status_code == 200


def test_login_failures_are_indistinguishable(api_client) -> None:
    api_client.post("/api/register", json=REGISTER_BODY)
    wrong_pw = api_client.post("/api/login", json={"email": "andrew@example.com", "password": "nope-nope"})
    unknown = api_client.post("/api/login", json={"email": "ghost@example.com", "password": "password"})
    assert wrong_pw.status_code == unknown.status_code == 401
    assert wrong_pw.json() == unknown.json()
    assert wrong_pw.json()["error"] == "invalid_credentials"


def test_login_is_rate_limited(api_client, monkeypatch) -> None:
    monkeypatch.setenv("AUTH_LOGIN_MAX_ATTEMPTS", "2")
    load_auth_config.cache_clear()
    reset_rate_limiter()
    api_client.post("/api/register", json=REGISTER_BODY)

    for _ in range(2):
        r = api_client.post("/api/login", json={"email": "andrew@example.com", "password": "nope-nope"})
        assert r.status_code == 401
    r = api_client.post("/api/login", json={"email": "andrew@example.com", "password": "password"})
    assert r.status_code == 429
    assert r.json()["error"] == "too_many_attempts"


def test_logout_revokes_only_presented_token(api_client) -> None:
    first = api_client.post("/api/register", json=REGISTER_BODY).json()["token"]
    second = api_client.post("/api/login", json={"email": "andrew@example.com", "password": "password"}).json()[
        "token"
    ]

    assert api_client.post("/api/logout", headers=_bearer(first)).status_code == 200
    assert api_client.get("/api/user", headers=_bearer(first)).status_code == 401
    assert api_client.get("/api/user", headers=_bearer(second)).status_code == 200


def test_logout_twice_second_call_fails(api_client) -> None:
    token = api_client.post("/api/register", json=REGISTER_BODY).json()["token"]
    assert api_client.post("/api/logout", headers=_bearer(token)).status_code == 200
    r = api_client.post("/api/logout", headers=_bearer(token))
    assert r.status_code == 401
    assert r.json()["error"] == "token_invalid"


@pytest.mark.parametrize(
    "method,path",
    [
        ("post", "/api/logout"),
        ("get", "/api/user"),
        ("post", "/api/foo/bar1"),
        ("post", "/api/foo/bar2"),
        ("post", "/api/foo/bar3"),
    ],
)
def test_protected_routes_require_token(api_client, method, path) -> None:
    r = getattr(api_client, method)(path)
    assert r.status_code == 401
    assert r.json()["error"] == "token_missing"
    # No WWW-Authenticate: avoids browser auth popups.
    assert "www-authenticate" not in {k.lower() for k in r.headers.keys()}

    r = getattr(api_client, method)(path, headers=_bearer("forged"))
    assert r.status_code == 401
    assert r.json()["error"] == "token_invalid"


def test_foo_endpoints_with_token(api_client) -> None:
    reg = api_client.post("/api/register", json=REGISTER_BODY).json()
    for action in ("bar1", "bar2", "bar3"):
        r = api_client.post(f"/api/foo/{action}", headers=_bearer(reg["token"]))
        assert r.status_code == 200
        assert r.json() == {"ok": True, "action": action, "user_id": reg["user"]["id"]}


def test_non_bearer_scheme_is_treated_as_missing(api_client) -> None:
    r = api_client.get("/api/user", headers={"Authorization": "Basic dXNlcjpwYXNz"})
    assert r.status_code == 401
    assert r.json()["error"] == "token_missing"


class _SlowTokenStore(InMemoryCredentialStore):
    """Token lookups block like a slow database round-trip."""

    delay = 1.0

    def find_token(self, token_hash: str):  # type: ignore[no-untyped-def]
        time.sleep(self.delay)
        return super().find_token(token_hash)


def test_slow_token_lookup_does_not_stall_other_requests(monkeypatch) -> None:
    import httpx

    import portal.api.server as srv
    from portal.auth.accounts import register

    store = _SlowTokenStore()
    token = register(store, "Andrew", "andrew@example.com", "password", "password").token
    monkeypatch.setattr(srv, "_get_store", lambda: store)

    async def scenario():
        transport = httpx.ASGITransport(app=srv.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            t0 = time.monotonic()

            async def user():
                r = await client.get("/api/user", headers=_bearer(token))
                return r, time.monotonic() - t0

            async def health():
                await asyncio.sleep(0.05)
                r = await client.get("/healthz")
                return r, time.monotonic() - t0

            return await asyncio.gather(user(), health())

    (user_resp, user_done), (health_resp, health_done) = asyncio.run(scenario())

    assert user_resp.status_code == 200
    assert health_resp.status_code == 200
    assert user_done >= store.delay
    assert health_done < 0.5


def test_startup_prepares_unknown_email_hash(monkeypatch, store) -> None:
    from fastapi.testclient import TestClient

    import portal.api.server as srv
    from portal.auth.accounts import _dummy_hash

    _dummy_hash.cache_clear()
    monkeypatch.setattr(srv, "_get_store", lambda: store)
    with TestClient(srv.app):
        assert _dummy_hash.cache_info().currsize == 1
        assert _dummy_hash.cache_info().misses == 1
