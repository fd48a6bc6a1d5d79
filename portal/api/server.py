"""
Portal API server.

Exposes register / login / logout / current-user plus a few authenticated stub
endpoints. Every non-public route is gated by a bearer token resolved in the
request middleware.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from portal.auth.config import load_auth_config
from portal.auth.errors import AuthError, ValidationFailed
from portal.store.base import CredentialStore

logger = logging.getLogger(__name__)

_store: Optional[CredentialStore] = None
_store_lock = threading.Lock()

API_PREFIX = load_auth_config().api_prefix

app = FastAPI(title="Portal API")
api = APIRouter(prefix=API_PREFIX)

_NO_STORE = {"Cache-Control": "no-store"}


def _get_store() -> CredentialStore:
    """Return the process-wide credential store (built once from StoreConfig)."""
    global _store
    with _store_lock:
        if _store is None:
            from portal.store.config import build_credential_store, load_store_config

            _store = build_credential_store(load_store_config())
        return _store


def _is_public_path(path: str) -> bool:
    if path == "/healthz":
        return True
    # Token-issuing endpoints must be reachable without a token.
    if path in (f"{API_PREFIX}/register", f"{API_PREFIX}/login"):
        return True
    return False


def _error_response(err: AuthError) -> JSONResponse:
    # Never emit `WWW-Authenticate`: the UI handles 401s itself.
    return JSONResponse(status_code=err.status_code, content=err.to_dict(), headers=_NO_STORE)


class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    password_confirmation: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


@app.exception_handler(AuthError)
async def _auth_error_handler(_request: Request, exc: AuthError) -> JSONResponse:
    return _error_response(exc)


@app.exception_handler(RequestValidationError)
async def _request_validation_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    errors: Dict[str, list] = {}
    for e in exc.errors():
        loc = e.get("loc") or ()
        field = str(loc[-1]) if loc else "body"
        errors.setdefault(field, []).append(str(e.get("msg") or "Invalid value"))
    return _error_response(ValidationFailed(errors))


@app.on_event("startup")
def _startup_maybe_migrate_db() -> None:
    """
    Optional: auto-apply DB migrations when DB_AUTO_MIGRATE=1.

    Failures are logged; the server still starts (requests will surface DB errors).
    """
    try:
        from portal.store.migrate import maybe_auto_migrate

        did_attempt, msg = maybe_auto_migrate()
        if did_attempt:
            logger.info("DB migrations: %s", msg)
    except Exception as e:
        logger.warning("DB migrations: startup auto-migrate failed: %s", str(e))


@app.on_event("startup")
def _startup_warm_password_hashing() -> None:
    # Unknown-email logins compare against a dummy hash; build it before the first request.
    from portal.auth.accounts import warm_dummy_hash

    warm_dummy_hash()


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming HTTP requests and enforce bearer auth on non-public paths."""
    start_time = time.time()
    logger.debug("%s %s", request.method, request.url.path)
    try:
        path = request.url.path or ""

        if request.method != "OPTIONS" and not _is_public_path(path):
            # Fail closed: anything not explicitly public requires a valid token.
            from portal.auth.deps import authenticate_request, bearer_token

            try:
                # Token lookup hits the store (Postgres): keep it off the event loop.
                request.state.user = await run_in_threadpool(authenticate_request, request, _get_store())
            except AuthError as err:
                logger.debug("%s %s - rejected (%s)", request.method, path, err.kind)
                return _error_response(err)
            request.state.token = bearer_token(request)

        response = await call_next(request)
        process_time = time.time() - start_time
        logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
        raise


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


@api.post("/register")
def register(req: RegisterRequest) -> JSONResponse:
    from portal.auth.accounts import register as register_identity

    result = register_identity(
        _get_store(),
        req.name or "",
        req.email or "",
        req.password or "",
        req.password_confirmation or "",
    )
    return JSONResponse(status_code=201, content=result.to_dict(), headers=_NO_STORE)


@api.post("/login")
def login(req: LoginRequest) -> JSONResponse:
    """
    Email/password login. Issues a new token on every success.
    Rate-limited per email to slow down brute force attempts.
    """
    from portal.auth.accounts import login as login_identity
    from portal.auth.rate_limit import get_rate_limiter

    result = login_identity(_get_store(), req.email or "", req.password or "", limiter=get_rate_limiter())
    return JSONResponse(content=result.to_dict(), headers=_NO_STORE)


@api.post("/logout")
def logout(request: Request) -> JSONResponse:
    from portal.auth.accounts import logout as logout_token

    logout_token(_get_store(), getattr(request.state, "token", None))
    return JSONResponse(content={"ok": True}, headers=_NO_STORE)


@api.get("/user")
def current_user(request: Request) -> Dict[str, Any]:
    return request.state.user.public_dict()


def _foo(request: Request, action: str) -> Dict[str, Any]:
    return {"ok": True, "action": action, "user_id": request.state.user.id}


@api.post("/foo/bar1")
def foo_bar1(request: Request) -> Dict[str, Any]:
    return _foo(request, "bar1")


@api.post("/foo/bar2")
def foo_bar2(request: Request) -> Dict[str, Any]:
    return _foo(request, "bar2")


@api.post("/foo/bar3")
def foo_bar3(request: Request) -> Dict[str, Any]:
    return _foo(request, "bar3")


app.include_router(api)


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    import uvicorn

    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting portal API on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
