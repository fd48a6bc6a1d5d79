from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Union

import requests

from portal.client.config import ClientConfig, load_client_config
from portal.client.errors import AlreadyAuthenticated, ApiError, ClientError, NotAuthenticated, SessionBusy
from portal.client.storage import FileTokenStorage, TokenStorage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    """Identity as the API exposes it (never includes the password hash)."""

    id: int
    name: str
    email: str

    @classmethod
    def from_payload(cls, data: Any) -> "CurrentUser":
        if not isinstance(data, dict):
            raise ClientError("Malformed user payload")
        try:
            return cls(id=int(data["id"]), name=str(data["name"]), email=str(data["email"]))
        except (KeyError, TypeError, ValueError) as e:
            raise ClientError("Malformed user payload") from e


@dataclass(frozen=True)
class Anonymous:
    pass


@dataclass(frozen=True)
class Authenticated:
    user: CurrentUser
    token: str


ClientSession = Union[Anonymous, Authenticated]


def _payload(resp: Any) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {"message": (getattr(resp, "text", "") or "").strip()}
    return data if isinstance(data, dict) else {"data": data}


def _raise_for_status(resp: Any) -> Dict[str, Any]:
    data = _payload(resp)
    if resp.status_code >= 400:
        raise ApiError(resp.status_code, data)
    return data


class SessionClient:
    """
    Holds the current session (Anonymous | Authenticated) and drives the auth API.

    - Token is persisted to `storage` on every transition into Authenticated and
      cleared on every transition into Anonymous.
    - register/login while authenticated raise AlreadyAuthenticated (log out first).
    - Operations never overlap: a call made while another is in flight raises
      SessionBusy instead of racing on the state.

    `http` is anything with requests-style `get`/`post` (a `requests.Session`, or a
    FastAPI `TestClient` in tests). When omitted, the client opens its own
    `requests.Session` and `close()` (or leaving a `with` block) closes it; an
    injected `http` is left to its owner.
    """

    def __init__(
        self,
        base_url: str,
        storage: TokenStorage,
        http: Any = None,
        *,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._storage = storage
        self._owns_http = http is None
        self._http = requests.Session() if http is None else http
        self._timeout = timeout
        self._state: ClientSession = Anonymous()
        self._op_lock = threading.Lock()

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "SessionClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @classmethod
    def from_config(cls, cfg: Optional[ClientConfig] = None, http: Any = None) -> "SessionClient":
        cfg = cfg or load_client_config()
        return cls(
            cfg.api_base_url,
            FileTokenStorage(cfg.token_file),
            http,
            timeout=cfg.http_timeout_seconds,
        )

    @property
    def state(self) -> ClientSession:
        return self._state

    @property
    def user(self) -> Optional[CurrentUser]:
        return self._state.user if isinstance(self._state, Authenticated) else None

    @property
    def is_authenticated(self) -> bool:
        return isinstance(self._state, Authenticated)

    @contextmanager
    def _exclusive(self, op: str) -> Iterator[None]:
        if not self._op_lock.acquire(blocking=False):
            raise SessionBusy(f"{op}: another session operation is in progress")
        try:
            yield
        finally:
            self._op_lock.release()

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _become_authenticated(self, user: CurrentUser, token: str) -> Authenticated:
        self._storage.set(token)
        self._state = Authenticated(user=user, token=token)
        return self._state

    def _become_anonymous(self) -> Anonymous:
        self._storage.clear()
        self._state = Anonymous()
        return self._state

    def _authenticate(self, path: str, body: Dict[str, Any]) -> Authenticated:
        if isinstance(self._state, Authenticated):
            raise AlreadyAuthenticated("Already signed in; log out first")
        resp = self._http.post(self._url(path), json=body, headers=self._headers(), timeout=self._timeout)
        data = _raise_for_status(resp)
        token = data.get("token")
        if not isinstance(token, str) or not token:
            raise ClientError("Auth response is missing a token")
        user = CurrentUser.from_payload(data.get("user"))
        return self._become_authenticated(user, token)

    def register(self, name: str, email: str, password: str, password_confirmation: str) -> Authenticated:
        """Create an account and sign in with the returned token. Raises ApiError on 4xx/5xx."""
        with self._exclusive("register"):
            state = self._authenticate(
                "/register",
                {
                    "name": name,
                    "email": email,
                    "password": password,
                    "password_confirmation": password_confirmation,
                },
            )
            logger.info("Registered and signed in as user id=%s", state.user.id)
            return state

    def login(self, email: str, password: str) -> Authenticated:
        """Sign in. Raises ApiError carrying the server payload on failure."""
        with self._exclusive("login"):
            state = self._authenticate("/login", {"email": email, "password": password})
            logger.info("Signed in as user id=%s", state.user.id)
            return state

    def logout(self) -> Anonymous:
        """
        Revoke the current token server-side, then drop local state.

        A 401 means the token is already unusable, so local state is cleared before
        the ApiError is raised. Transport errors and other statuses leave the
        session Authenticated (the token may still be valid server-side).
        """
        with self._exclusive("logout"):
            state = self._state
            if not isinstance(state, Authenticated):
                raise NotAuthenticated("Not signed in")
            resp = self._http.post(self._url("/logout"), headers=self._headers(state.token), timeout=self._timeout)
            if resp.status_code == 401:
                self._become_anonymous()
                logger.info("Logout: token was already invalid; cleared local session")
                raise ApiError(resp.status_code, _payload(resp))
            _raise_for_status(resp)
            logger.info("Signed out user id=%s", state.user.id)
            return self._become_anonymous()

    def restore(self) -> ClientSession:
        """
        Re-derive the session from the persisted token (app startup).

        No token -> Anonymous. Token rejected (401) -> storage cleared, Anonymous.
        Any other failure propagates and keeps the stored token for a later retry.
        """
        with self._exclusive("restore"):
            if isinstance(self._state, Authenticated):
                return self._state
            token = self._storage.get()
            if not token:
                return self._state
            resp = self._http.get(self._url("/user"), headers=self._headers(token), timeout=self._timeout)
            if resp.status_code == 401:
                logger.info("Stored token rejected; starting anonymous")
                return self._become_anonymous()
            data = _raise_for_status(resp)
            return self._become_authenticated(CurrentUser.from_payload(data), token)
