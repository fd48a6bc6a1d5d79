from __future__ import annotations

from typing import Any, Dict, Optional


class ClientError(Exception):
    """Base class for session client failures."""


class ApiError(ClientError):
    """The API answered with a non-2xx status. Carries the server's payload untouched."""

    def __init__(self, status_code: int, payload: Dict[str, Any]) -> None:
        self.status_code = status_code
        self.payload = payload
        self.kind: Optional[str] = payload.get("error") if isinstance(payload.get("error"), str) else None
        self.message = str(payload.get("message") or payload.get("detail") or f"HTTP {status_code}")
        super().__init__(f"{status_code} {self.kind or 'error'}: {self.message}")

    @property
    def errors(self) -> Dict[str, Any]:
        errs = self.payload.get("errors")
        return errs if isinstance(errs, dict) else {}


class AlreadyAuthenticated(ClientError):
    """register/login attempted while a session is active; log out first."""


class NotAuthenticated(ClientError):
    """An operation needing a session was called while anonymous."""


class SessionBusy(ClientError):
    """Another register/login/logout/restore is still in flight on this session."""
