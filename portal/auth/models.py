from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class Identity:
    """Registered user. Immutable once created."""

    id: int
    name: str
    email: str
    password_hash: str

    def public_dict(self) -> Dict[str, Any]:
        # Never expose the password hash over the wire.
        return {"id": self.id, "name": self.name, "email": self.email}


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a successful register/login: the identity plus a freshly issued token."""

    identity: Identity
    token: str

    def to_dict(self) -> Dict[str, Any]:
        return {"user": self.identity.public_dict(), "token": self.token}
