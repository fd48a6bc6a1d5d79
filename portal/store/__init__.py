"""
Credential store (identities + issued tokens).

Small interface so the auth flows can run against Postgres in deployments and
an in-process store in dev/tests without any refactor.
"""

from portal.store.base import CredentialStore, DuplicateEmail, TokenRecord
from portal.store.memory import InMemoryCredentialStore

__all__ = ["CredentialStore", "DuplicateEmail", "TokenRecord", "InMemoryCredentialStore"]
