"""
Durable client-side token storage (the browser's localStorage equivalent).

Exactly one value is kept, under the fixed key `token`.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional, Protocol

logger = logging.getLogger(__name__)

TOKEN_KEY = "token"


class TokenStorage(Protocol):
    def get(self) -> Optional[str]:
        ...

    def set(self, token: str) -> None:
        ...

    def clear(self) -> None:
        ...


class MemoryTokenStorage:
    def __init__(self, token: Optional[str] = None) -> None:
        self._data: Dict[str, str] = {}
        if token:
            self._data[TOKEN_KEY] = token

    def get(self) -> Optional[str]:
        return self._data.get(TOKEN_KEY)

    def set(self, token: str) -> None:
        self._data[TOKEN_KEY] = token

    def clear(self) -> None:
        self._data.pop(TOKEN_KEY, None)


class FileTokenStorage:
    """JSON file holding `{"token": "..."}`, written atomically with 0600 permissions."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def get(self) -> Optional[str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable token file %s", self.path)
            return None
        if not isinstance(data, dict):
            return None
        token = data.get(TOKEN_KEY)
        return token if isinstance(token, str) and token else None

    def set(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump({TOKEN_KEY: token}, f)
        os.replace(tmp, self.path)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
