from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from portal.auth.config import load_auth_config


class RateLimiter:
    """
    Simple in-memory rate limiter for login attempts.

    Tracks attempts per identifier (normalized email). Rate limits after
    max_attempts within window_seconds; a successful login resets the counter.

    /login is public, so identifiers are attacker-chosen: once more than
    sweep_threshold identifiers are tracked, every identifier whose attempts
    have all left the window is dropped.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        window_seconds: int = 300,
        *,
        sweep_threshold: int = 1024,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._attempts: Dict[str, List[datetime]] = {}
        self._max_attempts = max_attempts
        self._window = timedelta(seconds=window_seconds)
        self._sweep_threshold = sweep_threshold
        self._clock = clock
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._attempts)

    def _recent(self, identifier: str, now: datetime) -> List[datetime]:
        return [t for t in self._attempts.get(identifier, ()) if now - t < self._window]

    def _sweep(self, now: datetime) -> None:
        for identifier in list(self._attempts):
            recent = self._recent(identifier, now)
            if recent:
                self._attempts[identifier] = recent
            else:
                del self._attempts[identifier]

    def check_and_increment(self, identifier: str) -> Tuple[bool, int]:
        """
        Check if identifier is rate limited and increment attempt counter.

        Returns:
            Tuple of (is_allowed, attempts_remaining)
        """
        now = self._clock()
        with self._lock:
            if len(self._attempts) >= self._sweep_threshold:
                self._sweep(now)

            recent = self._recent(identifier, now)
            if len(recent) >= self._max_attempts:
                self._attempts[identifier] = recent
                return False, 0

            recent.append(now)
            self._attempts[identifier] = recent
            return True, self._max_attempts - len(recent)

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._attempts.pop(identifier, None)


_global_rate_limiter: Optional[RateLimiter] = None
_global_lock = threading.Lock()


def get_rate_limiter() -> RateLimiter:
    """Get the process-wide login rate limiter (configured from AuthConfig)."""
    global _global_rate_limiter
    with _global_lock:
        if _global_rate_limiter is None:
            cfg = load_auth_config()
            _global_rate_limiter = RateLimiter(
                max_attempts=cfg.login_max_attempts, window_seconds=cfg.login_window_seconds
            )
        return _global_rate_limiter


def reset_rate_limiter() -> None:
    """Drop the process-wide limiter so the next call re-reads config (tests)."""
    global _global_rate_limiter
    with _global_lock:
        _global_rate_limiter = None
