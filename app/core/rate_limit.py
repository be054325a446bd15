"""
Rate limiting.

- ``limiter``: slowapi per-IP limiter for credential endpoints (login).
- ``ResendRateLimiter``: per-email cooldown for verification resends.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings

logger = logging.getLogger(__name__)

# Keyed by client IP; applied to credential endpoints
limiter = Limiter(key_func=get_remote_address)


class ResendRateLimiter:
    """Process-local cooldown gate keyed by a normalised identifier.

    ``allow`` checks and records under one lock, so concurrent callers for
    the same key can never both observe ``True`` inside one cooldown window.
    State is not shared between processes and is lost on restart.
    """

    def __init__(
        self,
        cooldown_seconds: float = settings.RESEND_COOLDOWN_SECONDS,
        max_keys: int = settings.RESEND_TRACKER_MAX_KEYS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cooldown = float(cooldown_seconds)
        self.max_keys = max_keys
        self._clock = clock
        self._last_issued: dict[str, float] = {}
        self._lock = threading.Lock()

    @staticmethod
    def normalise(key: str) -> str:
        return key.strip().lower()

    def allow(self, key: str) -> bool:
        key = self.normalise(key)
        with self._lock:
            now = self._clock()
            last = self._last_issued.get(key)
            if last is not None and now - last < self.cooldown:
                return False
            self._last_issued[key] = now
            if len(self._last_issued) > self.max_keys:
                self._prune_locked(now)
            return True

    def prune(self) -> int:
        """Drop keys whose cooldown has already elapsed. Returns how many."""
        with self._lock:
            return self._prune_locked(self._clock())

    def _prune_locked(self, now: float) -> int:
        stale = [k for k, last in self._last_issued.items() if now - last >= self.cooldown]
        for k in stale:
            del self._last_issued[k]
        if stale:
            logger.debug("Pruned %d stale resend tracker entries", len(stale))
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._last_issued.clear()

    def __len__(self) -> int:
        return len(self._last_issued)
