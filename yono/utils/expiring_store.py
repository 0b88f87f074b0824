"""
In-process key set with per-key expiry.

Injected wherever a short-lived "seen recently" guard is needed, instead of a
module-level dict. Expired keys are purged lazily on access.
"""

import time
from typing import Callable, Dict


class ExpiringKeyStore:
    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._expires: Dict[str, float] = {}

    def _purge(self) -> None:
        now = self._clock()
        for key in [key for key, expires in self._expires.items() if expires <= now]:
            del self._expires[key]

    def add(self, key: str) -> bool:
        """Claim key. False if it is already held and not yet expired."""
        self._purge()
        if key in self._expires:
            return False
        self._expires[key] = self._clock() + self.ttl_seconds
        return True

    def discard(self, key: str) -> None:
        self._expires.pop(key, None)

    def __contains__(self, key: str) -> bool:
        self._purge()
        return key in self._expires

    def __len__(self) -> int:
        self._purge()
        return len(self._expires)
