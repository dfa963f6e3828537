"""In-memory challenge cache with expiry."""

from __future__ import annotations

import secrets
import threading
import time
from typing import Callable, Dict, Optional, Tuple

ChallengeKey = Tuple[str, str, str]


class ChallengeCache:
    """Single-use challenges, one per (scope, user, device)."""

    def __init__(self, ttl: float = 90.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._challenges: Dict[ChallengeKey, Tuple[bytes, float]] = {}
        self._lock = threading.Lock()

    def issue(self, scope: str, user_id: str, device_id: str, size: int = 32) -> bytes:
        """Issue a fresh challenge, replacing any outstanding one for this device."""
        challenge = secrets.token_bytes(size)
        with self._lock:
            self._challenges[(scope, user_id, device_id)] = (challenge, self._clock() + self.ttl)
        return challenge

    def pop(self, scope: str, user_id: str, device_id: str) -> bytes | None:
        with self._lock:
            entry = self._challenges.pop((scope, user_id, device_id), None)
        if entry is None:
            return None
        challenge, expires_at = entry
        if self._clock() > expires_at:
            return None
        return challenge

    def discard(self, user_id: str, device_id: Optional[str] = None) -> None:
        with self._lock:
            stale = [
                key
                for key in self._challenges
                if key[1] == user_id and (device_id is None or key[2] == device_id)
            ]
            for key in stale:
                self._challenges.pop(key, None)
