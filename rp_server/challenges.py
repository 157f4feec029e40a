"""In-memory challenge store with single-use, TTL-bound entries."""

from __future__ import annotations

import secrets
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

from .errors import ErrorKind, VerificationError
from .records import CEREMONY_CREATE, Challenge


class ChallengeStore:
    def __init__(
        self,
        ttl_seconds: float = 300.0,
        size: int = 32,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if size < 16:
            raise ValueError("challenges must be at least 16 bytes")
        self.ttl_seconds = ttl_seconds
        self.size = size
        self.max_entries = max_entries
        self._clock = clock
        # Insertion order doubles as expiry order since the TTL is fixed.
        self._challenges: "OrderedDict[str, Challenge]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._challenges)

    def issue(
        self,
        user_handle: Optional[str] = None,
        ceremony: str = CEREMONY_CREATE,
        username: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> Challenge:
        now = self._clock()
        challenge = Challenge(
            token=secrets.token_urlsafe(24),
            value=secrets.token_bytes(self.size),
            ceremony=ceremony,
            created_at=now,
            expires_at=now + self.ttl_seconds,
            user_handle=user_handle,
            username=username,
            display_name=display_name,
        )
        with self._lock:
            self._sweep_locked(now)
            while len(self._challenges) >= self.max_entries:
                self._challenges.popitem(last=False)
            self._challenges[challenge.token] = challenge
        return challenge

    def take(self, token: str, ceremony: Optional[str] = None) -> Challenge:
        """Remove the challenge for ``token`` and return it if still valid.

        The entry is deleted whatever the outcome, so a token can never be
        presented twice.
        """
        with self._lock:
            challenge = self._challenges.pop(token, None)
        if challenge is None:
            raise VerificationError(ErrorKind.CHALLENGE_NOT_FOUND)
        if ceremony is not None and challenge.ceremony != ceremony:
            raise VerificationError(
                ErrorKind.CHALLENGE_NOT_FOUND, f"token was issued for {challenge.ceremony}"
            )
        if challenge.expired(self._clock()):
            raise VerificationError(ErrorKind.CHALLENGE_EXPIRED)
        return challenge

    def consume(self, token: str, provided: bytes) -> Optional[str]:
        challenge = self.take(token)
        if not challenge.matches(provided):
            raise VerificationError(ErrorKind.CHALLENGE_MISMATCH)
        return challenge.user_handle

    def sweep(self) -> int:
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> int:
        removed = 0
        while self._challenges:
            token, oldest = next(iter(self._challenges.items()))
            if not oldest.expired(now):
                break
            del self._challenges[token]
            removed += 1
        return removed
