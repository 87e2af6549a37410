"""Admin dashboard sessions.

Sessions live in a keyed store with a TTL. The in-memory store below is
used for a single process; anything implementing ``SessionStore`` can be
swapped in for a shared backend.
"""
from __future__ import annotations

import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class AdminSession:
    username: str
    created_at: float
    expires_at: float


class SessionStore(Protocol):
    def create(self, username: str) -> str: ...

    def validate(self, token: str) -> AdminSession | None: ...

    def revoke(self, token: str) -> None: ...


class AdminSessionStore:
    """Issue, look up and revoke opaque session tokens with a fixed TTL."""

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, AdminSession] = {}
        self._lock = threading.Lock()

    def create(self, username: str) -> str:
        token = secrets.token_urlsafe(32)
        now = self._clock()
        with self._lock:
            self._sessions[token] = AdminSession(
                username=username, created_at=now, expires_at=now + self.ttl_seconds
            )
        return token

    def validate(self, token: str) -> AdminSession | None:
        """Return the live session for ``token``; expired ones are dropped."""
        now = self._clock()
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                return None
            if now >= session.expires_at:
                del self._sessions[token]
                return None
            return session

    def revoke(self, token: str) -> None:
        with self._lock:
            self._sessions.pop(token, None)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
