"""Session tokens issued after a successful password check.

Tokens are random, bound to a username and expire after a fixed TTL.
They live in process memory only, so a restart logs every client out.
"""

import secrets
import threading
import time
from dataclasses import dataclass


@dataclass(frozen=True)
class AuthSession:
    """A token issued to one user."""

    token: str
    username: str
    expires_at: float


class SessionRegistry:
    """In-memory registry of issued session tokens."""

    def __init__(self, ttl_seconds: int) -> None:
        self.ttl_seconds = ttl_seconds
        self._sessions: dict[str, AuthSession] = {}
        self._lock = threading.Lock()

    def issue(self, username: str) -> AuthSession:
        """Issue a new token for ``username``."""
        session = AuthSession(
            token=secrets.token_urlsafe(32),
            username=username,
            expires_at=time.monotonic() + self.ttl_seconds,
        )
        with self._lock:
            self._purge_expired()
            self._sessions[session.token] = session
        return session

    def resolve(self, token: str | None) -> AuthSession | None:
        """Return the live session for ``token``, or None if unknown or expired."""
        if not token:
            return None
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                return None
            if session.expires_at <= time.monotonic():
                del self._sessions[token]
                return None
            return session

    def revoke(self, token: str) -> bool:
        with self._lock:
            return self._sessions.pop(token, None) is not None

    def _purge_expired(self) -> None:
        now = time.monotonic()
        expired = [t for t, s in self._sessions.items() if s.expires_at <= now]
        for token in expired:
            del self._sessions[token]


def check_password(candidate: str, expected: str) -> bool:
    """Compare a submitted password with the configured one.

    An empty configured password never matches, so an unconfigured server
    rejects every login.
    """
    if not expected:
        return False
    return secrets.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))
