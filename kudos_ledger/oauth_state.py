"""One-time ``state`` tokens guarding the OAuth install callbacks against CSRF."""

from __future__ import annotations

import secrets
import threading
import time
from datetime import timedelta
from typing import Callable, Dict

DEFAULT_TTL = timedelta(minutes=10)
TOKEN_BYTES = 32


class OAuthStateStore:
    """Issue and consume short-lived state tokens.

    State lives in process memory only. Each token can be consumed once: the
    entry is removed on lookup whether or not it has expired.
    """

    def __init__(
        self,
        *,
        ttl: timedelta = DEFAULT_TTL,
        timer: Callable[[], float] | None = None,
    ) -> None:
        if ttl.total_seconds() <= 0:
            raise ValueError("OAuth state TTL must be greater than zero seconds.")

        self._ttl = ttl.total_seconds()
        self._timer = timer or time.monotonic
        self._lock = threading.Lock()
        self._expiries: Dict[str, float] = {}

    def issue(self) -> str:
        token = secrets.token_urlsafe(TOKEN_BYTES)
        with self._lock:
            self._expiries[token] = self._timer() + self._ttl
        return token

    def consume(self, token: str | None) -> bool:
        """Return True when *token* was issued here and has not expired."""

        if not token:
            return False

        with self._lock:
            expiry = self._expiries.pop(token, None)
            now = self._timer()

        if expiry is None:
            return False
        return now < expiry

    def purge_expired(self) -> int:
        """Drop tokens that expired without being consumed."""

        with self._lock:
            now = self._timer()
            expired = [token for token, expiry in self._expiries.items() if expiry <= now]
            for token in expired:
                del self._expiries[token]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._expiries)
