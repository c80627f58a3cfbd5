"""Bearer token cache for the API client."""

import logging
import threading
import time
from typing import Callable, Optional

from ..config import DEFAULT_TOKEN_TTL

logger = logging.getLogger(__name__)


class TokenCache:
    """Caches a bearer token for ``ttl_seconds`` and refreshes it on demand.

    Refreshes are single-flight: concurrent callers of ``get()`` wait on the
    same lock, so only one of them calls ``refresh_fn`` and the rest reuse
    its result. Errors raised by ``refresh_fn`` propagate to the caller.

    Args:
        refresh_fn: Returns a fresh token.
        ttl_seconds: How long a token is reused before refreshing.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        refresh_fn: Callable[[], str],
        ttl_seconds: float = DEFAULT_TOKEN_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._refresh_fn = refresh_fn
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self._expires_at = 0.0

    @classmethod
    def static(cls, token: str) -> "TokenCache":
        """A cache that always hands out the same configured token."""
        return cls(lambda: token, ttl_seconds=float("inf"))

    def _is_fresh(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    def get(self) -> str:
        with self._lock:
            if self._is_fresh():
                return self._token
            logger.debug("Refreshing auth token")
            token = self._refresh_fn()
            self._token = token
            self._expires_at = self._clock() + self._ttl
            return token

    def invalidate(self) -> None:
        """Force the next ``get()`` to refresh."""
        with self._lock:
            self._token = None
            self._expires_at = 0.0
