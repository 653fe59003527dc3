from __future__ import annotations

from collections import defaultdict, deque
import logging
import threading
from time import monotonic

from fastapi import Request, status

from campus_market.core.errors import APIError
from campus_market.core.settings import get_settings

logger = logging.getLogger(__name__)


class SlidingWindowLimiter:
    """Allows ``max_requests`` hits per key in any ``window_seconds`` span.

    Also used per websocket connection to throttle client commands.
    """

    def __init__(self, *, window_seconds: float, max_requests: int) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._hits: defaultdict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def hit(self, key: str, *, now: float | None = None) -> bool:
        now = monotonic() if now is None else now
        with self._lock:
            hits = self._hits[key]
            while hits and now - hits[0] >= self.window_seconds:
                hits.popleft()
            allowed = len(hits) < self.max_requests
            if allowed:
                hits.append(now)
            return allowed

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


_settings = get_settings()
auth_limiter = SlidingWindowLimiter(
    window_seconds=_settings.auth_rate_limit_window_seconds,
    max_requests=_settings.auth_rate_limit_max_requests,
)


def enforce_auth_rate_limit(request: Request) -> None:
    host = request.client.host if request.client else "unknown"
    key = f"{host}:{request.url.path}"
    if auth_limiter.hit(key):
        return
    logger.warning("Auth rate limit exceeded key=%s", key)
    raise APIError(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        code="rate_limited",
        message="Too many authentication requests",
        details={"window_seconds": auth_limiter.window_seconds},
    )
