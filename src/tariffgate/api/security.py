"""API-key authentication and per-key throttling for the HTTP API."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from fastapi import Header, HTTPException, Request

from tariffgate.config import get_settings

DEV_API_KEY = "dev-key"


def allowed_api_keys() -> frozenset[str]:
    """Keys from ``TGATE_API_KEYS``; only the development key when none are set."""

    return frozenset(get_settings().api_keys or (DEV_API_KEY,))


def redact_key(raw: Optional[str]) -> str:
    """Mask an API key for logs, keeping at most its last four characters."""

    if not raw:
        return "-"
    return f"****{raw[-4:]}" if len(raw) > 8 else "****"


class SlidingWindowLimiter:
    """Allow ``limit`` calls per key within any rolling ``window_seconds``."""

    def __init__(
        self,
        limit: int,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = max(1, limit)
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._calls: Dict[str, Deque[float]] = {}

    def acquire(self, key: str) -> Optional[float]:
        """Record a call; return seconds until a slot frees when over the limit."""

        now = self._clock()
        with self._lock:
            calls = self._calls.setdefault(key, deque())
            while calls and now - calls[0] >= self.window_seconds:
                calls.popleft()
            if len(calls) >= self.limit:
                return self.window_seconds - (now - calls[0])
            calls.append(now)
            return None


def _limiter_from_settings() -> SlidingWindowLimiter:
    settings = get_settings()
    return SlidingWindowLimiter(settings.rate_limit_per_minute, settings.rate_window_seconds)


rate_limiter = _limiter_from_settings()


def set_rate_limit(limit: int, window_seconds: float = 60.0) -> None:
    """Swap in a fresh limiter, dropping all recorded calls."""

    global rate_limiter
    rate_limiter = SlidingWindowLimiter(limit, window_seconds)


def require_api_key(request: Request, x_api_key: Optional[str] = Header(None)) -> str:
    if not x_api_key:
        raise HTTPException(status_code=401, detail={"error": "UNAUTHORIZED", "message": "Missing API key"})
    if x_api_key not in allowed_api_keys():
        raise HTTPException(status_code=401, detail={"error": "UNAUTHORIZED", "message": "Invalid API key"})

    # Admin and pipeline calls draw from separate budgets.
    scope = "admin" if request.url.path.startswith("/api/admin") else "pipeline"
    retry_after = rate_limiter.acquire(f"{x_api_key}:{scope}")
    if retry_after is not None:
        raise HTTPException(
            status_code=429,
            detail={"error": "RATE_LIMITED", "limit": rate_limiter.limit, "scope": scope},
            headers={"Retry-After": str(max(1, int(retry_after + 0.999)))},
        )
    return x_api_key
