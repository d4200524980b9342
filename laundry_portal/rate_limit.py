"""
Laundry Portal - Rate Limiting

In-memory sliding window per client IP and path, applied to the login
forms. A single-process limit; a shared store is needed once the portal
runs multiple workers.
"""

import logging
import time
from collections import defaultdict

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger(__name__)


class RateLimitStore:
    """Request timestamps per key within the current window."""

    def __init__(self):
        self._requests: dict[str, list[float]] = defaultdict(list)

    def is_rate_limited(self, key: str, max_requests: int, window_seconds: int) -> bool:
        """Record a hit for `key` unless it is already over the limit."""
        now = time.monotonic()
        cutoff = now - window_seconds
        recent = [t for t in self._requests[key] if t > cutoff]
        self._requests[key] = recent

        if len(recent) >= max_requests:
            return True
        recent.append(now)
        return False

    def reset(self):
        """Reset all rate limits (useful for testing)."""
        self._requests.clear()


rate_limit_store = RateLimitStore()

# {path: (max_requests, window_seconds)}, POST only
RATE_LIMIT_RULES: dict[str, tuple[int, int]] = {
    "/login": (10, 60),
    "/center-admin/login": (10, 60),
    "/center-admin/login/mfa": (5, 60),
}


def match_rule(path: str):
    """Exact-path rule lookup."""
    return RATE_LIMIT_RULES.get(path.rstrip("/") or "/")


class RateLimitMiddleware:
    """Refuses login POSTs beyond the configured rate with HTTP 429."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        rule = match_rule(request.url.path) if request.method == "POST" else None
        if rule is None:
            await self.app(scope, receive, send)
            return

        max_requests, window_seconds = rule
        client_ip = request.client.host if request.client else "unknown"
        key = f"{client_ip}:{request.url.path}"

        if rate_limit_store.is_rate_limited(key, max_requests, window_seconds):
            logger.warning("Rate limit hit for %s", key)
            response = JSONResponse(
                status_code=429,
                content={"detail": "Too many requests. Please try again later."},
                headers={"Retry-After": str(window_seconds)},
            )
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)
