"""
Laundry Portal - CSRF Protection

Double-submit cookie: every page load makes sure a random token cookie
exists, every form echoes it in a hidden field, and state-changing requests
are refused unless the two match.

Raw ASGI middleware so the form body can be inspected and then replayed to
the route unchanged.
"""

import logging
import secrets
from typing import Optional
from urllib.parse import parse_qs

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

CSRF_COOKIE_NAME = "csrf_token"
CSRF_FORM_FIELD = "csrf_token"
CSRF_HEADER_NAME = "x-csrf-token"
CSRF_TOKEN_LENGTH = 32

UNSAFE_METHODS = ("POST", "PUT", "DELETE", "PATCH")

# Paths never checked (monitoring, API docs)
CSRF_EXEMPT_PATHS = {
    "/health",
}
CSRF_EXEMPT_PREFIXES = (
    "/docs",
    "/redoc",
    "/openapi",
)


def generate_csrf_token() -> str:
    return secrets.token_urlsafe(CSRF_TOKEN_LENGTH)


def get_csrf_token(request: Request) -> str:
    """Token for the hidden form field: the cookie's, or the one being set."""
    return (
        request.cookies.get(CSRF_COOKIE_NAME)
        or getattr(request.state, "csrf_token", None)
        or generate_csrf_token()
    )


def _is_exempt(path: str) -> bool:
    return path in CSRF_EXEMPT_PATHS or path.startswith(CSRF_EXEMPT_PREFIXES)


def _forbidden(detail: str) -> JSONResponse:
    return JSONResponse(status_code=403, content={"detail": detail})


async def _read_body(receive: Receive) -> bytes:
    body = b""
    while True:
        message = await receive()
        body += message.get("body", b"")
        if not message.get("more_body", False):
            return body


def _form_token(body: bytes, content_type: str) -> Optional[str]:
    if "application/x-www-form-urlencoded" not in content_type:
        return None
    values = parse_qs(body.decode("utf-8", errors="replace")).get(CSRF_FORM_FIELD, [])
    return values[0] if values else None


class CSRFMiddleware:
    """Double-submit cookie CSRF check for every portal form."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        if _is_exempt(request.url.path):
            await self.app(scope, receive, send)
            return

        if request.method not in UNSAFE_METHODS:
            await self.app(scope, receive, self._with_cookie(request, send))
            return

        cookie_token = request.cookies.get(CSRF_COOKIE_NAME)
        if not cookie_token:
            await _forbidden("CSRF token missing")(scope, receive, send)
            return

        submitted = request.headers.get(CSRF_HEADER_NAME)
        body = None
        if not submitted:
            body = await _read_body(receive)
            submitted = _form_token(body, request.headers.get("content-type", ""))
            if not submitted:
                await _forbidden("CSRF token not provided in form or header")(scope, receive, send)
                return

        if not secrets.compare_digest(cookie_token, submitted):
            logger.warning("CSRF token mismatch on %s %s", request.method, request.url.path)
            await _forbidden("CSRF token mismatch")(scope, receive, send)
            return

        if body is None:
            await self.app(scope, receive, send)
            return

        replayed = False

        async def replay_receive() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return {"type": "http.disconnect"}

        await self.app(scope, replay_receive, send)

    @staticmethod
    def _with_cookie(request: Request, send: Send) -> Send:
        """Wrap `send` so the response sets a CSRF cookie when none exists yet."""
        if CSRF_COOKIE_NAME in request.cookies:
            return send

        token = request.state.csrf_token = generate_csrf_token()

        async def send_with_cookie(message: Message):
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                cookie = f"{CSRF_COOKIE_NAME}={token}; Path=/; SameSite=Lax"
                headers.append((b"set-cookie", cookie.encode()))
                message = {**message, "headers": headers}
            await send(message)

        return send_with_cookie
