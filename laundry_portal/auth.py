"""
Laundry Portal - Authentication Store

Every portal (customer, admin, support, center admin) keeps its backend
bearer token in one signed, versioned cookie:

    {"v": 1, "portals": {"<portal>": {"token": "...", "user": {...}}}}

All reads and writes go through this module; no other code touches the
cookie directly.
"""

from dataclasses import dataclass, field
from typing import Optional

from fastapi import Request, HTTPException, status
from fastapi.responses import Response
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired

from laundry_portal.config import settings

# Session token serializer
serializer = URLSafeTimedSerializer(settings.SECRET_KEY, salt="laundry-portal-auth")

# The single namespaced cookie holding every portal session
AUTH_COOKIE_NAME = "laundry_portal_auth"
AUTH_SCHEMA_VERSION = 1


class Portal:
    """Portal identifiers."""

    CUSTOMER = "customer"
    ADMIN = "admin"
    SUPPORT = "support"
    CENTER_ADMIN = "center_admin"

    ALL = (CUSTOMER, ADMIN, SUPPORT, CENTER_ADMIN)


# Landing page per portal after login
PORTAL_HOME = {
    Portal.CUSTOMER: "/book",
    Portal.ADMIN: "/admin/orders",
    Portal.SUPPORT: "/support/tickets",
    Portal.CENTER_ADMIN: "/center-admin/users",
}

# Backend role -> portal
ROLE_PORTALS = {
    "customer": Portal.CUSTOMER,
    "admin": Portal.ADMIN,
    "superadmin": Portal.ADMIN,
    "support_agent": Portal.SUPPORT,
    "center_admin": Portal.CENTER_ADMIN,
}


@dataclass
class PortalSession:
    """An authenticated session for one portal."""

    portal: str
    token: str
    user: dict = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.user.get("name") or self.user.get("email") or "User"

    @property
    def role(self) -> Optional[str]:
        return self.user.get("role")

    @property
    def permissions(self) -> dict:
        return self.user.get("permissions") or {}


def portal_for_role(role: Optional[str]) -> Optional[str]:
    """Return the portal a backend role signs into, or None if it has none here."""
    if not role:
        return None
    return ROLE_PORTALS.get(role)


# =============================================================================
# STORE READ / WRITE
# =============================================================================

def _empty_store() -> dict:
    return {"v": AUTH_SCHEMA_VERSION, "portals": {}}


def encode_auth_store(store: dict) -> str:
    """Sign an auth store document."""
    return serializer.dumps(store)


def decode_auth_store(token: Optional[str], max_age: int = None) -> dict:
    """
    Verify and decode an auth store document.

    Args:
        token: The signed cookie value
        max_age: Maximum age in seconds (defaults to SESSION_EXPIRE_MINUTES)

    Returns:
        The store, or an empty store if missing, tampered, expired or of
        another schema version
    """
    if not token:
        return _empty_store()

    if max_age is None:
        max_age = settings.SESSION_EXPIRE_MINUTES * 60

    try:
        data = serializer.loads(token, max_age=max_age)
    except (BadSignature, SignatureExpired):
        return _empty_store()

    if not isinstance(data, dict) or data.get("v") != AUTH_SCHEMA_VERSION:
        return _empty_store()
    if not isinstance(data.get("portals"), dict):
        return _empty_store()
    return data


def read_auth_store(request: Request) -> dict:
    return decode_auth_store(request.cookies.get(AUTH_COOKIE_NAME))


def write_auth_store(response: Response, store: dict) -> None:
    if not store["portals"]:
        response.delete_cookie(AUTH_COOKIE_NAME)
        return
    response.set_cookie(
        key=AUTH_COOKIE_NAME,
        value=encode_auth_store(store),
        max_age=settings.SESSION_EXPIRE_MINUTES * 60,
        httponly=True,
        samesite="lax",
        secure=not settings.DEBUG,  # Secure in production
    )


# =============================================================================
# SESSION ACCESS
# =============================================================================

def get_portal_session(request: Request, portal: str) -> Optional[PortalSession]:
    """Return the session of `portal`, or None if not signed in there."""
    entry = read_auth_store(request)["portals"].get(portal)
    if not entry or not entry.get("token"):
        return None
    return PortalSession(portal=portal, token=entry["token"], user=entry.get("user") or {})


def portal_for_path(path: str) -> str:
    """The portal a URL path belongs to; public pages count as customer."""
    for prefix, portal in (
        ("/center-admin", Portal.CENTER_ADMIN),
        ("/admin", Portal.ADMIN),
        ("/support", Portal.SUPPORT),
    ):
        if path == prefix or path.startswith(prefix + "/"):
            return portal
    return Portal.CUSTOMER


def get_current_session(request: Request) -> Optional[PortalSession]:
    """Session of the portal the requested page belongs to."""
    return get_portal_session(request, portal_for_path(request.url.path))


def get_signed_in_portals(request: Request) -> list[str]:
    store = read_auth_store(request)
    return [portal for portal in Portal.ALL if portal in store["portals"]]


def sign_in(response: Response, request: Request, portal: str, token: str, user: dict) -> None:
    """Record a portal session, keeping sessions of the other portals."""
    store = read_auth_store(request)
    store["portals"][portal] = {"token": token, "user": user}
    write_auth_store(response, store)


def sign_out(response: Response, request: Request, portal: str) -> None:
    """Forget only `portal`'s session."""
    store = read_auth_store(request)
    store["portals"].pop(portal, None)
    write_auth_store(response, store)


def require_portal(request: Request, portal: str) -> PortalSession:
    """
    Require a session for `portal` - raises a redirect to login otherwise.
    """
    session = get_portal_session(request, portal)
    if not session:
        login_path = "/center-admin/login" if portal == Portal.CENTER_ADMIN else "/login"
        raise HTTPException(
            status_code=status.HTTP_303_SEE_OTHER,
            headers={"Location": f"{login_path}?next={request.url.path}"},
        )
    return session


def portal_guard(portal: str):
    """Dependency form of `require_portal`."""

    def _guard(request: Request) -> PortalSession:
        return require_portal(request, portal)

    _guard.__name__ = f"require_{portal}"
    return _guard


require_customer = portal_guard(Portal.CUSTOMER)
require_admin = portal_guard(Portal.ADMIN)
require_support = portal_guard(Portal.SUPPORT)
require_center_admin = portal_guard(Portal.CENTER_ADMIN)
