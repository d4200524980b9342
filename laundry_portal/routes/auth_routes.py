"""
Laundry Portal - Authentication Routes

Customers, admins and support agents share one login form; the backend role
decides which portal the session belongs to. Center admins have their own
login with an optional MFA step.
"""

import logging

from fastapi import APIRouter, Request, Depends, Form
from fastapi.responses import HTMLResponse, RedirectResponse

from laundry_portal.api_client import BackendClient, anonymous_backend, center_admin_backend
from laundry_portal.auth import (
    Portal,
    PORTAL_HOME,
    get_portal_session,
    portal_for_role,
    sign_in,
    sign_out,
)
from laundry_portal.errors import ApiError
from laundry_portal.templating import render, redirect_to, safe_next

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# LOGIN
# =============================================================================

@router.get("/login", response_class=HTMLResponse)
async def login_page(request: Request, next: str = ""):
    """Display the login page."""
    return render(request, "login.html", {"next": next})


@router.post("/login")
async def login_submit(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    next: str = Form(""),
    backend: BackendClient = Depends(anonymous_backend),
):
    """Sign in through the backend and open the matching portal session."""

    def failed(message: str):
        return render(
            request,
            "login.html",
            {"next": next, "error": message, "email": email},
            status_code=400,
        )

    try:
        data = await backend.login(email, password)
    except ApiError as e:
        logger.info("Login failed for %s: %s", email, e)
        return failed(e.message)

    user = data.get("user") or {}
    token = data.get("token")
    portal = portal_for_role(user.get("role"))
    if not token or portal is None:
        return failed("This account cannot sign in here")
    if portal == Portal.CENTER_ADMIN:
        return failed("Center admins must use the center admin login")

    response = RedirectResponse(url=safe_next(next, PORTAL_HOME[portal]), status_code=303)
    sign_in(response, request, portal, token, user)
    logger.info("User %s signed in to the %s portal", user.get("email") or email, portal)
    return response


# =============================================================================
# LOGOUT
# =============================================================================

@router.post("/logout")
async def logout(request: Request, portal: str = Form(Portal.CUSTOMER)):
    """Sign out of one portal; sessions of the other portals stay."""
    if portal not in Portal.ALL or portal == Portal.CENTER_ADMIN:
        portal = Portal.CUSTOMER
    response = redirect_to("/", notice="You have been signed out")
    sign_out(response, request, portal)
    return response


# =============================================================================
# CENTER ADMIN
# =============================================================================

@router.get("/center-admin/login", response_class=HTMLResponse)
async def center_admin_login_page(request: Request, next: str = ""):
    if get_portal_session(request, Portal.CENTER_ADMIN):
        return RedirectResponse(url=safe_next(next, PORTAL_HOME[Portal.CENTER_ADMIN]), status_code=303)
    return render(request, "center_admin/login.html", {"next": next})


def _center_admin_signed_in(request: Request, data: dict, next: str) -> RedirectResponse:
    user = data.get("admin") or data.get("user") or {}
    user.setdefault("role", "center_admin")
    response = RedirectResponse(url=safe_next(next, PORTAL_HOME[Portal.CENTER_ADMIN]), status_code=303)
    sign_in(response, request, Portal.CENTER_ADMIN, data["token"], user)
    logger.info("Center admin %s signed in", user.get("email"))
    return response


@router.post("/center-admin/login")
async def center_admin_login_submit(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    next: str = Form(""),
    backend: BackendClient = Depends(anonymous_backend),
):
    try:
        data = await backend.center_admin_login(email, password)
    except ApiError as e:
        return render(
            request,
            "center_admin/login.html",
            {"next": next, "error": e.message, "email": email},
            status_code=400,
        )

    if data.get("requiresMFA"):
        return render(
            request,
            "center_admin/mfa.html",
            {"next": next, "mfa_token": data.get("mfaToken", "")},
        )
    if not data.get("token"):
        return render(
            request,
            "center_admin/login.html",
            {"next": next, "error": "Login failed", "email": email},
            status_code=400,
        )
    return _center_admin_signed_in(request, data, next)


@router.post("/center-admin/login/mfa")
async def center_admin_mfa_submit(
    request: Request,
    mfa_token: str = Form(...),
    otp: str = Form(""),
    backup_code: str = Form(""),
    next: str = Form(""),
    backend: BackendClient = Depends(anonymous_backend),
):
    """Second login step: a TOTP code or a backup code."""

    def failed(message: str):
        return render(
            request,
            "center_admin/mfa.html",
            {"next": next, "mfa_token": mfa_token, "error": message},
            status_code=400,
        )

    if not otp.strip() and not backup_code.strip():
        return failed("Please enter your verification code")

    try:
        data = await backend.center_admin_verify_mfa(
            mfa_token, otp=otp.strip() or None, backup_code=backup_code.strip() or None
        )
    except ApiError as e:
        return failed(e.message)

    if not data.get("token"):
        return failed("Verification failed")
    return _center_admin_signed_in(request, data, next)


@router.post("/center-admin/logout")
async def center_admin_logout(
    request: Request,
    backend: BackendClient = Depends(center_admin_backend),
):
    if backend.is_authenticated:
        try:
            await backend.center_admin_logout()
        except ApiError as e:
            logger.warning("Center admin logout call failed: %s", e)
    response = redirect_to("/center-admin/login", notice="You have been signed out")
    sign_out(response, request, Portal.CENTER_ADMIN)
    return response
