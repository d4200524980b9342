"""
Laundry Portal - Center Admin Routes

User management (create, role/branch, activation) and the audit-log viewer
with stats, activity summary and export.
"""

import logging

from fastapi import APIRouter, Request, Depends, Form
from fastapi.responses import HTMLResponse, RedirectResponse

from laundry_portal.admin import ListFilters, load_list, require_text
from laundry_portal.api_client import BackendClient, center_admin_backend
from laundry_portal.auth import PortalSession, require_center_admin
from laundry_portal.config import settings
from laundry_portal.errors import ApiError, FormValidationError
from laundry_portal.export import attachment_response, export_filename
from laundry_portal.routes.admin_routes import run_action
from laundry_portal.templating import render, redirect_to, safe_next

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/center-admin")

USER_ROLES = ("customer", "staff", "branch_manager", "admin")
BRANCH_ROLES = ("branch_manager", "staff")
USER_FILTERS = ("search", "role")

AUDIT_CATEGORIES = (
    "auth", "orders", "branches", "users", "finances",
    "settings", "system", "audit", "risk_management",
)
AUDIT_RISK_LEVELS = ("low", "medium", "high", "critical")
AUDIT_STATUSES = ("success", "failure", "warning")
AUDIT_TIMEFRAMES = ("24h", "7d", "30d", "90d")
AUDIT_FILTERS = ("category", "riskLevel", "status", "search", "startDate", "endDate", "sortBy", "sortOrder")
EXPORT_FORMATS = {"json": "application/json", "csv": "text/csv"}


async def _branches(backend: BackendClient) -> list[dict]:
    try:
        return await backend.get_center_admin_branches()
    except ApiError as e:
        logger.warning("Could not load branches: %s", e)
        return []


@router.get("")
async def center_admin_home(session: PortalSession = Depends(require_center_admin)):
    return RedirectResponse(url="/center-admin/users", status_code=303)


# =============================================================================
# USERS
# =============================================================================

@router.get("/users", response_class=HTMLResponse)
async def users_page(
    request: Request,
    session: PortalSession = Depends(require_center_admin),
    backend: BackendClient = Depends(center_admin_backend),
):
    filters = ListFilters.from_request(request, USER_FILTERS)
    page, error = await load_list(backend, "/center-admin/users", filters, "users")
    return render(request, "center_admin/users.html", {
        "filters": filters,
        "page": page,
        "list_error": error,
        "roles": USER_ROLES,
        "branch_roles": BRANCH_ROLES,
        "branches": await _branches(backend),
    })


@router.post("/users")
async def create_user(
    name: str = Form(""),
    email: str = Form(""),
    phone: str = Form(""),
    password: str = Form(""),
    role: str = Form("staff"),
    branch_id: str = Form(""),
    session: PortalSession = Depends(require_center_admin),
    backend: BackendClient = Depends(center_admin_backend),
):
    if not name.strip() or not email.strip() or not password:
        return redirect_to("/center-admin/users", error="Please fill in all required fields")
    if role not in USER_ROLES:
        return redirect_to("/center-admin/users", error="Please choose a role")
    if role in BRANCH_ROLES and not branch_id.strip():
        return redirect_to("/center-admin/users", error="Please assign a branch for this role")

    payload = {
        "name": name.strip(),
        "email": email.strip(),
        "phone": phone.strip(),
        "password": password,
        "role": role,
    }
    if role in BRANCH_ROLES:
        payload["assignedBranch"] = branch_id.strip()

    return await run_action(
        "/center-admin/users", "user", email.strip().lower(), "create",
        lambda: backend.create_user(payload),
        "User created successfully!",
    )


@router.post("/users/{user_id}/role")
async def update_user_role(
    user_id: str,
    role: str = Form(...),
    branch_id: str = Form(""),
    return_to: str = Form(""),
    session: PortalSession = Depends(require_center_admin),
    backend: BackendClient = Depends(center_admin_backend),
):
    back = safe_next(return_to, "/center-admin/users")
    if role not in USER_ROLES:
        return redirect_to(back, error="Please choose a role")
    branch = None
    if role in BRANCH_ROLES:
        try:
            branch = require_text(branch_id, "Please assign a branch for this role", field="branch_id")
        except FormValidationError as e:
            return redirect_to(back, error=e.message)
    return await run_action(
        back, "user", user_id, "role",
        lambda: backend.update_user_role(user_id, role, branch),
        "User updated successfully!",
    )


@router.post("/users/{user_id}/status")
async def update_user_status(
    user_id: str,
    is_active: str = Form(""),
    return_to: str = Form(""),
    session: PortalSession = Depends(require_center_admin),
    backend: BackendClient = Depends(center_admin_backend),
):
    back = safe_next(return_to, "/center-admin/users")
    active = is_active in ("true", "on", "1", "yes")
    return await run_action(
        back, "user", user_id, "status",
        lambda: backend.update_user_status(user_id, active),
        "User activated" if active else "User deactivated",
    )


# =============================================================================
# AUDIT LOG
# =============================================================================

def _audit_filters(request: Request) -> ListFilters:
    filters = ListFilters.from_request(request, AUDIT_FILTERS, limit=settings.AUDIT_PAGE_SIZE)
    filters.values["sortBy"] = filters.values.get("sortBy") or "timestamp"
    filters.values["sortOrder"] = filters.values.get("sortOrder") or "desc"
    return filters


@router.get("/audit", response_class=HTMLResponse)
async def audit_page(
    request: Request,
    timeframe: str = "30d",
    session: PortalSession = Depends(require_center_admin),
    backend: BackendClient = Depends(center_admin_backend),
):
    if timeframe not in AUDIT_TIMEFRAMES:
        timeframe = "30d"
    filters = _audit_filters(request)
    page, error = await load_list(backend, "/center-admin/audit/logs", filters, "logs")

    stats, summary = {}, {}
    try:
        stats = await backend.get_audit_stats(timeframe)
        summary = await backend.get_activity_summary()
    except ApiError as e:
        logger.warning("Audit stats unavailable: %s", e)

    return render(request, "center_admin/audit.html", {
        "filters": filters,
        "page": page,
        "list_error": error,
        "stats": stats,
        "summary": summary,
        "timeframe": timeframe,
        "timeframes": AUDIT_TIMEFRAMES,
        "categories": AUDIT_CATEGORIES,
        "risk_levels": AUDIT_RISK_LEVELS,
        "statuses": AUDIT_STATUSES,
    })


@router.get("/audit/export")
async def export_audit(
    request: Request,
    format: str = "csv",
    session: PortalSession = Depends(require_center_admin),
    backend: BackendClient = Depends(center_admin_backend),
):
    """Download the backend's audit export for the current filters."""
    if format not in EXPORT_FORMATS:
        return redirect_to("/center-admin/audit", error="Unsupported export format")
    filters = _audit_filters(request)
    export_params = {
        key: filters.values.get(key)
        for key in ("category", "riskLevel", "startDate", "endDate")
    }
    try:
        content, _ = await backend.export_audit_logs(format, export_params)
    except ApiError as e:
        return redirect_to("/center-admin/audit", error=e.message)
    logger.info("Audit log exported as %s by %s", format, session.user.get("email"))
    return attachment_response(content, export_filename("audit-logs", format), EXPORT_FORMATS[format])


@router.get("/audit/{log_id}", response_class=HTMLResponse)
async def audit_log_detail(
    request: Request,
    log_id: str,
    session: PortalSession = Depends(require_center_admin),
    backend: BackendClient = Depends(center_admin_backend),
):
    try:
        log = await backend.get_audit_log(log_id)
    except ApiError as e:
        return redirect_to("/center-admin/audit", error=e.message)
    return render(request, "center_admin/audit_detail.html", {"log": log})
