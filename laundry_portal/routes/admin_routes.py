"""
Laundry Portal - Admin Routes

List/filter/act pages for complaints, refunds, customers, orders, logistics
partners and staff. Every action posts a small form, is guarded against a
duplicate submission and redirects back to the list with a notice or the
server's error message.
"""

import logging
from typing import Awaitable, Callable

from fastapi import APIRouter, Request, Depends, Form
from fastapi.responses import HTMLResponse, RedirectResponse

from laundry_portal import permissions
from laundry_portal.admin import (
    COMPLAINT_CATEGORIES,
    COMPLAINT_STATUSES,
    ORDER_STATUSES,
    PRIORITIES,
    REFUND_STATUSES,
    ListFilters,
    get_next_statuses,
    in_flight,
    is_over_limit,
    load_list,
    refund_actions,
    require_text,
)
from laundry_portal.api_client import BackendClient, admin_backend
from laundry_portal.auth import PortalSession, require_admin
from laundry_portal.config import settings
from laundry_portal.errors import ApiError, FormValidationError
from laundry_portal.export import CUSTOMER_COLUMNS, ORDER_COLUMNS, STAFF_COLUMNS, csv_response
from laundry_portal.templating import render, redirect_to, safe_next

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin")

COMPLAINT_FILTERS = ("status", "priority", "category", "search")
REFUND_FILTERS = ("status", "search")
CUSTOMER_FILTERS = ("search", "isActive", "isVIP")
ORDER_FILTERS = ("status", "search", "isExpress", "branchId")
LOGISTICS_FILTERS = ("search", "isActive")
STAFF_FILTERS = ("role", "search", "isActive")

STAFF_ROLES = ("admin", "support_agent", "branch_manager", "staff")


async def run_action(
    back: str,
    resource: str,
    entity_id: str,
    action: str,
    call: Callable[[], Awaitable],
    success: str,
) -> RedirectResponse:
    """
    Run one entity action and redirect back to the page.

    A second submission of the same action while the first is running is
    refused with `ActionInProgress`.
    """
    async with in_flight.guard(resource, entity_id, action):
        try:
            await call()
        except ApiError as e:
            logger.warning("%s %s on %s failed: %s", resource, action, entity_id, e)
            return redirect_to(back, error=e.message)
    logger.info("%s %s on %s succeeded", resource, action, entity_id)
    return redirect_to(back, notice=success)


# =============================================================================
# DASHBOARD
# =============================================================================

@router.get("")
async def admin_home(session: PortalSession = Depends(require_admin)):
    return RedirectResponse(url="/admin/orders", status_code=303)


# =============================================================================
# COMPLAINTS
# =============================================================================

@router.get("/complaints", response_class=HTMLResponse)
async def complaints_page(
    request: Request,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    filters = ListFilters.from_request(request, COMPLAINT_FILTERS)
    page, error = await load_list(backend, "/admin/complaints", filters, "complaints")
    try:
        agents = await backend.get_support_agents()
    except ApiError as e:
        logger.warning("Could not load support agents: %s", e)
        agents = []
    return render(request, "admin/complaints.html", {
        "filters": filters,
        "page": page,
        "list_error": error,
        "agents": agents,
        "statuses": COMPLAINT_STATUSES,
        "priorities": PRIORITIES,
        "categories": COMPLAINT_CATEGORIES,
    })


@router.post("/complaints/{complaint_id}/assign")
async def assign_complaint(
    complaint_id: str,
    agent_id: str = Form(""),
    return_to: str = Form(""),
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    back = safe_next(return_to, "/admin/complaints")
    try:
        agent_id = require_text(agent_id, "Please select an agent", field="agent_id")
    except FormValidationError as e:
        return redirect_to(back, error=e.message)
    return await run_action(
        back, "complaint", complaint_id, "assign",
        lambda: backend.assign_complaint(complaint_id, agent_id),
        "Complaint assigned successfully!",
    )


@router.post("/complaints/{complaint_id}/resolve")
async def resolve_complaint(
    complaint_id: str,
    resolution: str = Form(""),
    return_to: str = Form(""),
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    back = safe_next(return_to, "/admin/complaints")
    try:
        resolution = require_text(resolution, "Please enter a resolution", field="resolution")
    except FormValidationError as e:
        return redirect_to(back, error=e.message)
    return await run_action(
        back, "complaint", complaint_id, "resolve",
        lambda: backend.update_complaint_status(complaint_id, "resolved", resolution),
        "Complaint resolved successfully!",
    )


@router.post("/complaints/{complaint_id}/status")
async def update_complaint_status(
    complaint_id: str,
    status: str = Form(...),
    return_to: str = Form(""),
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    back = safe_next(return_to, "/admin/complaints")
    if status not in COMPLAINT_STATUSES:
        return redirect_to(back, error="Unknown complaint status")
    return await run_action(
        back, "complaint", complaint_id, "status",
        lambda: backend.update_complaint_status(complaint_id, status),
        "Complaint status updated",
    )


# =============================================================================
# REFUNDS
# =============================================================================

@router.get("/refunds", response_class=HTMLResponse)
async def refunds_page(
    request: Request,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    filters = ListFilters.from_request(request, REFUND_FILTERS)
    page, error = await load_list(backend, "/admin/refunds", filters, "refunds")
    rows = [
        {"refund": refund, "actions": refund_actions(refund), "over_limit": is_over_limit(refund)}
        for refund in page.items
    ]
    return render(request, "admin/refunds.html", {
        "filters": filters,
        "page": page,
        "rows": rows,
        "list_error": error,
        "statuses": REFUND_STATUSES,
        "approval_limit": settings.REFUND_APPROVAL_LIMIT,
    })


@router.post("/refunds/{refund_id}/approve")
async def approve_refund(
    refund_id: str,
    notes: str = Form(""),
    return_to: str = Form(""),
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    back = safe_next(return_to, "/admin/refunds")
    return await run_action(
        back, "refund", refund_id, "approve",
        lambda: backend.approve_refund(refund_id, notes.strip()),
        "Refund approved successfully!",
    )


@router.post("/refunds/{refund_id}/reject")
async def reject_refund(
    refund_id: str,
    reason: str = Form(""),
    return_to: str = Form(""),
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    back = safe_next(return_to, "/admin/refunds")
    try:
        reason = require_text(reason, "Please provide a rejection reason", field="reason")
    except FormValidationError as e:
        return redirect_to(back, error=e.message)
    return await run_action(
        back, "refund", refund_id, "reject",
        lambda: backend.reject_refund(refund_id, reason),
        "Refund rejected",
    )


@router.post("/refunds/{refund_id}/escalate")
async def escalate_refund(
    refund_id: str,
    reason: str = Form(""),
    return_to: str = Form(""),
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    back = safe_next(return_to, "/admin/refunds")
    try:
        reason = require_text(reason, "Please provide an escalation reason", field="reason")
    except FormValidationError as e:
        return redirect_to(back, error=e.message)
    return await run_action(
        back, "refund", refund_id, "escalate",
        lambda: backend.escalate_refund(refund_id, reason),
        "Refund escalated successfully!",
    )


@router.post("/refunds/{refund_id}/process")
async def process_refund(
    refund_id: str,
    return_to: str = Form(""),
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    back = safe_next(return_to, "/admin/refunds")
    return await run_action(
        back, "refund", refund_id, "process",
        lambda: backend.process_refund(refund_id),
        "Refund processed successfully!",
    )


# =============================================================================
# CUSTOMERS
# =============================================================================

@router.get("/customers", response_class=HTMLResponse)
async def customers_page(
    request: Request,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    filters = ListFilters.from_request(request, CUSTOMER_FILTERS)
    page, error = await load_list(backend, "/admin/customers", filters, "customers")
    return render(request, "admin/customers.html", {
        "filters": filters,
        "page": page,
        "list_error": error,
    })


@router.get("/customers/export")
async def export_customers(
    request: Request,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    """CSV of the customers page currently shown (same filters and page)."""
    filters = ListFilters.from_request(request, CUSTOMER_FILTERS)
    page, error = await load_list(backend, "/admin/customers", filters, "customers")
    if error:
        return redirect_to("/admin/customers", error=error)
    return csv_response(page.items, CUSTOMER_COLUMNS, "customers")


@router.post("/customers/{customer_id}/toggle-status")
async def toggle_customer_status(
    customer_id: str,
    return_to: str = Form(""),
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    back = safe_next(return_to, "/admin/customers")
    return await run_action(
        back, "customer", customer_id, "toggle-status",
        lambda: backend.toggle_customer_status(customer_id),
        "Customer status updated",
    )


@router.post("/customers/{customer_id}/vip")
async def toggle_customer_vip(
    customer_id: str,
    is_vip: str = Form(""),
    return_to: str = Form(""),
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    back = safe_next(return_to, "/admin/customers")
    enabled = is_vip in ("true", "on", "1", "yes")
    return await run_action(
        back, "customer", customer_id, "vip",
        lambda: backend.update_customer_vip(customer_id, enabled),
        "VIP status updated",
    )


# =============================================================================
# ORDERS
# =============================================================================

@router.get("/orders", response_class=HTMLResponse)
async def orders_page(
    request: Request,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    filters = ListFilters.from_request(request, ORDER_FILTERS)
    page, error = await load_list(backend, "/admin/orders", filters, "orders")
    try:
        branches = await backend.get_admin_branches()
        partners = await backend.get_logistics_partners()
    except ApiError as e:
        logger.warning("Could not load assignment targets: %s", e)
        branches, partners = [], []
    rows = [{"order": order, "next_statuses": get_next_statuses(order.get("status"))} for order in page.items]
    return render(request, "admin/orders.html", {
        "filters": filters,
        "page": page,
        "rows": rows,
        "list_error": error,
        "statuses": ORDER_STATUSES,
        "branches": branches,
        "partners": partners,
    })


@router.get("/orders/export")
async def export_orders(
    request: Request,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    filters = ListFilters.from_request(request, ORDER_FILTERS)
    page, error = await load_list(backend, "/admin/orders", filters, "orders")
    if error:
        return redirect_to("/admin/orders", error=error)
    return csv_response(page.items, ORDER_COLUMNS, "orders")


@router.post("/orders/{order_id}/status")
async def update_order_status(
    order_id: str,
    status: str = Form(...),
    current_status: str = Form(""),
    notes: str = Form(""),
    return_to: str = Form(""),
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    back = safe_next(return_to, "/admin/orders")
    if status not in get_next_statuses(current_status):
        return redirect_to(back, error="This status change is not available")
    return await run_action(
        back, "order", order_id, "status",
        lambda: backend.update_order_status(order_id, status, notes.strip()),
        "Order status updated",
    )


@router.post("/orders/{order_id}/assign-branch")
async def assign_order_branch(
    order_id: str,
    branch_id: str = Form(""),
    return_to: str = Form(""),
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    back = safe_next(return_to, "/admin/orders")
    try:
        branch_id = require_text(branch_id, "Please select a branch", field="branch_id")
    except FormValidationError as e:
        return redirect_to(back, error=e.message)
    return await run_action(
        back, "order", order_id, "assign-branch",
        lambda: backend.assign_order_branch(order_id, branch_id),
        "Order assigned to branch",
    )


@router.post("/orders/{order_id}/assign-logistics")
async def assign_order_logistics(
    order_id: str,
    partner_id: str = Form(""),
    leg: str = Form("pickup"),
    return_to: str = Form(""),
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    back = safe_next(return_to, "/admin/orders")
    try:
        partner_id = require_text(partner_id, "Please select a logistics partner", field="partner_id")
    except FormValidationError as e:
        return redirect_to(back, error=e.message)
    if leg not in ("pickup", "delivery"):
        leg = "pickup"
    return await run_action(
        back, "order", order_id, "assign-logistics",
        lambda: backend.assign_order_logistics(order_id, partner_id, leg),
        "Logistics partner assigned",
    )


# =============================================================================
# LOGISTICS PARTNERS
# =============================================================================

@router.get("/logistics", response_class=HTMLResponse)
async def logistics_page(
    request: Request,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    filters = ListFilters.from_request(request, LOGISTICS_FILTERS)
    page, error = await load_list(backend, "/admin/logistics-partners", filters, "partners")
    return render(request, "admin/logistics.html", {
        "filters": filters,
        "page": page,
        "list_error": error,
    })


@router.post("/logistics/{partner_id}/toggle-status")
async def toggle_logistics_status(
    partner_id: str,
    return_to: str = Form(""),
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    back = safe_next(return_to, "/admin/logistics")
    return await run_action(
        back, "logistics", partner_id, "toggle-status",
        lambda: backend.toggle_logistics_status(partner_id),
        "Partner status updated",
    )


# =============================================================================
# STAFF & CENTER ADMINS
# =============================================================================

def _editor_context(session: PortalSession) -> dict:
    return {
        "module_actions": permissions.MODULE_ACTIONS,
        "module_labels": permissions.MODULE_LABELS,
        "editable": permissions.editable_cells(session.permissions, session.role),
    }


@router.get("/staff", response_class=HTMLResponse)
async def staff_page(
    request: Request,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    filters = ListFilters.from_request(request, STAFF_FILTERS)
    page, error = await load_list(backend, "/admin/staff", filters, "staff")
    return render(request, "admin/staff.html", {
        "filters": filters,
        "page": page,
        "list_error": error,
        "roles": STAFF_ROLES,
        **_editor_context(session),
    })


@router.get("/staff/export")
async def export_staff(
    request: Request,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    filters = ListFilters.from_request(request, STAFF_FILTERS)
    page, error = await load_list(backend, "/admin/staff", filters, "staff")
    if error:
        return redirect_to("/admin/staff", error=error)
    return csv_response(page.items, STAFF_COLUMNS, "staff")


@router.post("/staff")
async def create_staff(
    request: Request,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    """Create a staff member with a permission set bounded by the editor's own."""
    form = await request.form()
    name = form.get("name", "")
    email = form.get("email", "")
    password = form.get("password", "")
    role = form.get("role", "staff")

    granted = permissions.apply_grants(
        permissions.parse_matrix_form(form), session.permissions, session.role
    )
    try:
        permissions.validate_new_staff(name, email, password, granted)
        if role not in STAFF_ROLES:
            raise FormValidationError("Please choose a role", field="role")
    except FormValidationError as e:
        return redirect_to("/admin/staff", error=e.message)

    payload = {
        "name": name.strip(),
        "email": email.strip(),
        "phone": form.get("phone", "").strip(),
        "password": password,
        "role": role,
        "permissions": granted,
    }
    return await run_action(
        "/admin/staff", "staff", email.strip().lower(), "create",
        lambda: backend.create_staff(payload),
        "Staff member created successfully!",
    )


@router.post("/staff/{staff_id}/toggle-status")
async def toggle_staff_status(
    staff_id: str,
    return_to: str = Form(""),
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    back = safe_next(return_to, "/admin/staff")
    return await run_action(
        back, "staff", staff_id, "toggle-status",
        lambda: backend.toggle_staff_status(staff_id),
        "Staff status updated",
    )


@router.get("/center-admins", response_class=HTMLResponse)
async def center_admins_page(
    request: Request,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    filters = ListFilters.from_request(request, ("search", "isActive"))
    page, error = await load_list(backend, "/admin/center-admins", filters, "centerAdmins")
    try:
        branches = await backend.get_admin_branches()
    except ApiError as e:
        logger.warning("Could not load branches: %s", e)
        branches = []
    return render(request, "admin/center_admins.html", {
        "filters": filters,
        "page": page,
        "list_error": error,
        "branches": branches,
        **_editor_context(session),
    })


@router.post("/center-admins")
async def create_center_admin(
    request: Request,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(admin_backend),
):
    """Create a center admin; a branch assignment is mandatory."""
    form = await request.form()
    name = form.get("name", "")
    email = form.get("email", "")
    password = form.get("password", "")
    branch_id = form.get("branch_id", "")

    granted = permissions.apply_grants(
        permissions.parse_matrix_form(form), session.permissions, session.role
    )
    try:
        permissions.validate_new_staff(
            name, email, password, granted, requires_branch=True, branch_id=branch_id
        )
    except FormValidationError as e:
        return redirect_to("/admin/center-admins", error=e.message)

    payload = {
        "name": name.strip(),
        "email": email.strip(),
        "phone": form.get("phone", "").strip(),
        "password": password,
        "assignedBranch": branch_id.strip(),
        "permissions": granted,
    }
    return await run_action(
        "/admin/center-admins", "center-admin", email.strip().lower(), "create",
        lambda: backend.create_center_admin(payload),
        "Center admin created successfully!",
    )
