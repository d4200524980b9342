"""
Laundry Portal - Support Routes

Ticket queue and the ticket detail chat panel for support agents.
"""

import logging

from fastapi import APIRouter, Request, Depends, Form
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from laundry_portal import preferences, support
from laundry_portal.admin import PRIORITIES, ListFilters, in_flight, load_list
from laundry_portal.api_client import BackendClient, support_backend
from laundry_portal.auth import PortalSession, require_support
from laundry_portal.database import get_db
from laundry_portal.errors import ApiError, FormValidationError
from laundry_portal.templating import render, redirect_to

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/support")

TICKET_FILTERS = ("status", "priority", "category", "search", "isOverdue")


def _ticket_url(ticket_id: str) -> str:
    return f"/support/tickets/{ticket_id}"


async def _ticket_action(ticket_id: str, action: str, call, success: str) -> RedirectResponse:
    """Run a ticket action; validation and backend errors return to the ticket."""
    back = _ticket_url(ticket_id)
    async with in_flight.guard("ticket", ticket_id, action):
        try:
            await call()
        except (FormValidationError, ApiError) as e:
            logger.warning("Ticket %s %s failed: %s", ticket_id, action, e)
            return redirect_to(back, error=e.message)
    return redirect_to(back, notice=success)


@router.get("")
async def support_home(session: PortalSession = Depends(require_support)):
    return RedirectResponse(url="/support/tickets", status_code=303)


@router.get("/tickets", response_class=HTMLResponse)
async def tickets_page(
    request: Request,
    session: PortalSession = Depends(require_support),
    backend: BackendClient = Depends(support_backend),
):
    filters = ListFilters.from_request(request, TICKET_FILTERS)
    page, error = await load_list(backend, "/support/tickets", filters, "tickets")
    return render(request, "support/tickets.html", {
        "filters": filters,
        "page": page,
        "list_error": error,
        "statuses": support.TICKET_STATUSES,
        "priorities": PRIORITIES,
        "categories": support.TICKET_CATEGORIES,
        "is_overdue": support.is_overdue,
    })


@router.get("/tickets/{ticket_id}", response_class=HTMLResponse)
async def ticket_detail(
    request: Request,
    ticket_id: str,
    session: PortalSession = Depends(require_support),
    backend: BackendClient = Depends(support_backend),
):
    try:
        ticket = await backend.get_ticket(ticket_id)
    except ApiError as e:
        return render(
            request,
            "support/ticket_detail.html",
            {"ticket": None, "load_error": e.message},
            status_code=e.status_code if e.status_code == 404 else 200,
        )
    return render(request, "support/ticket_detail.html", {
        "ticket": ticket,
        "messages": support.visible_messages(ticket, audience="agent"),
        "can_take": support.can_take(ticket),
        "is_closed": support.is_closed(ticket),
        "is_overdue": support.is_overdue(ticket),
        "resolution_kinds": support.RESOLUTION_KINDS,
    })


@router.post("/tickets/{ticket_id}/take")
async def take_ticket(
    ticket_id: str,
    session: PortalSession = Depends(require_support),
    backend: BackendClient = Depends(support_backend),
):
    agent_id = session.user.get("_id") or session.user.get("id")
    return await _ticket_action(
        ticket_id, "take",
        lambda: support.take_ticket(backend, ticket_id, agent_id),
        "Ticket assigned to you",
    )


@router.post("/tickets/{ticket_id}/resolve")
async def resolve_ticket(
    ticket_id: str,
    resolution: str = Form(""),
    resolution_type: str = Form("resolved"),
    amount: str = Form(""),
    session: PortalSession = Depends(require_support),
    backend: BackendClient = Depends(support_backend),
):
    try:
        parsed = support.parse_resolution(resolution_type, resolution, amount)
    except FormValidationError as e:
        return redirect_to(_ticket_url(ticket_id), error=e.message)
    return await _ticket_action(
        ticket_id, "resolve",
        lambda: support.resolve_ticket(backend, ticket_id, parsed),
        "Ticket resolved successfully!",
    )


@router.post("/tickets/{ticket_id}/escalate")
async def escalate_ticket(
    ticket_id: str,
    reason: str = Form(""),
    escalated_to: str = Form(""),
    session: PortalSession = Depends(require_support),
    backend: BackendClient = Depends(support_backend),
):
    return await _ticket_action(
        ticket_id, "escalate",
        lambda: support.escalate_ticket(backend, ticket_id, reason, escalated_to or None),
        "Ticket escalated",
    )


@router.post("/tickets/{ticket_id}/refund")
async def refund_from_ticket(
    ticket_id: str,
    amount: str = Form(""),
    reason: str = Form(""),
    session: PortalSession = Depends(require_support),
    backend: BackendClient = Depends(support_backend),
):
    async def create():
        ticket = await backend.get_ticket(ticket_id)
        ticket.setdefault("_id", ticket_id)
        await support.refund_from_ticket(backend, ticket, amount, reason)

    return await _ticket_action(ticket_id, "refund", create, "Refund request created!")


@router.post("/tickets/{ticket_id}/messages")
async def send_message(
    ticket_id: str,
    message: str = Form(""),
    is_internal: str = Form(""),
    session: PortalSession = Depends(require_support),
    backend: BackendClient = Depends(support_backend),
):
    internal = is_internal in ("true", "on", "1", "yes")
    return await _ticket_action(
        ticket_id, "message",
        lambda: support.send_message(backend, ticket_id, message, internal),
        "Internal note added" if internal else "Message sent!",
    )


# =============================================================================
# SETTINGS
# =============================================================================

def _agent_key(session: PortalSession) -> str:
    user = session.user
    return user.get("_id") or user.get("id") or user.get("email") or "agent"


@router.get("/settings", response_class=HTMLResponse)
async def settings_page(
    request: Request,
    tab: str = "profile",
    session: PortalSession = Depends(require_support),
    db: AsyncSession = Depends(get_db),
):
    """Profile details from the session plus the agent's saved preferences."""
    if tab not in dict(preferences.SETTINGS_TABS):
        tab = "profile"
    return render(request, "support/settings.html", {
        "tab": tab,
        "tabs": preferences.SETTINGS_TABS,
        "profile": session.user,
        "prefs": await preferences.get_preferences(db, _agent_key(session)),
        "channel_options": preferences.CHANNEL_OPTIONS,
        "event_options": preferences.EVENT_OPTIONS,
        "themes": preferences.THEMES,
        "languages": preferences.LANGUAGES,
    })


@router.post("/settings")
async def save_settings(
    request: Request,
    session: PortalSession = Depends(require_support),
    db: AsyncSession = Depends(get_db),
):
    """Save the fields of the submitted tab."""
    form = await request.form()
    tab = form.get("tab", "")
    back = f"/support/settings?tab={tab if tab in dict(preferences.SETTINGS_TABS) else 'profile'}"
    agent = _agent_key(session)
    try:
        current = await preferences.get_preferences(db, agent)
        prefs = preferences.parse_preferences_form(form, current, tab)
    except FormValidationError as e:
        return redirect_to(back, error=e.message)
    await preferences.save_preferences(db, agent, prefs)
    return redirect_to(back, notice="Settings saved")
