"""
Laundry Portal - Booking Wizard Routes

Every wizard interaction is a small form POST that edits the stored draft
and redirects back to `/book`, which renders the current step.
"""

import logging

from fastapi import APIRouter, Request, Depends, Form
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from laundry_portal import booking, drafts
from laundry_portal.admin import in_flight
from laundry_portal.api_client import BackendClient, customer_backend
from laundry_portal.auth import Portal, get_portal_session
from laundry_portal.booking import BookingService
from laundry_portal.database import get_db
from laundry_portal.errors import ApiError, FormValidationError, LoginRequired
from laundry_portal.schemas import Branch, Service
from laundry_portal.templating import render, redirect_to
from laundry_portal.timestamps import today_ist

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/book")

WIZARD_URL = "/book"


async def get_booking_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
    backend: BackendClient = Depends(customer_backend),
) -> BookingService:
    """The wizard of the current browser, opening a fresh draft if it has none."""
    draft, _ = await drafts.open_draft(db, request)
    return BookingService(db, draft, backend)


def is_customer(request: Request) -> bool:
    return get_portal_session(request, Portal.CUSTOMER) is not None


def back_to_wizard(service: BookingService, notice: str = None, error: str = None) -> RedirectResponse:
    response = redirect_to(WIZARD_URL, notice=notice, error=error)
    drafts.set_draft_cookie(response, service.draft.id)
    return response


def login_redirect(e: LoginRequired, service: BookingService) -> RedirectResponse:
    response = redirect_to(f"/login?next={e.next_url}", error=e.message)
    drafts.set_draft_cookie(response, service.draft.id)
    return response


# =============================================================================
# WIZARD PAGE
# =============================================================================

@router.get("", response_class=HTMLResponse)
async def wizard_page(request: Request, service: BookingService = Depends(get_booking_service)):
    """Render the current step (or the confirmation once the order is placed)."""
    authenticated = is_customer(request)
    state = service.state

    if state.is_complete:
        response = render(request, "booking/success.html", {"state": state})
        drafts.set_draft_cookie(response, service.draft.id)
        return response

    if state.step == booking.STEP_ADDRESS and authenticated:
        await service.preselect_default_address()
        state = service.state

    data = await service.load_step_data(authenticated)
    response = render(
        request,
        "booking/wizard.html",
        {
            "state": state,
            "steps": booking.STEPS,
            "data": data,
            "can_proceed": booking.can_proceed(state),
            "subtotal": booking.display_subtotal(state, data["catalog"]),
            "is_authenticated": authenticated,
            "min_date": today_ist().isoformat(),
            "submitting": in_flight.is_active("booking", service.draft.id, "submit"),
        },
    )
    drafts.set_draft_cookie(response, service.draft.id)
    return response


# =============================================================================
# SELECTIONS
# =============================================================================

@router.post("/branch")
async def choose_branch(
    branch_id: str = Form(...),
    service: BookingService = Depends(get_booking_service),
):
    try:
        branches = [Branch.model_validate(b) for b in await service.backend.get_branches()]
    except ApiError as e:
        return back_to_wizard(service, error=e.message)

    branch = next((b for b in branches if b.id == branch_id), None)
    if branch is None:
        return back_to_wizard(service, error=booking.STEP_HINTS[booking.STEP_BRANCH])

    await service.apply(booking.select_branch(service.state, branch))
    return back_to_wizard(service)


@router.post("/service")
async def choose_service(
    service_id: str = Form(...),
    service: BookingService = Depends(get_booking_service),
):
    state = service.state
    if state.branch is None:
        return back_to_wizard(service, error=booking.STEP_HINTS[booking.STEP_BRANCH])
    try:
        offered = [Service.model_validate(s) for s in await service.backend.get_branch_services(state.branch.id)]
    except ApiError as e:
        return back_to_wizard(service, error=e.message)

    chosen = next((s for s in offered if s.id == service_id or s.code == service_id), None)
    if chosen is None:
        return back_to_wizard(service, error=booking.STEP_HINTS[booking.STEP_SERVICE])

    await service.apply(booking.select_service(state, chosen))
    return back_to_wizard(service)


@router.post("/items")
async def change_item_quantity(
    item_id: str = Form(...),
    delta: int = Form(...),
    service: BookingService = Depends(get_booking_service),
):
    try:
        await service.change_item(item_id, delta)
    except (FormValidationError, ApiError) as e:
        return back_to_wizard(service, error=e.message)
    return back_to_wizard(service)


@router.post("/express")
async def toggle_express(
    is_express: str = Form(""),
    service: BookingService = Depends(get_booking_service),
):
    enabled = is_express in ("true", "on", "1", "yes")
    await service.apply(booking.set_express(service.state, enabled))
    return back_to_wizard(service)


@router.post("/address/select")
async def choose_address(
    request: Request,
    address_id: str = Form(...),
    service: BookingService = Depends(get_booking_service),
):
    if not is_customer(request):
        return login_redirect(LoginRequired(next_url=WIZARD_URL), service)
    try:
        await service.choose_address(address_id)
    except (FormValidationError, ApiError) as e:
        return back_to_wizard(service, error=e.message)
    return back_to_wizard(service)


@router.post("/address")
async def add_address(
    request: Request,
    name: str = Form(""),
    phone: str = Form(""),
    address_line1: str = Form(""),
    landmark: str = Form(""),
    city: str = Form(""),
    pincode: str = Form(""),
    service: BookingService = Depends(get_booking_service),
):
    """Address sub-form: save a new address and select it."""
    if not is_customer(request):
        return login_redirect(LoginRequired(next_url=WIZARD_URL), service)
    try:
        await service.add_address({
            "name": name,
            "phone": phone,
            "address_line1": address_line1,
            "landmark": landmark,
            "city": city,
            "pincode": pincode,
        })
    except (FormValidationError, ApiError) as e:
        return back_to_wizard(service, error=e.message)
    return back_to_wizard(service, notice="Address added!")


@router.post("/schedule")
async def choose_schedule(
    pickup_date: str = Form(""),
    time_slot: str = Form(""),
    service: BookingService = Depends(get_booking_service),
):
    try:
        changes = booking.set_schedule(service.state, pickup_date, time_slot, await service.time_slots())
    except FormValidationError as e:
        return back_to_wizard(service, error=e.message)
    await service.apply(changes)
    return back_to_wizard(service)


@router.post("/payment")
async def choose_payment(
    payment_method: str = Form("cod"),
    special_instructions: str = Form(""),
    service: BookingService = Depends(get_booking_service),
):
    try:
        changes = booking.set_payment_method(service.state, payment_method, special_instructions)
    except FormValidationError as e:
        return back_to_wizard(service, error=e.message)
    await service.apply(changes)
    return back_to_wizard(service)


# =============================================================================
# NAVIGATION
# =============================================================================

@router.post("/next")
async def next_step(request: Request, service: BookingService = Depends(get_booking_service)):
    try:
        booking.advance(service.state, is_customer(request))
    except LoginRequired as e:
        return login_redirect(e, service)
    except FormValidationError as e:
        return back_to_wizard(service, error=e.message)
    await service.save()
    return back_to_wizard(service)


@router.post("/back")
async def previous_step(service: BookingService = Depends(get_booking_service)):
    booking.back(service.state)
    await service.save()
    return back_to_wizard(service)


@router.post("/goto/{step}")
async def jump_to_step(step: int, service: BookingService = Depends(get_booking_service)):
    """Revisit an earlier step, e.g. "Change branch" from the summary."""
    booking.go_to(service.state, step)
    await service.save()
    return back_to_wizard(service)


# =============================================================================
# SUBMISSION & LIFECYCLE
# =============================================================================

@router.post("/submit")
async def submit_order(request: Request, service: BookingService = Depends(get_booking_service)):
    """Place the order; on failure the wizard stays on the payment step."""
    try:
        async with in_flight.guard("booking", service.draft.id, "submit"):
            order = await service.submit(is_customer(request))
    except LoginRequired as e:
        return login_redirect(e, service)
    except (FormValidationError, ApiError) as e:
        logger.warning("Order submission failed for draft %s: %s", service.draft.id, e)
        return back_to_wizard(service, error=e.message or "Failed to create order")
    return back_to_wizard(service, notice=f"Order {order.reference} placed successfully!")


@router.post("/reschedule")
async def reschedule_order(service: BookingService = Depends(get_booking_service)):
    booking.reschedule(service.state)
    await service.save()
    return back_to_wizard(service)


@router.post("/close")
async def close_wizard(request: Request, db: AsyncSession = Depends(get_db)):
    """Close the wizard: the draft is deleted and the next visit starts over."""
    await drafts.discard_draft(db, drafts.read_draft_id(request))
    response = redirect_to("/")
    drafts.clear_draft_cookie(response)
    return response
