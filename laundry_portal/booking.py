"""
Laundry Portal - Booking Wizard

Six-step order booking flow: Branch -> Service -> Items -> Address ->
Schedule -> Payment. The state machine below is pure (it only edits a
`BookingState`); `BookingService` wires it to the draft store and the
backend for the dependent previews and the final order submission.

Each selection helper returns the set of derived previews it invalidates
(`DELIVERY`, `PRICING`) so the caller knows what to refetch.
"""

import logging
from datetime import date
from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from laundry_portal import drafts
from laundry_portal.api_client import BackendClient
from laundry_portal.config import settings
from laundry_portal.errors import ApiError, FormValidationError, LoginRequired
from laundry_portal.models import BookingDraft
from laundry_portal.schemas import (
    Address,
    Branch,
    DeliveryInfo,
    OrderConfirmation,
    PricingResult,
    Service,
    ServiceItem,
)
from laundry_portal.timestamps import today_ist

logger = logging.getLogger(__name__)


# =============================================================================
# STEPS
# =============================================================================

STEP_BRANCH = 1
STEP_SERVICE = 2
STEP_ITEMS = 3
STEP_ADDRESS = 4
STEP_SCHEDULE = 5
STEP_PAYMENT = 6

STEPS = [
    (STEP_BRANCH, "Branch"),
    (STEP_SERVICE, "Service"),
    (STEP_ITEMS, "Items"),
    (STEP_ADDRESS, "Address"),
    (STEP_SCHEDULE, "Schedule"),
    (STEP_PAYMENT, "Payment"),
]

# Shown when `advance` is refused
STEP_HINTS = {
    STEP_BRANCH: "Please select a branch",
    STEP_SERVICE: "Please select a service",
    STEP_ITEMS: "Please add at least one item",
    STEP_ADDRESS: "Please select a serviceable pickup address",
    STEP_SCHEDULE: "Please choose a pickup date and time slot",
}

PAYMENT_METHODS = ("cod", "online")

# Derived previews
DELIVERY = "delivery"
PRICING = "pricing"


class BookingState(BaseModel):
    """Everything the wizard remembers between requests."""

    step: int = STEP_BRANCH
    branch: Optional[Branch] = None
    service: Optional[Service] = None
    items: dict[str, int] = Field(default_factory=dict)
    address: Optional[Address] = None
    pickup_date: Optional[str] = None
    time_slot: Optional[str] = None
    payment_method: str = "cod"
    special_instructions: str = ""
    is_express: bool = False

    delivery_info: Optional[DeliveryInfo] = None
    pricing: Optional[PricingResult] = None

    # Latest ticket issued per derived preview
    sequence: dict[str, int] = Field(default_factory=lambda: {DELIVERY: 0, PRICING: 0})

    order: Optional[OrderConfirmation] = None

    @property
    def address_id(self) -> Optional[str]:
        return self.address.id if self.address else None

    @property
    def total_quantity(self) -> int:
        return sum(self.items.values())

    @property
    def is_complete(self) -> bool:
        return self.order is not None


# =============================================================================
# REQUEST SEQUENCING
# =============================================================================

class RequestSequencer:
    """
    Monotonic tickets per derived value.

    A preview request takes a ticket before it goes out; its response may
    only be applied if no newer ticket was issued in the meantime.
    """

    def __init__(self, counters: dict[str, int]):
        self.counters = counters

    def issue(self, name: str) -> int:
        self.counters[name] = self.counters.get(name, 0) + 1
        return self.counters[name]

    def latest(self, name: str) -> int:
        return self.counters.get(name, 0)

    def is_current(self, name: str, ticket: int) -> bool:
        return ticket == self.latest(name)


# =============================================================================
# TRANSITIONS
# =============================================================================

def can_proceed(state: BookingState, step: Optional[int] = None) -> bool:
    """Whether the required selections of `step` (default: current) are made."""
    step = step or state.step
    if step == STEP_BRANCH:
        return state.branch is not None
    if step == STEP_SERVICE:
        return state.service is not None
    if step == STEP_ITEMS:
        return state.total_quantity > 0
    if step == STEP_ADDRESS:
        if state.address is None:
            return False
        return state.delivery_info is None or state.delivery_info.is_serviceable
    if step == STEP_SCHEDULE:
        return bool(state.pickup_date and state.time_slot)
    return step == STEP_PAYMENT


def advance(state: BookingState, is_authenticated: bool) -> BookingState:
    """
    Move to the next step.

    Raises:
        FormValidationError: the current step's selections are incomplete
        LoginRequired: leaving the items step without a customer session
    """
    if not can_proceed(state):
        raise FormValidationError(STEP_HINTS.get(state.step, "Please complete this step"))
    if state.step == STEP_ITEMS and not is_authenticated:
        raise LoginRequired(next_url="/book")
    if state.step < STEP_PAYMENT:
        state.step += 1
    return state


def back(state: BookingState) -> BookingState:
    if state.step > STEP_BRANCH:
        state.step -= 1
    return state


def go_to(state: BookingState, step: int) -> BookingState:
    """Jump back to an earlier step; completed steps are not re-validated."""
    if STEP_BRANCH <= step < state.step:
        state.step = step
    return state


# =============================================================================
# SELECTIONS
# =============================================================================

def select_branch(state: BookingState, branch: Branch) -> set[str]:
    changed = state.branch is None or state.branch.id != branch.id
    state.branch = branch
    if changed:
        # Service and item catalogs are branch-scoped
        state.service = None
        state.items = {}
        state.pricing = None
        state.delivery_info = None
    return {DELIVERY, PRICING} if changed else {DELIVERY}


def select_service(state: BookingState, service: Service) -> set[str]:
    """Select a service; item quantities are always cleared, even on reselect."""
    state.service = service
    state.items = {}
    return {PRICING}


def update_item_quantity(state: BookingState, item_id: str, delta: int) -> set[str]:
    quantity = max(0, state.items.get(item_id, 0) + delta)
    if quantity:
        state.items[item_id] = quantity
    else:
        state.items.pop(item_id, None)
    return {PRICING}


def set_express(state: BookingState, is_express: bool) -> set[str]:
    state.is_express = is_express
    return {PRICING, DELIVERY}


def select_address(state: BookingState, address: Address) -> set[str]:
    if state.address is None or state.address.id != address.id:
        state.delivery_info = None
    state.address = address
    return {DELIVERY}


def set_schedule(
    state: BookingState,
    pickup_date: str,
    time_slot: str,
    offered_slots: Optional[list[str]] = None,
) -> set[str]:
    if not pickup_date or not time_slot:
        raise FormValidationError(STEP_HINTS[STEP_SCHEDULE])
    if offered_slots is not None and time_slot not in offered_slots:
        raise FormValidationError("Please choose one of the available time slots", field="time_slot")
    try:
        chosen = date.fromisoformat(pickup_date)
    except ValueError:
        raise FormValidationError("Please choose a valid pickup date", field="pickup_date")
    if chosen < today_ist():
        raise FormValidationError("Pickup date cannot be in the past", field="pickup_date")
    state.pickup_date = pickup_date
    state.time_slot = time_slot
    return set()


def set_payment_method(state: BookingState, method: str, special_instructions: str = "") -> set[str]:
    if method not in PAYMENT_METHODS:
        raise FormValidationError("Please choose a payment method", field="payment_method")
    state.payment_method = method
    state.special_instructions = special_instructions.strip()
    return set()


# =============================================================================
# PAYLOADS & TOTALS
# =============================================================================

def build_order_items(state: BookingState) -> list[dict]:
    """Line items for pricing and order creation (positive quantities only)."""
    service_code = state.service.code if state.service else ""
    return [
        {
            "itemType": item_id,
            "service": service_code,
            "category": "normal",
            "quantity": quantity,
        }
        for item_id, quantity in state.items.items()
        if quantity > 0
    ]


def build_order_payload(state: BookingState) -> dict:
    """
    Assemble the `POST /customer/orders` body.

    Raises:
        FormValidationError: a required selection is missing
    """
    for step in range(STEP_BRANCH, STEP_PAYMENT):
        if not can_proceed(state, step):
            raise FormValidationError(STEP_HINTS[step])

    payload = {
        "items": build_order_items(state),
        "pickupAddressId": state.address.id,
        "deliveryAddressId": state.address.id,
        "pickupDate": state.pickup_date,
        "pickupTimeSlot": state.time_slot,
        "paymentMethod": state.payment_method,
        "isExpress": state.is_express,
        "specialInstructions": state.special_instructions,
        "branchId": state.branch.id,
    }
    if state.delivery_info is not None:
        payload["deliveryDetails"] = {
            "distance": state.delivery_info.distance,
            "deliveryCharge": state.delivery_info.delivery_charge,
            "isFallbackPricing": state.delivery_info.is_fallback,
        }
    return payload


def local_subtotal(state: BookingState, catalog: list[ServiceItem]) -> float:
    """Estimate from base prices until the pricing preview arrives."""
    prices = {item.id: item.base_price for item in catalog}
    total = sum(prices.get(item_id, 0) * quantity for item_id, quantity in state.items.items())
    if state.is_express:
        total *= settings.EXPRESS_MULTIPLIER
    return total


def display_subtotal(state: BookingState, catalog: list[ServiceItem]) -> float:
    if state.pricing is not None:
        return state.pricing.subtotal
    return local_subtotal(state, catalog)


def items_for_service(catalog: dict, service: Optional[Service]) -> list[ServiceItem]:
    """Pick the service's items out of a branch catalog keyed by service code."""
    if not service or not isinstance(catalog, dict):
        return []
    return [ServiceItem.model_validate(item) for item in catalog.get(service.code) or []]


# =============================================================================
# LIFECYCLE
# =============================================================================

def reset() -> BookingState:
    return BookingState()


def mark_success(state: BookingState, order: OrderConfirmation) -> BookingState:
    state.order = order
    return state


def reschedule(state: BookingState) -> BookingState:
    """
    Re-enter the schedule step after a successful order.

    No order-update call exists for this path: the next submit places a
    new order with the remaining selections.
    """
    if state.order is not None:
        logger.info("Reschedule requested after order %s; re-entering schedule step", state.order.reference)
    state.order = None
    state.step = STEP_SCHEDULE
    return state


# =============================================================================
# ORCHESTRATION
# =============================================================================

class BookingService:
    """
    Runs the wizard against one stored draft and a backend client.

    Every preview response is applied to a freshly reloaded draft, and only
    when its ticket is still the latest one; a draft that was closed in the
    meantime silently drops the response.
    """

    def __init__(self, db: AsyncSession, draft: BookingDraft, backend: BackendClient):
        self.db = db
        self.draft = draft
        self.backend = backend
        self.state = BookingState.model_validate(draft.state_dict)

    async def save(self, state: Optional[BookingState] = None) -> None:
        if state is not None:
            self.state = state
        await drafts.save_state(self.db, self.draft, self.state.model_dump(mode="json"))

    async def reload(self) -> Optional[BookingState]:
        """Re-read the draft; None if it has been discarded."""
        draft = await drafts.reload_draft(self.db, self.draft.id)
        if draft is None:
            return None
        self.draft = draft
        self.state = BookingState.model_validate(draft.state_dict)
        return self.state

    async def apply(self, changes: set[str]) -> BookingState:
        """Persist the current state, then refetch the previews it invalidated."""
        await self.save()
        if DELIVERY in changes:
            await self.refresh_delivery()
        if PRICING in changes:
            await self.refresh_pricing()
        return self.state

    async def _apply_result(self, name: str, ticket: int, field: str, value) -> bool:
        state = await self.reload()
        if state is None:
            logger.debug("Draft %s closed; dropping %s response", self.draft.id, name)
            return False
        if not RequestSequencer(state.sequence).is_current(name, ticket):
            logger.debug(
                "Discarding stale %s response (ticket %s, latest %s)",
                name, ticket, state.sequence.get(name),
            )
            return False
        setattr(state, field, value)
        await self.save(state)
        return True

    async def refresh_delivery(self) -> bool:
        """Fetch the delivery preview for the selected branch and address."""
        state = self.state
        if state.branch is None or state.address is None:
            return False

        ticket = RequestSequencer(state.sequence).issue(DELIVERY)
        await self.save(state)

        try:
            data = await self.backend.calculate_delivery(
                pickup_address={
                    "addressLine1": state.address.address_line1,
                    "city": state.address.city,
                    "pincode": state.address.pincode,
                },
                branch_id=state.branch.id,
                is_express=state.is_express,
            )
        except ApiError as e:
            logger.warning("Delivery calculation failed: %s", e)
            return False

        return await self._apply_result(DELIVERY, ticket, "delivery_info", DeliveryInfo.model_validate(data))

    async def refresh_pricing(self) -> bool:
        """Fetch the pricing preview; cleared outright when no items remain."""
        state = self.state
        sequencer = RequestSequencer(state.sequence)
        order_items = build_order_items(state)

        if not order_items or state.service is None:
            # Outdate any in-flight preview as well
            sequencer.issue(PRICING)
            state.pricing = None
            await self.save(state)
            return False

        ticket = sequencer.issue(PRICING)
        await self.save(state)

        try:
            data = await self.backend.calculate_pricing(order_items, state.is_express)
        except ApiError as e:
            logger.warning("Pricing calculation failed: %s", e)
            return False

        return await self._apply_result(PRICING, ticket, "pricing", PricingResult.model_validate(data))

    async def load_step_data(self, is_authenticated: bool) -> dict:
        """
        Fetch what the current step renders.

        Catalog failures are logged and shown as an inline error; time slots
        fall back to the default list.
        """
        state = self.state
        data = {
            "branches": [],
            "services": [],
            "catalog": [],
            "addresses": [],
            "time_slots": [],
            "load_error": None,
        }

        try:
            if state.step == STEP_BRANCH:
                data["branches"] = [Branch.model_validate(b) for b in await self.backend.get_branches()]
            if state.step == STEP_SERVICE and state.branch:
                data["services"] = [
                    Service.model_validate(s)
                    for s in await self.backend.get_branch_services(state.branch.id)
                ]
            if state.step in (STEP_ITEMS, STEP_PAYMENT):
                data["catalog"] = await self.service_catalog()
            if state.step == STEP_ADDRESS and is_authenticated:
                data["addresses"] = [Address.model_validate(a) for a in await self.backend.get_addresses()]
        except ApiError as e:
            logger.error("Failed to load booking step %s data: %s", state.step, e)
            data["load_error"] = e.message

        if state.step == STEP_SCHEDULE:
            data["time_slots"] = await self.time_slots()

        return data

    async def time_slots(self) -> list[str]:
        """Pickup slots from the backend, or the default list when it has none."""
        try:
            return await self.backend.get_time_slots() or list(settings.DEFAULT_TIME_SLOTS)
        except ApiError as e:
            logger.warning("Time slots unavailable, using defaults: %s", e)
            return list(settings.DEFAULT_TIME_SLOTS)

    async def service_catalog(self) -> list[ServiceItem]:
        """Items the selected service offers at the selected branch."""
        state = self.state
        if state.branch is None or state.service is None:
            return []
        return items_for_service(await self.backend.get_branch_items(state.branch.id), state.service)

    async def change_item(self, item_id: str, delta: int) -> None:
        """
        Change an item quantity.

        Raises:
            FormValidationError: no service selected, or the item is not in its catalog
            ApiError: the catalog could not be loaded
        """
        if self.state.service is None:
            raise FormValidationError(STEP_HINTS[STEP_SERVICE])
        catalog = await self.service_catalog()
        if item_id not in {item.id for item in catalog}:
            raise FormValidationError(STEP_HINTS[STEP_ITEMS], field="item_id")
        await self.apply(update_item_quantity(self.state, item_id, delta))

    async def preselect_default_address(self) -> Optional[Address]:
        """On entering the address step, pick the default (or first) address."""
        if self.state.address is not None:
            return self.state.address
        try:
            addresses = [Address.model_validate(a) for a in await self.backend.get_addresses()]
        except ApiError as e:
            logger.warning("Could not load addresses: %s", e)
            return None
        chosen = next((a for a in addresses if a.is_default), addresses[0] if addresses else None)
        if chosen is not None:
            await self.apply(select_address(self.state, chosen))
        return chosen

    async def choose_address(self, address_id: str) -> Address:
        addresses = [Address.model_validate(a) for a in await self.backend.get_addresses()]
        address = next((a for a in addresses if a.id == address_id), None)
        if address is None:
            raise FormValidationError("Please select a pickup address", field="address_id")
        await self.apply(select_address(self.state, address))
        return address

    async def add_address(self, fields: dict) -> Address:
        """
        Create an address and make it the selection.

        The first address a customer saves becomes their default.
        """
        required = ("name", "phone", "address_line1", "city", "pincode")
        if any(not (fields.get(key) or "").strip() for key in required):
            raise FormValidationError("Please fill in all required address fields")

        existing = await self.backend.get_addresses()
        created = await self.backend.add_address({
            "name": fields["name"].strip(),
            "phone": fields["phone"].strip(),
            "addressLine1": fields["address_line1"].strip(),
            "landmark": (fields.get("landmark") or "").strip(),
            "city": fields["city"].strip(),
            "pincode": fields["pincode"].strip(),
            "isDefault": len(existing) == 0,
        })
        address = Address.model_validate(created)
        logger.info("Added address %s to booking draft %s", address.id, self.draft.id)
        await self.apply(select_address(self.state, address))
        return address

    async def submit(self, is_authenticated: bool) -> OrderConfirmation:
        """
        Place the order. On failure the wizard stays on the payment step.

        Raises:
            LoginRequired: no customer session
            FormValidationError: a selection is missing
            ApiError: the backend refused the order
        """
        if not is_authenticated:
            raise LoginRequired(next_url="/book")
        if self.state.is_complete:
            return self.state.order

        payload = build_order_payload(self.state)
        created = await self.backend.create_order(payload)
        order = OrderConfirmation.model_validate(created)
        logger.info("Order %s placed from booking draft %s", order.reference, self.draft.id)

        state = await self.reload() or self.state
        mark_success(state, order)
        await self.save(state)
        return order
