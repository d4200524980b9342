"""
Laundry Portal - Support Tickets

Ticket thread rendering rules and the agent actions of the ticket detail
panel: take, resolve, escalate, refund from ticket and reply.
"""

import logging
import math
from typing import Literal, Optional

from pydantic import BaseModel, model_validator

from laundry_portal.admin import require_text
from laundry_portal.api_client import BackendClient
from laundry_portal.errors import FormValidationError

logger = logging.getLogger(__name__)

TICKET_STATUSES = ("open", "in_progress", "resolved", "escalated", "closed")
TICKET_PRIORITIES = ("low", "medium", "high", "critical")
TICKET_CATEGORIES = ("order_issue", "payment", "delivery", "quality", "refund", "account", "other")


# =============================================================================
# RESOLUTION
# =============================================================================

ResolutionKind = Literal["resolved", "refund", "rewash", "compensation"]

RESOLUTION_KINDS = ("resolved", "refund", "rewash", "compensation")


class Resolution(BaseModel):
    """How a ticket was closed out."""

    kind: ResolutionKind = "resolved"
    notes: str
    amount: Optional[float] = None

    @model_validator(mode="after")
    def check_amount(self):
        if self.kind == "refund" and (self.amount is None or not math.isfinite(self.amount) or self.amount <= 0):
            raise ValueError("A refund resolution needs a positive amount")
        if self.kind not in ("refund", "compensation"):
            self.amount = None
        return self

    @property
    def prefix(self) -> str:
        """Bracketed marker kept in the text for readers of the plain string."""
        if self.kind == "refund":
            return f"[REFUND: ₹{self.amount:g}] "
        if self.kind == "rewash":
            return "[REWASH SCHEDULED] "
        if self.kind == "compensation":
            return "[COMPENSATION PROVIDED] "
        return ""

    @property
    def text(self) -> str:
        return f"{self.prefix}{self.notes}"

    def to_payload(self) -> dict:
        payload = {"resolution": self.text, "resolutionType": self.kind}
        if self.amount is not None:
            payload["amount"] = self.amount
        return payload


def parse_resolution(kind: str, notes: Optional[str], amount: Optional[str] = None) -> Resolution:
    """
    Build a `Resolution` from the resolve form.

    Raises:
        FormValidationError: blank notes, unknown kind or a missing refund amount
    """
    notes = require_text(notes, "Please enter a resolution", field="resolution")
    if kind not in RESOLUTION_KINDS:
        raise FormValidationError("Please choose a resolution type", field="resolution_type")
    value = None
    if amount not in (None, ""):
        try:
            value = float(amount)
        except ValueError:
            raise FormValidationError("Please enter a valid amount", field="amount")
        if not math.isfinite(value):
            raise FormValidationError("Please enter a valid amount", field="amount")
    if kind == "refund" and (value is None or value <= 0):
        raise FormValidationError("Please enter the refund amount", field="amount")
    return Resolution(kind=kind, notes=notes, amount=value)


# =============================================================================
# THREAD
# =============================================================================

def visible_messages(ticket: dict, audience: str = "customer") -> list[dict]:
    """
    Messages of a ticket in chronological order.

    Internal notes are only ever returned to agents.
    """
    messages = list(ticket.get("messages") or [])
    if audience != "agent":
        messages = [m for m in messages if not m.get("isInternal")]
    return sorted(messages, key=lambda m: m.get("timestamp") or m.get("createdAt") or "")


def is_overdue(ticket: dict) -> bool:
    return bool((ticket.get("sla") or {}).get("isOverdue"))


def can_take(ticket: dict) -> bool:
    return ticket.get("status") == "open"


def is_closed(ticket: dict) -> bool:
    return ticket.get("status") in ("resolved", "closed")


# =============================================================================
# ACTIONS
# =============================================================================

async def take_ticket(backend: BackendClient, ticket_id: str, agent_id: Optional[str] = None) -> dict:
    """Claim an open ticket: assign it to the agent and move it to in_progress."""
    if agent_id:
        await backend.send_data("PUT", f"/support/tickets/{ticket_id}/assign", {"assignedTo": agent_id})
    data = await backend.send_data("PUT", f"/support/tickets/{ticket_id}/status", {"status": "in_progress"})
    logger.info("Ticket %s taken by %s", ticket_id, agent_id or "current agent")
    return data


async def resolve_ticket(backend: BackendClient, ticket_id: str, resolution: Resolution) -> dict:
    data = await backend.send_data("PUT", f"/support/tickets/{ticket_id}/resolve", resolution.to_payload())
    logger.info("Ticket %s resolved (%s)", ticket_id, resolution.kind)
    return data


async def escalate_ticket(
    backend: BackendClient,
    ticket_id: str,
    reason: Optional[str],
    escalated_to: Optional[str] = None,
) -> dict:
    reason = require_text(reason, "Please provide an escalation reason", field="reason")
    payload = {"reason": reason}
    if escalated_to:
        payload["escalatedTo"] = escalated_to
    data = await backend.send_data("PUT", f"/support/tickets/{ticket_id}/escalate", payload)
    logger.info("Ticket %s escalated", ticket_id)
    return data


async def refund_from_ticket(
    backend: BackendClient,
    ticket: dict,
    amount: Optional[str],
    reason: Optional[str],
) -> dict:
    """
    Raise a refund request linked to the ticket and its order.

    Raises:
        FormValidationError: missing/non-positive amount or blank reason
    """
    try:
        value = float(amount) if amount not in (None, "") else 0
    except ValueError:
        value = 0
    reason = (reason or "").strip()
    if not math.isfinite(value) or value <= 0 or not reason:
        raise FormValidationError("Please fill all fields")

    related_order = ticket.get("relatedOrder") or {}
    refund = await backend.create_refund({
        "orderId": related_order.get("_id") or related_order.get("id") or "",
        "amount": value,
        "reason": reason,
        "category": ticket.get("category") or "other",
        "ticketId": ticket.get("_id") or ticket.get("id"),
    })
    logger.info("Refund of %.2f requested from ticket %s", value, ticket.get("_id") or ticket.get("id"))
    return refund


async def send_message(
    backend: BackendClient,
    ticket_id: str,
    message: Optional[str],
    is_internal: bool = False,
) -> dict:
    text = require_text(message, "Message cannot be empty", field="message")
    return await backend.send_data(
        "POST",
        f"/support/tickets/{ticket_id}/messages",
        {"message": text, "isInternal": is_internal},
    )
