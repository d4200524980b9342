"""
Laundry Portal - Admin Dashboard Helpers

Shared list/filter/action machinery for the admin pages (complaints,
refunds, customers, orders, logistics partners, staff) and the support and
center-admin lists that follow the same pattern.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional
from urllib.parse import urlencode

from fastapi import Request
from pydantic import BaseModel, Field

from laundry_portal.api_client import BackendClient, build_query
from laundry_portal.config import settings
from laundry_portal.errors import ActionInProgress, ApiError, FormValidationError
from laundry_portal.schemas import Page, Pagination

logger = logging.getLogger(__name__)


# =============================================================================
# FILTERS & PAGINATION
# =============================================================================

class ListFilters(BaseModel):
    """Filter values of a list page plus its page/limit."""

    values: dict[str, Any] = Field(default_factory=dict)
    page: int = 1
    limit: int = settings.DEFAULT_PAGE_SIZE

    @classmethod
    def from_request(cls, request: Request, keys: tuple[str, ...], limit: Optional[int] = None) -> "ListFilters":
        """Read the given filter keys and the page number from the query string."""
        params = request.query_params
        values = {key: params.get(key, "") for key in keys}
        try:
            page = max(1, int(params.get("page", 1)))
        except ValueError:
            page = 1
        return cls(values=values, page=page, limit=limit or settings.DEFAULT_PAGE_SIZE)

    def with_change(self, key: str, value: Any) -> "ListFilters":
        """Change one filter; the page always goes back to 1."""
        values = dict(self.values)
        values[key] = value
        return ListFilters(values=values, page=1, limit=self.limit)

    def with_page(self, page: int) -> "ListFilters":
        return ListFilters(values=dict(self.values), page=max(1, page), limit=self.limit)

    def to_query(self) -> dict[str, str]:
        return build_query({**self.values, "page": self.page, "limit": self.limit})

    def page_url(self, path: str, page: int) -> str:
        query = build_query({**self.values, "page": page})
        return f"{path}?{urlencode(query)}"

    def get(self, key: str, default: Any = "") -> Any:
        return self.values.get(key, default)


def _extract_items(data: Any, key: str) -> list[dict]:
    if isinstance(data, list):
        return data
    items = data.get(key)
    if items is None:
        items = data.get("items") or []
    return items


async def fetch_page(backend: BackendClient, path: str, filters: ListFilters, key: str) -> Page:
    """
    Fetch one page of a backend list.

    The backend answers `{data: {<key>: [...], pagination: {...}}}`; lists
    without pagination are treated as a single page.
    """
    data = await backend.get_data(path, filters.to_query())
    items = _extract_items(data, key)
    pagination = data.get("pagination") if isinstance(data, dict) else None
    if pagination:
        return Page(items=items, pagination=Pagination.model_validate(pagination))
    return Page(
        items=items,
        pagination=Pagination(current=1, pages=1, total=len(items), limit=filters.limit),
    )


async def load_list(
    backend: BackendClient,
    path: str,
    filters: ListFilters,
    key: str,
) -> tuple[Page, Optional[str]]:
    """`fetch_page` for a page render: an error becomes the inline banner text."""
    try:
        return await fetch_page(backend, path, filters, key), None
    except ApiError as e:
        logger.error("Failed to load %s: %s", path, e)
        return Page(), e.message


def require_text(value: Optional[str], message: str, field: Optional[str] = None) -> str:
    """Return the stripped value or raise if it is blank."""
    text = (value or "").strip()
    if not text:
        raise FormValidationError(message, field=field)
    return text


# =============================================================================
# IN-FLIGHT ACTION GUARD
# =============================================================================

class InFlightActions:
    """
    Rejects a second submission of the same action on the same entity
    while the first is still running. Other actions stay available.
    """

    def __init__(self):
        self._active: set[tuple[str, str, str]] = set()

    def is_active(self, resource: str, entity_id: str, action: str) -> bool:
        return (resource, entity_id, action) in self._active

    @asynccontextmanager
    async def guard(self, resource: str, entity_id: str, action: str) -> AsyncIterator[None]:
        key = (resource, entity_id, action)
        if key in self._active:
            logger.info("Duplicate %s on %s %s rejected", action, resource, entity_id)
            raise ActionInProgress(":".join(key))
        self._active.add(key)
        try:
            yield
        finally:
            self._active.discard(key)

    def reset(self):
        """Forget all in-flight actions (useful for testing)."""
        self._active.clear()


# Process-wide guard shared by every portal
in_flight = InFlightActions()


# =============================================================================
# STATUS VOCABULARIES
# =============================================================================

ORDER_STATUSES = (
    "placed",
    "assigned_to_branch",
    "assigned_to_logistics_pickup",
    "picked",
    "in_process",
    "ready",
    "assigned_to_logistics_delivery",
    "out_for_delivery",
    "delivered",
    "cancelled",
)

COMPLAINT_STATUSES = ("open", "in_progress", "resolved", "escalated", "closed")
COMPLAINT_CATEGORIES = ("quality", "delay", "missing_item", "damaged", "payment", "other")
PRIORITIES = ("low", "medium", "high", "critical")
REFUND_STATUSES = ("requested", "approved", "processed", "completed", "rejected")

_BLUE = "text-blue-600 bg-blue-50 border-blue-200"
_GREEN = "text-green-600 bg-green-50 border-green-200"
_GRAY = "text-gray-600 bg-gray-50 border-gray-200"
_ORANGE = "text-orange-600 bg-orange-50 border-orange-200"
_PURPLE = "text-purple-600 bg-purple-50 border-purple-200"
_RED = "text-red-600 bg-red-50 border-red-200"
_YELLOW = "text-yellow-700 bg-yellow-50 border-yellow-200"

# kind -> status -> (css classes, icon name)
STATUS_STYLES: dict[str, dict[str, tuple[str, str]]] = {
    "order": {
        "placed": (_ORANGE, "alert-circle"),
        "assigned_to_branch": (_BLUE, "building"),
        "assigned_to_logistics_pickup": (_BLUE, "truck"),
        "picked": (_PURPLE, "package"),
        "in_process": (_PURPLE, "clock"),
        "ready": (_GREEN, "check"),
        "assigned_to_logistics_delivery": (_BLUE, "truck"),
        "out_for_delivery": (_BLUE, "truck"),
        "delivered": (_GREEN, "check-circle"),
        "cancelled": (_RED, "x-circle"),
    },
    "complaint": {
        "open": (_ORANGE, "alert-circle"),
        "in_progress": (_BLUE, "clock"),
        "resolved": (_GREEN, "check-circle"),
        "escalated": (_RED, "alert-triangle"),
        "closed": (_GRAY, "x-circle"),
    },
    "refund": {
        "requested": (_ORANGE, "clock"),
        "approved": (_BLUE, "check-circle"),
        "processed": (_PURPLE, "credit-card"),
        "completed": (_GREEN, "check-circle"),
        "rejected": (_RED, "x-circle"),
    },
    "priority": {
        "critical": ("bg-red-100 text-red-800", "alert-triangle"),
        "high": ("bg-orange-100 text-orange-800", "arrow-up"),
        "medium": ("bg-yellow-100 text-yellow-800", "minus"),
        "low": ("bg-green-100 text-green-800", "arrow-down"),
    },
    "risk": {
        "critical": (_RED, "alert-octagon"),
        "high": (_ORANGE, "alert-triangle"),
        "medium": (_YELLOW, "alert-circle"),
        "low": (_GREEN, "shield"),
    },
    "active": {
        "active": (_GREEN, "check-circle"),
        "inactive": (_GRAY, "x-circle"),
    },
}


def status_label(status: Optional[str]) -> str:
    if not status:
        return ""
    return status.replace("_", " ").title()


def status_style(kind: str, status: Optional[str]) -> dict[str, str]:
    """CSS classes, icon and label for a status badge; unknown values render gray."""
    css, icon = STATUS_STYLES.get(kind, {}).get(status or "", (_GRAY, "circle"))
    return {"css": css, "icon": icon, "label": status_label(status)}


# =============================================================================
# ORDER TRANSITIONS
# =============================================================================

# Manual transitions offered to admins; the backend accepts more
ORDER_NEXT_STATUSES: dict[str, tuple[str, ...]] = {
    "placed": ("assigned_to_branch", "cancelled"),
    "assigned_to_branch": ("in_process", "cancelled"),
    "in_process": ("ready", "cancelled"),
    "ready": ("out_for_delivery", "cancelled"),
    "out_for_delivery": ("delivered",),
}


def get_next_statuses(status: Optional[str]) -> tuple[str, ...]:
    return ORDER_NEXT_STATUSES.get(status or "", ())


# =============================================================================
# REFUND POLICY
# =============================================================================

APPROVE = "approve"
REJECT = "reject"
ESCALATE = "escalate"
PROCESS = "process"


def is_over_limit(refund: dict, limit: Optional[float] = None) -> bool:
    limit = settings.REFUND_APPROVAL_LIMIT if limit is None else limit
    return float(refund.get("amount") or 0) > limit


def refund_actions(refund: dict, limit: Optional[float] = None) -> list[str]:
    """
    Actions offered for a refund row.

    Mirrors the backend's approval limit for display only: over-limit
    refunds are escalated instead of approved.
    """
    status = refund.get("status")
    if status == "requested" and not refund.get("isEscalated"):
        first = ESCALATE if is_over_limit(refund, limit) else APPROVE
        return [first, REJECT]
    if status == "approved":
        return [PROCESS]
    return []
