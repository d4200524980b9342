"""
Laundry Portal - Backend API Client

Thin async wrapper over the laundry REST backend. Adds the bearer token,
sends JSON, and turns every failure into an `ApiError` carrying the
server's own message. The backend wraps payloads as
`{"success": bool, "data": ..., "message": str}`.
"""

import logging
from typing import Any, AsyncIterator, Optional

import httpx
from fastapi import Depends, Request

from laundry_portal.auth import get_portal_session
from laundry_portal.config import settings
from laundry_portal.errors import ApiError

logger = logging.getLogger(__name__)


def build_query(params: Optional[dict]) -> dict[str, str]:
    """
    Convert a filter dict into query parameters.

    Empty strings and None are dropped (an unset filter), booleans are
    rendered the way the backend parses them.
    """
    query: dict[str, str] = {}
    if not params:
        return query
    for key, value in params.items():
        if value is None or value == "":
            continue
        if isinstance(value, bool):
            query[key] = "true" if value else "false"
        elif isinstance(value, (list, tuple)):
            query[key] = ",".join(str(v) for v in value)
        else:
            query[key] = str(value)
    return query


def handle_response(response: httpx.Response) -> dict:
    """Decode a backend response or raise `ApiError` with its message."""
    content_type = response.headers.get("content-type", "")
    if "application/json" not in content_type:
        logger.error(
            "Non-JSON response from %s %s: %s",
            response.request.method, response.request.url, response.text[:200],
        )
        raise ApiError(
            f"Server returned non-JSON response. Status: {response.status_code}",
            status_code=response.status_code,
        )

    try:
        data = response.json()
    except ValueError:
        raise ApiError(
            f"Server returned non-JSON response. Status: {response.status_code}",
            status_code=response.status_code,
        )

    if not isinstance(data, dict):
        data = {"data": data}

    if not response.is_success or data.get("success") is False:
        message = data.get("message") or "API request failed"
        logger.warning(
            "Backend rejected %s %s (%s): %s",
            response.request.method, response.request.url.path, response.status_code, message,
        )
        raise ApiError(message, status_code=response.status_code, payload=data)

    return data


class BackendClient:
    """
    Async client for the laundry backend.

    Use as an async context manager; one instance per request.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self.token = token
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url + "/",
            transport=transport,
            timeout=timeout or settings.API_TIMEOUT_SECONDS,
        )

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Any = None,
    ) -> httpx.Response:
        try:
            return await self._client.request(
                method,
                path.lstrip("/"),
                params=build_query(params),
                json=json,
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            logger.error("Backend request %s %s failed: %s", method, path, e)
            raise ApiError("Unable to reach the server. Please try again.") from e

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Any = None,
    ) -> dict:
        """Send a request and return the decoded envelope."""
        response = await self._send(method, path, params=params, json=json)
        return handle_response(response)

    async def get_data(self, path: str, params: Optional[dict] = None) -> Any:
        envelope = await self.request("GET", path, params=params)
        return envelope.get("data") or {}

    async def send_data(self, method: str, path: str, payload: Optional[dict] = None) -> Any:
        envelope = await self.request(method, path, json=payload)
        return envelope.get("data") or {}

    async def download(self, path: str, params: Optional[dict] = None) -> tuple[bytes, str]:
        """Fetch a file-like response (e.g. a CSV export) as raw bytes."""
        response = await self._send("GET", path, params=params)
        if not response.is_success:
            handle_response(response)
            raise ApiError("API request failed", status_code=response.status_code)
        return response.content, response.headers.get("content-type", "application/octet-stream")

    # =========================================================================
    # AUTHENTICATION
    # =========================================================================

    async def login(self, email: str, password: str) -> dict:
        return await self.send_data("POST", "/auth/login", {"email": email, "password": password})

    async def center_admin_login(self, email: str, password: str) -> dict:
        return await self.send_data(
            "POST", "/center-admin/auth/login", {"email": email, "password": password}
        )

    async def center_admin_verify_mfa(
        self,
        mfa_token: str,
        otp: Optional[str] = None,
        backup_code: Optional[str] = None,
    ) -> dict:
        return await self.send_data(
            "POST",
            "/center-admin/auth/verify-mfa",
            {"mfaToken": mfa_token, "otp": otp, "backupCode": backup_code},
        )

    async def center_admin_logout(self) -> dict:
        return await self.send_data("POST", "/center-admin/auth/logout")

    # =========================================================================
    # CATALOG & PRICING PREVIEWS
    # =========================================================================

    async def get_branches(self) -> list[dict]:
        data = await self.get_data("/services/branches")
        return data.get("branches") or []

    async def get_branch_services(self, branch_id: str) -> list[dict]:
        data = await self.get_data(f"/services/branch/{branch_id}")
        return data.get("services") or []

    async def get_branch_items(self, branch_id: str) -> dict[str, list[dict]]:
        """Items offered by a branch, keyed by service code."""
        return await self.get_data(f"/service-items/branch/{branch_id}")

    async def get_time_slots(self) -> list[str]:
        data = await self.get_data("/services/time-slots")
        return data.get("timeSlots") or []

    async def calculate_pricing(self, items: list[dict], is_express: bool) -> dict:
        return await self.send_data(
            "POST", "/services/calculate-pricing", {"items": items, "isExpress": is_express}
        )

    async def calculate_delivery(self, pickup_address: dict, branch_id: str, is_express: bool) -> dict:
        return await self.send_data(
            "POST",
            "/delivery/calculate-distance",
            {"pickupAddress": pickup_address, "branchId": branch_id, "isExpress": is_express},
        )

    # =========================================================================
    # CUSTOMER
    # =========================================================================

    async def get_addresses(self) -> list[dict]:
        data = await self.get_data("/customer/addresses")
        return data.get("addresses") or []

    async def add_address(self, address: dict) -> dict:
        data = await self.send_data("POST", "/customer/addresses", address)
        return data.get("address") or {}

    async def create_order(self, order: dict) -> dict:
        data = await self.send_data("POST", "/customer/orders", order)
        return data.get("order") or {}

    # =========================================================================
    # ADMIN
    # =========================================================================

    async def get_support_agents(self) -> list[dict]:
        data = await self.get_data("/admin/support-agents")
        return data.get("agents") or data.get("data") or []

    async def get_admin_branches(self) -> list[dict]:
        data = await self.get_data("/admin/branches")
        if isinstance(data, list):
            return data
        return data.get("branches") or []

    async def get_logistics_partners(self, params: Optional[dict] = None) -> list[dict]:
        data = await self.get_data("/admin/logistics-partners", params)
        if isinstance(data, list):
            return data
        return data.get("partners") or []

    # Complaints
    async def assign_complaint(self, complaint_id: str, agent_id: str) -> dict:
        return await self.send_data("PUT", f"/admin/complaints/{complaint_id}/assign", {"agentId": agent_id})

    async def update_complaint_status(
        self, complaint_id: str, status: str, resolution: Optional[str] = None
    ) -> dict:
        return await self.send_data(
            "PUT",
            f"/admin/complaints/{complaint_id}/status",
            {"status": status, "resolution": resolution},
        )

    # Refunds
    async def create_refund(self, refund: dict) -> dict:
        data = await self.send_data("POST", "/admin/refunds", refund)
        return data.get("refund") or data

    async def approve_refund(self, refund_id: str, notes: str = "") -> dict:
        return await self.send_data("PUT", f"/admin/refunds/{refund_id}/approve", {"notes": notes})

    async def reject_refund(self, refund_id: str, reason: str) -> dict:
        return await self.send_data("PUT", f"/admin/refunds/{refund_id}/reject", {"reason": reason})

    async def escalate_refund(self, refund_id: str, reason: str) -> dict:
        return await self.send_data("PUT", f"/admin/refunds/{refund_id}/escalate", {"reason": reason})

    async def process_refund(self, refund_id: str) -> dict:
        return await self.send_data("PUT", f"/admin/refunds/{refund_id}/process")

    # Customers
    async def toggle_customer_status(self, customer_id: str) -> dict:
        return await self.send_data("PUT", f"/admin/customers/{customer_id}/toggle-status")

    async def update_customer_vip(self, customer_id: str, is_vip: bool) -> dict:
        return await self.send_data("PUT", f"/admin/customers/{customer_id}/vip", {"isVIP": is_vip})

    # Orders
    async def update_order_status(self, order_id: str, status: str, notes: str = "") -> dict:
        return await self.send_data(
            "PUT", f"/admin/orders/{order_id}/status", {"status": status, "notes": notes}
        )

    async def assign_order_branch(self, order_id: str, branch_id: str) -> dict:
        return await self.send_data("PUT", f"/admin/orders/{order_id}/assign-branch", {"branchId": branch_id})

    async def assign_order_logistics(self, order_id: str, partner_id: str, leg: str = "pickup") -> dict:
        return await self.send_data(
            "PUT",
            f"/admin/orders/{order_id}/assign-logistics",
            {"logisticsPartnerId": partner_id, "type": leg},
        )

    # Logistics partners
    async def toggle_logistics_status(self, partner_id: str) -> dict:
        return await self.send_data("PUT", f"/admin/logistics-partners/{partner_id}/toggle-status")

    # Staff & center admins
    async def create_staff(self, staff: dict) -> dict:
        return await self.send_data("POST", "/admin/staff", staff)

    async def toggle_staff_status(self, staff_id: str) -> dict:
        return await self.send_data("PATCH", f"/admin/staff/{staff_id}/toggle-status")

    async def create_center_admin(self, center_admin: dict) -> dict:
        return await self.send_data("POST", "/admin/center-admins", center_admin)

    # =========================================================================
    # CENTER ADMIN
    # =========================================================================

    async def get_center_admin_branches(self) -> list[dict]:
        data = await self.get_data("/center-admin/branches")
        if isinstance(data, list):
            return data
        return data.get("branches") or []

    async def create_user(self, user: dict) -> dict:
        return await self.send_data("POST", "/center-admin/users", user)

    async def update_user_role(self, user_id: str, role: str, assigned_branch: Optional[str] = None) -> dict:
        return await self.send_data(
            "PATCH",
            f"/center-admin/users/{user_id}/role",
            {"role": role, "assignedBranch": assigned_branch},
        )

    async def update_user_status(self, user_id: str, is_active: bool) -> dict:
        return await self.send_data("PATCH", f"/center-admin/users/{user_id}/status", {"isActive": is_active})

    async def export_audit_logs(self, export_format: str, filters: Optional[dict] = None) -> tuple[bytes, str]:
        return await self.download("/center-admin/audit/export", {**(filters or {}), "format": export_format})

    async def get_audit_log(self, log_id: str) -> dict:
        data = await self.get_data(f"/center-admin/audit/logs/{log_id}")
        return data.get("log") or {}

    async def get_audit_stats(self, timeframe: str = "30d") -> dict:
        return await self.get_data("/center-admin/audit/stats", {"timeframe": timeframe})

    async def get_activity_summary(self) -> dict:
        data = await self.get_data("/center-admin/audit/activity-summary")
        return data.get("summary") or {}

    # =========================================================================
    # SUPPORT
    # =========================================================================

    async def get_ticket(self, ticket_id: str) -> dict:
        data = await self.get_data(f"/support/tickets/{ticket_id}")
        return data.get("ticket") or data


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_backend_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Transport for backend calls; `None` selects httpx's network transport."""
    return None


def backend_for(portal: Optional[str]):
    """
    Build a dependency yielding a `BackendClient` authenticated as the
    signed-in user of `portal` (anonymous when nobody is signed in, or
    when `portal` is None).
    """

    async def _backend(
        request: Request,
        transport: Optional[httpx.AsyncBaseTransport] = Depends(get_backend_transport),
    ) -> AsyncIterator[BackendClient]:
        session = get_portal_session(request, portal) if portal else None
        async with BackendClient(
            token=session.token if session else None,
            transport=transport,
        ) as client:
            yield client

    _backend.__name__ = f"{portal or 'anonymous'}_backend"
    return _backend


anonymous_backend = backend_for(None)
customer_backend = backend_for("customer")
admin_backend = backend_for("admin")
support_backend = backend_for("support")
center_admin_backend = backend_for("center_admin")
