"""
Laundry Portal - Customer Routes

Order history of the signed-in customer.
"""

from fastapi import APIRouter, Request, Depends
from fastapi.responses import HTMLResponse

from laundry_portal.admin import ORDER_STATUSES, ListFilters, load_list
from laundry_portal.api_client import BackendClient, customer_backend
from laundry_portal.auth import PortalSession, require_customer
from laundry_portal.templating import render

router = APIRouter(prefix="/orders")

ORDER_FILTERS = ("status", "search")


@router.get("", response_class=HTMLResponse)
async def order_history(
    request: Request,
    session: PortalSession = Depends(require_customer),
    backend: BackendClient = Depends(customer_backend),
):
    """The customer's orders, newest first, with a status filter and search."""
    filters = ListFilters.from_request(request, ORDER_FILTERS)
    page, error = await load_list(backend, "/customer/orders", filters, "orders")
    return render(request, "customer/orders.html", {
        "filters": filters,
        "page": page,
        "list_error": error,
        "statuses": ORDER_STATUSES,
    })
