"""
Laundry Portal - Template Environment

One Jinja2 environment shared by every router, with the display filters the
pages need.
"""

from typing import Optional
from urllib.parse import urlencode

from fastapi import Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates

from laundry_portal.admin import status_style, status_label
from laundry_portal.auth import get_current_session, get_signed_in_portals
from laundry_portal.config import settings, TEMPLATES_DIR
from laundry_portal.csrf import get_csrf_token, CSRF_FORM_FIELD
from laundry_portal.timestamps import format_ist, format_pickup_date


def inr(value: Optional[float]) -> str:
    """Format an amount as rupees, e.g. `₹1,250` or `₹62.50`."""
    if value is None or value == "":
        return "₹0"
    amount = float(value)
    if amount == int(amount):
        return f"₹{int(amount):,}"
    return f"₹{amount:,.2f}"


templates = Jinja2Templates(directory=TEMPLATES_DIR)

templates.env.filters["inr"] = inr
templates.env.filters["ist"] = format_ist
templates.env.filters["pickup_date"] = format_pickup_date
templates.env.filters["status_label"] = status_label
templates.env.globals["status_style"] = status_style
templates.env.globals["csrf_token"] = get_csrf_token
templates.env.globals["CSRF_FORM_FIELD"] = CSRF_FORM_FIELD
templates.env.globals["app_name"] = settings.APP_NAME
templates.env.globals["support_phone"] = settings.SUPPORT_PHONE


def render(request: Request, name: str, context: Optional[dict] = None, status_code: int = 200):
    """Render a page with the notice/error passed along by a redirect."""
    page = {
        "notice": request.query_params.get("notice"),
        "error": request.query_params.get("error"),
        "session": get_current_session(request),
        "signed_in_portals": get_signed_in_portals(request),
    }
    page.update(context or {})
    return templates.TemplateResponse(request, name, page, status_code=status_code)


def redirect_to(url: str, notice: Optional[str] = None, error: Optional[str] = None) -> RedirectResponse:
    """303 redirect carrying a one-shot notice or error message."""
    params = {key: value for key, value in (("notice", notice), ("error", error)) if value}
    if params:
        url = f"{url}{'&' if '?' in url else '?'}{urlencode(params)}"
    return RedirectResponse(url=url, status_code=303)


def safe_next(url: Optional[str], default: str) -> str:
    """Only allow local redirect targets."""
    if not url or not url.startswith("/") or url.startswith("//"):
        return default
    return url
