"""
Laundry Portal - CSV Export

Builds CSV downloads from rows the page has already fetched; no extra
backend call is made.
"""

import csv
import io
from typing import Any, Callable, Iterable, Sequence

from fastapi.responses import Response

from laundry_portal.timestamps import format_ist, today_ist

# (header, getter) pairs per export
Column = tuple[str, Callable[[dict], Any]]


def _get(path: str) -> Callable[[dict], Any]:
    """Getter for a dotted path such as `customer.name`."""
    keys = path.split(".")

    def getter(row: dict) -> Any:
        value: Any = row
        for key in keys:
            if not isinstance(value, dict):
                return ""
            value = value.get(key)
        return "" if value is None else value

    return getter


def _yes_no(path: str) -> Callable[[dict], str]:
    getter = _get(path)
    return lambda row: "Yes" if getter(row) is True else "No"


def _date(path: str) -> Callable[[dict], str]:
    getter = _get(path)
    return lambda row: format_ist(getter(row) or None, "%Y-%m-%d")


CUSTOMER_COLUMNS: list[Column] = [
    ("Name", _get("name")),
    ("Email", _get("email")),
    ("Phone", _get("phone")),
    ("VIP", _yes_no("isVIP")),
    ("Active", _yes_no("isActive")),
    ("Total Orders", _get("totalOrders")),
    ("Total Spent", _get("totalSpent")),
    ("Joined", _date("createdAt")),
]

ORDER_COLUMNS: list[Column] = [
    ("Order Number", _get("orderNumber")),
    ("Customer", _get("customer.name")),
    ("Customer Email", _get("customer.email")),
    ("Status", _get("status")),
    ("Express", _yes_no("isExpress")),
    ("Branch", _get("branch.name")),
    ("Pickup Date", _date("pickupDate")),
    ("Total", _get("pricing.total")),
    ("Placed", _date("createdAt")),
]

STAFF_COLUMNS: list[Column] = [
    ("Name", _get("name")),
    ("Email", _get("email")),
    ("Phone", _get("phone")),
    ("Role", _get("role")),
    ("Active", _yes_no("isActive")),
    ("Joined", _date("createdAt")),
]


# Leading characters a spreadsheet would evaluate as a formula
DANGEROUS_CSV_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def safe_csv_value(value: Any) -> Any:
    """Quote text cells that would otherwise start a formula; numbers pass through."""
    if isinstance(value, str) and value.startswith(DANGEROUS_CSV_PREFIXES):
        return f"'{value}"
    return value


def rows_to_csv(rows: Iterable[dict], columns: Sequence[Column]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow([header for header, _ in columns])
    for row in rows:
        writer.writerow([safe_csv_value(getter(row)) for _, getter in columns])
    return buffer.getvalue()


def export_filename(prefix: str, extension: str = "csv") -> str:
    return f"{prefix}-{today_ist().isoformat()}.{extension}"


def attachment_response(content: bytes | str, filename: str, media_type: str = "text/csv") -> Response:
    """A download response with the given filename."""
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def csv_response(rows: Iterable[dict], columns: Sequence[Column], prefix: str) -> Response:
    return attachment_response(rows_to_csv(rows, columns), export_filename(prefix))
