"""
Laundry Portal - Remote Entity Schemas

Read models for the resources the backend owns. The backend speaks
camelCase and Mongo-style `_id`; these models accept both that shape and
their own field names, so they round-trip through the draft store.
"""

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RemoteModel(BaseModel):
    """Base for backend payloads: camelCase aliases, unknown fields ignored."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


def _id_field(default: Any = ...) -> Any:
    return Field(default, validation_alias=AliasChoices("_id", "id"))


# =============================================================================
# CATALOG
# =============================================================================

class BranchAddress(RemoteModel):
    line1: Optional[str] = Field(None, validation_alias=AliasChoices("addressLine1", "street", "line1"))
    city: Optional[str] = None
    pincode: Optional[str] = None


class BranchContact(RemoteModel):
    phone: Optional[str] = None


class Branch(RemoteModel):
    """A service-center location; selected once per order."""

    id: str = _id_field()
    name: str
    code: Optional[str] = None
    address: BranchAddress = Field(default_factory=BranchAddress)
    contact: Optional[BranchContact] = None
    phone: Optional[str] = None

    @property
    def display_location(self) -> str:
        return self.address.city or self.address.line1 or "Location available"

    @property
    def contact_phone(self) -> Optional[str]:
        if self.contact and self.contact.phone:
            return self.contact.phone
        return self.phone


class TurnaroundTime(RemoteModel):
    standard: int = 48
    express: int = 24


class Service(RemoteModel):
    """A laundry offering; scopes the item catalog."""

    id: str = _id_field()
    code: str
    name: Optional[str] = None
    display_name: Optional[str] = None
    description: Optional[str] = None
    turnaround_time: TurnaroundTime = Field(default_factory=TurnaroundTime)

    @property
    def label(self) -> str:
        return self.display_name or self.name or self.code


class ServiceItem(RemoteModel):
    id: str = _id_field()
    name: str
    base_price: float = 0
    category: str = "normal"


# =============================================================================
# CUSTOMER
# =============================================================================

class Address(RemoteModel):
    id: str = _id_field()
    name: str = ""
    phone: str = ""
    address_line1: str = ""
    address_line2: Optional[str] = None
    landmark: Optional[str] = None
    city: str = ""
    pincode: str = ""
    is_default: bool = False

    @property
    def one_line(self) -> str:
        return ", ".join(part for part in (self.address_line1, self.city, self.pincode) if part)


# =============================================================================
# DERIVED PREVIEWS
# =============================================================================

class DeliveryInfo(RemoteModel):
    """Distance-based delivery preview for a branch/address pair."""

    distance: Optional[float] = None
    delivery_charge: float = 0
    is_serviceable: bool = True
    is_fallback: bool = False
    message: Optional[str] = None


class OrderTotal(RemoteModel):
    subtotal: float = 0
    tax: float = 0
    discount: float = 0
    express_charge: float = 0
    total: float = 0


class PricingResult(RemoteModel):
    """Order pricing preview returned by `/services/calculate-pricing`."""

    items: list[dict[str, Any]] = Field(default_factory=list)
    order_total: OrderTotal = Field(default_factory=OrderTotal)

    @property
    def subtotal(self) -> float:
        return self.order_total.subtotal

    @property
    def total(self) -> float:
        return self.order_total.total


class OrderConfirmation(RemoteModel):
    """What the client keeps of a created order."""

    id: str = _id_field()
    order_number: Optional[str] = None

    @property
    def reference(self) -> str:
        return self.order_number or self.id


# =============================================================================
# LISTS
# =============================================================================

class Pagination(RemoteModel):
    current: int = 1
    pages: int = 1
    total: int = 0
    limit: int = 20

    @property
    def has_previous(self) -> bool:
        return self.current > 1

    @property
    def has_next(self) -> bool:
        return self.current < self.pages


class Page(BaseModel):
    """Paginated read model: raw backend rows plus pagination."""

    items: list[dict[str, Any]] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)
