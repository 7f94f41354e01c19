"""
Domain Models - Pydantic models for the storefront billing entities.

These models represent orders, billing profiles and invoices as the invoice
orchestrator sees them, independent of how the data gateway stores them.
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


CENT = Decimal("0.01")
ROUNDING_TOLERANCE = Decimal("0.01")
SUCCESSFUL_PAYMENT_STATUSES = frozenset({"completed", "succeeded"})


def money(value) -> Decimal:
    """Convert a numeric value to a Decimal rounded to cents."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


# ============================================================================
# Enums
# ============================================================================

class PaymentStatus(str, Enum):
    """Payment status values for orders."""
    UNPAID = "unpaid"
    PAID = "paid"


class FulfillmentStatus(str, Enum):
    """Fulfillment status values for orders."""
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class InvoiceStatus(str, Enum):
    """Status values for invoices."""
    ISSUED = "issued"
    CANCELLED = "cancelled"


# ============================================================================
# Orders & Users
# ============================================================================

class Address(BaseModel):
    """Address snapshot taken when the order was placed."""

    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    county: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None


class OrderItem(BaseModel):
    """Order line from the orders.order_items table."""

    model_config = ConfigDict(from_attributes=True)

    product_id: int
    product_name: str
    product_code: Optional[str] = None
    quantity: int = Field(..., ge=1)
    unit_price: Decimal
    line_total: Decimal

    @field_validator("unit_price", "line_total", mode="before")
    @classmethod
    def _to_money(cls, value):
        return money(value)


class Order(BaseModel):
    """Order entity with its item and address snapshots."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[int] = None
    items: List[OrderItem] = Field(default_factory=list)
    total_amount: Decimal
    currency: str = "RON"
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    status: FulfillmentStatus = FulfillmentStatus.PENDING
    billing_address: Optional[Address] = None
    shipping_address: Optional[Address] = None
    payment_method: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("total_amount", mode="before")
    @classmethod
    def _to_money(cls, value):
        return money(value)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID


class User(BaseModel):
    """Billing profile of the customer who owns an order."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company_name: Optional[str] = None
    vat_number: Optional[str] = None
    registration_number: Optional[str] = None
    tax_id: Optional[str] = None
    company_county: Optional[str] = None

    @property
    def is_business(self) -> bool:
        """True when company legal fields classify the customer as a business."""
        return bool((self.company_name or "").strip() or (self.vat_number or "").strip())

    @property
    def display_name(self) -> str:
        """Company name, else the person's full name, else the e-mail local part."""
        if self.company_name and self.company_name.strip():
            return self.company_name.strip()
        full_name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full_name or self.email.split("@")[0]


class PaymentEvent(BaseModel):
    """Payment completion notification from a webhook or checkout callback."""

    status: str
    payment_method: Optional[str] = None
    processor: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_url: Optional[str] = None

    @property
    def is_successful(self) -> bool:
        return self.status.lower() in SUCCESSFUL_PAYMENT_STATUSES


# ============================================================================
# Catalog
# ============================================================================

class Product(BaseModel):
    """Storefront catalog product as pushed to the invoicing provider."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    product_code: Optional[str] = None
    price: Decimal = Decimal("0")
    vat_percentage: Decimal = Decimal("0")
    category: Optional[str] = None
    description: Optional[str] = None

    @field_validator("price", mode="before")
    @classmethod
    def _to_money(cls, value):
        return money(value if value is not None else 0)

    @property
    def code(self) -> str:
        """Provider product code: the storefront code, else the product id."""
        return self.product_code or str(self.id)


# ============================================================================
# Invoices
# ============================================================================

class InvoiceLineItem(BaseModel):
    """Invoice line snapshotted from the order at issue time."""

    model_config = ConfigDict(from_attributes=True)

    product_id: Optional[int] = None
    product_name: str
    product_code: Optional[str] = None
    quantity: int = Field(..., ge=1)
    unit_price: Decimal
    tax_rate: Decimal = Decimal("0.00")
    line_total: Decimal

    @field_validator("unit_price", "tax_rate", "line_total", mode="before")
    @classmethod
    def _to_money(cls, value):
        return money(value)


class Invoice(BaseModel):
    """
    Invoice record, either provider-issued (mirrored locally) or local only.

    Totals are checked on construction: line totals must add up to the
    subtotal and subtotal plus tax must equal the total, within one cent.
    """

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    invoice_number: str
    order_id: int
    user_id: Optional[int] = None
    issue_date: datetime
    supply_date: datetime
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    currency: str = "RON"
    payment_method: str = "card"
    payment_link: Optional[str] = None
    notes: Optional[str] = None
    provider_series: Optional[str] = None
    provider_number: Optional[str] = None
    provider_id: Optional[str] = None
    status: InvoiceStatus = InvoiceStatus.ISSUED
    items: List[InvoiceLineItem] = Field(default_factory=list)

    @field_validator("subtotal", "tax_amount", "total_amount", mode="before")
    @classmethod
    def _to_money(cls, value):
        return money(value)

    @model_validator(mode="after")
    def _check_totals(self):
        if abs(self.subtotal + self.tax_amount - self.total_amount) > ROUNDING_TOLERANCE:
            raise ValueError(
                f"subtotal {self.subtotal} + tax {self.tax_amount} != total {self.total_amount}"
            )
        if self.items:
            lines = sum((item.line_total for item in self.items), Decimal("0"))
            if abs(lines - self.subtotal) > ROUNDING_TOLERANCE:
                raise ValueError(f"line totals {lines} != subtotal {self.subtotal}")
        return self

    @property
    def is_provider_backed(self) -> bool:
        return bool(self.provider_series and self.provider_number)

    @property
    def is_cancelled(self) -> bool:
        return self.status == InvoiceStatus.CANCELLED
