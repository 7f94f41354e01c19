"""
Smartbill Models - Wire format of the invoicing provider.

Field names follow the provider's camelCase JSON; Python attributes are
snake_case and serialization goes through the aliases.
"""

from datetime import date
from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict:
        """JSON-ready dict with provider field names and no null fields."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ============================================================================
# Requests
# ============================================================================

class SmartbillRecipient(_WireModel):
    """Invoice recipient. Tax fields stay None unless they carry a value."""

    name: str
    vat_code: Optional[str] = Field(default=None, alias="vatCode")
    reg_com: Optional[str] = Field(default=None, alias="regCom")
    address: Optional[str] = None
    city: Optional[str] = None
    county: Optional[str] = None
    country: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    is_tax_payer: bool = Field(default=False, alias="isTaxPayer")
    save_to_db: bool = Field(default=True, alias="saveToDb")


class SmartbillProduct(_WireModel):
    """Single invoiced product line."""

    name: str
    code: Optional[str] = None
    measuring_unit_name: str = Field(default="buc", alias="measuringUnitName")
    quantity: float
    price: float
    currency: Optional[str] = None
    is_tax_included: bool = Field(default=False, alias="isTaxIncluded")
    tax_name: str = Field(default="Taxare inversa", alias="taxName")
    tax_percentage: float = Field(default=0, alias="taxPercentage")
    is_discount: bool = Field(default=False, alias="isDiscount")
    is_service: bool = Field(default=False, alias="isService")
    save_to_db: bool = Field(default=True, alias="saveToDb")


class SmartbillInvoiceRequest(_WireModel):
    """Body of POST /invoice."""

    company_vat_code: str = Field(..., alias="companyVatCode")
    series_name: str = Field(..., alias="seriesName")
    client: SmartbillRecipient
    issue_date: date = Field(..., alias="issueDate")
    due_date: Optional[date] = Field(default=None, alias="dueDate")
    delivery_date: Optional[date] = Field(default=None, alias="deliveryDate")
    products: List[SmartbillProduct]
    currency: str = "RON"
    language: str = "RO"
    precision: int = 2
    is_draft: bool = Field(default=False, alias="isDraft")
    mentions: Optional[str] = None
    observations: Optional[str] = None
    payment_url: Optional[str] = Field(default=None, alias="paymentUrl")
    send_email: Optional[bool] = Field(default=None, alias="sendEmail")


# ============================================================================
# Responses
# ============================================================================

class ProviderInvoiceResult(_WireModel):
    """Provider answer to an invoice creation."""

    series: str
    number: str
    id: Optional[str] = None
    url: Optional[str] = None
    message: Optional[str] = None

    @field_validator("number", "id", mode="before")
    @classmethod
    def _as_text(cls, value):
        return None if value is None else str(value)


class ProviderCancelResult(_WireModel):
    """Provider answer to an invoice cancellation."""

    message: Optional[str] = None
    error_text: Optional[str] = Field(default=None, alias="errorText")


class DocumentSeries(_WireModel):
    """Document series configured for the issuing company."""

    name: str
    next_number: Optional[int] = Field(default=None, alias="nextNumber")
    type: Optional[str] = None


class VatRate(_WireModel):
    """VAT rate configured for the issuing company."""

    name: str
    percentage: float


# ============================================================================
# Products & Stock
# ============================================================================

class CatalogProduct(_WireModel):
    """Product nomenclature entry, as sent to and listed by POST/GET /products."""

    name: str
    code: Optional[str] = None
    um: str = "buc"
    price: Optional[float] = None
    currency: Optional[str] = None
    vat_percentage: Optional[float] = Field(default=None, alias="vatPercentage")
    category: Optional[str] = None
    description: Optional[str] = None
    barcode: Optional[str] = None


class StockMovement(_WireModel):
    """One entry of the stockMovements list of POST /stocks."""

    product_code: str = Field(..., alias="productCode")
    quantity: float
    operation: Literal["add", "subtract", "set"]
    warehouse_code: Optional[str] = Field(default=None, alias="warehouseCode")
    document_type: Optional[str] = Field(default=None, alias="documentType")
    document_series: Optional[str] = Field(default=None, alias="documentSeries")
    document_number: Optional[str] = Field(default=None, alias="documentNumber")
    notes: Optional[str] = None


class ProductStock(_WireModel):
    """Stock level row of GET /stocks. Older accounts answer with code/stock."""

    product_code: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("productCode", "code")
    )
    product_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("productName", "name")
    )
    quantity: float = Field(default=0, validation_alias=AliasChoices("quantity", "stock"))
    warehouse_code: Optional[str] = Field(default=None, validation_alias="warehouseCode")

    @field_validator("quantity", mode="before")
    @classmethod
    def _missing_is_zero(cls, value):
        return 0 if value in (None, "") else value


class SyncResult(BaseModel):
    """Outcome of a bulk synchronization with the provider."""

    success: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)


class StockUpdate(BaseModel):
    """Stock change for a storefront product, read from the provider."""

    product_id: int
    product_code: str
    old_stock: Optional[int] = None
    new_stock: int


class StockSyncResult(SyncResult):
    """Outcome of pulling stock levels, with the changes to apply locally."""

    stock_updates: List[StockUpdate] = Field(default_factory=list)
