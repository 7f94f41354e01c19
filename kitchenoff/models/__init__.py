"""
Models package for KitchenOff billing.
"""

# Domain models
from .domain import (
    Address,
    OrderItem,
    Order,
    User,
    PaymentEvent,
    Product,
    Invoice,
    InvoiceLineItem,
    PaymentStatus,
    FulfillmentStatus,
    InvoiceStatus,
    money,
)

# Invoicing provider models
from .smartbill import (
    SmartbillRecipient,
    SmartbillProduct,
    SmartbillInvoiceRequest,
    ProviderInvoiceResult,
    ProviderCancelResult,
    DocumentSeries,
    VatRate,
    CatalogProduct,
    StockMovement,
    ProductStock,
    SyncResult,
    StockUpdate,
    StockSyncResult,
)

# Carrier models
from .sameday import (
    AuthToken,
    PickupPoint,
    CarrierService,
    County,
    City,
    AWBParcel,
    AWBRecipient,
    CreateAWBRequest,
    CreateAWBResponse,
    AwbStatusEntry,
)

__all__ = [
    # Domain
    "Address",
    "OrderItem",
    "Order",
    "User",
    "PaymentEvent",
    "Product",
    "Invoice",
    "InvoiceLineItem",
    "PaymentStatus",
    "FulfillmentStatus",
    "InvoiceStatus",
    "money",
    # Smartbill
    "SmartbillRecipient",
    "SmartbillProduct",
    "SmartbillInvoiceRequest",
    "ProviderInvoiceResult",
    "ProviderCancelResult",
    "DocumentSeries",
    "VatRate",
    "CatalogProduct",
    "StockMovement",
    "ProductStock",
    "SyncResult",
    "StockUpdate",
    "StockSyncResult",
    # Sameday
    "AuthToken",
    "PickupPoint",
    "CarrierService",
    "County",
    "City",
    "AWBParcel",
    "AWBRecipient",
    "CreateAWBRequest",
    "CreateAWBResponse",
    "AwbStatusEntry",
]
