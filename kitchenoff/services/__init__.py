"""
Services package for KitchenOff billing.
"""

from .gateway import (
    DataGateway,
    InMemoryDataGateway,
    PostgresDataGateway,
)
from .invoice_service import (
    InvoiceService,
    build_line_items,
    generate_local_invoice_number,
)
from .sameday_client import SamedayClient
from .smartbill_client import SmartbillClient, build_invoice_request, catalog_product

__all__ = [
    # Persistence
    "DataGateway",
    "InMemoryDataGateway",
    "PostgresDataGateway",
    # Invoicing
    "InvoiceService",
    "build_line_items",
    "generate_local_invoice_number",
    "SmartbillClient",
    "build_invoice_request",
    "catalog_product",
    # Shipping
    "SamedayClient",
]
