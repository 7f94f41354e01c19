"""
Data Gateway

Persistence contract consumed by the invoice orchestrator, with an
in-memory implementation and a PostgreSQL one over the storefront schema
(orders, order_items, products, users, invoices, invoice_items).
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Protocol

import psycopg2.errors
from pydantic import ValidationError

from kitchenoff.errors import DuplicateInvoiceError, GatewayError, NotFoundError
from kitchenoff.models.domain import (
    Address,
    FulfillmentStatus,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    Order,
    OrderItem,
    PaymentStatus,
    User,
)
from kitchenoff.utils.database import Database

logger = logging.getLogger(__name__)


class DataGateway(Protocol):
    """Order, user and invoice storage used by the invoice orchestrator."""

    def get_order(self, order_id: int) -> Optional[Order]: ...

    def get_user(self, user_id: int) -> Optional[User]: ...

    def update_order(self, order_id: int, **fields: Any) -> Order: ...

    def create_invoice(self, invoice: Invoice, items: List[InvoiceLineItem]) -> Invoice: ...

    def get_invoice(self, invoice_id: int) -> Optional[Invoice]: ...

    def find_invoice_by_order(self, order_id: int) -> Optional[Invoice]: ...

    def update_invoice(self, invoice_id: int, **fields: Any) -> Invoice: ...


ORDER_UPDATABLE = frozenset({"payment_status", "status"})
INVOICE_UPDATABLE = frozenset({"status", "payment_link", "notes"})


def _check_fields(fields: Dict[str, Any], allowed: frozenset, entity: str) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise GatewayError(f"Cannot update {entity} field(s): {', '.join(sorted(unknown))}")


def _assemble_invoice(invoice: Invoice, items: List[InvoiceLineItem], invoice_id: int) -> Invoice:
    """Attach id and line items, re-checking the totals invariants."""
    if not items:
        raise GatewayError(f"Invoice for order {invoice.order_id} has no line items")
    try:
        return Invoice(**invoice.model_dump(exclude={"id", "items"}), id=invoice_id, items=items)
    except ValidationError as e:
        raise GatewayError(f"Invalid invoice for order {invoice.order_id}: {e}") from e


# ============================================================================
# In-memory gateway
# ============================================================================

class InMemoryDataGateway:
    """
    Dict-backed gateway.

    Enforces one non-cancelled invoice per order, the same guarantee the
    PostgreSQL gateway gives through ACTIVE_INVOICE_INDEX_SQL.
    """

    def __init__(
        self,
        orders: Optional[List[Order]] = None,
        users: Optional[List[User]] = None,
    ):
        self._lock = threading.Lock()
        self.orders: Dict[int, Order] = {o.id: o for o in orders or []}
        self.users: Dict[int, User] = {u.id: u for u in users or []}
        self.invoices: Dict[int, Invoice] = {}
        self._next_invoice_id = 1

    def add_order(self, order: Order) -> Order:
        with self._lock:
            self.orders[order.id] = order
        return order

    def add_user(self, user: User) -> User:
        with self._lock:
            self.users[user.id] = user
        return user

    def get_order(self, order_id: int) -> Optional[Order]:
        order = self.orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    def get_user(self, user_id: int) -> Optional[User]:
        user = self.users.get(user_id)
        return user.model_copy(deep=True) if user else None

    def update_order(self, order_id: int, **fields: Any) -> Order:
        _check_fields(fields, ORDER_UPDATABLE, "order")
        with self._lock:
            order = self.orders.get(order_id)
            if order is None:
                raise NotFoundError("order", order_id)
            updated = Order(**{**order.model_dump(), **fields})
            self.orders[order_id] = updated
        return updated.model_copy(deep=True)

    def create_invoice(self, invoice: Invoice, items: List[InvoiceLineItem]) -> Invoice:
        with self._lock:
            if self._active_invoice(invoice.order_id) is not None:
                raise DuplicateInvoiceError(invoice.order_id)
            stored = _assemble_invoice(invoice, items, self._next_invoice_id)
            self.invoices[stored.id] = stored
            self._next_invoice_id += 1
        logger.debug(f"Stored invoice {stored.id} ({stored.invoice_number}) for order {stored.order_id}")
        return stored.model_copy(deep=True)

    def get_invoice(self, invoice_id: int) -> Optional[Invoice]:
        invoice = self.invoices.get(invoice_id)
        return invoice.model_copy(deep=True) if invoice else None

    def find_invoice_by_order(self, order_id: int) -> Optional[Invoice]:
        invoice = self._active_invoice(order_id)
        return invoice.model_copy(deep=True) if invoice else None

    def update_invoice(self, invoice_id: int, **fields: Any) -> Invoice:
        _check_fields(fields, INVOICE_UPDATABLE, "invoice")
        with self._lock:
            invoice = self.invoices.get(invoice_id)
            if invoice is None:
                raise NotFoundError("invoice", invoice_id)
            updated = invoice.model_copy(update=fields)
            self.invoices[invoice_id] = updated
        return updated.model_copy(deep=True)

    def _active_invoice(self, order_id: int) -> Optional[Invoice]:
        for invoice in self.invoices.values():
            if invoice.order_id == order_id and not invoice.is_cancelled:
                return invoice
        return None


# ============================================================================
# PostgreSQL gateway
# ============================================================================

ACTIVE_INVOICE_INDEX_SQL = """
    CREATE UNIQUE INDEX IF NOT EXISTS invoices_one_active_per_order
    ON invoices (order_id)
    WHERE status <> 'cancelled'
"""


def _address_from_json(data: Optional[Dict[str, Any]]) -> Optional[Address]:
    if not data:
        return None
    return Address(
        name=data.get("name") or " ".join(
            part for part in (data.get("firstName"), data.get("lastName")) if part
        ) or None,
        address=data.get("address"),
        city=data.get("city"),
        county=data.get("county") or data.get("state"),
        postal_code=data.get("postalCode") or data.get("zipCode"),
        country=data.get("country"),
        phone=data.get("phone"),
    )


def _fulfillment_status(value: Optional[str]) -> FulfillmentStatus:
    try:
        return FulfillmentStatus(value)
    except ValueError:
        logger.warning(f"Unknown order status {value!r}, treating as pending")
        return FulfillmentStatus.PENDING


class PostgresDataGateway:
    """Gateway over the storefront's PostgreSQL schema"""

    def __init__(self, db: Database, default_currency: str = "RON"):
        self.db = db
        self.default_currency = default_currency

    def get_order(self, order_id: int) -> Optional[Order]:
        """Get order with its items and address snapshots"""
        order_query = """
            SELECT id, user_id, status, payment_status, total_amount, payment_method,
                   billing_address, shipping_address, created_at
            FROM orders
            WHERE id = %s
        """
        row = self.db.execute_query(order_query, (order_id,), fetch_one=True)
        if not row:
            return None

        items_query = """
            SELECT oi.product_id,
                   COALESCE(p.name, 'Product ' || oi.product_id) AS product_name,
                   p.product_code,
                   oi.quantity,
                   oi.price AS unit_price,
                   oi.total_price AS line_total
            FROM order_items oi
            LEFT JOIN products p ON p.id = oi.product_id
            WHERE oi.order_id = %s
            ORDER BY oi.id
        """
        item_rows = self.db.execute_query(items_query, (order_id,))

        try:
            return Order(
                id=row["id"],
                user_id=row["user_id"],
                items=[OrderItem(**item) for item in item_rows],
                total_amount=row["total_amount"],
                currency=self.default_currency,
                payment_status=PaymentStatus.PAID if row["payment_status"] == "paid" else PaymentStatus.UNPAID,
                status=_fulfillment_status(row["status"]),
                billing_address=_address_from_json(row.get("billing_address")),
                shipping_address=_address_from_json(row.get("shipping_address")),
                payment_method=row.get("payment_method"),
                created_at=row.get("created_at"),
            )
        except ValidationError as e:
            raise GatewayError(f"Order {order_id} has malformed data: {e}") from e

    def get_user(self, user_id: int) -> Optional[User]:
        """Get the billing profile of a user"""
        query = """
            SELECT id, email, first_name, last_name, company_name, vat_number,
                   registration_number, tax_id, company_state AS company_county
            FROM users
            WHERE id = %s
        """
        row = self.db.execute_query(query, (user_id,), fetch_one=True)
        if not row:
            return None
        return User(**row)

    def update_order(self, order_id: int, **fields: Any) -> Order:
        """Update payment/fulfillment status of an order"""
        _check_fields(fields, ORDER_UPDATABLE, "order")
        if not fields:
            raise GatewayError("No order fields to update")

        columns = sorted(fields)
        assignments = ", ".join(f"{column} = %s" for column in columns)
        values = tuple(getattr(fields[c], "value", fields[c]) for c in columns)
        query = f"UPDATE orders SET {assignments}, updated_at = NOW() WHERE id = %s"

        if self.db.execute_update(query, values + (order_id,)) == 0:
            raise NotFoundError("order", order_id)
        return self.get_order(order_id)

    def create_invoice(self, invoice: Invoice, items: List[InvoiceLineItem]) -> Invoice:
        """Insert an invoice and its line items in a single transaction"""
        # Validate before touching the database
        _assemble_invoice(invoice, items, 0)

        try:
            invoice_id = self._insert_invoice(invoice, items)
        except psycopg2.errors.UniqueViolation as e:
            # Writer that bypassed the advisory lock hit the unique index
            raise DuplicateInvoiceError(invoice.order_id) from e

        logger.info(f"Stored invoice {invoice_id} ({invoice.invoice_number}) for order {invoice.order_id}")
        return _assemble_invoice(invoice, items, invoice_id)

    def _insert_invoice(self, invoice: Invoice, items: List[InvoiceLineItem]) -> int:
        with self.db.get_cursor() as cursor:
            # Serializes concurrent invoicing of the same order until commit
            cursor.execute("SELECT pg_advisory_xact_lock(%s)", (invoice.order_id,))
            cursor.execute(
                "SELECT id FROM invoices WHERE order_id = %s AND status <> 'cancelled' LIMIT 1",
                (invoice.order_id,),
            )
            if cursor.fetchone():
                raise DuplicateInvoiceError(invoice.order_id)

            cursor.execute(
                """
                INSERT INTO invoices (
                    invoice_number, order_id, user_id, issue_date, supply_date,
                    subtotal, vat_amount, total_amount, currency, payment_method,
                    payment_link, notes, smartbill_series, smartbill_number,
                    smartbill_id, status
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    invoice.invoice_number, invoice.order_id, invoice.user_id,
                    invoice.issue_date, invoice.supply_date,
                    invoice.subtotal, invoice.tax_amount, invoice.total_amount,
                    invoice.currency, invoice.payment_method, invoice.payment_link,
                    invoice.notes, invoice.provider_series, invoice.provider_number,
                    invoice.provider_id, invoice.status.value,
                ),
            )
            invoice_id = cursor.fetchone()["id"]

            cursor.executemany(
                """
                INSERT INTO invoice_items (
                    invoice_id, product_id, product_name, product_code,
                    quantity, unit_price, vat_rate, line_total
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                [
                    (
                        invoice_id, item.product_id, item.product_name, item.product_code,
                        item.quantity, item.unit_price, item.tax_rate, item.line_total,
                    )
                    for item in items
                ],
            )
        return invoice_id

    def ensure_invoice_constraints(self) -> None:
        """Create the partial unique index that allows one active invoice per order"""
        self.db.execute_update(ACTIVE_INVOICE_INDEX_SQL)
        logger.info("Ensured one-active-invoice-per-order index")

    def get_invoice(self, invoice_id: int) -> Optional[Invoice]:
        """Get invoice with its line items"""
        invoice_query = """
            SELECT id, invoice_number, order_id, user_id, issue_date, supply_date,
                   subtotal, vat_amount AS tax_amount, total_amount, currency,
                   payment_method, payment_link, notes,
                   smartbill_series AS provider_series,
                   smartbill_number AS provider_number,
                   smartbill_id AS provider_id,
                   status
            FROM invoices
            WHERE id = %s
        """
        row = self.db.execute_query(invoice_query, (invoice_id,), fetch_one=True)
        if not row:
            return None

        items_query = """
            SELECT product_id, product_name, product_code, quantity, unit_price,
                   vat_rate AS tax_rate, line_total
            FROM invoice_items
            WHERE invoice_id = %s
            ORDER BY id
        """
        item_rows = self.db.execute_query(items_query, (invoice_id,))

        try:
            return Invoice(**row, items=[InvoiceLineItem(**item) for item in item_rows])
        except ValidationError as e:
            raise GatewayError(f"Invoice {invoice_id} has malformed data: {e}") from e

    def find_invoice_by_order(self, order_id: int) -> Optional[Invoice]:
        """Get the non-cancelled invoice of an order, if any"""
        query = """
            SELECT id FROM invoices
            WHERE order_id = %s AND status <> %s
            ORDER BY id DESC
            LIMIT 1
        """
        row = self.db.execute_query(query, (order_id, InvoiceStatus.CANCELLED.value), fetch_one=True)
        if not row:
            return None
        return self.get_invoice(row["id"])

    def update_invoice(self, invoice_id: int, **fields: Any) -> Invoice:
        """Update status, payment link or notes of an invoice"""
        _check_fields(fields, INVOICE_UPDATABLE, "invoice")
        if not fields:
            raise GatewayError("No invoice fields to update")

        columns = sorted(fields)
        assignments = ", ".join(f"{column} = %s" for column in columns)
        values = tuple(getattr(fields[c], "value", fields[c]) for c in columns)
        query = f"UPDATE invoices SET {assignments} WHERE id = %s"

        if self.db.execute_update(query, values + (invoice_id,)) == 0:
            raise NotFoundError("invoice", invoice_id)
        return self.get_invoice(invoice_id)
