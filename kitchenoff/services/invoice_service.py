"""
Invoice Service - Order-to-invoice orchestration.

Issues invoices through Smartbill when it is enabled and mirrors them
locally; records them locally when Smartbill is disabled or failing.
Query operations (PDF, e-mail, payment status, cancel) route to Smartbill
for provider-backed invoices and to local state otherwise.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from kitchenoff.errors import (
    InvoiceValidationError,
    NotFoundError,
    ProviderError,
    UnreadableProviderResponse,
)
from kitchenoff.models.domain import (
    FulfillmentStatus,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    Order,
    PaymentEvent,
    PaymentStatus,
    User,
    ROUNDING_TOLERANCE,
)
from kitchenoff.services.gateway import DataGateway
from kitchenoff.services.smartbill_client import SmartbillClient, build_invoice_request
from kitchenoff.utils.config import InvoiceServiceConfig

logger = logging.getLogger(__name__)

# Legal mentions printed on reverse-charge invoices (0% VAT)
PROVIDER_REVERSE_CHARGE_NOTES = (
    "Taxare inversă (reverse charge) conform art. 331 din Codul Fiscal - "
    "TVA 0%, obligația de plată a TVA revine beneficiarului."
)
LOCAL_REVERSE_CHARGE_NOTES = (
    "VAT reverse charge: taxare inversă conform art. 331 din Legea 227/2015 "
    "privind Codul Fiscal."
)

EMAIL_SUBJECT = "Invoice {number} from KitchenOff"
EMAIL_BODY = "Please find attached your invoice. Thank you for your business!"
ZERO = Decimal("0.00")


def generate_local_invoice_number(now: datetime) -> str:
    """INV-{year}-{last 6 digits of the epoch milliseconds}"""
    epoch_millis = int(now.timestamp() * 1000)
    return f"INV-{now.year}-{epoch_millis % 1_000_000:06d}"


def build_line_items(order: Order) -> List[InvoiceLineItem]:
    """
    Snapshot order lines as reverse-charge invoice lines.

    Raises:
        InvoiceValidationError: If the order has no items or its items do
            not add up to the order total
    """
    if not order.items:
        raise InvoiceValidationError(f"Order {order.id} has no items to invoice")

    items = [
        InvoiceLineItem(
            product_id=item.product_id,
            product_name=item.product_name,
            product_code=item.product_code,
            quantity=item.quantity,
            unit_price=item.unit_price,
            tax_rate=ZERO,
            line_total=item.line_total,
        )
        for item in order.items
    ]

    lines_total = sum((item.line_total for item in items), ZERO)
    if abs(lines_total - order.total_amount) > ROUNDING_TOLERANCE:
        raise InvoiceValidationError(
            f"Order {order.id} items total {lines_total} does not match order total {order.total_amount}"
        )
    return items


class InvoiceService:
    """
    Orchestrates invoice creation after payment.

    Features:
    - Smartbill issuing with automatic local fallback on provider failure
    - One active invoice per order (repeated payment events return the existing invoice)
    - Provider-aware PDF, e-mail, payment status and cancellation
    """

    def __init__(
        self,
        config: InvoiceServiceConfig,
        gateway: DataGateway,
        smartbill: Optional[SmartbillClient] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize the invoice service.

        Args:
            config: Orchestrator configuration
            gateway: Order/user/invoice storage
            smartbill: Smartbill client (built from config when omitted and enabled)
            clock: Returns the current datetime
        """
        self.config = config
        self.gateway = gateway
        self.clock = clock
        self.smartbill: Optional[SmartbillClient] = None
        if config.enable_smartbill:
            self.smartbill = smartbill or SmartbillClient(config.smartbill)

        logger.info(
            f"Initialized InvoiceService (smartbill={'on' if self.provider_enabled else 'off'}, "
            f"series={config.default_series})"
        )

    @property
    def provider_enabled(self) -> bool:
        return self.config.enable_smartbill and self.smartbill is not None

    @property
    def company_vat(self) -> str:
        return self.config.smartbill.company_vat

    # ------------------------------------------------------------------
    # Invoice creation
    # ------------------------------------------------------------------

    def generate_invoice_after_payment(self, order_id: int, payment_event: PaymentEvent) -> Invoice:
        """
        Issue the invoice of an order once its payment has been reported.

        A successful payment marks the order paid and processing before any
        invoice work, so a later failure does not lose that fact.

        Args:
            order_id: Order to invoice
            payment_event: Payment notification (status and method)

        Returns:
            The persisted invoice with its line items

        Raises:
            NotFoundError: If the order or its owner does not exist
            InvoiceValidationError: If the order cannot be invoiced
            ProviderError: If Smartbill and the local fallback both failed
        """
        logger.info(f"Starting automatic invoice generation for order {order_id}")
        order, user = self._load_order_and_user(order_id)

        if payment_event.is_successful:
            order = self.gateway.update_order(
                order_id,
                payment_status=PaymentStatus.PAID,
                status=FulfillmentStatus.PROCESSING,
            )
            logger.info(f"Order {order_id} marked paid ({payment_event.processor or 'unknown processor'})")

        payment_method = payment_event.payment_method or order.payment_method or "card"
        return self._issue(order, user, payment_method, payment_event.payment_url)

    def create_invoice_for_order(self, order_id: int, payment_method: str = "wire_transfer") -> Invoice:
        """
        Manually issue the invoice of an order without touching its payment status.

        Same provider, fallback and one-invoice-per-order rules as
        generate_invoice_after_payment.
        """
        logger.info(f"Manual invoice creation for order {order_id}")
        order, user = self._load_order_and_user(order_id)
        return self._issue(order, user, payment_method, None)

    def _load_order_and_user(self, order_id: int):
        order = self.gateway.get_order(order_id)
        if order is None:
            raise NotFoundError("order", order_id)
        user = self.gateway.get_user(order.user_id) if order.user_id is not None else None
        if user is None:
            raise NotFoundError("user", order.user_id)
        return order, user

    def _issue(self, order: Order, user: User, payment_method: str, payment_url: Optional[str]) -> Invoice:
        existing = self.gateway.find_invoice_by_order(order.id)
        if existing is not None:
            logger.info(f"Order {order.id} already has invoice {existing.invoice_number}, not issuing another")
            return existing

        # Fails fast on malformed orders, before any network call
        items = build_line_items(order)

        if not self.provider_enabled:
            return self._generate_local_invoice(order, items, payment_method, payment_url)

        try:
            return self._generate_smartbill_invoice(order, user, items, payment_method, payment_url)
        except ProviderError as provider_error:
            logger.warning(f"Smartbill failed for order {order.id}, falling back to local invoice: {provider_error}")
            if isinstance(provider_error, UnreadableProviderResponse):
                # Smartbill may hold a document for this order too
                logger.error(
                    f"Order {order.id} may now be invoiced twice: reconcile Smartbill "
                    f"against the local invoice (response: {provider_error.raw_body})"
                )
            try:
                return self._generate_local_invoice(order, items, payment_method, payment_url)
            except Exception:
                logger.exception(f"Fallback invoice generation also failed for order {order.id}")
                raise provider_error

    def _generate_smartbill_invoice(
        self,
        order: Order,
        user: User,
        items: List[InvoiceLineItem],
        payment_method: str,
        payment_url: Optional[str],
    ) -> Invoice:
        now = self.clock()
        request = build_invoice_request(
            order,
            user,
            company_vat=self.company_vat,
            series=self.config.default_series,
            issue_date=now.date(),
            mentions=PROVIDER_REVERSE_CHARGE_NOTES,
            payment_url=payment_url,
        )
        result = self.smartbill.create_invoice(request)

        invoice = self._build_invoice(
            order,
            items,
            invoice_number=f"{result.series}-{result.number}",
            issued_at=now,
            payment_method=payment_method,
            payment_link=result.url or payment_url,
            notes=PROVIDER_REVERSE_CHARGE_NOTES,
            provider_series=result.series,
            provider_number=result.number,
            provider_id=result.id,
        )

        stored = self.gateway.create_invoice(invoice, items)
        logger.info(f"Smartbill invoice {stored.invoice_number} stored as {stored.id} for order {order.id}")
        return stored

    def _generate_local_invoice(
        self,
        order: Order,
        items: List[InvoiceLineItem],
        payment_method: str,
        payment_url: Optional[str],
    ) -> Invoice:
        now = self.clock()
        invoice = self._build_invoice(
            order,
            items,
            invoice_number=generate_local_invoice_number(now),
            issued_at=now,
            payment_method=payment_method,
            payment_link=payment_url,
            notes=LOCAL_REVERSE_CHARGE_NOTES,
        )
        stored = self.gateway.create_invoice(invoice, items)
        logger.info(f"Local invoice {stored.invoice_number} stored as {stored.id} for order {order.id}")
        return stored

    def _build_invoice(
        self,
        order: Order,
        items: List[InvoiceLineItem],
        invoice_number: str,
        issued_at: datetime,
        payment_method: str,
        payment_link: Optional[str],
        notes: str,
        **provider_fields,
    ) -> Invoice:
        subtotal = sum((item.line_total for item in items), ZERO)
        return Invoice(
            invoice_number=invoice_number,
            order_id=order.id,
            user_id=order.user_id,
            issue_date=issued_at,
            supply_date=issued_at,
            subtotal=subtotal,
            tax_amount=ZERO,
            total_amount=subtotal,
            currency=order.currency or self.config.default_currency,
            payment_method=payment_method,
            payment_link=payment_link,
            notes=notes,
            status=InvoiceStatus.ISSUED,
            **provider_fields,
        )

    # ------------------------------------------------------------------
    # Queries and side operations
    # ------------------------------------------------------------------

    def _get_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.gateway.get_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id)
        return invoice

    def _routes_to_provider(self, invoice: Invoice) -> bool:
        return self.provider_enabled and invoice.is_provider_backed

    def get_invoice_pdf(self, invoice_id: int) -> Optional[bytes]:
        """
        Get the PDF of a provider-backed invoice.

        Returns:
            PDF bytes, or None for local invoices or when Smartbill is disabled

        Raises:
            NotFoundError: If the invoice does not exist
            ProviderError: If Smartbill fails to deliver the PDF
        """
        invoice = self._get_invoice(invoice_id)
        if not self._routes_to_provider(invoice):
            return None
        return self.smartbill.get_invoice_pdf(self.company_vat, invoice.provider_series, invoice.provider_number)

    def send_invoice_by_email(self, invoice_id: int, recipient: Optional[str] = None) -> bool:
        """
        Have Smartbill e-mail a provider-backed invoice.

        Args:
            invoice_id: Invoice to send
            recipient: Override for the order owner's e-mail

        Returns:
            True only when Smartbill confirmed the dispatch
        """
        invoice = self._get_invoice(invoice_id)
        if not self._routes_to_provider(invoice):
            return False

        if recipient is None:
            user = self.gateway.get_user(invoice.user_id) if invoice.user_id is not None else None
            if user is None:
                raise NotFoundError("user", invoice.user_id)
            recipient = user.email

        try:
            self.smartbill.send_invoice_by_email(
                self.company_vat,
                invoice.provider_series,
                invoice.provider_number,
                recipient,
                EMAIL_SUBJECT.format(number=invoice.invoice_number),
                EMAIL_BODY,
            )
        except ProviderError as e:
            logger.warning(f"Sending invoice {invoice.invoice_number} by e-mail failed: {e}")
            return False
        return True

    def check_invoice_payment_status(self, invoice_id: int) -> bool:
        """
        Tell whether an invoice is paid.

        Provider-backed invoices ask Smartbill (a failed check reads as
        unpaid). Local invoices answer from the owning order's payment
        status, without any network call.
        """
        invoice = self._get_invoice(invoice_id)
        if self._routes_to_provider(invoice):
            return self.smartbill.is_invoice_paid(self.company_vat, invoice.provider_series, invoice.provider_number)

        order = self.gateway.get_order(invoice.order_id)
        if order is None:
            raise NotFoundError("order", invoice.order_id)
        return order.is_paid

    def cancel_invoice(self, invoice_id: int) -> Invoice:
        """
        Cancel an invoice at Smartbill (when provider-backed) and locally.

        Raises:
            NotFoundError: If the invoice does not exist
            ProviderError: If Smartbill refuses the cancellation; the local
                record is left issued
        """
        invoice = self._get_invoice(invoice_id)
        if invoice.is_cancelled:
            return invoice

        if self._routes_to_provider(invoice):
            self.smartbill.cancel_invoice(self.company_vat, invoice.provider_series, invoice.provider_number)
        elif invoice.is_provider_backed:
            logger.warning(
                f"Invoice {invoice.invoice_number} is registered with Smartbill but the integration is "
                f"disabled; cancelling the local record only"
            )

        cancelled = self.gateway.update_invoice(invoice_id, status=InvoiceStatus.CANCELLED)
        logger.info(f"Invoice {cancelled.invoice_number} cancelled")
        return cancelled

    def test_connection(self) -> bool:
        """Check the Smartbill credentials; False when the integration is disabled."""
        if not self.provider_enabled:
            logger.info("Smartbill integration disabled")
            return False
        return self.smartbill.test_connection()
