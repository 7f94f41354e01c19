"""
Smartbill Client - Thin wrapper around the Smartbill e-invoicing API.

Translates provider-agnostic invoice data into Smartbill's wire format and
back. Every call is a single attempt: there are no retries and no token
lifecycle, credentials are fixed at construction.
"""

import base64
import logging
import time
from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import httpx
from pydantic import ValidationError

from kitchenoff.errors import (
    ConfigurationError,
    InvoiceValidationError,
    ProviderError,
    UnreadableProviderResponse,
)
from kitchenoff.models.domain import Order, Product, User
from kitchenoff.models.smartbill import (
    CatalogProduct,
    DocumentSeries,
    ProductStock,
    ProviderCancelResult,
    ProviderInvoiceResult,
    SmartbillRecipient,
    SmartbillInvoiceRequest,
    SmartbillProduct,
    StockMovement,
    StockSyncResult,
    StockUpdate,
    SyncResult,
    VatRate,
)
from kitchenoff.utils.config import SmartbillConfig

logger = logging.getLogger(__name__)

PAYMENT_TERM_DAYS = 30
DEFAULT_COUNTY = "Bucuresti"
DEFAULT_COUNTRY = "Romania"
DEFAULT_CATEGORY = "General"
CATALOG_CURRENCY = "EUR"
SYNC_PAUSE_SECONDS = 0.1


class SmartbillClient:
    """
    Client for the Smartbill REST API.

    Features:
    - Basic authentication built from username and API token
    - Invoice create / cancel / PDF / payment status / e-mail operations
    - Series and VAT rate lookups for the issuing company
    - Product nomenclature and stock reads and writes, with bulk sync helpers
    - All provider failures (rejections and transport errors) raised as ProviderError
    """

    def __init__(
        self,
        config: SmartbillConfig,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the Smartbill client.

        Args:
            config: Provider credentials and endpoint
            http_client: Pre-built httpx client (tests inject one with a MockTransport)
            sleep: Pause between calls of the bulk sync helpers
        """
        if not config.username or not config.token:
            raise ConfigurationError("Smartbill username and token are required")

        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.http = http_client or httpx.Client(timeout=config.timeout)
        self.sleep = sleep
        logger.info(f"Initialized SmartbillClient for company {config.company_vat} at {self.base_url}")

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _auth_header(self) -> str:
        credentials = f"{self.config.username}:{self.config.token}".encode("utf-8")
        return "Basic " + base64.b64encode(credentials).decode("ascii")

    def _headers(self, accept: str = "application/json") -> Dict[str, str]:
        return {
            "Authorization": self._auth_header(),
            "Accept": accept,
            "Content-Type": "application/json",
        }

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        accept: str = "application/json",
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.http.request(method, url, params=params, json=json, headers=self._headers(accept))
        except httpx.HTTPError as e:
            logger.error(f"Smartbill {method} {path} failed: {e}")
            raise ProviderError(f"Smartbill {method} {path} failed: {e}") from e

        if not response.is_success:
            logger.error(f"Smartbill {method} {path} rejected with {response.status_code}: {response.text[:500]}")
            raise ProviderError(
                f"Smartbill {method} {path} rejected",
                status_code=response.status_code,
                raw_body=response.text,
            )
        return response

    def _request_json(self, method: str, path: str, **kwargs) -> Any:
        response = self._request(method, path, **kwargs)
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                f"Smartbill {method} {path} returned invalid JSON",
                status_code=response.status_code,
                raw_body=response.text,
            ) from e

        # Smartbill reports some business errors with HTTP 200 and errorText set
        if isinstance(data, dict) and data.get("errorText"):
            logger.error(f"Smartbill {method} {path} error: {data['errorText']}")
            raise ProviderError(
                f"Smartbill {method} {path} error: {data['errorText']}",
                status_code=response.status_code,
                raw_body=response.text,
            )
        return data

    @staticmethod
    def _document_ref(tax_id: str, series: str, number: str) -> Dict[str, str]:
        return {"cif": tax_id, "seriesname": series, "number": str(number)}

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def create_invoice(self, request: SmartbillInvoiceRequest) -> ProviderInvoiceResult:
        """
        Issue an invoice.

        Args:
            request: Invoice in Smartbill's wire model

        Returns:
            Series, number, id and optional URL assigned by Smartbill

        Raises:
            ProviderError: If the request fails or is rejected
            UnreadableProviderResponse: If Smartbill answered 2xx with a body that
                does not describe the invoice; the document may exist
        """
        body = request.to_wire()
        logger.debug(
            f"Creating Smartbill invoice in series {request.series_name} "
            f"for {request.client.name} ({len(request.products)} products)"
        )
        data = self._request_json("POST", "/invoice", json=body)
        try:
            result = ProviderInvoiceResult.model_validate(data)
        except ValidationError as e:
            logger.error(f"Smartbill accepted invoice for {request.client.name} but answered with an unusable body: {data!r}")
            raise UnreadableProviderResponse(f"Unexpected Smartbill invoice response: {data}", raw_body=repr(data)) from e

        logger.info(f"Smartbill issued invoice {result.series}-{result.number}")
        return result

    def get_invoice_pdf(self, tax_id: str, series: str, number: str) -> bytes:
        """
        Download the PDF of an issued invoice.

        Raises:
            ProviderError: If the request fails or is rejected
        """
        response = self._request(
            "POST",
            "/invoice/pdf",
            json=self._document_ref(tax_id, series, number),
            accept="application/octet-stream",
        )
        return response.content

    def check_payment_status(self, tax_id: str, series: str, number: str) -> Optional[bool]:
        """
        Ask Smartbill whether an invoice is paid.

        Returns:
            True if paid, False if confirmed unpaid, None if the check failed
        """
        try:
            data = self._request_json("POST", "/invoice/paymentstatus", json=self._document_ref(tax_id, series, number))
        except ProviderError as e:
            logger.warning(f"Payment status check failed for {series}-{number}: {e}")
            return None

        paid = isinstance(data, dict) and data.get("paid") is True
        if not paid:
            logger.debug(f"Invoice {series}-{number} confirmed unpaid by Smartbill")
        return paid

    def is_invoice_paid(self, tax_id: str, series: str, number: str) -> bool:
        """
        Check whether an invoice is paid. Never raises.

        A failed check is reported as not paid; use check_payment_status to
        tell the two apart.
        """
        return self.check_payment_status(tax_id, series, number) is True

    def cancel_invoice(self, tax_id: str, series: str, number: str) -> ProviderCancelResult:
        """
        Cancel an issued invoice.

        Raises:
            ProviderError: If the request fails or is rejected
        """
        data = self._request_json("PUT", "/invoice/cancel", json=self._document_ref(tax_id, series, number))
        logger.info(f"Smartbill cancelled invoice {series}-{number}")
        return ProviderCancelResult.model_validate(data if isinstance(data, dict) else {})

    def send_invoice_by_email(
        self,
        tax_id: str,
        series: str,
        number: str,
        recipient: str,
        subject: str,
        body: str,
    ) -> None:
        """
        Have Smartbill e-mail an invoice to a recipient.

        Raises:
            ProviderError: If the request fails or is rejected
        """
        payload = {
            **self._document_ref(tax_id, series, number),
            "type": "factura",
            "to": recipient,
            "subject": subject,
            "bodyText": body,
        }
        self._request_json("POST", "/document/send", json=payload)
        logger.info(f"Smartbill sent invoice {series}-{number} by e-mail")

    # ------------------------------------------------------------------
    # Company configuration
    # ------------------------------------------------------------------

    def get_series(self, tax_id: str) -> List[DocumentSeries]:
        """List the document series of the issuing company."""
        data = self._request_json("GET", "/series", params={"cif": tax_id})
        rows = data.get("list", []) if isinstance(data, dict) else data
        return [DocumentSeries.model_validate(row) for row in rows]

    def get_vat_rates(self, tax_id: str) -> List[VatRate]:
        """List the VAT rates configured for the issuing company."""
        data = self._request_json("GET", "/tax", params={"cif": tax_id})
        rows = data.get("taxes", []) if isinstance(data, dict) else data
        return [VatRate.model_validate(row) for row in rows]

    def test_connection(self) -> bool:
        """Check credentials by listing series. Never raises."""
        try:
            self.get_series(self.config.company_vat)
            return True
        except ProviderError as e:
            logger.warning(f"Smartbill connection test failed: {e}")
            return False

    # ------------------------------------------------------------------
    # Products & stock
    # ------------------------------------------------------------------

    def get_products(self, tax_id: str) -> List[CatalogProduct]:
        """List the product nomenclature of the issuing company."""
        data = self._request_json("GET", "/products", params={"cif": tax_id})
        rows = data if isinstance(data, list) else []
        try:
            return [CatalogProduct.model_validate(row) for row in rows]
        except ValidationError as e:
            raise ProviderError(f"Unexpected Smartbill product list: {data}", raw_body=repr(data)) from e

    def create_or_update_product(self, tax_id: str, product: CatalogProduct) -> Dict[str, Any]:
        """
        Create a nomenclature product, or update the one with the same code.

        Returns:
            Smartbill's answer, as sent

        Raises:
            ProviderError: If the request fails or is rejected
        """
        data = self._request_json("POST", "/products", json={"cif": tax_id, **product.to_wire()})
        logger.info(f"Smartbill saved product {product.code} ({product.name})")
        return data if isinstance(data, dict) else {}

    def get_product_stock(self, tax_id: str, product_code: Optional[str] = None) -> List[ProductStock]:
        """
        Read stock levels, for one product or for the whole nomenclature.

        Raises:
            ProviderError: If the request fails or a row cannot be read
        """
        params = {"cif": tax_id}
        if product_code:
            params["productCode"] = product_code
        data = self._request_json("GET", "/stocks", params=params)
        rows = data if isinstance(data, list) else [data]
        try:
            return [ProductStock.model_validate(row) for row in rows]
        except ValidationError as e:
            raise ProviderError(f"Unexpected Smartbill stock response: {data}", raw_body=repr(data)) from e

    def update_product_stock(self, tax_id: str, movements: List[StockMovement]) -> None:
        """
        Record stock movements (add, subtract or set) in one request.

        Raises:
            ProviderError: If the request fails or is rejected
        """
        body = {"cif": tax_id, "stockMovements": [movement.to_wire() for movement in movements]}
        self._request_json("POST", "/stocks", json=body)
        logger.info(f"Smartbill recorded {len(movements)} stock movements")

    def sync_products_to_smartbill(
        self,
        tax_id: str,
        products: Iterable[Product],
        pause: float = SYNC_PAUSE_SECONDS,
    ) -> SyncResult:
        """
        Push storefront products to the Smartbill nomenclature one at a time.

        A failed product is counted and reported without stopping the run.
        Calls are spaced by ``pause`` seconds to stay under the rate limit.
        """
        result = SyncResult()
        for product in products:
            try:
                self.create_or_update_product(tax_id, catalog_product(product))
                result.success += 1
            except ProviderError as e:
                result.failed += 1
                result.errors.append(f'Failed to sync "{product.name}": {e}')
                logger.warning(f"Failed to sync product {product.id} to Smartbill: {e}")
            if pause:
                self.sleep(pause)

        logger.info(f"Product sync completed: {result.success} success, {result.failed} failed")
        return result

    def sync_stock_from_smartbill(
        self,
        tax_id: str,
        product_ids: Mapping[str, int],
        current_stock: Optional[Mapping[int, int]] = None,
    ) -> StockSyncResult:
        """
        Read Smartbill stock levels and map them onto storefront products.

        Args:
            tax_id: Issuing company VAT code
            product_ids: Smartbill product code to storefront product id
            current_stock: Storefront stock by product id, reported as old_stock

        Returns:
            The stock updates to apply locally. Rows without a known product
            code are skipped; an unreadable stock answer is reported in errors.
        """
        result = StockSyncResult()
        current_stock = current_stock or {}
        try:
            rows = self.get_product_stock(tax_id)
        except ProviderError as e:
            logger.error(f"Failed to fetch stock data from Smartbill: {e}")
            result.errors.append(f"Failed to fetch stock data: {e}")
            return result

        for row in rows:
            product_id = product_ids.get(row.product_code) if row.product_code else None
            if product_id is None:
                logger.debug(f"No storefront product for Smartbill code {row.product_code}")
                continue

            try:
                new_stock = int(row.quantity)
            except (ValueError, OverflowError) as e:
                result.failed += 1
                result.errors.append(f"Failed to update stock for {row.product_code}: {e}")
                continue

            result.stock_updates.append(StockUpdate(
                product_id=product_id,
                product_code=row.product_code,
                old_stock=current_stock.get(product_id),
                new_stock=new_stock,
            ))
            result.success += 1

        logger.info(f"Stock sync completed: {result.success} success, {result.failed} failed")
        return result

    def close(self):
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


def _non_blank(value: Optional[str]) -> Optional[str]:
    if value and value.strip():
        return value.strip()
    return None


def catalog_product(product: Product) -> CatalogProduct:
    """Map a storefront product to a Smartbill nomenclature entry."""
    return CatalogProduct(
        name=product.name,
        code=product.code,
        price=float(product.price),
        currency=CATALOG_CURRENCY,
        vat_percentage=float(product.vat_percentage),
        category=_non_blank(product.category) or DEFAULT_CATEGORY,
        description=product.description or "",
        barcode=product.product_code or "",
    )


def build_invoice_request(
    order: Order,
    user: User,
    company_vat: str,
    series: str,
    issue_date: date,
    mentions: Optional[str] = None,
    payment_url: Optional[str] = None,
) -> SmartbillInvoiceRequest:
    """
    Map an order and its owner to a Smartbill invoice request.

    Blank VAT and registration numbers are left out of the request entirely:
    Smartbill rejects an empty tax code but accepts a missing one.

    Raises:
        InvoiceValidationError: If the order has no items
    """
    if not order.items:
        raise InvoiceValidationError(f"Order {order.id} has no items to invoice")

    billing = order.billing_address
    shipping = order.shipping_address

    def pick(field: str) -> Optional[str]:
        for snapshot in (billing, shipping):
            value = _non_blank(getattr(snapshot, field, None)) if snapshot else None
            if value:
                return value
        return None

    vat_code = _non_blank(user.vat_number)
    client = SmartbillRecipient(
        name=user.display_name,
        vat_code=vat_code,
        reg_com=_non_blank(user.registration_number),
        address=pick("address"),
        city=pick("city"),
        county=pick("county") or _non_blank(user.company_county) or DEFAULT_COUNTY,
        country=pick("country") or DEFAULT_COUNTRY,
        email=user.email,
        phone=pick("phone"),
        is_tax_payer=vat_code is not None,
    )

    products = [
        SmartbillProduct(
            name=item.product_name,
            code=item.product_code or f"KO-{item.product_id}",
            quantity=item.quantity,
            price=float(item.unit_price),
        )
        for item in order.items
    ]

    return SmartbillInvoiceRequest(
        company_vat_code=company_vat,
        series_name=series,
        client=client,
        issue_date=issue_date,
        due_date=issue_date + timedelta(days=PAYMENT_TERM_DAYS),
        delivery_date=issue_date,
        products=products,
        currency=order.currency,
        mentions=mentions,
        payment_url=payment_url,
    )
