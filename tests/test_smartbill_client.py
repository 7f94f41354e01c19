"""
Smartbill Client Tests

Tests request mapping, authentication and error handling of the Smartbill
client against an httpx MockTransport.
"""

import base64
import json
from datetime import date
from decimal import Decimal

import httpx
import pytest

from kitchenoff.errors import (
    ConfigurationError,
    InvoiceValidationError,
    ProviderError,
    UnreadableProviderResponse,
)
from kitchenoff.models import CatalogProduct, Order, Product, StockMovement, User
from kitchenoff.services import SmartbillClient, build_invoice_request, catalog_product
from kitchenoff.utils.config import SmartbillConfig


def make_client(config, handler, sleep=None):
    """Build a client whose HTTP calls are answered by handler"""
    requests = []

    def recording_handler(request):
        requests.append(request)
        return handler(request)

    http = httpx.Client(transport=httpx.MockTransport(recording_handler))
    return SmartbillClient(config, http_client=http, sleep=sleep or (lambda seconds: None)), requests


def build_request(order, user):
    return build_invoice_request(order, user, company_vat="RO40123456", series="KTO", issue_date=date(2025, 3, 14))


class TestBuildInvoiceRequest:
    """Test mapping of orders and users to Smartbill requests"""

    def test_business_customer(self, paid_order_1384, business_user):
        request = build_request(paid_order_1384, business_user)
        body = request.to_wire()

        assert body["companyVatCode"] == "RO40123456"
        assert body["seriesName"] == "KTO"
        assert body["issueDate"] == "2025-03-14"
        assert body["dueDate"] == "2025-04-13"
        assert body["precision"] == 2
        assert body["client"]["name"] == "Bistro Central SRL"
        assert body["client"]["vatCode"] == "RO987654"
        assert body["client"]["regCom"] == "J40/123/2020"
        assert body["client"]["isTaxPayer"] is True
        assert body["client"]["county"] == "Cluj"

    def test_products_are_reverse_charged(self, paid_order_1384, business_user):
        products = build_request(paid_order_1384, business_user).to_wire()["products"]

        assert len(products) == 2
        assert products[0]["code"] == "KNF-20"
        assert products[1]["code"] == "KO-12"
        assert products[0]["measuringUnitName"] == "buc"
        assert products[0]["price"] == 49.99
        assert all(p["taxPercentage"] == 0 for p in products)
        assert all(p["taxName"] == "Taxare inversa" for p in products)

    def test_blank_tax_fields_omitted(self, paid_order_1384):
        """Test blank VAT and registration numbers are left out of the request"""
        user = User(id=8, email="ion@example.com", first_name="Ion", last_name="Ionescu",
                    vat_number="  ", registration_number="")
        client = build_request(paid_order_1384, user).to_wire()["client"]

        assert "vatCode" not in client
        assert "regCom" not in client
        assert client["isTaxPayer"] is False
        assert client["name"] == "Ion Ionescu"

    def test_default_county_and_country(self, business_user):
        order = Order(
            id=3,
            user_id=7,
            items=[{"product_id": 1, "product_name": "Pot", "quantity": 1,
                    "unit_price": "30.00", "line_total": "30.00"}],
            total_amount=Decimal("30.00"),
        )
        user = business_user.model_copy(update={"company_county": None})
        client = build_request(order, user).to_wire()["client"]

        assert client["county"] == "Bucuresti"
        assert client["country"] == "Romania"

    def test_empty_order_rejected(self, business_user):
        order = Order(id=4, user_id=7, items=[], total_amount=Decimal("0"))
        with pytest.raises(InvoiceValidationError):
            build_request(order, business_user)


class TestSmartbillClient:
    """Test Smartbill HTTP calls"""

    def test_requires_credentials(self):
        with pytest.raises(ConfigurationError):
            SmartbillClient(SmartbillConfig(username="", token="", company_vat="RO1"))

    def test_create_invoice(self, smartbill_config, paid_order_1384, business_user):
        client, requests = make_client(
            smartbill_config,
            lambda request: httpx.Response(200, json={"series": "KTO", "number": 42, "url": "https://x/42"}),
        )

        result = client.create_invoice(build_request(paid_order_1384, business_user))

        assert result.series == "KTO"
        assert result.number == "42"
        assert result.url == "https://x/42"

        sent = requests[0]
        assert sent.method == "POST"
        assert str(sent.url) == "https://smartbill.test/api/invoice"
        expected = base64.b64encode(b"billing@kitchenoff.ro:sb-token").decode("ascii")
        assert sent.headers["Authorization"] == f"Basic {expected}"
        assert json.loads(sent.content)["seriesName"] == "KTO"

    def test_create_invoice_rejected(self, smartbill_config, paid_order_1384, business_user):
        client, _ = make_client(
            smartbill_config,
            lambda request: httpx.Response(400, text="Invalid client"),
        )

        with pytest.raises(ProviderError) as exc_info:
            client.create_invoice(build_request(paid_order_1384, business_user))
        assert exc_info.value.status_code == 400
        assert exc_info.value.raw_body == "Invalid client"

    def test_error_text_in_success_response(self, smartbill_config, paid_order_1384, business_user):
        client, _ = make_client(
            smartbill_config,
            lambda request: httpx.Response(200, json={"errorText": "Seria nu exista"}),
        )

        with pytest.raises(ProviderError):
            client.create_invoice(build_request(paid_order_1384, business_user))

    def test_unusable_invoice_answer_is_logged(self, smartbill_config, paid_order_1384, business_user, caplog):
        """Test a 2xx answer without series and number keeps the raw body"""
        client, _ = make_client(smartbill_config, lambda request: httpx.Response(200, json={"message": "ok"}))

        with caplog.at_level("ERROR", logger="kitchenoff.services.smartbill_client"):
            with pytest.raises(UnreadableProviderResponse) as exc_info:
                client.create_invoice(build_request(paid_order_1384, business_user))

        assert isinstance(exc_info.value, ProviderError)
        assert "'message': 'ok'" in exc_info.value.raw_body
        errors = [r.getMessage() for r in caplog.records if r.levelname == "ERROR"]
        assert any("'message': 'ok'" in message for message in errors)

    def test_transport_error(self, smartbill_config, paid_order_1384, business_user):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = make_client(smartbill_config, handler)

        with pytest.raises(ProviderError) as exc_info:
            client.create_invoice(build_request(paid_order_1384, business_user))
        assert exc_info.value.status_code is None

    def test_get_invoice_pdf(self, smartbill_config):
        client, requests = make_client(
            smartbill_config,
            lambda request: httpx.Response(200, content=b"%PDF-1.4"),
        )

        assert client.get_invoice_pdf("RO40123456", "KTO", "0042") == b"%PDF-1.4"
        assert requests[0].headers["Accept"] == "application/octet-stream"
        assert json.loads(requests[0].content) == {"cif": "RO40123456", "seriesname": "KTO", "number": "0042"}

    def test_is_invoice_paid(self, smartbill_config):
        client, requests = make_client(smartbill_config, lambda request: httpx.Response(200, json={"paid": True}))

        assert client.is_invoice_paid("RO40123456", "KTO", "0042") is True
        assert requests[0].url.path == "/api/invoice/paymentstatus"

    def test_is_invoice_paid_never_raises(self, smartbill_config):
        client, _ = make_client(smartbill_config, lambda request: httpx.Response(500, text="boom"))

        assert client.is_invoice_paid("RO40123456", "KTO", "0042") is False
        assert client.check_payment_status("RO40123456", "KTO", "0042") is None

    def test_cancel_invoice(self, smartbill_config):
        client, requests = make_client(smartbill_config, lambda request: httpx.Response(200, json={"message": "ok"}))

        result = client.cancel_invoice("RO40123456", "KTO", "0042")

        assert result.message == "ok"
        assert requests[0].method == "PUT"
        assert requests[0].url.path == "/api/invoice/cancel"

    def test_send_invoice_by_email(self, smartbill_config):
        client, requests = make_client(smartbill_config, lambda request: httpx.Response(200, json={}))

        client.send_invoice_by_email("RO40123456", "KTO", "0042", "ana@bistro.ro", "Invoice", "Hello")

        body = json.loads(requests[0].content)
        assert requests[0].url.path == "/api/document/send"
        assert body["type"] == "factura"
        assert body["to"] == "ana@bistro.ro"

    def test_get_series_and_vat_rates(self, smartbill_config):
        def handler(request):
            if request.url.path.endswith("/series"):
                return httpx.Response(200, json={"list": [{"name": "KTO", "nextNumber": 43, "type": "f"}]})
            return httpx.Response(200, json={"taxes": [{"name": "Normala", "percentage": 19}]})

        client, requests = make_client(smartbill_config, handler)

        series = client.get_series("RO40123456")
        rates = client.get_vat_rates("RO40123456")

        assert series[0].name == "KTO"
        assert series[0].next_number == 43
        assert rates[0].percentage == 19
        assert requests[0].url.params["cif"] == "RO40123456"

    def test_connection(self, smartbill_config):
        ok, _ = make_client(smartbill_config, lambda request: httpx.Response(200, json={"list": []}))
        failing, _ = make_client(smartbill_config, lambda request: httpx.Response(401, text="Unauthorized"))

        assert ok.test_connection() is True
        assert failing.test_connection() is False


def make_product(product_id, name, code=None, price="49.99", category=None):
    return Product(id=product_id, name=name, product_code=code, price=Decimal(price), category=category)


class TestProductsAndStock:
    """Test product nomenclature and stock calls"""

    def test_catalog_product_mapping(self):
        product = catalog_product(make_product(12, "Cutting Board", price="25"))

        assert product.code == "12"
        assert product.um == "buc"
        assert product.price == 25.0
        assert product.currency == "EUR"
        assert product.category == "General"
        assert product.barcode == ""

    def test_get_products(self, smartbill_config):
        client, requests = make_client(smartbill_config, lambda request: httpx.Response(200, json=[
            {"name": "Chef Knife 20cm", "code": "KNF-20", "um": "buc", "price": 49.99, "vatPercentage": 19},
        ]))

        products = client.get_products("RO40123456")

        assert products[0].code == "KNF-20"
        assert products[0].vat_percentage == 19
        assert requests[0].url.path == "/api/products"
        assert requests[0].url.params["cif"] == "RO40123456"

    def test_get_products_non_list_answer(self, smartbill_config):
        client, _ = make_client(smartbill_config, lambda request: httpx.Response(200, json={"message": "none"}))
        assert client.get_products("RO40123456") == []

    def test_create_or_update_product(self, smartbill_config):
        client, requests = make_client(smartbill_config, lambda request: httpx.Response(200, json={"message": "saved"}))

        result = client.create_or_update_product(
            "RO40123456", CatalogProduct(name="Chef Knife 20cm", code="KNF-20", price=49.99, vat_percentage=19)
        )

        assert result == {"message": "saved"}
        body = json.loads(requests[0].content)
        assert requests[0].method == "POST"
        assert body["cif"] == "RO40123456"
        assert body["code"] == "KNF-20"
        assert body["um"] == "buc"
        assert body["vatPercentage"] == 19
        assert "barcode" not in body

    def test_get_product_stock(self, smartbill_config):
        client, requests = make_client(smartbill_config, lambda request: httpx.Response(200, json=[
            {"productCode": "KNF-20", "quantity": 14},
            {"code": "BRD-01", "stock": "3"},
        ]))

        rows = client.get_product_stock("RO40123456", product_code="KNF-20")

        assert [(row.product_code, row.quantity) for row in rows] == [("KNF-20", 14), ("BRD-01", 3)]
        assert requests[0].url.params["productCode"] == "KNF-20"

    def test_single_stock_row_is_wrapped(self, smartbill_config):
        client, requests = make_client(
            smartbill_config, lambda request: httpx.Response(200, json={"productCode": "KNF-20", "quantity": 2})
        )

        rows = client.get_product_stock("RO40123456")

        assert len(rows) == 1
        assert "productCode" not in requests[0].url.params

    def test_unreadable_stock_row(self, smartbill_config):
        client, _ = make_client(
            smartbill_config, lambda request: httpx.Response(200, json=[{"productCode": "KNF-20", "quantity": "many"}])
        )

        with pytest.raises(ProviderError):
            client.get_product_stock("RO40123456")

    def test_update_product_stock(self, smartbill_config):
        client, requests = make_client(smartbill_config, lambda request: httpx.Response(200, json={}))

        client.update_product_stock("RO40123456", [
            StockMovement(product_code="KNF-20", quantity=2, operation="subtract", document_number="0042"),
        ])

        body = json.loads(requests[0].content)
        assert requests[0].url.path == "/api/stocks"
        assert body["cif"] == "RO40123456"
        assert body["stockMovements"] == [
            {"productCode": "KNF-20", "quantity": 2.0, "operation": "subtract", "documentNumber": "0042"},
        ]

    def test_update_product_stock_rejected(self, smartbill_config):
        client, _ = make_client(smartbill_config, lambda request: httpx.Response(422, text="Unknown product"))

        with pytest.raises(ProviderError) as exc_info:
            client.update_product_stock("RO40123456", [StockMovement(product_code="X", quantity=1, operation="add")])
        assert exc_info.value.status_code == 422

    def test_sync_products_counts_failures(self, smartbill_config):
        """Test one rejected product does not stop the others"""
        def handler(request):
            if json.loads(request.content)["code"] == "BAD-1":
                return httpx.Response(400, text="Invalid product")
            return httpx.Response(200, json={"message": "saved"})

        pauses = []
        client, requests = make_client(smartbill_config, handler, sleep=pauses.append)
        products = [
            make_product(11, "Chef Knife 20cm", code="KNF-20"),
            make_product(13, "Broken Item", code="BAD-1"),
            make_product(12, "Cutting Board", category="Boards"),
        ]

        result = client.sync_products_to_smartbill("RO40123456", products)

        assert (result.success, result.failed) == (2, 1)
        assert len(result.errors) == 1
        assert "Broken Item" in result.errors[0]
        assert len(requests) == 3
        assert pauses == [0.1, 0.1, 0.1]
        assert json.loads(requests[2].content)["category"] == "Boards"

    def test_sync_stock_maps_known_codes(self, smartbill_config):
        client, _ = make_client(smartbill_config, lambda request: httpx.Response(200, json=[
            {"productCode": "KNF-20", "quantity": 14},
            {"code": "BRD-01", "stock": 3},
            {"productCode": "UNKNOWN", "quantity": 9},
        ]))

        result = client.sync_stock_from_smartbill(
            "RO40123456", {"KNF-20": 11, "BRD-01": 12}, current_stock={11: 20}
        )

        assert (result.success, result.failed) == (2, 0)
        assert [(u.product_id, u.old_stock, u.new_stock) for u in result.stock_updates] == [
            (11, 20, 14),
            (12, None, 3),
        ]

    def test_sync_stock_fetch_failure(self, smartbill_config):
        client, _ = make_client(smartbill_config, lambda request: httpx.Response(500, text="down"))

        result = client.sync_stock_from_smartbill("RO40123456", {"KNF-20": 11})

        assert (result.success, result.failed) == (0, 0)
        assert result.stock_updates == []
        assert result.errors[0].startswith("Failed to fetch stock data")
