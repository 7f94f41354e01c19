"""Pytest fixtures for KitchenOff billing tests."""

import sys
import os
from datetime import datetime
from decimal import Decimal

import pytest

# Add the project root to the Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from kitchenoff.models import Address, Order, OrderItem, User
from kitchenoff.services import InMemoryDataGateway
from kitchenoff.utils.config import InvoiceServiceConfig, SamedayConfig, SmartbillConfig


FIXED_NOW = datetime(2025, 3, 14, 10, 30, 0)


@pytest.fixture
def smartbill_config():
    return SmartbillConfig(
        username="billing@kitchenoff.ro",
        token="sb-token",
        company_vat="RO40123456",
        base_url="https://smartbill.test/api",
    )


@pytest.fixture
def sameday_config():
    return SamedayConfig(
        username="kitchenoff",
        password="secret",
        base_url="https://sameday.test",
        auth_cooldown=300,
    )


@pytest.fixture
def service_config(smartbill_config):
    """Orchestrator config with Smartbill disabled"""
    return InvoiceServiceConfig(smartbill=smartbill_config, default_series="KTO", enable_smartbill=False)


@pytest.fixture
def business_user():
    return User(
        id=7,
        email="ana@bistro.ro",
        first_name="Ana",
        last_name="Popescu",
        company_name="Bistro Central SRL",
        vat_number="RO987654",
        registration_number="J40/123/2020",
        company_county="Cluj",
    )


@pytest.fixture
def paid_order_1384():
    """Two lines, 2 x 49.99 + 1 x 25.00 = 124.98 RON"""
    address = Address(
        name="Bistro Central",
        address="Str. Memorandumului 10",
        city="Cluj-Napoca",
        county="Cluj",
        postal_code="400114",
        country="Romania",
        phone="0740000000",
    )
    return Order(
        id=1384,
        user_id=7,
        items=[
            OrderItem(
                product_id=11,
                product_name="Chef Knife 20cm",
                product_code="KNF-20",
                quantity=2,
                unit_price=Decimal("49.99"),
                line_total=Decimal("99.98"),
            ),
            OrderItem(
                product_id=12,
                product_name="Cutting Board",
                quantity=1,
                unit_price=Decimal("25.00"),
                line_total=Decimal("25.00"),
            ),
        ],
        total_amount=Decimal("124.98"),
        billing_address=address,
        shipping_address=address,
        payment_method="card",
    )


@pytest.fixture
def gateway(paid_order_1384, business_user):
    return InMemoryDataGateway(orders=[paid_order_1384], users=[business_user])
