"""Pytest fixtures for stockhold tests."""

import tempfile
from dataclasses import replace
from pathlib import Path

import pytest

from stockhold.config import Settings
from stockhold.context import build_services
from stockhold.errors import PaymentGatewayError
from stockhold.models import Product
from stockhold.payments import PaymentIntent, Refund

ADDRESS = {
    "name": "Ada Lovelace",
    "street": "12 Analytical Row",
    "city": "London",
    "state": "LDN",
    "zip_code": "N1 9GU",
    "country": "UK",
    "phone": "+44 20 7946 0000",
}


class FakeGateway:
    """In-memory payment gateway. Set `fail_on` to an operation name to make it error."""

    def __init__(self):
        self.intents: dict[str, PaymentIntent] = {}
        self.refunds: list[Refund] = []
        self.fail_on: str | None = None

    def _maybe_fail(self, operation: str) -> None:
        if self.fail_on == operation:
            raise PaymentGatewayError(operation, "request timed out")

    def create_payment_intent(self, amount, currency, metadata):
        self._maybe_fail("create_payment_intent")
        intent = PaymentIntent(
            id=f"pi_{len(self.intents) + 1}",
            status="requires_payment_method",
            amount=amount,
            client_secret="pi_secret",
            metadata=dict(metadata),
        )
        self.intents[intent.id] = intent
        return intent

    def set_status(self, intent_id: str, status: str) -> None:
        self.intents[intent_id] = replace(self.intents[intent_id], status=status)

    def retrieve_payment_intent(self, intent_id):
        self._maybe_fail("retrieve_payment_intent")
        if intent_id not in self.intents:
            raise PaymentGatewayError("retrieve_payment_intent", f"no such intent {intent_id}")
        return self.intents[intent_id]

    def create_refund(self, transaction_id, amount, metadata):
        self._maybe_fail("create_refund")
        refund = Refund(id=f"re_{len(self.refunds) + 1}", status="succeeded", amount=amount)
        self.refunds.append(refund)
        return refund


@pytest.fixture
def temp_dir():
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings(temp_dir):
    return Settings(data_dir=temp_dir)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def services(settings, gateway):
    """Fully wired services over JSON files in a temporary directory."""
    return build_services(settings, gateway=gateway)


@pytest.fixture
def make_product(services):
    """Factory saving a product to the catalog."""

    def _make(name="Widget", quantity=10, price="20.00", **kwargs):
        product = Product.create(name=name, price=price, quantity=quantity, **kwargs)
        services.catalog.save_product(product)
        return product

    return _make


@pytest.fixture
def address():
    return dict(ADDRESS)


@pytest.fixture
def place_order(services, address):
    """Put `quantity` of a product in the user's cart and order it."""

    def _place(user_id, product, quantity=1, **kwargs):
        services.cart.add_item(user_id, product.id, quantity)
        return services.order.create_order(user_id, address, **kwargs)

    return _place


@pytest.fixture
def stock_of(services):
    """Current on-hand count of a product."""

    def _stock(product):
        return services.catalog.get_product(product.id).quantity

    return _stock
