"""Tests for the JSON file stores."""

import json
from decimal import Decimal

import pytest

from stockhold.errors import (
    ConflictError,
    DuplicateOrderNumberError,
    InsufficientStockError,
    InvalidArgumentError,
    NotFoundError,
)
from stockhold.json_store import JsonCartStore, JsonCatalogStore, JsonOrderStore
from stockhold.models import Address, Cart, Order, OrderSummary, Product
from stockhold.order_status import OrderStatus


def make_order(address, order_id="o1", number="ORD-1-000001", user_id="alice"):
    addr = Address.model_validate(address)
    return Order(
        id=order_id,
        order_number=number,
        user_id=user_id,
        items=[],
        summary=OrderSummary(subtotal=Decimal("0")),
        shipping_address=addr,
        billing_address=addr,
    )


class TestJsonCatalogStore:
    def test_conditional_decrement(self, temp_dir):
        store = JsonCatalogStore(temp_dir)
        product = Product.create(name="Mug", price="5", quantity=2)
        store.save_product(product)

        with pytest.raises(InsufficientStockError) as exc_info:
            store.decrement_inventory(product.id, 3)
        assert exc_info.value.available == 2
        assert store.get_product(product.id).quantity == 2

        assert store.decrement_inventory(product.id, 2).quantity == 0
        assert store.increment_inventory(product.id, 4).quantity == 4

    def test_missing_product(self, temp_dir):
        store = JsonCatalogStore(temp_dir)
        with pytest.raises(NotFoundError):
            store.decrement_inventory("nope", 1)
        with pytest.raises(NotFoundError):
            store.increment_inventory("nope", 1)

    def test_amount_must_be_positive(self, temp_dir):
        store = JsonCatalogStore(temp_dir)
        with pytest.raises(InvalidArgumentError):
            store.decrement_inventory("any", 0)

    def test_set_status_keeps_inventory(self, temp_dir):
        store = JsonCatalogStore(temp_dir)
        product = Product.create(name="Mug", price="5", quantity=5)
        store.save_product(product)
        store.decrement_inventory(product.id, 2)

        updated = store.set_status(product.id, "inactive")

        assert updated.status == "inactive"
        assert updated.quantity == 3
        assert store.get_product(product.id).quantity == 3
        with pytest.raises(InvalidArgumentError):
            store.set_status(product.id, "sold-out")
        with pytest.raises(NotFoundError):
            store.set_status("nope", "active")

    def test_file_format(self, temp_dir):
        store = JsonCatalogStore(temp_dir)
        product = Product.create(name="Mug", price="5", quantity=2)
        store.save_product(product)

        data = json.loads((temp_dir / "products.json").read_text())
        assert data["schema_version"] == 1
        assert data["documents"][product.id]["inventory"]["quantity"] == 2
        assert not list(temp_dir.glob("*.tmp"))

    def test_list_sorted_by_name(self, temp_dir):
        store = JsonCatalogStore(temp_dir)
        for name in ("Zebra", "Apple"):
            store.save_product(Product.create(name=name, price="1"))

        assert [p.name for p in store.list_products()] == ["Apple", "Zebra"]


class TestJsonCartStore:
    def test_user_and_session_carts(self, temp_dir):
        store = JsonCartStore(temp_dir)
        user_cart = Cart(user_id="alice")
        user_cart.add_line("p1", 1, Decimal("2"))
        session_cart = Cart(session_id="alice")
        session_cart.add_line("p1", 2, Decimal("2"))
        store.save_cart(user_cart)
        store.save_cart(session_cart)

        assert store.get_cart("alice").total_items == 1
        assert store.get_session_cart("alice").total_items == 2
        assert len(store.find_carts_containing_product("p1")) == 2
        assert store.find_carts_containing_product("p2") == []


class TestJsonOrderStore:
    def test_order_number_is_unique(self, temp_dir, address):
        store = JsonOrderStore(temp_dir)
        store.create_order(make_order(address))

        with pytest.raises(DuplicateOrderNumberError):
            store.create_order(make_order(address, order_id="o2"))
        with pytest.raises(ConflictError):
            store.create_order(make_order(address, number="ORD-1-000002"))

    def test_save_with_expected_status(self, temp_dir, address):
        store = JsonOrderStore(temp_dir)
        order = make_order(address)
        store.create_order(order)

        order.status = OrderStatus.CONFIRMED
        store.save_order(order, expected_status=OrderStatus.PENDING)

        order.status = OrderStatus.CANCELLED
        with pytest.raises(ConflictError):
            store.save_order(order, expected_status=OrderStatus.PENDING)
        assert store.get_order(order.id).status is OrderStatus.CONFIRMED

    def test_save_with_expected_refund_status(self, temp_dir, address):
        store = JsonOrderStore(temp_dir)
        order = make_order(address)
        store.create_order(order)

        order.refund.status = "processing"
        store.save_order(order, expected_refund_status="none")

        with pytest.raises(ConflictError, match="Refund"):
            store.save_order(order, expected_refund_status="none")
        assert store.get_order(order.id).refund.status == "processing"

    def test_save_missing_order(self, temp_dir, address):
        store = JsonOrderStore(temp_dir)
        with pytest.raises(NotFoundError):
            store.save_order(make_order(address))

    def test_find_by_transaction_id(self, temp_dir, address):
        store = JsonOrderStore(temp_dir)
        order = make_order(address)
        order.payment.transaction_id = "pi_1"
        store.create_order(order)

        assert store.find_by_transaction_id("pi_1").id == order.id
        assert store.find_by_transaction_id("pi_2") is None
