"""Tests for order creation, cancellation and status changes."""

from decimal import Decimal

import pytest

from stockhold.config import PricingPolicy
from stockhold.errors import (
    AccessDeniedError,
    ConflictError,
    EmptyCartError,
    InsufficientStockError,
    InvalidArgumentError,
    InvalidStateTransitionError,
    ProductUnavailableError,
)
from stockhold.models import OrderItem
from stockhold.order_service import price_items
from stockhold.order_status import OrderStatus, apply_transition


class FailingCatalog:
    """Delegates to a real catalog but refuses to decrement one product."""

    def __init__(self, catalog, failing_product_id):
        self._catalog = catalog
        self.failing_product_id = failing_product_id

    def __getattr__(self, name):
        return getattr(self._catalog, name)

    def decrement_inventory(self, product_id, amount):
        if product_id == self.failing_product_id:
            raise InsufficientStockError(product_id, amount, 0)
        return self._catalog.decrement_inventory(product_id, amount)


class TestCreateOrder:
    def test_takes_stock_and_clears_cart(self, services, make_product, address, stock_of):
        product = make_product(quantity=5)
        services.cart.add_item("alice", product.id, 3)

        order = services.order.create_order("alice", address)

        assert stock_of(product) == 2
        assert services.cart.get_cart("alice").total_items == 0
        assert order.status is OrderStatus.PENDING
        assert order.user_id == "alice"
        assert order.order_number.startswith("ORD-")
        assert [c.note for c in order.status_history] == ["Order placed"]
        assert order.items[0].quantity == 3
        assert order.items[0].product_name == "Widget"
        assert services.order.get_order(order.id, "alice").id == order.id

    def test_uses_cart_price_snapshot(self, services, make_product, address):
        product = make_product(quantity=5, price="20.00")
        services.cart.add_item("alice", product.id, 2)

        stored = services.catalog.get_product(product.id)
        stored.price = Decimal("99.00")
        services.catalog.save_product(stored)

        order = services.order.create_order("alice", address)
        assert order.items[0].price == Decimal("20.00")
        assert order.summary.subtotal == Decimal("40.00")

    def test_billing_defaults_to_shipping(self, place_order, make_product):
        order = place_order("alice", make_product())
        assert order.billing_address == order.shipping_address

    def test_empty_cart(self, services, address):
        with pytest.raises(EmptyCartError):
            services.order.create_order("alice", address)

        services.cart.get_cart("alice")
        with pytest.raises(EmptyCartError):
            services.order.create_order("alice", address)

    def test_inactive_product_blocks_order(self, services, make_product, address, stock_of):
        product = make_product(quantity=5)
        services.cart.add_item("alice", product.id, 2)
        stored = services.catalog.get_product(product.id)
        stored.status = "inactive"
        services.catalog.save_product(stored)

        with pytest.raises(ProductUnavailableError):
            services.order.create_order("alice", address)
        assert stock_of(product) == 5
        assert services.orders.list_orders() == []

    def test_final_stock_check(self, services, make_product, address, stock_of):
        product = make_product(quantity=5)
        services.cart.add_item("alice", product.id, 3)
        services.catalog.decrement_inventory(product.id, 3)

        with pytest.raises(InsufficientStockError) as exc_info:
            services.order.create_order("alice", address)

        assert exc_info.value.available == 2
        assert stock_of(product) == 2
        assert services.carts.get_cart("alice").total_items == 3

    def test_variant_lines_of_one_product_are_checked_together(
        self, services, make_product, address
    ):
        product = make_product(quantity=3)
        services.cart.add_item("alice", product.id, 2, {"size": "M"})
        services.cart.add_item("alice", product.id, 1, {"size": "L"})
        services.catalog.decrement_inventory(product.id, 1)

        with pytest.raises(InsufficientStockError):
            services.order.create_order("alice", address)

    def test_lost_race_returns_taken_stock(self, services, make_product, address, stock_of):
        first = make_product(name="First", quantity=5)
        second = make_product(name="Second", quantity=5)
        services.cart.add_item("alice", first.id, 2)
        services.cart.add_item("alice", second.id, 1)
        services.order.catalog = FailingCatalog(services.catalog, second.id)

        with pytest.raises(ConflictError):
            services.order.create_order("alice", address)

        assert stock_of(first) == 5
        assert stock_of(second) == 5
        assert services.orders.list_orders() == []
        assert services.carts.get_cart("alice").total_items == 3

    def test_failed_insert_returns_stock(
        self, services, make_product, address, stock_of, monkeypatch
    ):
        product = make_product(quantity=5)
        services.cart.add_item("alice", product.id, 2)

        def broken_insert(order):
            raise RuntimeError("disk full")

        monkeypatch.setattr(services.orders, "create_order", broken_insert)
        with pytest.raises(RuntimeError):
            services.order.create_order("alice", address)

        assert stock_of(product) == 5
        assert services.carts.get_cart("alice").total_items == 2

    def test_duplicate_order_number_is_retried(
        self, services, make_product, place_order, monkeypatch
    ):
        product = make_product(quantity=5)
        numbers = iter(["ORD-1-AAAAAA", "ORD-1-AAAAAA", "ORD-2-BBBBBB"])
        monkeypatch.setattr(services.order, "new_order_number", lambda: next(numbers))

        first = place_order("alice", product)
        second = place_order("bob", product)

        assert first.order_number == "ORD-1-AAAAAA"
        assert second.order_number == "ORD-2-BBBBBB"

    def test_cart_clear_failure_keeps_order(
        self, services, make_product, address, stock_of, monkeypatch
    ):
        product = make_product(quantity=5)
        services.cart.add_item("alice", product.id, 1)

        def broken_clear(user_id):
            raise RuntimeError("cart store down")

        monkeypatch.setattr(services.cart, "clear", broken_clear)
        order = services.order.create_order("alice", address)

        assert services.orders.get_order(order.id) is not None
        assert stock_of(product) == 4

    def test_invalid_address(self, services, make_product, address):
        product = make_product()
        services.cart.add_item("alice", product.id, 1)

        with pytest.raises(InvalidArgumentError, match="shipping"):
            services.order.create_order("alice", {**address, "city": ""})

    def test_invalid_payment_method(self, services, make_product, address):
        product = make_product()
        services.cart.add_item("alice", product.id, 1)

        with pytest.raises(InvalidArgumentError):
            services.order.create_order("alice", address, payment_method="barter")


class TestPricing:
    def test_free_shipping_above_threshold(self):
        items = [OrderItem(product_id="p", product_name="P", quantity=1, price=Decimal("120.00"))]
        summary = price_items(items, PricingPolicy())

        assert summary.shipping == 0
        assert summary.tax == summary.subtotal * Decimal("0.10")
        assert summary.total == Decimal("132")

    def test_flat_shipping_below_threshold(self):
        items = [OrderItem(product_id="p", product_name="P", quantity=2, price=Decimal("40.00"))]
        summary = price_items(items, PricingPolicy())

        assert summary.subtotal == Decimal("80.00")
        assert summary.shipping == Decimal("10")
        assert summary.tax == Decimal("8")
        assert summary.total == Decimal("98")

    def test_threshold_itself_pays_shipping(self):
        items = [OrderItem(product_id="p", product_name="P", quantity=1, price=Decimal("100"))]
        assert price_items(items, PricingPolicy()).shipping == Decimal("10")

    def test_policy_is_configurable(self):
        policy = PricingPolicy(
            tax_rate=Decimal("0.2"),
            free_shipping_threshold=Decimal("50"),
            flat_shipping=Decimal("4"),
        )
        items = [OrderItem(product_id="p", product_name="P", quantity=1, price=Decimal("40"))]
        summary = price_items(items, policy)

        assert summary.tax == Decimal("8")
        assert summary.shipping == Decimal("4")

    def test_order_total_matches_parts(self, place_order, make_product):
        order = place_order("alice", make_product(price="33.33", quantity=5), quantity=3)
        s = order.summary

        assert s.subtotal == Decimal("99.99")
        assert s.shipping == Decimal("10")
        assert s.total == s.subtotal + s.tax + s.shipping - s.discount


class TestCancelOrder:
    def test_cancel_restores_stock_once(self, services, make_product, place_order, stock_of):
        product = make_product(quantity=5)
        order = place_order("alice", product, quantity=3)
        assert stock_of(product) == 2

        cancelled = services.order.cancel_order(order.id, "alice")
        assert cancelled.status is OrderStatus.CANCELLED
        assert cancelled.cancellation.cancelled_by == "alice"
        assert stock_of(product) == 5

        with pytest.raises(InvalidStateTransitionError):
            services.order.cancel_order(order.id, "alice")
        assert stock_of(product) == 5

    def test_cancel_confirmed_order(self, services, make_product, place_order, stock_of):
        product = make_product(quantity=5)
        order = place_order("alice", product, quantity=2)
        services.order.update_status(order.id, "confirmed", "Checked by hand")

        services.order.cancel_order(order.id, "alice", reason="Changed my mind")
        assert stock_of(product) == 5
        stored = services.orders.get_order(order.id)
        assert stored.cancellation.reason == "Changed my mind"

    def test_cannot_cancel_after_processing(self, services, make_product, place_order, stock_of):
        product = make_product(quantity=5)
        order = place_order("alice", product)
        services.order.update_status(order.id, "processing", "Picked")

        with pytest.raises(InvalidStateTransitionError):
            services.order.cancel_order(order.id, "alice")
        assert stock_of(product) == 4

    def test_only_owner_or_admin(self, services, make_product, place_order):
        order = place_order("alice", make_product())

        with pytest.raises(AccessDeniedError):
            services.order.cancel_order(order.id, "mallory")

        cancelled = services.order.cancel_order(order.id, "ops", is_admin=True)
        assert cancelled.status is OrderStatus.CANCELLED

    def test_stale_copy_cannot_restore_twice(self, services, make_product, place_order, stock_of):
        product = make_product(quantity=5)
        order = place_order("alice", product, quantity=2)
        stale = services.orders.get_order(order.id)

        services.order.cancel_order(order.id, "alice")
        previous = apply_transition(stale, OrderStatus.CANCELLED, "second writer")
        with pytest.raises(InvalidStateTransitionError, match="concurrently"):
            services.order.commit_transition(stale, previous)

        assert stock_of(product) == 5


class TestUpdateStatus:
    def test_requires_note(self, services, make_product, place_order):
        order = place_order("alice", make_product())
        with pytest.raises(InvalidArgumentError):
            services.order.update_status(order.id, "confirmed", "  ")

    def test_illegal_jump(self, services, make_product, place_order):
        order = place_order("alice", make_product())
        with pytest.raises(InvalidStateTransitionError):
            services.order.update_status(order.id, "delivered", "Skip ahead")

    def test_ship_with_tracking(self, services, make_product, place_order):
        order = place_order("alice", make_product())
        services.order.update_status(order.id, "processing", "Packed")
        shipped = services.order.update_status(
            order.id, "shipped", "Handed over", tracking={"carrier": "UPS", "tracking_number": "1Z"}
        )

        assert shipped.tracking.carrier == "UPS"
        assert [c.status for c in shipped.status_history] == [
            OrderStatus.PENDING,
            OrderStatus.PROCESSING,
            OrderStatus.SHIPPED,
        ]

    def test_returned_restocks(self, services, make_product, place_order, stock_of):
        product = make_product(quantity=5)
        order = place_order("alice", product, quantity=2)
        services.order.update_status(order.id, "processing", "Packed")
        services.order.update_status(order.id, "returned", "Parcel refused")

        assert stock_of(product) == 5

    def test_delivered_cannot_be_returned_manually(self, services, make_product, place_order):
        order = place_order("alice", make_product())
        for status in ("processing", "shipped", "delivered"):
            services.order.update_status(order.id, status, "Step")

        with pytest.raises(InvalidStateTransitionError):
            services.order.update_status(order.id, "returned", "Customer sent it back")
        assert services.order.get_order(order.id).status is OrderStatus.DELIVERED

    def test_get_order_reflects_change(self, services, make_product, place_order):
        order = place_order("alice", make_product())
        services.order.get_order(order.id)  # cached
        services.order.update_status(order.id, "confirmed", "Manual check")

        assert services.order.get_order(order.id).status is OrderStatus.CONFIRMED


class TestListOrders:
    def test_filters(self, services, make_product, place_order):
        product = make_product(quantity=10)
        first = place_order("alice", product)
        place_order("alice", product)
        place_order("bob", product)
        services.order.cancel_order(first.id, "alice")

        assert len(services.order.list_orders("alice")) == 2
        assert len(services.order.list_orders()) == 3
        cancelled = services.order.list_orders(status="cancelled")
        assert [o.id for o in cancelled] == [first.id]
        assert len(services.order.list_orders(limit=1)) == 1

    def test_access_denied_for_other_user(self, services, make_product, place_order):
        order = place_order("alice", make_product())
        with pytest.raises(AccessDeniedError):
            services.order.get_order(order.id, "bob")
        assert services.order.get_order(order.id, "bob", is_admin=True).id == order.id
