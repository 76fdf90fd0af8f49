"""Tests for the stock ledger."""

from decimal import Decimal

import pytest

from stockhold.errors import InsufficientStockError, NotFoundError, ProductUnavailableError
from stockhold.models import Cart


class TestStockLedger:
    def test_reserved_by_other_users(self, services, make_product):
        """Units in another user's cart are unavailable to everyone else."""
        product = make_product(quantity=5)
        services.cart.add_item("alice", product.id, 5)

        assert services.ledger.available(product.id, "bob") == 0
        stock = services.ledger.check(product.id, "bob")
        assert stock.reserved_by_others == 5
        assert stock.held_by_user == 0

        with pytest.raises(InsufficientStockError) as exc_info:
            services.cart.add_item("bob", product.id, 1)

        error = exc_info.value
        assert error.available == 0
        assert error.reserved_by_others == 5
        assert error.shortfall == 1

    def test_own_line_is_not_reserved_by_others(self, services, make_product):
        product = make_product(quantity=5)
        services.cart.add_item("alice", product.id, 2)

        stock = services.ledger.check(product.id, "alice")
        assert stock.held_by_user == 2
        assert stock.reserved_by_others == 0
        assert stock.max_holding == 5
        assert stock.available == 3

    def test_other_variant_of_own_cart_counts_as_reserved(self, services, make_product):
        product = make_product(quantity=5)
        services.cart.add_item("alice", product.id, 2, {"size": "M"})

        stock = services.ledger.check(product.id, "alice", {"size": "L"})
        assert stock.held_by_user == 0
        assert stock.reserved_by_others == 2
        assert stock.available == 3

    def test_session_carts_count_as_reserved(self, services, make_product):
        product = make_product(quantity=5)
        guest_cart = Cart(session_id="sess-1")
        guest_cart.add_line(product.id, 4, Decimal("20"))
        services.carts.save_cart(guest_cart)

        assert services.ledger.available(product.id, "alice") == 1

    def test_guests_get_nothing(self, services, make_product):
        product = make_product(quantity=5)
        assert services.ledger.available(product.id, None) == 0

    def test_oversold_carts_report_zero(self, services, make_product):
        """Carts can jointly exceed stock; the snapshot clamps what it reports."""
        product = make_product(quantity=2)
        for user in ("alice", "bob"):
            cart = Cart(user_id=user)
            cart.add_line(product.id, 2, Decimal("20"))
            services.carts.save_cart(cart)

        stock = services.ledger.check(product.id, "carol")
        assert stock.available == -2
        assert stock.to_dict()["available"] == 0
        assert stock.to_dict()["max_holding"] == 0

    def test_missing_product(self, services):
        with pytest.raises(NotFoundError):
            services.ledger.check("nope", "alice")

    def test_inactive_product(self, services, make_product):
        product = make_product(status="discontinued")
        with pytest.raises(ProductUnavailableError, match="discontinued"):
            services.ledger.check(product.id, "alice")
