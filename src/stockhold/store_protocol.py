"""Protocol definitions for the persistence collaborators."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Protocol

if TYPE_CHECKING:
    from .models import Cart, Order, Product, Wishlist
    from .order_status import OrderStatus


class CatalogStore(Protocol):
    """Source of truth for products and their inventory counts.

    Inventory is only ever changed through the conditional decrement and
    the increment below, never by read-modify-write in a caller.
    """

    def get_product(self, product_id: str) -> Product | None:
        """Return the product, or None if it doesn't exist."""
        ...

    def list_products(self) -> list[Product]:
        ...

    def save_product(self, product: Product) -> None:
        """Insert or replace a product (admin edits)."""
        ...

    def set_status(self, product_id: str, status: str) -> Product:
        """Change only the product's status, leaving inventory untouched.

        Raises:
            NotFoundError: If the product doesn't exist.
            InvalidArgumentError: If the status is unknown.
        """
        ...

    def decrement_inventory(self, product_id: str, amount: int) -> Product:
        """Atomically take units out of stock.

        The decrement is applied only if the resulting quantity stays
        non-negative.

        Returns:
            The product after the decrement.

        Raises:
            NotFoundError: If the product doesn't exist.
            InsufficientStockError: If fewer than `amount` units are on hand.
        """
        ...

    def increment_inventory(self, product_id: str, amount: int) -> Product:
        """Atomically put units back in stock.

        Raises:
            NotFoundError: If the product doesn't exist.
        """
        ...


class CartStore(Protocol):
    """Persistence for carts, keyed by owner."""

    def get_cart(self, user_id: str) -> Cart | None:
        ...

    def save_cart(self, cart: Cart) -> None:
        ...

    def find_carts_containing_product(self, product_id: str) -> list[Cart]:
        """Every cart (user or session owned) holding a line for the product."""
        ...


class OrderStore(Protocol):
    """Persistence for orders. Orders are never deleted."""

    def create_order(self, order: Order) -> None:
        """Insert a new order.

        Raises:
            DuplicateOrderNumberError: If the order number is taken.
        """
        ...

    def get_order(self, order_id: str) -> Order | None:
        ...

    def find_by_transaction_id(self, transaction_id: str) -> Order | None:
        ...

    def list_orders(
        self,
        user_id: str | None = None,
        statuses: Iterable[OrderStatus] | None = None,
    ) -> list[Order]:
        """Orders matching the filters, newest first."""
        ...

    def save_order(
        self,
        order: Order,
        expected_status: OrderStatus | None = None,
        expected_refund_status: str | None = None,
    ) -> None:
        """Replace a stored order.

        With `expected_status` set, the write only happens if the stored
        order still has that status; `expected_refund_status` guards the
        stored refund record the same way.

        Raises:
            NotFoundError: If the order doesn't exist.
            ConflictError: If a stored status differs from the expected one.
        """
        ...


class WishlistStore(Protocol):
    def get_wishlist(self, user_id: str) -> Wishlist | None:
        ...

    def save_wishlist(self, wishlist: Wishlist) -> None:
        ...
