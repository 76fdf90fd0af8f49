"""Cart mutations checked against the stock ledger."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from .cache import Cache, NullCache, cart_key, cart_summary_key
from .config import CacheTTLs
from .errors import InsufficientStockError, InvalidArgumentError, NotFoundError
from .ledger import StockLedger
from .models import Cart
from .store_protocol import CartStore, CatalogStore

logger = logging.getLogger(__name__)

GUEST_SESSION = "guest"


class CartService:
    """
    Add, update, remove and clear cart lines for signed-in users.

    Stock checks here are advisory: the ledger read and the cart write are
    not atomic, so two users can both pass the check for the last unit. The
    authoritative check is the conditional decrement at order creation.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        carts: CartStore,
        cache: Cache | None = None,
        ttls: CacheTTLs | None = None,
        ledger: StockLedger | None = None,
    ):
        self.catalog = catalog
        self.carts = carts
        self.cache = cache or NullCache()
        self.ttls = ttls or CacheTTLs()
        self.ledger = ledger or StockLedger(catalog, carts)

    def _require_user(self, user_id: str | None) -> str:
        if not user_id:
            raise InvalidArgumentError("Cart changes require a signed-in user")
        return user_id

    def _save(self, cart: Cart) -> None:
        self.carts.save_cart(cart)
        if cart.user_id:
            self.invalidate(cart.user_id)

    def invalidate(self, user_id: str) -> None:
        """Drop cached copies of a user's cart."""
        self.cache.delete(cart_key(user_id), cart_summary_key(user_id))

    def _existing_cart(self, user_id: str) -> Cart:
        cart = self.carts.get_cart(user_id)
        if cart is None:
            raise NotFoundError("Cart", user_id)
        return cart

    def get_cart(self, user_id: str | None) -> Cart:
        """
        Get a user's cart, creating an empty one on first access.

        Lines whose product was removed or deactivated are dropped. Guests
        get an empty cart that is never stored.
        """
        if not user_id:
            return Cart(session_id=GUEST_SESSION)

        cached = self.cache.get(cart_key(user_id))
        if cached is not None:
            cart = Cart.from_dict(cached)
        else:
            cart = self.carts.get_cart(user_id)
            if cart is None:
                cart = Cart(user_id=user_id)
                self.carts.save_cart(cart)

        if cart.items and any(not self._is_sellable(i.product_id) for i in cart.items):
            cart = self._existing_cart(user_id)
            dropped = cart.retain(lambda item: self._is_sellable(item.product_id))
            self._save(cart)
            logger.info(
                "Dropped %d unavailable line(s) from cart of %s", len(dropped), user_id
            )

        self.cache.set(cart_key(user_id), cart.to_dict(), self.ttls.cart)
        return cart

    def _is_sellable(self, product_id: str) -> bool:
        product = self.catalog.get_product(product_id)
        return product is not None and product.is_active

    def add_item(
        self,
        user_id: str | None,
        product_id: str,
        quantity: int,
        variants: Mapping[str, Any] | None = None,
    ) -> Cart:
        """
        Add units of a product+variant to the user's cart.

        An existing line grows and its price snapshot is refreshed to the
        product's current price.

        Raises:
            InvalidArgumentError: If quantity < 1 or no user is given.
            NotFoundError: If the product doesn't exist.
            ProductUnavailableError: If the product isn't active.
            InsufficientStockError: If more than the available units are requested.
        """
        user_id = self._require_user(user_id)
        if quantity < 1:
            raise InvalidArgumentError("Quantity must be at least 1")

        stock = self.ledger.check(product_id, user_id, variants)
        if quantity > stock.available:
            raise InsufficientStockError(
                product_id, quantity, stock.available, stock.reserved_by_others
            )

        cart = self.carts.get_cart(user_id) or Cart(user_id=user_id)
        line = cart.add_line(product_id, quantity, stock.product.current_price, variants)
        self._save(cart)
        logger.info(
            "Cart %s: +%d of %s (line now %d)", user_id, quantity, product_id, line.quantity
        )
        return cart

    def update_item_quantity(
        self,
        user_id: str | None,
        product_id: str,
        new_quantity: int,
        variants: Mapping[str, Any] | None = None,
    ) -> Cart:
        """
        Set a line to an absolute quantity. Zero removes the line.

        Raises:
            InvalidArgumentError: If new_quantity is negative.
            NotFoundError: If the cart or the line doesn't exist.
            InsufficientStockError: If the new quantity can't be held.
        """
        user_id = self._require_user(user_id)
        if new_quantity < 0:
            raise InvalidArgumentError("Quantity cannot be negative")
        if new_quantity == 0:
            return self.remove_item(user_id, product_id, variants)

        cart = self._existing_cart(user_id)
        if cart.find_line(product_id, variants) is None:
            raise NotFoundError("Cart item", product_id)

        stock = self.ledger.check(product_id, user_id, variants)
        if new_quantity > stock.max_holding:
            raise InsufficientStockError(
                product_id, new_quantity, stock.max_holding, stock.reserved_by_others
            )

        cart.set_quantity(product_id, new_quantity, stock.product.current_price, variants)
        self._save(cart)
        logger.info("Cart %s: %s set to %d", user_id, product_id, new_quantity)
        return cart

    def remove_item(
        self,
        user_id: str | None,
        product_id: str,
        variants: Mapping[str, Any] | None = None,
    ) -> Cart:
        """
        Remove a product+variant line.

        Raises:
            NotFoundError: If the cart or the line doesn't exist.
        """
        user_id = self._require_user(user_id)
        cart = self._existing_cart(user_id)
        if not cart.remove_line(product_id, variants):
            raise NotFoundError("Cart item", product_id)
        self._save(cart)
        return cart

    def clear(self, user_id: str | None) -> Cart:
        """Empty the cart. Succeeds on an empty or missing cart."""
        user_id = self._require_user(user_id)
        cart = self.carts.get_cart(user_id)
        if cart is None:
            return Cart(user_id=user_id)
        cart.clear()
        self._save(cart)
        return cart

    def summary(self, user_id: str | None) -> dict[str, Any]:
        """Item count and total price, cached briefly."""
        user_id = self._require_user(user_id)
        cached = self.cache.get(cart_summary_key(user_id))
        if cached is not None:
            return cached

        cart = self.carts.get_cart(user_id)
        summary = {
            "total_items": cart.total_items if cart else 0,
            "total_price": str(cart.total_price) if cart else "0",
            "has_items": bool(cart and cart.total_items > 0),
        }
        self.cache.set(cart_summary_key(user_id), summary, self.ttls.cart_summary)
        return summary

    def sync(self, user_id: str | None) -> Cart:
        """
        Reconcile a cart with the catalog.

        Lines for missing or inactive products are dropped; lines holding
        more than is on hand are cut down to the on-hand count.

        Raises:
            NotFoundError: If the cart doesn't exist.
        """
        user_id = self._require_user(user_id)
        cart = self._existing_cart(user_id)

        changed = False
        for item in list(cart.items):
            product = self.catalog.get_product(item.product_id)
            if product is None or not product.is_active or product.quantity <= 0:
                cart.remove_line(item.product_id, item.selected_variants)
                changed = True
            elif item.quantity > product.quantity:
                cart.set_quantity(
                    item.product_id, product.quantity, item.price, item.selected_variants
                )
                changed = True

        if changed:
            self._save(cart)
            logger.info("Synchronized cart of %s with the catalog", user_id)
        return cart
