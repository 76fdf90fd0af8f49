"""Wishlists, and moving wishlist items into the cart."""

from __future__ import annotations

import logging

from .cache import Cache, NullCache, wishlist_key
from .cart_service import CartService
from .config import CacheTTLs
from .errors import InvalidArgumentError, NotFoundError
from .models import Cart, Wishlist
from .store_protocol import CatalogStore, WishlistStore

logger = logging.getLogger(__name__)


class WishlistService:
    def __init__(
        self,
        catalog: CatalogStore,
        wishlists: WishlistStore,
        cart_service: CartService,
        cache: Cache | None = None,
        ttls: CacheTTLs | None = None,
    ):
        self.catalog = catalog
        self.wishlists = wishlists
        self.cart_service = cart_service
        self.cache = cache or NullCache()
        self.ttls = ttls or CacheTTLs()

    def _save(self, wishlist: Wishlist) -> None:
        self.wishlists.save_wishlist(wishlist)
        self.cache.delete(wishlist_key(wishlist.user_id))

    def get(self, user_id: str) -> Wishlist:
        """The user's wishlist, empty if they never saved anything."""
        cached = self.cache.get(wishlist_key(user_id))
        if cached is not None:
            return Wishlist.from_dict(cached)
        wishlist = self.wishlists.get_wishlist(user_id) or Wishlist(user_id=user_id)
        self.cache.set(wishlist_key(user_id), wishlist.to_dict(), self.ttls.wishlist)
        return wishlist

    def add(self, user_id: str, product_id: str) -> Wishlist:
        """
        Raises:
            NotFoundError: If the product doesn't exist.
            ProductUnavailableError: If the product isn't active.
            InvalidArgumentError: If the product is already on the wishlist.
        """
        self.cart_service.ledger.active_product(product_id)
        wishlist = self.wishlists.get_wishlist(user_id) or Wishlist(user_id=user_id)
        if not wishlist.add(product_id):
            raise InvalidArgumentError(f"Product {product_id} is already in the wishlist")
        self._save(wishlist)
        return wishlist

    def remove(self, user_id: str, product_id: str) -> Wishlist:
        wishlist = self.wishlists.get_wishlist(user_id)
        if wishlist is None or not wishlist.remove(product_id):
            raise NotFoundError("Wishlist item", product_id)
        self._save(wishlist)
        return wishlist

    def clear(self, user_id: str) -> Wishlist:
        wishlist = self.wishlists.get_wishlist(user_id) or Wishlist(user_id=user_id)
        wishlist.clear()
        self._save(wishlist)
        return wishlist

    def move_to_cart(self, user_id: str, product_id: str, quantity: int = 1) -> Cart:
        """
        Add a wishlist product to the cart, then drop it from the wishlist.

        The cart add is checked against the stock ledger like any other; if
        it fails the wishlist is left as it was.

        Raises:
            NotFoundError: If the product isn't on the wishlist.
            InsufficientStockError: If the units can't be held.
        """
        wishlist = self.wishlists.get_wishlist(user_id)
        if wishlist is None or not wishlist.has(product_id):
            raise NotFoundError("Wishlist item", product_id)

        cart = self.cart_service.add_item(user_id, product_id, quantity)
        wishlist.remove(product_id)
        self._save(wishlist)
        logger.info("Moved %s from wishlist to cart of %s", product_id, user_id)
        return cart
