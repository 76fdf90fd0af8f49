"""Stock ledger: how many units a user may still hold in their cart."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from .errors import NotFoundError, ProductUnavailableError
from .models import Product, variant_key
from .store_protocol import CartStore, CatalogStore


@dataclass(frozen=True)
class StockAvailability:
    """
    Snapshot of a product's stock as seen by one user.

    `max_holding` is the largest absolute quantity the user's line may
    have; `available` is how many more units the user may add to it.
    Both can be negative when carts already hold more than is on hand.
    """

    product: Product
    on_hand: int
    reserved_total: int
    held_by_user: int

    @property
    def reserved_by_others(self) -> int:
        return self.reserved_total - self.held_by_user

    @property
    def max_holding(self) -> int:
        return self.on_hand - self.reserved_by_others

    @property
    def available(self) -> int:
        return self.max_holding - self.held_by_user

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product.id,
            "on_hand": self.on_hand,
            "reserved_total": self.reserved_total,
            "held_by_user": self.held_by_user,
            "reserved_by_others": self.reserved_by_others,
            "max_holding": max(0, self.max_holding),
            "available": max(0, self.available),
        }


class StockLedger:
    """
    Computes availability from the catalog count minus quantities held in carts.

    Reservations are never stored: they are whatever the carts contain at the
    moment of the read, so the answer is only as fresh as that read.
    """

    def __init__(self, catalog: CatalogStore, carts: CartStore):
        self.catalog = catalog
        self.carts = carts

    def active_product(self, product_id: str) -> Product:
        """
        Fetch a product that can be put in a cart.

        Raises:
            NotFoundError: If the product doesn't exist.
            ProductUnavailableError: If the product isn't active.
        """
        product = self.catalog.get_product(product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        if not product.is_active:
            raise ProductUnavailableError(product.id, product.name, product.status)
        return product

    def check(
        self,
        product_id: str,
        acting_user_id: str | None,
        variants: Mapping[str, Any] | None = None,
    ) -> StockAvailability:
        """
        Compute availability of a product+variant line for a user.

        Every line of the product in every cart counts as reserved, except the
        acting user's own line for this exact variant.
        """
        product = self.active_product(product_id)
        wanted = variant_key(variants)

        reserved_total = 0
        held_by_user = 0
        for cart in self.carts.find_carts_containing_product(product_id):
            for item in cart.items:
                if item.product_id != product_id:
                    continue
                reserved_total += item.quantity
                if (
                    acting_user_id is not None
                    and cart.user_id == acting_user_id
                    and variant_key(item.selected_variants) == wanted
                ):
                    held_by_user += item.quantity

        return StockAvailability(
            product=product,
            on_hand=product.quantity,
            reserved_total=reserved_total,
            held_by_user=held_by_user,
        )

    def available(
        self,
        product_id: str,
        acting_user_id: str | None,
        variants: Mapping[str, Any] | None = None,
    ) -> int:
        """
        Additional units the user may add. Zero or negative means none.

        Guests are never granted reservable stock.
        """
        stock = self.check(product_id, acting_user_id, variants)
        if acting_user_id is None:
            return 0
        return stock.available
