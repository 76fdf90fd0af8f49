"""Order creation, cancellation and status transitions."""

from __future__ import annotations

import logging
import secrets
import time
from collections import Counter
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from .cache import Cache, NullCache, order_key
from .cart_service import CartService
from .config import PricingPolicy, Settings
from .errors import (
    AccessDeniedError,
    ConflictError,
    DuplicateOrderNumberError,
    EmptyCartError,
    InsufficientStockError,
    InvalidArgumentError,
    InvalidStateTransitionError,
    NotFoundError,
    ProductUnavailableError,
)
from .models import (
    PAYMENT_METHODS,
    ZERO,
    Address,
    CancellationInfo,
    Order,
    OrderItem,
    OrderSummary,
    PaymentInfo,
    StatusChange,
    _generate_id,
)
from .order_status import (
    CANCELLABLE,
    RESTOCKING,
    OrderStatus,
    apply_transition,
    parse_status,
)
from .store_protocol import CatalogStore, OrderStore

logger = logging.getLogger(__name__)

CART_CLEAR_ATTEMPTS = 3


def price_items(items: Iterable[OrderItem], policy: PricingPolicy) -> OrderSummary:
    """Compute subtotal, tax and shipping for order lines."""
    subtotal = sum((item.line_total for item in items), ZERO)
    return OrderSummary(
        subtotal=subtotal,
        tax=policy.tax_for(subtotal),
        shipping=policy.shipping_for(subtotal),
    )


def _address(value: Address | Mapping[str, Any], label: str) -> Address:
    if isinstance(value, Address):
        return value
    try:
        return Address.model_validate(value)
    except ValidationError as e:
        raise InvalidArgumentError(f"Invalid {label} address: {e}") from e


class OrderService:
    """Turns carts into orders and moves orders through their lifecycle."""

    def __init__(
        self,
        catalog: CatalogStore,
        orders: OrderStore,
        cart_service: CartService,
        cache: Cache | None = None,
        settings: Settings | None = None,
    ):
        self.catalog = catalog
        self.orders = orders
        self.cart_service = cart_service
        self.cache = cache or NullCache()
        self.settings = settings or Settings()

    # --- Creation ---

    def new_order_number(self) -> str:
        """Prefix, epoch milliseconds and 24 random bits, e.g. ORD-1718000000000-9F2A1C."""
        millis = int(time.time() * 1000)
        return f"{self.settings.order_number_prefix}-{millis}-{secrets.token_hex(3).upper()}"

    def create_order(
        self,
        user_id: str,
        shipping_address: Address | Mapping[str, Any],
        billing_address: Address | Mapping[str, Any] | None = None,
        payment_method: str = "stripe",
        notes: Mapping[str, str] | None = None,
    ) -> Order:
        """
        Place an order for everything in the user's cart.

        Stock is taken with a conditional decrement per product. If any
        decrement or the order insert fails, units already taken are put
        back before the error propagates. The cart is cleared last.

        Raises:
            EmptyCartError: If the cart is missing or empty.
            ProductUnavailableError: If a line's product is gone or inactive.
            InsufficientStockError: If a line asks for more than is on hand.
            ConflictError: If stock was taken by a concurrent order.
        """
        if not user_id:
            raise InvalidArgumentError("Placing an order requires a signed-in user")
        if payment_method not in PAYMENT_METHODS:
            raise InvalidArgumentError(f"Unsupported payment method '{payment_method}'")
        shipping = _address(shipping_address, "shipping")
        billing = _address(billing_address, "billing") if billing_address else shipping

        cart = self.cart_service.carts.get_cart(user_id)
        if cart is None or cart.is_empty:
            raise EmptyCartError(user_id)

        items: list[OrderItem] = []
        needed: Counter[str] = Counter()
        for line in cart.items:
            needed[line.product_id] += line.quantity

        for line in cart.items:
            product = self.catalog.get_product(line.product_id)
            if product is None:
                raise ProductUnavailableError(line.product_id, status="missing")
            if not product.is_active:
                raise ProductUnavailableError(product.id, product.name, product.status)
            if needed[product.id] > product.quantity:
                raise InsufficientStockError(product.id, needed[product.id], product.quantity)
            items.append(
                OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    product_image=product.image or "",
                    quantity=line.quantity,
                    price=line.price,
                    selected_variants=dict(line.selected_variants),
                )
            )

        summary = price_items(items, self.settings.pricing)
        taken = self._take_stock(needed)
        try:
            order = self._insert_order(
                user_id, items, summary, shipping, billing, payment_method, notes
            )
        except Exception:
            logger.error("Order insert for %s failed, returning stock", user_id)
            self._return_stock(taken)
            raise

        self._clear_cart(user_id, order)
        logger.info(
            "Order %s placed by %s: %d line(s), total %s",
            order.order_number,
            user_id,
            len(items),
            summary.total,
        )
        return order

    def _take_stock(self, needed: Mapping[str, int]) -> list[tuple[str, int]]:
        taken: list[tuple[str, int]] = []
        for product_id, quantity in needed.items():
            try:
                self.catalog.decrement_inventory(product_id, quantity)
            except InsufficientStockError as e:
                self._return_stock(taken)
                raise ConflictError(
                    f"Stock of product {product_id} was taken by another order "
                    f"(wanted {quantity}, {e.available} left)"
                ) from e
            except Exception:
                self._return_stock(taken)
                raise
            taken.append((product_id, quantity))
        return taken

    def _return_stock(self, taken: Iterable[tuple[str, int]]) -> None:
        for product_id, quantity in taken:
            try:
                self.catalog.increment_inventory(product_id, quantity)
            except Exception:
                logger.exception(
                    "Failed to return %d unit(s) of %s to stock", quantity, product_id
                )
            else:
                logger.info("Returned %d unit(s) of %s to stock", quantity, product_id)

    def _insert_order(
        self,
        user_id: str,
        items: list[OrderItem],
        summary: OrderSummary,
        shipping: Address,
        billing: Address,
        payment_method: str,
        notes: Mapping[str, str] | None,
    ) -> Order:
        order_id = _generate_id()
        for attempt in range(1, self.settings.order_number_attempts + 1):
            order = Order(
                id=order_id,
                order_number=self.new_order_number(),
                user_id=user_id,
                items=items,
                summary=summary,
                shipping_address=shipping,
                billing_address=billing,
                payment=PaymentInfo(method=payment_method),
                status=OrderStatus.PENDING,
                status_history=[StatusChange(status=OrderStatus.PENDING, note="Order placed")],
                notes=dict(notes or {}),
            )
            try:
                self.orders.create_order(order)
            except DuplicateOrderNumberError:
                logger.warning(
                    "Order number %s already taken (attempt %d)", order.order_number, attempt
                )
                continue
            return order
        raise ConflictError("Could not allocate a unique order number")

    def _clear_cart(self, user_id: str, order: Order) -> None:
        # The order and the stock change are committed at this point; a cart
        # that can't be cleared is left for the user (or sync) to fix.
        for attempt in range(1, CART_CLEAR_ATTEMPTS + 1):
            try:
                self.cart_service.clear(user_id)
                return
            except Exception:
                logger.warning(
                    "Clearing cart of %s after order %s failed (attempt %d)",
                    user_id,
                    order.order_number,
                    attempt,
                    exc_info=True,
                )
        logger.error("Cart of %s still holds the lines of order %s", user_id, order.order_number)

    # --- Reads ---

    def load_order(self, order_id: str) -> Order:
        """
        Read an order straight from the store.

        Raises:
            NotFoundError: If the order doesn't exist.
        """
        order = self.orders.get_order(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    def get_order(self, order_id: str, user_id: str | None = None, is_admin: bool = False) -> Order:
        """
        Get an order, cache first.

        Raises:
            NotFoundError: If the order doesn't exist.
            AccessDeniedError: If a non-admin user doesn't own the order.
        """
        cached = self.cache.get(order_key(order_id))
        if cached is not None:
            order = Order.from_dict(cached)
        else:
            order = self.load_order(order_id)
            self.cache.set(order_key(order_id), order.to_dict(), self.settings.cache_ttl.order)

        if user_id is not None and not is_admin and order.user_id != user_id:
            raise AccessDeniedError(user_id, f"order {order_id}")
        return order

    def list_orders(
        self,
        user_id: str | None = None,
        status: str | OrderStatus | None = None,
        limit: int | None = None,
    ) -> list[Order]:
        """Orders newest first, optionally filtered by owner and status."""
        statuses = [parse_status(status)] if status else None
        orders = self.orders.list_orders(user_id=user_id, statuses=statuses)
        if limit:
            orders = orders[:limit]
        return orders

    # --- Transitions ---

    def commit_transition(self, order: Order, previous: OrderStatus) -> Order:
        """
        Persist an order after apply_transition.

        The write only succeeds if the stored status is still `previous`, so
        of two concurrent transitions out of the same status exactly one
        wins. Entering cancelled or returned gives the stock back, which
        therefore happens once per order.

        Raises:
            InvalidStateTransitionError: If another writer changed the status first.
        """
        try:
            self.orders.save_order(order, expected_status=previous)
        except ConflictError as e:
            current = self.orders.get_order(order.id)
            raise InvalidStateTransitionError(
                order.id,
                current.status.value if current else previous.value,
                order.status.value,
                "order changed concurrently",
            ) from e

        self.cache.delete(order_key(order.id))
        logger.info(
            "Order %s: %s -> %s", order.order_number, previous.value, order.status.value
        )
        if order.status != previous and order.status in RESTOCKING:
            self.restore_inventory(order)
        return order

    def restore_inventory(self, order: Order) -> None:
        """Put every ordered unit back in stock."""
        returned: Counter[str] = Counter()
        for item in order.items:
            returned[item.product_id] += item.quantity
        for product_id, quantity in returned.items():
            try:
                self.catalog.increment_inventory(product_id, quantity)
            except NotFoundError:
                logger.warning(
                    "Product %s of order %s no longer exists; %d unit(s) not restocked",
                    product_id,
                    order.order_number,
                    quantity,
                )
                continue
            logger.info(
                "Restocked %d unit(s) of %s from order %s",
                quantity,
                product_id,
                order.order_number,
            )

    def cancel_order(
        self,
        order_id: str,
        user_id: str,
        is_admin: bool = False,
        reason: str | None = None,
    ) -> Order:
        """
        Cancel a pending or confirmed order and restock its items.

        Raises:
            NotFoundError: If the order doesn't exist.
            AccessDeniedError: If a non-admin user doesn't own the order.
            InvalidStateTransitionError: If the order is past confirmation,
                already cancelled, or was changed concurrently.
        """
        order = self.load_order(order_id)
        if not is_admin and order.user_id != user_id:
            raise AccessDeniedError(user_id, f"order {order_id}")
        if order.status not in CANCELLABLE:
            raise InvalidStateTransitionError(
                order.id,
                order.status.value,
                OrderStatus.CANCELLED.value,
                "only pending or confirmed orders can be cancelled",
            )

        actor = "admin" if is_admin else "customer"
        previous = apply_transition(order, OrderStatus.CANCELLED, f"Cancelled by {actor}")
        order.cancellation = CancellationInfo(
            reason=reason or f"Cancelled by {actor}",
            cancelled_by=user_id,
        )
        return self.commit_transition(order, previous)

    def update_status(
        self,
        order_id: str,
        status: str | OrderStatus,
        note: str,
        tracking: Mapping[str, str] | None = None,
        actor: str = "admin",
    ) -> Order:
        """
        Administrative status change.

        Raises:
            InvalidArgumentError: If the note is empty or the status unknown.
            NotFoundError: If the order doesn't exist.
            InvalidStateTransitionError: If the transition isn't allowed.
        """
        if not note or not note.strip():
            raise InvalidArgumentError("A note is required for a manual status change")
        target = parse_status(status)

        order = self.load_order(order_id)
        if order.status == OrderStatus.DELIVERED:
            # delivered orders only leave through a refund
            raise InvalidStateTransitionError(order.id, order.status.value, target.value)
        previous = apply_transition(order, target, note.strip())
        if target == OrderStatus.CANCELLED:
            order.cancellation = CancellationInfo(reason=note.strip(), cancelled_by=actor)
        if tracking:
            order.tracking.carrier = tracking.get("carrier", order.tracking.carrier)
            order.tracking.tracking_number = tracking.get(
                "tracking_number", order.tracking.tracking_number
            )
        return self.commit_transition(order, previous)
