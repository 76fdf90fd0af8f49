"""Order status state machine."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from .errors import InvalidArgumentError, InvalidStateTransitionError

if TYPE_CHECKING:
    from .models import Order


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"

    def __str__(self) -> str:
        return self.value


# allowed-from -> allowed-to
TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.CANCELLED}
    ),
    OrderStatus.CONFIRMED: frozenset(
        {OrderStatus.PROCESSING, OrderStatus.CANCELLED, OrderStatus.RETURNED}
    ),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.RETURNED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.RETURNED}),
    # Only reachable through a refund.
    OrderStatus.DELIVERED: frozenset({OrderStatus.RETURNED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.RETURNED: frozenset(),
}

TERMINAL = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.RETURNED})

CANCELLABLE = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})

# Entering one of these gives the ordered units back to the catalog.
RESTOCKING = frozenset({OrderStatus.CANCELLED, OrderStatus.RETURNED})


def parse_status(value: str | OrderStatus) -> OrderStatus:
    """
    Parse a status name.

    Raises:
        InvalidArgumentError: If the name is not a known status.
    """
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(value)
    except ValueError:
        valid = ", ".join(s.value for s in OrderStatus)
        raise InvalidArgumentError(f"Invalid order status '{value}' (expected one of {valid})")


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS[current]


def next_forward_status(current: OrderStatus) -> OrderStatus | None:
    """The next step of normal fulfillment, or None at the end of the line."""
    return {
        OrderStatus.PENDING: OrderStatus.CONFIRMED,
        OrderStatus.CONFIRMED: OrderStatus.PROCESSING,
        OrderStatus.PROCESSING: OrderStatus.SHIPPED,
        OrderStatus.SHIPPED: OrderStatus.DELIVERED,
    }.get(current)


def apply_transition(order: Order, target: OrderStatus, note: str = "") -> OrderStatus:
    """
    Move an order to a new status in memory.

    The current status and the history entry change together; the caller
    persists the order with the returned previous status as the expected
    value.

    Returns:
        The status the order had before the transition.

    Raises:
        InvalidStateTransitionError: If the table doesn't allow the move.
    """
    from .models import StatusChange, _utc_now

    previous = order.status
    if not can_transition(previous, target):
        raise InvalidStateTransitionError(order.id, previous.value, target.value)

    now = _utc_now()
    order.status = target
    order.status_history.append(StatusChange(status=target, timestamp=now, note=note))
    order.updated_at = now
    if target == OrderStatus.DELIVERED:
        order.tracking.actual_delivery = now
    return previous
