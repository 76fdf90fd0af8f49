"""Tests for the order status state machine."""

from decimal import Decimal

import pytest

from stockhold.errors import InvalidArgumentError, InvalidStateTransitionError
from stockhold.models import Address, Order, OrderSummary
from stockhold.order_status import (
    CANCELLABLE,
    TERMINAL,
    OrderStatus,
    apply_transition,
    can_transition,
    next_forward_status,
    parse_status,
)


@pytest.fixture
def order(address):
    addr = Address.model_validate(address)
    return Order(
        id="o1",
        order_number="ORD-1-000000",
        user_id="u1",
        items=[],
        summary=OrderSummary(subtotal=Decimal("0")),
        shipping_address=addr,
        billing_address=addr,
    )


class TestTransitionTable:
    def test_forward_path(self):
        path = [OrderStatus.PENDING]
        while (step := next_forward_status(path[-1])) is not None:
            path.append(step)

        assert path == [
            OrderStatus.PENDING,
            OrderStatus.CONFIRMED,
            OrderStatus.PROCESSING,
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
        ]
        for current, target in zip(path, path[1:]):
            assert can_transition(current, target)

    def test_cancel_only_before_processing(self):
        assert CANCELLABLE == {OrderStatus.PENDING, OrderStatus.CONFIRMED}
        for status in OrderStatus:
            assert can_transition(status, OrderStatus.CANCELLED) == (status in CANCELLABLE)

    def test_cancelled_and_returned_have_no_exits(self):
        for target in OrderStatus:
            assert not can_transition(OrderStatus.CANCELLED, target)
            assert not can_transition(OrderStatus.RETURNED, target)

    def test_terminal_states(self):
        assert TERMINAL == {OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.RETURNED}
        assert next_forward_status(OrderStatus.DELIVERED) is None

    def test_no_going_back(self):
        assert not can_transition(OrderStatus.SHIPPED, OrderStatus.PENDING)
        assert not can_transition(OrderStatus.CONFIRMED, OrderStatus.PENDING)


class TestParseStatus:
    def test_parses_names(self):
        assert parse_status("shipped") is OrderStatus.SHIPPED
        assert parse_status(OrderStatus.SHIPPED) is OrderStatus.SHIPPED

    def test_unknown_name(self):
        with pytest.raises(InvalidArgumentError, match="Invalid order status"):
            parse_status("lost")


class TestApplyTransition:
    def test_updates_status_and_history_together(self, order):
        previous = apply_transition(order, OrderStatus.CONFIRMED, "paid")

        assert previous is OrderStatus.PENDING
        assert order.status is OrderStatus.CONFIRMED
        assert order.status_history[-1].status is OrderStatus.CONFIRMED
        assert order.status_history[-1].note == "paid"
        assert order.updated_at == order.status_history[-1].timestamp

    def test_rejected_transition_changes_nothing(self, order):
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            apply_transition(order, OrderStatus.DELIVERED)

        assert exc_info.value.current == "pending"
        assert exc_info.value.target == "delivered"
        assert order.status is OrderStatus.PENDING
        assert order.status_history == []

    def test_delivery_stamps_tracking(self, order):
        order.status = OrderStatus.SHIPPED
        apply_transition(order, OrderStatus.DELIVERED)

        assert order.tracking.actual_delivery is not None
