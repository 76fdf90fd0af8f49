"""Payment gateway integration: intents, confirmation, webhooks and refunds."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Protocol

from .cache import Cache, NullCache, order_key, payment_key
from .config import Settings
from .errors import (
    AccessDeniedError,
    InvalidArgumentError,
    InvalidStateTransitionError,
    NotFoundError,
    PaymentFailedError,
    PaymentGatewayError,
)
from .models import Order, RefundInfo, _money, _utc_now
from .order_service import OrderService
from .order_status import OrderStatus, apply_transition, can_transition
from .store_protocol import OrderStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    status: str
    amount: int  # minor units
    client_secret: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Refund:
    id: str
    status: str
    amount: int


@dataclass(frozen=True)
class PaymentConfirmation:
    order: Order
    intent: PaymentIntent

    @property
    def requires_action(self) -> bool:
        return self.intent.status == "requires_action"


class PaymentGateway(Protocol):
    """Hosted payments provider. Implementations raise PaymentGatewayError on any failure."""

    def create_payment_intent(
        self, amount: int, currency: str, metadata: Mapping[str, str]
    ) -> PaymentIntent:
        ...

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        ...

    def create_refund(
        self, transaction_id: str, amount: int, metadata: Mapping[str, str]
    ) -> Refund:
        ...


def to_minor_units(amount: Decimal) -> int:
    """Convert a money amount to cents."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripeGateway:
    """PaymentGateway backed by the Stripe API."""

    def __init__(self, api_key: str):
        import stripe

        self._stripe = stripe
        self.api_key = api_key

    def _intent(self, intent: Any) -> PaymentIntent:
        return PaymentIntent(
            id=intent.id,
            status=intent.status,
            amount=intent.amount,
            client_secret=intent.client_secret,
            metadata=dict(intent.metadata or {}),
        )

    def create_payment_intent(
        self, amount: int, currency: str, metadata: Mapping[str, str]
    ) -> PaymentIntent:
        try:
            intent = self._stripe.PaymentIntent.create(
                api_key=self.api_key,
                amount=amount,
                currency=currency,
                automatic_payment_methods={"enabled": True},
                metadata=dict(metadata),
            )
        except self._stripe.StripeError as e:
            raise PaymentGatewayError("create_payment_intent", str(e)) from e
        return self._intent(intent)

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        try:
            intent = self._stripe.PaymentIntent.retrieve(intent_id, api_key=self.api_key)
        except self._stripe.StripeError as e:
            raise PaymentGatewayError("retrieve_payment_intent", str(e)) from e
        return self._intent(intent)

    def create_refund(
        self, transaction_id: str, amount: int, metadata: Mapping[str, str]
    ) -> Refund:
        try:
            refund = self._stripe.Refund.create(
                api_key=self.api_key,
                payment_intent=transaction_id,
                amount=amount,
                reason="requested_by_customer",
                metadata=dict(metadata),
            )
        except self._stripe.StripeError as e:
            raise PaymentGatewayError("create_refund", str(e)) from e
        return Refund(id=refund.id, status=refund.status, amount=refund.amount)


class PaymentService:
    """
    Ties gateway outcomes to order state.

    A gateway error never changes the order: it keeps its status and payment
    record, and the error reaches the caller.
    """

    def __init__(
        self,
        orders: OrderStore,
        gateway: PaymentGateway,
        order_service: OrderService,
        cache: Cache | None = None,
        settings: Settings | None = None,
    ):
        self.orders = orders
        self.gateway = gateway
        self.order_service = order_service
        self.cache = cache or NullCache()
        self.settings = settings or Settings()

    def _check_owner(self, order: Order, user_id: str | None, is_admin: bool = False) -> None:
        if not is_admin and order.user_id != user_id:
            raise AccessDeniedError(user_id, f"order {order.id}")

    def _save(self, order: Order, expected_refund_status: str | None = None) -> None:
        self.orders.save_order(
            order, expected_status=order.status, expected_refund_status=expected_refund_status
        )
        self.cache.delete(order_key(order.id))

    def create_payment_intent(self, order_id: str, user_id: str) -> PaymentIntent:
        """
        Open a payment for the order total and remember its id on the order.

        Raises:
            InvalidArgumentError: If the order is already paid or closed.
            PaymentGatewayError: If the gateway call fails.
        """
        order = self.order_service.load_order(order_id)
        self._check_owner(order, user_id)
        if order.payment.status == "completed":
            raise InvalidArgumentError(f"Order {order.order_number} is already paid")
        if order.status in (OrderStatus.CANCELLED, OrderStatus.RETURNED):
            raise InvalidArgumentError(f"Order {order.order_number} is {order.status.value}")

        intent = self.gateway.create_payment_intent(
            to_minor_units(order.summary.total),
            self.settings.pricing.currency,
            {"order_id": order.id, "user_id": order.user_id, "order_number": order.order_number},
        )
        order.payment.transaction_id = intent.id
        self._save(order)
        self.cache.set(
            payment_key(intent.id),
            {"order_id": order.id, "user_id": order.user_id, "amount": str(order.summary.total)},
            self.settings.cache_ttl.payment,
        )
        logger.info("Payment intent %s opened for order %s", intent.id, order.order_number)
        return intent

    def _find_order_for_intent(self, intent: PaymentIntent) -> Order:
        order = self.orders.find_by_transaction_id(intent.id)
        if order is None and intent.metadata.get("order_id"):
            order = self.orders.get_order(intent.metadata["order_id"])
        if order is None:
            raise NotFoundError("Order for payment", intent.id)
        return order

    def _mark_paid(self, order: Order, transaction_id: str, note: str) -> Order:
        order.payment.status = "completed"
        order.payment.paid_at = _utc_now()
        order.payment.transaction_id = transaction_id
        if order.status == OrderStatus.PENDING:
            previous = apply_transition(order, OrderStatus.CONFIRMED, note)
            self.order_service.commit_transition(order, previous)
        else:
            self._save(order)
        self.cache.delete(payment_key(transaction_id))
        logger.info("Order %s paid (%s)", order.order_number, transaction_id)
        return order

    def confirm_payment(self, intent_id: str, user_id: str) -> PaymentConfirmation:
        """
        Reconcile an order with its payment intent.

        `succeeded` marks the payment completed and confirms a pending order;
        `requires_action` changes nothing; any other status marks the payment
        failed.

        Raises:
            PaymentGatewayError: If the gateway can't be reached; the order is untouched.
            PaymentFailedError: If the gateway reports the payment as failed.
        """
        intent = self.gateway.retrieve_payment_intent(intent_id)
        order = self._find_order_for_intent(intent)
        self._check_owner(order, user_id)

        if intent.status == "succeeded":
            if order.payment.status != "completed":
                order = self._mark_paid(order, intent.id, "Payment completed successfully")
        elif intent.status == "requires_action":
            logger.info("Payment %s for order %s requires action", intent.id, order.order_number)
        else:
            order.payment.status = "failed"
            order.payment.transaction_id = intent.id
            self._save(order)
            logger.warning(
                "Payment %s for order %s failed with status %s",
                intent.id,
                order.order_number,
                intent.status,
            )
            raise PaymentFailedError(order.id, intent.status)
        return PaymentConfirmation(order=order, intent=intent)

    def handle_webhook_event(self, event: Mapping[str, Any]) -> str | None:
        """
        Apply a verified gateway event. Replaying an event is harmless.

        Returns:
            The action taken ("mark_paid", "mark_failed") or None if ignored.
        """
        event_type = event.get("type")
        payload = event.get("data", {}).get("object", {})
        order_id = (payload.get("metadata") or {}).get("order_id")

        if event_type not in ("payment_intent.succeeded", "payment_intent.payment_failed"):
            logger.info("Unhandled payment event type: %s", event_type)
            return None
        if not order_id:
            logger.warning("Payment event %s without order_id", event_type)
            return None

        order = self.orders.get_order(order_id)
        if order is None:
            logger.warning("Payment event %s for unknown order %s", event_type, order_id)
            return None
        if order.payment.status == "completed":
            return None

        if event_type == "payment_intent.succeeded":
            self._mark_paid(order, payload.get("id", ""), "Payment completed via webhook")
            return "mark_paid"

        order.payment.status = "failed"
        self._save(order)
        return "mark_failed"

    def process_refund(
        self,
        order_id: str,
        user_id: str,
        is_admin: bool = False,
        amount: Decimal | str | None = None,
        reason: str | None = None,
    ) -> Order:
        """
        Refund a paid order and mark it returned, restocking its items.

        The refund is recorded as processing before the gateway call; if the
        call fails the previous refund record is put back.

        Raises:
            InvalidArgumentError: If the order isn't paid, is already refunded,
                or the amount is out of range.
            InvalidStateTransitionError: If the order can't be marked returned.
            ConflictError: If another refund of the order is already under way.
            PaymentGatewayError: If the gateway refuses or fails.
        """
        order = self.order_service.load_order(order_id)
        self._check_owner(order, user_id, is_admin)

        if order.refund.status in ("processing", "completed"):
            raise InvalidArgumentError(f"Order {order.order_number} is already refunded")
        if order.payment.status != "completed" or not order.payment.transaction_id:
            raise InvalidArgumentError(f"Order {order.order_number} is not paid yet")

        refund_amount = order.summary.total if amount is None else _money(amount)
        if refund_amount <= 0 or refund_amount > order.summary.total:
            raise InvalidArgumentError(
                f"Refund amount must be between 0 and {order.summary.total}"
            )

        mark_returned = can_transition(order.status, OrderStatus.RETURNED)
        if not mark_returned and order.status != OrderStatus.CANCELLED:
            raise InvalidStateTransitionError(
                order.id, order.status.value, OrderStatus.RETURNED.value
            )

        previous_refund = replace(order.refund)
        order.refund = RefundInfo(
            status="processing",
            amount=refund_amount,
            reason=reason or "Customer request",
        )
        # Only one caller can move the stored refund record to processing.
        self._save(order, expected_refund_status=previous_refund.status)

        try:
            refund = self.gateway.create_refund(
                order.payment.transaction_id,
                to_minor_units(refund_amount),
                {"order_id": order.id, "reason": order.refund.reason or ""},
            )
        except PaymentGatewayError:
            order.refund = previous_refund
            self._save(order, expected_refund_status="processing")
            logger.warning("Refund for order %s failed; refund state restored", order.order_number)
            raise

        order.refund.status = "completed"
        order.refund.refund_id = refund.id
        order.refund.processed_at = _utc_now()
        order.payment.status = "refunded"
        if mark_returned:
            previous = apply_transition(order, OrderStatus.RETURNED, "Refund processed")
            self.order_service.commit_transition(order, previous)
        else:
            self._save(order)
        logger.info("Refunded %s on order %s (%s)", refund_amount, order.order_number, refund.id)
        return order
