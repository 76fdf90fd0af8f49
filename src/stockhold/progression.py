"""Timer-driven promotion of orders along the fulfillment path."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable

from .config import ProgressionPolicy
from .errors import InvalidStateTransitionError
from .models import Order, _parse_utc
from .order_service import OrderService
from .order_status import TERMINAL, OrderStatus, apply_transition, next_forward_status
from .store_protocol import OrderStore

logger = logging.getLogger(__name__)


def _utc_clock() -> datetime:
    return datetime.now(timezone.utc)


class StatusProgressor:
    """
    Promotes orders one step at a time by minutes elapsed since creation.

    Promotions go through the same compare-and-set commit as manual status
    changes, so a concurrent cancel or admin update simply wins and the
    promotion is skipped.
    """

    def __init__(
        self,
        orders: OrderStore,
        order_service: OrderService,
        policy: ProgressionPolicy | None = None,
        clock: Callable[[], datetime] = _utc_clock,
    ):
        self.orders = orders
        self.order_service = order_service
        self.policy = policy or ProgressionPolicy()
        self.clock = clock
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    def _threshold(self, target: OrderStatus) -> int:
        return {
            OrderStatus.CONFIRMED: self.policy.confirmed_after,
            OrderStatus.PROCESSING: self.policy.processing_after,
            OrderStatus.SHIPPED: self.policy.shipped_after,
            OrderStatus.DELIVERED: self.policy.delivered_after,
        }[target]

    def _due(self, order: Order, now: datetime) -> OrderStatus | None:
        target = next_forward_status(order.status)
        if target is None:
            return None
        elapsed_minutes = (now - _parse_utc(order.created_at)).total_seconds() / 60
        if elapsed_minutes < self._threshold(target):
            return None
        return target

    def run_once(self, now: datetime | None = None) -> list[tuple[str, OrderStatus]]:
        """
        Promote every order whose next step is due.

        Returns:
            (order_id, new_status) for each promotion made.
        """
        now = now or self.clock()
        active = [s for s in OrderStatus if s not in TERMINAL]
        promoted: list[tuple[str, OrderStatus]] = []

        for order in self.orders.list_orders(statuses=active):
            target = self._due(order, now)
            if target is None:
                continue
            try:
                previous = apply_transition(
                    order, target, f"Automatically moved to {target.value}"
                )
                self.order_service.commit_transition(order, previous)
            except InvalidStateTransitionError as e:
                logger.info("Skipped promotion of order %s: %s", order.order_number, e)
                continue
            promoted.append((order.id, target))

        if promoted:
            logger.info("Promoted %d order(s)", len(promoted))
        return promoted

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, interval_seconds: float | None = None) -> None:
        """Run `run_once` every interval on a daemon thread. No-op if already running."""
        if self.is_running:
            return
        interval = interval_seconds or self.policy.interval_seconds
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, args=(interval,), name="stockhold-progression", daemon=True
        )
        self._thread.start()
        logger.info("Status progression started (every %ss)", interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout)
        self._thread = None
        logger.info("Status progression stopped")

    def _loop(self, interval: float) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Status progression pass failed")
            self._stop.wait(interval)
