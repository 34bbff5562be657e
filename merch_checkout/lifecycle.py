from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional

from merch_checkout.errors import InvalidTransition, PersistenceError
from merch_checkout.models import (
    CheckoutSession,
    Order,
    OrderStatus,
    OrderStatusHistoryEntry,
    PaymentStatus,
)
from merch_checkout.services import NotificationPublisher, OrderStore

logger = logging.getLogger(__name__)

S = OrderStatus

_CLOSABLE = frozenset({S.CANCELLED, S.REFUNDED})

TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    S.DRAFT: frozenset({S.PENDING_PAYMENT}),
    S.PENDING_PAYMENT: frozenset({S.PLACED, S.AWAITING_GATEWAY_CONFIRMATION}),
    S.AWAITING_GATEWAY_CONFIRMATION: frozenset({S.PAID, S.PAYMENT_ABORTED}),
    S.PAYMENT_ABORTED: frozenset(),
    S.PLACED: frozenset({S.PROCESSING}) | _CLOSABLE,
    S.PAID: frozenset({S.PROCESSING}) | _CLOSABLE,
    S.PROCESSING: frozenset({S.SHIPPED}) | _CLOSABLE,
    S.SHIPPED: frozenset({S.DELIVERED}) | _CLOSABLE,
    S.DELIVERED: frozenset(),
    S.CANCELLED: frozenset(),
    S.REFUNDED: frozenset(),
}

# never written to the order store
TRANSIENT: FrozenSet[OrderStatus] = frozenset(
    {S.DRAFT, S.PENDING_PAYMENT, S.AWAITING_GATEWAY_CONFIRMATION, S.PAYMENT_ABORTED}
)

CUSTOMER_MESSAGES: Dict[OrderStatus, str] = {
    S.PROCESSING: "We're preparing your order.",
    S.SHIPPED: "Your order is on its way.",
    S.DELIVERED: "Your order has been delivered.",
    S.CANCELLED: "Your order has been cancelled.",
    S.REFUNDED: "Your payment has been refunded.",
}


def check_transition(current: OrderStatus, new: OrderStatus) -> None:
    if new not in TRANSITIONS[current]:
        raise InvalidTransition(f"cannot move order from {current.value} to {new.value}")


def advance_session(session: CheckoutSession, new: OrderStatus) -> None:
    if new not in TRANSIENT:
        raise InvalidTransition(f"{new.value} is a persisted state; it belongs on the order")
    check_transition(session.status, new)
    session.status = new


class OrderLifecycle:
    """Moves committed orders through fulfilment and tells the customer about it."""

    def __init__(self, orders: OrderStore, notifications: NotificationPublisher):
        self.orders = orders
        self.notifications = notifications

    def advance(
        self,
        order_id: str,
        new_status: OrderStatus,
        actor: str,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Order:
        order = self.orders.get_order(order_id)
        if order is None:
            raise PersistenceError(f"order {order_id} not found")

        previous = order.status
        check_transition(previous, new_status)
        entry = OrderStatusHistoryEntry(
            status=new_status,
            changed_at=now or datetime.now(timezone.utc),
            changed_by=actor,
            note=note,
        )
        self.orders.append_status_history(order_id, entry, expected_status=previous)
        if new_status is S.REFUNDED and order.payment_status is PaymentStatus.PAID:
            self.orders.set_payment_status(order_id, PaymentStatus.REFUNDED)
        logger.info("order %s: %s -> %s by %s", order_id, previous.value, new_status.value, actor)

        self.notifications.notify(
            order.user_id,
            f"Order {order.invoice_number} {new_status.value}",
            note or CUSTOMER_MESSAGES.get(new_status, ""),
            "order_status",
        )
        return self.orders.get_order(order_id)
