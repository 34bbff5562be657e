from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, List, Optional

from merch_checkout.errors import InvalidTransition, PersistenceError
from merch_checkout.models import (
    CartLine,
    Coupon,
    Order,
    OrderStatus,
    OrderStatusHistoryEntry,
    PaymentStatus,
    PricingMetadata,
    SignedPayload,
)
from merch_checkout.store import Store

logger = logging.getLogger(__name__)


class CartProvider(ABC):
    @abstractmethod
    def get_cart(self, user_id: str) -> List[CartLine]: ...

    @abstractmethod
    def clear_cart(self, user_id: str) -> None: ...


class PricingProvider(ABC):
    @abstractmethod
    def get_pricing_metadata(self, product_ids: Iterable[str]) -> List[PricingMetadata]: ...


class CouponStore(ABC):
    @abstractmethod
    def get_coupon_by_code(self, code: str) -> Optional[Coupon]: ...

    @abstractmethod
    def increment_usage_if_below_limit(self, coupon_id: str) -> bool:
        """Atomically bump times_used unless the limit is already reached."""


class OrderStore(ABC):
    @abstractmethod
    async def create_order(self, order: Order) -> Order: ...

    @abstractmethod
    def append_status_history(
        self, order_id: str, entry: OrderStatusHistoryEntry, expected_status: Optional[OrderStatus] = None
    ) -> None:
        """Append `entry` and make it current. With `expected_status`, refuse if the order moved meanwhile."""

    @abstractmethod
    def set_payment_status(self, order_id: str, status: PaymentStatus) -> None: ...

    @abstractmethod
    def get_order(self, order_id: str) -> Optional[Order]: ...


class NotificationPublisher(ABC):
    @abstractmethod
    def notify(self, user_id: str, title: str, message: str, kind: str) -> None: ...


@dataclass(slots=True, frozen=True)
class ReconciliationRecord:
    session_id: str
    user_id: str
    order: Order
    payload: SignedPayload
    reason: str
    flagged_at: datetime


class ReconciliationQueue(ABC):
    @abstractmethod
    def flag(self, record: ReconciliationRecord) -> None: ...


class InMemoryCartProvider(CartProvider):
    def __init__(self, store: Store):
        self.store = store

    def get_cart(self, user_id: str) -> List[CartLine]:
        return [replace(line) for line in self.store.carts.get(user_id, [])]

    def clear_cart(self, user_id: str) -> None:
        removed = len(self.store.carts.pop(user_id, []))
        logger.info("cart cleared user=%s lines=%d", user_id, removed)


class InMemoryPricingProvider(PricingProvider):
    def __init__(self, store: Store):
        self.store = store

    def get_pricing_metadata(self, product_ids: Iterable[str]) -> List[PricingMetadata]:
        return [self.store.products[pid] for pid in dict.fromkeys(product_ids) if pid in self.store.products]


class InMemoryCouponStore(CouponStore):
    def __init__(self, store: Store):
        self.store = store

    def get_coupon_by_code(self, code: str) -> Optional[Coupon]:
        coupon = self.store.coupon_by_code(code)
        # callers get a snapshot; only increment_usage_if_below_limit mutates
        return replace(coupon) if coupon else None

    def increment_usage_if_below_limit(self, coupon_id: str) -> bool:
        with self.store.lock:
            coupon = self.store.coupons.get(coupon_id)
            if coupon is None:
                return False
            if coupon.usage_limit != 0 and coupon.times_used >= coupon.usage_limit:
                logger.warning("coupon %s already at limit %d", coupon.code, coupon.usage_limit)
                return False
            coupon.times_used += 1
            logger.info("coupon %s redeemed (times_used=%d)", coupon.code, coupon.times_used)
            return True


class InMemoryOrderStore(OrderStore):
    def __init__(self, store: Store):
        self.store = store

    async def create_order(self, order: Order) -> Order:
        await asyncio.sleep(0)
        with self.store.lock:
            existing = self.store.orders.get(order.id)
            if existing is not None:
                # same id means a retry of the same commit
                return existing
            self.store.orders[order.id] = order
        logger.info("order %s stored total=%s", order.id, order.total_amount)
        return order

    def _require(self, order_id: str) -> Order:
        order = self.store.orders.get(order_id)
        if order is None:
            raise PersistenceError(f"order {order_id} not found")
        return order

    def append_status_history(
        self, order_id: str, entry: OrderStatusHistoryEntry, expected_status: Optional[OrderStatus] = None
    ) -> None:
        with self.store.lock:
            order = self._require(order_id)
            if expected_status is not None and order.status is not expected_status:
                raise InvalidTransition(
                    f"order {order_id} is {order.status.value}, expected {expected_status.value}; it changed concurrently"
                )
            order.status_history.append(entry)
            order.status = entry.status

    def set_payment_status(self, order_id: str, status: PaymentStatus) -> None:
        with self.store.lock:
            self._require(order_id).payment_status = status

    def get_order(self, order_id: str) -> Optional[Order]:
        return self.store.orders.get(order_id)


class InMemoryNotificationPublisher(NotificationPublisher):
    def __init__(self, store: Store):
        self.store = store

    def notify(self, user_id: str, title: str, message: str, kind: str) -> None:
        self.store.notifications.append((user_id, title, message, kind))
        logger.info("notified user=%s: %s", user_id, title)


class InMemoryReconciliationQueue(ReconciliationQueue):
    def __init__(self, store: Store):
        self.store = store

    def flag(self, record: ReconciliationRecord) -> None:
        self.store.reconciliation.append(record)
        logger.critical(
            "payment %s for session %s needs manual reconciliation: %s",
            record.payload.payment_id,
            record.session_id,
            record.reason,
        )
