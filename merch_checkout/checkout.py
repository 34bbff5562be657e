from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from merch_checkout.config import Settings
from merch_checkout.coupons import CouponAccepted, CouponValidator, RejectionReason
from merch_checkout.errors import (
    ConsistencyError,
    CouponRejected,
    GatewayError,
    PersistenceError,
    SideEffectError,
    ValidationError,
)
from merch_checkout.gateway import PaymentCancelled, PaymentGatewayAdapter
from merch_checkout.lifecycle import advance_session, check_transition
from merch_checkout.models import (
    CartLine,
    CheckoutSession,
    Coupon,
    DeliveryRule,
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusHistoryEntry,
    PaymentMethod,
    PaymentStatus,
    PriceBreakdown,
    PricingMetadata,
    SignedPayload,
)
from merch_checkout.pricing import PricingEngine
from merch_checkout.services import (
    CartProvider,
    CouponStore,
    InMemoryCartProvider,
    InMemoryCouponStore,
    InMemoryNotificationPublisher,
    InMemoryOrderStore,
    InMemoryPricingProvider,
    InMemoryReconciliationQueue,
    NotificationPublisher,
    OrderStore,
    PricingProvider,
    ReconciliationQueue,
    ReconciliationRecord,
)
from merch_checkout.store import Store

logger = logging.getLogger(__name__)


class Journal:
    """Readable trail of one checkout, mirrored to the module logger."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.logs: List[str] = []

    def log(self, message: str) -> None:
        line = f"[checkout={self.session_id}] {message}"
        self.logs.append(line)
        logger.info(line)


class Step(ABC):
    """A post-commit side effect. Failing one never touches the committed order."""

    def __init__(self, journal: Journal, order: Order):
        self.journal = journal
        self.order = order

    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def execute(self) -> None: ...

    def run(self) -> None:
        self.journal.log(f"STEP {self.name()}")
        self.execute()
        self.journal.log(f"STEP {self.name()} OK")


class RedeemCoupon(Step):
    def __init__(self, journal: Journal, order: Order, coupons: CouponStore):
        super().__init__(journal, order)
        self.coupons = coupons

    def name(self) -> str:
        return "RedeemCoupon"

    def execute(self) -> None:
        if not self.coupons.increment_usage_if_below_limit(self.order.applied_coupon_id):
            # the order keeps the discount it committed with
            self.journal.log(
                f"coupon {self.order.applied_coupon_id} hit its usage limit "
                f"after commit; order {self.order.id} keeps discount={self.order.discount_amount}"
            )


class ClearCart(Step):
    def __init__(self, journal: Journal, order: Order, carts: CartProvider):
        super().__init__(journal, order)
        self.carts = carts

    def name(self) -> str:
        return "ClearCart"

    def execute(self) -> None:
        self.carts.clear_cart(self.order.user_id)


class NotifyUser(Step):
    def __init__(self, journal: Journal, order: Order, notifications: NotificationPublisher):
        super().__init__(journal, order)
        self.notifications = notifications

    def name(self) -> str:
        return "NotifyUser"

    def execute(self) -> None:
        if self.order.payment_method is PaymentMethod.ONLINE:
            message = f"Payment of {self.order.total_amount} received. We'll start on your order soon."
        else:
            message = f"Please keep {self.order.total_amount} ready on delivery."
        self.notifications.notify(
            self.order.user_id,
            f"Order {self.order.invoice_number} placed",
            message,
            "order_placed",
        )


@dataclass(slots=True)
class Quote:
    lines: List[CartLine]
    breakdown: PriceBreakdown
    coupon: Optional[Coupon] = None
    coupon_rejection: Optional[CouponRejected] = None


@dataclass(slots=True)
class CheckoutResult:
    order: Order
    journal: Journal
    coupon_rejection: Optional[CouponRejected] = None
    pending_steps: List[Step] = field(default_factory=list)
    side_effect_errors: List[SideEffectError] = field(default_factory=list)


class CheckoutOrchestrator:
    def __init__(
        self,
        carts: CartProvider,
        pricing: PricingProvider,
        coupons: CouponStore,
        orders: OrderStore,
        gateway: PaymentGatewayAdapter,
        notifications: NotificationPublisher,
        reconciliation: ReconciliationQueue,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.carts = carts
        self.pricing = pricing
        self.coupons = coupons
        self.orders = orders
        self.gateway = gateway
        self.notifications = notifications
        self.reconciliation = reconciliation
        self.settings = settings or Settings()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.engine = PricingEngine()
        self.validator = CouponValidator()

    @classmethod
    def in_memory(
        cls,
        store: Store,
        gateway: PaymentGatewayAdapter,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> CheckoutOrchestrator:
        return cls(
            carts=InMemoryCartProvider(store),
            pricing=InMemoryPricingProvider(store),
            coupons=InMemoryCouponStore(store),
            orders=InMemoryOrderStore(store),
            gateway=gateway,
            notifications=InMemoryNotificationPublisher(store),
            reconciliation=InMemoryReconciliationQueue(store),
            settings=settings,
            clock=clock,
        )

    def quote(self, session: CheckoutSession) -> Quote:
        """Price the session's cart without writing anything anywhere."""
        lines = self.carts.get_cart(session.user_id)
        if not lines:
            raise ValidationError("empty cart")

        metadata = self._pricing_for(lines)
        lines = [self._snapshot(line, metadata[line.product_id]) for line in lines]

        price_table = None
        if session.printing is not None:
            if session.printing.product_id not in metadata:
                raise ValidationError(f"printing selected for {session.printing.product_id}, which is not in the cart")
            price_table = metadata[session.printing.product_id].printing_price_table

        breakdown = self.engine.price(lines, session.printing, price_table, self._delivery_rule(metadata.values()))

        quote = Quote(lines=lines, breakdown=breakdown)
        if session.coupon_code:
            coupon = self.coupons.get_coupon_by_code(session.coupon_code)
            decision = self.validator.validate(
                coupon, breakdown.subtotal, [line.product_id for line in lines], self.clock()
            )
            if isinstance(decision, CouponAccepted) and decision.discount_amount > breakdown.pre_discount_total:
                quote.coupon_rejection = CouponRejected(session.coupon_code, RejectionReason.EXCEEDS_ORDER_VALUE)
            elif isinstance(decision, CouponAccepted):
                quote.coupon = decision.coupon
                quote.breakdown = breakdown.with_discount(decision.discount_amount)
            else:
                quote.coupon_rejection = CouponRejected(session.coupon_code, decision.reason)
        return quote

    def _pricing_for(self, lines: List[CartLine]) -> Dict[str, PricingMetadata]:
        product_ids = [line.product_id for line in lines]
        metadata = {meta.product_id: meta for meta in self.pricing.get_pricing_metadata(product_ids)}
        missing = sorted(set(product_ids) - set(metadata))
        if missing:
            raise ValidationError(f"unknown product(s): {', '.join(missing)}")
        return metadata

    @staticmethod
    def _snapshot(line: CartLine, meta: PricingMetadata) -> CartLine:
        return CartLine(
            product_id=line.product_id,
            unit_price=meta.unit_price,
            quantity=line.quantity,
            title=meta.title or line.title,
            size=line.size,
            color=line.color,
        )

    def _delivery_rule(self, metadata) -> DeliveryRule:
        rules = [meta.delivery_rule for meta in metadata if meta.delivery_rule is not None]
        if not rules:
            return self.settings.default_delivery_rule
        return max(rules, key=lambda r: (r.flat_charge, r.free_above_threshold))

    async def checkout(self, session: CheckoutSession) -> CheckoutResult:
        journal = Journal(session.id)
        journal.log(
            f"CHECKOUT START user={session.user_id} method={session.payment_method.value} "
            f"coupon={session.coupon_code} printing={session.printing.tier if session.printing else None}"
        )
        if session.status is not OrderStatus.DRAFT:
            raise ValidationError(f"checkout session {session.id} was already used ({session.status.value})")
        session.shipping_address.validate()

        quote = self.quote(session)
        breakdown = quote.breakdown
        if quote.coupon_rejection is not None:
            journal.log(f"coupon {session.coupon_code} not applied: {quote.coupon_rejection.reason.value}")
        journal.log(
            f"amounts: subtotal={breakdown.subtotal} printing={breakdown.printing_surcharge} "
            f"delivery={breakdown.delivery_charge} discount={breakdown.discount_amount} total={breakdown.total_amount}"
        )
        advance_session(session, OrderStatus.PENDING_PAYMENT)

        order_id = str(uuid.uuid4())
        invoice_number = f"INV-{self.clock():%Y%m%d}-{order_id[:8].upper()}"

        payload: Optional[SignedPayload] = None
        intent_id: Optional[str] = None
        if session.payment_method is PaymentMethod.ONLINE:
            intent_id, payload = await self._collect_payment(journal, session, breakdown, invoice_number)
            first_status, payment_status = OrderStatus.PAID, PaymentStatus.PAID
            note = f"Payment {payload.payment_id} confirmed"
        else:
            first_status, payment_status = OrderStatus.PLACED, PaymentStatus.PENDING
            note = "Cash on delivery"
        check_transition(session.status, first_status)

        now = self.clock()
        order = Order(
            id=order_id,
            user_id=session.user_id,
            invoice_number=invoice_number,
            status=first_status,
            payment_status=payment_status,
            payment_method=session.payment_method,
            shipping_address=session.shipping_address,
            items=tuple(
                OrderItem(
                    product_id=line.product_id,
                    title=line.title,
                    price=line.unit_price,
                    quantity=line.quantity,
                    size=line.size,
                    color=line.color,
                )
                for line in quote.lines
            ),
            subtotal=breakdown.subtotal,
            printing_surcharge=breakdown.printing_surcharge,
            delivery_charge=breakdown.delivery_charge,
            discount_amount=breakdown.discount_amount,
            total_amount=breakdown.total_amount,
            created_at=now,
            applied_coupon_id=quote.coupon.id if quote.coupon else None,
            custom_design=session.custom_design,
            printing=session.printing,
            gateway_intent_id=intent_id,
            gateway_payment_id=payload.payment_id if payload else None,
            gateway_signature=payload.signature if payload else None,
            status_history=[
                OrderStatusHistoryEntry(status=first_status, changed_at=now, changed_by=session.user_id, note=note)
            ],
        )

        committed = await self._commit(journal, session, order, payload)
        journal.log(f"order {committed.id} committed status={committed.status.value}")

        result = CheckoutResult(order=committed, journal=journal, coupon_rejection=quote.coupon_rejection)
        steps: List[Step] = []
        if committed.applied_coupon_id:
            steps.append(RedeemCoupon(journal, committed, self.coupons))
        steps.append(ClearCart(journal, committed, self.carts))
        steps.append(NotifyUser(journal, committed, self.notifications))
        self._run_steps(steps, result)

        journal.log("CHECKOUT OK")
        return result

    async def _collect_payment(
        self, journal: Journal, session: CheckoutSession, breakdown: PriceBreakdown, invoice_number: str
    ) -> tuple[str, SignedPayload]:
        try:
            intent_id = await self.gateway.create_intent(breakdown.total_amount, self.settings.currency)
        except GatewayError:
            journal.log("gateway intent creation failed")
            raise
        except Exception as exc:
            journal.log(f"gateway intent creation failed: {exc}")
            raise GatewayError(f"could not start payment: {exc}") from exc
        journal.log(f"gateway intent {intent_id} amount={breakdown.total_amount} {self.settings.currency}")
        advance_session(session, OrderStatus.AWAITING_GATEWAY_CONFIRMATION)

        prefill = {
            "name": session.shipping_address.full_name,
            "customer_id": session.user_id,
            "receipt": invoice_number,
        }
        try:
            outcome = await self.gateway.confirm(intent_id, prefill)
        except GatewayError:
            advance_session(session, OrderStatus.PAYMENT_ABORTED)
            journal.log("payment confirmation failed")
            raise
        except Exception as exc:
            advance_session(session, OrderStatus.PAYMENT_ABORTED)
            journal.log(f"payment confirmation failed: {exc}")
            raise GatewayError(f"payment confirmation failed: {exc}") from exc

        if isinstance(outcome, PaymentCancelled):
            advance_session(session, OrderStatus.PAYMENT_ABORTED)
            journal.log(f"payment aborted: {outcome.reason}")
            raise GatewayError(f"payment cancelled: {outcome.reason}")

        payload = outcome.payload
        if payload.intent_id != intent_id or not self.gateway.verify(payload):
            advance_session(session, OrderStatus.PAYMENT_ABORTED)
            logger.warning("signature mismatch for intent %s payment %s", intent_id, payload.payment_id)
            journal.log("payment confirmation rejected: signature mismatch")
            raise GatewayError("payment confirmation could not be verified")

        journal.log(f"payment {payload.payment_id} confirmed")
        return intent_id, payload

    async def _commit(
        self, journal: Journal, session: CheckoutSession, order: Order, payload: Optional[SignedPayload]
    ) -> Order:
        attempts = 1 if payload is None else self.settings.persist_attempts
        error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                return await self.orders.create_order(order)
            except Exception as exc:
                error = exc
                journal.log(f"order write attempt {attempt}/{attempts} failed: {exc}")
                if attempt < attempts and self.settings.persist_retry_delay > 0:
                    await asyncio.sleep(self.settings.persist_retry_delay * attempt)

        if payload is None:
            raise PersistenceError(f"order could not be saved, nothing was charged: {error}") from error

        record = ReconciliationRecord(
            session_id=session.id,
            user_id=session.user_id,
            order=order,
            payload=payload,
            reason=str(error),
            flagged_at=self.clock(),
        )
        try:
            self.reconciliation.flag(record)
        except Exception:
            logger.exception("could not queue payment %s for reconciliation", payload.payment_id)
            journal.log(f"payment {payload.payment_id} taken but order not saved; reconciliation queue unavailable")
        else:
            journal.log(f"payment {payload.payment_id} taken but order not saved; flagged for reconciliation")
        raise ConsistencyError(
            f"payment {payload.payment_id} was taken but order {order.id} could not be saved", record
        ) from error

    def _run_steps(self, steps: List[Step], result: CheckoutResult) -> None:
        for step in steps:
            try:
                step.run()
            except Exception as exc:
                failure = SideEffectError(step.name(), exc)
                logger.error("[checkout=%s] %s", result.journal.session_id, failure)
                result.journal.log(f"STEP {step.name()} FAILED: {exc}")
                result.pending_steps.append(step)
                result.side_effect_errors.append(failure)

    def retry_side_effects(self, result: CheckoutResult) -> List[SideEffectError]:
        """Run the post-commit steps that failed last time. Returns what still fails."""
        steps, result.pending_steps, result.side_effect_errors = result.pending_steps, [], []
        self._run_steps(steps, result)
        return result.side_effect_errors
