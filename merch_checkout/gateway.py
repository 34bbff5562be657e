from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

import razorpay
from razorpay.errors import BadRequestError, ServerError, SignatureVerificationError
from razorpay.errors import GatewayError as RazorpayGatewayError

from merch_checkout.config import Settings
from merch_checkout.errors import GatewayError
from merch_checkout.models import SignedPayload

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class PaymentConfirmed:
    payload: SignedPayload


@dataclass(slots=True, frozen=True)
class PaymentCancelled:
    reason: str = "cancelled by customer"


ConfirmationResult = Union[PaymentConfirmed, PaymentCancelled]


def to_minor_units(amount: Decimal) -> int:
    # gateways take integer paise
    return int((amount * 100).to_integral_value())


def verify_with_client(client: razorpay.Client, payload: SignedPayload) -> bool:
    try:
        client.utility.verify_payment_signature(
            {
                "razorpay_order_id": payload.intent_id,
                "razorpay_payment_id": payload.payment_id,
                "razorpay_signature": payload.signature,
            }
        )
    except SignatureVerificationError:
        return False
    return True


class PaymentGatewayAdapter(ABC):
    """
    Boundary to the hosted payment widget.

    `confirm` suspends until the customer finishes or abandons the widget and
    resolves to a tagged result instead of invoking callbacks.
    """

    @abstractmethod
    async def create_intent(self, amount: Decimal, currency: str) -> str: ...

    @abstractmethod
    async def confirm(self, intent_id: str, prefill: Dict[str, str]) -> ConfirmationResult: ...

    @abstractmethod
    def verify(self, payload: SignedPayload) -> bool: ...


class RazorpayGateway(PaymentGatewayAdapter):
    """
    Razorpay orders plus the Checkout widget.

    The web layer renders `checkout_options(intent_id)` for the browser and
    reports the widget's outcome back through `complete` or `dismiss`; the
    pending `confirm` call resolves on that report.
    """

    def __init__(self, key_id: str, key_secret: str, client: Optional[razorpay.Client] = None):
        self.key_id = key_id
        self.client = client or razorpay.Client(auth=(key_id, key_secret))
        self._orders: Dict[str, Dict[str, Any]] = {}
        self._waiting: Dict[str, asyncio.Future] = {}
        self._prefills: Dict[str, Dict[str, str]] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> RazorpayGateway:
        if not settings.gateway_key_id or not settings.gateway_key_secret:
            raise GatewayError("GATEWAY_KEY_ID and GATEWAY_KEY_SECRET must be set")
        return cls(settings.gateway_key_id, settings.gateway_key_secret)

    async def create_intent(self, amount: Decimal, currency: str) -> str:
        request = {"amount": to_minor_units(amount), "currency": currency, "payment_capture": 1}
        try:
            order = await asyncio.to_thread(self.client.order.create, data=request)
        except (BadRequestError, ServerError, RazorpayGatewayError) as exc:
            raise GatewayError(f"razorpay refused the order: {exc}") from exc

        intent_id = order["id"]
        self._orders[intent_id] = order
        self._waiting[intent_id] = asyncio.get_running_loop().create_future()
        logger.info("razorpay order %s for %s %s", intent_id, amount, currency)
        return intent_id

    async def confirm(self, intent_id: str, prefill: Dict[str, str]) -> ConfirmationResult:
        waiter = self._waiting.get(intent_id)
        if waiter is None:
            raise GatewayError(f"unknown intent {intent_id}")
        self._prefills[intent_id] = dict(prefill)
        try:
            return await waiter
        finally:
            self._waiting.pop(intent_id, None)
            self._orders.pop(intent_id, None)
            self._prefills.pop(intent_id, None)

    def checkout_options(self, intent_id: str) -> Dict[str, Any]:
        order = self._orders[intent_id]
        prefill = self._prefills.get(intent_id, {})
        return {
            "key": self.key_id,
            "order_id": intent_id,
            "amount": order["amount"],
            "currency": order["currency"],
            "prefill": {"name": prefill.get("name", "")},
            "notes": {"receipt": prefill.get("receipt", ""), "customer_id": prefill.get("customer_id", "")},
        }

    def complete(self, intent_id: str, payment_id: str, signature: str) -> None:
        self._resolve(intent_id, PaymentConfirmed(SignedPayload(intent_id, payment_id, signature)))

    def dismiss(self, intent_id: str, reason: str = "cancelled by customer") -> None:
        self._resolve(intent_id, PaymentCancelled(reason))

    def _resolve(self, intent_id: str, outcome: ConfirmationResult) -> None:
        waiter = self._waiting.get(intent_id)
        if waiter is None or waiter.done():
            raise GatewayError(f"no payment is waiting on {intent_id}")
        waiter.set_result(outcome)

    def verify(self, payload: SignedPayload) -> bool:
        return verify_with_client(self.client, payload)


def sign(key_secret: str, intent_id: str, payment_id: str) -> str:
    """Signs a confirmation the way Razorpay's servers do. Only the scripted gateway needs this."""
    message = f"{intent_id}|{payment_id}".encode()
    return hmac.new(key_secret.encode(), message, hashlib.sha256).hexdigest()


@dataclass(slots=True)
class _Intent:
    intent_id: str
    amount_minor: int
    currency: str


@dataclass
class ScriptedGateway(PaymentGatewayAdapter):
    """
    In-process stand-in for Razorpay that plays back a fixed customer behaviour.

    outcome: "success", "cancel" or "tamper" (a confirmation whose signature
    does not match). `fail_intent` makes intent creation blow up. Signatures
    are still checked by the Razorpay SDK.
    """

    key_secret: str = "test-secret"
    outcome: str = "success"
    fail_intent: bool = False
    intents: Dict[str, _Intent] = field(default_factory=dict)
    prefills: List[Dict[str, str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.client = razorpay.Client(auth=("rzp_test_scripted", self.key_secret))

    async def create_intent(self, amount: Decimal, currency: str) -> str:
        await asyncio.sleep(0)
        if self.fail_intent:
            raise GatewayError("gateway refused to create an order")
        intent_id = f"order_{uuid.uuid4().hex[:14]}"
        self.intents[intent_id] = _Intent(intent_id, to_minor_units(amount), currency)
        logger.info("gateway intent %s for %s %s", intent_id, amount, currency)
        return intent_id

    async def confirm(self, intent_id: str, prefill: Dict[str, str]) -> ConfirmationResult:
        await asyncio.sleep(0)
        self.prefills.append(dict(prefill))
        if intent_id not in self.intents:
            raise GatewayError(f"unknown intent {intent_id}")
        if self.outcome == "cancel":
            return PaymentCancelled()

        payment_id = f"pay_{uuid.uuid4().hex[:14]}"
        signature = sign(self.key_secret, intent_id, payment_id)
        if self.outcome == "tamper":
            signature = signature[::-1]
        return PaymentConfirmed(SignedPayload(intent_id=intent_id, payment_id=payment_id, signature=signature))

    def verify(self, payload: SignedPayload) -> bool:
        return verify_with_client(self.client, payload)

    def amount_for(self, intent_id: str) -> Optional[int]:
        intent = self.intents.get(intent_id)
        return intent.amount_minor if intent else None
