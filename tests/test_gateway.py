"""Tests for the Razorpay gateway, its scripted stand-in, and confirmation signatures."""
import asyncio
from decimal import Decimal

import pytest
import razorpay
from razorpay.errors import BadRequestError

from merch_checkout.config import Settings
from merch_checkout.errors import GatewayError
from merch_checkout.gateway import (
    PaymentCancelled,
    PaymentConfirmed,
    RazorpayGateway,
    ScriptedGateway,
    sign,
    to_minor_units,
)
from merch_checkout.models import SignedPayload


def test_confirmed_payload_verifies():
    gateway = ScriptedGateway(key_secret="k")

    async def flow():
        intent = await gateway.create_intent(Decimal("2059.00"), "INR")
        return intent, await gateway.confirm(intent, {"name": "Asha"})

    intent, outcome = asyncio.run(flow())

    assert isinstance(outcome, PaymentConfirmed)
    assert outcome.payload.intent_id == intent
    assert gateway.verify(outcome.payload)
    assert gateway.amount_for(intent) == 205900


def test_signature_from_other_secret_fails():
    payload = SignedPayload("order_1", "pay_1", sign("other", "order_1", "pay_1"))
    assert ScriptedGateway(key_secret="k").verify(payload) is False


def test_cancel_outcome():
    gateway = ScriptedGateway(outcome="cancel")

    async def flow():
        return await gateway.confirm(await gateway.create_intent(Decimal("10"), "INR"), {})

    assert isinstance(asyncio.run(flow()), PaymentCancelled)


def test_confirm_unknown_intent():
    with pytest.raises(GatewayError):
        asyncio.run(ScriptedGateway().confirm("order_missing", {}))


def test_minor_units():
    assert to_minor_units(Decimal("59.00")) == 5900
    assert to_minor_units(Decimal("0.10")) == 10


@pytest.fixture
def razorpay_client(monkeypatch):
    client = razorpay.Client(auth=("rzp_test_key", "rzp-secret"))
    created = []

    def create(data=None, **kwargs):
        created.append(data)
        return {"id": f"order_{len(created)}", "amount": data["amount"], "currency": data["currency"]}

    monkeypatch.setattr(client.order, "create", create)
    client.created = created
    return client


def test_razorpay_order_and_widget_completion(razorpay_client):
    gateway = RazorpayGateway("rzp_test_key", "rzp-secret", client=razorpay_client)

    async def flow():
        intent = await gateway.create_intent(Decimal("2059.00"), "INR")
        pending = asyncio.create_task(gateway.confirm(intent, {"name": "Asha", "receipt": "INV-1"}))
        await asyncio.sleep(0)
        options = gateway.checkout_options(intent)
        gateway.complete(intent, "pay_1", sign("rzp-secret", intent, "pay_1"))
        return intent, options, await pending

    intent, options, outcome = asyncio.run(flow())

    assert razorpay_client.created == [{"amount": 205900, "currency": "INR", "payment_capture": 1}]
    assert options["key"] == "rzp_test_key"
    assert options["amount"] == 205900
    assert options["notes"]["receipt"] == "INV-1"
    assert isinstance(outcome, PaymentConfirmed)
    assert outcome.payload.intent_id == intent
    assert gateway.verify(outcome.payload)


def test_razorpay_rejects_forged_signature(razorpay_client):
    gateway = RazorpayGateway("rzp_test_key", "rzp-secret", client=razorpay_client)
    forged = SignedPayload("order_1", "pay_1", sign("someone-else", "order_1", "pay_1"))

    assert gateway.verify(forged) is False


def test_razorpay_widget_dismissed(razorpay_client):
    gateway = RazorpayGateway("rzp_test_key", "rzp-secret", client=razorpay_client)

    async def flow():
        intent = await gateway.create_intent(Decimal("10"), "INR")
        pending = asyncio.create_task(gateway.confirm(intent, {}))
        await asyncio.sleep(0)
        gateway.dismiss(intent, "modal closed")
        return await pending

    outcome = asyncio.run(flow())

    assert outcome == PaymentCancelled("modal closed")


def test_razorpay_refusal_becomes_gateway_error(razorpay_client, monkeypatch):
    def refuse(data=None, **kwargs):
        raise BadRequestError("amount must be at least INR 1.00")

    monkeypatch.setattr(razorpay_client.order, "create", refuse)
    gateway = RazorpayGateway("rzp_test_key", "rzp-secret", client=razorpay_client)

    with pytest.raises(GatewayError, match="refused") as excinfo:
        asyncio.run(gateway.create_intent(Decimal("0.50"), "INR"))
    assert isinstance(excinfo.value.__cause__, BadRequestError)


def test_razorpay_completion_without_waiting_payment(razorpay_client):
    gateway = RazorpayGateway("rzp_test_key", "rzp-secret", client=razorpay_client)

    with pytest.raises(GatewayError):
        gateway.complete("order_missing", "pay_1", "sig")


def test_razorpay_needs_keys():
    with pytest.raises(GatewayError):
        RazorpayGateway.from_settings(Settings(gateway_key_secret="only-secret"))

    gateway = RazorpayGateway.from_settings(Settings(gateway_key_id="rzp_test_key", gateway_key_secret="s"))
    assert gateway.key_id == "rzp_test_key"
