"""Tests for order construction and configuration."""
from dataclasses import FrozenInstanceError
from decimal import Decimal

import pytest

from merch_checkout.config import load_settings
from merch_checkout.errors import ValidationError
from merch_checkout.models import Order, OrderStatus, PaymentMethod, PaymentStatus, PriceBreakdown

from conftest import NOW


def _order(address, **amounts):
    fields = dict(subtotal=Decimal("2000.00"), printing_surcharge=Decimal("200.00"),
                  delivery_charge=Decimal("59.00"), discount_amount=Decimal("200.00"),
                  total_amount=Decimal("2059.00"))
    fields.update(amounts)
    return Order(
        id="o1", user_id="u1", invoice_number="INV-1", status=OrderStatus.PLACED,
        payment_status=PaymentStatus.PENDING, payment_method=PaymentMethod.PAY_ON_DELIVERY,
        shipping_address=address, items=(), created_at=NOW, **fields,
    )


def test_order_keeps_breakdown(address):
    order = _order(address)
    assert order.breakdown.total_amount == order.total_amount


def test_order_rejects_mismatched_total(address):
    with pytest.raises(ValidationError):
        _order(address, total_amount=Decimal("2259.00"))


def test_order_rejects_negative_total(address):
    with pytest.raises(ValidationError):
        _order(address, subtotal=Decimal("10.00"), printing_surcharge=Decimal("0.00"),
               delivery_charge=Decimal("0.00"), discount_amount=Decimal("20.00"), total_amount=Decimal("-10.00"))


def test_order_amounts_are_fixed_after_construction(address):
    order = _order(address)

    with pytest.raises(FrozenInstanceError):
        order.total_amount = Decimal("1.00")
    with pytest.raises(FrozenInstanceError):
        order.discount_amount = Decimal("0.00")

    order.status = OrderStatus.PROCESSING
    order.payment_status = PaymentStatus.PAID
    assert order.total_amount == Decimal("2059.00")
    assert order.status is OrderStatus.PROCESSING


def test_breakdown_totals():
    breakdown = PriceBreakdown(Decimal("2000"), Decimal("200"), Decimal("59")).with_discount(Decimal("200"))
    assert breakdown.pre_discount_total == Decimal("2259.00")
    assert breakdown.total_amount == Decimal("2059.00")


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("CHECKOUT_DELIVERY_FLAT_CHARGE", "79")
    monkeypatch.setenv("CHECKOUT_FREE_DELIVERY_ABOVE", "1999")
    monkeypatch.setenv("CHECKOUT_PERSIST_ATTEMPTS", "0")

    settings = load_settings()

    assert settings.default_delivery_rule.flat_charge == Decimal("79")
    assert settings.default_delivery_rule.free_above_threshold == Decimal("1999")
    assert settings.persist_attempts == 1
