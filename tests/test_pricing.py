"""Tests for the pure price arithmetic."""
from decimal import Decimal

import pytest

from merch_checkout.errors import ValidationError
from merch_checkout.models import CartLine, CustomPrintingSelection, DeliveryRule
from merch_checkout.pricing import PricingEngine

from conftest import PRINTING

engine = PricingEngine()
RULE = DeliveryRule(flat_charge=Decimal("59.00"), free_above_threshold=Decimal("2500.00"))


def _lines():
    return [
        CartLine("TEE", Decimal("499.50"), 3),
        CartLine("MUG", Decimal("250.00"), 1),
        CartLine("CAP", Decimal("0.00"), 4),
    ]


def test_subtotal_is_sum_of_price_times_quantity():
    assert engine.compute_subtotal(_lines()) == Decimal("1748.50")


def test_subtotal_ignores_line_order():
    lines = _lines()
    assert engine.compute_subtotal(lines) == engine.compute_subtotal(list(reversed(lines)))
    assert engine.compute_subtotal(lines) == engine.compute_subtotal([lines[1], lines[2], lines[0]])


@pytest.mark.parametrize("line", [
    CartLine("TEE", Decimal("10.00"), 0),
    CartLine("TEE", Decimal("10.00"), -1),
    CartLine("TEE", Decimal("-0.01"), 1),
])
def test_subtotal_rejects_bad_lines(line):
    with pytest.raises(ValidationError):
        engine.compute_subtotal([line])


def test_no_printing_selection_costs_nothing():
    assert engine.compute_printing_surcharge(None, PRINTING, 5) == Decimal("0.00")


def test_printing_surcharge_multiplies_once_by_quantity():
    selection = CustomPrintingSelection("TEE", "Medium", ("front",))
    assert engine.compute_printing_surcharge(selection, PRINTING, 2) == Decimal("200.00")


def test_printing_surcharge_sums_locations():
    selection = CustomPrintingSelection("TEE", "Small", ("left_chest", "back"))
    assert engine.compute_printing_surcharge(selection, PRINTING, 3) == Decimal("360.00")


def test_flat_tier_uses_tier_price():
    selection = CustomPrintingSelection("TEE", "Across Chest")
    assert engine.compute_printing_surcharge(selection, PRINTING, 2) == Decimal("240.00")


@pytest.mark.parametrize("selection", [
    CustomPrintingSelection("TEE", "Huge", ("front",)),
    CustomPrintingSelection("TEE", "Medium", ("left_chest",)),
    CustomPrintingSelection("TEE", "Medium", ()),
    CustomPrintingSelection("TEE", "Across Chest", ("front",)),
])
def test_unknown_printing_option_is_rejected(selection):
    with pytest.raises(ValidationError):
        engine.compute_printing_surcharge(selection, PRINTING, 1)


def test_printing_on_product_without_table_is_rejected():
    with pytest.raises(ValidationError):
        engine.compute_printing_surcharge(CustomPrintingSelection("MUG", "Small", ("back",)), None, 1)


def test_delivery_charged_below_threshold():
    assert engine.compute_delivery_charge(Decimal("2499.99"), RULE) == Decimal("59.00")


def test_delivery_free_at_and_above_threshold():
    assert engine.compute_delivery_charge(Decimal("2500.00"), RULE) == Decimal("0.00")
    assert engine.compute_delivery_charge(Decimal("4000.00"), RULE) == Decimal("0.00")


def test_pre_discount_total_is_plain_sum():
    assert engine.compute_pre_discount_total(Decimal("2000"), Decimal("200"), Decimal("59")) == Decimal("2259.00")


def test_price_is_repeatable():
    lines = [CartLine("TEE", Decimal("1000.00"), 2)]
    selection = CustomPrintingSelection("TEE", "Medium", ("front",))

    first = engine.price(lines, selection, PRINTING, RULE)
    second = engine.price(lines, selection, PRINTING, RULE)

    assert first == second
    assert first.subtotal == Decimal("2000.00")
    assert first.printing_surcharge == Decimal("200.00")
    assert first.delivery_charge == Decimal("59.00")
    assert first.total_amount == Decimal("2259.00")
