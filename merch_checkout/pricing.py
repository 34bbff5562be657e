from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional

from merch_checkout.errors import ValidationError
from merch_checkout.models import (
    ZERO,
    CartLine,
    CustomPrintingSelection,
    DeliveryRule,
    PriceBreakdown,
    PrintingPriceTable,
    money,
)


class PricingEngine:
    """
    Pure price arithmetic for a checkout.

    No method touches a store; the same inputs always give the same amounts.
    Coupon eligibility is checked against `compute_subtotal` alone, which is
    why the pre-discount total is a separate operation.
    """

    def compute_subtotal(self, lines: Iterable[CartLine]) -> Decimal:
        total = ZERO
        for line in lines:
            if line.quantity <= 0:
                raise ValidationError(f"quantity must be > 0 for {line.product_id}")
            if line.unit_price < 0:
                raise ValidationError(f"unit price must be >= 0 for {line.product_id}")
            total += line.unit_price * line.quantity
        return money(total)

    def compute_printing_surcharge(
        self,
        selection: Optional[CustomPrintingSelection],
        price_table: Optional[PrintingPriceTable],
        total_quantity: int,
    ) -> Decimal:
        if selection is None:
            return ZERO
        if price_table is None:
            raise ValidationError(f"product {selection.product_id} does not offer custom printing")
        return money(self._unit_surcharge(selection, price_table) * total_quantity)

    def _unit_surcharge(self, selection: CustomPrintingSelection, table: PrintingPriceTable) -> Decimal:
        if selection.tier in table.flat_tiers:
            if selection.locations:
                raise ValidationError(f"printing tier {selection.tier!r} takes no placement locations")
            return table.flat_tiers[selection.tier]

        prices = table.locations.get(selection.tier)
        if prices is None:
            raise ValidationError(f"unknown printing tier {selection.tier!r}")
        if not selection.locations:
            raise ValidationError(f"printing tier {selection.tier!r} needs at least one location")

        unit = ZERO
        for location in selection.locations:
            if location not in prices:
                raise ValidationError(f"unknown printing location {location!r} for tier {selection.tier!r}")
            unit += prices[location]
        return unit

    def compute_delivery_charge(self, subtotal: Decimal, rule: DeliveryRule) -> Decimal:
        if subtotal >= rule.free_above_threshold:
            return ZERO
        return money(rule.flat_charge)

    def compute_pre_discount_total(self, subtotal: Decimal, surcharge: Decimal, delivery: Decimal) -> Decimal:
        return money(subtotal + surcharge + delivery)

    def price(
        self,
        lines: list[CartLine],
        selection: Optional[CustomPrintingSelection],
        price_table: Optional[PrintingPriceTable],
        rule: DeliveryRule,
    ) -> PriceBreakdown:
        subtotal = self.compute_subtotal(lines)
        total_quantity = sum(line.quantity for line in lines)
        return PriceBreakdown(
            subtotal=subtotal,
            printing_surcharge=self.compute_printing_surcharge(selection, price_table, total_quantity),
            delivery_charge=self.compute_delivery_charge(subtotal, rule),
        )
