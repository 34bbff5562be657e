from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Optional, Union

from merch_checkout.models import Coupon, DiscountType, money


class RejectionReason(str, Enum):
    UNKNOWN_CODE = "unknown_code"
    INACTIVE = "inactive"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    MINIMUM_NOT_MET = "minimum_not_met"
    NOT_APPLICABLE = "not_applicable"
    USAGE_LIMIT_REACHED = "usage_limit_reached"
    EXCEEDS_ORDER_VALUE = "exceeds_order_value"


@dataclass(slots=True, frozen=True)
class CouponAccepted:
    coupon: Coupon
    discount_amount: Decimal
    valid: bool = True


@dataclass(slots=True, frozen=True)
class CouponRejection:
    reason: RejectionReason
    valid: bool = False


CouponDecision = Union[CouponAccepted, CouponRejection]


class CouponValidator:
    def validate(
        self,
        coupon: Optional[Coupon],
        subtotal: Decimal,
        cart_product_ids: Iterable[str],
        now: datetime,
    ) -> CouponDecision:
        if coupon is None:
            return CouponRejection(RejectionReason.UNKNOWN_CODE)
        if not coupon.is_active:
            return CouponRejection(RejectionReason.INACTIVE)
        if now < coupon.valid_from:
            return CouponRejection(RejectionReason.NOT_YET_VALID)
        if coupon.valid_until is not None and now > coupon.valid_until:
            return CouponRejection(RejectionReason.EXPIRED)
        if subtotal < coupon.min_purchase_amount:
            return CouponRejection(RejectionReason.MINIMUM_NOT_MET)
        if coupon.product_ids is not None and not set(coupon.product_ids) & set(cart_product_ids):
            return CouponRejection(RejectionReason.NOT_APPLICABLE)
        if coupon.usage_limit != 0 and coupon.times_used >= coupon.usage_limit:
            return CouponRejection(RejectionReason.USAGE_LIMIT_REACHED)

        return CouponAccepted(coupon=coupon, discount_amount=self.discount_for(coupon, subtotal))

    def discount_for(self, coupon: Coupon, subtotal: Decimal) -> Decimal:
        if coupon.discount_type is DiscountType.PERCENTAGE:
            raw = subtotal * coupon.discount_value / Decimal(100)
        else:
            raw = coupon.discount_value
        # the cap applies to fixed coupons too
        return money(min(raw, coupon.max_discount_amount))

    def rank_eligible(
        self,
        coupons: Iterable[Coupon],
        subtotal: Decimal,
        cart_product_ids: Iterable[str],
        now: datetime,
    ) -> List[CouponAccepted]:
        """Eligible coupons, best discount first. Display order only."""
        product_ids = list(cart_product_ids)
        seen = set()
        accepted: List[CouponAccepted] = []
        for coupon in coupons:
            if coupon.id in seen:
                continue
            seen.add(coupon.id)
            decision = self.validate(coupon, subtotal, product_ids, now)
            if isinstance(decision, CouponAccepted):
                accepted.append(decision)
        accepted.sort(key=lambda d: (-d.discount_amount, d.coupon.code))
        return accepted
