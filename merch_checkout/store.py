from __future__ import annotations

import threading
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from merch_checkout.models import (
    CartLine,
    Coupon,
    DeliveryRule,
    DiscountType,
    Order,
    PricingMetadata,
    PrintingPriceTable,
)


class Store:
    """
    In-memory backing state for every external collaborator of the checkout.

    Keeps:
    - carts per user
    - product pricing metadata
    - coupons by id, looked up by code at checkout
    - committed orders
    - notifications that were "sent"
    - payments flagged for manual reconciliation
    """

    def __init__(self) -> None:
        self.carts: Dict[str, List[CartLine]] = {}
        self.products: Dict[str, PricingMetadata] = {}
        self.coupons: Dict[str, Coupon] = {}
        self.orders: Dict[str, Order] = {}
        self.notifications: List[Tuple[str, str, str, str]] = []
        self.reconciliation: list = []

        self.lock = threading.Lock()

    def coupon_by_code(self, code: str) -> Optional[Coupon]:
        code = code.strip().upper()
        for coupon in self.coupons.values():
            if coupon.code.upper() == code:
                return coupon
        return None

    # Seed helpers
    def add_product(
        self,
        product_id: str,
        price: Decimal,
        title: str = "",
        printing: Optional[PrintingPriceTable] = None,
        delivery: Optional[DeliveryRule] = None,
    ) -> None:
        self.products[product_id] = PricingMetadata(
            product_id=product_id,
            unit_price=price,
            title=title or product_id,
            printing_price_table=printing,
            delivery_rule=delivery,
        )

    def add_to_cart(
        self,
        user_id: str,
        product_id: str,
        quantity: int,
        size: Optional[str] = None,
        color: Optional[str] = None,
    ) -> None:
        product = self.products[product_id]
        self.carts.setdefault(user_id, []).append(
            CartLine(
                product_id=product_id,
                unit_price=product.unit_price,
                quantity=quantity,
                title=product.title,
                size=size,
                color=color,
            )
        )

    def add_coupon(
        self,
        coupon_id: str,
        code: str,
        discount_type: DiscountType,
        value: Decimal,
        max_discount: Decimal,
        valid_from: datetime,
        valid_until: Optional[datetime] = None,
        min_purchase: Decimal = Decimal("0.00"),
        usage_limit: int = 0,
        times_used: int = 0,
        product_ids: Optional[Tuple[str, ...]] = None,
        is_active: bool = True,
    ) -> Coupon:
        coupon = Coupon(
            id=coupon_id,
            code=code.upper(),
            discount_type=discount_type,
            discount_value=value,
            min_purchase_amount=min_purchase,
            max_discount_amount=max_discount,
            valid_from=valid_from,
            valid_until=valid_until,
            is_active=is_active,
            usage_limit=usage_limit,
            times_used=times_used,
            product_ids=product_ids,
        )
        self.coupons[coupon_id] = coupon
        return coupon
