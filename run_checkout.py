from __future__ import annotations

import argparse
import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from merch_checkout.checkout import CheckoutOrchestrator
from merch_checkout.config import load_settings
from merch_checkout.errors import CheckoutError
from merch_checkout.gateway import ScriptedGateway
from merch_checkout.models import (
    CheckoutSession,
    CustomPrintingSelection,
    DeliveryRule,
    DiscountType,
    PaymentMethod,
    PrintingPriceTable,
    ShippingAddress,
)
from merch_checkout.store import Store

TEE_PRINTING = PrintingPriceTable(
    locations={
        "Small": {
            "left_chest": Decimal("60.00"),
            "center_chest": Decimal("60.00"),
            "right_chest": Decimal("60.00"),
            "back": Decimal("80.00"),
        },
        "Medium": {"front": Decimal("100.00"), "back": Decimal("100.00"), "both": Decimal("180.00")},
        "Large": {"full_front": Decimal("150.00"), "full_back": Decimal("150.00"), "both": Decimal("280.00")},
    },
    flat_tiers={"Across Chest": Decimal("120.00")},
)


def seed(store: Store, user_id: str) -> None:
    now = datetime.now(timezone.utc)

    store.add_product("TEE-BLACK", price=Decimal("1000.00"), title="Classic Black Tee", printing=TEE_PRINTING)
    store.add_product("HOODIE-GREY", price=Decimal("1800.00"), title="Grey Hoodie", printing=TEE_PRINTING)
    store.add_product("MUG-WHITE", price=Decimal("350.00"), title="White Mug")

    store.add_to_cart(user_id, "TEE-BLACK", 2, size="L", color="black")

    store.add_coupon(
        "c-welcome", "WELCOME10", DiscountType.PERCENTAGE, Decimal("10"), max_discount=Decimal("500.00"),
        valid_from=now - timedelta(days=30), valid_until=now + timedelta(days=30), min_purchase=Decimal("500.00"),
    )
    store.add_coupon(
        "c-flat300", "FLAT300", DiscountType.FIXED, Decimal("500"), max_discount=Decimal("300.00"),
        valid_from=now - timedelta(days=1), usage_limit=100,
    )
    store.add_coupon(
        "c-hoodie", "HOODIE15", DiscountType.PERCENTAGE, Decimal("15"), max_discount=Decimal("400.00"),
        valid_from=now - timedelta(days=1), product_ids=("HOODIE-GREY",),
    )


def main() -> None:
    settings = load_settings()
    logging.basicConfig(level=settings.log_level, format="%(message)s")

    p = argparse.ArgumentParser(description="Run one checkout against an in-memory store and print the order.")
    p.add_argument("--user-id", type=str, default="user-1")
    p.add_argument("--method", choices=[m.value for m in PaymentMethod], default=PaymentMethod.PAY_ON_DELIVERY.value)
    p.add_argument("--coupon", type=str, default=None)
    p.add_argument("--tier", type=str, default=None, help="Printing tier, e.g. Medium or 'Across Chest'")
    p.add_argument("--location", action="append", default=[], help="Printing location; repeat for several")
    p.add_argument("--gateway-outcome", choices=["success", "cancel", "tamper"], default="success")
    args = p.parse_args()

    store = Store()
    seed(store, args.user_id)
    gateway = ScriptedGateway(key_secret=settings.gateway_key_secret or "demo-secret", outcome=args.gateway_outcome)
    orchestrator = CheckoutOrchestrator.in_memory(store, gateway, settings=settings)

    session = CheckoutSession(
        id=uuid.uuid4().hex[:8],
        user_id=args.user_id,
        shipping_address=ShippingAddress(
            full_name="Asha Rao", address="12 MG Road", city="Bengaluru",
            state="KA", zip_code="560001", country="India",
        ),
        payment_method=PaymentMethod(args.method),
        printing=CustomPrintingSelection("TEE-BLACK", args.tier, tuple(args.location)) if args.tier else None,
        coupon_code=args.coupon,
    )

    try:
        result = asyncio.run(orchestrator.checkout(session))
    except CheckoutError as exc:
        print("\n=== FAILED ===")
        print(f"{type(exc).__name__}: {exc}")
        print("cart:", store.carts.get(args.user_id))
        return

    order = result.order
    print("\n=== ORDER ===")
    print("invoice:", order.invoice_number, "status:", order.status.value, "payment:", order.payment_status.value)
    print(
        f"subtotal={order.subtotal} printing={order.printing_surcharge} delivery={order.delivery_charge} "
        f"discount={order.discount_amount} total={order.total_amount}"
    )
    if result.coupon_rejection:
        print("coupon not applied:", result.coupon_rejection.reason.value)
    print("coupons:", {c.code: c.times_used for c in store.coupons.values()})
    print("notifications:", store.notifications)


if __name__ == "__main__":
    main()
