"""Pytest fixtures for the checkout pipeline."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from merch_checkout.checkout import CheckoutOrchestrator
from merch_checkout.config import Settings
from merch_checkout.gateway import ScriptedGateway
from merch_checkout.models import (
    CheckoutSession,
    DiscountType,
    PaymentMethod,
    PrintingPriceTable,
    ShippingAddress,
)
from merch_checkout.store import Store

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)

PRINTING = PrintingPriceTable(
    locations={
        "Small": {"left_chest": Decimal("50.00"), "back": Decimal("70.00")},
        "Medium": {"front": Decimal("100.00"), "back": Decimal("100.00"), "both": Decimal("180.00")},
    },
    flat_tiers={"Across Chest": Decimal("120.00")},
)


@pytest.fixture
def settings() -> Settings:
    return Settings(gateway_key_secret="test-secret", persist_attempts=3, persist_retry_delay=0)


@pytest.fixture
def store() -> Store:
    store = Store()

    store.add_product("TEE", price=Decimal("1000.00"), title="Black Tee", printing=PRINTING)
    store.add_product("MUG", price=Decimal("400.00"), title="White Mug")
    store.add_product("CAP", price=Decimal("300.00"), title="Snapback")

    store.add_to_cart("u1", "TEE", 2, size="M", color="black")

    store.add_coupon(
        "c10", "TEN", DiscountType.PERCENTAGE, Decimal("10"), max_discount=Decimal("500.00"),
        valid_from=NOW - timedelta(days=10), valid_until=NOW + timedelta(days=10),
    )
    store.add_coupon(
        "c-once", "ONCE", DiscountType.FIXED, Decimal("100"), max_discount=Decimal("100.00"),
        valid_from=NOW - timedelta(days=10), usage_limit=1,
    )
    store.add_coupon(
        "c-mug", "MUGONLY", DiscountType.FIXED, Decimal("50"), max_discount=Decimal("50.00"),
        valid_from=NOW - timedelta(days=10), product_ids=("MUG",),
    )
    store.add_coupon(
        "c-old", "OLD", DiscountType.PERCENTAGE, Decimal("20"), max_discount=Decimal("150.00"),
        valid_from=NOW - timedelta(days=30), valid_until=NOW - timedelta(days=1),
    )

    return store


@pytest.fixture
def gateway(settings) -> ScriptedGateway:
    return ScriptedGateway(key_secret=settings.gateway_key_secret)


@pytest.fixture
def orchestrator(store, gateway, settings) -> CheckoutOrchestrator:
    return CheckoutOrchestrator.in_memory(store, gateway, settings=settings, clock=lambda: NOW)


@pytest.fixture
def address() -> ShippingAddress:
    return ShippingAddress(
        full_name="Asha Rao", address="12 MG Road", city="Bengaluru",
        state="KA", zip_code="560001", country="India",
    )


@pytest.fixture
def make_session(address):
    counter = iter(range(1, 1000))

    def _make(**kwargs) -> CheckoutSession:
        kwargs.setdefault("user_id", "u1")
        kwargs.setdefault("shipping_address", address)
        kwargs.setdefault("payment_method", PaymentMethod.PAY_ON_DELIVERY)
        return CheckoutSession(id=f"s{next(counter)}", **kwargs)

    return _make
