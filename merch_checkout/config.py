from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal

from dotenv import load_dotenv

from merch_checkout.models import DeliveryRule


@dataclass(slots=True, frozen=True)
class Settings:
    currency: str = "INR"
    delivery_flat_charge: Decimal = Decimal("59.00")
    free_delivery_above: Decimal = Decimal("2500.00")
    persist_attempts: int = 3
    persist_retry_delay: float = 0.5
    gateway_key_id: str = ""
    gateway_key_secret: str = ""
    log_level: str = "INFO"

    @property
    def default_delivery_rule(self) -> DeliveryRule:
        return DeliveryRule(flat_charge=self.delivery_flat_charge, free_above_threshold=self.free_delivery_above)


def load_settings() -> Settings:
    """Read settings from the environment, after loading a local .env if there is one."""
    load_dotenv()
    defaults = Settings()
    return Settings(
        currency=os.getenv("CHECKOUT_CURRENCY", defaults.currency),
        delivery_flat_charge=Decimal(os.getenv("CHECKOUT_DELIVERY_FLAT_CHARGE", str(defaults.delivery_flat_charge))),
        free_delivery_above=Decimal(os.getenv("CHECKOUT_FREE_DELIVERY_ABOVE", str(defaults.free_delivery_above))),
        persist_attempts=max(1, int(os.getenv("CHECKOUT_PERSIST_ATTEMPTS", defaults.persist_attempts))),
        persist_retry_delay=float(os.getenv("CHECKOUT_PERSIST_RETRY_DELAY", defaults.persist_retry_delay)),
        gateway_key_id=os.getenv("GATEWAY_KEY_ID", defaults.gateway_key_id),
        gateway_key_secret=os.getenv("GATEWAY_KEY_SECRET", defaults.gateway_key_secret),
        log_level=os.getenv("CHECKOUT_LOG_LEVEL", defaults.log_level),
    )
