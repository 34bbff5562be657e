from __future__ import annotations

from dataclasses import FrozenInstanceError, dataclass, field, replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

from merch_checkout.errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class OrderStatus(str, Enum):
    DRAFT = "draft"
    PENDING_PAYMENT = "pending_payment"
    PLACED = "placed"
    AWAITING_GATEWAY_CONFIRMATION = "awaiting_gateway_confirmation"
    PAID = "paid"
    PAYMENT_ABORTED = "payment_aborted"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    PAY_ON_DELIVERY = "cod"
    ONLINE = "online"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


@dataclass(slots=True)
class CartLine:
    product_id: str
    unit_price: Decimal
    quantity: int
    title: str = ""
    size: Optional[str] = None
    color: Optional[str] = None


@dataclass(slots=True)
class PrintingPriceTable:
    """
    Unit prices for custom printing, as published on a product.

    `locations` maps a tier ("Small", "Medium", "Large") to its placement
    prices. `flat_tiers` holds tiers priced per unit with no placement choice,
    such as "Across Chest".
    """

    locations: Dict[str, Dict[str, Decimal]] = field(default_factory=dict)
    flat_tiers: Dict[str, Decimal] = field(default_factory=dict)


@dataclass(slots=True)
class CustomPrintingSelection:
    product_id: str
    tier: str
    locations: Tuple[str, ...] = ()


@dataclass(slots=True)
class DeliveryRule:
    flat_charge: Decimal
    free_above_threshold: Decimal


@dataclass(slots=True)
class PricingMetadata:
    product_id: str
    unit_price: Decimal
    title: str = ""
    printing_price_table: Optional[PrintingPriceTable] = None
    delivery_rule: Optional[DeliveryRule] = None


@dataclass(slots=True)
class Coupon:
    id: str
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    min_purchase_amount: Decimal
    max_discount_amount: Decimal
    valid_from: datetime
    valid_until: Optional[datetime] = None
    is_active: bool = True
    usage_limit: int = 0
    times_used: int = 0
    product_ids: Optional[Tuple[str, ...]] = None
    description: str = ""


@dataclass(slots=True, frozen=True)
class ShippingAddress:
    full_name: str
    address: str
    city: str
    state: str
    zip_code: str
    country: str

    def validate(self) -> None:
        missing = [
            name
            for name in ("full_name", "address", "city", "state", "zip_code", "country")
            if not str(getattr(self, name) or "").strip()
        ]
        if missing:
            raise ValidationError(f"malformed address: missing {', '.join(missing)}")


@dataclass(slots=True, frozen=True)
class CustomDesignRef:
    url: str
    instructions: Optional[str] = None


@dataclass(slots=True, frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    printing_surcharge: Decimal
    delivery_charge: Decimal
    discount_amount: Decimal = ZERO

    @property
    def pre_discount_total(self) -> Decimal:
        return money(self.subtotal + self.printing_surcharge + self.delivery_charge)

    @property
    def total_amount(self) -> Decimal:
        return money(self.pre_discount_total - self.discount_amount)

    def with_discount(self, discount_amount: Decimal) -> PriceBreakdown:
        return replace(self, discount_amount=money(discount_amount))


@dataclass(slots=True, frozen=True)
class OrderItem:
    product_id: str
    title: str
    price: Decimal
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None


@dataclass(slots=True, frozen=True)
class OrderStatusHistoryEntry:
    status: OrderStatus
    changed_at: datetime
    changed_by: str
    note: Optional[str] = None


@dataclass(slots=True, frozen=True)
class SignedPayload:
    """What the gateway hands back after the customer completes payment."""

    intent_id: str
    payment_id: str
    signature: str


@dataclass(slots=True)
class Order:
    id: str
    user_id: str
    invoice_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    shipping_address: ShippingAddress
    items: Tuple[OrderItem, ...]
    subtotal: Decimal
    printing_surcharge: Decimal
    delivery_charge: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    created_at: datetime
    applied_coupon_id: Optional[str] = None
    custom_design: Optional[CustomDesignRef] = None
    printing: Optional[CustomPrintingSelection] = None
    gateway_intent_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    gateway_signature: Optional[str] = None
    status_history: List[OrderStatusHistoryEntry] = field(default_factory=list)

    # fixed once the order exists; only status, payment and gateway fields move
    _LOCKED = frozenset(
        {"id", "items", "subtotal", "printing_surcharge", "delivery_charge", "discount_amount", "total_amount", "applied_coupon_id"}
    )

    def __setattr__(self, name: str, value) -> None:
        if name in Order._LOCKED and hasattr(self, name):
            raise FrozenInstanceError(f"cannot assign to field {name!r} of a committed order")
        object.__setattr__(self, name, value)

    def __post_init__(self) -> None:
        expected = money(self.subtotal + self.printing_surcharge + self.delivery_charge - self.discount_amount)
        if self.total_amount != expected:
            raise ValidationError(
                f"order {self.id}: total_amount={self.total_amount} does not match breakdown ({expected})"
            )
        if self.total_amount < ZERO:
            raise ValidationError(f"order {self.id}: total_amount must not be negative")

    @property
    def breakdown(self) -> PriceBreakdown:
        return PriceBreakdown(
            subtotal=self.subtotal,
            printing_surcharge=self.printing_surcharge,
            delivery_charge=self.delivery_charge,
            discount_amount=self.discount_amount,
        )


@dataclass(slots=True)
class CheckoutSession:
    """
    Everything one checkout attempt needs, passed explicitly through the flow.

    `status` only tracks the transient states (DRAFT, PENDING_PAYMENT,
    AWAITING_GATEWAY_CONFIRMATION, PAYMENT_ABORTED); persisted states live on
    the Order.
    """

    id: str
    user_id: str
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = PaymentMethod.PAY_ON_DELIVERY
    printing: Optional[CustomPrintingSelection] = None
    coupon_code: Optional[str] = None
    custom_design: Optional[CustomDesignRef] = None
    status: OrderStatus = OrderStatus.DRAFT
