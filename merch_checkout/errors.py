from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from merch_checkout.coupons import RejectionReason
    from merch_checkout.services import ReconciliationRecord


class CheckoutError(Exception):
    pass


class ValidationError(CheckoutError):
    """Bad input from the customer's side: empty cart, unknown option, bad address."""


class InvalidTransition(ValidationError):
    pass


class CouponRejected(CheckoutError):
    def __init__(self, code: Optional[str], reason: "RejectionReason"):
        super().__init__(f"coupon {code} rejected: {reason.value}")
        self.code = code
        self.reason = reason


class GatewayError(CheckoutError):
    """Intent creation failed, the customer cancelled, or the confirmation did not check out."""


class PersistenceError(CheckoutError):
    """The order could not be written and no money has been taken."""


class ConsistencyError(CheckoutError):
    """
    The order could not be written after the gateway confirmed payment.

    The record has already been queued for manual reconciliation by the time
    this is raised.
    """

    def __init__(self, message: str, record: "ReconciliationRecord"):
        super().__init__(message)
        self.record = record


class SideEffectError(CheckoutError):
    def __init__(self, step: str, cause: BaseException):
        super().__init__(f"{step} failed: {cause}")
        self.step = step
        self.cause = cause
