"""Typed outcomes shared by the settlement services.

Expected business outcomes (a lost slot race, an exhausted voucher, ...) are
returned as a ``Result`` carrying an ``ErrorKind``. Failures of external
systems and broken invariants are exceptions.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Optional

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class ErrorKind(str, Enum):
    SLOT_UNAVAILABLE = "SLOT_UNAVAILABLE"
    INVALID_VOUCHER = "INVALID_VOUCHER"
    VOUCHER_NOT_FOUND = "VOUCHER_NOT_FOUND"
    VOUCHER_INACTIVE = "VOUCHER_INACTIVE"
    VOUCHER_EXPIRED = "VOUCHER_EXPIRED"
    VOUCHER_EXHAUSTED = "VOUCHER_EXHAUSTED"
    VOUCHER_MIN_AMOUNT_NOT_MET = "VOUCHER_MIN_AMOUNT_NOT_MET"
    VOUCHER_NOT_ALLOWED = "VOUCHER_NOT_ALLOWED"
    VOUCHER_ALREADY_APPLIED = "VOUCHER_ALREADY_APPLIED"
    BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"
    BOOKING_NOT_PENDING = "BOOKING_NOT_PENDING"
    REFUND_NOT_ELIGIBLE = "REFUND_NOT_ELIGIBLE"
    NOTHING_TO_PAY = "NOTHING_TO_PAY"
    FORBIDDEN = "FORBIDDEN"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    GATEWAY_ERROR = "GATEWAY_ERROR"
    GATEWAY_TIMEOUT = "GATEWAY_TIMEOUT"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    SETTLEMENT_FAILED = "SETTLEMENT_FAILED"


# user-facing text, never derived from exception messages
MESSAGES = {
    ErrorKind.SLOT_UNAVAILABLE: "This slot just became unavailable, please pick another",
    ErrorKind.INVALID_VOUCHER: "Voucher code cannot be applied",
    ErrorKind.VOUCHER_NOT_FOUND: "Voucher code is not valid",
    ErrorKind.VOUCHER_INACTIVE: "Voucher code is not active",
    ErrorKind.VOUCHER_EXPIRED: "Voucher code has expired",
    ErrorKind.VOUCHER_EXHAUSTED: "Voucher code has reached its usage limit",
    ErrorKind.VOUCHER_MIN_AMOUNT_NOT_MET: "Order amount is below the voucher minimum",
    ErrorKind.VOUCHER_NOT_ALLOWED: "This voucher code is not available for your account",
    ErrorKind.VOUCHER_ALREADY_APPLIED: "Voucher code was already applied to this booking",
    ErrorKind.BOOKING_NOT_FOUND: "Booking not found",
    ErrorKind.BOOKING_NOT_PENDING: "Booking is not awaiting payment",
    ErrorKind.REFUND_NOT_ELIGIBLE: "Booking cannot be cancelled or refunded",
    ErrorKind.NOTHING_TO_PAY: "Booking is already fully paid",
    ErrorKind.FORBIDDEN: "Forbidden",
    ErrorKind.VALIDATION_ERROR: "Invalid request",
    ErrorKind.GATEWAY_ERROR: "Payment provider error, please try again",
    ErrorKind.GATEWAY_TIMEOUT: "Payment provider did not respond, please try again",
    ErrorKind.SIGNATURE_INVALID: "Invalid signature",
    ErrorKind.SETTLEMENT_FAILED: "Webhook processing failed",
}

HTTP_STATUS = {
    ErrorKind.SLOT_UNAVAILABLE: 409,
    ErrorKind.INVALID_VOUCHER: 422,
    ErrorKind.VOUCHER_NOT_FOUND: 404,
    ErrorKind.VOUCHER_INACTIVE: 422,
    ErrorKind.VOUCHER_EXPIRED: 422,
    ErrorKind.VOUCHER_EXHAUSTED: 409,
    ErrorKind.VOUCHER_MIN_AMOUNT_NOT_MET: 422,
    ErrorKind.VOUCHER_NOT_ALLOWED: 403,
    ErrorKind.VOUCHER_ALREADY_APPLIED: 409,
    ErrorKind.BOOKING_NOT_FOUND: 404,
    ErrorKind.BOOKING_NOT_PENDING: 409,
    ErrorKind.REFUND_NOT_ELIGIBLE: 409,
    ErrorKind.NOTHING_TO_PAY: 409,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.GATEWAY_ERROR: 502,
    ErrorKind.GATEWAY_TIMEOUT: 504,
    ErrorKind.SIGNATURE_INVALID: 400,
    ErrorKind.SETTLEMENT_FAILED: 500,
}


@dataclass
class Result:
    value: Any = None
    error: Optional[ErrorKind] = None
    # more specific cause, e.g. VOUCHER_EXPIRED behind INVALID_VOUCHER
    reason: Optional[ErrorKind] = None
    extra: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def message(self) -> Optional[str]:
        if self.error is None:
            return None
        return MESSAGES.get(self.reason or self.error, MESSAGES[self.error])

    @property
    def http_status(self) -> int:
        if self.error is None:
            return 200
        return HTTP_STATUS.get(self.error, 400)

    @classmethod
    def success(cls, value=None, **extra) -> "Result":
        return cls(value=value, extra=extra)

    @classmethod
    def fail(cls, error: ErrorKind, reason: Optional[ErrorKind] = None, **extra) -> "Result":
        return cls(error=error, reason=reason, extra=extra)


class OutcomeError(Exception):
    """Raised inside a transaction to roll it back with an expected outcome."""

    def __init__(self, kind: ErrorKind, reason: Optional[ErrorKind] = None):
        super().__init__(kind.value)
        self.kind = kind
        self.reason = reason

    def to_result(self) -> Result:
        return Result.fail(self.kind, self.reason)


class InvariantViolation(RuntimeError):
    """A state transition was attempted from a state the state machine forbids."""


class GatewayError(Exception):
    pass


class GatewayTimeout(GatewayError):
    pass
