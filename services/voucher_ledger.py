"""
Discount vouchers: validation, exactly-once redemption and administration.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging
import re
from typing import Optional

from sqlalchemy.exc import IntegrityError

from models.voucher import (
    Voucher,
    VoucherUsage,
    VOUCHER_FIXED,
    VOUCHER_FULL,
    VOUCHER_PERCENTAGE,
    VOUCHER_TYPES,
)
from repositories import VoucherRepository
from services.base import BaseService
from services.results import ErrorKind, OutcomeError, Result, to_money

logger = logging.getLogger(__name__)

CODE_RE = re.compile(r"^[A-Za-z0-9_-]{3,20}$")


def normalize_code(code) -> Optional[str]:
    code = (code or "").strip()
    if not CODE_RE.match(code):
        return None
    return code.upper()


def compute_discount(voucher_type: str, value, amount) -> Decimal:
    amount = to_money(amount)
    value = Decimal(str(value))

    if voucher_type == VOUCHER_PERCENTAGE:
        discount = amount * value / Decimal(100)
    elif voucher_type == VOUCHER_FIXED:
        discount = min(value, amount)
    elif voucher_type == VOUCHER_FULL:
        discount = amount
    else:
        discount = Decimal(0)

    # clamp to [0, amount]
    return to_money(max(Decimal(0), min(discount, amount)))


@dataclass
class VoucherValidation:
    valid: bool
    discount_amount: Decimal
    reason: Optional[ErrorKind] = None
    voucher: Optional[Voucher] = None


class VoucherLedger(BaseService):

    def __init__(self, session):
        super().__init__(session)
        self.vouchers = VoucherRepository(session)

    def validate(self, code, amount, user_id=None, now=None) -> VoucherValidation:
        now = now or datetime.utcnow()
        amount = to_money(amount)

        def invalid(reason):
            return VoucherValidation(valid=False, discount_amount=Decimal("0.00"), reason=reason)

        normalized = normalize_code(code)
        voucher = self.vouchers.by_code(normalized) if normalized else None
        if voucher is None:
            return invalid(ErrorKind.VOUCHER_NOT_FOUND)
        if not voucher.is_active:
            return invalid(ErrorKind.VOUCHER_INACTIVE)
        if voucher.expires_at and now > voucher.expires_at:
            return invalid(ErrorKind.VOUCHER_EXPIRED)
        if voucher.max_uses > 0 and voucher.used_count >= voucher.max_uses:
            return invalid(ErrorKind.VOUCHER_EXHAUSTED)
        if voucher.min_amount is not None and amount < to_money(voucher.min_amount):
            return invalid(ErrorKind.VOUCHER_MIN_AMOUNT_NOT_MET)
        if voucher.user_id is not None and voucher.user_id != user_id:
            return invalid(ErrorKind.VOUCHER_NOT_ALLOWED)

        return VoucherValidation(
            valid=True,
            discount_amount=compute_discount(voucher.type, voucher.value, amount),
            voucher=voucher,
        )

    def redeem(self, code, booking_id: int, user_id: int, discount_amount) -> Result:
        """
        Record one use of ``code`` for ``booking_id``.

        Runs inside the caller's transaction. The usage cap is re-checked by
        the conditional increment itself, so when two callers both passed
        ``validate`` for the last remaining use only one of them gets here
        with a matched row; the other gets VOUCHER_EXHAUSTED and must roll
        back.
        """
        normalized = normalize_code(code)
        voucher = self.vouchers.by_code(normalized) if normalized else None
        if voucher is None:
            return Result.fail(ErrorKind.VOUCHER_NOT_FOUND)

        if self.vouchers.usage_for_booking(voucher.id, booking_id) is not None:
            return Result.fail(ErrorKind.VOUCHER_ALREADY_APPLIED)

        if not self.vouchers.try_increment_usage(voucher.id):
            logger.info("Voucher %s exhausted while redeeming for booking %s", normalized, booking_id)
            return Result.fail(ErrorKind.VOUCHER_EXHAUSTED)

        usage = self.vouchers.add_usage(VoucherUsage(
            voucher_id=voucher.id,
            booking_id=booking_id,
            user_id=user_id,
            discount_amount=to_money(discount_amount),
        ))
        return Result.success(usage)

    # ---------- administration ----------
    def create_voucher(self, code, voucher_type, value, created_by=None, max_uses=0,
                       min_amount=None, expires_at=None, user_id=None) -> Result:
        normalized = normalize_code(code)
        voucher_type = (voucher_type or "").upper()
        if not normalized or voucher_type not in VOUCHER_TYPES:
            return Result.fail(ErrorKind.VALIDATION_ERROR)
        try:
            value = to_money(value if value is not None else 0)
            max_uses = int(max_uses or 0)
            min_amount = to_money(min_amount) if min_amount is not None else None
        except (ArithmeticError, TypeError, ValueError):
            return Result.fail(ErrorKind.VALIDATION_ERROR)
        if value < 0 or max_uses < 0 or (min_amount is not None and min_amount < 0):
            return Result.fail(ErrorKind.VALIDATION_ERROR)
        if voucher_type == VOUCHER_PERCENTAGE and value > 100:
            return Result.fail(ErrorKind.VALIDATION_ERROR)

        try:
            with self.transaction():
                if self.vouchers.by_code(normalized) is not None:
                    raise OutcomeError(ErrorKind.VALIDATION_ERROR)
                voucher = self.vouchers.add(Voucher(
                    code=normalized,
                    type=voucher_type,
                    value=value,
                    max_uses=max_uses,
                    used_count=0,
                    min_amount=min_amount,
                    expires_at=expires_at,
                    user_id=user_id,
                    created_by=created_by,
                    is_active=True,
                ))
        except OutcomeError as e:
            return e.to_result()
        except IntegrityError:
            # concurrent create with the same code
            return Result.fail(ErrorKind.VALIDATION_ERROR)
        return Result.success(voucher)

    def deactivate(self, code) -> Result:
        normalized = normalize_code(code)
        with self.transaction():
            voucher = self.vouchers.by_code(normalized) if normalized else None
            if voucher is None:
                return Result.fail(ErrorKind.VOUCHER_NOT_FOUND)
            voucher.is_active = False
        return Result.success(voucher)

    def stats(self, code, now=None) -> Result:
        now = now or datetime.utcnow()
        normalized = normalize_code(code)
        voucher = self.vouchers.by_code(normalized) if normalized else None
        if voucher is None:
            return Result.fail(ErrorKind.VOUCHER_NOT_FOUND)

        remaining = voucher.max_uses - voucher.used_count if voucher.max_uses > 0 else None
        return Result.success({
            "voucher": voucher,
            "total_uses": voucher.used_count,
            "total_discount": to_money(self.vouchers.total_discount(voucher.id)),
            "remaining_uses": remaining,  # None = unlimited
            "is_expired": bool(voucher.expires_at and now > voucher.expires_at),
            "is_active": voucher.is_active,
            "recent_uses": self.vouchers.recent_usages(voucher.id, limit=10),
        })
