"""
Cancellation and refund policy.

| Time to slot start | Refund % |
|--------------------|----------|
| > 24h              | 100%     |
| 12h - 24h          | 50%      |
| 6h - 12h           | 25%      |
| < 6h               | 0%       |
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging

from models.booking import BOOKING_CONFIRMED, BOOKING_PENDING
from models.payment import ATTEMPT_FAILED, METHOD_PAYMOB
from models.refund import (
    Refund,
    REFUND_COMPLETED,
    REFUND_DEPOSIT_ONLY,
    REFUND_FAILED,
    REFUND_FULL,
    REFUND_PARTIAL,
    REFUND_PENDING,
    REFUND_TYPES,
)
from repositories import BookingRepository, PaymentRepository, RefundRepository, SlotRepository
from services import notifications
from services.base import BaseService
from services.notifications import NotificationOutbox
from services.results import ErrorKind, GatewayError, OutcomeError, Result, to_money

logger = logging.getLogger(__name__)

ROLE_PLAYER = "PLAYER"
ROLE_OWNER = "OWNER"
ROLE_ADMIN = "ADMIN"

# (hours strictly greater than, percent)
REFUND_TIERS = ((24, 100), (12, 50), (6, 25))


def refund_tier(hours_until_start: float) -> int:
    for threshold, percent in REFUND_TIERS:
        if hours_until_start > threshold:
            return percent
    return 0


@dataclass
class RefundQuote:
    eligible_amount: Decimal
    tier: int
    hours_until_start: float
    total_paid: Decimal
    refund_type: str


def allocate(amount, payments):
    """Spread a refund over payments in the order they were made."""
    remaining = to_money(amount)
    shares = []
    for payment in payments:
        share = min(remaining, to_money(payment.amount))
        if share <= 0:
            break
        shares.append((payment, share))
        remaining -= share
    return shares


class RefundPolicyEngine(BaseService):

    def __init__(self, session, lifecycle, slot_ledger, gateway, notification_sink):
        super().__init__(session)
        self.lifecycle = lifecycle
        self.slot_ledger = slot_ledger
        self.gateway = gateway
        self.sink = notification_sink

        self.bookings = BookingRepository(session)
        self.payments = PaymentRepository(session)
        self.refunds = RefundRepository(session)
        self.slots = SlotRepository(session)

    def initiator_role(self, booking, initiator):
        """Role the initiator acts in for this booking, or None if they may not touch it."""
        if initiator is None:
            return None
        if initiator.has_role(ROLE_ADMIN):
            return ROLE_ADMIN
        if initiator.has_role(ROLE_OWNER):
            stadium = self.slots.get_stadium(booking.stadium_id)
            if stadium is not None and stadium.owner_user_id == initiator.id:
                return ROLE_OWNER
        if booking.user_id == initiator.id:
            return ROLE_PLAYER
        return None

    def _quote(self, booking, refund_type, partial_amount, role, now) -> RefundQuote:
        refund_type = (refund_type or REFUND_FULL).upper()
        if refund_type not in REFUND_TYPES:
            raise OutcomeError(ErrorKind.VALIDATION_ERROR)

        hours = (booking.start_time - now).total_seconds() / 3600
        # operator-initiated cancellations are never the player's fault
        tier = 100 if role in (ROLE_OWNER, ROLE_ADMIN) else refund_tier(hours)

        total_paid = self.payments.total_paid(booking.id, unrefunded_only=True)
        eligible = to_money(total_paid * tier / Decimal(100))

        if refund_type == REFUND_DEPOSIT_ONLY:
            eligible = min(eligible, to_money(booking.deposit_amount))
        elif refund_type == REFUND_PARTIAL:
            try:
                cap = to_money(partial_amount) if partial_amount is not None else None
            except ArithmeticError:
                cap = None
            if cap is None or cap <= 0:
                raise OutcomeError(ErrorKind.VALIDATION_ERROR)
            eligible = min(eligible, cap)

        return RefundQuote(
            eligible_amount=eligible,
            tier=tier,
            hours_until_start=hours,
            total_paid=total_paid,
            refund_type=refund_type,
        )

    def quote(self, booking_id: int, refund_type=REFUND_FULL, partial_amount=None,
              initiator_role=ROLE_PLAYER, now=None) -> Result:
        now = now or datetime.utcnow()
        booking = self.bookings.get(booking_id)
        if booking is None:
            return Result.fail(ErrorKind.BOOKING_NOT_FOUND)
        if booking.status not in (BOOKING_PENDING, BOOKING_CONFIRMED):
            return Result.fail(ErrorKind.REFUND_NOT_ELIGIBLE)
        try:
            return Result.success(self._quote(booking, refund_type, partial_amount, initiator_role, now))
        except OutcomeError as e:
            return e.to_result()

    def execute(self, booking_id: int, reason, refund_type, initiator, partial_amount=None, now=None) -> Result:
        """
        Cancel the booking and refund what the policy allows.

        The refund record, the CANCELLED transition, the payment refund
        marks and the slot release commit together. The gateway refund runs
        afterwards: its failure marks the Refund FAILED but never reinstates
        the booking.
        """
        now = now or datetime.utcnow()
        outbox = NotificationOutbox()
        try:
            with self.transaction():
                booking = self.bookings.get(booking_id)
                if booking is None:
                    raise OutcomeError(ErrorKind.BOOKING_NOT_FOUND)
                role = self.initiator_role(booking, initiator)
                if role is None:
                    raise OutcomeError(ErrorKind.FORBIDDEN)
                if booking.status not in (BOOKING_PENDING, BOOKING_CONFIRMED):
                    raise OutcomeError(ErrorKind.REFUND_NOT_ELIGIBLE)

                quote = self._quote(booking, refund_type, partial_amount, role, now)
                refund = self.refunds.add(Refund(
                    booking_id=booking.id,
                    amount=quote.eligible_amount,
                    reason=(reason or "")[:255] or None,
                    type=quote.refund_type,
                    status=REFUND_PENDING,
                    tier_percent=quote.tier,
                    initiated_by=initiator.id,
                    initiated_by_role=role,
                    created_at=now,
                ))

                if not self.lifecycle.mark_cancelled(booking.id, reason, now=now):
                    raise OutcomeError(ErrorKind.REFUND_NOT_ELIGIBLE)

                shares = allocate(quote.eligible_amount, self.payments.payments_for_booking(booking.id, unrefunded_only=True))
                gateway_refunds = []
                cash_share = Decimal("0.00")
                for payment, share in shares:
                    payment.refunded = True
                    payment.refund_amount = share
                    if payment.method == METHOD_PAYMOB and payment.transaction_id:
                        gateway_refunds.append((payment.transaction_id, share))
                    else:
                        cash_share += share

                self.slot_ledger.release(booking.slot_id)
                for attempt in self.payments.pending_attempts(booking.id):
                    self.payments.finish_attempt(attempt.id, ATTEMPT_FAILED, error="Booking cancelled")

                payload = {
                    "bookingId": booking.id,
                    "stadiumId": booking.stadium_id,
                    "amount": str(quote.eligible_amount),
                    "tier": quote.tier,
                    "reason": reason,
                }
                outbox.add(booking.user_id, notifications.REFUND, payload)
                outbox.add(self.lifecycle.operator_id(booking), notifications.BOOKING_CANCELLED, payload)
                refund_id = refund.id
        except OutcomeError as e:
            return e.to_result()

        logger.info("Booking %s cancelled by %s (%s), refund %s of %s",
                    booking_id, initiator.id, role, refund_id, quote.eligible_amount)

        self._settle_with_gateway(refund_id, gateway_refunds, cash_share)
        outbox.dispatch(self.sink)
        return Result.success(self.refunds.get(refund_id))

    def _settle_with_gateway(self, refund_id: int, gateway_refunds, cash_share) -> None:
        refund_ids = []
        error = None
        for transaction_id, share in gateway_refunds:
            try:
                refund_ids.append(self.gateway.refund(transaction_id, share))
            except GatewayError as exc:
                # the cancellation stands; operators reconcile the money
                logger.error("Gateway refund of %s on transaction %s failed for refund %s: %s",
                             share, transaction_id, refund_id, exc)
                error = str(exc)

        with self.transaction():
            refund = self.refunds.get(refund_id)
            if refund_ids:
                refund.transaction_id = ",".join(refund_ids)[:255]
            if error:
                refund.status = REFUND_FAILED
                refund.error = error[:255]
            elif cash_share == 0:
                refund.status = REFUND_COMPLETED
                refund.completed_at = datetime.utcnow()
            # cash shares stay PENDING until the operator hands the money back

    def refund_history(self, booking_id: int):
        return self.refunds.for_booking(booking_id)
