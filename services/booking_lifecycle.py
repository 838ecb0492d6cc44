"""
Booking state machine.

    PENDING --settlement--> CONFIRMED --external job--> COMPLETED
    PENDING | CONFIRMED --cancellation--> CANCELLED

Transitions are conditional updates on bookings.status, so a webhook, a
cancellation and the expiry job racing on the same booking can't both apply.
"""
from datetime import datetime, timedelta
from decimal import Decimal
import logging

from sqlalchemy.exc import IntegrityError

from models.booking import (
    Booking,
    BOOKING_CANCELLED,
    BOOKING_CONFIRMED,
    BOOKING_PENDING,
)
from models.payment import ATTEMPT_FAILED, METHOD_CASH, METHOD_VOUCHER, Payment
from models.refund import REFUND_FULL
from repositories import BookingRepository, PaymentRepository, SlotRepository
from services import notifications
from services.base import BaseService
from services.notifications import NotificationOutbox
from services.results import ErrorKind, InvariantViolation, OutcomeError, Result, to_money

logger = logging.getLogger(__name__)

EXPIRED_REASON = "Reservation expired before payment"
SUPERSEDED_REASON = "Booking settled by another payment"


class BookingLifecycleManager(BaseService):

    def __init__(self, session, slot_ledger, voucher_ledger, notification_sink,
                 reservation_window_minutes: int = 15):
        super().__init__(session)
        self.slot_ledger = slot_ledger
        self.voucher_ledger = voucher_ledger
        self.sink = notification_sink
        self.reservation_window = timedelta(minutes=reservation_window_minutes)
        self.refund_engine = None

        self.bookings = BookingRepository(session)
        self.payments = PaymentRepository(session)
        self.slots = SlotRepository(session)

    def bind_refund_engine(self, refund_engine) -> None:
        self.refund_engine = refund_engine

    # ---------- reads ----------
    def get_booking(self, booking_id: int):
        return self.bookings.get(booking_id)

    def bookings_for_user(self, user_id: int, status=None):
        return self.bookings.for_user(user_id, status=status)

    def operator_id(self, booking) -> int:
        stadium = self.slots.get_stadium(booking.stadium_id)
        return stadium.owner_user_id if stadium else None

    # ---------- creation ----------
    def create_booking(self, user_id: int, slot_id: int, voucher_code=None, now=None) -> Result:
        """
        Reserve the slot, apply the voucher and persist a PENDING booking.

        All-or-nothing: a lost slot race, an invalid voucher or a lost
        voucher race rolls back every write, including the reservation.
        """
        now = now or datetime.utcnow()
        outbox = NotificationOutbox()
        try:
            with self.transaction():
                reserved = self.slot_ledger.reserve(slot_id)
                if not reserved.ok:
                    raise OutcomeError(reserved.error)
                slot = reserved.value

                # Prevent booking past slots
                if slot.start_time <= now:
                    raise OutcomeError(ErrorKind.SLOT_UNAVAILABLE)

                stadium = self.slots.get_stadium(slot.stadium_id)
                base_price = to_money(slot.price)
                deposit = min(to_money(stadium.deposit if stadium else 0), base_price)

                discount = Decimal("0.00")
                code = None
                if voucher_code:
                    validation = self.voucher_ledger.validate(voucher_code, base_price, user_id, now=now)
                    if not validation.valid:
                        raise OutcomeError(ErrorKind.INVALID_VOUCHER, validation.reason)
                    discount = validation.discount_amount
                    code = validation.voucher.code

                booking = self.bookings.add(Booking(
                    user_id=user_id,
                    stadium_id=slot.stadium_id,
                    slot_id=slot.id,
                    date=slot.date,
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                    base_price=base_price,
                    deposit_amount=deposit,
                    discount_amount=discount,
                    final_amount=base_price - discount,
                    status=BOOKING_PENDING,
                    voucher_code=code,
                    created_at=now,
                ))

                if code:
                    redeemed = self.voucher_ledger.redeem(code, booking.id, user_id, discount)
                    if not redeemed.ok:
                        raise OutcomeError(redeemed.error)

                self._check_amounts(booking)

                # fully discounted bookings have nothing to settle online
                if to_money(booking.final_amount) == 0:
                    self.apply_payment_confirmation(booking, 0, METHOD_VOUCHER, None, outbox, now=now)
        except OutcomeError as e:
            return e.to_result()
        except IntegrityError:
            # the live-booking-per-slot index caught what the slot status didn't
            logger.warning("Duplicate live booking rejected for slot %s", slot_id)
            return Result.fail(ErrorKind.SLOT_UNAVAILABLE)

        outbox.dispatch(self.sink)
        return Result.success(booking)

    def apply_voucher(self, booking_id: int, code, user_id: int, now=None) -> Result:
        now = now or datetime.utcnow()
        outbox = NotificationOutbox()
        try:
            with self.transaction():
                booking = self.bookings.get(booking_id)
                if booking is None or booking.user_id != user_id:
                    raise OutcomeError(ErrorKind.BOOKING_NOT_FOUND)
                if booking.status != BOOKING_PENDING:
                    raise OutcomeError(ErrorKind.BOOKING_NOT_PENDING)
                if booking.voucher_code:
                    raise OutcomeError(ErrorKind.VOUCHER_ALREADY_APPLIED)
                if self.payments.total_paid(booking.id) > 0:
                    # discounting after money moved would leave an overpayment
                    raise OutcomeError(ErrorKind.VALIDATION_ERROR)

                base_price = to_money(booking.base_price)
                validation = self.voucher_ledger.validate(code, base_price, user_id, now=now)
                if not validation.valid:
                    raise OutcomeError(ErrorKind.INVALID_VOUCHER, validation.reason)
                discount = validation.discount_amount

                applied = self.bookings.apply_discount(
                    booking.id, validation.voucher.code, discount, base_price - discount,
                )
                if not applied:
                    raise OutcomeError(ErrorKind.BOOKING_NOT_PENDING)

                redeemed = self.voucher_ledger.redeem(validation.voucher.code, booking.id, user_id, discount)
                if not redeemed.ok:
                    raise OutcomeError(redeemed.error)

                self._check_amounts(booking)
                if to_money(booking.final_amount) == 0:
                    self.apply_payment_confirmation(booking, 0, METHOD_VOUCHER, None, outbox, now=now)
        except OutcomeError as e:
            return e.to_result()

        outbox.dispatch(self.sink)
        return Result.success(booking)

    # ---------- confirmation ----------
    def apply_payment_confirmation(self, booking, amount, method, transaction_id, outbox, now=None):
        """
        PENDING -> CONFIRMED, slot BOOKED, Payment appended.

        Runs inside the caller's transaction; raises OutcomeError when the
        booking is no longer PENDING so the caller rolls everything back.
        """
        now = now or datetime.utcnow()
        if not self.bookings.transition(booking.id, (BOOKING_PENDING,), BOOKING_CONFIRMED, confirmed_at=now):
            raise OutcomeError(ErrorKind.BOOKING_NOT_PENDING)

        self.slot_ledger.confirm(booking.slot_id)
        for attempt in self.payments.pending_attempts(booking.id):
            self.payments.finish_attempt(attempt.id, ATTEMPT_FAILED, error=SUPERSEDED_REASON)
        payment = self.payments.add_payment(Payment(
            booking_id=booking.id,
            amount=to_money(amount),
            method=method,
            transaction_id=transaction_id,
            created_at=now,
        ))

        payload = {
            "bookingId": booking.id,
            "stadiumId": booking.stadium_id,
            "amount": str(to_money(amount)),
            "startTime": booking.start_time.isoformat(),
            "endTime": booking.end_time.isoformat(),
        }
        outbox.add(booking.user_id, notifications.PAYMENT_SUCCESS, payload)
        outbox.add(self.operator_id(booking), notifications.BOOKING_CONFIRMED, payload)
        return payment

    def confirm_by_payment(self, booking_id: int, amount, method, transaction_id=None, now=None) -> Result:
        outbox = NotificationOutbox()
        try:
            with self.transaction():
                booking = self.bookings.get(booking_id)
                if booking is None:
                    raise OutcomeError(ErrorKind.BOOKING_NOT_FOUND)
                payment = self.apply_payment_confirmation(booking, amount, method, transaction_id, outbox, now=now)
        except OutcomeError as e:
            return e.to_result()

        outbox.dispatch(self.sink)
        return Result.success(payment)

    def confirm_by_cash(self, booking_id: int, now=None) -> Result:
        booking = self.bookings.get(booking_id)
        if booking is None:
            return Result.fail(ErrorKind.BOOKING_NOT_FOUND)
        if booking.status == BOOKING_CONFIRMED:
            return self.collect_balance(booking_id, METHOD_CASH, now=now)
        outstanding = to_money(booking.final_amount) - self.payments.total_paid(booking.id)
        return self.confirm_by_payment(booking_id, max(outstanding, Decimal("0.00")), METHOD_CASH, now=now)

    def collect_balance(self, booking_id: int, method, transaction_id=None, now=None) -> Result:
        """Append the outstanding remainder of a CONFIRMED booking as one Payment."""
        now = now or datetime.utcnow()
        outbox = NotificationOutbox()
        try:
            with self.transaction():
                booking = self.bookings.get(booking_id)
                if booking is None:
                    raise OutcomeError(ErrorKind.BOOKING_NOT_FOUND)
                if booking.status != BOOKING_CONFIRMED:
                    raise OutcomeError(ErrorKind.BOOKING_NOT_PENDING)
                outstanding = to_money(booking.final_amount) - self.payments.total_paid(booking.id)
                if outstanding <= 0:
                    raise OutcomeError(ErrorKind.NOTHING_TO_PAY)

                payment = self.payments.add_payment(Payment(
                    booking_id=booking.id,
                    amount=outstanding,
                    method=method,
                    transaction_id=transaction_id,
                    created_at=now,
                ))
                outbox.add(booking.user_id, notifications.PAYMENT_SUCCESS, {
                    "bookingId": booking.id,
                    "amount": str(outstanding),
                })
        except OutcomeError as e:
            return e.to_result()

        logger.info("Collected balance %s for booking %s by %s", outstanding, booking_id, method)
        outbox.dispatch(self.sink)
        return Result.success(payment)

    # ---------- cancellation ----------
    def mark_cancelled(self, booking_id: int, reason, now=None) -> bool:
        now = now or datetime.utcnow()
        return self.bookings.transition(
            booking_id,
            (BOOKING_PENDING, BOOKING_CONFIRMED),
            BOOKING_CANCELLED,
            cancelled_at=now,
            cancel_reason=(reason or "")[:255] or None,
        )

    def cancel(self, booking_id: int, reason, initiator, now=None) -> Result:
        return self.refund_engine.execute(booking_id, reason, REFUND_FULL, initiator, now=now)

    def expire_stale_reservations(self, now=None) -> int:
        """
        Cancel PENDING bookings that outlived the reservation window unpaid.

        Without this, a player who walks away from the payment page would
        hold the slot RESERVED forever.
        """
        now = now or datetime.utcnow()
        cutoff = now - self.reservation_window
        stale = [
            (b.id, b.slot_id, b.user_id, b.stadium_id)
            for b in self.bookings.stale_pending(cutoff)
        ]

        expired = 0
        for booking_id, slot_id, user_id, stadium_id in stale:
            if self.payments.total_paid(booking_id) > 0:
                continue

            outbox = NotificationOutbox()
            with self.transaction():
                # a settling webhook may have confirmed it since the scan
                if not self.mark_cancelled(booking_id, EXPIRED_REASON, now=now):
                    continue
                self.slot_ledger.release(slot_id)
                for attempt in self.payments.pending_attempts(booking_id):
                    self.payments.finish_attempt(attempt.id, ATTEMPT_FAILED, error=EXPIRED_REASON)
                outbox.add(user_id, notifications.BOOKING_EXPIRED, {
                    "bookingId": booking_id,
                    "stadiumId": stadium_id,
                })

            expired += 1
            logger.info("Expired unpaid booking %s, slot %s released", booking_id, slot_id)
            outbox.dispatch(self.sink)
        return expired

    # ---------- invariants ----------
    @staticmethod
    def _check_amounts(booking) -> None:
        base = to_money(booking.base_price)
        discount = to_money(booking.discount_amount)
        final = to_money(booking.final_amount)
        if final != base - discount or final < 0:
            logger.error("Booking %s amounts inconsistent: base=%s discount=%s final=%s",
                         booking.id, base, discount, final)
            raise InvariantViolation(f"booking {booking.id} final amount mismatch")
