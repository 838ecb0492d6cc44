"""
Online payment settlement: order creation and Paymob callback handling.

Callbacks are delivered at-least-once and in any order relative to
cancellations. The Payment row keyed by the gateway transaction id is the
idempotency record, and it is written in the same transaction as the
booking transition, so a redelivery either finds it or finds nothing.
"""
from datetime import datetime
import logging

from sqlalchemy.exc import IntegrityError

from models.booking import BOOKING_CONFIRMED, BOOKING_PENDING
from models.payment import (
    ATTEMPT_FAILED,
    ATTEMPT_PENDING,
    ATTEMPT_SUCCESS,
    METHOD_PAYMOB,
    Payment,
    PaymentAttempt,
)
from repositories import BookingRepository, PaymentRepository, SlotRepository
from services import notifications
from services.base import BaseService
from services.notifications import NotificationOutbox
from services.results import (
    ErrorKind,
    GatewayError,
    GatewayTimeout,
    OutcomeError,
    Result,
    to_money,
)

logger = logging.getLogger(__name__)


class SettlementProcessor(BaseService):

    def __init__(self, session, gateway, lifecycle, notification_sink, currency: str = "EGP"):
        super().__init__(session)
        self.gateway = gateway
        self.lifecycle = lifecycle
        self.sink = notification_sink
        self.currency = currency

        self.bookings = BookingRepository(session)
        self.payments = PaymentRepository(session)
        self.slots = SlotRepository(session)

    # ---------- order creation ----------
    def create_order(self, booking_id: int, user, deposit_only: bool = False, billing_info=None) -> Result:
        booking = self.bookings.get(booking_id)
        if booking is None or booking.user_id != user.id:
            return Result.fail(ErrorKind.BOOKING_NOT_FOUND)
        # a CONFIRMED booking may still owe the balance after a deposit
        if booking.status not in (BOOKING_PENDING, BOOKING_CONFIRMED):
            return Result.fail(ErrorKind.BOOKING_NOT_PENDING)

        paid = self.payments.total_paid(booking.id)
        due = to_money(booking.final_amount) - paid
        deposit = to_money(booking.deposit_amount)
        if deposit_only and paid == 0 and deposit > 0:
            due = min(due, deposit)
        if due <= 0:
            return Result.fail(ErrorKind.NOTHING_TO_PAY)

        stadium = self.slots.get_stadium(booking.stadium_id)
        stadium_name = stadium.name if stadium else f"Stadium #{booking.stadium_id}"
        line_items = [{
            "name": f"{stadium_name} booking",
            "amount": due,
            "description": f"{booking.start_time.isoformat()} - {booking.end_time.isoformat()}",
        }]
        metadata = {
            "bookingId": booking.id,
            "userId": booking.user_id,
            "stadiumId": booking.stadium_id,
        }

        # release the read transaction; no DB transaction spans the HTTP calls
        self.db.commit()

        try:
            order = self.gateway.create_order(due, self.currency, line_items, billing_info or {}, metadata)
        except GatewayError as exc:
            kind = ErrorKind.GATEWAY_TIMEOUT if isinstance(exc, GatewayTimeout) else ErrorKind.GATEWAY_ERROR
            logger.warning("Paymob order creation failed for booking %s: %s", booking_id, exc)
            with self.transaction():
                self.payments.add_attempt(PaymentAttempt(
                    booking_id=booking_id,
                    amount=due,
                    method=METHOD_PAYMOB,
                    status=ATTEMPT_FAILED,
                    error=str(exc)[:255],
                    completed_at=datetime.utcnow(),
                ))
            return Result.fail(kind)

        with self.transaction():
            attempt = self.payments.add_attempt(PaymentAttempt(
                booking_id=booking_id,
                amount=due,
                method=METHOD_PAYMOB,
                status=ATTEMPT_PENDING,
                order_id=order.order_id,
            ))

        return Result.success({
            "success": True,
            "paymentUrl": order.payment_url,
            "orderId": order.order_id,
            "amount": float(due),
        }, attempt_id=attempt.id)

    # ---------- callbacks ----------
    def handle_callback(self, payload) -> Result:
        if not self.gateway.verify_signature(payload):
            logger.warning("Rejected Paymob callback with an invalid signature")
            return Result.fail(ErrorKind.SIGNATURE_INVALID)

        callback = self.gateway.parse_callback(payload)
        if not callback.transaction_id or callback.booking_id is None:
            logger.warning("Paymob callback without transaction id or booking metadata")
            return Result.fail(ErrorKind.VALIDATION_ERROR)

        if self.payments.find_by_transaction(callback.transaction_id) is not None:
            logger.info("Duplicate Paymob callback for transaction %s ignored", callback.transaction_id)
            return Result.success(callback, duplicate=True)

        if callback.pending:
            return Result.success(callback, settled=False)

        if not callback.success:
            self._record_declined(callback)
            return Result.success(callback, settled=False)

        outbox = NotificationOutbox()
        try:
            with self.transaction():
                self._settle(callback, outbox)
        except OutcomeError as e:
            return e.to_result()
        except IntegrityError:
            # a concurrent redelivery inserted the same transaction first
            if self.payments.find_by_transaction(callback.transaction_id) is not None:
                return Result.success(callback, duplicate=True)
            logger.exception("Settlement of transaction %s failed", callback.transaction_id)
            return Result.fail(ErrorKind.SETTLEMENT_FAILED)
        except Exception:
            logger.exception("Settlement of transaction %s failed", callback.transaction_id)
            return Result.fail(ErrorKind.SETTLEMENT_FAILED)

        outbox.dispatch(self.sink)
        return Result.success(callback, duplicate=False, settled=True)

    def _settle(self, callback, outbox) -> None:
        booking = self.bookings.get(callback.booking_id)
        if booking is None:
            logger.error("Paymob transaction %s references unknown booking %s",
                         callback.transaction_id, callback.booking_id)
            raise OutcomeError(ErrorKind.BOOKING_NOT_FOUND)

        attempt = self.payments.attempt_for_order(callback.order_id) if callback.order_id else None
        if attempt is not None:
            self.payments.finish_attempt(attempt.id, ATTEMPT_SUCCESS, transaction_id=callback.transaction_id)

        if booking.status == BOOKING_PENDING:
            outstanding = to_money(booking.final_amount) - self.payments.total_paid(booking.id)
            if callback.amount != outstanding:
                logger.warning("Booking %s paid %s against %s outstanding",
                               booking.id, callback.amount, outstanding)
            self.lifecycle.apply_payment_confirmation(
                booking, callback.amount, METHOD_PAYMOB, callback.transaction_id, outbox,
            )
            return

        # balance payment, or money arriving after the booking was closed
        self.payments.add_payment(Payment(
            booking_id=booking.id,
            amount=callback.amount,
            method=METHOD_PAYMOB,
            transaction_id=callback.transaction_id,
        ))
        if booking.status == BOOKING_CONFIRMED:
            outbox.add(booking.user_id, notifications.PAYMENT_SUCCESS, {
                "bookingId": booking.id,
                "amount": str(callback.amount),
            })
        else:
            logger.error("Transaction %s settled against %s booking %s; manual refund needed",
                         callback.transaction_id, booking.status, booking.id)

    def _record_declined(self, callback) -> None:
        if not callback.order_id:
            return
        with self.transaction():
            attempt = self.payments.attempt_for_order(callback.order_id)
            if attempt is not None:
                self.payments.finish_attempt(
                    attempt.id,
                    ATTEMPT_FAILED,
                    transaction_id=callback.transaction_id,
                    error=callback.error or "Payment declined",
                )
        logger.info("Paymob transaction %s declined for booking %s",
                    callback.transaction_id, callback.booking_id)
