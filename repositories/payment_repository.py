from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update

from models.payment import Payment, PaymentAttempt, ATTEMPT_PENDING
from repositories.base_repository import BaseRepository


class PaymentRepository(BaseRepository):

    # ---------- settled payments (append-only) ----------
    def add_payment(self, payment: Payment) -> Payment:
        self.db.add(payment)
        self.db.flush()
        return payment

    def find_by_transaction(self, transaction_id: str):
        stmt = select(Payment).where(Payment.transaction_id == transaction_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def payments_for_booking(self, booking_id: int, unrefunded_only: bool = False):
        stmt = select(Payment).where(Payment.booking_id == booking_id)
        if unrefunded_only:
            stmt = stmt.where(Payment.refunded.is_(False))
        stmt = stmt.order_by(Payment.created_at.asc(), Payment.id.asc())
        return list(self.db.execute(stmt).scalars())

    def total_paid(self, booking_id: int, unrefunded_only: bool = False) -> Decimal:
        total = Decimal("0")
        for p in self.payments_for_booking(booking_id, unrefunded_only=unrefunded_only):
            total += Decimal(str(p.amount))
        return total

    # ---------- attempts ----------
    def add_attempt(self, attempt: PaymentAttempt) -> PaymentAttempt:
        self.db.add(attempt)
        self.db.flush()
        return attempt

    def attempt_for_order(self, order_id: str):
        stmt = (
            select(PaymentAttempt)
            .where(PaymentAttempt.order_id == order_id)
            .order_by(PaymentAttempt.id.desc())
        )
        return self.db.execute(stmt).scalars().first()

    def pending_attempts(self, booking_id: int):
        stmt = select(PaymentAttempt).where(
            PaymentAttempt.booking_id == booking_id,
            PaymentAttempt.status == ATTEMPT_PENDING,
        )
        return list(self.db.execute(stmt).scalars())

    def finish_attempt(self, attempt_id: int, status: str, transaction_id=None, error=None) -> bool:
        """PENDING -> SUCCESS/FAILED; attempts are immutable afterwards."""
        values = {"status": status, "completed_at": datetime.utcnow()}
        if transaction_id is not None:
            values["transaction_id"] = transaction_id
        if error is not None:
            values["error"] = error[:255]
        stmt = (
            update(PaymentAttempt)
            .where(PaymentAttempt.id == attempt_id, PaymentAttempt.status == ATTEMPT_PENDING)
            .values(**values)
        )
        return self._execute_guarded(PaymentAttempt, attempt_id, stmt)
