from sqlalchemy import select, update

from models.booking import Booking, BOOKING_PENDING
from repositories.base_repository import BaseRepository


class BookingRepository(BaseRepository):

    def get(self, booking_id: int):
        return self.db.get(Booking, booking_id)

    def add(self, booking: Booking) -> Booking:
        self.db.add(booking)
        self.db.flush()
        return booking

    def transition(self, booking_id: int, expected, new_status: str, **fields) -> bool:
        """Conditional update on bookings.status; False if the booking moved on already."""
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.status.in_(tuple(expected)))
            .values(status=new_status, **fields)
        )
        return self._execute_guarded(Booking, booking_id, stmt)

    def apply_discount(self, booking_id: int, voucher_code: str, discount, final_amount) -> bool:
        stmt = (
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.status == BOOKING_PENDING,
                Booking.voucher_code.is_(None),
            )
            .values(voucher_code=voucher_code, discount_amount=discount, final_amount=final_amount)
        )
        return self._execute_guarded(Booking, booking_id, stmt)

    def for_user(self, user_id: int, status=None):
        stmt = select(Booking).where(Booking.user_id == user_id)
        if status:
            stmt = stmt.where(Booking.status == status)
        stmt = stmt.order_by(Booking.created_at.desc(), Booking.id.desc())
        return list(self.db.execute(stmt).scalars())

    def stale_pending(self, created_before):
        stmt = (
            select(Booking)
            .where(Booking.status == BOOKING_PENDING, Booking.created_at < created_before)
            .order_by(Booking.created_at.asc())
        )
        return list(self.db.execute(stmt).scalars())
