from sqlalchemy import select

from models.refund import Refund
from repositories.base_repository import BaseRepository


class RefundRepository(BaseRepository):

    def get(self, refund_id: int):
        return self.db.get(Refund, refund_id)

    def add(self, refund: Refund) -> Refund:
        self.db.add(refund)
        self.db.flush()
        return refund

    def for_booking(self, booking_id: int):
        stmt = (
            select(Refund)
            .where(Refund.booking_id == booking_id)
            .order_by(Refund.created_at.desc(), Refund.id.desc())
        )
        return list(self.db.execute(stmt).scalars())
