from sqlalchemy import func, or_, select, update

from models.voucher import Voucher, VoucherUsage
from repositories.base_repository import BaseRepository


class VoucherRepository(BaseRepository):

    def by_code(self, code: str):
        stmt = select(Voucher).where(Voucher.code == code)
        return self.db.execute(stmt).scalar_one_or_none()

    def add(self, voucher: Voucher) -> Voucher:
        self.db.add(voucher)
        self.db.flush()
        return voucher

    def try_increment_usage(self, voucher_id: int) -> bool:
        """
        used_count + 1 guarded by the cap in the same statement.

        Two redemptions racing for the last use can't both match the WHERE.
        """
        stmt = (
            update(Voucher)
            .where(
                Voucher.id == voucher_id,
                Voucher.is_active.is_(True),
                or_(Voucher.max_uses == 0, Voucher.used_count < Voucher.max_uses),
            )
            .values(used_count=Voucher.used_count + 1)
        )
        return self._execute_guarded(Voucher, voucher_id, stmt)

    def usage_for_booking(self, voucher_id: int, booking_id: int):
        stmt = select(VoucherUsage).where(
            VoucherUsage.voucher_id == voucher_id,
            VoucherUsage.booking_id == booking_id,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def add_usage(self, usage: VoucherUsage) -> VoucherUsage:
        self.db.add(usage)
        self.db.flush()
        return usage

    def usage_count(self, voucher_id: int) -> int:
        stmt = select(func.count(VoucherUsage.id)).where(VoucherUsage.voucher_id == voucher_id)
        return self.db.execute(stmt).scalar_one()

    def recent_usages(self, voucher_id: int, limit: int = 10):
        stmt = (
            select(VoucherUsage)
            .where(VoucherUsage.voucher_id == voucher_id)
            .order_by(VoucherUsage.used_at.desc(), VoucherUsage.id.desc())
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars())

    def total_discount(self, voucher_id: int):
        stmt = select(func.coalesce(func.sum(VoucherUsage.discount_amount), 0)).where(
            VoucherUsage.voucher_id == voucher_id
        )
        return self.db.execute(stmt).scalar_one()
