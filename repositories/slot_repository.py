from datetime import datetime, timedelta

from sqlalchemy import select, update

from models.slot import Slot
from models.stadium import Stadium
from repositories.base_repository import BaseRepository


class SlotRepository(BaseRepository):

    def get(self, slot_id: int):
        return self.db.get(Slot, slot_id)

    def get_stadium(self, stadium_id: int):
        return self.db.get(Stadium, stadium_id)

    def compare_and_set_status(self, slot_id: int, expected, new_status: str,
                               require_active: bool = False) -> bool:
        """
        Single-statement conditional update on slots.status.

        Returns True only if this call moved the row out of one of the
        expected states; concurrent callers can't both win.
        """
        stmt = update(Slot).where(Slot.id == slot_id, Slot.status.in_(tuple(expected)))
        if require_active:
            stmt = stmt.where(Slot.is_active.is_(True))
        stmt = stmt.values(status=new_status, updated_at=datetime.utcnow())
        return self._execute_guarded(Slot, slot_id, stmt)

    def list_for_day(self, stadium_id: int, day, status: str):
        start = datetime(day.year, day.month, day.day)
        end = start + timedelta(days=1)
        stmt = (
            select(Slot)
            .where(
                Slot.stadium_id == stadium_id,
                Slot.is_active.is_(True),
                Slot.status == status,
                Slot.start_time >= start,
                Slot.start_time < end,
            )
            .order_by(Slot.start_time.asc())
        )
        return list(self.db.execute(stmt).scalars())
