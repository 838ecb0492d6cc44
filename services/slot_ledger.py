import logging

from models.slot import SLOT_AVAILABLE, SLOT_BOOKED, SLOT_RESERVED
from repositories import SlotRepository
from services.base import BaseService
from services.results import ErrorKind, InvariantViolation, Result

logger = logging.getLogger(__name__)


class SlotLedger(BaseService):
    """
    Sole writer of slot availability.

    Every method works inside the caller's transaction; none of them commit.
    """

    def __init__(self, session):
        super().__init__(session)
        self.slots = SlotRepository(session)

    def reserve(self, slot_id: int) -> Result:
        if not self.slots.compare_and_set_status(slot_id, (SLOT_AVAILABLE,), SLOT_RESERVED, require_active=True):
            # lost the race (or slot missing/inactive): a normal outcome
            logger.info("Slot %s could not be reserved", slot_id)
            return Result.fail(ErrorKind.SLOT_UNAVAILABLE)
        return Result.success(self.slots.get(slot_id))

    def confirm(self, slot_id: int) -> None:
        if not self.slots.compare_and_set_status(slot_id, (SLOT_RESERVED,), SLOT_BOOKED):
            logger.error("Slot %s confirm attempted while not RESERVED", slot_id)
            raise InvariantViolation(f"slot {slot_id} is not RESERVED")

    def release(self, slot_id: int) -> None:
        if not self.slots.compare_and_set_status(slot_id, (SLOT_RESERVED, SLOT_BOOKED), SLOT_AVAILABLE):
            logger.error("Slot %s release attempted while not RESERVED/BOOKED", slot_id)
            raise InvariantViolation(f"slot {slot_id} is not RESERVED or BOOKED")

    def available_slots(self, stadium_id: int, day):
        return self.slots.list_for_day(stadium_id, day, SLOT_AVAILABLE)
