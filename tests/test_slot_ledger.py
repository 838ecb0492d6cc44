import pytest
from sqlalchemy import update

from models import db
from models.booking import Booking
from models.slot import Slot, SLOT_AVAILABLE, SLOT_BOOKED, SLOT_RESERVED
from services.results import ErrorKind, InvariantViolation
from tests.conftest import OTHER_PLAYER_ID, PLAYER_ID, paymob_callback
from utils.auth_context import CurrentUser

PLAYER = CurrentUser(id=PLAYER_ID, roles=frozenset({"PLAYER"}))


def test_reserve_moves_available_slot_to_reserved(core, make_slot):
    slot = make_slot()

    result = core.slots.reserve(slot.id)
    db.session.commit()

    assert result.ok
    assert db.session.get(Slot, slot.id).status == SLOT_RESERVED


def test_second_reserve_on_same_slot_loses(core, make_slot):
    slot = make_slot()
    assert core.slots.reserve(slot.id).ok
    db.session.commit()

    second = core.slots.reserve(slot.id)

    assert second.error == ErrorKind.SLOT_UNAVAILABLE


def test_inactive_or_missing_slot_cannot_be_reserved(core, make_slot):
    slot = make_slot()
    slot.is_active = False
    db.session.commit()

    assert core.slots.reserve(slot.id).error == ErrorKind.SLOT_UNAVAILABLE
    assert core.slots.reserve(999999).error == ErrorKind.SLOT_UNAVAILABLE


def test_confirm_requires_reserved(core, make_slot):
    slot = make_slot()

    with pytest.raises(InvariantViolation):
        core.slots.confirm(slot.id)
    db.session.rollback()

    core.slots.reserve(slot.id)
    core.slots.confirm(slot.id)
    db.session.commit()
    assert db.session.get(Slot, slot.id).status == SLOT_BOOKED


def test_deactivated_slot_held_by_a_booking_can_still_be_released(core, make_slot):
    slot = make_slot()
    booking = core.bookings.create_booking(PLAYER_ID, slot.id).value
    db.session.get(Slot, slot.id).is_active = False
    db.session.commit()

    result = core.bookings.cancel(booking.id, "pitch closed", PLAYER)

    assert result.ok
    assert db.session.get(Booking, booking.id).status == "CANCELLED"
    assert db.session.get(Slot, slot.id).status == SLOT_AVAILABLE
    assert core.slots.reserve(slot.id).error == ErrorKind.SLOT_UNAVAILABLE


def test_deactivated_slot_held_by_a_booking_can_still_be_settled(core, make_slot):
    slot = make_slot()
    booking = core.bookings.create_booking(PLAYER_ID, slot.id).value
    db.session.get(Slot, slot.id).is_active = False
    db.session.commit()

    result = core.settlement.handle_callback(paymob_callback(booking.id, PLAYER_ID, slot.stadium_id, "150.00"))

    assert result.extra["settled"] is True
    assert db.session.get(Booking, booking.id).status == "CONFIRMED"
    assert db.session.get(Slot, slot.id).status == SLOT_BOOKED


def test_release_from_available_is_an_invariant_violation(core, make_slot):
    slot = make_slot()

    with pytest.raises(InvariantViolation):
        core.slots.release(slot.id)


def test_available_slots_lists_only_open_slots_for_the_day(core, make_slot):
    open_slot = make_slot(hours_ahead=48)
    taken = make_slot(hours_ahead=49)
    core.slots.reserve(taken.id)
    db.session.commit()

    listed = core.slots.available_slots(open_slot.stadium_id, open_slot.date)

    ids = [s.id for s in listed]
    assert open_slot.id in ids
    assert taken.id not in ids


def test_only_one_live_booking_per_slot(core, make_slot):
    slot = make_slot()
    first = core.bookings.create_booking(PLAYER_ID, slot.id)
    assert first.ok

    second = core.bookings.create_booking(OTHER_PLAYER_ID, slot.id)

    assert second.error == ErrorKind.SLOT_UNAVAILABLE
    live = Booking.query.filter(Booking.slot_id == slot.id, Booking.status != "CANCELLED").count()
    assert live == 1


def test_live_booking_index_backs_up_the_slot_status(core, make_slot):
    slot = make_slot()
    assert core.bookings.create_booking(PLAYER_ID, slot.id).ok

    # slot row drifted back to AVAILABLE while a booking is still live
    db.session.execute(update(Slot).where(Slot.id == slot.id).values(status=SLOT_AVAILABLE))
    db.session.commit()

    result = core.bookings.create_booking(OTHER_PLAYER_ID, slot.id)

    assert result.error == ErrorKind.SLOT_UNAVAILABLE
    assert Booking.query.filter_by(slot_id=slot.id).count() == 1
