from datetime import timedelta
from decimal import Decimal

import pytest
import requests

from models import db
from models.booking import Booking
from models.payment import METHOD_CASH, METHOD_PAYMOB, Payment
from models.refund import Refund
from models.slot import Slot, SLOT_AVAILABLE
from services.refund_policy import allocate, refund_tier
from services.results import ErrorKind
from tests.conftest import OTHER_PLAYER_ID, OWNER_ID, PLAYER_ID, gateway_response
from utils.auth_context import CurrentUser

PLAYER = CurrentUser(id=PLAYER_ID, roles=frozenset({"PLAYER"}))
OWNER = CurrentUser(id=OWNER_ID, roles=frozenset({"OWNER"}))
STRANGER = CurrentUser(id=OTHER_PLAYER_ID, roles=frozenset({"PLAYER"}))


@pytest.mark.parametrize(
    "hours,percent",
    [(30, 100), (24.01, 100), (24, 50), (12.5, 50), (12, 25), (6.5, 25), (6, 0), (3, 0), (-1, 0)],
)
def test_refund_tier_boundaries(hours, percent):
    assert refund_tier(hours) == percent


def test_allocate_spreads_over_payments_in_order():
    deposit = Payment(amount=Decimal("50.00"))
    balance = Payment(amount=Decimal("100.00"))

    shares = allocate(Decimal("120.00"), [deposit, balance])

    assert shares == [(deposit, Decimal("50.00")), (balance, Decimal("70.00"))]
    assert allocate(Decimal("0.00"), [deposit]) == []


def _paid_booking(core, make_slot, price="400.00", method=METHOD_CASH, transaction_id=None):
    slot = make_slot(price=price)
    booking = core.bookings.create_booking(PLAYER_ID, slot.id).value
    core.bookings.confirm_by_payment(booking.id, Decimal(price), method, transaction_id)
    booking = db.session.get(Booking, booking.id)
    return booking.id, slot.id, booking.start_time


@pytest.mark.parametrize("hours_before,expected", [(30, "400.00"), (10, "100.00"), (3, "0.00")])
def test_player_cancellation_follows_the_tiers(core, make_slot, hours_before, expected):
    booking_id, slot_id, start = _paid_booking(core, make_slot)

    result = core.bookings.cancel(booking_id, "can't make it", PLAYER, now=start - timedelta(hours=hours_before))

    assert result.ok
    refund = result.value
    assert refund.amount == Decimal(expected)
    assert db.session.get(Booking, booking_id).status == "CANCELLED"
    assert db.session.get(Slot, slot_id).status == SLOT_AVAILABLE


def test_quote_matches_execution(core, make_slot):
    booking_id, _, start = _paid_booking(core, make_slot)
    now = start - timedelta(hours=18)

    quote = core.refunds.quote(booking_id, now=now).value
    refund = core.refunds.execute(booking_id, "rain", "FULL", PLAYER, now=now).value

    assert quote.tier == 50
    assert quote.eligible_amount == refund.amount == Decimal("200.00")
    assert quote.total_paid == Decimal("400.00")


def test_operator_cancellation_refunds_everything(core, make_slot, sink):
    booking_id, _, start = _paid_booking(core, make_slot)
    sink.sent.clear()

    refund = core.bookings.cancel(booking_id, "pitch maintenance", OWNER, now=start - timedelta(hours=1)).value

    assert refund.amount == Decimal("400.00")
    assert refund.tier_percent == 100
    assert refund.initiated_by_role == "OWNER"
    assert sink.kinds_for(PLAYER_ID) == ["REFUND"]
    assert sink.kinds_for(OWNER_ID) == ["BOOKING_CANCELLED"]


def test_deposit_only_refund_is_capped_at_the_deposit(core, make_slot):
    booking_id, _, start = _paid_booking(core, make_slot, price="150.00")

    refund = core.refunds.execute(booking_id, "rain", "DEPOSIT_ONLY", PLAYER, now=start - timedelta(hours=48)).value

    assert refund.amount == Decimal("50.00")


def test_partial_refund_needs_a_positive_amount(core, make_slot):
    booking_id, _, start = _paid_booking(core, make_slot)
    now = start - timedelta(hours=48)

    missing = core.refunds.execute(booking_id, "rain", "PARTIAL", PLAYER, now=now)
    assert missing.error == ErrorKind.VALIDATION_ERROR
    assert db.session.get(Booking, booking_id).status == "CONFIRMED"

    refund = core.refunds.execute(booking_id, "rain", "PARTIAL", PLAYER, partial_amount="75", now=now).value
    assert refund.amount == Decimal("75.00")


def test_unpaid_pending_booking_cancels_with_zero_refund(core, make_slot, paymob_http):
    slot = make_slot()
    booking = core.bookings.create_booking(PLAYER_ID, slot.id).value

    refund = core.bookings.cancel(booking.id, "changed plans", PLAYER).value

    assert refund.amount == Decimal("0.00")
    assert refund.status == "COMPLETED"
    paymob_http.post.assert_not_called()
    assert db.session.get(Slot, slot.id).status == SLOT_AVAILABLE


def test_cash_refund_waits_for_the_operator(core, make_slot, paymob_http):
    booking_id, _, start = _paid_booking(core, make_slot)

    refund = core.bookings.cancel(booking_id, "rain", PLAYER, now=start - timedelta(hours=30)).value

    assert refund.status == "PENDING"
    paymob_http.post.assert_not_called()
    payment = Payment.query.filter_by(booking_id=booking_id).one()
    assert payment.refunded is True
    assert payment.refund_amount == Decimal("400.00")


def test_gateway_refund_completes(core, make_slot, paymob_http):
    booking_id, _, start = _paid_booking(core, make_slot, method=METHOD_PAYMOB, transaction_id="9001")
    paymob_http.post.side_effect = [
        gateway_response({"token": "auth-token"}),
        gateway_response({"id": 5550, "success": True}),
    ]

    refund = core.bookings.cancel(booking_id, "rain", PLAYER, now=start - timedelta(hours=30)).value

    assert refund.status == "COMPLETED"
    assert refund.transaction_id == "5550"
    refund_call = paymob_http.post.call_args_list[1]
    assert refund_call.args[0] == "https://paymob.test/api/acceptance/void_refund/refund"
    assert refund_call.kwargs["json"]["transaction_id"] == "9001"
    assert refund_call.kwargs["json"]["amount_cents"] == 40000


def test_gateway_refund_failure_keeps_the_cancellation(core, make_slot, paymob_http):
    booking_id, slot_id, start = _paid_booking(core, make_slot, method=METHOD_PAYMOB, transaction_id="9001")
    paymob_http.post.side_effect = requests.ConnectionError("connection reset")

    refund = core.bookings.cancel(booking_id, "rain", PLAYER, now=start - timedelta(hours=30)).value

    assert refund.status == "FAILED"
    assert refund.error
    assert db.session.get(Booking, booking_id).status == "CANCELLED"
    assert db.session.get(Slot, slot_id).status == SLOT_AVAILABLE


def test_second_cancellation_is_not_eligible(core, make_slot):
    booking_id, _, start = _paid_booking(core, make_slot)
    now = start - timedelta(hours=30)
    assert core.bookings.cancel(booking_id, "rain", PLAYER, now=now).ok

    again = core.bookings.cancel(booking_id, "rain", PLAYER, now=now)

    assert again.error == ErrorKind.REFUND_NOT_ELIGIBLE
    assert Refund.query.filter_by(booking_id=booking_id).count() == 1


def test_stranger_cannot_cancel(core, make_slot):
    booking_id, _, _ = _paid_booking(core, make_slot)

    result = core.bookings.cancel(booking_id, "mine now", STRANGER)

    assert result.error == ErrorKind.FORBIDDEN
    assert db.session.get(Booking, booking_id).status == "CONFIRMED"


def test_refund_history_newest_first(core, make_slot):
    booking_id, _, start = _paid_booking(core, make_slot)
    core.bookings.cancel(booking_id, "rain", PLAYER, now=start - timedelta(hours=30))

    history = core.refunds.refund_history(booking_id)

    assert [r.amount for r in history] == [Decimal("400.00")]
