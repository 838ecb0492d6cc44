from datetime import datetime

from flask import Blueprint, request, jsonify, g

from models.booking import BOOKING_CANCELLED, BOOKING_COMPLETED, BOOKING_CONFIRMED, BOOKING_PENDING
from security.rbac import require_roles
from services import get_core
from services.refund_policy import ROLE_ADMIN, ROLE_OWNER
from services.results import ErrorKind
from utils.audit import log_event
from utils.auth_context import login_required
from utils.responses import error_response, iso, money

booking_bp = Blueprint("booking", __name__)

BOOKING_STATUSES = {BOOKING_PENDING, BOOKING_CONFIRMED, BOOKING_CANCELLED, BOOKING_COMPLETED}

def _parse_day(day_str: str):
    # Expect ISO format like "2026-01-20"
    return datetime.fromisoformat(day_str).date()

def booking_json(b):
    return {
        "id": b.id,
        "user_id": b.user_id,
        "stadium_id": b.stadium_id,
        "slot_id": b.slot_id,
        "date": b.date.isoformat(),
        "start_time": iso(b.start_time),
        "end_time": iso(b.end_time),
        "base_price": money(b.base_price),
        "deposit_amount": money(b.deposit_amount),
        "discount_amount": money(b.discount_amount),
        "final_amount": money(b.final_amount),
        "voucher_code": b.voucher_code,
        "status": b.status,
        "created_at": iso(b.created_at),
        "confirmed_at": iso(b.confirmed_at),
        "cancelled_at": iso(b.cancelled_at),
        "cancel_reason": b.cancel_reason,
    }


# ---------- PLAYERS: view available slots ----------
@booking_bp.get("/stadiums/<int:stadium_id>/slots")
@login_required
def list_slots(stadium_id: int):
    date_str = request.args.get("date")
    if not date_str:
        return jsonify(error="date is required (YYYY-MM-DD)"), 400
    try:
        day = _parse_day(date_str)
    except ValueError:
        return jsonify(error="Invalid date. Use YYYY-MM-DD"), 400

    slots = get_core().slots.available_slots(stadium_id, day)
    return jsonify([
        {
            "id": s.id,
            "stadium_id": s.stadium_id,
            "date": s.date.isoformat(),
            "start_time": s.start_time.isoformat(),
            "end_time": s.end_time.isoformat(),
            "price": money(s.price),
            "capacity": s.capacity,
            "status": s.status,
        }
        for s in slots
    ]), 200


# ---------- PLAYERS: book slot (DOUBLE-BOOKING SAFE) ----------
@booking_bp.post("/bookings")
@login_required
def create_booking():
    data = request.get_json(silent=True) or {}
    try:
        slot_id = int(data.get("slot_id"))
    except (TypeError, ValueError):
        return jsonify(error="slot_id required"), 400
    voucher_code = (data.get("voucher_code") or "").strip() or None

    result = get_core().bookings.create_booking(g.user.id, slot_id, voucher_code=voucher_code)
    if not result.ok:
        log_event("BOOKING_FAIL", user_id=g.user.id, entity="slot", entity_id=slot_id,
                  metadata={"code": result.error.value})
        return error_response(result)

    booking = result.value
    log_event("BOOKING_CREATE", user_id=g.user.id, entity="booking", entity_id=booking.id,
              metadata={"slot_id": slot_id, "voucher_code": booking.voucher_code})
    return jsonify(booking_json(booking)), 201


# ---------- PLAYERS: view my bookings ----------
@booking_bp.get("/bookings/me")
@login_required
def my_bookings():
    status = request.args.get("status")
    if status and status not in BOOKING_STATUSES:
        return jsonify(error="Unknown status"), 400

    rows = get_core().bookings.bookings_for_user(g.user.id, status=status)
    return jsonify([booking_json(b) for b in rows]), 200


@booking_bp.get("/bookings/<int:booking_id>")
@login_required
def get_booking(booking_id: int):
    core = get_core()
    booking = core.bookings.get_booking(booking_id)
    if not booking or core.refunds.initiator_role(booking, g.user) is None:
        return jsonify(error="Booking not found"), 404
    return jsonify(booking_json(booking)), 200


# ---------- STADIUM OWNER: confirm cash payment ----------
@booking_bp.post("/bookings/<int:booking_id>/cash-payment")
@require_roles("OWNER")
def confirm_cash(booking_id: int):
    core = get_core()
    booking = core.bookings.get_booking(booking_id)
    if not booking:
        return jsonify(error="Booking not found"), 404
    if core.refunds.initiator_role(booking, g.user) not in (ROLE_OWNER, ROLE_ADMIN):
        return jsonify(error="Forbidden"), 403

    result = core.bookings.confirm_by_cash(booking_id)
    if not result.ok:
        return error_response(result)

    payment = result.value
    log_event("BOOKING_CASH_CONFIRM", user_id=g.user.id, entity="booking", entity_id=booking_id,
              metadata={"amount": str(payment.amount)})
    return jsonify(booking_json(core.bookings.get_booking(booking_id))), 200


# ---------- PLAYERS: cancel booking (tiered refund) ----------
@booking_bp.post("/bookings/<int:booking_id>/cancel")
@login_required
def cancel_booking(booking_id: int):
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip() or None

    result = get_core().bookings.cancel(booking_id, reason, g.user)
    if not result.ok:
        if result.error == ErrorKind.FORBIDDEN:
            return jsonify(error="Booking not found"), 404
        return error_response(result)

    refund = result.value
    log_event("BOOKING_CANCEL", user_id=g.user.id, entity="booking", entity_id=booking_id,
              metadata={"reason": reason, "refund_id": refund.id, "refund_amount": str(refund.amount)})
    return jsonify(
        message="Cancelled",
        refund={"id": refund.id, "amount": money(refund.amount), "status": refund.status, "tier": refund.tier_percent},
    ), 200
