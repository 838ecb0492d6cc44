from flask import Blueprint, request, jsonify, g

from services import get_core
from services.results import ErrorKind
from utils.audit import log_event
from utils.auth_context import login_required
from utils.responses import error_response, iso, money

refunds_bp = Blueprint("refunds", __name__)

def refund_json(r):
    return {
        "id": r.id,
        "booking_id": r.booking_id,
        "amount": money(r.amount),
        "type": r.type,
        "status": r.status,
        "tier": r.tier_percent,
        "reason": r.reason,
        "initiated_by": r.initiated_by,
        "initiated_by_role": r.initiated_by_role,
        "transaction_id": r.transaction_id,
        "created_at": iso(r.created_at),
        "completed_at": iso(r.completed_at),
    }

def _booking_for_initiator(booking_id: int):
    core = get_core()
    booking = core.bookings.get_booking(booking_id)
    if not booking:
        return None, None
    return booking, core.refunds.initiator_role(booking, g.user)


@refunds_bp.get("/bookings/<int:booking_id>/refund-quote")
@login_required
def refund_quote(booking_id: int):
    booking, role = _booking_for_initiator(booking_id)
    if not booking or role is None:
        return jsonify(error="Booking not found"), 404

    result = get_core().refunds.quote(
        booking_id,
        refund_type=request.args.get("refund_type", "FULL"),
        partial_amount=request.args.get("partial_amount"),
        initiator_role=role,
    )
    if not result.ok:
        return error_response(result)

    quote = result.value
    return jsonify(
        eligible=quote.eligible_amount > 0,
        amount=money(quote.eligible_amount),
        tier=quote.tier,
        hours_until_start=round(quote.hours_until_start, 2),
        total_paid=money(quote.total_paid),
        refund_type=quote.refund_type,
    ), 200


@refunds_bp.post("/bookings/<int:booking_id>/refund")
@login_required
def refund_booking(booking_id: int):
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip()
    refund_type = (data.get("refund_type") or "").strip().upper()
    if not reason or not refund_type:
        return jsonify(error="reason and refund_type are required"), 400

    result = get_core().refunds.execute(
        booking_id, reason, refund_type, g.user, partial_amount=data.get("partial_amount"),
    )
    if not result.ok:
        if result.error == ErrorKind.FORBIDDEN:
            return jsonify(error="Forbidden"), 403
        return error_response(result)

    refund = result.value
    log_event("BOOKING_REFUND", user_id=g.user.id, entity="refund", entity_id=refund.id,
              metadata={"booking_id": booking_id, "amount": str(refund.amount), "status": refund.status})
    return jsonify(refund_json(refund)), 200


@refunds_bp.get("/bookings/<int:booking_id>/refunds")
@login_required
def refund_history(booking_id: int):
    booking, role = _booking_for_initiator(booking_id)
    if not booking or role is None:
        return jsonify(error="Booking not found"), 404
    return jsonify([refund_json(r) for r in get_core().refunds.refund_history(booking_id)]), 200
