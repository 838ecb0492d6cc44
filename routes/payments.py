from decimal import InvalidOperation

from flask import Blueprint, request, jsonify, g

from services import get_core
from services.results import MESSAGES, to_money
from utils.audit import log_event
from utils.auth_context import login_required
from utils.responses import error_response, money

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")


@payments_bp.post("/create-order")
@login_required
def create_order():
    data = request.get_json(silent=True) or {}
    try:
        booking_id = int(data.get("booking_id"))
    except (TypeError, ValueError):
        return jsonify(success=False, error="booking_id required"), 400

    billing = data.get("billing") if isinstance(data.get("billing"), dict) else {}
    result = get_core().settlement.create_order(
        booking_id, g.user, deposit_only=bool(data.get("deposit_only")), billing_info=billing,
    )
    if not result.ok:
        log_event("PAYMENT_ORDER_FAILED", user_id=g.user.id, entity="booking", entity_id=booking_id,
                  metadata={"code": result.error.value})
        return error_response(result)

    log_event("PAYMENT_ORDER_CREATED", user_id=g.user.id, entity="payment_attempt",
              entity_id=result.extra.get("attempt_id"), metadata={"order_id": result.value["orderId"]})
    return jsonify(result.value), 200


@payments_bp.post("/validate-voucher")
@login_required
def validate_voucher():
    data = request.get_json(silent=True) or {}
    code = (data.get("code") or "").strip()
    try:
        amount = to_money(data.get("amount"))
    except (InvalidOperation, ValueError):
        amount = None
    if not code or amount is None or amount <= 0:
        return jsonify(valid=False, error="code and amount are required"), 400

    validation = get_core().vouchers.validate(code, amount, g.user.id)
    body = {"valid": validation.valid, "discountAmount": money(validation.discount_amount)}
    if not validation.valid:
        body["message"] = MESSAGES[validation.reason]
        body["code"] = validation.reason.value
    return jsonify(body), 200


@payments_bp.post("/use-voucher")
@login_required
def use_voucher():
    data = request.get_json(silent=True) or {}
    code = (data.get("code") or "").strip()
    try:
        booking_id = int(data.get("booking_id"))
    except (TypeError, ValueError):
        booking_id = None
    if not code or booking_id is None:
        return jsonify(success=False, error="code and booking_id are required"), 400

    result = get_core().bookings.apply_voucher(booking_id, code, g.user.id)
    if not result.ok:
        return error_response(result)

    booking = result.value
    log_event("VOUCHER_USED", user_id=g.user.id, entity="booking", entity_id=booking_id,
              metadata={"code": booking.voucher_code, "discount": str(booking.discount_amount)})
    return jsonify(
        success=True,
        discountAmount=money(booking.discount_amount),
        finalAmount=money(booking.final_amount),
        status=booking.status,
    ), 200
