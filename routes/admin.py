from datetime import datetime

from flask import Blueprint, jsonify, g, request

from models.audit_log import AuditLog
from security.rbac import require_roles
from services import get_core
from utils.audit import log_event
from utils.responses import error_response, iso, money

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def voucher_json(v):
    return {
        "id": v.id,
        "code": v.code,
        "type": v.type,
        "value": money(v.value),
        "max_uses": v.max_uses,
        "used_count": v.used_count,
        "min_amount": money(v.min_amount),
        "expires_at": iso(v.expires_at),
        "user_id": v.user_id,
        "is_active": v.is_active,
        "created_by": v.created_by,
        "created_at": iso(v.created_at),
    }


# ---------- vouchers ----------
@admin_bp.post("/vouchers")
@require_roles("ADMIN")
def create_voucher():
    data = request.get_json(silent=True) or {}

    expires_at = None
    if data.get("expires_at"):
        try:
            expires_at = datetime.fromisoformat(data["expires_at"])
        except (TypeError, ValueError):
            return jsonify(error="Invalid expires_at. Use ISO 8601"), 400

    user_id = data.get("user_id")
    if user_id is not None and not str(user_id).isdigit():
        return jsonify(error="Invalid user_id"), 400

    result = get_core().vouchers.create_voucher(
        data.get("code"),
        data.get("type"),
        data.get("value"),
        created_by=g.user.id,
        max_uses=data.get("max_uses", 0),
        min_amount=data.get("min_amount"),
        expires_at=expires_at,
        user_id=int(user_id) if user_id is not None else None,
    )
    if not result.ok:
        return error_response(result)

    voucher = result.value
    log_event("VOUCHER_CREATE", user_id=g.user.id, entity="voucher", entity_id=voucher.id,
              metadata={"code": voucher.code, "type": voucher.type, "value": str(voucher.value)})
    return jsonify(voucher_json(voucher)), 201


@admin_bp.post("/vouchers/<code>/deactivate")
@require_roles("ADMIN")
def deactivate_voucher(code: str):
    result = get_core().vouchers.deactivate(code)
    if not result.ok:
        return error_response(result)

    voucher = result.value
    log_event("VOUCHER_DEACTIVATE", user_id=g.user.id, entity="voucher", entity_id=voucher.id,
              metadata={"code": voucher.code})
    return jsonify(voucher_json(voucher)), 200


@admin_bp.get("/vouchers/<code>/stats")
@require_roles("ADMIN")
def voucher_stats(code: str):
    result = get_core().vouchers.stats(code)
    if not result.ok:
        return error_response(result)

    stats = result.value
    return jsonify(
        voucher=voucher_json(stats["voucher"]),
        total_uses=stats["total_uses"],
        total_discount=money(stats["total_discount"]),
        remaining_uses=stats["remaining_uses"],
        is_expired=stats["is_expired"],
        is_active=stats["is_active"],
        recent_uses=[
            {
                "booking_id": u.booking_id,
                "user_id": u.user_id,
                "discount_amount": money(u.discount_amount),
                "used_at": iso(u.used_at),
            }
            for u in stats["recent_uses"]
        ],
    ), 200


# ---------- reservations ----------
@admin_bp.post("/reservations/expire")
@require_roles("ADMIN")
def expire_reservations():
    expired = get_core().bookings.expire_stale_reservations()
    log_event("RESERVATIONS_EXPIRE", user_id=g.user.id, metadata={"expired": expired})
    return jsonify(expired=expired), 200


# ---------- audit trail ----------
@admin_bp.get("/audit-logs")
@require_roles("ADMIN")
def list_audit_logs():
    limit = request.args.get("limit", type=int) or 200
    limit = max(1, min(limit, 500))

    action = request.args.get("action")
    user_id = request.args.get("user_id", type=int)

    q = AuditLog.query
    if action:
        q = q.filter(AuditLog.action == action)
    if user_id is not None:
        q = q.filter(AuditLog.user_id == user_id)

    rows = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()
    return jsonify([r.to_dict() for r in rows]), 200
