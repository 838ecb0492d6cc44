from datetime import datetime, timedelta
from decimal import Decimal

from models import db
from models.audit_log import AuditLog
from models.booking import Booking
from models.payment import Payment
from models.slot import Slot, SLOT_AVAILABLE, SLOT_BOOKED
from models.voucher import Voucher
from tests.conftest import (
    ADMIN_ID,
    OTHER_PLAYER_ID,
    OWNER_ID,
    PLAYER_ID,
    auth_headers,
    gateway_response,
    paymob_callback,
)
from utils.auth_context import CurrentUser

PLAYER = auth_headers(PLAYER_ID)
STRANGER = auth_headers(OTHER_PLAYER_ID)
OWNER = auth_headers(OWNER_ID, "OWNER")
ADMIN = auth_headers(ADMIN_ID, "ADMIN")


def _book(client, slot_id, headers=PLAYER, **body):
    return client.post("/bookings", json=dict(body, slot_id=slot_id), headers=headers)


def test_health(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


def test_requests_without_identity_are_rejected(client, make_slot):
    slot = make_slot()

    assert _book(client, slot.id, headers={}).status_code == 401
    assert client.get("/bookings/me", headers={"X-User-Id": "not-a-number"}).status_code == 401


def test_list_available_slots(client, make_slot):
    slot = make_slot()

    resp = client.get(f"/stadiums/{slot.stadium_id}/slots?date={slot.date.isoformat()}", headers=PLAYER)

    assert resp.status_code == 200
    assert [s["id"] for s in resp.get_json()] == [slot.id]
    assert client.get(f"/stadiums/{slot.stadium_id}/slots", headers=PLAYER).status_code == 400
    assert client.get(f"/stadiums/{slot.stadium_id}/slots?date=tomorrow", headers=PLAYER).status_code == 400


def test_create_booking_and_double_booking(client, make_slot):
    slot = make_slot()

    first = _book(client, slot.id)
    second = _book(client, slot.id, headers=STRANGER)

    assert first.status_code == 201
    assert first.get_json()["status"] == "PENDING"
    assert first.get_json()["final_amount"] == 150.0
    assert second.status_code == 409
    assert second.get_json()["code"] == "SLOT_UNAVAILABLE"
    actions = [a.action for a in AuditLog.query.order_by(AuditLog.id).all()]
    assert actions == ["BOOKING_CREATE", "BOOKING_FAIL"]


def test_create_booking_with_bad_voucher(client, make_slot):
    resp = _book(client, make_slot().id, voucher_code="NOPE")

    assert resp.status_code == 422
    assert resp.get_json() == {
        "error": "Voucher code is not valid",
        "code": "INVALID_VOUCHER",
        "reason": "VOUCHER_NOT_FOUND",
    }


def test_create_booking_requires_slot_id(client):
    assert client.post("/bookings", json={}, headers=PLAYER).status_code == 400


def test_my_bookings_and_visibility(client, make_slot):
    booking_id = _book(client, make_slot().id).get_json()["id"]

    mine = client.get("/bookings/me", headers=PLAYER).get_json()
    assert [b["id"] for b in mine] == [booking_id]
    assert client.get("/bookings/me?status=CONFIRMED", headers=PLAYER).get_json() == []
    assert client.get("/bookings/me?status=BOGUS", headers=PLAYER).status_code == 400

    assert client.get(f"/bookings/{booking_id}", headers=PLAYER).status_code == 200
    assert client.get(f"/bookings/{booking_id}", headers=OWNER).status_code == 200
    assert client.get(f"/bookings/{booking_id}", headers=ADMIN).status_code == 200
    assert client.get(f"/bookings/{booking_id}", headers=STRANGER).status_code == 404


def test_cash_payment_by_operator(client, make_slot):
    slot = make_slot()
    booking_id = _book(client, slot.id).get_json()["id"]

    assert client.post(f"/bookings/{booking_id}/cash-payment", headers=PLAYER).status_code == 403
    other_owner = auth_headers(999, "OWNER")
    assert client.post(f"/bookings/{booking_id}/cash-payment", headers=other_owner).status_code == 403

    resp = client.post(f"/bookings/{booking_id}/cash-payment", headers=OWNER)

    assert resp.status_code == 200
    assert resp.get_json()["status"] == "CONFIRMED"
    assert db.session.get(Slot, slot.id).status == SLOT_BOOKED
    assert client.post(f"/bookings/{booking_id}/cash-payment", headers=OWNER).status_code == 409


def test_cancel_booking(client, make_slot):
    booking_id = _book(client, make_slot().id).get_json()["id"]

    assert client.post(f"/bookings/{booking_id}/cancel", json={}, headers=STRANGER).status_code == 404
    resp = client.post(f"/bookings/{booking_id}/cancel", json={"reason": "changed plans"}, headers=PLAYER)

    assert resp.status_code == 200
    assert resp.get_json()["refund"]["amount"] == 0.0
    assert client.post(f"/bookings/{booking_id}/cancel", json={}, headers=PLAYER).status_code == 409


def test_refund_endpoints(client, core, make_slot):
    booking_id = _book(client, make_slot(price="400.00").id).get_json()["id"]
    core.bookings.confirm_by_cash(booking_id)

    quote = client.get(f"/bookings/{booking_id}/refund-quote", headers=PLAYER)
    assert quote.status_code == 200
    assert quote.get_json()["tier"] == 100
    assert quote.get_json()["amount"] == 400.0
    assert client.get(f"/bookings/{booking_id}/refund-quote", headers=STRANGER).status_code == 404

    assert client.post(f"/bookings/{booking_id}/refund", json={"reason": "rain"}, headers=PLAYER).status_code == 400
    refund = client.post(
        f"/bookings/{booking_id}/refund",
        json={"reason": "rain", "refund_type": "partial", "partial_amount": 120},
        headers=PLAYER,
    )
    assert refund.status_code == 200
    assert refund.get_json()["amount"] == 120.0
    assert refund.get_json()["type"] == "PARTIAL"

    history = client.get(f"/bookings/{booking_id}/refunds", headers=PLAYER).get_json()
    assert [r["amount"] for r in history] == [120.0]


def test_validate_voucher_endpoint(client, make_voucher):
    make_voucher(code="SAVE20")

    ok = client.post("/payments/validate-voucher", json={"code": "save20", "amount": 150}, headers=PLAYER)
    bad = client.post("/payments/validate-voucher", json={"code": "NOPE", "amount": 150}, headers=PLAYER)

    assert ok.get_json() == {"valid": True, "discountAmount": 30.0}
    assert bad.status_code == 200
    assert bad.get_json()["valid"] is False
    assert bad.get_json()["message"] == "Voucher code is not valid"
    assert client.post("/payments/validate-voucher", json={"code": "SAVE20"}, headers=PLAYER).status_code == 400


def test_use_voucher_endpoint(client, make_slot, make_voucher):
    make_voucher(code="TENOFF", type="FIXED", value="10")
    booking_id = _book(client, make_slot().id).get_json()["id"]

    resp = client.post("/payments/use-voucher", json={"code": "TENOFF", "booking_id": booking_id}, headers=PLAYER)
    again = client.post("/payments/use-voucher", json={"code": "TENOFF", "booking_id": booking_id}, headers=PLAYER)

    assert resp.status_code == 200
    assert resp.get_json()["finalAmount"] == 140.0
    assert again.status_code == 409


def test_create_order_gateway_failure(client, make_slot, paymob_http):
    booking_id = _book(client, make_slot().id).get_json()["id"]
    paymob_http.post.side_effect = [gateway_response({}, status_code=401)]

    resp = client.post("/payments/create-order", json={"booking_id": booking_id}, headers=PLAYER)

    assert resp.status_code == 502
    assert resp.get_json()["code"] == "GATEWAY_ERROR"
    assert AuditLog.query.filter_by(action="PAYMENT_ORDER_FAILED").count() == 1


def test_webhook_rejects_bad_signature(client, make_slot):
    slot = make_slot()
    booking_id = _book(client, slot.id).get_json()["id"]
    payload = paymob_callback(booking_id, PLAYER_ID, slot.stadium_id, "150.00")
    payload["hmac"] = "f" * 128

    resp = client.post("/webhooks/paymob", json=payload)

    assert resp.status_code == 400
    assert Payment.query.count() == 0
    assert client.post("/webhooks/paymob", data="not json", content_type="text/plain").status_code == 400


def test_webhook_accepts_hmac_in_query_string(client, make_slot):
    slot = make_slot()
    booking_id = _book(client, slot.id).get_json()["id"]
    payload = paymob_callback(booking_id, PLAYER_ID, slot.stadium_id, "150.00")
    signature = payload.pop("hmac")

    first = client.post(f"/webhooks/paymob?hmac={signature}", json=payload)
    second = client.post(f"/webhooks/paymob?hmac={signature}", json=payload)

    assert first.status_code == 200
    assert first.get_json() == {"success": True, "duplicate": False}
    assert second.get_json() == {"success": True, "duplicate": True}
    assert db.session.get(Booking, booking_id).status == "CONFIRMED"


def test_save20_end_to_end(client, core, make_slot, make_voucher, paymob_http, sink):
    make_voucher(code="SAVE20", type="PERCENTAGE", value="20", max_uses=100)
    slot = make_slot(price="150.00")

    booking = _book(client, slot.id, voucher_code="SAVE20").get_json()
    assert booking["discount_amount"] == 30.0
    assert booking["final_amount"] == 120.0

    paymob_http.post.side_effect = [
        gateway_response({"token": "auth-token"}),
        gateway_response({"id": 7001}),
        gateway_response({"token": "payment-key"}),
    ]
    order = client.post("/payments/create-order", json={"booking_id": booking["id"]}, headers=PLAYER).get_json()
    assert order["amount"] == 120.0
    assert order["orderId"] == "7001"

    callback = paymob_callback(booking["id"], PLAYER_ID, slot.stadium_id, "120.00", order_id=7001)
    assert client.post("/webhooks/paymob", json=callback).status_code == 200

    confirmed = client.get(f"/bookings/{booking['id']}", headers=PLAYER).get_json()
    assert confirmed["status"] == "CONFIRMED"
    assert db.session.get(Slot, slot.id).status == SLOT_BOOKED
    assert Payment.query.filter_by(booking_id=booking["id"]).one().amount == Decimal("120.00")
    assert Voucher.query.filter_by(code="SAVE20").one().used_count == 1
    assert sink.kinds_for(PLAYER_ID) == ["PAYMENT_SUCCESS"]
    assert sink.kinds_for(OWNER_ID) == ["BOOKING_CONFIRMED"]

    # two hours before kick-off nothing comes back
    start = db.session.get(Slot, slot.id).start_time
    player = CurrentUser(id=PLAYER_ID, roles=frozenset({"PLAYER"}))
    refund = core.bookings.cancel(booking["id"], "injury", player, now=start - timedelta(hours=2)).value

    assert refund.amount == Decimal("0.00")
    assert db.session.get(Booking, booking["id"]).status == "CANCELLED"
    assert db.session.get(Slot, slot.id).status == SLOT_AVAILABLE


def test_admin_voucher_management(client, make_slot):
    body = {"code": "summer10", "type": "PERCENTAGE", "value": 10, "max_uses": 5}
    assert client.post("/admin/vouchers", json=body, headers=PLAYER).status_code == 403

    created = client.post("/admin/vouchers", json=body, headers=ADMIN)
    assert created.status_code == 201
    assert created.get_json()["code"] == "SUMMER10"
    assert created.get_json()["created_by"] == ADMIN_ID
    assert client.post("/admin/vouchers", json=body, headers=ADMIN).status_code == 400

    _book(client, make_slot().id, voucher_code="SUMMER10")
    stats = client.get("/admin/vouchers/SUMMER10/stats", headers=ADMIN).get_json()
    assert stats["total_uses"] == 1
    assert stats["total_discount"] == 15.0
    assert stats["remaining_uses"] == 4
    assert len(stats["recent_uses"]) == 1

    deactivated = client.post("/admin/vouchers/SUMMER10/deactivate", headers=ADMIN)
    assert deactivated.get_json()["is_active"] is False
    assert client.get("/admin/vouchers/NOPE/stats", headers=ADMIN).status_code == 404


def test_admin_voucher_rejects_bad_expiry(client):
    body = {"code": "LATER", "type": "FIXED", "value": 10, "expires_at": "next week"}

    assert client.post("/admin/vouchers", json=body, headers=ADMIN).status_code == 400


def test_admin_voucher_rejects_bad_min_amount(client):
    body = {"code": "MINIMUM", "type": "FIXED", "value": 10, "min_amount": "abc"}

    resp = client.post("/admin/vouchers", json=body, headers=ADMIN)

    assert resp.status_code == 400
    assert resp.get_json()["code"] == "VALIDATION_ERROR"
    assert Voucher.query.filter_by(code="MINIMUM").count() == 0


def test_admin_audit_logs(client, make_slot):
    _book(client, make_slot().id)

    assert client.get("/admin/audit-logs", headers=OWNER).status_code == 403
    rows = client.get("/admin/audit-logs?action=BOOKING_CREATE", headers=ADMIN).get_json()
    assert len(rows) == 1
    assert rows[0]["user_id"] == PLAYER_ID
    assert rows[0]["entity"] == "booking"


def test_admin_expire_reservations(client, core, make_slot):
    core.bookings.create_booking(PLAYER_ID, make_slot().id, now=datetime.utcnow() - timedelta(hours=1))

    resp = client.post("/admin/reservations/expire", headers=ADMIN)

    assert resp.get_json() == {"expired": 1}


def test_expire_reservations_cli(app, core, make_slot):
    core.bookings.create_booking(PLAYER_ID, make_slot().id, now=datetime.utcnow() - timedelta(hours=1))

    result = app.test_cli_runner().invoke(args=["expire-reservations"])

    assert result.exit_code == 0
    assert "Expired 1 reservation(s)" in result.output
