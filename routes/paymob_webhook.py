from flask import Blueprint, request, jsonify

from services import get_core
from utils.audit import log_event

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")


@webhook_bp.post("/paymob")
def paymob_webhook():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify(success=False, error="Invalid payload"), 400

    # Paymob sends the HMAC as a query parameter on transaction callbacks
    if request.args.get("hmac"):
        payload = dict(payload, hmac=request.args["hmac"])

    result = get_core().settlement.handle_callback(payload)
    if not result.ok:
        if result.http_status >= 500:
            # the gateway retries non-2xx callbacks; keep a trail of each failure
            log_event("PAYMENT_WEBHOOK_FAILED", entity="payment",
                      entity_id=(payload.get("obj") or {}).get("id"),
                      metadata={"code": result.error.value})
        return jsonify(success=False, error=result.message), result.http_status

    callback = result.value
    if result.extra.get("settled"):
        log_event("PAYMENT_PAID", entity="payment", entity_id=callback.transaction_id,
                  metadata={"booking_id": callback.booking_id, "amount": str(callback.amount)})
    return jsonify(success=True, duplicate=bool(result.extra.get("duplicate"))), 200
