from datetime import datetime
from models.db import db

ATTEMPT_PENDING = "PENDING"
ATTEMPT_SUCCESS = "SUCCESS"
ATTEMPT_FAILED = "FAILED"

METHOD_PAYMOB = "PAYMOB"
METHOD_CASH = "CASH"
METHOD_VOUCHER = "VOUCHER"


class PaymentAttempt(db.Model):
    __tablename__ = "payment_attempts"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(10, 2), nullable=False)
    method = db.Column(db.String(20), nullable=False, default=METHOD_PAYMOB)
    status = db.Column(db.String(20), nullable=False, default=ATTEMPT_PENDING)  # PENDING, SUCCESS, FAILED

    order_id = db.Column(db.String(64), nullable=True, index=True)
    transaction_id = db.Column(db.String(64), nullable=True, index=True)
    error = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(10, 2), nullable=False)
    method = db.Column(db.String(20), nullable=False, default=METHOD_PAYMOB)
    # gateway transaction id; the unique index is the webhook idempotency key
    transaction_id = db.Column(db.String(64), nullable=True, unique=True, index=True)

    refunded = db.Column(db.Boolean, default=False, nullable=False)
    refund_amount = db.Column(db.Numeric(10, 2), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
