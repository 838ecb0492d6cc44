from datetime import datetime
from models.db import db

REFUND_FULL = "FULL"
REFUND_PARTIAL = "PARTIAL"
REFUND_DEPOSIT_ONLY = "DEPOSIT_ONLY"
REFUND_TYPES = (REFUND_FULL, REFUND_PARTIAL, REFUND_DEPOSIT_ONLY)

REFUND_PENDING = "PENDING"
REFUND_COMPLETED = "COMPLETED"
REFUND_FAILED = "FAILED"


class Refund(db.Model):
    __tablename__ = "refunds"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(10, 2), nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    type = db.Column(db.String(20), nullable=False, default=REFUND_FULL)
    status = db.Column(db.String(20), nullable=False, default=REFUND_PENDING)
    tier_percent = db.Column(db.Integer, nullable=False, default=0)

    initiated_by = db.Column(db.Integer, nullable=True)
    initiated_by_role = db.Column(db.String(20), nullable=True)  # PLAYER, OWNER, ADMIN, SYSTEM

    transaction_id = db.Column(db.String(255), nullable=True)
    error = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)
