from datetime import datetime
from models.db import db

VOUCHER_PERCENTAGE = "PERCENTAGE"
VOUCHER_FIXED = "FIXED"
VOUCHER_FULL = "FULL"
VOUCHER_TYPES = (VOUCHER_PERCENTAGE, VOUCHER_FIXED, VOUCHER_FULL)


class Voucher(db.Model):
    __tablename__ = "vouchers"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False, index=True)  # stored upper-case

    type = db.Column(db.String(20), nullable=False)
    value = db.Column(db.Numeric(10, 2), nullable=False)

    max_uses = db.Column(db.Integer, nullable=False, default=0)  # 0 = unlimited
    used_count = db.Column(db.Integer, nullable=False, default=0)
    min_amount = db.Column(db.Numeric(10, 2), nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True)

    # restrict to a single player when set
    user_id = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    usages = db.relationship("VoucherUsage", back_populates="voucher", lazy="dynamic")


class VoucherUsage(db.Model):
    __tablename__ = "voucher_usages"

    id = db.Column(db.Integer, primary_key=True)
    voucher_id = db.Column(db.Integer, db.ForeignKey("vouchers.id"), nullable=False, index=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)

    discount_amount = db.Column(db.Numeric(10, 2), nullable=False)
    used_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    voucher = db.relationship("Voucher", back_populates="usages")

    __table_args__ = (
        db.UniqueConstraint("voucher_id", "booking_id", name="uq_voucher_usage_booking"),
    )
