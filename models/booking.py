from datetime import datetime
from models.db import db

BOOKING_PENDING = "PENDING"
BOOKING_CONFIRMED = "CONFIRMED"
BOOKING_CANCELLED = "CANCELLED"
BOOKING_COMPLETED = "COMPLETED"


class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, nullable=False, index=True)
    stadium_id = db.Column(db.Integer, db.ForeignKey("stadiums.id"), nullable=False, index=True)
    slot_id = db.Column(db.Integer, db.ForeignKey("slots.id"), nullable=False, index=True)

    date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)

    base_price = db.Column(db.Numeric(10, 2), nullable=False)
    deposit_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    final_amount = db.Column(db.Numeric(10, 2), nullable=False)

    status = db.Column(db.String(20), nullable=False, default=BOOKING_PENDING, index=True)
    # status values: PENDING, CONFIRMED, CANCELLED, COMPLETED
    voucher_code = db.Column(db.String(20), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    __table_args__ = (
        # Hard business-rule: one live booking per slot (cancelled rows don't count)
        db.Index(
            "uq_booking_active_slot",
            "slot_id",
            unique=True,
            sqlite_where=db.text("status <> 'CANCELLED'"),
            postgresql_where=db.text("status <> 'CANCELLED'"),
        ),
        db.CheckConstraint("final_amount >= 0", name="ck_booking_final_amount_non_negative"),
    )
