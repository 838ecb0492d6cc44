from datetime import datetime
from models.db import db

SLOT_AVAILABLE = "AVAILABLE"
SLOT_RESERVED = "RESERVED"
SLOT_BOOKED = "BOOKED"


class Slot(db.Model):
    __tablename__ = "slots"

    id = db.Column(db.Integer, primary_key=True)

    stadium_id = db.Column(db.Integer, db.ForeignKey("stadiums.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    start_time = db.Column(db.DateTime, nullable=False, index=True)
    end_time = db.Column(db.DateTime, nullable=False)

    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    capacity = db.Column(db.Integer, nullable=False, default=10)

    # only SlotLedger writes this column
    status = db.Column(db.String(20), nullable=False, default=SLOT_AVAILABLE, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        # Prevent duplicate slot times for same stadium
        db.UniqueConstraint("stadium_id", "start_time", "end_time", name="uq_stadium_timeslot"),
    )
