from datetime import datetime
from models.db import db

class Stadium(db.Model):
    __tablename__ = "stadiums"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    location = db.Column(db.String(160), nullable=True)

    # operator who receives booking/refund notifications
    owner_user_id = db.Column(db.Integer, nullable=False, index=True)

    price_per_hour = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    deposit = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
