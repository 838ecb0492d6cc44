from routes.health import health_bp
from routes.booking import booking_bp
from routes.payments import payments_bp
from routes.paymob_webhook import webhook_bp
from routes.refunds import refunds_bp
from routes.admin import admin_bp

__all__ = ["health_bp", "booking_bp", "payments_bp", "webhook_bp", "refunds_bp", "admin_bp"]
