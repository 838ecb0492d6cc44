import logging

import click
from flask import Flask
from flask_migrate import Migrate

from config import Config
from routes import health_bp, booking_bp, payments_bp, webhook_bp, refunds_bp, admin_bp

from models import db
from services import EXTENSION_KEY, build_core, get_core
from utils.auth_context import load_current_user


def create_app(config_object=Config, notification_sink=None, gateway=None):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhook_bp)
    app.register_blueprint(refunds_bp)
    app.register_blueprint(admin_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Settlement services share the request-scoped session
    app.extensions[EXTENSION_KEY] = build_core(
        db.session, app.config, gateway=gateway, notification_sink=notification_sink,
    )

    @app.before_request
    def _load_user():
        load_current_user()

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------

def register_cli(app):
    @app.cli.command("expire-reservations")
    def expire_reservations():
        """Cancel unpaid PENDING bookings past the reservation window."""
        expired = get_core().bookings.expire_stale_reservations()
        click.echo(f"Expired {expired} reservation(s)")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
