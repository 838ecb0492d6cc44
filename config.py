import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as stadium_booking.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "stadium_booking.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Identity forwarded by the upstream auth layer
    CURRENT_USER_HEADER = os.getenv("CURRENT_USER_HEADER", "X-User-Id")
    CURRENT_USER_ROLES_HEADER = os.getenv("CURRENT_USER_ROLES_HEADER", "X-User-Roles")

    # Paymob (Accept) credentials
    PAYMOB_API_KEY = os.getenv("PAYMOB_API_KEY")
    PAYMOB_INTEGRATION_ID = os.getenv("PAYMOB_INTEGRATION_ID")
    PAYMOB_IFRAME_ID = os.getenv("PAYMOB_IFRAME_ID")
    PAYMOB_HMAC_SECRET = os.getenv("PAYMOB_HMAC_SECRET")
    PAYMOB_BASE_URL = os.getenv("PAYMOB_BASE_URL", "https://accept.paymob.com")
    PAYMOB_TIMEOUT_SECONDS = float(os.getenv("PAYMOB_TIMEOUT_SECONDS", "10"))
    PAYMOB_PAYMENT_KEY_EXPIRATION = int(os.getenv("PAYMOB_PAYMENT_KEY_EXPIRATION", "3600"))  # 1 hour
    PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "EGP")

    # Unpaid PENDING bookings older than this release their slot
    RESERVATION_WINDOW_MINUTES = int(os.getenv("RESERVATION_WINDOW_MINUTES", "15"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Basic app settings
    DEBUG = False
