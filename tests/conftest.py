from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import Mock

import pytest

from app import create_app
from config import Config
from models import db
from models.slot import Slot
from models.stadium import Stadium
from models.voucher import Voucher
from services import get_core
from services.paymob import PaymobGateway, sign_transaction

HMAC_SECRET = "test-hmac-secret"
PAYMOB_BASE_URL = "https://paymob.test"

PLAYER_ID = 101
OTHER_PLAYER_ID = 102
OWNER_ID = 201
ADMIN_ID = 301


class SettlementTestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    PAYMOB_API_KEY = "test-api-key"
    PAYMOB_INTEGRATION_ID = "1234"
    PAYMOB_IFRAME_ID = "5678"
    PAYMOB_HMAC_SECRET = HMAC_SECRET
    PAYMOB_BASE_URL = PAYMOB_BASE_URL
    LOG_LEVEL = "WARNING"


class RecordingSink:
    def __init__(self):
        self.sent = []

    def notify(self, user_id, kind, payload):
        self.sent.append((user_id, kind, payload))

    def kinds_for(self, user_id):
        return [kind for uid, kind, _ in self.sent if uid == user_id]


class FailingSink:
    def notify(self, user_id, kind, payload):
        raise RuntimeError("push provider down")


def gateway_response(body, status_code=200):
    resp = Mock()
    resp.status_code = status_code
    resp.json.return_value = body
    return resp


def auth_headers(user_id, roles="PLAYER"):
    return {"X-User-Id": str(user_id), "X-User-Roles": roles}


def paymob_callback(booking_id, user_id, stadium_id, amount, transaction_id=9001, order_id=7001,
                    success=True, pending=False, secret=HMAC_SECRET):
    obj = {
        "id": transaction_id,
        "amount_cents": int(Decimal(str(amount)) * 100),
        "created_at": "2026-10-18T10:00:00.000000",
        "currency": "EGP",
        "error_occured": False,
        "has_parent_transaction": False,
        "integration_id": 1234,
        "is_3d_secure": True,
        "is_auth": False,
        "is_capture": False,
        "is_refunded": False,
        "is_standalone_payment": True,
        "is_voided": False,
        "order": {
            "id": order_id,
            "metadata": {"bookingId": booking_id, "userId": user_id, "stadiumId": stadium_id},
        },
        "owner": 42,
        "pending": pending,
        "source_data": {"pan": "2346", "sub_type": "MasterCard", "type": "card"},
        "success": success,
        "data": {"message": "Approved" if success else "Do not honour"},
    }
    return {"type": "TRANSACTION", "obj": obj, "hmac": sign_transaction(obj, secret)}


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def paymob_http():
    """Stands in for the ``requests`` module inside PaymobGateway."""
    return Mock()


@pytest.fixture
def app(sink, paymob_http):
    gateway = PaymobGateway(
        api_key="test-api-key",
        integration_id=1234,
        iframe_id=5678,
        hmac_secret=HMAC_SECRET,
        base_url=PAYMOB_BASE_URL,
        session=paymob_http,
    )
    app = create_app(SettlementTestConfig, notification_sink=sink, gateway=gateway)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def core(app):
    return get_core()


@pytest.fixture
def stadium(app):
    s = Stadium(
        name="Cairo Arena",
        location="Nasr City",
        owner_user_id=OWNER_ID,
        price_per_hour=Decimal("150.00"),
        deposit=Decimal("50.00"),
    )
    db.session.add(s)
    db.session.commit()
    return s


@pytest.fixture
def make_slot(stadium):
    counter = {"n": 0}

    def _make(price="150.00", hours_ahead=48, start=None):
        counter["n"] += 1
        if start is None:
            base = datetime.utcnow().replace(minute=0, second=0, microsecond=0)
            start = base + timedelta(hours=hours_ahead, minutes=counter["n"])
        slot = Slot(
            stadium_id=stadium.id,
            date=start.date(),
            start_time=start,
            end_time=start + timedelta(hours=1),
            price=Decimal(price),
        )
        db.session.add(slot)
        db.session.commit()
        return slot

    return _make


@pytest.fixture
def make_voucher(app):
    def _make(code="SAVE20", type="PERCENTAGE", value="20", **kwargs):
        voucher = Voucher(code=code, type=type, value=Decimal(value), **kwargs)
        db.session.add(voucher)
        db.session.commit()
        return voucher

    return _make
