"""
PaymobGateway - Paymob Accept client

Hosted-payment order creation (auth token -> order -> payment key), refunds,
and HMAC verification of transaction callbacks.
"""
from dataclasses import dataclass, field
from decimal import Decimal
import hashlib
import hmac
import logging
from typing import Any, Dict, List, Optional

import requests

from services.results import GatewayError, GatewayTimeout, to_money

logger = logging.getLogger(__name__)

# Paymob's canonical field order for transaction callback HMACs
HMAC_FIELDS = (
    "amount_cents",
    "created_at",
    "currency",
    "error_occured",
    "has_parent_transaction",
    "id",
    "integration_id",
    "is_3d_secure",
    "is_auth",
    "is_capture",
    "is_refunded",
    "is_standalone_payment",
    "is_voided",
    "order.id",
    "owner",
    "pending",
    "source_data.pan",
    "source_data.sub_type",
    "source_data.type",
    "success",
)


def to_cents(amount) -> int:
    return int(to_money(amount) * 100)


def _lookup(obj: Dict[str, Any], dotted: str):
    value: Any = obj
    for part in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _hmac_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def hmac_message(transaction: Dict[str, Any]) -> str:
    return "".join(_hmac_value(_lookup(transaction, f)) for f in HMAC_FIELDS)


def sign_transaction(transaction: Dict[str, Any], secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), hmac_message(transaction).encode("utf-8"), hashlib.sha512).hexdigest()


@dataclass
class GatewayOrder:
    order_id: str
    payment_key: str
    payment_url: str


@dataclass
class GatewayCallback:
    transaction_id: Optional[str]
    order_id: Optional[str]
    success: bool
    pending: bool
    amount: Decimal
    booking_id: Optional[int]
    user_id: Optional[int]
    stadium_id: Optional[int]
    error: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class PaymobGateway:

    def __init__(self, api_key: str, integration_id: int, iframe_id: int, hmac_secret: str,
                 base_url: str = "https://accept.paymob.com", timeout: float = 10,
                 payment_key_expiration: int = 3600, session=None):
        self.api_key = api_key
        self.integration_id = integration_id
        self.iframe_id = iframe_id
        self.hmac_secret = hmac_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.payment_key_expiration = payment_key_expiration
        self.http = session or requests

    @classmethod
    def from_config(cls, config) -> "PaymobGateway":
        return cls(
            api_key=config.get("PAYMOB_API_KEY") or "",
            integration_id=int(config.get("PAYMOB_INTEGRATION_ID") or 0),
            iframe_id=int(config.get("PAYMOB_IFRAME_ID") or 0),
            hmac_secret=config.get("PAYMOB_HMAC_SECRET") or "",
            base_url=config.get("PAYMOB_BASE_URL") or "https://accept.paymob.com",
            timeout=float(config.get("PAYMOB_TIMEOUT_SECONDS") or 10),
            payment_key_expiration=int(config.get("PAYMOB_PAYMENT_KEY_EXPIRATION") or 3600),
        )

    # ---------- HTTP ----------
    def _post(self, path: str, body: dict, token: Optional[str] = None) -> dict:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        url = f"{self.base_url}{path}"
        try:
            resp = self.http.post(url, json=body, headers=headers, timeout=self.timeout)
        except requests.Timeout as exc:
            raise GatewayTimeout(f"Paymob request timed out: {path}") from exc
        except requests.RequestException as exc:
            raise GatewayError(f"Paymob request failed: {path}: {exc}") from exc

        if resp.status_code >= 400:
            raise GatewayError(f"Paymob {path} returned HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as exc:
            raise GatewayError(f"Paymob {path} returned a non-JSON body") from exc

    def _auth_token(self) -> str:
        if not self.api_key:
            raise GatewayError("Paymob API key not configured (PAYMOB_API_KEY)")
        token = self._post("/api/auth/tokens", {"api_key": self.api_key}).get("token")
        if not token:
            raise GatewayError("Paymob authentication returned no token")
        return token

    # ---------- orders ----------
    def create_order(self, amount, currency: str, line_items: List[dict], billing_info: dict,
                     metadata: dict) -> GatewayOrder:
        """
        Register an order and return the hosted payment page URL.

        Any failing step raises GatewayError; nothing is retried here.
        """
        amount_cents = to_cents(amount)
        token = self._auth_token()

        order = self._post("/api/ecommerce/orders", {
            "auth_token": token,
            "delivery_needed": False,
            "amount_cents": amount_cents,
            "currency": currency,
            "items": [
                {
                    "name": item.get("name", ""),
                    "amount_cents": to_cents(item.get("amount", 0)),
                    "description": item.get("description", ""),
                    "quantity": item.get("quantity", 1),
                }
                for item in line_items
            ],
            "metadata": metadata,
        }, token=token)
        order_id = order.get("id")
        if not order_id:
            raise GatewayError("Paymob order registration returned no order id")

        key = self._post("/api/acceptance/payment_keys", {
            "auth_token": token,
            "amount_cents": amount_cents,
            "expiration": self.payment_key_expiration,
            "order_id": order_id,
            "billing_data": _billing_data(billing_info),
            "currency": currency,
            "integration_id": self.integration_id,
            "lock_order_when_paid": True,
            "extras": metadata,
        }, token=token)
        payment_key = key.get("token")
        if not payment_key:
            raise GatewayError("Paymob payment key request returned no token")

        return GatewayOrder(
            order_id=str(order_id),
            payment_key=payment_key,
            payment_url=f"{self.base_url}/api/acceptance/iframes/{self.iframe_id}?payment_token={payment_key}",
        )

    def refund(self, transaction_id: str, amount) -> str:
        token = self._auth_token()
        data = self._post("/api/acceptance/void_refund/refund", {
            "auth_token": token,
            "transaction_id": transaction_id,
            "amount_cents": to_cents(amount),
        }, token=token)
        if data.get("success") is False or not data.get("id"):
            raise GatewayError(f"Paymob refund rejected for transaction {transaction_id}")
        return str(data["id"])

    # ---------- callbacks ----------
    def verify_signature(self, payload: Dict[str, Any]) -> bool:
        supplied = (payload or {}).get("hmac")
        transaction = (payload or {}).get("obj")
        if not self.hmac_secret or not supplied or not isinstance(transaction, dict):
            return False
        expected = sign_transaction(transaction, self.hmac_secret)
        return hmac.compare_digest(expected, str(supplied).lower())

    def parse_callback(self, payload: Dict[str, Any]) -> GatewayCallback:
        obj = payload.get("obj") or {}
        order = obj.get("order")
        # some integrations send the order as a bare id
        order_id = _lookup(obj, "order.id") if isinstance(order, dict) else order
        meta = _lookup(obj, "order.metadata")
        if not isinstance(meta, dict) or not meta:
            meta = _lookup(obj, "payment_key_claims.extra")
        if not isinstance(meta, dict):
            meta = {}
        data = obj.get("data") or {}

        transaction_id = obj.get("id")
        return GatewayCallback(
            transaction_id=str(transaction_id) if transaction_id is not None else None,
            order_id=str(order_id) if order_id is not None else None,
            success=obj.get("success") is True,
            pending=obj.get("pending") is True,
            amount=to_money(Decimal(str(obj.get("amount_cents") or 0)) / 100),
            booking_id=_as_int(meta.get("bookingId")),
            user_id=_as_int(meta.get("userId")),
            stadium_id=_as_int(meta.get("stadiumId")),
            error=data.get("message") if isinstance(data, dict) else None,
            raw=payload,
        )


def _billing_data(info: dict) -> dict:
    # Paymob rejects payment keys with missing billing fields
    full_name = (info.get("name") or "").strip()
    first, _, last = full_name.partition(" ")
    return {
        "first_name": info.get("first_name") or first or "NA",
        "last_name": info.get("last_name") or last or "NA",
        "phone_number": info.get("phone_number") or "NA",
        "email": info.get("email") or "NA",
        "apartment": "NA",
        "floor": "NA",
        "street": "NA",
        "building": "NA",
        "city": "NA",
        "country": "NA",
        "state": "NA",
    }
