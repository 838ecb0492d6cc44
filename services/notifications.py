"""
Notification sinks and the post-commit outbox.

Business transactions only *queue* notifications; the outbox hands them to
the sink after the commit, so a failing sink can never undo a booking,
payment or refund.
"""
import json
import logging
from typing import List, Protocol, Tuple

from models.notification import Notification

logger = logging.getLogger(__name__)

PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
BOOKING_CANCELLED = "BOOKING_CANCELLED"
BOOKING_EXPIRED = "BOOKING_EXPIRED"
REFUND = "REFUND"

TITLES = {
    PAYMENT_SUCCESS: "Payment successful",
    BOOKING_CONFIRMED: "New booking confirmed",
    BOOKING_CANCELLED: "Booking cancelled",
    BOOKING_EXPIRED: "Booking expired before payment",
    REFUND: "Booking refunded",
}


class NotificationSink(Protocol):
    def notify(self, user_id: int, kind: str, payload: dict) -> None:
        ...


class LogNotificationSink:
    def notify(self, user_id: int, kind: str, payload: dict) -> None:
        logger.info("notify user=%s kind=%s payload=%s", user_id, kind, payload)


class InAppNotificationSink:
    """Persists notifications for the in-app inbox (own commit, after the business one)."""

    def __init__(self, session):
        self.db = session

    def notify(self, user_id: int, kind: str, payload: dict) -> None:
        self.db.add(Notification(
            user_id=user_id,
            kind=kind,
            title=TITLES.get(kind),
            payload_json=json.dumps(payload, default=str),
        ))
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise


class NotificationOutbox:

    def __init__(self):
        self._pending: List[Tuple[int, str, dict]] = []

    def add(self, user_id, kind: str, payload: dict) -> None:
        if user_id is None:
            return
        self._pending.append((user_id, kind, payload))

    def __len__(self):
        return len(self._pending)

    def dispatch(self, sink: NotificationSink) -> int:
        """Deliver everything queued; failures are logged, never raised."""
        delivered = 0
        pending, self._pending = self._pending, []
        for user_id, kind, payload in pending:
            try:
                sink.notify(user_id, kind, payload)
                delivered += 1
            except Exception:
                logger.exception("Notification %s to user %s failed", kind, user_id)
        return delivered
