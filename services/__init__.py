from dataclasses import dataclass

from flask import current_app

EXTENSION_KEY = "settlement_core"


@dataclass
class SettlementCore:
    slots: "SlotLedger"
    vouchers: "VoucherLedger"
    gateway: "PaymobGateway"
    bookings: "BookingLifecycleManager"
    settlement: "SettlementProcessor"
    refunds: "RefundPolicyEngine"
    sink: "NotificationSink"


def build_core(session, config, gateway=None, notification_sink=None) -> SettlementCore:
    """Wire the settlement services explicitly; nothing here is a module global."""
    from services.booking_lifecycle import BookingLifecycleManager
    from services.notifications import InAppNotificationSink
    from services.paymob import PaymobGateway
    from services.refund_policy import RefundPolicyEngine
    from services.settlement import SettlementProcessor
    from services.slot_ledger import SlotLedger
    from services.voucher_ledger import VoucherLedger

    gateway = gateway or PaymobGateway.from_config(config)
    sink = notification_sink or InAppNotificationSink(session)

    slots = SlotLedger(session)
    vouchers = VoucherLedger(session)
    bookings = BookingLifecycleManager(
        session, slots, vouchers, sink,
        reservation_window_minutes=int(config.get("RESERVATION_WINDOW_MINUTES", 15)),
    )
    settlement = SettlementProcessor(
        session, gateway, bookings, sink,
        currency=config.get("PAYMENT_CURRENCY", "EGP"),
    )
    refunds = RefundPolicyEngine(session, bookings, slots, gateway, sink)
    bookings.bind_refund_engine(refunds)

    return SettlementCore(
        slots=slots,
        vouchers=vouchers,
        gateway=gateway,
        bookings=bookings,
        settlement=settlement,
        refunds=refunds,
        sink=sink,
    )


def get_core() -> SettlementCore:
    return current_app.extensions[EXTENSION_KEY]
