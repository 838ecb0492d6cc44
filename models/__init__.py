from .db import db
from .audit_log import AuditLog
from .stadium import Stadium
from .slot import Slot
from .booking import Booking
from .payment import Payment, PaymentAttempt
from .voucher import Voucher, VoucherUsage
from .refund import Refund
from .notification import Notification
