from .slot_repository import SlotRepository
from .booking_repository import BookingRepository
from .payment_repository import PaymentRepository
from .voucher_repository import VoucherRepository
from .refund_repository import RefundRepository
