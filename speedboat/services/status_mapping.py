import logging
from dataclasses import dataclass
from enum import Enum

from speedboat.models.booking import BookingStatus
from speedboat.models.payment import PaymentStatus

logger = logging.getLogger(__name__)


class PaymentAction(Enum):
    CONFIRM = 'confirm'
    HOLD = 'hold'
    CANCEL = 'cancel'
    EXPIRE = 'expire'
    REFUND = 'refund'
    NONE = 'none'


@dataclass(frozen=True)
class StatusMapping:
    payment_status: PaymentStatus
    booking_status: BookingStatus
    action: PaymentAction
    should_generate_tickets: bool = False
    should_release_seats: bool = False
    should_notify_user: bool = False


_CONFIRMED = StatusMapping(PaymentStatus.SUCCESS, BookingStatus.CONFIRMED, PaymentAction.CONFIRM,
                           should_generate_tickets=True, should_notify_user=True)
_PENDING = StatusMapping(PaymentStatus.PENDING, BookingStatus.PENDING, PaymentAction.NONE)

_STATUS_TABLE = {
    'settlement': _CONFIRMED,
    'pending': _PENDING,
    'authorize': StatusMapping(PaymentStatus.PENDING, BookingStatus.PENDING, PaymentAction.HOLD),
    'deny': StatusMapping(PaymentStatus.DENY, BookingStatus.CANCELLED, PaymentAction.CANCEL,
                          should_release_seats=True, should_notify_user=True),
    'cancel': StatusMapping(PaymentStatus.CANCELLED, BookingStatus.CANCELLED, PaymentAction.CANCEL,
                            should_release_seats=True, should_notify_user=True),
    'expire': StatusMapping(PaymentStatus.EXPIRED, BookingStatus.EXPIRED, PaymentAction.EXPIRE,
                            should_release_seats=True, should_notify_user=True),
    'failure': StatusMapping(PaymentStatus.FAILED, BookingStatus.CANCELLED, PaymentAction.CANCEL,
                             should_release_seats=True, should_notify_user=True),
    'refund': StatusMapping(PaymentStatus.REFUNDED, BookingStatus.REFUNDED, PaymentAction.REFUND,
                            should_release_seats=True, should_notify_user=True),
    'partial_refund': StatusMapping(PaymentStatus.REFUNDED, BookingStatus.REFUNDED, PaymentAction.REFUND,
                                    should_notify_user=True),
    'chargeback': StatusMapping(PaymentStatus.REFUNDED, BookingStatus.CANCELLED, PaymentAction.CANCEL,
                                should_release_seats=True, should_notify_user=True),
}


def map_gateway_status(transaction_status, fraud_status=None):
    """
    Translate a Midtrans transaction_status (and fraud_status for card captures)
    into the payment and booking statuses it implies.
    Unknown statuses map to a no-op pending result.
    """
    status = (transaction_status or '').lower()

    if status == 'capture':
        fraud = (fraud_status or '').lower()
        if fraud == 'accept':
            return _CONFIRMED
        if fraud == 'challenge':
            return StatusMapping(PaymentStatus.CHALLENGE, BookingStatus.PENDING, PaymentAction.HOLD,
                                 should_notify_user=True)
        return StatusMapping(PaymentStatus.DENY, BookingStatus.CANCELLED, PaymentAction.CANCEL,
                             should_release_seats=True, should_notify_user=True)

    mapping = _STATUS_TABLE.get(status)
    if mapping is None:
        logger.warning('[STATUS_MAPPING] unknown transaction_status=%r', transaction_status)
        return _PENDING
    return mapping
