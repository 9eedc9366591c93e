"""
Allowed status transitions for bookings and payments.

Moving to the status a record already has is always accepted so that
replayed notifications are harmless.
"""
from speedboat.models.booking import BookingStatus
from speedboat.models.payment import PaymentStatus
from speedboat.utils.errors import InvalidTransitionError


BOOKING_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.EXPIRED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.REFUNDED},
    BookingStatus.COMPLETED: {BookingStatus.REFUNDED},
    BookingStatus.CANCELLED: set(),
    BookingStatus.EXPIRED: set(),
    BookingStatus.REFUNDED: set(),
}

PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {
        PaymentStatus.SUCCESS, PaymentStatus.FAILED, PaymentStatus.EXPIRED,
        PaymentStatus.CANCELLED, PaymentStatus.CHALLENGE, PaymentStatus.DENY,
    },
    PaymentStatus.CHALLENGE: {PaymentStatus.SUCCESS, PaymentStatus.DENY, PaymentStatus.CANCELLED},
    PaymentStatus.SUCCESS: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.EXPIRED: set(),
    PaymentStatus.CANCELLED: set(),
    PaymentStatus.DENY: set(),
    PaymentStatus.REFUNDED: set(),
}

# Payment statuses a new attempt may be started from
RETRYABLE_PAYMENT_STATUSES = {PaymentStatus.FAILED, PaymentStatus.EXPIRED, PaymentStatus.CANCELLED}

# Bookings in these statuses hold seats on their schedule
SEAT_HOLDING_STATUSES = {BookingStatus.PENDING, BookingStatus.CONFIRMED}


def can_transition_booking(current, target):
    return current == target or target in BOOKING_TRANSITIONS.get(current, set())


def can_transition_payment(current, target):
    return current == target or target in PAYMENT_TRANSITIONS.get(current, set())


def validate_booking_transition(current, target):
    if not can_transition_booking(current, target):
        raise InvalidTransitionError('booking', current, target)


def validate_payment_transition(current, target):
    if not can_transition_payment(current, target):
        raise InvalidTransitionError('payment', current, target)


def is_terminal_booking_status(status):
    return not BOOKING_TRANSITIONS.get(status)


def is_terminal_payment_status(status):
    return not PAYMENT_TRANSITIONS.get(status)


def releases_seats(current, target):
    """True when moving a booking from current to target gives its seats back"""
    return current in SEAT_HOLDING_STATUSES and target not in SEAT_HOLDING_STATUSES \
        and target != BookingStatus.COMPLETED
