import logging
import secrets
import string
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import case, update

from speedboat import db
from speedboat.models.booking import (Booking, Passenger, BookingStatus, IdentityType,
                                      PassengerCategory, CATEGORY_MULTIPLIERS)
from speedboat.models.payment import PaymentStatus
from speedboat.models.schedule import Schedule, ScheduleStatus, ShipStatus
from speedboat.models.user import UserRole
from speedboat.services import state_machine
from speedboat.services.ticket_service import issue_tickets, cancel_booking_tickets
from speedboat.utils.errors import (ValidationError, NotFoundError, ConflictError,
                                    AuthorizationError)
from speedboat.utils.validators import validate_passengers, parse_enum

logger = logging.getLogger(__name__)

BOOKING_CODE_ATTEMPTS = 5
EXPIRED_REASON = 'Booking expired due to no payment'


def generate_booking_code(now=None):
    """SPD-YYYYMMDD-XXXXX"""
    now = now or datetime.utcnow()
    suffix = ''.join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(5))
    return f'SPD-{now:%Y%m%d}-{suffix}'


def unique_booking_code(now=None):
    for _ in range(BOOKING_CODE_ATTEMPTS):
        code = generate_booking_code(now)
        if not Booking.query.filter_by(booking_code=code).first():
            return code
    raise ConflictError('Could not allocate a booking code, please try again')


def passenger_price(schedule_price, category):
    return int(round(schedule_price * CATEGORY_MULTIPLIERS[category]))


def reserve_seats(schedule, count):
    """Atomically take `count` seats. Returns False when not enough are left."""
    result = db.session.execute(
        update(Schedule)
        .where(Schedule.id == schedule.id, Schedule.available_seats >= count)
        .values(available_seats=Schedule.available_seats - count)
        .execution_options(synchronize_session=False)
    )
    db.session.expire(schedule, ['available_seats'])
    return result.rowcount == 1


def release_seats(schedule, count):
    """Give `count` seats back, never exceeding the schedule's total"""
    restored = Schedule.available_seats + count
    db.session.execute(
        update(Schedule)
        .where(Schedule.id == schedule.id)
        .values(available_seats=case(
            (restored > Schedule.total_seats, Schedule.total_seats),
            else_=restored
        ))
        .execution_options(synchronize_session=False)
    )
    db.session.expire(schedule, ['available_seats'])


def create_booking(user, schedule_id, passengers_data, now=None):
    """
    Reserve seats and create a pending booking.
    ---
    passengers_data: [{name, identity_type, identity_number, phone?, category?}]
    """
    now = now or datetime.utcnow()
    config = current_app.config

    is_valid, message = validate_passengers(passengers_data, config['MAX_PASSENGERS_PER_BOOKING'])
    if not is_valid:
        raise ValidationError(message, field='passengers')

    schedule = Schedule.query.get(schedule_id)
    if not schedule:
        raise NotFoundError('Schedule', schedule_id)

    if schedule.status != ScheduleStatus.SCHEDULED:
        raise ConflictError('Schedule is not available for booking')

    if schedule.departure_time <= now:
        raise ConflictError('Schedule has already departed')

    if schedule.ship.status != ShipStatus.ACTIVE:
        raise ConflictError('Ship is not available for this schedule')

    count = len(passengers_data)
    if schedule.available_seats < count:
        raise ConflictError(
            f'Not enough seats available. Requested: {count}, Available: {schedule.available_seats}'
        )

    logger.info('[BOOKING_CREATE_START] user_id=%s schedule_id=%s passengers=%d',
                user.id, schedule_id, count)

    if not reserve_seats(schedule, count):
        db.session.rollback()
        available = Schedule.query.get(schedule_id).available_seats
        raise ConflictError(f'Not enough seats available. Requested: {count}, Available: {available}')

    passengers = []
    for data in passengers_data:
        category = parse_enum(PassengerCategory, data.get('category')) or PassengerCategory.ADULT
        passengers.append(Passenger(
            name=data['name'].strip(),
            identity_type=parse_enum(IdentityType, data['identity_type']),
            identity_number=str(data['identity_number']).strip().upper(),
            phone=data.get('phone') or None,
            category=category,
            price=passenger_price(schedule.price, category)
        ))

    booking = Booking(
        booking_code=unique_booking_code(now),
        user_id=user.id,
        schedule_id=schedule.id,
        total_passengers=count,
        total_amount=sum(p.price for p in passengers),
        status=BookingStatus.PENDING,
        expires_at=now + timedelta(minutes=config['PAYMENT_WINDOW_MINUTES']),
        passengers=passengers
    )
    db.session.add(booking)
    db.session.commit()

    logger.info('[BOOKING_CREATED] code=%s amount=%s expires_at=%s',
                booking.booking_code, booking.total_amount, booking.expires_at.isoformat())
    return booking


def transition_booking(booking, target, reason=None, now=None, release=True):
    """
    Move a booking to `target`, keeping seats and tickets consistent.
    Seats are released only when leaving a seat-holding status, so this is
    safe to call for replays. Pass release=False to keep the seats taken
    (partial refunds). Returns True when the status changed.
    Does not commit.
    """
    now = now or datetime.utcnow()
    current = booking.status
    if current == target:
        return False

    state_machine.validate_booking_transition(current, target)

    if release and state_machine.releases_seats(current, target):
        release_seats(booking.schedule, booking.total_passengers)
        logger.info('[SEATS_RELEASED] booking=%s seats=%d', booking.booking_code, booking.total_passengers)

    booking.status = target

    if target == BookingStatus.CONFIRMED:
        booking.confirmed_at = now
        issue_tickets(booking, now)
    elif target in (BookingStatus.CANCELLED, BookingStatus.EXPIRED, BookingStatus.REFUNDED):
        booking.cancelled_at = booking.cancelled_at or now
        if reason:
            booking.cancellation_reason = reason
        cancel_booking_tickets(booking)

    logger.info('[BOOKING_STATUS] code=%s %s -> %s', booking.booking_code, current.value, target.value)
    return True


def awaiting_fraud_review(booking):
    """A captured card payment held for fraud review keeps its booking open past the window"""
    payment = booking.payment
    return payment is not None and payment.status == PaymentStatus.CHALLENGE


def expire_booking(booking, now=None):
    """Expire an unpaid booking whose payment window has closed. Does not commit."""
    now = now or datetime.utcnow()
    changed = transition_booking(booking, BookingStatus.EXPIRED, EXPIRED_REASON, now)
    payment = booking.payment
    if changed and payment and payment.status == PaymentStatus.PENDING:
        payment.status = PaymentStatus.EXPIRED
        payment.expired_at = payment.expired_at or now
    return changed


def cleanup_expired_bookings(now=None):
    """
    Expire every pending booking past its payment window. Bookings whose
    payment is in fraud review are left for the gateway to resolve.
    Failures are collected per booking so one bad row does not stop the sweep.
    """
    now = now or datetime.utcnow()
    stale = Booking.query.filter(
        Booking.status == BookingStatus.PENDING,
        Booking.expires_at <= now
    ).all()

    expired, held, errors = [], [], []
    for booking in stale:
        code = booking.booking_code
        if awaiting_fraud_review(booking):
            held.append(code)
            continue
        try:
            expire_booking(booking, now)
            db.session.commit()
            expired.append(code)
        except Exception as e:
            db.session.rollback()
            logger.exception('[BOOKING_EXPIRE_FAILED] booking=%s', code)
            errors.append({'booking_code': code, 'error': str(e)})

    if expired or errors or held:
        logger.info('[BOOKING_CLEANUP] expired=%d failed=%d under_review=%d', len(expired), len(errors), len(held))
    return {'expired': len(expired), 'booking_codes': expired, 'under_review': held,
            'failed': len(errors), 'errors': errors}


def cleanup_stats(now=None):
    """Pending bookings that a cleanup run would touch, or soon will"""
    now = now or datetime.utcnow()
    pending = Booking.query.filter(Booking.status == BookingStatus.PENDING)
    return {
        'pending': pending.count(),
        'overdue': pending.filter(Booking.expires_at <= now).count(),
        'expiring_in_5_minutes': pending.filter(
            Booking.expires_at > now,
            Booking.expires_at <= now + timedelta(minutes=5)
        ).count(),
    }


def can_view_booking(user, booking):
    return user.is_staff or booking.user_id == user.id


def cancel_booking(user, booking, reason=None, now=None):
    """
    Cancel a pending or confirmed booking.
    Customers must cancel at least CANCELLATION_CUTOFF_HOURS before departure;
    admins are not bound by the cutoff. A paid booking becomes refunded.
    """
    now = now or datetime.utcnow()
    is_admin = user.role == UserRole.ADMIN

    if booking.user_id != user.id and not is_admin:
        raise AuthorizationError('You can only cancel your own bookings')

    if booking.status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
        raise ConflictError(f'Booking cannot be cancelled in status {booking.status.value}')

    if not is_admin:
        cutoff = timedelta(hours=current_app.config['CANCELLATION_CUTOFF_HOURS'])
        if booking.schedule.departure_time - now < cutoff:
            raise ConflictError(
                f"Bookings can only be cancelled at least {current_app.config['CANCELLATION_CUTOFF_HOURS']} "
                f"hours before departure"
            )

    if not reason:
        reason = 'Cancelled by admin' if is_admin and booking.user_id != user.id else 'Cancelled by user'

    void_booking(booking, reason, now)
    return booking


def void_booking(booking, reason, now=None):
    """
    Take a pending or confirmed booking out of service. A booking whose
    payment already succeeded is refunded, anything else is cancelled.
    Does not commit.
    """
    now = now or datetime.utcnow()
    payment = booking.payment

    if payment and payment.status == PaymentStatus.SUCCESS:
        state_machine.validate_payment_transition(payment.status, PaymentStatus.REFUNDED)
        transition_booking(booking, BookingStatus.REFUNDED, reason, now)
        payment.status = PaymentStatus.REFUNDED
        payment.refunded_at = now
        payment.refund_amount = payment.amount
        payment.refund_reason = reason
    else:
        transition_booking(booking, BookingStatus.CANCELLED, reason, now)
        if payment and payment.status in (PaymentStatus.PENDING, PaymentStatus.CHALLENGE):
            payment.status = PaymentStatus.CANCELLED


def confirm_booking(booking, now=None):
    """
    Manual confirmation by an admin, e.g. for an offline payment.
    A payment still open at the gateway (pending or in review) is marked
    paid along with it.
    Returns the payment status before confirmation (None without a payment).
    Does not commit.
    """
    now = now or datetime.utcnow()
    if booking.status != BookingStatus.PENDING:
        raise ConflictError(f'Only pending bookings can be confirmed, booking is {booking.status.value}')
    if booking.is_expired(now) and not awaiting_fraud_review(booking):
        raise ConflictError('Booking payment window has expired')

    payment = booking.payment
    previous = payment.status if payment else None

    transition_booking(booking, BookingStatus.CONFIRMED, now=now)

    if payment and payment.status in (PaymentStatus.PENDING, PaymentStatus.CHALLENGE):
        payment.status = PaymentStatus.SUCCESS
        payment.paid_at = payment.paid_at or now
        payment.payment_channel = payment.payment_channel or 'manual'
        payment.version = (payment.version or 1) + 1
    return previous


def complete_schedule_bookings(schedule, now=None):
    """Mark confirmed bookings of an arrived schedule as completed"""
    bookings = schedule.bookings.filter(Booking.status == BookingStatus.CONFIRMED).all()
    for booking in bookings:
        transition_booking(booking, BookingStatus.COMPLETED, now=now)
    return bookings


def cancel_schedule_bookings(schedule, now=None):
    """A cancelled departure voids every booking still holding seats on it"""
    bookings = schedule.bookings.filter(
        Booking.status.in_([BookingStatus.PENDING, BookingStatus.CONFIRMED])
    ).all()
    for booking in bookings:
        void_booking(booking, 'Schedule cancelled', now)
    return bookings
