import logging
import secrets
import string
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func

from speedboat import db
from speedboat.models.booking import Booking, BookingStatus, Passenger
from speedboat.models.schedule import Schedule, ScheduleStatus
from speedboat.models.ticket import Ticket, TicketStatus
from speedboat.services.gateway import to_base36
from speedboat.services.qr import encode_ticket_payload, decode_ticket_payload, is_qr_payload
from speedboat.utils.errors import NotFoundError, ConflictError, ValidationError

logger = logging.getLogger(__name__)

SEATS_PER_ROW = 10


def generate_ticket_code(now=None):
    now = now or datetime.utcnow()
    stamp = to_base36(int(now.timestamp() * 1000))
    suffix = ''.join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(4))
    return f'TIK-{stamp}-{suffix}'


def seat_label(index):
    """0 -> A1, 9 -> A10, 10 -> B1"""
    row = chr(ord('A') + index // SEATS_PER_ROW)
    return f'{row}{index % SEATS_PER_ROW + 1}'


def assign_seat_numbers(booking):
    """Give every unseated passenger the lowest seat label not taken on the schedule"""
    taken = {
        seat for (seat,) in db.session.query(Passenger.seat_number)
        .join(Booking, Passenger.booking_id == Booking.id)
        .filter(
            Booking.schedule_id == booking.schedule_id,
            Booking.id != booking.id,
            Booking.status.in_([BookingStatus.CONFIRMED, BookingStatus.COMPLETED]),
            Passenger.seat_number.isnot(None)
        ).all()
    }
    taken.update(p.seat_number for p in booking.passengers if p.seat_number)

    index = 0
    for passenger in booking.passengers:
        if passenger.seat_number:
            continue
        while seat_label(index) in taken:
            index += 1
        passenger.seat_number = seat_label(index)
        taken.add(passenger.seat_number)


def issue_tickets(booking, now=None):
    """
    Create one ticket per passenger of a confirmed booking.
    Passengers that already hold a ticket keep it.
    """
    now = now or datetime.utcnow()
    schedule = booking.schedule
    secret = current_app.config['QR_HMAC_SECRET']

    assign_seat_numbers(booking)

    issued = []
    existing = {t.passenger_id for t in booking.tickets}
    for passenger in booking.passengers:
        if passenger.id in existing:
            continue

        code = generate_ticket_code(now)
        while Ticket.query.filter_by(ticket_code=code).first():
            code = generate_ticket_code(now)

        ticket = Ticket(
            ticket_code=code,
            booking=booking,
            passenger=passenger,
            qr_data=encode_ticket_payload(code, booking.booking_code, passenger.name,
                                          schedule.id, schedule.departure_time, secret),
            status=TicketStatus.VALID
        )
        db.session.add(ticket)
        issued.append(ticket)

    if issued:
        logger.info('[TICKETS_ISSUED] booking=%s count=%d', booking.booking_code, len(issued))
    return issued


def cancel_booking_tickets(booking):
    """Cancel every still-valid ticket of a booking. Returns how many changed."""
    count = 0
    for ticket in booking.tickets:
        if ticket.status == TicketStatus.VALID:
            ticket.status = TicketStatus.CANCELLED
            count += 1
    if count:
        logger.info('[TICKETS_CANCELLED] booking=%s count=%d', booking.booking_code, count)
    return count


def recover_missing_tickets(limit=50, now=None):
    """
    Issue tickets for confirmed bookings that have none, e.g. when ticket
    creation failed after the payment settled. Failures are collected per
    booking so one bad row does not stop the run.
    """
    now = now or datetime.utcnow()
    bookings = Booking.query.filter(
        Booking.status == BookingStatus.CONFIRMED,
        ~Booking.tickets.any()
    ).order_by(Booking.confirmed_at.asc()).limit(limit).all()

    recovered, errors = [], []
    for booking in bookings:
        code = booking.booking_code
        try:
            issued = issue_tickets(booking, now)
            db.session.commit()
            recovered.append({'booking_code': code, 'tickets': len(issued)})
        except Exception as e:
            db.session.rollback()
            logger.exception('[TICKET_RECOVERY_FAILED] booking=%s', code)
            errors.append({'booking_code': code, 'error': str(e)})

    logger.info('[TICKET_RECOVERY] processed=%d recovered=%d failed=%d',
                len(bookings), len(recovered), len(errors))
    return {
        'processed': len(bookings),
        'recovered': len(recovered),
        'bookings': recovered,
        'failed': len(errors),
        'errors': errors
    }


def find_ticket(code_or_qr):
    """Look a ticket up by its code or a signed QR payload"""
    if is_qr_payload(code_or_qr):
        decoded = decode_ticket_payload(code_or_qr, current_app.config['QR_HMAC_SECRET'])
        code = decoded['ticket_code']
    else:
        code = (code_or_qr or '').strip().upper()

    ticket = Ticket.query.filter_by(ticket_code=code).first()
    if not ticket:
        raise NotFoundError('Ticket', code)
    return ticket


def boarding_error(ticket, now=None):
    """Reason a ticket cannot board at `now`, or None when it can"""
    now = now or datetime.utcnow()
    booking = ticket.booking
    schedule = booking.schedule

    if ticket.status == TicketStatus.USED:
        used_at = ticket.checked_in_at.isoformat() if ticket.checked_in_at else 'an earlier time'
        return f'Ticket already used at {used_at}'

    if ticket.status == TicketStatus.CANCELLED:
        return 'Ticket has been cancelled'

    if booking.status != BookingStatus.CONFIRMED:
        return f'Booking is {booking.status.value}'

    if schedule.status == ScheduleStatus.CANCELLED:
        return 'Schedule has been cancelled'

    opens = schedule.departure_time - timedelta(hours=current_app.config['CHECKIN_OPENS_HOURS_BEFORE'])
    closes = schedule.departure_time + timedelta(hours=current_app.config['CHECKIN_CLOSES_HOURS_AFTER'])
    if now < opens:
        return f'Check-in opens at {opens.isoformat()}'
    if now > closes:
        return 'Check-in window has closed'

    return None


def validate_ticket(code_or_qr, now=None):
    """
    Check whether a ticket may board right now.
    ---
    Returns: {'valid': bool, 'error': str or None, 'ticket': Ticket or None}
    """
    try:
        ticket = find_ticket(code_or_qr)
    except (NotFoundError, ValidationError) as e:
        return {'valid': False, 'error': e.message, 'ticket': None}

    error = boarding_error(ticket, now)
    return {'valid': error is None, 'error': error, 'ticket': ticket}


def check_in_ticket(code_or_qr, operator, now=None):
    """Validate a ticket and mark it used. Raises ConflictError when it cannot board."""
    now = now or datetime.utcnow()
    ticket = find_ticket(code_or_qr)

    error = boarding_error(ticket, now)
    if error:
        raise ConflictError(error)

    ticket.status = TicketStatus.USED
    ticket.checked_in_at = now
    ticket.checked_in_by = operator.id
    logger.info('[TICKET_CHECKIN] ticket=%s operator=%s', ticket.ticket_code, operator.id)
    return ticket


def schedule_check_in_stats(schedule_id):
    rows = db.session.query(Ticket.status, func.count(Ticket.id)) \
        .join(Booking, Ticket.booking_id == Booking.id) \
        .filter(Booking.schedule_id == schedule_id) \
        .group_by(Ticket.status).all()
    counts = {status: count for status, count in rows}

    checked_in = counts.get(TicketStatus.USED, 0)
    pending = counts.get(TicketStatus.VALID, 0)
    cancelled = counts.get(TicketStatus.CANCELLED, 0)
    boarding_total = checked_in + pending

    return {
        'total': boarding_total + cancelled,
        'checked_in': checked_in,
        'pending': pending,
        'cancelled': cancelled,
        'percentage': round(checked_in / boarding_total * 100) if boarding_total else 0,
    }


def get_manifest(schedule_id):
    """Passenger list of a departure for boarding staff"""
    schedule = Schedule.query.get(schedule_id)
    if not schedule:
        raise NotFoundError('Schedule', schedule_id)

    passengers = Passenger.query.join(Booking, Passenger.booking_id == Booking.id).filter(
        Booking.schedule_id == schedule_id,
        Booking.status.in_([BookingStatus.CONFIRMED, BookingStatus.COMPLETED])
    ).order_by(Passenger.name.asc()).all()

    entries = []
    for passenger in passengers:
        ticket = passenger.ticket
        entries.append({
            'passenger_id': passenger.id,
            'name': passenger.name,
            'identity_type': passenger.identity_type.value,
            'identity_number': passenger.identity_number,
            'category': passenger.category.value,
            'phone': passenger.phone,
            'seat_number': passenger.seat_number,
            'booking_code': passenger.booking.booking_code,
            'ticket_code': ticket.ticket_code if ticket else None,
            'ticket_status': ticket.status.value if ticket else None,
            'checked_in_at': ticket.checked_in_at.isoformat() if ticket and ticket.checked_in_at else None,
        })

    checked_in = sum(1 for e in entries if e['ticket_status'] == TicketStatus.USED.value)
    return {
        'schedule': schedule.to_dict(),
        'passengers': entries,
        'summary': {
            'total': len(entries),
            'checked_in': checked_in,
            'not_checked_in': len(entries) - checked_in,
        },
    }
