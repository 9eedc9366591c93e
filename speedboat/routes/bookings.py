from datetime import timedelta
from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from speedboat import db
from speedboat.models.booking import Booking, BookingStatus
from speedboat.services.booking_service import (create_booking, cancel_booking, confirm_booking,
                                                can_view_booking)
from speedboat.services.mailer import send_booking_confirmation
from speedboat.services.payment_service import record_audit
from speedboat.services.qr import render_qr_data_url
from speedboat.utils.decorators import get_current_user, admin_required, active_user_required
from speedboat.utils.errors import ValidationError, NotFoundError
from speedboat.utils.validators import validate_required_fields, parse_enum, parse_date, parse_pagination

bookings_bp = Blueprint('bookings', __name__)


def _load_booking_for(user, booking):
    if not booking or not can_view_booking(user, booking):
        raise NotFoundError('Booking')
    return booking


@bookings_bp.route('/', methods=['POST'])
@jwt_required()
@active_user_required
def create():
    """
    Create a booking
    ---
    Request body:
    {
        "schedule_id": 1,
        "passengers": [
            {
                "name": "Budi Santoso",
                "identity_type": "national_id",
                "identity_number": "3171234567890001",
                "phone": "081234567890",
                "category": "adult"
            }
        ]
    }
    Seats are held until expires_at; pay before then or the booking expires.
    """
    user = get_current_user()
    data = request.get_json(silent=True) or {}

    is_valid, message = validate_required_fields(data, ['schedule_id', 'passengers'])
    if not is_valid:
        raise ValidationError(message)

    try:
        schedule_id = int(data['schedule_id'])
    except (TypeError, ValueError):
        raise ValidationError('schedule_id must be an integer', field='schedule_id')

    booking = create_booking(user, schedule_id, data['passengers'])

    return jsonify({
        'success': True,
        'message': 'Booking created. Complete payment before it expires.',
        'booking': booking.to_dict()
    }), 201


@bookings_bp.route('/', methods=['GET'])
@jwt_required()
def list_bookings():
    """
    List bookings
    ---
    Customers see their own bookings. Staff see all bookings.
    Query parameters:
    - status: booking status
    - schedule_id, user_id (staff only), booking_code
    - date_from, date_to: creation date range (YYYY-MM-DD)
    - limit, offset: pagination
    """
    user = get_current_user()
    query = Booking.query

    if not user.is_staff:
        query = query.filter(Booking.user_id == user.id)
    else:
        user_id = request.args.get('user_id', type=int)
        if user_id:
            query = query.filter(Booking.user_id == user_id)

    status = request.args.get('status')
    if status:
        booking_status = parse_enum(BookingStatus, status)
        if booking_status is None:
            raise ValidationError('Invalid booking status', field='status')
        query = query.filter(Booking.status == booking_status)

    schedule_id = request.args.get('schedule_id', type=int)
    if schedule_id:
        query = query.filter(Booking.schedule_id == schedule_id)

    booking_code = request.args.get('booking_code', '').strip()
    if booking_code:
        query = query.filter(Booking.booking_code.ilike(f'%{booking_code}%'))

    date_from = request.args.get('date_from', '').strip()
    if date_from:
        parsed = parse_date(date_from)
        if parsed is None:
            raise ValidationError('Invalid date_from format. Use YYYY-MM-DD', field='date_from')
        query = query.filter(Booking.created_at >= parsed)

    date_to = request.args.get('date_to', '').strip()
    if date_to:
        parsed = parse_date(date_to)
        if parsed is None:
            raise ValidationError('Invalid date_to format. Use YYYY-MM-DD', field='date_to')
        query = query.filter(Booking.created_at < parsed + timedelta(days=1))

    limit, offset = parse_pagination(request.args)
    total = query.count()
    bookings = query.order_by(Booking.created_at.desc()).offset(offset).limit(limit).all()

    return jsonify({
        'success': True,
        'bookings': [dict(b.to_dict(include_details=False), schedule=b.schedule.to_dict()) for b in bookings],
        'total': total,
        'limit': limit,
        'offset': offset
    }), 200


@bookings_bp.route('/<int:booking_id>', methods=['GET'])
@jwt_required()
def get_booking(booking_id):
    user = get_current_user()
    booking = _load_booking_for(user, Booking.query.get(booking_id))
    return jsonify({'success': True, 'booking': booking.to_dict()}), 200


@bookings_bp.route('/code/<booking_code>', methods=['GET'])
@jwt_required()
def get_booking_by_code(booking_code):
    user = get_current_user()
    booking = _load_booking_for(user, Booking.query.filter_by(booking_code=booking_code.upper()).first())
    return jsonify({'success': True, 'booking': booking.to_dict()}), 200


@bookings_bp.route('/<int:booking_id>/cancel', methods=['POST'])
@jwt_required()
def cancel(booking_id):
    """
    Cancel a booking
    ---
    Request body: {"reason": "optional text"}
    """
    user = get_current_user()
    booking = _load_booking_for(user, Booking.query.get(booking_id))
    data = request.get_json(silent=True) or {}

    cancel_booking(user, booking, (data.get('reason') or '').strip()[:255] or None)
    db.session.commit()

    return jsonify({
        'success': True,
        'message': f'Booking {booking.status.value}',
        'booking': booking.to_dict()
    }), 200


@bookings_bp.route('/<int:booking_id>/confirm', methods=['POST'])
@jwt_required()
@admin_required
def confirm(booking_id):
    """
    Confirm a pending booking manually and issue its tickets
    """
    booking = Booking.query.get(booking_id)
    if not booking:
        raise NotFoundError('Booking', booking_id)

    previous = confirm_booking(booking)
    if booking.payment:
        record_audit(booking.payment, 'CONFIRM', previous, booking.payment.status,
                     actor=get_current_user(), actor_type='admin',
                     details={'booking_code': booking.booking_code, 'manual': True})
    db.session.commit()
    send_booking_confirmation(booking)

    return jsonify({'success': True, 'message': 'Booking confirmed', 'booking': booking.to_dict()}), 200


@bookings_bp.route('/<int:booking_id>/tickets', methods=['GET'])
@jwt_required()
def booking_tickets(booking_id):
    """
    Tickets of a booking
    ---
    Query parameters:
    - qr_image: true to include a PNG data URL per ticket
    """
    user = get_current_user()
    booking = _load_booking_for(user, Booking.query.get(booking_id))
    with_image = request.args.get('qr_image', '').lower() == 'true'

    tickets = []
    for ticket in booking.tickets:
        data = ticket.to_dict()
        if with_image:
            data['qr_image'] = render_qr_data_url(ticket.qr_data)
        tickets.append(data)

    return jsonify({'success': True, 'booking_code': booking.booking_code, 'tickets': tickets}), 200
