from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from speedboat import db
from speedboat.services.booking_service import can_view_booking
from speedboat.services.qr import render_qr_data_url
from speedboat.services.ticket_service import find_ticket, validate_ticket, check_in_ticket
from speedboat.utils.decorators import get_current_user, staff_required
from speedboat.utils.errors import ValidationError, NotFoundError

tickets_bp = Blueprint('tickets', __name__)


def _ticket_details(ticket):
    booking = ticket.booking
    schedule = booking.schedule
    route = schedule.route
    return dict(
        ticket.to_dict(),
        booking_code=booking.booking_code,
        booking_status=booking.status.value,
        departure_time=schedule.departure_time.isoformat(),
        departure_port=route.departure_port.name,
        arrival_port=route.arrival_port.name,
        ship=schedule.ship.name
    )


@tickets_bp.route('/<ticket_code>', methods=['GET'])
@jwt_required()
def get_ticket(ticket_code):
    """
    Get a ticket with its QR image
    """
    user = get_current_user()
    ticket = find_ticket(ticket_code)
    if not can_view_booking(user, ticket.booking):
        raise NotFoundError('Ticket', ticket_code)

    data = _ticket_details(ticket)
    data['qr_image'] = render_qr_data_url(ticket.qr_data)
    return jsonify({'success': True, 'ticket': data}), 200


@tickets_bp.route('/validate', methods=['POST'])
@jwt_required()
@staff_required
def validate():
    """
    Check whether a ticket may board
    ---
    Request body: {"code": "TIK-... or scanned SPB:... QR payload"}
    """
    data = request.get_json(silent=True) or {}
    code = (data.get('code') or data.get('qr_data') or '').strip()
    if not code:
        raise ValidationError('Ticket code or QR data is required', field='code')

    result = validate_ticket(code)
    ticket = result['ticket']
    return jsonify({
        'success': True,
        'valid': result['valid'],
        'error': result['error'],
        'ticket': _ticket_details(ticket) if ticket else None
    }), 200


@tickets_bp.route('/checkin', methods=['POST'])
@tickets_bp.route('/<ticket_code>/checkin', methods=['POST'])
@jwt_required()
@staff_required
def checkin(ticket_code=None):
    """
    Board a passenger
    ---
    Either POST /api/tickets/<code>/checkin or POST /api/tickets/checkin
    with {"code": "..."} (ticket code or QR payload).
    """
    if ticket_code is None:
        data = request.get_json(silent=True) or {}
        ticket_code = (data.get('code') or data.get('qr_data') or '').strip()
        if not ticket_code:
            raise ValidationError('Ticket code or QR data is required', field='code')

    ticket = check_in_ticket(ticket_code, get_current_user())
    db.session.commit()

    return jsonify({
        'success': True,
        'message': 'Passenger checked in',
        'ticket': _ticket_details(ticket)
    }), 200
