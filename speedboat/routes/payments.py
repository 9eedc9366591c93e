from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from speedboat import limiter
from speedboat.models.payment import Payment, PaymentAuditLog
from speedboat.services.payment_service import (create_payment, process_notification,
                                                check_payment_status, cancel_payment, resync_booking)
from speedboat.utils.decorators import get_current_user, admin_required, active_user_required
from speedboat.utils.errors import ValidationError, NotFoundError

payments_bp = Blueprint('payments', __name__)


@payments_bp.route('/create', methods=['POST'])
@limiter.limit(lambda: current_app.config['PAYMENT_CREATE_RATE_LIMIT'])
@jwt_required()
@active_user_required
def create():
    """
    Open a payment for a pending booking
    ---
    Headers: Idempotency-Key (optional)
    Request body: {"booking_id": 1, "idempotency_key": "optional"}
    Repeating the call returns the same payment session.
    """
    user = get_current_user()
    data = request.get_json(silent=True) or {}

    try:
        booking_id = int(data.get('booking_id'))
    except (TypeError, ValueError):
        raise ValidationError('booking_id is required', field='booking_id')

    key = request.headers.get('Idempotency-Key') or data.get('idempotency_key')
    if key is not None and (not isinstance(key, str) or not 1 <= len(key) <= 128):
        raise ValidationError('Idempotency key must be 1-128 characters', field='idempotency_key')

    response, replayed = create_payment(user, booking_id, key)

    return jsonify({
        'success': True,
        'payment': response,
        'idempotent_replay': replayed
    }), 200 if replayed else 201


@payments_bp.route('/notification', methods=['POST'])
def notification():
    """
    Midtrans HTTP notification (webhook)
    ---
    Body: Midtrans notification JSON with signature_key
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict) or not payload.get('order_id'):
        return jsonify({'success': False, 'error': 'Invalid notification payload'}), 400

    body, status = process_notification(payload, remote_addr=request.remote_addr)
    return jsonify(body), status


@payments_bp.route('/notification', methods=['GET'])
def notification_health():
    """Lets the gateway dashboard check the endpoint is reachable"""
    return jsonify({
        'success': True,
        'status': 'ok',
        'environment': 'production' if current_app.config['MIDTRANS_IS_PRODUCTION'] else 'sandbox'
    }), 200


@payments_bp.route('/status/<booking_code>', methods=['GET'])
@jwt_required()
def status(booking_code):
    """
    Poll payment status for a booking
    ---
    Asks the gateway for the latest status and applies it before answering.
    """
    user = get_current_user()
    booking = check_payment_status(user, booking_code.upper())
    payment = booking.payment

    return jsonify({
        'success': True,
        'booking_code': booking.booking_code,
        'booking_status': booking.status.value,
        'payment_status': payment.status.value if payment else None,
        'expires_at': booking.expires_at.isoformat(),
        'payment': payment.to_dict() if payment else None,
        'tickets': [t.to_dict() for t in booking.tickets]
    }), 200


@payments_bp.route('/cancel', methods=['POST'])
@jwt_required()
def cancel():
    """
    Cancel a pending payment and release the booking's seats
    ---
    Request body: {"booking_code": "SPD-20260101-ABCDE"}
    """
    user = get_current_user()
    data = request.get_json(silent=True) or {}
    booking_code = (data.get('booking_code') or '').strip().upper()
    if not booking_code:
        raise ValidationError('booking_code is required', field='booking_code')

    booking = cancel_payment(user, booking_code)
    return jsonify({
        'success': True,
        'message': 'Payment cancelled',
        'booking': booking.to_dict(include_details=False)
    }), 200


@payments_bp.route('/resync/<booking_code>', methods=['POST'])
@jwt_required()
@admin_required
def resync(booking_code):
    """
    Force reconciliation of one booking with the gateway
    """
    result = resync_booking(booking_code.upper(), actor=get_current_user())
    return jsonify({'success': True, 'result': result}), 200


@payments_bp.route('/<int:payment_id>', methods=['GET'])
@jwt_required()
def get_payment(payment_id):
    user = get_current_user()
    payment = Payment.query.get(payment_id)
    if not payment or (payment.booking.user_id != user.id and not user.is_staff):
        raise NotFoundError('Payment', payment_id)

    data = payment.to_dict()
    if user.is_staff:
        data['audit_log'] = [entry.to_dict() for entry in payment.audit_logs.order_by(PaymentAuditLog.created_at)]
    return jsonify({'success': True, 'payment': data}), 200
