from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from speedboat.models.booking import Booking
from speedboat.models.payment import Payment, PaymentStatus, WebhookAudit
from speedboat.services.booking_service import cleanup_expired_bookings, cleanup_stats
from speedboat.services.ticket_service import recover_missing_tickets
from speedboat.services.payment_service import (find_stuck_payments, batch_resync,
                                                cleanup_idempotency_records)
from speedboat.utils.decorators import admin_required, get_current_user
from speedboat.utils.errors import ValidationError
from speedboat.utils.validators import parse_enum, parse_pagination

admin_payments_bp = Blueprint('admin_payments', __name__)

MAX_BATCH_RESYNC = 50


@admin_payments_bp.route('/payments', methods=['GET'])
@jwt_required()
@admin_required
def get_all_payments():
    """
    Get all payments with filtering
    ---
    Query parameters:
    - status: payment status
    - search: order id or booking code
    - limit, offset: pagination
    """
    query = Payment.query.join(Booking, Payment.booking_id == Booking.id)

    status = request.args.get('status', '').strip()
    if status:
        payment_status = parse_enum(PaymentStatus, status)
        if payment_status is None:
            raise ValidationError('Invalid payment status', field='status')
        query = query.filter(Payment.status == payment_status)

    search = request.args.get('search', '').strip()
    if search:
        search_filter = f'%{search}%'
        query = query.filter(Payment.order_id.ilike(search_filter) | Booking.booking_code.ilike(search_filter))

    limit, offset = parse_pagination(request.args, default_limit=50)
    total = query.count()
    payments = query.order_by(Payment.created_at.desc()).offset(offset).limit(limit).all()

    return jsonify({
        'success': True,
        'payments': [dict(p.to_dict(), booking_code=p.booking.booking_code) for p in payments],
        'total': total,
        'limit': limit,
        'offset': offset
    }), 200


@admin_payments_bp.route('/payments/stuck', methods=['GET'])
@jwt_required()
@admin_required
def stuck_payments():
    """
    Pending payments that have not settled
    ---
    Query parameters:
    - older_than_minutes: default 30
    - limit: default 100
    """
    minutes = request.args.get('older_than_minutes', type=int)
    if minutes is not None and minutes < 1:
        raise ValidationError('older_than_minutes must be positive', field='older_than_minutes')
    limit, _ = parse_pagination(request.args, default_limit=100, max_limit=500)

    payments = find_stuck_payments(older_than_minutes=minutes, limit=limit)
    return jsonify({
        'success': True,
        'payments': [dict(p.to_dict(), booking_code=p.booking.booking_code) for p in payments],
        'count': len(payments)
    }), 200


@admin_payments_bp.route('/payments/resync', methods=['POST'])
@jwt_required()
@admin_required
def resync_payments():
    """
    Reconcile several bookings with the gateway
    ---
    Request body: {"booking_codes": ["SPD-20260101-ABCDE", ...]}
    """
    data = request.get_json(silent=True) or {}
    codes = data.get('booking_codes')
    if not isinstance(codes, list) or not codes or not all(isinstance(c, str) for c in codes):
        raise ValidationError('booking_codes must be a non-empty list', field='booking_codes')
    if len(codes) > MAX_BATCH_RESYNC:
        raise ValidationError(f'At most {MAX_BATCH_RESYNC} bookings per request', field='booking_codes')

    results = batch_resync([c.strip().upper() for c in codes], actor=get_current_user())
    succeeded = sum(1 for r in results if r['success'])
    current_app.logger.info('[PAYMENT_BATCH_RESYNC] total=%d succeeded=%d', len(results), succeeded)

    return jsonify({
        'success': True,
        'results': results,
        'total': len(results),
        'succeeded': succeeded,
        'failed': len(results) - succeeded
    }), 200


@admin_payments_bp.route('/webhooks', methods=['GET'])
@jwt_required()
@admin_required
def webhook_log():
    """
    Recent gateway notifications
    ---
    Query parameters:
    - order_id: only notifications for this order
    - status: processed, skipped, rejected, error
    - limit, offset: pagination
    """
    query = WebhookAudit.query
    order_id = request.args.get('order_id', '').strip()
    if order_id:
        query = query.filter(WebhookAudit.order_id == order_id)
    status = request.args.get('status', '').strip().lower()
    if status:
        query = query.filter(WebhookAudit.status == status)

    limit, offset = parse_pagination(request.args, default_limit=50)
    total = query.count()
    entries = query.order_by(WebhookAudit.created_at.desc()).offset(offset).limit(limit).all()

    return jsonify({
        'success': True,
        'webhooks': [w.to_dict() for w in entries],
        'total': total,
        'limit': limit,
        'offset': offset
    }), 200


@admin_payments_bp.route('/bookings/cleanup', methods=['GET'])
@jwt_required()
@admin_required
def cleanup_preview():
    """How many pending bookings a cleanup run would expire"""
    return jsonify({'success': True, 'stats': cleanup_stats()}), 200


@admin_payments_bp.route('/bookings/cleanup', methods=['POST'])
@jwt_required()
@admin_required
def cleanup_bookings():
    """
    Expire overdue pending bookings and drop stale idempotency records
    """
    result = cleanup_expired_bookings()
    result['idempotency_records_deleted'] = cleanup_idempotency_records()
    return jsonify({'success': True, 'result': result}), 200


@admin_payments_bp.route('/tickets/recover', methods=['POST'])
@jwt_required()
@admin_required
def recover_tickets():
    """
    Issue tickets for confirmed bookings that have none
    ---
    Request body (optional):
    {
        "limit": 50
    }
    """
    data = request.get_json(silent=True) or {}
    limit = data.get('limit', 50)
    if not isinstance(limit, int) or isinstance(limit, bool) or not 1 <= limit <= 200:
        raise ValidationError('limit must be an integer between 1 and 200', field='limit')

    result = recover_missing_tickets(limit=limit)
    current_app.logger.info('[ADMIN_TICKET_RECOVERY] admin_id=%s recovered=%d',
                            get_current_user().id, result['recovered'])
    return jsonify({'success': True, 'result': result}), 200
