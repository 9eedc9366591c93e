"""
Payment creation and reconciliation against Midtrans.

Webhooks, client polling and admin resyncs all funnel into
apply_gateway_status so a given gateway status has the same effect no
matter how it reached us.
"""
import logging
import math
import random
import time
from datetime import datetime, timedelta

from flask import current_app

from speedboat import db
from speedboat.models.booking import Booking, BookingStatus
from speedboat.models.payment import Payment, PaymentStatus, PaymentAuditLog, IdempotencyRecord, WebhookAudit
from speedboat.models.user import UserRole
from speedboat.services import state_machine
from speedboat.services.booking_service import transition_booking, expire_booking, awaiting_fraud_review
from speedboat.services.gateway import (midtrans, generate_order_id, verify_signature,
                                        extract_va_details, extract_booking_code)
from speedboat.services.mailer import (send_booking_confirmation, send_payment_pending, send_payment_failed,
                                       send_payment_refunded)
from speedboat.services.status_mapping import map_gateway_status, PaymentAction
from speedboat.services.ticket_service import issue_tickets
from speedboat.utils.errors import NotFoundError, ConflictError, AuthorizationError, GatewayError

logger = logging.getLogger(__name__)

# Midtrans reports times in Asia/Jakarta
GATEWAY_UTC_OFFSET = timedelta(hours=7)

BOOKING_REASONS = {
    BookingStatus.EXPIRED: 'Payment expired',
    BookingStatus.CANCELLED: 'Payment failed or cancelled',
    BookingStatus.REFUNDED: 'Payment refunded',
}


def parse_gateway_time(value):
    if not value:
        return None
    try:
        return datetime.strptime(value, '%Y-%m-%d %H:%M:%S') - GATEWAY_UTC_OFFSET
    except (TypeError, ValueError):
        return None


def record_audit(payment, action, previous_status=None, new_status=None, actor=None,
                 actor_type='system', payload=None, idempotency_key=None, details=None):
    entry = PaymentAuditLog(
        payment=payment,
        action=action,
        previous_status=previous_status.value if previous_status else None,
        new_status=new_status.value if new_status else None,
        actor_id=actor.id if actor else None,
        actor_type=actor_type,
        webhook_payload=payload,
        idempotency_key=idempotency_key,
        details=details
    )
    db.session.add(entry)
    return entry


def _payment_response(payment):
    return {
        'payment_id': payment.id,
        'booking_id': payment.booking_id,
        'order_id': payment.order_id,
        'amount': payment.amount,
        'token': payment.token,
        'redirect_url': payment.redirect_url,
        'expires_at': payment.expired_at.isoformat() if payment.expired_at else None,
        'client_key': current_app.config.get('MIDTRANS_CLIENT_KEY'),
    }


def _store_idempotency(record, key, user, response, now):
    expires_at = now + timedelta(hours=current_app.config['IDEMPOTENCY_TTL_HOURS'])
    if record is None:
        db.session.add(IdempotencyRecord(key=key, user_id=user.id, response=response, expires_at=expires_at))
    else:
        record.response = response
        record.expires_at = expires_at


def _line_items(booking):
    route = booking.schedule.route
    trip = f'{route.departure_port.code}-{route.arrival_port.code}'
    return [
        {
            'id': f'PAX-{passenger.id}',
            'price': passenger.price,
            'quantity': 1,
            'name': f'{trip} {passenger.category.value} {passenger.name}',
        }
        for passenger in booking.passengers if passenger.price > 0
    ]


def create_payment(user, booking_id, idempotency_key=None, now=None):
    """
    Open (or reuse) a gateway payment for a pending booking.
    ---
    Returns: (response dict, replayed bool)
    """
    now = now or datetime.utcnow()

    booking = Booking.query.get(booking_id)
    if not booking or booking.user_id != user.id:
        raise NotFoundError('Booking', booking_id)

    key = f'user:{user.id}:{idempotency_key or f"booking:{booking.id}"}'
    record = IdempotencyRecord.query.filter_by(key=key).first()

    logger.info('[PAYMENT_CREATE_START] booking=%s user_id=%s key=%s', booking.booking_code, user.id, key)

    if booking.status in (BookingStatus.CONFIRMED, BookingStatus.COMPLETED):
        raise ConflictError('Booking already confirmed')
    if booking.status in (BookingStatus.CANCELLED, BookingStatus.EXPIRED, BookingStatus.REFUNDED):
        raise ConflictError('Booking is no longer valid')
    if awaiting_fraud_review(booking):
        raise ConflictError('Payment is under review by the payment provider')
    if booking.is_expired(now):
        expire_booking(booking, now)
        db.session.commit()
        raise ConflictError('Booking payment window has expired')

    payment = Payment.query.filter_by(booking_id=booking.id).with_for_update().first()

    session_live = payment is not None and payment.status == PaymentStatus.PENDING and payment.token \
        and payment.expired_at is not None and payment.expired_at > now

    if record and record.expires_at > now and session_live and payment.token == record.response.get('token'):
        logger.info('[PAYMENT_CREATE_REPLAY] booking=%s key=%s', booking.booking_code, key)
        return record.response, True

    if session_live:
        response = _payment_response(payment)
        _store_idempotency(record, key, user, response, now)
        db.session.commit()
        logger.info('[PAYMENT_CREATE_REUSE] booking=%s order_id=%s', booking.booking_code, payment.order_id)
        return response, True

    if payment and payment.status == PaymentStatus.SUCCESS:
        raise ConflictError('Booking already paid')
    if payment and payment.status != PaymentStatus.PENDING \
            and payment.status not in state_machine.RETRYABLE_PAYMENT_STATUSES:
        raise ConflictError(f'Payment is {payment.status.value} and cannot be retried')

    remaining_minutes = max(1, math.ceil((booking.expires_at - now).total_seconds() / 60))
    order_id = generate_order_id(booking.booking_code)

    session = midtrans.create_transaction(
        order_id=order_id,
        gross_amount=booking.total_amount,
        customer={
            'first_name': user.name,
            'email': user.email,
            'phone': user.phone or '',
        },
        items=_line_items(booking),
        expiry_minutes=remaining_minutes,
        finish_url=f"{current_app.config['APP_URL']}/bookings/{booking.booking_code}"
    )

    previous_status = None
    if payment is None:
        payment = Payment(booking=booking, processed_webhooks=[])
        db.session.add(payment)
        action = 'PAYMENT_CREATED'
    else:
        previous_status = payment.status
        payment.version = (payment.version or 1) + 1
        action = 'PAYMENT_RETRY'

    payment.order_id = order_id
    payment.amount = booking.total_amount
    payment.status = PaymentStatus.PENDING
    payment.token = session['token']
    payment.redirect_url = session['redirect_url']
    payment.transaction_id = None
    payment.transaction_time = None
    payment.payment_type = None
    payment.va_number = None
    payment.bank = None
    payment.expired_at = now + timedelta(minutes=remaining_minutes)
    db.session.flush()

    record_audit(payment, action, previous_status, PaymentStatus.PENDING, actor=user, actor_type='user',
                 idempotency_key=key, details={'order_id': order_id, 'amount': payment.amount})

    response = _payment_response(payment)
    _store_idempotency(record, key, user, response, now)
    db.session.commit()

    logger.info('[PAYMENT_CREATED] booking=%s order_id=%s amount=%s', booking.booking_code, order_id, payment.amount)
    return response, False


def apply_gateway_status(payment, data, source, actor=None, idempotency_key=None, now=None):
    """
    Apply a gateway status report (webhook body or status API response) to a
    payment and its booking. Invalid transitions are skipped, never forced.
    Does not commit.
    ---
    Returns: {'applied', 'reason', 'action', 'payment_status', 'booking_status', 'booking_confirmed',
              'notify_user'}
    """
    now = now or datetime.utcnow()
    booking = payment.booking
    mapping = map_gateway_status(data.get('transaction_status'), data.get('fraud_status'))
    previous_payment, previous_booking = payment.status, booking.status

    result = {
        'applied': False,
        'reason': None,
        'action': mapping.action.value,
        'payment_status': previous_payment.value,
        'booking_status': previous_booking.value,
        'booking_confirmed': False,
        'notify_user': False,
    }

    if not state_machine.can_transition_payment(previous_payment, mapping.payment_status):
        result['reason'] = f'invalid payment transition {previous_payment.value} -> {mapping.payment_status.value}'
        logger.warning('[PAYMENT_TRANSITION_SKIPPED] order_id=%s %s', payment.order_id, result['reason'])
        return result

    if not state_machine.can_transition_booking(previous_booking, mapping.booking_status):
        result['reason'] = f'invalid booking transition {previous_booking.value} -> {mapping.booking_status.value}'
        if mapping.action == PaymentAction.CONFIRM:
            logger.error('[PAYMENT_AFTER_CLOSE] order_id=%s booking=%s paid while %s, needs manual refund',
                         payment.order_id, booking.booking_code, previous_booking.value)
        else:
            logger.warning('[BOOKING_TRANSITION_SKIPPED] order_id=%s %s', payment.order_id, result['reason'])
        return result

    if data.get('transaction_id'):
        payment.transaction_id = data['transaction_id']
    payment.transaction_time = parse_gateway_time(data.get('transaction_time')) or payment.transaction_time
    payment.payment_type = data.get('payment_type') or payment.payment_type
    va_number, bank = extract_va_details(data)
    if va_number:
        payment.va_number, payment.bank = va_number, bank
        payment.payment_channel = bank
    payment.raw_response = data

    payment.status = mapping.payment_status
    if mapping.payment_status == PaymentStatus.SUCCESS and not payment.paid_at:
        payment.paid_at = parse_gateway_time(data.get('settlement_time')) or now
    elif mapping.payment_status == PaymentStatus.EXPIRED:
        payment.expired_at = now
    elif mapping.payment_status == PaymentStatus.REFUNDED and not payment.refunded_at:
        payment.refunded_at = now
        payment.refund_amount = int(float(data.get('refund_amount') or data.get('gross_amount') or payment.amount))
        payment.refund_reason = data.get('transaction_status')

    changed = transition_booking(
        booking, mapping.booking_status,
        reason=BOOKING_REASONS.get(mapping.booking_status),
        now=now,
        release=mapping.should_release_seats
    )

    if mapping.should_generate_tickets and booking.status == BookingStatus.CONFIRMED:
        issue_tickets(booking, now)

    if previous_payment != payment.status:
        payment.version = (payment.version or 1) + 1

    action = {'webhook': 'WEBHOOK_PROCESSED', 'poll': 'STATUS_SYNCED'}.get(source, 'MANUAL_RESYNC')
    record_audit(payment, action, previous_payment, payment.status, actor=actor,
                 actor_type='admin' if actor else ('webhook' if source == 'webhook' else 'system'),
                 payload=data, idempotency_key=idempotency_key,
                 details={'booking_from': previous_booking.value, 'booking_to': booking.status.value})

    result.update({
        'applied': True,
        'payment_status': payment.status.value,
        'booking_status': booking.status.value,
        'booking_confirmed': changed and booking.status == BookingStatus.CONFIRMED,
        'notify_user': mapping.should_notify_user and previous_payment != payment.status,
    })
    logger.info('[PAYMENT_STATUS_APPLIED] source=%s order_id=%s payment %s -> %s booking %s -> %s',
                source, payment.order_id, previous_payment.value, payment.status.value,
                previous_booking.value, booking.status.value)
    return result


def notify_payment_outcome(booking, result):
    """Mail the customer when an applied gateway status concerns them"""
    if result.get('booking_confirmed'):
        send_booking_confirmation(booking)
        return
    if not result.get('notify_user'):
        return

    status = booking.payment.status
    if status == PaymentStatus.CHALLENGE:
        send_payment_pending(booking)
    elif status == PaymentStatus.REFUNDED:
        send_payment_refunded(booking)
    elif status in (PaymentStatus.DENY, PaymentStatus.FAILED, PaymentStatus.CANCELLED, PaymentStatus.EXPIRED):
        send_payment_failed(booking)


def _webhook_event(payload):
    """Status part of the dedupe key; card captures carry their fraud review result"""
    status = payload.get('transaction_status')
    if status == 'capture' and payload.get('fraud_status'):
        return f"capture_{payload['fraud_status']}"
    return status


def process_notification(payload, remote_addr=None, now=None):
    """
    Handle a Midtrans HTTP notification.
    ---
    Returns: (body dict, HTTP status). Only a bad signature yields a non-200
    status, so the gateway never retries notifications we chose to skip.
    """
    now = now or datetime.utcnow()
    started = time.monotonic()
    order_id = payload.get('order_id')
    transaction_status = payload.get('transaction_status')

    audit = WebhookAudit(order_id=order_id, event_type=transaction_status, payload=payload,
                         remote_addr=remote_addr)

    if not verify_signature(payload, midtrans.server_key):
        logger.warning('[WEBHOOK_BAD_SIGNATURE] order_id=%s remote=%s', order_id, remote_addr)
        audit.status = 'rejected'
        audit.error_message = 'Invalid signature'
        audit.processing_ms = int((time.monotonic() - started) * 1000)
        db.session.add(audit)
        db.session.commit()
        return {'success': False, 'error': 'Invalid signature'}, 403

    audit.signature_valid = True
    logger.info('[WEBHOOK_RECEIVED] order_id=%s status=%s', order_id, transaction_status)

    try:
        payment = Payment.query.filter_by(order_id=order_id).with_for_update().first()
        result = {'applied': False}

        if not payment:
            audit.status = 'skipped'
            audit.error_message = f'Unknown order (booking {extract_booking_code(order_id)})'
            logger.warning('[WEBHOOK_UNKNOWN_ORDER] order_id=%s', order_id)
        else:
            webhook_key = f"{order_id}:{payload.get('transaction_id')}:{_webhook_event(payload)}"
            payment.webhook_count = (payment.webhook_count or 0) + 1
            payment.last_webhook_at = now

            if payment.has_processed(webhook_key):
                audit.status = 'skipped'
                audit.error_message = 'Duplicate notification'
                logger.info('[WEBHOOK_DUPLICATE] key=%s', webhook_key)
            else:
                result = apply_gateway_status(payment, payload, 'webhook', idempotency_key=webhook_key, now=now)
                payment.mark_processed(webhook_key)
                audit.status = 'processed' if result['applied'] else 'skipped'
                audit.error_message = result['reason']

        audit.processing_ms = int((time.monotonic() - started) * 1000)
        db.session.add(audit)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception('[WEBHOOK_ERROR] order_id=%s', order_id)
        db.session.add(WebhookAudit(
            order_id=order_id, event_type=transaction_status, payload=payload,
            signature_valid=True, status='error', error_message=str(e)[:500],
            processing_ms=int((time.monotonic() - started) * 1000), remote_addr=remote_addr
        ))
        db.session.commit()
        return {'success': False, 'error': 'Notification could not be processed'}, 200

    if payment is not None:
        notify_payment_outcome(payment.booking, result)

    return {'success': True, 'status': audit.status}, 200


def retry_with_backoff(fn, max_attempts=3, base_delay=1.0, max_delay=30.0, sleep=None):
    """
    Call fn, retrying gateway network errors and 5xx responses with
    exponential backoff plus jitter.
    """
    sleep = sleep or time.sleep
    for attempt in range(1, max_attempts + 1):
        try:
            return fn()
        except GatewayError as e:
            retryable = e.http_status is None or e.http_status >= 500
            if not retryable or attempt == max_attempts:
                raise
            delay = min(max_delay, base_delay * (2 ** (attempt - 1)))
            delay += random.uniform(0, delay * 0.1)
            logger.warning('[GATEWAY_RETRY] attempt=%d/%d delay=%.2fs error=%s',
                           attempt, max_attempts, delay, e.message)
            sleep(delay)


def _window_closed(booking, now):
    """Pending, past its window and not held by a fraud review"""
    return booking.status == BookingStatus.PENDING and booking.is_expired(now) \
        and not awaiting_fraud_review(booking)


def _sync_with_gateway(booking, source, actor=None, use_backoff=False, now=None):
    """Poll the gateway for a booking's payment and apply what it reports. Does not commit."""
    now = now or datetime.utcnow()
    payment = booking.payment
    result = {'applied': False, 'reason': 'no payment', 'booking_confirmed': False}

    if payment:
        def fetch():
            return midtrans.get_status(payment.order_id)

        data = retry_with_backoff(fetch) if use_backoff else fetch()
        if data is None:
            result['reason'] = 'transaction not found at gateway'
        else:
            result = apply_gateway_status(payment, data, source, actor=actor, now=now)

    if _window_closed(booking, now):
        expire_booking(booking, now)
        result['booking_status'] = booking.status.value
        result['expired_locally'] = True

    return result


def check_payment_status(user, booking_code, now=None):
    """Client-side poll: reconcile one booking's payment with the gateway"""
    now = now or datetime.utcnow()
    booking = Booking.query.filter_by(booking_code=booking_code).first()
    if not booking or (booking.user_id != user.id and not user.is_staff):
        raise NotFoundError('Booking', booking_code)

    payment = booking.payment
    result = {'applied': False, 'booking_confirmed': False}

    if payment and payment.status in (PaymentStatus.PENDING, PaymentStatus.CHALLENGE):
        try:
            result = _sync_with_gateway(booking, 'poll', now=now)
        except GatewayError as e:
            logger.warning('[PAYMENT_POLL_FAILED] booking=%s error=%s', booking_code, e.message)
    if _window_closed(booking, now):
        expire_booking(booking, now)

    db.session.commit()
    notify_payment_outcome(booking, result)
    return booking


def resync_booking(booking_code, actor=None, now=None):
    """Force a poll-based reconciliation of one booking (admin / CLI)"""
    booking = Booking.query.filter_by(booking_code=booking_code).first()
    if not booking:
        raise NotFoundError('Booking', booking_code)

    logger.info('[PAYMENT_RESYNC] booking=%s actor=%s', booking_code, actor.id if actor else 'system')
    result = _sync_with_gateway(booking, 'resync', actor=actor, use_backoff=True, now=now)
    db.session.commit()

    notify_payment_outcome(booking, result)

    result.update({
        'booking_code': booking.booking_code,
        'booking_status': booking.status.value,
        'payment_status': booking.payment.status.value if booking.payment else None,
    })
    return result


def batch_resync(booking_codes, actor=None, now=None):
    """Resync several bookings; one failure does not stop the batch"""
    results = []
    for code in booking_codes:
        try:
            results.append(dict(resync_booking(code, actor=actor, now=now), success=True))
        except (GatewayError, NotFoundError) as e:
            db.session.rollback()
            results.append({'booking_code': code, 'success': False, 'error': e.message})
    return results


def find_stuck_payments(older_than_minutes=None, limit=100, now=None):
    """Pending payments that have not moved for a while"""
    now = now or datetime.utcnow()
    minutes = older_than_minutes or current_app.config['STUCK_PAYMENT_MINUTES']
    return Payment.query.filter(
        Payment.status == PaymentStatus.PENDING,
        Payment.created_at <= now - timedelta(minutes=minutes)
    ).order_by(Payment.created_at.asc()).limit(limit).all()


def cancel_payment(user, booking_code, now=None):
    """Abandon a pending payment: cancel at the gateway and release the booking"""
    now = now or datetime.utcnow()
    booking = Booking.query.filter_by(booking_code=booking_code).first()
    if not booking:
        raise NotFoundError('Booking', booking_code)
    if booking.user_id != user.id and user.role != UserRole.ADMIN:
        raise AuthorizationError('You can only cancel your own payments')
    if booking.status != BookingStatus.PENDING:
        raise ConflictError('Only pending bookings can be cancelled')

    payment = booking.payment
    if payment and payment.status in (PaymentStatus.PENDING, PaymentStatus.CHALLENGE):
        try:
            midtrans.cancel_transaction(payment.order_id)
        except GatewayError as e:
            logger.warning('[PAYMENT_CANCEL_GATEWAY_FAILED] order_id=%s error=%s', payment.order_id, e.message)

        previous = payment.status
        payment.status = PaymentStatus.CANCELLED
        payment.version = (payment.version or 1) + 1
        record_audit(payment, 'PAYMENT_CANCELLED', previous, PaymentStatus.CANCELLED, actor=user,
                     actor_type='admin' if user.role == UserRole.ADMIN else 'user')

    transition_booking(booking, BookingStatus.CANCELLED, 'Cancelled by user', now)
    db.session.commit()
    logger.info('[PAYMENT_CANCELLED] booking=%s', booking_code)
    return booking


def cleanup_idempotency_records(now=None):
    now = now or datetime.utcnow()
    deleted = IdempotencyRecord.query.filter(IdempotencyRecord.expires_at <= now) \
        .delete(synchronize_session=False)
    db.session.commit()
    return deleted
