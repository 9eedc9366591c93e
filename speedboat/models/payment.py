from datetime import datetime
from speedboat import db
from enum import Enum


class PaymentStatus(Enum):
    """Payment status enumeration"""
    PENDING = 'pending'
    SUCCESS = 'success'
    FAILED = 'failed'
    EXPIRED = 'expired'
    REFUNDED = 'refunded'
    CANCELLED = 'cancelled'
    CHALLENGE = 'challenge'
    DENY = 'deny'


class Payment(db.Model):
    """Gateway payment attempt for a booking"""
    __tablename__ = 'payments'

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'), unique=True, nullable=False)
    order_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    amount = db.Column(db.Integer, nullable=False)  # IDR
    status = db.Column(db.Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING, index=True)

    # Snap session
    token = db.Column(db.String(255))
    redirect_url = db.Column(db.String(500))

    # Gateway transaction
    transaction_id = db.Column(db.String(100))
    transaction_time = db.Column(db.DateTime)
    payment_type = db.Column(db.String(50))
    payment_channel = db.Column(db.String(50))
    va_number = db.Column(db.String(50))
    bank = db.Column(db.String(50))
    raw_response = db.Column(db.JSON)

    paid_at = db.Column(db.DateTime)
    expired_at = db.Column(db.DateTime)
    refunded_at = db.Column(db.DateTime)
    refund_amount = db.Column(db.Integer)
    refund_reason = db.Column(db.String(255))

    # Webhook bookkeeping
    processed_webhooks = db.Column(db.JSON, nullable=False, default=list)
    last_webhook_at = db.Column(db.DateTime)
    webhook_count = db.Column(db.Integer, nullable=False, default=0)
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    booking = db.relationship('Booking', back_populates='payment')
    audit_logs = db.relationship('PaymentAuditLog', back_populates='payment', lazy='dynamic',
                                 cascade='all, delete-orphan')

    def has_processed(self, webhook_key):
        return webhook_key in (self.processed_webhooks or [])

    def mark_processed(self, webhook_key):
        # Reassign so the JSON column is flagged dirty
        self.processed_webhooks = list(self.processed_webhooks or []) + [webhook_key]

    def to_dict(self):
        return {
            'id': self.id,
            'booking_id': self.booking_id,
            'order_id': self.order_id,
            'amount': self.amount,
            'status': self.status.value,
            'token': self.token,
            'redirect_url': self.redirect_url,
            'transaction_id': self.transaction_id,
            'payment_type': self.payment_type,
            'va_number': self.va_number,
            'bank': self.bank,
            'paid_at': self.paid_at.isoformat() if self.paid_at else None,
            'expired_at': self.expired_at.isoformat() if self.expired_at else None,
            'refunded_at': self.refunded_at.isoformat() if self.refunded_at else None,
            'refund_amount': self.refund_amount,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Payment {self.order_id} {self.status.value}>'


class PaymentAuditLog(db.Model):
    """Append-only record of every payment state change"""
    __tablename__ = 'payment_audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey('payments.id'), nullable=False, index=True)
    action = db.Column(db.String(50), nullable=False)
    previous_status = db.Column(db.String(20))
    new_status = db.Column(db.String(20))
    webhook_payload = db.Column(db.JSON)
    idempotency_key = db.Column(db.String(255))
    actor_id = db.Column(db.Integer)
    actor_type = db.Column(db.String(20), nullable=False, default='system')  # user, admin, system, webhook
    details = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    payment = db.relationship('Payment', back_populates='audit_logs')

    def to_dict(self):
        return {
            'id': self.id,
            'payment_id': self.payment_id,
            'action': self.action,
            'previous_status': self.previous_status,
            'new_status': self.new_status,
            'actor_id': self.actor_id,
            'actor_type': self.actor_type,
            'details': self.details,
            'created_at': self.created_at.isoformat(),
        }


class IdempotencyRecord(db.Model):
    """Cached result of a payment creation request"""
    __tablename__ = 'idempotency_records'

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(255), unique=True, nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    response = db.Column(db.JSON, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class WebhookAudit(db.Model):
    """Every inbound gateway notification, valid or not"""
    __tablename__ = 'webhook_audits'

    id = db.Column(db.Integer, primary_key=True)
    source = db.Column(db.String(30), nullable=False, default='midtrans')
    order_id = db.Column(db.String(64), index=True)
    event_type = db.Column(db.String(50))
    payload = db.Column(db.JSON)
    signature_valid = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(20), nullable=False)  # processed, skipped, rejected, error
    error_message = db.Column(db.String(500))
    processing_ms = db.Column(db.Integer)
    remote_addr = db.Column(db.String(64))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'source': self.source,
            'order_id': self.order_id,
            'event_type': self.event_type,
            'signature_valid': self.signature_valid,
            'status': self.status,
            'error_message': self.error_message,
            'processing_ms': self.processing_ms,
            'remote_addr': self.remote_addr,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
