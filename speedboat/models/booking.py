from datetime import datetime
from speedboat import db
from enum import Enum


class BookingStatus(Enum):
    """Booking status enumeration"""
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    CANCELLED = 'cancelled'
    COMPLETED = 'completed'
    REFUNDED = 'refunded'
    EXPIRED = 'expired'


class IdentityType(Enum):
    """Identity document presented by a passenger"""
    NATIONAL_ID = 'national_id'
    PASSPORT = 'passport'
    DRIVERS_LICENSE = 'drivers_license'


class PassengerCategory(Enum):
    """Fare category of a passenger"""
    ADULT = 'adult'
    ELDERLY = 'elderly'
    CHILD = 'child'
    INFANT = 'infant'


# Fraction of the schedule price charged per category
CATEGORY_MULTIPLIERS = {
    PassengerCategory.ADULT: 1.0,
    PassengerCategory.ELDERLY: 0.8,
    PassengerCategory.CHILD: 0.5,
    PassengerCategory.INFANT: 0.0,
}


class Booking(db.Model):
    """Booking model for schedule reservations"""
    __tablename__ = 'bookings'

    id = db.Column(db.Integer, primary_key=True)
    booking_code = db.Column(db.String(20), unique=True, nullable=False, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    schedule_id = db.Column(db.Integer, db.ForeignKey('schedules.id'), nullable=False, index=True)

    total_passengers = db.Column(db.Integer, nullable=False)
    total_amount = db.Column(db.Integer, nullable=False)  # IDR

    status = db.Column(db.Enum(BookingStatus), nullable=False, default=BookingStatus.PENDING, index=True)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    confirmed_at = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)
    cancellation_reason = db.Column(db.String(255))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = db.relationship('User', backref=db.backref('bookings', lazy='dynamic'))
    schedule = db.relationship('Schedule', back_populates='bookings')
    passengers = db.relationship('Passenger', back_populates='booking', cascade='all, delete-orphan',
                                 order_by='Passenger.id')
    payment = db.relationship('Payment', back_populates='booking', uselist=False,
                              cascade='all, delete-orphan')
    tickets = db.relationship('Ticket', back_populates='booking', cascade='all, delete-orphan',
                              order_by='Ticket.id')

    def is_expired(self, now=None):
        now = now or datetime.utcnow()
        return self.status == BookingStatus.PENDING and self.expires_at <= now

    def to_dict(self, include_details=True):
        """Convert booking to dictionary"""
        data = {
            'id': self.id,
            'booking_code': self.booking_code,
            'user_id': self.user_id,
            'schedule_id': self.schedule_id,
            'total_passengers': self.total_passengers,
            'total_amount': self.total_amount,
            'status': self.status.value,
            'expires_at': self.expires_at.isoformat(),
            'confirmed_at': self.confirmed_at.isoformat() if self.confirmed_at else None,
            'cancelled_at': self.cancelled_at.isoformat() if self.cancelled_at else None,
            'cancellation_reason': self.cancellation_reason,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

        if include_details:
            data['schedule'] = self.schedule.to_dict() if self.schedule else None
            data['passengers'] = [p.to_dict() for p in self.passengers]
            data['payment'] = self.payment.to_dict() if self.payment else None
            data['tickets'] = [t.to_dict() for t in self.tickets]

        return data

    def __repr__(self):
        return f'<Booking {self.booking_code}>'


class Passenger(db.Model):
    """Traveller on a booking"""
    __tablename__ = 'passengers'

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    identity_type = db.Column(db.Enum(IdentityType), nullable=False)
    identity_number = db.Column(db.String(30), nullable=False)
    phone = db.Column(db.String(20))
    category = db.Column(db.Enum(PassengerCategory), nullable=False, default=PassengerCategory.ADULT)
    price = db.Column(db.Integer, nullable=False, default=0)
    seat_number = db.Column(db.String(10))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    booking = db.relationship('Booking', back_populates='passengers')
    ticket = db.relationship('Ticket', back_populates='passenger', uselist=False)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'identity_type': self.identity_type.value,
            'identity_number': self.identity_number,
            'phone': self.phone,
            'category': self.category.value,
            'price': self.price,
            'seat_number': self.seat_number,
        }

    def __repr__(self):
        return f'<Passenger {self.name} on booking {self.booking_id}>'
