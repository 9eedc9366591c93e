from datetime import datetime
from speedboat import db
from enum import Enum


class TicketStatus(Enum):
    """Ticket status enumeration"""
    VALID = 'valid'
    USED = 'used'
    CANCELLED = 'cancelled'


class Ticket(db.Model):
    """Boarding ticket issued to one passenger of a confirmed booking"""
    __tablename__ = 'tickets'

    id = db.Column(db.Integer, primary_key=True)
    ticket_code = db.Column(db.String(30), unique=True, nullable=False, index=True)
    booking_id = db.Column(db.Integer, db.ForeignKey('bookings.id'), nullable=False, index=True)
    passenger_id = db.Column(db.Integer, db.ForeignKey('passengers.id'), unique=True, nullable=False)
    qr_data = db.Column(db.Text, nullable=False)
    status = db.Column(db.Enum(TicketStatus), nullable=False, default=TicketStatus.VALID)

    checked_in_at = db.Column(db.DateTime)
    checked_in_by = db.Column(db.Integer, db.ForeignKey('users.id'))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    booking = db.relationship('Booking', back_populates='tickets')
    passenger = db.relationship('Passenger', back_populates='ticket')
    checked_in_by_user = db.relationship('User', foreign_keys=[checked_in_by])

    def to_dict(self, include_qr=True):
        """Convert ticket to dictionary"""
        data = {
            'id': self.id,
            'ticket_code': self.ticket_code,
            'booking_id': self.booking_id,
            'passenger_id': self.passenger_id,
            'passenger_name': self.passenger.name if self.passenger else None,
            'seat_number': self.passenger.seat_number if self.passenger else None,
            'status': self.status.value,
            'checked_in_at': self.checked_in_at.isoformat() if self.checked_in_at else None,
            'checked_in_by': self.checked_in_by,
        }
        if include_qr:
            data['qr_data'] = self.qr_data
        return data

    def __repr__(self):
        return f'<Ticket {self.ticket_code}>'
