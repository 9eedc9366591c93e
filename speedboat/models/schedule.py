from datetime import datetime
from speedboat import db
from enum import Enum


class ShipStatus(Enum):
    """Ship status enumeration"""
    ACTIVE = 'active'
    MAINTENANCE = 'maintenance'
    INACTIVE = 'inactive'


class RouteStatus(Enum):
    """Route status enumeration"""
    ACTIVE = 'active'
    INACTIVE = 'inactive'


class ScheduleStatus(Enum):
    """Schedule status enumeration"""
    SCHEDULED = 'scheduled'
    BOARDING = 'boarding'
    DEPARTED = 'departed'
    ARRIVED = 'arrived'
    CANCELLED = 'cancelled'


class Port(db.Model):
    """Harbour a route departs from or arrives at"""
    __tablename__ = 'ports'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    code = db.Column(db.String(10), unique=True, nullable=False, index=True)
    city = db.Column(db.String(100), nullable=False)
    province = db.Column(db.String(100), nullable=False)
    address = db.Column(db.String(255))
    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)
    image_url = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'code': self.code,
            'city': self.city,
            'province': self.province,
            'address': self.address,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'image_url': self.image_url,
        }

    def __repr__(self):
        return f'<Port {self.code}>'


class Ship(db.Model):
    """Speedboat in the fleet"""
    __tablename__ = 'ships'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    code = db.Column(db.String(20), unique=True, nullable=False, index=True)
    capacity = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text)
    facilities = db.Column(db.JSON, nullable=False, default=list)
    image_url = db.Column(db.String(500))
    status = db.Column(db.Enum(ShipStatus), nullable=False, default=ShipStatus.ACTIVE)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    schedules = db.relationship('Schedule', back_populates='ship', lazy='dynamic')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'code': self.code,
            'capacity': self.capacity,
            'description': self.description,
            'facilities': self.facilities or [],
            'image_url': self.image_url,
            'status': self.status.value,
        }

    def __repr__(self):
        return f'<Ship {self.code}>'


class Route(db.Model):
    """Sea route between two ports"""
    __tablename__ = 'routes'

    id = db.Column(db.Integer, primary_key=True)
    departure_port_id = db.Column(db.Integer, db.ForeignKey('ports.id'), nullable=False, index=True)
    arrival_port_id = db.Column(db.Integer, db.ForeignKey('ports.id'), nullable=False, index=True)
    distance = db.Column(db.Float)  # nautical miles
    estimated_duration = db.Column(db.Integer, nullable=False)  # minutes
    base_price = db.Column(db.Integer, nullable=False)  # IDR
    status = db.Column(db.Enum(RouteStatus), nullable=False, default=RouteStatus.ACTIVE)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    departure_port = db.relationship('Port', foreign_keys=[departure_port_id])
    arrival_port = db.relationship('Port', foreign_keys=[arrival_port_id])
    schedules = db.relationship('Schedule', back_populates='route', lazy='dynamic')

    __table_args__ = (
        db.UniqueConstraint('departure_port_id', 'arrival_port_id', name='unique_route_ports'),
    )

    def to_dict(self):
        hours = self.estimated_duration // 60
        minutes = self.estimated_duration % 60
        duration_str = f"{hours}h {minutes}m" if hours > 0 else f"{minutes}m"

        return {
            'id': self.id,
            'departure_port': self.departure_port.to_dict() if self.departure_port else None,
            'arrival_port': self.arrival_port.to_dict() if self.arrival_port else None,
            'distance': self.distance,
            'estimated_duration': self.estimated_duration,
            'duration': duration_str,
            'base_price': self.base_price,
            'status': self.status.value,
        }

    def __repr__(self):
        return f'<Route {self.departure_port_id} -> {self.arrival_port_id}>'


class Schedule(db.Model):
    """A departure of a ship on a route"""
    __tablename__ = 'schedules'

    id = db.Column(db.Integer, primary_key=True)
    route_id = db.Column(db.Integer, db.ForeignKey('routes.id'), nullable=False, index=True)
    ship_id = db.Column(db.Integer, db.ForeignKey('ships.id'), nullable=False, index=True)

    departure_time = db.Column(db.DateTime, nullable=False, index=True)
    arrival_time = db.Column(db.DateTime, nullable=False)

    price = db.Column(db.Integer, nullable=False)  # IDR per adult
    total_seats = db.Column(db.Integer, nullable=False)
    available_seats = db.Column(db.Integer, nullable=False)

    status = db.Column(db.Enum(ScheduleStatus), nullable=False, default=ScheduleStatus.SCHEDULED, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    route = db.relationship('Route', back_populates='schedules')
    ship = db.relationship('Ship', back_populates='schedules')
    bookings = db.relationship('Booking', back_populates='schedule', lazy='dynamic')

    __table_args__ = (
        db.CheckConstraint('available_seats >= 0', name='check_available_seats_non_negative'),
        db.CheckConstraint('available_seats <= total_seats', name='check_available_seats_capacity'),
    )

    @property
    def booked_seats(self):
        return self.total_seats - self.available_seats

    def to_dict(self, include_route=True):
        data = {
            'id': self.id,
            'route_id': self.route_id,
            'ship_id': self.ship_id,
            'departure_time': self.departure_time.isoformat(),
            'arrival_time': self.arrival_time.isoformat(),
            'price': self.price,
            'total_seats': self.total_seats,
            'available_seats': self.available_seats,
            'status': self.status.value,
        }
        if include_route:
            data['route'] = self.route.to_dict() if self.route else None
            data['ship'] = self.ship.to_dict() if self.ship else None
        return data

    def __repr__(self):
        return f'<Schedule {self.id} at {self.departure_time}>'
