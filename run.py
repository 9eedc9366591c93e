import os
from datetime import datetime, timedelta

import click

from speedboat import create_app, db

# Create application instance
app = create_app(os.getenv('FLASK_ENV', 'development'))

SEED_PORTS = [
    {'name': 'Pelabuhan Sanur', 'code': 'SNR', 'city': 'Denpasar', 'province': 'Bali',
     'latitude': -8.6783, 'longitude': 115.2631},
    {'name': 'Pelabuhan Padang Bai', 'code': 'PDB', 'city': 'Karangasem', 'province': 'Bali',
     'latitude': -8.5305, 'longitude': 115.5094},
    {'name': 'Pelabuhan Nusa Penida', 'code': 'NPD', 'city': 'Klungkung', 'province': 'Bali',
     'latitude': -8.6796, 'longitude': 115.5497},
    {'name': 'Pelabuhan Bangsal', 'code': 'BSL', 'city': 'Lombok Utara', 'province': 'Nusa Tenggara Barat',
     'latitude': -8.3533, 'longitude': 116.0896},
    {'name': 'Gili Trawangan', 'code': 'GLT', 'city': 'Lombok Utara', 'province': 'Nusa Tenggara Barat',
     'latitude': -8.3486, 'longitude': 116.0384},
]

SEED_SHIPS = [
    {'name': 'Ocean Star', 'code': 'OS-01', 'capacity': 40, 'facilities': ['life_jacket', 'ac', 'toilet']},
    {'name': 'Blue Marlin', 'code': 'BM-02', 'capacity': 30, 'facilities': ['life_jacket', 'ac']},
    {'name': 'Sea Hawk', 'code': 'SH-03', 'capacity': 50, 'facilities': ['life_jacket', 'ac', 'toilet', 'snack_bar']},
]

# (from, to, nautical miles, minutes, base price IDR)
SEED_ROUTES = [
    ('SNR', 'NPD', 12.0, 45, 150000),
    ('NPD', 'SNR', 12.0, 45, 150000),
    ('PDB', 'GLT', 38.0, 90, 350000),
    ('GLT', 'PDB', 38.0, 90, 350000),
    ('BSL', 'GLT', 2.5, 15, 50000),
    ('SNR', 'GLT', 45.0, 120, 450000),
]

SEED_DEPARTURE_HOURS = [8, 11, 14]


@app.shell_context_processor
def make_shell_context():
    """Add database instance and models to shell context"""
    from speedboat.models import User, Booking, Payment, Schedule, Ticket
    return {'db': db, 'User': User, 'Booking': Booking, 'Payment': Payment,
            'Schedule': Schedule, 'Ticket': Ticket}


@app.cli.command()
def init_db():
    """Initialize the database"""
    db.create_all()
    print("Database initialized successfully!")


@app.cli.command()
def create_admin():
    """Create an admin user"""
    from speedboat.models.user import User, UserRole
    from speedboat.utils.validators import validate_email, validate_password

    email = input("Enter admin email: ").strip().lower()
    name = input("Enter admin name: ").strip()
    password = input("Enter admin password: ")

    if not validate_email(email):
        print("Error: Invalid email format!")
        return

    is_valid, message = validate_password(password)
    if not is_valid:
        print(f"Error: {message}")
        return

    # Check if user exists
    if User.query.filter_by(email=email).first():
        print("Error: Email already exists!")
        return

    admin = User(
        email=email,
        name=name or 'Administrator',
        role=UserRole.ADMIN,
        email_verified_at=datetime.utcnow()
    )
    admin.set_password(password)

    db.session.add(admin)
    db.session.commit()

    print(f"Admin user '{email}' created successfully!")


@app.cli.command()
def cleanup_bookings():
    """Expire pending bookings whose payment window has passed"""
    from speedboat.services.booking_service import cleanup_expired_bookings
    from speedboat.services.payment_service import cleanup_idempotency_records

    result = cleanup_expired_bookings()
    deleted = cleanup_idempotency_records()
    print(f"Expired {result['expired']} booking(s), {result['failed']} failed.")
    for error in result['errors']:
        print(f"  {error['booking_code']}: {error['error']}")
    if result['under_review']:
        print(f"Left {len(result['under_review'])} booking(s) with payments under fraud review.")
    print(f"Removed {deleted} stale idempotency record(s).")


@app.cli.command()
@click.option('--limit', default=50, type=int)
def recover_tickets(limit):
    """Issue tickets for confirmed bookings that have none"""
    from speedboat.services.ticket_service import recover_missing_tickets

    result = recover_missing_tickets(limit=limit)
    print(f"Recovered {result['recovered']} of {result['processed']} booking(s), {result['failed']} failed.")
    for error in result['errors']:
        print(f"  {error['booking_code']}: {error['error']}")


@app.cli.command()
@click.option('--older-than', default=None, type=int, help='Minutes a payment must have been pending')
@click.option('--limit', default=100, type=int)
def resync_payments(older_than, limit):
    """Reconcile stuck pending payments with Midtrans"""
    from speedboat.services.payment_service import find_stuck_payments, batch_resync

    codes = [p.booking.booking_code for p in find_stuck_payments(older_than_minutes=older_than, limit=limit)]
    if not codes:
        print("No stuck payments.")
        return

    for result in batch_resync(codes):
        if result['success']:
            print(f"{result['booking_code']}: booking={result['booking_status']} "
                  f"payment={result['payment_status']}")
        else:
            print(f"{result['booking_code']}: FAILED {result['error']}")


@app.cli.command()
@click.option('--days', default=7, type=int, help='Days of schedules to generate')
def seed(days):
    """Load sample ports, ships, routes and schedules"""
    from speedboat.models.schedule import Port, Ship, Route, Schedule, ScheduleStatus

    ports = {}
    for data in SEED_PORTS:
        port = Port.query.filter_by(code=data['code']).first()
        if not port:
            port = Port(**data)
            db.session.add(port)
        ports[data['code']] = port

    ships = []
    for data in SEED_SHIPS:
        ship = Ship.query.filter_by(code=data['code']).first()
        if not ship:
            ship = Ship(**data)
            db.session.add(ship)
        ships.append(ship)
    db.session.flush()

    routes = []
    for origin, destination, distance, duration, price in SEED_ROUTES:
        route = Route.query.filter_by(departure_port_id=ports[origin].id,
                                      arrival_port_id=ports[destination].id).first()
        if not route:
            route = Route(departure_port_id=ports[origin].id, arrival_port_id=ports[destination].id,
                          distance=distance, estimated_duration=duration, base_price=price)
            db.session.add(route)
        routes.append(route)
    db.session.flush()

    created = 0
    start = datetime.utcnow().replace(minute=0, second=0, microsecond=0)
    for day in range(1, days + 1):
        for index, route in enumerate(routes):
            ship = ships[index % len(ships)]
            for hour in SEED_DEPARTURE_HOURS:
                # Bali/Lombok are UTC+8
                departure = (start + timedelta(days=day)).replace(hour=hour) - timedelta(hours=8)
                if Schedule.query.filter_by(route_id=route.id, departure_time=departure).first():
                    continue
                db.session.add(Schedule(
                    route_id=route.id,
                    ship_id=ship.id,
                    departure_time=departure,
                    arrival_time=departure + timedelta(minutes=route.estimated_duration),
                    price=route.base_price,
                    total_seats=ship.capacity,
                    available_seats=ship.capacity,
                    status=ScheduleStatus.SCHEDULED
                ))
                created += 1

    db.session.commit()
    print(f"[OK] {len(ports)} ports, {len(ships)} ships, {len(routes)} routes, {created} new schedules")


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=5000, debug=True)
