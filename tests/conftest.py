import pytest
from datetime import datetime, timedelta
from flask_jwt_extended import create_access_token, create_refresh_token
from speedboat import create_app, db, limiter
from speedboat.models.user import User, UserRole
from speedboat.models.schedule import Port, Ship, Route, Schedule, ScheduleStatus
from speedboat.services.booking_service import create_booking, confirm_booking
from speedboat.services.gateway import midtrans, compute_signature


@pytest.fixture(scope='function')
def app():
    app = create_app('testing')

    test_config = {
        'TESTING': True,
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'JWT_SECRET_KEY': 'test-secret-key',
        'SECRET_KEY': 'test-secret-key',
        'JWT_ACCESS_TOKEN_EXPIRES': False,
        'MAIL_ENABLED': False,
    }

    app.config.update(test_config)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def limited_client():
    """Client for an app with rate limiting switched on and tight limits"""
    app = create_app('testing', overrides={
        'RATELIMIT_ENABLED': True,
        'RATELIMIT_STORAGE_URI': 'memory://',
        'LOGIN_RATE_LIMIT': '2 per minute',
        'REGISTER_RATE_LIMIT': '1 per minute',
        'FORGOT_PASSWORD_RATE_LIMIT': '1 per minute',
        'PAYMENT_CREATE_RATE_LIMIT': '1 per minute',
    })

    with app.app_context():
        db.create_all()
        limiter.reset()
        yield app.test_client()
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    return app.test_cli_runner()


def _make_user(email, name, password, role):
    user = User(email=email, name=name, role=role, email_verified_at=datetime.utcnow())
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def sample_customer(app):
    return _make_user('customer@test.com', 'Test Customer', 'TestPass123', UserRole.USER)


@pytest.fixture
def other_customer(app):
    return _make_user('other@test.com', 'Other Customer', 'TestPass123', UserRole.USER)


@pytest.fixture
def sample_operator(app):
    return _make_user('operator@test.com', 'Dock Operator', 'OperPass123', UserRole.OPERATOR)


@pytest.fixture
def sample_admin(app):
    return _make_user('admin@test.com', 'Admin User', 'AdminPass123', UserRole.ADMIN)


@pytest.fixture
def customer_token(app, sample_customer):
    return create_access_token(identity=str(sample_customer.id))


@pytest.fixture
def other_token(app, other_customer):
    return create_access_token(identity=str(other_customer.id))


@pytest.fixture
def operator_token(app, sample_operator):
    return create_access_token(identity=str(sample_operator.id))


@pytest.fixture
def admin_token(app, sample_admin):
    return create_access_token(identity=str(sample_admin.id))


@pytest.fixture
def customer_refresh_token(app, sample_customer):
    return create_refresh_token(identity=str(sample_customer.id))


@pytest.fixture
def auth_headers():
    def build(token):
        return {'Authorization': f'Bearer {token}'}
    return build


@pytest.fixture
def sample_ports(app):
    sanur = Port(name='Pelabuhan Sanur', code='SNR', city='Denpasar', province='Bali')
    penida = Port(name='Pelabuhan Nusa Penida', code='NPD', city='Klungkung', province='Bali')
    db.session.add_all([sanur, penida])
    db.session.commit()
    return sanur, penida


@pytest.fixture
def sample_ship(app):
    ship = Ship(name='Ocean Star', code='OS-01', capacity=20, facilities=['life_jacket', 'ac'])
    db.session.add(ship)
    db.session.commit()
    return ship


@pytest.fixture
def sample_route(app, sample_ports):
    sanur, penida = sample_ports
    route = Route(departure_port_id=sanur.id, arrival_port_id=penida.id,
                  distance=12.0, estimated_duration=45, base_price=100000)
    db.session.add(route)
    db.session.commit()
    return route


def _make_schedule(route, ship, departure_time, seats=20):
    schedule = Schedule(
        route_id=route.id,
        ship_id=ship.id,
        departure_time=departure_time,
        arrival_time=departure_time + timedelta(minutes=route.estimated_duration),
        price=100000,
        total_seats=seats,
        available_seats=seats,
        status=ScheduleStatus.SCHEDULED
    )
    db.session.add(schedule)
    db.session.commit()
    return schedule


@pytest.fixture
def sample_schedule(app, sample_route, sample_ship):
    return _make_schedule(sample_route, sample_ship, datetime.utcnow() + timedelta(days=2))


@pytest.fixture
def boarding_schedule(app, sample_route, sample_ship):
    """Departs within the check-in window"""
    return _make_schedule(sample_route, sample_ship, datetime.utcnow() + timedelta(hours=1))


@pytest.fixture
def passenger_payload():
    return [
        {
            'name': 'Budi Santoso',
            'identity_type': 'national_id',
            'identity_number': '3171234567890001',
            'phone': '081234567890',
            'category': 'adult'
        },
        {
            'name': 'Siti Santoso',
            'identity_type': 'national_id',
            'identity_number': '3171234567890002',
            'category': 'child'
        }
    ]


@pytest.fixture
def pending_booking(app, sample_customer, sample_schedule, passenger_payload):
    return create_booking(sample_customer, sample_schedule.id, passenger_payload)


@pytest.fixture
def confirmed_booking(app, pending_booking):
    confirm_booking(pending_booking)
    db.session.commit()
    return pending_booking


@pytest.fixture
def boarding_booking(app, sample_customer, boarding_schedule, passenger_payload):
    booking = create_booking(sample_customer, boarding_schedule.id, passenger_payload)
    confirm_booking(booking)
    db.session.commit()
    return booking


class FakeMidtrans:
    """Records gateway calls and answers with canned responses"""

    def __init__(self):
        self.created = []
        self.cancelled = []
        self.status_response = None
        self.counter = 0

    def create_transaction(self, order_id, gross_amount, customer, items, expiry_minutes, finish_url=None):
        self.counter += 1
        self.created.append({
            'order_id': order_id,
            'gross_amount': gross_amount,
            'items': items,
            'expiry_minutes': expiry_minutes,
        })
        return {
            'token': f'snap-token-{self.counter}',
            'redirect_url': f'https://app.sandbox.midtrans.com/snap/v2/vtweb/snap-token-{self.counter}'
        }

    def get_status(self, order_id):
        return self.status_response

    def cancel_transaction(self, order_id):
        self.cancelled.append(order_id)
        return {'status_code': '200', 'transaction_status': 'cancel'}


@pytest.fixture
def mock_midtrans(monkeypatch):
    fake = FakeMidtrans()
    monkeypatch.setattr(midtrans, 'create_transaction', fake.create_transaction)
    monkeypatch.setattr(midtrans, 'get_status', fake.get_status)
    monkeypatch.setattr(midtrans, 'cancel_transaction', fake.cancel_transaction)
    return fake


@pytest.fixture
def make_notification(app):
    """Build a correctly signed Midtrans notification for a payment"""
    def build(payment, transaction_status, fraud_status=None, transaction_id='tx-0001',
              status_code='200', signed=True, **extra):
        gross_amount = f'{payment.amount}.00'
        payload = {
            'order_id': payment.order_id,
            'status_code': status_code,
            'gross_amount': gross_amount,
            'transaction_status': transaction_status,
            'transaction_id': transaction_id,
            'transaction_time': '2026-01-10 10:00:00',
            'payment_type': 'bank_transfer',
            'va_numbers': [{'bank': 'bca', 'va_number': '12345678901'}],
            'signature_key': compute_signature(payment.order_id, status_code, gross_amount,
                                               'test-server-key' if signed else 'wrong-key'),
        }
        if fraud_status:
            payload['fraud_status'] = fraud_status
        payload.update(extra)
        return payload
    return build


@pytest.fixture
def sent_mail(monkeypatch):
    """Capture outgoing email instead of calling the provider"""
    outbox = []

    def capture(to, subject, html):
        outbox.append({'to': to, 'subject': subject, 'html': html})
        return True

    monkeypatch.setattr('speedboat.services.mailer.send_email', capture)
    return outbox
