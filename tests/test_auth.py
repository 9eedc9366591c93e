import pytest
from datetime import datetime, timedelta
from speedboat import db
from speedboat.models.user import User, UserRole, UserToken, TokenPurpose
from speedboat.services.tokens import issue_email_verification, issue_password_reset, consume_token
from speedboat.utils.errors import ValidationError


def _register(client, **overrides):
    payload = {
        'email': 'newuser@test.com',
        'password': 'TestPass123',
        'name': 'New User',
        'phone': '081234567890'
    }
    payload.update(overrides)
    return client.post('/api/auth/register', json=payload)


class TestRegister:
    def test_successful_register(self, client):
        response = _register(client)

        assert response.status_code == 201
        data = response.get_json()
        assert data['user']['email'] == 'newuser@test.com'
        assert data['user']['role'] == 'user'
        assert data['user']['email_verified'] is False
        assert 'access_token' not in data

        user = User.query.filter_by(email='newuser@test.com').one()
        assert user.tokens.filter_by(purpose=TokenPurpose.EMAIL_VERIFICATION).count() == 1

    def test_register_cannot_choose_role(self, client):
        _register(client, role='admin')

        assert User.query.filter_by(email='newuser@test.com').one().role == UserRole.USER

    def test_register_missing_fields(self, client):
        response = client.post('/api/auth/register', json={'email': 'test@test.com'})

        assert response.status_code == 400
        assert response.get_json()['success'] is False

    def test_register_invalid_email(self, client):
        response = _register(client, email='invalid-email')

        assert response.status_code == 400

    def test_register_weak_password(self, client):
        response = _register(client, password='weak')

        assert response.status_code == 400
        assert response.get_json()['details']['field'] == 'password'

    def test_register_invalid_phone(self, client):
        response = _register(client, phone='12345')

        assert response.status_code == 400

    def test_register_duplicate_email(self, client, sample_customer):
        response = _register(client, email='customer@test.com')

        assert response.status_code == 400


class TestLogin:
    def test_successful_login(self, client, sample_customer):
        response = client.post('/api/auth/login', json={'email': 'customer@test.com', 'password': 'TestPass123'})

        assert response.status_code == 200
        data = response.get_json()
        assert 'access_token' in data
        assert 'refresh_token' in data
        assert sample_customer.last_login_at is not None

    def test_login_email_is_case_insensitive(self, client, sample_customer):
        response = client.post('/api/auth/login', json={'email': 'Customer@Test.com', 'password': 'TestPass123'})

        assert response.status_code == 200

    def test_login_wrong_password(self, client, sample_customer):
        response = client.post('/api/auth/login', json={'email': 'customer@test.com', 'password': 'WrongPass1'})

        assert response.status_code == 401
        assert sample_customer.failed_login_attempts == 1

    def test_login_unknown_email(self, client):
        response = client.post('/api/auth/login', json={'email': 'ghost@test.com', 'password': 'TestPass123'})

        assert response.status_code == 401

    def test_login_unverified_email(self, client):
        _register(client)

        response = client.post('/api/auth/login', json={'email': 'newuser@test.com', 'password': 'TestPass123'})

        assert response.status_code == 403
        assert 'verify' in response.get_json()['error']

    def test_login_inactive_account(self, client, sample_customer):
        sample_customer.is_active = False
        db.session.commit()

        response = client.post('/api/auth/login', json={'email': 'customer@test.com', 'password': 'TestPass123'})

        assert response.status_code == 403

    def test_lockout_after_repeated_failures(self, client, sample_customer):
        for _ in range(4):
            response = client.post('/api/auth/login',
                                   json={'email': 'customer@test.com', 'password': 'WrongPass1'})
            assert response.status_code == 401

        response = client.post('/api/auth/login', json={'email': 'customer@test.com', 'password': 'WrongPass1'})
        assert response.status_code == 423
        assert 'locked_until' in response.get_json()['details']

        # Even the right password is refused while locked
        response = client.post('/api/auth/login', json={'email': 'customer@test.com', 'password': 'TestPass123'})
        assert response.status_code == 423

    def test_lockout_sends_security_mail(self, client, sample_customer, sent_mail):
        for _ in range(6):
            client.post('/api/auth/login', json={'email': 'customer@test.com', 'password': 'WrongPass1'})

        assert [m['subject'] for m in sent_mail] == ['Security alert: account locked']
        assert sent_mail[0]['to'] == 'customer@test.com'

    def test_lock_expires(self, client, sample_customer):
        sample_customer.locked_until = datetime.utcnow() - timedelta(seconds=1)
        db.session.commit()

        response = client.post('/api/auth/login', json={'email': 'customer@test.com', 'password': 'TestPass123'})

        assert response.status_code == 200
        assert sample_customer.locked_until is None


class TestTokens:
    def test_refresh_token(self, client, customer_refresh_token, auth_headers):
        response = client.post('/api/auth/refresh', headers=auth_headers(customer_refresh_token))

        assert response.status_code == 200
        assert 'access_token' in response.get_json()

    def test_access_token_cannot_refresh(self, client, customer_token, auth_headers):
        response = client.post('/api/auth/refresh', headers=auth_headers(customer_token))

        assert response.status_code == 401

    def test_get_me(self, client, customer_token, auth_headers):
        response = client.get('/api/auth/me', headers=auth_headers(customer_token))

        assert response.status_code == 200
        assert response.get_json()['user']['email'] == 'customer@test.com'

    def test_get_me_without_token(self, client):
        response = client.get('/api/auth/me')

        assert response.status_code == 401
        assert response.get_json()['success'] is False

    def test_invalid_token(self, client, auth_headers):
        response = client.get('/api/auth/me', headers=auth_headers('not-a-jwt'))

        assert response.status_code == 401
        data = response.get_json()
        assert data['error'] == 'Invalid token'
        assert data['message'] == 'The token is malformed or its signature is invalid.'

    def test_logout(self, client, customer_token, auth_headers):
        response = client.post('/api/auth/logout', headers=auth_headers(customer_token))

        assert response.status_code == 200


class TestEmailVerification:
    def test_verify_email(self, client):
        _register(client)
        user = User.query.filter_by(email='newuser@test.com').one()
        raw_token = issue_email_verification(user, 24)
        db.session.commit()

        response = client.post('/api/auth/verify-email', json={'token': raw_token})

        assert response.status_code == 200
        assert user.email_verified is True

        login = client.post('/api/auth/login', json={'email': 'newuser@test.com', 'password': 'TestPass123'})
        assert login.status_code == 200

    def test_token_is_single_use(self, client, sample_customer):
        raw_token = issue_email_verification(sample_customer, 24)
        db.session.commit()

        client.post('/api/auth/verify-email', json={'token': raw_token})
        response = client.post('/api/auth/verify-email', json={'token': raw_token})

        assert response.status_code == 400
        assert 'already been used' in response.get_json()['error']

    def test_expired_token(self, app, sample_customer):
        raw_token = issue_email_verification(sample_customer, 24, now=datetime.utcnow() - timedelta(days=2))
        db.session.commit()

        with pytest.raises(ValidationError, match='expired'):
            consume_token(raw_token, TokenPurpose.EMAIL_VERIFICATION)

    def test_new_token_invalidates_previous(self, app, sample_customer):
        first = issue_email_verification(sample_customer, 24)
        second = issue_email_verification(sample_customer, 24)
        db.session.commit()

        with pytest.raises(ValidationError):
            consume_token(first, TokenPurpose.EMAIL_VERIFICATION)
        assert consume_token(second, TokenPurpose.EMAIL_VERIFICATION) is sample_customer

    def test_token_purpose_must_match(self, app, sample_customer):
        raw_token = issue_password_reset(sample_customer, 1)
        db.session.commit()

        with pytest.raises(ValidationError, match='Invalid token'):
            consume_token(raw_token, TokenPurpose.EMAIL_VERIFICATION)

    def test_only_hash_is_stored(self, app, sample_customer):
        raw_token = issue_email_verification(sample_customer, 24)
        db.session.commit()

        assert UserToken.query.filter_by(token_hash=raw_token).first() is None

    def test_resend_verification_does_not_leak(self, client):
        response = client.post('/api/auth/resend-verification', json={'email': 'ghost@test.com'})

        assert response.status_code == 200


class TestPasswordReset:
    def test_forgot_password_creates_token(self, client, sample_customer):
        response = client.post('/api/auth/forgot-password', json={'email': 'customer@test.com'})

        assert response.status_code == 200
        assert sample_customer.tokens.filter_by(purpose=TokenPurpose.PASSWORD_RESET).count() == 1

    def test_forgot_password_unknown_email(self, client):
        response = client.post('/api/auth/forgot-password', json={'email': 'ghost@test.com'})

        assert response.status_code == 200
        assert UserToken.query.count() == 0

    def test_reset_password(self, client, sample_customer):
        raw_token = issue_password_reset(sample_customer, 1)
        sample_customer.locked_until = datetime.utcnow() + timedelta(minutes=10)
        db.session.commit()

        response = client.post('/api/auth/reset-password', json={'token': raw_token, 'password': 'BrandNew123'})

        assert response.status_code == 200
        assert sample_customer.check_password('BrandNew123')
        assert sample_customer.locked_until is None

    def test_reset_password_weak(self, client, sample_customer):
        raw_token = issue_password_reset(sample_customer, 1)
        db.session.commit()

        response = client.post('/api/auth/reset-password', json={'token': raw_token, 'password': 'short'})

        assert response.status_code == 400
        assert sample_customer.check_password('TestPass123')


class TestGoogleLogin:
    @pytest.fixture
    def google_identity(self, monkeypatch):
        identity = {
            'sub': 'google-123',
            'email': 'traveller@gmail.com',
            'email_verified': True,
            'name': 'Google Traveller',
            'picture': 'https://example.com/p.png'
        }

        def verify(token, request, audience):
            if token != 'good-token':
                raise ValueError('Wrong number of segments')
            return identity

        monkeypatch.setattr('speedboat.routes.auth.id_token.verify_oauth2_token', verify)
        return identity

    def test_google_creates_user(self, client, google_identity):
        response = client.post('/api/auth/google', json={'credential': 'good-token'})

        assert response.status_code == 201
        data = response.get_json()
        assert data['user']['oauth_provider'] == 'google'
        assert data['user']['email_verified'] is True
        assert 'access_token' in data

    def test_google_links_existing_account(self, client, google_identity, sample_customer):
        google_identity['email'] = 'customer@test.com'

        response = client.post('/api/auth/google', json={'credential': 'good-token'})

        assert response.status_code == 200
        assert sample_customer.oauth_id == 'google-123'
        assert User.query.count() == 1

    def test_google_invalid_token(self, client, google_identity):
        response = client.post('/api/auth/google', json={'credential': 'bad-token'})

        assert response.status_code == 401

    def test_google_unverified_email(self, client, google_identity):
        google_identity['email_verified'] = False

        response = client.post('/api/auth/google', json={'credential': 'good-token'})

        assert response.status_code == 400


class TestProfile:
    def test_update_profile(self, client, customer_token, auth_headers, sample_customer):
        response = client.put('/api/users/me', headers=auth_headers(customer_token),
                              json={'name': 'Renamed Customer', 'phone': '+6281234567890'})

        assert response.status_code == 200
        assert sample_customer.name == 'Renamed Customer'

    def test_change_password(self, client, customer_token, auth_headers, sample_customer):
        response = client.put('/api/users/me/password', headers=auth_headers(customer_token),
                              json={'current_password': 'TestPass123', 'new_password': 'Another123'})

        assert response.status_code == 200
        assert sample_customer.check_password('Another123')

    def test_change_password_wrong_current(self, client, customer_token, auth_headers):
        response = client.put('/api/users/me/password', headers=auth_headers(customer_token),
                              json={'current_password': 'Nope12345', 'new_password': 'Another123'})

        assert response.status_code in (400, 401)
