from datetime import datetime
from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import (
    create_access_token, create_refresh_token,
    jwt_required, get_jwt_identity
)
from google.oauth2 import id_token
from google.auth.transport import requests as google_requests
from speedboat import db, limiter
from speedboat.models.user import User, UserRole, TokenPurpose
from speedboat.services.tokens import issue_email_verification, issue_password_reset, consume_token
from speedboat.services.mailer import send_verification_email, send_password_reset_email, send_account_locked
from speedboat.utils.errors import (ValidationError, AuthenticationError, AuthorizationError,
                                    AccountLockedError, NotFoundError)
from speedboat.utils.validators import (
    validate_email, validate_password, validate_name,
    validate_phone_number, validate_required_fields
)

auth_bp = Blueprint('auth', __name__)


def _token_response(user, message, status=200):
    return jsonify({
        'success': True,
        'message': message,
        'user': user.to_dict(),
        'access_token': create_access_token(identity=str(user.id)),
        'refresh_token': create_refresh_token(identity=str(user.id))
    }), status


@auth_bp.route('/register', methods=['POST'])
@limiter.limit(lambda: current_app.config['REGISTER_RATE_LIMIT'])
def register():
    """
    User registration endpoint
    ---
    Required fields: email, password, name
    Optional fields: phone
    New accounts are customers and must verify their email before logging in.
    """
    data = request.get_json(silent=True) or {}

    is_valid, message = validate_required_fields(data, ['email', 'password', 'name'])
    if not is_valid:
        raise ValidationError(message)

    email = data['email'].lower().strip()
    password = data['password']
    name = data['name'].strip()
    phone = (data.get('phone') or '').strip() or None

    if not validate_email(email):
        raise ValidationError('Invalid email format', field='email')

    is_valid, message = validate_name(name)
    if not is_valid:
        raise ValidationError(message, field='name')

    is_valid, message = validate_password(password)
    if not is_valid:
        raise ValidationError(message, field='password')

    if phone:
        is_valid, message = validate_phone_number(phone)
        if not is_valid:
            raise ValidationError(message, field='phone')

    if User.query.filter_by(email=email).first():
        raise ValidationError('Registration failed. Please check your details or try logging in.')

    user = User(email=email, name=name, phone=phone, role=UserRole.USER)
    user.set_password(password)
    db.session.add(user)
    db.session.flush()

    raw_token = issue_email_verification(user, current_app.config['EMAIL_VERIFICATION_TTL_HOURS'])
    db.session.commit()

    send_verification_email(user, raw_token)
    current_app.logger.info('[USER_REGISTERED] user_id=%s', user.id)

    return jsonify({
        'success': True,
        'message': 'Registration successful. Please check your email to verify your account.',
        'user': user.to_dict()
    }), 201


@auth_bp.route('/login', methods=['POST'])
@limiter.limit(lambda: current_app.config['LOGIN_RATE_LIMIT'])
def login():
    """
    User login endpoint
    ---
    Required fields: email, password
    """
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').lower().strip()
    password = data.get('password')

    if not email or not password:
        raise ValidationError('Email and password are required')

    config = current_app.config
    now = datetime.utcnow()
    user = User.query.filter_by(email=email).first()

    if not user:
        raise AuthenticationError('Invalid credentials')

    if user.is_locked(now):
        raise AccountLockedError(user.locked_until)

    if not user.check_password(password):
        user.register_failed_login(config['ACCOUNT_LOCKOUT_ATTEMPTS'],
                                   config['ACCOUNT_LOCKOUT_DURATION_MINUTES'], now)
        db.session.commit()
        current_app.logger.warning('[LOGIN_FAILED] user_id=%s', user.id)
        if user.is_locked(now):
            current_app.logger.warning('[ACCOUNT_LOCKED] user_id=%s until=%s', user.id, user.locked_until.isoformat())
            send_account_locked(user, user.locked_until)
            raise AccountLockedError(user.locked_until)
        raise AuthenticationError('Invalid credentials')

    if not user.is_active:
        raise AuthorizationError('Account is inactive')

    if config['REQUIRE_EMAIL_VERIFICATION'] and not user.email_verified:
        raise AuthorizationError('Please verify your email before logging in')

    user.register_successful_login(now)
    db.session.commit()

    return _token_response(user, 'Login successful')


@auth_bp.route('/refresh', methods=['POST'])
@jwt_required(refresh=True)
def refresh():
    """
    Refresh access token using refresh token
    """
    current_user_id = get_jwt_identity()
    return jsonify({
        'success': True,
        'access_token': create_access_token(identity=current_user_id)
    }), 200


@auth_bp.route('/me', methods=['GET'])
@jwt_required()
def get_current_user():
    """
    Get current authenticated user information
    """
    user = User.query.get(int(get_jwt_identity()))
    if not user:
        raise NotFoundError('User')

    return jsonify({'success': True, 'user': user.to_dict()}), 200


@auth_bp.route('/logout', methods=['POST'])
@jwt_required()
def logout():
    """
    Logout endpoint (client should delete tokens)
    """
    return jsonify({
        'success': True,
        'message': 'Logout successful. Please delete your tokens.'
    }), 200


@auth_bp.route('/google', methods=['POST'])
def google_login():
    """
    Google OAuth login endpoint
    Expects: { "credential": "google_id_token" }
    """
    data = request.get_json(silent=True) or {}
    if not data.get('credential'):
        raise ValidationError('Google credential is required', field='credential')

    try:
        idinfo = id_token.verify_oauth2_token(
            data['credential'],
            google_requests.Request(),
            current_app.config['GOOGLE_CLIENT_ID']
        )
    except ValueError as e:
        current_app.logger.warning('[GOOGLE_TOKEN_INVALID] %s', e)
        raise AuthenticationError('Invalid Google token')

    google_user_id = idinfo['sub']
    email = idinfo.get('email', '').lower().strip()
    if not idinfo.get('email_verified', False):
        raise ValidationError('Email not verified by Google')

    now = datetime.utcnow()
    user = User.query.filter_by(oauth_provider='google', oauth_id=google_user_id).first()
    created = False

    if not user:
        user = User.query.filter_by(email=email).first()
        if user:
            # Same address already registered with a password: link the Google identity
            user.oauth_provider = 'google'
            user.oauth_id = google_user_id
        else:
            user = User(
                email=email,
                name=idinfo.get('name') or email.split('@')[0],
                role=UserRole.USER,
                oauth_provider='google',
                oauth_id=google_user_id,
                password_hash=None
            )
            db.session.add(user)
            created = True

    if not user.is_active:
        raise AuthorizationError('Account is inactive')

    user.profile_picture = idinfo.get('picture') or user.profile_picture
    user.email_verified_at = user.email_verified_at or now
    user.register_successful_login(now)
    db.session.commit()

    if created:
        return _token_response(user, 'User registered successfully', 201)
    return _token_response(user, 'Login successful')


@auth_bp.route('/verify-email', methods=['POST'])
@limiter.limit(lambda: current_app.config['VERIFY_EMAIL_RATE_LIMIT'])
def verify_email():
    """
    Confirm an email address
    ---
    Request body: {"token": "..."}
    """
    data = request.get_json(silent=True) or {}
    user = consume_token(data.get('token'), TokenPurpose.EMAIL_VERIFICATION)
    user.email_verified_at = user.email_verified_at or datetime.utcnow()
    db.session.commit()

    current_app.logger.info('[EMAIL_VERIFIED] user_id=%s', user.id)
    return jsonify({'success': True, 'message': 'Email verified successfully'}), 200


@auth_bp.route('/resend-verification', methods=['POST'])
@limiter.limit(lambda: current_app.config['RESEND_VERIFICATION_RATE_LIMIT'])
def resend_verification():
    """
    Send a new verification email
    ---
    Request body: {"email": "..."}
    Always answers 200 so it does not reveal which addresses are registered.
    """
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').lower().strip()
    user = User.query.filter_by(email=email).first() if email else None

    if user and not user.email_verified:
        raw_token = issue_email_verification(user, current_app.config['EMAIL_VERIFICATION_TTL_HOURS'])
        db.session.commit()
        send_verification_email(user, raw_token)

    return jsonify({
        'success': True,
        'message': 'If the account exists and is unverified, a verification email has been sent.'
    }), 200


@auth_bp.route('/forgot-password', methods=['POST'])
@limiter.limit(lambda: current_app.config['FORGOT_PASSWORD_RATE_LIMIT'])
def forgot_password():
    """
    Request a password reset link
    ---
    Request body: {"email": "..."}
    """
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').lower().strip()
    user = User.query.filter_by(email=email).first() if email else None

    if user and user.is_active:
        raw_token = issue_password_reset(user, current_app.config['PASSWORD_RESET_TTL_HOURS'])
        db.session.commit()
        send_password_reset_email(user, raw_token)

    return jsonify({
        'success': True,
        'message': 'If an account with that email exists, a password reset link has been sent.'
    }), 200


@auth_bp.route('/reset-password', methods=['POST'])
@limiter.limit(lambda: current_app.config['RESET_PASSWORD_RATE_LIMIT'])
def reset_password():
    """
    Choose a new password with a reset token
    ---
    Request body: {"token": "...", "password": "..."}
    """
    data = request.get_json(silent=True) or {}
    password = data.get('password') or ''

    is_valid, message = validate_password(password)
    if not is_valid:
        raise ValidationError(message, field='password')

    user = consume_token(data.get('token'), TokenPurpose.PASSWORD_RESET)
    user.set_password(password)
    user.failed_login_attempts = 0
    user.locked_until = None
    db.session.commit()

    current_app.logger.info('[PASSWORD_RESET] user_id=%s', user.id)
    return jsonify({'success': True, 'message': 'Password has been reset. You can now log in.'}), 200
