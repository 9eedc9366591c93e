from datetime import datetime, timedelta
from speedboat import db
from werkzeug.security import generate_password_hash, check_password_hash
from enum import Enum


class UserRole(Enum):
    """User roles enumeration"""
    USER = 'user'
    OPERATOR = 'operator'
    ADMIN = 'admin'


class TokenPurpose(Enum):
    """What a one-time user token unlocks"""
    EMAIL_VERIFICATION = 'email_verification'
    PASSWORD_RESET = 'password_reset'


class User(db.Model):
    """User model"""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(20))
    password_hash = db.Column(db.String(255), nullable=True)  # Nullable for OAuth users
    role = db.Column(db.Enum(UserRole), nullable=False, default=UserRole.USER)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    email_verified_at = db.Column(db.DateTime, nullable=True)

    # Lockout tracking
    failed_login_attempts = db.Column(db.Integer, nullable=False, default=0)
    locked_until = db.Column(db.DateTime, nullable=True)
    last_login_at = db.Column(db.DateTime, nullable=True)
    password_changed_at = db.Column(db.DateTime, nullable=True)

    # OAuth fields
    oauth_provider = db.Column(db.String(50), nullable=True)
    oauth_id = db.Column(db.String(255), nullable=True, index=True)
    profile_picture = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    tokens = db.relationship('UserToken', back_populates='user', lazy='dynamic',
                             cascade='all, delete-orphan')

    def set_password(self, password):
        """Hash and set password"""
        self.password_hash = generate_password_hash(password)
        self.password_changed_at = datetime.utcnow()

    def check_password(self, password):
        """Verify password"""
        if not self.password_hash:
            return False  # OAuth users don't have passwords
        return check_password_hash(self.password_hash, password)

    @property
    def email_verified(self):
        return self.email_verified_at is not None

    @property
    def is_staff(self):
        return self.role in (UserRole.ADMIN, UserRole.OPERATOR)

    def is_locked(self, now=None):
        now = now or datetime.utcnow()
        return self.locked_until is not None and self.locked_until > now

    def register_failed_login(self, max_attempts, lock_minutes, now=None):
        """Count a failed password attempt, locking the account once the limit is hit"""
        now = now or datetime.utcnow()
        self.failed_login_attempts = (self.failed_login_attempts or 0) + 1
        if self.failed_login_attempts >= max_attempts:
            self.locked_until = now + timedelta(minutes=lock_minutes)
            self.failed_login_attempts = 0

    def register_successful_login(self, now=None):
        self.failed_login_attempts = 0
        self.locked_until = None
        self.last_login_at = now or datetime.utcnow()

    def to_dict(self, include_email=True):
        """Convert user to dictionary"""
        data = {
            'id': self.id,
            'name': self.name,
            'phone': self.phone,
            'role': self.role.value,
            'is_active': self.is_active,
            'email_verified': self.email_verified,
            'oauth_provider': self.oauth_provider,
            'profile_picture': self.profile_picture,
            'last_login_at': self.last_login_at.isoformat() if self.last_login_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
        if include_email:
            data['email'] = self.email
        return data

    def __repr__(self):
        return f'<User {self.email}>'


class UserToken(db.Model):
    """Hashed one-time token for email verification or password reset"""
    __tablename__ = 'user_tokens'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    purpose = db.Column(db.Enum(TokenPurpose), nullable=False)
    token_hash = db.Column(db.String(64), unique=True, nullable=False, index=True)
    expires_at = db.Column(db.DateTime, nullable=False)
    used_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    user = db.relationship('User', back_populates='tokens')

    def __repr__(self):
        return f'<UserToken {self.purpose.value} user={self.user_id}>'
