"""One-time tokens for email verification and password reset."""
import hashlib
import logging
import uuid
from datetime import datetime, timedelta

from speedboat import db
from speedboat.models.user import UserToken, TokenPurpose
from speedboat.utils.errors import ValidationError

logger = logging.getLogger(__name__)


def hash_token(raw_token):
    return hashlib.sha256(raw_token.encode('utf-8')).hexdigest()


def issue_token(user, purpose, ttl, now=None):
    """
    Create a fresh token for the user, invalidating any unused one of the
    same purpose. Only the hash is stored; the raw token is returned.
    """
    now = now or datetime.utcnow()

    UserToken.query.filter(
        UserToken.user_id == user.id,
        UserToken.purpose == purpose,
        UserToken.used_at.is_(None)
    ).update({'used_at': now}, synchronize_session=False)

    raw_token = str(uuid.uuid4())
    db.session.add(UserToken(
        user_id=user.id,
        purpose=purpose,
        token_hash=hash_token(raw_token),
        expires_at=now + ttl
    ))
    logger.info('[TOKEN_ISSUED] purpose=%s user_id=%s', purpose.value, user.id)
    return raw_token


def consume_token(raw_token, purpose, now=None):
    """Mark a token used and return its user. Raises ValidationError if unusable."""
    now = now or datetime.utcnow()
    if not raw_token:
        raise ValidationError('Token is required', field='token')

    token = UserToken.query.filter_by(token_hash=hash_token(raw_token), purpose=purpose).first()
    if not token:
        raise ValidationError('Invalid token')
    if token.used_at is not None:
        raise ValidationError('Token has already been used')
    if token.expires_at <= now:
        raise ValidationError('Token has expired')

    token.used_at = now
    return token.user


def issue_email_verification(user, ttl_hours, now=None):
    return issue_token(user, TokenPurpose.EMAIL_VERIFICATION, timedelta(hours=ttl_hours), now)


def issue_password_reset(user, ttl_hours, now=None):
    return issue_token(user, TokenPurpose.PASSWORD_RESET, timedelta(hours=ttl_hours), now)
