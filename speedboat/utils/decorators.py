from functools import wraps
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request
from speedboat.models.user import User, UserRole
from speedboat.utils.errors import AuthorizationError, NotFoundError


def role_required(*roles):
    """Require a signed-in, active account holding one of `roles`"""
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = get_current_user()

            if not user:
                raise NotFoundError('User')
            if not user.is_active:
                raise AuthorizationError('User account is inactive')
            if user.role not in roles:
                raise AuthorizationError('Insufficient permissions')

            return fn(*args, **kwargs)
        return wrapper
    return decorator


def admin_required(fn):
    return role_required(UserRole.ADMIN)(fn)


def staff_required(fn):
    """Operators and admins: manifests, ticket validation and check-in"""
    return role_required(UserRole.OPERATOR, UserRole.ADMIN)(fn)


def active_user_required(fn):
    return role_required(UserRole.USER, UserRole.OPERATOR, UserRole.ADMIN)(fn)


def get_current_user():
    """Load the user named by the JWT identity (a stringified id)"""
    verify_jwt_in_request()
    return User.query.get(int(get_jwt_identity()))
