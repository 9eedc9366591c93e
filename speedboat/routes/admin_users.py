from datetime import datetime
from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from speedboat import db
from speedboat.models.user import User, UserRole
from speedboat.utils.decorators import admin_required, get_current_user
from speedboat.utils.errors import ValidationError, NotFoundError, ConflictError
from speedboat.utils.validators import parse_enum, parse_date, parse_pagination

admin_users_bp = Blueprint('admin_users', __name__)


@admin_users_bp.route('/', methods=['GET'])
@jwt_required()
@admin_required
def get_all_users():
    """
    Get all users with filtering and pagination
    ---
    Query parameters:
    - role: user, operator or admin
    - is_active: true/false
    - search: match on name or email
    - date_from, date_to: registration date range (YYYY-MM-DD)
    - limit, offset: pagination
    - sort_by: created_at, name, email, last_login_at
    - sort_order: asc, desc
    """
    query = User.query

    role = request.args.get('role', '').strip()
    if role:
        user_role = parse_enum(UserRole, role)
        if user_role is None:
            raise ValidationError('Invalid role', field='role')
        query = query.filter_by(role=user_role)

    is_active = request.args.get('is_active', '').lower()
    if is_active == 'true':
        query = query.filter_by(is_active=True)
    elif is_active == 'false':
        query = query.filter_by(is_active=False)

    search = request.args.get('search', '').strip()
    if search:
        search_filter = f'%{search}%'
        query = query.filter(User.name.ilike(search_filter) | User.email.ilike(search_filter))

    date_from = request.args.get('date_from', '').strip()
    if date_from:
        parsed = parse_date(date_from)
        if parsed is None:
            raise ValidationError('Invalid date_from format. Use YYYY-MM-DD', field='date_from')
        query = query.filter(User.created_at >= parsed)

    date_to = request.args.get('date_to', '').strip()
    if date_to:
        parsed = parse_date(date_to)
        if parsed is None:
            raise ValidationError('Invalid date_to format. Use YYYY-MM-DD', field='date_to')
        query = query.filter(User.created_at <= parsed.replace(hour=23, minute=59, second=59))

    sort_columns = {
        'name': User.name,
        'email': User.email,
        'last_login_at': User.last_login_at,
    }
    sort_column = sort_columns.get(request.args.get('sort_by', '').lower(), User.created_at)
    if request.args.get('sort_order', 'desc').lower() == 'asc':
        query = query.order_by(sort_column.asc())
    else:
        query = query.order_by(sort_column.desc())

    limit, offset = parse_pagination(request.args, default_limit=50)
    total = query.count()
    users = query.offset(offset).limit(limit).all()

    return jsonify({
        'success': True,
        'users': [u.to_dict() for u in users],
        'total': total,
        'limit': limit,
        'offset': offset
    }), 200


@admin_users_bp.route('/<int:user_id>', methods=['GET'])
@jwt_required()
@admin_required
def get_user(user_id):
    user = User.query.get(user_id)
    if not user:
        raise NotFoundError('User', user_id)

    data = user.to_dict()
    data['booking_count'] = user.bookings.count()
    data['locked_until'] = user.locked_until.isoformat() if user.is_locked() else None
    return jsonify({'success': True, 'user': data}), 200


@admin_users_bp.route('/<int:user_id>/role', methods=['PATCH'])
@jwt_required()
@admin_required
def update_user_role(user_id):
    """
    Change a user's role
    ---
    Request body: {"role": "user" | "operator" | "admin"}
    """
    admin = get_current_user()
    user = User.query.get(user_id)
    if not user:
        raise NotFoundError('User', user_id)

    data = request.get_json(silent=True) or {}
    role = parse_enum(UserRole, data.get('role'))
    if role is None:
        raise ValidationError('Invalid role. Must be user, operator or admin', field='role')

    if user.id == admin.id and role != UserRole.ADMIN:
        raise ConflictError('You cannot remove your own admin role')

    previous = user.role
    user.role = role
    db.session.commit()
    current_app.logger.info('[USER_ROLE_CHANGED] user_id=%s %s -> %s by admin_id=%s',
                            user.id, previous.value, role.value, admin.id)

    return jsonify({'success': True, 'message': 'Role updated', 'user': user.to_dict()}), 200


@admin_users_bp.route('/<int:user_id>/status', methods=['PATCH'])
@jwt_required()
@admin_required
def update_user_status(user_id):
    """
    Activate or deactivate an account, or lift a login lockout
    ---
    Request body: {"is_active": true|false, "unlock": true}
    """
    admin = get_current_user()
    user = User.query.get(user_id)
    if not user:
        raise NotFoundError('User', user_id)

    data = request.get_json(silent=True) or {}

    if 'is_active' in data:
        if not isinstance(data['is_active'], bool):
            raise ValidationError('is_active must be a boolean', field='is_active')
        if user.id == admin.id and not data['is_active']:
            raise ConflictError('You cannot deactivate your own account')
        user.is_active = data['is_active']

    if data.get('unlock'):
        user.failed_login_attempts = 0
        user.locked_until = None

    user.updated_at = datetime.utcnow()
    db.session.commit()

    return jsonify({'success': True, 'message': 'User updated', 'user': user.to_dict()}), 200
