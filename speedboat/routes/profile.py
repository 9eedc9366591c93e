from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from speedboat import db
from speedboat.utils.decorators import get_current_user
from speedboat.utils.errors import ValidationError, NotFoundError, AuthenticationError
from speedboat.utils.validators import validate_name, validate_phone_number, validate_password

profile_bp = Blueprint('profile', __name__)


@profile_bp.route('/me', methods=['GET'])
@jwt_required()
def get_profile():
    """
    Get current user's profile
    """
    user = get_current_user()
    if not user:
        raise NotFoundError('User')

    return jsonify({'success': True, 'user': user.to_dict()}), 200


@profile_bp.route('/me', methods=['PUT'])
@jwt_required()
def update_profile():
    """
    Update current user's profile
    ---
    Request body:
    {
        "name": "New Name",
        "phone": "081234567890"
    }
    """
    user = get_current_user()
    if not user:
        raise NotFoundError('User')

    data = request.get_json(silent=True) or {}

    if 'name' in data:
        is_valid, message = validate_name(data['name'] or '')
        if not is_valid:
            raise ValidationError(message, field='name')
        user.name = data['name'].strip()

    if 'phone' in data:
        phone = (data['phone'] or '').strip()
        if phone:
            is_valid, message = validate_phone_number(phone)
            if not is_valid:
                raise ValidationError(message, field='phone')
        user.phone = phone or None

    db.session.commit()

    return jsonify({
        'success': True,
        'message': 'Profile updated successfully',
        'user': user.to_dict()
    }), 200


@profile_bp.route('/me/password', methods=['PUT'])
@jwt_required()
def change_password():
    """
    Change password
    ---
    Request body:
    {
        "current_password": "OldPass123",
        "new_password": "NewPass123"
    }
    """
    user = get_current_user()
    if not user:
        raise NotFoundError('User')

    data = request.get_json(silent=True) or {}
    new_password = data.get('new_password') or ''

    if user.password_hash and not user.check_password(data.get('current_password') or ''):
        raise AuthenticationError('Current password is incorrect')

    is_valid, message = validate_password(new_password)
    if not is_valid:
        raise ValidationError(message, field='new_password')

    user.set_password(new_password)
    db.session.commit()

    return jsonify({'success': True, 'message': 'Password changed successfully'}), 200
