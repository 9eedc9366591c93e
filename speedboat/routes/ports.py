from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from speedboat import db
from speedboat.models.schedule import Port, Route
from speedboat.utils.decorators import admin_required
from speedboat.utils.errors import ValidationError, NotFoundError, ConflictError
from speedboat.utils.validators import validate_required_fields

ports_bp = Blueprint('ports', __name__)

PORT_FIELDS = ['name', 'code', 'city', 'province', 'address', 'latitude', 'longitude', 'image_url']


def _apply_port_fields(port, data):
    for field in PORT_FIELDS:
        if field in data:
            setattr(port, field, data[field])
    if port.code:
        port.code = port.code.strip().upper()
    for field in ('latitude', 'longitude'):
        value = getattr(port, field)
        if value is not None:
            try:
                setattr(port, field, float(value))
            except (TypeError, ValueError):
                raise ValidationError(f'{field} must be a number', field=field)


@ports_bp.route('/', methods=['GET'])
def list_ports():
    """
    List ports
    ---
    Query parameters:
    - search: match on name, code or city
    """
    query = Port.query
    search = request.args.get('search', '').strip()
    if search:
        pattern = f'%{search}%'
        query = query.filter(Port.name.ilike(pattern) | Port.code.ilike(pattern) | Port.city.ilike(pattern))

    ports = query.order_by(Port.name.asc()).all()
    return jsonify({'success': True, 'ports': [p.to_dict() for p in ports]}), 200


@ports_bp.route('/<int:port_id>', methods=['GET'])
def get_port(port_id):
    port = Port.query.get(port_id)
    if not port:
        raise NotFoundError('Port', port_id)
    return jsonify({'success': True, 'port': port.to_dict()}), 200


@ports_bp.route('/', methods=['POST'])
@jwt_required()
@admin_required
def create_port():
    """
    Create a port
    ---
    Request body: {name, code, city, province, address?, latitude?, longitude?, image_url?}
    """
    data = request.get_json(silent=True) or {}
    is_valid, message = validate_required_fields(data, ['name', 'code', 'city', 'province'])
    if not is_valid:
        raise ValidationError(message)

    if Port.query.filter_by(code=data['code'].strip().upper()).first():
        raise ConflictError('Port code already exists')

    port = Port()
    _apply_port_fields(port, data)
    db.session.add(port)
    db.session.commit()

    return jsonify({'success': True, 'message': 'Port created successfully', 'port': port.to_dict()}), 201


@ports_bp.route('/<int:port_id>', methods=['PUT'])
@jwt_required()
@admin_required
def update_port(port_id):
    port = Port.query.get(port_id)
    if not port:
        raise NotFoundError('Port', port_id)

    data = request.get_json(silent=True) or {}
    if data.get('code'):
        other = Port.query.filter_by(code=data['code'].strip().upper()).first()
        if other and other.id != port.id:
            raise ConflictError('Port code already exists')

    _apply_port_fields(port, data)
    db.session.commit()

    return jsonify({'success': True, 'message': 'Port updated successfully', 'port': port.to_dict()}), 200


@ports_bp.route('/<int:port_id>', methods=['DELETE'])
@jwt_required()
@admin_required
def delete_port(port_id):
    port = Port.query.get(port_id)
    if not port:
        raise NotFoundError('Port', port_id)

    in_use = Route.query.filter(
        (Route.departure_port_id == port.id) | (Route.arrival_port_id == port.id)
    ).first()
    if in_use:
        raise ConflictError('Port is used by a route and cannot be deleted')

    db.session.delete(port)
    db.session.commit()
    return jsonify({'success': True, 'message': 'Port deleted successfully'}), 200
