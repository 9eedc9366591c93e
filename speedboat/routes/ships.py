from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from speedboat import db
from speedboat.models.schedule import Ship, ShipStatus, Schedule
from speedboat.utils.decorators import admin_required
from speedboat.utils.errors import ValidationError, NotFoundError, ConflictError
from speedboat.utils.validators import validate_required_fields, parse_enum

ships_bp = Blueprint('ships', __name__)


def _apply_ship_fields(ship, data):
    for field in ('name', 'description', 'image_url'):
        if field in data:
            setattr(ship, field, data[field])

    if 'code' in data:
        ship.code = str(data['code']).strip().upper()

    if 'capacity' in data:
        try:
            capacity = int(data['capacity'])
        except (TypeError, ValueError):
            raise ValidationError('Capacity must be an integer', field='capacity')
        if capacity < 1:
            raise ValidationError('Capacity must be at least 1', field='capacity')
        ship.capacity = capacity

    if 'facilities' in data:
        if not isinstance(data['facilities'], list):
            raise ValidationError('Facilities must be a list', field='facilities')
        ship.facilities = [str(f) for f in data['facilities']]

    if 'status' in data:
        status = parse_enum(ShipStatus, data['status'])
        if status is None:
            raise ValidationError('Invalid ship status', field='status')
        ship.status = status


@ships_bp.route('/', methods=['GET'])
def list_ships():
    """
    List ships
    ---
    Query parameters:
    - status: active, maintenance or inactive
    """
    query = Ship.query
    status = request.args.get('status')
    if status:
        ship_status = parse_enum(ShipStatus, status)
        if ship_status is None:
            raise ValidationError('Invalid ship status', field='status')
        query = query.filter_by(status=ship_status)

    ships = query.order_by(Ship.name.asc()).all()
    return jsonify({'success': True, 'ships': [s.to_dict() for s in ships]}), 200


@ships_bp.route('/<int:ship_id>', methods=['GET'])
def get_ship(ship_id):
    ship = Ship.query.get(ship_id)
    if not ship:
        raise NotFoundError('Ship', ship_id)
    return jsonify({'success': True, 'ship': ship.to_dict()}), 200


@ships_bp.route('/', methods=['POST'])
@jwt_required()
@admin_required
def create_ship():
    """
    Add a ship to the fleet
    ---
    Request body: {name, code, capacity, description?, facilities?, image_url?, status?}
    """
    data = request.get_json(silent=True) or {}
    is_valid, message = validate_required_fields(data, ['name', 'code', 'capacity'])
    if not is_valid:
        raise ValidationError(message)

    if Ship.query.filter_by(code=str(data['code']).strip().upper()).first():
        raise ConflictError('Ship code already exists')

    ship = Ship(facilities=[], status=ShipStatus.ACTIVE)
    _apply_ship_fields(ship, data)
    db.session.add(ship)
    db.session.commit()

    return jsonify({'success': True, 'message': 'Ship created successfully', 'ship': ship.to_dict()}), 201


@ships_bp.route('/<int:ship_id>', methods=['PUT'])
@jwt_required()
@admin_required
def update_ship(ship_id):
    ship = Ship.query.get(ship_id)
    if not ship:
        raise NotFoundError('Ship', ship_id)

    data = request.get_json(silent=True) or {}
    if data.get('code'):
        other = Ship.query.filter_by(code=str(data['code']).strip().upper()).first()
        if other and other.id != ship.id:
            raise ConflictError('Ship code already exists')

    _apply_ship_fields(ship, data)
    db.session.commit()

    return jsonify({'success': True, 'message': 'Ship updated successfully', 'ship': ship.to_dict()}), 200


@ships_bp.route('/<int:ship_id>', methods=['DELETE'])
@jwt_required()
@admin_required
def delete_ship(ship_id):
    ship = Ship.query.get(ship_id)
    if not ship:
        raise NotFoundError('Ship', ship_id)

    if Schedule.query.filter_by(ship_id=ship.id).first():
        raise ConflictError('Ship has schedules and cannot be deleted. Set it inactive instead.')

    db.session.delete(ship)
    db.session.commit()
    return jsonify({'success': True, 'message': 'Ship deleted successfully'}), 200
