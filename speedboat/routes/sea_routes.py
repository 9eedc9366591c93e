from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from speedboat import db
from speedboat.models.schedule import Port, Route, RouteStatus, Schedule
from speedboat.utils.decorators import admin_required
from speedboat.utils.errors import ValidationError, NotFoundError, ConflictError
from speedboat.utils.validators import validate_required_fields, parse_enum

sea_routes_bp = Blueprint('sea_routes', __name__)


def _int_field(data, field, minimum=0):
    try:
        value = int(data[field])
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be an integer', field=field)
    if value < minimum:
        raise ValidationError(f'{field} must be at least {minimum}', field=field)
    return value


def _apply_route_fields(route, data):
    if 'departure_port_id' in data:
        route.departure_port_id = _int_field(data, 'departure_port_id', 1)
    if 'arrival_port_id' in data:
        route.arrival_port_id = _int_field(data, 'arrival_port_id', 1)

    if route.departure_port_id == route.arrival_port_id:
        raise ValidationError('Departure and arrival ports must differ')
    for port_id in (route.departure_port_id, route.arrival_port_id):
        if not Port.query.get(port_id):
            raise NotFoundError('Port', port_id)

    if 'estimated_duration' in data:
        route.estimated_duration = _int_field(data, 'estimated_duration', 1)
    if 'base_price' in data:
        route.base_price = _int_field(data, 'base_price', 0)
    if 'distance' in data:
        try:
            route.distance = float(data['distance']) if data['distance'] is not None else None
        except (TypeError, ValueError):
            raise ValidationError('distance must be a number', field='distance')
    if 'status' in data:
        status = parse_enum(RouteStatus, data['status'])
        if status is None:
            raise ValidationError('Invalid route status', field='status')
        route.status = status


@sea_routes_bp.route('/', methods=['GET'])
def list_routes():
    """
    List routes
    ---
    Query parameters:
    - departure_port_id, arrival_port_id: filter by port
    - status: active or inactive
    """
    query = Route.query
    for field in ('departure_port_id', 'arrival_port_id'):
        value = request.args.get(field, type=int)
        if value:
            query = query.filter(getattr(Route, field) == value)

    status = request.args.get('status')
    if status:
        route_status = parse_enum(RouteStatus, status)
        if route_status is None:
            raise ValidationError('Invalid route status', field='status')
        query = query.filter_by(status=route_status)

    routes = query.order_by(Route.id.asc()).all()
    return jsonify({'success': True, 'routes': [r.to_dict() for r in routes]}), 200


@sea_routes_bp.route('/<int:route_id>', methods=['GET'])
def get_route(route_id):
    route = Route.query.get(route_id)
    if not route:
        raise NotFoundError('Route', route_id)
    return jsonify({'success': True, 'route': route.to_dict()}), 200


@sea_routes_bp.route('/', methods=['POST'])
@jwt_required()
@admin_required
def create_route():
    """
    Create a route between two ports
    ---
    Request body: {departure_port_id, arrival_port_id, estimated_duration, base_price, distance?, status?}
    """
    data = request.get_json(silent=True) or {}
    is_valid, message = validate_required_fields(
        data, ['departure_port_id', 'arrival_port_id', 'estimated_duration', 'base_price']
    )
    if not is_valid:
        raise ValidationError(message)

    route = Route(status=RouteStatus.ACTIVE)
    _apply_route_fields(route, data)

    if Route.query.filter_by(departure_port_id=route.departure_port_id,
                             arrival_port_id=route.arrival_port_id).first():
        raise ConflictError('Route between these ports already exists')

    db.session.add(route)
    db.session.commit()
    return jsonify({'success': True, 'message': 'Route created successfully', 'route': route.to_dict()}), 201


@sea_routes_bp.route('/<int:route_id>', methods=['PUT'])
@jwt_required()
@admin_required
def update_route(route_id):
    route = Route.query.get(route_id)
    if not route:
        raise NotFoundError('Route', route_id)

    data = request.get_json(silent=True) or {}
    with db.session.no_autoflush:
        _apply_route_fields(route, data)
        other = Route.query.filter_by(departure_port_id=route.departure_port_id,
                                      arrival_port_id=route.arrival_port_id).first()
    if other and other.id != route.id:
        raise ConflictError('Route between these ports already exists')

    db.session.commit()
    return jsonify({'success': True, 'message': 'Route updated successfully', 'route': route.to_dict()}), 200


@sea_routes_bp.route('/<int:route_id>', methods=['DELETE'])
@jwt_required()
@admin_required
def delete_route(route_id):
    route = Route.query.get(route_id)
    if not route:
        raise NotFoundError('Route', route_id)

    if Schedule.query.filter_by(route_id=route.id).first():
        raise ConflictError('Route has schedules and cannot be deleted. Set it inactive instead.')

    db.session.delete(route)
    db.session.commit()
    return jsonify({'success': True, 'message': 'Route deleted successfully'}), 200
