from datetime import datetime, timedelta
from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from speedboat import db
from speedboat.models.schedule import (Schedule, ScheduleStatus, Route, RouteStatus,
                                       Ship, ShipStatus)
from speedboat.services.booking_service import complete_schedule_bookings, cancel_schedule_bookings
from speedboat.services.payment_service import record_audit
from speedboat.services.ticket_service import get_manifest, schedule_check_in_stats
from speedboat.utils.decorators import admin_required, staff_required, get_current_user
from speedboat.utils.errors import ValidationError, NotFoundError, ConflictError
from speedboat.utils.validators import (validate_required_fields, parse_enum, parse_date,
                                        parse_datetime, parse_pagination)

schedules_bp = Blueprint('schedules', __name__)

ALTERNATIVE_DATES = 5
ALTERNATIVE_SEARCH_DAYS = 30


def _bookable_query(departure_port_id, arrival_port_id, passengers):
    return Schedule.query \
        .join(Route, Schedule.route_id == Route.id) \
        .join(Ship, Schedule.ship_id == Ship.id) \
        .filter(
            Route.departure_port_id == departure_port_id,
            Route.arrival_port_id == arrival_port_id,
            Route.status == RouteStatus.ACTIVE,
            Ship.status == ShipStatus.ACTIVE,
            Schedule.status == ScheduleStatus.SCHEDULED,
            Schedule.available_seats >= passengers
        )


@schedules_bp.route('/search', methods=['GET'])
def search_schedules():
    """
    Search bookable departures
    ---
    Query parameters:
    - departure_port_id (required)
    - arrival_port_id (required)
    - date: YYYY-MM-DD (required)
    - passengers: number of seats needed (default: 1)
    When nothing matches, up to five later dates with availability are suggested.
    """
    departure_port_id = request.args.get('departure_port_id', type=int)
    arrival_port_id = request.args.get('arrival_port_id', type=int)
    day = parse_date(request.args.get('date', ''))
    passengers = request.args.get('passengers', 1, type=int)

    if not departure_port_id or not arrival_port_id:
        raise ValidationError('departure_port_id and arrival_port_id are required')
    if departure_port_id == arrival_port_id:
        raise ValidationError('Departure and arrival ports must differ')
    if day is None:
        raise ValidationError('Invalid date format. Use YYYY-MM-DD', field='date')
    if passengers is None or passengers < 1 or passengers > current_app.config['MAX_PASSENGERS_PER_BOOKING']:
        raise ValidationError('Invalid number of passengers', field='passengers')

    now = datetime.utcnow()
    day_end = day + timedelta(days=1)
    if day_end <= now:
        raise ValidationError('Date cannot be in the past', field='date')

    base = _bookable_query(departure_port_id, arrival_port_id, passengers)
    schedules = base.filter(
        Schedule.departure_time > max(day, now),
        Schedule.departure_time < day_end
    ).order_by(Schedule.departure_time.asc()).all()

    alternatives = []
    if not schedules:
        later = base.filter(
            Schedule.departure_time >= day_end,
            Schedule.departure_time < day_end + timedelta(days=ALTERNATIVE_SEARCH_DAYS)
        ).order_by(Schedule.departure_time.asc()).all()
        by_date = {}
        for schedule in later:
            key = schedule.departure_time.date().isoformat()
            if key not in by_date and len(by_date) >= ALTERNATIVE_DATES:
                break
            by_date.setdefault(key, {'date': key, 'schedules': 0, 'lowest_price': schedule.price})
            by_date[key]['schedules'] += 1
            by_date[key]['lowest_price'] = min(by_date[key]['lowest_price'], schedule.price)
        alternatives = list(by_date.values())

    return jsonify({
        'success': True,
        'schedules': [s.to_dict() for s in schedules],
        'count': len(schedules),
        'alternatives': alternatives
    }), 200


@schedules_bp.route('/', methods=['GET'])
def list_schedules():
    """
    List schedules
    ---
    Query parameters:
    - route_id, ship_id: filter by route or ship
    - status: scheduled, boarding, departed, arrived, cancelled
    - date_from, date_to: departure date range (YYYY-MM-DD)
    - limit, offset: pagination
    """
    query = Schedule.query

    for field in ('route_id', 'ship_id'):
        value = request.args.get(field, type=int)
        if value:
            query = query.filter(getattr(Schedule, field) == value)

    status = request.args.get('status')
    if status:
        schedule_status = parse_enum(ScheduleStatus, status)
        if schedule_status is None:
            raise ValidationError('Invalid schedule status', field='status')
        query = query.filter(Schedule.status == schedule_status)

    date_from = request.args.get('date_from', '').strip()
    if date_from:
        parsed = parse_date(date_from)
        if parsed is None:
            raise ValidationError('Invalid date_from format. Use YYYY-MM-DD', field='date_from')
        query = query.filter(Schedule.departure_time >= parsed)

    date_to = request.args.get('date_to', '').strip()
    if date_to:
        parsed = parse_date(date_to)
        if parsed is None:
            raise ValidationError('Invalid date_to format. Use YYYY-MM-DD', field='date_to')
        query = query.filter(Schedule.departure_time < parsed + timedelta(days=1))

    limit, offset = parse_pagination(request.args)
    total = query.count()
    schedules = query.order_by(Schedule.departure_time.asc()).offset(offset).limit(limit).all()

    return jsonify({
        'success': True,
        'schedules': [s.to_dict() for s in schedules],
        'total': total,
        'limit': limit,
        'offset': offset
    }), 200


@schedules_bp.route('/<int:schedule_id>', methods=['GET'])
def get_schedule(schedule_id):
    schedule = Schedule.query.get(schedule_id)
    if not schedule:
        raise NotFoundError('Schedule', schedule_id)
    return jsonify({'success': True, 'schedule': schedule.to_dict()}), 200


@schedules_bp.route('/', methods=['POST'])
@jwt_required()
@admin_required
def create_schedule():
    """
    Create a departure
    ---
    Request body:
    {
        "route_id": 1,
        "ship_id": 1,
        "departure_time": "2026-01-10T08:00:00Z",
        "arrival_time": "2026-01-10T10:00:00Z",    (optional, defaults to route duration)
        "price": 150000,                            (optional, defaults to route base price)
        "total_seats": 40                           (optional, defaults to ship capacity)
    }
    """
    data = request.get_json(silent=True) or {}
    is_valid, message = validate_required_fields(data, ['route_id', 'ship_id', 'departure_time'])
    if not is_valid:
        raise ValidationError(message)

    route = Route.query.get(data['route_id'])
    if not route:
        raise NotFoundError('Route', data['route_id'])
    ship = Ship.query.get(data['ship_id'])
    if not ship:
        raise NotFoundError('Ship', data['ship_id'])

    departure_time = parse_datetime(data['departure_time'])
    if departure_time is None:
        raise ValidationError('Invalid departure_time', field='departure_time')
    if departure_time <= datetime.utcnow():
        raise ValidationError('Departure time must be in the future', field='departure_time')

    if data.get('arrival_time'):
        arrival_time = parse_datetime(data['arrival_time'])
        if arrival_time is None:
            raise ValidationError('Invalid arrival_time', field='arrival_time')
    else:
        arrival_time = departure_time + timedelta(minutes=route.estimated_duration)
    if arrival_time <= departure_time:
        raise ValidationError('Arrival time must be after departure time', field='arrival_time')

    try:
        price = int(data.get('price', route.base_price))
        total_seats = int(data.get('total_seats', ship.capacity))
    except (TypeError, ValueError):
        raise ValidationError('price and total_seats must be integers')
    if price < 0:
        raise ValidationError('Price cannot be negative', field='price')
    if total_seats < 1 or total_seats > ship.capacity:
        raise ValidationError(f'Total seats must be between 1 and ship capacity ({ship.capacity})',
                              field='total_seats')

    schedule = Schedule(
        route_id=route.id,
        ship_id=ship.id,
        departure_time=departure_time,
        arrival_time=arrival_time,
        price=price,
        total_seats=total_seats,
        available_seats=total_seats,
        status=ScheduleStatus.SCHEDULED
    )
    db.session.add(schedule)
    db.session.commit()

    return jsonify({
        'success': True,
        'message': 'Schedule created successfully',
        'schedule': schedule.to_dict()
    }), 201


@schedules_bp.route('/<int:schedule_id>', methods=['PUT'])
@jwt_required()
@admin_required
def update_schedule(schedule_id):
    """
    Update a departure
    ---
    Request body: any of departure_time, arrival_time, price, total_seats, ship_id, status
    Setting status to arrived completes its confirmed bookings;
    setting it to cancelled cancels or refunds every live booking.
    """
    schedule = Schedule.query.get(schedule_id)
    if not schedule:
        raise NotFoundError('Schedule', schedule_id)

    if schedule.status in (ScheduleStatus.ARRIVED, ScheduleStatus.CANCELLED):
        raise ConflictError(f'Schedule is {schedule.status.value} and can no longer be changed')

    data = request.get_json(silent=True) or {}

    if 'ship_id' in data:
        ship = Ship.query.get(data['ship_id'])
        if not ship:
            raise NotFoundError('Ship', data['ship_id'])
        schedule.ship_id = ship.id
    else:
        ship = schedule.ship

    for field in ('departure_time', 'arrival_time'):
        if field in data:
            value = parse_datetime(data[field])
            if value is None:
                raise ValidationError(f'Invalid {field}', field=field)
            setattr(schedule, field, value)
    if schedule.arrival_time <= schedule.departure_time:
        raise ValidationError('Arrival time must be after departure time', field='arrival_time')

    if 'price' in data:
        try:
            schedule.price = int(data['price'])
        except (TypeError, ValueError):
            raise ValidationError('Price must be an integer', field='price')
        if schedule.price < 0:
            raise ValidationError('Price cannot be negative', field='price')

    if 'total_seats' in data or 'ship_id' in data:
        try:
            total_seats = int(data.get('total_seats', schedule.total_seats))
        except (TypeError, ValueError):
            raise ValidationError('Total seats must be an integer', field='total_seats')
        sold = schedule.booked_seats
        if total_seats < sold:
            raise ConflictError(f'Cannot reduce seats below the {sold} already booked')
        if total_seats > ship.capacity:
            raise ValidationError(f'Total seats cannot exceed ship capacity ({ship.capacity})',
                                  field='total_seats')
        schedule.total_seats = total_seats
        schedule.available_seats = total_seats - sold

    affected = []
    if 'status' in data:
        status = parse_enum(ScheduleStatus, data['status'])
        if status is None:
            raise ValidationError('Invalid schedule status', field='status')
        if status == ScheduleStatus.ARRIVED:
            affected = complete_schedule_bookings(schedule)
            admin = get_current_user()
            for booking in affected:
                if booking.payment:
                    record_audit(booking.payment, 'TRIP_COMPLETED', actor=admin, actor_type='admin',
                                 details={'booking_code': booking.booking_code, 'schedule_id': schedule.id})
        elif status == ScheduleStatus.CANCELLED:
            affected = cancel_schedule_bookings(schedule)
        schedule.status = status

    db.session.commit()
    current_app.logger.info('[SCHEDULE_UPDATED] schedule_id=%s status=%s bookings_affected=%d',
                            schedule.id, schedule.status.value, len(affected))

    return jsonify({
        'success': True,
        'message': 'Schedule updated successfully',
        'schedule': schedule.to_dict(),
        'bookings_affected': len(affected)
    }), 200


@schedules_bp.route('/<int:schedule_id>', methods=['DELETE'])
@jwt_required()
@admin_required
def delete_schedule(schedule_id):
    schedule = Schedule.query.get(schedule_id)
    if not schedule:
        raise NotFoundError('Schedule', schedule_id)

    if schedule.bookings.first():
        raise ConflictError('Schedule has bookings and cannot be deleted. Cancel it instead.')

    db.session.delete(schedule)
    db.session.commit()
    return jsonify({'success': True, 'message': 'Schedule deleted successfully'}), 200


@schedules_bp.route('/<int:schedule_id>/manifest', methods=['GET'])
@jwt_required()
@staff_required
def schedule_manifest(schedule_id):
    """
    Passenger manifest for boarding staff
    """
    manifest = get_manifest(schedule_id)
    manifest['check_in'] = schedule_check_in_stats(schedule_id)
    return jsonify(dict(manifest, success=True)), 200
