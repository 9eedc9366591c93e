from datetime import datetime, timedelta
from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy import case, func
from speedboat import db
from speedboat.models.booking import Booking, BookingStatus
from speedboat.models.payment import Payment, PaymentStatus
from speedboat.models.schedule import Route, Schedule, ScheduleStatus, Ship, RouteStatus, ShipStatus
from speedboat.models.user import User, UserRole
from speedboat.services.booking_service import cleanup_stats
from speedboat.utils.decorators import admin_required
from speedboat.utils.errors import ValidationError
from speedboat.utils.validators import parse_date

admin_analytics_bp = Blueprint('admin_analytics', __name__)

MAX_REPORT_DAYS = 366


def _date_arg(name):
    value = request.args.get(name, '').strip()
    if not value:
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(f'Invalid {name} format. Use YYYY-MM-DD', field=name)
    return parsed


def _date_range(default_days=30):
    date_from = _date_arg('date_from')
    date_to = _date_arg('date_to') or datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    date_from = date_from or date_to - timedelta(days=default_days)
    if date_from > date_to:
        raise ValidationError('date_from must not be after date_to')
    if (date_to - date_from).days > MAX_REPORT_DAYS:
        raise ValidationError(f'Date range cannot exceed {MAX_REPORT_DAYS} days')
    return date_from, date_to + timedelta(days=1)


@admin_analytics_bp.route('/stats', methods=['GET'])
@jwt_required()
@admin_required
def get_stats():
    """
    Dashboard overview
    ---
    Booking counts by status, revenue from successful payments,
    today's departures, active schedules and users by role.
    """
    now = datetime.utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)

    bookings_by_status = {status.value: 0 for status in BookingStatus}
    for status, count in db.session.query(Booking.status, func.count(Booking.id)) \
            .group_by(Booking.status).all():
        bookings_by_status[status.value] = count

    users_by_role = {role.value: 0 for role in UserRole}
    for role, count in db.session.query(User.role, func.count(User.id)).group_by(User.role).all():
        users_by_role[role.value] = count

    revenue = db.session.query(func.coalesce(func.sum(Payment.amount), 0)) \
        .filter(Payment.status == PaymentStatus.SUCCESS).scalar()
    revenue_today = db.session.query(func.coalesce(func.sum(Payment.amount), 0)) \
        .filter(Payment.status == PaymentStatus.SUCCESS, Payment.paid_at >= today).scalar()

    departures_today = Schedule.query.filter(
        Schedule.departure_time >= today,
        Schedule.departure_time < today + timedelta(days=1),
        Schedule.status != ScheduleStatus.CANCELLED
    ).count()

    active_schedules = Schedule.query.filter(
        Schedule.departure_time > now,
        Schedule.status.in_([ScheduleStatus.SCHEDULED, ScheduleStatus.BOARDING])
    ).count()

    seats = db.session.query(
        func.coalesce(func.sum(Schedule.total_seats), 0),
        func.coalesce(func.sum(Schedule.total_seats - Schedule.available_seats), 0)
    ).filter(Schedule.departure_time > now, Schedule.status != ScheduleStatus.CANCELLED).one()
    occupancy_rate = round(seats[1] / seats[0] * 100, 2) if seats[0] else 0

    return jsonify({
        'success': True,
        'stats': {
            'bookings': {
                'total': sum(bookings_by_status.values()),
                'by_status': bookings_by_status
            },
            'revenue': {
                'total': int(revenue),
                'today': int(revenue_today)
            },
            'schedules': {
                'departures_today': departures_today,
                'active': active_schedules,
                'upcoming_occupancy_rate': occupancy_rate
            },
            'users': {
                'total': sum(users_by_role.values()),
                'by_role': users_by_role
            },
            'pending_cleanup': cleanup_stats(now)
        }
    }), 200


@admin_analytics_bp.route('/reports/sales', methods=['GET'])
@jwt_required()
@admin_required
def sales_report():
    """
    Daily sales between two dates
    ---
    Query parameters:
    - date_from: YYYY-MM-DD (default: 30 days before date_to)
    - date_to: YYYY-MM-DD (default: today)
    Sales are counted on the day the payment settled.
    """
    start, end = _date_range()
    day = func.date(Payment.paid_at)

    rows = db.session.query(
        day.label('day'),
        func.count(Payment.id),
        func.coalesce(func.sum(Payment.amount), 0),
        func.coalesce(func.sum(Booking.total_passengers), 0)
    ).join(Booking, Payment.booking_id == Booking.id) \
        .filter(
            Payment.status == PaymentStatus.SUCCESS,
            Payment.paid_at >= start,
            Payment.paid_at < end
        ).group_by(day).order_by(day).all()

    daily = [{
        'date': str(row[0]),
        'bookings': row[1],
        'revenue': int(row[2]),
        'passengers': int(row[3])
    } for row in rows]

    return jsonify({
        'success': True,
        'date_from': start.date().isoformat(),
        'date_to': (end - timedelta(days=1)).date().isoformat(),
        'daily': daily,
        'totals': {
            'bookings': sum(d['bookings'] for d in daily),
            'revenue': sum(d['revenue'] for d in daily),
            'passengers': sum(d['passengers'] for d in daily)
        }
    }), 200


def _performance_by(key, start, end):
    """Schedule and paid-booking totals per route or ship, for departures in [start, end)"""
    in_range = (Schedule.departure_time >= start, Schedule.departure_time < end)
    finished = case((Schedule.status.in_([ScheduleStatus.DEPARTED, ScheduleStatus.ARRIVED]), 1), else_=0)

    stats = {}
    rows = db.session.query(
        key,
        func.count(Schedule.id),
        func.coalesce(func.sum(finished), 0),
        func.coalesce(func.sum(Schedule.total_seats), 0),
        func.coalesce(func.sum(Schedule.total_seats - Schedule.available_seats), 0)
    ).select_from(Schedule).filter(*in_range).group_by(key).all()
    for row in rows:
        stats[row[0]] = {
            'schedules': row[1],
            'completed_schedules': int(row[2]),
            'total_seats': int(row[3]),
            'booked_seats': int(row[4]),
            'bookings': 0,
            'revenue': 0,
            'passengers': 0
        }

    rows = db.session.query(
        key,
        func.count(Booking.id),
        func.coalesce(func.sum(Booking.total_amount), 0),
        func.coalesce(func.sum(Booking.total_passengers), 0)
    ).select_from(Schedule) \
        .join(Booking, Booking.schedule_id == Schedule.id) \
        .join(Payment, Payment.booking_id == Booking.id) \
        .filter(Payment.status == PaymentStatus.SUCCESS, *in_range) \
        .group_by(key).all()
    for row in rows:
        stats[row[0]].update(bookings=row[1], revenue=int(row[2]), passengers=int(row[3]))

    return stats


def _performance_entry(stats):
    entry = dict(stats or {'schedules': 0, 'completed_schedules': 0, 'total_seats': 0, 'booked_seats': 0,
                           'bookings': 0, 'revenue': 0, 'passengers': 0})
    total_seats = entry.pop('total_seats')
    booked_seats = entry.pop('booked_seats')
    entry['occupancy_rate'] = round(booked_seats / total_seats * 100, 2) if total_seats else 0
    entry['average_revenue_per_schedule'] = round(entry['revenue'] / entry['schedules']) if entry['schedules'] else 0
    return entry


def _report_response(start, end, items, summary):
    items.sort(key=lambda item: item['revenue'], reverse=True)
    summary.update({
        'total_revenue': sum(i['revenue'] for i in items),
        'total_bookings': sum(i['bookings'] for i in items),
        'total_passengers': sum(i['passengers'] for i in items)
    })
    return {
        'success': True,
        'date_from': start.date().isoformat(),
        'date_to': (end - timedelta(days=1)).date().isoformat(),
        'items': items,
        'summary': summary
    }


@admin_analytics_bp.route('/reports/routes', methods=['GET'])
@jwt_required()
@admin_required
def routes_report():
    """
    Revenue and occupancy per route
    ---
    Query parameters:
    - date_from: YYYY-MM-DD (default: 30 days before date_to)
    - date_to: YYYY-MM-DD (default: today)
    Schedules are counted by departure date; revenue comes from paid bookings.
    """
    start, end = _date_range()
    stats = _performance_by(Schedule.route_id, start, end)

    routes = Route.query.order_by(Route.id).all()
    items = []
    for route in routes:
        entry = _performance_entry(stats.get(route.id))
        entry.update({
            'route_id': route.id,
            'name': f'{route.departure_port.name} - {route.arrival_port.name}',
            'code': f'{route.departure_port.code}-{route.arrival_port.code}',
            'status': route.status.value
        })
        items.append(entry)

    return jsonify(_report_response(start, end, items, {
        'routes': len(routes),
        'active_routes': sum(1 for r in routes if r.status == RouteStatus.ACTIVE)
    })), 200


@admin_analytics_bp.route('/reports/ships', methods=['GET'])
@jwt_required()
@admin_required
def ships_report():
    """
    Revenue and occupancy per ship
    ---
    Query parameters:
    - date_from: YYYY-MM-DD (default: 30 days before date_to)
    - date_to: YYYY-MM-DD (default: today)
    """
    start, end = _date_range()
    stats = _performance_by(Schedule.ship_id, start, end)

    ships = Ship.query.order_by(Ship.id).all()
    items = []
    for ship in ships:
        entry = _performance_entry(stats.get(ship.id))
        entry.update({
            'ship_id': ship.id,
            'name': ship.name,
            'code': ship.code,
            'capacity': ship.capacity,
            'status': ship.status.value
        })
        items.append(entry)

    return jsonify(_report_response(start, end, items, {
        'ships': len(ships),
        'active_ships': sum(1 for s in ships if s.status == ShipStatus.ACTIVE)
    })), 200
