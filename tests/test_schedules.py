from datetime import datetime, timedelta
from speedboat import db
from speedboat.models.booking import BookingStatus
from speedboat.models.payment import Payment, PaymentAuditLog
from speedboat.models.schedule import Port, Route, Schedule, ScheduleStatus, ShipStatus
from speedboat.services.payment_service import create_payment


def _iso(dt):
    return dt.replace(microsecond=0).isoformat() + 'Z'


class TestSearchSchedules:
    def _search(self, client, ports, day, passengers=1):
        sanur, penida = ports
        return client.get('/api/schedules/search', query_string={
            'departure_port_id': sanur.id,
            'arrival_port_id': penida.id,
            'date': day.isoformat(),
            'passengers': passengers
        })

    def test_search_finds_departure(self, client, sample_ports, sample_schedule):
        response = self._search(client, sample_ports, sample_schedule.departure_time.date())

        assert response.status_code == 200
        data = response.get_json()
        assert data['count'] == 1
        assert data['schedules'][0]['id'] == sample_schedule.id
        assert data['schedules'][0]['route']['departure_port']['code'] == 'SNR'
        assert data['alternatives'] == []

    def test_search_suggests_alternatives(self, client, sample_ports, sample_schedule):
        day = sample_schedule.departure_time.date() - timedelta(days=1)

        response = self._search(client, sample_ports, day)

        data = response.get_json()
        assert data['count'] == 0
        assert data['alternatives'] == [{
            'date': sample_schedule.departure_time.date().isoformat(),
            'schedules': 1,
            'lowest_price': 100000
        }]

    def test_search_skips_full_departures(self, client, sample_ports, sample_schedule):
        sample_schedule.available_seats = 1
        db.session.commit()

        response = self._search(client, sample_ports, sample_schedule.departure_time.date(), passengers=2)

        assert response.get_json()['count'] == 0

    def test_search_skips_inactive_ship(self, client, sample_ports, sample_schedule, sample_ship):
        sample_ship.status = ShipStatus.MAINTENANCE
        db.session.commit()

        response = self._search(client, sample_ports, sample_schedule.departure_time.date())

        assert response.get_json()['count'] == 0

    def test_search_past_date(self, client, sample_ports):
        response = self._search(client, sample_ports, datetime.utcnow().date() - timedelta(days=2))

        assert response.status_code == 400

    def test_search_same_port(self, client, sample_ports):
        sanur, _ = sample_ports
        response = client.get('/api/schedules/search', query_string={
            'departure_port_id': sanur.id, 'arrival_port_id': sanur.id, 'date': '2030-01-01'
        })

        assert response.status_code == 400

    def test_search_too_many_passengers(self, client, sample_ports, sample_schedule):
        response = self._search(client, sample_ports, sample_schedule.departure_time.date(), passengers=11)

        assert response.status_code == 400

    def test_search_bad_date(self, client, sample_ports):
        sanur, penida = sample_ports
        response = client.get('/api/schedules/search', query_string={
            'departure_port_id': sanur.id, 'arrival_port_id': penida.id, 'date': 'next-week'
        })

        assert response.status_code == 400
        assert response.get_json()['details']['field'] == 'date'


class TestListSchedules:
    def test_list_schedules(self, client, sample_schedule, boarding_schedule):
        response = client.get('/api/schedules/')

        data = response.get_json()
        assert data['total'] == 2
        assert [s['id'] for s in data['schedules']] == [boarding_schedule.id, sample_schedule.id]

    def test_list_with_pagination(self, client, sample_schedule, boarding_schedule):
        response = client.get('/api/schedules/?limit=1&offset=1')

        data = response.get_json()
        assert data['total'] == 2
        assert [s['id'] for s in data['schedules']] == [sample_schedule.id]

    def test_filter_by_status(self, client, sample_schedule):
        response = client.get('/api/schedules/?status=cancelled')

        assert response.get_json()['total'] == 0

    def test_get_missing_schedule(self, client, app):
        response = client.get('/api/schedules/999')

        assert response.status_code == 404


class TestManageSchedules:
    def test_create_schedule_defaults(self, client, admin_token, auth_headers, sample_route, sample_ship):
        departure = datetime.utcnow() + timedelta(days=3)

        response = client.post('/api/schedules/', headers=auth_headers(admin_token), json={
            'route_id': sample_route.id,
            'ship_id': sample_ship.id,
            'departure_time': _iso(departure)
        })

        assert response.status_code == 201
        schedule = response.get_json()['schedule']
        assert schedule['price'] == 100000
        assert schedule['total_seats'] == 20
        assert schedule['available_seats'] == 20
        assert schedule['status'] == 'scheduled'

    def test_create_schedule_in_past(self, client, admin_token, auth_headers, sample_route, sample_ship):
        response = client.post('/api/schedules/', headers=auth_headers(admin_token), json={
            'route_id': sample_route.id,
            'ship_id': sample_ship.id,
            'departure_time': _iso(datetime.utcnow() - timedelta(hours=1))
        })

        assert response.status_code == 400

    def test_create_schedule_over_capacity(self, client, admin_token, auth_headers, sample_route, sample_ship):
        response = client.post('/api/schedules/', headers=auth_headers(admin_token), json={
            'route_id': sample_route.id,
            'ship_id': sample_ship.id,
            'departure_time': _iso(datetime.utcnow() + timedelta(days=3)),
            'total_seats': 21
        })

        assert response.status_code == 400

    def test_customer_cannot_create(self, client, customer_token, auth_headers, sample_route, sample_ship):
        response = client.post('/api/schedules/', headers=auth_headers(customer_token), json={
            'route_id': sample_route.id,
            'ship_id': sample_ship.id,
            'departure_time': _iso(datetime.utcnow() + timedelta(days=3))
        })

        assert response.status_code == 403

    def test_resize_keeps_sold_seats(self, client, admin_token, auth_headers, pending_booking, sample_schedule):
        response = client.put(f'/api/schedules/{sample_schedule.id}', headers=auth_headers(admin_token),
                              json={'total_seats': 10})

        assert response.status_code == 200
        assert sample_schedule.total_seats == 10
        assert sample_schedule.available_seats == 8

    def test_cannot_shrink_below_sold(self, client, admin_token, auth_headers, pending_booking, sample_schedule):
        response = client.put(f'/api/schedules/{sample_schedule.id}', headers=auth_headers(admin_token),
                              json={'total_seats': 1})

        assert response.status_code == 409

    def test_arrival_completes_bookings(self, client, admin_token, auth_headers, confirmed_booking,
                                        sample_schedule):
        response = client.put(f'/api/schedules/{sample_schedule.id}', headers=auth_headers(admin_token),
                              json={'status': 'arrived'})

        assert response.status_code == 200
        assert response.get_json()['bookings_affected'] == 1
        assert confirmed_booking.status == BookingStatus.COMPLETED
        assert sample_schedule.available_seats == 18

    def test_arrival_is_audited_for_paid_bookings(self, client, admin_token, auth_headers, sample_customer,
                                                  pending_booking, sample_schedule, mock_midtrans,
                                                  make_notification):
        create_payment(sample_customer, pending_booking.id)
        payment = Payment.query.filter_by(booking_id=pending_booking.id).one()
        client.post('/api/payments/notification', json=make_notification(payment, 'settlement'))

        client.put(f'/api/schedules/{sample_schedule.id}', headers=auth_headers(admin_token),
                   json={'status': 'arrived'})

        assert pending_booking.status == BookingStatus.COMPLETED
        entry = PaymentAuditLog.query.filter_by(action='TRIP_COMPLETED').one()
        assert entry.actor_type == 'admin'

    def test_cancellation_cancels_bookings(self, client, admin_token, auth_headers, pending_booking,
                                           sample_schedule):
        response = client.put(f'/api/schedules/{sample_schedule.id}', headers=auth_headers(admin_token),
                              json={'status': 'cancelled'})

        assert response.status_code == 200
        assert pending_booking.status == BookingStatus.CANCELLED
        assert pending_booking.cancellation_reason == 'Schedule cancelled'
        assert sample_schedule.available_seats == 20

    def test_cancelled_schedule_is_frozen(self, client, admin_token, auth_headers, sample_schedule):
        sample_schedule.status = ScheduleStatus.CANCELLED
        db.session.commit()

        response = client.put(f'/api/schedules/{sample_schedule.id}', headers=auth_headers(admin_token),
                              json={'price': 5})

        assert response.status_code == 409

    def test_delete_schedule_with_bookings(self, client, admin_token, auth_headers, pending_booking,
                                           sample_schedule):
        response = client.delete(f'/api/schedules/{sample_schedule.id}', headers=auth_headers(admin_token))

        assert response.status_code == 409

    def test_delete_empty_schedule(self, client, admin_token, auth_headers, sample_schedule):
        response = client.delete(f'/api/schedules/{sample_schedule.id}', headers=auth_headers(admin_token))

        assert response.status_code == 200
        assert Schedule.query.count() == 0


class TestPorts:
    def test_list_ports(self, client, sample_ports):
        response = client.get('/api/ports/?search=penida')

        ports = response.get_json()['ports']
        assert [p['code'] for p in ports] == ['NPD']

    def test_create_port(self, client, admin_token, auth_headers):
        response = client.post('/api/ports/', headers=auth_headers(admin_token), json={
            'name': 'Pelabuhan Padang Bai', 'code': 'pdb', 'city': 'Karangasem', 'province': 'Bali',
            'latitude': '-8.53'
        })

        assert response.status_code == 201
        assert response.get_json()['port']['code'] == 'PDB'
        assert response.get_json()['port']['latitude'] == -8.53

    def test_duplicate_port_code(self, client, admin_token, auth_headers, sample_ports):
        response = client.post('/api/ports/', headers=auth_headers(admin_token), json={
            'name': 'Another Sanur', 'code': 'SNR', 'city': 'Denpasar', 'province': 'Bali'
        })

        assert response.status_code == 409

    def test_port_in_use_cannot_be_deleted(self, client, admin_token, auth_headers, sample_route, sample_ports):
        response = client.delete(f'/api/ports/{sample_ports[0].id}', headers=auth_headers(admin_token))

        assert response.status_code == 409
        assert Port.query.count() == 2


class TestShips:
    def test_create_ship(self, client, admin_token, auth_headers):
        response = client.post('/api/ships/', headers=auth_headers(admin_token), json={
            'name': 'Sea Breeze', 'code': 'sb-02', 'capacity': 30, 'facilities': ['toilet']
        })

        assert response.status_code == 201
        ship = response.get_json()['ship']
        assert ship['code'] == 'SB-02'
        assert ship['facilities'] == ['toilet']

    def test_invalid_capacity(self, client, admin_token, auth_headers):
        response = client.post('/api/ships/', headers=auth_headers(admin_token), json={
            'name': 'Sea Breeze', 'code': 'SB-02', 'capacity': 0
        })

        assert response.status_code == 400

    def test_ship_with_schedules_cannot_be_deleted(self, client, admin_token, auth_headers, sample_schedule,
                                                   sample_ship):
        response = client.delete(f'/api/ships/{sample_ship.id}', headers=auth_headers(admin_token))

        assert response.status_code == 409


class TestRoutes:
    def test_create_route(self, client, admin_token, auth_headers, sample_ports):
        sanur, penida = sample_ports

        response = client.post('/api/routes/', headers=auth_headers(admin_token), json={
            'departure_port_id': penida.id, 'arrival_port_id': sanur.id,
            'estimated_duration': 90, 'base_price': 120000
        })

        assert response.status_code == 201
        route = response.get_json()['route']
        assert route['duration'] == '1h 30m'
        assert route['departure_port']['code'] == 'NPD'

    def test_duplicate_route(self, client, admin_token, auth_headers, sample_route, sample_ports):
        sanur, penida = sample_ports

        response = client.post('/api/routes/', headers=auth_headers(admin_token), json={
            'departure_port_id': sanur.id, 'arrival_port_id': penida.id,
            'estimated_duration': 45, 'base_price': 100000
        })

        assert response.status_code == 409

    def test_route_to_same_port(self, client, admin_token, auth_headers, sample_ports):
        sanur, _ = sample_ports

        response = client.post('/api/routes/', headers=auth_headers(admin_token), json={
            'departure_port_id': sanur.id, 'arrival_port_id': sanur.id,
            'estimated_duration': 45, 'base_price': 100000
        })

        assert response.status_code == 400

    def test_route_with_schedules_cannot_be_deleted(self, client, admin_token, auth_headers, sample_schedule,
                                                    sample_route):
        response = client.delete(f'/api/routes/{sample_route.id}', headers=auth_headers(admin_token))

        assert response.status_code == 409
        assert Route.query.count() == 1
