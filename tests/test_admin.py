import pytest
from datetime import datetime, timedelta
from speedboat import db
from speedboat.models.booking import BookingStatus
from speedboat.models.payment import Payment
from speedboat.models.ticket import Ticket
from speedboat.models.user import UserRole
from speedboat.services.payment_service import create_payment


@pytest.fixture
def settled_payment(client, sample_customer, pending_booking, mock_midtrans, make_notification):
    create_payment(sample_customer, pending_booking.id)
    payment = Payment.query.filter_by(booking_id=pending_booking.id).one()
    client.post('/api/payments/notification', json=make_notification(payment, 'settlement'))
    return payment


class TestStats:
    def test_stats_overview(self, client, admin_token, auth_headers, settled_payment, boarding_schedule):
        response = client.get('/api/admin/stats', headers=auth_headers(admin_token))

        assert response.status_code == 200
        stats = response.get_json()['stats']
        assert stats['bookings']['total'] == 1
        assert stats['bookings']['by_status']['confirmed'] == 1
        assert stats['revenue']['total'] == 150000
        assert stats['revenue']['today'] == 150000
        assert stats['schedules']['active'] == 2
        assert stats['schedules']['upcoming_occupancy_rate'] == 5.0
        assert stats['users']['by_role'] == {'user': 1, 'operator': 0, 'admin': 1}
        assert stats['pending_cleanup']['pending'] == 0

    def test_stats_requires_admin(self, client, operator_token, auth_headers):
        response = client.get('/api/admin/stats', headers=auth_headers(operator_token))

        assert response.status_code == 403


class TestSalesReport:
    def test_daily_sales(self, client, admin_token, auth_headers, settled_payment):
        response = client.get('/api/admin/reports/sales', headers=auth_headers(admin_token))

        assert response.status_code == 200
        data = response.get_json()
        today = datetime.utcnow().date().isoformat()
        assert data['date_to'] == today
        assert data['daily'] == [{'date': today, 'bookings': 1, 'revenue': 150000, 'passengers': 2}]
        assert data['totals'] == {'bookings': 1, 'revenue': 150000, 'passengers': 2}

    def test_unpaid_bookings_are_not_sales(self, client, admin_token, auth_headers, pending_booking):
        response = client.get('/api/admin/reports/sales', headers=auth_headers(admin_token))

        assert response.get_json()['daily'] == []

    def test_inverted_range(self, client, admin_token, auth_headers):
        response = client.get('/api/admin/reports/sales?date_from=2026-02-01&date_to=2026-01-01',
                              headers=auth_headers(admin_token))

        assert response.status_code == 400

    def test_range_too_long(self, client, admin_token, auth_headers):
        response = client.get('/api/admin/reports/sales?date_from=2024-01-01&date_to=2026-01-01',
                              headers=auth_headers(admin_token))

        assert response.status_code == 400


class TestPerformanceReports:
    def _range(self):
        today = datetime.utcnow().date()
        return {'date_from': today.isoformat(), 'date_to': (today + timedelta(days=7)).isoformat()}

    def test_routes_report(self, client, admin_token, auth_headers, settled_payment, sample_route):
        response = client.get('/api/admin/reports/routes', headers=auth_headers(admin_token),
                              query_string=self._range())

        assert response.status_code == 200
        data = response.get_json()
        route = data['items'][0]
        assert route['route_id'] == sample_route.id
        assert route['code'] == 'SNR-NPD'
        assert route['schedules'] == 1
        assert route['completed_schedules'] == 0
        assert route['bookings'] == 1
        assert route['revenue'] == 150000
        assert route['passengers'] == 2
        assert route['occupancy_rate'] == 10.0
        assert route['average_revenue_per_schedule'] == 150000
        assert data['summary'] == {'routes': 1, 'active_routes': 1, 'total_revenue': 150000,
                                   'total_bookings': 1, 'total_passengers': 2}

    def test_ships_report_counts_only_paid_bookings(self, client, admin_token, auth_headers, pending_booking,
                                                    sample_ship):
        response = client.get('/api/admin/reports/ships', headers=auth_headers(admin_token),
                              query_string=self._range())

        data = response.get_json()
        ship = data['items'][0]
        assert ship['ship_id'] == sample_ship.id
        assert ship['capacity'] == 20
        assert ship['schedules'] == 1
        assert ship['revenue'] == 0
        assert ship['occupancy_rate'] == 10.0
        assert data['summary']['active_ships'] == 1

    def test_idle_routes_are_listed(self, client, admin_token, auth_headers, sample_route):
        response = client.get('/api/admin/reports/routes', headers=auth_headers(admin_token))

        route = response.get_json()['items'][0]
        assert route['schedules'] == 0
        assert route['occupancy_rate'] == 0
        assert route['average_revenue_per_schedule'] == 0

    def test_reports_require_admin(self, client, customer_token, auth_headers):
        response = client.get('/api/admin/reports/ships', headers=auth_headers(customer_token))

        assert response.status_code == 403


class TestManageUsers:
    def test_list_users(self, client, admin_token, auth_headers, sample_customer, sample_operator):
        response = client.get('/api/admin/users/?role=operator', headers=auth_headers(admin_token))

        data = response.get_json()
        assert data['total'] == 1
        assert data['users'][0]['email'] == 'operator@test.com'

    def test_search_users(self, client, admin_token, auth_headers, sample_customer, other_customer):
        response = client.get('/api/admin/users/?search=other&sort_by=name&sort_order=asc',
                              headers=auth_headers(admin_token))

        assert [u['email'] for u in response.get_json()['users']] == ['other@test.com']

    def test_get_user_detail(self, client, admin_token, auth_headers, pending_booking, sample_customer):
        response = client.get(f'/api/admin/users/{sample_customer.id}', headers=auth_headers(admin_token))

        user = response.get_json()['user']
        assert user['booking_count'] == 1
        assert user['locked_until'] is None

    def test_promote_to_operator(self, client, admin_token, auth_headers, sample_customer):
        response = client.patch(f'/api/admin/users/{sample_customer.id}/role',
                                headers=auth_headers(admin_token), json={'role': 'operator'})

        assert response.status_code == 200
        assert sample_customer.role == UserRole.OPERATOR

    def test_invalid_role(self, client, admin_token, auth_headers, sample_customer):
        response = client.patch(f'/api/admin/users/{sample_customer.id}/role',
                                headers=auth_headers(admin_token), json={'role': 'captain'})

        assert response.status_code == 400

    def test_admin_cannot_demote_self(self, client, admin_token, auth_headers, sample_admin):
        response = client.patch(f'/api/admin/users/{sample_admin.id}/role',
                                headers=auth_headers(admin_token), json={'role': 'user'})

        assert response.status_code == 409
        assert sample_admin.role == UserRole.ADMIN

    def test_deactivate_user(self, client, admin_token, auth_headers, sample_customer, customer_token):
        response = client.patch(f'/api/admin/users/{sample_customer.id}/status',
                                headers=auth_headers(admin_token), json={'is_active': False})

        assert response.status_code == 200
        assert sample_customer.is_active is False

        me = client.post('/api/bookings/', headers=auth_headers(customer_token), json={})
        assert me.status_code == 403

    def test_admin_cannot_deactivate_self(self, client, admin_token, auth_headers, sample_admin):
        response = client.patch(f'/api/admin/users/{sample_admin.id}/status',
                                headers=auth_headers(admin_token), json={'is_active': False})

        assert response.status_code == 409

    def test_is_active_must_be_boolean(self, client, admin_token, auth_headers, sample_customer):
        response = client.patch(f'/api/admin/users/{sample_customer.id}/status',
                                headers=auth_headers(admin_token), json={'is_active': 'no'})

        assert response.status_code == 400

    def test_unlock_user(self, client, admin_token, auth_headers, sample_customer):
        sample_customer.locked_until = datetime.utcnow() + timedelta(minutes=15)
        sample_customer.failed_login_attempts = 3
        db.session.commit()

        response = client.patch(f'/api/admin/users/{sample_customer.id}/status',
                                headers=auth_headers(admin_token), json={'unlock': True})

        assert response.status_code == 200
        assert sample_customer.locked_until is None
        assert sample_customer.failed_login_attempts == 0


class TestPaymentAdministration:
    def test_list_payments(self, client, admin_token, auth_headers, settled_payment):
        response = client.get('/api/admin/payments?status=success', headers=auth_headers(admin_token))

        data = response.get_json()
        assert data['total'] == 1
        assert data['payments'][0]['booking_code'] == settled_payment.booking.booking_code

    def test_search_payments_by_booking_code(self, client, admin_token, auth_headers, settled_payment):
        code = settled_payment.booking.booking_code

        response = client.get(f'/api/admin/payments?search={code[-5:]}', headers=auth_headers(admin_token))

        assert response.get_json()['total'] == 1

    def test_stuck_payments(self, client, admin_token, auth_headers, sample_customer, pending_booking,
                            mock_midtrans):
        create_payment(sample_customer, pending_booking.id)
        payment = Payment.query.filter_by(booking_id=pending_booking.id).one()
        payment.created_at = datetime.utcnow() - timedelta(hours=1)
        db.session.commit()

        response = client.get('/api/admin/payments/stuck?older_than_minutes=30', headers=auth_headers(admin_token))

        assert response.status_code == 200
        assert response.get_json()['count'] == 1

    def test_batch_resync_endpoint(self, client, admin_token, auth_headers, sample_customer, pending_booking,
                                   mock_midtrans):
        create_payment(sample_customer, pending_booking.id)
        mock_midtrans.status_response = {'transaction_status': 'settlement', 'transaction_id': 'tx-7',
                                         'status_code': '200'}

        response = client.post('/api/admin/payments/resync', headers=auth_headers(admin_token),
                               json={'booking_codes': [pending_booking.booking_code.lower(), 'SPD-00000000-NOPE0']})

        assert response.status_code == 200
        data = response.get_json()
        assert data['total'] == 2
        assert data['succeeded'] == 1
        assert data['failed'] == 1
        assert pending_booking.status == BookingStatus.CONFIRMED

    def test_batch_resync_validation(self, client, admin_token, auth_headers):
        response = client.post('/api/admin/payments/resync', headers=auth_headers(admin_token),
                               json={'booking_codes': []})
        assert response.status_code == 400

        response = client.post('/api/admin/payments/resync', headers=auth_headers(admin_token),
                               json={'booking_codes': ['SPD-1'] * 51})
        assert response.status_code == 400

    def test_webhook_log(self, client, admin_token, auth_headers, settled_payment, make_notification):
        client.post('/api/payments/notification', json=make_notification(settled_payment, 'settlement',
                                                                          signed=False))

        response = client.get(f'/api/admin/webhooks?order_id={settled_payment.order_id}',
                              headers=auth_headers(admin_token))

        data = response.get_json()
        assert data['total'] == 2
        assert {w['status'] for w in data['webhooks']} == {'processed', 'rejected'}
        rejected = client.get('/api/admin/webhooks?status=rejected', headers=auth_headers(admin_token))
        assert rejected.get_json()['webhooks'][0]['signature_valid'] is False


class TestCleanup:
    def test_cleanup_preview_and_run(self, client, admin_token, auth_headers, pending_booking, sample_schedule):
        pending_booking.expires_at = datetime.utcnow() - timedelta(minutes=1)
        db.session.commit()

        preview = client.get('/api/admin/bookings/cleanup', headers=auth_headers(admin_token))
        assert preview.get_json()['stats']['overdue'] == 1

        response = client.post('/api/admin/bookings/cleanup', headers=auth_headers(admin_token))

        assert response.status_code == 200
        result = response.get_json()['result']
        assert result['expired'] == 1
        assert result['booking_codes'] == [pending_booking.booking_code]
        assert 'idempotency_records_deleted' in result
        assert pending_booking.status == BookingStatus.EXPIRED
        assert sample_schedule.available_seats == 20


class TestTicketRecovery:
    def test_recover_issues_missing_tickets(self, client, admin_token, auth_headers, confirmed_booking):
        Ticket.query.filter_by(booking_id=confirmed_booking.id).delete()
        db.session.commit()

        response = client.post('/api/admin/tickets/recover', headers=auth_headers(admin_token))

        assert response.status_code == 200
        result = response.get_json()['result']
        assert result['processed'] == 1
        assert result['recovered'] == 1
        assert result['bookings'] == [{'booking_code': confirmed_booking.booking_code, 'tickets': 2}]
        assert Ticket.query.filter_by(booking_id=confirmed_booking.id).count() == 2

    def test_nothing_to_recover(self, client, admin_token, auth_headers, confirmed_booking, pending_booking):
        response = client.post('/api/admin/tickets/recover', headers=auth_headers(admin_token))

        assert response.get_json()['result']['processed'] == 0
        assert Ticket.query.count() == 2

    def test_recover_limit_is_validated(self, client, admin_token, auth_headers):
        response = client.post('/api/admin/tickets/recover', headers=auth_headers(admin_token),
                               json={'limit': 0})

        assert response.status_code == 400

    def test_recover_requires_admin(self, client, operator_token, auth_headers):
        response = client.post('/api/admin/tickets/recover', headers=auth_headers(operator_token))

        assert response.status_code == 403


class TestHealth:
    def test_health(self, client):
        response = client.get('/api/health')

        assert response.status_code == 200
        assert response.get_json() == {'status': 'healthy', 'database': 'connected'}
