from datetime import timedelta
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import pytest

from app.main import create_app
from app.routes import calendar as calendar_routes
from app.services.calendar_sync_service import SyncResult
from app.services.exceptions import CalendarAuthError
from app.utils.security import generate_token, verify_token
from config.config import Config


@pytest.fixture
def client(database):
    app = create_app('testing')
    return app.test_client()


def auth(role, **claims):
    token = generate_token({'user_id': 1, 'role': role, **claims})
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def owner_headers(owner):
    return auth('owner', owner_id=owner.id)


@pytest.fixture
def cleaner_headers(cleaner):
    return auth('cleaner', cleaner_id=cleaner.id)


def booking_payload(cleaner, villa, day, time='10:00', hours=3):
    return {
        'cleaner_id': cleaner.id,
        'property_id': villa.id,
        'service': 'Regular clean',
        'date': day.isoformat(),
        'time': time,
        'hours': hours,
        'price': 60
    }


def test_health(client):
    response = client.get('/api/health')

    assert response.status_code == 200
    assert response.get_json() == {'status': 'ok'}


def test_unknown_route_is_json(client):
    response = client.get('/api/nothing-here')

    assert response.status_code == 404
    assert response.get_json() == {'error': 'Not found'}


class TestAuth:
    def test_missing_header(self, client, cleaner, future_day):
        response = client.get(f'/api/availability?cleaner_id={cleaner.id}&date={future_day.isoformat()}')

        assert response.status_code == 401

    def test_bad_token(self, client, cleaner, future_day):
        response = client.get(
            f'/api/availability?cleaner_id={cleaner.id}&date={future_day.isoformat()}',
            headers={'Authorization': 'Bearer not-a-token'}
        )

        assert response.status_code == 401

    def test_unknown_role(self, client, cleaner, future_day):
        response = client.get(
            f'/api/availability?cleaner_id={cleaner.id}&date={future_day.isoformat()}',
            headers=auth('player')
        )

        assert response.status_code == 401

    def test_cleaner_cannot_create_bookings(self, client, cleaner, villa, cleaner_headers, future_day):
        response = client.post('/api/bookings', json=booking_payload(cleaner, villa, future_day),
                               headers=cleaner_headers)

        assert response.status_code == 403


class TestAvailabilityRoutes:
    def test_day(self, client, store, cleaner, cleaner_headers, future_day):
        store.add_manual_block(cleaner.id, future_day, '10:00', '12:00', 'Dentist')

        response = client.get(
            f'/api/availability?cleaner_id={cleaner.id}&date={future_day.isoformat()}&time=11:00&hours=2',
            headers=cleaner_headers
        )

        body = response.get_json()
        assert response.status_code == 200
        assert body['available'] is False
        assert body['reason'] == 'BLOCKED'
        assert body['intervals'][0]['title'] == 'Dentist'

    def test_missing_params(self, client, cleaner_headers):
        assert client.get('/api/availability', headers=cleaner_headers).status_code == 400

    def test_unknown_cleaner(self, client, cleaner_headers, future_day):
        response = client.get(f'/api/availability?cleaner_id=999&date={future_day.isoformat()}',
                              headers=cleaner_headers)

        assert response.status_code == 404

    def test_range_limit(self, client, cleaner, cleaner_headers, future_day):
        end = future_day + timedelta(days=90)

        response = client.get(
            f'/api/availability/range?cleaner_id={cleaner.id}&start={future_day.isoformat()}&end={end.isoformat()}',
            headers=cleaner_headers
        )

        assert response.status_code == 400

    def test_next(self, client, cleaner, cleaner_headers, future_day):
        response = client.get(
            f'/api/availability/next?cleaner_id={cleaner.id}&from={future_day.isoformat()}&count=3',
            headers=cleaner_headers
        )

        assert response.get_json()['dates'] == [
            (future_day + timedelta(days=n)).isoformat() for n in range(3)
        ]

    def test_add_and_remove_block(self, client, cleaner, cleaner_headers, future_day):
        response = client.post('/api/availability/blocks', json={
            'date': future_day.isoformat(), 'start_time': '09:00', 'end_time': '11:00'
        }, headers=cleaner_headers)
        assert response.status_code == 201
        block_id = response.get_json()['block']['id']

        response = client.delete(f'/api/availability/blocks/{block_id}', headers=cleaner_headers)
        assert response.status_code == 200

        response = client.delete(f'/api/availability/blocks/{block_id}', headers=cleaner_headers)
        assert response.status_code == 404

    def test_cleaner_cannot_block_for_someone_else(self, client, cleaner_headers, future_day):
        response = client.post('/api/availability/blocks', json={
            'cleaner_id': 999, 'date': future_day.isoformat(), 'start_time': '09:00', 'end_time': '11:00'
        }, headers=cleaner_headers)

        assert response.status_code == 403

    def test_own_id_as_string_can_block(self, client, cleaner, cleaner_headers, future_day):
        response = client.post('/api/availability/blocks', json={
            'cleaner_id': str(cleaner.id), 'date': future_day.isoformat(), 'start_time': '09:00', 'end_time': '11:00'
        }, headers=cleaner_headers)

        assert response.status_code == 201

    def test_non_numeric_cleaner_id(self, client, cleaner_headers, future_day):
        response = client.post('/api/availability/blocks', json={
            'cleaner_id': 'me', 'date': future_day.isoformat(), 'start_time': '09:00', 'end_time': '11:00'
        }, headers=cleaner_headers)

        assert response.status_code == 400


class TestBookingRoutes:
    def test_request_is_pending(self, client, cleaner, owner, villa, owner_headers, future_day):
        response = client.post('/api/bookings', json=booking_payload(cleaner, villa, future_day),
                               headers=owner_headers)

        body = response.get_json()
        assert response.status_code == 201
        assert body['booking']['status'] == 'pending'
        assert body['booking']['owner_id'] == owner.id

    def test_conflict_offers_alternatives(self, client, book, cleaner, villa, owner_headers, future_day):
        assert book(future_day, '10:00', 3).ok

        response = client.post('/api/bookings', json=booking_payload(cleaner, villa, future_day, '12:00', 2),
                               headers=owner_headers)

        body = response.get_json()
        assert response.status_code == 409
        assert body['reason'] == 'ALREADY_BOOKED'
        assert body['alternatives'][0] == (future_day + timedelta(days=1)).isoformat()

    def test_validation(self, client, cleaner, villa, owner_headers, future_day):
        response = client.post('/api/bookings', json=booking_payload(cleaner, villa, future_day, '22:00', 3),
                               headers=owner_headers)

        assert response.status_code == 400
        assert 'midnight' in response.get_json()['error']

    def test_cleaner_accepts(self, client, cleaner, villa, owner_headers, cleaner_headers, future_day):
        created = client.post('/api/bookings', json=booking_payload(cleaner, villa, future_day),
                              headers=owner_headers).get_json()['booking']

        response = client.post(f"/api/bookings/{created['id']}/transition", json={'action': 'accept'},
                               headers=cleaner_headers)

        assert response.status_code == 200
        assert response.get_json()['status'] == 'confirmed'

    def test_invalid_transition(self, client, lifecycle, book, cleaner_headers, future_day):
        booking = book(future_day, '10:00', 3).booking
        lifecycle.transition(booking.id, 'cancelled')

        response = client.post(f'/api/bookings/{booking.id}/transition', json={'to': 'confirmed'},
                               headers=cleaner_headers)

        assert response.status_code == 422
        assert response.get_json()['current'] == 'cancelled'
        assert response.get_json()['requested'] == 'confirmed'

    def test_owner_may_only_cancel(self, client, book, owner_headers, future_day):
        booking = book(future_day, '10:00', 3).booking

        denied = client.post(f'/api/bookings/{booking.id}/transition', json={'to': 'completed'},
                             headers=owner_headers)
        allowed = client.post(f'/api/bookings/{booking.id}/transition', json={'action': 'cancel'},
                              headers=owner_headers)

        assert denied.status_code == 403
        assert allowed.status_code == 200
        assert allowed.get_json()['cancelled_by'] == 'owner'

    def test_other_owner_cannot_read(self, client, book, future_day):
        booking = book(future_day, '10:00', 3).booking

        response = client.get(f'/api/bookings/{booking.id}', headers=auth('owner', owner_id=999))

        assert response.status_code == 403


class TestCalendarRoutes:
    def test_status_not_connected(self, client, cleaner_headers):
        response = client.get('/api/calendar/status', headers=cleaner_headers)

        assert response.status_code == 200
        assert response.get_json()['connected'] is False

    def test_sync_without_connection(self, client, cleaner_headers):
        response = client.post('/api/calendar/sync', headers=cleaner_headers)

        assert response.status_code == 400
        assert response.get_json()['error']

    def test_own_id_as_string_is_allowed(self, client, cleaner, cleaner_headers):
        response = client.post('/api/calendar/disconnect', json={'cleaner_id': str(cleaner.id)},
                               headers=cleaner_headers)

        assert response.status_code == 200

    def test_connect_returns_consent_url(self, client, cleaner, cleaner_headers):
        with patch.object(Config, 'GOOGLE_CLIENT_ID', 'client-id'):
            response = client.get('/api/calendar/connect', headers=cleaner_headers)

        assert response.status_code == 200
        query = parse_qs(urlparse(response.get_json()['url']).query)
        state = verify_token(query['state'][0])
        assert state['cleaner_id'] == cleaner.id
        assert state['purpose'] == 'calendar_connect'

    def test_connect_not_configured(self, client, cleaner_headers):
        with patch.object(Config, 'GOOGLE_CLIENT_ID', None):
            response = client.get('/api/calendar/connect', headers=cleaner_headers)

        assert response.status_code == 503

    def test_callback_connects_and_redirects(self, client, cleaner):
        state = generate_token({'cleaner_id': cleaner.id, 'purpose': 'calendar_connect'})

        with patch.object(calendar_routes.calendar_service, 'connect_with_code',
                          return_value=SyncResult(2)) as connect:
            response = client.get(f'/api/calendar/google/callback?code=auth-code&state={state}')

        assert response.status_code == 302
        assert 'success=connected' in response.headers['Location']
        connect.assert_called_once_with(cleaner.id, 'auth-code')

    def test_callback_rejects_forged_state(self, client, cleaner):
        with patch.object(calendar_routes.calendar_service, 'connect_with_code') as connect:
            response = client.get('/api/calendar/google/callback?code=auth-code&state=not-a-token')

        assert 'error=invalid_state' in response.headers['Location']
        connect.assert_not_called()

    def test_callback_rejects_login_token_as_state(self, client, cleaner):
        state = generate_token({'user_id': 1, 'role': 'cleaner', 'cleaner_id': cleaner.id})

        response = client.get(f'/api/calendar/google/callback?code=auth-code&state={state}')

        assert 'error=invalid_state' in response.headers['Location']

    def test_callback_exchange_failure(self, client, cleaner):
        state = generate_token({'cleaner_id': cleaner.id, 'purpose': 'calendar_connect'})

        with patch.object(calendar_routes.calendar_service, 'connect_with_code',
                          side_effect=CalendarAuthError('Authorization code rejected (400)')):
            response = client.get(f'/api/calendar/google/callback?code=used&state={state}')

        assert 'error=token_exchange_failed' in response.headers['Location']

    def test_callback_user_denied(self, client):
        response = client.get('/api/calendar/google/callback?error=access_denied')

        assert 'error=access_denied' in response.headers['Location']


class TestAgentRoutes:
    def test_requires_agent_role(self, client, owner_headers):
        assert client.get('/api/agent/tools', headers=owner_headers).status_code == 403

    def test_list_tools(self, client, database):
        response = client.get('/api/agent/tools', headers=auth('agent'))

        assert len(response.get_json()['tools']) == 3

    def test_run_tool(self, client, cleaner, owner, villa, future_day):
        response = client.post('/api/agent/tools/create_booking', json={
            'context': {'cleaner_id': cleaner.id, 'owner_id': owner.id, 'conversation_id': 'wa-1'},
            'arguments': {'service': 'Arrival prep', 'date': future_day.isoformat(), 'time': '15:00'}
        }, headers=auth('agent'))

        body = response.get_json()
        assert response.status_code == 200
        assert body['success'] is True
        assert body['booking_id']

    def test_context(self, client, cleaner):
        response = client.get(f'/api/agent/context/{cleaner.id}', headers=auth('agent'))

        body = response.get_json()
        assert response.status_code == 200
        assert len(body['next_available_dates']) == 5
