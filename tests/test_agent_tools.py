import json
import threading
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from app.database import DatabaseManager
from app.models import AgentHandoff, Booking, Property
from app.models.booking import BookingStatus
from app.services.agent_tools import (
    AgentBookingTool, AgentContext, CreateBooking, agent_schedule_context, execute_tool,
    match_property, tool_definitions
)
from app.services.calendar_sync_service import CalendarSyncService, SyncResult
from app.services.exceptions import ConflictReason
from app.utils.time_utils import today_in


@pytest.fixture
def tool(resolver, guard, notifier):
    return AgentBookingTool(resolver=resolver, guard=guard, notification_service=notifier)


@pytest.fixture
def context(cleaner, owner, villa):
    return AgentContext(
        cleaner_id=cleaner.id,
        owner_id=owner.id,
        conversation_id='conv-1',
        owner_name=owner.name
    )


def create_args(day, time='10:00', **kwargs):
    args = {'service': 'Regular clean', 'date': day.isoformat(), 'time': time}
    args.update(kwargs)
    return args


class TestExecuteTool:
    def test_unknown_tool(self, context):
        result = execute_tool('delete_booking', {}, context)

        assert not result.success
        assert 'Unknown tool' in result.message

    def test_invalid_json(self, tool, context):
        result = execute_tool('create_booking', '{not json', context, tool=tool)

        assert not result.success
        assert 'not valid JSON' in result.message

    @pytest.mark.parametrize('args', [
        {'service': 'Window cleaning', 'date': '2030-01-01', 'time': '10:00'},
        {'service': 'Regular clean', 'date': '01/01/2030', 'time': '10:00'},
        {'service': 'Regular clean', 'date': '2030-01-01', 'time': '10am'},
        {'service': 'Regular clean', 'date': '2030-01-01'},
        {'service': 'Regular clean', 'date': '2030-01-01', 'time': '10:00', 'price': 1},
        ['Regular clean'],
    ])
    def test_invalid_arguments(self, tool, context, args):
        result = execute_tool('create_booking', args, context, tool=tool)

        assert not result.success
        assert result.message.startswith('Invalid arguments for create_booking')
        assert DatabaseManager(Booking).count() == 0

    def test_accepts_json_string(self, tool, context, future_day):
        result = execute_tool('create_booking', json.dumps(create_args(future_day)), context, tool=tool)

        assert result.success

    def test_tool_definitions(self):
        definitions = {d['function']['name']: d for d in tool_definitions()}

        assert set(definitions) == {'check_availability', 'create_booking', 'request_handoff'}
        params = definitions['create_booking']['function']['parameters']
        assert set(params['required']) == {'service', 'date', 'time'}
        assert params['additionalProperties'] is False
        assert params['properties']['service']['enum'] == ['Regular clean', 'Deep clean', 'Arrival prep']


class TestCheckAvailability:
    def test_whole_days(self, tool, store, context, book, future_day):
        store.add_manual_block(context.cleaner_id, future_day, '00:00', '24:00', 'Holiday')
        yesterday = today_in('Europe/Madrid') - timedelta(days=1)
        free_day = future_day + timedelta(days=1)

        result = execute_tool('check_availability', {
            'dates': [future_day.isoformat(), free_day.isoformat(), yesterday.isoformat()]
        }, context, tool=tool)

        assert result.success
        by_date = {r['date']: r for r in result.data['results']}
        assert by_date[future_day.isoformat()] == {'date': future_day.isoformat(), 'available': False, 'reason': 'Blocked'}
        assert by_date[free_day.isoformat()]['available'] is True
        assert by_date[yesterday.isoformat()]['reason'] == 'Date is in the past'
        assert result.message.startswith(f"Available: {free_day.isoformat()}")

    def test_specific_time(self, tool, context, book, future_day):
        assert book(future_day, '10:00', 3).ok

        result = execute_tool('check_availability', {
            'dates': [future_day.isoformat()], 'time': '11:00', 'hours': 2
        }, context, tool=tool)

        entry = result.data['results'][0]
        assert entry['available'] is False
        assert entry['reason'] == 'Already booked'
        # Nothing free, so alternatives are offered
        assert result.data['suggestions'][0] == (future_day + timedelta(days=1)).isoformat()

    def test_touching_time_is_free(self, tool, context, book, future_day):
        assert book(future_day, '10:00', 3).ok

        result = execute_tool('check_availability', {
            'dates': [future_day.isoformat()], 'time': '13:00', 'hours': 2
        }, context, tool=tool)

        assert result.data['results'][0]['available'] is True
        assert 'suggestions' not in result.data


class TestCreateBooking:
    def test_creates_confirmed_ai_booking(self, tool, context, villa, future_day, notifier):
        result = execute_tool('create_booking', create_args(future_day, notes='Two dogs', extras=['Oven']),
                              context, tool=tool)

        assert result.success
        assert result.retryable is False
        booking = DatabaseManager(Booking).get(result.booking_id)
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.created_by_ai is True
        assert booking.property_id == villa.id
        assert booking.hours == 3
        assert booking.price == 60.0
        assert booking.notes == 'Two dogs\nExtras: Oven'
        assert result.message == f"Booking confirmed! Regular clean on {future_day.isoformat()} at 10:00 for 60.00 total."

    def test_service_hours(self, tool, context, future_day):
        result = execute_tool('create_booking', create_args(future_day, service='Deep clean'), context, tool=tool)

        assert result.data['hours'] == 5
        assert result.data['price'] == 100.0

    def test_unavailable_slot_is_not_silently_moved(self, tool, context, book, future_day):
        assert book(future_day, '09:00', 3).ok

        result = execute_tool('create_booking', create_args(future_day, time='11:00'), context, tool=tool)

        assert not result.success
        assert 'Already booked' in result.message
        assert result.data['reason'] == ConflictReason.ALREADY_BOOKED
        assert result.data['suggestions']
        assert DatabaseManager(Booking).count() == 1

    def test_past_date(self, tool, context):
        yesterday = today_in('Europe/Madrid') - timedelta(days=1)

        result = execute_tool('create_booking', create_args(yesterday), context, tool=tool)

        assert not result.success
        assert result.data['reason'] == ConflictReason.PAST_DATE

    def test_slot_past_midnight(self, tool, context, future_day):
        result = execute_tool('create_booking', create_args(future_day, time='22:00'), context, tool=tool)

        assert not result.success
        assert 'midnight' in result.message

    def test_requires_owner(self, tool, cleaner, future_day):
        result = execute_tool('create_booking', create_args(future_day), AgentContext(cleaner_id=cleaner.id), tool=tool)

        assert not result.success
        assert 'not associated with an owner' in result.message

    def test_lost_race_is_retryable(self, tool, context, future_day):
        # Slot looked free, then another booking won the lock
        tool.guard = MagicMock()
        tool.guard.try_create_booking.return_value = MagicMock(ok=False, conflict=MagicMock(reason='ALREADY_BOOKED'))

        result = execute_tool('create_booking', create_args(future_day), context, tool=tool)

        assert not result.success
        assert result.retryable is True
        assert 'no longer available' in result.message
        assert result.data['time'] == '10:00'

    def test_concurrent_agents_one_wins(self, tool, context, future_day):
        barrier = threading.Barrier(2)
        results = []

        def attempt():
            barrier.wait()
            results.append(execute_tool('create_booking', create_args(future_day), context, tool=tool))

        threads = [threading.Thread(target=attempt) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        winners = [r for r in results if r.success]
        losers = [r for r in results if not r.success]
        assert len(winners) == 1
        assert len(losers) == 1
        assert future_day.isoformat() in losers[0].message
        assert '10:00' in losers[0].message
        assert DatabaseManager(Booking).count() == 1


class TestPropertyResolution:
    def test_context_property_wins(self, tool, context, owner, villa, future_day):
        other = DatabaseManager(Property).create(owner_id=owner.id, name='Casa Luna', address='Camino Viejo 4, Coín')
        context.property_id = other.id

        result = execute_tool('create_booking', create_args(future_day, property_address='Calle Mayor 12'),
                              context, tool=tool)

        assert DatabaseManager(Booking).get(result.booking_id).property_id == other.id

    def test_fuzzy_address_match(self, tool, context, villa, future_day):
        result = execute_tool('create_booking', create_args(future_day, property_address='calle mayor 12'),
                              context, tool=tool)

        assert DatabaseManager(Booking).get(result.booking_id).property_id == villa.id
        assert result.data['placeholder_property'] is False

    def test_unknown_address_creates_placeholder(self, tool, context, owner, villa, future_day):
        result = execute_tool('create_booking', create_args(future_day, property_address='Urb. El Lagar 7, Mijas'),
                              context, tool=tool)

        assert result.success
        assert 'cleaner will confirm' in result.message
        prop = DatabaseManager(Property).get(DatabaseManager(Booking).get(result.booking_id).property_id)
        assert prop.is_placeholder is True
        assert (prop.bedrooms, prop.bathrooms) == (2, 1)
        assert prop.owner_id == owner.id

    def test_no_address_and_no_property(self, tool, cleaner, owner, future_day):
        # Owner fixture without the villa
        context = AgentContext(cleaner_id=cleaner.id, owner_id=owner.id)

        result = execute_tool('create_booking', create_args(future_day), context, tool=tool)

        assert not result.success
        assert 'ask for the property address' in result.message

    def test_match_property_token_overlap(self):
        villa = Property(address='Calle Mayor 12, Alhaurín el Grande')
        other = Property(address='Camino Viejo 4, Coín')

        assert match_property([other, villa], 'Mayor 12 Alhaurín') is villa
        assert match_property([other, villa], 'Somewhere else entirely') is None


class TestHandoff:
    def test_records_and_alerts(self, tool, context, notifier):
        result = execute_tool('request_handoff', {'reason': 'Wants a quote for a wedding'}, context, tool=tool)

        assert result.success
        handoff = DatabaseManager(AgentHandoff).get(result.data['handoff_id'])
        assert handoff.conversation_id == 'conv-1'
        assert handoff.resolved is False
        notifier.send_handoff_alert.assert_called_once_with(handoff.id)

    def test_empty_reason_rejected(self, tool, context):
        assert not execute_tool('request_handoff', {'reason': ''}, context, tool=tool).success


class TestScheduleContext:
    def test_busy_and_next_dates(self, resolver, store, cleaner):
        today = today_in('Europe/Madrid')
        tomorrow = today + timedelta(days=1)
        store.add_manual_block(cleaner.id, tomorrow, '00:00', '24:00')
        sync_service = MagicMock(spec=CalendarSyncService)
        sync_service.connection_status.return_value = {'connected': False}

        context = agent_schedule_context(cleaner.id, resolver=resolver, sync_service=sync_service)

        assert context['busy_dates'] == [tomorrow.isoformat()]
        assert len(context['next_available_dates']) == 5
        assert tomorrow.isoformat() not in context['next_available_dates']
        assert today.isoformat() not in context['next_available_dates']
        sync_service.sync.assert_not_called()

    def test_connected_calendar_gets_short_sync(self, resolver, cleaner):
        sync_service = MagicMock(spec=CalendarSyncService)
        sync_service.connection_status.return_value = {'connected': True}
        sync_service.sync.return_value = SyncResult(0, 'Could not reach Google Calendar')

        agent_schedule_context(cleaner.id, resolver=resolver, sync_service=sync_service)

        sync_service.sync.assert_called_once_with(cleaner.id, days=14)


def test_create_booking_model_forbids_extra_fields():
    assert CreateBooking.model_config['extra'] == 'forbid'
