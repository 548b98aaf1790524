from datetime import timedelta

import pytest

from app.database import DatabaseManager, get_db
from app.models import Booking, BookingEvent, Cleaner
from app.models.booking import BookingStatus
from app.services.booking_service import TRANSITIONS, can_transition, parse_status
from app.services.exceptions import BookingValidationError, InvalidTransitionError, NotFoundError
from app.utils.time_utils import today_in

ALL_STATUSES = list(BookingStatus)

ALLOWED = {
    (BookingStatus.PENDING, BookingStatus.CONFIRMED),
    (BookingStatus.PENDING, BookingStatus.CANCELLED),
    (BookingStatus.CONFIRMED, BookingStatus.COMPLETED),
    (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
}


def _set_status(booking_id, status, day=None):
    with get_db() as db:
        booking = db.query(Booking).filter_by(id=booking_id).first()
        booking.status = status
        if day:
            booking.date = day


@pytest.fixture
def today_booking(book):
    """A confirmed booking for today, so completion is allowed"""
    return book(today_in('Europe/Madrid'), '23:00', 1).booking


class TestTransitionGraph:
    @pytest.mark.parametrize('current', ALL_STATUSES)
    @pytest.mark.parametrize('requested', ALL_STATUSES)
    def test_graph(self, current, requested):
        assert can_transition(current, requested) == ((current, requested) in ALLOWED)

    def test_terminal_states(self):
        assert TRANSITIONS[BookingStatus.COMPLETED] == set()
        assert TRANSITIONS[BookingStatus.CANCELLED] == set()

    def test_parse_status(self):
        assert parse_status('CONFIRMED') == BookingStatus.CONFIRMED
        assert parse_status(BookingStatus.PENDING) == BookingStatus.PENDING
        with pytest.raises(BookingValidationError):
            parse_status('archived')


class TestBookingLifecycle:
    @pytest.mark.parametrize('current', ALL_STATUSES)
    @pytest.mark.parametrize('requested', ALL_STATUSES)
    def test_matrix_against_database(self, lifecycle, today_booking, current, requested):
        _set_status(today_booking.id, current)

        if (current, requested) in ALLOWED:
            booking = lifecycle.transition(today_booking.id, requested, actor='cleaner')
            assert booking.status == requested
        else:
            with pytest.raises(InvalidTransitionError) as exc:
                lifecycle.transition(today_booking.id, requested, actor='cleaner')
            assert exc.value.to_dict() == {
                'error': exc.value.message,
                'current': current.value,
                'requested': requested.value
            }
            assert DatabaseManager(Booking).get(today_booking.id).status == current

    def test_accept_then_complete(self, lifecycle, book, cleaner, notifier):
        booking = book(today_in('Europe/Madrid'), '23:00', 1, status=BookingStatus.PENDING).booking

        lifecycle.apply_action(booking.id, 'accept', actor='cleaner')
        completed = lifecycle.apply_action(booking.id, 'complete', actor='cleaner')

        assert completed.status == BookingStatus.COMPLETED
        assert completed.confirmed_at is not None
        assert completed.completed_at is not None
        assert DatabaseManager(Cleaner).get(cleaner.id).completed_bookings == 1

        events = DatabaseManager(BookingEvent).filter(booking_id=booking.id)
        assert [(e.from_status, e.to_status) for e in sorted(events, key=lambda e: e.id)] == [
            (None, BookingStatus.PENDING),
            (BookingStatus.PENDING, BookingStatus.CONFIRMED),
            (BookingStatus.CONFIRMED, BookingStatus.COMPLETED),
        ]
        assert notifier.send_status_change.call_count == 2

    def test_decline_only_from_pending(self, lifecycle, today_booking):
        with pytest.raises(InvalidTransitionError) as exc:
            lifecycle.apply_action(today_booking.id, 'decline', actor='cleaner')

        assert 'decline' in exc.value.message

    def test_unknown_action(self, lifecycle, today_booking):
        with pytest.raises(BookingValidationError):
            lifecycle.apply_action(today_booking.id, 'archive')

    def test_cancel_records_actor_and_frees_slot(self, lifecycle, resolver, book, cleaner, future_day):
        booking = book(future_day, '10:00', 3).booking

        cancelled = lifecycle.apply_action(booking.id, 'cancel', actor='owner')

        assert cancelled.cancelled_by == 'owner'
        assert cancelled.cancelled_at is not None
        assert resolver.is_available(cleaner.id, future_day, '10:00', '13:00')
        assert book(future_day, '10:00', 3).ok

    def test_cannot_complete_before_booking_date(self, lifecycle, book, future_day):
        booking = book(future_day, '10:00', 3).booking

        with pytest.raises(InvalidTransitionError) as exc:
            lifecycle.transition(booking.id, BookingStatus.COMPLETED, actor='cleaner')

        assert 'before' in exc.value.message
        assert DatabaseManager(Booking).get(booking.id).status == BookingStatus.CONFIRMED

    def test_completing_past_booking(self, lifecycle, today_booking):
        _set_status(today_booking.id, BookingStatus.CONFIRMED, today_in('Europe/Madrid') - timedelta(days=2))

        assert lifecycle.transition(today_booking.id, 'completed').status == BookingStatus.COMPLETED

    def test_transition_bumps_schedule_version(self, lifecycle, today_booking, cleaner):
        before = DatabaseManager(Cleaner).get(cleaner.id).schedule_version

        lifecycle.transition(today_booking.id, BookingStatus.CANCELLED, actor='cleaner')

        assert DatabaseManager(Cleaner).get(cleaner.id).schedule_version == before + 1

    def test_missing_booking(self, lifecycle, database):
        with pytest.raises(NotFoundError):
            lifecycle.transition(404, BookingStatus.CONFIRMED)
        with pytest.raises(NotFoundError):
            lifecycle.get_booking(404)

    def test_no_notification_when_disabled(self, lifecycle, today_booking, notifier):
        lifecycle.transition(today_booking.id, BookingStatus.CANCELLED, notify=False)

        notifier.send_status_change.assert_not_called()
