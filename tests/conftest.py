import os

# Must be set before config/database are imported
os.environ['DATABASE_URL'] = 'sqlite:///test_villacare.db'
os.environ['CALENDAR_RETRY_BACKOFF'] = '0'
os.environ['SYNC_SCHEDULER_ENABLED'] = 'false'
os.environ.pop('REDIS_URL', None)
os.environ.pop('TWILIO_ACCOUNT_SID', None)

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from app.database import drop_db, init_db, DatabaseManager
from app.models import Cleaner, Owner, Property
from app.services.availability_service import AvailabilityResolver, AvailabilityStore
from app.services.booking_guard import BookingConflictGuard
from app.services.booking_service import BookingLifecycle
from app.services.notification_service import NotificationService
from app.utils.cache import AvailabilityCache, Cache
from app.utils.time_utils import today_in


@pytest.fixture
def database():
    """Fresh schema for each test"""
    drop_db()
    init_db()
    yield
    drop_db()


@pytest.fixture
def cleaner(database):
    return DatabaseManager(Cleaner).create(
        name='Clara',
        phone='+34611000000',
        hourly_rate=20.0,
        timezone='Europe/Madrid'
    )


@pytest.fixture
def owner(database):
    return DatabaseManager(Owner).create(name='James', phone='+447700000000')


@pytest.fixture
def villa(owner):
    return DatabaseManager(Property).create(
        owner_id=owner.id,
        name='Villa Sol',
        address='Calle Mayor 12, Alhaurín el Grande',
        bedrooms=3,
        bathrooms=2
    )


@pytest.fixture
def future_day():
    """A date safely in the future in the cleaner's timezone"""
    return today_in('Europe/Madrid') + timedelta(days=7)


@pytest.fixture
def notifier():
    return MagicMock(spec=NotificationService)


@pytest.fixture
def store():
    # No Redis in tests; every read goes to the database
    return AvailabilityStore(cache=AvailabilityCache(cache=Cache(url='')))


@pytest.fixture
def resolver(store):
    return AvailabilityResolver(store)


@pytest.fixture
def guard(store, notifier):
    return BookingConflictGuard(store=store, notification_service=notifier)


@pytest.fixture
def lifecycle(store, notifier):
    return BookingLifecycle(store=store, notification_service=notifier)


@pytest.fixture
def book(guard, cleaner, owner, villa):
    """Create a booking for the default cleaner/owner/villa"""
    def _book(day, time, hours, **kwargs):
        kwargs.setdefault('service', 'Regular clean')
        kwargs.setdefault('price', 60.0)
        return guard.try_create_booking(
            cleaner_id=cleaner.id,
            owner_id=owner.id,
            property_id=villa.id,
            date=day,
            time=time,
            hours=hours,
            **kwargs
        )
    return _book
