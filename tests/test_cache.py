import fnmatch
from unittest.mock import patch

import pytest
import redis

from app.database import DatabaseManager
from app.models import Cleaner
from app.services.availability_service import AvailabilityResolver, AvailabilityStore
from app.utils.cache import AvailabilityCache, Cache


class FakeRedis:
    """Just enough of the redis client for the cache wrapper"""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    def get(self, key):
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl

    def scan_iter(self, match=None):
        return [k for k in list(self.data) if match is None or fnmatch.fnmatch(k, match)]

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed


class BrokenRedis(FakeRedis):
    def get(self, key):
        raise redis.ConnectionError('down')

    def setex(self, key, ttl, value):
        raise redis.ConnectionError('down')


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cached_store(fake_redis):
    return AvailabilityStore(cache=AvailabilityCache(cache=Cache(client=fake_redis), ttl=120))


class TestCache:
    def test_disabled_without_url(self):
        cache = Cache(url='')

        assert cache.get('anything') is None
        assert cache.set('anything', [1], 60) is False
        assert cache.delete_pattern('*') == 0

    def test_json_round_trip_with_ttl(self, fake_redis):
        cache = Cache(client=fake_redis)

        assert cache.set('k', {'a': [1, 2]}, 30)
        assert cache.get('k') == {'a': [1, 2]}
        assert fake_redis.ttls['k'] == 30

    def test_redis_errors_degrade_to_miss(self):
        cache = Cache(client=BrokenRedis())

        assert cache.get('k') is None
        assert cache.set('k', 1, 30) is False

    def test_key_layout(self, future_day):
        cache = AvailabilityCache(cache=Cache(url=''))

        assert cache.key(7, 3, future_day) == f"availability:7:3:{future_day.isoformat()}"

    def test_invalidate_only_touches_one_cleaner(self, fake_redis, future_day):
        cache = AvailabilityCache(cache=Cache(client=fake_redis), ttl=60)
        cache.set(1, 0, future_day, [])
        cache.set(1, 1, future_day, [])
        cache.set(12, 0, future_day, [])

        assert cache.invalidate(1) == 2
        assert list(fake_redis.data) == [cache.key(12, 0, future_day)]


class TestResolverCaching:
    def test_second_read_served_from_cache(self, cached_store, fake_redis, cleaner, future_day):
        resolver = AvailabilityResolver(cached_store)
        cached_store.add_manual_block(cleaner.id, future_day, '10:00', '12:00')

        first = resolver.get_unavailable_intervals(cleaner.id, future_day)
        with patch.object(cached_store, 'load_intervals') as load:
            second = resolver.get_unavailable_intervals(cleaner.id, future_day)

        load.assert_not_called()
        assert second == first
        assert fake_redis.ttls[cached_store.cache.key(cleaner.id, 1, future_day)] == 120

    def test_writes_invalidate(self, cached_store, fake_redis, cleaner, future_day):
        resolver = AvailabilityResolver(cached_store)
        assert resolver.get_unavailable_intervals(cleaner.id, future_day) == []
        assert fake_redis.data

        cached_store.add_manual_block(cleaner.id, future_day, '10:00', '12:00')

        assert fake_redis.data == {}
        assert len(resolver.get_unavailable_intervals(cleaner.id, future_day)) == 1

    def test_version_bump_alone_hides_stale_entries(self, cached_store, fake_redis, cleaner, future_day):
        resolver = AvailabilityResolver(cached_store)
        assert resolver.get_unavailable_intervals(cleaner.id, future_day) == []

        # A writer that bumped the version but whose invalidation never ran
        with patch.object(cached_store, 'invalidate'):
            cached_store.add_manual_block(cleaner.id, future_day, '10:00', '12:00')

        assert DatabaseManager(Cleaner).get(cleaner.id).schedule_version == 1
        assert len(resolver.get_unavailable_intervals(cleaner.id, future_day)) == 1
