"""TTL caches and request keys."""

from test_common import *
from src.core.cache import TTLCache, request_key


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestTTLCache:
    def test_expiry(self):
        clock = Clock()
        cache = TTLCache(60, clock=clock)
        cache.set('k', {'rows': []})
        clock.now += 59
        assert cache.get('k') == {'rows': []}
        clock.now += 1
        assert cache.get('k') is None
        assert 'k' not in cache

    def test_delete_and_clear(self):
        cache = TTLCache(60, clock=Clock())
        cache.set('a', 1)
        cache.set('b', 2)
        assert cache.delete('a')
        assert not cache.delete('a')
        cache.clear()
        assert len(cache) == 0

    def test_set_purges_expired(self):
        clock = Clock()
        cache = TTLCache(10, clock=clock)
        cache.set('old', 1)
        clock.now += 11
        cache.set('new', 2)
        assert len(cache) == 1

    def test_persisted_between_instances(self, tmp_path):
        path = tmp_path / 'cache' / 'results.json'
        clock = Clock()
        TTLCache(60, clock=clock, path=path).set('k', 'v')
        assert path.exists()
        reloaded = TTLCache(60, clock=clock, path=path)
        assert reloaded.get('k') == 'v'
        clock.now += 120
        assert TTLCache(60, clock=clock, path=path).get('k') is None

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / 'rates.json'
        path.write_text('{not json', encoding='utf-8')
        assert len(TTLCache(60, path=path)) == 0


class TestRequestKey:
    def test_stable_and_order_independent(self):
        assert request_key(address=OWNER, timezone='UTC') == request_key(timezone='UTC', address=OWNER)

    def test_options_change_key(self):
        assert request_key(address=OWNER, dust_mode='off') != request_key(address=OWNER, dust_mode='remove')
