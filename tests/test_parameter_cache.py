import threading
from concurrent.futures import ThreadPoolExecutor

from capsize.parameter_cache import ParameterCache

KB = 1024


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def test_bucket_key_rounds_size_and_ratio():
    key = ParameterCache.bucket_key('JPEG', 250 * KB, 83 * KB)
    assert key == ('jpeg', 200, 0.3)


def test_average_of_observations_in_bucket():
    cache = ParameterCache()
    cache.set('jpeg', 1000 * KB, 500 * KB, 60)
    cache.set('jpeg', 1000 * KB, 500 * KB, 80)

    assert cache.get('jpeg', 1000 * KB, 500 * KB) == 70
    assert len(cache) == 1


def test_nearby_requests_share_a_bucket():
    cache = ParameterCache()
    cache.set('webp', 1010 * KB, 505 * KB, 64)

    assert cache.get('webp', 1050 * KB, 520 * KB) == 64
    assert cache.get('jpeg', 1050 * KB, 520 * KB) is None


def test_expired_entry_is_a_miss_and_evicted():
    clock = FakeClock()
    cache = ParameterCache(ttl_seconds=3600, clock=clock)
    cache.set('jpeg', 1000 * KB, 500 * KB, 60)

    clock.now = 3599
    assert cache.get('jpeg', 1000 * KB, 500 * KB) == 60

    clock.now = 3600
    assert cache.get('jpeg', 1000 * KB, 500 * KB) is None
    assert len(cache) == 0


def test_set_on_expired_entry_starts_fresh_average():
    clock = FakeClock()
    cache = ParameterCache(ttl_seconds=10, clock=clock)
    cache.set('jpeg', 1000 * KB, 500 * KB, 20)

    clock.now = 20
    cache.set('jpeg', 1000 * KB, 500 * KB, 80)

    assert cache.get('jpeg', 1000 * KB, 500 * KB) == 80


def test_least_recently_updated_entry_is_evicted():
    clock = FakeClock()
    cache = ParameterCache(max_entries=2, clock=clock)

    cache.set('jpeg', 1000 * KB, 500 * KB, 50)
    clock.now = 1
    cache.set('png', 1000 * KB, 500 * KB, 60)
    clock.now = 2
    # Refresh jpeg so png becomes the oldest
    cache.set('jpeg', 1000 * KB, 500 * KB, 70)
    clock.now = 3
    cache.set('webp', 1000 * KB, 500 * KB, 90)

    assert len(cache) == 2
    assert cache.get('png', 1000 * KB, 500 * KB) is None
    assert cache.get('jpeg', 1000 * KB, 500 * KB) == 60
    assert cache.get('webp', 1000 * KB, 500 * KB) == 90


def test_stats_and_clear():
    clock = FakeClock(100.0)
    cache = ParameterCache(clock=clock)
    cache.set('jpeg', 1000 * KB, 500 * KB, 60)
    cache.get('jpeg', 1000 * KB, 500 * KB)
    cache.get('png', 1000 * KB, 500 * KB)
    clock.now = 130.0

    stats = cache.stats()
    assert stats['size'] == 1
    assert stats['max_size'] == 100
    assert (stats['hits'], stats['misses']) == (1, 1)
    assert stats['entries'] == [
        {'key': 'jpeg_1000_0.5', 'average_quality': 60, 'count': 1, 'age_seconds': 30.0}
    ]

    cache.clear()
    assert len(cache) == 0
    assert cache.stats()['hits'] == 0


def test_concurrent_updates_to_one_bucket_are_not_lost():
    cache = ParameterCache()
    workers, per_worker = 8, 250
    start = threading.Barrier(workers)

    def hammer(worker):
        start.wait()
        for i in range(per_worker):
            # Alternating 60/80 keeps the exact average at 70
            cache.set('jpeg', 1000 * KB, 500 * KB, 60 if (worker + i) % 2 else 80)
            cache.get('jpeg', 1000 * KB, 500 * KB)

    with ThreadPoolExecutor(max_workers=workers) as executor:
        list(executor.map(hammer, range(workers)))

    stats = cache.stats()
    assert stats['entries'][0]['count'] == workers * per_worker
    assert cache.get('jpeg', 1000 * KB, 500 * KB) == 70
    assert stats['hits'] == workers * per_worker
