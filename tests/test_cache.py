import os
import time

from xsd_repository.cache import PackageCache
from xsd_repository.monitoring import get_monitor


def test_cache_hit_returns_same_repository(city_package):
    cache = PackageCache(default_ttl=60)
    first = cache.load(city_package)
    second = cache.load(city_package)

    assert first is second
    metrics = get_monitor().cache_metrics
    assert metrics.hits == 1
    assert metrics.misses == 1
    assert cache.get_cache_stats()["cache_size"] == 1


def test_force_refresh_reloads(city_package):
    cache = PackageCache(default_ttl=60)
    first = cache.load(city_package)
    assert cache.load(city_package, force_refresh=True) is not first


def test_package_change_invalidates(city_package):
    cache = PackageCache(default_ttl=60)
    first = cache.load(city_package)
    future = time.time() + 60
    os.utime(city_package, (future, future))
    assert cache.load(city_package) is not first


def test_ttl_expiry():
    cache = PackageCache(default_ttl=60)
    cache.set("key", "value", ttl=0.01)
    time.sleep(0.05)
    assert cache.get("key") is None
    assert get_monitor().cache_metrics.evictions == 1


def test_invalidate_and_clear():
    cache = PackageCache(enable_monitoring=False)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.invalidate("a")
    assert cache.get("a") is None
    assert cache.get("b") == 2
    cache.clear()
    assert cache.get_cache_stats()["cache_size"] == 0


def test_package_load_is_tracked(city_package):
    PackageCache().load(city_package)
    assert get_monitor().operations["package_load"].count == 1
