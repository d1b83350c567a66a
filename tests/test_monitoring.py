import pytest

from xsd_repository.monitoring import PerformanceMonitor, get_monitor
from xsd_repository.repository import SchemaRepository


def test_track_records_success_and_failure():
    monitor = PerformanceMonitor()
    with monitor.track("resolve"):
        pass
    with pytest.raises(ValueError):
        with monitor.track("resolve"):
            raise ValueError("boom")

    summary = monitor.get_performance_summary()["operations"]["resolve"]
    assert summary["count"] == 2
    assert summary["failures"] == 1


def test_endpoint_metrics():
    monitor = PerformanceMonitor()
    monitor.record_endpoint_request("GET /types/{name}", 0.010, 200)
    monitor.record_endpoint_request("GET /types/{name}", 0.030, 404)

    api = monitor.get_performance_summary()["api"]
    endpoint = api["endpoints"]["GET /types/{name}"]
    assert endpoint["requests"] == 2
    assert endpoint["avg_response_time_ms"] == 20.0
    assert endpoint["error_rate"] == 50.0
    assert api["recent_errors"][0]["status_code"] == 404


def test_cache_hit_rate():
    monitor = PerformanceMonitor()
    monitor.record_cache_hit()
    monitor.record_cache_hit()
    monitor.record_cache_hit()
    monitor.record_cache_miss()
    assert monitor.get_performance_summary()["cache"]["hit_rate"] == 75.0

    monitor.reset_metrics()
    assert monitor.get_performance_summary()["cache"]["total_requests"] == 0


def test_repository_operations_are_recorded(city_repository):
    operations = get_monitor().get_performance_summary()["operations"]
    assert operations["parse"]["count"] == 1
    assert operations["resolve"]["count"] == 1
