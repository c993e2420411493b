"""
Tests for CapabilityProfiler measurement, degradation and caching.
"""

import json

import pytest

from fleet_auditor.core.errors import TransportError
from fleet_auditor.core.models import PerformanceTier, Target
from fleet_auditor.profiling.cache import InMemoryProfileCache, JsonFileProfileCache
from fleet_auditor.profiling.profiler import CapabilityProfiler

from tests.conftest import FakeNetwork, FakeTransport

DAY = 24 * 3600


@pytest.fixture
def profiler(transport, cache, network, clock):
    return CapabilityProfiler(transport, cache, network, clock=clock)


def measure_calls(transport):
    return len(transport.actions("measure"))


class TestMeasurement:

    def test_very_high_scenario(self, profiler, local_target):
        profile = profiler.profile(local_target)

        assert profile.tier == PerformanceTier.VERY_HIGH
        assert profile.safe_parallel_jobs >= 8
        assert profile.constraints == []
        assert profile.network_latency_ms is None
        assert profile.cached is False

    def test_low_scenario(self, cache, network, clock, local_target):
        transport = FakeTransport(metrics={
            "cpu": {"cpu_cores": 2},
            "memory": {"total_memory_gb": 2.0, "available_memory_gb": 0.1, "memory_used_percent": 95.0},
            "disk": {"disk_read_latency_ms": 5.0, "disk_write_latency_ms": 5.0, "disk_free_percent": 60.0},
            "load": {"system_load_percent": 10.0},
        })
        profile = CapabilityProfiler(transport, cache, network, clock=clock).profile(local_target)

        assert profile.tier == PerformanceTier.LOW
        assert profile.safe_parallel_jobs == 1
        assert "low-cpu" in profile.constraints
        assert "high-memory-usage" in profile.constraints

    def test_failed_metric_degrades_and_is_recorded(self, cache, network, clock, local_target):
        transport = FakeTransport()
        transport.metrics["disk"] = TransportError("timeout", "disk probe hung")

        profile = CapabilityProfiler(transport, cache, network, clock=clock).profile(local_target)

        assert "disk-unmeasured" in profile.constraints
        assert profile.disk_free_percent == 5.0
        assert profile.safe_parallel_jobs >= 1
        assert profile.job_timeout > 0

    def test_every_metric_failing_still_yields_a_profile(self, cache, network, clock, remote_target):
        transport = FakeTransport()
        for metric in list(transport.metrics):
            transport.metrics[metric] = TransportError("unreachable")
        network.latency = None

        profile = CapabilityProfiler(transport, cache, network, clock=clock).profile(remote_target)

        assert profile.tier == PerformanceTier.LOW
        assert profile.safe_parallel_jobs == 1
        assert {"cpu-unmeasured", "memory-unmeasured", "disk-unmeasured",
                "load-unmeasured", "network-unmeasured"} <= set(profile.constraints)

    @pytest.mark.parametrize("payload", [
        {"cpu_cores": None},
        {"cpu_cores": "many"},
        ["cpu_cores", 16],
    ])
    def test_malformed_metric_degrades_only_that_metric(self, cache, network, clock, local_target, payload):
        transport = FakeTransport()
        transport.metrics["cpu"] = payload

        profile = CapabilityProfiler(transport, cache, network, clock=clock).profile(local_target)

        assert profile.cpu_cores == 1
        assert profile.tier == PerformanceTier.LOW
        assert "cpu-unmeasured" in profile.constraints
        assert "memory-unmeasured" not in profile.constraints
        assert profile.total_memory_gb == 32.0

    def test_numeric_strings_are_accepted(self, cache, network, clock, local_target):
        transport = FakeTransport()
        transport.metrics["load"] = {"system_load_percent": "12.5"}

        profile = CapabilityProfiler(transport, cache, network, clock=clock).profile(local_target)

        assert profile.system_load_percent == 12.5
        assert "load-unmeasured" not in profile.constraints

    def test_network_latency_measured_only_for_remote(self, transport, cache, clock, remote_target):
        network = FakeNetwork(latency=150.0)
        profile = CapabilityProfiler(transport, cache, network, clock=clock).profile(remote_target)

        assert profile.network_latency_ms == 150.0
        assert profile.safe_parallel_jobs == 1
        assert "high-network-latency" in profile.constraints

    def test_overall_timeout_uses_collector_count(self, profiler, local_target):
        profile = profiler.profile(local_target, collector_count=20)
        assert profile.overall_timeout == 45.0 * 3 * 1.5


class TestCaching:

    def test_second_call_within_window_is_cached(self, profiler, transport, local_target):
        first = profiler.profile(local_target)
        calls = measure_calls(transport)
        second = profiler.profile(local_target)

        assert measure_calls(transport) == calls
        assert second.cached is True
        first.cached = second.cached
        assert first == second

    def test_call_after_window_remeasures(self, profiler, transport, clock, local_target):
        profiler.profile(local_target)
        calls = measure_calls(transport)
        clock.advance(DAY + 1)

        profile = profiler.profile(local_target)

        assert measure_calls(transport) == calls * 2
        assert profile.cached is False
        assert profile.timestamp == clock.now

    def test_use_cache_false_forces_remeasure_and_overwrite(self, profiler, transport, cache, clock, local_target):
        profiler.profile(local_target)
        clock.advance(60)
        transport.metrics["cpu"] = {"cpu_cores": 4}

        fresh = profiler.profile(local_target, use_cache=False)

        assert fresh.cpu_cores == 4
        assert cache.get(local_target.key).cpu_cores == 4
        assert profiler.profile(local_target).timestamp == clock.now

    def test_cache_hit_recomputes_overall_timeout(self, profiler, local_target):
        profiler.profile(local_target, collector_count=1)
        cached = profiler.profile(local_target, collector_count=16)
        assert cached.cached is True
        assert cached.overall_timeout == 45.0 * 2 * 1.5

    def test_entries_are_keyed_by_target_identity(self, profiler, transport):
        profiler.profile(Target("LocalHost"))
        calls = measure_calls(transport)
        assert profiler.profile(Target("localhost")).cached is True
        assert measure_calls(transport) == calls

    def test_invalidate_drops_entry(self, profiler, transport, local_target):
        profiler.profile(local_target)
        profiler.invalidate(local_target)
        assert profiler.profile(local_target).cached is False

    def test_broken_cache_is_a_miss(self, transport, network, clock, local_target, mocker):
        cache = InMemoryProfileCache()
        mocker.patch.object(cache, "get", side_effect=ValueError("corrupt"))
        mocker.patch.object(cache, "put", side_effect=OSError("read-only"))

        profile = CapabilityProfiler(transport, cache, network, clock=clock).profile(local_target)

        assert profile.cached is False
        assert profile.safe_parallel_jobs >= 8

    def test_entry_with_unusable_timestamp_is_a_miss(self, profiler, transport, cache, local_target, mocker):
        stale = profiler.profile(local_target)
        stale.timestamp = "garbage"
        mocker.patch.object(cache, "get", return_value=stale)
        calls = measure_calls(transport)

        profile = profiler.profile(local_target)

        assert profile.cached is False
        assert measure_calls(transport) == calls * 2


class TestJsonFileProfileCache:

    def test_round_trip(self, tmp_path, transport, network, clock, local_target):
        cache = JsonFileProfileCache(tmp_path / "profiles")
        profiler = CapabilityProfiler(transport, cache, network, clock=clock)

        first = profiler.profile(local_target)
        # A new profiler over the same directory sees the persisted entry.
        second = CapabilityProfiler(transport, JsonFileProfileCache(tmp_path / "profiles"),
                                    network, clock=clock).profile(local_target)

        assert second.cached is True
        first.cached = True
        assert first == second

    def test_corrupt_file_is_a_miss(self, tmp_path, local_target):
        cache = JsonFileProfileCache(tmp_path)
        path = cache._path(local_target.key)
        path.write_text("{not json", encoding="utf-8")

        assert cache.get(local_target.key) is None

    @pytest.mark.parametrize("field, value", [
        ("timestamp", "garbage"),
        ("timestamp", None),
        ("job_timeout", "slow"),
        ("cpu_cores", [16]),
    ])
    def test_entry_with_wrong_field_types_is_a_miss(self, tmp_path, transport, network, clock, local_target,
                                                    field, value):
        cache = JsonFileProfileCache(tmp_path)
        profiler = CapabilityProfiler(transport, cache, network, clock=clock)
        profiler.profile(local_target)

        path = cache._path(local_target.key)
        raw = json.loads(path.read_text(encoding="utf-8"))
        raw["profile"][field] = value
        path.write_text(json.dumps(raw), encoding="utf-8")
        calls = measure_calls(transport)

        assert cache.get(local_target.key) is None
        profile = profiler.profile(local_target)
        assert profile.cached is False
        assert measure_calls(transport) == calls * 2

    def test_non_object_file_is_a_miss(self, tmp_path, local_target):
        cache = JsonFileProfileCache(tmp_path)
        cache._path(local_target.key).write_text("[1, 2]", encoding="utf-8")

        assert cache.get(local_target.key) is None

    def test_entry_for_another_key_is_ignored(self, tmp_path, profiler, local_target):
        cache = JsonFileProfileCache(tmp_path)
        profile = profiler.profile(local_target)
        cache.put(local_target.key, profile)

        path = cache._path(local_target.key)
        raw = json.loads(path.read_text(encoding="utf-8"))
        raw["key"] = "someone-else"
        path.write_text(json.dumps(raw), encoding="utf-8")

        assert cache.get(local_target.key) is None

    def test_delete_missing_entry_is_noop(self, tmp_path):
        JsonFileProfileCache(tmp_path).delete("nobody")
