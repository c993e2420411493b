"""
Tests for the pure tier and penalty rules.
"""

import itertools

import pytest

from fleet_auditor.core.models import PerformanceTier
from fleet_auditor.profiling import tiers
from fleet_auditor.profiling.tiers import Measurements


def measurements(**overrides):
    values = dict(
        cpu_cores=16,
        total_memory_gb=32.0,
        available_memory_gb=24.0,
        memory_used_percent=25.0,
        disk_latency_ms=5.0,
        disk_free_percent=60.0,
        network_latency_ms=5.0,
        system_load_percent=10.0,
        local=False,
    )
    values.update(overrides)
    return Measurements(**values)


class TestClassification:

    def test_very_high_scenario(self):
        tier, jobs, job_timeout, constraints = tiers.compute_budget(measurements())

        assert tier == PerformanceTier.VERY_HIGH
        assert jobs >= 8
        assert job_timeout == 45.0
        assert constraints == []

    def test_low_scenario(self):
        m = measurements(cpu_cores=2, total_memory_gb=2.0, available_memory_gb=0.1, memory_used_percent=95.0)
        tier, jobs, job_timeout, constraints = tiers.compute_budget(m)

        assert tier == PerformanceTier.LOW
        assert jobs == 1
        assert job_timeout == 120.0
        assert "low-cpu" in constraints
        assert "high-memory-usage" in constraints

    def test_most_restrictive_dimension_wins(self):
        tier, limits = tiers.classify(cpu_cores=32, total_memory_gb=6.0)
        assert tier == PerformanceTier.MEDIUM
        assert limits == []

        tier, limits = tiers.classify(cpu_cores=3, total_memory_gb=64.0)
        assert tier == PerformanceTier.LOW
        assert limits == ["low-cpu"]

    @pytest.mark.parametrize("cores,memory,expected", [
        (4, 4.0, PerformanceTier.MEDIUM),
        (8, 8.0, PerformanceTier.HIGH),
        (12, 16.0, PerformanceTier.HIGH),
        (16, 16.0, PerformanceTier.VERY_HIGH),
    ])
    def test_tier_boundaries(self, cores, memory, expected):
        assert tiers.classify(cores, memory)[0] == expected

    @pytest.mark.parametrize("tier,cores", [
        (PerformanceTier.MEDIUM, 4),
        (PerformanceTier.HIGH, 8),
        (PerformanceTier.VERY_HIGH, 64),
    ])
    def test_jobs_stay_inside_tier_range(self, tier, cores):
        budget = tiers.TIER_BUDGETS[tier]
        assert budget.min_jobs <= tiers.tier_jobs(tier, cores) <= budget.max_jobs


class TestPenalties:

    @pytest.mark.parametrize("field,value,rule", [
        ("available_memory_gb", 1.0, "high-memory-usage"),
        ("memory_used_percent", 85.0, "high-memory-usage"),
        ("disk_free_percent", 5.0, "low-disk-space"),
        ("disk_latency_ms", 80.0, "slow-disk"),
        ("system_load_percent", 75.0, "high-system-load"),
    ])
    def test_each_rule_halves_and_is_named(self, field, value, rule):
        jobs, fired = tiers.apply_penalties(8, measurements(**{field: value}))
        assert jobs == 4
        assert fired == [rule]

    def test_network_latency_forces_single_job_for_remote_targets(self):
        jobs, fired = tiers.apply_penalties(8, measurements(network_latency_ms=150.0))
        assert jobs == 1
        assert fired == ["high-network-latency"]

    def test_network_latency_ignored_for_local_targets(self):
        jobs, fired = tiers.apply_penalties(8, measurements(network_latency_ms=150.0, local=True))
        assert jobs == 8
        assert fired == []

    def test_penalties_never_increase_budget(self):
        bad = {
            "available_memory_gb": (24.0, 1.0),
            "disk_free_percent": (60.0, 2.0),
            "disk_latency_ms": (5.0, 200.0),
            "network_latency_ms": (5.0, 300.0),
            "system_load_percent": (10.0, 99.0),
        }
        for cores, memory in [(2, 2.0), (4, 6.0), (8, 12.0), (16, 32.0), (64, 256.0)]:
            tier, _ = tiers.classify(cores, memory)
            base = tiers.tier_jobs(tier, cores)
            for flags in itertools.product([0, 1], repeat=len(bad)):
                overrides = {k: v[flag] for (k, v), flag in zip(bad.items(), flags)}
                m = measurements(cpu_cores=cores, total_memory_gb=memory, **overrides)
                jobs, _ = tiers.apply_penalties(base, m)
                assert 1 <= jobs <= base

    def test_overall_timeout_formula(self):
        assert tiers.overall_timeout(45.0, 10, 8, 1.5) == 45.0 * 2 * 1.5
        assert tiers.overall_timeout(120.0, 3, 1, 1.0) == 360.0
        # zero collectors still budgets one wave
        assert tiers.overall_timeout(60.0, 0, 4, 1.5) == 90.0
