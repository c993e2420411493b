"""
Pure budget rules: measured resources -> performance tier -> parallelism
and timeout budget.

Nothing here touches the network or the clock, so every rule can be tested
with plain numbers.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

from fleet_auditor.core.models import PerformanceTier


@dataclass(frozen=True)
class TierBudget:
    min_jobs: int
    max_jobs: int
    job_timeout: float


TIER_BUDGETS: dict[PerformanceTier, TierBudget] = {
    PerformanceTier.LOW: TierBudget(1, 1, 120.0),
    PerformanceTier.MEDIUM: TierBudget(2, 4, 90.0),
    PerformanceTier.HIGH: TierBudget(4, 8, 60.0),
    PerformanceTier.VERY_HIGH: TierBudget(8, 16, 45.0),
}

# Penalty thresholds
AVAILABLE_MEMORY_FLOOR_GB = 2.0
MEMORY_USED_CEILING = 80.0
DISK_FREE_FLOOR = 10.0
DISK_LATENCY_CEILING_MS = 50.0
NETWORK_LATENCY_CEILING_MS = 100.0
LOAD_CEILING = 60.0

DEFAULT_SAFETY_FACTOR = 1.5


@dataclass(frozen=True)
class Measurements:
    cpu_cores: int
    total_memory_gb: float
    available_memory_gb: float
    memory_used_percent: float
    disk_latency_ms: float
    disk_free_percent: float
    network_latency_ms: float | None
    system_load_percent: float
    local: bool = True


def cpu_tier(cores: int) -> PerformanceTier:
    if cores >= 16:
        return PerformanceTier.VERY_HIGH
    if cores >= 8:
        return PerformanceTier.HIGH
    if cores >= 4:
        return PerformanceTier.MEDIUM
    return PerformanceTier.LOW


def memory_tier(total_gb: float) -> PerformanceTier:
    if total_gb >= 16:
        return PerformanceTier.VERY_HIGH
    if total_gb >= 8:
        return PerformanceTier.HIGH
    if total_gb >= 4:
        return PerformanceTier.MEDIUM
    return PerformanceTier.LOW


def classify(cpu_cores: int, total_memory_gb: float) -> tuple[PerformanceTier, list[str]]:
    """Most restrictive of the CPU and memory tiers, plus what limited it."""
    by_cpu = cpu_tier(cpu_cores)
    by_memory = memory_tier(total_memory_gb)
    tier = min(by_cpu, by_memory, key=lambda t: t.rank)

    limits = []
    if by_cpu == PerformanceTier.LOW:
        limits.append("low-cpu")
    if by_memory == PerformanceTier.LOW:
        limits.append("low-memory")
    return tier, limits


def tier_jobs(tier: PerformanceTier, cpu_cores: int) -> int:
    budget = TIER_BUDGETS[tier]
    return max(budget.min_jobs, min(budget.max_jobs, cpu_cores // 2))


def _halve(jobs: int) -> int:
    return max(1, jobs // 2)


def apply_penalties(jobs: int, m: Measurements) -> tuple[int, list[str]]:
    """
    Apply the independent penalty rules in a fixed order.

    Each rule can only lower the job count; the result is never below 1.
    Returns the reduced count and the names of the rules that fired.
    """
    fired: list[str] = []

    if m.available_memory_gb < AVAILABLE_MEMORY_FLOOR_GB or m.memory_used_percent > MEMORY_USED_CEILING:
        jobs = _halve(jobs)
        fired.append("high-memory-usage")

    if m.disk_free_percent < DISK_FREE_FLOOR:
        jobs = _halve(jobs)
        fired.append("low-disk-space")

    if m.disk_latency_ms > DISK_LATENCY_CEILING_MS:
        jobs = _halve(jobs)
        fired.append("slow-disk")

    if not m.local and m.network_latency_ms is not None and m.network_latency_ms > NETWORK_LATENCY_CEILING_MS:
        jobs = 1
        fired.append("high-network-latency")

    if m.system_load_percent > LOAD_CEILING:
        jobs = _halve(jobs)
        fired.append("high-system-load")

    return max(1, jobs), fired


def compute_budget(m: Measurements) -> tuple[PerformanceTier, int, float, list[str]]:
    """Tier, safe parallel jobs, per-job timeout and constraint names."""
    tier, limits = classify(m.cpu_cores, m.total_memory_gb)
    jobs = tier_jobs(tier, m.cpu_cores)
    jobs, fired = apply_penalties(jobs, m)
    return tier, jobs, TIER_BUDGETS[tier].job_timeout, limits + fired


def overall_timeout(job_timeout: float, collector_count: int, safe_parallel_jobs: int,
                    safety_factor: float = DEFAULT_SAFETY_FACTOR) -> float:
    waves = math.ceil(max(1, collector_count) / max(1, safe_parallel_jobs))
    return round(job_timeout * waves * safety_factor, 3)
