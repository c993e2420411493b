"""
CapabilityProfiler: measure a target, derive its budget, cache it.
"""
from __future__ import annotations

import dataclasses
import logging
import threading
import time
from typing import Any, Callable

from fleet_auditor.core.errors import TransportError
from fleet_auditor.core.models import CapabilityProfile, Target
from fleet_auditor.helpers.log import AuditEventLogger
from fleet_auditor.profiling import tiers
from fleet_auditor.profiling.cache import InMemoryProfileCache, ProfileCache
from fleet_auditor.shared.network import NetworkProbe
from fleet_auditor.transport import Transport

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 3600

# Values substituted when a measurement fails. Each one pushes the budget
# down rather than up.
CONSERVATIVE_DEFAULTS: dict[str, dict[str, Any]] = {
    "cpu": {"cpu_cores": 1},
    "memory": {"total_memory_gb": 2.0, "available_memory_gb": 1.0, "memory_used_percent": 90.0},
    "disk": {"disk_read_latency_ms": 100.0, "disk_write_latency_ms": 100.0, "disk_free_percent": 5.0},
    "load": {"system_load_percent": 100.0},
}
CONSERVATIVE_NETWORK_LATENCY_MS = 500.0


class CapabilityProfiler:
    """
    Measures resources on a target and turns them into a
    parallelism/timeout budget.

    Profiles are cached per target identity for `ttl_seconds`. Cache access
    for one target is serialized by a per-target lock, so two pipelines for
    the same target never measure it twice at once, while different
    targets never wait on each other.
    """

    def __init__(self, transport: Transport, cache: ProfileCache | None = None,
                 network: NetworkProbe | None = None, ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 safety_factor: float = tiers.DEFAULT_SAFETY_FACTOR, measure_timeout: float = 15.0,
                 clock: Callable[[], float] = time.time, events: AuditEventLogger | None = None):
        self.transport = transport
        self.cache = cache if cache is not None else InMemoryProfileCache()
        self.network = network or NetworkProbe()
        self.ttl_seconds = ttl_seconds
        self.safety_factor = safety_factor
        self.measure_timeout = measure_timeout
        self.clock = clock
        self.events = events or AuditEventLogger()
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def profile(self, target: Target, use_cache: bool = True, collector_count: int = 1) -> CapabilityProfile:
        key = target.key
        with self._lock_for(key):
            if use_cache:
                cached = self._read_cache(key)
                if cached is not None:
                    logger.debug("profile cache hit for %s (age %.0fs)", key, self.clock() - cached.timestamp)
                    return self._with_collector_count(cached, collector_count, cached=True)

            profile = self._measure(target, collector_count)
            self._write_cache(key, profile)
            return profile

    def invalidate(self, target: Target) -> None:
        with self._lock_for(target.key):
            self.cache.delete(target.key)

    def is_fresh(self, profile: CapabilityProfile) -> bool:
        age = self.clock() - profile.timestamp
        return 0 <= age < self.ttl_seconds

    # -----------------------------
    # Cache
    # -----------------------------
    def _read_cache(self, key: str) -> CapabilityProfile | None:
        try:
            cached = self.cache.get(key)
            if cached is None:
                return None
            fresh = self.is_fresh(cached)
        except Exception as e:  # noqa: BLE001
            logger.warning("profile cache read failed for %s: %s", key, e)
            return None
        if not fresh:
            logger.info("cached profile for %s expired, re-measuring", key)
            return None
        return cached

    def _write_cache(self, key: str, profile: CapabilityProfile) -> None:
        try:
            self.cache.put(key, profile)
        except Exception as e:  # noqa: BLE001
            logger.warning("profile cache write failed for %s: %s", key, e)

    def _with_collector_count(self, profile: CapabilityProfile, collector_count: int,
                              cached: bool) -> CapabilityProfile:
        return dataclasses.replace(
            profile,
            overall_timeout=tiers.overall_timeout(profile.job_timeout, collector_count,
                                                  profile.safe_parallel_jobs, self.safety_factor),
            cached=cached,
        )

    # -----------------------------
    # Measurement
    # -----------------------------
    def _measure(self, target: Target, collector_count: int) -> CapabilityProfile:
        values: dict[str, Any] = {}
        unmeasured: list[str] = []

        for metric, defaults in CONSERVATIVE_DEFAULTS.items():
            try:
                result = self.transport.invoke(target, target.credential,
                                               {"action": "measure", "metric": metric}, self.measure_timeout)
                values.update({k: type(v)(result[k]) for k, v in defaults.items()})
            except (TransportError, KeyError, TypeError, ValueError) as e:
                logger.warning("measuring %s on %s failed: %s", metric, target.address, e)
                values.update(defaults)
                unmeasured.append(f"{metric}-unmeasured")

        network_latency = None
        if not target.is_local:
            network_latency = self.network.tcp_latency(target.address, target.port, self.measure_timeout)
            if network_latency is None:
                network_latency = CONSERVATIVE_NETWORK_LATENCY_MS
                unmeasured.append("network-unmeasured")

        measurements = tiers.Measurements(
            cpu_cores=int(values["cpu_cores"]),
            total_memory_gb=float(values["total_memory_gb"]),
            available_memory_gb=float(values["available_memory_gb"]),
            memory_used_percent=float(values["memory_used_percent"]),
            disk_latency_ms=max(float(values["disk_read_latency_ms"]), float(values["disk_write_latency_ms"])),
            disk_free_percent=float(values["disk_free_percent"]),
            network_latency_ms=network_latency,
            system_load_percent=float(values["system_load_percent"]),
            local=target.is_local,
        )
        tier, jobs, job_timeout, constraints = tiers.compute_budget(measurements)

        profile = CapabilityProfile(
            target=target.key,
            cpu_cores=measurements.cpu_cores,
            total_memory_gb=measurements.total_memory_gb,
            available_memory_gb=measurements.available_memory_gb,
            memory_used_percent=measurements.memory_used_percent,
            disk_read_latency_ms=float(values["disk_read_latency_ms"]),
            disk_write_latency_ms=float(values["disk_write_latency_ms"]),
            disk_free_percent=measurements.disk_free_percent,
            network_latency_ms=network_latency,
            system_load_percent=measurements.system_load_percent,
            tier=tier,
            safe_parallel_jobs=jobs,
            job_timeout=job_timeout,
            overall_timeout=tiers.overall_timeout(job_timeout, collector_count, jobs, self.safety_factor),
            constraints=unmeasured + constraints,
            timestamp=self.clock(),
            cached=False,
        )
        self.events.event("profile.measured", target=target.key, tier=tier.value,
                          safe_parallel_jobs=jobs, constraints=profile.constraints)
        return profile
