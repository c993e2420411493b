"""
AuditOrchestrator: Preflight -> Profile -> Schedule for every target of a
fleet, aggregated into one FleetAuditReport.
"""
from __future__ import annotations

import contextvars
import copy
import dataclasses
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, NamedTuple

from fleet_auditor.collectors.registry import CollectorRegistry, default_registry
from fleet_auditor.config import AuditOptions, build_options
from fleet_auditor.core.errors import ConfigurationError, ContractError
from fleet_auditor.core.models import (
    CapabilityProfile,
    CollectorDescriptor,
    CollectorStats,
    FleetAuditReport,
    FleetSummary,
    HealthCheckResult,
    HealthReport,
    PerformanceTier,
    Target,
    TargetAuditResult,
)
from fleet_auditor.execution.fallback import FallbackCollectorRunner
from fleet_auditor.execution.scheduler import ExecutionScheduler
from fleet_auditor.health.checker import PreflightHealthChecker
from fleet_auditor.helpers.log import AuditEventLogger, new_run_id, run_id
from fleet_auditor.profiling import tiers
from fleet_auditor.profiling.cache import InMemoryProfileCache, JsonFileProfileCache, ProfileCache
from fleet_auditor.profiling.profiler import CapabilityProfiler
from fleet_auditor.shared.network import NetworkProbe
from fleet_auditor.shared.system import get_runtime_info
from fleet_auditor.transport import LocalTransport, Transport

logger = logging.getLogger(__name__)

FORCED_CONSTRAINT = "operator-forced-parallelism"
SKIPPED_CONSTRAINT = "profiling-skipped"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _merged(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merged(out[key], value)
        else:
            out[key] = value
    return out


class Pipeline(NamedTuple):
    """The per-target components configured for one audit call."""
    health_checker: PreflightHealthChecker
    profiler: CapabilityProfiler
    scheduler: ExecutionScheduler


def unmeasured_profile(target: Target, jobs: int, job_timeout: float, collector_count: int,
                       safety_factor: float, constraints: list[str]) -> CapabilityProfile:
    """Budget used when profiling is skipped; no resource was measured."""
    return CapabilityProfile(
        target=target.key,
        cpu_cores=0,
        total_memory_gb=0.0,
        available_memory_gb=0.0,
        memory_used_percent=0.0,
        disk_read_latency_ms=0.0,
        disk_write_latency_ms=0.0,
        disk_free_percent=0.0,
        network_latency_ms=None,
        system_load_percent=0.0,
        tier=PerformanceTier.LOW,
        safe_parallel_jobs=jobs,
        job_timeout=job_timeout,
        overall_timeout=tiers.overall_timeout(job_timeout, collector_count, jobs, safety_factor),
        constraints=constraints,
        timestamp=time.time(),
    )


class AuditOrchestrator:
    """
    Top-level coordinator.

    Fleet-level concurrency (``fleet_throttle`` targets at a time) is
    independent of each target's collector concurrency, which comes from
    that target's capability profile. Every component can be injected;
    anything not supplied is built from ``options``.
    """

    def __init__(self, transport: Transport | None = None, registry: CollectorRegistry | None = None,
                 options: AuditOptions | None = None, cache: ProfileCache | None = None,
                 network: NetworkProbe | None = None,
                 health_checker: PreflightHealthChecker | None = None,
                 profiler: CapabilityProfiler | None = None,
                 scheduler: ExecutionScheduler | None = None,
                 events: AuditEventLogger | None = None,
                 clock: Callable[[], float] = time.monotonic):
        self.options = options or AuditOptions()
        self.transport = transport or LocalTransport()
        self.registry = registry or default_registry()
        self.events = events or AuditEventLogger()
        self.clock = clock
        network = network or NetworkProbe()
        opts = self.options

        if cache is None:
            cache = JsonFileProfileCache(opts.profiler.cache_dir) if opts.profiler.cache_dir else InMemoryProfileCache()

        self.health_checker = health_checker or PreflightHealthChecker(
            self.transport, network,
            timeout=opts.health.timeout,
            parallel=opts.health.parallel,
            throttle=opts.health.throttle,
            score_floor=opts.health.score_floor,
            dns_retry_delay=opts.health.dns_retry_delay,
            ping_count=opts.health.ping_count,
            events=self.events,
        )
        self.profiler = profiler or CapabilityProfiler(
            self.transport, cache, network,
            ttl_seconds=opts.profiler.cache_ttl_hours * 3600,
            safety_factor=opts.profiler.safety_factor,
            measure_timeout=opts.profiler.measure_timeout,
            events=self.events,
        )
        if scheduler is None:
            runtime = get_runtime_info()
            runner = FallbackCollectorRunner(self.transport, opts.execution.include_minimal_probe,
                                             runtime=runtime, events=self.events)
            scheduler = ExecutionScheduler(runner, runtime=runtime, events=self.events)
        self.scheduler = scheduler

    # -----------------------------
    # Single-target entry points
    # -----------------------------
    def profile(self, target: Target, use_cache: bool = True, collector_count: int = 1) -> CapabilityProfile:
        target.validate()
        return self.profiler.profile(target, use_cache=use_cache, collector_count=collector_count)

    def check(self, target: Target) -> HealthCheckResult:
        target.validate()
        return self.health_checker.check_target(target)

    def check_fleet(self, targets: Iterable[Target]) -> HealthReport:
        return self.health_checker.check(targets)

    # -----------------------------
    # Fleet audit
    # -----------------------------
    def audit_fleet(self, targets: Iterable[Target], collector_filter: Iterable[str] | None = None,
                    options: AuditOptions | dict[str, Any] | None = None) -> FleetAuditReport:
        """
        Audit every target and return the report; always completes.

        A dict of ``options`` is layered over the orchestrator's own options;
        an AuditOptions instance replaces them for this call.

        Invalid options (ConfigurationError) and unknown collector names
        (ContractError) are raised before any target is touched. Everything
        that goes wrong per target is recorded in that target's result.
        """
        opts = self._call_options(options)
        pipeline = self._pipeline_for(opts)
        collectors = self.registry.filter(collector_filter)
        targets = list(targets)

        token = run_id.set(new_run_id())
        started_at = _now_iso()
        start = self.clock()
        fleet_deadline = start + opts.fleet_deadline if opts.fleet_deadline else None
        self.events.event("fleet.started", targets=len(targets), collectors=[c.name for c in collectors],
                          dry_run=opts.dry_run)

        try:
            results: list[TargetAuditResult | None] = [None] * len(targets)
            with ThreadPoolExecutor(max_workers=max(1, min(opts.fleet_throttle, len(targets) or 1)),
                                    thread_name_prefix="fleet") as pool:
                futures = {
                    pool.submit(contextvars.copy_context().run, self._audit_target_safely,
                                t, collectors, opts, pipeline, fleet_deadline): i
                    for i, t in enumerate(targets)
                }
                for fut, i in futures.items():
                    results[i] = fut.result()

            report = FleetAuditReport(
                targets=[r for r in results if r is not None],
                summary=FleetSummary(),
                dry_run=opts.dry_run,
                started_at=started_at,
                finished_at=_now_iso(),
            )
            report.summary = summarize(report.targets, round((self.clock() - start) * 1000, 3))
            self.events.event("fleet.finished", audited=report.summary.audited,
                              unhealthy=report.summary.unhealthy,
                              successful_collectors=report.summary.successful_collectors)
            return report
        finally:
            run_id.reset(token)

    def _audit_target_safely(self, target: Target, collectors: list[CollectorDescriptor],
                             opts: AuditOptions, pipeline: Pipeline,
                             fleet_deadline: float | None) -> TargetAuditResult:
        start = self.clock()
        if fleet_deadline is not None and start >= fleet_deadline:
            logger.warning("fleet deadline passed before %s started", target.address)
            self.events.warning("target.not_attempted", target=target.key, reason="fleet deadline expired")
            return TargetAuditResult(target=target, status="not_attempted", timeout_unit="fleet",
                                     error="fleet deadline expired before this target started")
        try:
            result = self._audit_target(target, collectors, opts, pipeline)
        except ContractError as e:
            logger.error("target %r rejected: %s", target.address, e)
            result = TargetAuditResult(target=target, status="error", error=f"contract violation: {e}")
            self.events.error("target.failed", target=target.key, error=result.error)
        except Exception as e:  # noqa: BLE001
            logger.exception("audit of %s failed unexpectedly", target.address)
            result = TargetAuditResult(target=target, status="error", error=f"{type(e).__name__}: {e}")
            self.events.error("target.failed", target=target.key, error=result.error)
        result.duration_ms = round((self.clock() - start) * 1000, 3)
        return result

    def _audit_target(self, target: Target, collectors: list[CollectorDescriptor],
                      opts: AuditOptions, pipeline: Pipeline) -> TargetAuditResult:
        target.validate()

        health = pipeline.health_checker.check_target(target)
        if not health.is_healthy:
            if not opts.override_unhealthy:
                logger.info("skipping %s: unhealthy (score %s): %s", target.key, health.score, "; ".join(health.issues))
                self.events.warning("target.skipped_unhealthy", target=target.key, score=health.score,
                                    issues=health.issues)
                return TargetAuditResult(target=target, status="skipped_unhealthy", health=health)
            logger.warning("%s is unhealthy (score %s) but override is set, continuing", target.key, health.score)

        selected, incompatible = pipeline.scheduler.select_variants(collectors, target)
        profile = self._budget(target, max(1, len(selected)), opts, pipeline.profiler)

        if opts.dry_run:
            plan = pipeline.scheduler.plan(collectors, target, profile)
            return TargetAuditResult(target=target, status="planned", profile=profile, health=health,
                                     incompatible=incompatible, plan=plan)

        outcomes = pipeline.scheduler.execute(collectors, target, profile)
        return TargetAuditResult(target=target, status="audited", outcomes=outcomes, profile=profile,
                                 health=health, incompatible=incompatible)

    def _budget(self, target: Target, collector_count: int, opts: AuditOptions,
                profiler: CapabilityProfiler) -> CapabilityProfile:
        """
        Forced parallelism wins over everything; skip-profiling alone means
        one job with the default job timeout.
        """
        forced = opts.force_parallel_jobs
        safety = profiler.safety_factor

        if opts.skip_profiling:
            constraints = [SKIPPED_CONSTRAINT] + ([FORCED_CONSTRAINT] if forced else [])
            return unmeasured_profile(target, forced or 1, opts.execution.default_job_timeout,
                                      collector_count, safety, constraints)

        profile = profiler.profile(target, use_cache=opts.use_profile_cache, collector_count=collector_count)
        if forced:
            profile = dataclasses.replace(
                profile,
                safe_parallel_jobs=forced,
                overall_timeout=tiers.overall_timeout(profile.job_timeout, collector_count, forced, safety),
                constraints=profile.constraints + [FORCED_CONSTRAINT],
            )
        return profile

    # -----------------------------
    # Per-call options
    # -----------------------------
    def _call_options(self, options: AuditOptions | dict[str, Any] | None) -> AuditOptions:
        if options is None:
            return self.options
        if isinstance(options, AuditOptions):
            return options
        return build_options(_merged(self.options.model_dump(), options))

    def _pipeline_for(self, opts: AuditOptions) -> Pipeline:
        """
        Health checker, profiler and scheduler carrying the nested settings
        of `opts`. Components are copied, never mutated, when a setting
        differs from the orchestrator's own; copies of the profiler share
        its cache and per-target locks.
        """
        base = self.options
        if opts.profiler.cache_dir != base.profiler.cache_dir:
            raise ConfigurationError("profiler.cache_dir is fixed when the orchestrator is created")

        health_checker = self.health_checker
        if opts.health != base.health:
            health_checker = copy.copy(health_checker)
            health_checker.timeout = opts.health.timeout
            health_checker.parallel = opts.health.parallel
            health_checker.throttle = opts.health.throttle
            health_checker.score_floor = opts.health.score_floor
            health_checker.dns_retry_delay = opts.health.dns_retry_delay
            health_checker.ping_count = opts.health.ping_count

        profiler = self.profiler
        if opts.profiler != base.profiler:
            profiler = copy.copy(profiler)
            profiler.ttl_seconds = opts.profiler.cache_ttl_hours * 3600
            profiler.safety_factor = opts.profiler.safety_factor
            profiler.measure_timeout = opts.profiler.measure_timeout

        scheduler = self.scheduler
        if opts.execution.include_minimal_probe != base.execution.include_minimal_probe:
            runner = copy.copy(scheduler.runner)
            runner.include_minimal_probe = opts.execution.include_minimal_probe
            scheduler = copy.copy(scheduler)
            scheduler.runner = runner

        return Pipeline(health_checker, profiler, scheduler)


def summarize(results: list[TargetAuditResult], total_duration_ms: float) -> FleetSummary:
    summary = FleetSummary(total_targets=len(results), total_duration_ms=total_duration_ms)

    for r in results:
        if r.status == "audited":
            summary.audited += 1
        elif r.status == "planned":
            summary.planned += 1
        elif r.status == "not_attempted":
            summary.not_attempted += 1
        elif r.status == "error":
            summary.errored += 1

        if r.health is not None:
            if r.health.is_healthy:
                summary.healthy += 1
            else:
                summary.unhealthy += 1

        for o in r.outcomes:
            stats = summary.collectors.setdefault(o.collector, CollectorStats())
            stats.attempted += 1
            if o.success:
                stats.succeeded += 1
                summary.successful_collectors += 1
            if o.data_source == "partial":
                stats.partial += 1
            if o.status == "timeout":
                stats.timed_out += 1
            elif o.status == "skipped":
                stats.skipped += 1
            summary.total_collector_time_ms += o.execution_time_ms

    if results:
        summary.mean_target_duration_ms = round(sum(r.duration_ms for r in results) / len(results), 3)
    summary.total_collector_time_ms = round(summary.total_collector_time_ms, 3)
    return summary
