"""
ExecutionScheduler: runs one target's collector set under its capability
budget.

Two strategies share one interface and are chosen only by
``select_strategy(profile.safe_parallel_jobs)``:

  SequentialStrategy       budget == 1
  BoundedParallelStrategy  budget  > 1, worker pool sized to the budget

Both honor dependency edges, per-collector job timeouts and the batch
(overall) deadline, and always return one outcome per scheduled collector.
"""
from __future__ import annotations

import abc
import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Iterable

from fleet_auditor.collectors.base import runtime_for
from fleet_auditor.core.models import (
    CapabilityProfile,
    CollectorDescriptor,
    CollectorOutcome,
    CollectorVariant,
    ExecutionPlan,
    RuntimeInfo,
    Target,
)
from fleet_auditor.execution.fallback import FallbackCollectorRunner
from fleet_auditor.helpers.log import AuditEventLogger

logger = logging.getLogger(__name__)

# Slack allowed past a job's own deadline before the scheduler gives up on it.
JOB_GRACE_SECONDS = 1.0


@dataclass(frozen=True)
class ScheduledCollector:
    name: str
    variant: CollectorVariant
    dependencies: tuple[str, ...] = ()


RunJob = Callable[[ScheduledCollector, float], CollectorOutcome]


def skipped_outcome(job: ScheduledCollector, target: Target, reason: str) -> CollectorOutcome:
    return CollectorOutcome(collector=job.name, target=target.key, success=False, status="skipped",
                            errors=[f"skipped: {reason}"])


def timeout_outcome(job: ScheduledCollector, target: Target, unit: str, message: str) -> CollectorOutcome:
    return CollectorOutcome(collector=job.name, target=target.key, success=False, status="timeout",
                            timeout_unit=unit, errors=[message])


def unmet_dependency(job: ScheduledCollector, outcomes: dict[str, CollectorOutcome],
                     batch: set[str]) -> str | None:
    """Name of a dependency that is known not to have succeeded, else None."""
    for dep in job.dependencies:
        if dep not in batch:
            return dep
        outcome = outcomes.get(dep)
        if outcome is not None and not outcome.success:
            return dep
    return None


def dependencies_done(job: ScheduledCollector, outcomes: dict[str, CollectorOutcome]) -> bool:
    return all(dep in outcomes for dep in job.dependencies)


class SchedulingStrategy(abc.ABC):
    name = "abstract"

    @abc.abstractmethod
    def run(self, jobs: list[ScheduledCollector], target: Target, profile: CapabilityProfile,
            run_job: RunJob, clock: Callable[[], float]) -> dict[str, CollectorOutcome]:
        """Run jobs (already dependency-ordered) and return outcomes by name."""


class SequentialStrategy(SchedulingStrategy):
    name = "sequential"

    def run(self, jobs, target, profile, run_job, clock):
        outcomes: dict[str, CollectorOutcome] = {}
        batch = {j.name for j in jobs}
        deadline = clock() + profile.overall_timeout

        for job in jobs:
            dep = unmet_dependency(job, outcomes, batch)
            if dep is not None:
                outcomes[job.name] = skipped_outcome(job, target, f"dependency failed ({dep})")
                continue

            remaining = deadline - clock()
            if remaining <= 0:
                outcomes[job.name] = timeout_outcome(
                    job, target, "target",
                    f"overall time budget of {profile.overall_timeout}s exhausted before this collector ran")
                continue

            budget = min(profile.job_timeout, remaining)
            outcome = run_job(job, budget)
            if outcome.timeout_unit == "collector" and budget < profile.job_timeout:
                outcome.timeout_unit = "target"
            outcomes[job.name] = outcome

        return outcomes


class BoundedParallelStrategy(SchedulingStrategy):
    name = "bounded_parallel"

    def __init__(self, workers: int):
        self.workers = max(1, workers)

    def run(self, jobs, target, profile, run_job, clock):
        outcomes: dict[str, CollectorOutcome] = {}
        batch = {j.name for j in jobs}
        pending = list(jobs)
        running: dict[Future, ScheduledCollector] = {}
        started: dict[str, float] = {}
        deadline = clock() + profile.overall_timeout

        def timed(job: ScheduledCollector, budget: float) -> CollectorOutcome:
            started[job.name] = clock()
            return run_job(job, budget)

        pool = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix=f"collect-{target.key}")
        try:
            while pending or running:
                # Dispatch everything whose dependencies are settled, up to the budget.
                for job in list(pending):
                    dep = unmet_dependency(job, outcomes, batch)
                    if dep is not None:
                        outcomes[job.name] = skipped_outcome(job, target, f"dependency failed ({dep})")
                        pending.remove(job)
                        continue
                    if len(running) >= self.workers or clock() >= deadline:
                        break
                    if not dependencies_done(job, outcomes):
                        continue
                    budget = min(profile.job_timeout, deadline - clock())
                    running[pool.submit(timed, job, budget)] = job
                    pending.remove(job)

                now = clock()
                if now >= deadline:
                    self._expire(pending, running, outcomes, target, profile, batch)
                    break
                if not running:
                    # Nothing runnable and nothing in flight: remaining jobs wait on
                    # dependencies that can never settle.
                    for job in pending:
                        outcomes[job.name] = skipped_outcome(job, target, "dependency never completed")
                    break

                job_deadlines = [started[j.name] + profile.job_timeout + JOB_GRACE_SECONDS
                                 for j in running.values() if j.name in started]
                wake = min([deadline] + job_deadlines) - now
                done, _ = wait(list(running), timeout=max(0.01, wake), return_when=FIRST_COMPLETED)

                for fut in done:
                    job = running.pop(fut)
                    outcomes[job.name] = self._result(fut, job, target)

                now = clock()
                for fut, job in list(running.items()):
                    began = started.get(job.name)
                    if began is not None and now > began + profile.job_timeout + JOB_GRACE_SECONDS:
                        fut.cancel()
                        running.pop(fut)
                        logger.warning("%s on %s exceeded its %ss job timeout, abandoning it",
                                       job.name, target.key, profile.job_timeout)
                        outcomes[job.name] = timeout_outcome(
                            job, target, "collector", f"exceeded job timeout of {profile.job_timeout}s")
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        return outcomes

    @staticmethod
    def _result(fut: Future, job: ScheduledCollector, target: Target) -> CollectorOutcome:
        try:
            return fut.result()
        except Exception as e:  # noqa: BLE001
            logger.exception("collector %s crashed on %s", job.name, target.key)
            return CollectorOutcome(collector=job.name, target=target.key, success=False, status="failed",
                                    errors=[f"{type(e).__name__}: {e}"])

    @staticmethod
    def _expire(pending, running, outcomes, target, profile, batch):
        message = f"overall time budget of {profile.overall_timeout}s exhausted"
        for fut, job in running.items():
            fut.cancel()
            outcomes[job.name] = timeout_outcome(job, target, "target", message)
        running.clear()
        for job in pending:
            dep = unmet_dependency(job, outcomes, batch)
            if dep is not None:
                outcomes[job.name] = skipped_outcome(job, target, f"dependency failed ({dep})")
            else:
                outcomes[job.name] = timeout_outcome(job, target, "target", f"{message} before this collector ran")
        pending.clear()


def select_strategy(safe_parallel_jobs: int) -> SchedulingStrategy:
    if safe_parallel_jobs <= 1:
        return SequentialStrategy()
    return BoundedParallelStrategy(safe_parallel_jobs)


def dependency_order(jobs: list[ScheduledCollector]) -> tuple[list[ScheduledCollector], list[ScheduledCollector]]:
    """
    Stable topological order over in-batch dependency edges.

    Returns (ordered, cyclic): jobs that can never be ordered because they
    sit on or behind a dependency cycle come back separately.
    """
    names = {j.name for j in jobs}
    placed: set[str] = set()
    ordered: list[ScheduledCollector] = []
    remaining = list(jobs)

    progress = True
    while remaining and progress:
        progress = False
        for job in list(remaining):
            if all(dep in placed or dep not in names for dep in job.dependencies):
                ordered.append(job)
                placed.add(job.name)
                remaining.remove(job)
                progress = True
                break

    return ordered, remaining


class ExecutionScheduler:

    def __init__(self, runner: FallbackCollectorRunner, runtime: RuntimeInfo | None = None,
                 clock: Callable[[], float] = time.monotonic, events: AuditEventLogger | None = None):
        self.runner = runner
        self.runtime = runtime or runner.runtime
        self.clock = clock
        self.events = events or AuditEventLogger()

    def select_variants(self, collectors: Iterable[CollectorDescriptor],
                        target: Target) -> tuple[list[ScheduledCollector], list[str]]:
        """First matching variant per collector; no match means incompatible."""
        runtime = runtime_for(target, self.runtime)
        selected: list[ScheduledCollector] = []
        incompatible: list[str] = []
        for desc in collectors:
            chosen = desc.select_variant(runtime)
            if chosen is None:
                incompatible.append(desc.name)
            else:
                selected.append(ScheduledCollector(desc.name, chosen, tuple(desc.dependencies)))
        return selected, incompatible

    def plan(self, collectors: Iterable[CollectorDescriptor], target: Target,
             profile: CapabilityProfile) -> ExecutionPlan:
        selected, incompatible = self.select_variants(collectors, target)
        ordered, cyclic = dependency_order(selected)
        return ExecutionPlan(
            strategy=select_strategy(profile.safe_parallel_jobs).name,
            safe_parallel_jobs=profile.safe_parallel_jobs,
            job_timeout=profile.job_timeout,
            overall_timeout=profile.overall_timeout,
            collectors=[j.name for j in ordered + cyclic],
            incompatible=incompatible,
        )

    def execute(self, collectors: Iterable[CollectorDescriptor], target: Target,
                profile: CapabilityProfile) -> list[CollectorOutcome]:
        selected, incompatible = self.select_variants(collectors, target)
        if incompatible:
            logger.info("%s: incompatible collectors excluded: %s", target.key, ", ".join(incompatible))

        ordered, cyclic = dependency_order(selected)
        strategy = select_strategy(profile.safe_parallel_jobs)
        self.events.event("schedule.started", target=target.key, strategy=strategy.name,
                          collectors=len(ordered) + len(cyclic), safe_parallel_jobs=profile.safe_parallel_jobs)

        def run_job(job: ScheduledCollector, budget: float) -> CollectorOutcome:
            return self.runner.run(job.variant, target, target.credential, budget, name=job.name)

        outcomes = strategy.run(ordered, target, profile, run_job, self.clock)
        for job in cyclic:
            outcomes[job.name] = skipped_outcome(job, target, "dependency failed (dependency cycle)")

        return [outcomes[j.name] for j in ordered + cyclic]
