"""
Tests for ExecutionScheduler strategies, ordering and deadlines.
"""

import threading
import time

import pytest

from fleet_auditor.collectors.base import any_runtime, descriptor, os_is, tier, variant
from fleet_auditor.core.models import CapabilityProfile, CollectorOutcome, PerformanceTier, RuntimeInfo, Target
from fleet_auditor.execution import scheduler as scheduler_module
from fleet_auditor.execution.scheduler import (
    BoundedParallelStrategy,
    ExecutionScheduler,
    ScheduledCollector,
    SequentialStrategy,
    dependency_order,
    select_strategy,
)


def make_profile(jobs=1, job_timeout=10.0, overall_timeout=100.0):
    return CapabilityProfile(
        target="web-01.example.com", cpu_cores=8, total_memory_gb=16.0, available_memory_gb=8.0,
        memory_used_percent=50.0, disk_read_latency_ms=5.0, disk_write_latency_ms=5.0,
        disk_free_percent=50.0, network_latency_ms=5.0, system_load_percent=10.0,
        tier=PerformanceTier.HIGH, safe_parallel_jobs=jobs, job_timeout=job_timeout,
        overall_timeout=overall_timeout,
    )


def noop(ctx):
    return {}


def collector(name, depends_on=(), predicate=any_runtime):
    return descriptor(name, variant("generic", predicate, tier("t1", "stub", noop)), depends_on=depends_on)


class StubRunner:
    """Stands in for FallbackCollectorRunner; behaviour is scripted per collector name."""

    def __init__(self, fail=(), delay=None, clock_step=None, clock=None):
        self.fail = set(fail)
        self.delay = delay or {}
        self.clock_step = clock_step
        self.clock = clock
        self.calls = []
        self.budgets = {}
        self.started = {}
        self.finished = {}
        self.active = 0
        self.max_active = 0
        self.release = threading.Event()
        self._lock = threading.Lock()

    def run(self, collector, target, credential=None, timeout=60.0, name=None):
        with self._lock:
            self.calls.append(name)
            self.budgets[name] = timeout
            self.started[name] = time.monotonic()
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if name in self.delay:
                self.release.wait(self.delay[name])
            if self.clock_step:
                self.clock.advance(self.clock_step)
            ok = name not in self.fail
            return CollectorOutcome(collector=name, target=target.key, success=ok,
                                    status="success" if ok else "failed",
                                    data={"name": name} if ok else None)
        finally:
            with self._lock:
                self.active -= 1
                self.finished[name] = time.monotonic()


@pytest.fixture
def stub():
    runner = StubRunner()
    yield runner
    runner.release.set()


def by_name(outcomes):
    return {o.collector: o for o in outcomes}


class TestStrategySelection:

    def test_select_strategy(self):
        assert isinstance(select_strategy(1), SequentialStrategy)
        parallel = select_strategy(4)
        assert isinstance(parallel, BoundedParallelStrategy)
        assert parallel.workers == 4

    def test_plan_reports_strategy_and_incompatible(self, stub, linux_runtime, remote_target):
        sched = ExecutionScheduler(stub, runtime=linux_runtime)
        collectors = [collector("a"), collector("win", predicate=os_is("windows")), collector("b", ("a",))]

        plan = sched.plan(collectors, remote_target, make_profile(jobs=4))

        assert plan.strategy == "bounded_parallel"
        assert plan.collectors == ["a", "b"]
        assert plan.incompatible == ["win"]
        assert stub.calls == []


class TestOrdering:

    def test_dependency_order_is_stable(self):
        jobs = [ScheduledCollector("c", None, ("b",)), ScheduledCollector("a", None),
                ScheduledCollector("b", None, ("a",)), ScheduledCollector("d", None)]
        ordered, cyclic = dependency_order(jobs)
        assert [j.name for j in ordered] == ["a", "b", "c", "d"]
        assert cyclic == []

    def test_cycle_members_are_returned_separately(self):
        jobs = [ScheduledCollector("x", None, ("y",)), ScheduledCollector("y", None, ("x",)),
                ScheduledCollector("z", None)]
        ordered, cyclic = dependency_order(jobs)
        assert [j.name for j in ordered] == ["z"]
        assert sorted(j.name for j in cyclic) == ["x", "y"]

    def test_cyclic_collectors_are_skipped(self, stub, linux_runtime, remote_target):
        sched = ExecutionScheduler(stub, runtime=linux_runtime)
        outcomes = sched.execute([collector("x", ("y",)), collector("y", ("x",)), collector("z")],
                                 remote_target, make_profile())

        assert [o.collector for o in outcomes] == ["z", "x", "y"]
        assert by_name(outcomes)["x"].status == "skipped"
        assert stub.calls == ["z"]


class TestSequential:

    def test_overall_timeout_marks_queued_collectors(self, linux_runtime, remote_target, clock):
        runner = StubRunner(clock_step=10.0, clock=clock)
        sched = ExecutionScheduler(runner, runtime=linux_runtime, clock=clock)
        collectors = [collector(f"c{i}") for i in range(10)]

        outcomes = sched.execute(collectors, remote_target, make_profile(jobs=1, job_timeout=10.0,
                                                                          overall_timeout=70.0))

        assert len(outcomes) == 10
        assert len(runner.calls) == 7
        timed_out = [o for o in outcomes if o.status == "timeout"]
        assert [o.collector for o in timed_out] == ["c7", "c8", "c9"]
        assert all(o.timeout_unit == "target" for o in timed_out)

    def test_job_budget_is_capped_by_remaining_time(self, linux_runtime, remote_target, clock):
        runner = StubRunner(clock_step=8.0, clock=clock)
        sched = ExecutionScheduler(runner, runtime=linux_runtime, clock=clock)

        sched.execute([collector("a"), collector("b")], remote_target,
                      make_profile(jobs=1, job_timeout=10.0, overall_timeout=12.0))

        assert runner.budgets == {"a": 10.0, "b": 4.0}


@pytest.mark.parametrize("jobs", [1, 3])
class TestDependencies:

    def test_failed_dependency_skips_dependent(self, jobs, linux_runtime, remote_target):
        runner = StubRunner(fail={"network_interfaces"})
        sched = ExecutionScheduler(runner, runtime=linux_runtime)
        collectors = [collector("network_interfaces"), collector("listening_ports", ("network_interfaces",)),
                      collector("dns_config")]

        outcomes = by_name(sched.execute(collectors, remote_target, make_profile(jobs=jobs)))

        skipped = outcomes["listening_ports"]
        assert skipped.status == "skipped"
        assert skipped.errors == ["skipped: dependency failed (network_interfaces)"]
        assert outcomes["dns_config"].success
        assert "listening_ports" not in runner.calls

    def test_dependency_missing_from_batch_skips_dependent(self, jobs, linux_runtime, remote_target):
        runner = StubRunner()
        sched = ExecutionScheduler(runner, runtime=linux_runtime)

        outcomes = by_name(sched.execute([collector("listening_ports", ("network_interfaces",)),
                                          collector("dns_config")], remote_target, make_profile(jobs=jobs)))

        assert outcomes["listening_ports"].status == "skipped"
        assert runner.calls == ["dns_config"]

    def test_dependent_starts_after_dependency_finishes(self, jobs, linux_runtime, remote_target):
        runner = StubRunner(delay={"windows_os": 0.1})
        sched = ExecutionScheduler(runner, runtime=linux_runtime)

        outcomes = by_name(sched.execute([collector("windows_hardware", ("windows_os",)), collector("windows_os")],
                                         remote_target, make_profile(jobs=jobs)))

        assert outcomes["windows_hardware"].success
        assert runner.started["windows_hardware"] >= runner.finished["windows_os"]


class TestBoundedParallel:

    def test_never_exceeds_worker_budget(self, linux_runtime, remote_target):
        runner = StubRunner(delay={f"c{i}": 0.05 for i in range(6)})
        sched = ExecutionScheduler(runner, runtime=linux_runtime)

        outcomes = sched.execute([collector(f"c{i}") for i in range(6)], remote_target, make_profile(jobs=2))

        assert all(o.success for o in outcomes)
        assert runner.max_active <= 2

    def test_slow_collector_times_out_without_blocking_others(self, stub, linux_runtime, remote_target,
                                                              monkeypatch):
        monkeypatch.setattr(scheduler_module, "JOB_GRACE_SECONDS", 0.05)
        stub.delay = {"slow": 5.0}
        sched = ExecutionScheduler(stub, runtime=linux_runtime)

        start = time.monotonic()
        outcomes = by_name(sched.execute([collector("slow"), collector("a"), collector("b")],
                                         remote_target, make_profile(jobs=3, job_timeout=0.2)))

        assert time.monotonic() - start < 3.0
        assert outcomes["slow"].status == "timeout"
        assert outcomes["slow"].timeout_unit == "collector"
        assert outcomes["a"].success
        assert outcomes["b"].success

    def test_overall_deadline_expires_running_and_queued(self, stub, linux_runtime, remote_target):
        stub.delay = {f"c{i}": 5.0 for i in range(4)}
        sched = ExecutionScheduler(stub, runtime=linux_runtime)

        outcomes = sched.execute([collector(f"c{i}") for i in range(4)], remote_target,
                                 make_profile(jobs=2, job_timeout=5.0, overall_timeout=0.2))

        assert len(outcomes) == 4
        assert all(o.status == "timeout" and o.timeout_unit == "target" for o in outcomes)

    def test_variant_selection_uses_target_os_hint(self, stub, remote_target):
        windows_box = Target("win-01.example.com", local=False, os_family="windows")
        sched = ExecutionScheduler(stub, runtime=RuntimeInfo("3.12.1", "linux"))
        collectors = [collector("windows_os", predicate=os_is("windows")),
                      collector("default_route", predicate=os_is("linux", "darwin"))]

        selected, incompatible = sched.select_variants(collectors, windows_box)

        assert [s.name for s in selected] == ["windows_os"]
        assert incompatible == ["default_route"]
