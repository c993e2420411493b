"""
FallbackCollectorRunner: one collector against one target through its
ordered tiers, stopping at the first success.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable

from fleet_auditor.collectors.base import MINIMAL_PROBE_TIER, PARTIAL_SOURCE, TierContext, runtime_for
from fleet_auditor.core.errors import TierUnavailable, TransportError
from fleet_auditor.core.models import (
    CollectorDescriptor,
    CollectorOutcome,
    CollectorTier,
    CollectorVariant,
    RuntimeInfo,
    Target,
    TierAttemptRecord,
)
from fleet_auditor.helpers.log import AuditEventLogger
from fleet_auditor.shared.system import get_runtime_info
from fleet_auditor.transport import Transport

logger = logging.getLogger(__name__)

# Share of a collector budget held back for a trailing partial-data tier.
PARTIAL_RESERVE_FRACTION = 0.2
PARTIAL_RESERVE_MAX_SECONDS = 10.0


@dataclass
class TierAttempt:
    """Uniform result of one tier: data on success, else error + whether to go on."""
    success: bool
    data: Any = None
    error: str | None = None
    should_continue: bool = True
    timed_out: bool = False


def call_with_deadline(fn: Callable[[Any], Any], arg: Any, timeout: float, name: str = "tier") -> Any:
    """
    Run fn(arg) on a daemon thread and wait at most `timeout` seconds.

    On timeout the thread is abandoned (Python threads cannot be killed)
    and concurrent.futures.TimeoutError is raised to the caller.
    """
    future: Future = Future()

    def runner():
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn(arg))
        except BaseException as e:  # noqa: BLE001
            future.set_exception(e)

    threading.Thread(target=runner, name=name, daemon=True).start()
    return future.result(timeout=timeout)


def partial_reserve(chain: list[CollectorTier], timeout: float) -> float:
    """Seconds the tiers before a trailing partial tier must leave unused."""
    if len(chain) < 2 or chain[-1].data_source != PARTIAL_SOURCE:
        return 0.0
    return min(timeout * PARTIAL_RESERVE_FRACTION, PARTIAL_RESERVE_MAX_SECONDS)


class FallbackCollectorRunner:

    def __init__(self, transport: Transport, include_minimal_probe: bool = True,
                 runtime: RuntimeInfo | None = None, clock: Callable[[], float] = time.monotonic,
                 events: AuditEventLogger | None = None):
        self.transport = transport
        self.include_minimal_probe = include_minimal_probe
        self.runtime = runtime or get_runtime_info()
        self.clock = clock
        self.events = events or AuditEventLogger()

    def tiers_for(self, variant: CollectorVariant) -> list[CollectorTier]:
        tiers = list(variant.tiers)
        if self.include_minimal_probe and not (tiers and tiers[-1].data_source == PARTIAL_SOURCE):
            tiers.append(MINIMAL_PROBE_TIER)
        return tiers

    def run(self, collector: CollectorDescriptor | CollectorVariant, target: Target,
            credential: Any = None, timeout: float = 60.0, name: str | None = None) -> CollectorOutcome:
        if isinstance(collector, CollectorDescriptor):
            name = name or collector.name
            selected = collector.select_variant(runtime_for(target, self.runtime))
            if selected is None:
                return CollectorOutcome(collector=name, target=target.key, success=False, status="skipped",
                                        warnings=["incompatible: no variant matches this runtime"])
        else:
            selected = collector
            name = name or collector.name

        start = self.clock()
        deadline = start + timeout
        outcome = CollectorOutcome(collector=name, target=target.key, success=False, status="failed")
        budget_exhausted = False

        chain = self.tiers_for(selected)
        reserve = partial_reserve(chain, timeout)

        for i, tier in enumerate(chain):
            remaining = deadline - self.clock()
            if remaining <= 0:
                budget_exhausted = True
                break
            available = remaining if i == len(chain) - 1 else remaining - reserve
            if available <= 0:
                budget_exhausted = True
                outcome.errors.append(f"{tier.name}: not attempted, remaining budget is held for {chain[-1].name}")
                continue
            tier_timeout = min(tier.timeout or available, available)
            ctx = TierContext(target=target, credential=credential, transport=self.transport, timeout=tier_timeout)

            tier_start = self.clock()
            attempt = self._attempt(tier, ctx, tier_timeout, f"{name}:{tier.name}")
            elapsed = round((self.clock() - tier_start) * 1000, 3)
            outcome.attempts.append(TierAttemptRecord(tier=tier.name, data_source=tier.data_source,
                                                      success=attempt.success, duration_ms=elapsed,
                                                      error=attempt.error))
            if attempt.success:
                outcome.success = True
                outcome.status = "success"
                outcome.data_source = tier.data_source
                outcome.data = attempt.data
                if tier.data_source == PARTIAL_SOURCE:
                    outcome.warnings.append("only partial data available: richer tiers failed")
                break

            outcome.errors.append(f"{tier.name}: {attempt.error}")
            logger.debug("%s tier %s failed on %s: %s", name, tier.name, target.key, attempt.error)
            if not attempt.should_continue:
                break

        if not outcome.success and budget_exhausted:
            outcome.status = "timeout"
            outcome.timeout_unit = "collector"
            outcome.errors.append(f"collector time budget of {timeout}s exhausted")

        outcome.execution_time_ms = round((self.clock() - start) * 1000, 3)
        self.events.event("collector.finished", collector=name, target=target.key,
                          status=outcome.status, data_source=outcome.data_source,
                          tiers_attempted=len(outcome.attempts))
        return outcome

    def _attempt(self, tier: CollectorTier, ctx: TierContext, timeout: float, thread_name: str) -> TierAttempt:
        try:
            data = call_with_deadline(tier.attempt, ctx, timeout, name=thread_name)
        except FutureTimeout:
            return TierAttempt(success=False, error=f"timed out after {timeout:.1f}s", timed_out=True)
        except TierUnavailable as e:
            return TierAttempt(success=False, error=f"unavailable: {e}")
        except TransportError as e:
            # The same credential will be rejected by every tier.
            return TierAttempt(success=False, error=str(e), should_continue=not e.is_auth_failure,
                               timed_out=e.is_timeout)
        except Exception as e:  # noqa: BLE001
            return TierAttempt(success=False, error=f"{type(e).__name__}: {e}")

        if data is None:
            return TierAttempt(success=False, error="tier returned no data")
        return TierAttempt(success=True, data=data)
