"""
Pre-flight health gate.

Runs, per target and in order:

    1. DNS resolution          (one retry after dns_retry_delay)
    2. ICMP reachability
    3. management port (TCP)
    4. management service listener (transport "service_status")
    5. credential probe         (transport "auth_probe")

and folds the outcome into a 0-100 score, a healthy/unhealthy verdict and
remediation hints. Results are never cached.
"""
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable

from fleet_auditor.core.errors import ConfigurationError, TransportError
from fleet_auditor.core.models import HealthCheck, HealthCheckResult, HealthReport, Target
from fleet_auditor.health.remediation import remediation_for
from fleet_auditor.helpers.log import AuditEventLogger
from fleet_auditor.shared.network import NetworkProbe
from fleet_auditor.transport import Transport

logger = logging.getLogger(__name__)

PENALTIES = {
    "dns": 20,
    "icmp": 15,
    "port": 20,
    "service": 35,
    "credential": 0,
}
CATEGORIES = {
    "dns": "connectivity",
    "icmp": "connectivity",
    "port": "connectivity",
    "service": "service",
    "credential": "authentication",
}
# A failure of any of these makes the target unhealthy whatever the score.
BLOCKING_KINDS = {"dns", "service", "credential"}

DEFAULT_SCORE_FLOOR = 60


def score_checks(checks: list[HealthCheck]) -> int:
    return max(0, min(100, 100 - sum(c.penalty for c in checks if c.failed)))


def _check_limits(timeout: float, throttle: int) -> None:
    if timeout <= 0:
        raise ConfigurationError(f"health check timeout must be positive, got {timeout}")
    if throttle < 1:
        raise ConfigurationError(f"health check throttle must be at least 1, got {throttle}")


def is_healthy(checks: list[HealthCheck], score: int, floor: int = DEFAULT_SCORE_FLOOR) -> bool:
    if any(c.failed and c.blocking for c in checks):
        return False
    return score >= floor


class PreflightHealthChecker:

    def __init__(self, transport: Transport, network: NetworkProbe | None = None,
                 timeout: float = 5.0, parallel: bool = True, throttle: int = 8,
                 score_floor: int = DEFAULT_SCORE_FLOOR, dns_retry_delay: float = 1.0,
                 ping_count: int = 1, sleep: Callable[[float], None] = time.sleep,
                 events: AuditEventLogger | None = None):
        self.transport = transport
        self.network = network or NetworkProbe()
        self.timeout = timeout
        self.parallel = parallel
        self.throttle = throttle
        self.score_floor = score_floor
        self.dns_retry_delay = dns_retry_delay
        self.ping_count = ping_count
        self.sleep = sleep
        self.events = events or AuditEventLogger()

    def check(self, targets: Iterable[Target], timeout: float | None = None,
              parallel: bool | None = None, throttle: int | None = None) -> HealthReport:
        """Check a batch of targets; one target's failure never aborts the rest."""
        targets = list(targets)
        timeout = self.timeout if timeout is None else timeout
        parallel = self.parallel if parallel is None else parallel
        throttle = self.throttle if throttle is None else throttle
        _check_limits(timeout, throttle)
        start = time.perf_counter()

        if parallel and len(targets) > 1:
            with ThreadPoolExecutor(max_workers=min(throttle, len(targets)),
                                    thread_name_prefix="preflight") as pool:
                results = list(pool.map(lambda t: self._safe_check(t, timeout), targets))
        else:
            results = [self._safe_check(t, timeout) for t in targets]

        healthy = sum(1 for r in results if r.is_healthy)
        return HealthReport(
            results=results,
            healthy=healthy,
            unhealthy=len(results) - healthy,
            duration_ms=round((time.perf_counter() - start) * 1000, 3),
        )

    def check_target(self, target: Target, timeout: float | None = None) -> HealthCheckResult:
        timeout = self.timeout if timeout is None else timeout
        _check_limits(timeout, 1)
        return self._safe_check(target, timeout)

    def _safe_check(self, target: Target, timeout: float) -> HealthCheckResult:
        try:
            return self._check_one(target, timeout)
        except Exception as e:  # noqa: BLE001
            logger.exception("health check for %s crashed", target.address)
            return HealthCheckResult(
                target=target.key,
                score=0,
                issues=[f"health check failed unexpectedly: {type(e).__name__}: {e}"],
                is_healthy=False,
            )

    # -----------------------------
    # Individual checks
    # -----------------------------
    def _check_one(self, target: Target, timeout: float) -> HealthCheckResult:
        checks: list[HealthCheck] = []
        host = target.address

        if target.is_local:
            for kind in ("dns", "icmp", "port"):
                checks.append(self._skipped(kind, "local target"))
        else:
            checks.append(self._timed("dns", lambda: self._resolve_with_retry(host)))
            if checks[-1].failed:
                for kind in ("icmp", "port", "service", "credential"):
                    checks.append(self._skipped(kind, "not attempted: DNS resolution failed"))
                return self._finish(target, checks)

            checks.append(self._timed("icmp", lambda: self.network.ping(host, timeout, self.ping_count)))
            checks.append(self._timed("port", lambda: self.network.check_port(host, target.port, timeout)))

        if checks[-1].kind == "port" and checks[-1].failed:
            checks.append(self._failed("service", "not attempted: management port unreachable"))
        else:
            checks.append(self._timed("service", lambda: self._service_status(target, timeout)))

        if checks[-1].failed:
            checks.append(self._skipped("credential", "not attempted: management service unavailable"))
        else:
            checks.append(self._timed("credential", lambda: self._auth_probe(target, timeout)))

        return self._finish(target, checks)

    def _resolve_with_retry(self, host: str) -> tuple[bool, str]:
        ok, detail = self.network.resolve(host)
        if ok:
            return ok, detail
        logger.debug("DNS lookup of %s failed (%s), retrying once", host, detail)
        self.sleep(self.dns_retry_delay)
        ok, retry_detail = self.network.resolve(host)
        return ok, retry_detail if ok else f"{retry_detail} (after retry)"

    def _service_status(self, target: Target, timeout: float) -> tuple[bool, str]:
        try:
            result = self.transport.invoke(target, target.credential, {"action": "service_status"}, timeout)
        except TransportError as e:
            return False, str(e)
        available = bool(result.get("available")) if isinstance(result, dict) else bool(result)
        detail = result.get("detail", "") if isinstance(result, dict) else ""
        return available, detail or ("listening" if available else "not listening")

    def _auth_probe(self, target: Target, timeout: float) -> tuple[bool, str]:
        try:
            result = self.transport.invoke(target, target.credential, {"action": "auth_probe"}, timeout)
        except TransportError as e:
            if e.is_auth_failure:
                return False, "credential rejected"
            return False, f"credential probe did not complete: {e}"
        ok = bool(result.get("authenticated")) if isinstance(result, dict) else bool(result)
        return ok, "authenticated" if ok else "credential rejected"

    # -----------------------------
    # Helpers
    # -----------------------------
    def _timed(self, kind: str, probe: Callable[[], tuple[bool, str]]) -> HealthCheck:
        start = time.perf_counter()
        ok, detail = probe()
        elapsed = round((time.perf_counter() - start) * 1000, 3)
        check = self._failed(kind, detail) if not ok else HealthCheck(
            kind=kind, category=CATEGORIES[kind], status="pass",
            blocking=kind in BLOCKING_KINDS, message=detail)
        check.duration_ms = elapsed
        return check

    @staticmethod
    def _failed(kind: str, message: str) -> HealthCheck:
        return HealthCheck(kind=kind, category=CATEGORIES[kind], status="fail",
                           blocking=kind in BLOCKING_KINDS, penalty=PENALTIES[kind], message=message)

    @staticmethod
    def _skipped(kind: str, message: str) -> HealthCheck:
        return HealthCheck(kind=kind, category=CATEGORIES[kind], status="skipped",
                           blocking=kind in BLOCKING_KINDS, message=message)

    def _finish(self, target: Target, checks: list[HealthCheck]) -> HealthCheckResult:
        score = score_checks(checks)
        healthy = is_healthy(checks, score, self.score_floor)
        failed = [c for c in checks if c.failed]
        issues = [f"{c.kind}: {c.message}" for c in failed]
        if not healthy and not any(c.blocking for c in failed):
            issues.append(f"health score {score} is below the floor of {self.score_floor}")

        result = HealthCheckResult(
            target=target.key,
            checks=checks,
            score=score,
            issues=issues,
            remediation=remediation_for([c.kind for c in failed]),
            is_healthy=healthy,
        )
        self.events.event("preflight.checked", target=target.key, score=score,
                          healthy=healthy, failed=[c.kind for c in failed])
        return result
