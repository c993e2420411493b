# core/models.py
from __future__ import annotations

import enum
import re
import socket
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

from fleet_auditor.core.errors import ContractError

CheckKind = Literal["dns", "icmp", "port", "service", "credential"]
CheckCategory = Literal["connectivity", "service", "authentication"]
CheckStatus = Literal["pass", "fail", "skipped"]
OutcomeStatus = Literal["success", "failed", "timeout", "skipped"]
TimeoutUnit = Literal["collector", "target", "fleet"]
TargetStatus = Literal["audited", "skipped_unhealthy", "not_attempted", "error", "planned"]

LOCAL_ADDRESSES = {"localhost", "127.0.0.1", "::1", "."}
DEFAULT_MANAGEMENT_PORT = 5985

_ADDRESS_RE = re.compile(r"^[A-Za-z0-9_.:\-\[\]%]+$")


class PerformanceTier(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)


_TIER_ORDER = [PerformanceTier.LOW, PerformanceTier.MEDIUM, PerformanceTier.HIGH, PerformanceTier.VERY_HIGH]


# -----------------------------
# Targets
# -----------------------------
@dataclass(frozen=True)
class Target:
    """
    One server being audited.

    The credential is an opaque handle: it is passed to the transport
    unchanged and kept out of repr(), equality and serialized reports.
    """
    address: str
    credential: Any = field(default=None, repr=False, compare=False)
    port: int = DEFAULT_MANAGEMENT_PORT
    local: bool | None = None
    os_family: str | None = None

    @property
    def key(self) -> str:
        return str(self.address).strip().lower()

    @property
    def is_local(self) -> bool:
        if self.local is not None:
            return self.local
        key = self.key
        if key in LOCAL_ADDRESSES:
            return True
        try:
            return key == socket.gethostname().lower()
        except OSError:
            return False

    def validate(self) -> None:
        """Raise ContractError when the identity cannot address a host."""
        if not isinstance(self.address, str) or not self.address.strip():
            raise ContractError(f"target address must be a non-empty string, got {self.address!r}")
        if not _ADDRESS_RE.match(self.address.strip()):
            raise ContractError(f"malformed target address: {self.address!r}")
        try:
            port = int(self.port)
        except (TypeError, ValueError):
            raise ContractError(f"management port for {self.address} is not a number: {self.port!r}") from None
        if not (0 < port < 65536):
            raise ContractError(f"management port out of range for {self.address}: {self.port}")


@dataclass(frozen=True)
class RuntimeInfo:
    """What variant predicates are evaluated against."""
    runtime_version: str
    os_family: str
    os_release: str = ""


# -----------------------------
# Capability profiling
# -----------------------------
@dataclass
class CapabilityProfile:
    target: str
    cpu_cores: int
    total_memory_gb: float
    available_memory_gb: float
    memory_used_percent: float
    disk_read_latency_ms: float
    disk_write_latency_ms: float
    disk_free_percent: float
    network_latency_ms: float | None
    system_load_percent: float
    tier: PerformanceTier
    safe_parallel_jobs: int
    job_timeout: float
    overall_timeout: float
    constraints: list[str] = field(default_factory=list)
    timestamp: float = 0.0
    cached: bool = False


# -----------------------------
# Health
# -----------------------------
@dataclass
class HealthCheck:
    kind: CheckKind
    category: CheckCategory
    status: CheckStatus
    blocking: bool
    penalty: int = 0
    message: str = ""
    duration_ms: float = 0.0

    @property
    def failed(self) -> bool:
        return self.status == "fail"


@dataclass
class HealthCheckResult:
    target: str
    checks: list[HealthCheck] = field(default_factory=list)
    score: int = 100
    issues: list[str] = field(default_factory=list)
    remediation: list[str] = field(default_factory=list)
    is_healthy: bool = True


@dataclass
class HealthReport:
    results: list[HealthCheckResult]
    healthy: int = 0
    unhealthy: int = 0
    duration_ms: float = 0.0


# -----------------------------
# Collectors
# -----------------------------
@dataclass(frozen=True)
class CollectorTier:
    """One alternative mechanism: attempt(ctx) returns data or raises."""
    name: str
    data_source: str
    attempt: Callable[..., Any] = field(repr=False, compare=False)
    timeout: float | None = None


@dataclass(frozen=True)
class CollectorVariant:
    name: str
    predicate: Callable[[RuntimeInfo], bool] = field(repr=False, compare=False)
    tiers: tuple[CollectorTier, ...] = ()

    def matches(self, runtime: RuntimeInfo) -> bool:
        try:
            return bool(self.predicate(runtime))
        except Exception:
            return False


@dataclass(frozen=True)
class CollectorDescriptor:
    name: str
    variants: tuple[CollectorVariant, ...]
    dependencies: tuple[str, ...] = ()
    description: str = ""

    def compatibility_predicate(self, runtime: RuntimeInfo) -> bool:
        return any(v.matches(runtime) for v in self.variants)

    def select_variant(self, runtime: RuntimeInfo) -> CollectorVariant | None:
        # First match wins; no fallthrough to a "default" variant.
        for variant in self.variants:
            if variant.matches(runtime):
                return variant
        return None


@dataclass
class TierAttemptRecord:
    tier: str
    data_source: str
    success: bool
    duration_ms: float
    error: str | None = None


@dataclass
class CollectorOutcome:
    collector: str
    target: str
    success: bool
    status: OutcomeStatus
    data_source: str | None = None
    data: Any = None
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    execution_time_ms: float = 0.0
    timeout_unit: TimeoutUnit | None = None
    attempts: list[TierAttemptRecord] = field(default_factory=list)


# -----------------------------
# Results
# -----------------------------
@dataclass
class ExecutionPlan:
    strategy: str
    safe_parallel_jobs: int
    job_timeout: float
    overall_timeout: float
    collectors: list[str] = field(default_factory=list)
    incompatible: list[str] = field(default_factory=list)


@dataclass
class TargetAuditResult:
    target: Target
    status: TargetStatus
    outcomes: list[CollectorOutcome] = field(default_factory=list)
    profile: CapabilityProfile | None = None
    health: HealthCheckResult | None = None
    incompatible: list[str] = field(default_factory=list)
    plan: ExecutionPlan | None = None
    error: str | None = None
    timeout_unit: TimeoutUnit | None = None
    duration_ms: float = 0.0

    @property
    def successful_collectors(self) -> int:
        return sum(1 for o in self.outcomes if o.success)


@dataclass
class CollectorStats:
    attempted: int = 0
    succeeded: int = 0
    partial: int = 0
    timed_out: int = 0
    skipped: int = 0

    @property
    def success_rate(self) -> float:
        return round(self.succeeded / self.attempted, 4) if self.attempted else 0.0


@dataclass
class FleetSummary:
    total_targets: int = 0
    audited: int = 0
    planned: int = 0
    healthy: int = 0
    unhealthy: int = 0
    not_attempted: int = 0
    errored: int = 0
    successful_collectors: int = 0
    collectors: dict[str, CollectorStats] = field(default_factory=dict)
    total_duration_ms: float = 0.0
    mean_target_duration_ms: float = 0.0
    total_collector_time_ms: float = 0.0


@dataclass
class FleetAuditReport:
    targets: list[TargetAuditResult]
    summary: FleetSummary
    dry_run: bool = False
    started_at: str = ""
    finished_at: str = ""
