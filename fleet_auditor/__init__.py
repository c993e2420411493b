"""
Fleet auditing: pre-flight health gating, capability profiling and tiered,
budgeted collector execution across many servers.
"""
from fleet_auditor.collectors.registry import CollectorRegistry, default_registry
from fleet_auditor.config import AuditOptions, load_config
from fleet_auditor.core.models import (
    CapabilityProfile,
    CollectorDescriptor,
    CollectorOutcome,
    FleetAuditReport,
    HealthCheckResult,
    Target,
    TargetAuditResult,
)
from fleet_auditor.orchestrator import AuditOrchestrator
from fleet_auditor.transport import LocalTransport, Transport

__version__ = "0.1.0"

__all__ = [
    "AuditOptions",
    "AuditOrchestrator",
    "CapabilityProfile",
    "CollectorDescriptor",
    "CollectorOutcome",
    "CollectorRegistry",
    "FleetAuditReport",
    "HealthCheckResult",
    "LocalTransport",
    "Target",
    "TargetAuditResult",
    "Transport",
    "default_registry",
    "load_config",
]
