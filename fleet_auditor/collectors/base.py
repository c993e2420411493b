"""
Building blocks for collector descriptors.

A collector is a CollectorDescriptor holding ordered variants; each variant
holds ordered tiers. A tier's attempt function receives a TierContext and
returns JSON-friendly data, or raises to hand over to the next tier.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from fleet_auditor.core.errors import TierUnavailable
from fleet_auditor.core.models import (
    CollectorDescriptor,
    CollectorTier,
    CollectorVariant,
    RuntimeInfo,
    Target,
)
from fleet_auditor.helpers.unix import get_evidence

PARTIAL_SOURCE = "partial"


@dataclass
class TierContext:
    target: Target
    credential: Any
    transport: Any
    timeout: float

    def invoke(self, payload: dict[str, Any]) -> Any:
        return self.transport.invoke(self.target, self.credential, payload, self.timeout)

    def run(self, cmd: list[str]) -> tuple[int, str, str]:
        """Run a command on the target through the transport."""
        result = self.invoke({"action": "command", "argv": cmd})
        return int(result.get("rc", 1)), result.get("stdout", "") or "", result.get("stderr", "") or ""

    def run_ok(self, cmd: list[str]) -> tuple[str, dict[str, Any]]:
        """Run cmd and return (stdout, evidence); raise unless rc == 0 with output."""
        rc, stdout, stderr = self.run(cmd)
        evidence = get_evidence(cmd, rc, stdout, stderr)
        if rc != 0 or not stdout.strip():
            raise RuntimeError(stderr or stdout or f"{cmd[0]} exited with rc={rc}")
        return stdout, evidence

    def require_local(self, what: str) -> None:
        if not self.target.is_local:
            raise TierUnavailable(f"{what} only runs against the local machine")


# -----------------------------
# Predicates
# -----------------------------
def os_is(*families: str) -> Callable[[RuntimeInfo], bool]:
    wanted = {f.lower() for f in families}
    return lambda runtime: runtime.os_family.lower() in wanted


def any_runtime(runtime: RuntimeInfo) -> bool:
    return True


def runtime_for(target: Target, local: RuntimeInfo) -> RuntimeInfo:
    """Runtime a target's variants are chosen against: its OS hint, if any."""
    if target.os_family and not target.is_local:
        return RuntimeInfo(runtime_version=local.runtime_version, os_family=target.os_family.lower())
    return local


# -----------------------------
# Constructors
# -----------------------------
def tier(name: str, data_source: str, attempt: Callable[[TierContext], Any],
         timeout: float | None = None) -> CollectorTier:
    return CollectorTier(name=name, data_source=data_source, attempt=attempt, timeout=timeout)


def variant(name: str, predicate: Callable[[RuntimeInfo], bool], *tiers: CollectorTier) -> CollectorVariant:
    return CollectorVariant(name=name, predicate=predicate, tiers=tuple(tiers))


def descriptor(name: str, *variants: CollectorVariant, depends_on: tuple[str, ...] = (),
               description: str = "") -> CollectorDescriptor:
    return CollectorDescriptor(name=name, variants=tuple(variants), dependencies=tuple(depends_on),
                               description=description)


# -----------------------------
# Minimal probe (final tier of every collector)
# -----------------------------
def _minimal_probe(ctx: TierContext) -> dict[str, Any]:
    data = ctx.invoke({"action": "minimal_probe"})
    if not isinstance(data, dict) or not data.get("hostname"):
        raise RuntimeError("minimal probe returned no hostname")
    return data


MINIMAL_PROBE_TIER = tier("minimal_probe", PARTIAL_SOURCE, _minimal_probe)
