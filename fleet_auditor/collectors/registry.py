"""
Collector registry and the built-in collector set.
"""
from __future__ import annotations

import threading
from typing import Iterable

from fleet_auditor.collectors.base import TierContext, any_runtime, descriptor, os_is, tier, variant
from fleet_auditor.collectors.linux.linux_network import DEFAULT_ROUTE_TIERS, DNS_CONFIG_TIERS
from fleet_auditor.collectors.mac.interfaces import SYSTEM_CONFIGURATION_TIER
from fleet_auditor.collectors.mac.mac_network import MAC_DEFAULT_ROUTE_TIERS, MAC_DNS_CONFIG_TIERS
from fleet_auditor.collectors.windows import WINDOWS_HARDWARE_TIERS, WINDOWS_OS_TIERS
from fleet_auditor.core.errors import ContractError
from fleet_auditor.core.models import CollectorDescriptor, RuntimeInfo
from fleet_auditor.shared.network import get_listening_ports, get_net_addr


class CollectorRegistry:
    """Registered collector descriptors, in registration order."""

    def __init__(self, collectors: Iterable[CollectorDescriptor] = ()):
        self._collectors: dict[str, CollectorDescriptor] = {}
        self._lock = threading.Lock()
        for c in collectors:
            self.register(c)

    def register(self, collector: CollectorDescriptor) -> CollectorDescriptor:
        if not collector.name or not collector.variants:
            raise ContractError(f"collector {collector.name!r} needs a name and at least one variant")
        if collector.name in collector.dependencies:
            raise ContractError(f"collector {collector.name!r} depends on itself")
        with self._lock:
            if collector.name in self._collectors:
                raise ContractError(f"collector {collector.name!r} is already registered")
            self._collectors[collector.name] = collector
        return collector

    def names(self) -> list[str]:
        return list(self._collectors)

    def get(self, name: str) -> CollectorDescriptor:
        try:
            return self._collectors[name]
        except KeyError:
            raise ContractError(f"unknown collector {name!r}") from None

    def list_compatible(self, runtime_version: str, os_info: str) -> list[CollectorDescriptor]:
        """
        Collectors with at least one variant for this runtime.

        Used for listing (the `collectors` CLI command). Audits go through
        filter() and then pick a variant per target.
        """
        runtime = RuntimeInfo(runtime_version=runtime_version, os_family=os_info.lower())
        return [c for c in self._collectors.values() if c.compatibility_predicate(runtime)]

    def filter(self, names: Iterable[str] | None = None) -> list[CollectorDescriptor]:
        """Descriptors named in `names` (all when None), in registry order."""
        if names is None:
            return list(self._collectors.values())
        wanted = list(names)
        unknown = [n for n in wanted if n not in self._collectors]
        if unknown:
            raise ContractError(f"unknown collector(s): {', '.join(unknown)}")
        return [c for c in self._collectors.values() if c.name in wanted]


# -----------------------------
# Local-library tiers
# -----------------------------
def _psutil_interfaces(ctx: TierContext):
    ctx.require_local("psutil interface inventory")
    return {"interfaces": get_net_addr()}


def _psutil_listening_ports(ctx: TierContext):
    ctx.require_local("psutil socket inventory")
    return get_listening_ports()


PSUTIL_INTERFACES_TIER = tier("psutil_interfaces", "psutil", _psutil_interfaces)


def builtin_collectors() -> list[CollectorDescriptor]:
    return [
        descriptor(
            "default_route",
            variant("linux", os_is("linux"), *DEFAULT_ROUTE_TIERS),
            variant("darwin", os_is("darwin"), *MAC_DEFAULT_ROUTE_TIERS),
            description="Default gateway and primary interface",
        ),
        descriptor(
            "dns_config",
            variant("linux", os_is("linux"), *DNS_CONFIG_TIERS),
            variant("darwin", os_is("darwin"), *MAC_DNS_CONFIG_TIERS),
            description="Resolver nameservers and search domains",
        ),
        descriptor(
            "network_interfaces",
            variant("darwin", os_is("darwin"), SYSTEM_CONFIGURATION_TIER, PSUTIL_INTERFACES_TIER),
            variant("generic", any_runtime, PSUTIL_INTERFACES_TIER),
            description="Interface inventory",
        ),
        descriptor(
            "listening_ports",
            variant("generic", any_runtime, tier("psutil_connections", "psutil", _psutil_listening_ports)),
            depends_on=("network_interfaces",),
            description="Listening TCP and bound UDP sockets",
        ),
        descriptor(
            "windows_os",
            variant("windows", os_is("windows"), *WINDOWS_OS_TIERS),
            description="Operating system identity",
        ),
        descriptor(
            "windows_hardware",
            variant("windows", os_is("windows"), *WINDOWS_HARDWARE_TIERS),
            depends_on=("windows_os",),
            description="CPU, memory and logical disks",
        ),
    ]


def default_registry() -> CollectorRegistry:
    return CollectorRegistry(builtin_collectors())
