"""
Linux network collectors, one tier per command in each fallback chain.

Each tier runs its command through the transport, so the same chain works
against the local machine and against remote Linux targets.
"""
from typing import Any

from fleet_auditor.collectors.base import TierContext, tier


# -----------------------------
# 1) Default route / gateway
# -----------------------------
def parse_ip_route(stdout: str) -> dict[str, Any]:
    """
    Parse `ip route show default`.

    ip route output is NOT key:value.
    Typical: "default via 192.168.1.1 dev eth0 proto dhcp metric 100"
    Parse tokens after "via" (gateway) and "dev" (interface).
    """
    gateway: str | None = None
    iface: str | None = None

    for line in stdout.splitlines():
        tokens = line.strip().split()
        if not tokens:
            continue

        if "via" in tokens:
            i = tokens.index("via")
            if i + 1 < len(tokens):
                gateway = tokens[i + 1]

        if "dev" in tokens:
            i = tokens.index("dev")
            if i + 1 < len(tokens):
                iface = tokens[i + 1]

        # First line with something is the primary default route.
        if gateway or iface:
            break

    return {"gateway": gateway, "interface": iface}


def parse_route_n(stdout: str) -> dict[str, Any]:
    """
    Parse `route -n`:
      Destination Gateway     Genmask ... Iface
      0.0.0.0     192.168.1.1 0.0.0.0 ... eth0
    """
    for line in stdout.splitlines():
        s = line.strip()
        if not s or s.lower().startswith("destination") or s.lower().startswith("kernel"):
            continue
        parts = s.split()
        if len(parts) >= 8 and (parts[0] == "0.0.0.0" or parts[0].lower() == "default"):
            return {"gateway": parts[1], "interface": parts[-1]}
    return {"gateway": None, "interface": None}


def parse_netstat_rn(stdout: str) -> dict[str, Any]:
    """
    Parse `netstat -rn`; the default row looks like:
      default  192.168.1.1  ...  eth0
    """
    for line in stdout.splitlines():
        parts = line.strip().split()
        if len(parts) >= 3 and parts[0].lower() in ("default", "0.0.0.0"):
            # Interface column varies; usually last column is iface
            return {"gateway": parts[1], "interface": parts[-1]}
    return {"gateway": None, "interface": None}


def _route_tier(cmd: list[str], parse) -> Any:
    def attempt(ctx: TierContext) -> dict[str, Any]:
        stdout, evidence = ctx.run_ok(cmd)
        parsed = parse(stdout)
        if not parsed["gateway"] and not parsed["interface"]:
            raise RuntimeError(f"no default route in `{' '.join(cmd)}` output")
        return {**parsed, "evidence": evidence}
    return attempt


DEFAULT_ROUTE_TIERS = (
    tier("ip_route", "iproute2", _route_tier(["ip", "route", "show", "default"], parse_ip_route), timeout=10),
    tier("route_n", "net-tools", _route_tier(["route", "-n"], parse_route_n), timeout=10),
    tier("netstat_rn", "netstat", _route_tier(["netstat", "-rn"], parse_netstat_rn), timeout=10),
)


# -----------------------------
# 2) DNS configuration
# -----------------------------
def _add_unique(items: list[str], values) -> None:
    for v in values:
        if v and v not in items:
            items.append(v)


def parse_resolvectl(stdout: str) -> dict[str, Any]:
    """
    resolvectl format varies, but common lines include:
      DNS Servers: 1.1.1.1 8.8.8.8
      DNS Domain: corp.example.com
    """
    nameservers: list[str] = []
    search_domains: list[str] = []

    for line in stdout.splitlines():
        s = line.strip()
        if ":" not in s:
            continue
        key, tail = s.split(":", 1)
        if key in ("DNS Servers", "Current DNS Server"):
            _add_unique(nameservers, tail.split())
        elif key in ("DNS Domain", "Domains", "Search Domains"):
            _add_unique(search_domains, tail.split())

    return {"nameservers": nameservers, "search_domains": search_domains}


def parse_resolv_conf(text: str) -> dict[str, Any]:
    """
    Parse resolv.conf style:
      nameserver 1.1.1.1
      search corp.example.com example.com
      domain corp.example.com

    The file may point at a local stub resolver (e.g. 127.0.0.53); that is
    still reported as-is.
    """
    nameservers: list[str] = []
    search_domains: list[str] = []

    for line in text.splitlines():
        s = line.strip()
        if not s or s.startswith("#") or s.startswith(";"):
            continue
        parts = s.split()
        if parts[0] == "nameserver" and len(parts) >= 2:
            _add_unique(nameservers, parts[1:2])
        elif parts[0] == "search":
            _add_unique(search_domains, parts[1:])
        elif parts[0] == "domain" and len(parts) >= 2:
            _add_unique(search_domains, parts[1:2])

    return {"nameservers": nameservers, "search_domains": search_domains}


def _resolvectl(ctx: TierContext) -> dict[str, Any]:
    stdout, evidence = ctx.run_ok(["resolvectl", "status"])
    parsed = parse_resolvectl(stdout)
    if not parsed["nameservers"]:
        raise RuntimeError("resolvectl reported no DNS servers")
    return {"source": "resolvectl", **parsed, "evidence": evidence}


def _resolv_conf(ctx: TierContext) -> dict[str, Any]:
    stdout, evidence = ctx.run_ok(["cat", "/etc/resolv.conf"])
    return {"source": "resolv.conf", **parse_resolv_conf(stdout), "evidence": evidence}


DNS_CONFIG_TIERS = (
    tier("resolvectl", "resolvectl", _resolvectl, timeout=10),
    tier("resolv_conf", "resolv.conf", _resolv_conf, timeout=10),
)
