from typing import Any

from fleet_auditor.collectors.base import TierContext, tier


def parse_route_get_default(stdout: str) -> dict[str, Any]:
    """
    macOS `route -n get default` is key: value style:
        gateway: 192.168.1.1
      interface: en0
          flags: <UP,GATEWAY,DONE,STATIC,PRCLONING>
    """
    fields = {"gateway:": "gateway", "interface:": "interface", "flags:": "flags"}
    parsed: dict[str, Any] = {"gateway": None, "interface": None, "flags": None}

    for line in stdout.splitlines():
        s = line.strip()
        for prefix, out_key in fields.items():
            if s.startswith(prefix):
                parsed[out_key] = s.split(":", 1)[1].strip() or None

    return parsed


def _route_get_default(ctx: TierContext) -> dict[str, Any]:
    stdout, evidence = ctx.run_ok(["route", "-n", "get", "default"])
    parsed = parse_route_get_default(stdout)
    if not parsed["gateway"] and not parsed["interface"]:
        raise RuntimeError("route -n get default returned no gateway")
    return {"destination": "default", **parsed, "evidence": evidence}


def parse_scutil_dns(stdout: str) -> dict[str, Any]:
    """
    Nameservers and search domains from `scutil --dns`, deduped in order.

      nameserver[0] : 1.1.1.1
      search domain[0] : corp.example.com
    """
    nameservers: list[str] = []
    search_domains: list[str] = []

    for line in stdout.splitlines():
        s = line.strip()
        if ":" not in s:
            continue
        value = s.split(":", 1)[1].strip()
        if s.startswith("nameserver[") and value and value not in nameservers:
            nameservers.append(value)
        elif s.startswith("search domain[") and value and value not in search_domains:
            search_domains.append(value)

    return {"nameservers": nameservers, "search_domains": search_domains}


def _scutil_dns(ctx: TierContext) -> dict[str, Any]:
    stdout, evidence = ctx.run_ok(["scutil", "--dns"])
    return {"source": "scutil", **parse_scutil_dns(stdout), "evidence": evidence}


MAC_DEFAULT_ROUTE_TIERS = (
    tier("route_get_default", "route", _route_get_default, timeout=10),
)

MAC_DNS_CONFIG_TIERS = (
    tier("scutil_dns", "scutil", _scutil_dns, timeout=10),
)
