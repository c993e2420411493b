from typing import Any
import platform
import socket
import time

import psutil

from fleet_auditor.helpers.unix import run_cmd


def _family_to_label(fam: object) -> str:
    """
    Convert a psutil "address family" value into a human-readable label.

    psutil returns families as platform-specific values (enums / ints):
      - AF_INET   -> IPv4
      - AF_INET6  -> IPv6
      - AF_LINK   -> MAC (macOS/BSD)
      - AF_PACKET -> MAC (Linux)
    """
    if fam == socket.AF_INET:
        return "IPv4"
    if fam == socket.AF_INET6:
        return "IPv6"

    # MAC address family differs per OS; the enum name carries it.
    name = getattr(fam, "name", None)
    if isinstance(name, str) and ("LINK" in name or "PACKET" in name):
        return "MAC"

    return str(fam)


def _laddr_ip_port(laddr: Any) -> tuple[str | None, int | None]:
    """
    laddr can be:
      - a tuple: (ip, port)
      - a namedtuple with .ip and .port
    """
    if not laddr:
        return None, None
    ip = getattr(laddr, "ip", None)
    port = getattr(laddr, "port", None)
    if ip is not None and port is not None:
        return ip, port
    try:
        return laddr[0], laddr[1]
    except (IndexError, TypeError):
        return None, None


# -----------------------------
# Reachability probes
# -----------------------------
class NetworkProbe:
    """
    Reachability primitives used by the pre-flight checks and the profiler.

    Every method returns a (ok, detail) pair or a measurement and never
    raises for ordinary network failures.
    """

    def resolve(self, host: str) -> tuple[bool, str]:
        try:
            infos = socket.getaddrinfo(host, None)
        except (socket.gaierror, UnicodeError, OSError) as e:
            return False, f"{type(e).__name__}: {e}"
        addresses = sorted({info[4][0] for info in infos})
        return True, ", ".join(addresses)

    def ping(self, host: str, timeout: float = 2.0, count: int = 1) -> tuple[bool, str]:
        # Windows ping takes -n/-w(ms); everything else -c/-W(s).
        wait = max(1, int(timeout))
        if platform.system() == "Windows":
            cmd = ["ping", "-n", str(count), "-w", str(wait * 1000), host]
        else:
            cmd = ["ping", "-c", str(count), "-W", str(wait), host]
        rc, stdout, stderr = run_cmd(cmd, timeout_s=timeout * count + 2)
        if rc == 0:
            return True, "echo reply received"
        return False, stderr or stdout or f"ping exited with rc={rc}"

    def check_port(self, host: str, port: int, timeout: float = 3.0) -> tuple[bool, str]:
        latency = self.tcp_latency(host, port, timeout)
        if latency is None:
            return False, f"tcp/{port} did not accept a connection within {timeout}s"
        return True, f"tcp/{port} open ({latency:.1f} ms)"

    def tcp_latency(self, host: str, port: int, timeout: float = 3.0) -> float | None:
        """Round-trip of a TCP connect in milliseconds, or None."""
        start = time.perf_counter()
        try:
            with socket.create_connection((host, port), timeout=timeout):
                pass
        except OSError:
            return None
        return (time.perf_counter() - start) * 1000


# -----------------------------
# Inventory (used by the built-in collectors)
# -----------------------------
def _interface_stats(stats: Any) -> dict[str, Any] | None:
    # Some virtual interfaces have no stats entry.
    if stats is None:
        return None
    return {
        "isup": stats.isup,
        "duplex": getattr(stats.duplex, "name", str(stats.duplex)),
        "speed_mbps": stats.speed,
        "mtu": stats.mtu,
    }


def get_net_addr() -> list[dict[str, Any]]:
    """
    Interface inventory of the local machine, sorted by interface name:

      {"name": "en0", "stats": {"isup": true, ...},
       "addresses": [{"family": "IPv4", "address": "192.168.1.10", ...}, ...]}
    """
    stats_by_name = psutil.net_if_stats()
    return [
        {
            "name": name,
            "stats": _interface_stats(stats_by_name.get(name)),
            "addresses": [
                {
                    "family": _family_to_label(a.family),
                    "address": a.address,
                    "netmask": getattr(a, "netmask", None),
                    "broadcast": getattr(a, "broadcast", None),
                }
                for a in addrs
            ],
        }
        for name, addrs in sorted(psutil.net_if_addrs().items())
    ]


def get_listening_ports() -> dict[str, Any]:
    """
    TCP listeners and bound UDP sockets, deduplicated and sorted by port.

    psutil.net_connections() may raise AccessDenied without root; that is
    left to the caller, which treats it as this tier's failure.
    """
    seen: dict[str, set] = {"tcp": set(), "udp": set()}

    for c in psutil.net_connections(kind="inet"):
        ip, port = _laddr_ip_port(c.laddr)
        if port is None:
            continue
        if c.type == socket.SOCK_STREAM and c.status == psutil.CONN_LISTEN:
            proto = "tcp"
        elif c.type == socket.SOCK_DGRAM:
            proto = "udp"
        else:
            continue
        seen[proto].add((port, ip, _family_to_label(c.family), c.pid))

    return {
        proto: [{"ip": ip, "port": port, "family": fam, "pid": pid}
                for port, ip, fam, pid in sorted(entries, key=lambda e: (e[0], str(e[1]), e[3] or 0))]
        for proto, entries in seen.items()
    }
