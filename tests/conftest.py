"""
Pytest configuration and shared fixtures.
"""

import pytest

from fleet_auditor.core.errors import TransportError
from fleet_auditor.core.models import RuntimeInfo, Target
from fleet_auditor.profiling.cache import InMemoryProfileCache
from fleet_auditor.transport import Transport

HEALTHY_METRICS = {
    "cpu": {"cpu_cores": 16},
    "memory": {"total_memory_gb": 32.0, "available_memory_gb": 24.0, "memory_used_percent": 25.0},
    "disk": {"disk_read_latency_ms": 5.0, "disk_write_latency_ms": 5.0, "disk_free_percent": 60.0},
    "load": {"system_load_percent": 10.0},
}

MINIMAL_PROBE = {
    "hostname": "web-01",
    "os": "Linux",
    "os_version": "6.1",
    "cpu_count": 4,
    "drives": [{"device": "/dev/sda1", "mountpoint": "/", "fstype": "ext4"}],
}


class FakeTransport(Transport):
    """Scripted transport; records every call."""

    def __init__(self, metrics=None, service_available=True, authenticated=True,
                 minimal_probe=None, commands=None):
        self.metrics = {k: dict(v) for k, v in (metrics or HEALTHY_METRICS).items()}
        self.service_available = service_available
        self.authenticated = authenticated
        self.minimal_probe = MINIMAL_PROBE if minimal_probe is None else minimal_probe
        self.commands = commands or {}
        self.calls = []

    def actions(self, action):
        return [c for c in self.calls if c[1].get("action") == action]

    def invoke(self, target, credential, payload, timeout):
        self.calls.append((target.key, dict(payload), credential))
        action = payload["action"]

        if action == "measure":
            value = self.metrics.get(payload["metric"])
            if isinstance(value, Exception):
                raise value
            if value is None:
                raise TransportError("remote_error", f"no metric {payload['metric']}")
            return value
        if action == "service_status":
            if isinstance(self.service_available, Exception):
                raise self.service_available
            return {"available": self.service_available}
        if action == "auth_probe":
            if isinstance(self.authenticated, Exception):
                raise self.authenticated
            return {"authenticated": self.authenticated}
        if action == "minimal_probe":
            if isinstance(self.minimal_probe, Exception):
                raise self.minimal_probe
            return self.minimal_probe
        if action == "command":
            result = self.commands.get(tuple(payload["argv"]))
            if isinstance(result, Exception):
                raise result
            if result is None:
                return {"rc": 127, "stdout": "", "stderr": "command not found"}
            return result
        raise TransportError("remote_error", f"unsupported action {action}")


class FakeNetwork:
    """NetworkProbe stand-in with scripted answers."""

    def __init__(self, resolve=(True,), ping=True, port=True, latency=5.0):
        self._resolve = list(resolve)
        self.ping_ok = ping
        self.port_ok = port
        self.latency = latency
        self.resolve_calls = 0
        self.ping_calls = 0
        self.port_calls = 0

    def resolve(self, host):
        ok = self._resolve[min(self.resolve_calls, len(self._resolve) - 1)]
        self.resolve_calls += 1
        return (True, "10.0.0.5") if ok else (False, "gaierror: Name or service not known")

    def ping(self, host, timeout=2.0, count=1):
        self.ping_calls += 1
        return (True, "echo reply received") if self.ping_ok else (False, "100% packet loss")

    def check_port(self, host, port, timeout=3.0):
        self.port_calls += 1
        return (True, f"tcp/{port} open") if self.port_ok else (False, f"tcp/{port} refused")

    def tcp_latency(self, host, port, timeout=3.0):
        return self.latency


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache():
    return InMemoryProfileCache()


@pytest.fixture
def linux_runtime():
    return RuntimeInfo(runtime_version="3.12.1", os_family="linux")


@pytest.fixture
def remote_target():
    return Target("web-01.example.com", credential="opaque-handle", local=False)


@pytest.fixture
def local_target():
    return Target("localhost")
