import os
import tempfile
import time

import psutil

GIB = 1024 ** 3

# Size of the scratch file used to time disk I/O.
_PROBE_BYTES = 256 * 1024


def measure_cpu_cores() -> dict:
    cores = psutil.cpu_count(logical=True)
    if not cores:
        raise RuntimeError("psutil could not determine the CPU count")
    return {"cpu_cores": cores}


def measure_memory() -> dict:
    vm = psutil.virtual_memory()
    return {
        "total_memory_gb": round(vm.total / GIB, 2),
        "available_memory_gb": round(vm.available / GIB, 2),
        "memory_used_percent": float(vm.percent),
    }


def measure_disk(path: str | None = None) -> dict:
    """
    Free space plus read/write latency of a small fsync'd scratch file.

    Latencies are wall-clock milliseconds for one write+fsync and one read
    of _PROBE_BYTES in the temp directory (or `path`).
    """
    directory = path or tempfile.gettempdir()
    usage = psutil.disk_usage(directory)
    payload = os.urandom(_PROBE_BYTES)

    fd, scratch = tempfile.mkstemp(prefix="fleet-auditor-", dir=directory)
    try:
        start = time.perf_counter()
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        write_ms = (time.perf_counter() - start) * 1000

        start = time.perf_counter()
        with open(scratch, "rb") as f:
            f.read()
        read_ms = (time.perf_counter() - start) * 1000
    finally:
        try:
            os.unlink(scratch)
        except OSError:
            pass

    return {
        "disk_read_latency_ms": round(read_ms, 3),
        "disk_write_latency_ms": round(write_ms, 3),
        "disk_free_percent": round(100.0 - usage.percent, 2),
    }


def measure_load(interval: float = 0.5) -> dict:
    return {"system_load_percent": float(psutil.cpu_percent(interval=interval))}


MEASUREMENTS = {
    "cpu": measure_cpu_cores,
    "memory": measure_memory,
    "disk": measure_disk,
    "load": measure_load,
}
