"""
    Shared utility functions for system information retrieval.
"""
import platform
import socket

import psutil

from fleet_auditor.core.models import RuntimeInfo


def get_os() -> str:
    """
        Returns the normalised OS family of the controller.
        Used as the switch value when choosing collector variants.
    """
    operating_system = platform.system()
    switcher = {
        "Windows": "windows",
        "Linux": "linux",
        "Darwin": "darwin",
    }
    return switcher.get(operating_system, operating_system.lower() or "unknown")


def get_runtime_info() -> RuntimeInfo:
    return RuntimeInfo(
        runtime_version=platform.python_version(),
        os_family=get_os(),
        os_release=platform.release(),
    )


def get_minimal_probe() -> dict:
    """
        Always-available inventory: hostname, OS, CPU count and drives.
        Uses nothing beyond the standard platform module and psutil so it
        still answers when richer collectors fail.
    """
    drives = []
    try:
        for part in psutil.disk_partitions(all=False):
            drives.append({"device": part.device, "mountpoint": part.mountpoint, "fstype": part.fstype})
    except (OSError, psutil.Error):
        drives = []

    return {
        "hostname": socket.gethostname(),
        "os": platform.system(),
        "os_version": platform.version(),
        "cpu_count": psutil.cpu_count(logical=True) or 1,
        "drives": drives,
    }
