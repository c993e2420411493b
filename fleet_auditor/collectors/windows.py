"""
    Windows collectors.

    Tier order per collector:
      1. CIM through PowerShell, run via the transport (local or remote)
      2. WMI through the `wmi` package (local machine only)
      3. the minimal probe, appended by the runner
"""
import json
from typing import Any

from fleet_auditor.collectors.base import TierContext, tier

OS_PROPERTIES = ["Caption", "Version", "OSArchitecture", "BuildNumber", "Manufacturer", "LastBootUpTime"]


def _wmi_connection():
    # Imported lazily: the wmi package only installs on Windows.
    import wmi
    return wmi.WMI()


def _cim_query(ctx: TierContext, cim_class: str, properties: list[str]) -> list[dict[str, Any]]:
    script = (
        f"Get-CimInstance -ClassName {cim_class} | "
        f"Select-Object {','.join(properties)} | ConvertTo-Json -Compress"
    )
    stdout, _ = ctx.run_ok(["powershell", "-NoProfile", "-NonInteractive", "-Command", script])
    rows = json.loads(stdout)
    # ConvertTo-Json emits a bare object for a single instance.
    return rows if isinstance(rows, list) else [rows]


# -----------------------------
# Operating system
# -----------------------------
def _os_from_cim(ctx: TierContext) -> dict[str, Any]:
    row = _cim_query(ctx, "Win32_OperatingSystem", OS_PROPERTIES)[0]
    return {
        "os_name": row.get("Caption"),
        "os_version": row.get("Version"),
        "architecture": row.get("OSArchitecture"),
        "build_number": row.get("BuildNumber"),
        "manufacturer": row.get("Manufacturer"),
    }


def get_windows_operating_system_info(ctx: TierContext) -> dict[str, Any]:
    """
        Retrieve Windows operating system information using WMI.
        Identity and Context - Who/What is this Windows machine.
    """
    ctx.require_local("WMI")
    os_info = _wmi_connection().Win32_OperatingSystem()[0]
    return {
        "os_name": os_info.Caption,
        "os_version": os_info.Version,
        "architecture": os_info.OSArchitecture,
        "build_number": os_info.BuildNumber,
        "manufacturer": os_info.Manufacturer,
    }


# -----------------------------
# Hardware
# -----------------------------
def _hardware_from_cim(ctx: TierContext) -> dict[str, Any]:
    cpus = _cim_query(ctx, "Win32_Processor", ["Name", "Manufacturer", "MaxClockSpeed", "NumberOfCores"])
    memory = _cim_query(ctx, "Win32_PhysicalMemory", ["Capacity", "Speed", "Manufacturer"])
    disks = _cim_query(ctx, "Win32_LogicalDisk", ["DeviceID", "FileSystem", "Size", "FreeSpace"])
    return {
        "cpu": [{"name": c.get("Name"), "manufacturer": c.get("Manufacturer"),
                 "max_clock_speed": c.get("MaxClockSpeed"), "number_of_cores": c.get("NumberOfCores")}
                for c in cpus],
        "memory": [{"capacity": m.get("Capacity"), "speed": m.get("Speed"),
                    "manufacturer": m.get("Manufacturer")} for m in memory],
        "disk_drives": [{"device_id": d.get("DeviceID"), "file_system": d.get("FileSystem"),
                         "size": d.get("Size"), "free_space": d.get("FreeSpace")} for d in disks],
    }


def get_windows_hardware_details(ctx: TierContext) -> dict[str, Any]:
    """
        Retrieve Windows hardware details using WMI.
        Hardware and Capacity - What is inside this Windows machine.
    """
    ctx.require_local("WMI")
    c = _wmi_connection()
    hardware_details: dict[str, list] = {
        "cpu": [],
        "memory": [],
        "disk_drives": [],
    }

    for cpu in c.Win32_Processor():
        hardware_details["cpu"].append({
            "name": cpu.Name,
            "manufacturer": cpu.Manufacturer,
            "max_clock_speed": cpu.MaxClockSpeed,
            "number_of_cores": cpu.NumberOfCores,
        })

    for mem in c.Win32_PhysicalMemory():
        hardware_details["memory"].append({
            "capacity": mem.Capacity,
            "speed": mem.Speed,
            "manufacturer": mem.Manufacturer,
        })

    for l_disk in c.Win32_LogicalDisk():
        hardware_details["disk_drives"].append({
            "device_id": l_disk.DeviceID,
            "file_system": l_disk.FileSystem,
            "size": l_disk.Size,
            "free_space": l_disk.FreeSpace,
        })

    return hardware_details


WINDOWS_OS_TIERS = (
    tier("cim_os", "cim", _os_from_cim, timeout=30),
    tier("wmi_os", "wmi", get_windows_operating_system_info, timeout=30),
)

WINDOWS_HARDWARE_TIERS = (
    tier("cim_hardware", "cim", _hardware_from_cim, timeout=45),
    tier("wmi_hardware", "wmi", get_windows_hardware_details, timeout=45),
)
