import enum
import json
from dataclasses import fields, is_dataclass
from pathlib import Path
from typing import Any

from fleet_auditor.core.models import CapabilityProfile, PerformanceTier, Target

# Attributes that must never leave the process in a report.
_REDACTED_FIELDS = {"credential"}


def to_serializable(obj: Any) -> Any:
    """
    Convert result objects (reports, profiles, health results, outcomes)
    into JSON-friendly dicts/lists.

    asdict() is not used on Targets directly because it would deep-copy the
    opaque credential handle; dataclasses are walked field by field instead.
    """
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, Target):
        return {
            "address": obj.address,
            "port": obj.port,
            "local": obj.is_local,
            "os_family": obj.os_family,
        }
    if is_dataclass(obj) and not isinstance(obj, type):
        out: dict[str, Any] = {}
        for f in fields(obj):
            if f.name in _REDACTED_FIELDS:
                continue
            value = getattr(obj, f.name)
            if callable(value) and not is_dataclass(value):
                continue
            out[f.name] = to_serializable(value)
        return out
    if isinstance(obj, dict):
        return {str(k): to_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [to_serializable(v) for v in obj]
    return obj


def write_json_report(report, out_path: str | Path) -> Path:
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    with out_path.open("w", encoding="utf-8") as f:
        json.dump(to_serializable(report), f, indent=2, ensure_ascii=False, default=str)

    return out_path


# Numeric profile fields; a stored value that does not convert is a corrupt entry.
_PROFILE_INTS = ("cpu_cores", "safe_parallel_jobs")
_PROFILE_FLOATS = ("total_memory_gb", "available_memory_gb", "memory_used_percent", "disk_read_latency_ms",
                   "disk_write_latency_ms", "disk_free_percent", "system_load_percent", "job_timeout",
                   "overall_timeout", "timestamp")


def profile_from_dict(data: dict[str, Any]):
    """
    Rebuild a CapabilityProfile written by to_serializable().

    Raises KeyError, TypeError or ValueError when the stored entry is
    missing a field or holds a value of the wrong type.
    """
    values = dict(data)
    values["tier"] = PerformanceTier(values["tier"])
    values["constraints"] = list(values.get("constraints") or [])
    for name in _PROFILE_INTS:
        values[name] = int(values[name])
    for name in _PROFILE_FLOATS:
        values[name] = float(values[name])
    if values.get("network_latency_ms") is not None:
        values["network_latency_ms"] = float(values["network_latency_ms"])
    return CapabilityProfile(**values)
