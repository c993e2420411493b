"""
Audit configuration models, validated with Pydantic and loadable from YAML.
"""

from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from fleet_auditor.core.errors import ConfigurationError


class HealthCheckSettings(BaseModel):
    """Pre-flight health gate configuration."""
    model_config = ConfigDict(extra="forbid")

    timeout: float = Field(default=5.0, gt=0, le=120, description="Per-check timeout in seconds")
    parallel: bool = Field(default=True, description="Check several targets concurrently")
    throttle: int = Field(default=8, ge=1, le=64, description="Maximum concurrent target checks")
    score_floor: int = Field(default=60, ge=0, le=100, description="Minimum score for a healthy target")
    dns_retry_delay: float = Field(default=1.0, ge=0, le=30, description="Delay before the single DNS retry")
    ping_count: int = Field(default=1, ge=1, le=10)


class ProfilerSettings(BaseModel):
    """Capability profiling and profile cache configuration."""
    model_config = ConfigDict(extra="forbid")

    cache_dir: Optional[str] = Field(default=None, description="Directory for the persistent profile cache")
    cache_ttl_hours: float = Field(default=24.0, gt=0, le=24 * 30)
    safety_factor: float = Field(default=1.5, ge=1.0, le=10.0)
    measure_timeout: float = Field(default=15.0, gt=0, le=300)


class ExecutionSettings(BaseModel):
    """Per-target execution configuration."""
    model_config = ConfigDict(extra="forbid")

    include_minimal_probe: bool = Field(default=True, description="Append the partial-data probe tier")
    default_job_timeout: float = Field(default=60.0, gt=0, le=3600,
                                       description="Job timeout when profiling is skipped")


class AuditOptions(BaseModel):
    """Top-level options for one fleet audit."""
    model_config = ConfigDict(extra="forbid")

    fleet_throttle: int = Field(default=4, ge=1, le=64, description="Targets audited concurrently")
    fleet_deadline: Optional[float] = Field(default=None, gt=0, description="Seconds before un-started targets are abandoned")
    override_unhealthy: bool = False
    skip_profiling: bool = False
    force_parallel_jobs: Optional[int] = Field(default=None, ge=1, le=64)
    dry_run: bool = False
    use_profile_cache: bool = True

    health: HealthCheckSettings = Field(default_factory=HealthCheckSettings)
    profiler: ProfilerSettings = Field(default_factory=ProfilerSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)

    @model_validator(mode="after")
    def validate_throttles(self):
        if self.health.parallel is False and self.health.throttle != 1:
            # Sequential health checks are a throttle of one.
            self.health.throttle = 1
        return self


def build_options(data: Optional[dict[str, Any]] = None, **overrides: Any) -> AuditOptions:
    """Validate a mapping into AuditOptions, raising ConfigurationError."""
    values = dict(data or {})
    values.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return AuditOptions.model_validate(values)
    except ValidationError as e:
        raise ConfigurationError(f"invalid audit options: {e}") from e


def load_config(path: str | Path) -> AuditOptions:
    """Load AuditOptions from a YAML file; an empty file yields defaults."""
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"config file {path} is not valid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"config file {path} must contain a mapping at the top level")

    return build_options(data.get("audit", data))
