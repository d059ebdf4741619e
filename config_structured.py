"""
Structured configuration for the compute scheduler using typed dataclasses.

This is the AUTHORITATIVE source of truth for tier and scheduling values.
``config.py`` imports from here for backward compatibility.

Usage:
    from compute_scheduler.config_structured import get_config
    cfg = get_config()
    cfg.scheduler.poll_interval_seconds
    cfg.tiers["professional"].max_concurrent_jobs
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import yaml

DEFAULT_TIERS_FILE = Path(__file__).parent / "config_data" / "tiers.yaml"

# Priority assigned to a tier that does not configure one explicitly.
DEFAULT_TIER_PRIORITY = 2


# ── Tier Config ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class ResourceProfile:
    """Backend sizing for one tier.

    Each adapter kind reads only the fields that apply to it: training-style
    backends use the instance type, batch-style backends the vCPU/memory
    pair, function-style backends the memory size.
    """
    training_instance_type: str = "ml.t3.medium"
    batch_vcpus: int = 1
    batch_memory_mb: int = 1024
    function_memory_mb: int = 256

    def __post_init__(self):
        if self.batch_vcpus < 1:
            raise ValueError(f"batch_vcpus must be >= 1, got {self.batch_vcpus}")
        if self.batch_memory_mb < 128:
            raise ValueError(f"batch_memory_mb must be >= 128, got {self.batch_memory_mb}")
        if self.function_memory_mb < 128:
            raise ValueError(f"function_memory_mb must be >= 128, got {self.function_memory_mb}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "training_instance_type": self.training_instance_type,
            "batch_vcpus": self.batch_vcpus,
            "batch_memory_mb": self.batch_memory_mb,
            "function_memory_mb": self.function_memory_mb,
        }


@dataclass(frozen=True)
class TierConfig:
    """Concurrency class a job is billed against."""
    name: str
    max_concurrent_jobs: int
    priority: int = DEFAULT_TIER_PRIORITY
    resources: ResourceProfile = field(default_factory=ResourceProfile)

    def __post_init__(self):
        if not self.name:
            raise ValueError("tier name must be non-empty")
        if not isinstance(self.max_concurrent_jobs, int) or self.max_concurrent_jobs < 1:
            raise ValueError(
                f"tier {self.name!r}: max_concurrent_jobs must be a positive integer, "
                f"got {self.max_concurrent_jobs!r}"
            )


# ── Scheduler Config ─────────────────────────────────────────────────


@dataclass
class SchedulerConfig:
    """Timing and retry knobs for the admission and poll loops."""
    admission_interval_seconds: float = 3.0
    admission_attempts_per_tick: int = 5
    poll_interval_seconds: float = 30.0
    default_max_retries: int = 3
    starting_progress: int = 10
    in_progress_progress: int = 50

    def __post_init__(self):
        if self.admission_interval_seconds <= 0:
            raise ValueError("admission_interval_seconds must be positive")
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        if self.admission_attempts_per_tick < 1:
            raise ValueError("admission_attempts_per_tick must be >= 1")
        if self.default_max_retries < 1:
            raise ValueError("default_max_retries must be >= 1")
        for name in ("starting_progress", "in_progress_progress"):
            value = getattr(self, name)
            if not 0 <= value < 100:
                raise ValueError(f"{name} must be in [0, 100), got {value}")


# ── Tier loading ─────────────────────────────────────────────────────


def _build_tier(name: str, raw: Dict[str, Any]) -> TierConfig:
    if not isinstance(raw, dict):
        raise ValueError(f"tier {name!r} must be a mapping, got {type(raw).__name__}")
    if "max_concurrent_jobs" not in raw:
        raise ValueError(f"tier {name!r} is missing max_concurrent_jobs")
    resources = raw.get("resources") or {}
    if not isinstance(resources, dict):
        raise ValueError(f"tier {name!r}: resources must be a mapping")
    return TierConfig(
        name=name,
        max_concurrent_jobs=raw["max_concurrent_jobs"],
        priority=int(raw.get("priority", DEFAULT_TIER_PRIORITY)),
        resources=ResourceProfile(**resources),
    )


def parse_tiers(data: Any) -> Mapping[str, TierConfig]:
    """Build a read-only tier table from the parsed YAML document.

    Accepts either ``{"tiers": {...}}`` or the bare ``{name: {...}}`` mapping.
    Raises ``ValueError`` on malformed input.
    """
    if isinstance(data, dict) and "tiers" in data:
        data = data["tiers"]
    if not isinstance(data, dict) or not data:
        raise ValueError("tier configuration must be a non-empty mapping")
    tiers = {str(name): _build_tier(str(name), raw) for name, raw in data.items()}
    return MappingProxyType(tiers)


def load_tiers(path: Optional[Path] = None) -> Mapping[str, TierConfig]:
    """Load the tier table from YAML (defaults to ``config_data/tiers.yaml``)."""
    path = Path(path) if path is not None else DEFAULT_TIERS_FILE
    with open(path) as f:
        data = yaml.safe_load(f)
    return parse_tiers(data)


@dataclass
class SystemConfig:
    """Top-level configuration aggregating the scheduler and tier table."""

    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    tiers: Mapping[str, TierConfig] = field(default_factory=load_tiers)


# ── Module-level singleton ──────────────────────────────────────────

_CONFIG: Optional[SystemConfig] = None


def get_config() -> SystemConfig:
    """Return the singleton SystemConfig instance.

    On first call, instantiates the default SystemConfig (reading the
    packaged tier table). Subsequent calls return the same instance so all
    callers share one source of truth.
    """
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = SystemConfig()
    return _CONFIG
