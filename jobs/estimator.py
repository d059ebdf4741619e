"""Priority and duration estimates computed once at submission.

Both functions are pure: identical inputs always yield identical outputs.
Durations are whole minutes, rounded up, never below one minute.
"""
from __future__ import annotations

import math
from collections.abc import Sized
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from ..config_structured import DEFAULT_TIER_PRIORITY, TierConfig
from .models import JobType

MIN_DURATION_MINUTES = 1


@dataclass(frozen=True)
class JobEstimate:
    priority: int
    estimated_duration_minutes: int


def _count(params: Mapping[str, Any], key: str) -> int:
    value = params.get(key)
    if isinstance(value, Sized) and not isinstance(value, (str, bytes)):
        return len(value)
    return 0


def _number(params: Mapping[str, Any], key: str) -> Optional[float]:
    value = params.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _per_unit(key: str, minutes_per_unit: float, default: float, *, numeric: bool = False):
    """Linear in the size of ``params[key]``; ``default`` when absent or zero."""

    def rule(params: Mapping[str, Any]) -> float:
        units = _number(params, key) if numeric else _count(params, key)
        if not units:
            return default
        return units * minutes_per_unit

    return rule


def _choice(key: str, match: Any, if_match: float, otherwise: float):
    def rule(params: Mapping[str, Any]) -> float:
        return if_match if params.get(key) == match else otherwise

    return rule


def _batch_data_processing(params: Mapping[str, Any]) -> float:
    # 5 minutes per 1000 records, 10 minute floor
    data_size = _number(params, "data_size") or 0.0
    return max(data_size * 5 / 1000, 10)


def _anomaly_detection(params: Mapping[str, Any]) -> float:
    data_points = _number(params, "data_points") or 0.0
    return 35 if data_points > 10_000 else 20


def _correlation_analysis(params: Mapping[str, Any]) -> float:
    n = _count(params, "assets")
    return n * n / 10 if n else 20


_DURATION_RULES: Dict[JobType, Callable[[Mapping[str, Any]], float]] = {
    JobType.market_data_analysis: _per_unit("symbols", 2, 10),
    JobType.portfolio_optimization: _per_unit("portfolio_size", 3, 15, numeric=True),
    JobType.risk_assessment: _choice("complexity", "advanced", 30, 15),
    JobType.financial_forecasting: _choice("period", "5y", 45, 20),
    JobType.batch_data_processing: _batch_data_processing,
    JobType.automated_reporting: _choice("report_type", "comprehensive", 25, 10),
    JobType.anomaly_detection: _anomaly_detection,
    JobType.sentiment_analysis: _per_unit("articles", 0.5, 15),
    JobType.correlation_analysis: _correlation_analysis,
    JobType.backtesting: _per_unit("strategies", 10, 30),
}

DEFAULT_DURATION_MINUTES = 15


def priority(tier: str, tiers: Mapping[str, TierConfig]) -> int:
    """Fixed ordinal for *tier*; higher tiers get higher values."""
    cfg = tiers.get(tier)
    return cfg.priority if cfg is not None else DEFAULT_TIER_PRIORITY


def estimated_duration(job_type: JobType, params: Mapping[str, Any]) -> int:
    """Heuristic run time in minutes for *job_type* given its parameters."""
    rule = _DURATION_RULES.get(JobType(job_type))
    minutes = rule(params) if rule is not None else DEFAULT_DURATION_MINUTES
    return max(MIN_DURATION_MINUTES, math.ceil(minutes))


def estimate(
    job_type: JobType,
    params: Mapping[str, Any],
    tier: str,
    tiers: Mapping[str, TierConfig],
) -> JobEstimate:
    return JobEstimate(
        priority=priority(tier, tiers),
        estimated_duration_minutes=estimated_duration(job_type, params),
    )
