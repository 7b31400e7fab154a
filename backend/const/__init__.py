from .thresholds import (
    DEFAULT_THRESHOLDS,
    METRIC_BOUNDS,
    Bound,
    Metric,
    Phase,
    Severity,
    ThresholdKey,
    all_threshold_keys,
    get_default_threshold,
    normalize_phase,
)

__all__ = [
    "DEFAULT_THRESHOLDS",
    "METRIC_BOUNDS",
    "Bound",
    "Metric",
    "Phase",
    "Severity",
    "ThresholdKey",
    "all_threshold_keys",
    "get_default_threshold",
    "normalize_phase",
]
