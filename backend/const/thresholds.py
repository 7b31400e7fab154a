"""
Threshold key catalogue.

Every threshold is identified by a ``ThresholdKey`` (severity x metric x bound,
plus the electrical phase for amperage).  The flat string form
(``critical_temperature_high``, ``warning_amperage_high_3_phase``) only exists
at the storage and API boundary.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Severity(str, Enum):
    """Violation severity tiers"""

    WARNING = "warning"
    CRITICAL = "critical"


class Metric(str, Enum):
    """Metrics evaluated against thresholds"""

    AMPERAGE = "amperage"
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    VOLTAGE = "voltage"
    POWER = "power"


class Bound(str, Enum):
    LOW = "low"
    HIGH = "high"


class Phase(str, Enum):
    """PDU phase families with their own amperage thresholds"""

    SINGLE_PHASE = "single_phase"
    THREE_PHASE = "3_phase"


# Bounds each metric is evaluated against
METRIC_BOUNDS: Dict[Metric, Tuple[Bound, ...]] = {
    Metric.AMPERAGE: (Bound.LOW, Bound.HIGH),
    Metric.TEMPERATURE: (Bound.LOW, Bound.HIGH),
    Metric.HUMIDITY: (Bound.LOW, Bound.HIGH),
    Metric.VOLTAGE: (Bound.LOW, Bound.HIGH),
    Metric.POWER: (Bound.HIGH,),
}

# Severities ordered from most to least important
SEVERITY_PRECEDENCE: Tuple[Severity, ...] = (Severity.CRITICAL, Severity.WARNING)

_PHASE_ALIASES = {
    "single_phase": Phase.SINGLE_PHASE,
    "single": Phase.SINGLE_PHASE,
    "1_phase": Phase.SINGLE_PHASE,
    "1phase": Phase.SINGLE_PHASE,
    "monofasico": Phase.SINGLE_PHASE,
    "3_phase": Phase.THREE_PHASE,
    "3phase": Phase.THREE_PHASE,
    "three_phase": Phase.THREE_PHASE,
    "trifasico": Phase.THREE_PHASE,
}


def normalize_phase(raw: Optional[str]) -> Phase:
    """Map a free-form phase label to a phase family (unknown -> single phase)"""
    if not raw:
        return Phase.SINGLE_PHASE
    cleaned = "".join(c if c.isalnum() else "_" for c in str(raw).strip().lower())
    return _PHASE_ALIASES.get(cleaned, Phase.SINGLE_PHASE)


@dataclass(frozen=True, order=True)
class ThresholdKey:
    severity: Severity
    metric: Metric
    bound: Bound
    phase: Optional[Phase] = None

    def __post_init__(self):
        if (self.metric == Metric.AMPERAGE) != (self.phase is not None):
            raise ValueError("Only amperage thresholds carry a phase")
        if self.bound not in METRIC_BOUNDS[self.metric]:
            raise ValueError(
                f"{self.metric.value} has no {self.bound.value} threshold"
            )

    @property
    def key(self) -> str:
        parts = [self.severity.value, self.metric.value, self.bound.value]
        if self.phase is not None:
            parts.append(self.phase.value)
        return "_".join(parts)

    def __str__(self) -> str:
        return self.key

    @classmethod
    def parse(cls, key: str) -> "ThresholdKey":
        """Parse the flat storage form back into a key"""
        try:
            severity_raw, metric_raw, bound_raw, *rest = key.strip().split("_", 3)
            phase = Phase(rest[0]) if rest else None
            return cls(Severity(severity_raw), Metric(metric_raw), Bound(bound_raw), phase)
        except ValueError as e:
            raise ValueError(f"Unknown threshold key: {key!r}") from e

    @classmethod
    def for_metric(
        cls, severity: Severity, metric: Metric, bound: Bound, phase: Optional[Phase] = None
    ) -> "ThresholdKey":
        return cls(severity, metric, bound, phase if metric == Metric.AMPERAGE else None)


def all_threshold_keys() -> List[ThresholdKey]:
    """Every valid threshold key"""
    keys = []
    for metric, bounds in METRIC_BOUNDS.items():
        phases = list(Phase) if metric == Metric.AMPERAGE else [None]
        for phase in phases:
            for severity in SEVERITY_PRECEDENCE:
                for bound in bounds:
                    keys.append(ThresholdKey(severity, metric, bound, phase))
    return keys


def _k(severity, metric, bound, phase=None) -> ThresholdKey:
    return ThresholdKey(severity, metric, bound, phase)


S, M, B, P = Severity, Metric, Bound, Phase

# Seed configuration inserted on first start
DEFAULT_THRESHOLDS: Dict[ThresholdKey, Dict[str, Any]] = {
    _k(S.CRITICAL, M.TEMPERATURE, B.LOW): {
        "value": 5.0,
        "unit": "C",
        "description": "Critical minimum temperature - condensation risk",
    },
    _k(S.CRITICAL, M.TEMPERATURE, B.HIGH): {
        "value": 40.0,
        "unit": "C",
        "description": "Critical maximum temperature - equipment damage",
    },
    _k(S.WARNING, M.TEMPERATURE, B.LOW): {
        "value": 10.0,
        "unit": "C",
        "description": "Warning minimum temperature - outside optimal range",
    },
    _k(S.WARNING, M.TEMPERATURE, B.HIGH): {
        "value": 30.0,
        "unit": "C",
        "description": "Warning maximum temperature - outside optimal range",
    },
    _k(S.CRITICAL, M.HUMIDITY, B.LOW): {
        "value": 20.0,
        "unit": "%",
        "description": "Critical minimum humidity - static electricity risk",
    },
    _k(S.CRITICAL, M.HUMIDITY, B.HIGH): {
        "value": 80.0,
        "unit": "%",
        "description": "Critical maximum humidity - condensation risk",
    },
    _k(S.WARNING, M.HUMIDITY, B.LOW): {
        "value": 30.0,
        "unit": "%",
        "description": "Warning minimum humidity - outside optimal range",
    },
    _k(S.WARNING, M.HUMIDITY, B.HIGH): {
        "value": 70.0,
        "unit": "%",
        "description": "Warning maximum humidity - outside optimal range",
    },
    _k(S.CRITICAL, M.AMPERAGE, B.LOW, P.SINGLE_PHASE): {
        "value": 1.0,
        "unit": "A",
        "description": "Critical minimum single-phase current - possible disconnection",
    },
    _k(S.CRITICAL, M.AMPERAGE, B.HIGH, P.SINGLE_PHASE): {
        "value": 25.0,
        "unit": "A",
        "description": "Critical maximum single-phase current - overload",
    },
    _k(S.WARNING, M.AMPERAGE, B.LOW, P.SINGLE_PHASE): {
        "value": 2.0,
        "unit": "A",
        "description": "Warning minimum single-phase current - low consumption",
    },
    _k(S.WARNING, M.AMPERAGE, B.HIGH, P.SINGLE_PHASE): {
        "value": 20.0,
        "unit": "A",
        "description": "Warning maximum single-phase current - approaching limit",
    },
    _k(S.CRITICAL, M.AMPERAGE, B.LOW, P.THREE_PHASE): {
        "value": 1.0,
        "unit": "A",
        "description": "Critical minimum 3-phase current - possible disconnection",
    },
    _k(S.CRITICAL, M.AMPERAGE, B.HIGH, P.THREE_PHASE): {
        "value": 30.0,
        "unit": "A",
        "description": "Critical maximum 3-phase current - overload",
    },
    _k(S.WARNING, M.AMPERAGE, B.LOW, P.THREE_PHASE): {
        "value": 2.0,
        "unit": "A",
        "description": "Warning minimum 3-phase current - low consumption",
    },
    _k(S.WARNING, M.AMPERAGE, B.HIGH, P.THREE_PHASE): {
        "value": 25.0,
        "unit": "A",
        "description": "Warning maximum 3-phase current - approaching limit",
    },
    _k(S.CRITICAL, M.VOLTAGE, B.LOW): {
        "value": 0.0,
        "unit": "V",
        "description": "Critical minimum voltage - 0V means no power at all",
    },
    _k(S.CRITICAL, M.VOLTAGE, B.HIGH): {
        "value": 250.0,
        "unit": "V",
        "description": "Critical maximum voltage - equipment damage risk",
    },
    _k(S.WARNING, M.VOLTAGE, B.LOW): {
        "value": 0.0,
        "unit": "V",
        "description": "Warning minimum voltage - 0V means no power at all",
    },
    _k(S.WARNING, M.VOLTAGE, B.HIGH): {
        "value": 240.0,
        "unit": "V",
        "description": "Warning maximum voltage - outside nominal range",
    },
    _k(S.CRITICAL, M.POWER, B.HIGH): {
        "value": 5000.0,
        "unit": "W",
        "description": "Critical maximum power - PDU overload",
    },
    _k(S.WARNING, M.POWER, B.HIGH): {
        "value": 4000.0,
        "unit": "W",
        "description": "Warning maximum power - approaching PDU limit",
    },
}

del S, M, B, P


def get_default_threshold(key: ThresholdKey) -> Dict[str, Any]:
    """Get the seed configuration for a key"""
    return DEFAULT_THRESHOLDS.get(key, {})
