import logging
from typing import FrozenSet, Iterable, List, Optional, Tuple

from const.thresholds import (
    METRIC_BOUNDS,
    SEVERITY_PRECEDENCE,
    Bound,
    Metric,
    Phase,
    ThresholdKey,
    normalize_phase,
)
from schemas.reading import EvaluatedRack, RackStatus, Reading, ViolationReason
from services.exceptions import ConfigurationMissing
from services.threshold_service import EffectiveThresholds

logger = logging.getLogger(__name__)

# Metric evaluation order, also the order reasons are reported in
EVALUATED_METRICS = (
    Metric.AMPERAGE,
    Metric.TEMPERATURE,
    Metric.HUMIDITY,
    Metric.VOLTAGE,
    Metric.POWER,
)


def measured_value(reading: Reading, metric: Metric) -> Optional[Tuple[float, str]]:
    """Value and source field of a metric, None when it cannot be evaluated"""
    if metric == Metric.AMPERAGE:
        return (reading.current, "current") if reading.current is not None else None

    if metric == Metric.TEMPERATURE:
        # External sensor wins over the PDU's own probe
        if reading.sensor_temperature is not None:
            return reading.sensor_temperature, "sensor_temperature"
        if reading.temperature is not None:
            return reading.temperature, "temperature"
        return None

    if metric == Metric.HUMIDITY:
        if reading.sensor_humidity is None:
            return None
        return reading.sensor_humidity, "sensor_humidity"

    if metric == Metric.VOLTAGE:
        # 0 V means the rack lost power and is evaluated; negative values are bogus
        if reading.voltage is None or reading.voltage < 0:
            return None
        return reading.voltage, "voltage"

    if metric == Metric.POWER:
        return (reading.power, "power") if reading.power is not None else None

    return None


def rack_status(reasons: Iterable[ViolationReason]) -> RackStatus:
    status = RackStatus.NORMAL
    for reason in reasons:
        if reason.is_critical:
            return RackStatus.CRITICAL
        status = RackStatus.WARNING
    return status


class AlertEvaluator:
    """Compares a reading against effective thresholds"""

    def evaluate(
        self,
        reading: Reading,
        thresholds: EffectiveThresholds,
        suppressed: bool = False,
    ) -> List[ViolationReason]:
        """
        Violated thresholds of a reading, at most one per metric.

        Comparisons are inclusive (value <= low, value >= high).  Critical
        bounds are checked before warning ones, so a critical violation hides
        the warning one of the same metric.  A suppressed rack yields nothing.
        """
        if suppressed:
            return []

        phase = normalize_phase(reading.phase)
        reasons = []

        for metric in EVALUATED_METRICS:
            measured = measured_value(reading, metric)
            if measured is None:
                continue

            value, field = measured
            try:
                reason = self._check_metric(metric, value, field, phase, thresholds)
            except ConfigurationMissing as e:
                logger.debug(f"Skipping {metric.value} for {reading.pdu_id}: {e}")
                continue

            if reason is not None:
                reasons.append(reason)

        return reasons

    def observed_metrics(
        self,
        reading: Reading,
        thresholds: EffectiveThresholds,
        suppressed: bool = False,
    ) -> FrozenSet[str]:
        """
        Metrics this reading gives a verdict on.  A metric without a usable
        value or without a complete threshold set is not observed, so its open
        alerts must be left alone.  A suppressed rack counts as observed for
        every metric.
        """
        if suppressed:
            return frozenset(metric.value for metric in EVALUATED_METRICS)

        phase = normalize_phase(reading.phase)
        observed = set()
        for metric in EVALUATED_METRICS:
            if measured_value(reading, metric) is None:
                continue
            try:
                self._limits(metric, phase, thresholds)
            except ConfigurationMissing:
                continue
            observed.add(metric.value)
        return frozenset(observed)

    @staticmethod
    def _limits(
        metric: Metric, phase: Phase, thresholds: EffectiveThresholds
    ) -> List[Tuple[ThresholdKey, float]]:
        # Resolve every key first so a half-configured metric is skipped as a whole
        return [
            (key, thresholds.require(key))
            for severity in SEVERITY_PRECEDENCE
            for bound in METRIC_BOUNDS[metric]
            for key in [ThresholdKey.for_metric(severity, metric, bound, phase)]
        ]

    def _check_metric(
        self,
        metric: Metric,
        value: float,
        field: str,
        phase: Phase,
        thresholds: EffectiveThresholds,
    ) -> Optional[ViolationReason]:
        for key, limit in self._limits(metric, phase, thresholds):
            violated = value <= limit if key.bound == Bound.LOW else value >= limit
            if violated:
                return ViolationReason(
                    severity=key.severity,
                    metric=metric,
                    bound=key.bound,
                    value=value,
                    threshold=limit,
                    field=field,
                    phase=key.phase,
                )
        return None

    def build_rack_view(
        self,
        reading: Reading,
        reasons: List[ViolationReason],
        in_maintenance: bool = False,
    ) -> EvaluatedRack:
        """Reading with its status and reason tags, as consumed by the console"""
        return EvaluatedRack(
            **reading.model_dump(exclude={"status", "reasons", "in_maintenance"}),
            status=rack_status(reasons),
            reasons=[r.tag for r in reasons],
            in_maintenance=in_maintenance,
        )


# Global instance
alert_evaluator = AlertEvaluator()
