"""
View filtering for the rack console.

Location and search criteria always narrow the list first; the mode and
status rules are applied afterwards.  In alerts mode a rack under maintenance
is never returned, whatever the other criteria are.
"""

from typing import AbstractSet, Iterable, List, Optional

from const.thresholds import Metric, Severity
from schemas.reading import EvaluatedRack, RackStatus
from schemas.view import (
    AlertSummary,
    FilterCriteria,
    MetricCounts,
    SearchField,
    StatusFilter,
    ViewMode,
)

SEARCHABLE_FIELDS = ("site", "country", "dc", "node", "chain", "name", "serial")

_ALERT_STATUSES = (RackStatus.CRITICAL, RackStatus.WARNING)


def _in_maintenance(rack: EvaluatedRack, maintenance: AbstractSet[str]) -> bool:
    return rack.in_maintenance or rack.logical_rack_id in maintenance


def _matches_search(rack: EvaluatedRack, query: str, field: SearchField) -> bool:
    fields = SEARCHABLE_FIELDS if field == SearchField.ALL else (field.value,)
    for name in fields:
        value = getattr(rack, name, None)
        if value and query in str(value).lower():
            return True
    return False


def tag_matches_metric(tag: str, metric: str, severity: Optional[str] = None) -> bool:
    """
    True when the metric filter appears in the tag after its severity prefix.
    With a severity the tag must also start with that severity.
    """
    prefix, _, rest = tag.partition("_")
    if not rest:
        return False
    if severity is not None and prefix != severity:
        return False
    return metric.lower() in rest


def filter_racks(
    racks: Iterable[EvaluatedRack],
    mode: ViewMode = ViewMode.ALERTS,
    criteria: Optional[FilterCriteria] = None,
    maintenance_rack_ids: AbstractSet[str] = frozenset(),
) -> List[EvaluatedRack]:
    """Apply location/search criteria, then the mode and status rules"""
    criteria = criteria or FilterCriteria()
    result = list(racks)

    query = criteria.search.strip().lower()
    if query:
        result = [r for r in result if _matches_search(r, query, criteria.search_field)]

    if criteria.country != "all":
        result = [r for r in result if r.country == criteria.country]
    if criteria.site != "all":
        result = [r for r in result if r.site == criteria.site]
    if criteria.dc != "all":
        result = [r for r in result if r.dc == criteria.dc]

    status = criteria.status

    if mode == ViewMode.ALL:
        if status == StatusFilter.MAINTENANCE:
            result = [r for r in result if _in_maintenance(r, maintenance_rack_ids)]
        elif status != StatusFilter.ALL:
            result = [
                r
                for r in result
                if not _in_maintenance(r, maintenance_rack_ids)
                and r.status.value == status.value
            ]
        return result

    # Alerts mode
    result = [
        r
        for r in result
        if not _in_maintenance(r, maintenance_rack_ids) and r.status in _ALERT_STATUSES
    ]

    severity = None
    if status not in (StatusFilter.ALL, StatusFilter.MAINTENANCE):
        severity = status.value
        result = [r for r in result if r.status.value == severity]
    elif status == StatusFilter.MAINTENANCE:
        # Maintenance racks are never part of the alerts view
        return []

    if criteria.metric != "all":
        result = [
            r
            for r in result
            if any(tag_matches_metric(t, criteria.metric, severity) for t in r.reasons)
        ]

    return result


def summarize_alerts(racks: Iterable[EvaluatedRack]) -> AlertSummary:
    """
    Count racks with alerts per severity and metric.
    Racks under maintenance are left out; a rack counts once per metric.
    """
    summary = AlertSummary()
    tiers = {
        Severity.CRITICAL.value: summary.critical,
        Severity.WARNING.value: summary.warning,
    }

    for rack in racks:
        if rack.in_maintenance or rack.status not in _ALERT_STATUSES:
            continue

        counts: MetricCounts = tiers[rack.status.value]
        counts.total += 1

        severity = rack.status.value
        seen = set()
        for tag in rack.reasons:
            for metric in Metric:
                if metric not in seen and tag_matches_metric(tag, metric.value, severity):
                    seen.add(metric)
                    setattr(counts, metric.value, getattr(counts, metric.value) + 1)

    return summary
