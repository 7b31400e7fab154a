"""Tests for opening, refreshing and closing critical alerts."""
import asyncio
import uuid
from datetime import timedelta

import pytest
from database import SessionLocal
from models import ActiveAlert, AlertHistory, CorrelationOutbox, ThresholdConfig
from schemas.reading import RackStatus
from schemas.threshold import RackThresholdItem
from schemas.user import Actor
from services.alert_service import AlertLifecycleManager
from services.evaluation_service import AlertEvaluator
from services.exceptions import CapabilityDenied, NotFound
from services.threshold_service import threshold_service


class FakeCache:
    """Records what the manager would push to Redis."""

    def __init__(self):
        self.states = {}
        self.published = []

    async def set_rack_state(self, pdu_id, state):
        self.states[pdu_id] = state
        return True

    async def publish(self, channel, message):
        self.published.append((channel, message))
        return True


def _cycle(manager, *readings):
    return asyncio.run(manager.process_cycle(list(readings)))


def _active(db):
    db.expire_all()
    return db.query(ActiveAlert).all()


def _history(db):
    db.expire_all()
    return db.query(AlertHistory).order_by(AlertHistory.id).all()


def _open_critical(manager, make_reading, **overrides):
    _cycle(manager, make_reading(temperature=42, **overrides))


# ── Open / refresh / close ──────────────────────────────

def test_critical_reading_opens_then_normal_closes(db, manager, clock, make_reading):
    result = _cycle(manager, make_reading(temperature=42))
    assert result.opened == 1

    alerts = _active(db)
    assert len(alerts) == 1
    alert = alerts[0]
    assert alert.key == ("PDU-001", "temperature", "critical_temperature_high")
    assert alert.rack_id == "RACK-01"
    assert alert.alert_value == 42
    assert alert.threshold_exceeded == 40
    assert alert.site == "Madrid"
    assert alert.alert_started_at == clock.now
    alert_id, started = alert.id, alert.alert_started_at

    clock.advance(minutes=5, seconds=30)
    result = _cycle(manager, make_reading(temperature=35))
    assert result.closed == 1
    assert result.racks[0].status == RackStatus.WARNING

    assert _active(db) == []
    (record,) = _history(db)
    assert record.alert_id == alert_id
    assert record.resolved_at == clock.now
    assert record.created_at == started
    assert record.resolution_type == "auto"
    assert record.resolved_by is None
    assert record.duration_minutes == 5
    assert record.alert_reason == "critical_temperature_high"


def test_override_prevents_critical_alert(db, manager, make_reading):
    threshold_service.set_rack_overrides(
        db,
        "RACK-02",
        [RackThresholdItem(threshold_key="critical_temperature_high", value=45)],
    )

    result = _cycle(
        manager,
        make_reading(rack_id="RACK-01", temperature=42),
        make_reading(pdu_id="PDU-002", rack_id="RACK-02", temperature=42),
    )

    assert [a.pdu_id for a in _active(db)] == ["PDU-001"]
    statuses = {r.pdu_id: r.status for r in result.racks}
    assert statuses == {"PDU-001": RackStatus.CRITICAL, "PDU-002": RackStatus.WARNING}


def test_warnings_never_open_alerts(db, manager, make_reading):
    result = _cycle(manager, make_reading(temperature=31, power=4500))
    assert result.opened == 0
    assert _active(db) == []


def test_repeated_violation_refreshes_single_alert(db, manager, clock, make_reading):
    _open_critical(manager, make_reading)
    first = _active(db)[0]
    started, updated = first.alert_started_at, first.last_updated_at

    # Clock does not move: last_updated_at must still increase
    result = _cycle(manager, make_reading(temperature=43))
    assert result.refreshed == 1

    clock.advance(minutes=1)
    _cycle(manager, make_reading(temperature=44))

    alerts = _active(db)
    assert len(alerts) == 1
    assert alerts[0].id == first.id
    assert alerts[0].alert_started_at == started
    assert alerts[0].last_updated_at == clock.now
    assert alerts[0].last_updated_at > updated
    assert alerts[0].alert_value == 44


def test_clock_standing_still_still_moves_last_update(db, manager, make_reading):
    _open_critical(manager, make_reading)
    before = _active(db)[0].last_updated_at
    _open_critical(manager, make_reading)
    assert _active(db)[0].last_updated_at > before


def test_one_alert_per_metric_reason(db, manager, make_reading):
    _cycle(manager, make_reading(temperature=42, voltage=0, power=5100))

    keys = sorted(a.alert_reason for a in _active(db))
    assert keys == [
        "critical_power_high",
        "critical_temperature_high",
        "critical_voltage_low",
    ]

    # Temperature back to normal closes only that alert
    _cycle(manager, make_reading(voltage=0, power=5100))
    assert sorted(a.alert_reason for a in _active(db)) == [
        "critical_power_high",
        "critical_voltage_low",
    ]
    assert [h.alert_reason for h in _history(db)] == ["critical_temperature_high"]


def test_reason_change_closes_old_and_opens_new(db, manager, make_reading):
    _cycle(manager, make_reading(temperature=42))
    _cycle(manager, make_reading(temperature=3))

    assert [a.alert_reason for a in _active(db)] == ["critical_temperature_low"]
    assert [h.alert_reason for h in _history(db)] == ["critical_temperature_high"]


def test_missing_reading_never_closes(db, manager, make_reading):
    _open_critical(manager, make_reading)

    _cycle(manager, make_reading(pdu_id="PDU-002", rack_id="RACK-02"))
    asyncio.run(manager.process_cycle([]))

    assert len(_active(db)) == 1
    assert _history(db) == []


def test_metric_missing_from_reading_keeps_its_alert(db, manager, make_reading):
    _cycle(manager, make_reading(sensor_humidity=90))
    assert [a.alert_reason for a in _active(db)] == ["critical_humidity_high"]

    # Sensor endpoint down: no humidity this cycle, everything else normal
    result = _cycle(manager, make_reading(sensor_humidity=None))

    assert result.closed == 0
    assert [a.alert_reason for a in _active(db)] == ["critical_humidity_high"]
    assert _history(db) == []

    result = _cycle(manager, make_reading(sensor_humidity=50))
    assert result.closed == 1
    assert _active(db) == []


def test_negative_voltage_keeps_voltage_alert(db, manager, make_reading):
    _cycle(manager, make_reading(voltage=0))
    assert [a.alert_reason for a in _active(db)] == ["critical_voltage_low"]

    result = _cycle(manager, make_reading(voltage=-5))

    assert result.closed == 0
    assert len(_active(db)) == 1


def test_unconfigured_metric_keeps_its_alert(db, manager, make_reading):
    _cycle(manager, make_reading(power=5100))
    assert [a.alert_reason for a in _active(db)] == ["critical_power_high"]

    db.query(ThresholdConfig).filter_by(threshold_key="critical_power_high").delete()
    db.commit()

    result = _cycle(manager, make_reading(power=1000))

    assert result.closed == 0
    assert [a.alert_reason for a in _active(db)] == ["critical_power_high"]


def test_last_reading_of_a_pdu_wins(db, manager, make_reading):
    result = _cycle(manager, make_reading(temperature=42), make_reading(temperature=22))
    assert result.evaluated == 1
    assert _active(db) == []


class RacingManager(AlertLifecycleManager):
    """Another writer commits the same alert key right before this one inserts it."""

    def _open(self, db, reading, reason, now):
        earlier = now - timedelta(minutes=1)
        db.add(
            ActiveAlert(
                id=uuid.uuid4(),
                pdu_id=reading.pdu_id,
                rack_id=reading.logical_rack_id,
                metric_type=reason.metric.value,
                alert_reason=reason.tag,
                alert_value=reason.value - 1,
                threshold_exceeded=reason.threshold,
                severity="critical",
                alert_started_at=earlier,
                last_updated_at=earlier,
            )
        )
        db.flush()
        return super()._open(db, reading, reason, now)


def test_duplicate_insert_becomes_refresh(db, clock, maintenance, make_reading):
    manager = RacingManager(
        session_factory=SessionLocal,
        maintenance=maintenance,
        clock=clock,
        correlation_enabled=True,
        stale_timeout_minutes=0,
    )

    result = _cycle(manager, make_reading(temperature=42))

    assert result.opened == 0
    assert result.refreshed == 1
    (alert,) = _active(db)
    assert alert.key == ("PDU-001", "temperature", "critical_temperature_high")
    assert alert.alert_started_at == clock.now - timedelta(minutes=1)
    assert alert.last_updated_at == clock.now
    assert alert.alert_value == 42
    # The losing insert was rolled back together with its open event
    assert db.query(CorrelationOutbox).count() == 0


# ── Maintenance ─────────────────────────────────────────

def test_rack_in_maintenance_is_not_evaluated(db, manager, maintenance, make_reading, operator):
    maintenance.start_rack(db, make_reading(), "PSU", operator)

    result = _cycle(manager, make_reading(temperature=45))

    assert result.suppressed == 1
    assert result.racks[0].in_maintenance
    assert result.racks[0].reasons == []
    assert _active(db) == []


def test_maintenance_closes_open_alerts_and_removal_reenables(
    db, manager, maintenance, make_reading, operator
):
    _open_critical(manager, make_reading)
    maintenance.start_rack(db, make_reading(), "PSU", operator)

    result = _cycle(manager, make_reading(temperature=45))
    assert result.closed == 1
    assert _active(db) == []

    maintenance.remove_rack(db, "RACK-01", operator)
    result = _cycle(manager, make_reading(temperature=45))
    assert result.opened == 1


# ── Operator actions ────────────────────────────────────

def test_manual_close_is_idempotent(db, manager, make_reading, operator):
    _open_critical(manager, make_reading)
    alert_id = _active(db)[0].id

    record = asyncio.run(manager.close_alert(alert_id, operator))
    again = asyncio.run(manager.close_alert(alert_id, operator))

    assert record.resolution_type == "manual"
    assert record.resolved_by == "ops"
    assert again.id == record.id
    assert len(_history(db)) == 1
    assert _active(db) == []


def test_manual_close_unknown_alert(db, manager, operator):
    with pytest.raises(NotFound):
        asyncio.run(manager.close_alert(uuid.uuid4(), operator))


def test_observer_cannot_close(db, manager, make_reading, observer):
    _open_critical(manager, make_reading)
    alert_id = _active(db)[0].id

    with pytest.raises(CapabilityDenied):
        asyncio.run(manager.close_alert(alert_id, observer))
    with pytest.raises(CapabilityDenied):
        asyncio.run(manager.close_all(observer))
    assert len(_active(db)) == 1


def test_close_all_respects_site_scope(db, manager, make_reading, admin):
    _cycle(
        manager,
        make_reading(temperature=42),
        make_reading(pdu_id="PDU-BCN", rack_id="RACK-BCN", site="Barcelona", temperature=42),
    )

    local = Actor(username="bcn", role="Technician", assigned_sites=["Barcelona"])
    closed = asyncio.run(manager.close_all(local))
    assert len(closed) == 1
    assert [a.site for a in _active(db)] == ["Madrid"]

    closed = asyncio.run(manager.close_all(admin, site="Madrid"))
    assert len(closed) == 1
    assert _active(db) == []
    assert {h.resolved_by for h in _history(db)} == {"bcn", "root"}


def test_closed_alert_reopens_on_next_violation(db, manager, make_reading, operator):
    _open_critical(manager, make_reading)
    first_id = _active(db)[0].id
    asyncio.run(manager.close_alert(first_id, operator))

    _open_critical(manager, make_reading)
    alerts = _active(db)
    assert len(alerts) == 1
    assert alerts[0].id != first_id


# ── Stale sweep ─────────────────────────────────────────

def test_stale_alerts_closed_after_timeout(db, clock, maintenance, make_reading):
    manager = AlertLifecycleManager(
        session_factory=SessionLocal,
        maintenance=maintenance,
        clock=clock,
        correlation_enabled=False,
        stale_timeout_minutes=30,
    )
    _open_critical(manager, make_reading)

    clock.advance(minutes=20)
    assert asyncio.run(manager.sweep_stale()) == []

    clock.advance(minutes=11)
    closed = asyncio.run(manager.sweep_stale())
    assert len(closed) == 1

    (record,) = _history(db)
    assert record.resolution_type == "stale"
    assert record.resolved_by == "system"
    assert record.duration_minutes == 31


def test_stale_sweep_disabled_without_timeout(db, manager, clock, make_reading):
    _open_critical(manager, make_reading)
    clock.advance(days=3)
    assert asyncio.run(manager.sweep_stale()) == []
    assert len(_active(db)) == 1


# ── Outbox, cache and isolation ─────────────────────────

def test_transitions_enqueue_correlation_events(db, manager, make_reading):
    _open_critical(manager, make_reading)
    _cycle(manager, make_reading())

    db.expire_all()
    events = db.query(CorrelationOutbox).order_by(CorrelationOutbox.id).all()
    assert [e.event_type for e in events] == ["open", "close"]
    assert all(e.status == "pending" for e in events)
    assert events[0].alert_id == events[1].alert_id
    assert events[0].payload["alert_reason"] == "critical_temperature_high"
    assert events[0].payload["alert_id"] == str(events[0].alert_id)


def test_no_events_when_correlation_disabled(db, clock, maintenance, make_reading):
    manager = AlertLifecycleManager(
        session_factory=SessionLocal,
        maintenance=maintenance,
        clock=clock,
        correlation_enabled=False,
        stale_timeout_minutes=0,
    )
    _open_critical(manager, make_reading)
    _cycle(manager, make_reading())

    assert len(_history(db)) == 1
    assert db.query(CorrelationOutbox).count() == 0


def test_rack_state_cached_and_transitions_published(db, manager, make_reading):
    cache = FakeCache()
    manager.cache = cache

    _open_critical(manager, make_reading)

    state = cache.states["PDU-001"]
    assert state["status"] == "critical"
    assert state["reasons"] == ["critical_temperature_high"]
    types = [message["type"] for _, message in cache.published]
    assert types == ["alert_opened", "evaluation_cycle"]
    assert {channel for channel, _ in cache.published} == {"alerts_updates"}


class ExplodingEvaluator(AlertEvaluator):
    def evaluate(self, reading, thresholds, suppressed=False):
        if reading.pdu_id == "PDU-BAD":
            raise RuntimeError("corrupt reading")
        return super().evaluate(reading, thresholds, suppressed)


def test_failure_of_one_rack_does_not_stop_the_cycle(db, clock, maintenance, make_reading):
    manager = AlertLifecycleManager(
        session_factory=SessionLocal,
        evaluator=ExplodingEvaluator(),
        maintenance=maintenance,
        clock=clock,
        correlation_enabled=False,
        stale_timeout_minutes=0,
    )

    result = _cycle(
        manager,
        make_reading(pdu_id="PDU-BAD", rack_id="RACK-BAD", temperature=42),
        make_reading(temperature=42),
    )

    assert result.evaluated == 1
    assert len(result.errors) == 1
    assert result.errors[0].startswith("PDU-BAD")
    assert [a.pdu_id for a in _active(db)] == ["PDU-001"]
