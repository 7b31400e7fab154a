"""
Alert lifecycle.

One ``ActiveAlert`` row exists per (pdu_id, metric_type, alert_reason) while a
critical violation is being observed.  When the latest evaluation of a PDU no
longer carries the reason the row is copied to ``alerts_history`` and
deleted.  Every write to a key happens while holding that key's lock, and
every transition enqueues a correlation outbox event in the same transaction.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import (
    AbstractSet,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
)
from uuid import UUID

from config import settings
from database import SessionLocal
from models import ActiveAlert, AlertHistory, CorrelationOutbox
from models.alert import AlertSnapshotMixin
from schemas.alert import AlertStats, ResolutionType
from schemas.reading import CycleResult, EvaluatedRack, Reading, ViolationReason
from schemas.user import Actor
from services.cache_service import CacheService
from services.evaluation_service import EVALUATED_METRICS, AlertEvaluator, alert_evaluator
from services.exceptions import DuplicateKeyConflict, NotFound
from services.maintenance_service import (
    MaintenanceService,
    ensure_can_mutate,
    maintenance_service,
)
from services.metrics_service import metrics_service
from services.threshold_service import EffectiveThresholds, ThresholdService, threshold_service
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from utils.clock import minutes_between, utcnow
from utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)

AlertKey = Tuple[str, str, str]

ALERTS_CHANNEL = "alerts_updates"

SNAPSHOT_FIELDS = [
    name
    for name, value in vars(AlertSnapshotMixin).items()
    if not name.startswith("_") and hasattr(value, "type")
]


def _snapshot(source) -> Dict:
    return {name: getattr(source, name) for name in SNAPSHOT_FIELDS}


@dataclass
class RackTransition:
    """What one reconciliation did to the alerts of a PDU"""

    opened: List[ActiveAlert] = field(default_factory=list)
    refreshed: List[ActiveAlert] = field(default_factory=list)
    closed: List[AlertHistory] = field(default_factory=list)


class AlertLifecycleManager:
    """Opens, refreshes and closes critical alerts"""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        evaluator: AlertEvaluator = alert_evaluator,
        thresholds: ThresholdService = threshold_service,
        maintenance: MaintenanceService = maintenance_service,
        cache: Optional[CacheService] = None,
        clock: Callable[[], datetime] = utcnow,
        correlation_enabled: Optional[bool] = None,
        stale_timeout_minutes: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.evaluator = evaluator
        self.thresholds = thresholds
        self.maintenance = maintenance
        self.cache = cache
        self.clock = clock
        self.correlation_enabled = (
            settings.correlation_enabled
            if correlation_enabled is None
            else correlation_enabled
        )
        self.stale_timeout_minutes = (
            settings.stale_alert_timeout_minutes
            if stale_timeout_minutes is None
            else stale_timeout_minutes
        )
        self.locks = KeyedLock()

    # ------------------------------------------------------------------
    # Evaluation cycle
    # ------------------------------------------------------------------

    async def process_cycle(self, readings: Sequence[Reading]) -> CycleResult:
        """
        Evaluate one batch of readings and reconcile the alerts of every PDU seen.
        PDUs missing from the batch keep their alerts untouched.
        """
        start_time = time.time()
        result = CycleResult()

        # Last reading wins when a PDU shows up twice
        latest: Dict[str, Reading] = {}
        for reading in readings:
            latest[reading.pdu_id] = reading
        if not latest:
            return result

        db = self.session_factory()
        try:
            self.maintenance.refresh_index(db)
            resolved = self.thresholds.resolve_many(
                db, [r.logical_rack_id for r in latest.values()]
            )
        finally:
            db.close()

        outcomes = await asyncio.gather(
            *(
                self._process_reading(reading, resolved[reading.logical_rack_id])
                for reading in latest.values()
            ),
            return_exceptions=True,
        )

        for reading, outcome in zip(latest.values(), outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Evaluation failed for PDU {reading.pdu_id}: {outcome}")
                result.errors.append(f"{reading.pdu_id}: {outcome}")
                continue

            rack, transition = outcome
            result.racks.append(rack)
            result.evaluated += 1
            if rack.in_maintenance:
                result.suppressed += 1
            result.opened += len(transition.opened)
            result.refreshed += len(transition.refreshed)
            result.closed += len(transition.closed)

        duration = time.time() - start_time
        metrics_service.record_cycle_duration(duration)
        metrics_service.record_readings("evaluated", result.evaluated - result.suppressed)
        metrics_service.record_readings("suppressed", result.suppressed)
        metrics_service.record_readings("error", len(result.errors))
        metrics_service.update_suppressed_racks(len(self.maintenance.index))
        self._update_active_gauge()

        if result.opened or result.closed:
            logger.info(
                f"📊 Cycle: {result.evaluated} readings, {result.opened} opened, "
                f"{result.closed} closed, {result.suppressed} in maintenance "
                f"({duration:.2f}s)"
            )
        await self._publish(
            "evaluation_cycle",
            result.model_dump(exclude={"racks"}),
        )
        return result

    async def _process_reading(
        self, reading: Reading, thresholds: EffectiveThresholds
    ) -> Tuple[EvaluatedRack, RackTransition]:
        suppressed = self.maintenance.is_suppressed(reading.logical_rack_id)
        reasons = self.evaluator.evaluate(reading, thresholds, suppressed)
        observed = self.evaluator.observed_metrics(reading, thresholds, suppressed)
        rack = self.evaluator.build_rack_view(reading, reasons, suppressed)

        transition = await self.reconcile_rack(reading, reasons, observed)

        if self.cache:
            await self.cache.set_rack_state(reading.pdu_id, rack.model_dump(mode="json"))
        return rack, transition

    async def reconcile_rack(
        self,
        reading: Reading,
        reasons: Iterable[ViolationReason],
        observed: Optional[AbstractSet[str]] = None,
    ) -> RackTransition:
        """
        Bring the open alerts of a PDU in line with its latest evaluation.

        Only alerts of ``observed`` metrics may close; a metric the reading
        carried no usable value for keeps its alerts open.  ``None`` means
        every metric was observed.
        """
        if observed is None:
            observed = frozenset(metric.value for metric in EVALUATED_METRICS)
        desired: Dict[AlertKey, ViolationReason] = {
            (reading.pdu_id, r.metric.value, r.tag): r for r in reasons if r.is_critical
        }

        keys = set(desired) | {
            key for key in self._open_keys(reading.pdu_id) if key[1] in observed
        }
        if not keys:
            return RackTransition()

        async with self.locks.hold(keys):
            transition = self._apply(reading, desired, keys)

        for alert in transition.opened:
            await self._publish("alert_opened", _snapshot(alert) | {"id": alert.id})
        for record in transition.closed:
            await self._publish("alert_closed", _snapshot(record) | {"id": record.alert_id})
        return transition

    def _open_keys(self, pdu_id: str) -> Set[AlertKey]:
        db = self.session_factory()
        try:
            rows = (
                db.query(ActiveAlert.pdu_id, ActiveAlert.metric_type, ActiveAlert.alert_reason)
                .filter(ActiveAlert.pdu_id == pdu_id)
                .all()
            )
            return {tuple(row) for row in rows}
        finally:
            db.close()

    def _apply(
        self,
        reading: Reading,
        desired: Dict[AlertKey, ViolationReason],
        locked: Set[AlertKey],
    ) -> RackTransition:
        transition = RackTransition()
        db = self.session_factory()
        try:
            now = self.clock()
            open_rows = {
                row.key: row
                for row in db.query(ActiveAlert)
                .filter(ActiveAlert.pdu_id == reading.pdu_id)
                .all()
            }

            for key, row in open_rows.items():
                if key in desired:
                    self._refresh(row, desired[key], now)
                    transition.refreshed.append(row)
                elif key in locked:
                    transition.closed.append(
                        self._close(db, row, now, ResolutionType.AUTO, None)
                    )
                # Keys outside the lock set are unobserved or were opened since it was built

            for key, reason in desired.items():
                if key in open_rows:
                    continue
                try:
                    transition.opened.append(self._open(db, reading, reason, now))
                except DuplicateKeyConflict:
                    row = db.query(ActiveAlert).filter_by(
                        pdu_id=key[0], metric_type=key[1], alert_reason=key[2]
                    ).one()
                    self._refresh(row, reason, now)
                    transition.refreshed.append(row)

            db.commit()

        except Exception as e:
            db.rollback()
            logger.error(f"Failed to reconcile alerts for PDU {reading.pdu_id}: {e}")
            raise
        finally:
            db.close()

        for alert in transition.opened:
            metrics_service.record_alert_opened(alert.metric_type)
            logger.info(
                f"🚨 Alert opened: {alert.pdu_id} {alert.alert_reason} "
                f"({alert.alert_value} vs {alert.threshold_exceeded})"
            )
        for record in transition.closed:
            metrics_service.record_alert_closed(record.resolution_type)
            logger.info(
                f"✅ Alert closed: {record.pdu_id} {record.alert_reason} "
                f"after {record.duration_minutes} min"
            )
        return transition

    # ------------------------------------------------------------------
    # Transitions (caller holds the key lock and owns the session)
    # ------------------------------------------------------------------

    def _open(
        self, db: Session, reading: Reading, reason: ViolationReason, now: datetime
    ) -> ActiveAlert:
        alert = ActiveAlert(
            id=uuid.uuid4(),
            pdu_id=reading.pdu_id,
            rack_id=reading.logical_rack_id,
            name=reading.name,
            country=reading.country,
            site=reading.site,
            dc=reading.dc,
            phase=reading.phase,
            chain=reading.chain,
            node=reading.node,
            serial=reading.serial,
            gw_name=reading.gw_name,
            gw_ip=reading.gw_ip,
            group=reading.group,
            metric_type=reason.metric.value,
            alert_reason=reason.tag,
            alert_field=reason.field,
            alert_value=reason.value,
            threshold_exceeded=reason.threshold,
            severity=reason.severity.value,
            alert_started_at=now,
            last_updated_at=now,
        )

        savepoint = db.begin_nested()
        try:
            db.add(alert)
            db.flush()
        except IntegrityError:
            savepoint.rollback()
            raise DuplicateKeyConflict(alert.key) from None

        self._enqueue(db, alert.id, "open", _snapshot(alert), now)
        return alert

    @staticmethod
    def _refresh(row: ActiveAlert, reason: ViolationReason, now: datetime):
        row.alert_value = reason.value
        row.threshold_exceeded = reason.threshold
        row.alert_field = reason.field
        # Strictly increasing even when the clock does not move
        if row.last_updated_at is not None and now <= row.last_updated_at:
            now = row.last_updated_at + timedelta(microseconds=1)
        row.last_updated_at = now

    def _close(
        self,
        db: Session,
        row: ActiveAlert,
        now: datetime,
        resolution_type: ResolutionType,
        resolved_by: Optional[str],
    ) -> AlertHistory:
        record = AlertHistory(
            **_snapshot(row),
            alert_id=row.id,
            created_at=row.alert_started_at,
            last_updated_at=row.last_updated_at,
            resolved_at=now,
            resolved_by=resolved_by,
            resolution_type=resolution_type.value,
            duration_minutes=minutes_between(row.alert_started_at, now),
        )
        db.add(record)
        db.delete(row)
        self._enqueue(db, row.id, "close", _snapshot(row), now)
        return record

    def _enqueue(self, db: Session, alert_id: UUID, event_type: str, payload: Dict, now: datetime):
        if not self.correlation_enabled:
            return
        payload = {
            key: (value.isoformat() if isinstance(value, datetime) else value)
            for key, value in payload.items()
        }
        payload["alert_id"] = str(alert_id)
        db.add(
            CorrelationOutbox(
                alert_id=alert_id,
                event_type=event_type,
                payload=payload,
                status="pending",
                attempts=0,
                next_attempt_at=now,
            )
        )

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def close_alert(self, alert_id: UUID, actor: Actor) -> AlertHistory:
        """
        Close one alert by hand.
        Closing an alert that is already in history returns the existing record.
        """
        ensure_can_mutate(actor, "close alerts")

        key = self._key_of(alert_id)
        if key is None:
            return self._history_or_missing(alert_id)

        async with self.locks.hold([key]):
            record = self._close_by_id(alert_id, ResolutionType.MANUAL, actor.username)

        if record is None:
            return self._history_or_missing(alert_id)

        logger.info(f"✅ Alert {alert_id} closed manually by {actor.username}")
        metrics_service.record_alert_closed(record.resolution_type)
        self._update_active_gauge()
        await self._publish("alert_closed", _snapshot(record) | {"id": record.alert_id})
        return record

    async def close_all(self, actor: Actor, site: Optional[str] = None) -> List[UUID]:
        """Close every open alert (optionally of one site), key by key"""
        ensure_can_mutate(actor, "close alerts")
        sites = actor.site_scope

        db = self.session_factory()
        try:
            query = db.query(
                ActiveAlert.id,
                ActiveAlert.pdu_id,
                ActiveAlert.metric_type,
                ActiveAlert.alert_reason,
            )
            if site:
                query = query.filter(ActiveAlert.site == site)
            if sites is not None:
                query = query.filter(ActiveAlert.site.in_(sites))
            targets = [(row[0], tuple(row[1:])) for row in query.all()]
        finally:
            db.close()

        closed = []
        for alert_id, key in targets:
            async with self.locks.hold([key]):
                record = self._close_by_id(alert_id, ResolutionType.MANUAL, actor.username)
            if record is not None:
                metrics_service.record_alert_closed(record.resolution_type)
                closed.append(alert_id)

        if closed:
            logger.info(f"✅ {len(closed)} alerts closed manually by {actor.username}")
            self._update_active_gauge()
            await self._publish("alerts_closed", {"alert_ids": closed, "by": actor.username})
        return closed

    async def sweep_stale(self, now: Optional[datetime] = None) -> List[UUID]:
        """Close alerts not refreshed within the stale timeout (disabled when unset)"""
        if not self.stale_timeout_minutes:
            return []

        now = now or self.clock()
        cutoff = now - timedelta(minutes=self.stale_timeout_minutes)

        db = self.session_factory()
        try:
            targets = [
                (row[0], tuple(row[1:]))
                for row in db.query(
                    ActiveAlert.id,
                    ActiveAlert.pdu_id,
                    ActiveAlert.metric_type,
                    ActiveAlert.alert_reason,
                )
                .filter(ActiveAlert.last_updated_at < cutoff)
                .all()
            ]
        finally:
            db.close()

        closed = []
        for alert_id, key in targets:
            async with self.locks.hold([key]):
                record = self._close_by_id(
                    alert_id, ResolutionType.STALE, "system", now=now, stale_before=cutoff
                )
            if record is not None:
                metrics_service.record_alert_closed(record.resolution_type)
                closed.append(alert_id)

        if closed:
            logger.warning(
                f"⚠️ {len(closed)} alerts closed as stale "
                f"(no update for {self.stale_timeout_minutes} min)"
            )
            self._update_active_gauge()
        return closed

    def _key_of(self, alert_id: UUID) -> Optional[AlertKey]:
        db = self.session_factory()
        try:
            row = db.get(ActiveAlert, alert_id)
            return row.key if row else None
        finally:
            db.close()

    def _history_or_missing(self, alert_id: UUID) -> AlertHistory:
        db = self.session_factory()
        try:
            record = db.query(AlertHistory).filter(AlertHistory.alert_id == alert_id).first()
        finally:
            db.close()
        if record is None:
            raise NotFound(f"Alert {alert_id} not found")
        return record

    def _close_by_id(
        self,
        alert_id: UUID,
        resolution_type: ResolutionType,
        resolved_by: Optional[str],
        now: Optional[datetime] = None,
        stale_before: Optional[datetime] = None,
    ) -> Optional[AlertHistory]:
        """Close a single alert; None when it is already gone"""
        db = self.session_factory()
        try:
            row = db.get(ActiveAlert, alert_id)
            if row is None:
                return None
            # Refreshed while waiting for the lock
            if stale_before is not None and row.last_updated_at >= stale_before:
                return None

            record = self._close(db, row, now or self.clock(), resolution_type, resolved_by)
            db.commit()
            return record

        except IntegrityError:
            # Another writer archived it first
            db.rollback()
            return None
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to close alert {alert_id}: {e}")
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def get_active_alerts(
        db: Session,
        site: Optional[str] = None,
        dc: Optional[str] = None,
        metric_type: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[ActiveAlert]:
        query = db.query(ActiveAlert)
        if site:
            query = query.filter(ActiveAlert.site == site)
        if dc:
            query = query.filter(ActiveAlert.dc == dc)
        if metric_type:
            query = query.filter(ActiveAlert.metric_type == metric_type)
        return (
            query.order_by(ActiveAlert.alert_started_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    @staticmethod
    def get_history(
        db: Session,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        site: Optional[str] = None,
        pdu_id: Optional[str] = None,
        metric_type: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[AlertHistory]:
        query = db.query(AlertHistory)
        if start:
            query = query.filter(AlertHistory.resolved_at >= start)
        if end:
            query = query.filter(AlertHistory.resolved_at <= end)
        if site:
            query = query.filter(AlertHistory.site == site)
        if pdu_id:
            query = query.filter(AlertHistory.pdu_id == pdu_id)
        if metric_type:
            query = query.filter(AlertHistory.metric_type == metric_type)
        return (
            query.order_by(AlertHistory.resolved_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def get_alert_stats(self, db: Session) -> AlertStats:
        try:
            total_active = db.query(func.count(ActiveAlert.id)).scalar() or 0

            by_metric = dict(
                db.query(ActiveAlert.metric_type, func.count(ActiveAlert.id))
                .group_by(ActiveAlert.metric_type)
                .all()
            )
            by_site = {
                site or "N/A": count
                for site, count in db.query(ActiveAlert.site, func.count(ActiveAlert.id))
                .group_by(ActiveAlert.site)
                .all()
            }

            since = self.clock() - timedelta(hours=24)
            resolved_last_24h = (
                db.query(func.count(AlertHistory.id))
                .filter(AlertHistory.resolved_at >= since)
                .scalar()
                or 0
            )

            return AlertStats(
                total_active=total_active,
                by_metric=by_metric,
                by_site=by_site,
                resolved_last_24h=resolved_last_24h,
            )

        except Exception as e:
            logger.error(f"Failed to get alert stats: {e}")
            raise

    # ------------------------------------------------------------------
    # Side channels
    # ------------------------------------------------------------------

    def _update_active_gauge(self):
        db = self.session_factory()
        try:
            metrics_service.update_active_alerts(
                db.query(func.count(ActiveAlert.id)).scalar() or 0
            )
        except Exception as e:
            logger.debug(f"Could not refresh active alert gauge: {e}")
        finally:
            db.close()

    async def _publish(self, update_type: str, data: Dict):
        if not self.cache:
            return
        await self.cache.publish(ALERTS_CHANNEL, {"type": update_type, "data": data})


# Global instance
alert_manager = AlertLifecycleManager()
