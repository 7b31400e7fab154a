"""
External ticketing correlation.

Alert transitions write ``correlation_outbox`` rows; the worker here sends them
to the ticketing API and stores the returned ids on the alert (``uuid_open``)
or its history record (``uuid_open`` / ``uuid_closed``).  Failures are retried
with exponential backoff and never touch the alert state itself.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

import httpx
from config import settings
from database import SessionLocal
from models import ActiveAlert, AlertHistory, CorrelationOutbox
from services.exceptions import ExternalCorrelationFailure
from services.metrics_service import metrics_service
from sqlalchemy import func
from sqlalchemy.orm import Session
from utils.clock import utcnow

logger = logging.getLogger(__name__)

EVENT_TYPES = ("open", "close")


class CorrelationClient:
    """Thin async client for the ticketing API"""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url:
            raise ValueError("base_url is required")

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url, headers=headers, timeout=timeout, transport=transport
        )

    async def close(self):
        await self._http.aclose()

    async def send(self, event_type: str, payload: Dict, idempotency_key: str) -> str:
        """POST an open/close request and return the correlation id"""
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown correlation event {event_type!r}")

        try:
            resp = await self._http.post(
                f"/alerts/{event_type}",
                json=payload,
                headers={"Idempotency-Key": idempotency_key},
            )
        except httpx.HTTPError as e:
            raise ExternalCorrelationFailure(
                f"{event_type} request failed: {e.__class__.__name__}: {e}"
            ) from e

        if resp.status_code >= 400:
            raise ExternalCorrelationFailure(
                f"{event_type} request rejected ({resp.status_code}): {resp.text[:200]}",
                status_code=resp.status_code,
            )

        try:
            correlation_id = resp.json().get("uuid")
        except ValueError:
            correlation_id = None

        if not correlation_id:
            raise ExternalCorrelationFailure(
                f"{event_type} response carried no uuid", status_code=resp.status_code
            )
        return str(correlation_id)


class CorrelationWorker:
    """Drains the outbox"""

    def __init__(
        self,
        client: CorrelationClient,
        session_factory: Callable[[], Session] = SessionLocal,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int = settings.correlation_max_attempts,
        backoff_seconds: float = settings.correlation_backoff_seconds,
        backoff_max_seconds: float = settings.correlation_backoff_max_seconds,
        batch_size: int = settings.correlation_batch_size,
    ):
        self.client = client
        self.session_factory = session_factory
        self.clock = clock
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.batch_size = batch_size

    def retry_delay(self, attempts: int) -> timedelta:
        """Delay before the next try after `attempts` failures"""
        seconds = self.backoff_seconds * (2 ** max(0, attempts - 1))
        return timedelta(seconds=min(seconds, self.backoff_max_seconds))

    async def drain_once(self) -> Dict[str, int]:
        """Send every due event once; returns counts per outcome"""
        counts = {"done": 0, "retry": 0, "failed": 0}
        now = self.clock()

        db = self.session_factory()
        try:
            due = [
                (event.id, event.alert_id, event.event_type, dict(event.payload or {}))
                for event in db.query(CorrelationOutbox)
                .filter(
                    CorrelationOutbox.status == "pending",
                    CorrelationOutbox.next_attempt_at <= now,
                )
                .order_by(CorrelationOutbox.id)
                .limit(self.batch_size)
                .all()
            ]
        finally:
            db.close()

        for event_id, alert_id, event_type, payload in due:
            try:
                correlation_id = await self.client.send(
                    event_type, payload, idempotency_key=f"{alert_id}:{event_type}"
                )
            except ExternalCorrelationFailure as e:
                outcome = self._record_failure(event_id, str(e))
                counts[outcome] += 1
                metrics_service.record_correlation_event(event_type, outcome)
                continue

            self._record_success(event_id, correlation_id)
            counts["done"] += 1
            metrics_service.record_correlation_event(event_type, "done")

        self._update_pending_gauge()
        if due:
            logger.info(
                f"📨 Correlation outbox: {counts['done']} sent, "
                f"{counts['retry']} rescheduled, {counts['failed']} failed"
            )
        return counts

    def _record_success(self, event_id: int, correlation_id: str):
        db = self.session_factory()
        try:
            event = db.get(CorrelationOutbox, event_id)
            if event is None or event.status == "done":
                return

            event.status = "done"
            event.correlation_id = correlation_id
            event.completed_at = self.clock()
            event.last_error = None

            # Late update of the id columns only; the alert may have moved to history meanwhile
            if event.event_type == "open":
                alert = db.get(ActiveAlert, event.alert_id)
                if alert is not None and not alert.uuid_open:
                    alert.uuid_open = correlation_id
                history = (
                    db.query(AlertHistory)
                    .filter(AlertHistory.alert_id == event.alert_id)
                    .first()
                )
                if history is not None and not history.uuid_open:
                    history.uuid_open = correlation_id
            else:
                history = (
                    db.query(AlertHistory)
                    .filter(AlertHistory.alert_id == event.alert_id)
                    .first()
                )
                if history is not None and not history.uuid_closed:
                    history.uuid_closed = correlation_id

            db.commit()
            logger.debug(f"Stored correlation id {correlation_id} for alert {event.alert_id}")

        except Exception as e:
            db.rollback()
            logger.error(f"Failed to store correlation id for event {event_id}: {e}")
            raise
        finally:
            db.close()

    def _record_failure(self, event_id: int, error: str) -> str:
        db = self.session_factory()
        try:
            event = db.get(CorrelationOutbox, event_id)
            if event is None:
                return "failed"

            event.attempts = (event.attempts or 0) + 1
            event.last_error = error[:1000]
            if event.attempts >= self.max_attempts:
                event.status = "failed"
                outcome = "failed"
                logger.error(
                    f"❌ Giving up on {event.event_type} correlation for alert "
                    f"{event.alert_id} after {event.attempts} attempts: {error}"
                )
            else:
                event.next_attempt_at = self.clock() + self.retry_delay(event.attempts)
                outcome = "retry"
                logger.warning(
                    f"⚠️ {event.event_type} correlation for alert {event.alert_id} "
                    f"failed (attempt {event.attempts}), retry at {event.next_attempt_at}: {error}"
                )

            db.commit()
            return outcome

        except Exception as e:
            db.rollback()
            logger.error(f"Failed to reschedule outbox event {event_id}: {e}")
            raise
        finally:
            db.close()

    def _update_pending_gauge(self):
        db = self.session_factory()
        try:
            pending = (
                db.query(func.count(CorrelationOutbox.id))
                .filter(CorrelationOutbox.status == "pending")
                .scalar()
                or 0
            )
            metrics_service.update_outbox_pending(pending)
        finally:
            db.close()


def create_correlation_worker() -> Optional[CorrelationWorker]:
    """Worker for the configured ticketing API, None when it is not configured"""
    if not settings.correlation_enabled:
        return None
    client = CorrelationClient(
        settings.correlation_api_url,
        api_key=settings.correlation_api_key,
        timeout=settings.correlation_timeout_seconds,
    )
    return CorrelationWorker(client)
