"""Tests for the correlation outbox worker and ticketing client."""
import asyncio
import json
from datetime import timedelta

import httpx
import pytest
from database import SessionLocal
from models import ActiveAlert, AlertHistory, CorrelationOutbox
from services.correlation_service import CorrelationClient, CorrelationWorker
from services.exceptions import ExternalCorrelationFailure


class TicketingStub:
    """Scripted ticketing API; each call pops the next response."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        response = self.responses.pop(0) if self.responses else (200, {"uuid": "T-default"})
        if isinstance(response, Exception):
            raise response
        status_code, body = response
        return httpx.Response(status_code, json=body)


def _worker(stub, clock, **kwargs):
    client = CorrelationClient(
        "http://ticketing.test/api/", api_key="secret", transport=httpx.MockTransport(stub)
    )
    options = dict(max_attempts=3, backoff_seconds=5, backoff_max_seconds=60, batch_size=10)
    options.update(kwargs)
    return CorrelationWorker(client, session_factory=SessionLocal, clock=clock, **options)


def _drain(worker):
    return asyncio.run(worker.drain_once())


def _events(db):
    db.expire_all()
    return db.query(CorrelationOutbox).order_by(CorrelationOutbox.id).all()


@pytest.fixture
def open_alert(db, manager, make_reading):
    asyncio.run(manager.process_cycle([make_reading(temperature=42)]))
    return db.query(ActiveAlert).one().id


# ── Client ──────────────────────────────────────────────

def test_client_posts_event_with_idempotency_key(clock):
    stub = TicketingStub((201, {"uuid": "T-1"}))
    client = CorrelationClient(
        "http://ticketing.test/api/", api_key="secret", transport=httpx.MockTransport(stub)
    )

    correlation_id = asyncio.run(client.send("open", {"pdu_id": "PDU-001"}, "abc:open"))

    assert correlation_id == "T-1"
    request = stub.requests[0]
    assert request.method == "POST"
    assert str(request.url) == "http://ticketing.test/api/alerts/open"
    assert request.headers["Idempotency-Key"] == "abc:open"
    assert request.headers["Authorization"] == "Bearer secret"
    assert json.loads(request.content) == {"pdu_id": "PDU-001"}


@pytest.mark.parametrize(
    "response",
    [
        (500, {"error": "boom"}),
        (200, {"id": "no-uuid-field"}),
        httpx.ConnectError("connection refused"),
    ],
)
def test_client_failures_raise(response):
    client = CorrelationClient(
        "http://ticketing.test", transport=httpx.MockTransport(TicketingStub(response))
    )
    with pytest.raises(ExternalCorrelationFailure):
        asyncio.run(client.send("close", {}, "abc:close"))


def test_client_rejects_unknown_event():
    client = CorrelationClient("http://ticketing.test")
    with pytest.raises(ValueError):
        asyncio.run(client.send("reopen", {}, "abc:reopen"))


# ── Worker ──────────────────────────────────────────────

def test_open_event_sets_uuid_open(db, clock, open_alert):
    stub = TicketingStub((200, {"uuid": "T-OPEN"}))

    counts = _drain(_worker(stub, clock))

    assert counts == {"done": 1, "retry": 0, "failed": 0}
    assert stub.requests[0].headers["Idempotency-Key"] == f"{open_alert}:open"
    db.expire_all()
    assert db.get(ActiveAlert, open_alert).uuid_open == "T-OPEN"
    (event,) = _events(db)
    assert event.status == "done"
    assert event.correlation_id == "T-OPEN"


def test_failure_is_retried_with_backoff(db, clock, open_alert):
    stub = TicketingStub((503, {}), (200, {"uuid": "T-LATE"}))
    worker = _worker(stub, clock)

    assert _drain(worker)["retry"] == 1
    (event,) = _events(db)
    assert event.attempts == 1
    assert event.next_attempt_at == clock.now + timedelta(seconds=5)
    assert db.get(ActiveAlert, open_alert).uuid_open is None

    # Not due yet
    assert _drain(worker) == {"done": 0, "retry": 0, "failed": 0}
    assert len(stub.requests) == 1

    clock.advance(seconds=5)
    assert _drain(worker)["done"] == 1
    db.expire_all()
    assert db.get(ActiveAlert, open_alert).uuid_open == "T-LATE"


def test_gives_up_after_max_attempts(db, clock, open_alert):
    stub = TicketingStub(*[(500, {})] * 5)
    worker = _worker(stub, clock, max_attempts=2)

    assert _drain(worker)["retry"] == 1
    clock.advance(minutes=1)
    assert _drain(worker)["failed"] == 1
    clock.advance(hours=1)
    assert _drain(worker) == {"done": 0, "retry": 0, "failed": 0}

    (event,) = _events(db)
    assert event.status == "failed"
    assert event.attempts == 2
    assert "500" in event.last_error
    # Alert itself is untouched
    assert db.query(ActiveAlert).count() == 1


def test_retry_delay_is_exponential_and_capped(clock):
    worker = _worker(TicketingStub(), clock, backoff_seconds=5, backoff_max_seconds=60)
    delays = [worker.retry_delay(n).total_seconds() for n in range(1, 6)]
    assert delays == [5, 10, 20, 40, 60]


def test_late_ids_land_on_history(db, manager, clock, make_reading, open_alert):
    # Alert closes before the ticketing API is reachable
    asyncio.run(manager.process_cycle([make_reading()]))
    stub = TicketingStub((200, {"uuid": "T-OPEN"}), (200, {"uuid": "T-CLOSE"}))

    counts = _drain(_worker(stub, clock))

    assert counts["done"] == 2
    assert [r.url.path for r in stub.requests] == ["/api/alerts/open", "/api/alerts/close"]
    db.expire_all()
    (record,) = db.query(AlertHistory).all()
    assert record.alert_id == open_alert
    assert record.uuid_open == "T-OPEN"
    assert record.uuid_closed == "T-CLOSE"


def test_repeated_delivery_does_not_duplicate_history(db, manager, clock, make_reading, open_alert):
    asyncio.run(manager.process_cycle([make_reading()]))
    worker = _worker(TicketingStub(), clock)
    _drain(worker)

    # Replay the same requests as a retrying worker would
    for event in _events(db):
        event.status = "pending"
    db.commit()
    _drain(worker)

    db.expire_all()
    assert db.query(AlertHistory).count() == 1
    assert len(_events(db)) == 2
