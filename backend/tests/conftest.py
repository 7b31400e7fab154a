"""Shared test fixtures."""
import os

# In-memory database shared by every session (StaticPool)
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CORRELATION_API_URL", "")

from datetime import datetime, timedelta

import models  # noqa: F401
import pytest
from database import Base, SessionLocal, engine
from schemas.reading import Reading
from schemas.user import Actor
from services.alert_service import AlertLifecycleManager
from services.maintenance_service import MaintenanceService, maintenance_service
from services.threshold_service import threshold_service


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=datetime(2025, 1, 15, 8, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def db():
    """Fresh schema with the default thresholds seeded."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    threshold_service.seed_defaults(session)
    maintenance_service.refresh_index(session)
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def maintenance():
    return MaintenanceService()


@pytest.fixture
def manager(db, clock, maintenance):
    """Lifecycle manager with correlation enabled and no stale timeout."""
    return AlertLifecycleManager(
        session_factory=SessionLocal,
        maintenance=maintenance,
        clock=clock,
        correlation_enabled=True,
        stale_timeout_minutes=0,
    )


@pytest.fixture
def make_reading():
    """Factory for realistic PDU readings, every value within default thresholds."""

    def _make(pdu_id="PDU-001", rack_id="RACK-01", **overrides):
        data = {
            "id": pdu_id,
            "rack_id": rack_id,
            "name": f"Rack {rack_id}",
            "country": "Spain",
            "site": "Madrid",
            "dc": "DC1",
            "phase": "single_phase",
            "chain": "C1",
            "node": "N1",
            "serial": f"SN-{pdu_id}",
            "gw_name": "GW-A",
            "gw_ip": "10.0.0.1",
            "current": 10.0,
            "voltage": 220.0,
            "temperature": 22.0,
            "sensor_humidity": 45.0,
            "power": 2000.0,
        }
        data.update(overrides)
        return Reading(**data)

    return _make


@pytest.fixture
def operator():
    return Actor(username="ops", role="Operator")


@pytest.fixture
def observer():
    return Actor(username="viewer", role="Observer")


@pytest.fixture
def admin():
    return Actor(username="root", role="Administrator")
