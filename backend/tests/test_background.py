"""Tests for the periodic background jobs."""
import asyncio

from models import ActiveAlert
from services.background_service import BackgroundTaskService
from services.reading_source import StaticReadingSource


class MemoryCache:
    def __init__(self):
        self.values = {}

    async def set(self, key, value, ttl=300):
        self.values[key] = value
        return True


class BrokenSource:
    async def fetch(self):
        raise ConnectionError("acquisition API down")


def test_evaluation_cycle_from_source(db, manager, make_reading):
    cache = MemoryCache()
    service = BackgroundTaskService(
        cache, manager, reading_source=StaticReadingSource([make_reading(temperature=42)])
    )

    asyncio.run(service._run_evaluation_cycle())

    assert db.query(ActiveAlert).count() == 1
    assert service.last_cycle["opened"] == 1
    assert cache.values["last_evaluation_cycle"]["evaluated"] == 1


def test_source_failure_skips_cycle_and_keeps_alerts(db, manager, make_reading):
    asyncio.run(manager.process_cycle([make_reading(temperature=42)]))
    service = BackgroundTaskService(MemoryCache(), manager, reading_source=BrokenSource())

    asyncio.run(service._run_evaluation_cycle())

    assert service.last_cycle is None
    assert db.query(ActiveAlert).count() == 1


def test_start_only_configured_tasks(db, manager):
    async def run():
        service = BackgroundTaskService(MemoryCache(), manager)
        await service.start()
        started = sorted(service.running_tasks)
        await service.stop()
        return started, service.running_tasks

    started, remaining = asyncio.run(run())
    assert started == []
    assert remaining == {}


def test_start_and_stop_periodic_tasks(db, manager, make_reading):
    async def run():
        source = StaticReadingSource([make_reading()])
        service = BackgroundTaskService(MemoryCache(), manager, reading_source=source)
        await service.start()
        await asyncio.sleep(0.2)
        started = sorted(service.running_tasks)
        await service.stop()
        return started, service

    started, service = asyncio.run(run())
    assert started == ["evaluation"]
    assert not service.is_running
    assert service.last_cycle["evaluated"] == 1
