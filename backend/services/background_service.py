import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from config import settings
from services.alert_service import AlertLifecycleManager
from services.cache_service import CacheService
from services.correlation_service import CorrelationWorker
from services.metrics_service import metrics_service
from services.reading_source import ReadingSource

logger = logging.getLogger(__name__)

LAST_CYCLE_KEY = "last_evaluation_cycle"


class BackgroundTaskService:
    """Periodic evaluation, correlation outbox drain and stale alert sweep"""

    def __init__(
        self,
        cache_service: CacheService,
        alert_manager: AlertLifecycleManager,
        reading_source: Optional[ReadingSource] = None,
        correlation_worker: Optional[CorrelationWorker] = None,
    ):
        self.cache_service = cache_service
        self.alert_manager = alert_manager
        self.reading_source = reading_source
        self.correlation_worker = correlation_worker
        self.running_tasks: Dict[str, asyncio.Task] = {}
        self.is_running = False
        self.last_cycle: Optional[Dict] = None

    async def start(self):
        """Start all background tasks"""
        if self.is_running:
            logger.warning("Background task service is already running")
            return

        self.is_running = True

        if self.reading_source is not None:
            self.running_tasks["evaluation"] = asyncio.create_task(
                self._periodic_task(
                    self._run_evaluation_cycle, settings.evaluation_interval_seconds
                )
            )
        else:
            logger.warning(
                "⚠️ No reading source configured, readings are only evaluated via the API"
            )

        if self.correlation_worker is not None:
            self.running_tasks["correlation_outbox"] = asyncio.create_task(
                self._periodic_task(
                    self._drain_outbox, settings.outbox_poll_interval_seconds
                )
            )

        if self.alert_manager.stale_timeout_minutes:
            self.running_tasks["stale_sweep"] = asyncio.create_task(
                self._periodic_task(self._sweep_stale_alerts, 60)  # Every minute
            )

        metrics_service.update_background_tasks(len(self.running_tasks))
        logger.info(
            f"✅ Background task service started ({', '.join(self.running_tasks) or 'no tasks'})"
        )

    async def stop(self):
        """Stop all background tasks"""
        self.is_running = False

        # Cancel all running tasks
        for task_name, task in self.running_tasks.items():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.info(f"Background task {task_name} cancelled")

        self.running_tasks.clear()
        metrics_service.update_background_tasks(0)

        for resource in (self.reading_source, self.correlation_worker):
            client = getattr(resource, "client", resource)
            close = getattr(client, "close", None)
            if close is not None:
                await close()

        logger.info("🛑 Background task service stopped")

    async def _periodic_task(self, func: Callable, interval: int):
        """Execute a function periodically"""
        while self.is_running:
            try:
                await func()
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in periodic task {func.__name__}: {str(e)}")
                await asyncio.sleep(interval)

    async def _run_evaluation_cycle(self):
        """Fetch the latest readings and evaluate them"""
        try:
            readings = await self.reading_source.fetch()
        except Exception as e:
            # No data this cycle; open alerts are left as they are
            logger.warning(f"⚠️ Reading source unavailable, skipping cycle: {str(e)}")
            return

        result = await self.alert_manager.process_cycle(readings)
        self.last_cycle = {
            **result.model_dump(exclude={"racks"}),
            "finished_at": datetime.now().isoformat(),
        }
        await self.cache_service.set(LAST_CYCLE_KEY, self.last_cycle, ttl=3600)

    async def _drain_outbox(self):
        await self.correlation_worker.drain_once()

    async def _sweep_stale_alerts(self):
        await self.alert_manager.sweep_stale()
