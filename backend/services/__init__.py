from .alert_service import AlertLifecycleManager, alert_manager
from .background_service import BackgroundTaskService
from .cache_service import CacheService
from .correlation_service import CorrelationClient, CorrelationWorker
from .evaluation_service import AlertEvaluator, alert_evaluator
from .maintenance_service import MaintenanceIndex, MaintenanceService, maintenance_service
from .threshold_service import EffectiveThresholds, ThresholdService, threshold_service

__all__ = [
    "AlertEvaluator",
    "AlertLifecycleManager",
    "BackgroundTaskService",
    "CacheService",
    "CorrelationClient",
    "CorrelationWorker",
    "EffectiveThresholds",
    "MaintenanceIndex",
    "MaintenanceService",
    "ThresholdService",
    "alert_evaluator",
    "alert_manager",
    "maintenance_service",
    "threshold_service",
]
