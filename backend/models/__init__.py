"""Database models package"""

# Import the base here to ensure all models are registered
from database.session import Base

from .alert import ActiveAlert, AlertHistory
from .maintenance import MaintenanceEntry, MaintenanceHistory, MaintenanceRackDetail
from .outbox import CorrelationOutbox
from .threshold import RackThresholdOverride, ThresholdConfig
from .user import User, UserRole

__all__ = [
    "ActiveAlert",
    "AlertHistory",
    "CorrelationOutbox",
    "MaintenanceEntry",
    "MaintenanceHistory",
    "MaintenanceRackDetail",
    "RackThresholdOverride",
    "ThresholdConfig",
    "User",
    "UserRole",
    "Base",
]
