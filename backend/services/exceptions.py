from typing import Optional


class AlertEngineError(Exception):
    """Base class for alerting engine errors"""


class ConfigurationMissing(AlertEngineError):
    """No global value and no override for a threshold key"""

    def __init__(self, threshold_key: str, rack_id: Optional[str] = None):
        self.threshold_key = threshold_key
        self.rack_id = rack_id
        where = f" for rack {rack_id}" if rack_id else ""
        super().__init__(f"No threshold configured for {threshold_key}{where}")


class DuplicateKeyConflict(AlertEngineError):
    """An alert is already open for the key"""

    def __init__(self, key: tuple):
        self.key = key
        super().__init__(f"Active alert already exists for {key}")


class ExternalCorrelationFailure(AlertEngineError):
    """The ticketing API did not return a correlation id"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class StaleMaintenanceMutation(AlertEngineError):
    """Maintenance change targeting something that is already gone"""


class CapabilityDenied(AlertEngineError):
    """The caller is not allowed to perform the mutation"""

    def __init__(self, username: Optional[str], action: str, reason: str):
        self.username = username
        self.action = action
        self.reason = reason
        super().__init__(f"{username or 'anonymous'} may not {action}: {reason}")


class NotFound(AlertEngineError):
    """Requested alert, entry or override does not exist"""


class MaintenanceConflict(AlertEngineError):
    """Rack or chain is already covered by an open maintenance entry"""
