from .alert import (
    ActiveAlertResponse,
    AlertHistoryResponse,
    AlertStats,
    BulkCloseRequest,
    BulkCloseResponse,
    ResolutionType,
)
from .maintenance import (
    ChainMaintenanceCreate,
    MaintenanceEntryResponse,
    MaintenanceEntryType,
    MaintenanceHistoryResponse,
    MaintenanceMutationResponse,
    RackMaintenanceCreate,
)
from .reading import (
    CycleResult,
    EvaluatedRack,
    RackStatus,
    Reading,
    ReadingBatch,
    ViolationReason,
)
from .threshold import (
    EffectiveThresholdsResponse,
    RackThresholdResponse,
    RackThresholdUpdate,
    ThresholdResponse,
    ThresholdUpdate,
    ThresholdUpdateResponse,
)
from .view import (
    AlertSummary,
    FilterCriteria,
    RackViewRequest,
    RackViewResponse,
    SearchField,
    StatusFilter,
    ViewMode,
)

__all__ = [
    # Alerts
    "ActiveAlertResponse",
    "AlertHistoryResponse",
    "AlertStats",
    "BulkCloseRequest",
    "BulkCloseResponse",
    "ResolutionType",
    # Maintenance
    "ChainMaintenanceCreate",
    "MaintenanceEntryResponse",
    "MaintenanceEntryType",
    "MaintenanceHistoryResponse",
    "MaintenanceMutationResponse",
    "RackMaintenanceCreate",
    # Readings
    "CycleResult",
    "EvaluatedRack",
    "RackStatus",
    "Reading",
    "ReadingBatch",
    "ViolationReason",
    # Thresholds
    "EffectiveThresholdsResponse",
    "RackThresholdResponse",
    "RackThresholdUpdate",
    "ThresholdResponse",
    "ThresholdUpdate",
    "ThresholdUpdateResponse",
    # Views
    "AlertSummary",
    "FilterCriteria",
    "RackViewRequest",
    "RackViewResponse",
    "SearchField",
    "StatusFilter",
    "ViewMode",
]
