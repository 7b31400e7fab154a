from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ResolutionType(str, Enum):
    """How an alert left the active set"""

    AUTO = "auto"
    MANUAL = "manual"
    STALE = "stale"


class AlertSnapshot(BaseModel):
    """Fields shared by open and archived alerts"""

    model_config = ConfigDict(from_attributes=True)

    pdu_id: str
    rack_id: str
    name: Optional[str] = None
    country: Optional[str] = None
    site: Optional[str] = None
    dc: Optional[str] = None
    phase: Optional[str] = None
    chain: Optional[str] = None
    node: Optional[str] = None
    serial: Optional[str] = None
    gw_name: Optional[str] = None
    gw_ip: Optional[str] = None
    group: Optional[str] = None

    metric_type: str
    alert_reason: str
    alert_field: Optional[str] = None
    alert_value: Optional[float] = None
    threshold_exceeded: Optional[float] = None
    severity: str = "critical"
    uuid_open: Optional[str] = None
    uuid_closed: Optional[str] = None


class ActiveAlertResponse(AlertSnapshot):
    """Schema for open alert responses"""

    id: UUID
    alert_started_at: datetime
    last_updated_at: datetime


class AlertHistoryResponse(AlertSnapshot):
    """Schema for archived alert responses"""

    id: int
    alert_id: UUID
    created_at: datetime
    last_updated_at: Optional[datetime] = None
    resolved_at: datetime
    resolved_by: Optional[str] = None
    resolution_type: ResolutionType
    duration_minutes: int


class AlertStats(BaseModel):
    """Schema for active alert statistics"""

    total_active: int
    by_metric: Dict[str, int] = Field(default_factory=dict)
    by_site: Dict[str, int] = Field(default_factory=dict)
    resolved_last_24h: int = 0


class BulkCloseRequest(BaseModel):
    site: Optional[str] = Field(None, description="Restrict to one site")


class BulkCloseResponse(BaseModel):
    closed: int
    alert_ids: List[UUID] = Field(default_factory=list)
