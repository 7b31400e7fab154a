from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .reading import Reading


class MaintenanceEntryType(str, Enum):
    INDIVIDUAL_RACK = "individual_rack"
    CHAIN = "chain"


def _required_text(v: Optional[str], label: str) -> str:
    if v is None or not str(v).strip():
        raise ValueError(f"{label} cannot be empty")
    return str(v).strip()


class RackMaintenanceCreate(BaseModel):
    """Put one rack under maintenance"""

    rack: Reading = Field(..., description="Identity of the rack to suppress")
    reason: str = Field("Scheduled rack maintenance", max_length=500)

    @field_validator("rack")
    @classmethod
    def validate_rack(cls, v: Reading) -> Reading:
        if not v.rack_id:
            raise ValueError("rack_id is required for rack maintenance")
        return v


class ChainMaintenanceCreate(BaseModel):
    """Put a whole chain of one DC under maintenance"""

    chain: str
    dc: str
    site: Optional[str] = None
    reason: str = Field("Scheduled chain maintenance", max_length=500)
    racks: List[Reading] = Field(
        default_factory=list,
        description="Known racks; those matching chain and dc are covered",
    )

    @field_validator("chain")
    @classmethod
    def validate_chain(cls, v: str) -> str:
        return _required_text(v, "chain")

    @field_validator("dc")
    @classmethod
    def validate_dc(cls, v: str) -> str:
        return _required_text(v, "dc")


class MaintenanceRackResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rack_id: str
    pdu_id: Optional[str] = None
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
    added_at: datetime


class MaintenanceEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    entry_type: MaintenanceEntryType
    rack_id: Optional[str] = None
    chain: Optional[str] = None
    dc: Optional[str] = None
    site: Optional[str] = None
    reason: Optional[str] = None
    started_by: Optional[str] = None
    started_at: datetime
    racks: List[MaintenanceRackResponse] = Field(default_factory=list)


class MaintenanceHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    original_entry_id: Optional[UUID] = None
    entry_type: MaintenanceEntryType
    rack_id: str
    rack_name: Optional[str] = None
    country: Optional[str] = None
    site: Optional[str] = None
    dc: Optional[str] = None
    phase: Optional[str] = None
    chain: Optional[str] = None
    node: Optional[str] = None
    gw_name: Optional[str] = None
    gw_ip: Optional[str] = None
    reason: Optional[str] = None
    started_by: Optional[str] = None
    ended_by: Optional[str] = None
    started_at: datetime
    ended_at: datetime
    duration_minutes: int


class MaintenanceMutationResponse(BaseModel):
    """Result of a start/stop maintenance action"""

    success: bool = True
    message: str
    entry_id: Optional[UUID] = None
    racks_affected: int = 0
