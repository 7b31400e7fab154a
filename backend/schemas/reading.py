from enum import Enum
from typing import List, Optional

from const.thresholds import Bound, Metric, Phase, Severity
from pydantic import BaseModel, ConfigDict, Field, field_validator


class RackStatus(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class Reading(BaseModel):
    """Normalized reading for one PDU as delivered by the acquisition layer"""

    model_config = ConfigDict(populate_by_name=True)

    # Identity
    pdu_id: str = Field(..., description="PDU identifier", alias="id")
    rack_id: Optional[str] = Field(None, description="Logical rack identifier")
    name: Optional[str] = Field(None, description="Rack display name")
    country: Optional[str] = None
    site: Optional[str] = None
    dc: Optional[str] = None
    phase: Optional[str] = Field(None, description="single_phase, 3_phase, ...")
    chain: Optional[str] = None
    node: Optional[str] = None
    serial: Optional[str] = None
    gw_name: Optional[str] = Field(None, description="Gateway name")
    gw_ip: Optional[str] = Field(None, description="Gateway IP")
    group: Optional[str] = None

    # Measured values
    current: Optional[float] = Field(None, description="Current in amperes")
    voltage: Optional[float] = Field(None, description="Voltage in volts")
    temperature: Optional[float] = Field(None, description="PDU temperature (C)")
    sensor_temperature: Optional[float] = Field(
        None, description="External sensor temperature (C), preferred"
    )
    sensor_humidity: Optional[float] = Field(None, description="Relative humidity (%)")
    power: Optional[float] = Field(None, description="Active power in watts")

    @field_validator(
        "current",
        "voltage",
        "temperature",
        "sensor_temperature",
        "sensor_humidity",
        "power",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v):
        # Acquisition layer reports missing sensors as "N/A" or empty strings
        if isinstance(v, str) and v.strip().upper() in ("", "N/A", "NULL", "NONE"):
            return None
        return v

    @field_validator("pdu_id", "rack_id", mode="before")
    @classmethod
    def strip_identity(cls, v):
        if v is None:
            return v
        v = str(v).strip()
        return v or None

    @property
    def logical_rack_id(self) -> str:
        return self.rack_id or self.pdu_id


class ViolationReason(BaseModel):
    """One violated threshold for one metric of a reading"""

    model_config = ConfigDict(frozen=True)

    severity: Severity
    metric: Metric
    bound: Bound
    value: float
    threshold: float
    field: str = Field(..., description="Reading attribute the value came from")
    phase: Optional[Phase] = None

    @property
    def tag(self) -> str:
        parts = [self.severity.value, self.metric.value, self.bound.value]
        if self.phase is not None:
            parts.append(self.phase.value)
        return "_".join(parts)

    @property
    def is_critical(self) -> bool:
        return self.severity == Severity.CRITICAL


class EvaluatedRack(Reading):
    """Reading enriched with the outcome of the latest evaluation"""

    status: RackStatus = RackStatus.NORMAL
    reasons: List[str] = Field(default_factory=list, description="Violation tags")
    in_maintenance: bool = False


class ReadingBatch(BaseModel):
    readings: List[Reading] = Field(..., min_length=0)


class CycleResult(BaseModel):
    """Outcome of one evaluation pass"""

    evaluated: int = 0
    suppressed: int = 0
    opened: int = 0
    refreshed: int = 0
    closed: int = 0
    errors: List[str] = Field(default_factory=list)
    racks: List[EvaluatedRack] = Field(default_factory=list)
