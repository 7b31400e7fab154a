from datetime import datetime
from typing import Dict, List, Optional

from const.thresholds import ThresholdKey
from pydantic import BaseModel, ConfigDict, Field, field_validator


def _validate_key(v: str) -> str:
    # Raises ValueError for anything outside the key catalogue
    return ThresholdKey.parse(v).key


class ThresholdResponse(BaseModel):
    """Global threshold as stored"""

    model_config = ConfigDict(from_attributes=True)

    threshold_key: str
    value: float
    unit: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ThresholdUpdate(BaseModel):
    """Bulk update of global values, keyed by threshold key"""

    thresholds: Dict[str, float] = Field(..., description="threshold_key -> value")

    @field_validator("thresholds")
    @classmethod
    def validate_keys(cls, v: Dict[str, float]) -> Dict[str, float]:
        if not v:
            raise ValueError("At least one threshold is required")
        return {_validate_key(key): value for key, value in v.items()}


class ThresholdUpdateResponse(BaseModel):
    updated: int
    keys: List[str]


class RackThresholdResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rack_id: str
    threshold_key: str
    value: float
    unit: Optional[str] = None
    description: Optional[str] = None
    updated_at: Optional[datetime] = None


class RackThresholdItem(BaseModel):
    threshold_key: str
    value: float
    unit: Optional[str] = None
    description: Optional[str] = None

    @field_validator("threshold_key")
    @classmethod
    def validate_key(cls, v: str) -> str:
        return _validate_key(v)


class RackThresholdUpdate(BaseModel):
    overrides: List[RackThresholdItem] = Field(..., min_length=1)


class EffectiveThresholdsResponse(BaseModel):
    """Global values merged with the overrides of one rack"""

    rack_id: str
    thresholds: Dict[str, float]
    overridden_keys: List[str] = Field(default_factory=list)
