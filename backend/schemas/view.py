from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, Field

from .reading import EvaluatedRack


class ViewMode(str, Enum):
    """What the console shows"""

    ALL = "all"  # every piece of equipment
    ALERTS = "alerts"  # only racks with warning/critical reasons


class StatusFilter(str, Enum):
    ALL = "all"
    CRITICAL = "critical"
    WARNING = "warning"
    NORMAL = "normal"
    MAINTENANCE = "maintenance"


class SearchField(str, Enum):
    ALL = "all"
    SITE = "site"
    COUNTRY = "country"
    DC = "dc"
    NODE = "node"
    CHAIN = "chain"
    NAME = "name"
    SERIAL = "serial"


class FilterCriteria(BaseModel):
    """Location, search and status criteria; every criterion narrows the result"""

    status: StatusFilter = StatusFilter.ALL
    country: str = "all"
    site: str = "all"
    dc: str = "all"
    search: str = ""
    search_field: SearchField = SearchField.ALL
    metric: str = "all"


class RackViewRequest(BaseModel):
    racks: List[EvaluatedRack] = Field(default_factory=list)
    mode: ViewMode = ViewMode.ALERTS
    criteria: FilterCriteria = Field(default_factory=FilterCriteria)


class MetricCounts(BaseModel):
    total: int = 0
    amperage: int = 0
    temperature: int = 0
    humidity: int = 0
    voltage: int = 0
    power: int = 0


class AlertSummary(BaseModel):
    """Rack-level counts per severity and metric"""

    critical: MetricCounts = Field(default_factory=MetricCounts)
    warning: MetricCounts = Field(default_factory=MetricCounts)


# country -> site -> dc -> gateway -> logical rack groups
GroupedRacks = Dict[str, Dict[str, Dict[str, Dict[str, List[List[EvaluatedRack]]]]]]


class RackViewResponse(BaseModel):
    total: int
    groups: GroupedRacks
    summary: AlertSummary
