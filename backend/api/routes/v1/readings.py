import logging
from typing import List

from fastapi import APIRouter, HTTPException
from schemas.reading import CycleResult, EvaluatedRack, ReadingBatch
from schemas.view import RackViewRequest, RackViewResponse
from services.alert_service import alert_manager
from services.cache_service import CacheService
from services.maintenance_service import maintenance_service
from utils.rack_grouping import group_racks
from utils.view_filter import filter_racks, summarize_alerts

logger = logging.getLogger(__name__)
router = APIRouter()

# Service instances (will be set during startup)
cache_service: CacheService = None


def set_services(cache_svc: CacheService):
    """Set service instances"""
    global cache_service
    cache_service = cache_svc


@router.post("/readings/evaluate", response_model=CycleResult)
async def evaluate_readings(batch: ReadingBatch):
    """Run one evaluation cycle on the posted readings"""
    try:
        return await alert_manager.process_cycle(batch.readings)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to evaluate readings: {str(e)}",
        )


@router.get("/racks/state", response_model=List[EvaluatedRack])
async def get_rack_states():
    """Latest-known evaluated state of every rack still in the cache"""
    try:
        if not cache_service:
            return []
        return [
            EvaluatedRack.model_validate(state)
            for state in await cache_service.get_rack_states()
        ]
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get rack states: {str(e)}",
        )


@router.post("/racks/view", response_model=RackViewResponse)
def get_rack_view(request: RackViewRequest):
    """Filter evaluated racks and group them for display"""
    try:
        in_maintenance = maintenance_service.index.snapshot
        racks = [
            rack.model_copy(update={"in_maintenance": True})
            if not rack.in_maintenance and rack.logical_rack_id in in_maintenance
            else rack
            for rack in request.racks
        ]

        visible = filter_racks(racks, request.mode, request.criteria, in_maintenance)
        return RackViewResponse(
            total=len(visible),
            groups=group_racks(visible),
            summary=summarize_alerts(racks),
        )
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to build rack view: {str(e)}",
        )
