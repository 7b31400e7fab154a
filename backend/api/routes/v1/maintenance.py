import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from database.session import get_db
from dependencies.actor import get_actor
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import ValidationError
from schemas.maintenance import (
    ChainMaintenanceCreate,
    MaintenanceEntryResponse,
    MaintenanceHistoryResponse,
    MaintenanceMutationResponse,
    RackMaintenanceCreate,
)
from schemas.reading import Reading
from schemas.user import Actor
from services.cache_service import CacheService
from services.exceptions import CapabilityDenied, MaintenanceConflict, NotFound
from services.maintenance_service import MaintenanceResult, maintenance_service
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)
router = APIRouter()

# Service instances (will be set during startup)
cache_service: CacheService = None


def set_services(cache_svc: CacheService):
    """Set service instances"""
    global cache_service
    cache_service = cache_svc


async def _known_racks() -> List[Reading]:
    """Latest evaluated racks, used when a chain request carries no rack list"""
    if not cache_service:
        return []

    racks = []
    for state in await cache_service.get_rack_states():
        try:
            racks.append(Reading.model_validate(state))
        except ValidationError as e:
            logger.debug(f"Ignoring unreadable cached rack state: {e}")
    return racks


def _to_response(result: MaintenanceResult) -> MaintenanceMutationResponse:
    return MaintenanceMutationResponse(
        message=result.message,
        entry_id=result.entry_id,
        racks_affected=result.racks_affected,
    )


@router.get("/maintenance", response_model=List[MaintenanceEntryResponse])
def get_maintenance_entries(
    site: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """Get open maintenance entries with their racks"""
    try:
        return maintenance_service.list_entries(db, site)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get maintenance entries: {str(e)}",
        )


@router.get("/maintenance/history", response_model=List[MaintenanceHistoryResponse])
def get_maintenance_history(
    start: Optional[datetime] = Query(None, description="Ended at or after"),
    end: Optional[datetime] = Query(None, description="Ended at or before"),
    site: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """Get archived maintenance periods, one row per rack"""
    try:
        return maintenance_service.get_history(db, start, end, site, skip, limit)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get maintenance history: {str(e)}",
        )


@router.post(
    "/maintenance/rack",
    response_model=MaintenanceMutationResponse,
    status_code=status.HTTP_201_CREATED,
)
def start_rack_maintenance(
    request: RackMaintenanceCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Put a single rack under maintenance"""
    try:
        result = maintenance_service.start_rack(db, request.rack, request.reason, actor)
        return _to_response(result)
    except CapabilityDenied as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except MaintenanceConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to start rack maintenance: {str(e)}",
        )


@router.post(
    "/maintenance/chain",
    response_model=MaintenanceMutationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def start_chain_maintenance(
    request: ChainMaintenanceCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Put every rack of a chain in one DC under maintenance"""
    try:
        racks = request.racks or await _known_racks()
        result = maintenance_service.start_chain(
            db,
            request.chain,
            request.dc,
            racks,
            request.reason,
            actor,
            site=request.site,
        )
        return _to_response(result)
    except CapabilityDenied as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except MaintenanceConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to start chain maintenance: {str(e)}",
        )


@router.delete("/maintenance/all", response_model=MaintenanceMutationResponse)
def end_all_maintenance(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """End every maintenance entry in the caller's scope"""
    try:
        return _to_response(maintenance_service.end_all(db, actor))
    except CapabilityDenied as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to end maintenance: {str(e)}",
        )


@router.delete("/maintenance/rack/{rack_id}", response_model=MaintenanceMutationResponse)
def remove_rack_from_maintenance(
    rack_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """End maintenance for one rack"""
    try:
        return _to_response(maintenance_service.remove_rack(db, rack_id, actor))
    except CapabilityDenied as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to remove rack from maintenance: {str(e)}",
        )


@router.delete(
    "/maintenance/entry/{entry_id}", response_model=MaintenanceMutationResponse
)
def end_maintenance_entry(
    entry_id: UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """End a maintenance entry and every rack it covers"""
    try:
        return _to_response(maintenance_service.end_entry(db, entry_id, actor))
    except CapabilityDenied as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to end maintenance entry: {str(e)}",
        )
