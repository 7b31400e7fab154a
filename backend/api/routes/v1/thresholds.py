from typing import List, Optional

from database.session import get_db
from dependencies.actor import get_actor
from fastapi import APIRouter, Depends, HTTPException, Query, status
from schemas.threshold import (
    EffectiveThresholdsResponse,
    RackThresholdResponse,
    RackThresholdUpdate,
    ThresholdResponse,
    ThresholdUpdate,
    ThresholdUpdateResponse,
)
from schemas.user import Actor
from services.exceptions import CapabilityDenied
from services.maintenance_service import ensure_can_mutate
from services.threshold_service import threshold_service
from sqlalchemy.orm import Session

router = APIRouter()


@router.get("/thresholds", response_model=List[ThresholdResponse])
def get_thresholds(db: Session = Depends(get_db)):
    """Get the global threshold configuration"""
    try:
        return threshold_service.get_thresholds(db)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get thresholds: {str(e)}",
        )


@router.put("/thresholds", response_model=ThresholdUpdateResponse)
def update_thresholds(
    update: ThresholdUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Update global threshold values; takes effect on the next evaluation"""
    try:
        ensure_can_mutate(actor, "update thresholds")
        rows = threshold_service.update_thresholds(db, update.thresholds)
        return ThresholdUpdateResponse(
            updated=len(rows), keys=[row.threshold_key for row in rows]
        )
    except CapabilityDenied as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to update thresholds: {str(e)}",
        )


@router.get("/racks/{rack_id}/thresholds", response_model=EffectiveThresholdsResponse)
def get_rack_thresholds(rack_id: str, db: Session = Depends(get_db)):
    """Get the effective thresholds of a rack and which keys it overrides"""
    try:
        effective = threshold_service.resolve(db, rack_id)
        return EffectiveThresholdsResponse(
            rack_id=rack_id,
            thresholds=effective.as_dict(),
            overridden_keys=sorted(key.key for key in effective.overridden),
        )
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get rack thresholds: {str(e)}",
        )


@router.put("/racks/{rack_id}/thresholds", response_model=List[RackThresholdResponse])
def set_rack_thresholds(
    rack_id: str,
    update: RackThresholdUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Create or replace threshold overrides of a rack"""
    try:
        ensure_can_mutate(actor, "override rack thresholds")
        return threshold_service.set_rack_overrides(db, rack_id, update.overrides)
    except CapabilityDenied as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to save rack thresholds: {str(e)}",
        )


@router.delete("/racks/{rack_id}/thresholds")
def delete_rack_thresholds(
    rack_id: str,
    threshold_key: Optional[List[str]] = Query(
        None, description="Keys to remove; every override when omitted"
    ),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Remove threshold overrides of a rack, falling back to the global values"""
    try:
        ensure_can_mutate(actor, "remove rack threshold overrides")
        deleted = threshold_service.delete_rack_overrides(db, rack_id, threshold_key)
        return {"rack_id": rack_id, "deleted": deleted}
    except CapabilityDenied as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to delete rack thresholds: {str(e)}",
        )
