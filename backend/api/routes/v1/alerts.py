from datetime import datetime
from typing import List, Optional
from uuid import UUID

from database.session import get_db
from dependencies.actor import get_actor
from fastapi import APIRouter, Depends, HTTPException, Query, status
from schemas.alert import (
    ActiveAlertResponse,
    AlertHistoryResponse,
    AlertStats,
    BulkCloseRequest,
    BulkCloseResponse,
)
from schemas.user import Actor
from services.alert_service import alert_manager
from services.exceptions import CapabilityDenied, NotFound
from sqlalchemy.orm import Session

router = APIRouter()


@router.get("/alerts/active", response_model=List[ActiveAlertResponse])
def get_active_alerts(
    site: Optional[str] = Query(None),
    dc: Optional[str] = Query(None),
    metric_type: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """Get open critical alerts with optional filtering"""
    try:
        return alert_manager.get_active_alerts(db, site, dc, metric_type, skip, limit)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get active alerts: {str(e)}",
        )


@router.get("/alerts/stats", response_model=AlertStats)
def get_alert_stats(db: Session = Depends(get_db)):
    """Get active alert statistics"""
    try:
        return alert_manager.get_alert_stats(db)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get alert stats: {str(e)}",
        )


@router.get("/alerts/history", response_model=List[AlertHistoryResponse])
def get_alert_history(
    start: Optional[datetime] = Query(None, description="Resolved at or after"),
    end: Optional[datetime] = Query(None, description="Resolved at or before"),
    site: Optional[str] = Query(None),
    pdu_id: Optional[str] = Query(None),
    metric_type: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """Get closed alerts"""
    try:
        return alert_manager.get_history(
            db, start, end, site, pdu_id, metric_type, skip, limit
        )
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get alert history: {str(e)}",
        )


@router.post("/alerts/close-all", response_model=BulkCloseResponse)
async def close_all_alerts(
    request: Optional[BulkCloseRequest] = None,
    actor: Actor = Depends(get_actor),
):
    """Close every open alert, limited to the caller's sites unless administrator"""
    try:
        closed = await alert_manager.close_all(actor, site=request.site if request else None)
        return BulkCloseResponse(closed=len(closed), alert_ids=closed)
    except CapabilityDenied as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to close alerts: {str(e)}",
        )


@router.post("/alerts/{alert_id}/close", response_model=AlertHistoryResponse)
async def close_alert(alert_id: UUID, actor: Actor = Depends(get_actor)):
    """Close an alert by hand; closing it again returns the same record"""
    try:
        return await alert_manager.close_alert(alert_id, actor)
    except CapabilityDenied as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to close alert: {str(e)}",
        )
