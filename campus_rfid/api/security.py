"""
Security Alert API endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging

from campus_rfid.database import get_db
from campus_rfid.api.deps import http_error
from campus_rfid.exceptions import CampusError
from campus_rfid.services.security_service import SecurityService
from campus_rfid.services.log_service import paginate
from campus_rfid.schemas.schemas import (
    AlertReviewRequest,
    AlertSeverity,
    AlertStatus,
    SecurityAlertOut,
    SecurityAlertPage
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/security", tags=["Security"])


@router.get(
    "/alerts",
    response_model=SecurityAlertPage,
    summary="List Security Alerts",
    description="Alerts newest first, with pending/high/critical counts for the same filter."
)
async def list_alerts(
    severity: Optional[AlertSeverity] = Query(None),
    status: Optional[AlertStatus] = Query(None),
    user_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: AsyncSession = Depends(get_db)
):
    try:
        alerts, stats, total = await SecurityService.list_alerts(
            db,
            severity=severity,
            status=status,
            subject_id=user_id,
            page=page,
            limit=limit
        )
        return {"alerts": alerts, "stats": stats, "pagination": paginate(page, limit, total)}

    except Exception as e:
        logger.error(f"Security alert listing error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.patch(
    "/alerts/{alert_id}",
    response_model=SecurityAlertOut,
    summary="Review Security Alert",
    description="Move an alert to reviewed or resolved; records reviewer and time."
)
async def review_alert(
    alert_id: int,
    request: AlertReviewRequest,
    db: AsyncSession = Depends(get_db)
):
    try:
        alert = await SecurityService.review_alert(
            db,
            alert_id=alert_id,
            status=request.status,
            reviewer=request.reviewer,
            resolution_notes=request.resolution_notes
        )
        await db.commit()
        return alert
    except CampusError as e:
        raise http_error(e)
