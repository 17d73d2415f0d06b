"""
RFID Scan API endpoints.
Badge taps from campus readers, the scan log and location history.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from datetime import date
import logging

from campus_rfid.database import get_db
from campus_rfid.api.deps import get_scan_orchestrator, http_error
from campus_rfid.exceptions import CampusError
from campus_rfid.services.scan_service import ScanOrchestrator
from campus_rfid.services.log_service import LogService, paginate
from campus_rfid.schemas.schemas import (
    ScanRequest,
    ScanAckResponse,
    ScanSubject,
    ScanLogPage,
    LocationHistoryResponse,
    LocationCode,
    Direction
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/rfid", tags=["RFID"])


@router.post(
    "/scan",
    response_model=ScanAckResponse,
    summary="Process RFID Scan",
    description="""
    Process one badge tap from a campus reader.

    Pipeline:
    1. Resolve the subject (claimed id + card must match an active user)
    2. Append the scan to the audit log
    3. Derive attendance (student entering a scheduled classroom)
    4. Evaluate security rules (e.g. main gate exit at or after 22:00)
    5. Award points (classroom 5, library 3, mess 2)
    6. Fan out a location update to the dashboards

    Steps 3-5 are isolated: a failure in one is logged and does not
    fail the tap.
    """
)
async def process_scan(
    request: ScanRequest,
    db: AsyncSession = Depends(get_db),
    orchestrator: ScanOrchestrator = Depends(get_scan_orchestrator)
):
    """Process an RFID scan."""
    try:
        outcome = await orchestrator.handle_scan(db, request)
    except CampusError as e:
        raise http_error(e)

    return ScanAckResponse(
        success=True,
        message="RFID scan processed successfully",
        scan_event=outcome.scan_event,
        user=ScanSubject(name=outcome.subject.name, role=outcome.subject.role),
        attendance=outcome.attendance,
        alerts=outcome.alerts,
        points_awarded=outcome.points_awarded
    )


@router.get(
    "/logs",
    response_model=ScanLogPage,
    summary="List Scan Logs",
    description="Scan log, newest first, with optional filters."
)
async def get_scan_logs(
    user_id: Optional[str] = Query(None),
    location: Optional[LocationCode] = Query(None),
    action: Optional[Direction] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db)
):
    try:
        logs, total = await LogService.list_scans(
            db,
            user_id=user_id,
            location=location,
            action=action,
            start_date=start_date,
            end_date=end_date,
            page=page,
            limit=limit
        )
        return {"logs": logs, "pagination": paginate(page, limit, total)}

    except Exception as e:
        logger.error(f"Scan log error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get(
    "/location-history/{user_id}",
    response_model=LocationHistoryResponse,
    summary="Location History",
    description="A user's scans over the last N days, grouped by date."
)
async def get_location_history(
    user_id: str,
    days: int = Query(7, ge=1, le=90),
    db: AsyncSession = Depends(get_db)
):
    try:
        history = await LogService.location_history(db, user_id, days)
        return {"user_id": user_id, "days": days, "history": history}

    except Exception as e:
        logger.error(f"Location history error: {e}")
        raise HTTPException(status_code=500, detail=str(e))
