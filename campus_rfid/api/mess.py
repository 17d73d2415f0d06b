"""
Mess API endpoints.
Dining swipes at mess/food venues and the mess ledger.
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
    MessTransactionRequest,
    MessEntryResponse,
    MessLogPage,
    MessStatsResponse,
    MealType,
    StatsPeriod
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/mess", tags=["Mess"])


@router.post(
    "/entry",
    response_model=MessEntryResponse,
    summary="Record Mess Entry",
    description="""
    Record a dining swipe.

    - Student only; the presented card must be the student's card
    - final_amount = cost * (1 - discount_percent / 100)
    - Awards 2 points ("Mess visit")
    - Notifies the warden dashboard
    """
)
async def record_mess_entry(
    request: MessTransactionRequest,
    db: AsyncSession = Depends(get_db),
    orchestrator: ScanOrchestrator = Depends(get_scan_orchestrator)
):
    try:
        outcome = await orchestrator.handle_mess_transaction(db, request)
    except CampusError as e:
        raise http_error(e)

    return MessEntryResponse(
        success=True,
        message="Mess entry recorded successfully",
        transaction=outcome.transaction,
        points_awarded=outcome.points_awarded
    )


@router.get(
    "/logs",
    response_model=MessLogPage,
    summary="List Mess Transactions"
)
async def get_mess_logs(
    user_id: Optional[str] = Query(None),
    meal_type: Optional[MealType] = Query(None),
    on_date: Optional[date] = Query(None, alias="date"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db)
):
    try:
        transactions, total = await LogService.list_mess_transactions(
            db,
            user_id=user_id,
            meal_type=meal_type,
            on_date=on_date,
            page=page,
            limit=limit
        )
        return {"transactions": transactions, "pagination": paginate(page, limit, total)}

    except Exception as e:
        logger.error(f"Mess log error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get(
    "/stats",
    response_model=MessStatsResponse,
    summary="Mess Statistics",
    description="""
    Spending summary, meal-type distribution and daily pattern.

    - `period`: today, week (trailing 7 days) or month (trailing 30 days)
    - `user_id`: one student; otherwise `warden_id` scopes to the
      warden's hostel, and with neither every transaction counts
    """
)
async def get_mess_stats(
    period: StatsPeriod = Query(StatsPeriod.week),
    user_id: Optional[str] = Query(None),
    warden_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    try:
        return await LogService.mess_stats(
            db,
            period=period,
            student_id=user_id,
            warden_id=warden_id
        )
    except CampusError as e:
        raise http_error(e)
