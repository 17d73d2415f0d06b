"""
Notification API endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import logging

from campus_rfid.database import get_db
from campus_rfid.services.notification_service import NotificationService
from campus_rfid.schemas.schemas import NotificationOut

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get(
    "/{user_id}",
    response_model=List[NotificationOut],
    summary="List Notifications"
)
async def list_notifications(
    user_id: str,
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db)
):
    try:
        return await NotificationService.list_for_user(db, user_id, unread_only, limit)

    except Exception as e:
        logger.error(f"Notification listing error: {e}")
        raise HTTPException(status_code=500, detail=str(e))
