"""
Notification sink.
Stores user-facing messages; dashboards poll or receive them over the
subject channel.
"""
from typing import Optional, List, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import logging

from campus_rfid.models.database_models import Notification
from campus_rfid.schemas.schemas import NotificationCategory
from campus_rfid.utils.clock import campus_now

logger = logging.getLogger(__name__)


class NotificationService:

    @staticmethod
    async def enqueue(
        db: AsyncSession,
        user_id: str,
        title: str,
        message: str,
        category: NotificationCategory = NotificationCategory.general,
        payload: Optional[Dict[str, Any]] = None
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            category=category.value,
            payload=payload,
            created_at=campus_now()
        )
        db.add(notification)
        await db.flush()
        return notification

    @staticmethod
    async def list_for_user(
        db: AsyncSession,
        user_id: str,
        unread_only: bool = False,
        limit: int = 50
    ) -> List[Notification]:
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        result = await db.execute(
            query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
        )
        return list(result.scalars().all())
