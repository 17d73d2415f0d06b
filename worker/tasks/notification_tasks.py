"""
Notification background tasks.
"""
from typing import Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
import asyncio
import logging

from worker.celery_app import celery_app
from campus_rfid.config import settings
from campus_rfid.schemas.schemas import NotificationCategory
from campus_rfid.services.attendance_service import AttendanceService
from campus_rfid.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


async def warn_low_attendance(db: AsyncSession) -> Dict[str, Any]:
    """Notify every student whose attendance is under the warning threshold."""
    low = await AttendanceService.find_low_attendance(db)
    for row in low:
        await NotificationService.enqueue(
            db,
            user_id=row["student_id"],
            title="Low Attendance Warning",
            message=(
                f"Your attendance is {row['percentage']}%. Please attend classes regularly "
                f"to maintain minimum {settings.ATTENDANCE_WARNING_THRESHOLD:g}% attendance."
            ),
            category=NotificationCategory.attendance,
            payload={
                "attended": row["attended"],
                "total": row["total"],
                "percentage": row["percentage"],
            }
        )
    return {"success": True, "warned": len(low)}


@celery_app.task(name="worker.tasks.notification_tasks.send_attendance_warnings")
def send_attendance_warnings():
    """
    Daily sweep: students with enough recorded classes and attendance
    below ATTENDANCE_WARNING_THRESHOLD get a warning notification.
    """
    logger.info("Sending attendance warnings")

    try:
        from campus_rfid.database import async_session_maker

        async def run_warnings():
            async with async_session_maker() as db:
                result = await warn_low_attendance(db)
                await db.commit()
                return result

        result = asyncio.run(run_warnings())
        logger.info(f"Attendance warnings sent: {result['warned']}")
        return result

    except Exception as e:
        logger.error(f"Attendance warning error: {e}")
        return {"success": False, "error": str(e)}
