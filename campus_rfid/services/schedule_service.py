"""
Schedule Service.
Finds the class sessions running in a room at a given moment.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
import logging

from campus_rfid.models.database_models import User, ClassSession, ScheduleSlot, Enrollment
from campus_rfid.utils.clock import weekday_name, at_time

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActiveSession:
    session: ClassSession
    slot: ScheduleSlot
    scheduled_start: datetime
    scheduled_end: datetime

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def time_slot(self) -> str:
        return f"{self.slot.start_time:%H:%M}-{self.slot.end_time:%H:%M}"


class ScheduleService:
    """Weekly timetable lookups."""

    @staticmethod
    def slot_contains(slot: ScheduleSlot, now: datetime) -> bool:
        """Boundaries are inclusive at minute resolution, as the timetable is HH:MM."""
        minute_of_day = now.time().replace(second=0, microsecond=0)
        return slot.start_time <= minute_of_day <= slot.end_time

    @staticmethod
    async def find_active_sessions(
        db: AsyncSession,
        subject: User,
        location_label: str,
        now: datetime
    ) -> List[ActiveSession]:
        """
        Sessions the subject is enrolled in that meet in `location_label`
        on today's weekday with `now` inside the slot.

        Overlapping matches are all returned; an empty list simply means
        the entry was outside any scheduled window.
        """
        query = (
            select(ScheduleSlot)
            .join(ClassSession, ClassSession.session_id == ScheduleSlot.session_id)
            .join(Enrollment, Enrollment.session_id == ClassSession.session_id)
            .where(
                and_(
                    Enrollment.student_id == subject.user_id,
                    ScheduleSlot.room == location_label,
                    ScheduleSlot.day_of_week == weekday_name(now),
                    ClassSession.is_active.is_(True)
                )
            )
            .order_by(ScheduleSlot.start_time)
        )
        result = await db.execute(query)
        slots = result.unique().scalars().all()

        active = []
        for slot in slots:
            if not ScheduleService.slot_contains(slot, now):
                continue
            active.append(ActiveSession(
                session=slot.session,
                slot=slot,
                scheduled_start=at_time(now.date(), slot.start_time),
                scheduled_end=at_time(now.date(), slot.end_time)
            ))

        logger.debug(f"{len(active)} active session(s) for {subject.user_id} in {location_label}")
        return active
