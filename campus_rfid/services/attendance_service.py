"""
Attendance Service.
Derives attendance records from classroom badge taps and applies
instructor corrections.

Rules:
- Only students entering a classroom produce attendance
- One record per (student, session, date); a second tap is a no-op
- late_minutes = max(0, whole minutes after scheduled start)
- Late only when late_minutes > LATE_THRESHOLD_MINUTES (10 by default)
- Manual (instructor) entries overwrite automatic ones, never the reverse
"""
from collections import OrderedDict
from datetime import datetime, date
from typing import Optional, List, Dict, Any, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, and_, case
import logging

from campus_rfid.config import settings
from campus_rfid.models.database_models import (
    User, AttendanceRecord, ClassSession, Enrollment, ScanEvent, GamificationProfile
)
from campus_rfid.schemas.schemas import (
    is_student, LocationCode, Direction, AttendanceStatus, AttendanceSource
)
from campus_rfid.services.schedule_service import ActiveSession
from campus_rfid.exceptions import NotAuthorized, NotEnrolled, InvalidQuery
from campus_rfid.utils.clock import minutes_between, campus_now, WEEKDAYS
from campus_rfid.utils.sql import insert_or_ignore

logger = logging.getLogger(__name__)

ATTENDED_STATUSES = (AttendanceStatus.present.value, AttendanceStatus.late.value)


class AttendanceService:
    """Attendance derivation and bookkeeping."""

    @staticmethod
    def applies_to(subject: User, scan: ScanEvent) -> bool:
        """Only student entries into a classroom count towards attendance."""
        return (
            is_student(subject)
            and scan.location_code == LocationCode.classroom.value
            and scan.direction == Direction.entry.value
        )

    @staticmethod
    def compute_late_minutes(now: datetime, scheduled_start: datetime) -> int:
        return max(0, minutes_between(now, scheduled_start))

    @staticmethod
    def determine_status(late_minutes: int, threshold: Optional[int] = None) -> AttendanceStatus:
        if threshold is None:
            threshold = settings.LATE_THRESHOLD_MINUTES
        if late_minutes > threshold:
            return AttendanceStatus.late
        return AttendanceStatus.present

    @staticmethod
    def attendance_percentage(attended: int, total: int) -> float:
        """Share of classes attended (present or late), 0-100."""
        if total <= 0:
            return 0.0
        return round(attended / total * 100, 2)

    @staticmethod
    async def current_streak(db: AsyncSession, student_id: str) -> int:
        """
        Consecutive attended (present or late) records counted back from the
        newest; the first absence ends the streak.
        """
        result = await db.execute(
            select(AttendanceRecord.status)
            .where(AttendanceRecord.student_id == student_id)
            .order_by(AttendanceRecord.date.desc(), AttendanceRecord.id.desc())
        )
        streak = 0
        for status in result.scalars():
            if status not in ATTENDED_STATUSES:
                break
            streak += 1
        return streak

    @staticmethod
    async def refresh_streak(db: AsyncSession, student_id: str) -> int:
        """Store the current streak on the student's gamification profile, if any."""
        streak = await AttendanceService.current_streak(db, student_id)
        await db.execute(
            update(GamificationProfile)
            .where(GamificationProfile.subject_id == student_id)
            .values(attendance_streak=streak)
        )
        return streak

    @staticmethod
    async def get_record(
        db: AsyncSession,
        student_id: str,
        session_id: str,
        on_date: date
    ) -> Optional[AttendanceRecord]:
        result = await db.execute(
            select(AttendanceRecord).where(
                and_(
                    AttendanceRecord.student_id == student_id,
                    AttendanceRecord.session_id == session_id,
                    AttendanceRecord.date == on_date
                )
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def derive_attendance(
        db: AsyncSession,
        subject: User,
        active: ActiveSession,
        now: datetime,
        scan_event_id: Optional[int] = None
    ) -> Optional[AttendanceRecord]:
        """
        Create the automatic record for one active session, or return None.

        An existing record for (student, session, today) wins, whatever its
        source; a concurrent insert of the same key is a silent no-op.
        """
        today = now.date()
        existing = await AttendanceService.get_record(db, subject.user_id, active.session_id, today)
        if existing is not None:
            logger.debug(
                f"Attendance already recorded for {subject.user_id}/{active.session_id}/{today}"
            )
            return None

        late_minutes = AttendanceService.compute_late_minutes(now, active.scheduled_start)
        status = AttendanceService.determine_status(late_minutes)

        record_id = await insert_or_ignore(
            db,
            AttendanceRecord,
            {
                "student_id": subject.user_id,
                "session_id": active.session_id,
                "date": today,
                "status": status.value,
                "late_minutes": late_minutes,
                "source": AttendanceSource.automatic.value,
                "teacher_id": active.session.teacher_id,
                "time_slot": active.time_slot,
                "room": active.slot.room,
                "notes": f"{late_minutes} minutes late" if late_minutes > 0 else "On time",
                "scan_event_id": scan_event_id,
                "recorded_at": now,
            },
            ["student_id", "session_id", "date"]
        )
        if record_id is None:
            logger.info(
                f"Concurrent attendance insert for {subject.user_id}/{active.session_id}/{today} ignored"
            )
            return None

        await AttendanceService.refresh_streak(db, subject.user_id)
        return await db.get(AttendanceRecord, record_id)

    @staticmethod
    async def _owned_session(
        db: AsyncSession,
        session_id: str,
        teacher_id: Optional[str],
        message: str
    ) -> ClassSession:
        result = await db.execute(
            select(ClassSession).where(
                and_(
                    ClassSession.session_id == session_id,
                    ClassSession.teacher_id == teacher_id
                )
            )
        )
        class_session = result.scalar_one_or_none()
        if class_session is None:
            raise NotAuthorized(message)
        return class_session

    @staticmethod
    async def mark_manual(
        db: AsyncSession,
        teacher_id: str,
        student_id: str,
        session_id: str,
        on_date: date,
        status: AttendanceStatus,
        notes: Optional[str] = None,
        late_minutes: Optional[int] = None
    ) -> Tuple[AttendanceRecord, bool]:
        """
        Instructor marks or corrects attendance.

        Returns (record, created). An existing record for the key, automatic
        or manual, is overwritten in place.
        """
        class_session = await AttendanceService._owned_session(
            db, session_id, teacher_id, "Not authorized to mark attendance for this class"
        )

        enrolled = await db.execute(
            select(Enrollment.id).where(
                and_(
                    Enrollment.session_id == session_id,
                    Enrollment.student_id == student_id
                )
            )
        )
        if enrolled.scalar_one_or_none() is None:
            raise NotEnrolled("Student is not enrolled in this class")

        if status != AttendanceStatus.late:
            late_minutes = 0

        now = campus_now()
        created = False
        record = await AttendanceService.get_record(db, student_id, session_id, on_date)
        if record is None:
            slot = next(
                (s for s in class_session.slots if s.day_of_week == WEEKDAYS[on_date.weekday()]),
                None
            )
            record_id = await insert_or_ignore(
                db,
                AttendanceRecord,
                {
                    "student_id": student_id,
                    "session_id": session_id,
                    "date": on_date,
                    "status": status.value,
                    "late_minutes": late_minutes or 0,
                    "source": AttendanceSource.manual_teacher.value,
                    "teacher_id": teacher_id,
                    "time_slot": f"{slot.start_time:%H:%M}-{slot.end_time:%H:%M}" if slot else None,
                    "room": slot.room if slot else None,
                    "notes": notes,
                    "recorded_at": now,
                },
                ["student_id", "session_id", "date"]
            )
            if record_id is not None:
                record = await db.get(AttendanceRecord, record_id)
                created = True
            else:
                # An automatic record for the key landed first; override it
                record = await AttendanceService.get_record(db, student_id, session_id, on_date)

        if not created:
            record.status = status.value
            if late_minutes is not None:
                record.late_minutes = late_minutes
            record.source = AttendanceSource.manual_teacher.value
            record.teacher_id = teacher_id
            record.notes = notes or record.notes
            record.updated_at = now
            await db.flush()
            logger.info(f"Attendance for {student_id}/{session_id}/{on_date} overridden by {teacher_id}")

        await AttendanceService.refresh_streak(db, student_id)
        return record, created

    @staticmethod
    async def list_records(
        db: AsyncSession,
        student_id: Optional[str] = None,
        session_id: Optional[str] = None,
        on_date: Optional[date] = None,
        page: int = 1,
        limit: int = 20
    ) -> Tuple[List[AttendanceRecord], int]:
        conditions = []
        if student_id:
            conditions.append(AttendanceRecord.student_id == student_id)
        if session_id:
            conditions.append(AttendanceRecord.session_id == session_id)
        if on_date:
            conditions.append(AttendanceRecord.date == on_date)

        query = select(AttendanceRecord)
        count_query = select(func.count(AttendanceRecord.id))
        if conditions:
            query = query.where(and_(*conditions))
            count_query = count_query.where(and_(*conditions))

        total = (await db.execute(count_query)).scalar() or 0
        result = await db.execute(
            query.order_by(AttendanceRecord.date.desc(), AttendanceRecord.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    @staticmethod
    async def records_since(
        db: AsyncSession,
        student_id: str,
        since: datetime
    ) -> List[AttendanceRecord]:
        result = await db.execute(
            select(AttendanceRecord).where(
                and_(
                    AttendanceRecord.student_id == student_id,
                    AttendanceRecord.recorded_at >= since
                )
            )
        )
        return list(result.scalars().all())

    @staticmethod
    async def find_low_attendance(
        db: AsyncSession,
        min_classes: Optional[int] = None,
        threshold: Optional[float] = None
    ) -> List[Dict[str, Any]]:
        """Students with at least `min_classes` records attending under `threshold` percent."""
        if min_classes is None:
            min_classes = settings.ATTENDANCE_WARNING_MIN_CLASSES
        if threshold is None:
            threshold = settings.ATTENDANCE_WARNING_THRESHOLD

        attended = func.sum(case((AttendanceRecord.status.in_(ATTENDED_STATUSES), 1), else_=0))
        result = await db.execute(
            select(
                AttendanceRecord.student_id,
                func.count(AttendanceRecord.id).label("total"),
                attended.label("attended")
            )
            .group_by(AttendanceRecord.student_id)
            .having(func.count(AttendanceRecord.id) >= min_classes)
        )

        low = []
        for row in result.all():
            percentage = AttendanceService.attendance_percentage(int(row.attended or 0), row.total)
            if percentage < threshold:
                low.append({
                    "student_id": row.student_id,
                    "total": row.total,
                    "attended": int(row.attended or 0),
                    "percentage": percentage
                })
        return low

    @staticmethod
    def _status_counts():
        def count(status: AttendanceStatus):
            return func.sum(case((AttendanceRecord.status == status.value, 1), else_=0))

        return (
            func.count(AttendanceRecord.id).label("total"),
            count(AttendanceStatus.present).label("present"),
            count(AttendanceStatus.late).label("late"),
            count(AttendanceStatus.absent).label("absent"),
        )

    @staticmethod
    def _stats_row(row, **identity) -> Dict[str, Any]:
        present, late, absent = int(row.present or 0), int(row.late or 0), int(row.absent or 0)
        return {
            **identity,
            "total": row.total,
            "present": present,
            "late": late,
            "absent": absent,
            "percentage": AttendanceService.attendance_percentage(present + late, row.total),
        }

    @staticmethod
    async def stats(
        db: AsyncSession,
        student_id: Optional[str] = None,
        session_id: Optional[str] = None,
        teacher_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Present / late / absent counts with the attendance percentage.

        Given a student: one row per class the student has records for,
        narrowed to `session_id` when given. Given only a class: one row per
        student, and only the class's instructor may ask.
        """
        if not student_id and not session_id:
            raise InvalidQuery("Either student_id or session_id is required")

        if student_id:
            conditions = [AttendanceRecord.student_id == student_id]
            if session_id:
                conditions.append(AttendanceRecord.session_id == session_id)
            result = await db.execute(
                select(AttendanceRecord.session_id, ClassSession.class_name, *AttendanceService._status_counts())
                .outerjoin(ClassSession, ClassSession.session_id == AttendanceRecord.session_id)
                .where(and_(*conditions))
                .group_by(AttendanceRecord.session_id, ClassSession.class_name)
                .order_by(AttendanceRecord.session_id)
            )
            return [
                AttendanceService._stats_row(row, session_id=row.session_id, class_name=row.class_name)
                for row in result.all()
            ]

        await AttendanceService._owned_session(
            db, session_id, teacher_id, "Not authorized to view attendance for this class"
        )
        result = await db.execute(
            select(AttendanceRecord.student_id, User.name, *AttendanceService._status_counts())
            .outerjoin(User, User.user_id == AttendanceRecord.student_id)
            .where(AttendanceRecord.session_id == session_id)
            .group_by(AttendanceRecord.student_id, User.name)
            .order_by(AttendanceRecord.student_id)
        )
        return [
            AttendanceService._stats_row(
                row, student_id=row.student_id, student_name=row.name or "Unknown"
            )
            for row in result.all()
        ]

    @staticmethod
    async def report(
        db: AsyncSession,
        teacher_id: str,
        session_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> Dict[str, Any]:
        """A class's attendance grouped by date, newest date first. Bounds are inclusive."""
        class_session = await AttendanceService._owned_session(
            db, session_id, teacher_id, "Not authorized to generate report for this class"
        )

        conditions = [AttendanceRecord.session_id == session_id]
        if start_date:
            conditions.append(AttendanceRecord.date >= start_date)
        if end_date:
            conditions.append(AttendanceRecord.date <= end_date)

        result = await db.execute(
            select(AttendanceRecord, User.name)
            .outerjoin(User, User.user_id == AttendanceRecord.student_id)
            .where(and_(*conditions))
            .order_by(AttendanceRecord.date.desc(), AttendanceRecord.student_id)
        )

        days: Dict[date, Dict[str, Any]] = OrderedDict()
        for record, name in result.all():
            day = days.setdefault(record.date, {
                "date": record.date,
                "time_slot": record.time_slot,
                "attendance": [],
            })
            day["attendance"].append({
                "student_id": record.student_id,
                "student_name": name or "Unknown",
                "status": record.status,
            })

        return {
            "session_id": session_id,
            "class_name": class_session.class_name,
            "report_period": {"start_date": start_date, "end_date": end_date},
            "total_days": len(days),
            "report": list(days.values()),
        }
