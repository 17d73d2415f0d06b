"""
Log Service.
Read side of the scan log and the mess ledger.
"""
import math
from collections import OrderedDict
from datetime import datetime, date, timedelta
from typing import Optional, List, Dict, Any, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_
import logging

from campus_rfid.exceptions import RecordNotFound
from campus_rfid.models.database_models import User, ScanEvent, MessTransaction
from campus_rfid.schemas.schemas import Role, LocationCode, Direction, MealType, StatsPeriod
from campus_rfid.services.directory_service import DirectoryService
from campus_rfid.utils.clock import campus_now, window_start

logger = logging.getLogger(__name__)

STATS_PERIOD_DAYS = {StatsPeriod.week: 7, StatsPeriod.month: 30}


def paginate(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "current": page,
        "pages": math.ceil(total / limit) if limit else 0,
        "total": total,
    }


class LogService:

    @staticmethod
    async def list_scans(
        db: AsyncSession,
        user_id: Optional[str] = None,
        location: Optional[LocationCode] = None,
        action: Optional[Direction] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: int = 50
    ) -> Tuple[List[ScanEvent], int]:
        """Scan log newest first; date bounds are inclusive calendar days."""
        conditions = []
        if user_id:
            conditions.append(ScanEvent.subject_id == user_id)
        if location:
            conditions.append(ScanEvent.location_code == location.value)
        if action:
            conditions.append(ScanEvent.direction == action.value)
        if start_date:
            conditions.append(ScanEvent.occurred_at >= datetime.combine(start_date, datetime.min.time()))
        if end_date:
            conditions.append(
                ScanEvent.occurred_at < datetime.combine(end_date + timedelta(days=1), datetime.min.time())
            )

        query = select(ScanEvent)
        count_query = select(func.count(ScanEvent.id))
        if conditions:
            query = query.where(and_(*conditions))
            count_query = count_query.where(and_(*conditions))

        total = (await db.execute(count_query)).scalar() or 0
        result = await db.execute(
            query.order_by(ScanEvent.occurred_at.desc(), ScanEvent.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    @staticmethod
    async def location_history(
        db: AsyncSession,
        user_id: str,
        days: int = 7,
        now: Optional[datetime] = None
    ) -> Dict[str, List[ScanEvent]]:
        """Scans of the last `days` days grouped by ISO date, newest day first."""
        since = window_start(now or campus_now(), days)
        result = await db.execute(
            select(ScanEvent).where(
                and_(
                    ScanEvent.subject_id == user_id,
                    ScanEvent.occurred_at >= since
                )
            ).order_by(ScanEvent.occurred_at.desc(), ScanEvent.id.desc())
        )

        history: Dict[str, List[ScanEvent]] = OrderedDict()
        for scan in result.scalars().all():
            history.setdefault(scan.occurred_at.date().isoformat(), []).append(scan)
        return history

    @staticmethod
    async def list_mess_transactions(
        db: AsyncSession,
        user_id: Optional[str] = None,
        meal_type: Optional[MealType] = None,
        on_date: Optional[date] = None,
        page: int = 1,
        limit: int = 50
    ) -> Tuple[List[MessTransaction], int]:
        conditions = []
        if user_id:
            conditions.append(MessTransaction.subject_id == user_id)
        if meal_type:
            conditions.append(MessTransaction.meal_type == meal_type.value)
        if on_date:
            day_start = datetime.combine(on_date, datetime.min.time())
            conditions.append(MessTransaction.occurred_at >= day_start)
            conditions.append(MessTransaction.occurred_at < day_start + timedelta(days=1))

        query = select(MessTransaction)
        count_query = select(func.count(MessTransaction.id))
        if conditions:
            query = query.where(and_(*conditions))
            count_query = count_query.where(and_(*conditions))

        total = (await db.execute(count_query)).scalar() or 0
        result = await db.execute(
            query.order_by(MessTransaction.occurred_at.desc(), MessTransaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    @staticmethod
    async def mess_stats(
        db: AsyncSession,
        period: StatsPeriod = StatsPeriod.week,
        student_id: Optional[str] = None,
        warden_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Mess spending over a period: summary totals, meal-type distribution
        and the daily pattern (oldest day first).

        `today` starts at campus midnight; `week` and `month` are trailing
        7 and 30 days. Without a student, a warden sees the active students
        of their hostel.
        """
        now = now or campus_now()
        if period == StatsPeriod.today:
            since = datetime.combine(now.date(), datetime.min.time())
        else:
            since = window_start(now, STATS_PERIOD_DAYS[period])

        conditions = [MessTransaction.occurred_at >= since]
        if student_id:
            conditions.append(MessTransaction.subject_id == student_id)
        elif warden_id:
            warden = await DirectoryService.get_user(db, warden_id)
            if warden is None or warden.role != Role.warden.value:
                raise RecordNotFound("Warden not found")
            conditions.append(MessTransaction.subject_id.in_(
                select(User.user_id).where(
                    and_(
                        User.role == Role.student.value,
                        User.hostel_name == warden.hostel_name,
                        User.is_active.is_(True)
                    )
                )
            ))

        summary = (await db.execute(
            select(
                func.count(MessTransaction.id),
                func.sum(MessTransaction.final_amount),
                func.avg(MessTransaction.final_amount)
            ).where(and_(*conditions))
        )).one()

        by_meal = await db.execute(
            select(
                MessTransaction.meal_type,
                func.count(MessTransaction.id),
                func.sum(MessTransaction.final_amount)
            )
            .where(and_(*conditions))
            .group_by(MessTransaction.meal_type)
            .order_by(MessTransaction.meal_type)
        )

        # Grouped here rather than in SQL; date() differs between backends
        daily: Dict[date, Dict[str, Any]] = {}
        rows = await db.execute(
            select(MessTransaction.occurred_at, MessTransaction.final_amount).where(and_(*conditions))
        )
        for occurred_at, amount in rows.all():
            day = daily.setdefault(occurred_at.date(), {"date": occurred_at.date(), "entries": 0, "spent": 0.0})
            day["entries"] += 1
            day["spent"] = round(day["spent"] + amount, 2)

        return {
            "period": period,
            "summary": {
                "total_entries": summary[0] or 0,
                "total_spent": round(summary[1] or 0, 2),
                "average_spent": round(summary[2] or 0, 2),
            },
            "meal_type_distribution": [
                {"meal_type": meal_type, "count": count, "total_cost": round(total or 0, 2)}
                for meal_type, count, total in by_meal.all()
            ],
            "daily_pattern": [daily[day] for day in sorted(daily)],
        }
