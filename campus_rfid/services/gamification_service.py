"""
Gamification Ledger.
Rules-based points, levels and badges for students. Deterministic and
auditable: every change to total_points has a matching history entry.

Point policy:
| Trigger                           | Points |
|-----------------------------------|--------|
| Classroom entry                   | 5      |
| Library entry                     | 3      |
| Mess visit                        | 2      |
| Welcome bonus (profile creation)  | 50     |

Levels: level = number of thresholds <= total_points, capped at the table
length. Badges are evaluated on demand over a trailing window and are
awarded at most once per name.
"""
from bisect import bisect_right
from datetime import datetime
from typing import Optional, List, Dict, Any, Tuple, Iterable
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_, case
import logging

from campus_rfid.config import settings
from campus_rfid.models.database_models import (
    User, ScanEvent, GamificationProfile, EarnedBadge, PointsHistoryEntry,
    MessTransaction
)
from campus_rfid.schemas.schemas import (
    is_student, LocationCode, Direction, AttendanceStatus, LeaderboardType
)
from campus_rfid.services.attendance_service import AttendanceService
from campus_rfid.utils.clock import campus_now, window_start, minutes_between
from campus_rfid.utils.sql import insert_or_ignore

logger = logging.getLogger(__name__)

LEVEL_THRESHOLDS = [0, 100, 300, 600, 1000, 1500, 2100, 2800, 3600, 4500, 5500]

WELCOME_BONUS = 50

# (points, reason) for entry scans, keyed by location
SCAN_POINTS = {
    LocationCode.classroom.value: (5, "Class attendance"),
    LocationCode.library.value: (3, "Library visit"),
    LocationCode.mess.value: (2, "Mess visit"),
}

MESS_VISIT_POINTS = 2

# Visit counter bumped by each award category. attendance_streak is not a
# counter; it is derived from attendance records (AttendanceService.current_streak).
VISIT_COUNTERS = {
    LocationCode.mess.value: "mess_streak",
    LocationCode.library.value: "library_streak",
}

WELCOME_BADGE = {
    "name": "Welcome",
    "description": "Welcome to RFID University!",
    "icon": "👋",
    "points": WELCOME_BONUS,
}

BADGES = {
    "perfect_attendance": {
        "name": "Perfect Attendance",
        "description": "Attended all classes this week",
        "icon": "🎯",
        "points": 100,
    },
    "early_bird": {
        "name": "Early Bird",
        "description": "First to enter classroom 5 times",
        "icon": "🌅",
        "points": 50,
    },
    "library_champion": {
        "name": "Library Champion",
        "description": "Spent 20+ hours in library this week",
        "icon": "📚",
        "points": 75,
    },
    "mess_regular": {
        "name": "Mess Regular",
        "description": "Never missed a meal this week",
        "icon": "🍽️",
        "points": 30,
    },
}

EARLY_BIRD_MIN_ENTRIES = 5
LIBRARY_CHAMPION_MIN_HOURS = 20
MESS_REGULAR_MIN_DAYS = 5


def compute_level(total_points: int) -> int:
    """Level for a points total; 99 -> 1, 100 -> 2, capped at len(LEVEL_THRESHOLDS)."""
    level = bisect_right(LEVEL_THRESHOLDS, total_points)
    return max(1, min(level, len(LEVEL_THRESHOLDS)))


def level_expression(total):
    """compute_level as a SQL CASE over a column expression."""
    ranked = list(enumerate(LEVEL_THRESHOLDS, start=1))
    return case(
        *[(total >= threshold, level) for level, threshold in reversed(ranked)],
        else_=1
    )


def points_to_next_level(level: int, total_points: int) -> int:
    if level >= len(LEVEL_THRESHOLDS):
        return 0
    return max(0, LEVEL_THRESHOLDS[level] - total_points)


def library_minutes(events: Iterable[ScanEvent]) -> int:
    """
    Minutes spent in the library from chronologically ordered scans.
    Events are paired two at a time; only an entry followed by an exit
    counts, and a trailing unpaired entry contributes nothing.
    """
    ordered = list(events)
    total = 0
    for i in range(0, len(ordered) - 1, 2):
        first, second = ordered[i], ordered[i + 1]
        if first.direction == Direction.entry.value and second.direction == Direction.exit.value:
            total += max(0, minutes_between(second.occurred_at, first.occurred_at))
    return total


def distinct_days(moments: Iterable[datetime]) -> int:
    return len({m.date() for m in moments})


class GamificationService:
    """Points ledger, level computation and badge evaluation."""

    @staticmethod
    def applies_to(subject: User) -> bool:
        return is_student(subject)

    @staticmethod
    def points_for_scan(scan: ScanEvent) -> Optional[Tuple[int, str]]:
        """(points, reason) earned by a scan, or None."""
        if scan.direction != Direction.entry.value:
            return None
        return SCAN_POINTS.get(scan.location_code)

    @staticmethod
    async def _load_profile(
        db: AsyncSession,
        subject_id: str,
        for_update: bool = False
    ) -> Optional[GamificationProfile]:
        query = select(GamificationProfile).where(GamificationProfile.subject_id == subject_id)
        if for_update:
            # Re-read under the lock so totals are never stale
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_profile(db: AsyncSession, subject_id: str) -> Optional[GamificationProfile]:
        return await GamificationService._load_profile(db, subject_id)

    @staticmethod
    async def get_or_create_profile(
        db: AsyncSession,
        subject_id: str,
        now: Optional[datetime] = None,
        for_update: bool = False
    ) -> GamificationProfile:
        """
        Fetch the subject's profile, creating it with the welcome bonus
        and welcome badge on first use.
        """
        profile = await GamificationService._load_profile(db, subject_id, for_update)
        if profile is not None:
            return profile

        now = now or campus_now()
        profile_id = await insert_or_ignore(
            db,
            GamificationProfile,
            {
                "subject_id": subject_id,
                "total_points": WELCOME_BONUS,
                "level": compute_level(WELCOME_BONUS),
                "attendance_streak": await AttendanceService.current_streak(db, subject_id),
                "created_at": now,
                "last_updated": now,
            },
            ["subject_id"]
        )
        if profile_id is not None:
            db.add(EarnedBadge(profile_id=profile_id, earned_at=now, **WELCOME_BADGE))
            db.add(PointsHistoryEntry(
                profile_id=profile_id,
                points=WELCOME_BONUS,
                reason="Welcome bonus",
                category="welcome",
                at=now
            ))
            await db.flush()
            logger.info(f"Created gamification profile for {subject_id}")

        return await GamificationService._load_profile(db, subject_id, for_update)

    @staticmethod
    async def _apply(
        db: AsyncSession,
        profile: GamificationProfile,
        points: int,
        reason: str,
        category: str,
        now: datetime
    ) -> None:
        db.add(PointsHistoryEntry(
            profile_id=profile.id,
            points=points,
            reason=reason,
            category=category,
            at=now
        ))

        # Counters are incremented in the UPDATE itself, never from the loaded value
        new_total = GamificationProfile.total_points + points
        profile.total_points = new_total
        profile.level = level_expression(new_total)
        counters = ["total_points", "level"]

        counter = VISIT_COUNTERS.get(category)
        if counter:
            setattr(profile, counter, getattr(GamificationProfile, counter) + 1)
            counters.append(counter)

        profile.last_updated = now
        await db.flush()
        await db.refresh(profile, counters)

    @staticmethod
    async def award_points(
        db: AsyncSession,
        subject_id: str,
        points: int,
        reason: str,
        category: str = "general",
        now: Optional[datetime] = None
    ) -> GamificationProfile:
        """
        Add points to the subject's profile and recompute the level.

        The profile row is locked for the duration of the caller's
        transaction so concurrent awards to one subject serialize.
        """
        if points < 0:
            raise ValueError("points must be non-negative")

        now = now or campus_now()
        profile = await GamificationService.get_or_create_profile(db, subject_id, now, for_update=True)
        await GamificationService._apply(db, profile, points, reason, category, now)
        logger.debug(f"Awarded {points} points to {subject_id} ({reason}); total {profile.total_points}")
        return profile

    # ------------------------------------------------------------------
    # Badge predicates (trailing window)
    # ------------------------------------------------------------------
    @staticmethod
    async def _perfect_attendance(db: AsyncSession, subject_id: str, since: datetime) -> bool:
        records = await AttendanceService.records_since(db, subject_id, since)
        absent = [r for r in records if r.status == AttendanceStatus.absent.value]
        return len(records) > 0 and not absent

    @staticmethod
    async def _early_bird(db: AsyncSession, subject_id: str, since: datetime) -> bool:
        # Counts classroom entries; arrival order within a class is not tracked
        result = await db.execute(
            select(func.count(ScanEvent.id)).where(
                and_(
                    ScanEvent.subject_id == subject_id,
                    ScanEvent.location_code == LocationCode.classroom.value,
                    ScanEvent.direction == Direction.entry.value,
                    ScanEvent.occurred_at >= since
                )
            )
        )
        return (result.scalar() or 0) >= EARLY_BIRD_MIN_ENTRIES

    @staticmethod
    async def _library_champion(db: AsyncSession, subject_id: str, since: datetime) -> bool:
        result = await db.execute(
            select(ScanEvent).where(
                and_(
                    ScanEvent.subject_id == subject_id,
                    ScanEvent.location_code == LocationCode.library.value,
                    ScanEvent.occurred_at >= since
                )
            ).order_by(ScanEvent.occurred_at, ScanEvent.id)
        )
        hours = library_minutes(result.scalars().all()) // 60
        return hours >= LIBRARY_CHAMPION_MIN_HOURS

    @staticmethod
    async def _mess_regular(db: AsyncSession, subject_id: str, since: datetime) -> bool:
        result = await db.execute(
            select(MessTransaction.occurred_at).where(
                and_(
                    MessTransaction.subject_id == subject_id,
                    MessTransaction.occurred_at >= since
                )
            )
        )
        return distinct_days(result.scalars().all()) >= MESS_REGULAR_MIN_DAYS

    @staticmethod
    async def evaluate_badges(
        db: AsyncSession,
        subject_id: str,
        now: Optional[datetime] = None
    ) -> List[EarnedBadge]:
        """
        Check every badge predicate and award the ones not yet earned.
        Each new badge adds its points and triggers a level recompute.
        """
        now = now or campus_now()
        since = window_start(now, settings.BADGE_WINDOW_DAYS)
        profile = await GamificationService.get_or_create_profile(db, subject_id, now, for_update=True)
        earned = {badge.name for badge in profile.badges}

        predicates = {
            "perfect_attendance": GamificationService._perfect_attendance,
            "early_bird": GamificationService._early_bird,
            "library_champion": GamificationService._library_champion,
            "mess_regular": GamificationService._mess_regular,
        }

        new_badges = []
        for key, predicate in predicates.items():
            definition = BADGES[key]
            if definition["name"] in earned:
                continue
            if not await predicate(db, subject_id, since):
                continue

            badge = EarnedBadge(earned_at=now, **definition)
            profile.badges.append(badge)
            await GamificationService._apply(db, profile, definition["points"], f"Badge earned: {definition['name']}", "badge", now)
            new_badges.append(badge)
            earned.add(definition["name"])

        if new_badges:
            await db.flush()
            logger.info(f"{subject_id} earned {len(new_badges)} badge(s)")

        return new_badges

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------
    @staticmethod
    async def get_points_history(
        db: AsyncSession,
        subject_id: str,
        page: int = 1,
        limit: int = 20
    ) -> Tuple[List[PointsHistoryEntry], int]:
        """History entries newest first; (entries, total)."""
        profile = await GamificationService.get_profile(db, subject_id)
        if profile is None:
            return [], 0

        total = (await db.execute(
            select(func.count(PointsHistoryEntry.id)).where(PointsHistoryEntry.profile_id == profile.id)
        )).scalar() or 0

        result = await db.execute(
            select(PointsHistoryEntry)
            .where(PointsHistoryEntry.profile_id == profile.id)
            .order_by(PointsHistoryEntry.at.desc(), PointsHistoryEntry.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    @staticmethod
    def badge_catalog(profile: Optional[GamificationProfile] = None) -> List[Dict[str, Any]]:
        earned = {b.name for b in profile.badges} if profile else None
        catalog = []
        for definition in BADGES.values():
            item = dict(definition)
            if earned is not None:
                item["earned"] = definition["name"] in earned
            catalog.append(item)
        return catalog

    @staticmethod
    async def get_leaderboard(
        db: AsyncSession,
        board_type: LeaderboardType = LeaderboardType.overall,
        viewer: Optional[User] = None,
        limit: int = 50
    ) -> Dict[str, Any]:
        """
        Profiles ranked by points then level. Department and year boards
        are scoped to the viewing student's cohort.
        """
        conditions = [User.is_active.is_(True)]
        if viewer is not None and is_student(viewer):
            if board_type == LeaderboardType.department:
                conditions.append(User.department == viewer.department)
            elif board_type == LeaderboardType.year:
                conditions.append(User.year == viewer.year)

        base = (
            select(GamificationProfile, User)
            .join(User, User.user_id == GamificationProfile.subject_id)
            .where(and_(*conditions))
        )
        result = await db.execute(
            base.order_by(GamificationProfile.total_points.desc(), GamificationProfile.level.desc())
            .limit(limit)
        )
        rows = result.all()

        leaderboard = [
            {
                "rank": index + 1,
                "user_id": user.user_id,
                "user_name": user.name,
                "department": user.department,
                "year": user.year,
                "total_points": profile.total_points,
                "level": profile.level,
                "badge_count": len(profile.badges),
            }
            for index, (profile, user) in enumerate(rows)
        ]

        total_users = (await db.execute(
            select(func.count(GamificationProfile.id))
            .join(User, User.user_id == GamificationProfile.subject_id)
            .where(and_(*conditions))
        )).scalar() or 0

        user_rank = None
        if viewer is not None and is_student(viewer):
            own = await GamificationService.get_profile(db, viewer.user_id)
            if own is not None:
                better = (await db.execute(
                    select(func.count(GamificationProfile.id))
                    .join(User, User.user_id == GamificationProfile.subject_id)
                    .where(and_(*conditions, GamificationProfile.total_points > own.total_points))
                )).scalar() or 0
                user_rank = better + 1

        return {
            "type": board_type,
            "leaderboard": leaderboard,
            "user_rank": user_rank,
            "total_users": total_users,
        }
