from datetime import timedelta

import pytest

from campus_rfid.database import async_session_maker
from campus_rfid.models.database_models import (
    User, AttendanceRecord, ScanEvent, MessTransaction, PointsHistoryEntry, GamificationProfile, EarnedBadge
)
from campus_rfid.schemas.schemas import LeaderboardType, is_student
from campus_rfid.services.directory_service import DirectoryService
from campus_rfid.services.gamification_service import (
    GamificationService, compute_level, points_to_next_level, library_minutes,
    LEVEL_THRESHOLDS, WELCOME_BONUS
)

from conftest import MONDAY, at, scan_request, fetch_all

STUDENT_ID = "RA21CSE001"


@pytest.mark.parametrize(
    "points, level",
    [(0, 1), (99, 1), (100, 2), (299, 2), (300, 3), (5499, 10), (5500, 11), (100000, 11)],
)
def test_compute_level(points, level):
    assert compute_level(points) == level


def test_points_to_next_level():
    assert points_to_next_level(1, 50) == 50
    assert points_to_next_level(2, 100) == 200
    assert points_to_next_level(len(LEVEL_THRESHOLDS), 9000) == 0


def _scan(direction, moment, location="library"):
    return ScanEvent(
        subject_id=STUDENT_ID, badge_id="RFC123456001", location_code=location,
        location_label="Central Library", direction=direction, device_id="LIB-1",
        occurred_at=moment
    )


def test_library_minutes_pairs_entries_with_exits():
    events = [
        _scan("entry", at(10, 0)),
        _scan("exit", at(12, 30)),
        _scan("entry", at(14, 0)),   # trailing entry without exit
    ]
    assert library_minutes(events) == 150


def test_library_minutes_ignores_misordered_pairs():
    events = [_scan("exit", at(10, 0)), _scan("entry", at(11, 0))]
    assert library_minutes(events) == 0


async def test_first_award_creates_profile_with_welcome_bonus(db):
    profile = await GamificationService.award_points(db, STUDENT_ID, 5, "Class attendance", "classroom", at(9, 5))
    await db.commit()

    assert profile.total_points == WELCOME_BONUS + 5
    assert profile.level == 1
    assert profile.attendance_streak == 0
    assert [b.name for b in profile.badges] == ["Welcome"]

    history = await fetch_all(PointsHistoryEntry)
    assert [(h.points, h.category) for h in history] == [(50, "welcome"), (5, "classroom")]


async def test_level_recomputed_on_award(db):
    await GamificationService.award_points(db, STUDENT_ID, 49, "Bonus", now=at(9, 0))
    profile = await GamificationService.award_points(db, STUDENT_ID, 1, "Bonus", now=at(9, 1))
    await db.commit()

    assert profile.total_points == 100
    assert profile.level == 2


async def test_awards_are_order_independent(db):
    for points in (5, 3, 2):
        await GamificationService.award_points(db, "RA21CSE001", points, "Visit", now=at(9, 0))
    for points in (2, 5, 3):
        await GamificationService.award_points(db, "RA21CSE002", points, "Visit", now=at(9, 0))
    await db.commit()

    first = await GamificationService.get_profile(db, "RA21CSE001")
    second = await GamificationService.get_profile(db, "RA21CSE002")
    assert first.total_points == second.total_points == WELCOME_BONUS + 10


async def test_negative_points_rejected(db):
    with pytest.raises(ValueError):
        await GamificationService.award_points(db, STUDENT_ID, -5, "Penalty")


async def test_get_or_create_profile_is_idempotent(db):
    first = await GamificationService.get_or_create_profile(db, STUDENT_ID, at(8, 0))
    second = await GamificationService.get_or_create_profile(db, STUDENT_ID, at(8, 5))
    await db.commit()

    assert first.id == second.id
    assert len(await fetch_all(GamificationProfile)) == 1
    assert len(await fetch_all(PointsHistoryEntry)) == 1


async def test_scan_awards_points_by_location(db, orchestrator):
    classroom = await orchestrator.handle_scan(db, scan_request(), now=at(9, 5))
    library = await orchestrator.handle_scan(
        db, scan_request(location_code="library", location_label="Central Library"), now=at(11, 0)
    )
    leaving = await orchestrator.handle_scan(
        db, scan_request(location_code="library", location_label="Central Library", direction="exit"),
        now=at(12, 0)
    )

    assert (classroom.points_awarded, library.points_awarded, leaving.points_awarded) == (5, 3, 0)

    profile = (await fetch_all(GamificationProfile))[0]
    assert profile.total_points == WELCOME_BONUS + 8
    assert profile.library_streak == 1
    assert profile.attendance_streak == 1


async def test_non_students_earn_nothing(db, orchestrator):
    outcome = await orchestrator.handle_scan(
        db, scan_request(who={"user_id": "T001", "badge_id": "RFC789456001"}), now=at(9, 5)
    )

    assert outcome.points_awarded == 0
    assert await fetch_all(GamificationProfile) == []


async def test_perfect_attendance_badge_awarded_once(db):
    for offset in range(3):
        db.add(AttendanceRecord(
            student_id=STUDENT_ID, session_id="CSE301", date=(MONDAY + timedelta(days=offset)).date(),
            status="present", late_minutes=0, source="automatic",
            recorded_at=at(9, 5) + timedelta(days=offset)
        ))
    await db.commit()
    now = at(18, 0) + timedelta(days=3)

    badges = await GamificationService.evaluate_badges(db, STUDENT_ID, now)
    again = await GamificationService.evaluate_badges(db, STUDENT_ID, now)
    await db.commit()

    assert [b.name for b in badges] == ["Perfect Attendance"]
    assert again == []

    profile = await GamificationService.get_profile(db, STUDENT_ID)
    assert profile.total_points == WELCOME_BONUS + 100
    assert profile.level == 2

    history = await fetch_all(PointsHistoryEntry, PointsHistoryEntry.category == "badge")
    assert [h.points for h in history] == [100]


async def test_absence_blocks_perfect_attendance(db):
    db.add_all([
        AttendanceRecord(
            student_id=STUDENT_ID, session_id="CSE301", date=MONDAY.date(), status="present",
            late_minutes=0, source="automatic", recorded_at=at(9, 5)
        ),
        AttendanceRecord(
            student_id=STUDENT_ID, session_id="CSE302", date=MONDAY.date(), status="absent",
            late_minutes=0, source="manual-teacher", recorded_at=at(14, 0)
        ),
    ])
    await db.commit()

    assert await GamificationService.evaluate_badges(db, STUDENT_ID, at(18, 0)) == []


async def test_early_bird_after_five_classroom_entries(db):
    for offset in range(5):
        db.add(_scan("entry", at(8, 55) + timedelta(days=offset), location="classroom"))
    await db.commit()

    badges = await GamificationService.evaluate_badges(db, STUDENT_ID, at(20, 0) + timedelta(days=5))

    assert [b.name for b in badges] == ["Early Bird"]


async def test_library_champion_needs_twenty_hours(db):
    for offset in range(4):
        day = MONDAY + timedelta(days=offset)
        db.add(_scan("entry", at(8, 0, day=day)))
        db.add(_scan("exit", at(13, 0, day=day)))
    await db.commit()
    now = at(20, 0) + timedelta(days=4)

    badges = await GamificationService.evaluate_badges(db, STUDENT_ID, now)

    assert [b.name for b in badges] == ["Library Champion"]


async def test_library_champion_not_awarded_below_threshold(db):
    for offset in range(4):
        day = MONDAY + timedelta(days=offset)
        db.add(_scan("entry", at(8, 0, day=day)))
        db.add(_scan("exit", at(12, 59, day=day)))
    await db.commit()

    badges = await GamificationService.evaluate_badges(db, STUDENT_ID, at(20, 0) + timedelta(days=4))

    assert badges == []


async def test_mess_regular_needs_five_distinct_days(db):
    for index, offset in enumerate((0, 0, 1, 2, 3)):
        db.add(MessTransaction(
            subject_id=STUDENT_ID, venue_name="Main Mess", meal_type="lunch", cost=50,
            discount_percent=0, final_amount=50, payment_method="card", badge_id="RFC123456001",
            items=[], transaction_id=f"MESS_T{index}",
            occurred_at=at(13, 0) + timedelta(days=offset)
        ))
    await db.commit()
    now = at(20, 0) + timedelta(days=4)

    assert await GamificationService.evaluate_badges(db, STUDENT_ID, now) == []

    db.add(MessTransaction(
        subject_id=STUDENT_ID, venue_name="Main Mess", meal_type="dinner", cost=60,
        discount_percent=0, final_amount=60, payment_method="card", badge_id="RFC123456001",
        items=[], transaction_id="MESS_T5", occurred_at=at(19, 0) + timedelta(days=4)
    ))
    await db.commit()

    badges = await GamificationService.evaluate_badges(db, STUDENT_ID, now)
    assert [b.name for b in badges] == ["Mess Regular"]


async def test_badges_outside_window_do_not_count(db):
    for offset in range(5):
        db.add(_scan("entry", at(8, 55) + timedelta(days=offset), location="classroom"))
    await db.commit()

    later = at(9, 0) + timedelta(days=30)
    assert await GamificationService.evaluate_badges(db, STUDENT_ID, later) == []


async def test_points_history_newest_first(db):
    for minute in range(3):
        await GamificationService.award_points(db, STUDENT_ID, minute + 1, f"Visit {minute}", now=at(10, minute))
    await db.commit()

    entries, total = await GamificationService.get_points_history(db, STUDENT_ID, page=1, limit=2)
    assert total == 4
    assert [e.reason for e in entries] == ["Visit 2", "Visit 1"]

    entries, _ = await GamificationService.get_points_history(db, STUDENT_ID, page=2, limit=2)
    assert [e.reason for e in entries] == ["Visit 0", "Welcome bonus"]


async def test_badge_catalog_marks_earned(db):
    assert len(GamificationService.badge_catalog()) == 4
    assert all("earned" not in item for item in GamificationService.badge_catalog())

    profile = await GamificationService.get_or_create_profile(db, STUDENT_ID)
    catalog = GamificationService.badge_catalog(profile)
    assert all(item["earned"] is False for item in catalog)


async def test_leaderboard_ranks_by_points(db):
    await GamificationService.award_points(db, "RA21CSE001", 10, "Visit", now=at(9, 0))
    await GamificationService.award_points(db, "RA21CSE002", 40, "Visit", now=at(9, 0))
    await db.commit()

    viewer = await DirectoryService.get_user(db, "RA21CSE001")
    board = await GamificationService.get_leaderboard(db, LeaderboardType.overall, viewer)

    assert [row["user_id"] for row in board["leaderboard"]] == ["RA21CSE002", "RA21CSE001"]
    assert board["user_rank"] == 2
    assert board["total_users"] == 2

    # Year boards only include the viewer's cohort
    board = await GamificationService.get_leaderboard(db, LeaderboardType.year, viewer)
    assert [row["user_id"] for row in board["leaderboard"]] == ["RA21CSE001"]
    assert board["user_rank"] == 1


async def test_profile_creation_race_keeps_one_welcome_bonus(db, monkeypatch):
    await GamificationService.get_or_create_profile(db, STUDENT_ID, at(8, 0))
    await db.commit()

    original = GamificationService._load_profile
    loads = []

    async def first_load_misses(*args):
        loads.append(args)
        if len(loads) == 1:
            return None
        return await original(*args)

    # The first lookup misses the other writer's row, so the insert must yield to it
    monkeypatch.setattr(GamificationService, "_load_profile", first_load_misses)
    profile = await GamificationService.award_points(db, STUDENT_ID, 3, "Library visit", "library", at(11, 0))
    await db.commit()

    assert profile.total_points == WELCOME_BONUS + 3
    assert len(await fetch_all(GamificationProfile)) == 1
    assert len(await fetch_all(EarnedBadge)) == 1
    welcome = await fetch_all(PointsHistoryEntry, PointsHistoryEntry.category == "welcome")
    assert len(welcome) == 1


async def test_award_increments_stored_total_not_loaded_copy(db):
    profile = await GamificationService.get_or_create_profile(db, STUDENT_ID, at(8, 0))
    await db.commit()

    async with async_session_maker() as other:
        await GamificationService.award_points(other, STUDENT_ID, 60, "Visit", now=at(9, 0))
        await other.commit()

    # `profile` still holds the 50 points loaded before the other award
    await GamificationService._apply(db, profile, 3, "Library visit", "library", at(9, 5))
    await db.commit()

    assert profile.total_points == WELCOME_BONUS + 63
    assert profile.level == 2
    assert profile.library_streak == 1
    stored = (await fetch_all(GamificationProfile))[0]
    assert (stored.total_points, stored.level) == (WELCOME_BONUS + 63, 2)


@pytest.mark.parametrize("role, expected", [("student", True), ("teacher", False), ("warden", False)])
def test_student_role_check(role, expected):
    user = User(user_id="X1", role=role)
    assert is_student(user) is expected
    assert GamificationService.applies_to(user) is expected
