import asyncio
import os
import tempfile
from datetime import datetime, time

import pytest
from sqlalchemy import select

# Must be set before campus_rfid is imported; the engine is built at import time.
_DB_DIR = tempfile.mkdtemp(prefix="campus_rfid_test_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'campus.db')}"
os.environ["BROADCAST_BACKEND"] = "memory"
os.environ["GAMIFICATION_ENABLED"] = "true"

from campus_rfid.database import Base, engine, async_session_maker  # noqa: E402
from campus_rfid.models import database_models as models  # noqa: E402
from campus_rfid.schemas.schemas import ScanRequest  # noqa: E402
from campus_rfid.services.broadcast_service import EventFanout, MemoryBroadcaster  # noqa: E402
from campus_rfid.services.scan_service import ScanOrchestrator  # noqa: E402

# 2024-01-15 is a Monday
MONDAY = datetime(2024, 1, 15)

STUDENT = {"user_id": "RA21CSE001", "badge_id": "RFC123456001"}
STUDENT_2 = {"user_id": "RA21CSE002", "badge_id": "RFC123456002"}
TEACHER = {"user_id": "T001", "badge_id": "RFC789456001"}


def at(hour: int, minute: int = 0, day: datetime = MONDAY) -> datetime:
    return day.replace(hour=hour, minute=minute)


def scan_request(who=STUDENT, location_code="classroom", location_label="A101", direction="entry"):
    return ScanRequest(
        subject_id=who["user_id"],
        badge_id=who["badge_id"],
        location_code=location_code,
        location_label=location_label,
        direction=direction,
        device_id=f"READER-{location_label}"
    )


async def reset_database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def seed_campus(db):
    db.add_all([
        models.User(
            user_id="RA21CSE001", rfid_card_id="RFC123456001", name="John Doe",
            email="john.doe@campus.edu", role="student", department="Computer Science",
            year=3, hostel_name="Boys Hostel 1"
        ),
        models.User(
            user_id="RA21CSE002", rfid_card_id="RFC123456002", name="Jane Smith",
            email="jane.smith@campus.edu", role="student", department="Computer Science",
            year=2, hostel_name="Girls Hostel 1"
        ),
        models.User(
            user_id="RA21ECE003", rfid_card_id="RFC123456003", name="Sam Inactive",
            email="sam@campus.edu", role="student", department="Electronics",
            year=3, is_active=False
        ),
        models.User(
            user_id="T001", rfid_card_id="RFC789456001", name="Prof. Michael Smith",
            email="prof.smith@campus.edu", role="teacher", department="Computer Science"
        ),
        models.User(
            user_id="T002", rfid_card_id="RFC789456003", name="Dr. Asha Rao",
            email="asha.rao@campus.edu", role="teacher", department="Electronics"
        ),
        models.User(
            user_id="W001", rfid_card_id="RFC789456002", name="Mr. Robert Johnson",
            email="warden.johnson@campus.edu", role="warden", hostel_name="Boys Hostel 1"
        ),
    ])
    await db.flush()

    db.add_all([
        models.ClassSession(session_id="CSE301", class_name="Data Structures and Algorithms", teacher_id="T001"),
        models.ClassSession(session_id="CSE302", class_name="Database Management Systems", teacher_id="T001"),
    ])
    await db.flush()

    db.add_all([
        models.ScheduleSlot(session_id="CSE301", day_of_week="Monday", start_time=time(9, 0), end_time=time(10, 30), room="A101"),
        models.ScheduleSlot(session_id="CSE301", day_of_week="Wednesday", start_time=time(11, 0), end_time=time(12, 30), room="A101"),
        models.ScheduleSlot(session_id="CSE302", day_of_week="Tuesday", start_time=time(14, 0), end_time=time(15, 30), room="B201"),
        models.Enrollment(session_id="CSE301", student_id="RA21CSE001"),
        models.Enrollment(session_id="CSE302", student_id="RA21CSE001"),
        models.Enrollment(session_id="CSE302", student_id="RA21CSE002"),
    ])
    await db.commit()


@pytest.fixture()
async def db():
    await reset_database()
    async with async_session_maker() as session:
        await seed_campus(session)
    async with async_session_maker() as session:
        yield session


@pytest.fixture()
def broadcaster():
    return MemoryBroadcaster()


@pytest.fixture()
def fanout(broadcaster):
    return EventFanout(broadcaster, timeout=1.0)


@pytest.fixture()
def orchestrator(fanout):
    return ScanOrchestrator(fanout, session_factory=async_session_maker)


@pytest.fixture()
def seeded_database():
    """Synchronous variant for TestClient tests."""
    async def _setup():
        await reset_database()
        async with async_session_maker() as session:
            await seed_campus(session)

    asyncio.run(_setup())


async def fetch_all(model, *criteria):
    """Read committed rows through a fresh session."""
    query = select(model)
    if criteria:
        query = query.where(*criteria)
    async with async_session_maker() as session:
        result = await session.execute(query.order_by(model.id))
        return list(result.scalars().all())
