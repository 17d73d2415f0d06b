#!/usr/bin/env python3
"""
Database Seeder for the Campus RFID Backend

Populates the directory and timetable with a small sample campus so the
scan pipeline can be exercised locally.

Usage:
    # From project root with venv activated:
    python scripts/seed_database.py

    # Or via docker:
    docker-compose exec api python scripts/seed_database.py

    # Drop and recreate all tables first:
    python scripts/seed_database.py --clear

Creates:
    - Two students, one teacher and one warden with RFID cards
    - CSE301 (Mon 09:00-10:30, Wed 11:00-12:30 in A101)
    - CSE302 (Tue 14:00-15:30 in B201)
    - Enrollments of both students in both classes
"""
import argparse
import asyncio
from datetime import time

from campus_rfid.database import Base, engine, async_session_maker, init_db
from campus_rfid.models.database_models import User, ClassSession, ScheduleSlot, Enrollment

USERS = [
    {
        "user_id": "RA21CSE001",
        "rfid_card_id": "RFC123456001",
        "name": "John Doe",
        "email": "john.doe@campus.edu",
        "role": "student",
        "department": "Computer Science",
        "year": 3,
        "hostel_name": "Boys Hostel 1",
    },
    {
        "user_id": "RA21CSE002",
        "rfid_card_id": "RFC123456002",
        "name": "Jane Smith",
        "email": "jane.smith@campus.edu",
        "role": "student",
        "department": "Computer Science",
        "year": 3,
        "hostel_name": "Girls Hostel 1",
    },
    {
        "user_id": "T001",
        "rfid_card_id": "RFC789456001",
        "name": "Prof. Michael Smith",
        "email": "prof.smith@campus.edu",
        "role": "teacher",
        "department": "Computer Science",
    },
    {
        "user_id": "W001",
        "rfid_card_id": "RFC789456002",
        "name": "Mr. Robert Johnson",
        "email": "warden.johnson@campus.edu",
        "role": "warden",
        "hostel_name": "Boys Hostel 1",
    },
]

CLASSES = [
    {
        "session_id": "CSE301",
        "class_name": "Data Structures and Algorithms",
        "teacher_id": "T001",
        "slots": [
            ("Monday", time(9, 0), time(10, 30), "A101"),
            ("Wednesday", time(11, 0), time(12, 30), "A101"),
        ],
        "students": ["RA21CSE001", "RA21CSE002"],
    },
    {
        "session_id": "CSE302",
        "class_name": "Database Management Systems",
        "teacher_id": "T001",
        "slots": [
            ("Tuesday", time(14, 0), time(15, 30), "B201"),
        ],
        "students": ["RA21CSE001", "RA21CSE002"],
    },
]


async def clear_database():
    print("Dropping existing tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    print("  Done")


async def seed_database(clear_existing: bool = False):
    """Main seeding function"""
    print("=" * 60)
    print("Campus RFID Database Seeder")
    print("=" * 60)

    if clear_existing:
        await clear_database()
    await init_db()

    async with async_session_maker() as db:
        try:
            print("\n1. Seeding users...")
            for data in USERS:
                db.add(User(**data))
            await db.flush()
            print(f"  Created {len(USERS)} users")

            print("\n2. Seeding classes and timetable...")
            slot_count = 0
            enrollment_count = 0
            for data in CLASSES:
                db.add(ClassSession(
                    session_id=data["session_id"],
                    class_name=data["class_name"],
                    teacher_id=data["teacher_id"]
                ))
                for day, start, end, room in data["slots"]:
                    db.add(ScheduleSlot(
                        session_id=data["session_id"],
                        day_of_week=day,
                        start_time=start,
                        end_time=end,
                        room=room
                    ))
                    slot_count += 1
                for student_id in data["students"]:
                    db.add(Enrollment(session_id=data["session_id"], student_id=student_id))
                    enrollment_count += 1
            await db.commit()
            print(f"  Created {len(CLASSES)} classes, {slot_count} slots, {enrollment_count} enrollments")

        except Exception as e:
            await db.rollback()
            print(f"\n❌ Error during seeding: {e}")
            raise

    await engine.dispose()
    print("\n✅ Seeding complete")


def main():
    parser = argparse.ArgumentParser(
        description="Seed the campus RFID database with sample data"
    )
    parser.add_argument(
        "--clear", "-c",
        action="store_true",
        help="Drop and recreate all tables before seeding"
    )

    args = parser.parse_args()
    asyncio.run(seed_database(clear_existing=args.clear))


if __name__ == "__main__":
    main()
