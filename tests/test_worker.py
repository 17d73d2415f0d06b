from datetime import date, timedelta

from campus_rfid.models.database_models import AttendanceRecord, Notification
from worker.celery_app import celery_app
from worker.tasks.notification_tasks import warn_low_attendance

from conftest import MONDAY, fetch_all


def test_beat_schedule_registers_attendance_warnings():
    entry = celery_app.conf.beat_schedule["send-attendance-warnings"]
    assert entry["task"] == "worker.tasks.notification_tasks.send_attendance_warnings"


async def test_low_attendance_students_are_warned(db):
    start = date(2023, 9, 1)
    for offset in range(12):
        db.add(AttendanceRecord(
            student_id="RA21CSE001",
            session_id="CSE301",
            date=start + timedelta(days=offset),
            status="present" if offset < 6 else "absent",
            late_minutes=0,
            source="automatic",
            recorded_at=MONDAY
        ))
    await db.commit()

    result = await warn_low_attendance(db)
    await db.commit()

    assert result == {"success": True, "warned": 1}
    notifications = await fetch_all(Notification)
    assert len(notifications) == 1
    assert notifications[0].user_id == "RA21CSE001"
    assert notifications[0].category == "attendance"
    assert notifications[0].title == "Low Attendance Warning"
    assert "50.0%" in notifications[0].message
