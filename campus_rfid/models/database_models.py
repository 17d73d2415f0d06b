"""
SQLAlchemy Database Models for the Campus RFID Backend.

Directory and schedule tables (users, class_sessions, enrollments) are
owned by other campus services; the scan pipeline only reads them.
"""
from datetime import datetime
from sqlalchemy import (
    Column, String, Integer, Text, Boolean, Float,
    ForeignKey, DateTime, Date, Time, JSON,
    CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from campus_rfid.database import Base
from campus_rfid.schemas.schemas import (
    Role, LocationCode, Direction, AttendanceStatus, AttendanceSource,
    AlertType, AlertSeverity, AlertStatus, MealType, PaymentMethod,
    NotificationCategory, enum_values
)


def _in(column: str, enum_cls) -> str:
    values = ", ".join(f"'{v}'" for v in enum_values(enum_cls))
    return f"{column} IN ({values})"


# ============================================
# USERS (Directory, read-only)
# ============================================
class User(Base):
    __tablename__ = "users"

    user_id = Column(String(20), primary_key=True)
    name = Column(Text, nullable=False)
    email = Column(Text, unique=True)
    role = Column(String(20), nullable=False, default=Role.student.value)
    rfid_card_id = Column(String(32), unique=True, nullable=False)
    department = Column(Text)
    year = Column(Integer)
    hostel_name = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(_in("role", Role)),
        Index("ix_users_user_badge", "user_id", "rfid_card_id"),
    )


# ============================================
# CLASS SESSIONS (Schedule store, read-only)
# ============================================
class ClassSession(Base):
    __tablename__ = "class_sessions"

    session_id = Column(String(20), primary_key=True)   # class code
    class_name = Column(Text, nullable=False)
    teacher_id = Column(String(20), ForeignKey("users.user_id"), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    slots = relationship("ScheduleSlot", back_populates="session", lazy="selectin")


class ScheduleSlot(Base):
    """One weekly recurring meeting of a class session."""
    __tablename__ = "schedule_slots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(20), ForeignKey("class_sessions.session_id", ondelete="CASCADE"), nullable=False)
    day_of_week = Column(String(10), nullable=False)   # Monday..Sunday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    room = Column(Text, nullable=False)

    session = relationship("ClassSession", back_populates="slots", lazy="joined")

    __table_args__ = (
        CheckConstraint("start_time <= end_time"),
        UniqueConstraint("session_id", "day_of_week", "start_time", name="uq_session_slot"),
        Index("ix_schedule_slots_room_day", "room", "day_of_week"),
    )


class Enrollment(Base):
    __tablename__ = "enrollments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(20), ForeignKey("class_sessions.session_id", ondelete="CASCADE"), nullable=False)
    student_id = Column(String(20), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        UniqueConstraint("session_id", "student_id", name="uq_session_student"),
        Index("ix_enrollments_student", "student_id"),
    )


# ============================================
# SCAN EVENTS (append-only audit log)
# ============================================
class ScanEvent(Base):
    __tablename__ = "scan_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(String(20), ForeignKey("users.user_id"), nullable=False)
    badge_id = Column(String(32), nullable=False)
    location_code = Column(String(20), nullable=False)
    location_label = Column(Text, nullable=False)
    direction = Column(String(10), nullable=False)
    device_id = Column(Text, nullable=False)
    occurred_at = Column(DateTime, nullable=False)
    valid = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint(_in("location_code", LocationCode)),
        CheckConstraint(_in("direction", Direction)),
        Index("ix_scan_events_subject_time", "subject_id", "occurred_at"),
        Index("ix_scan_events_location", "location_code"),
    )


# ============================================
# ATTENDANCE
# ============================================
class AttendanceRecord(Base):
    __tablename__ = "attendance_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(20), ForeignKey("users.user_id"), nullable=False)
    session_id = Column(String(20), nullable=False)
    date = Column(Date, nullable=False)
    status = Column(String(10), nullable=False)
    late_minutes = Column(Integer, default=0, nullable=False)
    source = Column(String(20), nullable=False, default=AttendanceSource.automatic.value)
    teacher_id = Column(String(20))
    time_slot = Column(String(20))
    room = Column(Text)
    notes = Column(Text)
    scan_event_id = Column(Integer, ForeignKey("scan_events.id"))
    recorded_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime)

    __table_args__ = (
        CheckConstraint(_in("status", AttendanceStatus)),
        CheckConstraint(_in("source", AttendanceSource)),
        CheckConstraint("late_minutes >= 0"),
        UniqueConstraint("student_id", "session_id", "date", name="uq_attendance_student_session_date"),
        Index("ix_attendance_student_recorded", "student_id", "recorded_at"),
    )


# ============================================
# SECURITY ALERTS
# ============================================
class SecurityAlert(Base):
    __tablename__ = "security_alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(String(20), ForeignKey("users.user_id"), nullable=False)
    subject_label = Column(Text, nullable=False)
    alert_type = Column(String(30), nullable=False)
    severity = Column(String(10), nullable=False, default=AlertSeverity.low.value)
    message = Column(String(500), nullable=False)
    location_code = Column(String(20), nullable=False)
    occurred_at = Column(DateTime, nullable=False)
    supporting_evidence = Column(JSON)
    status = Column(String(10), nullable=False, default=AlertStatus.pending.value)
    reviewer = Column(String(20))
    reviewed_at = Column(DateTime)
    resolution_notes = Column(String(1000))
    scan_event_id = Column(Integer, ForeignKey("scan_events.id"))

    __table_args__ = (
        CheckConstraint(_in("alert_type", AlertType)),
        CheckConstraint(_in("severity", AlertSeverity)),
        CheckConstraint(_in("status", AlertStatus)),
        Index("ix_security_alerts_subject", "subject_id"),
        Index("ix_security_alerts_status", "status"),
        Index("ix_security_alerts_time", "occurred_at"),
    )


# ============================================
# GAMIFICATION
# ============================================
class GamificationProfile(Base):
    __tablename__ = "gamification_profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(String(20), ForeignKey("users.user_id"), unique=True, nullable=False)
    total_points = Column(Integer, default=0, nullable=False)
    level = Column(Integer, default=1, nullable=False)
    attendance_streak = Column(Integer, default=0, nullable=False)
    mess_streak = Column(Integer, default=0, nullable=False)
    library_streak = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    last_updated = Column(DateTime)

    badges = relationship(
        "EarnedBadge",
        back_populates="profile",
        lazy="selectin",
        order_by="EarnedBadge.earned_at"
    )

    __table_args__ = (
        CheckConstraint("total_points >= 0"),
        CheckConstraint("level >= 1"),
        Index("ix_gamification_points", "total_points"),
    )


class EarnedBadge(Base):
    __tablename__ = "earned_badges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_id = Column(Integer, ForeignKey("gamification_profiles.id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    icon = Column(Text, nullable=False)
    points = Column(Integer, nullable=False)
    earned_at = Column(DateTime, nullable=False)

    profile = relationship("GamificationProfile", back_populates="badges")

    __table_args__ = (
        UniqueConstraint("profile_id", "name", name="uq_profile_badge_name"),
    )


class PointsHistoryEntry(Base):
    __tablename__ = "points_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_id = Column(Integer, ForeignKey("gamification_profiles.id", ondelete="CASCADE"), nullable=False)
    points = Column(Integer, nullable=False)
    reason = Column(Text, nullable=False)
    category = Column(String(30), nullable=False, default="general")
    at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_points_history_profile_at", "profile_id", "at"),
    )


# ============================================
# MESS TRANSACTIONS
# ============================================
class MessTransaction(Base):
    __tablename__ = "mess_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(String(20), ForeignKey("users.user_id"), nullable=False)
    venue_name = Column(Text, nullable=False)
    meal_type = Column(String(10), nullable=False)
    cost = Column(Float, nullable=False)
    discount_percent = Column(Float, default=0, nullable=False)
    final_amount = Column(Float, nullable=False)
    payment_method = Column(String(10), nullable=False, default=PaymentMethod.card.value)
    badge_id = Column(String(32), nullable=False)
    items = Column(JSON, default=list)
    transaction_id = Column(String(40), unique=True, nullable=False)
    occurred_at = Column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint(_in("meal_type", MealType)),
        CheckConstraint(_in("payment_method", PaymentMethod)),
        CheckConstraint("cost >= 0"),
        CheckConstraint("discount_percent >= 0 AND discount_percent <= 100"),
        Index("ix_mess_subject_time", "subject_id", "occurred_at"),
    )


# ============================================
# NOTIFICATIONS (sink)
# ============================================
class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(20), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    category = Column(String(20), nullable=False, default=NotificationCategory.general.value)
    payload = Column(JSON)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(_in("category", NotificationCategory)),
        Index("ix_notifications_user_created", "user_id", "created_at"),
    )
