"""
Pydantic Schemas for the Campus RFID Backend APIs.
Request and Response models for all endpoints, plus the closed
vocabularies (enums) shared by the models and services.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, date
from enum import Enum


# ============================================
# ENUMS
# ============================================
class Role(str, Enum):
    student = "student"
    teacher = "teacher"
    warden = "warden"
    parent = "parent"
    admin = "admin"


def is_student(user) -> bool:
    """True for directory users holding the student role."""
    return user.role == Role.student.value


class LocationCode(str, Enum):
    main_gate = "main_gate"
    hostel_gate = "hostel_gate"
    library = "library"
    mess = "mess"
    classroom = "classroom"
    laboratory = "laboratory"
    exam_hall = "exam_hall"


class Direction(str, Enum):
    entry = "entry"
    exit = "exit"


class AttendanceStatus(str, Enum):
    present = "present"
    late = "late"
    absent = "absent"


class AttendanceSource(str, Enum):
    automatic = "automatic"
    manual_teacher = "manual-teacher"


class AlertType(str, Enum):
    unusual_timing = "unusual_timing"
    multiple_failed_attempts = "multiple_failed_attempts"
    suspicious_activity = "suspicious_activity"
    unauthorized_access = "unauthorized_access"


class AlertSeverity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class AlertStatus(str, Enum):
    pending = "pending"
    reviewed = "reviewed"
    resolved = "resolved"


class MealType(str, Enum):
    breakfast = "breakfast"
    lunch = "lunch"
    dinner = "dinner"
    snacks = "snacks"


class PaymentMethod(str, Enum):
    card = "card"
    cash = "cash"
    digital = "digital"


class NotificationCategory(str, Enum):
    attendance = "attendance"
    exam = "exam"
    mess = "mess"
    security = "security"
    general = "general"
    gamification = "gamification"


class LeaderboardType(str, Enum):
    overall = "overall"
    department = "department"
    year = "year"


class StatsPeriod(str, Enum):
    today = "today"
    week = "week"
    month = "month"


def enum_values(enum_cls) -> List[str]:
    """Values of an enum, for CHECK constraints."""
    return [member.value for member in enum_cls]


# ============================================
# SHARED
# ============================================
class Pagination(BaseModel):
    current: int
    pages: int
    total: int


# ============================================
# RFID SCAN SCHEMAS
# ============================================
class ScanRequest(BaseModel):
    """Raw badge tap reported by an RFID device."""
    subject_id: str = Field(..., min_length=1, description="Claimed user ID")
    badge_id: str = Field(..., min_length=1, description="RFID card ID read by the device")
    location_code: LocationCode
    location_label: str = Field(..., min_length=1, description="Room or venue label, e.g. A101")
    direction: Direction
    device_id: str = Field(..., min_length=1)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "subject_id": "STU2024001",
                "badge_id": "RFID00000001",
                "location_code": "classroom",
                "location_label": "A101",
                "direction": "entry",
                "device_id": "READER-A101-1"
            }
        }
    )


class ScanEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subject_id: str
    badge_id: str
    location_code: LocationCode
    location_label: str
    direction: Direction
    device_id: str
    occurred_at: datetime
    valid: bool


class AttendanceRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    student_id: str
    session_id: str
    date: date
    status: AttendanceStatus
    late_minutes: int
    source: AttendanceSource
    time_slot: Optional[str] = None
    room: Optional[str] = None
    notes: Optional[str] = None
    recorded_at: datetime
    updated_at: Optional[datetime] = None


class SecurityAlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subject_id: str
    subject_label: str
    alert_type: AlertType
    severity: AlertSeverity
    message: str
    location_code: str
    occurred_at: datetime
    supporting_evidence: Optional[Dict[str, Any]] = None
    status: AlertStatus
    reviewer: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None


class ScanSubject(BaseModel):
    name: str
    role: Role


class ScanAckResponse(BaseModel):
    """Terse acknowledgement returned to the device."""
    success: bool
    message: str
    scan_event: ScanEventOut
    user: ScanSubject
    attendance: List[AttendanceRecordOut] = []
    alerts: List[SecurityAlertOut] = []
    points_awarded: int = 0


class LocationUpdate(BaseModel):
    """Payload fanned out to dashboard channels."""
    user_id: str
    user_name: str
    location: str
    location_name: str
    action: str
    timestamp: datetime
    user_role: Role


class ScanLogPage(BaseModel):
    logs: List[ScanEventOut]
    pagination: Pagination


class LocationHistoryResponse(BaseModel):
    user_id: str
    days: int
    history: Dict[str, List[ScanEventOut]]


# ============================================
# MESS SCHEMAS
# ============================================
class MessTransactionRequest(BaseModel):
    """Dining swipe at a mess/food venue."""
    subject_id: str = Field(..., min_length=1)
    venue_name: str = Field(..., min_length=1)
    meal_type: MealType
    cost: float = Field(..., ge=0)
    payment_method: PaymentMethod = PaymentMethod.card
    badge_id: str = Field(..., min_length=1)
    items: List[str] = []
    discount_percent: float = Field(0, ge=0, le=100)


class MessTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subject_id: str
    venue_name: str
    meal_type: MealType
    cost: float
    discount_percent: float
    final_amount: float
    payment_method: PaymentMethod
    items: List[str] = []
    transaction_id: str
    occurred_at: datetime


class MessEntryResponse(BaseModel):
    success: bool
    message: str
    transaction: MessTransactionOut
    points_awarded: int = 0


class MessLogPage(BaseModel):
    transactions: List[MessTransactionOut]
    pagination: Pagination


class MessStatsSummary(BaseModel):
    total_entries: int = 0
    total_spent: float = 0
    average_spent: float = 0


class MealTypeStat(BaseModel):
    meal_type: MealType
    count: int
    total_cost: float


class DailyMessStat(BaseModel):
    date: date
    entries: int
    spent: float


class MessStatsResponse(BaseModel):
    period: StatsPeriod
    summary: MessStatsSummary
    meal_type_distribution: List[MealTypeStat]
    daily_pattern: List[DailyMessStat]


# ============================================
# ATTENDANCE SCHEMAS
# ============================================
class ManualAttendanceRequest(BaseModel):
    """Instructor marking or correcting a student's attendance."""
    teacher_id: str
    student_id: str
    session_id: str
    date: date
    status: AttendanceStatus
    late_minutes: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=500)


class ManualAttendanceResponse(BaseModel):
    success: bool
    message: str
    created: bool
    attendance: AttendanceRecordOut


class AttendancePage(BaseModel):
    records: List[AttendanceRecordOut]
    pagination: Pagination


class AttendanceStatsRow(BaseModel):
    """Per-class row for a student, or per-student row for a class."""
    session_id: Optional[str] = None
    class_name: Optional[str] = None
    student_id: Optional[str] = None
    student_name: Optional[str] = None
    total: int
    present: int
    late: int
    absent: int
    percentage: float


class AttendanceStatsResponse(BaseModel):
    stats: List[AttendanceStatsRow]


class ReportEntry(BaseModel):
    student_id: str
    student_name: str
    status: AttendanceStatus


class ReportDay(BaseModel):
    date: date
    time_slot: Optional[str] = None
    attendance: List[ReportEntry]


class ReportPeriod(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class AttendanceReportResponse(BaseModel):
    session_id: str
    class_name: str
    report_period: ReportPeriod
    total_days: int
    report: List[ReportDay]


# ============================================
# SECURITY SCHEMAS
# ============================================
class AlertReviewRequest(BaseModel):
    status: AlertStatus
    reviewer: str = Field(..., min_length=1)
    resolution_notes: Optional[str] = Field(None, max_length=1000)


class AlertStats(BaseModel):
    total: int = 0
    pending: int = 0
    high: int = 0
    critical: int = 0


class SecurityAlertPage(BaseModel):
    alerts: List[SecurityAlertOut]
    stats: AlertStats
    pagination: Pagination


# ============================================
# GAMIFICATION SCHEMAS
# ============================================
class BadgeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    description: str
    icon: str
    points: int
    earned_at: datetime


class PointsHistoryItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    points: int
    reason: str
    category: str
    at: datetime


class GamificationProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    subject_id: str
    total_points: int
    level: int
    attendance_streak: int = 0
    mess_streak: int = 0
    library_streak: int = 0
    badges: List[BadgeOut] = []
    last_updated: Optional[datetime] = None


class GamificationProfileResponse(BaseModel):
    profile: GamificationProfileOut
    points_to_next_level: int


class BadgeCheckResponse(BaseModel):
    message: str
    new_badges: List[BadgeOut]
    profile: GamificationProfileOut


class PointsHistoryPage(BaseModel):
    history: List[PointsHistoryItem]
    pagination: Pagination


class BadgeCatalogItem(BaseModel):
    name: str
    description: str
    icon: str
    points: int
    earned: Optional[bool] = None


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    user_name: str
    department: Optional[str] = None
    year: Optional[int] = None
    total_points: int
    level: int
    badge_count: int


class LeaderboardResponse(BaseModel):
    type: LeaderboardType
    leaderboard: List[LeaderboardEntry]
    user_rank: Optional[int] = None
    total_users: int


# ============================================
# NOTIFICATION SCHEMAS
# ============================================
class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    title: str
    message: str
    category: NotificationCategory
    payload: Optional[Dict[str, Any]] = None
    is_read: bool
    created_at: datetime


# ============================================
# SYSTEM SCHEMAS
# ============================================
class SystemHealthResponse(BaseModel):
    status: str
    timestamp: str
    check_duration_ms: Optional[float] = None
    components: Dict[str, Any] = {}
    version: Dict[str, str] = {}
