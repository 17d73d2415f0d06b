"""
Services module initialization.
"""
from campus_rfid.services.directory_service import DirectoryService
from campus_rfid.services.schedule_service import ScheduleService
from campus_rfid.services.attendance_service import AttendanceService
from campus_rfid.services.security_service import SecurityService
from campus_rfid.services.gamification_service import GamificationService
from campus_rfid.services.notification_service import NotificationService
from campus_rfid.services.broadcast_service import EventFanout
from campus_rfid.services.scan_service import ScanOrchestrator
from campus_rfid.services.system_service import SystemService
from campus_rfid.services.log_service import LogService

__all__ = [
    "DirectoryService",
    "ScheduleService",
    "AttendanceService",
    "SecurityService",
    "GamificationService",
    "NotificationService",
    "EventFanout",
    "ScanOrchestrator",
    "SystemService",
    "LogService",
]
