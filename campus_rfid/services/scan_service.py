"""
Scan Orchestrator.
Drives one badge tap through the pipeline:

    received -> subject resolved -> scan logged
             -> attendance / security / gamification (isolated)
             -> dashboard fan-out -> acknowledged

Rejected taps write nothing. Once the subject is resolved the scan log
entry is committed on its own; every downstream step then runs in a
separate short-lived session, so a failing step rolls back only its own
work and is reported in the outcome instead of failing the tap.

Dining swipes follow the same shape with the mess transaction as the
committed write.
"""
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any, Callable, Awaitable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campus_rfid.config import settings
from campus_rfid.database import async_session_maker
from campus_rfid.models.database_models import (
    User, ScanEvent, AttendanceRecord, SecurityAlert, MessTransaction
)
from campus_rfid.schemas.schemas import (
    Role, ScanRequest, MessTransactionRequest, LocationUpdate
)
from campus_rfid.services.directory_service import DirectoryService
from campus_rfid.services.schedule_service import ScheduleService
from campus_rfid.services.attendance_service import AttendanceService
from campus_rfid.services.security_service import SecurityService
from campus_rfid.services.gamification_service import GamificationService, MESS_VISIT_POINTS
from campus_rfid.services.broadcast_service import EventFanout
from campus_rfid.utils.clock import campus_now

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    digits = []
    while True:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
        if value == 0:
            break
    return "".join(reversed(digits))


def generate_transaction_id() -> str:
    """MESS_<epoch millis, base36>_<5 random chars>, upper-cased."""
    millis = int(time.time() * 1000)
    suffix = secrets.token_hex(3)[:5]
    return f"MESS_{_to_base36(millis)}_{suffix}".upper()


@dataclass
class ScanOutcome:
    scan_event: ScanEvent
    subject: User
    attendance: List[AttendanceRecord] = field(default_factory=list)
    alerts: List[SecurityAlert] = field(default_factory=list)
    points_awarded: int = 0
    failures: Dict[str, str] = field(default_factory=dict)


@dataclass
class MessOutcome:
    transaction: MessTransaction
    subject: User
    points_awarded: int = 0
    failures: Dict[str, str] = field(default_factory=dict)


class ScanOrchestrator:
    """Runs badge taps and dining swipes end to end."""

    def __init__(
        self,
        fanout: EventFanout,
        session_factory: async_sessionmaker = async_session_maker
    ):
        self.fanout = fanout
        self.session_factory = session_factory

    async def _run_step(
        self,
        failures: Dict[str, str],
        name: str,
        step: Callable[..., Awaitable[Any]],
        *args
    ) -> Optional[Any]:
        """
        Run one downstream step in its own transaction.
        Returns the step's result, or None after recording the failure.
        """
        async with self.session_factory() as step_db:
            try:
                result = await step(step_db, *args)
                await step_db.commit()
                return result
            except Exception as e:
                await step_db.rollback()
                logger.exception(f"{name} step failed")
                failures[name] = str(e) or e.__class__.__name__
                return None

    # ------------------------------------------------------------------
    # Badge taps
    # ------------------------------------------------------------------
    async def handle_scan(
        self,
        db: AsyncSession,
        request: ScanRequest,
        now: Optional[datetime] = None
    ) -> ScanOutcome:
        """
        Process one badge tap.

        Raises SubjectNotFound when the claimed id and card do not belong
        to one active user; nothing is written in that case.
        """
        now = now or campus_now()
        subject = await DirectoryService.resolve_subject(db, request.subject_id, request.badge_id)

        scan = ScanEvent(
            subject_id=subject.user_id,
            badge_id=request.badge_id,
            location_code=request.location_code.value,
            location_label=request.location_label,
            direction=request.direction.value,
            device_id=request.device_id,
            occurred_at=now,
            valid=True
        )
        db.add(scan)
        await db.commit()
        logger.info(
            f"Scan {scan.id}: {subject.user_id} {scan.direction} "
            f"{scan.location_code}/{scan.location_label}"
        )

        outcome = ScanOutcome(scan_event=scan, subject=subject)

        attendance = await self._run_step(
            outcome.failures, "attendance", self._derive_attendance, subject, scan, now
        )
        outcome.attendance = attendance or []

        alerts = await self._run_step(
            outcome.failures, "security", self._evaluate_security, subject, scan
        )
        outcome.alerts = alerts or []

        points = await self._run_step(
            outcome.failures, "gamification", self._award_scan_points, subject, scan, now
        )
        outcome.points_awarded = points or 0

        self._publish_location(subject, scan)

        if outcome.failures:
            logger.warning(f"Scan {scan.id} completed with failures: {sorted(outcome.failures)}")
        return outcome

    @staticmethod
    async def _derive_attendance(
        db: AsyncSession,
        subject: User,
        scan: ScanEvent,
        now: datetime
    ) -> List[AttendanceRecord]:
        if not AttendanceService.applies_to(subject, scan):
            return []

        records = []
        for active in await ScheduleService.find_active_sessions(db, subject, scan.location_label, now):
            record = await AttendanceService.derive_attendance(db, subject, active, now, scan.id)
            if record is not None:
                records.append(record)
        return records

    @staticmethod
    async def _evaluate_security(
        db: AsyncSession,
        subject: User,
        scan: ScanEvent
    ) -> List[SecurityAlert]:
        return await SecurityService.evaluate(db, subject, scan)

    @staticmethod
    async def _award_scan_points(
        db: AsyncSession,
        subject: User,
        scan: ScanEvent,
        now: datetime
    ) -> int:
        if not settings.GAMIFICATION_ENABLED or not GamificationService.applies_to(subject):
            return 0
        award = GamificationService.points_for_scan(scan)
        if award is None:
            return 0

        points, reason = award
        await GamificationService.award_points(
            db, subject.user_id, points, reason, category=scan.location_code, now=now
        )
        return points

    def _publish_location(self, subject: User, scan: ScanEvent) -> None:
        try:
            self.fanout.publish_location_update(LocationUpdate(
                user_id=subject.user_id,
                user_name=subject.name,
                location=scan.location_code,
                location_name=scan.location_label,
                action=scan.direction,
                timestamp=scan.occurred_at,
                user_role=Role(subject.role)
            ))
        except Exception:
            logger.exception(f"Could not schedule location update for scan {scan.id}")

    # ------------------------------------------------------------------
    # Dining swipes
    # ------------------------------------------------------------------
    async def handle_mess_transaction(
        self,
        db: AsyncSession,
        request: MessTransactionRequest,
        now: Optional[datetime] = None
    ) -> MessOutcome:
        """Record a dining swipe for an active student holding the presented card."""
        now = now or campus_now()
        student = await DirectoryService.resolve_student(db, request.subject_id, request.badge_id)

        final_amount = round(request.cost * (1 - request.discount_percent / 100), 2)
        transaction = MessTransaction(
            subject_id=student.user_id,
            venue_name=request.venue_name,
            meal_type=request.meal_type.value,
            cost=request.cost,
            discount_percent=request.discount_percent,
            final_amount=final_amount,
            payment_method=request.payment_method.value,
            badge_id=request.badge_id,
            items=list(request.items),
            transaction_id=generate_transaction_id(),
            occurred_at=now
        )
        db.add(transaction)
        await db.commit()
        logger.info(f"Mess transaction {transaction.transaction_id} for {student.user_id}: {final_amount}")

        outcome = MessOutcome(transaction=transaction, subject=student)
        points = await self._run_step(
            outcome.failures, "gamification", self._award_mess_points, student, now
        )
        outcome.points_awarded = points or 0

        try:
            self.fanout.publish_mess_entry({
                "user_id": student.user_id,
                "user_name": student.name,
                "venue_name": transaction.venue_name,
                "meal_type": transaction.meal_type,
                "amount": transaction.final_amount,
                "transaction_id": transaction.transaction_id,
                "timestamp": transaction.occurred_at.isoformat(),
            })
        except Exception:
            logger.exception(f"Could not schedule mess entry for {transaction.transaction_id}")

        return outcome

    @staticmethod
    async def _award_mess_points(db: AsyncSession, student: User, now: datetime) -> int:
        if not settings.GAMIFICATION_ENABLED:
            return 0
        await GamificationService.award_points(
            db, student.user_id, MESS_VISIT_POINTS, "Mess visit", category="mess", now=now
        )
        return MESS_VISIT_POINTS
