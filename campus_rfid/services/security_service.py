"""
Security Rule Engine.
Evaluates each validated scan against a registry of independent rules and
records the alerts they raise. Reviewers move alerts through
pending -> reviewed -> resolved.

Rules:
| Rule               | Trigger                                         | Type           | Severity |
|--------------------|-------------------------------------------------|----------------|----------|
| Unusual late exit  | student, main gate, exit, hour >= 22            | unusual_timing | medium   |

Alerts carry no dedup key: two qualifying scans in the same minute raise
two alerts.
"""
from typing import Optional, List, Dict, Any, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_, case, true
import logging

from campus_rfid.config import settings
from campus_rfid.models.database_models import User, ScanEvent, SecurityAlert
from campus_rfid.schemas.schemas import (
    Role, is_student, LocationCode, Direction, AlertType, AlertSeverity, AlertStatus,
    NotificationCategory
)
from campus_rfid.services.directory_service import DirectoryService
from campus_rfid.services.notification_service import NotificationService
from campus_rfid.exceptions import RecordNotFound
from campus_rfid.utils.clock import campus_now

logger = logging.getLogger(__name__)


def scan_snapshot(scan: ScanEvent) -> Dict[str, Any]:
    return {
        "id": scan.id,
        "location": scan.location_code,
        "location_name": scan.location_label,
        "action": scan.direction,
        "device_id": scan.device_id,
        "timestamp": scan.occurred_at.isoformat(),
    }


class SecurityRule:
    """
    One alerting rule. Subclasses set the alert type/severity and implement
    `matches` and `describe`; `evidence` may be overridden.
    """
    name = "rule"
    alert_type = AlertType.suspicious_activity
    severity = AlertSeverity.low

    def matches(self, subject: User, scan: ScanEvent) -> bool:
        raise NotImplementedError

    def describe(self, subject: User, scan: ScanEvent) -> str:
        raise NotImplementedError

    async def evidence(self, db: AsyncSession, subject: User, scan: ScanEvent) -> Dict[str, Any]:
        return {"scan": scan_snapshot(scan)}


class UnusualLateExitRule(SecurityRule):
    """Student leaving through the main gate late at night."""
    name = "unusual_late_exit"
    alert_type = AlertType.unusual_timing
    severity = AlertSeverity.medium

    def matches(self, subject: User, scan: ScanEvent) -> bool:
        return (
            is_student(subject)
            and scan.location_code == LocationCode.main_gate.value
            and scan.direction == Direction.exit.value
            and scan.occurred_at.hour >= settings.SECURITY_ALERT_HOUR
        )

    def describe(self, subject: User, scan: ScanEvent) -> str:
        return f"Student left campus late at night ({scan.occurred_at:%H:%M})"

    async def evidence(self, db: AsyncSession, subject: User, scan: ScanEvent) -> Dict[str, Any]:
        previous = await SecurityService.recent_scans(
            db, subject.user_id, exclude_id=scan.id, limit=settings.SECURITY_EVIDENCE_SCANS
        )
        return {
            "action": scan.direction,
            "hour": scan.occurred_at.hour,
            "previous_logs": [scan_snapshot(p) for p in previous],
        }


# Rules run in order; add new rules here.
DEFAULT_RULES: List[SecurityRule] = [
    UnusualLateExitRule(),
]


class SecurityService:
    """Security alert evaluation and review."""

    rules: List[SecurityRule] = DEFAULT_RULES

    @staticmethod
    async def recent_scans(
        db: AsyncSession,
        subject_id: str,
        exclude_id: Optional[int] = None,
        limit: int = 3
    ) -> List[ScanEvent]:
        query = select(ScanEvent).where(ScanEvent.subject_id == subject_id)
        if exclude_id is not None:
            query = query.where(ScanEvent.id != exclude_id)
        result = await db.execute(
            query.order_by(ScanEvent.occurred_at.desc(), ScanEvent.id.desc()).limit(limit)
        )
        return list(result.scalars().all())

    @classmethod
    async def evaluate(
        cls,
        db: AsyncSession,
        subject: User,
        scan: ScanEvent
    ) -> List[SecurityAlert]:
        """
        Run every rule once against the scan.
        Returns the alerts raised (zero or one per rule).
        """
        alerts = []
        for rule in cls.rules:
            if not rule.matches(subject, scan):
                continue

            alert = SecurityAlert(
                subject_id=subject.user_id,
                subject_label=subject.name,
                alert_type=rule.alert_type.value,
                severity=rule.severity.value,
                message=rule.describe(subject, scan),
                location_code=scan.location_code,
                occurred_at=scan.occurred_at,
                supporting_evidence=await rule.evidence(db, subject, scan),
                status=AlertStatus.pending.value,
                reviewer=None,
                reviewed_at=None,
                resolution_notes=None,
                scan_event_id=scan.id
            )
            db.add(alert)
            alerts.append(alert)
            logger.warning(f"Security rule {rule.name} fired for {subject.user_id}: {alert.message}")

        if alerts:
            await db.flush()
            await cls.notify_wardens(db, subject, alerts)

        return alerts

    @staticmethod
    async def notify_wardens(
        db: AsyncSession,
        subject: User,
        alerts: List[SecurityAlert]
    ) -> int:
        """Wardens of the subject's hostel (all wardens if none) get one message per alert."""
        wardens = await DirectoryService.users_in_group(
            db, role=Role.warden, hostel_name=subject.hostel_name
        )
        if not wardens and subject.hostel_name:
            wardens = await DirectoryService.users_in_group(db, role=Role.warden)

        for warden in wardens:
            for alert in alerts:
                await NotificationService.enqueue(
                    db,
                    user_id=warden.user_id,
                    title=f"Security alert: {alert.alert_type}",
                    message=f"{subject.name}: {alert.message}",
                    category=NotificationCategory.security,
                    payload={"alert_id": alert.id, "severity": alert.severity}
                )
        return len(wardens) * len(alerts)

    @staticmethod
    async def review_alert(
        db: AsyncSession,
        alert_id: int,
        status: AlertStatus,
        reviewer: str,
        resolution_notes: Optional[str] = None
    ) -> SecurityAlert:
        alert = await db.get(SecurityAlert, alert_id)
        if alert is None:
            raise RecordNotFound("Security alert not found")

        alert.status = status.value
        alert.reviewer = reviewer
        alert.reviewed_at = campus_now()
        if resolution_notes:
            alert.resolution_notes = resolution_notes

        await db.flush()
        logger.info(f"Alert {alert_id} marked {status.value} by {reviewer}")
        return alert

    @staticmethod
    async def list_alerts(
        db: AsyncSession,
        severity: Optional[AlertSeverity] = None,
        status: Optional[AlertStatus] = None,
        subject_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20
    ) -> Tuple[List[SecurityAlert], Dict[str, int], int]:
        """Alerts newest first, plus pending/high/critical counts for the same filter."""
        conditions = []
        if severity:
            conditions.append(SecurityAlert.severity == severity.value)
        if status:
            conditions.append(SecurityAlert.status == status.value)
        if subject_id:
            conditions.append(SecurityAlert.subject_id == subject_id)
        where = and_(*conditions) if conditions else true()

        stats_row = (await db.execute(
            select(
                func.count(SecurityAlert.id).label("total"),
                func.sum(case((SecurityAlert.status == AlertStatus.pending.value, 1), else_=0)).label("pending"),
                func.sum(case((SecurityAlert.severity == AlertSeverity.high.value, 1), else_=0)).label("high"),
                func.sum(case((SecurityAlert.severity == AlertSeverity.critical.value, 1), else_=0)).label("critical"),
            ).where(where)
        )).one()

        stats = {
            "total": stats_row.total or 0,
            "pending": int(stats_row.pending or 0),
            "high": int(stats_row.high or 0),
            "critical": int(stats_row.critical or 0),
        }

        result = await db.execute(
            select(SecurityAlert).where(where)
            .order_by(SecurityAlert.occurred_at.desc(), SecurityAlert.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), stats, stats["total"]
