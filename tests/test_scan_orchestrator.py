import asyncio

import pytest

from campus_rfid.config import settings
from campus_rfid.database import async_session_maker
from campus_rfid.exceptions import SubjectNotFound
from campus_rfid.models.database_models import (
    ScanEvent, AttendanceRecord, SecurityAlert, GamificationProfile, PointsHistoryEntry
)
from campus_rfid.services.broadcast_service import (
    Broadcaster, EventFanout, WARDEN_CHANNEL, TEACHER_CHANNEL, subject_channel
)
from campus_rfid.services.gamification_service import GamificationService, WELCOME_BONUS
from campus_rfid.services.scan_service import ScanOrchestrator
from campus_rfid.services.security_service import SecurityService

from conftest import STUDENT, TEACHER, at, scan_request, fetch_all


async def test_badge_mismatch_is_rejected_without_records(db, orchestrator, broadcaster):
    request = scan_request(who={"user_id": "RA21CSE001", "badge_id": "RFC123456002"})

    with pytest.raises(SubjectNotFound):
        await orchestrator.handle_scan(db, request, now=at(9, 5))
    await orchestrator.fanout.drain()

    assert await fetch_all(ScanEvent) == []
    assert await fetch_all(AttendanceRecord) == []
    assert dict(broadcaster.messages) == {}


async def test_unknown_and_inactive_subjects_are_rejected(db, orchestrator):
    with pytest.raises(SubjectNotFound):
        await orchestrator.handle_scan(
            db, scan_request(who={"user_id": "NOPE", "badge_id": "RFC000"}), now=at(9, 5)
        )
    with pytest.raises(SubjectNotFound):
        await orchestrator.handle_scan(
            db, scan_request(who={"user_id": "RA21ECE003", "badge_id": "RFC123456003"}), now=at(9, 5)
        )

    assert await fetch_all(ScanEvent) == []


async def test_valid_scan_is_logged_exactly_once(db, orchestrator):
    outcome = await orchestrator.handle_scan(db, scan_request(), now=at(9, 5))

    scans = await fetch_all(ScanEvent)
    assert len(scans) == 1
    assert scans[0].id == outcome.scan_event.id
    assert scans[0].subject_id == "RA21CSE001"
    assert scans[0].occurred_at == at(9, 5)
    assert scans[0].valid is True
    assert outcome.failures == {}


async def test_gamification_failure_is_isolated(db, orchestrator, monkeypatch):
    async def ledger_down(*args, **kwargs):
        raise RuntimeError("ledger down")

    monkeypatch.setattr(GamificationService, "award_points", ledger_down)

    outcome = await orchestrator.handle_scan(db, scan_request(), now=at(9, 5))

    assert outcome.failures == {"gamification": "ledger down"}
    assert outcome.points_awarded == 0
    assert len(outcome.attendance) == 1
    assert len(await fetch_all(AttendanceRecord)) == 1
    assert len(await fetch_all(ScanEvent)) == 1
    assert await fetch_all(GamificationProfile) == []


async def test_security_failure_rolls_back_only_its_step(db, orchestrator, monkeypatch):
    async def rules_down(db, subject, scan):
        db.add(SecurityAlert(
            subject_id=subject.user_id, subject_label=subject.name, alert_type="unusual_timing",
            severity="medium", message="partial", location_code=scan.location_code,
            occurred_at=scan.occurred_at, status="pending"
        ))
        await db.flush()
        raise RuntimeError("rule engine down")

    monkeypatch.setattr(SecurityService, "evaluate", rules_down)

    outcome = await orchestrator.handle_scan(db, scan_request(), now=at(9, 5))

    assert set(outcome.failures) == {"security"}
    assert await fetch_all(SecurityAlert) == []
    assert len(await fetch_all(AttendanceRecord)) == 1
    assert outcome.points_awarded == 5


async def test_location_update_channels_for_student(db, orchestrator, broadcaster):
    await orchestrator.handle_scan(
        db, scan_request(location_code="library", location_label="Central Library"), now=at(11, 0)
    )
    await orchestrator.fanout.drain()

    expected = {WARDEN_CHANNEL, TEACHER_CHANNEL, subject_channel("RA21CSE001")}
    assert set(broadcaster.messages) == expected

    message = broadcaster.messages[WARDEN_CHANNEL][0]
    assert message["event"] == "location-update"
    assert message["data"]["user_id"] == "RA21CSE001"
    assert message["data"]["location"] == "library"
    assert message["data"]["location_name"] == "Central Library"
    assert message["data"]["action"] == "entry"
    assert message["data"]["user_role"] == "student"


async def test_location_update_channels_for_staff(db, orchestrator, broadcaster):
    await orchestrator.handle_scan(db, scan_request(who=TEACHER), now=at(9, 0))
    await orchestrator.fanout.drain()

    assert set(broadcaster.messages) == {WARDEN_CHANNEL, TEACHER_CHANNEL}


class StalledBroadcaster(Broadcaster):
    def __init__(self):
        self.started = 0

    async def publish(self, channel, message):
        self.started += 1
        await asyncio.sleep(10)


class BrokenBroadcaster(Broadcaster):
    async def publish(self, channel, message):
        raise ConnectionError("redis unreachable")


async def test_stalled_broadcast_never_blocks_the_scan(db):
    stalled = StalledBroadcaster()
    orchestrator = ScanOrchestrator(EventFanout(stalled, timeout=0.05))

    outcome = await asyncio.wait_for(
        orchestrator.handle_scan(db, scan_request(), now=at(9, 5)), timeout=5
    )
    await orchestrator.fanout.drain()

    assert len(outcome.attendance) == 1
    assert stalled.started == 3


async def test_broken_broadcast_is_swallowed(db):
    orchestrator = ScanOrchestrator(EventFanout(BrokenBroadcaster(), timeout=1.0))

    outcome = await orchestrator.handle_scan(db, scan_request(), now=at(9, 5))
    await orchestrator.fanout.drain()

    assert outcome.failures == {}
    assert len(await fetch_all(ScanEvent)) == 1


async def test_disabled_gamification_awards_nothing(db, orchestrator, monkeypatch):
    monkeypatch.setattr(settings, "GAMIFICATION_ENABLED", False)

    outcome = await orchestrator.handle_scan(db, scan_request(who=STUDENT), now=at(9, 5))

    assert outcome.points_awarded == 0
    assert await fetch_all(GamificationProfile) == []


async def test_concurrent_taps_record_attendance_once(db, orchestrator):
    async def tap():
        async with async_session_maker() as session:
            return await orchestrator.handle_scan(session, scan_request(), now=at(9, 5))

    outcomes = await asyncio.gather(tap(), tap())

    assert [o.failures for o in outcomes] == [{}, {}]
    assert sorted(len(o.attendance) for o in outcomes) == [0, 1]
    assert [o.points_awarded for o in outcomes] == [5, 5]
    assert len(await fetch_all(ScanEvent)) == 2
    assert len(await fetch_all(AttendanceRecord)) == 1

    profiles = await fetch_all(GamificationProfile)
    assert [p.total_points for p in profiles] == [WELCOME_BONUS + 10]
    welcome = await fetch_all(PointsHistoryEntry, PointsHistoryEntry.category == "welcome")
    assert len(welcome) == 1
