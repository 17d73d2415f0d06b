from datetime import timedelta

import pytest

from campus_rfid.exceptions import BadgeMismatch, SubjectNotFound, RecordNotFound
from campus_rfid.models.database_models import MessTransaction, PointsHistoryEntry, GamificationProfile
from campus_rfid.schemas.schemas import MessTransactionRequest, MealType, StatsPeriod
from campus_rfid.services.broadcast_service import WARDEN_CHANNEL
from campus_rfid.services.log_service import LogService
from campus_rfid.services.scan_service import generate_transaction_id

from conftest import MONDAY, at, fetch_all


def mess_request(subject_id="RA21CSE001", badge_id="RFC123456001", **overrides):
    data = {
        "subject_id": subject_id,
        "badge_id": badge_id,
        "venue_name": "Main Mess",
        "meal_type": "lunch",
        "cost": 50,
        "discount_percent": 10,
        "items": ["rice", "dal"],
    }
    data.update(overrides)
    return MessTransactionRequest(**data)


async def test_discounted_transaction_awards_mess_points(db, orchestrator, broadcaster):
    outcome = await orchestrator.handle_mess_transaction(db, mess_request(), now=at(13, 0))
    await orchestrator.fanout.drain()

    txn = outcome.transaction
    assert txn.final_amount == 45.0
    assert txn.cost == 50
    assert txn.items == ["rice", "dal"]
    assert txn.transaction_id.startswith("MESS_")
    assert outcome.points_awarded == 2
    assert outcome.failures == {}

    history = await fetch_all(PointsHistoryEntry, PointsHistoryEntry.category == "mess")
    assert [(h.points, h.reason) for h in history] == [(2, "Mess visit")]

    profile = (await fetch_all(GamificationProfile))[0]
    assert profile.mess_streak == 1

    assert list(broadcaster.messages) == [WARDEN_CHANNEL]
    message = broadcaster.messages[WARDEN_CHANNEL][0]
    assert message["event"] == "mess-entry"
    assert message["data"]["amount"] == 45.0
    assert message["data"]["transaction_id"] == txn.transaction_id


async def test_card_mismatch_is_rejected(db, orchestrator):
    with pytest.raises(BadgeMismatch):
        await orchestrator.handle_mess_transaction(db, mess_request(badge_id="RFC123456002"), now=at(13, 0))

    assert await fetch_all(MessTransaction) == []


async def test_only_students_may_swipe(db, orchestrator):
    with pytest.raises(SubjectNotFound):
        await orchestrator.handle_mess_transaction(
            db, mess_request(subject_id="T001", badge_id="RFC789456001"), now=at(13, 0)
        )


def test_discount_must_be_a_percentage():
    with pytest.raises(ValueError):
        mess_request(discount_percent=120)
    with pytest.raises(ValueError):
        mess_request(cost=-1)


def test_transaction_ids_are_unique_and_upper_case():
    ids = {generate_transaction_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(i == i.upper() and i.startswith("MESS_") for i in ids)


async def test_mess_log_filters(db, orchestrator):
    await orchestrator.handle_mess_transaction(db, mess_request(), now=at(8, 0))
    await orchestrator.handle_mess_transaction(db, mess_request(meal_type="dinner"), now=at(20, 0))

    transactions, total = await LogService.list_mess_transactions(db, meal_type=MealType.dinner)
    assert total == 1
    assert transactions[0].meal_type == "dinner"

    transactions, total = await LogService.list_mess_transactions(db, on_date=MONDAY.date())
    assert total == 2
    assert transactions[0].occurred_at == at(20, 0)


async def test_mess_stats_by_period(db, orchestrator):
    await orchestrator.handle_mess_transaction(db, mess_request(meal_type="breakfast", cost=40), now=at(8, 0) - timedelta(days=3))
    await orchestrator.handle_mess_transaction(db, mess_request(), now=at(13, 0))
    await orchestrator.handle_mess_transaction(db, mess_request(meal_type="dinner", cost=60, discount_percent=0), now=at(20, 0))
    now = at(21, 0)

    today = await LogService.mess_stats(db, StatsPeriod.today, student_id="RA21CSE001", now=now)
    assert today["summary"] == {"total_entries": 2, "total_spent": 105.0, "average_spent": 52.5}
    assert [(m["meal_type"], m["count"]) for m in today["meal_type_distribution"]] == [("dinner", 1), ("lunch", 1)]
    assert today["daily_pattern"] == [{"date": MONDAY.date(), "entries": 2, "spent": 105.0}]

    week = await LogService.mess_stats(db, StatsPeriod.week, student_id="RA21CSE001", now=now)
    assert week["summary"]["total_entries"] == 3
    assert [d["date"] for d in week["daily_pattern"]] == [(MONDAY - timedelta(days=3)).date(), MONDAY.date()]


async def test_mess_stats_scoped_to_warden_hostel(db, orchestrator):
    await orchestrator.handle_mess_transaction(db, mess_request(), now=at(13, 0))
    await orchestrator.handle_mess_transaction(
        db, mess_request(subject_id="RA21CSE002", badge_id="RFC123456002"), now=at(13, 5)
    )

    stats = await LogService.mess_stats(db, StatsPeriod.today, warden_id="W001", now=at(21, 0))
    assert stats["summary"]["total_entries"] == 1

    everyone = await LogService.mess_stats(db, StatsPeriod.today, now=at(21, 0))
    assert everyone["summary"]["total_entries"] == 2

    with pytest.raises(RecordNotFound):
        await LogService.mess_stats(db, warden_id="T001", now=at(21, 0))


async def test_mess_stats_empty_period(db):
    stats = await LogService.mess_stats(db, StatsPeriod.month, now=at(21, 0))
    assert stats["summary"] == {"total_entries": 0, "total_spent": 0, "average_spent": 0}
    assert stats["meal_type_distribution"] == []
    assert stats["daily_pattern"] == []
