"""Tests for in-memory and JSON persistence backends."""

from datetime import date, timedelta

import pytest
import pytest_asyncio

from fracas.injuries import build_injury
from fracas.persistence import InMemoryPersistence, JsonPersistence
from fracas.schemas import (
    DailyCounter,
    FightRecord,
    InjuryType,
    MemoryRecord,
    PendingConfrontationRecord,
    Severity,
)

from conftest import START


@pytest_asyncio.fixture(params=["memory", "json"])
async def persistence(request, tmp_path):
    if request.param == "memory":
        store = InMemoryPersistence()
    else:
        store = JsonPersistence(tmp_path / "data")
    await store.initialize()
    yield store
    await store.close()


@pytest.mark.asyncio
async def test_injuries_round_trip_and_deactivate(persistence):
    bruise = build_injury("Brick", InjuryType.BRUISED, "bruised knuckles", START)
    wound = build_injury("Vesper", InjuryType.WOUNDED, "split lip", START, severity=2, fight_id="fight_1")
    await persistence.save_injury(bruise)
    await persistence.save_injury(wound)

    assert {i.id for i in await persistence.get_active_injuries()} == {bruise.id, wound.id}
    assert await persistence.get_active_injuries("Vesper") == [wound]

    assert await persistence.deactivate_injuries([bruise.id]) == 1
    # Already inactive records are not counted twice
    assert await persistence.deactivate_injuries([bruise.id]) == 0
    assert [i.id for i in await persistence.get_active_injuries()] == [wound.id]


@pytest.mark.asyncio
async def test_fights_are_listed_oldest_first_until_settled(persistence):
    older = FightRecord(aggressor="A", defender="B", severity=Severity.FIGHT, occurred_at=START)
    newer = FightRecord(
        aggressor="C", defender="D", severity=Severity.SCUFFLE, occurred_at=START + timedelta(minutes=5)
    )
    await persistence.save_fight(newer)
    await persistence.save_fight(older)

    assert [f.id for f in await persistence.get_unsettled_fights()] == [older.id, newer.id]

    await persistence.save_fight(older.model_copy(update={"settled": True, "settlement_type": "grudge"}))
    assert [f.id for f in await persistence.get_unsettled_fights()] == [newer.id]
    assert (await persistence.get_fight(older.id)).settlement_type == "grudge"
    assert await persistence.get_fight("fight_missing") is None


@pytest.mark.asyncio
async def test_pending_delete_reports_whether_it_claimed(persistence):
    record = PendingConfrontationRecord(aggressor="Brick", defender="Vesper", confrontation_at=START)
    await persistence.save_pending(record)

    assert await persistence.list_pending() == [record]
    assert await persistence.delete_pending(record.id) is True
    assert await persistence.delete_pending(record.id) is False
    assert await persistence.list_pending() == []


@pytest.mark.asyncio
async def test_counters_and_settings(persistence):
    assert await persistence.get_counter("escape:Static") is None
    counter = DailyCounter(key="escape:Static", date=date(2030, 5, 1), count=2, last_event_at=START)
    await persistence.save_counter(counter)
    assert await persistence.get_counter("escape:Static") == counter

    await persistence.save_setting("recovery_entered_at_Vesper", {"fight_id": "fight_1"})
    assert await persistence.get_setting("recovery_entered_at_Vesper") == {"fight_id": "fight_1"}
    assert await persistence.get_setting("missing") is None


@pytest.mark.asyncio
async def test_memories_most_recent_first(persistence):
    for offset in range(3):
        await persistence.save_memory(
            MemoryRecord(
                character="Dana",
                content=f"memory {offset}",
                created_at=START + timedelta(minutes=offset),
            )
        )

    memories = await persistence.get_memories("Dana", limit=2)
    assert [m.content for m in memories] == ["memory 2", "memory 1"]
    assert await persistence.get_memories("Nobody") == []


@pytest.mark.asyncio
async def test_json_persistence_survives_reopen(tmp_path):
    first = JsonPersistence(tmp_path / "data")
    await first.initialize()
    record = PendingConfrontationRecord(aggressor="Brick", defender="Vesper", confrontation_at=START)
    await first.save_pending(record)
    await first.save_memory(MemoryRecord(character="Mr. Pell", content="saw it", created_at=START))

    second = JsonPersistence(tmp_path / "data")
    await second.initialize()
    assert await second.list_pending() == [record]
    assert [m.content for m in await second.get_memories("Mr. Pell")] == ["saw it"]

    await second.clear()
    assert await second.list_pending() == []
