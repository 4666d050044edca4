"""Tests for effect ordering and the EffectApplier."""

import pytest

from fracas.effects import (
    AdjustEnergy,
    ApplyAffinity,
    CreateInjury,
    CreateMemory,
    EffectApplier,
    Notify,
    PostMessage,
    Relocate,
    SaveSetting,
    SetMood,
    ordered,
)
from fracas.injuries import build_injury
from fracas.memory import SimpleMemoryStream
from fracas.persistence import InMemoryPersistence
from fracas.schemas import AgentState, InjuryType, MemoryRecord
from fracas.world import (
    InMemoryAgentDirectory,
    InMemoryNotifier,
    InMemoryRelationshipStore,
    InMemoryZoneChannel,
    NotificationSink,
)

from conftest import START


class FailingNotifier(NotificationSink):
    async def notify(self, text):
        raise ConnectionError("webhook down")


def make_applier(notifier=None):
    persistence = InMemoryPersistence()
    return EffectApplier(
        directory=InMemoryAgentDirectory([AgentState(name="Brick", zone="the_floor", energy=95)]),
        relationships=InMemoryRelationshipStore(),
        channel=InMemoryZoneChannel(),
        memory=SimpleMemoryStream(persistence, clock=lambda: START),
        persistence=persistence,
        notifier=notifier or InMemoryNotifier(),
    )


def test_records_come_first_and_notifications_last():
    effects = [
        Notify(text="summary"),
        PostMessage(zone="the_floor", speaker="Brick", text="hi"),
        SetMood(character="Brick", mood="cold"),
        CreateInjury(injury=build_injury("Brick", InjuryType.BRUISED, "x", START)),
        CreateMemory(memory=MemoryRecord(character="Brick", content="x", created_at=START)),
    ]
    assert [e.kind for e in ordered(effects)] == [
        "create_injury",
        "set_mood",
        "create_memory",
        "post_message",
        "notify",
    ]


@pytest.mark.asyncio
async def test_applier_updates_every_collaborator():
    applier = make_applier()
    report = await applier.apply(
        [
            AdjustEnergy(character="Brick", delta=20),
            Relocate(character="Brick", zone="recovery_bay"),
            ApplyAffinity(source="Brick", target="Vesper", delta=-150),
            SaveSetting(key="recovery_entered_at_Brick", value={"reason": "medical_retreat"}),
            PostMessage(zone="recovery_bay", speaker="Brick", text="*sits down*", is_emote=True),
            Notify(text="done"),
        ]
    )

    assert report.ok
    assert report.applied == 6
    brick = await applier.directory.get_state("Brick")
    assert brick.energy == 100
    assert brick.zone == "recovery_bay"
    assert (await applier.relationships.get_edge("Brick", "Vesper")).affinity == -100
    assert await applier.persistence.get_setting("recovery_entered_at_Brick") == {"reason": "medical_retreat"}
    assert applier.channel.posts[0].is_emote is True
    assert applier.notifier.messages == ["done"]


@pytest.mark.asyncio
async def test_one_failure_does_not_stop_the_rest():
    applier = make_applier(FailingNotifier())
    report = await applier.apply(
        [
            SetMood(character="Ghost", mood="cold"),
            SetMood(character="Brick", mood="cold"),
            Notify(text="summary"),
            PostMessage(zone="the_floor", speaker="Brick", text="hi"),
        ]
    )

    assert report.ok is False
    assert report.applied == 2
    assert len(report.failures) == 2
    assert report.failed("notify")
    assert not report.failed("post_message")
    assert (await applier.directory.get_state("Brick")).mood == "cold"
    assert len(applier.channel.posts) == 1
