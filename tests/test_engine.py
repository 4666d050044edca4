"""
Tests for the ConflictEngine entry points.

Everything runs against in-memory collaborators with a scripted RNG and a
controllable clock, so each scenario is fully deterministic.
"""

import asyncio
from datetime import timedelta

import pytest

from fracas.config import Config
from fracas.engine import LAST_FIGHT_KEY, ConflictEngine, EngineSettings
from fracas.injuries import build_injury
from fracas.narrative import NarrativeGenerator, NarrativeUnavailableError
from fracas.profiles import CombatProfileRegistry
from fracas.schemas import AgentState, InjuryType, RelationshipEdge, Severity
from fracas.world import InMemoryAgentDirectory, InMemoryRelationshipStore, InMemoryZoneChannel

from conftest import ScriptedRng


def hostile(a, b, affinity=-40):
    return [
        RelationshipEdge(source=a, target=b, affinity=affinity),
        RelationshipEdge(source=b, target=a, affinity=affinity),
    ]


def office(*extra):
    agents = [
        AgentState(name="Brick", zone="the_floor"),
        AgentState(name="Vesper", zone="the_floor"),
    ]
    return agents + list(extra)


class ScriptedNarrator(NarrativeGenerator):
    def __init__(self, text=None):
        self.text = text
        self.prompts = []

    async def generate(self, prompt, timeout):
        self.prompts.append(prompt)
        if self.text is None:
            raise NarrativeUnavailableError(prompt.kind, "offline")
        return self.text


class BrokenNarrator(NarrativeGenerator):
    def __init__(self):
        self.calls = 0

    async def generate(self, prompt, timeout):
        self.calls += 1
        raise ConnectionError("provider down")


class HangingNarrator(NarrativeGenerator):
    async def generate(self, prompt, timeout):
        await asyncio.sleep(30)
        return "*too late*"


# ============================================================================
# Fight resolution
# ============================================================================


@pytest.mark.asyncio
async def test_beatdown_applies_every_consequence(make_engine):
    agents = office(
        AgentState(name="Dana", zone="the_floor"),
        AgentState(name="Tamsin", zone="the_floor"),
        AgentState(name="Lobby Kiosk", zone="the_floor"),
    )
    # Brick 17+3 vs Vesper 5+2 -> BEATDOWN; collateral roll 12 meets DC 12;
    # 0.3 -> bruised bystander; 0.1 < 0.90 -> Vesper retreats
    rng = ScriptedRng(rolls=[17, 5, 12], randoms=[0.3, 0.1])
    engine = make_engine(agents, hostile("Brick", "Vesper"), rng=rng)

    outcome = await engine.resolve_fight("Brick", "Vesper", tension_score=10, reason="hostility")

    assert outcome.fight_occurred is True
    assert outcome.outcome == "BEATDOWN"
    assert outcome.severity == Severity.BEATDOWN
    assert outcome.winner == "Brick"
    assert outcome.rolls["aggressor"].total == 20
    assert outcome.rolls["defender"].total == 7
    assert outcome.affinity_shifts == {"aggressor": -2, "defender": -8}
    assert outcome.retreated is True
    assert outcome.retreated_character == "Vesper"
    assert outcome.retreated_to == "recovery_bay"
    assert outcome.collateral_victim == "Dana"
    assert outcome.collateral_injury == InjuryType.BRUISED
    assert outcome.narrative.startswith("*Brick and Vesper clash")

    brick = await engine.directory.get_state("Brick")
    vesper = await engine.directory.get_state("Vesper")
    assert (brick.energy, brick.mood, brick.zone) == (35, "cold", "the_floor")
    assert (vesper.energy, vesper.mood, vesper.zone) == (15, "defeated", "recovery_bay")

    assert (await engine.relationships.get_edge("Brick", "Vesper")).affinity == -42
    assert (await engine.relationships.get_edge("Vesper", "Brick")).affinity == -48

    injuries = await engine.persistence.get_active_injuries()
    assert sorted((i.character, i.injury_type.value) for i in injuries) == [
        ("Dana", "bruised"),
        ("Vesper", "humiliated"),
        ("Vesper", "wounded"),
    ]

    fights = await engine.persistence.get_unsettled_fights()
    assert len(fights) == 1
    assert fights[0].id == outcome.fight_id
    assert fights[0].settlement_attempts == 0

    # Lobby Kiosk cannot witness; Dana is hurt and also remembers seeing it
    assert len(await engine.memory.get_recent_memories("Tamsin")) == 2
    assert len(await engine.memory.get_recent_memories("Dana")) == 2
    assert await engine.memory.get_recent_memories("Lobby Kiosk") == []

    setting = await engine.persistence.get_setting("recovery_entered_at_Vesper")
    assert setting["fight_id"] == outcome.fight_id

    assert engine.channel.in_zone("recovery_bay")
    assert "BEATDOWN" in engine.notifier.messages[-1]
    assert await engine.limiter.last_event(LAST_FIGHT_KEY) is not None


@pytest.mark.asyncio
async def test_standoff_has_no_winner_and_no_retreat(make_engine):
    engine = make_engine(office(), rng=ScriptedRng(rolls=[10, 11]))

    outcome = await engine.resolve_fight("Brick", "Vesper")

    # Brick 10+3 vs Vesper 11+2
    assert outcome.outcome == "STANDOFF"
    assert outcome.winner is None
    assert outcome.retreated is False
    injuries = await engine.persistence.get_active_injuries()
    assert {i.injury_type for i in injuries} == {InjuryType.SHAKEN}


@pytest.mark.asyncio
async def test_non_fighters_and_unknown_characters_cannot_fight(make_engine):
    engine = make_engine(office(AgentState(name="Dana", zone="the_floor")))

    protected = await engine.resolve_fight("Brick", "Dana")
    missing = await engine.resolve_fight("Brick", "Ghost")

    assert protected.outcome == "cannot_fight"
    assert protected.fight_occurred is False
    assert missing.outcome == "cannot_fight"
    assert await engine.persistence.get_unsettled_fights() == []


@pytest.mark.asyncio
async def test_fight_uses_generated_narrative(make_engine):
    narrator = ScriptedNarrator("*Brick and Vesper tear the break area apart.*")
    engine = make_engine(office(), rng=ScriptedRng(rolls=[12, 10]), narrator=narrator)

    outcome = await engine.resolve_fight("Brick", "Vesper")

    assert outcome.narrative == "*Brick and Vesper tear the break area apart.*"
    assert narrator.prompts[0].kind == "fight"
    assert "Severity: SCUFFLE" in narrator.prompts[0].user_prompt


# ============================================================================
# Two-phase confrontation
# ============================================================================


@pytest.mark.asyncio
async def test_confrontation_creates_one_pending_record_per_pair(make_engine):
    engine = make_engine(office(), hostile("Brick", "Vesper", -80))

    started = await engine.initiate_confrontation("Brick", "Vesper", reason="deep_hostility", tension_score=10)
    again = await engine.initiate_confrontation("Vesper", "Brick")

    assert started.started is True
    assert started.resolve_after_seconds == 45
    assert "plants himself in front of Vesper" in started.confrontation_line
    assert again.started is False
    assert again.reason == "already_pending"

    pending = await engine.persistence.list_pending()
    assert len(pending) == 1
    assert pending[0].tension_score == 10
    assert engine.channel.in_zone("the_floor")[0].text == started.confrontation_line


@pytest.mark.asyncio
async def test_confrontation_falls_back_when_narrative_fails(make_engine):
    narrator = ScriptedNarrator(None)
    engine = make_engine(office(AgentState(name="Ossian", zone="the_floor")), narrator=narrator)

    started = await engine.initiate_confrontation("Ossian", "Vesper")

    assert started.started is True
    assert started.confrontation_line == "*Ossian turns to Vesper, jaw tight.* We need to settle this. Now."
    assert narrator.prompts[0].kind == "provocation"


@pytest.mark.asyncio
async def test_confrontation_needs_a_located_aggressor(make_engine):
    engine = make_engine(office())
    result = await engine.initiate_confrontation("Ghost", "Vesper")
    assert result.started is False
    assert result.reason == "unknown_agent"
    assert await engine.persistence.list_pending() == []


@pytest.mark.asyncio
async def test_pending_waits_then_resolves_exactly_once(make_engine, clock):
    engine = make_engine(office(), hostile("Brick", "Vesper"), rng=ScriptedRng(rolls=[14, 6]))
    await engine.initiate_confrontation("Brick", "Vesper")

    clock.advance(seconds=30)
    early = await engine.resolve_pending_confrontations()
    assert [r.state for r in early.resolutions] == ["waiting"]
    assert len(await engine.persistence.list_pending()) == 1

    clock.advance(seconds=16)
    report = await engine.resolve_pending_confrontations()
    assert [r.state for r in report.resolutions] == ["resolved"]
    assert report.resolutions[0].outcome == "BEATDOWN"
    assert report.resolutions[0].winner == "Brick"
    assert await engine.persistence.list_pending() == []

    later = await engine.resolve_pending_confrontations()
    assert later.resolutions == []
    assert len(await engine.persistence.get_unsettled_fights()) == 1


@pytest.mark.asyncio
async def test_stale_pending_is_discarded_without_a_fight(make_engine, clock):
    engine = make_engine(office())
    await engine.initiate_confrontation("Brick", "Vesper")

    clock.advance(minutes=11)
    report = await engine.resolve_pending_confrontations()

    assert [r.state for r in report.resolutions] == ["stale_cleaned"]
    assert await engine.persistence.list_pending() == []
    assert await engine.persistence.get_unsettled_fights() == []


@pytest.mark.asyncio
async def test_pending_is_deleted_even_when_resolution_fails(make_engine, clock, monkeypatch):
    engine = make_engine(office())
    await engine.initiate_confrontation("Brick", "Vesper")

    async def explode(*args, **kwargs):
        raise RuntimeError("directory offline")

    monkeypatch.setattr(engine, "resolve_fight", explode)
    clock.advance(seconds=50)
    report = await engine.resolve_pending_confrontations()

    assert report.resolutions[0].state == "error"
    assert "directory offline" in report.resolutions[0].error
    assert await engine.persistence.list_pending() == []


@pytest.mark.asyncio
async def test_provider_errors_fall_back_and_the_fight_still_lands(make_engine, clock):
    narrator = BrokenNarrator()
    engine = make_engine(
        office(), hostile("Brick", "Vesper"), rng=ScriptedRng(rolls=[14, 6]), narrator=narrator
    )

    started = await engine.initiate_confrontation("Brick", "Vesper")
    assert started.started is True
    assert "plants himself in front of Vesper" in started.confrontation_line

    clock.advance(seconds=50)
    report = await engine.resolve_pending_confrontations()

    assert [r.state for r in report.resolutions] == ["resolved"]
    assert report.resolutions[0].outcome == "BEATDOWN"
    assert narrator.calls == 2
    fights = await engine.persistence.get_unsettled_fights()
    assert len(fights) == 1
    assert fights[0].winner == "Brick"
    assert await engine.persistence.get_active_injuries("Vesper")
    assert (await engine.relationships.get_edge("Vesper", "Brick")).affinity < -40


@pytest.mark.asyncio
async def test_hanging_narrator_is_cut_off_by_the_timeout(make_engine):
    engine = make_engine(
        office(),
        hostile("Brick", "Vesper"),
        rng=ScriptedRng(rolls=[12, 10]),
        narrator=HangingNarrator(),
        settings=EngineSettings(narrative_timeout=0.05),
    )

    started = await asyncio.wait_for(engine.initiate_confrontation("Brick", "Vesper"), timeout=2)
    assert started.started is True
    assert "plants himself in front of Vesper" in started.confrontation_line

    outcome = await asyncio.wait_for(engine.resolve_fight("Brick", "Vesper"), timeout=2)
    assert outcome.narrative == "*Brick and Vesper clash in a sudden burst of violence. The room goes silent.*"
    assert len(await engine.persistence.get_unsettled_fights()) == 1


# ============================================================================
# Healing and accidents
# ============================================================================


@pytest.mark.asyncio
async def test_healing_only_touches_due_injuries(make_engine, clock):
    engine = make_engine(office())
    old = build_injury("Brick", InjuryType.BRUISED, "old bruise", clock.now - timedelta(hours=5))
    fresh = build_injury("Vesper", InjuryType.WOUNDED, "fresh wound", clock.now)
    await engine.persistence.save_injury(old)
    await engine.persistence.save_injury(fresh)

    report = await engine.heal_injuries()

    assert report.healed == 1
    assert report.active == 1
    assert report.healed_ids == [old.id]
    remaining = await engine.persistence.get_active_injuries()
    assert [i.id for i in remaining] == [fresh.id]

    clock.advance(hours=12)
    assert (await engine.heal_injuries()).healed == 1
    assert await engine.persistence.get_active_injuries() == []


@pytest.mark.asyncio
async def test_accident_needs_trigger_and_bystanders(make_engine):
    engine = make_engine(office())

    assert (await engine.generate_accident()).reason == "no_trigger"
    assert (await engine.generate_accident(force=True)).reason == "no_bystanders"


@pytest.mark.asyncio
async def test_forced_accident_injures_a_protected_bystander(make_engine, clock):
    agents = office(
        AgentState(name="Mr. Pell", zone="the_floor"),
        AgentState(name="Dana", zone="the_floor"),
    )
    engine = make_engine(agents, rng=ScriptedRng(randoms=[0.0]))

    result = await engine.generate_accident(force=True)

    assert result.accident is True
    assert result.source == "the coffee machine"
    assert result.victim == "Dana"
    assert result.injury_type == InjuryType.SHAKEN
    assert result.heals_at == clock.now + timedelta(hours=6)
    injuries = await engine.persistence.get_active_injuries("Dana")
    assert len(injuries) == 1
    assert engine.notifier.messages[-1].startswith("ACCIDENT:")

    # Cooldown applies even to forced accidents
    assert (await engine.generate_accident(force=True)).reason == "cooldown"
    clock.advance(hours=2, minutes=1)
    assert (await engine.generate_accident(force=True)).accident is True


@pytest.mark.asyncio
async def test_random_accident_uses_weighted_table(make_engine):
    engine = make_engine(
        office(AgentState(name="Dana", zone="the_floor")),
        rng=ScriptedRng(randoms=[0.005, 0.30]),
    )

    result = await engine.generate_accident()

    assert result.accident is True
    assert result.source == "a filing cabinet"
    assert result.injury_type == InjuryType.BRUISED


# ============================================================================
# Configuration and ticks
# ============================================================================


def _collaborators():
    return dict(
        directory=InMemoryAgentDirectory(office()),
        relationships=InMemoryRelationshipStore(),
        profiles=CombatProfileRegistry.default(),
        channel=InMemoryZoneChannel(),
    )


@pytest.mark.asyncio
async def test_invalid_configuration_makes_entry_points_inert(monkeypatch):
    monkeypatch.setattr(Config, "STORAGE_BACKEND", "mongo")

    engine = ConflictEngine.from_config(**_collaborators())

    assert engine.configured is False
    assert "mongo" in engine.configuration_error
    assert (await engine.evaluate_tension()).status == "not_configured"
    assert (await engine.resolve_fight("Brick", "Vesper")).status == "not_configured"
    assert (await engine.settle()).status == "not_configured"
    tick = await engine.run_tick()
    assert tick.status == "not_configured"
    assert tick.pending is None


@pytest.mark.asyncio
async def test_from_config_builds_in_memory_engine(monkeypatch):
    monkeypatch.setattr(Config, "STORAGE_BACKEND", "memory")
    monkeypatch.setattr(Config, "LLM_PROVIDER", None)
    monkeypatch.setattr(Config, "NOTIFY_WEBHOOK", None)
    monkeypatch.setattr(Config, "FIGHT_COOLDOWN_MINUTES", 5)

    async with ConflictEngine.from_config(**_collaborators()) as engine:
        assert engine.configured is True
        assert engine.narrator is None
        assert engine.settings.fight_cooldown == timedelta(minutes=5)
        assert (await engine.evaluate_tension()).status == "ok"


@pytest.mark.asyncio
async def test_run_tick_drives_a_confrontation_to_a_fight(make_engine, clock):
    agents = [
        AgentState(name="Brick", zone="the_floor", patience=10),
        AgentState(name="Vesper", zone="the_floor"),
    ]
    engine = make_engine(agents, hostile("Brick", "Vesper", -80), rng=ScriptedRng(rolls=[14, 6]))

    first = await engine.run_tick()
    assert first.tension.fight_ready is True
    assert first.confrontation.started is True
    assert first.accident.reason == "no_trigger"
    assert "errors" not in first.metadata

    clock.advance(seconds=46)
    second = await engine.run_tick()
    assert [r.state for r in second.pending.resolutions] == ["resolved"]
    assert second.tension.reason == "cooldown"
    assert second.confrontation is None
    assert len(await engine.persistence.get_unsettled_fights()) == 1


@pytest.mark.asyncio
async def test_run_tick_isolates_failing_stages(make_engine, monkeypatch):
    engine = make_engine(office())

    async def broken():
        raise RuntimeError("settlement store down")

    monkeypatch.setattr(engine, "settle", broken)
    report = await engine.run_tick()

    assert report.settlement is None
    assert report.metadata["errors"] == {"settlement": "settlement store down"}
    assert report.healing is not None
    assert report.accident is not None
