"""Tests for fight consequence tables, collateral damage, and retreats."""

from datetime import timedelta

import pytest

from fracas.consequences import (
    RETREAT_CAP,
    affinity_shifts,
    check_collateral,
    core_effects,
    energy_drain,
    fight_injuries,
    fight_summary,
    memory,
    mood_changes,
    retreat_chance,
    retreat_effects,
    witness_memories,
)
from fracas.dice import resolve
from fracas.effects import ApplyAffinity, CreateInjury, CreateMemory, PostMessage, Relocate, SaveSetting
from fracas.injuries import build_injury
from fracas.profiles import CombatProfileRegistry
from fracas.schemas import CombatProfile, InjuryType, Severity

from conftest import START, ScriptedRng


EXPECTED_HEAL = {
    InjuryType.BRUISED: timedelta(hours=4),
    InjuryType.SHAKEN: timedelta(hours=6),
    InjuryType.HUMILIATED: timedelta(hours=8),
    InjuryType.WOUNDED: timedelta(hours=12),
}


@pytest.mark.parametrize("injury_type", list(InjuryType))
def test_every_injury_type_heals_after_its_fixed_duration(injury_type):
    injury = build_injury("Vesper", injury_type, "x", START)
    assert injury.created_at == START
    assert injury.heals_at - injury.created_at == EXPECTED_HEAL[injury_type]


def beatdown():
    return resolve("Brick", 15, 3, "Vesper", 10, -2)


def test_retreat_is_capped_for_a_wounded_exhausted_beatdown_loser():
    profile = CombatProfile(name="Vesper", retreat_affinity=0.30)
    prior = [build_injury("Vesper", InjuryType.WOUNDED, "old wound", START)]

    chance = retreat_chance(profile, Severity.BEATDOWN, prior, energy=15)

    # 0.30 + 0.30 + 0.35 + 0.25 = 1.20, clamped
    assert chance == RETREAT_CAP == 0.95


def test_retreat_chance_for_a_fresh_scuffle_loser_is_the_base():
    profile = CombatProfile(name="Tamsin", retreat_affinity=0.25)
    assert retreat_chance(profile, Severity.SCUFFLE, [], energy=60) == pytest.approx(0.25)
    assert retreat_chance(None, Severity.SCUFFLE, [], energy=60) == pytest.approx(0.30)


def test_two_prior_injuries_raise_retreat_chance():
    profile = CombatProfile(name="Tamsin", retreat_affinity=0.10)
    prior = [
        build_injury("Tamsin", InjuryType.BRUISED, "a", START),
        build_injury("Tamsin", InjuryType.SHAKEN, "b", START),
    ]
    assert retreat_chance(profile, Severity.SCUFFLE, prior, energy=60) == pytest.approx(0.30)


def test_exclusive_bond_doubles_affinity_loss():
    dice = resolve("Brick", 12, 0, "Vesper", 7, 0)  # margin 5, FIGHT
    assert dice.severity == Severity.FIGHT

    assert affinity_shifts(dice, exclusive_bond=False) == {"aggressor": -3, "defender": -6}
    assert affinity_shifts(dice, exclusive_bond=True) == {"aggressor": -6, "defender": -12}


def test_beatdown_tables_key_on_winner_and_loser():
    # Defender wins the beatdown: the aggressor takes the loser side of every table
    dice = resolve("Brick", 2, 0, "Vesper", 15, 0)
    assert dice.severity == Severity.BEATDOWN
    assert dice.winner == "Vesper"

    assert affinity_shifts(dice, False) == {"aggressor": -8, "defender": -2}
    assert energy_drain(dice) == {"Brick": -35, "Vesper": -15}
    assert mood_changes(dice) == {"Vesper": "cold", "Brick": "defeated"}


def test_standoff_leaves_both_shaken_and_tense():
    dice = resolve("Brick", 10, 0, "Vesper", 10, 0)
    injuries = fight_injuries(dice, START, "fight_x")

    assert [(i.character, i.injury_type) for i in injuries] == [
        ("Brick", InjuryType.SHAKEN),
        ("Vesper", InjuryType.SHAKEN),
    ]
    assert mood_changes(dice) == {"Brick": "tense", "Vesper": "tense"}
    assert energy_drain(dice) == {"Brick": -10, "Vesper": -10}


@pytest.mark.parametrize(
    "rolls,expected",
    [
        ((12, 10), [("Vesper", InjuryType.BRUISED, 1)]),
        ((15, 10), [("Brick", InjuryType.BRUISED, 1), ("Vesper", InjuryType.WOUNDED, 2)]),
        ((19, 5), [("Vesper", InjuryType.WOUNDED, 3), ("Vesper", InjuryType.HUMILIATED, 2)]),
    ],
)
def test_injuries_by_severity(rolls, expected):
    dice = resolve("Brick", rolls[0], 0, "Vesper", rolls[1], 0)
    injuries = fight_injuries(dice, START, "fight_x")

    assert [(i.character, i.injury_type, i.severity) for i in injuries] == expected
    for injury in injuries:
        assert injury.fight_id == "fight_x"
        assert injury.is_active is True
        assert injury.heals_at - injury.created_at == EXPECTED_HEAL[injury.injury_type]


def test_injury_source_is_the_opponent():
    injuries = fight_injuries(beatdown(), START, "fight_x")
    assert {i.source_character for i in injuries} == {"Brick"}


def test_core_effects_cover_both_sides():
    dice = beatdown()
    shifts = affinity_shifts(dice, False)
    effects = core_effects(dice, shifts=shifts, injuries=fight_injuries(dice, START, "f"), now=START)

    affinity = [e for e in effects if isinstance(e, ApplyAffinity)]
    assert [(e.source, e.target, e.delta) for e in affinity] == [("Brick", "Vesper", -2), ("Vesper", "Brick", -8)]
    assert len([e for e in effects if isinstance(e, CreateInjury)]) == 2

    memories = [e.memory for e in effects if isinstance(e, CreateMemory)]
    assert {m.character for m in memories} == {"Brick", "Vesper"}
    assert all(m.importance == 9 for m in memories)
    assert all(m.expires_at == START + timedelta(days=30) for m in memories)


def test_witness_memories_are_capped():
    dice = beatdown()
    effects = witness_memories(dice, ["Ana", "Bo", "Cy", "Dee"], "the_floor", START)

    assert [e.memory.character for e in effects] == ["Ana", "Bo", "Cy"]
    assert all(e.memory.importance == 8 for e in effects)
    assert "the floor" in effects[0].memory.content


def test_memory_helper_expiry_windows():
    assert memory("A", "x", importance=5, now=START).expires_at == START + timedelta(days=1)
    assert memory("A", "x", importance=7, now=START).expires_at == START + timedelta(days=7)
    grudge = memory("A", "x", importance=8, now=START, never_expires=True, pinned=True)
    assert grudge.expires_at is None
    assert grudge.is_pinned is True


def test_collateral_hits_a_protected_bystander_when_roll_meets_dc():
    registry = CombatProfileRegistry.default()
    rng = ScriptedRng(rolls=[12], randoms=[0.3])

    outcome = check_collateral(
        beatdown(),
        bystanders=["Dana"],
        witnesses=["Dana", "Tamsin"],
        profiles=registry,
        zone="the_floor",
        fight_id="fight_x",
        rng=rng,
        now=START,
    )

    assert outcome.dc == 12
    assert outcome.roll == 12
    assert outcome.victim == "Dana"
    assert outcome.injury_type == InjuryType.BRUISED

    injuries = [e.injury for e in outcome.effects if isinstance(e, CreateInjury)]
    assert len(injuries) == 1
    assert injuries[0].source_character == "Brick"
    assert injuries[0].heals_at - injuries[0].created_at == timedelta(hours=4)

    witnesses = [e.memory.character for e in outcome.effects if isinstance(e, CreateMemory)]
    assert witnesses == ["Dana", "Tamsin"]


def test_collateral_misses_below_dc():
    rng = ScriptedRng(rolls=[14])
    dice = resolve("Brick", 12, 0, "Vesper", 7, 0)  # FIGHT, DC 15
    outcome = check_collateral(
        dice,
        bystanders=["Dana"],
        witnesses=["Dana"],
        profiles=CombatProfileRegistry.default(),
        zone="the_floor",
        fight_id="fight_x",
        rng=rng,
        now=START,
    )
    assert outcome.dc == 15
    assert outcome.roll == 14
    assert outcome.victim is None
    assert outcome.effects == []


def test_standoff_never_rolls_for_collateral():
    rng = ScriptedRng(rolls=[20])
    dice = resolve("Brick", 10, 0, "Vesper", 10, 0)
    outcome = check_collateral(
        dice,
        bystanders=["Dana"],
        witnesses=["Dana"],
        profiles=CombatProfileRegistry.default(),
        zone="the_floor",
        fight_id="fight_x",
        rng=rng,
        now=START,
    )
    assert outcome.roll is None
    assert rng.rolls == [20]


def test_retreat_effects_relocate_and_record_entry():
    dice = beatdown()
    injuries = fight_injuries(dice, START, "fight_x")
    effects = retreat_effects(
        "Vesper",
        profile=None,
        zone="the_floor",
        recovery_zone="recovery_bay",
        fight_id="fight_x",
        new_injuries=injuries,
        now=START,
    )

    assert isinstance(effects[0], PostMessage) and effects[0].zone == "the_floor"
    assert Relocate(character="Vesper", zone="recovery_bay") in effects
    setting = next(e for e in effects if isinstance(e, SaveSetting))
    assert setting.key == "recovery_entered_at_Vesper"
    assert setting.value["fight_id"] == "fight_x"
    assert setting.value["injuries"] == ["wounded", "humiliated"]


def test_fight_summary_mentions_outcome_details():
    note = fight_summary(beatdown(), zone="the_floor", retreated=True, collateral_victim="Dana")
    assert "BEATDOWN" in note.text
    assert "Winner: Brick" in note.text
    assert "Vesper retreated" in note.text
    assert "Dana hurt in the crossfire" in note.text
