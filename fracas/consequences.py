"""
Consequence tables and effect builders for a resolved fight.

Given a DiceOutcome, these functions decide affinity shifts, energy drain,
moods, injuries, memories, collateral damage, and the loser's retreat. They
return Effect lists; nothing here talks to a collaborator.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from fracas.dice import DiceOutcome
from fracas.effects import (
    AdjustEnergy,
    ApplyAffinity,
    CreateInjury,
    CreateMemory,
    Effect,
    Notify,
    PostMessage,
    Relocate,
    SaveSetting,
    SetMood,
)
from fracas.injuries import build_injury
from fracas.schemas import CombatProfile, InjuryRecord, InjuryType, MemoryRecord, Mood, Severity


EXCLUSIVE_BOND_MULTIPLIER = 2

# (aggressor, defender) deltas; BEATDOWN is (winner, loser)
AFFINITY_DELTAS = {
    Severity.STANDOFF: (-3, -3),
    Severity.SCUFFLE: (-2, -4),
    Severity.FIGHT: (-3, -6),
    Severity.BEATDOWN: (-2, -8),
}

# (aggressor, defender) drains; BEATDOWN is (winner, loser)
ENERGY_DRAIN = {
    Severity.STANDOFF: (-10, -10),
    Severity.SCUFFLE: (-15, -20),
    Severity.FIGHT: (-25, -25),
    Severity.BEATDOWN: (-15, -35),
}

WINNER_MOOD = {
    Severity.BEATDOWN: Mood.COLD,
    Severity.FIGHT: Mood.FIERCE,
    Severity.SCUFFLE: Mood.AGITATED,
}

LOSER_MOOD = {
    Severity.BEATDOWN: Mood.DEFEATED,
    Severity.FIGHT: Mood.HURT,
    Severity.SCUFFLE: Mood.UPSET,
}

MEMORY_IMPORTANCE = {Severity.BEATDOWN: 9, Severity.FIGHT: 7}

COLLATERAL_DC = {Severity.BEATDOWN: 12, Severity.FIGHT: 15, Severity.SCUFFLE: 17}

MAX_WITNESSES = 3
MAX_COLLATERAL_WITNESSES = 4

RETREAT_CAP = 0.95

SEVERITY_EMOJI = {
    Severity.STANDOFF: "😤",
    Severity.SCUFFLE: "👊",
    Severity.FIGHT: "⚔️",
    Severity.BEATDOWN: "💀",
}


# ============================================================================
# Memories
# ============================================================================


def memory_expiry(importance: int) -> timedelta:
    if importance >= 9:
        return timedelta(days=30)
    if importance >= 7:
        return timedelta(days=7)
    return timedelta(days=1)


def memory(
    character: str,
    content: str,
    *,
    importance: int,
    now: datetime,
    tags: Sequence[str] = (),
    related: Sequence[str] = (),
    expires_in: Optional[timedelta] = None,
    never_expires: bool = False,
    pinned: bool = False,
) -> MemoryRecord:
    """Build a fight memory. Expiry defaults to the importance-based window."""
    if never_expires:
        expires_at = None
    else:
        expires_at = now + (expires_in or memory_expiry(importance))
    return MemoryRecord(
        character=character,
        content=content,
        importance=importance,
        tags=list(tags),
        related_characters=list(related),
        expires_at=expires_at,
        is_pinned=pinned,
        created_at=now,
    )


def _participant_line(me: str, other: str, dice: DiceOutcome) -> str:
    severity = dice.severity
    if dice.winner is None:
        return f"Squared off with {other}. Nobody landed anything clean, and nobody backed down."
    if dice.winner == me:
        if severity == Severity.BEATDOWN:
            return f"Put {other} on the floor. It was not close."
        if severity == Severity.FIGHT:
            return f"Fought {other} and won. Took a few hits doing it."
        return f"Shoved {other} around until they gave up. Quick and ugly."
    if severity == Severity.BEATDOWN:
        return f"{other} beat me badly in front of everyone."
    if severity == Severity.FIGHT:
        return f"Lost a real fight to {other}. It hurt."
    return f"Got the worse end of a scuffle with {other}."


def participant_memories(dice: DiceOutcome, now: datetime) -> List[Effect]:
    importance = MEMORY_IMPORTANCE.get(dice.severity, 5)
    tags = ["fight", dice.severity.value.lower()]
    return [
        CreateMemory(
            memory=memory(
                me,
                _participant_line(me, other, dice),
                importance=importance,
                now=now,
                tags=tags,
                related=[other],
            )
        )
        for me, other in ((dice.aggressor, dice.defender), (dice.defender, dice.aggressor))
    ]


def witness_memories(dice: DiceOutcome, witnesses: Sequence[str], zone: str, now: datetime) -> List[Effect]:
    importance = 8 if dice.severity == Severity.BEATDOWN else 6
    place = zone.replace("_", " ")
    if dice.winner:
        ending = f"{dice.winner} came out on top."
    else:
        ending = "Neither one gave ground."
    content = (
        f"Saw {dice.aggressor} and {dice.defender} go at each other on the {place} "
        f"({dice.severity.value.lower()}). {ending}"
    )
    return [
        CreateMemory(
            memory=memory(
                witness,
                content,
                importance=importance,
                now=now,
                tags=["fight", "witness"],
                related=[dice.aggressor, dice.defender],
            )
        )
        for witness in list(witnesses)[:MAX_WITNESSES]
    ]


# ============================================================================
# Core consequences
# ============================================================================


def affinity_shifts(dice: DiceOutcome, exclusive_bond: bool) -> Dict[str, int]:
    """Affinity delta for each side's edge toward the other."""
    first, second = AFFINITY_DELTAS[dice.severity]
    if dice.severity == Severity.BEATDOWN:
        aggressor_delta = first if dice.winner == dice.aggressor else second
        defender_delta = first if dice.winner == dice.defender else second
    else:
        aggressor_delta, defender_delta = first, second
    multiplier = EXCLUSIVE_BOND_MULTIPLIER if exclusive_bond else 1
    return {
        "aggressor": round(aggressor_delta * multiplier),
        "defender": round(defender_delta * multiplier),
    }


def energy_drain(dice: DiceOutcome) -> Dict[str, int]:
    first, second = ENERGY_DRAIN[dice.severity]
    if dice.severity == Severity.BEATDOWN:
        return {
            dice.aggressor: first if dice.winner == dice.aggressor else second,
            dice.defender: first if dice.winner == dice.defender else second,
        }
    return {dice.aggressor: first, dice.defender: second}


def mood_changes(dice: DiceOutcome) -> Dict[str, str]:
    if dice.winner is None or dice.loser is None:
        return {dice.aggressor: Mood.TENSE.value, dice.defender: Mood.TENSE.value}
    return {
        dice.winner: WINNER_MOOD[dice.severity].value,
        dice.loser: LOSER_MOOD[dice.severity].value,
    }


def fight_injuries(dice: DiceOutcome, now: datetime, fight_id: str) -> List[InjuryRecord]:
    a, d = dice.aggressor, dice.defender

    def injure(who: str, injury_type: InjuryType, description: str, severity: int) -> InjuryRecord:
        return build_injury(
            who,
            injury_type,
            description,
            now,
            severity=severity,
            source_character=d if who == a else a,
            fight_id=fight_id,
        )

    if dice.severity == Severity.STANDOFF:
        return [
            injure(a, InjuryType.SHAKEN, f"Tense standoff with {d}", 1),
            injure(d, InjuryType.SHAKEN, f"Tense standoff with {a}", 1),
        ]

    winner, loser = dice.winner, dice.loser
    if dice.severity == Severity.SCUFFLE:
        return [injure(loser, InjuryType.BRUISED, f"Scuffle with {winner}", 1)]
    if dice.severity == Severity.FIGHT:
        return [
            injure(winner, InjuryType.BRUISED, f"Took hits fighting {loser}", 1),
            injure(loser, InjuryType.WOUNDED, f"Lost a fight to {winner}", 2),
        ]
    return [
        injure(loser, InjuryType.WOUNDED, f"Beaten down by {winner}", 3),
        injure(loser, InjuryType.HUMILIATED, f"Publicly humiliated by {winner}", 2),
    ]


def core_effects(
    dice: DiceOutcome,
    *,
    shifts: Dict[str, int],
    injuries: Sequence[InjuryRecord],
    now: datetime,
) -> List[Effect]:
    """Affinity, energy, mood, injury, and participant-memory effects."""
    effects: List[Effect] = [
        ApplyAffinity(source=dice.aggressor, target=dice.defender, delta=shifts["aggressor"]),
        ApplyAffinity(source=dice.defender, target=dice.aggressor, delta=shifts["defender"]),
    ]
    effects.extend(
        AdjustEnergy(character=name, delta=delta) for name, delta in energy_drain(dice).items()
    )
    effects.extend(SetMood(character=name, mood=mood) for name, mood in mood_changes(dice).items())
    effects.extend(CreateInjury(injury=injury) for injury in injuries)
    effects.extend(participant_memories(dice, now))
    return effects


# ============================================================================
# Collateral damage
# ============================================================================


@dataclass
class CollateralOutcome:
    dc: Optional[int] = None
    roll: Optional[int] = None
    victim: Optional[str] = None
    injury_type: Optional[InjuryType] = None
    effects: List[Effect] = field(default_factory=list)


def check_collateral(
    dice: DiceOutcome,
    *,
    bystanders: Sequence[str],
    witnesses: Sequence[str],
    profiles,
    zone: str,
    fight_id: str,
    rng: random.Random,
    now: datetime,
) -> CollateralOutcome:
    """Roll 1d20 against the severity DC; on success, injure one protected bystander.

    Args:
        bystanders: Protected-class characters in the fight zone (combatants excluded)
        witnesses: Other characters in the zone who can witness
        profiles: CombatProfileRegistry for bystander emotes
    """
    dc = COLLATERAL_DC.get(dice.severity)
    if dc is None or not bystanders:
        return CollateralOutcome(dc=dc)

    roll = rng.randint(1, 20)
    if roll < dc:
        return CollateralOutcome(dc=dc, roll=roll)

    victim = rng.choice(list(bystanders))
    injury_type = InjuryType.BRUISED if rng.random() < 0.5 else InjuryType.SHAKEN
    attributed = rng.choice([dice.aggressor, dice.defender])
    injury = build_injury(
        victim,
        injury_type,
        f"Caught in the crossfire of {dice.aggressor} vs {dice.defender}",
        now,
        severity=1,
        source_character=attributed,
        fight_id=fight_id,
    )

    victim_profile: Optional[CombatProfile] = profiles.get_profile(victim)
    emote = (victim_profile.emotes.get("collateral") if victim_profile else None) or (
        f"*{victim} gets knocked into a desk as {dice.aggressor} and {dice.defender} crash past.*"
    )

    effects: List[Effect] = [
        CreateInjury(injury=injury),
        PostMessage(zone=zone, speaker=victim, text=emote, is_emote=True),
        CreateMemory(
            memory=memory(
                victim,
                f"Got hurt when {dice.aggressor} and {dice.defender} started fighting. I wasn't even part of it.",
                importance=8,
                now=now,
                tags=["collateral", "hurt"],
                related=[dice.aggressor, dice.defender],
            )
        ),
    ]
    onlookers = [name for name in witnesses if name != victim][:MAX_COLLATERAL_WITNESSES]
    effects.extend(
        CreateMemory(
            memory=memory(
                name,
                f"{victim} got hurt in the crossfire when {dice.aggressor} and {dice.defender} fought.",
                importance=8,
                now=now,
                expires_in=timedelta(days=3),
                tags=["collateral", "witness"],
                related=[victim, dice.aggressor, dice.defender],
            )
        )
        for name in onlookers
    )
    return CollateralOutcome(dc=dc, roll=roll, victim=victim, injury_type=injury_type, effects=effects)


# ============================================================================
# Retreat
# ============================================================================


def retreat_chance(
    profile: Optional[CombatProfile],
    severity: Severity,
    prior_injuries: Sequence[InjuryRecord],
    energy: int,
) -> float:
    chance = profile.retreat_affinity if profile else 0.30
    wounded = any(i.injury_type == InjuryType.WOUNDED for i in prior_injuries)
    if wounded or severity in (Severity.FIGHT, Severity.BEATDOWN):
        chance += 0.30
    if severity == Severity.BEATDOWN:
        chance += 0.35
    if energy < 20:
        chance += 0.25
    if len(prior_injuries) >= 2:
        chance += 0.20
    return min(chance, RETREAT_CAP)


def retreat_effects(
    loser: str,
    *,
    profile: Optional[CombatProfile],
    zone: str,
    recovery_zone: str,
    fight_id: str,
    new_injuries: Sequence[InjuryRecord],
    now: datetime,
) -> List[Effect]:
    leave_line = (profile.emotes.get("retreat") if profile else None) or (
        f"*{loser} backs away, clutching their side, and heads for the {recovery_zone.replace('_', ' ')}.*"
    )
    return [
        PostMessage(zone=zone, speaker=loser, text=leave_line, is_emote=True),
        Relocate(character=loser, zone=recovery_zone),
        PostMessage(
            zone=recovery_zone,
            speaker=loser,
            text=f"*{loser} stumbles in and drops onto the nearest cot.*",
            is_emote=True,
        ),
        SaveSetting(
            key=f"recovery_entered_at_{loser}",
            value={
                "entered_at": now.isoformat(),
                "reason": "medical_retreat",
                "fight_id": fight_id,
                "injuries": [i.injury_type.value for i in new_injuries if i.character == loser],
            },
        ),
    ]


# ============================================================================
# Operator summary
# ============================================================================


def fight_summary(
    dice: DiceOutcome,
    *,
    zone: str,
    retreated: bool = False,
    collateral_victim: Optional[str] = None,
) -> Notify:
    a, d = dice.aggressor_roll, dice.defender_roll
    parts = [
        f"{SEVERITY_EMOJI[dice.severity]} {dice.severity.value} on the {zone.replace('_', ' ')}: "
        f"{dice.aggressor} ({a.roll}{a.modifier:+d}={a.total}) vs {dice.defender} ({d.roll}{d.modifier:+d}={d.total})",
        f"Winner: {dice.winner}" if dice.winner else "Standoff",
    ]
    if dice.critical_hit:
        parts.append("critical hit")
    if dice.critical_fail:
        parts.append(f"critical fail by {dice.critical_fail}")
    if retreated and dice.loser:
        parts.append(f"{dice.loser} retreated")
    if collateral_victim:
        parts.append(f"{collateral_victim} hurt in the crossfire")
    return Notify(text=" | ".join(parts))
