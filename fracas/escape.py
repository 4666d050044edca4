"""
Archetype escape mechanics.

Some identities never stay in a losing fight. Two modes:
- glitch: chance = base + defender bonus + low-energy bonus + beatdown bonus,
  capped at the mechanic's max_chance (never above 0.85). Only tried when the
  identity is losing on the dice or the bout is a standoff.
- dissolve: fixed chance (0.90), tried whenever the identity is in a fight.

Rate limits (max_per_day, cooldown_hours) are checked by the caller through the
RateLimiter before attempt_escape() is called.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from fracas.consequences import memory
from fracas.dice import DiceOutcome
from fracas.effects import AdjustEnergy, ApplyAffinity, CreateMemory, Effect, Notify, PostMessage, Relocate, SetMood
from fracas.schemas import AgentState, CombatProfile, EscapeMechanic, Mood


GLITCH_CEILING = 0.85
OPPONENT_AFFINITY_PENALTY = -3
LOW_ENERGY = 30
BEATDOWN_MARGIN = 7


def escape_key(name: str) -> str:
    return f"escape:{name}"


def escape_chance(mechanic: EscapeMechanic, *, is_defender: bool, energy: int, margin: int) -> float:
    if mechanic.mode == "dissolve":
        return min(mechanic.fixed_chance, 1.0)

    chance = mechanic.base_chance
    if is_defender:
        chance += mechanic.defender_bonus
    if energy < LOW_ENERGY:
        chance += mechanic.low_health_bonus
    if margin > BEATDOWN_MARGIN:
        chance += mechanic.beatdown_bonus
    return min(chance, mechanic.max_chance, GLITCH_CEILING)


def should_attempt(mechanic: EscapeMechanic, name: str, dice: DiceOutcome) -> bool:
    if mechanic.mode == "dissolve":
        return True
    return dice.winner is None or dice.loser == name


@dataclass
class EscapeAttempt:
    character: str
    opponent: str
    chance: float
    succeeded: bool
    destination: Optional[str] = None
    effects: List[Effect] = field(default_factory=list)


def attempt_escape(
    *,
    profile: CombatProfile,
    state: AgentState,
    opponent: str,
    zone: str,
    dice: DiceOutcome,
    rng: random.Random,
    now: datetime,
    fallback_destination: str,
) -> EscapeAttempt:
    """Roll the escape and, on success, build the effects that carry it out."""
    mechanic = profile.escape
    if mechanic is None:
        raise ValueError(f"{profile.name} has no escape mechanic")
    name = profile.name

    chance = escape_chance(
        mechanic,
        is_defender=dice.defender == name,
        energy=state.energy,
        margin=dice.margin,
    )
    if rng.random() >= chance:
        return EscapeAttempt(character=name, opponent=opponent, chance=chance, succeeded=False)

    destination = rng.choice(mechanic.destinations) if mechanic.destinations else fallback_destination
    escape_line = (
        rng.choice(mechanic.escape_emotes)
        if mechanic.escape_emotes
        else f"*{name} is simply not there anymore.*"
    )
    arrival_line = mechanic.arrival_emotes.get(destination, f"*{name} appears, unhurried.*")
    place = destination.replace("_", " ")

    effects: List[Effect] = [
        PostMessage(zone=zone, speaker=name, text=escape_line, is_emote=True),
        Relocate(character=name, zone=destination),
        PostMessage(zone=destination, speaker=name, text=arrival_line, is_emote=True),
        AdjustEnergy(character=name, delta=-mechanic.energy_cost),
        SetMood(character=opponent, mood=Mood.FRUSTRATED.value),
        ApplyAffinity(source=opponent, target=name, delta=OPPONENT_AFFINITY_PENALTY),
        CreateMemory(
            memory=memory(
                name,
                f"Slipped out of a fight with {opponent} and ended up in the {place}. Did not stay to find out.",
                importance=6,
                now=now,
                tags=["escape", "tactical"],
                related=[opponent],
            )
        ),
        CreateMemory(
            memory=memory(
                opponent,
                f"{name} vanished mid-fight before the blow could land. Infuriating.",
                importance=7,
                now=now,
                tags=["frustration", "anger"],
                related=[name],
            )
        ),
        Notify(
            text=(
                f"ESCAPE: {name} got out of a fight with {opponent} "
                f"({chance:.0%} chance, would have been {dice.severity.value}) -> {destination}"
            )
        ),
    ]
    return EscapeAttempt(
        character=name,
        opponent=opponent,
        chance=chance,
        succeeded=True,
        destination=destination,
        effects=effects,
    )
