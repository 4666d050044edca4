"""
Dice engine: d20 rolls, contextual modifiers, severity, and critical flags.

Everything here is pure. Given the same rolls and the same combatant context,
resolve() always returns the same winner, severity, and critical flags.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

from fracas.schemas import AgentState, CombatProfile, DiceRoll, InjuryRecord, InjuryType, Mood, Severity


QUALIFYING_TRAIT = "Battle-Tested"


@dataclass
class Combatant:
    """One side of a fight, as the dice engine sees it."""

    name: str
    profile: CombatProfile
    state: AgentState
    # This side's own affinity toward the opponent
    affinity: int = 0
    injuries: Sequence[InjuryRecord] = field(default_factory=list)


def modifier_breakdown(combatant: Combatant) -> Dict[str, int]:
    """Named modifier contributions (zero entries omitted)."""
    state = combatant.state
    parts: Dict[str, int] = {"combat_power": combatant.profile.combat_power}

    if state.energy > 70:
        parts["energy"] = 1
    elif state.energy < 10:
        parts["energy"] = -3
    elif state.energy < 20:
        parts["energy"] = -2

    if state.patience < 20:
        parts["rage"] = 1

    if state.mood in (Mood.FURIOUS.value, Mood.HOSTILE.value):
        parts["mood"] = 1
    elif state.mood == Mood.DEFEATED.value:
        parts["mood"] = -2

    injury_penalty = 0
    for injury in combatant.injuries:
        if injury.injury_type == InjuryType.WOUNDED:
            injury_penalty -= 2
        elif injury.injury_type in (InjuryType.BRUISED, InjuryType.SHAKEN):
            injury_penalty -= 1
    if injury_penalty:
        parts["injuries"] = injury_penalty

    if combatant.affinity > 60:
        parts["pulling_punches"] = -3
    elif combatant.affinity < -50:
        parts["hatred"] = 1

    if QUALIFYING_TRAIT in state.traits:
        parts["trait"] = 1

    return {name: value for name, value in parts.items() if value}


def compute_modifier(combatant: Combatant) -> int:
    return sum(modifier_breakdown(combatant).values())


def roll_d20(rng: random.Random) -> int:
    return rng.randint(1, 20)


def severity_for_margin(margin: int) -> Severity:
    if margin == 0:
        return Severity.STANDOFF
    if margin <= 3:
        return Severity.SCUFFLE
    if margin <= 7:
        return Severity.FIGHT
    return Severity.BEATDOWN


@dataclass
class DiceOutcome:
    aggressor: str
    defender: str
    aggressor_roll: DiceRoll
    defender_roll: DiceRoll
    winner: Optional[str]
    loser: Optional[str]
    margin: int
    severity: Severity
    critical_hit: bool = False
    critical_fail: Optional[str] = None

    @property
    def rolls(self) -> Dict[str, DiceRoll]:
        return {"aggressor": self.aggressor_roll, "defender": self.defender_roll}

    def summary(self) -> str:
        a, d = self.aggressor_roll, self.defender_roll
        line = (
            f"{self.aggressor} d20={a.roll}{a.modifier:+d}={a.total} vs "
            f"{self.defender} d20={d.roll}{d.modifier:+d}={d.total}: "
            f"{self.severity.value} (margin {self.margin})"
        )
        if self.critical_hit:
            line += " CRITICAL HIT"
        if self.critical_fail:
            line += f" CRITICAL FAIL: {self.critical_fail}"
        return f"{line}. Winner: {self.winner or 'none (standoff)'}"


def resolve(
    aggressor: str,
    aggressor_roll: int,
    aggressor_modifier: int,
    defender: str,
    defender_roll: int,
    defender_modifier: int,
) -> DiceOutcome:
    """Compare totals and derive severity.

    A natural 20 on either side bumps severity one tier (standoffs stay standoffs).
    A natural 1 on the losing side is recorded as critical_fail for narration only.
    """
    total_a = aggressor_roll + aggressor_modifier
    total_d = defender_roll + defender_modifier
    margin = abs(total_a - total_d)

    if total_a > total_d:
        winner, loser = aggressor, defender
    elif total_d > total_a:
        winner, loser = defender, aggressor
    else:
        winner = loser = None

    severity = severity_for_margin(margin)
    critical_hit = aggressor_roll == 20 or defender_roll == 20
    if critical_hit:
        severity = severity.bumped()

    critical_fail = None
    if loser is not None:
        loser_roll = aggressor_roll if loser == aggressor else defender_roll
        if loser_roll == 1:
            critical_fail = loser

    return DiceOutcome(
        aggressor=aggressor,
        defender=defender,
        aggressor_roll=DiceRoll(roll=aggressor_roll, modifier=aggressor_modifier, total=total_a),
        defender_roll=DiceRoll(roll=defender_roll, modifier=defender_modifier, total=total_d),
        winner=winner,
        loser=loser,
        margin=margin,
        severity=severity,
        critical_hit=critical_hit,
        critical_fail=critical_fail,
    )


def roll_fight(aggressor: Combatant, defender: Combatant, rng: random.Random) -> DiceOutcome:
    """Roll both sides (aggressor first) and resolve."""
    roll_a = roll_d20(rng)
    roll_d = roll_d20(rng)
    return resolve(
        aggressor.name, roll_a, compute_modifier(aggressor),
        defender.name, roll_d, compute_modifier(defender),
    )

