"""
Settlement Engine decisions.

An unsettled fight older than the minimum age is either:
- turned into a grudge (after three failed attempts; terminal), or
- given one settlement roll when both parties share a zone with energy > 40.
  Base chance 20%, doubled by a mediator (a co-located third party with
  affinity >= 50 toward both). Success reconciles; failure adds one attempt.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from fracas.consequences import memory
from fracas.effects import ApplyAffinity, CreateMemory, Effect, PostMessage, SaveFightRecord, SetMood
from fracas.schemas import AgentState, FightRecord, Mood, SettlementEntry


GRUDGE_AFTER_ATTEMPTS = 3
BASE_SETTLEMENT_CHANCE = 0.20
MEDIATOR_MULTIPLIER = 2
MEDIATOR_MIN_AFFINITY = 50
MAX_MEDIATOR_CANDIDATES = 5
MIN_SETTLEMENT_ENERGY = 40
RECONCILIATION_AFFINITY = 5


@dataclass
class SettlementDecision:
    entry: SettlementEntry
    effects: List[Effect] = field(default_factory=list)


def _entry(fight: FightRecord, result: str, **kwargs) -> SettlementEntry:
    return SettlementEntry(
        fight_id=fight.id,
        aggressor=fight.aggressor,
        defender=fight.defender,
        result=result,
        settlement_attempts=fight.settlement_attempts,
        **kwargs,
    )


def form_grudge(fight: FightRecord, now: datetime) -> SettlementDecision:
    settled = fight.model_copy(
        update={"settled": True, "settlement_type": "grudge", "settled_at": now}
    )
    effects: List[Effect] = [SaveFightRecord(fight=settled)]
    for me, other in ((fight.aggressor, fight.defender), (fight.defender, fight.aggressor)):
        effects.append(
            CreateMemory(
                memory=memory(
                    me,
                    f"I will never forgive {other} for what happened between us. It is not over.",
                    importance=8,
                    now=now,
                    tags=["grudge", "fight"],
                    related=[other],
                    never_expires=True,
                    pinned=True,
                )
            )
        )
    return SettlementDecision(entry=_entry(settled, "grudge", detail="settlement attempts exhausted"), effects=effects)


def eligibility(aggressor: Optional[AgentState], defender: Optional[AgentState]) -> Optional[str]:
    """Return why the pair cannot try to settle this tick, or None."""
    if aggressor is None or defender is None:
        return "missing_state"
    if aggressor.zone is None or aggressor.zone != defender.zone:
        return "not_together"
    if aggressor.energy <= MIN_SETTLEMENT_ENERGY or defender.energy <= MIN_SETTLEMENT_ENERGY:
        return "too_tired"
    return None


def settlement_chance(has_mediator: bool) -> float:
    return BASE_SETTLEMENT_CHANCE * (MEDIATOR_MULTIPLIER if has_mediator else 1)


def attempt_settlement(
    fight: FightRecord,
    *,
    zone: str,
    mediator: Optional[str],
    rng: random.Random,
    now: datetime,
) -> SettlementDecision:
    chance = settlement_chance(mediator is not None)
    if rng.random() >= chance:
        failed = fight.model_copy(update={"settlement_attempts": fight.settlement_attempts + 1})
        return SettlementDecision(
            entry=_entry(failed, "failed_attempt", chance=chance, mediator=mediator),
            effects=[SaveFightRecord(fight=failed)],
        )

    settled = fight.model_copy(
        update={"settled": True, "settlement_type": "reconciliation", "settled_at": now}
    )
    a, d = fight.aggressor, fight.defender
    line = f"*{a} and {d} exchange a long look, then a nod. Whatever happened is behind them.*"
    if mediator:
        line = f"*{mediator} steps between {a} and {d}. After a while, they shake hands.*"

    effects: List[Effect] = [
        SaveFightRecord(fight=settled),
        ApplyAffinity(source=a, target=d, delta=RECONCILIATION_AFFINITY),
        ApplyAffinity(source=d, target=a, delta=RECONCILIATION_AFFINITY),
        SetMood(character=a, mood=Mood.REFLECTIVE.value),
        SetMood(character=d, mood=Mood.REFLECTIVE.value),
        PostMessage(zone=zone, speaker=mediator or a, text=line, is_emote=True),
    ]
    for me, other in ((a, d), (d, a)):
        effects.append(
            CreateMemory(
                memory=memory(
                    me,
                    f"Made peace with {other} after our fight."
                    + (f" {mediator} helped." if mediator else ""),
                    importance=7,
                    now=now,
                    tags=["reconciliation", "fight"],
                    related=[other] + ([mediator] if mediator else []),
                )
            )
        )
    return SettlementDecision(
        entry=_entry(settled, "reconciliation", chance=chance, mediator=mediator),
        effects=effects,
    )
