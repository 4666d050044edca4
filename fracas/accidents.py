"""Accident Generator: low-probability environmental mishaps that hurt bystanders."""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime
from typing import List, Sequence, Tuple

from fracas.consequences import memory
from fracas.effects import CreateInjury, CreateMemory, Effect, Notify, PostMessage
from fracas.injuries import HEAL_HOURS, build_injury
from fracas.schemas import InjuryRecord, InjuryType


ACCIDENT_KEY = "accident"


@dataclass(frozen=True)
class Mishap:
    source: str
    injury_type: InjuryType
    weight: int
    narrative: str
    description: str

    @property
    def heal_hours(self) -> int:
        return HEAL_HOURS[self.injury_type]


ACCIDENT_TABLE: Tuple[Mishap, ...] = (
    Mishap(
        source="the coffee machine",
        injury_type=InjuryType.SHAKEN,
        weight=25,
        narrative="*the coffee machine shrieks and vents a jet of steam straight at {victim}.*",
        description="Scalded by the coffee machine",
    ),
    Mishap(
        source="a filing cabinet",
        injury_type=InjuryType.BRUISED,
        weight=20,
        narrative="*a top-heavy filing cabinet tips over. {victim} gets out of the way. Mostly.*",
        description="Clipped by a falling filing cabinet",
    ),
    Mishap(
        source="the printer",
        injury_type=InjuryType.SHAKEN,
        weight=20,
        narrative="*the printer jams, grinds, and spits a tray across the room past {victim}'s head.*",
        description="Nearly hit by a flying paper tray",
    ),
    Mishap(
        source="a ceiling tile",
        injury_type=InjuryType.BRUISED,
        weight=15,
        narrative="*a ceiling tile gives up and lands on {victim}.*",
        description="Hit by a loose ceiling tile",
    ),
    Mishap(
        source="the revolving door",
        injury_type=InjuryType.BRUISED,
        weight=12,
        narrative="*the revolving door speeds up for no reason and {victim} gets spun into the glass.*",
        description="Caught by the revolving door",
    ),
    Mishap(
        source="a power strip",
        injury_type=InjuryType.SHAKEN,
        weight=8,
        narrative="*an overloaded power strip pops with a blue flash right by {victim}'s feet.*",
        description="Startled by a sparking power strip",
    ),
)


def pick_mishap(rng: random.Random, table: Sequence[Mishap] = ACCIDENT_TABLE) -> Mishap:
    """Weighted pick using a single rng.random() draw."""
    total = sum(entry.weight for entry in table)
    point = rng.random() * total
    for entry in table:
        point -= entry.weight
        if point < 0:
            return entry
    return table[-1]


def accident_effects(
    mishap: Mishap, victim: str, zone: str, now: datetime
) -> Tuple[InjuryRecord, List[Effect]]:
    injury = build_injury(
        victim,
        mishap.injury_type,
        mishap.description,
        now,
        severity=1,
        source_character=mishap.source,
    )
    effects: List[Effect] = [
        CreateInjury(injury=injury),
        PostMessage(zone=zone, speaker=mishap.source, text=mishap.narrative.format(victim=victim), is_emote=True),
        CreateMemory(
            memory=memory(
                victim,
                f"{mishap.description}. This building is trying to kill me.",
                importance=5,
                now=now,
                tags=["accident"],
            )
        ),
        Notify(text=f"ACCIDENT: {mishap.description} ({victim}, {mishap.injury_type.value}, {mishap.heal_hours}h)"),
    ]
    return injury, effects
