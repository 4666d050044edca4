"""Combat profile registry and the default office-floor roster."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

from fracas.schemas import CombatProfile, EscapeMechanic


class CombatProfileRegistry:
    """
    Static lookup of CombatProfile by character name.

    Profiles are loaded once (from code or a JSON file) and treated as immutable.
    A character without a profile cannot be pulled into a fight.
    """

    def __init__(self, profiles: Iterable[CombatProfile] = ()):
        self._profiles: Dict[str, CombatProfile] = {}
        for profile in profiles:
            self.register(profile)

    def register(self, profile: CombatProfile) -> None:
        if profile.name in self._profiles:
            raise ValueError(f"Duplicate combat profile for '{profile.name}'")
        self._profiles[profile.name] = profile

    def get_profile(self, name: str) -> Optional[CombatProfile]:
        return self._profiles.get(name)

    def can_fight(self, name: str) -> bool:
        profile = self._profiles.get(name)
        return bool(profile and profile.can_fight)

    def is_protected(self, name: str) -> bool:
        profile = self._profiles.get(name)
        return bool(profile and profile.protected)

    def can_witness(self, name: str) -> bool:
        # Unknown characters still see what happens in front of them
        profile = self._profiles.get(name)
        return profile is None or profile.can_witness

    def names(self) -> List[str]:
        return sorted(self._profiles)

    def __contains__(self, name: object) -> bool:
        return name in self._profiles

    def __iter__(self) -> Iterator[CombatProfile]:
        return iter(self._profiles.values())

    def __len__(self) -> int:
        return len(self._profiles)

    @classmethod
    def from_dicts(cls, payload: Iterable[Dict[str, Any]]) -> "CombatProfileRegistry":
        return cls(CombatProfile.model_validate(item) for item in payload)

    @classmethod
    def from_json(cls, path: Path | str) -> "CombatProfileRegistry":
        """
        Load profiles from a JSON file.

        Accepts either a bare list of profile objects or `{"profiles": [...]}`.
        """
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if isinstance(data, dict):
            data = data.get("profiles", [])
        return cls.from_dicts(data)

    @classmethod
    def default(cls) -> "CombatProfileRegistry":
        return cls(default_roster())


def default_roster() -> List[CombatProfile]:
    """The stock cast: four brawlers, two escape artists, and the humans who get hurt."""
    return [
        CombatProfile(
            name="Brick",
            combat_power=3,
            fighting_style="haymaker",
            style_description="Telegraphs everything and does not care, because it lands anyway.",
            retreat_affinity=0.15,
            emotes={
                "initiate": "*Brick cracks his knuckles and plants himself in front of {opponent}.* Say that again.",
                "retreat": "*Brick limps off toward the recovery bay, muttering that he slipped.*",
            },
        ),
        CombatProfile(
            name="Vesper",
            combat_power=2,
            fighting_style="precise",
            style_description="Surgical jabs, never wastes a movement, talks the whole time.",
            retreat_affinity=0.25,
            emotes={
                "initiate": "*Vesper sets her coffee down very carefully.* {opponent}. A word.",
            },
        ),
        CombatProfile(
            name="Tamsin",
            combat_power=1,
            fighting_style="scrappy",
            style_description="Elbows, staplers, whatever is within reach.",
            emotes={
                "initiate": "*Tamsin kicks a chair out of the way and squares up to {opponent}.*",
            },
        ),
        CombatProfile(
            name="Ossian",
            combat_power=0,
            fighting_style="defensive",
            style_description="Keeps the desk between himself and the problem.",
            retreat_affinity=0.45,
        ),
        CombatProfile(
            name="Static",
            combat_power=1,
            fighting_style="flicker",
            style_description="Never quite where the punch arrives.",
            retreat_affinity=0.20,
            escape=EscapeMechanic(
                mode="glitch",
                base_chance=0.45,
                defender_bonus=0.15,
                low_health_bonus=0.10,
                beatdown_bonus=0.20,
                max_chance=0.85,
                max_per_day=3,
                cooldown_hours=2,
                energy_cost=10,
                destinations=["break_room", "archive", "rooftop"],
                escape_emotes=[
                    "*Static's outline tears sideways like a bad signal. Then there is nobody there.*",
                    "*the lights stutter. When they steady, Static is gone.*",
                ],
                arrival_emotes={
                    "break_room": "*Static resolves next to the vending machine, humming faintly.*",
                    "archive": "*a filing cabinet rattles. Static is sitting on top of it.*",
                    "rooftop": "*Static flickers into view at the rooftop railing, looking at nothing.*",
                },
            ),
        ),
        CombatProfile(
            name="The Auditor",
            combat_power=0,
            fighting_style="absent",
            style_description="Does not engage. Files a report about the engagement.",
            retreat_affinity=0.60,
            escape=EscapeMechanic(
                mode="dissolve",
                fixed_chance=0.90,
                energy_cost=5,
                destinations=["archive"],
                escape_emotes=[
                    "*The Auditor closes a folder. The swing passes through the space he no longer occupies.*",
                    "*The Auditor writes one word on a clipboard and is somewhere else.*",
                ],
                arrival_emotes={
                    "archive": "*The Auditor is in the archive, already filing something.*",
                },
            ),
        ),
        CombatProfile(
            name="Dana",
            can_fight=False,
            fighting_style="none",
            protected=True,
            emotes={"collateral": "*Dana staggers back, clutching her arm.* Are you kidding me?!"},
        ),
        CombatProfile(
            name="Mr. Pell",
            can_fight=False,
            fighting_style="none",
            protected=True,
        ),
        CombatProfile(
            name="Lobby Kiosk",
            can_fight=False,
            fighting_style="none",
            can_witness=False,
        ),
    ]
