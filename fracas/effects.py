"""
Typed side effects and the adapter that applies them.

Decision functions (tension, dice, escape, consequences, settlement, accidents)
never touch collaborators directly. They return a list of Effect models, and the
EffectApplier performs them against the Agent Directory, Relationship Store,
Zone Channel, Memory Store, Persistence Store, and Notification sink.

Application rules:
- Core records (fight record, injuries, settings) are written first, then agent
  state and relationship changes, then memories, then chat posts, then operator
  notifications. Order within a group is preserved.
- Each effect is applied independently. A failure is logged and recorded in the
  report; the remaining effects still run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, Dict, List, Literal, Sequence, Union

from pydantic import BaseModel, Field

from fracas.logging_utils import log_error
from fracas.schemas import FightRecord, InjuryRecord, MemoryRecord


class PostMessage(BaseModel):
    kind: Literal["post_message"] = "post_message"
    zone: str
    speaker: str
    text: str
    is_emote: bool = False


class AdjustEnergy(BaseModel):
    """Relative energy change, clamped to 0..100 when applied."""

    kind: Literal["adjust_energy"] = "adjust_energy"
    character: str
    delta: int


class SetMood(BaseModel):
    kind: Literal["set_mood"] = "set_mood"
    character: str
    mood: str


class Relocate(BaseModel):
    kind: Literal["relocate"] = "relocate"
    character: str
    zone: str


class ApplyAffinity(BaseModel):
    kind: Literal["apply_affinity"] = "apply_affinity"
    source: str
    target: str
    delta: int


class CreateInjury(BaseModel):
    kind: Literal["create_injury"] = "create_injury"
    injury: InjuryRecord


class CreateMemory(BaseModel):
    kind: Literal["create_memory"] = "create_memory"
    memory: MemoryRecord


class SaveSetting(BaseModel):
    kind: Literal["save_setting"] = "save_setting"
    key: str
    value: Dict[str, Any]


class SaveFightRecord(BaseModel):
    kind: Literal["save_fight_record"] = "save_fight_record"
    fight: FightRecord


class Notify(BaseModel):
    kind: Literal["notify"] = "notify"
    text: str


Effect = Annotated[
    Union[
        PostMessage,
        AdjustEnergy,
        SetMood,
        Relocate,
        ApplyAffinity,
        CreateInjury,
        CreateMemory,
        SaveSetting,
        SaveFightRecord,
        Notify,
    ],
    Field(discriminator="kind"),
]

_PRIORITY = {
    "save_fight_record": 0,
    "create_injury": 0,
    "save_setting": 0,
    "adjust_energy": 1,
    "set_mood": 1,
    "relocate": 1,
    "apply_affinity": 1,
    "create_memory": 2,
    "post_message": 3,
    "notify": 4,
}


def ordered(effects: Sequence[Effect]) -> List[Effect]:
    """Sort effects into application order (stable within a group)."""
    return sorted(effects, key=lambda effect: _PRIORITY[effect.kind])


@dataclass
class EffectReport:
    applied: int = 0
    failures: List[str] = field(default_factory=list)
    failed_kinds: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def failed(self, kind: str) -> bool:
        return kind in self.failed_kinds


class EffectApplier:
    """Applies effect lists against the engine's collaborators."""

    def __init__(
        self,
        *,
        directory,
        relationships,
        channel,
        memory,
        persistence,
        notifier,
    ):
        self.directory = directory
        self.relationships = relationships
        self.channel = channel
        self.memory = memory
        self.persistence = persistence
        self.notifier = notifier

    async def apply(self, effects: Sequence[Effect]) -> EffectReport:
        report = EffectReport()
        for effect in ordered(effects):
            try:
                await self._apply_one(effect)
            except Exception as exc:  # noqa: BLE001 - one failed effect never aborts the rest
                message = f"{effect.kind} failed: {exc}"
                log_error(f"Effect {message}")
                report.failures.append(message)
                report.failed_kinds.append(effect.kind)
            else:
                report.applied += 1
        return report

    async def _apply_one(self, effect: Effect) -> None:
        if isinstance(effect, SaveFightRecord):
            await self.persistence.save_fight(effect.fight)
        elif isinstance(effect, CreateInjury):
            await self.persistence.save_injury(effect.injury)
        elif isinstance(effect, SaveSetting):
            await self.persistence.save_setting(effect.key, effect.value)
        elif isinstance(effect, AdjustEnergy):
            state = await self.directory.get_state(effect.character)
            if state is None:
                raise KeyError(f"Unknown character '{effect.character}'")
            energy = max(0, min(100, state.energy + effect.delta))
            await self.directory.patch_state(effect.character, {"energy": energy})
        elif isinstance(effect, SetMood):
            await self.directory.patch_state(effect.character, {"mood": effect.mood})
        elif isinstance(effect, Relocate):
            await self.directory.patch_state(effect.character, {"zone": effect.zone})
        elif isinstance(effect, ApplyAffinity):
            await self.relationships.apply_delta(effect.source, effect.target, effect.delta)
        elif isinstance(effect, CreateMemory):
            await self.memory.add_memory(effect.memory)
        elif isinstance(effect, PostMessage):
            await self.channel.post(effect.zone, effect.speaker, effect.text, effect.is_emote)
        elif isinstance(effect, Notify):
            await self.notifier.notify(effect.text)
        else:  # pragma: no cover - union is exhaustive
            raise TypeError(f"Unsupported effect {effect!r}")
