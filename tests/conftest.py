"""Shared fakes and fixtures: a scripted RNG, a controllable clock, and an engine factory."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Sequence

import pytest

from fracas.engine import ConflictEngine, EngineSettings
from fracas.persistence import InMemoryPersistence
from fracas.profiles import CombatProfileRegistry
from fracas.schemas import AgentState, RelationshipEdge
from fracas.world import (
    InMemoryAgentDirectory,
    InMemoryNotifier,
    InMemoryRelationshipStore,
    InMemoryZoneChannel,
)


START = datetime(2030, 5, 1, 9, 0, tzinfo=timezone.utc)


class ScriptedRng:
    """Stand-in for random.Random that replays scripted values.

    randint() pops from `rolls` (falls back to the low bound), random() pops from
    `randoms` (falls back to 0.99 so every probability check fails), and choice()
    always picks the first element.
    """

    def __init__(self, rolls: Iterable[int] = (), randoms: Iterable[float] = ()):
        self.rolls = list(rolls)
        self.randoms = list(randoms)

    def randint(self, a: int, b: int) -> int:
        return self.rolls.pop(0) if self.rolls else a

    def random(self) -> float:
        return self.randoms.pop(0) if self.randoms else 0.99

    def choice(self, seq: Sequence):
        return list(seq)[0]


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_engine(clock):
    """Build an engine over in-memory collaborators."""

    def _make(
        agents: Sequence[AgentState],
        edges: Sequence[RelationshipEdge] = (),
        *,
        rng=None,
        profiles: Optional[CombatProfileRegistry] = None,
        persistence=None,
        narrator=None,
        settings: Optional[EngineSettings] = None,
    ) -> ConflictEngine:
        return ConflictEngine(
            directory=InMemoryAgentDirectory(agents),
            relationships=InMemoryRelationshipStore(edges),
            profiles=profiles or CombatProfileRegistry.default(),
            channel=InMemoryZoneChannel(),
            persistence=persistence or InMemoryPersistence(),
            notifier=InMemoryNotifier(),
            narrator=narrator,
            settings=settings or EngineSettings(),
            rng=rng or ScriptedRng(),
            clock=clock,
        )

    return _make
