"""
External collaborators the conflict engine reads from and writes to.

The engine consumes four narrow contracts:
- AgentDirectory: get/patch character state (zone, mood, energy, patience)
- RelationshipStore: directed affinity edges with clamped delta application
- ZoneChannel: best-effort posts into a zone's chat
- NotificationSink: optional operator summaries

In-memory implementations back tests and demos. WebhookNotifier posts operator
summaries to a Discord-compatible webhook.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib import error, request

from fracas.logging_utils import log_info
from fracas.schemas import AgentState, RelationshipEdge


AFFINITY_MIN = -100
AFFINITY_MAX = 100


class AgentDirectory(ABC):
    """Read/patch access to character state."""

    @abstractmethod
    async def get_state(self, name: str) -> Optional[AgentState]:
        """Return the character's state, or None if unknown."""
        pass

    @abstractmethod
    async def patch_state(self, name: str, fields: Dict[str, Any]) -> None:
        """Apply a partial update (last write wins)."""
        pass

    @abstractmethod
    async def list_agents(self) -> List[AgentState]:
        """Return every known character."""
        pass

    async def agents_in_zone(self, zone: str) -> List[AgentState]:
        return [agent for agent in await self.list_agents() if agent.zone == zone]


class RelationshipStore(ABC):
    """Directed affinity edges. Deltas are clamped to -100..100 by the store."""

    @abstractmethod
    async def get_edge(self, source: str, target: str) -> Optional[RelationshipEdge]:
        pass

    @abstractmethod
    async def apply_delta(self, source: str, target: str, delta: int) -> RelationshipEdge:
        """Shift source's affinity toward target, creating the edge if missing."""
        pass

    @abstractmethod
    async def list_edges(self, source: str) -> List[RelationshipEdge]:
        """Return every edge held by source."""
        pass


class ZoneChannel(ABC):
    """Chat channel per zone."""

    @abstractmethod
    async def post(self, zone: str, speaker: str, text: str, is_emote: bool = False) -> None:
        pass


class NotificationSink(ABC):
    """Operator-facing summary sink."""

    @abstractmethod
    async def notify(self, text: str) -> None:
        pass


# ============================================================================
# In-memory implementations
# ============================================================================


class InMemoryAgentDirectory(AgentDirectory):
    def __init__(self, agents: Iterable[AgentState] = ()):
        self.agents: Dict[str, AgentState] = {agent.name: agent for agent in agents}

    async def get_state(self, name: str) -> Optional[AgentState]:
        state = self.agents.get(name)
        return state.model_copy(deep=True) if state else None

    async def patch_state(self, name: str, fields: Dict[str, Any]) -> None:
        state = self.agents.get(name)
        if state is None:
            raise KeyError(f"Unknown character '{name}'")
        # Re-validate so range constraints (energy, patience) still hold
        self.agents[name] = AgentState.model_validate({**state.model_dump(), **fields})

    async def list_agents(self) -> List[AgentState]:
        return [state.model_copy(deep=True) for state in self.agents.values()]


class InMemoryRelationshipStore(RelationshipStore):
    def __init__(self, edges: Iterable[RelationshipEdge] = ()):
        self.edges: Dict[Tuple[str, str], RelationshipEdge] = {
            (edge.source, edge.target): edge for edge in edges
        }

    async def get_edge(self, source: str, target: str) -> Optional[RelationshipEdge]:
        edge = self.edges.get((source, target))
        return edge.model_copy() if edge else None

    async def apply_delta(self, source: str, target: str, delta: int) -> RelationshipEdge:
        edge = self.edges.get((source, target)) or RelationshipEdge(source=source, target=target)
        affinity = max(AFFINITY_MIN, min(AFFINITY_MAX, edge.affinity + delta))
        updated = edge.model_copy(update={"affinity": affinity})
        self.edges[(source, target)] = updated
        return updated.model_copy()

    async def list_edges(self, source: str) -> List[RelationshipEdge]:
        return [edge.model_copy() for (src, _), edge in self.edges.items() if src == source]


@dataclass(slots=True)
class ZonePost:
    """One message posted to a zone channel."""

    zone: str
    speaker: str
    text: str
    is_emote: bool = False
    posted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryZoneChannel(ZoneChannel):
    """Records posts; optionally echoes them to the console for demos."""

    def __init__(self, echo: bool = False):
        self.posts: List[ZonePost] = []
        self.echo = echo

    async def post(self, zone: str, speaker: str, text: str, is_emote: bool = False) -> None:
        self.posts.append(ZonePost(zone=zone, speaker=speaker, text=text, is_emote=is_emote))
        if self.echo:
            log_info(f"#{zone} {speaker}: {text}")

    def in_zone(self, zone: str) -> List[ZonePost]:
        return [p for p in self.posts if p.zone == zone]


class InMemoryNotifier(NotificationSink):
    def __init__(self):
        self.messages: List[str] = []

    async def notify(self, text: str) -> None:
        self.messages.append(text)


class NullNotifier(NotificationSink):
    """Used when no operator sink is configured."""

    async def notify(self, text: str) -> None:
        return None


class NotificationError(RuntimeError):
    """Raised when the operator webhook rejects or cannot receive a message."""


class WebhookNotifier(NotificationSink):
    """Posts `{"content": text}` to a Discord-compatible webhook."""

    def __init__(self, url: str, timeout: float = 5.0):
        self.url = url
        self.timeout = timeout

    def _send(self, text: str) -> None:
        data = json.dumps({"content": text}).encode("utf-8")
        req = request.Request(
            self.url,
            data=data,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self.timeout) as resp:
                resp.read()
        except error.HTTPError as exc:
            raise NotificationError(
                f"Webhook rejected notification with status {exc.code}: {exc.reason}"
            ) from exc
        except error.URLError as exc:
            raise NotificationError(f"Could not reach webhook: {exc.reason}") from exc

    async def notify(self, text: str) -> None:
        await asyncio.to_thread(self._send, text)
