"""
MemoryStrategy interface for the Memory Store collaborator.

Fights leave marks: participants, witnesses, and bystanders each receive a memory
whose importance scales with severity. Grudges are pinned and never expire.

Key responsibilities:
- Store fight, escape, collateral, reconciliation, and grudge memories
- Retrieve recent or keyword-relevant memories for a character
- Hide expired memories from retrieval (pinned memories never expire)

Design principle: the engine only writes memories; retrieval exists so demos,
tests, and downstream prompt builders can read them back.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, List, Optional

from fracas.schemas import MemoryRecord


class MemoryStrategy(ABC):
    """
    Abstract base class for memory stores.

    Implementations decide where memories live; the engine only relies on
    add_memory() accepting a fully built MemoryRecord.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the memory backend."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release memory backend resources."""
        pass

    @abstractmethod
    async def add_memory(self, memory: MemoryRecord) -> MemoryRecord:
        """
        Store a memory.

        Args:
            memory: Memory record (character, content, importance, tags,
                related characters, expiry, pin flag)

        Returns:
            The stored MemoryRecord

        Raises:
            Exception: If memory cannot be stored
        """
        pass

    @abstractmethod
    async def get_recent_memories(self, character: str, limit: int = 10) -> List[str]:
        """
        Retrieve a character's recent, unexpired memories as strings.

        Returns:
            List of memory content strings (most recent first)
        """
        pass

    @abstractmethod
    async def get_relevant_memories(
        self,
        character: str,
        query: str,
        limit: int = 5,
    ) -> List[str]:
        """Retrieve unexpired memories matching a keyword query."""
        pass


class SimpleMemoryStream(MemoryStrategy):
    """
    Memory store that delegates storage to the persistence layer.

    Expired memories are filtered at read time; nothing is deleted. Relevance
    is a lightweight keyword score over content and tags, boosted by importance.
    """

    def __init__(self, persistence, clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize memory stream with persistence backend.

        Args:
            persistence: PersistenceStrategy instance for storing memories
            clock: Returns "now"; defaults to UTC wall clock
        """
        self.persistence = persistence
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def initialize(self) -> None:
        # Persistence handles its own initialization.
        pass

    async def close(self) -> None:
        pass

    async def add_memory(self, memory: MemoryRecord) -> MemoryRecord:
        await self.persistence.save_memory(memory)
        return memory

    async def _live_memories(self, character: str, window: int) -> List[MemoryRecord]:
        now = self.clock()
        memories = await self.persistence.get_memories(character, window)
        return [
            m for m in memories
            if m.is_pinned or m.expires_at is None or m.expires_at > now
        ]

    async def get_recent_memories(self, character: str, limit: int = 10) -> List[str]:
        memories = await self._live_memories(character, max(limit * 3, limit))
        return [m.content for m in memories[:limit]]

    async def get_relevant_memories(
        self,
        character: str,
        query: str,
        limit: int = 5,
    ) -> List[str]:
        terms = [term for term in query.lower().replace(",", " ").split() if term]
        if not terms:
            return await self.get_recent_memories(character, limit)

        # Fetch a broader window so we can compute a lightweight score.
        candidates = await self._live_memories(character, max(limit * 5, limit))
        scores: List[tuple[float, str]] = []

        for position, mem in enumerate(candidates):
            text = mem.content.lower()
            tag_text = " ".join(mem.tags).lower()
            score = 0.0

            for term in terms:
                if term in text:
                    score += 2.0
                if term in tag_text:
                    score += 1.0

            if score <= 0.0:
                continue

            # Favor fresher memories without ignoring high-importance items.
            score += 1.0 / (1.0 + position)
            score += mem.importance * 0.1
            if mem.is_pinned:
                score += 0.5

            scores.append((score, mem.content))

        scores.sort(key=lambda item: item[0], reverse=True)
        return [content for _, content in scores[:limit]]
