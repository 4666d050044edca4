"""
PersistenceStrategy interface for pluggable storage backends.

This module provides the abstract PersistenceStrategy interface and three concrete
implementations for the records the conflict engine owns: injuries, fight records,
pending confrontations, daily counters, free-form settings, and memories.

Three included implementations:
1. InMemoryPersistence - Dict-based storage, data lost on exit (testing, demos)
2. JsonPersistence - File-based storage, human-readable JSON (single-host deployments)
3. PostgresPersistence - Database storage via asyncpg (production)

Concurrency caveat:
- There are no transactions spanning several calls. Entry points rely on persisted
  guards (one pending record per pair, delete-before-resolve, counters) and accept
  last-write-wins between overlapping ticks.
- delete_pending() reports whether THIS call removed the record. Backends that can
  do so atomically (Postgres DELETE ... RETURNING) make pending resolution
  at-most-once even when two ticks overlap.

Usage pattern:
    persistence = InMemoryPersistence()  # or JsonPersistence(), PostgresPersistence()
    await persistence.initialize()
    await persistence.save_injury(record)
    await persistence.close()
"""

import asyncio
import json
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import UUID

from fracas.schemas import (
    DailyCounter,
    FightRecord,
    InjuryRecord,
    MemoryRecord,
    PendingConfrontationRecord,
)
from .config import Config

try:  # Optional dependency (only needed for PostgresPersistence)
    import asyncpg
except ImportError:  # pragma: no cover - asyncpg may not be installed for json/memory usage
    asyncpg = None


class PersistenceStrategy(ABC):
    """Abstract base class for conflict-engine record storage.

    Method categories:
    1. Lifecycle: initialize(), close()
    2. Injuries: save_injury(), get_active_injuries(), deactivate_injuries()
    3. Fights: save_fight(), get_fight(), get_unsettled_fights()
    4. Pending confrontations: save_pending(), list_pending(), delete_pending()
    5. Counters and settings: get_counter(), save_counter(), get_setting(), save_setting()
    6. Memories: save_memory(), get_memories()

    All methods are async so database and file backends never block a tick.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (connection pools, directories, tables)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        pass

    # Injuries ------------------------------------------------------------

    @abstractmethod
    async def save_injury(self, injury: InjuryRecord) -> None:
        """Insert or replace an injury record."""
        pass

    @abstractmethod
    async def get_active_injuries(self, character: Optional[str] = None) -> List[InjuryRecord]:
        """Return active injuries, optionally filtered to one character."""
        pass

    @abstractmethod
    async def deactivate_injuries(self, injury_ids: List[UUID]) -> int:
        """
        Mark the given injuries inactive in one batch.

        Args:
            injury_ids: Injuries to deactivate

        Returns:
            Number of records that were active and are now inactive
        """
        pass

    # Fights --------------------------------------------------------------

    @abstractmethod
    async def save_fight(self, fight: FightRecord) -> None:
        """Insert or replace a fight record."""
        pass

    @abstractmethod
    async def get_fight(self, fight_id: str) -> Optional[FightRecord]:
        """Return a fight record by id, or None."""
        pass

    @abstractmethod
    async def get_unsettled_fights(self) -> List[FightRecord]:
        """Return all fight records with settled=False, oldest first."""
        pass

    # Pending confrontations ----------------------------------------------

    @abstractmethod
    async def save_pending(self, pending: PendingConfrontationRecord) -> None:
        """Persist a pending confrontation."""
        pass

    @abstractmethod
    async def list_pending(self) -> List[PendingConfrontationRecord]:
        """Return all pending confrontations, oldest first."""
        pass

    @abstractmethod
    async def delete_pending(self, pending_id: UUID) -> bool:
        """
        Delete a pending confrontation.

        Returns:
            True if this call removed the record, False if it was already gone
        """
        pass

    # Counters and settings -----------------------------------------------

    @abstractmethod
    async def get_counter(self, key: str) -> Optional[DailyCounter]:
        """Return the stored counter for key, or None."""
        pass

    @abstractmethod
    async def save_counter(self, counter: DailyCounter) -> None:
        """Insert or replace a counter (last write wins)."""
        pass

    @abstractmethod
    async def get_setting(self, key: str) -> Optional[Dict[str, Any]]:
        """Return a free-form JSON setting, or None."""
        pass

    @abstractmethod
    async def save_setting(self, key: str, value: Dict[str, Any]) -> None:
        """Insert or replace a free-form JSON setting."""
        pass

    # Memories ------------------------------------------------------------

    @abstractmethod
    async def save_memory(self, memory: MemoryRecord) -> None:
        """Append a memory record."""
        pass

    @abstractmethod
    async def get_memories(self, character: str, limit: int = 10) -> List[MemoryRecord]:
        """Return a character's most recent memories (most recent first)."""
        pass


class InMemoryPersistence(PersistenceStrategy):
    """In-memory persistence using Python dicts (no database, no files).

    Data is ephemeral and lost when the process exits. Zero dependencies and
    instant initialization make it the default for tests and demos.

    Storage structure:
    - injuries: Dict[UUID, InjuryRecord]
    - fights: Dict[str, FightRecord]
    - pending: Dict[UUID, PendingConfrontationRecord]
    - counters: Dict[str, DailyCounter]
    - settings: Dict[str, dict]
    - memories: Dict[str, List[MemoryRecord]] keyed by character
    """

    def __init__(self):
        """Initialize in-memory storage."""
        self.injuries: Dict[UUID, InjuryRecord] = {}
        self.fights: Dict[str, FightRecord] = {}
        self.pending: Dict[UUID, PendingConfrontationRecord] = {}
        self.counters: Dict[str, DailyCounter] = {}
        self.settings: Dict[str, Dict[str, Any]] = {}
        self.memories: Dict[str, List[MemoryRecord]] = {}

    async def initialize(self) -> None:
        """No-op for in-memory implementation."""
        pass

    async def close(self) -> None:
        """
        No-op: data is kept after close so callers can inspect it post-run.
        """
        pass

    async def save_injury(self, injury: InjuryRecord) -> None:
        self.injuries[injury.id] = injury.model_copy(deep=True)

    async def get_active_injuries(self, character: Optional[str] = None) -> List[InjuryRecord]:
        return [
            injury.model_copy(deep=True)
            for injury in self.injuries.values()
            if injury.is_active and (character is None or injury.character == character)
        ]

    async def deactivate_injuries(self, injury_ids: List[UUID]) -> int:
        changed = 0
        for injury_id in injury_ids:
            injury = self.injuries.get(injury_id)
            if injury is not None and injury.is_active:
                injury.is_active = False
                changed += 1
        return changed

    async def save_fight(self, fight: FightRecord) -> None:
        self.fights[fight.id] = fight.model_copy(deep=True)

    async def get_fight(self, fight_id: str) -> Optional[FightRecord]:
        fight = self.fights.get(fight_id)
        return fight.model_copy(deep=True) if fight else None

    async def get_unsettled_fights(self) -> List[FightRecord]:
        unsettled = [f.model_copy(deep=True) for f in self.fights.values() if not f.settled]
        return sorted(unsettled, key=lambda f: f.occurred_at)

    async def save_pending(self, pending: PendingConfrontationRecord) -> None:
        self.pending[pending.id] = pending.model_copy(deep=True)

    async def list_pending(self) -> List[PendingConfrontationRecord]:
        records = [p.model_copy(deep=True) for p in self.pending.values()]
        return sorted(records, key=lambda p: p.confrontation_at)

    async def delete_pending(self, pending_id: UUID) -> bool:
        return self.pending.pop(pending_id, None) is not None

    async def get_counter(self, key: str) -> Optional[DailyCounter]:
        counter = self.counters.get(key)
        return counter.model_copy() if counter else None

    async def save_counter(self, counter: DailyCounter) -> None:
        self.counters[counter.key] = counter.model_copy()

    async def get_setting(self, key: str) -> Optional[Dict[str, Any]]:
        value = self.settings.get(key)
        return dict(value) if value is not None else None

    async def save_setting(self, key: str, value: Dict[str, Any]) -> None:
        self.settings[key] = dict(value)

    async def save_memory(self, memory: MemoryRecord) -> None:
        self.memories.setdefault(memory.character, []).append(memory)

    async def get_memories(self, character: str, limit: int = 10) -> List[MemoryRecord]:
        all_memories = self.memories.get(character, [])
        # Sort by creation time descending, take limit
        ordered = sorted(all_memories, key=lambda m: m.created_at, reverse=True)
        return ordered[:limit]


class JsonPersistence(PersistenceStrategy):
    """File-based persistence using JSON for human-readable storage.

    Directory structure:
    ```
    {base_path}/
      injuries/{id}.json
      fights/{fight_id}.json
      pending/{id}.json
      counters/{key}.json
      settings/{key}.json
      memories/{character}.jsonl     # append-only JSON Lines
    ```

    NOT suitable for several processes sharing one directory: there is no file
    locking, so two ticks may interleave reads and writes (last write wins).
    All file I/O runs in a thread pool (asyncio.to_thread).
    """

    _KINDS = ("injuries", "fights", "pending", "counters", "settings", "memories")

    def __init__(self, base_path: Path | str | None = None):
        self.base_path = Path(base_path or Config.DATA_DIR or "fracas_data")

    async def initialize(self) -> None:
        for kind in self._KINDS:
            await asyncio.to_thread((self.base_path / kind).mkdir, parents=True, exist_ok=True)

    async def close(self) -> None:
        # Nothing to clean up for JSON persistence
        return None

    async def save_injury(self, injury: InjuryRecord) -> None:
        await self._write("injuries", str(injury.id), injury.model_dump(mode="json"))

    async def get_active_injuries(self, character: Optional[str] = None) -> List[InjuryRecord]:
        payloads = await self._read_all("injuries")
        injuries = [InjuryRecord.model_validate(p) for p in payloads]
        return [
            i for i in injuries
            if i.is_active and (character is None or i.character == character)
        ]

    async def deactivate_injuries(self, injury_ids: List[UUID]) -> int:
        changed = 0
        for injury_id in injury_ids:
            payload = await self._read("injuries", str(injury_id))
            if payload is None:
                continue
            injury = InjuryRecord.model_validate(payload)
            if injury.is_active:
                injury.is_active = False
                await self.save_injury(injury)
                changed += 1
        return changed

    async def save_fight(self, fight: FightRecord) -> None:
        await self._write("fights", fight.id, fight.model_dump(mode="json"))

    async def get_fight(self, fight_id: str) -> Optional[FightRecord]:
        payload = await self._read("fights", fight_id)
        return FightRecord.model_validate(payload) if payload else None

    async def get_unsettled_fights(self) -> List[FightRecord]:
        payloads = await self._read_all("fights")
        fights = [FightRecord.model_validate(p) for p in payloads]
        return sorted((f for f in fights if not f.settled), key=lambda f: f.occurred_at)

    async def save_pending(self, pending: PendingConfrontationRecord) -> None:
        await self._write("pending", str(pending.id), pending.model_dump(mode="json"))

    async def list_pending(self) -> List[PendingConfrontationRecord]:
        payloads = await self._read_all("pending")
        records = [PendingConfrontationRecord.model_validate(p) for p in payloads]
        return sorted(records, key=lambda p: p.confrontation_at)

    async def delete_pending(self, pending_id: UUID) -> bool:
        path = self._path("pending", str(pending_id))

        def _unlink() -> bool:
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            return True

        return await asyncio.to_thread(_unlink)

    async def get_counter(self, key: str) -> Optional[DailyCounter]:
        payload = await self._read("counters", key)
        return DailyCounter.model_validate(payload) if payload else None

    async def save_counter(self, counter: DailyCounter) -> None:
        await self._write("counters", counter.key, counter.model_dump(mode="json"))

    async def get_setting(self, key: str) -> Optional[Dict[str, Any]]:
        return await self._read("settings", key)

    async def save_setting(self, key: str, value: Dict[str, Any]) -> None:
        await self._write("settings", key, value)

    async def save_memory(self, memory: MemoryRecord) -> None:
        directory = self.base_path / "memories"
        await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)
        path = directory / f"{_safe_name(memory.character)}.jsonl"
        payload = memory.model_dump(mode="json")

        def _append() -> None:
            with path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(payload))
                handle.write("\n")

        await asyncio.to_thread(_append)

    async def get_memories(self, character: str, limit: int = 10) -> List[MemoryRecord]:
        path = self.base_path / "memories" / f"{_safe_name(character)}.jsonl"
        if not path.exists():
            return []

        def _read() -> List[str]:
            return path.read_text("utf-8").splitlines()

        lines = await asyncio.to_thread(_read)
        memories = [MemoryRecord.model_validate_json(line) for line in lines if line]
        memories.sort(key=lambda m: m.created_at, reverse=True)
        return memories[:limit]

    async def clear(self) -> None:
        """Remove every stored record (used by demos to reset a data dir)."""
        if self.base_path.exists():
            await asyncio.to_thread(shutil.rmtree, self.base_path)
        await self.initialize()

    def _path(self, kind: str, key: str) -> Path:
        return self.base_path / kind / f"{_safe_name(key)}.json"

    async def _write(self, kind: str, key: str, payload: Dict[str, Any]) -> None:
        path = self._path(kind, key)
        await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_text, json.dumps(payload, indent=2), "utf-8")

    async def _read(self, kind: str, key: str) -> Optional[Dict[str, Any]]:
        path = self._path(kind, key)
        if not path.exists():
            return None
        text = await asyncio.to_thread(path.read_text, "utf-8")
        return json.loads(text)

    async def _read_all(self, kind: str) -> List[Dict[str, Any]]:
        directory = self.base_path / kind
        if not directory.exists():
            return []

        def _load() -> List[Dict[str, Any]]:
            return [
                json.loads(path.read_text("utf-8"))
                for path in sorted(directory.glob("*.json"))
            ]

        return await asyncio.to_thread(_load)


def _safe_name(key: str) -> str:
    """Make a record key usable as a file name ("Ghost Dad" -> "Ghost_Dad")."""
    return "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in key)


SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS fracas_injuries (
        id UUID PRIMARY KEY,
        character TEXT NOT NULL,
        is_active BOOLEAN NOT NULL,
        heals_at TIMESTAMPTZ NOT NULL,
        record JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS fracas_fights (
        id TEXT PRIMARY KEY,
        settled BOOLEAN NOT NULL,
        occurred_at TIMESTAMPTZ NOT NULL,
        record JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS fracas_pending (
        id UUID PRIMARY KEY,
        confrontation_at TIMESTAMPTZ NOT NULL,
        record JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS fracas_counters (
        key TEXT PRIMARY KEY,
        record JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS fracas_settings (
        key TEXT PRIMARY KEY,
        value JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS fracas_memories (
        id UUID PRIMARY KEY,
        character TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        record JSONB NOT NULL
    )
    """,
]


class PostgresPersistence(PersistenceStrategy):
    """PostgreSQL-backed persistence using an asyncpg connection pool.

    Each record is stored as JSONB next to the few columns the engine filters on
    (is_active, settled, timestamps). Tables are created on initialize().

    delete_pending() uses DELETE ... RETURNING so exactly one caller observes a
    successful delete, which makes pending resolution at-most-once across
    overlapping ticks. Counters remain last-write-wins.
    """

    def __init__(self, database_url: Optional[str] = None):
        if asyncpg is None:  # pragma: no cover - handled during runtime when dependency missing
            raise ImportError(
                "asyncpg is required for PostgresPersistence. Install with `pip install fracas[postgres]`."
            )

        self.database_url = database_url or Config.DATABASE_URL
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self) -> None:
        if self.pool is None:
            self.pool = await asyncpg.create_pool(self.database_url)
            async with self.pool.acquire() as conn:
                for statement in SCHEMA_STATEMENTS:
                    await conn.execute(statement)

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            self.pool = None

    async def save_injury(self, injury: InjuryRecord) -> None:
        assert self.pool is not None, "Persistence not initialized"

        query = """
            INSERT INTO fracas_injuries (id, character, is_active, heals_at, record)
            VALUES ($1, $2, $3, $4, $5::jsonb)
            ON CONFLICT (id) DO UPDATE
            SET character=$2, is_active=$3, heals_at=$4, record=$5::jsonb
        """
        async with self.pool.acquire() as conn:
            await conn.execute(
                query,
                injury.id,
                injury.character,
                injury.is_active,
                injury.heals_at,
                injury.model_dump_json(),
            )

    async def get_active_injuries(self, character: Optional[str] = None) -> List[InjuryRecord]:
        assert self.pool is not None, "Persistence not initialized"

        async with self.pool.acquire() as conn:
            if character is None:
                rows = await conn.fetch(
                    "SELECT record FROM fracas_injuries WHERE is_active = TRUE"
                )
            else:
                rows = await conn.fetch(
                    "SELECT record FROM fracas_injuries WHERE is_active = TRUE AND character = $1",
                    character,
                )
        return [InjuryRecord.model_validate_json(row["record"]) for row in rows]

    async def deactivate_injuries(self, injury_ids: List[UUID]) -> int:
        assert self.pool is not None, "Persistence not initialized"

        if not injury_ids:
            return 0

        query = """
            UPDATE fracas_injuries
            SET is_active = FALSE,
                record = jsonb_set(record, '{is_active}', 'false'::jsonb)
            WHERE id = ANY($1::uuid[]) AND is_active = TRUE
            RETURNING id
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, list(injury_ids))
        return len(rows)

    async def save_fight(self, fight: FightRecord) -> None:
        assert self.pool is not None, "Persistence not initialized"

        query = """
            INSERT INTO fracas_fights (id, settled, occurred_at, record)
            VALUES ($1, $2, $3, $4::jsonb)
            ON CONFLICT (id) DO UPDATE SET settled=$2, occurred_at=$3, record=$4::jsonb
        """
        async with self.pool.acquire() as conn:
            await conn.execute(
                query, fight.id, fight.settled, fight.occurred_at, fight.model_dump_json()
            )

    async def get_fight(self, fight_id: str) -> Optional[FightRecord]:
        assert self.pool is not None, "Persistence not initialized"

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT record FROM fracas_fights WHERE id = $1", fight_id)
        return FightRecord.model_validate_json(row["record"]) if row else None

    async def get_unsettled_fights(self) -> List[FightRecord]:
        assert self.pool is not None, "Persistence not initialized"

        query = """
            SELECT record FROM fracas_fights
            WHERE settled = FALSE
            ORDER BY occurred_at
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query)
        return [FightRecord.model_validate_json(row["record"]) for row in rows]

    async def save_pending(self, pending: PendingConfrontationRecord) -> None:
        assert self.pool is not None, "Persistence not initialized"

        query = """
            INSERT INTO fracas_pending (id, confrontation_at, record)
            VALUES ($1, $2, $3::jsonb)
            ON CONFLICT (id) DO UPDATE SET confrontation_at=$2, record=$3::jsonb
        """
        async with self.pool.acquire() as conn:
            await conn.execute(
                query, pending.id, pending.confrontation_at, pending.model_dump_json()
            )

    async def list_pending(self) -> List[PendingConfrontationRecord]:
        assert self.pool is not None, "Persistence not initialized"

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT record FROM fracas_pending ORDER BY confrontation_at"
            )
        return [PendingConfrontationRecord.model_validate_json(row["record"]) for row in rows]

    async def delete_pending(self, pending_id: UUID) -> bool:
        assert self.pool is not None, "Persistence not initialized"

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "DELETE FROM fracas_pending WHERE id = $1 RETURNING id", pending_id
            )
        return row is not None

    async def get_counter(self, key: str) -> Optional[DailyCounter]:
        assert self.pool is not None, "Persistence not initialized"

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT record FROM fracas_counters WHERE key = $1", key)
        return DailyCounter.model_validate_json(row["record"]) if row else None

    async def save_counter(self, counter: DailyCounter) -> None:
        assert self.pool is not None, "Persistence not initialized"

        query = """
            INSERT INTO fracas_counters (key, record)
            VALUES ($1, $2::jsonb)
            ON CONFLICT (key) DO UPDATE SET record=$2::jsonb
        """
        async with self.pool.acquire() as conn:
            await conn.execute(query, counter.key, counter.model_dump_json())

    async def get_setting(self, key: str) -> Optional[Dict[str, Any]]:
        assert self.pool is not None, "Persistence not initialized"

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT value FROM fracas_settings WHERE key = $1", key)
        return json.loads(row["value"]) if row else None

    async def save_setting(self, key: str, value: Dict[str, Any]) -> None:
        assert self.pool is not None, "Persistence not initialized"

        query = """
            INSERT INTO fracas_settings (key, value)
            VALUES ($1, $2::jsonb)
            ON CONFLICT (key) DO UPDATE SET value=$2::jsonb
        """
        async with self.pool.acquire() as conn:
            await conn.execute(query, key, json.dumps(value, default=str))

    async def save_memory(self, memory: MemoryRecord) -> None:
        assert self.pool is not None, "Persistence not initialized"

        query = """
            INSERT INTO fracas_memories (id, character, created_at, record)
            VALUES ($1, $2, $3, $4::jsonb)
        """
        async with self.pool.acquire() as conn:
            await conn.execute(
                query, memory.id, memory.character, memory.created_at, memory.model_dump_json()
            )

    async def get_memories(self, character: str, limit: int = 10) -> List[MemoryRecord]:
        assert self.pool is not None, "Persistence not initialized"

        query = """
            SELECT record FROM fracas_memories
            WHERE character = $1
            ORDER BY created_at DESC
            LIMIT $2
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, character, limit)
        return [MemoryRecord.model_validate_json(row["record"]) for row in rows]
