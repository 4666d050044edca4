"""
Daily counters and cooldown windows shared by every probabilistic subsystem.

A counter is keyed by name, scoped to a calendar day (UTC date of the injected
clock), and optionally carries a cooldown deadline and the time of the last event.
The count resets implicitly when the stored date differs from today.

Concurrency caveat: every operation is read-then-write against the persistence
store with no compare-and-swap. Two overlapping ticks can both pass can_consume()
and both increment, so a cap may be exceeded by a small margin. This is accepted;
all rate limits in the engine go through this class so the caveat lives here only.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from fracas.schemas import DailyCounter


class RateLimiter:
    def __init__(self, persistence, clock: Optional[Callable[[], datetime]] = None):
        self.persistence = persistence
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def _load(self, key: str) -> DailyCounter:
        today = self.clock().date()
        counter = await self.persistence.get_counter(key)
        if counter is None:
            return DailyCounter(key=key, date=today)
        if counter.date != today:
            # New day: count resets, timestamps carry over so cooldowns still span midnight
            return counter.model_copy(update={"date": today, "count": 0})
        return counter

    async def can_consume(self, key: str, max_per_day: Optional[int] = None) -> bool:
        """True when the daily cap (if any) and cooldown (if active) both allow an event."""
        counter = await self._load(key)
        if max_per_day is not None and counter.count >= max_per_day:
            return False
        if counter.cooldown_until is not None and self.clock() < counter.cooldown_until:
            return False
        return True

    async def consume(self, key: str, cooldown: Optional[timedelta] = None) -> DailyCounter:
        """Record one event unconditionally and start the cooldown window (if any)."""
        now = self.clock()
        counter = await self._load(key)
        counter = counter.model_copy(
            update={
                "count": counter.count + 1,
                "last_event_at": now,
                "cooldown_until": now + cooldown if cooldown else counter.cooldown_until,
            }
        )
        await self.persistence.save_counter(counter)
        return counter

    async def try_consume(
        self,
        key: str,
        max_per_day: Optional[int] = None,
        cooldown: Optional[timedelta] = None,
    ) -> bool:
        """Check then consume. Returns False without recording when limited."""
        if not await self.can_consume(key, max_per_day):
            return False
        await self.consume(key, cooldown)
        return True

    async def touch(self, key: str) -> None:
        """Refresh last_event_at without counting (global activity markers)."""
        counter = await self._load(key)
        await self.persistence.save_counter(counter.model_copy(update={"last_event_at": self.clock()}))

    async def last_event(self, key: str) -> Optional[datetime]:
        counter = await self.persistence.get_counter(key)
        return counter.last_event_at if counter else None

    async def within(self, key: str, window: timedelta) -> bool:
        """True if the last event for key happened less than `window` ago."""
        last = await self.last_event(key)
        return last is not None and self.clock() - last < window

    async def count_today(self, key: str) -> int:
        return (await self._load(key)).count
