"""
Conflict engine: the scheduler-facing entry points.

Fully decoupled from where state lives. Collaborators (agent directory,
relationship store, zone channel, memory store, persistence, notifier, narrative
generator) are injected; randomness and time come from an injected
`random.Random` and clock so ticks are reproducible in tests.

Reference cadence (run_tick):
1. Resolve matured pending confrontations (each one becomes a fight)
2. Evaluate tension and, if a pair is fight-ready, start a confrontation
3. Heal injuries whose deadline passed
4. Attempt settlement of old, unsettled fights (or form grudges)
5. Maybe generate an accident
"""

from __future__ import annotations

import functools
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from .accidents import ACCIDENT_KEY, accident_effects, pick_mishap
from .config import Config, ConfigurationError
from .consequences import (
    affinity_shifts,
    check_collateral,
    core_effects,
    fight_injuries,
    fight_summary,
    retreat_chance,
    retreat_effects,
    witness_memories,
)
from .dice import Combatant, DiceOutcome, modifier_breakdown, roll_fight
from .effects import Effect, EffectApplier, EffectReport, PostMessage, SaveFightRecord
from .escape import attempt_escape, escape_key, should_attempt
from .injuries import heal_injuries as run_heal
from .logging_utils import log_deterministic, log_error, log_info, log_success
from .memory import MemoryStrategy, SimpleMemoryStream
from .narrative import (
    LLMNarrativeGenerator,
    NarrativeGenerator,
    fight_fallback,
    fight_prompt,
    narrate,
    provocation_fallback,
    provocation_prompt,
)
from .persistence import InMemoryPersistence, JsonPersistence, PersistenceStrategy, PostgresPersistence
from .profiles import CombatProfileRegistry
from .rate_limiter import RateLimiter
from .schemas import (
    AccidentResult,
    ActionResult,
    ConfrontationResult,
    FightOutcome,
    FightRecord,
    HealReport,
    PendingConfrontationRecord,
    PendingResolution,
    PendingResolutionReport,
    SettlementEntry,
    SettlementReport,
    TensionResult,
    TickReport,
)
from .settlement import (
    GRUDGE_AFTER_ATTEMPTS,
    MAX_MEDIATOR_CANDIDATES,
    MEDIATOR_MIN_AFFINITY,
    attempt_settlement,
    eligibility,
    form_grudge,
)
from .tension import evaluate_tension as score_tension
from .world import AgentDirectory, NotificationSink, NullNotifier, RelationshipStore, WebhookNotifier, ZoneChannel


LAST_FIGHT_KEY = "last_fight_at"


# =============================
# Module-level Exceptions
# =============================


class CannotFightError(Exception):
    """Raised when a pairing cannot be resolved (missing data or a non-fighter)."""

    def __init__(self, *, aggressor: str, defender: str, reason: str) -> None:
        self.aggressor = aggressor
        self.defender = defender
        self.reason = reason
        message = (
            f"{aggressor} vs {defender} cannot fight: {reason}\n"
            "Remediation tips:\n"
            "  - Check both characters have a combat profile with can_fight=true\n"
            "  - Check both characters exist in the agent directory"
        )
        super().__init__(message)


def requires_configuration(result_type: type[ActionResult]):
    """Return an inert `status="not_configured"` result when the engine is unconfigured."""

    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(self: "ConflictEngine", *args, **kwargs):
            if not self.configured:
                log_error(f"{fn.__name__} skipped: engine not configured ({self.configuration_error})")
                return result_type(status="not_configured")
            return await fn(self, *args, **kwargs)

        return wrapper

    return decorator


@dataclass
class EngineSettings:
    """Tunable timings, zones, and thresholds (defaults mirror Config)."""

    conflict_zones: List[str] = field(default_factory=lambda: ["the_floor"])
    recovery_zone: str = "recovery_bay"
    confrontation_delay: timedelta = timedelta(seconds=45)
    pending_stale_after: timedelta = timedelta(minutes=10)
    fight_cooldown: timedelta = timedelta(minutes=30)
    settlement_min_age: timedelta = timedelta(hours=2)
    accident_cooldown: timedelta = timedelta(hours=2)
    accident_chance: float = 0.01
    tension_threshold: int = 10
    narrative_timeout: float = 8.0

    @classmethod
    def from_config(cls) -> "EngineSettings":
        return cls(
            conflict_zones=list(Config.CONFLICT_ZONES),
            recovery_zone=Config.RECOVERY_ZONE,
            confrontation_delay=timedelta(seconds=Config.CONFRONTATION_DELAY_SECONDS),
            pending_stale_after=timedelta(seconds=Config.PENDING_STALE_SECONDS),
            fight_cooldown=timedelta(minutes=Config.FIGHT_COOLDOWN_MINUTES),
            settlement_min_age=timedelta(hours=Config.SETTLEMENT_MIN_AGE_HOURS),
            accident_cooldown=timedelta(hours=Config.ACCIDENT_COOLDOWN_HOURS),
            accident_chance=Config.ACCIDENT_CHANCE,
            tension_threshold=Config.TENSION_THRESHOLD,
            narrative_timeout=Config.NARRATIVE_TIMEOUT_SECONDS,
        )


class ConflictEngine:
    """
    Tick-driven conflict engine.

    Every public entry point is safe to call on a fixed interval and is idempotent
    with respect to records it has finalized (settled fights, healed injuries,
    deleted pending confrontations).
    """

    def __init__(
        self,
        *,
        directory: AgentDirectory,
        relationships: RelationshipStore,
        profiles: CombatProfileRegistry,
        channel: ZoneChannel,
        persistence: Optional[PersistenceStrategy] = None,
        memory: Optional[MemoryStrategy] = None,
        notifier: Optional[NotificationSink] = None,
        narrator: Optional[NarrativeGenerator] = None,
        settings: Optional[EngineSettings] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
        configured: bool = True,
        configuration_error: Optional[str] = None,
    ):
        self.directory = directory
        self.relationships = relationships
        self.profiles = profiles
        self.channel = channel
        self.persistence = persistence or InMemoryPersistence()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.memory = memory or SimpleMemoryStream(self.persistence, clock=self.clock)
        self.notifier = notifier or NullNotifier()
        self.narrator = narrator
        self.settings = settings or EngineSettings()
        self.rng = rng or random.Random()
        self.configured = configured
        self.configuration_error = configuration_error

        self.limiter = RateLimiter(self.persistence, clock=self.clock)
        self.applier = EffectApplier(
            directory=self.directory,
            relationships=self.relationships,
            channel=self.channel,
            memory=self.memory,
            persistence=self.persistence,
            notifier=self.notifier,
        )

    @classmethod
    def from_config(
        cls,
        *,
        directory: AgentDirectory,
        relationships: RelationshipStore,
        profiles: CombatProfileRegistry,
        channel: ZoneChannel,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "ConflictEngine":
        """Build an engine from environment configuration.

        A ConfigurationError does not raise: the engine is returned in the
        not-configured state and every entry point becomes a no-op.
        """
        try:
            Config.validate()
        except ConfigurationError as exc:
            log_error(f"Configuration invalid: {exc}")
            return cls(
                directory=directory,
                relationships=relationships,
                profiles=profiles,
                channel=channel,
                rng=rng,
                clock=clock,
                configured=False,
                configuration_error=str(exc),
            )

        backend = Config.STORAGE_BACKEND.lower()
        if backend == "postgres":
            persistence: PersistenceStrategy = PostgresPersistence(Config.DATABASE_URL)
        elif backend == "json":
            persistence = JsonPersistence(Config.DATA_DIR)
        else:
            persistence = InMemoryPersistence()

        narrator = None
        if Config.LLM_PROVIDER and Config.LLM_MODEL:
            narrator = LLMNarrativeGenerator(Config.LLM_PROVIDER, Config.LLM_MODEL)

        notifier = WebhookNotifier(Config.NOTIFY_WEBHOOK) if Config.NOTIFY_WEBHOOK else NullNotifier()

        return cls(
            directory=directory,
            relationships=relationships,
            profiles=profiles,
            channel=channel,
            persistence=persistence,
            notifier=notifier,
            narrator=narrator,
            settings=EngineSettings.from_config(),
            rng=rng,
            clock=clock,
        )

    async def initialize(self) -> None:
        await self.persistence.initialize()
        await self.memory.initialize()

    async def close(self) -> None:
        await self.memory.close()
        await self.persistence.close()

    async def __aenter__(self) -> "ConflictEngine":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Tension
    # ------------------------------------------------------------------

    @requires_configuration(TensionResult)
    async def evaluate_tension(self) -> TensionResult:
        if await self.limiter.within(LAST_FIGHT_KEY, self.settings.fight_cooldown):
            log_deterministic("Tension check skipped: recent fight activity (cooldown)")
            return TensionResult(fight_ready=False, reason="cooldown")

        agents = await self.directory.list_agents()
        zones = set(self.settings.conflict_zones)
        present = [agent for agent in agents if agent.zone in zones]
        edges = {agent.name: await self.relationships.list_edges(agent.name) for agent in present}

        result, best = score_tension(
            present,
            edges,
            fighters=[agent.name for agent in present if self.profiles.can_fight(agent.name)],
            conflict_zones=zones,
            threshold=self.settings.tension_threshold,
        )

        if best is None:
            log_deterministic(f"Tension: all clear ({len(present)} in conflict zones, {result.reason})")
        else:
            state = "FIGHT READY" if result.fight_ready else "simmering"
            log_deterministic(
                f"Tension: {best.aggressor} vs {best.defender} scored "
                f"{best.score}/{self.settings.tension_threshold} ({best.reason}) {state}"
            )
        return result

    # ------------------------------------------------------------------
    # Confrontation (phase one)
    # ------------------------------------------------------------------

    @requires_configuration(ConfrontationResult)
    async def initiate_confrontation(
        self,
        aggressor: str,
        defender: str,
        reason: str = "",
        tension_score: int = 0,
    ) -> ConfrontationResult:
        pair = frozenset((aggressor, defender))
        for pending in await self.persistence.list_pending():
            if pending.pair_key() == pair:
                log_deterministic(f"Confrontation {aggressor} vs {defender} already pending; skipping")
                return ConfrontationResult(
                    started=False, aggressor=aggressor, defender=defender, reason="already_pending"
                )

        state = await self.directory.get_state(aggressor)
        if state is None or state.zone is None:
            log_error(f"Cannot start confrontation: no location for {aggressor}")
            return ConfrontationResult(
                started=False, aggressor=aggressor, defender=defender, reason="unknown_agent"
            )

        profile = self.profiles.get_profile(aggressor)
        line = await narrate(
            self.narrator,
            provocation_prompt(aggressor, defender, reason, profile),
            provocation_fallback(profile, aggressor, defender),
            self.settings.narrative_timeout,
        )

        now = self.clock()
        record = PendingConfrontationRecord(
            aggressor=aggressor,
            defender=defender,
            trigger_reason=reason,
            tension_score=tension_score,
            confrontation_at=now,
            confrontation_line=line,
        )
        await self.persistence.save_pending(record)
        await self.applier.apply([PostMessage(zone=state.zone, speaker=aggressor, text=line)])
        await self.limiter.touch(LAST_FIGHT_KEY)

        delay = int(self.settings.confrontation_delay.total_seconds())
        log_info(f"Confrontation started: {aggressor} -> {defender}; resolves in {delay}s")
        return ConfrontationResult(
            started=True,
            aggressor=aggressor,
            defender=defender,
            reason=reason,
            confrontation_line=line,
            pending_id=record.id,
            resolve_after_seconds=delay,
        )

    # ------------------------------------------------------------------
    # Pending resolution (phase two)
    # ------------------------------------------------------------------

    @requires_configuration(PendingResolutionReport)
    async def resolve_pending_confrontations(self) -> PendingResolutionReport:
        now = self.clock()
        report = PendingResolutionReport()

        for pending in await self.persistence.list_pending():
            elapsed = now - pending.confrontation_at
            base = dict(pending_id=pending.id, aggressor=pending.aggressor, defender=pending.defender)

            if elapsed < self.settings.confrontation_delay:
                report.resolutions.append(PendingResolution(state="waiting", **base))
                continue

            if elapsed > self.settings.pending_stale_after:
                await self.persistence.delete_pending(pending.id)
                log_deterministic(
                    f"Discarded stale confrontation {pending.aggressor} vs {pending.defender} "
                    f"({int(elapsed.total_seconds())}s old)"
                )
                report.resolutions.append(PendingResolution(state="stale_cleaned", **base))
                continue

            # Delete first: a record must never resolve twice, even if the fight fails
            if not await self.persistence.delete_pending(pending.id):
                log_deterministic(f"Pending confrontation {pending.id} already claimed by another tick")
                continue

            try:
                outcome = await self.resolve_fight(
                    pending.aggressor,
                    pending.defender,
                    tension_score=pending.tension_score,
                    reason=pending.trigger_reason,
                )
            except Exception as exc:  # noqa: BLE001 - one pairing failing never aborts the tick
                log_error(f"Resolving {pending.aggressor} vs {pending.defender} failed: {exc}")
                report.resolutions.append(PendingResolution(state="error", error=str(exc), **base))
                continue

            report.resolutions.append(
                PendingResolution(state="resolved", outcome=outcome.outcome, winner=outcome.winner, **base)
            )

        return report

    # ------------------------------------------------------------------
    # Fight resolution
    # ------------------------------------------------------------------

    async def _combatant(self, name: str, opponent: str, aggressor: str, defender: str) -> Combatant:
        profile = self.profiles.get_profile(name)
        if profile is None:
            raise CannotFightError(aggressor=aggressor, defender=defender, reason=f"no combat profile for {name}")
        if not profile.can_fight:
            raise CannotFightError(aggressor=aggressor, defender=defender, reason=f"{name} does not fight")
        state = await self.directory.get_state(name)
        if state is None:
            raise CannotFightError(aggressor=aggressor, defender=defender, reason=f"no state for {name}")
        edge = await self.relationships.get_edge(name, opponent)
        injuries = await self.persistence.get_active_injuries(name)
        return Combatant(
            name=name,
            profile=profile,
            state=state,
            affinity=edge.affinity if edge else 0,
            injuries=injuries,
        )

    async def _exclusive_bond(self, a: str, b: str) -> bool:
        for source, target in ((a, b), (b, a)):
            edge = await self.relationships.get_edge(source, target)
            if edge is not None and edge.bond_exclusive:
                return True
        return False

    async def _escape_allowed(self, combatant: Combatant) -> bool:
        mechanic = combatant.profile.escape
        if mechanic.max_per_day is None and mechanic.cooldown_hours is None:
            return True
        return await self.limiter.can_consume(escape_key(combatant.name), mechanic.max_per_day)

    async def _try_escapes(
        self, sides: Sequence[Combatant], dice: DiceOutcome, zone: str
    ) -> Optional[FightOutcome]:
        for me, other in (sides, tuple(reversed(sides))):
            mechanic = me.profile.escape
            if mechanic is None or not should_attempt(mechanic, me.name, dice):
                continue
            if not await self._escape_allowed(me):
                log_deterministic(f"{me.name} escape unavailable (daily cap or cooldown)")
                continue

            attempt = attempt_escape(
                profile=me.profile,
                state=me.state,
                opponent=other.name,
                zone=zone,
                dice=dice,
                rng=self.rng,
                now=self.clock(),
                fallback_destination=self.settings.recovery_zone,
            )
            log_deterministic(
                f"{me.name} {mechanic.mode} escape check: {attempt.chance:.0%} -> "
                f"{'ESCAPED' if attempt.succeeded else 'failed'}"
            )
            if not attempt.succeeded:
                continue

            cooldown = timedelta(hours=mechanic.cooldown_hours) if mechanic.cooldown_hours else None
            await self.limiter.consume(escape_key(me.name), cooldown)
            await self.applier.apply(attempt.effects)
            await self.limiter.touch(LAST_FIGHT_KEY)
            log_success(f"{me.name} escaped {other.name} to {attempt.destination}")
            return FightOutcome(
                fight_occurred=False,
                outcome="escaped",
                aggressor=dice.aggressor,
                defender=dice.defender,
                rolls=dice.rolls,
                escaped_character=me.name,
                escaped_to=attempt.destination,
                escape_chance=attempt.chance,
                would_have_been=dice.severity,
            )
        return None

    @requires_configuration(FightOutcome)
    async def resolve_fight(
        self,
        aggressor: str,
        defender: str,
        tension_score: int = 0,
        reason: str = "",
    ) -> FightOutcome:
        """Roll the fight, run escapes, and apply every consequence.

        Missing profiles/state or a non-fighter yields outcome="cannot_fight".
        """
        try:
            attacker = await self._combatant(aggressor, defender, aggressor, defender)
            target = await self._combatant(defender, aggressor, aggressor, defender)
        except CannotFightError as exc:
            log_error(str(exc).splitlines()[0])
            return FightOutcome(outcome="cannot_fight", aggressor=aggressor, defender=defender)

        zone = attacker.state.zone or target.state.zone or self.settings.conflict_zones[0]
        dice = roll_fight(attacker, target, self.rng)
        log_deterministic(
            f"Fight modifiers: {aggressor} {modifier_breakdown(attacker)} | {defender} {modifier_breakdown(target)}"
        )
        log_deterministic(dice.summary())

        escaped = await self._try_escapes((attacker, target), dice, zone)
        if escaped is not None:
            return escaped

        now = self.clock()
        fight_id = f"fight_{uuid4().hex}"
        narrative = await narrate(
            self.narrator,
            fight_prompt(
                aggressor=aggressor,
                defender=defender,
                aggressor_profile=attacker.profile,
                defender_profile=target.profile,
                severity=dice.severity,
                winner=dice.winner,
                critical_hit=dice.critical_hit,
                critical_fail=dice.critical_fail,
                reason=reason,
            ),
            fight_fallback(aggressor, defender),
            self.settings.narrative_timeout,
        )

        shifts = affinity_shifts(dice, await self._exclusive_bond(aggressor, defender))
        injuries = fight_injuries(dice, now, fight_id)
        effects: List[Effect] = [PostMessage(zone=zone, speaker=aggressor, text=narrative, is_emote=True)]
        effects.extend(core_effects(dice, shifts=shifts, injuries=injuries, now=now))

        onlookers = [
            agent.name
            for agent in sorted(await self.directory.agents_in_zone(zone), key=lambda a: a.name)
            if agent.name not in (aggressor, defender) and self.profiles.can_witness(agent.name)
        ]
        effects.extend(witness_memories(dice, onlookers, zone, now))

        collateral = check_collateral(
            dice,
            bystanders=[name for name in onlookers if self.profiles.is_protected(name)],
            witnesses=onlookers,
            profiles=self.profiles,
            zone=zone,
            fight_id=fight_id,
            rng=self.rng,
            now=now,
        )
        if collateral.roll is not None:
            log_deterministic(
                f"Collateral roll {collateral.roll} vs DC {collateral.dc}: "
                f"{collateral.victim or 'no one hurt'}"
            )
        effects.extend(collateral.effects)

        retreated = False
        if dice.loser is not None:
            loser = attacker if dice.loser == aggressor else target
            chance = retreat_chance(loser.profile, dice.severity, loser.injuries, loser.state.energy)
            retreated = self.rng.random() < chance
            log_deterministic(
                f"Retreat check for {loser.name}: {chance:.0%} -> {'retreats' if retreated else 'stays'}"
            )
            if retreated:
                effects.extend(
                    retreat_effects(
                        loser.name,
                        profile=loser.profile,
                        zone=zone,
                        recovery_zone=self.settings.recovery_zone,
                        fight_id=fight_id,
                        new_injuries=injuries,
                        now=now,
                    )
                )

        record = FightRecord(
            id=fight_id,
            aggressor=aggressor,
            defender=defender,
            winner=dice.winner,
            severity=dice.severity,
            rolls=dice.rolls,
            zone=zone,
            occurred_at=now,
        )
        effects.append(SaveFightRecord(fight=record))
        effects.append(
            fight_summary(dice, zone=zone, retreated=retreated, collateral_victim=collateral.victim)
        )

        await self.applier.apply(effects)
        await self.limiter.touch(LAST_FIGHT_KEY)
        log_success(f"Fight {fight_id}: {dice.severity.value}, winner {dice.winner or 'none'}")

        return FightOutcome(
            fight_occurred=True,
            outcome=dice.severity.value,
            aggressor=aggressor,
            defender=defender,
            winner=dice.winner,
            severity=dice.severity,
            rolls=dice.rolls,
            affinity_shifts=shifts,
            fight_id=fight_id,
            critical_hit=dice.critical_hit,
            critical_fail=dice.critical_fail,
            narrative=narrative,
            retreated=retreated,
            retreated_to=self.settings.recovery_zone if retreated else None,
            retreated_character=dice.loser if retreated else None,
            collateral_victim=collateral.victim,
            collateral_injury=collateral.injury_type,
        )

    # ------------------------------------------------------------------
    # Healing
    # ------------------------------------------------------------------

    @requires_configuration(HealReport)
    async def heal_injuries(self) -> HealReport:
        return await run_heal(self.persistence, self.clock())

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def _find_mediator(self, fight: FightRecord, zone: str) -> Optional[str]:
        others = sorted(
            agent.name
            for agent in await self.directory.agents_in_zone(zone)
            if agent.name not in (fight.aggressor, fight.defender)
        )
        for name in others[:MAX_MEDIATOR_CANDIDATES]:
            to_a = await self.relationships.get_edge(name, fight.aggressor)
            to_d = await self.relationships.get_edge(name, fight.defender)
            if to_a and to_d and to_a.affinity >= MEDIATOR_MIN_AFFINITY and to_d.affinity >= MEDIATOR_MIN_AFFINITY:
                return name
        return None

    def _unrecorded(self, fight: FightRecord, applied: EffectReport) -> Optional[SettlementEntry]:
        """Error entry when the fight record update was not stored."""
        if not applied.failed("save_fight_record"):
            return None
        log_error(f"Settlement of {fight.id} not recorded: fight record write failed")
        return SettlementEntry(
            fight_id=fight.id,
            aggressor=fight.aggressor,
            defender=fight.defender,
            result="error",
            settlement_attempts=fight.settlement_attempts,
            detail="fight record not saved",
        )

    async def _settle_one(self, fight: FightRecord, now: datetime) -> SettlementEntry:
        if fight.settlement_attempts >= GRUDGE_AFTER_ATTEMPTS:
            decision = form_grudge(fight, now)
            applied = await self.applier.apply(decision.effects)
            unrecorded = self._unrecorded(fight, applied)
            if unrecorded:
                return unrecorded
            log_deterministic(f"Grudge formed: {fight.aggressor} and {fight.defender} ({fight.id})")
            return decision.entry

        a_state = await self.directory.get_state(fight.aggressor)
        d_state = await self.directory.get_state(fight.defender)
        blocked = eligibility(a_state, d_state)
        if blocked:
            return SettlementEntry(
                fight_id=fight.id,
                aggressor=fight.aggressor,
                defender=fight.defender,
                result="skipped",
                settlement_attempts=fight.settlement_attempts,
                detail=blocked,
            )

        mediator = await self._find_mediator(fight, a_state.zone)
        decision = attempt_settlement(fight, zone=a_state.zone, mediator=mediator, rng=self.rng, now=now)
        applied = await self.applier.apply(decision.effects)
        unrecorded = self._unrecorded(fight, applied)
        if unrecorded:
            return unrecorded
        entry = decision.entry
        log_deterministic(
            f"Settlement {fight.aggressor} / {fight.defender}: {entry.result} "
            f"(chance {entry.chance:.0%}, attempts {entry.settlement_attempts}"
            f"{', mediator ' + mediator if mediator else ''})"
        )
        return entry

    @requires_configuration(SettlementReport)
    async def settle(self) -> SettlementReport:
        now = self.clock()
        report = SettlementReport()

        for fight in await self.persistence.get_unsettled_fights():
            if now - fight.occurred_at < self.settings.settlement_min_age:
                continue
            try:
                report.entries.append(await self._settle_one(fight, now))
            except Exception as exc:  # noqa: BLE001 - keep settling the remaining fights
                log_error(f"Settlement of {fight.id} failed: {exc}")
                report.entries.append(
                    SettlementEntry(
                        fight_id=fight.id,
                        aggressor=fight.aggressor,
                        defender=fight.defender,
                        result="error",
                        settlement_attempts=fight.settlement_attempts,
                        detail=str(exc),
                    )
                )
        return report

    # ------------------------------------------------------------------
    # Accidents
    # ------------------------------------------------------------------

    @requires_configuration(AccidentResult)
    async def generate_accident(self, force: bool = False) -> AccidentResult:
        if await self.limiter.within(ACCIDENT_KEY, self.settings.accident_cooldown):
            return AccidentResult(accident=False, reason="cooldown")

        if not force and self.rng.random() >= self.settings.accident_chance:
            return AccidentResult(accident=False, reason="no_trigger")

        zones = set(self.settings.conflict_zones)
        candidates = sorted(
            (agent for agent in await self.directory.list_agents()
             if agent.zone in zones and self.profiles.is_protected(agent.name)),
            key=lambda agent: agent.name,
        )
        if not candidates:
            log_deterministic("Accident rolled but no bystanders are around")
            return AccidentResult(accident=False, reason="no_bystanders")

        mishap = pick_mishap(self.rng)
        victim = self.rng.choice(candidates)
        injury, effects = accident_effects(mishap, victim.name, victim.zone, self.clock())
        await self.applier.apply(effects)
        await self.limiter.touch(ACCIDENT_KEY)
        log_success(f"Accident: {mishap.description} ({victim.name}, {mishap.injury_type.value})")

        return AccidentResult(
            accident=True,
            source=mishap.source,
            victim=victim.name,
            injury_type=mishap.injury_type,
            description=mishap.description,
            heals_at=injury.heals_at,
        )

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    @requires_configuration(TickReport)
    async def run_tick(self) -> TickReport:
        """Run every entry point once in the reference cadence order."""
        report = TickReport()
        errors: Dict[str, str] = {}

        async def stage(name: str, call):
            try:
                return await call()
            except Exception as exc:  # noqa: BLE001 - a failed stage never blocks the rest of the tick
                log_error(f"Tick stage '{name}' failed: {exc}")
                errors[name] = str(exc)
                return None

        report.pending = await stage("pending", self.resolve_pending_confrontations)
        report.tension = await stage("tension", self.evaluate_tension)
        if report.tension is not None and report.tension.fight_ready:
            tension = report.tension
            report.confrontation = await stage(
                "confrontation",
                lambda: self.initiate_confrontation(
                    tension.aggressor, tension.defender, tension.reason or "", tension.tension_score
                ),
            )
        report.healing = await stage("healing", self.heal_injuries)
        report.settlement = await stage("settlement", self.settle)
        report.accident = await stage("accident", self.generate_accident)

        report.metadata["ran_at"] = self.clock().isoformat()
        if errors:
            report.metadata["errors"] = errors
        return report
