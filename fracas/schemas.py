"""
Pydantic schemas for the Fracas conflict engine.

All records the engine reads, writes, or returns are defined here.

Design Philosophy:
- Agent state and relationship edges belong to external collaborators; the engine
  only sees the narrow slice it needs (zone, mood, energy, patience, affinity).
- Records the engine owns (injuries, fights, pending confrontations, counters,
  memories) are plain Pydantic models so every persistence backend can round-trip
  them through JSON.
- Every scheduler entry point returns an ActionResult subclass whose fields all have
  defaults, so an unconfigured engine can return an inert result of the right shape.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


# ============================================================================
# Enumerations
# ============================================================================


class Severity(str, Enum):
    """Severity tier of a resolved fight, ordered from mildest to worst."""

    STANDOFF = "STANDOFF"
    SCUFFLE = "SCUFFLE"
    FIGHT = "FIGHT"
    BEATDOWN = "BEATDOWN"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def bumped(self) -> "Severity":
        """Return the next tier up. STANDOFF and BEATDOWN do not move."""
        if self in (Severity.STANDOFF, Severity.BEATDOWN):
            return self
        return _SEVERITY_ORDER[self.rank + 1]


_SEVERITY_ORDER = [Severity.STANDOFF, Severity.SCUFFLE, Severity.FIGHT, Severity.BEATDOWN]


class InjuryType(str, Enum):
    """Injury tiers: shaken < bruised < wounded < humiliated."""

    SHAKEN = "shaken"
    BRUISED = "bruised"
    WOUNDED = "wounded"
    HUMILIATED = "humiliated"


class Mood(str, Enum):
    """Mood tags the engine writes. External systems may use other tags."""

    NEUTRAL = "neutral"
    FURIOUS = "furious"
    HOSTILE = "hostile"
    DEFEATED = "defeated"
    COLD = "cold"
    FIERCE = "fierce"
    AGITATED = "agitated"
    HURT = "hurt"
    UPSET = "upset"
    TENSE = "tense"
    REFLECTIVE = "reflective"
    FRUSTRATED = "frustrated"


# ============================================================================
# Collaborator-owned state
# ============================================================================


class AgentState(BaseModel):
    """Dynamic state of a character as exposed by the Agent Directory.

    The engine patches zone, mood and energy as fight consequences. Patience and
    traits are read-only from the engine's perspective.
    """

    name: str = Field(..., description="Unique character name")
    zone: Optional[str] = Field(None, description="Current coarse zone identifier")
    mood: str = Field(Mood.NEUTRAL.value, description="Mood tag")
    energy: int = Field(50, ge=0, le=100, description="Energy 0-100")
    patience: int = Field(50, ge=0, le=100, description="Patience 0-100")
    # Persistent traits such as "Battle-Tested" grant dice bonuses
    traits: List[str] = Field(default_factory=list, description="Active persistent traits")


class RelationshipEdge(BaseModel):
    """Directed relationship from `source` toward `target`."""

    source: str = Field(..., description="Character holding the feeling")
    target: str = Field(..., description="Character the feeling is about")
    affinity: int = Field(0, ge=-100, le=100, description="Affinity, clamped to -100..100")
    bond_type: Optional[str] = Field(None, description="Optional bond label (partner, rival, ...)")
    bond_exclusive: bool = Field(False, description="Romantic/committed exclusivity flag")


# ============================================================================
# Static reference data
# ============================================================================


class EscapeMechanic(BaseModel):
    """Archetype-specific escape configuration attached to a combat profile.

    Two modes exist:
    - glitch: chance = base + situational bonuses, capped at max_chance. Only
      attempted when the escapee is losing on the dice or the bout is a standoff.
    - dissolve: the identity never fights; a fixed chance is rolled whenever it is
      pulled into a confrontation.
    """

    mode: Literal["glitch", "dissolve"] = "glitch"
    base_chance: float = Field(0.45, ge=0.0, le=1.0)
    defender_bonus: float = Field(0.15, ge=0.0, le=1.0)
    low_health_bonus: float = Field(0.10, ge=0.0, le=1.0)
    beatdown_bonus: float = Field(0.20, ge=0.0, le=1.0)
    max_chance: float = Field(0.85, ge=0.0, le=0.85, description="Cap for computed glitch chance")
    fixed_chance: float = Field(0.90, ge=0.0, le=1.0, description="Chance used in dissolve mode")
    # Rate limiting is only enforced when these are set
    max_per_day: Optional[int] = Field(None, ge=0)
    cooldown_hours: Optional[float] = Field(None, ge=0)
    energy_cost: int = Field(10, ge=0, le=100)
    destinations: List[str] = Field(default_factory=list, description="Safe zones to reappear in")
    escape_emotes: List[str] = Field(default_factory=list)
    arrival_emotes: Dict[str, str] = Field(default_factory=dict, description="Zone -> arrival line")


class CombatProfile(BaseModel):
    """Static per-identity combat configuration, loaded once and never mutated."""

    name: str = Field(..., description="Character this profile belongs to")
    can_fight: bool = Field(True, description="Whether the identity can be pulled into fights")
    combat_power: int = Field(0, description="Base dice modifier")
    fighting_style: str = Field("scrappy", description="Short style tag")
    style_description: str = Field("", description="One-line style description for narratives")
    # Base probability of fleeing to the recovery zone after losing
    retreat_affinity: float = Field(0.30, ge=0.0, le=1.0)
    # Protected-class bystanders can be hurt by collateral damage and accidents
    protected: bool = Field(False, description="Protected-class bystander")
    can_witness: bool = Field(True, description="Receives witness memories")
    # Keys: initiate, win, lose, retreat, collateral, witness
    emotes: Dict[str, str] = Field(default_factory=dict)
    escape: Optional[EscapeMechanic] = None


# ============================================================================
# Engine-owned records
# ============================================================================


class InjuryRecord(BaseModel):
    """A timed injury. Deactivated once heals_at passes, never deleted."""

    id: UUID = Field(default_factory=uuid4)
    character: str
    injury_type: InjuryType
    description: str
    severity: int = Field(1, ge=1)
    source_character: Optional[str] = None
    fight_id: Optional[str] = None
    created_at: datetime
    heals_at: datetime
    is_active: bool = True


class PendingConfrontationRecord(BaseModel):
    """Provocation phase of a fight, waiting for the resolution delay to pass."""

    id: UUID = Field(default_factory=uuid4)
    aggressor: str
    defender: str
    trigger_reason: str = ""
    tension_score: int = 0
    confrontation_at: datetime
    confrontation_line: Optional[str] = None

    def pair_key(self) -> frozenset[str]:
        """Unordered pair identity used by the one-pending-per-pair guard."""
        return frozenset((self.aggressor, self.defender))


class DiceRoll(BaseModel):
    """One side's d20 roll, modifier, and total."""

    roll: int = Field(..., ge=1, le=20)
    modifier: int
    total: int


class FightRecord(BaseModel):
    """Outcome of a resolved fight, later consumed by the Settlement Engine.

    Lifecycle: created unsettled with zero attempts; the Settlement Engine either
    increments settlement_attempts or moves it to a terminal settled state
    (reconciliation or grudge).
    """

    id: str = Field(default_factory=lambda: f"fight_{uuid4().hex}")
    aggressor: str
    defender: str
    winner: Optional[str] = Field(None, description="None for a standoff")
    severity: Severity
    rolls: Dict[str, DiceRoll] = Field(default_factory=dict, description="Keys: aggressor, defender")
    zone: Optional[str] = None
    occurred_at: datetime
    settled: bool = False
    settlement_attempts: int = Field(0, ge=0)
    settlement_type: Optional[Literal["reconciliation", "grudge"]] = None
    settled_at: Optional[datetime] = None


class DailyCounter(BaseModel):
    """Per-key count scoped to a calendar day, plus an optional cooldown window."""

    key: str
    date: date
    count: int = Field(0, ge=0)
    last_event_at: Optional[datetime] = None
    cooldown_until: Optional[datetime] = None


class MemoryRecord(BaseModel):
    """A memory handed to the Memory Store.

    Importance uses the 1-10 scale. expires_at=None means the memory never expires
    (used for grudges, which are also pinned).
    """

    id: UUID = Field(default_factory=uuid4)
    character: str
    content: str
    memory_type: str = "fight"
    importance: int = Field(5, ge=1, le=10)
    tags: List[str] = Field(default_factory=list)
    related_characters: List[str] = Field(default_factory=list)
    expires_at: Optional[datetime] = None
    is_pinned: bool = False
    created_at: datetime


# ============================================================================
# Action results
# ============================================================================


class ActionResult(BaseModel):
    """Base for entry point results. status is "ok" or "not_configured"."""

    status: str = "ok"


class TensionResult(ActionResult):
    fight_ready: bool = False
    aggressor: Optional[str] = None
    defender: Optional[str] = None
    tension_score: int = 0
    reason: Optional[str] = None


class ConfrontationResult(ActionResult):
    started: bool = False
    aggressor: Optional[str] = None
    defender: Optional[str] = None
    reason: Optional[str] = None
    confrontation_line: Optional[str] = None
    pending_id: Optional[UUID] = None
    resolve_after_seconds: int = 0


class FightOutcome(ActionResult):
    """Everything the Fight Resolver decided for one pairing."""

    fight_occurred: bool = False
    # cannot_fight | escaped | STANDOFF | SCUFFLE | FIGHT | BEATDOWN
    outcome: Optional[str] = None
    aggressor: Optional[str] = None
    defender: Optional[str] = None
    winner: Optional[str] = None
    severity: Optional[Severity] = None
    rolls: Dict[str, DiceRoll] = Field(default_factory=dict)
    affinity_shifts: Dict[str, int] = Field(default_factory=dict)
    fight_id: Optional[str] = None
    critical_hit: bool = False
    critical_fail: Optional[str] = None
    narrative: Optional[str] = None
    retreated: bool = False
    retreated_to: Optional[str] = None
    retreated_character: Optional[str] = None
    collateral_victim: Optional[str] = None
    collateral_injury: Optional[InjuryType] = None
    # Populated when an archetype escape cut the fight short
    escaped_character: Optional[str] = None
    escaped_to: Optional[str] = None
    escape_chance: Optional[float] = None
    would_have_been: Optional[Severity] = None


class PendingResolution(BaseModel):
    pending_id: UUID
    aggressor: str
    defender: str
    # resolved | waiting | stale_cleaned | error
    state: str
    outcome: Optional[str] = None
    winner: Optional[str] = None
    error: Optional[str] = None


class PendingResolutionReport(ActionResult):
    resolutions: List[PendingResolution] = Field(default_factory=list)


class SettlementEntry(BaseModel):
    fight_id: str
    aggressor: str
    defender: str
    # grudge | reconciliation | failed_attempt | skipped | error
    result: str
    settlement_attempts: int = 0
    chance: Optional[float] = None
    mediator: Optional[str] = None
    detail: Optional[str] = None


class SettlementReport(ActionResult):
    entries: List[SettlementEntry] = Field(default_factory=list)

    @property
    def settled(self) -> List[SettlementEntry]:
        return [e for e in self.entries if e.result in ("grudge", "reconciliation")]


class HealReport(ActionResult):
    healed: int = 0
    active: int = 0
    healed_ids: List[UUID] = Field(default_factory=list)
    checked_at: Optional[datetime] = None


class AccidentResult(ActionResult):
    accident: bool = False
    reason: Optional[str] = None
    source: Optional[str] = None
    victim: Optional[str] = None
    injury_type: Optional[InjuryType] = None
    description: Optional[str] = None
    heals_at: Optional[datetime] = None


class TickReport(ActionResult):
    """Aggregate of one run_tick() pass through the reference cadence."""

    pending: Optional[PendingResolutionReport] = None
    tension: Optional[TensionResult] = None
    confrontation: Optional[ConfrontationResult] = None
    healing: Optional[HealReport] = None
    settlement: Optional[SettlementReport] = None
    accident: Optional[AccidentResult] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
