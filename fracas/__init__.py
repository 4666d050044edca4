"""
Fracas - tick-driven conflict engine for agent simulations.

Decides when hostility between co-located characters erupts into a fight,
resolves it with d20 dice, applies lasting consequences (injuries, moods,
affinity, retreats), and later settles it or lets it harden into a grudge.

All collaborators are injected. No database required. No global config.
"""

__version__ = "0.1.0"

# Main engine
from .engine import CannotFightError, ConflictEngine, EngineSettings

# Core interfaces
from .persistence import (
    PersistenceStrategy,
    InMemoryPersistence,
    PostgresPersistence,
    JsonPersistence,
)
from .memory import MemoryStrategy, SimpleMemoryStream
from .world import (
    AgentDirectory,
    RelationshipStore,
    ZoneChannel,
    NotificationSink,
    InMemoryAgentDirectory,
    InMemoryRelationshipStore,
    InMemoryZoneChannel,
    InMemoryNotifier,
    NullNotifier,
    WebhookNotifier,
)
from .narrative import (
    NarrativeGenerator,
    LLMNarrativeGenerator,
    NarrativeUnavailableError,
    ParsedNarrative,
    NarrativeParseError,
    parse_narrative,
)
from .profiles import CombatProfileRegistry, default_roster
from .rate_limiter import RateLimiter
from .effects import EffectApplier
from .scenario import Scenario, ScenarioLoader, load_scenario
from .config import Config, ConfigurationError

# Core schemas
from .schemas import (
    AgentState,
    RelationshipEdge,
    CombatProfile,
    EscapeMechanic,
    InjuryRecord,
    InjuryType,
    PendingConfrontationRecord,
    FightRecord,
    DailyCounter,
    MemoryRecord,
    Severity,
    Mood,
    TensionResult,
    ConfrontationResult,
    FightOutcome,
    PendingResolutionReport,
    SettlementReport,
    HealReport,
    AccidentResult,
    TickReport,
)

__all__ = [
    "ConflictEngine",
    "EngineSettings",
    "CannotFightError",
    "PersistenceStrategy",
    "InMemoryPersistence",
    "PostgresPersistence",
    "JsonPersistence",
    "MemoryStrategy",
    "SimpleMemoryStream",
    "AgentDirectory",
    "RelationshipStore",
    "ZoneChannel",
    "NotificationSink",
    "InMemoryAgentDirectory",
    "InMemoryRelationshipStore",
    "InMemoryZoneChannel",
    "InMemoryNotifier",
    "NullNotifier",
    "WebhookNotifier",
    "NarrativeGenerator",
    "LLMNarrativeGenerator",
    "NarrativeUnavailableError",
    "ParsedNarrative",
    "NarrativeParseError",
    "parse_narrative",
    "CombatProfileRegistry",
    "default_roster",
    "RateLimiter",
    "EffectApplier",
    "Scenario",
    "ScenarioLoader",
    "load_scenario",
    "Config",
    "ConfigurationError",
    "AgentState",
    "RelationshipEdge",
    "CombatProfile",
    "EscapeMechanic",
    "InjuryRecord",
    "InjuryType",
    "PendingConfrontationRecord",
    "FightRecord",
    "DailyCounter",
    "MemoryRecord",
    "Severity",
    "Mood",
    "TensionResult",
    "ConfrontationResult",
    "FightOutcome",
    "PendingResolutionReport",
    "SettlementReport",
    "HealReport",
    "AccidentResult",
    "TickReport",
]
