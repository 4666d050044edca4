"""
Fracas Configuration

Loads configuration from environment variables with sensible defaults.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


class ConfigurationError(ValueError):
    """Raised when a required store endpoint or credential is missing."""


def _csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class Config:
    """Application configuration loaded from environment variables."""

    # Storage backend: memory | json | postgres
    STORAGE_BACKEND: str = os.getenv("FRACAS_STORAGE", "memory")
    DATABASE_URL: str | None = os.getenv("DATABASE_URL")
    DATA_DIR: str | None = os.getenv("FRACAS_DATA_DIR", "fracas_data")

    # Narrative generator (LLM) configuration
    LLM_PROVIDER: str | None = os.getenv("LLM_PROVIDER")
    LLM_MODEL: str | None = os.getenv("LLM_MODEL")
    ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")
    NARRATIVE_TIMEOUT_SECONDS: float = float(os.getenv("NARRATIVE_TIMEOUT_SECONDS", "8"))

    # Operator notification sink (Discord-compatible webhook)
    NOTIFY_WEBHOOK: str | None = os.getenv("FRACAS_NOTIFY_WEBHOOK")

    # Zones
    CONFLICT_ZONES: list[str] = _csv(os.getenv("FRACAS_CONFLICT_ZONES", "the_floor"))
    RECOVERY_ZONE: str = os.getenv("FRACAS_RECOVERY_ZONE", "recovery_bay")

    # Timing
    CONFRONTATION_DELAY_SECONDS: int = int(os.getenv("CONFRONTATION_DELAY_SECONDS", "45"))
    PENDING_STALE_SECONDS: int = int(os.getenv("PENDING_STALE_SECONDS", "600"))
    FIGHT_COOLDOWN_MINUTES: int = int(os.getenv("FIGHT_COOLDOWN_MINUTES", "30"))
    SETTLEMENT_MIN_AGE_HOURS: float = float(os.getenv("SETTLEMENT_MIN_AGE_HOURS", "2"))
    ACCIDENT_COOLDOWN_HOURS: float = float(os.getenv("ACCIDENT_COOLDOWN_HOURS", "2"))
    ACCIDENT_CHANCE: float = float(os.getenv("ACCIDENT_CHANCE", "0.01"))

    # Tension
    TENSION_THRESHOLD: int = int(os.getenv("TENSION_THRESHOLD", "10"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Project Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent
    SCENARIOS_DIR: Path = PROJECT_ROOT / "examples" / "scenarios"

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors if required values are missing."""
        backend = (cls.STORAGE_BACKEND or "").lower()
        if backend not in {"memory", "json", "postgres"}:
            raise ConfigurationError(
                f"Unknown FRACAS_STORAGE backend '{cls.STORAGE_BACKEND}'. "
                "Use one of: memory, json, postgres."
            )

        if backend == "postgres" and not cls.DATABASE_URL:
            raise ConfigurationError(
                "DATABASE_URL is required when FRACAS_STORAGE=postgres "
                "(e.g., postgresql://localhost/fracas)"
            )

        if backend == "json" and not cls.DATA_DIR:
            raise ConfigurationError(
                "FRACAS_DATA_DIR is required when FRACAS_STORAGE=json"
            )

        # The narrative generator is optional; only check keys for the provider in use.
        provider = (cls.LLM_PROVIDER or "").lower()
        if provider == "anthropic" and not cls.ANTHROPIC_API_KEY:
            raise ConfigurationError(
                "ANTHROPIC_API_KEY is required when using the 'anthropic' provider"
            )
        if provider == "openai" and not cls.OPENAI_API_KEY:
            raise ConfigurationError(
                "OPENAI_API_KEY is required when using the 'openai' provider"
            )

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        lines = [
            "Fracas Configuration:",
            f"  Storage: {cls.STORAGE_BACKEND}",
            f"  Narrative LLM: {cls.LLM_PROVIDER or 'static'} / {cls.LLM_MODEL or '-'}",
            f"  Conflict zones: {', '.join(cls.CONFLICT_ZONES)}",
            f"  Recovery zone: {cls.RECOVERY_ZONE}",
            f"  Confrontation delay: {cls.CONFRONTATION_DELAY_SECONDS}s",
            f"  Tension threshold: {cls.TENSION_THRESHOLD}",
        ]
        return "\n".join(lines)
