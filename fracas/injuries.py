"""
Injury Ledger: timed injuries and their healing.

Heal durations are fixed per type. An injury is created active with
heals_at = created_at + duration and is only ever deactivated, never deleted.
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from fracas.logging_utils import log_deterministic, log_success
from fracas.schemas import HealReport, InjuryRecord, InjuryType


HEAL_HOURS = {
    InjuryType.BRUISED: 4,
    InjuryType.WOUNDED: 12,
    InjuryType.SHAKEN: 6,
    InjuryType.HUMILIATED: 8,
}


def heal_duration(injury_type: InjuryType) -> timedelta:
    return timedelta(hours=HEAL_HOURS[injury_type])


def build_injury(
    character: str,
    injury_type: InjuryType,
    description: str,
    now: datetime,
    *,
    severity: int = 1,
    source_character: Optional[str] = None,
    fight_id: Optional[str] = None,
) -> InjuryRecord:
    return InjuryRecord(
        character=character,
        injury_type=injury_type,
        description=description,
        severity=severity,
        source_character=source_character,
        fight_id=fight_id,
        created_at=now,
        heals_at=now + heal_duration(injury_type),
    )


def partition_due(
    injuries: Iterable[InjuryRecord], now: datetime
) -> Tuple[List[InjuryRecord], List[InjuryRecord]]:
    """Split into (due, still healing). Due means heals_at <= now."""
    due: List[InjuryRecord] = []
    healing: List[InjuryRecord] = []
    for injury in injuries:
        (due if injury.heals_at <= now else healing).append(injury)
    return due, healing


async def heal_injuries(persistence, now: datetime) -> HealReport:
    """Deactivate every active injury whose heal deadline has passed."""
    active = await persistence.get_active_injuries()
    due, healing = partition_due(active, now)
    if not due:
        log_deterministic(f"Heal check: {len(active)} active, none due")
        return HealReport(healed=0, active=len(healing), checked_at=now)

    healed = await persistence.deactivate_injuries([injury.id for injury in due])
    for injury in due:
        log_success(f"{injury.character} recovered from being {injury.injury_type.value}")
    return HealReport(
        healed=healed,
        active=len(healing),
        healed_ids=[injury.id for injury in due],
        checked_at=now,
    )
