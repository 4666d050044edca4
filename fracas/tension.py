"""
Tension Evaluator: deterministic hostility scoring for co-located pairs.

Scoring (per unordered pair sharing a conflict zone, both able to fight):
- average affinity <= -60: +8, <= -40: +5, <= -20: +3
- jealousy: one holds an exclusive bond to a third party that the other holds a
  rivalrous bond toward: +4
- either patience < 30: +2
- either energy < 20: +1

The highest-scoring pair wins (first pair in name order on ties). The aggressor
is whichever side holds the lower affinity toward the other.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from fracas.schemas import AgentState, RelationshipEdge, TensionResult


RIVALROUS_BOND_TYPES = frozenset({"rival", "rivalry", "complicated"})


@dataclass
class PairTension:
    aggressor: str
    defender: str
    score: int = 0
    reasons: List[str] = field(default_factory=list)

    @property
    def reason(self) -> str:
        return ", ".join(self.reasons)


def _affinity(edges: Sequence[RelationshipEdge], target: str) -> int:
    for edge in edges:
        if edge.target == target:
            return edge.affinity
    return 0


def _jealous(holder: Sequence[RelationshipEdge], rival: Sequence[RelationshipEdge], pair: set[str]) -> bool:
    """holder is exclusively bonded to someone the rival holds a rivalrous bond toward."""
    rival_targets = {
        edge.target
        for edge in rival
        if edge.bond_type and edge.bond_type.lower() in RIVALROUS_BOND_TYPES
    }
    return any(
        edge.bond_exclusive and edge.target not in pair and edge.target in rival_targets
        for edge in holder
    )


def score_pair(
    a: AgentState,
    b: AgentState,
    edges_a: Sequence[RelationshipEdge],
    edges_b: Sequence[RelationshipEdge],
) -> PairTension:
    """Score one pair. edges_x holds every edge whose source is x."""
    affinity_ab = _affinity(edges_a, b.name)
    affinity_ba = _affinity(edges_b, a.name)
    average = (affinity_ab + affinity_ba) / 2

    # Lower affinity toward the other side is the more hostile one
    if affinity_ab <= affinity_ba:
        result = PairTension(aggressor=a.name, defender=b.name)
    else:
        result = PairTension(aggressor=b.name, defender=a.name)

    if average <= -60:
        result.score += 8
        result.reasons.append("deep_hostility")
    elif average <= -40:
        result.score += 5
        result.reasons.append("hostility")
    elif average <= -20:
        result.score += 3
        result.reasons.append("tension")

    pair = {a.name, b.name}
    if _jealous(edges_a, edges_b, pair) or _jealous(edges_b, edges_a, pair):
        result.score += 4
        result.reasons.append("jealousy_rivalry")

    if a.patience < 30 or b.patience < 30:
        result.score += 2
        result.reasons.append("low_patience")

    if a.energy < 20 or b.energy < 20:
        result.score += 1
        result.reasons.append("exhaustion")

    return result


def evaluate_tension(
    agents: Iterable[AgentState],
    edges_by_source: Mapping[str, Sequence[RelationshipEdge]],
    *,
    fighters: Iterable[str],
    conflict_zones: Iterable[str],
    threshold: int,
) -> tuple[TensionResult, Optional[PairTension]]:
    """Find the most tense pair.

    Args:
        agents: Current character states
        edges_by_source: Edges keyed by source character
        fighters: Names whose combat profile allows fighting
        conflict_zones: Zones where fights can break out
        threshold: Minimum score for fight_ready

    Returns:
        (result, best pair or None)
    """
    eligible = set(fighters)
    zones = set(conflict_zones)
    by_zone: Dict[str, List[AgentState]] = {}
    for agent in agents:
        if agent.zone in zones and agent.name in eligible:
            by_zone.setdefault(agent.zone, []).append(agent)

    best: Optional[PairTension] = None
    pairs_checked = 0
    for zone in sorted(by_zone):
        members = sorted(by_zone[zone], key=lambda agent: agent.name)
        for a, b in combinations(members, 2):
            pairs_checked += 1
            candidate = score_pair(a, b, edges_by_source.get(a.name, ()), edges_by_source.get(b.name, ()))
            if candidate.score > 0 and (best is None or candidate.score > best.score):
                best = candidate

    if pairs_checked == 0:
        return TensionResult(fight_ready=False, reason="not_enough_agents"), None

    if best is None:
        return TensionResult(fight_ready=False, reason="all_clear"), None

    if best.score >= threshold:
        return (
            TensionResult(
                fight_ready=True,
                aggressor=best.aggressor,
                defender=best.defender,
                tension_score=best.score,
                reason=best.reason,
            ),
            best,
        )

    return (
        TensionResult(
            fight_ready=False,
            aggressor=best.aggressor,
            defender=best.defender,
            tension_score=best.score,
            reason="below_threshold",
        ),
        best,
    )
