"""
Scenario loading for demos and tests.

A scenario seeds the in-memory collaborators: who is where, how they feel about
each other, and (optionally) their combat profiles.

Scenario file structure:
```json
{
  "name": "Office Floor",
  "description": "...",
  "agents": [
    {"name": "Brick", "zone": "the_floor", "mood": "hostile", "energy": 60, "patience": 15}
  ],
  "relationships": [
    {"source": "Brick", "target": "Vesper", "affinity": -70}
  ],
  "profiles": [ ...CombatProfile objects... ]
}
```
When "profiles" is omitted the default roster is used.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import Config
from .profiles import CombatProfileRegistry
from .schemas import AgentState, RelationshipEdge
from .world import InMemoryAgentDirectory, InMemoryRelationshipStore


@dataclass
class Scenario:
    name: str
    description: str
    directory: InMemoryAgentDirectory
    relationships: InMemoryRelationshipStore
    profiles: CombatProfileRegistry


class ScenarioLoader:
    """Load and validate scenarios from JSON files.

    Directory structure:
    - Default: {PROJECT_ROOT}/examples/scenarios/
    - Override via constructor: ScenarioLoader(Path("/custom/scenarios"))
    """

    def __init__(self, scenarios_dir: Optional[Path] = None):
        self.scenarios_dir = scenarios_dir or Config.SCENARIOS_DIR

    def load(self, scenario_name: str) -> Scenario:
        """Load a scenario by name (without .json) from the scenarios directory.

        Raises:
            FileNotFoundError: If the scenario file doesn't exist
            ValueError: If required fields are missing or malformed
        """
        scenario_path = self.scenarios_dir / f"{scenario_name}.json"
        if not scenario_path.exists():
            raise FileNotFoundError(f"Scenario '{scenario_name}' not found at {scenario_path}")
        return self.from_dict(json.loads(scenario_path.read_text(encoding="utf-8")), default_name=scenario_name)

    def from_dict(self, data: Dict[str, Any], default_name: str = "scenario") -> Scenario:
        self._validate(data)

        agents = [AgentState.model_validate(entry) for entry in data["agents"]]
        edges = [RelationshipEdge.model_validate(entry) for entry in data.get("relationships", [])]
        if "profiles" in data:
            profiles = CombatProfileRegistry.from_dicts(data["profiles"])
        else:
            profiles = CombatProfileRegistry.default()

        return Scenario(
            name=data.get("name", default_name),
            description=data.get("description", ""),
            directory=InMemoryAgentDirectory(agents),
            relationships=InMemoryRelationshipStore(edges),
            profiles=profiles,
        )

    def _validate(self, data: Dict[str, Any]) -> None:
        if not data.get("agents"):
            raise ValueError("Scenario must have at least one agent")

        names = [entry.get("name") for entry in data["agents"]]
        if len(set(names)) != len(names):
            raise ValueError("Scenario agent names must be unique")

        known = set(names)
        for edge in data.get("relationships", []):
            if edge.get("source") not in known or edge.get("target") not in known:
                raise ValueError(
                    f"Relationship {edge.get('source')} -> {edge.get('target')} references an unknown agent"
                )

    def list_scenarios(self) -> List[str]:
        if not self.scenarios_dir.exists():
            return []
        return sorted(f.stem for f in self.scenarios_dir.glob("*.json") if not f.name.startswith("_"))


def load_scenario(scenario_name: str) -> Scenario:
    """Convenience function to load a scenario from the default directory."""
    return ScenarioLoader().load(scenario_name)
