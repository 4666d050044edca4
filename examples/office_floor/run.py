"""Office floor demo: tension builds, a confrontation lands, and the floor lives with it.

Runs the conflict engine against the `office_floor` scenario on a simulated
clock, so a whole afternoon passes in a second. No LLM calls by default:

    uv run python examples/office_floor/run.py --ticks 40

To narrate confrontations and fights with a model, pass `--llm` (requires
`LLM_PROVIDER`, `LLM_MODEL`, and the provider's API key, or `LLM_PROVIDER=ollama`):

    uv run python examples/office_floor/run.py --llm --ticks 40
"""

from __future__ import annotations

import argparse
import asyncio
import random
from datetime import datetime, timedelta, timezone

from fracas import (
    ConflictEngine,
    Config,
    EngineSettings,
    InMemoryNotifier,
    InMemoryPersistence,
    InMemoryZoneChannel,
    LLMNarrativeGenerator,
)
from fracas.logging_utils import log_info, log_success
from fracas.scenario import ScenarioLoader


class SimulatedClock:
    def __init__(self, start: datetime, step: timedelta):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        return self.now

    def tick(self) -> None:
        self.now += self.step


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--ticks", type=int, default=40, help="Number of engine ticks to run")
    parser.add_argument("--tick-minutes", type=float, default=15, help="Simulated minutes between ticks")
    parser.add_argument("--seed", type=int, default=7, help="RNG seed for reproducible runs")
    parser.add_argument("--scenario", default="office_floor", help="Scenario name under examples/scenarios")
    parser.add_argument("--llm", action="store_true", help="Narrate with the configured LLM provider")
    return parser.parse_args()


async def main() -> None:
    args = parse_args()
    scenario = ScenarioLoader().load(args.scenario)

    narrator = None
    if args.llm:
        Config.validate()
        if not (Config.LLM_PROVIDER and Config.LLM_MODEL):
            raise SystemExit("--llm needs LLM_PROVIDER and LLM_MODEL to be set")
        narrator = LLMNarrativeGenerator(Config.LLM_PROVIDER, Config.LLM_MODEL)

    clock = SimulatedClock(
        datetime(2030, 5, 6, 9, 0, tzinfo=timezone.utc),
        timedelta(minutes=args.tick_minutes),
    )
    # Let the demo's accident generator fire occasionally
    settings = EngineSettings(accident_chance=0.05)
    notifier = InMemoryNotifier()

    log_info(f"Scenario: {scenario.name}")
    log_info(scenario.description)

    async with ConflictEngine(
        directory=scenario.directory,
        relationships=scenario.relationships,
        profiles=scenario.profiles,
        channel=InMemoryZoneChannel(echo=True),
        persistence=InMemoryPersistence(),
        notifier=notifier,
        narrator=narrator,
        settings=settings,
        rng=random.Random(args.seed),
        clock=clock,
    ) as engine:
        for tick in range(1, args.ticks + 1):
            report = await engine.run_tick()
            print(f"\n=== Tick {tick} @ {clock.now:%H:%M} ===")
            for resolution in report.pending.resolutions if report.pending else []:
                print(f"  pending {resolution.aggressor} vs {resolution.defender}: {resolution.state}")
            if report.tension and report.tension.aggressor:
                print(
                    f"  tension {report.tension.aggressor} -> {report.tension.defender}: "
                    f"{report.tension.tension_score} ({report.tension.reason})"
                )
            if report.healing and report.healing.healed:
                print(f"  healed {report.healing.healed} injuries")
            for entry in report.settlement.entries if report.settlement else []:
                print(f"  settlement {entry.aggressor}/{entry.defender}: {entry.result}")
            if report.accident and report.accident.accident:
                print(f"  accident: {report.accident.description} ({report.accident.victim})")
            if report.metadata.get("errors"):
                print(f"  errors: {report.metadata['errors']}")

            # Confrontations resolve 45s after they start, well inside one tick
            if report.confrontation and report.confrontation.started:
                clock.now += settings.confrontation_delay
                resolved = await engine.resolve_pending_confrontations()
                for resolution in resolved.resolutions:
                    print(f"  fight {resolution.aggressor} vs {resolution.defender}: {resolution.outcome}")

            clock.tick()

        print("\n=== Operator feed ===")
        for message in notifier.messages:
            print(f"  {message}")

        print("\n=== Where everyone ended up ===")
        for agent in await scenario.directory.list_agents():
            injuries = await engine.persistence.get_active_injuries(agent.name)
            hurt = ", ".join(i.injury_type.value for i in injuries) or "fine"
            print(f"  {agent.name:<12} {agent.zone or '-':<14} mood={agent.mood:<10} energy={agent.energy:<3} {hurt}")

    log_success("Demo complete")


if __name__ == "__main__":
    asyncio.run(main())
