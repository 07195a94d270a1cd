"""Entry point for running compute market simulations.

Usage:
    python scripts/run_simulation.py scenario.json --repetitions 100 --jobs 4
"""

import argparse
import logging
import sys
import os
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pydantic import TypeAdapter
from rich.console import Console
from rich.logging import RichHandler

from marketsim.models.config import RequestorDefence, SimulationConfig
from marketsim.simulator.runner import RepetitionRunner

console = Console()


def print_scenario_summary(config: SimulationConfig) -> None:
    """Print a summary of the loaded scenario."""
    console.print("\n[bold cyan]Loaded Scenario[/bold cyan]")
    console.print(f"  Duration: {config.duration:.0f}s, seed: {config.seed}")
    console.print(
        f"  Providers: {len(config.providers)} fixed + "
        f"{sum(s.count for s in config.provider_sources)} sampled"
    )
    console.print(
        f"  Requestors: {len(config.requestors)} fixed + "
        f"{sum(s.count for s in config.requestor_sources)} sampled"
    )
    console.print(f"  Provider behaviours: {config.provider_behaviour_counts()}")
    defences = sorted({r.defence.kind for r in [*config.requestors, *config.requestor_sources]})
    console.print(f"  Requestor defences: {defences}")
    console.print()


def main():
    parser = argparse.ArgumentParser(
        description="Compute marketplace agent-based discrete event simulator"
    )
    parser.add_argument("config", type=Path, help="JSON file with simulation parameters")
    parser.add_argument("--repetitions", type=int, default=100, help="Number of repetitions (default: 100)")
    parser.add_argument("--jobs", type=int, default=1, help="Parallel workers, -1 for all cores (default: 1)")
    parser.add_argument("--seed", type=int, default=None, help="Override the scenario's base seed")
    parser.add_argument(
        "--defence", choices=["none", "ctasks", "lgrola", "redundancy"], default=None,
        help="Give every requestor this defence with default parameters",
    )
    parser.add_argument("--verbose", action="store_true", help="Show debug logs")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )

    config = SimulationConfig.model_validate_json(args.config.read_text())
    if args.seed is not None:
        config = config.model_copy(update={"seed": args.seed})
    if args.defence is not None:
        defence = TypeAdapter(RequestorDefence).validate_python({"kind": args.defence})
        config = config.with_defence(defence)

    console.print("[bold]Compute Market[/bold] — Starting simulation...\n")
    print_scenario_summary(config)

    result = RepetitionRunner(config, repetitions=args.repetitions, n_jobs=args.jobs).run()
    result.summary().print_report(console)

    events = sum(s.events_processed for s in result.stats.values())
    console.print(
        f"\n[dim]Processed {events} events across {len(result.stats)} repetitions[/dim]"
    )


if __name__ == "__main__":
    main()
