"""Repetition Runner — independent, reproducible repetitions of one configuration.

Repetition k is seeded with ``config.seed + k``. Repetitions share nothing
mutable, so they are dispatched through joblib and only their finished
statistics come back.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from joblib import Parallel, delayed

from marketsim.errors import SimulationError
from marketsim.metrics.collector import RepetitionStats, SummaryReport
from marketsim.models.config import SimulationConfig
from marketsim.simulator.engine import SimulationEngine

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Statistics keyed by repetition index, plus the repetitions that failed."""
    stats: dict[int, RepetitionStats] = field(default_factory=dict)
    failures: dict[int, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> list[int]:
        return sorted(self.stats)

    def summary(self) -> SummaryReport:
        return SummaryReport.from_stats(
            [self.stats[k] for k in self.succeeded],
            failed_repetitions=len(self.failures),
        )


def run_repetition(config: SimulationConfig, repetition: int) -> RepetitionStats:
    """Build, run and snapshot a single repetition."""
    return SimulationEngine(config, repetition=repetition).run()


def _guarded_repetition(
    config: SimulationConfig, repetition: int
) -> tuple[int, Optional[RepetitionStats], Optional[str]]:
    try:
        return repetition, run_repetition(config, repetition), None
    except SimulationError as exc:
        return repetition, None, f"{type(exc).__name__}: {exc}"


class RepetitionRunner:
    """Runs N repetitions of a configuration, optionally in parallel.

    Usage:
        result = RepetitionRunner(config, repetitions=100, n_jobs=-1).run()
        result.summary().print_report()
    """

    def __init__(self, config: SimulationConfig, repetitions: int = 100, n_jobs: int = 1):
        """
        Args:
            config: Validated scenario shared read-only by every repetition.
            repetitions: Number of independent repetitions (indices 0..N-1).
            n_jobs: joblib worker count; 1 runs in-process, -1 uses every core.
        """
        if repetitions < 0:
            raise ValueError(f"repetitions must be non-negative, got {repetitions}")
        self.config = config
        self.repetitions = repetitions
        self.n_jobs = n_jobs

    def run(self) -> RunResult:
        logger.info(
            "running %d repetitions (seed=%s, n_jobs=%d)",
            self.repetitions, self.config.seed, self.n_jobs,
        )
        outcomes = Parallel(n_jobs=self.n_jobs)(
            delayed(_guarded_repetition)(self.config, k) for k in range(self.repetitions)
        )

        result = RunResult()
        for repetition, stats, error in outcomes:
            if error is not None:
                logger.error("repetition %d failed: %s", repetition, error)
                result.failures[repetition] = error
            else:
                result.stats[repetition] = stats

        logger.info(
            "finished: %d succeeded, %d failed",
            len(result.stats), len(result.failures),
        )
        return result
