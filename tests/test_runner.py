"""
Tests for the Repetition Runner and the summary report.

These tests verify:
    1. Repetition k is seeded with seed + k and matches a standalone run
    2. Failed repetitions are reported and excluded from the summary
    3. Parallel and in-process execution produce identical statistics
    4. The summary aggregates per-agent outcomes and renders with rich
    5. Requestor outcomes are also grouped by defence
"""

import io
import math

import pytest
from rich.console import Console

from marketsim.metrics.collector import SummaryReport
from marketsim.models.config import (
    CTasksDefence,
    FixedDistribution,
    LinearInflationBehaviour,
    NormalDistribution,
    ProviderSource,
    ProviderSpec,
    RequestorSource,
    SimulationConfig,
    UniformDistribution,
)
from marketsim.simulator.runner import RepetitionRunner, run_repetition


def _make_config(seed=100, provider_sources=None) -> SimulationConfig:
    return SimulationConfig(
        seed=seed,
        duration=2000.0,
        providers=[
            ProviderSpec(min_price=0.00002, usage_factor=1.0),
            ProviderSpec(min_price=0.00002, usage_factor=1.0,
                         behaviour=LinearInflationBehaviour(factor=0.5)),
        ],
        provider_sources=provider_sources or [ProviderSource(
            count=3,
            min_price=UniformDistribution(min=0.00001, max=0.0001),
            usage_factor=UniformDistribution(min=0.5, max=2.0),
        )],
        requestor_sources=[RequestorSource(
            count=3,
            max_price=UniformDistribution(min=0.00005, max=0.0002),
            budget_factor=FixedDistribution(value=1.0),
            subtask_count=UniformDistribution(min=1.0, max=4.0),
            nominal_usage=UniformDistribution(min=50.0, max=150.0),
            repeating=True,
        )],
    )


class TestRepetitionRunner:
    """Tests for running many repetitions of one configuration."""

    def test_repetition_seeds(self):
        result = RepetitionRunner(_make_config(), repetitions=3).run()

        assert result.succeeded == [0, 1, 2]
        assert not result.failures
        assert [result.stats[k].seed for k in range(3)] == [100, 101, 102]

    def test_repetition_matches_standalone_run(self):
        """A repetition's statistics depend only on config and index."""
        config = _make_config()
        result = RepetitionRunner(config, repetitions=3).run()
        assert result.stats[2] == run_repetition(config, 2)

    def test_unseeded_config_runs(self):
        result = RepetitionRunner(_make_config(seed=None), repetitions=2).run()
        assert result.succeeded == [0, 1]
        assert all(s.seed is None for s in result.stats.values())

    def test_failing_repetitions_excluded(self):
        """Repetitions that sample a negative speed fail alone; the rest complete."""
        config = _make_config(provider_sources=[ProviderSource(
            count=1,
            min_price=FixedDistribution(value=0.00002),
            usage_factor=NormalDistribution(mean=0.3, std=1.0),
        )])
        result = RepetitionRunner(config, repetitions=40).run()

        assert result.failures, "some repetitions should sample an invalid usage factor"
        assert result.stats, "some repetitions should sample a valid usage factor"
        assert set(result.failures).isdisjoint(result.stats)
        assert set(result.failures) | set(result.stats) == set(range(40))
        assert all("ConfigurationError" in msg for msg in result.failures.values())

        summary = result.summary()
        assert summary.repetitions == len(result.stats)
        assert summary.failed_repetitions == len(result.failures)

    def test_all_repetitions_fail(self):
        config = _make_config(provider_sources=[ProviderSource(
            count=1,
            min_price=FixedDistribution(value=0.00002),
            usage_factor=FixedDistribution(value=-1.0),
        )])
        result = RepetitionRunner(config, repetitions=3).run()

        assert result.succeeded == []
        assert sorted(result.failures) == [0, 1, 2]
        summary = result.summary()
        assert summary.repetitions == 0
        assert math.isnan(summary.provider_metrics["revenue"][0])

    def test_parallel_matches_sequential(self):
        config = _make_config()
        sequential = RepetitionRunner(config, repetitions=4, n_jobs=1).run()
        parallel = RepetitionRunner(config, repetitions=4, n_jobs=2).run()
        assert sequential.stats == parallel.stats

    def test_zero_repetitions(self):
        result = RepetitionRunner(_make_config(), repetitions=0).run()
        assert result.stats == {}
        assert result.summary().repetitions == 0

    def test_negative_repetitions_rejected(self):
        with pytest.raises(ValueError):
            RepetitionRunner(_make_config(), repetitions=-1)


class TestSummaryReport:
    """Tests for cross-repetition aggregation."""

    def test_aggregates_per_agent(self):
        config = _make_config()
        stats = [run_repetition(config, k) for k in range(3)]
        summary = SummaryReport.from_stats(stats)

        assert summary.repetitions == 3
        revenues = [p.revenue for s in stats for p in s.providers]
        mean, std = summary.provider_metrics["revenue"]
        assert mean == pytest.approx(sum(revenues) / len(revenues))
        assert std >= 0.0
        assert set(summary.requestor_metrics) == set(SummaryReport.REQUESTOR_FIELDS)

    def test_revenue_by_behaviour(self):
        stats = [run_repetition(_make_config(), k) for k in range(2)]
        summary = SummaryReport.from_stats(stats)
        assert set(summary.revenue_by_behaviour) == {"regular", "linear_inflation"}

    def test_rows_are_flat_records(self):
        stats = run_repetition(_make_config(), 0)
        rows = stats.provider_rows()
        assert len(rows) == 5
        assert rows[0]["provider_id"] == 0
        assert rows[0]["repetition"] == 0
        assert {"requestor_id", "num_readvertisements", "mean_cost"} <= set(stats.requestor_rows()[0])

    def test_print_report(self):
        stats = [run_repetition(_make_config(), 0)]
        buffer = io.StringIO()
        console = Console(file=buffer, width=120)

        SummaryReport.from_stats(stats, failed_repetitions=1).print_report(console)

        output = buffer.getvalue()
        assert "Simulation Summary" in output
        assert "Revenue by Behaviour" in output
        assert "failed: 1" in output

    def test_cost_by_defence(self):
        config = _make_config().with_defence(CTasksDefence())
        stats = [run_repetition(config, k) for k in range(2)]
        summary = SummaryReport.from_stats(stats)

        assert set(summary.cost_by_defence) == {"ctasks"}
        assert all(r.defence == "ctasks" for s in stats for r in s.requestors)

        buffer = io.StringIO()
        summary.print_report(Console(file=buffer, width=120))
        assert "by Defence" in buffer.getvalue()
