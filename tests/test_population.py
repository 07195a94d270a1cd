"""
Tests for the distribution sampler and the agent factory.

These tests verify:
    1. Each distribution kind draws within its support
    2. Same seed → identical draws; different seed → different draws
    3. Fixed agents come first, then sources in declaration order
    4. Nominal usage and budget are fixed when a task is created
    5. Invalid sampled values surface as ConfigurationError
    6. Redundant requestors get replicated subtasks sharing one usage draw
"""

import pytest
from pydantic import ValidationError

from marketsim.errors import ConfigurationError
from marketsim.models.config import (
    ChoiceDistribution,
    ExpDistribution,
    FixedDistribution,
    LinearInflationBehaviour,
    LognormalDistribution,
    NormalDistribution,
    ProviderSource,
    ProviderSpec,
    RedundancyDefence,
    RequestorSource,
    RequestorSpec,
    SimulationConfig,
    TaskSpec,
    UniformDistribution,
)
from marketsim.models.task import SubtaskStatus, TaskStatus
from marketsim.simulator.factory import AgentFactory, build_population
from marketsim.simulator.sampler import Sampler


class TestSampler:
    """Tests for distribution sampling."""

    def test_fixed(self):
        assert Sampler(1).sample(FixedDistribution(value=3.5)) == 3.5

    def test_choice_within_values(self):
        sampler = Sampler(1)
        dist = ChoiceDistribution(values=[0.5, 1.0, 2.0])
        draws = {sampler.sample(dist) for _ in range(200)}
        assert draws <= {0.5, 1.0, 2.0}
        assert len(draws) == 3

    def test_uniform_within_bounds(self):
        sampler = Sampler(1)
        dist = UniformDistribution(min=1.0, max=2.0)
        assert all(1.0 <= sampler.sample(dist) < 2.0 for _ in range(200))

    def test_lognormal_and_exp_positive(self):
        sampler = Sampler(1)
        assert all(sampler.sample(LognormalDistribution(mean=0.0, std=1.0)) > 0 for _ in range(100))
        assert all(sampler.sample(ExpDistribution(mean=900.0)) >= 0 for _ in range(100))

    def test_exp_mean(self):
        """exp(mean) is parameterised by its mean, not its rate."""
        sampler = Sampler(3)
        draws = [sampler.sample(ExpDistribution(mean=50.0)) for _ in range(5000)]
        assert sum(draws) / len(draws) == pytest.approx(50.0, rel=0.1)

    def test_zero_std_normal_is_constant(self):
        sampler = Sampler(1)
        assert sampler.sample(NormalDistribution(mean=4.0, std=0.0)) == 4.0

    def test_reproducible(self):
        """Same seed → identical stream."""
        dist = UniformDistribution(min=0.0, max=1.0)
        a, b, c = Sampler(42), Sampler(42), Sampler(43)
        draws_a = [a.sample(dist) for _ in range(10)]
        assert draws_a == [b.sample(dist) for _ in range(10)]
        assert draws_a != [c.sample(dist) for _ in range(10)]


class TestAgentFactory:
    """Tests for population construction."""

    def _make_config(self, **overrides) -> SimulationConfig:
        values = dict(
            seed=1,
            duration=1000.0,
            providers=[ProviderSpec(min_price=0.5, usage_factor=1.0)],
            provider_sources=[ProviderSource(
                count=3,
                min_price=UniformDistribution(min=0.1, max=0.2),
                usage_factor=FixedDistribution(value=2.0),
                behaviour=LinearInflationBehaviour(factor=0.5),
            )],
            requestors=[RequestorSpec(
                max_price=1.0, budget_factor=2.0,
                tasks=[
                    TaskSpec(subtask_count=2, nominal_usage=FixedDistribution(value=100.0)),
                    TaskSpec(subtask_count=1, nominal_usage=FixedDistribution(value=50.0)),
                ],
            )],
            requestor_sources=[RequestorSource(
                count=2,
                max_price=FixedDistribution(value=0.3),
                budget_factor=FixedDistribution(value=1.0),
                subtask_count=ChoiceDistribution(values=[4.0]),
                nominal_usage=UniformDistribution(min=10.0, max=20.0),
            )],
        )
        values.update(overrides)
        return SimulationConfig(**values)

    def test_population_sizes_and_order(self):
        """Fixed agents first, then sampled ones; ids follow construction order."""
        providers, requestors = build_population(self._make_config(), Sampler(1))

        assert [p.id for p in providers] == [0, 1, 2, 3]
        assert providers[0].min_price == 0.5
        assert all(0.1 <= p.min_price < 0.2 for p in providers[1:])
        assert all(p.behaviour == LinearInflationBehaviour(factor=0.5) for p in providers[1:])

        assert [r.id for r in requestors] == [0, 1, 2]
        assert requestors[0].max_price == 1.0
        assert all(r.max_price == 0.3 for r in requestors[1:])

    def test_task_queue_expanded_at_creation(self):
        """Every task spec becomes a pending task with its usage already drawn."""
        _, requestors = build_population(self._make_config(), Sampler(1))
        fixed = requestors[0]

        assert [len(t.subtasks) for t in fixed.task_queue] == [2, 1]
        first = fixed.task_queue[0]
        assert first.status == TaskStatus.PENDING
        assert all(s.status == SubtaskStatus.UNASSIGNED for s in first.subtasks)
        assert [s.nominal_usage for s in first.subtasks] == [100.0, 100.0]
        # budget = budget_factor * max_price * nominal_usage
        assert first.subtasks[0].budget == pytest.approx(2.0 * 1.0 * 100.0)

    def test_sampled_requestor_gets_one_task(self):
        _, requestors = build_population(self._make_config(), Sampler(1))
        for requestor in requestors[1:]:
            assert len(requestor.task_queue) == 1
            subtasks = requestor.task_queue[0].subtasks
            assert len(subtasks) == 4
            assert all(10.0 <= s.nominal_usage < 20.0 for s in subtasks)

    def test_unique_ids(self):
        _, requestors = build_population(self._make_config(), Sampler(1))
        tasks = [t for r in requestors for t in r.task_queue]
        subtasks = [s for t in tasks for s in t.subtasks]
        assert len({t.id for t in tasks}) == len(tasks)
        assert len({s.id for s in subtasks}) == len(subtasks)

    def test_reproducible_population(self):
        """Same seed → identical sampled parameters."""
        config = self._make_config()
        p1, r1 = build_population(config, Sampler(9))
        p2, r2 = build_population(config, Sampler(9))
        assert [p.min_price for p in p1] == [p.min_price for p in p2]
        usages1 = [s.nominal_usage for r in r1 for t in r.task_queue for s in t.subtasks]
        usages2 = [s.nominal_usage for r in r2 for t in r.task_queue for s in t.subtasks]
        assert usages1 == usages2

    def test_invalid_sampled_usage_factor(self):
        """A draw outside the provider domain fails before the simulation starts."""
        config = self._make_config(provider_sources=[ProviderSource(
            count=1,
            min_price=FixedDistribution(value=0.1),
            usage_factor=FixedDistribution(value=-1.0),
        )])
        with pytest.raises(ConfigurationError):
            build_population(config, Sampler(1))

    def test_invalid_sampled_subtask_count(self):
        config = self._make_config(requestor_sources=[RequestorSource(
            count=1,
            max_price=FixedDistribution(value=1.0),
            budget_factor=FixedDistribution(value=1.0),
            subtask_count=FixedDistribution(value=0.2),
            nominal_usage=FixedDistribution(value=10.0),
        )])
        with pytest.raises(ConfigurationError):
            build_population(config, Sampler(1))

    def test_non_positive_nominal_usage(self):
        """Usage distributions that can reach zero never make it into a scenario."""
        with pytest.raises(ValidationError):
            TaskSpec(subtask_count=1, nominal_usage=FixedDistribution(value=0.0))
        with pytest.raises(ValidationError):
            RequestorSource(
                count=1,
                max_price=FixedDistribution(value=1.0),
                budget_factor=FixedDistribution(value=1.0),
                subtask_count=FixedDistribution(value=1.0),
                nominal_usage=UniformDistribution(min=-5.0, max=10.0),
            )

    def test_spawn_task_draws_fresh_usage(self):
        """Respawned tasks sample nominal usage again."""
        factory = AgentFactory(Sampler(5))
        spec = TaskSpec(subtask_count=3, nominal_usage=UniformDistribution(min=1.0, max=100.0))
        requestor = factory.make_requestor(RequestorSpec(max_price=1.0, budget_factor=1.0, tasks=[spec]))

        fresh = factory.spawn_task(spec, requestor)

        original = requestor.task_queue[0]
        assert fresh.id != original.id
        assert fresh.spec == spec
        assert [s.nominal_usage for s in fresh.subtasks] != [s.nominal_usage for s in original.subtasks]

    def test_redundancy_replicates_each_subtask(self):
        factory = AgentFactory(Sampler(5))
        spec = TaskSpec(subtask_count=2, nominal_usage=UniformDistribution(min=1.0, max=100.0))
        requestor = factory.make_requestor(RequestorSpec(
            max_price=1.0, budget_factor=1.0, tasks=[spec],
            defence=RedundancyDefence(factor=3),
        ))

        task = requestor.task_queue[0]

        assert len(task.subtasks) == 6
        primaries = [s for s in task.subtasks if s.replica_of is None]
        assert len(primaries) == 2
        for primary in primaries:
            group = [s for s in task.subtasks if s.group == primary.id]
            assert len(group) == 3
            assert {s.nominal_usage for s in group} == {primary.nominal_usage}
            assert {s.budget for s in group} == {primary.budget}
        assert primaries[0].nominal_usage != primaries[1].nominal_usage
