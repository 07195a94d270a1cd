"""Agent Factory — expands a configuration into one repetition's population."""

import itertools
import logging
from typing import Optional

from pydantic import ValidationError

from marketsim.errors import ConfigurationError
from marketsim.models.config import (
    ProviderSource,
    ProviderSpec,
    RequestorSource,
    RequestorSpec,
    SimulationConfig,
    TaskSpec,
)
from marketsim.models.provider import Provider
from marketsim.models.requestor import Requestor
from marketsim.models.task import Subtask, Task
from marketsim.simulator.sampler import Sampler

logger = logging.getLogger(__name__)


class AgentFactory:
    """Builds providers, requestors and tasks with sequential ids.

    Fixed specs come first, then sources in declaration order, so the
    construction order (and with it every id) is a pure function of the
    configuration and the sampler's seed.
    """

    def __init__(self, sampler: Sampler):
        self.sampler = sampler
        self._provider_ids = itertools.count()
        self._requestor_ids = itertools.count()
        self._task_ids = itertools.count()
        self._subtask_ids = itertools.count()

    def build_population(
        self, config: SimulationConfig
    ) -> tuple[list[Provider], list[Requestor]]:
        providers = [self.make_provider(spec) for spec in config.providers]
        for source in config.provider_sources:
            providers.extend(self._sample_providers(source))

        requestors = [self.make_requestor(spec) for spec in config.requestors]
        for source in config.requestor_sources:
            requestors.extend(self._sample_requestors(source))

        logger.debug(
            "built population: %d providers, %d requestors (%r)",
            len(providers), len(requestors), self.sampler,
        )
        return providers, requestors

    def make_provider(self, spec: ProviderSpec) -> Provider:
        return Provider(
            id=next(self._provider_ids),
            min_price=spec.min_price,
            usage_factor=spec.usage_factor,
            behaviour=spec.behaviour,
        )

    def make_requestor(self, spec: RequestorSpec) -> Requestor:
        requestor = Requestor(
            id=next(self._requestor_ids),
            max_price=spec.max_price,
            budget_factor=spec.budget_factor,
            repeating=spec.repeating,
            defence=spec.defence,
        )
        for task_spec in spec.tasks:
            requestor.task_queue.append(self.spawn_task(task_spec, requestor))
        return requestor

    def spawn_task(self, spec: TaskSpec, requestor: Requestor) -> Task:
        """Create a Task, drawing each subtask's nominal usage now.

        A requestor defending by redundancy gets `replicas` identical copies
        of every subtask; copies point back at the first one.
        """
        task = Task(id=next(self._task_ids), requestor_id=requestor.id, spec=spec)
        for _ in range(spec.subtask_count):
            nominal_usage = self.sampler.sample(spec.nominal_usage)
            primary: Optional[Subtask] = None
            for _ in range(requestor.defence.replicas):
                subtask = Subtask(
                    id=next(self._subtask_ids),
                    task_id=task.id,
                    requestor_id=requestor.id,
                    nominal_usage=nominal_usage,
                    budget=requestor.budget_for(nominal_usage),
                    replica_of=None if primary is None else primary.id,
                )
                if primary is None:
                    primary = subtask
                task.subtasks.append(subtask)
        return task

    def _sample_providers(self, source: ProviderSource) -> list[Provider]:
        providers = []
        for _ in range(source.count):
            spec = _validated(
                ProviderSpec,
                min_price=self.sampler.sample(source.min_price),
                usage_factor=self.sampler.sample(source.usage_factor),
                behaviour=source.behaviour,
            )
            providers.append(self.make_provider(spec))
        return providers

    def _sample_requestors(self, source: RequestorSource) -> list[Requestor]:
        requestors = []
        for _ in range(source.count):
            max_price = self.sampler.sample(source.max_price)
            budget_factor = self.sampler.sample(source.budget_factor)
            subtask_count = round(self.sampler.sample(source.subtask_count))
            task = _validated(
                TaskSpec, subtask_count=subtask_count, nominal_usage=source.nominal_usage,
            )
            spec = _validated(
                RequestorSpec,
                max_price=max_price,
                budget_factor=budget_factor,
                tasks=[task],
                repeating=source.repeating,
                defence=source.defence,
            )
            requestors.append(self.make_requestor(spec))
        return requestors


def _validated(model, **values):
    """Construct a spec from sampled values, surfacing bad draws as ConfigurationError."""
    try:
        return model(**values)
    except ValidationError as exc:
        raise ConfigurationError(f"sampled {model.__name__} is invalid: {exc}") from exc


def build_population(
    config: SimulationConfig, sampler: Sampler
) -> tuple[list[Provider], list[Requestor]]:
    """Instantiate the concrete providers and requestors for one repetition."""
    return AgentFactory(sampler).build_population(config)
