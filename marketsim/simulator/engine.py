"""Simulation Engine — core event-driven marketplace loop."""

import logging
from typing import Optional

from marketsim.errors import InvariantViolation
from marketsim.market.behaviour import report_usage
from marketsim.market.budget import BudgetController, Verdict
from marketsim.market.defence import DefenceMechanism, make_defence
from marketsim.market.matching import Assignment, Market
from marketsim.metrics.collector import RepetitionStats, StatisticsCollector
from marketsim.models.config import SimulationConfig
from marketsim.models.provider import Provider
from marketsim.models.requestor import Requestor
from marketsim.models.task import Subtask, SubtaskStatus, Task, TaskStatus
from marketsim.simulator.events import Event, EventQueue, EventType
from marketsim.simulator.factory import AgentFactory
from marketsim.simulator.sampler import Sampler

logger = logging.getLogger(__name__)


class SimulationEngine:
    """Event-driven simulation of one repetition of the compute market.

    The population is built in the constructor, so configuration errors
    surface before any event is processed.
    """

    def __init__(self, config: SimulationConfig, repetition: int = 0):
        self.config = config
        self.repetition = repetition
        self.seed: Optional[int] = None if config.seed is None else config.seed + repetition
        self.sampler = Sampler(self.seed)
        self.factory = AgentFactory(self.sampler)

        providers, requestors = self.factory.build_population(config)
        self.providers: dict[int, Provider] = {p.id: p for p in providers}
        self.requestors: dict[int, Requestor] = {r.id: r for r in requestors}
        self.subtasks: dict[int, Subtask] = {}
        self.tasks: dict[int, Task] = {}
        for requestor in requestors:
            for task in requestor.task_queue:
                self._index_task(task)

        self.defences: dict[int, DefenceMechanism] = {
            r.id: make_defence(r.defence, r.id) for r in requestors
        }
        self.market = Market(self.defences)
        self.budget_controller = BudgetController()
        self.queue = EventQueue()
        self.event_log: list[Event] = []
        self._current_time: float = 0.0
        self.stats: Optional[RepetitionStats] = None

    @property
    def now(self) -> float:
        return self._current_time

    def run(self) -> RepetitionStats:
        """Seed the queue, drain it up to the cutoff, return the statistics snapshot."""
        self._started()

        while (event := self.queue.pop_next()) is not None:
            if event.time > self.config.duration:
                dropped = self.queue.clear() + 1
                logger.debug("cutoff at %s: discarded %d pending events", self.config.duration, dropped)
                break
            if event.time < self._current_time:
                raise InvariantViolation(f"{event!r} precedes current time {self._current_time}")

            self._current_time = event.time
            self.event_log.append(event)

            match event.event_type:
                case EventType.ADVERTISE_TASK:
                    self._handle_advertise(event)
                case EventType.READVERTISE_TASK:
                    self._handle_readvertise(event)
                case EventType.PROVIDER_AVAILABLE:
                    self._handle_provider_available(event)
                case EventType.SUBTASK_ASSIGNED:
                    self._handle_subtask_assigned(event)
                case EventType.SUBTASK_COMPUTED:
                    self._handle_subtask_computed(event)
                case EventType.BUDGET_VERIFICATION:
                    self._handle_budget_verification(event)
                case EventType.TASK_COMPLETED:
                    self._handle_task_completed(event)

        logger.debug("simulation stopped at t=%s after %d events", self._current_time, len(self.event_log))
        self.stats = StatisticsCollector().snapshot(
            repetition=self.repetition,
            seed=self.seed,
            providers=list(self.providers.values()),
            requestors=list(self.requestors.values()),
            end_time=self._current_time,
            events_processed=len(self.event_log),
            defences=self.defences,
        )
        return self.stats

    def _started(self) -> None:
        for provider in self.providers.values():
            self.queue.push(0.0, EventType.PROVIDER_AVAILABLE, provider.id)
        for requestor in self.requestors.values():
            defence = self.defences[requestor.id]
            for provider in self.providers.values():
                defence.receive_benchmark(provider.id, provider.benchmark())
            if requestor.has_work:
                self._schedule_advertisement(requestor, self._arrival_delay())
        logger.debug(
            "simulation started: %d providers, %d requestors, seed=%s",
            len(self.providers), len(self.requestors), self.seed,
        )

    # ── Event Handlers ────────────────────────────────────────────────

    def _handle_advertise(self, event: Event) -> None:
        """Put the requestor's next task on the market and try to match it."""
        requestor = self.requestors[event.agent_id]
        task = requestor.next_task()
        requestor.readvertisement_scheduled = False
        logger.debug("R%d:advertising %r", requestor.id, task)

        self.market.advertise(requestor, list(task.subtasks))
        self._run_pass(requestor)

    def _handle_readvertise(self, event: Event) -> None:
        """Retry matching for the task that scheduled this event; stale retries are dropped."""
        requestor = self.requestors[event.agent_id]
        if requestor.current_task is None or event.task_id != requestor.current_task.id:
            logger.debug("R%d:dropping retry for finished task %s", requestor.id, event.task_id)
            return
        requestor.readvertisement_scheduled = False
        if not self.market.pending(requestor.id):
            return
        logger.debug("R%d:readvertising %d subtasks", requestor.id, self.market.pending(requestor.id))
        self._run_pass(requestor)

    def _handle_provider_available(self, event: Event) -> None:
        provider = self.providers[event.agent_id]
        self.market.add_provider(provider)
        for assignment in self.market.match_all():
            self._execute_assignment(assignment)

    def _handle_subtask_assigned(self, event: Event) -> None:
        """The provider starts computing; count the assignment."""
        subtask = self.subtasks[event.subtask_id]
        provider = self.providers[event.agent_id]
        subtask.start()
        provider.num_subtasks_assigned += 1
        logger.debug("P%d:received subtask %d from R%d", provider.id, subtask.id, subtask.requestor_id)

    def _handle_subtask_computed(self, event: Event) -> None:
        """Ask the provider's behaviour what to bill, then hand over to verification."""
        subtask = self.subtasks[event.subtask_id]
        provider = self.providers[event.agent_id]
        if subtask.status != SubtaskStatus.COMPUTING or provider.current_subtask != subtask.id:
            raise InvariantViolation(f"P{provider.id}:completed {subtask!r} it is not computing")

        reported = report_usage(
            provider.behaviour, subtask.nominal_usage, subtask.agreed_price, subtask.budget,
        )
        logger.debug(
            "P%d:finished subtask %d of R%d, reporting %.6g (nominal %.6g)",
            provider.id, subtask.id, subtask.requestor_id, reported, subtask.nominal_usage,
        )
        self.queue.push(
            self._current_time, EventType.BUDGET_VERIFICATION, provider.id,
            task_id=subtask.task_id, subtask_id=subtask.id,
            payload={"reported_usage": reported},
        )

    def _handle_budget_verification(self, event: Event) -> None:
        """Settle or cancel, free the provider, and close the task if it is done."""
        subtask = self.subtasks[event.subtask_id]
        provider = self.providers[event.agent_id]
        requestor = self.requestors[subtask.requestor_id]
        reported = event.payload["reported_usage"]

        self.defences[requestor.id].observe(subtask, provider.id, reported)
        verdict = self.budget_controller.verify(reported, subtask)
        if verdict == Verdict.SETTLE:
            payment = self.budget_controller.payment(reported, subtask)
            subtask.finish(SubtaskStatus.COMPLETED, reported)
            provider.settle(payment)
            requestor.num_subtasks_computed += 1
            requestor.record_cost(payment, subtask.budget)
            logger.debug("R%d:paid %.6g to P%d for subtask %d", requestor.id, payment, provider.id, subtask.id)
        else:
            subtask.finish(SubtaskStatus.CANCELLED, reported)
            provider.cancel()
            requestor.num_subtasks_cancelled += 1
            logger.debug("R%d:budget exceeded for subtask %d by P%d", requestor.id, subtask.id, provider.id)

        provider.release()
        self.queue.push(self._current_time, EventType.PROVIDER_AVAILABLE, provider.id)

        task = self.tasks[subtask.task_id]
        if task.is_done and task.status != TaskStatus.COMPLETED:
            task.status = TaskStatus.COMPLETED
            self.queue.push(self._current_time, EventType.TASK_COMPLETED, requestor.id, task_id=task.id)

    def _handle_task_completed(self, event: Event) -> None:
        """Count the task; respawn it, move on to the next one, or go idle."""
        requestor = self.requestors[event.agent_id]
        task = self.tasks[event.task_id]
        requestor.num_tasks_computed += 1
        logger.debug("R%d:task %d computed", requestor.id, task.id)
        self.defences[requestor.id].task_completed()

        if requestor.repeating:
            fresh = self.factory.spawn_task(task.spec, requestor)
            self._index_task(fresh)
            requestor.task_queue.insert(0, fresh)
            self._schedule_advertisement(requestor, 0.0)
        elif requestor.has_work:
            self._schedule_advertisement(requestor, self._arrival_delay())
        else:
            logger.debug("R%d:no tasks left, idle", requestor.id)

    # ── Matching ──────────────────────────────────────────────────────

    def _run_pass(self, requestor: Requestor) -> None:
        """Match one requestor's pooled subtasks; retry later if any are left."""
        for assignment in self.market.match_requestor(requestor.id):
            self._execute_assignment(assignment)

        if self.market.pending(requestor.id) and not requestor.readvertisement_scheduled:
            requestor.readvertisement_scheduled = True
            requestor.num_readvertisements += 1
            self.queue.push(
                self._current_time + self.config.readvertisement_delay,
                EventType.READVERTISE_TASK,
                requestor.id,
                task_id=requestor.current_task.id if requestor.current_task else None,
            )

    def _execute_assignment(self, assignment: Assignment) -> None:
        """Bind subtask and provider; schedule the start and the completion."""
        subtask = self.subtasks[assignment.subtask_id]
        provider = self.providers[assignment.provider_id]
        if not provider.accepts(self.requestors[assignment.requestor_id].max_price):
            raise InvariantViolation(f"P{provider.id} matched above R{assignment.requestor_id}'s ceiling")

        subtask.assign(provider.id, assignment.price, self._current_time)
        provider.assign(subtask.id)
        self.tasks[subtask.task_id].status = TaskStatus.PARTIALLY_ASSIGNED

        self.queue.push(
            self._current_time, EventType.SUBTASK_ASSIGNED, provider.id,
            task_id=subtask.task_id, subtask_id=subtask.id,
        )
        self.queue.push(
            self._current_time + subtask.nominal_usage / provider.usage_factor,
            EventType.SUBTASK_COMPUTED, provider.id,
            task_id=subtask.task_id, subtask_id=subtask.id,
        )

    # ── Utilities ─────────────────────────────────────────────────────

    def _schedule_advertisement(self, requestor: Requestor, delay: float) -> None:
        self.queue.push(self._current_time + delay, EventType.ADVERTISE_TASK, requestor.id)

    def _arrival_delay(self) -> float:
        """Draw from a distribution validated to be non-negative."""
        return self.sampler.sample(self.config.task_arrival_delay)

    def _index_task(self, task: Task) -> None:
        self.tasks[task.id] = task
        for subtask in task.subtasks:
            self.subtasks[subtask.id] = subtask
