"""Requestor model — an agent buying CPU time for its queue of tasks."""

from typing import Optional

from pydantic import BaseModel, Field

from marketsim.errors import InvariantViolation
from marketsim.models.config import NoDefence, RequestorDefence
from marketsim.models.task import Task, TaskStatus


class Requestor(BaseModel):
    """Runtime requestor agent owned by a single simulation engine."""

    id: int = Field(description="Unique requestor identifier")
    max_price: float = Field(ge=0, description="Price ceiling per CPU-second")
    budget_factor: float = Field(ge=0, description="Budget = budget_factor * max_price * nominal_usage")
    repeating: bool = Field(default=False, description="Respawn the current task when it completes")
    defence: RequestorDefence = Field(default_factory=NoDefence, description="Protection against over-reporting")
    task_queue: list[Task] = Field(default_factory=list, description="Tasks awaiting advertisement")
    current_task: Optional[Task] = Field(default=None, description="Task currently on the market")
    readvertisement_scheduled: bool = Field(default=False, description="A retry event is pending")
    num_tasks_advertised: int = Field(default=0, ge=0)
    num_tasks_computed: int = Field(default=0, ge=0)
    num_readvertisements: int = Field(default=0, ge=0)
    num_subtasks_advertised: int = Field(default=0, ge=0)
    num_subtasks_computed: int = Field(default=0, ge=0)
    num_subtasks_cancelled: int = Field(default=0, ge=0)
    num_costs_recorded: int = Field(default=0, ge=0)
    mean_cost: float = Field(default=0.0, description="Running mean of payment / budget")

    def budget_for(self, nominal_usage: float) -> float:
        """Allotted budget for a subtask of the given nominal usage."""
        return self.budget_factor * self.max_price * nominal_usage

    @property
    def has_work(self) -> bool:
        return bool(self.task_queue)

    def next_task(self) -> Task:
        """Pop the next queued task and put it on the market."""
        if self.current_task is not None and not self.current_task.is_done:
            raise InvariantViolation(
                f"R{self.id}:cannot advertise a new task while {self.current_task!r} is pending"
            )
        if not self.task_queue:
            raise InvariantViolation(f"R{self.id}:no task queued for advertisement")

        task = self.task_queue.pop(0)
        task.status = TaskStatus.ADVERTISED
        self.current_task = task
        self.num_tasks_advertised += 1
        self.num_subtasks_advertised += len(task.subtasks)
        return task

    def record_cost(self, payment: float, budget: float) -> None:
        """Fold one settled subtask's cost, relative to its budget, into the mean."""
        if budget <= 0:
            return
        self.num_costs_recorded += 1
        self.mean_cost += (payment / budget - self.mean_cost) / self.num_costs_recorded

    @property
    def outstanding(self) -> int:
        """Advertised subtasks that are neither computed nor cancelled."""
        if self.current_task is None:
            return 0
        return self.current_task.outstanding

    def __repr__(self) -> str:
        return (
            f"Requestor(id={self.id}, max_price={self.max_price:.6g}, "
            f"budget_factor={self.budget_factor:.2f}, queued={len(self.task_queue)}, "
            f"computed={self.num_tasks_computed})"
        )
