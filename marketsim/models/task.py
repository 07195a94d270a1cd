"""Task and Subtask — the units of work a requestor advertises."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from marketsim.errors import InvariantViolation
from marketsim.models.config import TaskSpec


class SubtaskStatus(str, Enum):
    """Lifecycle: UNASSIGNED → ASSIGNED → COMPUTING → COMPLETED | CANCELLED"""
    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"
    COMPUTING = "computing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({SubtaskStatus.COMPLETED, SubtaskStatus.CANCELLED})


class TaskStatus(str, Enum):
    """Lifecycle: PENDING → ADVERTISED → PARTIALLY_ASSIGNED → COMPLETED"""
    PENDING = "pending"
    ADVERTISED = "advertised"
    PARTIALLY_ASSIGNED = "partially_assigned"
    COMPLETED = "completed"


class Subtask(BaseModel):
    """Indivisible piece of work with a nominal usage fixed at creation."""

    id: int = Field(description="Unique subtask identifier")
    task_id: int = Field(description="Parent task")
    requestor_id: int = Field(description="Requestor that owns the parent task")
    nominal_usage: float = Field(gt=0, description="True CPU-seconds required")
    budget: float = Field(ge=0, description="Maximum payment accepted for this subtask")
    status: SubtaskStatus = Field(default=SubtaskStatus.UNASSIGNED)
    provider_id: Optional[int] = Field(default=None, description="Provider holding the assignment")
    agreed_price: Optional[float] = Field(default=None, description="Winning provider's min_price")
    assigned_at: Optional[float] = Field(default=None, description="Simulation time of assignment")
    reported_usage: Optional[float] = Field(default=None, description="Usage the provider billed for")
    replica_of: Optional[int] = Field(default=None, description="Primary subtask this one duplicates")

    @property
    def group(self) -> int:
        """Id shared by a subtask and all of its replicas."""
        return self.id if self.replica_of is None else self.replica_of

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def assign(self, provider_id: int, price: float, now: float) -> None:
        """Bind to a provider at an agreed price. Only legal from UNASSIGNED."""
        if self.status != SubtaskStatus.UNASSIGNED:
            raise InvariantViolation(
                f"subtask {self.id} assigned to P{provider_id} while {self.status.value}"
            )
        self.status = SubtaskStatus.ASSIGNED
        self.provider_id = provider_id
        self.agreed_price = price
        self.assigned_at = now

    def start(self) -> None:
        if self.status != SubtaskStatus.ASSIGNED:
            raise InvariantViolation(f"subtask {self.id} started while {self.status.value}")
        self.status = SubtaskStatus.COMPUTING

    def finish(self, status: SubtaskStatus, reported_usage: float) -> None:
        """Move to a terminal status after budget verification."""
        if self.status != SubtaskStatus.COMPUTING:
            raise InvariantViolation(f"subtask {self.id} verified while {self.status.value}")
        if status not in TERMINAL_STATUSES:
            raise InvariantViolation(f"subtask {self.id} cannot finish as {status.value}")
        self.status = status
        self.reported_usage = reported_usage

    def __repr__(self) -> str:
        return (
            f"Subtask(id={self.id}, usage={self.nominal_usage:.2f}, "
            f"budget={self.budget:.6g}, status={self.status.value})"
        )


class Task(BaseModel):
    """A requestor's batch of subtasks, advertised together."""

    id: int = Field(description="Unique task identifier")
    requestor_id: int = Field(description="Owning requestor")
    spec: TaskSpec = Field(description="Spec the task was expanded from; reused on respawn")
    subtasks: list[Subtask] = Field(default_factory=list)
    status: TaskStatus = Field(default=TaskStatus.PENDING)

    @property
    def is_done(self) -> bool:
        """Every subtask reached COMPLETED or CANCELLED."""
        return all(s.is_terminal for s in self.subtasks)

    @property
    def outstanding(self) -> int:
        return sum(1 for s in self.subtasks if not s.is_terminal)

    def __repr__(self) -> str:
        return (
            f"Task(id={self.id}, requestor={self.requestor_id}, "
            f"subtasks={len(self.subtasks)}, status={self.status.value})"
        )
