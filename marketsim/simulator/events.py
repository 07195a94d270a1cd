"""Event types and the time-ordered event queue for the discrete event simulation."""

import heapq
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional

from marketsim.errors import InvariantViolation


class EventType(str, Enum):
    """Types of events the simulation engine processes."""
    ADVERTISE_TASK = "advertise_task"
    READVERTISE_TASK = "readvertise_task"
    PROVIDER_AVAILABLE = "provider_available"
    SUBTASK_ASSIGNED = "subtask_assigned"
    SUBTASK_COMPUTED = "subtask_computed"
    BUDGET_VERIFICATION = "budget_verification"
    TASK_COMPLETED = "task_completed"


@dataclass(order=True)
class Event:
    """
    A single simulation event, ordered by time then sequence for heap ordering.
    Fields with compare=False are excluded from ordering (only time + sequence matter).
    """
    time: float
    sequence: int
    event_type: EventType = field(compare=False)
    agent_id: int = field(compare=False)
    task_id: Optional[int] = field(default=None, compare=False)
    subtask_id: Optional[int] = field(default=None, compare=False)
    payload: dict = field(default_factory=dict, compare=False)

    @property
    def trace_key(self) -> tuple:
        """Identity of the event within a repetition's trace, payload included."""
        return (
            self.time, self.sequence, self.event_type.value,
            self.agent_id, self.task_id, self.subtask_id,
            tuple(sorted(self.payload.items())),
        )

    def __repr__(self) -> str:
        parts = [f"Event(t={self.time:.2f}, type={self.event_type.value}, agent={self.agent_id}"]
        if self.task_id is not None:
            parts.append(f", task={self.task_id}")
        if self.subtask_id is not None:
            parts.append(f", subtask={self.subtask_id}")
        parts.append(")")
        return "".join(parts)


class EventQueue:
    """Min-heap of pending events; ties on time are popped in insertion order."""

    def __init__(self):
        self._heap: list[Event] = []
        self._counter: int = 0
        self.now: float = 0.0

    def push(
        self,
        time: float,
        event_type: EventType,
        agent_id: int,
        task_id: Optional[int] = None,
        subtask_id: Optional[int] = None,
        payload: Optional[dict] = None,
    ) -> Event:
        """Schedule an event at an absolute time, never earlier than the clock."""
        if time < self.now:
            raise InvariantViolation(
                f"cannot schedule {event_type.value} at {time} before current time {self.now}"
            )
        event = Event(
            time=time,
            sequence=self._counter,
            event_type=event_type,
            agent_id=agent_id,
            task_id=task_id,
            subtask_id=subtask_id,
            payload=payload or {},
        )
        self._counter += 1
        heapq.heappush(self._heap, event)
        return event

    def pop_next(self) -> Optional[Event]:
        """Remove and return the earliest event, advancing the clock to it."""
        if not self._heap:
            return None
        event = heapq.heappop(self._heap)
        if event.time < self.now:
            raise InvariantViolation(f"clock moved backwards: {event.time} < {self.now}")
        self.now = event.time
        return event

    def clear(self) -> int:
        """Discard all pending events; returns how many were dropped."""
        dropped = len(self._heap)
        self._heap.clear()
        return dropped

    def __len__(self) -> int:
        return len(self._heap)
