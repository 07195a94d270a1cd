"""
Tests for the event queue.

These tests verify:
    1. Events pop in timestamp order
    2. Equal timestamps pop in insertion (FIFO) order
    3. Scheduling into the past is an invariant violation
"""

import pytest

from marketsim.errors import InvariantViolation
from marketsim.simulator.events import EventQueue, EventType


class TestEventQueue:
    """Tests for the min-heap event queue."""

    def test_pops_in_time_order(self):
        queue = EventQueue()
        queue.push(2.0, EventType.ADVERTISE_TASK, 3)
        queue.push(1.0, EventType.ADVERTISE_TASK, 2)
        queue.push(0.5, EventType.ADVERTISE_TASK, 1)

        assert [queue.pop_next().agent_id for _ in range(3)] == [1, 2, 3]
        assert queue.now == 2.0
        assert queue.pop_next() is None

    def test_ties_are_fifo(self):
        """Same timestamp → insertion order, regardless of event type."""
        queue = EventQueue()
        queue.push(1.0, EventType.TASK_COMPLETED, 0)
        queue.push(1.0, EventType.ADVERTISE_TASK, 1)
        queue.push(1.0, EventType.PROVIDER_AVAILABLE, 2)

        popped = [queue.pop_next() for _ in range(3)]
        assert [e.agent_id for e in popped] == [0, 1, 2]
        assert [e.sequence for e in popped] == sorted(e.sequence for e in popped)

    def test_push_into_past_rejected(self):
        queue = EventQueue()
        queue.push(5.0, EventType.ADVERTISE_TASK, 0)
        queue.pop_next()
        with pytest.raises(InvariantViolation):
            queue.push(4.0, EventType.ADVERTISE_TASK, 0)

    def test_zero_delay_push_allowed(self):
        """Events at the current time are legal (same-timestamp follow-ups)."""
        queue = EventQueue()
        queue.push(5.0, EventType.BUDGET_VERIFICATION, 0, subtask_id=1, payload={"reported_usage": 1.0})
        event = queue.pop_next()
        queue.push(event.time, EventType.PROVIDER_AVAILABLE, 0)
        assert queue.pop_next().event_type == EventType.PROVIDER_AVAILABLE

    def test_clear(self):
        queue = EventQueue()
        for i in range(4):
            queue.push(float(i), EventType.ADVERTISE_TASK, i)
        assert queue.clear() == 4
        assert len(queue) == 0
