"""Provider model — an agent selling CPU time one subtask at a time."""

from typing import Optional

from pydantic import BaseModel, Field

from marketsim.errors import InvariantViolation
from marketsim.models.config import ProviderBehaviour, RegularBehaviour


class Provider(BaseModel):
    """Runtime provider agent owned by a single simulation engine."""

    id: int = Field(description="Unique provider identifier; also the auction tie-break")
    min_price: float = Field(ge=0, description="Lowest acceptable price per CPU-second")
    usage_factor: float = Field(gt=0, description="Compute time = nominal_usage / usage_factor")
    behaviour: ProviderBehaviour = Field(default_factory=RegularBehaviour)
    available: bool = Field(default=False, description="Idle and advertised to the market")
    current_subtask: Optional[int] = Field(default=None, description="Subtask being computed")
    num_subtasks_assigned: int = Field(default=0, ge=0)
    num_subtasks_computed: int = Field(default=0, ge=0)
    num_subtasks_cancelled: int = Field(default=0, ge=0)
    revenue: float = Field(default=0.0, ge=0)

    @property
    def price(self) -> float:
        """Asking price; agreed prices are fixed at min_price."""
        return self.min_price

    def benchmark(self) -> float:
        """Billed CPU-seconds per nominal CPU-second on an honest reference run.

        Billing does not depend on speed, so every provider benchmarks at 1.0;
        requestors start from this rating and revise it from observed reports.
        """
        return 1.0

    def accepts(self, max_price: float) -> bool:
        """Price compatibility with a requestor's ceiling."""
        return self.min_price <= max_price

    def assign(self, subtask_id: int) -> None:
        """Take a subtask — the provider becomes unavailable."""
        if not self.available or self.current_subtask is not None:
            raise InvariantViolation(
                f"P{self.id} assigned subtask {subtask_id} while busy with {self.current_subtask}"
            )
        self.available = False
        self.current_subtask = subtask_id

    def settle(self, payment: float) -> None:
        self.revenue += payment
        self.num_subtasks_computed += 1

    def cancel(self) -> None:
        self.num_subtasks_cancelled += 1

    def release(self) -> None:
        """Drop the finished subtask. Availability is restored by the market."""
        if self.current_subtask is None:
            raise InvariantViolation(f"P{self.id} released while idle")
        self.current_subtask = None

    def __repr__(self) -> str:
        return (
            f"Provider(id={self.id}, min_price={self.min_price:.6g}, "
            f"usage_factor={self.usage_factor:.2f}, behaviour={self.behaviour.kind}, "
            f"revenue={self.revenue:.6g})"
        )
