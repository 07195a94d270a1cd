"""Budget Controller — settles or cancels a subtask based on its reported usage."""

from enum import Enum

from marketsim.errors import InvariantViolation
from marketsim.models.task import Subtask


class Verdict(str, Enum):
    SETTLE = "settle"
    CANCEL = "cancel"


class BudgetController:
    """Checks a provider's bill against the requestor's per-subtask budget.

    The budget is fixed when the subtask is created
    (budget_factor * max_price * nominal_usage) and the agreed price when it
    is assigned; neither is renegotiated here.
    """

    def payment(self, reported_usage: float, subtask: Subtask) -> float:
        if subtask.agreed_price is None:
            raise InvariantViolation(f"subtask {subtask.id} has no agreed price")
        return reported_usage * subtask.agreed_price

    def verify(self, reported_usage: float, subtask: Subtask) -> Verdict:
        if self.payment(reported_usage, subtask) <= subtask.budget:
            return Verdict.SETTLE
        return Verdict.CANCEL
