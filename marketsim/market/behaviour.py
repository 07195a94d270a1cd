"""Provider behaviours — how much usage a provider bills for a computed subtask.

Behaviours form a closed set of tagged variants (see ``ProviderBehaviour`` in
the configuration models). Adding one means adding a variant and one case
below; the engine only ever calls ``report_usage``.
"""

from marketsim.models.config import (
    LinearInflationBehaviour,
    ProviderBehaviour,
    RegularBehaviour,
    UndercutBudgetBehaviour,
)


def report_usage(
    behaviour: ProviderBehaviour,
    nominal_usage: float,
    price: float,
    budget: float,
) -> float:
    """Reported CPU-seconds for a subtask.

    Args:
        behaviour: The provider's reporting policy.
        nominal_usage: True usage of the subtask (never modified here).
        price: Agreed price per CPU-second.
        budget: Requestor's allotted budget for the subtask.
    """
    match behaviour:
        case RegularBehaviour():
            return nominal_usage
        case LinearInflationBehaviour(factor=factor):
            return nominal_usage * (1.0 + factor)
        case UndercutBudgetBehaviour(epsilon=epsilon):
            # At zero price every report costs nothing; bill the truth.
            if price <= 0:
                return nominal_usage
            return max(0.0, budget - epsilon) / price
    raise TypeError(f"Unknown provider behaviour: {behaviour!r}")
