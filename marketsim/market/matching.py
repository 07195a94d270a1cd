"""Market — pairs advertised subtasks with available providers."""

from dataclasses import dataclass
from typing import Optional

from marketsim.market.defence import DefenceMechanism
from marketsim.models.provider import Provider
from marketsim.models.requestor import Requestor
from marketsim.models.task import Subtask


@dataclass(frozen=True)
class Assignment:
    """Immutable matching decision: a subtask goes to a provider at a price."""
    subtask_id: int
    provider_id: int
    requestor_id: int
    price: float


class Market:
    """Transient pools of unassigned subtasks and idle providers.

    Matching is a deterministic auction: the price-compatible available
    providers are ranked by the requestor's defence (lowest min_price, ties
    by id, when no defence is configured) and handed the pooled subtasks in
    advertisement order. The agreed price is the winner's min_price.
    """

    def __init__(self, defences: Optional[dict[int, DefenceMechanism]] = None):
        self._requestors: dict[int, Requestor] = {}
        self._subtasks: dict[int, list[Subtask]] = {}
        self._providers: dict[int, Provider] = {}
        self._defences = defences if defences is not None else {}
        self._plain = DefenceMechanism()

    def advertise(self, requestor: Requestor, subtasks: list[Subtask]) -> None:
        """Add a requestor's unassigned subtasks to the pool."""
        if not subtasks:
            return
        self._requestors[requestor.id] = requestor
        self._subtasks.setdefault(requestor.id, []).extend(subtasks)

    def add_provider(self, provider: Provider) -> None:
        provider.available = True
        self._providers[provider.id] = provider

    def pending(self, requestor_id: int) -> int:
        """Number of this requestor's subtasks still waiting for a provider."""
        return len(self._subtasks.get(requestor_id, ()))

    @property
    def available_providers(self) -> list[Provider]:
        return list(self._providers.values())

    def match_requestor(self, requestor_id: int) -> list[Assignment]:
        """One matching pass over a single requestor's pooled subtasks."""
        requestor = self._requestors.get(requestor_id)
        if requestor is None:
            return []

        defence = self._defences.get(requestor_id, self._plain)
        eligible = [p for p in self._providers.values() if p.accepts(requestor.max_price)]
        pooled = self._subtasks[requestor_id]

        assignments: list[Assignment] = []
        for subtask, provider in defence.select(pooled, defence.rank(eligible)):
            del self._providers[provider.id]
            assignments.append(Assignment(
                subtask_id=subtask.id,
                provider_id=provider.id,
                requestor_id=requestor_id,
                price=provider.min_price,
            ))

        assigned = {a.subtask_id for a in assignments}
        unmatched = [s for s in pooled if s.id not in assigned]
        if unmatched:
            self._subtasks[requestor_id] = unmatched
        else:
            del self._subtasks[requestor_id]
            del self._requestors[requestor_id]
        return assignments

    def match_all(self) -> list[Assignment]:
        """One matching pass over every requestor, in advertisement order."""
        assignments: list[Assignment] = []
        for requestor_id in list(self._subtasks):
            if not self._providers:
                break
            assignments.extend(self.match_requestor(requestor_id))
        return assignments
