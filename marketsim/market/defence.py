"""Requestor defences — rank, filter and re-rate providers from their usage reports.

Every requestor owns one defence for the lifetime of a repetition. It seeds a
usage rating per provider from the provider's benchmark, ranks offers by
``min_price * rating``, skips blacklisted providers, and revises ratings and
the blacklist from the bills it sees at budget verification.
"""

import logging
import math
from collections import defaultdict
from typing import Optional

import numpy as np

from marketsim.models.config import (
    CTasksDefence,
    LGRolaDefence,
    NoDefence,
    RedundancyDefence,
    RequestorDefence,
)
from marketsim.models.provider import Provider
from marketsim.models.task import Subtask

logger = logging.getLogger(__name__)

# Zero bills would collapse a geometric mean.
_MIN_RATIO = 1e-12


def _usage_ratio(subtask: Subtask, reported_usage: float) -> float:
    return max(reported_usage / subtask.nominal_usage, _MIN_RATIO)


def _geometric_mean(values) -> float:
    return float(np.exp(np.mean(np.log(np.asarray(values, dtype=float)))))


class DefenceMechanism:
    """Budget check only: no blacklist, offers ranked by price.

    Subclasses override ``observe`` and ``task_completed`` to learn from
    reports, and ``select`` to change how subtasks are paired with offers.
    """

    def __init__(self, requestor_id: Optional[int] = None):
        self.requestor_id = requestor_id
        self.ratings: dict[int, float] = {}
        # provider id -> completed tasks left on the ban; None bans for good
        self.blacklist: dict[int, Optional[int]] = {}

    def receive_benchmark(self, provider_id: int, rating: float) -> None:
        if provider_id in self.ratings:
            logger.warning(
                "R%s:rating for P%d already existed, replacing: %s => %s",
                self.requestor_id, provider_id, self.ratings[provider_id], rating,
            )
        self.ratings[provider_id] = rating

    def rating(self, provider_id: int) -> float:
        return self.ratings.get(provider_id, 1.0)

    def is_blacklisted(self, provider_id: int) -> bool:
        return provider_id in self.blacklist

    def rank(self, providers: list[Provider]) -> list[Provider]:
        """Drop blacklisted providers and order the rest by rated price, then id."""
        allowed = [p for p in providers if not self.is_blacklisted(p.id)]
        return sorted(allowed, key=lambda p: (p.min_price * self.rating(p.id), p.min_price, p.id))

    def select(
        self, subtasks: list[Subtask], providers: list[Provider]
    ) -> list[tuple[Subtask, Provider]]:
        """Pair pooled subtasks, in order, with ranked providers."""
        return list(zip(subtasks, providers))

    def observe(self, subtask: Subtask, provider_id: int, reported_usage: float) -> None:
        """A provider's bill for one subtask reached budget verification."""

    def task_completed(self) -> None:
        """The requestor's current task finished."""

    def _ban(self, provider_id: int, tasks: Optional[int] = None) -> None:
        self.blacklist[provider_id] = tasks
        logger.debug(
            "R%s:P%d blacklisted %s", self.requestor_id, provider_id,
            "indefinitely" if tasks is None else f"for {tasks} tasks",
        )

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(requestor={self.requestor_id}, "
            f"blacklisted={sorted(self.blacklist)})"
        )


class CTasks(DefenceMechanism):
    """Re-rates every provider that worked on a task once the task completes.

    A provider's rating moves by the square root of how far its usage,
    relative to the task's geometric mean usage, is from its rating relative
    to the mean rating. Ratings above ``max_rating`` are banned for good.
    """

    def __init__(self, requestor_id: Optional[int] = None, max_rating: float = 2.0):
        super().__init__(requestor_id)
        self.max_rating = max_rating
        self._usages: dict[int, list[float]] = defaultdict(list)

    def observe(self, subtask: Subtask, provider_id: int, reported_usage: float) -> None:
        self._usages[provider_id].append(_usage_ratio(subtask, reported_usage))

    def task_completed(self) -> None:
        if not self._usages:
            return
        usages = {pid: _geometric_mean(values) for pid, values in self._usages.items()}
        mean_usage = _geometric_mean(list(usages.values()))
        mean_rating = _geometric_mean([self.rating(pid) for pid in usages])
        logger.debug(
            "R%s:updating ratings; mean usage: %.4g, mean rating: %.4g",
            self.requestor_id, mean_usage, mean_rating,
        )

        for provider_id, usage in usages.items():
            rating = self.rating(provider_id)
            adjustment = math.sqrt((usage / mean_usage) / (rating / mean_rating))
            self.ratings[provider_id] = rating * adjustment
            logger.debug(
                "R%s:P%d rating updated: %.4g -> %.4g",
                self.requestor_id, provider_id, rating, self.ratings[provider_id],
            )
            if self.ratings[provider_id] > self.max_rating and not self.is_blacklisted(provider_id):
                self._ban(provider_id)

        self._usages.clear()


class LGRola(DefenceMechanism):
    """Bans the upper outliers of each task's usage, for exponentially growing periods.

    A provider whose mean usage on a task lies above ``q3 + iqr_multiplier * IQR``
    collects a collision and is banned for ``ceil(e ** collisions)`` tasks;
    a clean task forgives one collision. Ratings stay at their benchmarks.
    """

    def __init__(self, requestor_id: Optional[int] = None, iqr_multiplier: float = 1.5):
        super().__init__(requestor_id)
        self.iqr_multiplier = iqr_multiplier
        self.collisions: dict[int, int] = {}
        self._usages: dict[int, list[float]] = defaultdict(list)

    def observe(self, subtask: Subtask, provider_id: int, reported_usage: float) -> None:
        self._usages[provider_id].append(_usage_ratio(subtask, reported_usage))

    def task_completed(self) -> None:
        self._age_bans()
        if not self._usages:
            return

        usages = {pid: _geometric_mean(values) for pid, values in self._usages.items()}
        q1, q3 = np.percentile(list(usages.values()), [25, 75])
        fence = q3 + self.iqr_multiplier * (q3 - q1)

        for provider_id, usage in usages.items():
            if usage > fence:
                self.collisions[provider_id] = self.collisions.get(provider_id, 0) + 1
                self._ban(provider_id, math.ceil(math.exp(self.collisions[provider_id])))
            else:
                self.collisions[provider_id] = max(0, self.collisions.get(provider_id, 0) - 1)

        self._usages.clear()

    def _age_bans(self) -> None:
        for provider_id in [pid for pid, left in self.blacklist.items() if left == 0]:
            del self.blacklist[provider_id]
            logger.debug("R%s:P%d ban expired", self.requestor_id, provider_id)
        for provider_id, left in self.blacklist.items():
            if left is not None:
                self.blacklist[provider_id] = left - 1


class Redundancy(DefenceMechanism):
    """Sends each subtask to ``factor`` distinct providers and cross-checks the bills.

    Replicas are only handed out together. Once every replica has been
    billed, each report (divided by its provider's rating) that exceeds the
    lowest one by at least ``tolerance`` multiplies that provider's rating
    by the excess ratio; ratings reaching ``max_rating`` are banned for good.
    """

    def __init__(
        self,
        requestor_id: Optional[int] = None,
        factor: int = 2,
        tolerance: float = 1e-3,
        max_rating: float = 2.0,
    ):
        super().__init__(requestor_id)
        self.factor = factor
        self.tolerance = tolerance
        self.max_rating = max_rating
        self._reports: dict[int, list[tuple[int, float]]] = defaultdict(list)

    def select(
        self, subtasks: list[Subtask], providers: list[Provider]
    ) -> list[tuple[Subtask, Provider]]:
        groups: dict[int, list[Subtask]] = {}
        for subtask in subtasks:
            groups.setdefault(subtask.group, []).append(subtask)

        pairs: list[tuple[Subtask, Provider]] = []
        offset = 0
        for replicas in groups.values():
            chosen = providers[offset:offset + len(replicas)]
            if len(chosen) < len(replicas):
                break
            pairs.extend(zip(replicas, chosen))
            offset += len(replicas)
        return pairs

    def observe(self, subtask: Subtask, provider_id: int, reported_usage: float) -> None:
        reports = self._reports[subtask.group]
        reports.append((provider_id, reported_usage / self.rating(provider_id)))
        logger.debug("R%s:verification for subtask group %d: %s", self.requestor_id, subtask.group, reports)
        if len(reports) < self.factor:
            return

        del self._reports[subtask.group]
        lowest = min(usage for _, usage in reports)
        for pid, usage in reports:
            if usage - lowest < self.tolerance:
                continue
            old_rating = self.rating(pid)
            self.ratings[pid] = old_rating * usage / lowest if lowest > 0 else math.inf
            logger.debug(
                "R%s:P%d failed verification, rating %.4g => %.4g",
                self.requestor_id, pid, old_rating, self.ratings[pid],
            )
            if self.ratings[pid] >= self.max_rating and not self.is_blacklisted(pid):
                self._ban(pid)


def make_defence(config: RequestorDefence, requestor_id: Optional[int] = None) -> DefenceMechanism:
    """Build the runtime defence for one requestor from its configuration."""
    match config:
        case NoDefence():
            return DefenceMechanism(requestor_id)
        case CTasksDefence(max_rating=max_rating):
            return CTasks(requestor_id, max_rating=max_rating)
        case LGRolaDefence(iqr_multiplier=iqr_multiplier):
            return LGRola(requestor_id, iqr_multiplier=iqr_multiplier)
        case RedundancyDefence(factor=factor, tolerance=tolerance, max_rating=max_rating):
            return Redundancy(requestor_id, factor=factor, tolerance=tolerance, max_rating=max_rating)
    raise TypeError(f"Unknown requestor defence: {config!r}")
