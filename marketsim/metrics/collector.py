"""Statistics — per-agent snapshots of a repetition and summaries across repetitions."""

from dataclasses import dataclass, field, asdict
from typing import Optional

import numpy as np
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from marketsim.market.defence import DefenceMechanism
from marketsim.models.provider import Provider
from marketsim.models.requestor import Requestor


@dataclass(frozen=True)
class ProviderStats:
    """Final counters of one provider in one repetition."""
    repetition: int
    provider_id: int
    behaviour: str
    min_price: float
    usage_factor: float
    price: float
    revenue: float
    num_subtasks_assigned: int
    num_subtasks_computed: int
    num_subtasks_cancelled: int


@dataclass(frozen=True)
class RequestorStats:
    """Final counters of one requestor in one repetition."""
    repetition: int
    requestor_id: int
    max_price: float
    budget_factor: float
    defence: str
    mean_cost: float  # percent of budget, settled subtasks only
    num_tasks_advertised: int
    num_tasks_computed: int
    num_readvertisements: int
    num_subtasks_advertised: int
    num_subtasks_computed: int
    num_subtasks_cancelled: int
    num_subtasks_outstanding: int
    num_providers_blacklisted: int


@dataclass(frozen=True)
class RepetitionStats:
    """Everything the reporting layer receives for one repetition."""
    repetition: int
    seed: Optional[int]
    end_time: float
    events_processed: int
    providers: list[ProviderStats]
    requestors: list[RequestorStats]

    def provider_rows(self) -> list[dict]:
        return [asdict(p) for p in self.providers]

    def requestor_rows(self) -> list[dict]:
        return [asdict(r) for r in self.requestors]


class StatisticsCollector:
    """Reads the running counters off agents once a repetition has ended."""

    def snapshot(
        self,
        repetition: int,
        seed: Optional[int],
        providers: list[Provider],
        requestors: list[Requestor],
        end_time: float,
        events_processed: int,
        defences: Optional[dict[int, DefenceMechanism]] = None,
    ) -> RepetitionStats:
        defences = defences or {}
        return RepetitionStats(
            repetition=repetition,
            seed=seed,
            end_time=end_time,
            events_processed=events_processed,
            providers=[self._provider_stats(repetition, p) for p in providers],
            requestors=[
                self._requestor_stats(repetition, r, defences.get(r.id)) for r in requestors
            ],
        )

    def _provider_stats(self, repetition: int, provider: Provider) -> ProviderStats:
        return ProviderStats(
            repetition=repetition,
            provider_id=provider.id,
            behaviour=provider.behaviour.kind,
            min_price=provider.min_price,
            usage_factor=provider.usage_factor,
            price=provider.price,
            revenue=provider.revenue,
            num_subtasks_assigned=provider.num_subtasks_assigned,
            num_subtasks_computed=provider.num_subtasks_computed,
            num_subtasks_cancelled=provider.num_subtasks_cancelled,
        )

    def _requestor_stats(
        self, repetition: int, requestor: Requestor, defence: Optional[DefenceMechanism]
    ) -> RequestorStats:
        return RequestorStats(
            repetition=repetition,
            requestor_id=requestor.id,
            max_price=requestor.max_price,
            budget_factor=requestor.budget_factor,
            defence=requestor.defence.kind,
            mean_cost=requestor.mean_cost * 100.0,
            num_tasks_advertised=requestor.num_tasks_advertised,
            num_tasks_computed=requestor.num_tasks_computed,
            num_readvertisements=requestor.num_readvertisements,
            num_subtasks_advertised=requestor.num_subtasks_advertised,
            num_subtasks_computed=requestor.num_subtasks_computed,
            num_subtasks_cancelled=requestor.num_subtasks_cancelled,
            num_subtasks_outstanding=requestor.outstanding,
            num_providers_blacklisted=len(defence.blacklist) if defence else 0,
        )


@dataclass
class SummaryReport:
    """Mean and standard deviation of key outcomes across repetitions."""
    repetitions: int = 0
    failed_repetitions: int = 0
    provider_metrics: dict[str, tuple[float, float]] = field(default_factory=dict)
    requestor_metrics: dict[str, tuple[float, float]] = field(default_factory=dict)
    revenue_by_behaviour: dict[str, tuple[float, float]] = field(default_factory=dict)
    cost_by_defence: dict[str, tuple[float, float]] = field(default_factory=dict)

    PROVIDER_FIELDS = (
        "revenue", "num_subtasks_assigned", "num_subtasks_computed", "num_subtasks_cancelled",
    )
    REQUESTOR_FIELDS = (
        "mean_cost", "num_tasks_advertised", "num_tasks_computed", "num_readvertisements",
        "num_subtasks_computed", "num_subtasks_cancelled", "num_subtasks_outstanding",
        "num_providers_blacklisted",
    )

    @classmethod
    def from_stats(
        cls, stats: list[RepetitionStats], failed_repetitions: int = 0
    ) -> "SummaryReport":
        """Aggregate per-agent records from every successful repetition."""
        report = cls(repetitions=len(stats), failed_repetitions=failed_repetitions)
        providers = [p for s in stats for p in s.providers]
        requestors = [r for s in stats for r in s.requestors]

        for name in cls.PROVIDER_FIELDS:
            report.provider_metrics[name] = _mean_std([getattr(p, name) for p in providers])
        for name in cls.REQUESTOR_FIELDS:
            report.requestor_metrics[name] = _mean_std([getattr(r, name) for r in requestors])

        behaviours = sorted({p.behaviour for p in providers})
        for behaviour in behaviours:
            report.revenue_by_behaviour[behaviour] = _mean_std(
                [p.revenue for p in providers if p.behaviour == behaviour]
            )
        for defence in sorted({r.defence for r in requestors}):
            report.cost_by_defence[defence] = _mean_std(
                [r.mean_cost for r in requestors if r.defence == defence]
            )
        return report

    def print_report(self, console: Optional[Console] = None) -> None:
        console = console or Console()

        console.print(Panel(
            f"[bold cyan]Compute Market — Simulation Summary[/bold cyan]\n"
            f"Repetitions: [bold yellow]{self.repetitions}[/bold yellow]"
            + (f"  [red]failed: {self.failed_repetitions}[/red]" if self.failed_repetitions else ""),
            border_style="cyan",
        ))

        console.print(self._table("Providers (per agent)", self.provider_metrics, "blue"))
        console.print(self._table("Requestors (per agent)", self.requestor_metrics, "green"))
        if self.revenue_by_behaviour:
            console.print(self._table("Revenue by Behaviour", self.revenue_by_behaviour, "magenta"))
        if self.cost_by_defence:
            console.print(self._table("Mean Cost % by Defence", self.cost_by_defence, "yellow"))

    @staticmethod
    def _table(title: str, metrics: dict[str, tuple[float, float]], style: str) -> Table:
        table = Table(title=title, border_style=style)
        table.add_column("Metric", style="bold")
        table.add_column("Mean", justify="right")
        table.add_column("Std", justify="right")
        for name, (mean, std) in metrics.items():
            table.add_row(name, f"{mean:.6g}", f"{std:.6g}")
        return table


def _mean_std(values: list[float]) -> tuple[float, float]:
    if not values:
        return (float("nan"), float("nan"))
    data = np.asarray(values, dtype=float)
    return (float(data.mean()), float(data.std()))
