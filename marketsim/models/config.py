"""Simulation configuration — validated, immutable scenario description."""

import math
from collections import Counter
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# ── Distributions ─────────────────────────────────────────────────────

class _Distribution(_Frozen):
    """Base for scalar distributions.

    ``infimum`` is the greatest lower bound of the support and
    ``attains_infimum`` tells whether a draw can land on it. Fields whose
    draws happen mid-run are checked against these at validation time.
    """

    @property
    def infimum(self) -> float:
        raise NotImplementedError

    @property
    def attains_infimum(self) -> bool:
        return True

    def is_positive(self) -> bool:
        """Every draw is strictly greater than zero."""
        return self.infimum > 0 or (self.infimum == 0 and not self.attains_infimum)

    def is_non_negative(self) -> bool:
        return self.infimum >= 0


class FixedDistribution(_Distribution):
    """Always returns the same value."""
    kind: Literal["fixed"] = "fixed"
    value: float = Field(allow_inf_nan=False, description="Value returned by every draw")

    @property
    def infimum(self) -> float:
        return self.value


class ChoiceDistribution(_Distribution):
    """Uniform pick from a discrete set of values."""
    kind: Literal["choice"] = "choice"
    values: list[float] = Field(min_length=1, description="Candidate values")

    @model_validator(mode="after")
    def _finite_values(self) -> "ChoiceDistribution":
        if not all(math.isfinite(v) for v in self.values):
            raise ValueError("choice values must be finite")
        return self

    @property
    def infimum(self) -> float:
        return min(self.values)


class UniformDistribution(_Distribution):
    """Continuous uniform on [min, max)."""
    kind: Literal["uniform"] = "uniform"
    min: float = Field(allow_inf_nan=False)
    max: float = Field(allow_inf_nan=False)

    @model_validator(mode="after")
    def _ordered_bounds(self) -> "UniformDistribution":
        if self.min >= self.max:
            raise ValueError(f"uniform requires min < max, got [{self.min}, {self.max})")
        return self

    @property
    def infimum(self) -> float:
        return self.min


class LognormalDistribution(_Distribution):
    """Log-normal; mean and std parameterise the underlying normal."""
    kind: Literal["lognormal"] = "lognormal"
    mean: float = Field(allow_inf_nan=False)
    std: float = Field(ge=0, allow_inf_nan=False)

    @property
    def infimum(self) -> float:
        return math.exp(self.mean) if self.std == 0 else 0.0

    @property
    def attains_infimum(self) -> bool:
        return self.std == 0


class NormalDistribution(_Distribution):
    kind: Literal["normal"] = "normal"
    mean: float = Field(allow_inf_nan=False)
    std: float = Field(ge=0, allow_inf_nan=False)

    @property
    def infimum(self) -> float:
        return self.mean if self.std == 0 else -math.inf


class ExpDistribution(_Distribution):
    """Negative exponential with the given mean."""
    kind: Literal["exp"] = "exp"
    mean: float = Field(gt=0, allow_inf_nan=False)

    @property
    def infimum(self) -> float:
        return 0.0

    @property
    def attains_infimum(self) -> bool:
        return False


Distribution = Annotated[
    Union[
        FixedDistribution,
        ChoiceDistribution,
        UniformDistribution,
        LognormalDistribution,
        NormalDistribution,
        ExpDistribution,
    ],
    Field(discriminator="kind"),
]


def _positive_support(distribution: _Distribution, name: str) -> _Distribution:
    if not distribution.is_positive():
        raise ValueError(f"{name} must be positive on every draw, {distribution!r} is not")
    return distribution


def _non_negative_support(distribution: _Distribution, name: str) -> _Distribution:
    if not distribution.is_non_negative():
        raise ValueError(f"{name} must be non-negative on every draw, {distribution!r} is not")
    return distribution


# ── Provider behaviours ───────────────────────────────────────────────

class RegularBehaviour(_Frozen):
    """Reports nominal usage truthfully."""
    kind: Literal["regular"] = "regular"


class LinearInflationBehaviour(_Frozen):
    """Reports nominal_usage * (1 + factor)."""
    kind: Literal["linear_inflation"] = "linear_inflation"
    factor: float = Field(ge=0, allow_inf_nan=False, description="Relative overstatement of usage")


class UndercutBudgetBehaviour(_Frozen):
    """Reports whatever usage bills exactly budget - epsilon."""
    kind: Literal["undercut_budget"] = "undercut_budget"
    epsilon: float = Field(ge=0, allow_inf_nan=False, description="Currency left unbilled below the budget")


ProviderBehaviour = Annotated[
    Union[RegularBehaviour, LinearInflationBehaviour, UndercutBudgetBehaviour],
    Field(discriminator="kind"),
]


# ── Requestor defences ────────────────────────────────────────────────

class _Defence(_Frozen):
    @property
    def replicas(self) -> int:
        """Copies of each subtask advertised to distinct providers."""
        return 1


class NoDefence(_Defence):
    """Budget check only; offers ranked by price."""
    kind: Literal["none"] = "none"


class CTasksDefence(_Defence):
    """Re-rates providers after each task by comparing their usage with the task's mean."""
    kind: Literal["ctasks"] = "ctasks"
    max_rating: float = Field(default=2.0, gt=0, description="Ratings above this are banned for good")


class LGRolaDefence(_Defence):
    """Bans providers whose usage is an upper outlier of the task, for growing periods."""
    kind: Literal["lgrola"] = "lgrola"
    iqr_multiplier: float = Field(default=1.5, ge=0, description="Outlier fence: q3 + multiplier * IQR")


class RedundancyDefence(_Defence):
    """Computes every subtask on several providers and penalises the higher reports."""
    kind: Literal["redundancy"] = "redundancy"
    factor: int = Field(default=2, ge=2, description="Providers per subtask")
    tolerance: float = Field(default=1e-3, ge=0, description="Report difference treated as agreement")
    max_rating: float = Field(default=2.0, gt=0, description="Ratings at or above this are banned for good")

    @property
    def replicas(self) -> int:
        return self.factor


RequestorDefence = Annotated[
    Union[NoDefence, CTasksDefence, LGRolaDefence, RedundancyDefence],
    Field(discriminator="kind"),
]


# ── Agent specs ───────────────────────────────────────────────────────

class ProviderSpec(_Frozen):
    """A concrete provider, either listed explicitly or sampled from a source."""
    min_price: float = Field(ge=0, allow_inf_nan=False, description="Currency per CPU-second")
    usage_factor: float = Field(gt=0, allow_inf_nan=False, description="Speed ratio; higher finishes sooner")
    behaviour: ProviderBehaviour = Field(default_factory=RegularBehaviour)


class TaskSpec(_Frozen):
    subtask_count: int = Field(ge=1, description="Number of subtasks per task instance")
    nominal_usage: Distribution = Field(description="CPU-seconds drawn once per subtask")

    @field_validator("nominal_usage")
    @classmethod
    def _usage_positive(cls, value):
        return _positive_support(value, "nominal_usage")


class RequestorSpec(_Frozen):
    """A concrete requestor with its ordered task list."""
    max_price: float = Field(ge=0, allow_inf_nan=False, description="Price ceiling per CPU-second")
    budget_factor: float = Field(ge=0, allow_inf_nan=False, description="Budget multiplier on max_price * usage")
    tasks: list[TaskSpec] = Field(default_factory=list, description="Tasks advertised in order")
    repeating: bool = Field(default=False, description="Respawn the task once it completes")
    defence: RequestorDefence = Field(default_factory=NoDefence)


class ProviderSource(_Frozen):
    """Samples `count` providers from per-field distributions."""
    count: int = Field(ge=0)
    min_price: Distribution
    usage_factor: Distribution
    behaviour: ProviderBehaviour = Field(default_factory=RegularBehaviour)


class RequestorSource(_Frozen):
    """Samples `count` requestors, each with a single task."""
    count: int = Field(ge=0)
    max_price: Distribution
    budget_factor: Distribution
    subtask_count: Distribution = Field(description="Rounded to the nearest integer")
    nominal_usage: Distribution
    repeating: bool = False
    defence: RequestorDefence = Field(default_factory=NoDefence)

    @field_validator("nominal_usage")
    @classmethod
    def _usage_positive(cls, value):
        return _positive_support(value, "nominal_usage")


class SimulationConfig(_Frozen):
    """Everything one repetition needs; shared read-only across repetitions."""
    seed: Optional[int] = Field(default=None, description="Base seed; repetition k uses seed + k")
    duration: float = Field(gt=0, allow_inf_nan=False, description="Simulated seconds before cutoff")
    providers: list[ProviderSpec] = Field(default_factory=list)
    provider_sources: list[ProviderSource] = Field(default_factory=list)
    requestors: list[RequestorSpec] = Field(default_factory=list)
    requestor_sources: list[RequestorSource] = Field(default_factory=list)
    readvertisement_delay: float = Field(default=60.0, gt=0, allow_inf_nan=False,
                                         description="Retry interval for unmatched subtasks")
    task_arrival_delay: Distribution = Field(default_factory=lambda: FixedDistribution(value=0.0),
                                             description="Delay before a non-repeating task is advertised")

    @field_validator("task_arrival_delay")
    @classmethod
    def _delay_non_negative(cls, value):
        return _non_negative_support(value, "task_arrival_delay")

    def provider_behaviour_counts(self) -> dict[str, int]:
        """Number of providers per behaviour kind, fixed and sampled."""
        counts = Counter(spec.behaviour.kind for spec in self.providers)
        for source in self.provider_sources:
            counts[source.behaviour.kind] += source.count
        return dict(counts)

    def with_defence(self, defence) -> "SimulationConfig":
        """Copy of this scenario with every requestor using the given defence."""
        return self.model_copy(update={
            "requestors": [r.model_copy(update={"defence": defence}) for r in self.requestors],
            "requestor_sources": [
                s.model_copy(update={"defence": defence}) for s in self.requestor_sources
            ],
        })
