"""Distribution Sampler — one seeded random stream per repetition."""

from typing import Optional

import numpy as np

from marketsim.models.config import (
    ChoiceDistribution,
    Distribution,
    ExpDistribution,
    FixedDistribution,
    LognormalDistribution,
    NormalDistribution,
    UniformDistribution,
)


class Sampler:
    """Draws scalars from configured distributions using an owned numpy Generator.

    Each repetition constructs its own Sampler; nothing here is process-global,
    so repetitions stay reproducible when dispatched to parallel workers.
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self.rng = np.random.default_rng(seed)

    def sample(self, distribution: Distribution) -> float:
        match distribution:
            case FixedDistribution(value=value):
                return float(value)
            case ChoiceDistribution(values=values):
                return float(values[self.rng.integers(len(values))])
            case UniformDistribution(min=low, max=high):
                return float(self.rng.uniform(low, high))
            case LognormalDistribution(mean=mean, std=std):
                return float(self.rng.lognormal(mean, std))
            case NormalDistribution(mean=mean, std=std):
                return float(self.rng.normal(mean, std))
            case ExpDistribution(mean=mean):
                return float(self.rng.exponential(mean))
        raise TypeError(f"Unknown distribution: {distribution!r}")

    def __repr__(self) -> str:
        return f"Sampler(seed={self.seed})"
