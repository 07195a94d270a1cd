"""Error taxonomy for the marketplace simulator."""


class SimulationError(Exception):
    """Base class for failures that abort a single repetition."""


class ConfigurationError(SimulationError, ValueError):
    """Configuration produced a value outside its valid domain.

    Raised while the population is built (or a repeating task is respawned),
    never for ordinary protocol outcomes such as readvertisement or
    cancellation.
    """


class InvariantViolation(SimulationError):
    """The engine reached a state that must be impossible (programming error)."""
