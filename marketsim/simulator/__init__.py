from marketsim.simulator.events import Event, EventQueue, EventType
from marketsim.simulator.sampler import Sampler
from marketsim.simulator.factory import AgentFactory, build_population
from marketsim.simulator.engine import SimulationEngine
from marketsim.simulator.runner import RepetitionRunner, RunResult, run_repetition

__all__ = [
    "Event", "EventQueue", "EventType", "Sampler", "AgentFactory", "build_population",
    "SimulationEngine", "RepetitionRunner", "RunResult", "run_repetition",
]
