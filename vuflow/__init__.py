"""Scenario-driven load generation with metric thresholds."""

from vuflow.loader import ConfigurationError, build_config, load_config
from vuflow.metrics import MetricRegistry
from vuflow.orchestrator import TestRun, execute, run
from vuflow.pool import SharedStatePool
from vuflow.workload import VUContext, WeightedMix, WorkloadStep, workload

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "MetricRegistry",
    "SharedStatePool",
    "TestRun",
    "VUContext",
    "WeightedMix",
    "WorkloadStep",
    "build_config",
    "execute",
    "load_config",
    "run",
    "workload",
]
