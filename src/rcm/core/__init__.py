"""Convergence tracking, phase scheduling and fault injection on a virtual clock."""

from rcm.core.convergence import NetworkConvergenceTracker, NodeConvergenceTracker
from rcm.core.errors import ConfigurationError, SchedulingError
from rcm.core.faults import LinkFaultInjector, LinkInterfaceMap
from rcm.core.phases import PhaseScheduler
from rcm.core.scheduler import RepeatingTimer, VirtualTimeScheduler
from rcm.core.types import LinkEndpoints, ReportMode, RoutingStateSnapshot, TrackerState

__all__ = [
    "ConfigurationError",
    "LinkEndpoints",
    "LinkFaultInjector",
    "LinkInterfaceMap",
    "NetworkConvergenceTracker",
    "NodeConvergenceTracker",
    "PhaseScheduler",
    "RepeatingTimer",
    "ReportMode",
    "RoutingStateSnapshot",
    "SchedulingError",
    "TrackerState",
    "VirtualTimeScheduler",
]
