from __future__ import annotations

import hashlib
import logging
from typing import Dict, Iterable, List, Optional

from rcm.core.collaborators import RoutingStateSource
from rcm.core.errors import ConfigurationError
from rcm.core.logging import JsonlLogger
from rcm.core.scheduler import RepeatingTimer, VirtualTimeScheduler
from rcm.core.types import NodeId, ReportMode, RoutingStateSnapshot, TrackerState

_log = logging.getLogger("rcm.convergence")

DEFAULT_POLL_INTERVAL = 0.1


def snapshot_digest(snapshot: RoutingStateSnapshot) -> str:
    return hashlib.sha256(snapshot.text.encode("utf-8")).hexdigest()


class NodeConvergenceTracker:
    """Polls one router's routing table and remembers when it last changed.

    ``last_change_time`` only moves while the tracker is ACTIVE. With
    ``always_on=True`` the tracker starts in ACTIVE at construction and only
    ``stop()`` is needed. With ``strip_header`` the first line of the rendered
    table is taken as the sampling-instant header and left out of comparisons.
    """

    def __init__(
        self,
        router: NodeId,
        source: RoutingStateSource,
        scheduler: VirtualTimeScheduler,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        always_on: bool = False,
        events: JsonlLogger | None = None,
        label: str = "",
        strip_header: bool = True,
    ) -> None:
        if not source.has_routing(router):
            raise ConfigurationError(f"Router {router!r} has no routing facility installed")
        self.router = router
        self.label = label
        self.strip_header = strip_header
        self._source = source
        self._scheduler = scheduler
        self._events = events or JsonlLogger(path=None)
        self._timer = RepeatingTimer(scheduler, poll_interval, self.poll)
        self.state = TrackerState.CREATED
        self.last_snapshot: Optional[RoutingStateSnapshot] = None
        self.last_change_time: Optional[float] = None
        self.changes = 0
        if always_on:
            self.start()

    @property
    def active(self) -> bool:
        return self.state is TrackerState.ACTIVE

    def start(self) -> None:
        if self.active:
            return
        self.state = TrackerState.ACTIVE
        self.last_snapshot = self._snapshot()
        self.last_change_time = self._scheduler.now
        self._timer.start()

    def stop(self) -> None:
        if not self.active:
            return
        self.state = TrackerState.STOPPED
        self._timer.cancel()

    def poll(self) -> None:
        if not self.active:
            return
        current = self._snapshot()
        if current == self.last_snapshot:
            return
        self.last_snapshot = current
        self.last_change_time = self._scheduler.now
        self.changes += 1
        _log.debug("%s: routing table of %s changed at t=%.3f", self.label, self.router, self.last_change_time)
        self._events.log(
            "route_change",
            phase=self.label,
            router=self.router,
            t=self.last_change_time,
            digest=snapshot_digest(current),
        )

    def _snapshot(self) -> RoutingStateSnapshot:
        return RoutingStateSnapshot.from_rendered(
            self.router, self._source.routing_table_text(self.router), strip_header=self.strip_header
        )


class NetworkConvergenceTracker:
    """Owns one node tracker per router and reports when the slowest one settled."""

    def __init__(
        self,
        routers: Iterable[NodeId],
        source: RoutingStateSource,
        scheduler: VirtualTimeScheduler,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        report_mode: ReportMode = ReportMode.RELATIVE,
        always_on: bool = False,
        events: JsonlLogger | None = None,
        name: str = "network",
        strip_header: bool = True,
    ) -> None:
        router_list = list(routers)
        if not router_list:
            raise ConfigurationError("A network tracker needs at least one router")
        if len(set(router_list)) != len(router_list):
            raise ConfigurationError(f"Duplicate routers in tracker set: {router_list}")
        self.name = name
        self.report_mode = ReportMode(report_mode)
        self._scheduler = scheduler
        self._events = events or JsonlLogger(path=None)
        self.start_time: Optional[float] = None
        self.stop_time: Optional[float] = None
        self._trackers: Dict[NodeId, NodeConvergenceTracker] = {
            router: NodeConvergenceTracker(
                router,
                source,
                scheduler,
                poll_interval=poll_interval,
                events=self._events,
                label=name,
                strip_header=strip_header,
            )
            for router in router_list
        }
        if always_on:
            self.start()

    @property
    def routers(self) -> List[NodeId]:
        return list(self._trackers)

    @property
    def active(self) -> bool:
        return any(t.active for t in self._trackers.values())

    def tracker(self, router: NodeId) -> NodeConvergenceTracker:
        if router not in self._trackers:
            raise ConfigurationError(f"Router {router!r} is not tracked by {self.name}")
        return self._trackers[router]

    def start(self) -> None:
        if self.active:
            return
        self.start_time = self._scheduler.now
        self.stop_time = None
        for tracker in self._trackers.values():
            tracker.start()
        _log.info("%s: tracking %d routers from t=%.3f", self.name, len(self._trackers), self.start_time)
        self._events.log("phase_start", phase=self.name, t=self.start_time, routers=self.routers)

    def stop(self) -> None:
        if not self.active:
            return
        for tracker in self._trackers.values():
            tracker.stop()
        self.stop_time = self._scheduler.now
        _log.info("%s: stopped at t=%.3f", self.name, self.stop_time)
        self._events.log("phase_stop", phase=self.name, t=self.stop_time)

    @property
    def route_changes(self) -> int:
        return sum(t.changes for t in self._trackers.values())

    def stabilization_instant(self) -> Optional[float]:
        if self.start_time is None:
            return None
        instant = self.start_time
        for tracker in self._trackers.values():
            if tracker.last_change_time is not None and tracker.last_change_time > instant:
                instant = tracker.last_change_time
        return instant

    def convergence_duration(self) -> Optional[float]:
        """Seconds from phase start to the last observed change (RELATIVE), or that instant itself (ABSOLUTE)."""
        instant = self.stabilization_instant()
        if instant is None:
            return None
        if self.report_mode is ReportMode.ABSOLUTE:
            return instant
        return instant - self.start_time
