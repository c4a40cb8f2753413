from __future__ import annotations

import logging
from typing import Iterable, List

from rcm.core.collaborators import FlowMonitor, InterfaceControl, RoutingStateSource
from rcm.core.convergence import NetworkConvergenceTracker
from rcm.core.errors import ConfigurationError
from rcm.core.faults import LinkFaultInjector, LinkInterfaceMap
from rcm.core.logging import JsonlLogger
from rcm.core.phases import PhaseScheduler
from rcm.core.scheduler import VirtualTimeScheduler
from rcm.core.types import ExperimentResult, FlowStatsSample, LinkEndpoints, NodeId
from rcm.eval.flowstats import FlowFilter, FlowStatsAggregator
from rcm.runtime.config import FlowConfig, TimelineConfig, TrackingConfig, observation_window

_log = logging.getLogger("rcm.experiment")

PHASED_NAMES = ("before_down", "during_down", "after_up")
SINGLE_NAMES = ("until_down",)


def check_topology(
    routing: RoutingStateSource,
    link_map: LinkInterfaceMap,
    routers: Iterable[NodeId],
    faults: Iterable[LinkEndpoints] = (),
) -> None:
    """Raise ConfigurationError unless every router routes and every fault link is mapped."""
    routers = list(routers)
    if not routers:
        raise ConfigurationError("No routers to monitor")
    missing = [r for r in routers if not routing.has_routing(r)]
    if missing:
        raise ConfigurationError(f"Routers without routing facility: {missing}")
    for link in faults:
        link_map.require(link)


class ConvergenceExperiment:
    """Wires trackers, fault injection and flow sampling onto one virtual timeline.

    Timeline for the ``phased`` layout, with D/U the down/up instants::

        0 ........ D ........ U ........ end
        | before_down | during_down | after_up |

    At D and U the links change first, flows are sampled next, and only then
    does the finishing phase stop and the next one start.
    """

    def __init__(
        self,
        scheduler: VirtualTimeScheduler,
        routing: RoutingStateSource,
        interfaces: InterfaceControl,
        monitor: FlowMonitor,
        link_map: LinkInterfaceMap,
        routers: Iterable[NodeId],
        timeline: TimelineConfig,
        tracking: TrackingConfig,
        flows: FlowConfig,
        faults: Iterable[LinkEndpoints] = (),
        events: JsonlLogger | None = None,
    ) -> None:
        self.scheduler = scheduler
        self.routing = routing
        self.monitor = monitor
        self.routers = list(routers)
        self.timeline = timeline
        self.tracking = tracking
        self.flows = flows
        self.faults = list(faults)
        self.link_map = link_map
        self.events = events or JsonlLogger(path=None)
        self.injector = LinkFaultInjector(interfaces, link_map, scheduler=scheduler, events=self.events)
        self.phases = PhaseScheduler(scheduler)
        self.aggregator = FlowStatsAggregator(observation_window(timeline, flows))
        self.flow_filter = FlowFilter(flows.source, flows.destination) if flows.filtered else None
        self.flow_samples: List[FlowStatsSample] = []
        self._trackers: List[NetworkConvergenceTracker] = []
        self._ready = False

    def setup(self) -> None:
        if self._ready:
            return
        self._check_topology()
        t = self.timeline

        for link in self.faults:
            self.phases.schedule_at(t.link_down_time, self.injector.tear_down, link)
            self.phases.schedule_at(t.link_up_time, self.injector.restore, link)

        instants = {"down": t.link_down_time, "up": t.link_up_time, "end": t.simulation_time}
        for point in sorted(set(self.flows.sample_at), key=lambda p: instants[p]):
            self.phases.schedule_at(instants[point], self._sample_flows, point)

        if self.tracking.layout == "single":
            names, boundaries = SINGLE_NAMES, (0.0, t.link_down_time)
        else:
            names, boundaries = PHASED_NAMES, (0.0, t.link_down_time, t.link_up_time, t.simulation_time)
        self.phases.plan(
            names,
            boundaries,
            self._make_tracker,
            report_mode=self.tracking.report,
            construct_at_start=self.tracking.always_on,
        )
        self._ready = True
        _log.info(
            "experiment ready: routers=%s faults=%s layout=%s mode=%s",
            self.routers,
            [f.label() for f in self.faults],
            self.tracking.layout,
            self.tracking.mode,
        )

    def run(self) -> ExperimentResult:
        self.setup()
        end = self.scheduler.run(until=self.timeline.simulation_time)
        results = self.phases.results()
        for phase in results:
            _log.info("phase %s: convergence=%s (%s)", phase.name, phase.convergence, phase.report_mode.value)
        return ExperimentResult(
            phases=results,
            flow_samples=list(self.flow_samples),
            faults_applied=self.injector.applied,
            route_changes=sum(tr.route_changes for tr in self._trackers),
            end_time=end,
        )

    def _check_topology(self) -> None:
        check_topology(self.routing, self.link_map, self.routers, self.faults)

    def _make_tracker(self, name: str) -> NetworkConvergenceTracker:
        tracker = NetworkConvergenceTracker(
            self.routers,
            self.routing,
            self.scheduler,
            poll_interval=self.tracking.poll_interval,
            report_mode=self.tracking.report,
            always_on=self.tracking.always_on,
            events=self.events,
            name=name,
            strip_header=self.tracking.strip_header,
        )
        self._trackers.append(tracker)
        return tracker

    def _sample_flows(self, tag: str) -> None:
        sample = self.aggregator.sample(
            self.monitor,
            flow_filter=self.flow_filter,
            aggregate=self.flows.aggregate,
            time=self.scheduler.now,
            tag=tag,
        )
        self.flow_samples.append(sample)
        self.events.log("flow_sample", **sample.as_dict())
