from __future__ import annotations

import bisect
import logging
from pathlib import Path
from typing import Any, Dict, List, Tuple

from rcm.backends.base import Backend
from rcm.core.collaborators import FlowMonitor, InterfaceControl, RoutingStateSource
from rcm.core.errors import ConfigurationError
from rcm.core.experiment import ConvergenceExperiment, check_topology
from rcm.core.faults import LinkInterfaceMap
from rcm.core.logging import JsonlLogger
from rcm.core.scheduler import VirtualTimeScheduler
from rcm.core.types import FlowRecord, InterfaceIndex, NodeId
from rcm.runtime.config import load_harness_config
from rcm.utils.io import dump_json, ensure_dir, load_yaml, now_tag

_log = logging.getLogger("rcm.replay")

_COUNTERS = (
    "tx_packets",
    "rx_packets",
    "lost_packets",
    "tx_bytes",
    "rx_bytes",
    "delay_sum",
    "jitter_sum",
)


class ReplayNetwork(RoutingStateSource, InterfaceControl, FlowMonitor):
    """Serves a recorded network trace on the virtual clock.

    Routing tables and flow counters are looked up as "latest entry at or
    before now". Interface up/down calls are recorded but do not alter the
    trace, which already contains the network's reaction.
    """

    def __init__(self, trace: Dict[str, Any], scheduler: VirtualTimeScheduler) -> None:
        self._scheduler = scheduler
        self._tables: Dict[NodeId, Tuple[List[float], List[str]]] = {}
        for router, entries in dict(trace.get("routing", {})).items():
            rows = sorted(((float(e["at"]), str(e["table"])) for e in entries or []), key=lambda r: r[0])
            self._tables[str(router)] = ([r[0] for r in rows], [r[1] for r in rows])

        self._flows: List[Tuple[Dict[str, Any], List[float], List[Dict[str, Any]]]] = []
        for flow in trace.get("flows", []):
            samples = sorted((dict(s) for s in flow.get("samples", [])), key=lambda s: float(s["at"]))
            meta = {
                "flow_id": int(flow["flow_id"]),
                "source": str(flow["source"]),
                "destination": str(flow["destination"]),
            }
            self._flows.append((meta, [float(s["at"]) for s in samples], samples))

        self._iface_up: Dict[Tuple[NodeId, InterfaceIndex], bool] = {}
        self.interface_events: List[Dict[str, Any]] = []
        self.loss_checks = 0

    @classmethod
    def from_file(cls, path: str | Path, scheduler: VirtualTimeScheduler) -> "ReplayNetwork":
        return cls(load_yaml(path), scheduler)

    def has_routing(self, router: NodeId) -> bool:
        return router in self._tables

    def routing_table_text(self, router: NodeId) -> str:
        if router not in self._tables:
            raise ConfigurationError(f"Trace has no routing table for {router!r}")
        times, tables = self._tables[router]
        idx = bisect.bisect_right(times, self._scheduler.now) - 1
        body = tables[idx] if idx >= 0 else ""
        return f"Node: {router}, Time: +{self._scheduler.now:.3f}s\n{body}"

    def set_interface_up(self, router: NodeId, interface: InterfaceIndex) -> None:
        self._set_interface(router, interface, True)

    def set_interface_down(self, router: NodeId, interface: InterfaceIndex) -> None:
        self._set_interface(router, interface, False)

    def is_interface_up(self, router: NodeId, interface: InterfaceIndex) -> bool:
        return self._iface_up.get((router, interface), True)

    def check_for_lost_packets(self) -> None:
        self.loss_checks += 1

    def flow_stats(self) -> List[FlowRecord]:
        now = self._scheduler.now
        out: List[FlowRecord] = []
        for meta, times, samples in self._flows:
            idx = bisect.bisect_right(times, now) - 1
            counters = {k: samples[idx].get(k, 0) for k in _COUNTERS} if idx >= 0 else {}
            out.append(
                FlowRecord(
                    flow_id=meta["flow_id"],
                    source=meta["source"],
                    destination=meta["destination"],
                    tx_packets=int(counters.get("tx_packets", 0)),
                    rx_packets=int(counters.get("rx_packets", 0)),
                    lost_packets=int(counters.get("lost_packets", 0)),
                    tx_bytes=int(counters.get("tx_bytes", 0)),
                    rx_bytes=int(counters.get("rx_bytes", 0)),
                    delay_sum=float(counters.get("delay_sum", 0.0)),
                    jitter_sum=float(counters.get("jitter_sum", 0.0)),
                )
            )
        return out

    def _set_interface(self, router: NodeId, interface: InterfaceIndex, up: bool) -> None:
        self._iface_up[(router, int(interface))] = up
        self.interface_events.append(
            {"t": self._scheduler.now, "router": router, "interface": int(interface), "up": up}
        )
        _log.debug("interface %s/%s -> %s", router, interface, "up" if up else "down")


class ReplayBackend(Backend):
    def run(self, config: Dict[str, Any]) -> Dict[str, Any]:
        cfg = load_harness_config(config, base_dir=config.get("base_dir"))
        if not cfg.trace:
            raise ConfigurationError(f"No trace configured for protocol {cfg.protocol!r}")
        if not Path(cfg.trace).exists():
            raise ConfigurationError(f"Trace file not found: {cfg.trace}")

        trace = load_yaml(cfg.trace)
        scheduler = VirtualTimeScheduler()
        network = ReplayNetwork(trace, scheduler)
        link_map = LinkInterfaceMap.from_links(cfg.links or trace.get("links", []))
        routers = cfg.routers or [str(r) for r in trace.get("routers", [])]
        check_topology(network, link_map, routers, cfg.faults)

        output_dir = ensure_dir(cfg.output_dir)
        run_id = f"{cfg.name}_{cfg.protocol}_{now_tag()}"
        run_dir = ensure_dir(output_dir / run_id)
        events = JsonlLogger(run_dir / "events.jsonl")

        try:
            experiment = ConvergenceExperiment(
                scheduler=scheduler,
                routing=network,
                interfaces=network,
                monitor=network,
                link_map=link_map,
                routers=routers,
                timeline=cfg.timeline,
                tracking=cfg.tracking,
                flows=cfg.flows,
                faults=cfg.faults,
                events=events,
            )
            result = experiment.run()
        finally:
            events.close()

        payload = {
            "run_id": run_id,
            "name": cfg.name,
            "protocol": cfg.protocol,
            "trace": cfg.trace,
            "routers": routers,
            "layout": cfg.tracking.layout,
            "tracking_mode": cfg.tracking.mode,
            "poll_interval": cfg.tracking.poll_interval,
            "timeline": dict(cfg.timeline.__dict__),
            "phases": [p.as_dict() for p in result.phases],
            "flow_samples": [s.as_dict() for s in result.flow_samples],
            "faults": [f.label() for f in cfg.faults],
            "faults_applied": result.faults_applied,
            "route_changes": result.route_changes,
            "interface_events": network.interface_events,
            "end_time": result.end_time,
            "run_dir": str(run_dir),
        }
        dump_json(run_dir / "result.json", payload)
        dump_json(run_dir / "config.effective.json", {k: v for k, v in config.items() if k != "base_dir"})
        _log.info("run %s written to %s", run_id, run_dir)
        return payload
