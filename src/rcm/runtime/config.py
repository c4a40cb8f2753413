from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from rcm.core.errors import ConfigurationError
from rcm.core.types import LinkEndpoints, ReportMode
from rcm.utils.io import load_yaml

SUPPORTED_PROTOCOLS = ("rip", "olsr")
PHASE_LAYOUTS = ("phased", "single")
TRACKING_MODES = ("explicit", "always_on")
SAMPLE_POINTS = ("down", "up", "end")


@dataclass(frozen=True)
class TimelineConfig:
    simulation_time: float = 300.0
    link_down_time: float = 100.0
    link_up_time: float = 200.0


@dataclass(frozen=True)
class TrackingConfig:
    poll_interval: float = 0.1
    mode: str = "explicit"
    report: ReportMode = ReportMode.RELATIVE
    layout: str = "phased"
    strip_header: bool = True

    @property
    def always_on(self) -> bool:
        return self.mode == "always_on"


@dataclass(frozen=True)
class FlowConfig:
    source: Optional[str] = None
    destination: Optional[str] = None
    sample_at: Tuple[str, ...] = ("down", "up", "end")
    window_s: Optional[float] = None
    aggregate: Optional[bool] = None

    @property
    def filtered(self) -> bool:
        return self.source is not None and self.destination is not None


@dataclass(frozen=True)
class HarnessConfig:
    name: str
    protocol: str
    output_dir: str
    trace: Optional[str]
    timeline: TimelineConfig
    tracking: TrackingConfig
    flows: FlowConfig
    faults: List[LinkEndpoints] = field(default_factory=list)
    routers: List[str] = field(default_factory=list)
    links: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def observation_window(self) -> float:
        return observation_window(self.timeline, self.flows)


def observation_window(timeline: TimelineConfig, flows: FlowConfig) -> float:
    """Seconds that flow throughput is averaged over; the whole run unless set."""
    return float(flows.window_s or timeline.simulation_time)


def validate_config(cfg: Dict[str, Any]) -> list[str]:
    errors: list[str] = []

    protocol = str(cfg.get("protocol", "")).lower()
    if not protocol:
        errors.append("Missing 'protocol' config")
    elif protocol not in SUPPORTED_PROTOCOLS:
        errors.append(f"Unknown protocol: {protocol}. Available: {list(SUPPORTED_PROTOCOLS)}")

    timeline = cfg.get("timeline", {})
    if not isinstance(timeline, dict):
        errors.append("'timeline' must be a dict")
    else:
        try:
            sim = float(timeline.get("simulation_time", TimelineConfig.simulation_time))
            down = float(timeline.get("link_down_time", TimelineConfig.link_down_time))
            up = float(timeline.get("link_up_time", TimelineConfig.link_up_time))
        except (TypeError, ValueError):
            errors.append("timeline values must be numbers")
        else:
            if not 0 < down < up <= sim:
                errors.append(
                    f"timeline must satisfy 0 < link_down_time < link_up_time <= simulation_time "
                    f"(got {down}, {up}, {sim})"
                )

    tracking = cfg.get("tracking", {})
    if not isinstance(tracking, dict):
        errors.append("'tracking' must be a dict")
    else:
        try:
            if float(tracking.get("poll_interval", TrackingConfig.poll_interval)) <= 0:
                errors.append("tracking.poll_interval must be > 0")
        except (TypeError, ValueError):
            errors.append("tracking.poll_interval must be a number")
        if str(tracking.get("mode", "explicit")) not in TRACKING_MODES:
            errors.append(f"tracking.mode must be one of {list(TRACKING_MODES)}")
        if str(tracking.get("layout", "phased")) not in PHASE_LAYOUTS:
            errors.append(f"tracking.layout must be one of {list(PHASE_LAYOUTS)}")
        if str(tracking.get("report", "relative")) not in {m.value for m in ReportMode}:
            errors.append(f"tracking.report must be one of {[m.value for m in ReportMode]}")
        if not isinstance(tracking.get("strip_header", True), bool):
            errors.append("tracking.strip_header must be true or false")

    faults = cfg.get("faults", [])
    if not isinstance(faults, list):
        errors.append("'faults' must be a list of [node, peer] pairs")
    else:
        for item in faults:
            if not isinstance(item, (list, tuple)) or len(item) != 2:
                errors.append(f"fault entry {item!r} must be a [node, peer] pair")

    flows = cfg.get("flows", {})
    if not isinstance(flows, dict):
        errors.append("'flows' must be a dict")
    else:
        for key in ("source", "destination"):
            value = flows.get(key)
            if value is None:
                continue
            try:
                ipaddress.ip_address(str(value))
            except ValueError:
                errors.append(f"flows.{key} is not an IP address: {value!r}")
        if (flows.get("source") is None) != (flows.get("destination") is None):
            errors.append("flows.source and flows.destination must be given together")
        sample_at = flows.get("sample_at", [])
        if not isinstance(sample_at, list):
            errors.append(f"flows.sample_at must be a list drawn from {list(SAMPLE_POINTS)}")
        else:
            for point in sample_at:
                if point not in SAMPLE_POINTS:
                    errors.append(f"flows.sample_at entry {point!r} not in {list(SAMPLE_POINTS)}")
        window = flows.get("window_s")
        if window is not None:
            try:
                if float(window) <= 0:
                    errors.append("flows.window_s must be > 0")
            except (TypeError, ValueError):
                errors.append(f"flows.window_s must be a number, got {window!r}")
        if not isinstance(flows.get("aggregate", False), (bool, type(None))):
            errors.append("flows.aggregate must be true or false")

    return errors


def load_harness_config(cfg: Dict[str, Any], base_dir: str | Path | None = None) -> HarnessConfig:
    errors = validate_config(cfg)
    if errors:
        raise ConfigurationError("Invalid config: " + "; ".join(errors))

    protocol = str(cfg["protocol"]).lower()
    timeline_raw = dict(cfg.get("timeline", {}))
    tracking_raw = dict(cfg.get("tracking", {}))
    flows_raw = dict(cfg.get("flows", {}))

    timeline = TimelineConfig(
        simulation_time=float(timeline_raw.get("simulation_time", TimelineConfig.simulation_time)),
        link_down_time=float(timeline_raw.get("link_down_time", TimelineConfig.link_down_time)),
        link_up_time=float(timeline_raw.get("link_up_time", TimelineConfig.link_up_time)),
    )
    tracking = TrackingConfig(
        poll_interval=float(tracking_raw.get("poll_interval", TrackingConfig.poll_interval)),
        mode=str(tracking_raw.get("mode", "explicit")),
        report=ReportMode(str(tracking_raw.get("report", "relative"))),
        layout=str(tracking_raw.get("layout", "phased")),
        strip_header=bool(tracking_raw.get("strip_header", True)),
    )
    window = flows_raw.get("window_s")
    aggregate = flows_raw.get("aggregate")
    flows = FlowConfig(
        source=_opt_str(flows_raw.get("source")),
        destination=_opt_str(flows_raw.get("destination")),
        sample_at=tuple(str(p) for p in flows_raw.get("sample_at", FlowConfig.sample_at)),
        window_s=float(window) if window is not None else None,
        aggregate=aggregate,
    )

    return HarnessConfig(
        name=str(cfg.get("name", "run")),
        protocol=protocol,
        output_dir=str(cfg.get("output_dir", "results/runs")),
        trace=_resolve_trace(cfg, protocol, base_dir),
        timeline=timeline,
        tracking=tracking,
        flows=flows,
        faults=[LinkEndpoints(str(a), str(b)) for a, b in cfg.get("faults", [])],
        routers=[str(r) for r in cfg.get("routers", [])],
        links=[dict(row) for row in cfg.get("links", [])],
    )


def load_harness_config_file(path: str | Path) -> HarnessConfig:
    return load_harness_config(load_yaml(path), base_dir=Path(path).resolve().parent)


def _resolve_trace(cfg: Dict[str, Any], protocol: str, base_dir: str | Path | None) -> Optional[str]:
    traces = cfg.get("traces", {})
    raw = traces.get(protocol) if isinstance(traces, dict) else None
    raw = raw or cfg.get("trace")
    if not raw:
        return None
    path = Path(str(raw).format(protocol=protocol))
    if not path.is_absolute() and base_dir is not None:
        path = Path(base_dir) / path
    return str(path)


def _opt_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)
