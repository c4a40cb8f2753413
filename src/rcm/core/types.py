from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

NodeId = str
InterfaceIndex = int
VirtualTime = float


class TrackerState(str, Enum):
    CREATED = "created"
    ACTIVE = "active"
    STOPPED = "stopped"


class ReportMode(str, Enum):
    """How a network tracker reports its stabilization point."""

    RELATIVE = "relative"
    ABSOLUTE = "absolute"


@dataclass(frozen=True)
class RoutingStateSnapshot:
    """One router's routing table as text.

    Equality is plain text equality: two tables holding the same routes in a
    different order compare unequal and count as a change.
    """

    router: NodeId
    text: str

    @classmethod
    def from_rendered(cls, router: NodeId, rendered: str, strip_header: bool = True) -> "RoutingStateSnapshot":
        # the header line names the sampling instant
        if strip_header:
            pos = rendered.find("\n")
            if pos != -1:
                rendered = rendered[pos + 1 :]
        return cls(router=router, text=rendered)


@dataclass(frozen=True)
class LinkEndpoints:
    a: NodeId
    b: NodeId

    def directions(self) -> Tuple[Tuple[NodeId, NodeId], Tuple[NodeId, NodeId]]:
        return (self.a, self.b), (self.b, self.a)

    def label(self) -> str:
        return f"{self.a}<->{self.b}"


@dataclass(frozen=True)
class FlowRecord:
    flow_id: int
    source: str
    destination: str
    tx_packets: int = 0
    rx_packets: int = 0
    lost_packets: int = 0
    tx_bytes: int = 0
    rx_bytes: int = 0
    delay_sum: float = 0.0
    jitter_sum: float = 0.0


@dataclass(frozen=True)
class FlowMetrics:
    label: str
    flow_count: int
    tx_packets: int
    rx_packets: int
    lost_packets: int
    tx_bytes: int
    rx_bytes: int
    loss_ratio: float
    avg_packet_size: float
    throughput_mbps: float
    mean_delay: float
    mean_jitter: float

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class FlowStatsSample:
    time: VirtualTime
    tag: str
    metrics: List[FlowMetrics] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "tag": self.tag,
            "metrics": [m.as_dict() for m in self.metrics],
        }


@dataclass
class PhaseResult:
    name: str
    start: Optional[VirtualTime]
    stop: Optional[VirtualTime]
    stabilized_at: Optional[VirtualTime]
    convergence: Optional[float]
    report_mode: ReportMode

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "start": self.start,
            "stop": self.stop,
            "stabilized_at": self.stabilized_at,
            "convergence": self.convergence,
            "report_mode": self.report_mode.value,
        }


@dataclass
class ExperimentResult:
    phases: List[PhaseResult]
    flow_samples: List[FlowStatsSample]
    faults_applied: int
    route_changes: int
    end_time: VirtualTime
