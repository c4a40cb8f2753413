from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from rcm.core.collaborators import FlowMonitor
from rcm.core.types import FlowMetrics, FlowRecord, FlowStatsSample

_log = logging.getLogger("rcm.flowstats")


Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address, str]


def _address(value: str) -> Address:
    try:
        return ipaddress.ip_address(value)
    except ValueError:
        return value


@dataclass(frozen=True)
class FlowFilter:
    """Selects flows by source and destination address, compared as IP values."""

    source: str
    destination: str

    def matches(self, record: FlowRecord) -> bool:
        return (
            _address(record.source) == _address(self.source)
            and _address(record.destination) == _address(self.destination)
        )


def _ratio(num: float, den: float) -> float:
    return num / den if den > 0 else 0.0


def derive_metrics(records: Iterable[FlowRecord], window_s: float, label: str) -> FlowMetrics:
    """Sum the counters of ``records`` and apply the flow formulas to the totals."""
    tx = rx = lost = tx_bytes = rx_bytes = count = 0
    delay_sum = jitter_sum = 0.0
    for rec in records:
        count += 1
        tx += rec.tx_packets
        rx += rec.rx_packets
        lost += rec.lost_packets
        tx_bytes += rec.tx_bytes
        rx_bytes += rec.rx_bytes
        delay_sum += rec.delay_sum
        jitter_sum += rec.jitter_sum
    return FlowMetrics(
        label=label,
        flow_count=count,
        tx_packets=tx,
        rx_packets=rx,
        lost_packets=lost,
        tx_bytes=tx_bytes,
        rx_bytes=rx_bytes,
        loss_ratio=_ratio(lost, tx),
        avg_packet_size=_ratio(tx_bytes, tx),
        throughput_mbps=_ratio(rx_bytes * 8.0, window_s) / 1e6,
        mean_delay=_ratio(delay_sum, rx),
        mean_jitter=_ratio(jitter_sum, rx - 1),
    )


class FlowStatsAggregator:
    """Turns cumulative flow counters into loss/size/throughput/delay/jitter figures."""

    def __init__(self, window_s: float) -> None:
        if window_s <= 0:
            raise ValueError(f"Observation window must be > 0 s, got {window_s!r}")
        self.window_s = float(window_s)

    def sample(
        self,
        monitor: FlowMonitor,
        flow_filter: Optional[FlowFilter] = None,
        aggregate: Optional[bool] = None,
        time: float = 0.0,
        tag: str = "",
    ) -> FlowStatsSample:
        if aggregate is None:
            aggregate = flow_filter is None
        monitor.check_for_lost_packets()
        records = sorted(monitor.flow_stats(), key=lambda r: r.flow_id)
        if flow_filter is not None:
            records = [r for r in records if flow_filter.matches(r)]
            if not records:
                _log.warning("no flow matches %s -> %s", flow_filter.source, flow_filter.destination)

        metrics: List[FlowMetrics]
        if aggregate:
            metrics = [derive_metrics(records, self.window_s, label="all")]
        else:
            metrics = [
                derive_metrics([r], self.window_s, label=f"{r.flow_id} ({r.source} -> {r.destination})")
                for r in records
            ]
        return FlowStatsSample(time=time, tag=tag, metrics=metrics)

