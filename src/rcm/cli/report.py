from __future__ import annotations

from typing import Any, Dict, List

_PHASE_TITLES = {
    "before_down": "Before the link failure",
    "during_down": "While the link is down",
    "after_up": "After the link is restored",
    "until_down": "Network convergence",
}


def render_text(result: Dict[str, Any]) -> str:
    lines: List[str] = [f"Convergence times for protocol {result['protocol']}:"]
    for phase in result["phases"]:
        title = _PHASE_TITLES.get(phase["name"], phase["name"])
        value = phase["convergence"]
        shown = "n/a" if value is None else f"{value:g} s"
        suffix = " (absolute)" if phase["report_mode"] == "absolute" else ""
        lines.append(f"  {title}: {shown}{suffix}")
    for sample in result["flow_samples"]:
        lines.append("")
        lines.append(f"=== Flow statistics at {sample['time']:g} s ({sample['tag']}) ===")
        for m in sample["metrics"]:
            lines.extend(
                [
                    f"Flow {m['label']}",
                    f"  Tx Packets: {m['tx_packets']}",
                    f"  Rx Packets: {m['rx_packets']}",
                    f"  Lost Packets: {m['lost_packets']}",
                    f"  Packet Loss Ratio: {m['loss_ratio']:g}",
                    f"  Average Packet Size: {m['avg_packet_size']:g} bytes",
                    f"  Throughput: {m['throughput_mbps']:g} Mbps",
                    f"  Delay: {m['mean_delay']:g} s",
                    f"  Jitter: {m['mean_jitter']:g} s",
                ]
            )
    return "\n".join(lines)
