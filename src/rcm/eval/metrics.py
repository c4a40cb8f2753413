from __future__ import annotations

from typing import Any, Dict, List, Optional

PHASE_COLUMNS = ("before_down", "during_down", "after_up", "until_down")


def compute_metrics(run: Dict[str, Any]) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "run_id": run.get("run_id"),
        "name": run.get("name"),
        "protocol": run.get("protocol"),
        "layout": run.get("layout"),
        "route_changes": run.get("route_changes", 0),
        "faults_applied": run.get("faults_applied", 0),
    }
    phases = {p["name"]: p for p in run.get("phases", [])}
    for name in PHASE_COLUMNS:
        phase = phases.get(name)
        row[f"convergence_{name}"] = phase.get("convergence") if phase else None

    final = _last_metrics(run.get("flow_samples", []))
    for key in ("loss_ratio", "throughput_mbps", "mean_delay", "mean_jitter"):
        row[key] = final.get(key) if final else None
    return row


def _last_metrics(samples: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not samples:
        return None
    metrics = samples[-1].get("metrics", [])
    if len(metrics) != 1:
        # per-flow samples have no single figure to summarize
        return None
    return metrics[0]
