from __future__ import annotations

import csv
import json
from pathlib import Path

import pytest

from rcm.cli.main import main
from rcm.eval.metrics import compute_metrics
from rcm.eval.summarize import summarize_runs

REPO_ROOT = Path(__file__).resolve().parents[1]


def _run_payload(run_id: str, protocol: str, during: float) -> dict:
    return {
        "run_id": run_id,
        "name": "line",
        "protocol": protocol,
        "layout": "phased",
        "route_changes": 9,
        "faults_applied": 2,
        "phases": [
            {"name": "before_down", "convergence": 3.7},
            {"name": "during_down", "convergence": during},
            {"name": "after_up", "convergence": 1.3},
        ],
        "flow_samples": [
            {"time": 300.0, "tag": "end", "metrics": [{"loss_ratio": 0.4, "throughput_mbps": 0.042, "mean_delay": 0.0086, "mean_jitter": 0.0}]}
        ],
    }


def test_compute_metrics_flattens_phases_and_last_sample() -> None:
    row = compute_metrics(_run_payload("r1", "rip", 0.9))
    assert row["convergence_during_down"] == 0.9
    assert row["convergence_until_down"] is None
    assert row["loss_ratio"] == 0.4


def test_compute_metrics_skips_per_flow_samples() -> None:
    run = _run_payload("r1", "rip", 0.9)
    run["flow_samples"][0]["metrics"].append({"loss_ratio": 0.0})
    assert compute_metrics(run)["loss_ratio"] is None


def test_summarize_runs_writes_one_row_per_result(tmp_path: Path) -> None:
    for run_id, protocol, during in (("a", "rip", 0.9), ("b", "olsr", 10.3)):
        run_dir = tmp_path / "runs" / run_id
        run_dir.mkdir(parents=True)
        (run_dir / "result.json").write_text(json.dumps(_run_payload(run_id, protocol, during)), encoding="utf-8")

    out = tmp_path / "summary.csv"
    assert summarize_runs(str(tmp_path / "runs"), str(out)) == 2
    with out.open("r", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert [r["protocol"] for r in rows] == ["rip", "olsr"]
    assert rows[1]["convergence_during_down"] == "10.3"


def test_cli_validate_and_run_text_report(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config = str(REPO_ROOT / "configs" / "line.yaml")
    assert main(["validate", "--config", config]) == 0
    assert json.loads(capsys.readouterr().out) == {"ok": True}

    code = main(["run", "--config", config, "--output-dir", str(tmp_path), "--report", "text"])
    assert code == 0
    out = capsys.readouterr().out
    assert "Convergence times for protocol rip:" in out
    assert "While the link is down: 0.9 s" in out
    assert "Packet Loss Ratio: 0.4" in out


def test_cli_run_rejects_bad_timeline(tmp_path: Path) -> None:
    config = str(REPO_ROOT / "configs" / "line.yaml")
    code = main(["run", "--config", config, "--output-dir", str(tmp_path), "--link-up", "50"])
    assert code == 2


def test_cli_validate_reports_malformed_window(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config = tmp_path / "bad.yaml"
    config.write_text("protocol: rip\nflows:\n  window_s: abc\n", encoding="utf-8")
    assert main(["validate", "--config", str(config)]) == 1
    report = json.loads(capsys.readouterr().out)
    assert report["ok"] is False
    assert report["errors"] == ["flows.window_s must be a number, got 'abc'"]
