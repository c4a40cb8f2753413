from __future__ import annotations

import argparse
import csv
from pathlib import Path

from rcm.eval.metrics import PHASE_COLUMNS


def plot_summary(input_csv: str, out_png: str) -> None:
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    with Path(input_csv).open("r", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))

    phases = [p for p in PHASE_COLUMNS if any(r.get(f"convergence_{p}") not in {"", None} for r in rows)]
    labels = [f"{r['protocol']}\n{r['run_id']}" for r in rows]
    width = 0.8 / max(len(phases), 1)

    fig, ax = plt.subplots(figsize=(10, 4))
    for i, phase in enumerate(phases):
        values = [_as_float(r.get(f"convergence_{phase}")) for r in rows]
        ax.bar([x + i * width for x in range(len(rows))], values, width=width, label=phase)
    ax.set_xticks([x + width * (len(phases) - 1) / 2 for x in range(len(rows))])
    ax.set_xticklabels(labels, rotation=75, fontsize=8)
    ax.set_ylabel("Convergence time (s)")
    ax.legend()
    fig.tight_layout()
    Path(out_png).parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out_png, dpi=150)
    plt.close(fig)


def _as_float(value: str | None) -> float:
    if value in {None, "", "None"}:
        return 0.0
    return float(value)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Plot per-phase convergence from a summary CSV")
    parser.add_argument("--in", dest="input_csv", required=True)
    parser.add_argument("--out", dest="out_png", required=True)
    args = parser.parse_args()
    plot_summary(args.input_csv, args.out_png)
