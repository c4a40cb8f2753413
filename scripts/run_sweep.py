#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from rcm.cli.run import run_experiment
from rcm.runtime.config import SUPPORTED_PROTOCOLS
from rcm.utils.io import load_yaml


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one experiment per routing protocol and compare convergence")
    parser.add_argument("--config", required=True, help="Sweep YAML naming the experiment config and protocols")
    parser.add_argument("--out", default="results/tables/sweep_summary.json")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    sweep_cfg = load_yaml(args.config)
    experiment_cfg = str(sweep_cfg["config"])
    protocols = sweep_cfg.get("protocols", list(SUPPORTED_PROTOCOLS))

    outputs = []
    for protocol in protocols:
        out = run_experiment(experiment_cfg, {"protocol": protocol})
        outputs.append(
            {
                "run_id": out["run_id"],
                "protocol": protocol,
                "convergence": {p["name"]: p["convergence"] for p in out["phases"]},
            }
        )

    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("w", encoding="utf-8") as f:
        json.dump(outputs, f, indent=2, ensure_ascii=False)


if __name__ == "__main__":
    main()
