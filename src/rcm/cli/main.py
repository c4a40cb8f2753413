from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from rcm.cli.report import render_text
from rcm.cli.run import load_effective_config, run_experiment
from rcm.runtime.config import SUPPORTED_PROTOCOLS, validate_config

_log = logging.getLogger("rcm.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rcm", description="Routing convergence monitor")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="Run a convergence experiment")
    p_run.add_argument("--config", required=True)
    p_run.add_argument("--protocol", choices=SUPPORTED_PROTOCOLS, help="Override the routing protocol.")
    p_run.add_argument("--output-dir", help="Override the output directory.")
    p_run.add_argument("--link-down", type=float, help="Override the link failure instant (s).")
    p_run.add_argument("--link-up", type=float, help="Override the link recovery instant (s).")
    p_run.add_argument("--poll-interval", type=float, help="Override the routing table polling cadence (s).")
    p_run.add_argument("--sim-time", type=float, help="Override the simulation horizon (s).")
    p_run.add_argument("--report", choices=["json", "text"], default="json")

    p_validate = sub.add_parser("validate", help="Validate a config file")
    p_validate.add_argument("--config", required=True)

    p_sum = sub.add_parser("summarize", help="Summarize run results into CSV")
    p_sum.add_argument("--runs", required=True, help="Directory containing run folders")
    p_sum.add_argument("--out", required=True, help="Output CSV path")

    p_plot = sub.add_parser("plot", help="Plot per-phase convergence from a summary CSV")
    p_plot.add_argument("--in", dest="input_csv", required=True)
    p_plot.add_argument("--out", dest="out_png", required=True)

    return parser


def overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if args.protocol:
        out["protocol"] = args.protocol
    if args.output_dir:
        out["output_dir"] = args.output_dir
    timeline: Dict[str, Any] = {}
    if args.link_down is not None:
        timeline["link_down_time"] = args.link_down
    if args.link_up is not None:
        timeline["link_up_time"] = args.link_up
    if args.sim_time is not None:
        timeline["simulation_time"] = args.sim_time
    if timeline:
        out["timeline"] = timeline
    if args.poll_interval is not None:
        out["tracking"] = {"poll_interval": args.poll_interval}
    return out


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.cmd == "run":
        try:
            result = run_experiment(args.config, overrides_from_args(args))
        except ValueError as exc:
            _log.error("%s", exc)
            return 2
        if args.report == "text":
            print(render_text(result))
        else:
            print(json.dumps(result, indent=2, ensure_ascii=False, sort_keys=True))
        return 0

    if args.cmd == "validate":
        errors = validate_config(load_effective_config(args.config))
        if errors:
            print(json.dumps({"ok": False, "errors": errors}, ensure_ascii=False, indent=2))
            return 1
        print(json.dumps({"ok": True}, ensure_ascii=False, indent=2))
        return 0

    if args.cmd == "summarize":
        from rcm.eval.summarize import summarize_runs

        count = summarize_runs(args.runs, args.out)
        _log.info("summarized %d runs into %s", count, args.out)
        return 0

    if args.cmd == "plot":
        from rcm.eval.plot import plot_summary

        plot_summary(args.input_csv, args.out_png)
        return 0

    return 1


if __name__ == "__main__":
    sys.exit(main())
