#!/usr/bin/env python3
"""
Plot a recorded swerve run from its CSV files.

Picks a run directory under ``results/`` (the newest one by default), echoes
its summary.txt and draws the field view, localization error and chassis
velocity figures.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from .config import TERM_BLUE, TERM_RESET
from .vision import FieldLayout
from .visualization import plot_run_summary


def _run_dirs(results_dir: Path) -> List[Path]:
    if not results_dir.exists():
        return []
    # run_YYYYMMDD_HHMMSS names sort chronologically
    return sorted(d for d in results_dir.iterdir() if d.is_dir() and d.name.startswith("run_"))


def find_latest_run(results_dir: Path) -> Path:
    """Return the newest ``run_*`` directory in results_dir.

    Raises:
        FileNotFoundError: If results_dir is missing or holds no runs.
    """
    if not results_dir.exists():
        raise FileNotFoundError(f"Results directory not found: {results_dir}")
    runs = _run_dirs(results_dir)
    if not runs:
        raise FileNotFoundError(f"No run directories found in {results_dir}")
    return runs[-1]


def list_available_runs(results_dir: Path) -> None:
    runs = _run_dirs(results_dir)
    if not runs:
        logging.info(f"No run directories found in {results_dir}")
        return
    logging.info("Available runs:")
    for i, run_dir in enumerate(runs, 1):
        marker = "" if (run_dir / "summary.txt").exists() else "  (no summary)"
        logging.info(f"  {i}. {run_dir.name}{marker}")


def print_run_summary(run_dir: Path) -> None:
    """Echo the ``key: value`` lines DataCollector wrote at the end of the run."""
    summary_path = run_dir / "summary.txt"
    if not summary_path.exists():
        logging.info(f"No summary.txt in {run_dir.name}")
        return
    logging.info(f"{TERM_BLUE}Summary for {run_dir.name}:{TERM_RESET}")
    for line in summary_path.read_text().splitlines():
        logging.info(f"  {line}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Plot a recorded swerve localization and motion control run",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m swerve_nav.plot_results                          # newest run
  python -m swerve_nav.plot_results --run run_20261019_101500
  python -m swerve_nav.plot_results --save --no-show
  python -m swerve_nav.plot_results --layout field.json      # custom tag layout
  python -m swerve_nav.plot_results --list
        """,
    )
    parser.add_argument("--run", default=None, help="Run directory name (default: newest run)")
    parser.add_argument(
        "--results-dir", default="results", help="Directory holding run_* folders (default: results)"
    )
    parser.add_argument(
        "--layout", default=None, help="AprilTag layout JSON to draw instead of the built-in field"
    )
    parser.add_argument("--save", action="store_true", help="Save PNG files into the run directory")
    parser.add_argument("--no-show", action="store_true", help="Do not open plot windows")
    parser.add_argument("--list", action="store_true", help="List available runs and exit")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Entry point for ``python -m swerve_nav.plot_results``."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    args = build_parser().parse_args(argv)
    results_dir = Path(args.results_dir)

    if args.list:
        list_available_runs(results_dir)
        return

    if args.run:
        run_dir = results_dir / args.run
        if not run_dir.is_dir():
            logging.error(f"Run directory not found: {run_dir}")
            list_available_runs(results_dir)
            sys.exit(1)
    else:
        try:
            run_dir = find_latest_run(results_dir)
        except FileNotFoundError as e:
            logging.error(str(e))
            sys.exit(1)

    layout = FieldLayout.from_json(args.layout) if args.layout else None

    print_run_summary(run_dir)
    try:
        plot_run_summary(run_dir, save_plots=args.save, show_plots=not args.no_show, layout=layout)
    except FileNotFoundError as e:
        logging.error(f"{e} (is {run_dir.name} a complete run?)")
        sys.exit(1)

    if args.save:
        logging.info(f"{TERM_BLUE}✓ Saved plots to {run_dir}{TERM_RESET}")


if __name__ == "__main__":
    main()
