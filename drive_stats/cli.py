#!/usr/bin/env python3
"""
Aggregate daily drive snapshot CSVs into one model/serial table.

Usage:
    drive-stats data/drive_stats_2023 out/drive_stats.csv
    drive-stats data/2023-01-01.csv out/drive_stats.csv --workers 4
    drive-stats data/ out/drive_stats.csv --config config/custom.yaml --no-merge

The script:
1. Loads configuration from config/drive_stats.yaml (or custom config)
2. Parses every CSV under the input path with a fixed pool of worker threads
3. Merges with an existing output file (unless --no-merge) and writes the result

Exit status is non-zero only for configuration errors; skipped rows and files are
reported but expected in real-world data.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import polars as pl

from drive_stats.config import (
    CAPACITY_POLICIES,
    AggregationSettings,
    default_config_path,
    load_config,
    settings_from_config,
)
from drive_stats.ingest import parse_raw_stats, rules_from_settings
from drive_stats.persisted import (
    UnsupportedOutputFormat,
    check_existing_output,
    check_output_path,
    write_parsed_stats,
)
from drive_stats.work_queue import iter_candidate_paths

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class CliArgs:
    """Parsed CLI arguments for an aggregation run."""

    input: Path
    output: Path
    config: Path | None
    workers: int | None
    merge: bool
    capacity_policy: str | None
    log_level: str


def _parse_args(argv: Sequence[str] | None = None) -> CliArgs:
    parser = argparse.ArgumentParser(
        prog="drive-stats",
        description="Aggregate daily drive snapshot CSVs by model and serial number",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("input", type=Path, help="Snapshot CSV file or directory tree of CSV files")
    parser.add_argument("output", type=Path, help="Aggregated CSV output path")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config file (default: config/drive_stats.yaml)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker threads (default: from config, else CPU count)",
    )
    parser.add_argument(
        "--no-merge",
        action="store_true",
        help="Overwrite the output instead of merging with its existing content",
    )
    parser.add_argument(
        "--capacity-policy",
        choices=CAPACITY_POLICIES,
        default=None,
        help="How model capacity updates combine (default: from config)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    ns = parser.parse_args(argv)
    if ns.workers is not None and ns.workers < 1:
        parser.error("--workers must be positive")

    return CliArgs(
        input=ns.input,
        output=ns.output,
        config=ns.config,
        workers=ns.workers,
        merge=not ns.no_merge,
        capacity_policy=ns.capacity_policy,
        log_level=ns.log_level,
    )


def _load_settings(args: CliArgs) -> AggregationSettings:
    config: dict[str, Any]
    if args.config is None and not default_config_path().exists():
        # Installed without the repo config directory: built-in defaults
        config = {}
    else:
        config = load_config(args.config)

    # CLI overrides
    if args.workers is not None:
        config["workers"] = args.workers
    if args.capacity_policy is not None:
        config["capacity"] = {**(config.get("capacity") or {}), "policy": args.capacity_policy}

    return settings_from_config(config)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)

    logger.info("Input: %s", args.input)
    logger.info("Output: %s", args.output)

    try:
        settings = _load_settings(args)
        check_output_path(args.output)
        if args.merge:
            check_existing_output(args.output, settings.date_range)
        paths = iter_candidate_paths(args.input)
    except (FileNotFoundError, UnsupportedOutputFormat, ValueError) as e:
        logger.error("%s", e)
        return 1

    workers = settings.resolved_workers()
    result = parse_raw_stats(
        paths,
        rules_from_settings(settings),
        workers=workers,
        policy=settings.capacity_policy,
        extension=settings.extension,
    )
    logger.info("Finished: %d seconds", result.elapsed_ms // 1000)

    try:
        table = write_parsed_stats(result.table, args.output, merge=args.merge, policy=settings.capacity_policy)
    except (OSError, ValueError, pl.exceptions.PolarsError) as e:
        logger.error("Could not write %s: %s", args.output, e)
        return 1

    run_summary = {
        "input": str(args.input),
        "output": str(args.output),
        "workers": workers,
        "merge": args.merge,
        "capacity_policy": settings.capacity_policy,
        "models": len(table.models),
        "drives": table.drive_count(),
        "max_failure_count": table.max_failure_count,
        "elapsed_ms": result.elapsed_ms,
        **{k: v for k, v in dataclasses.asdict(result.report).items() if k != "failures"},
    }
    # Operator-friendly stdout summary; the log carries every skipped row/file.
    print(json.dumps(run_summary, indent=2, sort_keys=True))
    if result.report.failures:
        print("Sample failures:")
        for r in result.report.failures:
            print(json.dumps(r, ensure_ascii=False))

    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
