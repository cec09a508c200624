"""Command-line entrypoint for batch jobs."""

from __future__ import annotations

import argparse
import os
from pathlib import Path

from jobs.compare_rents import main as run_job
from jobs.config import PipelineConfig, config_from_env, split_cities


def _format_config(config: PipelineConfig) -> list[str]:
    year = config.fmr_year or "(latest)"
    return [
        f"target_cities: {', '.join(config.target_cities)}",
        f"max_bedrooms={config.max_bedrooms} listing_bedroom_ceiling={config.listing_bedroom_ceiling}",
        f"request_delay_seconds={config.request_delay_seconds}",
        f"market_rate_ceiling={config.market_rate_ceiling} percentile={config.market_rate_percentile}",
        f"fmr_year={year} data_dir={config.data_dir}",
        f"listing_url_template={config.listing_source.url_template}",
    ]


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--cities",
        help="Comma-separated HUD metro city names (defaults to configured targets)",
    )
    parser.add_argument("--data-dir", help="Directory for checkpoint and result files")
    parser.add_argument(
        "--log-level",
        help="Override LOG_LEVEL for this invocation (e.g. DEBUG, INFO)",
    )


def _config_from_args(args: argparse.Namespace) -> PipelineConfig:
    config = config_from_env()
    cities = split_cities(args.cities) if args.cities else None
    data_dir = Path(args.data_dir) if args.data_dir else None
    return config.with_overrides(target_cities=cities, data_dir=data_dir)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="FMR vs. market rent job runner")
    subparsers = parser.add_subparsers(dest="command", required=True)

    commands = {
        "collect": "Fetch HUD FMRs, scrape listing prices and write checkpoint files",
        "analyze": "Aggregate checkpointed listings and reconcile them against FMR",
        "run": "Run collect then analyze",
        "list-config": "Show the effective configuration",
    }
    for name, help_text in commands.items():
        _add_common_arguments(subparsers.add_parser(name, help=help_text))

    args = parser.parse_args(argv)
    if args.log_level:
        os.environ["LOG_LEVEL"] = args.log_level
    config = _config_from_args(args)

    if args.command == "list-config":
        for line in _format_config(config):
            print(line)
        return 0

    return run_job(args.command, config)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
