"""DuckDB connection and data-directory helpers for the batch checkpoint files."""

from __future__ import annotations

import os
from pathlib import Path

import duckdb

DATA_DIR_ENV_VAR = "FMR_DATA_DIR"
DEFAULT_DATA_DIR = Path("data")

LISTING_PRICES_FILE = "listing_prices.csv"
FMR_FILE = "fmr.csv"
FMR_METRO_FILE = "fmr_metro.csv"
RECONCILED_FILE = "reconciled.csv"
UNMATCHED_FILE = "unmatched.csv"
GROUP_SUMMARY_FILE = "group_summary.csv"
BEDROOM_SUMMARY_FILE = "bedroom_summary.csv"


def get_data_dir(override: str | os.PathLike[str] | None = None) -> Path:
    """Resolve the checkpoint directory from an explicit override or environment variable."""

    if override is not None:
        return Path(override)
    env_value = os.getenv(DATA_DIR_ENV_VAR)
    if env_value:
        return Path(env_value)
    return DEFAULT_DATA_DIR


def ensure_parent_dir(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def connect() -> duckdb.DuckDBPyConnection:
    """Open an in-memory DuckDB connection used to read and write flat files."""

    return duckdb.connect(database=":memory:")


__all__ = [
    "BEDROOM_SUMMARY_FILE",
    "DATA_DIR_ENV_VAR",
    "DEFAULT_DATA_DIR",
    "FMR_FILE",
    "FMR_METRO_FILE",
    "GROUP_SUMMARY_FILE",
    "LISTING_PRICES_FILE",
    "RECONCILED_FILE",
    "UNMATCHED_FILE",
    "connect",
    "ensure_parent_dir",
    "get_data_dir",
]
