"""Flat-file checkpoints and result exports, written and read through DuckDB."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping

import duckdb
import pandas as pd

from pipelines.model import FMR_COLUMNS, LISTING_PRICE_COLUMNS
from storage.db import connect, ensure_parent_dir

LISTING_PRICE_TYPES: Mapping[str, str] = {
    "zip_code": "VARCHAR",
    "bedrooms": "INTEGER",
    "market_rate": "INTEGER",
}

FMR_TYPES: Mapping[str, str] = {
    "area_name": "VARCHAR",
    "zip_code": "VARCHAR",
    "bedrooms": "INTEGER",
    "fmr": "INTEGER",
}

_FRAME_VIEW = "frame_to_export"

logger = logging.getLogger(__name__)


def _quote_path(path: Path) -> str:
    return str(path).replace("'", "''")


def _copy_frame(
    conn: duckdb.DuckDBPyConnection,
    frame: pd.DataFrame,
    destination: Path,
    *,
    select: str = "*",
    options: str = "FORMAT CSV, HEADER TRUE",
) -> Path:
    ensure_parent_dir(destination)
    conn.register(_FRAME_VIEW, frame)
    try:
        conn.execute(
            f"COPY (SELECT {select} FROM {_FRAME_VIEW}) TO '{_quote_path(destination)}' ({options})"
        )
    finally:
        conn.unregister(_FRAME_VIEW)
    return destination


def _typed_select(types: Mapping[str, str]) -> str:
    return ", ".join(f"CAST({column} AS {sql_type}) AS {column}" for column, sql_type in types.items())


def _write_typed_csv(frame: pd.DataFrame, destination: str | Path, types: Mapping[str, str]) -> Path:
    missing = set(types) - set(frame.columns)
    if missing:
        raise ValueError(f"Frame is missing column(s): {', '.join(sorted(missing))}")
    typed = frame[list(types)].astype(
        {
            column: "int64" if sql_type == "INTEGER" else "string"
            for column, sql_type in types.items()
        }
    )
    conn = connect()
    try:
        return _copy_frame(conn, typed, Path(destination), select=_typed_select(types))
    finally:
        conn.close()


def _read_typed_csv(source: str | Path, types: Mapping[str, str]) -> pd.DataFrame:
    path = Path(source)
    if not path.exists():
        raise FileNotFoundError(f"Checkpoint file not found: {path}")
    columns = ", ".join(f"'{column}': '{sql_type}'" for column, sql_type in types.items())
    conn = connect()
    try:
        frame = conn.execute(
            f"SELECT * FROM read_csv('{_quote_path(path)}', header = true, columns = {{{columns}}})"
        ).df()
    finally:
        conn.close()
    cleaned = frame.dropna()
    dropped = len(frame) - len(cleaned)
    if dropped:
        logger.warning("Dropped %s row(s) with missing fields from %s.", dropped, path)
    return cleaned.astype(
        {column: "int64" for column, sql_type in types.items() if sql_type == "INTEGER"}
    )


def write_listing_prices(frame: pd.DataFrame, destination: str | Path) -> Path:
    """Write the ``zip_code, bedrooms, market_rate`` interchange file."""
    return _write_typed_csv(frame, destination, LISTING_PRICE_TYPES)


def read_listing_prices(source: str | Path) -> pd.DataFrame:
    """Read the interchange file back; zip codes keep their leading zeros."""
    frame = _read_typed_csv(source, LISTING_PRICE_TYPES)
    return frame[list(LISTING_PRICE_COLUMNS)]


def write_fmr_table(frame: pd.DataFrame, destination: str | Path) -> Path:
    return _write_typed_csv(frame, destination, FMR_TYPES)


def read_fmr_table(source: str | Path) -> pd.DataFrame:
    frame = _read_typed_csv(source, FMR_TYPES)
    return frame[list(FMR_COLUMNS)]


def export_frame(frame: pd.DataFrame, destination: str | Path, *, fmt: str = "csv") -> Path:
    """Export a result table to CSV or Parquet."""

    fmt = fmt.lower()
    if fmt == "csv":
        options = "FORMAT CSV, HEADER TRUE"
    elif fmt == "parquet":
        options = "FORMAT PARQUET"
    else:
        raise ValueError(f"Unsupported export format '{fmt}'.")
    conn = connect()
    try:
        return _copy_frame(conn, frame, Path(destination), options=options)
    finally:
        conn.close()


__all__ = [
    "FMR_TYPES",
    "LISTING_PRICE_TYPES",
    "export_frame",
    "read_fmr_table",
    "read_listing_prices",
    "write_fmr_table",
    "write_listing_prices",
]
