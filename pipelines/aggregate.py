"""Percentile aggregation of normalized listing prices."""

from __future__ import annotations

import logging

import pandas as pd

from pipelines.model import KEY_COLUMNS, MARKET_RATE_COLUMNS

DEFAULT_PERCENTILE = 0.4
DEFAULT_BEDROOM_CEILING = 3
DEFAULT_OUTLIER_CEILING = 10_000

logger = logging.getLogger(__name__)


def filter_listings(
    listings: pd.DataFrame,
    *,
    bedroom_ceiling: int = DEFAULT_BEDROOM_CEILING,
    outlier_ceiling: int = DEFAULT_OUTLIER_CEILING,
) -> pd.DataFrame:
    """Keep listings below both ceilings (both bounds exclusive)."""
    mask = (listings["bedrooms"] < bedroom_ceiling) & (listings["market_rate"] < outlier_ceiling)
    return listings.loc[mask].copy()


def aggregate_market_rates(
    listings: pd.DataFrame,
    *,
    percentile: float = DEFAULT_PERCENTILE,
    bedroom_ceiling: int = DEFAULT_BEDROOM_CEILING,
    outlier_ceiling: int = DEFAULT_OUTLIER_CEILING,
) -> pd.DataFrame:
    """Market rate per (zip code, bedrooms): the percentile of listing prices.

    Uses linear interpolation between order statistics and rounds to whole
    dollars. A group left empty by the filters yields no row at all.
    """
    if not 0.0 <= percentile <= 1.0:
        raise ValueError(f"percentile must be within [0, 1], got {percentile}")

    filtered = filter_listings(
        listings, bedroom_ceiling=bedroom_ceiling, outlier_ceiling=outlier_ceiling
    )
    logger.info(
        "Aggregating %s of %s listing(s) after bedroom/outlier filters.",
        len(filtered),
        len(listings),
    )
    if filtered.empty:
        return pd.DataFrame(columns=list(MARKET_RATE_COLUMNS)).astype(
            {"zip_code": "object", "bedrooms": "int64", "market_rate": "int64"}
        )

    rates = (
        filtered.groupby(list(KEY_COLUMNS))["market_rate"]
        .quantile(percentile, interpolation="linear")
        .round()
        .astype("int64")
        .reset_index()
    )
    logger.info("Computed market rates for %s zip/bedroom group(s).", len(rates))
    return rates[list(MARKET_RATE_COLUMNS)]


__all__ = [
    "DEFAULT_BEDROOM_CEILING",
    "DEFAULT_OUTLIER_CEILING",
    "DEFAULT_PERCENTILE",
    "aggregate_market_rates",
    "filter_listings",
]
