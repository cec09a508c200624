"""Join FMR schedules onto observed market rates and summarize the gap."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import pandas as pd

from pipelines.model import (
    BEDROOM_SUMMARY_COLUMNS,
    GROUP_SUMMARY_COLUMNS,
    KEY_COLUMNS,
    MARKET_RATE_COLUMNS,
    MSA_LEVEL_ZIP,
    RECONCILED_COLUMNS,
)

SUMMARY_KEYS: list[str] = ["area_name", "bedrooms"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationResult:
    reconciled: pd.DataFrame
    unmatched: pd.DataFrame
    group_summary: pd.DataFrame
    bedroom_summary: pd.DataFrame


def _empty(columns) -> pd.DataFrame:
    return pd.DataFrame(columns=list(columns))


def join_market_rates(fmr: pd.DataFrame, market_rates: pd.DataFrame) -> pd.DataFrame:
    """Right-join per-zip FMR rows onto market rates.

    Only (zip code, bedrooms) pairs with a market rate survive; pairs without an
    FMR keep a missing ``fmr``.
    """
    per_zip = fmr.loc[fmr["zip_code"] != MSA_LEVEL_ZIP, ["area_name", *KEY_COLUMNS, "fmr"]]
    per_zip = per_zip.astype({"zip_code": "object", "bedrooms": "int64"})
    duplicated = per_zip.duplicated(subset=SUMMARY_KEYS + ["zip_code"], keep=False)
    if duplicated.any():
        sample = per_zip.loc[duplicated, ["area_name", *KEY_COLUMNS]].head(5).to_dict(orient="records")
        raise ValueError(f"FMR table has more than one value per area/zip/bedrooms: {sample}")

    market = market_rates[list(MARKET_RATE_COLUMNS)].astype(
        {"zip_code": "object", "bedrooms": "int64"}
    )
    return per_zip.merge(
        market,
        on=list(KEY_COLUMNS),
        how="right",
    )


def classify(joined: pd.DataFrame) -> pd.DataFrame:
    """Add ``margin_of_error`` and ``at_or_below_fmr`` to rows with a defined FMR."""
    frame = joined.copy()
    frame["fmr"] = frame["fmr"].astype("int64")
    frame["market_rate"] = frame["market_rate"].astype("int64")
    frame["margin_of_error"] = frame["market_rate"] - frame["fmr"]
    # Ties count as at-or-below.
    frame["at_or_below_fmr"] = frame["fmr"] >= frame["market_rate"]
    return frame[list(RECONCILED_COLUMNS)].reset_index(drop=True)


def summarize_groups(reconciled: pd.DataFrame) -> pd.DataFrame:
    """Count and share of above / at-or-below rows per area and bedroom count."""
    if reconciled.empty:
        return _empty(GROUP_SUMMARY_COLUMNS)

    counts = (
        reconciled.groupby(SUMMARY_KEYS + ["at_or_below_fmr"])
        .size()
        .rename("count")
        .reset_index()
    )
    totals = counts.groupby(SUMMARY_KEYS)["count"].transform("sum")
    counts["ratio"] = counts["count"] / totals
    return counts[list(GROUP_SUMMARY_COLUMNS)]


def summarize_bedrooms(reconciled: pd.DataFrame) -> pd.DataFrame:
    """Median margin for each classification and median FMR per area and bedroom count."""
    if reconciled.empty:
        return _empty(BEDROOM_SUMMARY_COLUMNS)

    above = reconciled.loc[~reconciled["at_or_below_fmr"]]
    at_or_below = reconciled.loc[reconciled["at_or_below_fmr"]]

    summary = reconciled.groupby(SUMMARY_KEYS)["fmr"].median().rename("median_fmr").to_frame()
    summary["median_margin_above"] = above.groupby(SUMMARY_KEYS)["margin_of_error"].median()
    summary["median_margin_at_or_below"] = at_or_below.groupby(SUMMARY_KEYS)["margin_of_error"].median()
    return summary.reset_index()[list(BEDROOM_SUMMARY_COLUMNS)]


def reconcile(fmr: pd.DataFrame, market_rates: pd.DataFrame) -> ReconciliationResult:
    joined = join_market_rates(fmr, market_rates)

    missing = joined["fmr"].isna()
    unmatched = joined.loc[missing, list(MARKET_RATE_COLUMNS)].reset_index(drop=True)
    if not unmatched.empty:
        logger.warning(
            "%s market rate row(s) have no FMR and are excluded from statistics: %s",
            len(unmatched),
            ", ".join(f"{row.zip_code}/{row.bedrooms}br" for row in unmatched.itertuples()),
        )

    matched = joined.loc[~missing]
    reconciled = classify(matched) if not matched.empty else _empty(RECONCILED_COLUMNS)
    logger.info(
        "Reconciled %s of %s market rate row(s) against FMR.", len(reconciled), len(market_rates)
    )

    return ReconciliationResult(
        reconciled=reconciled,
        unmatched=unmatched,
        group_summary=summarize_groups(reconciled),
        bedroom_summary=summarize_bedrooms(reconciled),
    )


__all__ = [
    "ReconciliationResult",
    "classify",
    "join_market_rates",
    "reconcile",
    "summarize_bedrooms",
    "summarize_groups",
]
