"""Batch job comparing HUD Fair Market Rents with scraped market asking rents.

``collect`` runs the expensive part once (HUD fetch and listing scrape) and leaves
flat checkpoint files behind; ``analyze`` re-runs aggregation and reconciliation
from those files as often as needed.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterable

from jobs.config import PipelineConfig, config_from_env
from pipelines.aggregate import aggregate_market_rates
from pipelines.model import (
    FMR_COLUMNS,
    BedroomSummary,
    FmrRecord,
    RentKey,
    frame_to_records,
    records_to_frame,
)
from pipelines.prices import normalize_listings
from pipelines.reconcile import ReconciliationResult, reconcile
from pipelines.sources.hud_fmr import (
    fetch_area_directory,
    fetch_fmr_records,
    resolve_metro_areas,
    split_metro_level,
)
from pipelines.sources.listings import ListingCollector
from storage.db import (
    BEDROOM_SUMMARY_FILE,
    FMR_FILE,
    FMR_METRO_FILE,
    GROUP_SUMMARY_FILE,
    LISTING_PRICES_FILE,
    RECONCILED_FILE,
    UNMATCHED_FILE,
)
from storage.exports import (
    export_frame,
    read_fmr_table,
    read_listing_prices,
    write_fmr_table,
    write_listing_prices,
)

logger = logging.getLogger(__name__)

COMMANDS = ("collect", "analyze", "run")


@dataclass(frozen=True)
class StageCounts:
    """Row counts after each collection stage, for sanity-checking a run."""

    target_cities: int
    metro_areas: int
    fmr_rows: int
    metro_level_rows: int
    rent_keys: int
    listings: int
    priced_listings: int


def build_working_set(per_zip: Iterable[FmrRecord]) -> list[RentKey]:
    """Unique (zip code, bedrooms) pairs to request listings for, in stable order."""
    return sorted({record.key for record in per_zip})


async def fetch_fmr_async(config: PipelineConfig) -> tuple[int, list[FmrRecord]]:
    """Resolve the target cities and fetch every area's FMR schedule in turn."""
    directory = await fetch_area_directory()
    areas = resolve_metro_areas(directory, config.target_cities)
    records: list[FmrRecord] = []
    for area in areas:
        logger.info("Fetching FMR schedule for %s (%s)...", area.area_name, area.area_id)
        fetched = await fetch_fmr_records(
            area, year=config.fmr_year, max_bedrooms=config.max_bedrooms
        )
        if not fetched:
            logger.warning("No FMR rows fetched for %s.", area.area_name)
        records.extend(fetched)
    return len(areas), records


async def collect_async(
    config: PipelineConfig,
    *,
    collector: ListingCollector | None = None,
) -> StageCounts:
    """Fetch FMRs, scrape listings and write the checkpoint files."""

    area_count, fmr_records = await fetch_fmr_async(config)
    per_zip, metro_level = split_metro_level(fmr_records)

    data_dir = Path(config.data_dir)
    write_fmr_table(records_to_frame(per_zip, FMR_COLUMNS), data_dir / FMR_FILE)
    write_fmr_table(records_to_frame(metro_level, FMR_COLUMNS), data_dir / FMR_METRO_FILE)

    keys = build_working_set(per_zip)
    logger.info(
        "Collecting listings for %s zip/bedroom pair(s) at one request per %.1fs.",
        len(keys),
        config.request_delay_seconds,
    )
    collector = collector or ListingCollector(
        config.listing_source, delay_seconds=config.request_delay_seconds
    )
    observations = await collector.collect(keys)
    prices = normalize_listings(observations)
    write_listing_prices(prices, data_dir / LISTING_PRICES_FILE)

    counts = StageCounts(
        target_cities=len(config.target_cities),
        metro_areas=area_count,
        fmr_rows=len(per_zip),
        metro_level_rows=len(metro_level),
        rent_keys=len(keys),
        listings=len(observations),
        priced_listings=len(prices),
    )
    logger.info("Collection stage counts: %s", asdict(counts))
    return counts


def analyze(config: PipelineConfig) -> ReconciliationResult:
    """Aggregate the checkpointed listings and reconcile them against FMR."""

    data_dir = Path(config.data_dir)
    fmr = read_fmr_table(data_dir / FMR_FILE)
    listings = read_listing_prices(data_dir / LISTING_PRICES_FILE)
    logger.info("Loaded %s FMR row(s) and %s listing price(s).", len(fmr), len(listings))

    market_rates = aggregate_market_rates(
        listings,
        percentile=config.market_rate_percentile,
        bedroom_ceiling=config.listing_bedroom_ceiling,
        outlier_ceiling=config.market_rate_ceiling,
    )
    result = reconcile(fmr, market_rates)

    export_frame(result.reconciled, data_dir / RECONCILED_FILE)
    export_frame(result.unmatched, data_dir / UNMATCHED_FILE)
    export_frame(result.group_summary, data_dir / GROUP_SUMMARY_FILE)
    export_frame(result.bedroom_summary, data_dir / BEDROOM_SUMMARY_FILE)
    for summary in frame_to_records(result.bedroom_summary, BedroomSummary):
        logger.info(
            "%s %sbr: median FMR=%s, median margin above=%s, at or below=%s",
            summary.area_name,
            summary.bedrooms,
            summary.median_fmr,
            summary.median_margin_above,
            summary.median_margin_at_or_below,
        )
    logger.info(
        "Analysis wrote %s reconciled row(s), %s unmatched, %s summary row(s) to %s.",
        len(result.reconciled),
        len(result.unmatched),
        len(result.bedroom_summary),
        data_dir,
    )
    return result


def main(command: str = "run", config: PipelineConfig | None = None) -> int:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    if command not in COMMANDS:
        raise ValueError(f"Unknown command {command!r}; expected one of {', '.join(COMMANDS)}.")
    config = config or config_from_env()

    if command in ("collect", "run"):
        asyncio.run(collect_async(config))
    if command in ("analyze", "run"):
        analyze(config)
    logger.info("Job %r finished.", command)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
