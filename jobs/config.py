"""Configuration for the FMR vs. market rent comparison job."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

from dotenv import load_dotenv

from pipelines.aggregate import DEFAULT_BEDROOM_CEILING, DEFAULT_OUTLIER_CEILING, DEFAULT_PERCENTILE
from pipelines.model import MAX_BEDROOM_COUNT
from pipelines.sources.listings import (
    DEFAULT_LISTING_SOURCE,
    DEFAULT_REQUEST_DELAY_SECONDS,
    ListingSource,
)
from storage.db import get_data_dir

# City portion of the HUD metro area names, matched exactly.
TARGET_CITIES: tuple[str, ...] = (
    "Salt Lake City",
    "Phoenix-Mesa-Chandler",
    "Austin-Round Rock-San Marcos",
    "Seattle-Bellevue",
)


@dataclass(frozen=True)
class PipelineConfig:
    """Everything a run needs; passed explicitly into each stage."""

    target_cities: tuple[str, ...] = TARGET_CITIES
    max_bedrooms: int = 3
    listing_bedroom_ceiling: int = DEFAULT_BEDROOM_CEILING
    request_delay_seconds: float = DEFAULT_REQUEST_DELAY_SECONDS
    market_rate_ceiling: int = DEFAULT_OUTLIER_CEILING
    market_rate_percentile: float = DEFAULT_PERCENTILE
    fmr_year: int | None = None
    data_dir: Path = field(default_factory=get_data_dir)
    listing_source: ListingSource = DEFAULT_LISTING_SOURCE

    def __post_init__(self) -> None:
        if not 0 <= self.max_bedrooms <= MAX_BEDROOM_COUNT:
            raise ValueError(f"max_bedrooms must be between 0 and {MAX_BEDROOM_COUNT}.")
        if self.request_delay_seconds < 0:
            raise ValueError("request_delay_seconds must be >= 0.")
        if self.market_rate_ceiling <= 0:
            raise ValueError("market_rate_ceiling must be positive.")
        if not 0.0 <= self.market_rate_percentile <= 1.0:
            raise ValueError("market_rate_percentile must be within [0, 1].")

    def with_overrides(self, **changes) -> "PipelineConfig":
        return replace(self, **{key: value for key, value in changes.items() if value is not None})


def split_cities(raw: str) -> tuple[str, ...]:
    return tuple(city.strip() for city in raw.split(",") if city.strip())


def config_from_env() -> PipelineConfig:
    """Build a config from defaults overridden by environment variables (and ``.env``)."""

    load_dotenv()
    overrides: dict[str, object] = {}

    if cities := os.getenv("FMR_TARGET_CITIES"):
        overrides["target_cities"] = split_cities(cities)
    if max_bedrooms := os.getenv("FMR_MAX_BEDROOMS"):
        overrides["max_bedrooms"] = int(max_bedrooms)
    if delay := os.getenv("LISTING_REQUEST_DELAY"):
        overrides["request_delay_seconds"] = float(delay)
    if ceiling := os.getenv("MARKET_RATE_CEILING"):
        overrides["market_rate_ceiling"] = int(ceiling)
    if percentile := os.getenv("MARKET_RATE_PERCENTILE"):
        overrides["market_rate_percentile"] = float(percentile)
    if year := os.getenv("HUD_FMR_YEAR"):
        overrides["fmr_year"] = int(year)
    if template := os.getenv("LISTING_URL_TEMPLATE"):
        overrides["listing_source"] = replace(DEFAULT_LISTING_SOURCE, url_template=template)

    return PipelineConfig(data_dir=get_data_dir(), **overrides)


__all__ = ["PipelineConfig", "TARGET_CITIES", "config_from_env", "split_cities"]
