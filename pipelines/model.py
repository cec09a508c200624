"""Canonical data model shared by the FMR and market-listing pipelines."""

from __future__ import annotations

from typing import Iterable, NamedTuple, Optional, Sequence, TypeVar

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field


class RentKey(NamedTuple):
    """Composite key every join and group-by in the pipeline is keyed on."""

    zip_code: str
    bedrooms: int


KEY_COLUMNS: tuple[str, ...] = RentKey._fields

# HUD labels the metro-wide schedule with this value in place of a zip code.
MSA_LEVEL_ZIP = "MSA level"

# Canonical bedroom label -> bedroom count, in schedule order.
BEDROOM_CATEGORIES: tuple[tuple[str, int], ...] = (
    ("studio", 0),
    ("one_bedroom", 1),
    ("two_bedroom", 2),
    ("three_bedroom", 3),
    ("four_bedroom", 4),
)
BEDROOM_LABELS: tuple[str, ...] = tuple(label for label, _ in BEDROOM_CATEGORIES)
MAX_BEDROOM_COUNT = BEDROOM_CATEGORIES[-1][1]


class UnknownBedroomCategory(ValueError):
    """Raised when a bedroom label is not part of the FMR schedule."""


def bedroom_count(label: str) -> int:
    for name, count in BEDROOM_CATEGORIES:
        if name == label:
            return count
    raise UnknownBedroomCategory(f"Unknown bedroom category {label!r}")


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)


class MetroArea(_Record):
    """A metro area resolved from the HUD area directory."""

    area_id: str = Field(..., description="Opaque HUD area code (e.g. 'METRO12420M12420').")
    area_name: str = Field(..., description="City portion of the HUD display name.")
    state: str = Field(..., description="Two-letter state code parsed from the display name.")
    qualifier: str = Field(default="", description="Trailing qualifier such as 'MSA' or 'HUD Metro FMR Area'.")
    display_name: str = Field(default="", description="Unparsed HUD display name.")


class FmrRecord(_Record):
    """One Fair Market Rent value for a zip code (or the metro) and bedroom count."""

    area_name: str
    zip_code: str
    bedrooms: int = Field(..., ge=0, le=MAX_BEDROOM_COUNT)
    fmr: int = Field(..., ge=0, description="Whole-dollar monthly rent.")

    @property
    def is_metro_level(self) -> bool:
        return self.zip_code == MSA_LEVEL_ZIP

    @property
    def key(self) -> RentKey:
        return RentKey(self.zip_code, self.bedrooms)


class ListingObservation(_Record):
    """Raw asking price scraped for a requested zip code and bedroom count."""

    zip_code: str
    bedrooms: int = Field(..., ge=0, le=MAX_BEDROOM_COUNT)
    raw_price: str


class MarketRateRecord(_Record):
    zip_code: str
    bedrooms: int = Field(..., ge=0, le=MAX_BEDROOM_COUNT)
    market_rate: int


class ReconciledRecord(_Record):
    area_name: str
    zip_code: str
    bedrooms: int
    fmr: int
    market_rate: int
    margin_of_error: int = Field(..., description="market_rate - fmr")
    at_or_below_fmr: bool


class GroupSummary(_Record):
    area_name: str
    bedrooms: int
    at_or_below_fmr: bool
    count: int = Field(..., ge=0)
    ratio: float = Field(..., ge=0.0, le=1.0)


class BedroomSummary(_Record):
    """Headline numbers for one area and bedroom count."""

    area_name: str
    bedrooms: int
    median_margin_above: Optional[float] = None
    median_margin_at_or_below: Optional[float] = None
    median_fmr: Optional[float] = None


FMR_COLUMNS: tuple[str, ...] = ("area_name", *KEY_COLUMNS, "fmr")
LISTING_PRICE_COLUMNS: tuple[str, ...] = (*KEY_COLUMNS, "market_rate")
MARKET_RATE_COLUMNS: tuple[str, ...] = tuple(MarketRateRecord.model_fields)
RECONCILED_COLUMNS: tuple[str, ...] = tuple(ReconciledRecord.model_fields)
GROUP_SUMMARY_COLUMNS: tuple[str, ...] = tuple(GroupSummary.model_fields)
BEDROOM_SUMMARY_COLUMNS: tuple[str, ...] = tuple(BedroomSummary.model_fields)

ModelT = TypeVar("ModelT", bound=BaseModel)


def records_to_frame(records: Iterable[BaseModel], columns: Sequence[str]) -> pd.DataFrame:
    """Build a table from model instances, keeping ``columns`` even when empty."""

    rows = [record.model_dump(include=set(columns)) for record in records]
    return pd.DataFrame(rows, columns=list(columns))


def frame_to_records(frame: pd.DataFrame, model: type[ModelT]) -> list[ModelT]:
    records: list[ModelT] = []
    for row in frame.to_dict(orient="records"):
        cleaned = {key: (None if pd.isna(value) else value) for key, value in row.items()}
        records.append(model(**cleaned))
    return records


__all__ = [
    "BEDROOM_CATEGORIES",
    "BEDROOM_LABELS",
    "BEDROOM_SUMMARY_COLUMNS",
    "BedroomSummary",
    "FMR_COLUMNS",
    "FmrRecord",
    "GROUP_SUMMARY_COLUMNS",
    "GroupSummary",
    "KEY_COLUMNS",
    "LISTING_PRICE_COLUMNS",
    "ListingObservation",
    "MSA_LEVEL_ZIP",
    "MARKET_RATE_COLUMNS",
    "MarketRateRecord",
    "MetroArea",
    "RECONCILED_COLUMNS",
    "ReconciledRecord",
    "RentKey",
    "UnknownBedroomCategory",
    "bedroom_count",
    "frame_to_records",
    "records_to_frame",
]
