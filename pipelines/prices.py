"""Conversion of scraped asking-price text into whole-dollar monthly rents."""

from __future__ import annotations

import logging
import re
from typing import Iterable

import pandas as pd

from pipelines.model import LISTING_PRICE_COLUMNS, ListingObservation

_SYMBOLS = re.compile(r"[$,]")
_LEADING_DIGITS = re.compile(r"^\d+")

logger = logging.getLogger(__name__)


def normalize_price(text: str | None) -> int | None:
    """Parse ``"$1,500+/mo"`` style text into ``1500``.

    Returns ``None`` when the text has no leading digits once currency symbols
    and thousands separators are removed. The digit run ends at the first
    space, so trailing text such as ``"2 Beds"`` is never read as more digits.
    """
    if not text:
        return None
    match = _LEADING_DIGITS.match(_SYMBOLS.sub("", text).strip())
    if match is None:
        return None
    return int(match.group())


def normalize_listings(observations: Iterable[ListingObservation]) -> pd.DataFrame:
    """Turn raw observations into ``zip_code, bedrooms, market_rate`` rows.

    Observations whose price cannot be parsed are dropped.
    """
    rows = []
    dropped = 0
    for observation in observations:
        price = normalize_price(observation.raw_price)
        if price is None:
            dropped += 1
            logger.debug("Dropping unparseable price %r (zip %s).", observation.raw_price, observation.zip_code)
            continue
        rows.append((observation.zip_code, observation.bedrooms, price))

    if dropped:
        logger.warning("Dropped %s listing(s) with malformed prices.", dropped)

    frame = pd.DataFrame(rows, columns=list(LISTING_PRICE_COLUMNS))
    return frame.astype({"zip_code": "object", "bedrooms": "int64", "market_rate": "int64"})


__all__ = ["normalize_listings", "normalize_price"]
