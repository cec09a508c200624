"""HUD Fair Market Rent ingestor.

Resolves configured city names against the HUD metro-area directory and turns
the per-area small-area FMR schedules into long-form ``FmrRecord`` rows keyed by
zip code and bedroom count.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Iterable, Mapping, Sequence

from httpx import HTTPError, HTTPStatusError

from pipelines.common import fetch_json
from pipelines.model import (
    BEDROOM_LABELS,
    MSA_LEVEL_ZIP,
    FmrRecord,
    MetroArea,
    bedroom_count,
)

HUD_FMR_BASE_URL = "https://www.huduser.gov/hudapi/public/fmr"

# HUD field names that differ from the canonical vocabulary after canonicalization.
FIELD_RENAMES: Mapping[str, str] = {
    "efficiency": "studio",
}

_MISSING_VALUES = (None, "", "NA", "N/A")

logger = logging.getLogger(__name__)


def _resolve_token(token: str | None) -> str | None:
    resolved = token or os.getenv("HUD_TOKEN")
    if not resolved:
        logger.warning(
            "HUD API token missing. Skipping HUD FMR fetch. Set HUD_TOKEN or pass token explicitly."
        )
    return resolved


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}", "Accept": "application/json"}


def parse_area_name(display_name: str) -> tuple[str, str, str]:
    """Split ``"<city>, <ST><qualifier>"`` into ``(city, state, qualifier)``.

    >>> parse_area_name("Austin-Round Rock, TX MSA")
    ('Austin-Round Rock', 'TX', 'MSA')
    """
    city, sep, remainder = display_name.partition(",")
    if not sep:
        return display_name.strip(), "", ""
    remainder = remainder.strip()
    state = remainder[:2]
    qualifier = remainder[2:].lstrip("- ").strip()
    return city.strip(), state, qualifier


async def fetch_area_directory(*, token: str | None = None) -> list[Mapping[str, Any]]:
    """Fetch the flat list of metro areas HUD publishes FMRs for."""
    resolved_token = _resolve_token(token)
    if not resolved_token:
        return []

    payload = await fetch_json(
        f"{HUD_FMR_BASE_URL}/listMetroAreas",
        headers=_auth_headers(resolved_token),
    )
    if isinstance(payload, Mapping):
        payload = payload.get("data", [])
    if not isinstance(payload, list):
        return []
    return [row for row in payload if isinstance(row, Mapping)]


def resolve_metro_areas(
    directory: Iterable[Mapping[str, Any]],
    target_cities: Sequence[str],
) -> list[MetroArea]:
    """Filter the HUD directory down to the configured cities.

    A city without an exact match is logged and simply produces no area.
    """
    targets = {city.strip() for city in target_cities if city.strip()}
    resolved: dict[str, MetroArea] = {}
    for row in directory:
        display_name = row.get("area_name")
        area_id = row.get("cbsa_code") or row.get("area_id")
        if not isinstance(display_name, str) or not area_id:
            continue
        city, state, qualifier = parse_area_name(display_name)
        if city not in targets or str(area_id) in resolved:
            continue
        resolved[str(area_id)] = MetroArea(
            area_id=str(area_id),
            area_name=city,
            state=state,
            qualifier=qualifier,
            display_name=display_name,
        )

    matched = {area.area_name for area in resolved.values()}
    for city in sorted(targets - matched):
        logger.warning("No HUD metro area matches target city %r; it will be missing from results.", city)

    logger.info("Resolved %s metro area(s) for %s target city(ies).", len(resolved), len(targets))
    return list(resolved.values())


def canonicalize_field(name: str) -> str:
    canonical = name.strip().lower().replace("-", "_").replace(" ", "_")
    return FIELD_RENAMES.get(canonical, canonical)


def _canonicalize_record(record: Mapping[str, Any]) -> dict[str, Any]:
    return {canonicalize_field(str(key)): value for key, value in record.items()}


def _normalize_zip(raw: Any) -> str:
    if raw in _MISSING_VALUES:
        return MSA_LEVEL_ZIP
    text = str(raw).strip()
    if text.isdigit():
        return text.zfill(5)
    if text.lower() == MSA_LEVEL_ZIP.lower():
        return MSA_LEVEL_ZIP
    return text


def _coerce_dollars(raw: Any) -> int | None:
    if raw in _MISSING_VALUES:
        return None
    try:
        return int(round(float(str(raw).replace(",", "").replace("$", ""))))
    except (TypeError, ValueError):
        return None


def _iter_basicdata(payload: Any) -> Iterable[Mapping[str, Any]]:
    """Yield the per-zip sub-records from any of the shapes HUD returns."""
    if isinstance(payload, Mapping):
        data = payload.get("data", payload)
        if isinstance(data, Mapping) and "basicdata" in data:
            data = data["basicdata"]
        payload = data
    if isinstance(payload, Mapping):
        yield payload
    elif isinstance(payload, list):
        for item in payload:
            if isinstance(item, Mapping):
                yield item


def normalize_fmr_payload(
    payload: Any,
    area_name: str,
    *,
    max_bedrooms: int = 3,
    categories: Sequence[str] = BEDROOM_LABELS,
) -> list[FmrRecord]:
    """Reshape a HUD FMR response into one ``FmrRecord`` per zip code and bedroom count.

    ``categories`` lists the canonical schedule columns to unpivot; a label
    outside the bedroom enumeration raises ``UnknownBedroomCategory``.
    """

    columns = [(label, bedroom_count(label)) for label in categories]
    records: list[FmrRecord] = []
    seen: set[tuple[str, int]] = set()
    for raw in _iter_basicdata(payload):
        row = _canonicalize_record(raw)
        zip_code = _normalize_zip(row.get("zip_code"))
        for label, bedrooms in columns:
            if bedrooms > max_bedrooms:
                continue
            fmr = _coerce_dollars(row.get(label))
            if fmr is None:
                logger.debug("No %s FMR for %s zip %s.", label, area_name, zip_code)
                continue
            key = (zip_code, bedrooms)
            if key in seen:
                raise ValueError(
                    f"Duplicate FMR for zip {zip_code} bedrooms={bedrooms} in area {area_name!r}"
                )
            seen.add(key)
            records.append(
                FmrRecord(area_name=area_name, zip_code=zip_code, bedrooms=bedrooms, fmr=fmr)
            )
    return records


async def fetch_fmr_records(
    area: MetroArea,
    *,
    year: int | None = None,
    token: str | None = None,
    max_bedrooms: int = 3,
) -> list[FmrRecord]:
    """Fetch the FMR schedule for one metro area and normalize it."""
    resolved_token = _resolve_token(token)
    if not resolved_token:
        return []

    request_params: dict[str, Any] = {}
    if year is not None:
        request_params["year"] = year

    try:
        payload = await fetch_json(
            f"{HUD_FMR_BASE_URL}/data/{area.area_id}",
            headers=_auth_headers(resolved_token),
            params=request_params or None,
        )
    except HTTPStatusError as exc:
        status = exc.response.status_code if exc.response is not None else "?"
        logger.warning(
            "HUD FMR request failed for %s (%s) year=%s status=%s. Skipping.",
            area.area_name,
            area.area_id,
            year,
            status,
        )
        return []
    except HTTPError as exc:
        logger.warning(
            "HUD FMR request failed for %s (%s) year=%s error=%r. Skipping.",
            area.area_name,
            area.area_id,
            year,
            exc,
        )
        return []

    records = normalize_fmr_payload(payload, area.area_name, max_bedrooms=max_bedrooms)
    logger.info("Fetched %s FMR row(s) for %s.", len(records), area.area_name)
    return records


def split_metro_level(records: Iterable[FmrRecord]) -> tuple[list[FmrRecord], list[FmrRecord]]:
    """Separate per-zip rows from the metro-wide rows."""
    per_zip: list[FmrRecord] = []
    metro_level: list[FmrRecord] = []
    for record in records:
        (metro_level if record.is_metro_level else per_zip).append(record)
    return per_zip, metro_level


__all__ = [
    "HUD_FMR_BASE_URL",
    "canonicalize_field",
    "fetch_area_directory",
    "fetch_fmr_records",
    "normalize_fmr_payload",
    "parse_area_name",
    "resolve_metro_areas",
    "split_metro_level",
]
