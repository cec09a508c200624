import asyncio

import httpx
import pytest

from pipelines.model import MSA_LEVEL_ZIP, MetroArea, UnknownBedroomCategory
from pipelines.sources import hud_fmr
from pipelines.sources.hud_fmr import (
    canonicalize_field,
    fetch_area_directory,
    fetch_fmr_records,
    normalize_fmr_payload,
    parse_area_name,
    resolve_metro_areas,
    split_metro_level,
)

DIRECTORY = [
    {"cbsa_code": "METRO12420M12420", "area_name": "Austin-Round Rock-San Marcos, TX MSA", "category": "MetroArea"},
    {"cbsa_code": "METRO41620M41620", "area_name": "Salt Lake City, UT HUD Metro FMR Area", "category": "MetroArea"},
    {"cbsa_code": "METRO28140M28140", "area_name": "Kansas City, MO-KS HUD Metro FMR Area", "category": "MetroArea"},
]

SMALL_AREA_PAYLOAD = {
    "data": {
        "metro_name": "Austin-Round Rock-San Marcos, TX MSA",
        "smallarea_status": "1",
        "basicdata": [
            {
                "zip_code": "MSA level",
                "Efficiency": 1388,
                "One-Bedroom": 1516,
                "Two-Bedroom": 1774,
                "Three-Bedroom": 2243,
                "Four-Bedroom": 2749,
                "FMR Percentile": 40,
            },
            {
                "zip_code": "78701",
                "Efficiency": 2050,
                "One-Bedroom": 2240,
                "Two-Bedroom": 2620,
                "Three-Bedroom": 3310,
                "Four-Bedroom": 4060,
            },
            {
                "zip_code": 2134,
                "Efficiency": "1,100",
                "One-Bedroom": "",
                "Two-Bedroom": 1500,
                "Three-Bedroom": "N/A",
                "Four-Bedroom": 2100,
            },
        ],
    }
}


@pytest.mark.parametrize(
    "display, expected",
    [
        ("Austin-Round Rock-San Marcos, TX MSA", ("Austin-Round Rock-San Marcos", "TX", "MSA")),
        ("Kansas City, MO-KS HUD Metro FMR Area", ("Kansas City", "MO", "KS HUD Metro FMR Area")),
        ("Nowhere", ("Nowhere", "", "")),
    ],
)
def test_parse_area_name(display, expected):
    assert parse_area_name(display) == expected


def test_resolve_metro_areas_filters_exact_city_names():
    areas = resolve_metro_areas(DIRECTORY, ["Salt Lake City", "Kansas City"])

    assert [(a.area_id, a.area_name, a.state) for a in areas] == [
        ("METRO41620M41620", "Salt Lake City", "UT"),
        ("METRO28140M28140", "Kansas City", "MO"),
    ]


def test_resolution_miss_is_logged_not_raised(caplog):
    targets = ["Salt Lake City", "Austin-Round Rock-San Marcos", "Atlantis"]

    with caplog.at_level("WARNING"):
        areas = resolve_metro_areas(DIRECTORY, targets)

    assert len(areas) == len(targets) - 1
    assert "Atlantis" in caplog.text


def test_resolve_ignores_partial_matches():
    assert resolve_metro_areas(DIRECTORY, ["Austin"]) == []


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Efficiency", "studio"),
        (" One-Bedroom ", "one_bedroom"),
        ("zip_code", "zip_code"),
        ("FMR Percentile", "fmr_percentile"),
    ],
)
def test_canonicalize_field(raw, expected):
    assert canonicalize_field(raw) == expected


def test_normalize_fmr_payload_unpivots_to_long_form():
    records = normalize_fmr_payload(SMALL_AREA_PAYLOAD, "Austin-Round Rock-San Marcos")

    rows = {(r.zip_code, r.bedrooms): r.fmr for r in records}
    assert rows[(MSA_LEVEL_ZIP, 0)] == 1388
    assert rows[("78701", 3)] == 3310
    assert rows[("02134", 0)] == 1100
    assert ("02134", 1) not in rows
    assert ("02134", 3) not in rows
    assert all(r.bedrooms <= 3 for r in records)
    assert {r.area_name for r in records} == {"Austin-Round Rock-San Marcos"}
    assert len(records) == 4 + 4 + 2


def test_normalize_fmr_payload_respects_max_bedrooms():
    records = normalize_fmr_payload(SMALL_AREA_PAYLOAD, "Austin", max_bedrooms=4)

    assert ("78701", 4) in {r.key for r in records}


def test_normalize_fmr_payload_limits_to_requested_categories():
    records = normalize_fmr_payload(SMALL_AREA_PAYLOAD, "Austin", categories=("two_bedroom",))

    assert {r.bedrooms for r in records} == {2}
    assert len(records) == 3


def test_normalize_fmr_payload_rejects_unknown_category():
    with pytest.raises(UnknownBedroomCategory):
        normalize_fmr_payload(SMALL_AREA_PAYLOAD, "Austin", categories=("studio", "five_bedroom"))


def test_normalize_single_schedule_is_metro_level():
    payload = {"data": {"basicdata": {"Efficiency": 900, "One-Bedroom": 1000, "year": "2025"}}}

    records = normalize_fmr_payload(payload, "Abilene")

    assert {r.zip_code for r in records} == {MSA_LEVEL_ZIP}
    assert [r.bedrooms for r in records] == [0, 1]


def test_normalize_rejects_duplicate_zip_rows():
    payload = [
        {"zip_code": "78701", "Efficiency": 2000},
        {"zip_code": "78701", "Efficiency": 2100},
    ]

    with pytest.raises(ValueError):
        normalize_fmr_payload(payload, "Austin")


def test_split_metro_level():
    records = normalize_fmr_payload(SMALL_AREA_PAYLOAD, "Austin")

    per_zip, metro_level = split_metro_level(records)

    assert len(metro_level) == 4
    assert all(r.is_metro_level for r in metro_level)
    assert {r.zip_code for r in per_zip} == {"78701", "02134"}


def test_fetch_fmr_records_calls_hud_data_endpoint(monkeypatch):
    calls = []

    async def fake_fetch_json(url, **kwargs):
        calls.append((url, kwargs))
        return SMALL_AREA_PAYLOAD

    monkeypatch.setattr(hud_fmr, "fetch_json", fake_fetch_json)
    area = MetroArea(area_id="METRO12420M12420", area_name="Austin-Round Rock-San Marcos", state="TX")

    records = asyncio.run(fetch_fmr_records(area, year=2025, token="secret"))

    assert len(records) == 10
    url, kwargs = calls[0]
    assert url.endswith("/fmr/data/METRO12420M12420")
    assert kwargs["params"] == {"year": 2025}
    assert kwargs["headers"]["Authorization"] == "Bearer secret"


def test_fetch_fmr_records_skips_area_on_http_error(monkeypatch, caplog):
    async def failing_fetch_json(url, **kwargs):
        request = httpx.Request("GET", url)
        response = httpx.Response(404, request=request)
        raise httpx.HTTPStatusError("not found", request=request, response=response)

    monkeypatch.setattr(hud_fmr, "fetch_json", failing_fetch_json)
    area = MetroArea(area_id="METRO00000M00000", area_name="Gone", state="ZZ")

    with caplog.at_level("WARNING"):
        records = asyncio.run(fetch_fmr_records(area, token="secret"))

    assert records == []
    assert "status=404" in caplog.text


def test_fetch_fmr_records_skips_area_on_connection_error(monkeypatch, caplog):
    async def unreachable_fetch_json(url, **kwargs):
        raise httpx.ConnectError("boom", request=httpx.Request("GET", url))

    monkeypatch.setattr(hud_fmr, "fetch_json", unreachable_fetch_json)
    area = MetroArea(area_id="METRO00000M00000", area_name="Offline", state="ZZ")

    with caplog.at_level("WARNING"):
        records = asyncio.run(fetch_fmr_records(area, token="secret"))

    assert records == []
    assert "ConnectError" in caplog.text


def test_missing_token_skips_fetch(monkeypatch):
    async def unexpected_fetch_json(url, **kwargs):  # pragma: no cover - must not run
        raise AssertionError("fetch_json should not be called without a token")

    monkeypatch.delenv("HUD_TOKEN", raising=False)
    monkeypatch.setattr(hud_fmr, "fetch_json", unexpected_fetch_json)

    assert asyncio.run(fetch_area_directory()) == []


def test_fetch_area_directory_unwraps_payload(monkeypatch):
    async def fake_fetch_json(url, **kwargs):
        assert url.endswith("/fmr/listMetroAreas")
        return DIRECTORY

    monkeypatch.setenv("HUD_TOKEN", "secret")
    monkeypatch.setattr(hud_fmr, "fetch_json", fake_fetch_json)

    assert asyncio.run(fetch_area_directory()) == DIRECTORY
