import asyncio

import httpx
import pytest

from pipelines.model import RentKey
from pipelines.sources.listings import (
    DEFAULT_LISTING_SOURCE,
    ListingCollector,
    ListingSource,
    RequestThrottle,
    extract_price_texts,
)

SOURCE = ListingSource(
    url_template="https://listings.test/{zip_code}/{bedroom_slug}/{page}/",
    container_selector="ul.results",
    price_selector="span.price",
)


def _page(*prices: str) -> str:
    items = "".join(f'<li><h3>Unit</h3><span class="price">{p}</span></li>' for p in prices)
    return f'<html><body><nav><span class="price">$1/mo</span></nav><ul class="results">{items}</ul></body></html>'


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_extract_price_texts_reads_only_the_result_list():
    html = _page("$1,500+/mo", "$1,725/mo", "Call for price")

    assert extract_price_texts(html, "ul.results", "span.price") == [
        "$1,500+/mo",
        "$1,725/mo",
        "Call for price",
    ]


def test_extract_price_texts_without_container():
    assert extract_price_texts("<html><p>Blocked</p></html>", "ul.results", "span.price") == []


def test_build_url_uses_bedroom_slug():
    assert SOURCE.build_url(RentKey("02134", 0)) == "https://listings.test/02134/studios/1/"
    assert SOURCE.build_url(RentKey("02134", 2), page=3) == "https://listings.test/02134/2-bedrooms/3/"
    assert "{" not in DEFAULT_LISTING_SOURCE.build_url(RentKey("78701", 1))


def test_throttle_waits_from_previous_completion():
    clock = FakeClock()
    throttle = RequestThrottle(10, clock=clock, sleep=clock.sleep)

    async def scenario():
        async with throttle:
            clock.now += 2  # first request takes 2s
        clock.now += 1
        async with throttle:
            clock.now += 0.5
        clock.now += 15
        async with throttle:
            pass

    asyncio.run(scenario())

    assert clock.sleeps == [9]


def test_throttle_stamps_completion_on_failure():
    clock = FakeClock()
    throttle = RequestThrottle(10, clock=clock, sleep=clock.sleep)

    async def scenario():
        with pytest.raises(RuntimeError):
            async with throttle:
                raise RuntimeError("request failed")
        async with throttle:
            pass

    asyncio.run(scenario())

    assert clock.sleeps == [10]


def test_throttle_rejects_negative_interval():
    with pytest.raises(ValueError):
        RequestThrottle(-1)


def test_collector_is_sequential_throttled_and_tags_requested_key(caplog):
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        if "/99999/" in request.url.path:
            return httpx.Response(503, text="busy")
        if "/studios/" in request.url.path:
            return httpx.Response(200, text=_page("$1,100/mo"))
        return httpx.Response(200, text=_page("$1,500/mo", "$1,650+/mo"))

    clock = FakeClock()
    keys = [RentKey("02134", 0), RentKey("99999", 1), RentKey("02134", 1)]

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            collector = ListingCollector(
                SOURCE,
                client=client,
                throttle=RequestThrottle(10, clock=clock, sleep=clock.sleep),
            )
            return await collector.collect(keys)

    with caplog.at_level("WARNING"):
        observations = asyncio.run(scenario())

    assert requested == [
        "https://listings.test/02134/studios/1/",
        "https://listings.test/99999/1-bedrooms/1/",
        "https://listings.test/02134/1-bedrooms/1/",
    ]
    assert clock.sleeps == [10, 10]
    assert [(o.zip_code, o.bedrooms, o.raw_price) for o in observations] == [
        ("02134", 0, "$1,100/mo"),
        ("02134", 1, "$1,500/mo"),
        ("02134", 1, "$1,650+/mo"),
    ]
    assert "99999" in caplog.text
