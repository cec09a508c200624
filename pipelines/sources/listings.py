"""Rental listing collector.

Requests one results page per (zip code, bedroom count) from a listing site,
strictly one request at a time with a minimum pause between requests, and
extracts the raw asking-price text of every listing on the page.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable

import httpx
from bs4 import BeautifulSoup

from pipelines.common import DEFAULT_TIMEOUT_SECONDS, fetch_text
from pipelines.model import ListingObservation, RentKey

DEFAULT_REQUEST_DELAY_SECONDS = 10.0

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0 Safari/537.36"
)

logger = logging.getLogger(__name__)


def bedroom_slug(bedrooms: int) -> str:
    if bedrooms == 0:
        return "studios"
    return f"{bedrooms}-bedrooms"


@dataclass(frozen=True)
class ListingSource:
    """Where to request listing pages and how to find prices in them."""

    url_template: str
    container_selector: str
    price_selector: str
    user_agent: str = USER_AGENT

    def build_url(self, key: RentKey, page: int = 1) -> str:
        return self.url_template.format(
            zip_code=key.zip_code,
            bedrooms=key.bedrooms,
            bedroom_slug=bedroom_slug(key.bedrooms),
            page=page,
        )


DEFAULT_LISTING_SOURCE = ListingSource(
    url_template="https://www.apartments.com/{zip_code}/{bedroom_slug}/{page}/",
    container_selector="#placardContainer ul",
    price_selector=".property-pricing, .price-range",
)


def extract_price_texts(html: str, container_selector: str, price_selector: str) -> list[str]:
    """Return the text of every price element inside the listing container."""
    soup = BeautifulSoup(html, "html.parser")
    container = soup.select_one(container_selector)
    if container is None:
        return []
    texts = []
    for element in container.select(price_selector):
        text = element.get_text(" ", strip=True)
        if text:
            texts.append(text)
    return texts


class RequestThrottle:
    """Async context manager enforcing a minimum gap between requests.

    The gap is measured from the moment the previous request finished, so a
    fast response never shortens the pause.
    """

    def __init__(
        self,
        min_interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_completed: float | None = None

    async def __aenter__(self) -> "RequestThrottle":
        if self._last_completed is not None:
            remaining = self.min_interval - (self._clock() - self._last_completed)
            if remaining > 0:
                await self._sleep(remaining)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self._last_completed = self._clock()


class ListingCollector:
    """Collect raw listing prices for a working set of rent keys."""

    def __init__(
        self,
        source: ListingSource = DEFAULT_LISTING_SOURCE,
        *,
        delay_seconds: float = DEFAULT_REQUEST_DELAY_SECONDS,
        client: httpx.AsyncClient | None = None,
        throttle: RequestThrottle | None = None,
    ) -> None:
        self.source = source
        self.throttle = throttle or RequestThrottle(delay_seconds)
        self._client = client

    async def _fetch_page(self, client: httpx.AsyncClient, key: RentKey) -> list[str]:
        url = self.source.build_url(key, page=1)
        async with self.throttle:
            html = await fetch_text(client, url, headers={"User-Agent": self.source.user_agent})
        return extract_price_texts(html, self.source.container_selector, self.source.price_selector)

    async def _collect_with(
        self, client: httpx.AsyncClient, keys: Iterable[RentKey]
    ) -> list[ListingObservation]:
        observations: list[ListingObservation] = []
        failed = 0
        for key in keys:
            try:
                prices = await self._fetch_page(client, key)
            except httpx.HTTPError as exc:
                failed += 1
                logger.warning(
                    "Listing request failed for zip %s bedrooms=%s (%s). Skipping.",
                    key.zip_code,
                    key.bedrooms,
                    exc,
                )
                continue
            logger.debug("Zip %s bedrooms=%s: %s listing(s).", key.zip_code, key.bedrooms, len(prices))
            observations.extend(
                ListingObservation(zip_code=key.zip_code, bedrooms=key.bedrooms, raw_price=text)
                for text in prices
            )
        if failed:
            logger.warning("%s listing request(s) failed.", failed)
        return observations

    async def collect(self, keys: Iterable[RentKey]) -> list[ListingObservation]:
        """Request page 1 for each key in order and return every observed price."""
        if self._client is not None:
            return await self._collect_with(self._client, keys)
        async with httpx.AsyncClient(
            timeout=DEFAULT_TIMEOUT_SECONDS, follow_redirects=True
        ) as client:
            return await self._collect_with(client, keys)


__all__ = [
    "DEFAULT_LISTING_SOURCE",
    "DEFAULT_REQUEST_DELAY_SECONDS",
    "ListingCollector",
    "ListingSource",
    "RequestThrottle",
    "bedroom_slug",
    "extract_price_texts",
]
