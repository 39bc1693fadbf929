"""
backlinks.py: backlink discovery over two search providers + DA estimate.

Provider A is Google Custom Search, provider B is SerpApi; both run a
`link:` query for the domain. Either may come back empty (no key, quota,
outage) without failing the aggregation.
"""

import asyncio
import logging
import math

from errors import ProviderError
from http_client import ProviderClient
from schemas import BacklinkRecord, BacklinkReport, clean_domain

logger = logging.getLogger("seo-analyzer.backlinks")

GOOGLE_CSE_URL = "https://www.googleapis.com/customsearch/v1"
SERPAPI_URL = "https://serpapi.com/search.json"


def calculate_da_score(backlink_count: int) -> int:
    """DA = 20 * log10(backlinks + 1), rounded, capped at 100."""
    count = max(0, int(backlink_count))
    return min(100, round(20 * math.log10(count + 1)))


def dedupe_backlinks(backlinks: list[BacklinkRecord]) -> list[BacklinkRecord]:
    """Case-insensitive URL match; the first occurrence wins."""
    seen: set[str] = set()
    unique: list[BacklinkRecord] = []
    for link in backlinks:
        key = link.url.lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(link)
    return unique


def _text(value) -> str:
    return value if isinstance(value, str) else ""


def _records(items, source: str) -> list[BacklinkRecord]:
    """Result items -> records. Items without a string `link` are skipped."""
    if not isinstance(items, list):
        if items is not None:
            logger.warning(f"{source}: unexpected result list {type(items).__name__}, ignoring")
        return []
    return [
        BacklinkRecord(
            url=item["link"],
            title=_text(item.get("title")),
            snippet=_text(item.get("snippet")),
            source=source,
        )
        for item in items
        if isinstance(item, dict) and isinstance(item.get("link"), str) and item["link"]
    ]


class BacklinkAggregator:
    def __init__(self, client: ProviderClient, settings):
        self.client = client
        self.google_api_key = settings.google_api_key
        self.google_cx = settings.google_cx
        self.serpapi_key = settings.serpapi_key
        self.google_enabled = settings.google_backlinks_enabled
        self.serp_enabled = settings.serp_backlinks_enabled

    async def fetch_google(self, domain: str) -> list[BacklinkRecord]:
        if not self.google_enabled:
            return []
        try:
            data = await self.client.request_json(
                "google-cse",
                "GET",
                GOOGLE_CSE_URL,
                params={
                    "key": self.google_api_key,
                    "cx": self.google_cx,
                    "q": f"link:{domain} -site:{domain}",
                    "num": 10,
                },
            )
        except ProviderError as e:
            logger.warning(f"Google backlinks failed for {domain}: {e}")
            return []

        return _records(data.get("items"), "google")

    async def fetch_serp(self, domain: str) -> list[BacklinkRecord]:
        if not self.serp_enabled:
            return []
        try:
            data = await self.client.request_json(
                "serpapi",
                "GET",
                SERPAPI_URL,
                params={
                    "engine": "google",
                    "q": f"link:{domain}",
                    "api_key": self.serpapi_key,
                    "num": 100,
                },
            )
        except ProviderError as e:
            logger.warning(f"SerpApi backlinks failed for {domain}: {e}")
            return []

        if data.get("error"):
            # SerpApi reports "no results" and bad keys as 200 + error field
            logger.warning(f"SerpApi error for {domain}: {data['error']}")
            return []

        return _records(data.get("organic_results"), "serp")

    async def aggregate(self, url: str) -> BacklinkReport:
        domain = clean_domain(url)
        google_links, serp_links = await asyncio.gather(
            self.fetch_google(domain),
            self.fetch_serp(domain),
        )
        backlinks = dedupe_backlinks([*google_links, *serp_links])
        logger.info(
            f"Backlinks for {domain}: google={len(google_links)} serp={len(serp_links)} "
            f"unique={len(backlinks)}"
        )
        return BacklinkReport(
            backlinks=backlinks,
            da_score=calculate_da_score(len(backlinks)),
            total_backlinks=len(backlinks),
            sources={"google": len(google_links), "serp": len(serp_links)},
        )
