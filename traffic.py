"""
traffic.py: SimilarWeb traffic metrics, history, competitors and trends.

Every provider call is fault tolerant on its own: a failed call yields a
zeroed snapshot or an empty list, never an exception.
"""

import asyncio
import logging
import math
from datetime import date, datetime, timezone
from typing import Optional

from errors import ProviderError
from http_client import ProviderClient
from schemas import (
    CompetitorRecord,
    HistoricalPoint,
    TrafficReport,
    TrafficSnapshot,
    TrendDeltas,
    clean_domain,
)

logger = logging.getLogger("seo-analyzer.traffic")

SIMILARWEB_BASE = "https://api.similarweb.com/v1/website"
HISTORY_MONTHS = 12
TOP_COMPETITORS = 5


def _current_month() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m")


def zeroed_snapshot() -> TrafficSnapshot:
    return TrafficSnapshot(last_updated=_current_month())


def history_window(today: Optional[date] = None, months: int = HISTORY_MONTHS) -> tuple[str, str]:
    """(start, end) as YYYY-MM covering the last `months` complete months."""
    today = today or datetime.now(timezone.utc).date()
    end_year, end_month = today.year, today.month - 1
    if end_month == 0:
        end_year, end_month = end_year - 1, 12
    index = end_year * 12 + (end_month - 1) - (months - 1)
    start_year, start_month = divmod(index, 12)
    return f"{start_year:04d}-{start_month + 1:02d}", f"{end_year:04d}-{end_month:02d}"


def _dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def _list(value) -> list:
    return value if isinstance(value, list) else []


def _last(value) -> dict:
    """Last element of a list of records, or {} for anything else."""
    if isinstance(value, list) and value:
        return _dict(value[-1])
    return {}


def _text(value, default: str = "") -> str:
    return value if isinstance(value, str) and value else default


def _num(item, *keys: str) -> float:
    """First finite number under any of `keys`; 0 when absent or malformed."""
    item = _dict(item)
    for key in keys:
        value = item.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
            return value
    return 0


def calculate_trends(historical: list[HistoricalPoint]) -> TrendDeltas:
    """
    Deltas between the two most recent points: percentage change for visits,
    absolute differences for the rest. Zero when fewer than two points exist
    (or, for visits, when the previous month had none).
    """
    if len(historical) < 2:
        return TrendDeltas()

    current, previous = historical[-1], historical[-2]
    visits_change = 0.0
    if previous.visits:
        visits_change = (current.visits - previous.visits) / previous.visits * 100

    return TrendDeltas(
        visits_change=visits_change,
        bounce_rate_change=current.bounce_rate - previous.bounce_rate,
        page_views_change=current.page_views - previous.page_views,
        duration_change=current.avg_visit_duration - previous.avg_visit_duration,
    )


class TrafficAggregator:
    def __init__(self, client: ProviderClient, settings):
        self.client = client
        self.api_key = settings.similarweb_api_key
        self.enabled = settings.traffic_enabled

    async def _get(self, domain: str, path: str, expect: type = dict, **params):
        return await self.client.request_json(
            "similarweb",
            "GET",
            f"{SIMILARWEB_BASE}/{domain}/{path}",
            params={"api_key": self.api_key, **params},
            headers={"Accept": "application/json"},
            expect=expect,
        )

    # -------------------------------------------------------------------------
    # Current snapshot
    # -------------------------------------------------------------------------

    async def fetch_current(self, url: str) -> TrafficSnapshot:
        domain = clean_domain(url)
        if not self.enabled:
            return zeroed_snapshot()

        try:
            general, visits, engagement = await asyncio.gather(
                self._get(domain, "general-data/all"),
                self._get(domain, "traffic-and-engagement/visits"),
                self._get(domain, "traffic-and-engagement/engagement-metrics", expect=(list, dict)),
            )
        except ProviderError as e:
            logger.warning(f"SimilarWeb snapshot failed for {domain}: {e} - returning zeroed data")
            return zeroed_snapshot()

        if isinstance(engagement, dict):
            engagement = engagement.get("engagement_metrics") or engagement.get("data")
        last_month = _last(visits.get("visits"))
        last_engagement = _last(engagement)

        return TrafficSnapshot(
            global_rank=int(_num(general.get("GlobalRank"), "Rank")),
            country_rank=int(_num(general.get("CountryRank"), "Rank")),
            category=_text(general.get("Category"), "Unknown"),
            total_visits=_num(last_month, "visits"),
            bounce_rate=_num(last_engagement, "bounce_rate", "bounceRate"),
            page_views=_num(last_engagement, "pages_per_visit", "pageViews"),
            avg_visit_duration=_num(last_engagement, "average_visit_duration", "avgVisitDuration"),
            last_updated=_text(last_month.get("date"), _current_month())[:7],
        )

    # -------------------------------------------------------------------------
    # History + competitors
    # -------------------------------------------------------------------------

    async def fetch_historical(self, domain: str) -> list[HistoricalPoint]:
        if not self.enabled:
            return []
        start, end = history_window()
        try:
            data = await self._get(
                domain,
                "total-traffic-and-engagement/visits",
                start_date=start,
                end_date=end,
                granularity="monthly",
            )
        except ProviderError as e:
            logger.warning(f"SimilarWeb history failed for {domain}: {e}")
            return []

        return [
            HistoricalPoint(
                date=_text(item.get("date")),
                visits=_num(item, "visits"),
                bounce_rate=_num(item, "bounce_rate", "bounceRate"),
                page_views=_num(item, "pages_per_visit", "pageViews"),
                avg_visit_duration=_num(item, "average_visit_duration", "avgVisitDuration"),
            )
            for item in _list(data.get("visits"))
            if isinstance(item, dict)
        ]

    async def fetch_competitors(self, domain: str) -> list[CompetitorRecord]:
        if not self.enabled:
            return []
        try:
            data = await self._get(domain, "competitors/domains")
        except ProviderError as e:
            logger.warning(f"SimilarWeb competitors failed for {domain}: {e}")
            return []

        return [
            CompetitorRecord(
                domain=item["domain"],
                global_rank=int(_num(item, "globalRank", "global_rank")),
                total_visits=_num(item, "totalVisits", "total_visits"),
                category=_text(item.get("category"), "Unknown"),
            )
            for item in _list(data.get("domains"))
            if isinstance(item, dict) and _text(item.get("domain"))
        ]

    async def aggregate(self, url: str) -> TrafficReport:
        domain = clean_domain(url)
        current, historical, competitors = await asyncio.gather(
            self.fetch_current(domain),
            self.fetch_historical(domain),
            self.fetch_competitors(domain),
        )
        return TrafficReport(
            current=current,
            historical=historical,
            competitors=competitors[:TOP_COMPETITORS],
            trends=calculate_trends(historical),
        )
