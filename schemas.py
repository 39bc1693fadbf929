"""Pydantic request bodies, provider record types and URL helpers."""

import re
from typing import Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_SCHEME_WWW = re.compile(r"^(https?://)?(www\.)?", re.IGNORECASE)
_HOST = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?(\.[a-z0-9]([a-z0-9-]*[a-z0-9])?)*(:\d+)?$", re.IGNORECASE)


def clean_domain(url: str) -> str:
    """'https://www.Example.com/path' -> 'example.com'"""
    stripped = _SCHEME_WWW.sub("", url.strip())
    return stripped.split("/")[0].split("?")[0].lower()


def normalize_url(url: str) -> str:
    """Add https:// when the scheme is missing; keep the rest as given."""
    url = url.strip()
    if not re.match(r"^https?://", url, re.IGNORECASE):
        url = f"https://{url}"
    return url


def _check_url(value: object) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValueError("URL is required")
    if any(ch.isspace() for ch in text):
        raise ValueError("URL must not contain whitespace")
    host = urlparse(normalize_url(text)).netloc
    if not host or not _HOST.match(host):
        raise ValueError(f"Invalid URL: {text}")
    return text


# =============================================================================
# Request bodies
# =============================================================================

class UrlRequest(BaseModel):
    """Body for /backlinks, /traffic, /traffic/detailed and /moz-da."""

    url: str

    @field_validator("url", mode="before")
    @classmethod
    def url_valid(cls, v: object) -> str:
        return _check_url(v)


class AnalyzeRequest(UrlRequest):
    """Body for /analyze and /report."""

    keyword: Optional[str] = None

    @field_validator("keyword", mode="before")
    @classmethod
    def keyword_clean(cls, v: object) -> Optional[str]:
        if v is None:
            return None
        text = str(v).strip()
        if len(text) > 200:
            raise ValueError("Keyword must be under 200 characters")
        return text or None


# =============================================================================
# Records - serialised with camelCase keys
# =============================================================================

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class BacklinkRecord(CamelModel):
    url: str
    title: str = ""
    snippet: str = ""
    source: Literal["google", "serp"]


class TrafficSnapshot(CamelModel):
    global_rank: int = 0
    country_rank: int = 0
    category: str = "Unknown"
    total_visits: float = 0
    bounce_rate: float = 0
    page_views: float = 0
    avg_visit_duration: float = 0
    last_updated: str = ""


class HistoricalPoint(CamelModel):
    date: str = ""
    visits: float = 0
    bounce_rate: float = 0
    page_views: float = 0
    avg_visit_duration: float = 0


class CompetitorRecord(CamelModel):
    domain: str
    global_rank: int = 0
    total_visits: float = 0
    category: str = "Unknown"


class TrendDeltas(CamelModel):
    visits_change: float = 0
    bounce_rate_change: float = 0
    page_views_change: float = 0
    duration_change: float = 0


class BacklinkReport(CamelModel):
    backlinks: list[BacklinkRecord] = Field(default_factory=list)
    da_score: int = 0
    total_backlinks: int = 0
    sources: dict[str, int] = Field(default_factory=dict)


class TrafficReport(CamelModel):
    current: TrafficSnapshot
    historical: list[HistoricalPoint] = Field(default_factory=list)
    competitors: list[CompetitorRecord] = Field(default_factory=list)
    trends: TrendDeltas = Field(default_factory=TrendDeltas)
