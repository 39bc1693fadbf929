"""
settings.py: environment configuration, read once at startup.

Every provider key is optional. A missing key disables the matching
capability flag and the component degrades (empty results + a warning)
instead of failing the process.
"""

import logging
import os

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger("seo-analyzer")

_FALSEY = {"0", "false", "no", "off"}


def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        logger.warning(f"{name} is not an integer - using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        logger.warning(f"{name} is not a number - using {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in _FALSEY


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    anthropic_api_key: str = ""
    claude_model: str = "claude-sonnet-4-6"
    together_api_key: str = ""
    google_api_key: str = ""
    google_cx: str = ""
    serpapi_key: str = ""
    similarweb_api_key: str = ""
    kv_rest_api_url: str = ""
    kv_rest_api_token: str = ""

    cache_ttl_seconds: int = 60 * 60 * 24
    cache_max_entries: int = 1024
    database_url: str = "sqlite:///./seo_history.db"

    provider_timeout_seconds: float = 30.0
    request_timeout_seconds: float = 180.0
    llm_max_attempts: int = 5
    llm_retry_base_seconds: float = 1.0
    llm_retry_max_seconds: float = 30.0
    supplementary_insights: bool = True
    moz_scrape_enabled: bool = True

    allowed_origins: list[str] = ["*"]
    retry_after_seconds: int = 30
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            anthropic_api_key=_env_str("ANTHROPIC_API_KEY"),
            claude_model=_env_str("CLAUDE_MODEL", "claude-sonnet-4-6") or "claude-sonnet-4-6",
            together_api_key=_env_str("TOGETHER_API_KEY"),
            google_api_key=_env_str("GOOGLE_API_KEY"),
            google_cx=_env_str("GOOGLE_CX"),
            serpapi_key=_env_str("SERPAPI_KEY"),
            similarweb_api_key=_env_str("SIMILARWEB_API_KEY"),
            kv_rest_api_url=_env_str("KV_REST_API_URL").rstrip("/"),
            kv_rest_api_token=_env_str("KV_REST_API_TOKEN"),
            cache_ttl_seconds=_env_int("CACHE_TTL_SECONDS", 60 * 60 * 24),
            cache_max_entries=_env_int("CACHE_MAX_ENTRIES", 1024),
            database_url=_env_str("DATABASE_URL", "sqlite:///./seo_history.db"),
            provider_timeout_seconds=_env_float("PROVIDER_TIMEOUT_SECONDS", 30.0),
            request_timeout_seconds=_env_float("REQUEST_TIMEOUT_SECONDS", 180.0),
            llm_max_attempts=_env_int("LLM_MAX_ATTEMPTS", 5),
            llm_retry_base_seconds=_env_float("LLM_RETRY_BASE_SECONDS", 1.0),
            llm_retry_max_seconds=_env_float("LLM_RETRY_MAX_SECONDS", 30.0),
            supplementary_insights=_env_bool("ANALYSIS_SUPPLEMENTARY_INSIGHTS", True),
            moz_scrape_enabled=_env_bool("MOZ_SCRAPE_ENABLED", True),
            allowed_origins=[
                o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()
            ],
            retry_after_seconds=_env_int("RETRY_AFTER_SECONDS", 30),
            log_level=_env_str("LOG_LEVEL", "INFO").upper() or "INFO",
        )

    # -- capability flags ----------------------------------------------------

    @property
    def anthropic_enabled(self) -> bool:
        return bool(self.anthropic_api_key)

    @property
    def together_enabled(self) -> bool:
        return bool(self.together_api_key)

    @property
    def google_backlinks_enabled(self) -> bool:
        return bool(self.google_api_key and self.google_cx)

    @property
    def serp_backlinks_enabled(self) -> bool:
        return bool(self.serpapi_key)

    @property
    def traffic_enabled(self) -> bool:
        return bool(self.similarweb_api_key)

    @property
    def durable_cache_enabled(self) -> bool:
        return bool(self.kv_rest_api_url and self.kv_rest_api_token)

    def capabilities(self) -> dict:
        return {
            "anthropic": self.anthropic_enabled,
            "together": self.together_enabled,
            "google_backlinks": self.google_backlinks_enabled,
            "serp_backlinks": self.serp_backlinks_enabled,
            "traffic": self.traffic_enabled,
            "durable_cache": self.durable_cache_enabled,
            "moz_scrape": self.moz_scrape_enabled,
        }

    def log_missing(self) -> None:
        """Warn once about every disabled capability."""
        if not self.anthropic_enabled:
            logger.warning("⚠️  ANTHROPIC_API_KEY is not set - analysis will use the fallback provider only")
        if not self.together_enabled:
            logger.warning("⚠️  TOGETHER_API_KEY is not set - no fallback when Claude runs out of credit")
        if not (self.anthropic_enabled or self.together_enabled):
            logger.warning("⚠️  No LLM provider configured - /analyze will fail")
        if not self.google_backlinks_enabled:
            logger.warning("⚠️  GOOGLE_API_KEY / GOOGLE_CX not set - Google backlinks disabled")
        if not self.serp_backlinks_enabled:
            logger.warning("⚠️  SERPAPI_KEY is not set - SerpApi backlinks disabled")
        if not self.traffic_enabled:
            logger.warning("⚠️  SIMILARWEB_API_KEY is not set - traffic data will be zeroed")
        if not self.durable_cache_enabled:
            logger.info("KV_REST_API_URL / KV_REST_API_TOKEN not set - using in-process cache")
