# =============================================================================
# AI SEO Analyzer - FastAPI Backend
# =============================================================================
# Takes a website URL (+ optional keyword) and fans out to:
#   1. LLM analysis      - Claude, Together as fallback on credit/quota errors
#   2. Backlinks + DA    - Google Custom Search + SerpApi
#   3. Traffic           - SimilarWeb snapshot, history, competitors, trends
#   4. Moz DA scrape     - headless Chromium (optional, not cached)
#
# Every result goes through one 24 h cache (KV store or in-process).
#
# Run:  python main.py
# Test: curl http://localhost:8000/health
# =============================================================================

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import httpx
from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

load_dotenv()                       # reads .env into os.environ before Settings.from_env()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)
logger = logging.getLogger("seo-analyzer")

from analysis import AnalysisOrchestrator
from backlinks import BacklinkAggregator
from cache import CacheGateway, build_cache, make_cache_key
from database import HistoryStore
from errors import InvalidRequestError, RequestTimeoutError, is_retryable
from http_client import ProviderClient, RetryPolicy
from llm import AnthropicProvider, TogetherProvider
from moz_scraper import MozScraper
from og_image import render_og_image
from schemas import AnalyzeRequest, UrlRequest, clean_domain, normalize_url
from settings import Settings
from traffic import TrafficAggregator

VERSION = "1.0.0"


# =============================================================================
# Services - built once per app, injected into handlers
# =============================================================================

@dataclass
class Services:
    settings: Settings
    http: httpx.AsyncClient
    cache: CacheGateway
    backlinks: BacklinkAggregator
    traffic: TrafficAggregator
    analysis: AnalysisOrchestrator
    history: HistoryStore
    moz: MozScraper


def build_services(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    clock: Callable[[], float] = time.monotonic,
) -> Services:
    http = httpx.AsyncClient(transport=transport, follow_redirects=True)
    client = ProviderClient(http, timeout=settings.provider_timeout_seconds)

    primary = None
    if settings.anthropic_enabled:
        primary = AnthropicProvider(
            settings.anthropic_api_key,
            http,
            settings.claude_model,
            timeout=settings.provider_timeout_seconds,
        )
    fallback = TogetherProvider(settings.together_api_key, client) if settings.together_enabled else None

    retry = RetryPolicy(
        max_attempts=settings.llm_max_attempts,
        base_delay=settings.llm_retry_base_seconds,
        max_delay=settings.llm_retry_max_seconds,
        sleep=sleep or asyncio.sleep,
    )

    return Services(
        settings=settings,
        http=http,
        cache=build_cache(settings, client, clock=clock),
        backlinks=BacklinkAggregator(client, settings),
        traffic=TrafficAggregator(client, settings),
        analysis=AnalysisOrchestrator(
            primary, fallback, retry, supplementary=settings.supplementary_insights
        ),
        history=HistoryStore(settings.database_url),
        moz=MozScraper(),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


# =============================================================================
# Helpers
# =============================================================================

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def failure_response(exc: Exception, settings: Settings) -> JSONResponse:
    """400 for bad input, 503 + Retry-After for retryable failures, 500 otherwise."""
    if isinstance(exc, InvalidRequestError):
        return JSONResponse({"error": str(exc)}, status_code=400)

    if is_retryable(exc):
        logger.warning(f"Retryable failure: {type(exc).__name__}: {exc}")
        return JSONResponse(
            {"error": "Service temporarily unavailable", "details": str(exc), "retryable": True},
            status_code=503,
            headers={"Retry-After": str(settings.retry_after_seconds)},
        )

    logger.error(f"Request failed: {type(exc).__name__}: {exc}", exc_info=exc)
    return JSONResponse(
        {"error": "API Error", "details": str(exc), "retryable": False},
        status_code=500,
    )


async def with_deadline(awaitable: Awaitable[Any], seconds: float) -> Any:
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as e:
        raise RequestTimeoutError(seconds) from e


async def cached_compute(
    services: Services,
    key: str,
    compute: Callable[[], Awaitable[dict]],
    cacheable: Callable[[dict], bool] = lambda payload: True,
) -> tuple[dict, bool]:
    """
    Cache lookup, else compute under the request deadline and store.
    Returns (payload, cached). Cache failures never surface here.
    """
    hit = await services.cache.get(key)
    if isinstance(hit, dict):
        logger.info(f"Cache hit: {key}")
        return hit, True

    payload = await with_deadline(compute(), services.settings.request_timeout_seconds)
    if cacheable(payload):
        await services.cache.set(key, payload)
    return payload, False


async def _record_search(services: Services, url: str, keyword: Optional[str]) -> None:
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, services.history.save, url, keyword)


# ---------------------------------------------------------------------------
# Per-endpoint payload builders (shared by the single endpoints and /report)
# ---------------------------------------------------------------------------

async def analysis_payload(services: Services, body: AnalyzeRequest) -> tuple[dict, bool]:
    url = normalize_url(body.url)

    async def compute() -> dict:
        return {"result": await services.analysis.analyze(url, body.keyword)}

    payload, cached = await cached_compute(
        services, make_cache_key("analyze", url, body.keyword), compute
    )
    await _record_search(services, url, body.keyword)
    return payload, cached


async def backlinks_payload(services: Services, url: str) -> tuple[dict, bool]:
    domain = clean_domain(url)

    async def compute() -> dict:
        report = await services.backlinks.aggregate(domain)
        return report.dump()

    return await cached_compute(
        services,
        make_cache_key("backlinks", domain),
        compute,
        cacheable=lambda p: p["totalBacklinks"] > 0,
    )


async def traffic_payload(services: Services, url: str) -> tuple[dict, bool]:
    domain = clean_domain(url)

    async def compute() -> dict:
        snapshot = await services.traffic.fetch_current(domain)
        return {**snapshot.dump(), "timestamp": _now()}

    return await cached_compute(
        services,
        make_cache_key("traffic", domain),
        compute,
        cacheable=lambda p: bool(p["totalVisits"] or p["globalRank"]),
    )


async def detailed_traffic_payload(services: Services, url: str) -> tuple[dict, bool]:
    domain = clean_domain(url)

    async def compute() -> dict:
        report = await services.traffic.aggregate(domain)
        return {**report.dump(), "timestamp": _now()}

    return await cached_compute(
        services,
        make_cache_key("traffic/detailed", domain),
        compute,
        cacheable=lambda p: bool(p["historical"] or p["competitors"]),
    )


# =============================================================================
# Endpoints
# =============================================================================

router = APIRouter()


@router.post("/analyze")
async def analyze(body: AnalyzeRequest, services: Services = Depends(get_services)):
    """LLM-written SEO analysis (markdown)."""
    try:
        payload, cached = await analysis_payload(services, body)
    except Exception as e:
        return failure_response(e, services.settings)
    return {"result": payload["result"], "cached": cached}


@router.post("/backlinks")
async def backlinks(body: UrlRequest, services: Services = Depends(get_services)):
    """Deduplicated backlinks from both search providers + DA score."""
    try:
        payload, cached = await backlinks_payload(services, body.url)
    except Exception as e:
        return failure_response(e, services.settings)
    return {**payload, "cached": cached}


@router.post("/traffic")
async def traffic(body: UrlRequest, services: Services = Depends(get_services)):
    """Current traffic snapshot. Zeroed, not an error, when SimilarWeb is unavailable."""
    try:
        payload, cached = await traffic_payload(services, body.url)
    except Exception as e:
        return failure_response(e, services.settings)
    return {**payload, "cached": cached}


@router.post("/traffic/detailed")
async def traffic_detailed(body: UrlRequest, services: Services = Depends(get_services)):
    """Monthly history, top 5 competitors and month-over-month trends."""
    try:
        payload, cached = await detailed_traffic_payload(services, body.url)
    except Exception as e:
        return failure_response(e, services.settings)
    return {**payload, "cached": cached}


@router.post("/report")
async def report(body: AnalyzeRequest, services: Services = Depends(get_services)):
    """
    Analysis, backlinks and full traffic aggregation run concurrently.
    Analysis failures are reported inside their own section.
    """
    start = time.time()
    results = await asyncio.gather(
        analysis_payload(services, body),
        backlinks_payload(services, body.url),
        detailed_traffic_payload(services, body.url),
        return_exceptions=True,
    )

    sections: dict[str, Any] = {}
    for name, res in zip(("analysis", "backlinks", "traffic"), results):
        if isinstance(res, Exception):
            logger.error(f"Report section '{name}' failed: {type(res).__name__}: {res}")
            sections[name] = {"error": str(res), "retryable": is_retryable(res)}
        else:
            payload, cached = res
            sections[name] = {**payload, "cached": cached}

    logger.info(f"Report for {body.url} built in {time.time() - start:.1f}s")
    return {**sections, "timestamp": _now()}


@router.post("/moz-da")
async def moz_da(body: UrlRequest, services: Services = Depends(get_services)):
    """Domain Authority scraped from Moz Link Explorer in a headless browser."""
    if not services.settings.moz_scrape_enabled:
        return JSONResponse({"error": "Moz scraping is disabled"}, status_code=503)
    try:
        da = await services.moz.fetch_da(body.url)
    except Exception as e:
        logger.error(f"Moz DA failed for {body.url}: {type(e).__name__}: {e}")
        return JSONResponse({"error": str(e) or "Failed to scrape Moz for DA score"}, status_code=500)
    return {"da": da}


@router.get("/og")
async def og(title: Optional[str] = None):
    """Open Graph share image."""
    try:
        loop = asyncio.get_running_loop()
        png = await loop.run_in_executor(None, render_og_image, title)
    except Exception as e:
        logger.error(f"OG image render failed: {e}")
        return Response("Failed to generate the image", status_code=500)
    return Response(png, media_type="image/png")


@router.get("/history")
async def history(services: Services = Depends(get_services)):
    """Most recent analysed URLs, newest first."""
    loop = asyncio.get_running_loop()
    return {"history": await loop.run_in_executor(None, services.history.recent)}


# =============================================================================
# Health & info
# =============================================================================

@router.get("/health")
async def health(services: Services = Depends(get_services)):
    return {
        "status": "ok",
        "timestamp": _now(),
        "capabilities": services.settings.capabilities(),
    }


@router.get("/info")
async def info(services: Services = Depends(get_services)):
    return {
        "name": "AI SEO Analyzer API",
        "version": VERSION,
        "model": services.settings.claude_model,
        "endpoints": {
            "analyze": "POST /analyze",
            "backlinks": "POST /backlinks",
            "traffic": "POST /traffic",
            "traffic_detailed": "POST /traffic/detailed",
            "report": "POST /report",
            "moz_da": "POST /moz-da",
            "og_image": "GET /og?title=",
            "history": "GET /history",
            "health": "GET /health",
        },
    }


# =============================================================================
# App factory
# =============================================================================

async def _invalid_request_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    details = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in errors
    ]
    if any(err.get("type") == "json_invalid" for err in errors):
        message = "Malformed JSON body"
    elif any(err.get("loc", ())[-1:] == ("url",) and err.get("type") == "missing" for err in errors):
        message = "URL is required"
    else:
        message = "Invalid request"
    return JSONResponse({"error": message, "details": details}, status_code=400)


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    clock: Callable[[], float] = time.monotonic,
) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(
        title="AI SEO Analyzer API",
        version=VERSION,
        description="LLM SEO analysis, backlinks, DA and traffic for any website",
    )
    app.state.services = build_services(settings, transport=transport, sleep=sleep, clock=clock)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, _invalid_request_handler)
    app.include_router(router)

    @app.on_event("startup")
    async def startup_event():
        settings.log_missing()
        logger.info(f"AI SEO Analyzer {VERSION} ready")

    @app.on_event("shutdown")
    async def shutdown_event():
        await app.state.services.http.aclose()

    return app


app = create_app()


# =============================================================================
# Run
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(app, host="0.0.0.0", port=port)
