"""
Headless-browser Domain Authority lookup on the Moz Link Explorer page.

Playwright drives Chromium through the form; the rendered HTML is parsed
with BeautifulSoup. Slow (a browser per call), so it is its own endpoint
and never part of the cached aggregation.
"""

import logging
import re
from typing import Optional

from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PWTimeout
from playwright.async_api import async_playwright

from errors import AnalyzerError

logger = logging.getLogger("seo-analyzer.moz")

LINK_EXPLORER_URL = "https://moz.com/link-explorer"
URL_INPUT = 'input[name="url"]'
SUBMIT_BUTTON = 'button[type="submit"]'
SCORE_SELECTOR = ".moz-metrics-column .score-value"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)


class MozScrapeError(AnalyzerError):
    pass


def parse_da_score(html: str) -> Optional[int]:
    """First integer inside the score element, or None."""
    soup = BeautifulSoup(html, "html.parser")
    node = soup.select_one(SCORE_SELECTOR)
    if node is None:
        return None
    match = re.search(r"\d+", node.get_text(strip=True))
    return int(match.group()) if match else None


class MozScraper:
    def __init__(self, navigation_timeout_ms: int = 30_000, score_timeout_ms: int = 10_000):
        self.navigation_timeout_ms = navigation_timeout_ms
        self.score_timeout_ms = score_timeout_ms

    async def fetch_da(self, url: str) -> Optional[int]:
        async with async_playwright() as pw:
            browser = await pw.chromium.launch(
                headless=True,
                args=["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"],
            )
            try:
                context = await browser.new_context(user_agent=USER_AGENT)
                page = await context.new_page()
                page.set_default_navigation_timeout(self.navigation_timeout_ms)

                await page.goto(LINK_EXPLORER_URL, wait_until="networkidle")
                await page.wait_for_selector(URL_INPUT)
                await page.fill(URL_INPUT, url)
                await page.click(SUBMIT_BUTTON)

                try:
                    await page.wait_for_selector(SCORE_SELECTOR, timeout=self.score_timeout_ms)
                except PWTimeout as e:
                    raise MozScrapeError("Failed to extract DA score from Moz") from e

                html = await page.content()
            except PlaywrightError as e:
                logger.warning(f"Moz scrape failed for {url}: {e}")
                raise MozScrapeError("Failed to scrape Moz for DA score") from e
            finally:
                await browser.close()

        da = parse_da_score(html)
        logger.info(f"Moz DA for {url}: {da}")
        return da
