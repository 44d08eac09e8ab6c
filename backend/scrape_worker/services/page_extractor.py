"""
Page Extractor - headless browser text extraction for job pages

Loads a job posting URL in a fresh Playwright Chromium instance and returns
the page title plus the visible body text, ready to hand to the field
refiner.

Hardening:
- A new browser per attempt; nothing is shared between calls or jobs
- Images, fonts, media and stylesheets are aborted at the network layer
- User agent rotates per attempt
- Fixed settle delay after DOMContentLoaded for client-side rendering
- Content under ``min_content_length`` counts as a failed attempt
  (bot wall, empty shell page) and is retried

Usage:
    extractor = PageExtractor()
    page = await extractor.extract("https://example.com/jobs/123")
    print(page.title, len(page.content))
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from bs4 import BeautifulSoup, NavigableString, Tag
from playwright.async_api import async_playwright, Route

from scrape_worker.config import get_settings
from scrape_worker.errors import ExtractionError
from scrape_worker.middleware.metrics import record_scrape_attempt

logger = logging.getLogger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/118.0.0.0 Safari/537.36",
]

BLOCKED_RESOURCE_TYPES = {"image", "font", "media", "stylesheet"}

# Subtrees that never contribute visible job text
SKIPPED_TAGS = {"script", "style", "iframe", "nav", "footer", "svg", "noscript"}

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]

MIN_FRAGMENT_LENGTH = 6


@dataclass
class ScrapedPage:
    """Title and cleaned visible text of a fetched page."""

    title: str
    content: str


def extract_visible_text(html: str) -> str:
    """
    Collect visible text fragments under <body>.

    Walks the DOM in document order, skipping SKIPPED_TAGS subtrees and
    non-text nodes (comments, doctypes). Each text node is trimmed and kept
    only if it has at least MIN_FRAGMENT_LENGTH characters; fragments are
    joined with single spaces.
    """
    soup = BeautifulSoup(html, "html.parser")
    root = soup.body or soup

    texts: List[str] = []
    stack = list(reversed(list(root.children)))
    while stack:
        node = stack.pop()
        if isinstance(node, Tag):
            if node.name in SKIPPED_TAGS:
                continue
            stack.extend(reversed(list(node.children)))
        elif type(node) is NavigableString:
            value = node.strip()
            if len(value) >= MIN_FRAGMENT_LENGTH:
                texts.append(value)

    return " ".join(texts)


async def _block_heavy_resources(route: Route) -> None:
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


class PageExtractor:
    """
    Retrying single-page extractor.

    Attributes:
        max_attempts: Total attempts per URL
        retry_delay: Seconds to wait between failed attempts
        settle_seconds: Extra wait after DOMContentLoaded
        navigation_timeout_ms: page.goto timeout
        min_content_length: Shorter content is treated as a failure
    """

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        settle_seconds: Optional[float] = None,
        navigation_timeout_ms: Optional[int] = None,
        min_content_length: Optional[int] = None,
    ):
        settings = get_settings()
        self.max_attempts = max_attempts if max_attempts is not None else settings.scrape_max_attempts
        self.retry_delay = retry_delay if retry_delay is not None else settings.scrape_retry_delay_seconds
        self.settle_seconds = settle_seconds if settle_seconds is not None else settings.scrape_settle_seconds
        self.navigation_timeout_ms = (
            navigation_timeout_ms if navigation_timeout_ms is not None
            else settings.scrape_navigation_timeout_ms
        )
        self.min_content_length = (
            min_content_length if min_content_length is not None else settings.min_content_length
        )

    async def extract(self, url: str) -> ScrapedPage:
        """
        Fetch ``url`` and return its title and visible text.

        Raises:
            The last attempt's exception once all attempts have failed
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.max_attempts):
            start = time.perf_counter()
            try:
                logger.info(f"[Attempt {attempt + 1}] Scraping: {url}")
                page = await self._fetch_once(url, attempt)

                if len(page.content) < self.min_content_length:
                    raise ExtractionError("Page content too short or empty.")

                record_scrape_attempt("success", time.perf_counter() - start)
                return page

            except Exception as e:
                record_scrape_attempt("failure", time.perf_counter() - start)
                logger.warning(f"[Attempt {attempt + 1}] Failed: {e}")
                last_error = e

            if attempt < self.max_attempts - 1:
                await asyncio.sleep(self.retry_delay)

        if last_error is None:
            last_error = ExtractionError("No extraction attempts were made")
        raise last_error

    async def _fetch_once(self, url: str, attempt: int) -> ScrapedPage:
        """Run one isolated browser session against ``url``."""
        user_agent = USER_AGENTS[attempt % len(USER_AGENTS)]

        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=True, args=BROWSER_ARGS)
            page = None
            try:
                context = await browser.new_context(user_agent=user_agent)
                page = await context.new_page()
                await page.route("**/*", _block_heavy_resources)

                await page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)

                # Give client-side rendering time to populate the DOM
                await asyncio.sleep(self.settle_seconds)

                html = await page.content()
                title = await page.title()
                return ScrapedPage(title=title or "", content=extract_visible_text(html))
            finally:
                if page is not None:
                    try:
                        await page.close()
                    except Exception as e:
                        logger.debug(f"Failed to close page for {url}: {e}")
                try:
                    await browser.close()
                except Exception as e:
                    logger.debug(f"Failed to close browser for {url}: {e}")
