"""Documentation fetcher.

Retrieves documentation pages over HTTP with retry/backoff, optionally
renders script-built pages in a headless browser, and extracts text and
metadata from the resulting HTML. Network conditions never raise out of
:meth:`DocumentFetcher.fetch`; they come back as a :data:`FetchResult`
variant.
"""

import asyncio
import copy
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from urllib.parse import urljoin

import aiohttp
from bs4 import BeautifulSoup, Tag
from playwright.async_api import async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config.settings import FetchConfig, RetryConfig
from ..errors import InvalidUrlError
from ..models import compute_hash
from ..observability import metrics
from .security import check_source_url

logger = logging.getLogger(__name__)

# Page chrome that never belongs to the documentation text
REMOVED_ELEMENTS = (
    "script, style, nav, header, footer, .sidebar, .navigation, .menu, .ad, .advertisement"
)

# Tried in order; the first match with non-blank text wins
MAIN_CONTENT_SELECTORS = [
    "main",
    "article",
    "[role=main]",
    "#content",
    ".content",
    "#main-content",
    ".main-content",
    ".documentation",
    ".doc-content",
    "#body-inner",
    ".markdown-body",
]

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


class FetchErrorKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    INVALID_URL = "invalid_url"


@dataclass(frozen=True)
class FetchedContent:
    """A successfully fetched, non-empty page."""
    url: str
    html: str
    status_code: int = 200
    attempts: int = 1
    final_url: Optional[str] = None
    rendered: bool = False


@dataclass(frozen=True)
class FetchError:
    """A fetch that failed without being retried to exhaustion."""
    url: str
    kind: FetchErrorKind
    message: str
    status_code: Optional[int] = None
    attempts: int = 0

    @property
    def retryable(self) -> bool:
        if self.kind in (FetchErrorKind.TIMEOUT, FetchErrorKind.NETWORK):
            return True
        if self.kind == FetchErrorKind.HTTP_STATUS and self.status_code is not None:
            return self.status_code >= 500 or self.status_code == 429
        return False


@dataclass(frozen=True)
class EmptyContent:
    """No content: an empty body, or every retry attempt failed."""
    url: str
    attempts: int = 1
    last_error: Optional[FetchError] = None


FetchResult = Union[FetchedContent, EmptyContent, FetchError]


def content_hash(text: str) -> str:
    """SHA-256 hex digest of ``text``; deterministic for equal input."""
    return compute_hash(text)


def has_changed(old_hash: Optional[str], new_content: str) -> bool:
    """Whether ``new_content`` differs from what ``old_hash`` was computed over.

    A missing ``old_hash`` always counts as changed.
    """
    if old_hash is None:
        return True
    return content_hash(new_content) != old_hash


def normalize_whitespace(text: str) -> str:
    return " ".join(text.split())


def parse_html(html: str, base_url: Optional[str] = None) -> BeautifulSoup:
    """Parse HTML, resolving relative link targets against ``base_url``.

    Raises:
        ValueError: If ``html`` is empty
    """
    if not html or not html.strip():
        raise ValueError("HTML content cannot be empty")

    soup = BeautifulSoup(html, "html.parser")
    if base_url:
        for element in soup.select("a[href], link[href]"):
            href = element["href"].strip()
            if href and not href.startswith("#"):
                element["href"] = urljoin(base_url, href)
    return soup


def find_main_content(soup: BeautifulSoup) -> Optional[Tag]:
    """Return the first main-content container with non-blank text."""
    for selector in MAIN_CONTENT_SELECTORS:
        element = soup.select_one(selector)
        if element is not None and element.get_text(strip=True):
            logger.debug(f"Found main content using selector: {selector}")
            return element
    return None


def strip_page_chrome(soup: BeautifulSoup) -> BeautifulSoup:
    """Copy of ``soup`` without scripts, styles, navigation and ads."""
    cleaned = copy.copy(soup)
    for element in cleaned.select(REMOVED_ELEMENTS):
        element.decompose()
    return cleaned


def extract_text(soup: BeautifulSoup) -> str:
    """Extract the readable main text of a page.

    The caller's soup is left untouched.
    """
    try:
        cleaned = strip_page_chrome(soup)
        main = find_main_content(cleaned)
        if main is not None:
            return normalize_whitespace(main.get_text(" "))

        body = cleaned.body or cleaned
        return normalize_whitespace(body.get_text(" "))
    except Exception as e:
        logger.error(f"Error extracting text content: {e}", exc_info=True)
        return ""


def _meta_content(soup: BeautifulSoup, name: str, attr: str = "name") -> Optional[str]:
    tag = soup.find("meta", attrs={attr: name})
    if tag is None:
        return None
    value = (tag.get("content") or "").strip()
    return value or None


def extract_metadata(soup: BeautifulSoup) -> Dict[str, Any]:
    """Best-effort page metadata; fields that are absent are omitted."""
    metadata: Dict[str, Any] = {}

    try:
        if soup.title and soup.title.string and soup.title.string.strip():
            metadata["title"] = soup.title.string.strip()

        for key, name, attr in (
            ("description", "description", "name"),
            ("keywords", "keywords", "name"),
            ("author", "author", "name"),
            ("last_modified", "last-modified", "name"),
            ("og_title", "og:title", "property"),
            ("og_description", "og:description", "property"),
        ):
            value = _meta_content(soup, name, attr)
            if value:
                metadata[key] = value

        canonical = soup.find("link", rel="canonical")
        if canonical is not None and canonical.get("href"):
            metadata["canonical"] = canonical["href"]

        metadata["word_count"] = len(soup.get_text(" ").split())
        metadata["link_count"] = len(soup.select("a[href]"))
    except Exception as e:
        logger.error(f"Error extracting metadata: {e}", exc_info=True)

    return metadata


class DocumentFetcher:
    """Asynchronous documentation fetcher with retry and backoff.

    Use as an async context manager, or call :meth:`close` when done. A
    session passed in by the caller is used as-is and never closed here.
    """

    def __init__(self,
                 config: Optional[FetchConfig] = None,
                 retry: Optional[RetryConfig] = None,
                 session: Optional[aiohttp.ClientSession] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        """Initialize fetcher.

        Args:
            config: Timeout, user agent, allow-listed domains and rendering settings
            retry: Backoff settings for transient failures
            session: Optional pre-built aiohttp session
            sleep: Coroutine used for backoff waits
        """
        self.config = config or FetchConfig()
        self.retry = retry or RetryConfig()
        self.session = session
        self._owns_session = session is None
        self._sleep = sleep
        self._rendered_patterns: List[re.Pattern] = [
            re.compile(p, re.IGNORECASE) for p in self.config.rendered_url_patterns
        ]

    async def __aenter__(self):
        await self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
                headers={"User-Agent": self.config.user_agent, **DEFAULT_HEADERS},
            )
            self._owns_session = True
        return self.session

    async def close(self):
        """Close the session if this fetcher created it."""
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Backoff in seconds after failed attempt number ``attempt`` (1-based)."""
        delay_ms = self.retry.delay_ms * (self.retry.multiplier ** (attempt - 1))
        return min(delay_ms, self.retry.max_backoff_ms) / 1000.0

    def requires_rendering(self, url: str) -> bool:
        """Whether ``url`` matches a page that is built client-side."""
        return any(p.search(url) for p in self._rendered_patterns)

    async def _attempt(self, session: aiohttp.ClientSession, url: str, attempt: int) -> FetchResult:
        try:
            async with session.get(
                url,
                allow_redirects=True,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
            ) as response:
                if response.status >= 400:
                    return FetchError(url, FetchErrorKind.HTTP_STATUS,
                                      f"HTTP {response.status}", response.status, attempt)

                body = await response.text(errors="replace")
                if not body or not body.strip():
                    return EmptyContent(url, attempts=attempt)

                return FetchedContent(url=url, html=body, status_code=response.status,
                                      attempts=attempt, final_url=str(response.url))

        except asyncio.TimeoutError as e:
            return FetchError(url, FetchErrorKind.TIMEOUT, f"Timed out: {e}" if str(e) else "Timed out",
                              attempts=attempt)
        except (aiohttp.ClientError, OSError) as e:
            return FetchError(url, FetchErrorKind.NETWORK, str(e) or type(e).__name__, attempts=attempt)

    async def fetch(self, url: str) -> FetchResult:
        """Fetch a documentation page.

        Returns:
            ``FetchedContent`` on success; ``FetchError`` for invalid URLs and
            non-retryable failures (4xx other than 429); ``EmptyContent`` for
            an empty body or when every attempt failed transiently
        """
        try:
            url = check_source_url(url, self.config.allowed_domains)
        except InvalidUrlError as e:
            metrics.record_fetch("invalid_url", 0.0)
            return FetchError(e.url, FetchErrorKind.INVALID_URL, e.reason, attempts=0)

        session = await self._get_session()
        start_time = time.monotonic()
        max_attempts = self.retry.max_attempts
        last_error: Optional[FetchError] = None

        for attempt in range(1, max_attempts + 1):
            logger.debug(f"Fetching {url} (attempt {attempt}/{max_attempts})")
            result = await self._attempt(session, url, attempt)

            if not isinstance(result, FetchError):
                if isinstance(result, FetchedContent):
                    logger.debug(f"Fetched {url} in {time.monotonic() - start_time:.2f}s "
                                 f"(size: {len(result.html)} chars)")
                    metrics.record_fetch("success", time.monotonic() - start_time)
                else:
                    logger.warning(f"Empty response body from {url}")
                    metrics.record_fetch("empty", time.monotonic() - start_time)
                return result

            if not result.retryable:
                logger.warning(f"Non-retryable error fetching {url}: {result.message}")
                metrics.record_fetch(result.kind.value, time.monotonic() - start_time)
                return result

            last_error = result
            if attempt < max_attempts:
                delay = self._calculate_retry_delay(attempt)
                logger.warning(f"Retry {attempt}/{max_attempts - 1} for {url} in {delay:.2f}s: {result.message}")
                metrics.fetch_retries.inc()
                await self._sleep(delay)

        logger.error(f"Giving up on {url} after {max_attempts} attempts: "
                     f"{last_error.message if last_error else 'unknown error'}")
        metrics.record_fetch("exhausted", time.monotonic() - start_time)
        return EmptyContent(url, attempts=max_attempts, last_error=last_error)

    async def fetch_rendered(self, url: str) -> FetchResult:
        """Fetch a page after letting its scripts run in headless Chromium.

        Waits at most ``render_wait_ms`` for ``render_selector`` to appear,
        then snapshots the DOM whether or not it did.
        """
        try:
            url = check_source_url(url, self.config.allowed_domains)
        except InvalidUrlError as e:
            return FetchError(e.url, FetchErrorKind.INVALID_URL, e.reason, attempts=0)

        start_time = time.monotonic()
        try:
            async with async_playwright() as p:
                browser = await p.chromium.launch(headless=True)
                try:
                    page = await browser.new_page(user_agent=self.config.user_agent)
                    await page.goto(url, wait_until="domcontentloaded", timeout=self.config.timeout_ms)
                    try:
                        await page.wait_for_selector(self.config.render_selector,
                                                     timeout=self.config.render_wait_ms)
                    except PlaywrightTimeoutError:
                        logger.debug(f"{self.config.render_selector} did not appear on {url}, using current DOM")
                    html = await page.content()
                finally:
                    await browser.close()
        except PlaywrightTimeoutError as e:
            logger.warning(f"Timed out rendering {url}: {e}")
            metrics.record_fetch("timeout", time.monotonic() - start_time)
            return FetchError(url, FetchErrorKind.TIMEOUT, str(e), attempts=1)
        except PlaywrightError as e:
            logger.warning(f"Browser error rendering {url}: {e}")
            metrics.record_fetch("network", time.monotonic() - start_time)
            return FetchError(url, FetchErrorKind.NETWORK, str(e), attempts=1)

        metrics.record_fetch("success" if html.strip() else "empty", time.monotonic() - start_time)
        if not html.strip():
            return EmptyContent(url, attempts=1)
        return FetchedContent(url=url, html=html, attempts=1, final_url=url, rendered=True)

    async def fetch_document(self, url: str) -> FetchResult:
        """Fetch ``url`` through the rendering path when it needs one."""
        if self.requires_rendering(url):
            logger.debug(f"Using rendered fetch for {url}")
            return await self.fetch_rendered(url)
        return await self.fetch(url)
