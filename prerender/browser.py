"""Headless browser snapshots with retries, wait-strategy fallback and domain blocking.

One Chromium instance and one browser context are shared by every route;
each snapshot attempt runs in its own page, which is closed afterwards.

Example usage:

    from prerender.browser import BrowserManager, BrowserOptions

    options = BrowserOptions(wait_until="networkidle", block_domains=["youtube.com"])
    async with BrowserManager(options) as browser:
        page = await browser.take_snapshot("http://localhost:4173/about", retry=2)
        print(page.status_code, page.extracted.title)
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence
from urllib.parse import urlparse

from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from .document import ContentRecord, RenderedPage

LOGGER = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "PSS/1.0 (Prerendered Static Site Generator)"
DEFAULT_VIEWPORT = {"width": 1920, "height": 1080}
LAUNCH_ARGS = [
    "--disable-web-security",
    "--disable-features=VizDisplayCompositor",
    "--disable-dev-shm-usage",
    "--no-sandbox",
]

STRICT_WAIT_UNTIL = "networkidle"
FALLBACK_WAIT_UNTIL = "load"
DEFAULT_WAIT_UNTIL = "load"

# Meta keys follow the same rules as prerender.markup.parse_meta_tag.
EXTRACT_CONTENT_SCRIPT = """
() => {
    const meta = {};
    document.querySelectorAll('meta').forEach(tag => {
        const charset = tag.getAttribute('charset');
        if (charset) {
            meta['charset'] = charset;
            return;
        }
        const content = tag.getAttribute('content');
        if (content === null) {
            return;
        }
        const httpEquiv = tag.getAttribute('http-equiv');
        const key = httpEquiv
            ? 'http-equiv:' + httpEquiv
            : (tag.getAttribute('property') || tag.getAttribute('name'));
        if (key) {
            meta[key] = content;
        }
    });
    return {
        title: document.title || null,
        meta: meta,
        head: document.head ? document.head.innerHTML : null,
        body: document.body ? document.body.innerHTML : null,
    };
}
"""


class NavigationError(RuntimeError):
    """A navigation returned no response or a non-2xx status."""

    def __init__(
        self,
        url: str,
        message: str,
        *,
        status: Optional[int] = None,
        status_text: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status = status
        self.status_text = status_text
        self.headers = headers or {}


class SnapshotError(RuntimeError):
    """All snapshot attempts for a URL failed."""

    def __init__(
        self,
        url: str,
        attempts: int,
        last_error: Optional[BaseException],
        *,
        status: Optional[int] = None,
        status_text: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        message = f"Failed to take snapshot of {url} after {attempts} attempt(s): {last_error}"
        if status is not None:
            detail = f"HTTP {status} {status_text}" if status_text else f"HTTP {status}"
            message += f" (last response: {detail})"
        super().__init__(message)
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        self.status = status
        self.status_text = status_text
        self.headers = headers or {}


def is_timeout_error(exc: BaseException) -> bool:
    """Return True for navigation timeouts from Playwright or asyncio."""
    if isinstance(exc, NavigationError):
        return False
    if isinstance(exc, (PlaywrightTimeoutError, asyncio.TimeoutError)):
        return True
    return "Timeout" in str(exc)


def should_block(url: str, domains: Sequence[str]) -> bool:
    """Match a request URL against blocked domains.

    A request is blocked when its URL contains a domain string or its
    hostname equals the domain or is a subdomain of it.
    """
    if not domains:
        return False
    hostname = (urlparse(url).hostname or "").lower()
    for domain in domains:
        if not domain:
            continue
        if domain in url:
            return True
        domain = domain.lower()
        if hostname == domain or hostname.endswith(f".{domain}"):
            return True
    return False


class RetryDecision(Enum):
    FALLBACK = "fallback"
    RETRY = "retry"
    EXHAUSTED = "exhausted"


class RetryPlan:
    """Wait-strategy selection followed by bounded retry.

    The first timeout under ``networkidle`` switches the plan to ``load``
    without consuming a retry. That switch happens at most once; every
    other failure is counted, and more than ``retry`` counted failures
    exhausts the plan.
    """

    def __init__(self, wait_until: str, retry: int, *, auto_fallback: bool = True) -> None:
        self.wait_until = wait_until
        self.retry = max(0, retry)
        self.auto_fallback = auto_fallback
        self.fallback_used = False
        self.failures = 0
        self.attempts = 0

    def start_attempt(self) -> str:
        self.attempts += 1
        return self.wait_until

    def on_failure(self, exc: BaseException) -> RetryDecision:
        if (
            self.auto_fallback
            and not self.fallback_used
            and self.wait_until == STRICT_WAIT_UNTIL
            and is_timeout_error(exc)
        ):
            self.fallback_used = True
            self.wait_until = FALLBACK_WAIT_UNTIL
            return RetryDecision.FALLBACK

        self.failures += 1
        if self.failures > self.retry:
            return RetryDecision.EXHAUSTED
        return RetryDecision.RETRY


@dataclass
class BrowserOptions:
    """Launch and default navigation options (timeout in milliseconds)."""

    headless: bool = True
    timeout: int = 5000
    user_agent: str = DEFAULT_USER_AGENT
    viewport: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_VIEWPORT))
    wait_until: str = DEFAULT_WAIT_UNTIL
    block_domains: List[str] = field(default_factory=list)


def content_record_from_dom(data: Optional[Dict[str, Any]]) -> ContentRecord:
    """Convert the result of :data:`EXTRACT_CONTENT_SCRIPT` to a record."""
    data = data or {}
    meta = data.get("meta") or {}
    return ContentRecord(
        title=data.get("title") or None,
        meta={str(key): str(value) for key, value in meta.items()},
        head=data.get("head") or None,
        body=data.get("body") or None,
    )


def _now_ms() -> int:
    return int(time.time() * 1000)


class BrowserManager:
    """Owns the shared browser and context and renders routes in fresh pages."""

    def __init__(self, options: Optional[BrowserOptions] = None) -> None:
        self.options = options or BrowserOptions()
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None

    async def __aenter__(self) -> "BrowserManager":
        await self.launch()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    async def launch(self) -> None:
        if self._browser is not None:
            return

        LOGGER.info("Launching browser...")
        LOGGER.debug("Browser options: %s", self.options)
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.options.headless,
            args=list(LAUNCH_ARGS),
        )
        self._context = await self._browser.new_context(
            viewport=self.options.viewport,
            user_agent=self.options.user_agent,
            ignore_https_errors=True,
            extra_http_headers={"Accept-Language": "en-US,en;q=0.9"},
        )

        if self.options.block_domains:
            LOGGER.debug("Blocking domains globally: %s", ", ".join(self.options.block_domains))
            await self._context.route("**/*", self._route_handler(self.options.block_domains))

        self._context.set_default_timeout(self.options.timeout)
        self._context.set_default_navigation_timeout(self.options.timeout)
        LOGGER.info("Browser launched")

    async def close(self) -> None:
        if self._context is not None:
            await self._context.close()
            self._context = None
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
            LOGGER.info("Browser closed")
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    def _require_context(self) -> Any:
        if self._context is None:
            raise RuntimeError("Browser not initialized. Call launch() first.")
        return self._context

    @staticmethod
    def _route_handler(domains: Sequence[str]):
        domains = list(domains)

        async def handle(route) -> None:
            url = route.request.url
            if should_block(url, domains):
                LOGGER.debug("Blocking request to %s", url)
                await route.abort()
            else:
                await route.continue_()

        return handle

    @asynccontextmanager
    async def new_page(self, block_domains: Optional[Sequence[str]] = None) -> AsyncIterator[Any]:
        """Open an isolated page, optionally with its own blocking rule.

        A non-empty ``block_domains`` that differs from the global list
        replaces the global rule for this page only. The page rule is
        removed and the page closed on exit.
        """
        context = self._require_context()
        page = await context.new_page()
        handler = None
        try:
            if block_domains and list(block_domains) != list(self.options.block_domains):
                LOGGER.debug("Blocking domains for this page: %s", ", ".join(block_domains))
                handler = self._route_handler(block_domains)
                await page.route("**/*", handler)
            yield page
        finally:
            if handler is not None and not page.is_closed():
                await page.unroute("**/*", handler)
            await page.close()

    async def take_snapshot(
        self,
        url: str,
        *,
        wait_until: Optional[str] = None,
        timeout: Optional[int] = None,
        extra_delay: int = 0,
        retry: int = 2,
        retry_delay: int = 1000,
        block_domains: Optional[Sequence[str]] = None,
        auto_fallback_network_idle: bool = True,
    ) -> RenderedPage:
        """Render ``url`` and capture its post-script HTML and content.

        Raises:
            SnapshotError: If every attempt failed. Carries the last error
                and the last HTTP status, status text and headers seen.
        """
        self._require_context()
        plan = RetryPlan(
            wait_until or self.options.wait_until,
            retry,
            auto_fallback=auto_fallback_network_idle,
        )
        timeout = self.options.timeout if timeout is None else timeout
        last_error: Optional[BaseException] = None
        last_response: Optional[NavigationError] = None

        while True:
            current_wait = plan.start_attempt()
            try:
                return await self._attempt(url, current_wait, timeout, extra_delay, block_domains)
            except Exception as exc:
                last_error = exc
                if isinstance(exc, NavigationError) and exc.status is not None:
                    last_response = exc

            decision = plan.on_failure(last_error)
            if decision is RetryDecision.FALLBACK:
                LOGGER.warning(
                    "Timeout waiting for '%s' on %s; retrying once with '%s' (not counted as a retry)",
                    STRICT_WAIT_UNTIL,
                    url,
                    FALLBACK_WAIT_UNTIL,
                )
                continue
            if decision is RetryDecision.EXHAUSTED:
                break

            LOGGER.warning(
                "Snapshot attempt %d/%d failed for %s: %s",
                plan.failures,
                plan.retry + 1,
                url,
                last_error,
            )
            if is_timeout_error(last_error):
                LOGGER.warning(
                    "Timeout after %dms with wait strategy '%s'; consider a longer timeout, "
                    "a looser wait strategy or blocking slow third-party domains",
                    timeout,
                    plan.wait_until,
                )
            LOGGER.debug("Snapshot failure for %s", url, exc_info=last_error)
            if retry_delay > 0:
                await asyncio.sleep(retry_delay / 1000)

        raise SnapshotError(
            url,
            plan.attempts,
            last_error,
            status=last_response.status if last_response else None,
            status_text=last_response.status_text if last_response else None,
            headers=last_response.headers if last_response else None,
        )

    async def _attempt(
        self,
        url: str,
        wait_until: str,
        timeout: int,
        extra_delay: int,
        block_domains: Optional[Sequence[str]],
    ) -> RenderedPage:
        async with self.new_page(block_domains) as page:
            LOGGER.info("Taking snapshot: %s", url)
            LOGGER.debug("Navigating to %s (wait_until=%s, timeout=%dms)", url, wait_until, timeout)
            response = await page.goto(url, wait_until=wait_until, timeout=timeout)
            if response is None:
                raise NavigationError(url, f"Failed to load {url}: no response received")

            status = response.status
            if not 200 <= status < 300:
                headers = await response.all_headers()
                raise NavigationError(
                    url,
                    f"HTTP {status}: {response.status_text}",
                    status=status,
                    status_text=response.status_text,
                    headers=headers,
                )

            if extra_delay > 0:
                LOGGER.debug("Waiting %dms extra delay for %s", extra_delay, url)
                await page.wait_for_timeout(extra_delay)

            extracted = content_record_from_dom(await page.evaluate(EXTRACT_CONTENT_SCRIPT))
            html = await page.content()
            LOGGER.debug("Captured %d characters from %s", len(html), url)

        return RenderedPage(
            url=url,
            html=html,
            status_code=status,
            extracted=extracted,
            timestamp=_now_ms(),
        )


async def take_snapshot(url: str, options: Optional[BrowserOptions] = None, **kwargs: Any) -> RenderedPage:
    """Launch a browser, render a single URL and close the browser again."""
    async with BrowserManager(options) as browser:
        return await browser.take_snapshot(url, **kwargs)
