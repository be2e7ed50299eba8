"""Route discovery from explicit routes, the sitemap and a BFS link crawl."""

from __future__ import annotations

import asyncio
import logging
import xml.etree.ElementTree as ET
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Deque, Iterable, List, Optional, Sequence, Set, Tuple
from urllib.parse import urljoin, urlparse

from .browser import DEFAULT_WAIT_UNTIL, BrowserManager
from .config import CrawlSettings, ExcludePattern, PrerenderConfig
from .markup import extract_hrefs
from .routes import is_excluded, normalize_route

LOGGER = logging.getLogger(__name__)

SKIP_PROTOCOLS: Tuple[str, ...] = (
    "mailto:",
    "tel:",
    "sms:",
    "fax:",
    "ftp:",
    "sftp:",
    "ftps:",
    "javascript:",
    "data:",
    "blob:",
    "file:",
    "about:",
    "chrome:",
    "chrome-extension:",
    "moz-extension:",
    "webkit:",
    "resource:",
)


@dataclass
class CrawlState:
    """Visited/discovered sets and the work queue of one crawl run."""

    visited: Set[str] = field(default_factory=set)
    discovered: Set[str] = field(default_factory=set)
    queue: Deque[Tuple[str, int]] = field(default_factory=deque)

    def seed(self, routes: Iterable[str]) -> None:
        for route in routes:
            route = normalize_route(route)
            if route not in self.visited:
                self.visited.add(route)
                self.queue.append((route, 0))

    def offer(self, route: str, depth: int) -> bool:
        """Enqueue ``route`` if it was never seen; return True if new."""
        if route in self.visited:
            return False
        self.visited.add(route)
        self.discovered.add(route)
        self.queue.append((route, depth))
        return True

    def next_wave(self, size: int) -> List[Tuple[str, int]]:
        wave = []
        while self.queue and len(wave) < size:
            wave.append(self.queue.popleft())
        return wave


def _origin(url: str) -> Tuple[str, str]:
    parsed = urlparse(url)
    return parsed.scheme.lower(), parsed.netloc.lower()


def extract_links(html: str, base_url: str, *, crawl_special_protocols: bool = False) -> List[str]:
    """Return same-origin link paths found in anchor tags.

    Fragment-only links and cross-origin links are dropped, as are links
    using a scheme from :data:`SKIP_PROTOCOLS` unless
    ``crawl_special_protocols`` is set.
    """
    base_origin = _origin(base_url)
    links = []
    for href in extract_hrefs(html):
        if not href or href.startswith("#"):
            continue
        lowered = href.lower()
        special = any(lowered.startswith(protocol) for protocol in SKIP_PROTOCOLS)
        if special and not crawl_special_protocols:
            continue

        try:
            resolved = urljoin(base_url, href)
            parsed = urlparse(resolved)
        except ValueError:
            LOGGER.debug("Skipping malformed link %r", href)
            continue

        if parsed.scheme in ("http", "https"):
            if _origin(resolved) != base_origin:
                continue
        elif not crawl_special_protocols:
            continue

        links.append(parsed.path or "/")
    return links


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def parse_sitemap_xml(xml_text: str, exclude: Sequence[ExcludePattern] = ()) -> List[str]:
    """Read ``<urlset><url><loc>`` entries into normalized routes.

    Entries whose ``loc`` is not an absolute URL are skipped with a warning.

    Raises:
        xml.etree.ElementTree.ParseError: If the document is not valid XML.
    """
    root = ET.fromstring(xml_text)
    if _local_name(root.tag) != "urlset":
        LOGGER.warning("Sitemap root is <%s>, expected <urlset>; ignoring it", _local_name(root.tag))
        return []

    routes: List[str] = []
    for url_element in root:
        if _local_name(url_element.tag) != "url":
            continue
        loc = next(
            (child.text for child in url_element if _local_name(child.tag) == "loc"),
            None,
        )
        if not loc or not loc.strip():
            continue
        try:
            parsed = urlparse(loc.strip())
        except ValueError:
            parsed = None
        if parsed is None or not parsed.scheme or not parsed.netloc:
            LOGGER.warning("Invalid URL in sitemap: %s", loc.strip())
            continue
        route = normalize_route(parsed.path)
        if is_excluded(route, exclude):
            LOGGER.debug("Excluded sitemap route %s", route)
            continue
        routes.append(route)
    return routes


async def parse_sitemap(path: Path, exclude: Sequence[ExcludePattern] = ()) -> List[str]:
    """Load routes from a sitemap file; any failure yields no routes."""
    try:
        if not path.is_file():
            LOGGER.warning("No sitemap found at %s", path)
            return []
        xml_text = await asyncio.to_thread(path.read_text, encoding="utf-8")
        routes = parse_sitemap_xml(xml_text, exclude)
    except (OSError, UnicodeDecodeError, ValueError, ET.ParseError) as exc:
        LOGGER.warning("Failed to parse sitemap %s: %s", path, exc)
        return []
    LOGGER.info("Found %d route(s) in sitemap", len(routes))
    return routes


class RouteResolver:
    """Produces the deduplicated set of routes to render."""

    def __init__(self, config: PrerenderConfig, browser: Optional[BrowserManager], base_url: str) -> None:
        self.config = config
        self.browser = browser
        self.base_url = base_url.rstrip("/")

    def resolve_url(self, route: str) -> str:
        return f"{self.base_url}{route}"

    async def resolve(self) -> List[str]:
        """Return explicit, sitemap and crawled routes, normalized and deduplicated."""
        routes = [normalize_route(route) for route in self.config.routes]
        sitemap_path = Path(self.config.serve_dir) / self.config.sitemap
        routes.extend(await parse_sitemap(sitemap_path, self.config.exclude))
        if not routes:
            LOGGER.debug("No explicit or sitemap routes, seeding with /")
            routes = ["/"]

        settings = self.config.crawl_settings
        if settings is not None and self.browser is not None:
            LOGGER.info("Crawling links to discover routes...")
            crawled = await self.crawl(routes, settings)
            LOGGER.info("Discovered %d additional route(s) by crawling", len(crawled))
            routes.extend(crawled)

        unique = list(dict.fromkeys(routes))
        LOGGER.debug("Resolved routes: %s", ", ".join(unique))
        return unique

    async def crawl(self, seeds: Sequence[str], settings: CrawlSettings) -> List[str]:
        """Breadth-first crawl from ``seeds`` up to ``settings.depth``.

        Returns the newly discovered routes (seeds are not included).
        """
        state = CrawlState()
        state.seed(seeds)
        limit = asyncio.Semaphore(max(1, settings.concurrency))

        while state.queue:
            wave = state.next_wave(max(1, settings.concurrency))
            LOGGER.debug("Crawling wave of %d route(s)", len(wave))
            await asyncio.gather(
                *(self._crawl_route(route, depth, settings.depth, state, limit) for route, depth in wave)
            )

        return sorted(state.discovered)

    async def _crawl_route(
        self,
        route: str,
        depth: int,
        max_depth: int,
        state: CrawlState,
        limit: asyncio.Semaphore,
    ) -> None:
        if depth >= max_depth:
            LOGGER.debug("Not crawling %s: max depth reached", route)
            return
        if is_excluded(route, self.config.exclude):
            LOGGER.debug("Not crawling %s: excluded", route)
            return

        url = self.resolve_url(route)
        async with limit:
            try:
                page = await self.browser.take_snapshot(
                    url,
                    wait_until=DEFAULT_WAIT_UNTIL,
                    timeout=self.config.timeout,
                    extra_delay=self.config.extra_delay,
                    retry=self.config.retry,
                    retry_delay=self.config.retry_delay,
                    auto_fallback_network_idle=self.config.auto_fallback_network_idle,
                )
            except Exception as exc:
                LOGGER.warning("Failed to crawl %s: %s", route, exc)
                LOGGER.debug("Crawl failure for %s", route, exc_info=exc)
                return

        links = extract_links(
            page.html,
            url,
            crawl_special_protocols=self.config.crawl_special_protocols,
        )
        LOGGER.debug("Found %d link(s) on %s", len(links), route)
        for link in links:
            link = normalize_route(link)
            if is_excluded(link, self.config.exclude):
                continue
            if state.offer(link, depth + 1):
                LOGGER.debug("Discovered route %s (depth %d)", link, depth + 1)
