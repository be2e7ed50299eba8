"""Original (pre-script) content extraction.

Two sources are supported:

- ``static-file``: read the HTML file the static server would return for
  the route and scan it for title, meta, head and body.
- ``pre-javascript``: navigate to the route, waiting only for
  ``domcontentloaded``, and read the DOM before scripts have mutated it.

Extraction never raises: unreadable files and failed navigations produce
an empty :class:`ContentRecord`.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, Optional

from .browser import EXTRACT_CONTENT_SCRIPT, BrowserManager, content_record_from_dom
from .document import ContentRecord
from .markup import extract_body, extract_head, extract_meta, extract_title

LOGGER = logging.getLogger(__name__)

STATIC_FILE = "static-file"
PRE_JAVASCRIPT = "pre-javascript"
INDEX_FILE = "index.html"


def parse_html_content(markup: str) -> ContentRecord:
    """Scan a full HTML document into a :class:`ContentRecord`."""
    return ContentRecord(
        title=extract_title(markup),
        meta=extract_meta(markup),
        head=extract_head(markup) or None,
        body=extract_body(markup) or None,
    )


def route_to_file(route: str, serve_dir: str) -> Path:
    """Map a route to the file a static server would serve for it.

    ``/`` maps to ``index.html``, a trailing slash to the directory index,
    ``.html`` routes to themselves; anything else to ``<route>.html`` when
    that file exists, else to ``<route>/index.html``.
    """
    root = Path(serve_dir)
    clean = route.lstrip("/")
    if not clean:
        return root / INDEX_FILE
    if clean.endswith("/"):
        return root / clean / INDEX_FILE
    if clean.endswith(".html"):
        return root / clean
    candidate = root / f"{clean}.html"
    if candidate.is_file():
        return candidate
    return root / clean / INDEX_FILE


class OriginalContentExtractor:
    """Produces the original content record for a route.

    Results are cached per ``(route, source)`` for the lifetime of the
    extractor when caching is enabled; concurrent requests for the same key
    share one in-flight extraction.
    """

    def __init__(
        self,
        serve_dir: str,
        *,
        source: str = STATIC_FILE,
        browser: Optional[BrowserManager] = None,
        cache_enabled: bool = True,
        timeout: int = 10000,
    ) -> None:
        if source not in (STATIC_FILE, PRE_JAVASCRIPT):
            raise ValueError(f"Unsupported original content source: {source}")
        if source == PRE_JAVASCRIPT and browser is None:
            raise ValueError("A browser is required for pre-javascript extraction")
        self.serve_dir = serve_dir
        self.source = source
        self.browser = browser
        self.cache_enabled = cache_enabled
        self.timeout = timeout
        self._cache: Dict[str, "asyncio.Task[ContentRecord]"] = {}

    async def extract(self, route: str, url: Optional[str] = None) -> ContentRecord:
        """Return the original content for ``route``.

        Args:
            route: Normalized route path.
            url: Absolute URL of the route; required for ``pre-javascript``.
        """
        if not self.cache_enabled:
            return await self._extract(route, url)

        key = f"{route}:{self.source}"
        task = self._cache.get(key)
        if task is None:
            task = asyncio.ensure_future(self._extract(route, url))
            self._cache[key] = task
        else:
            LOGGER.debug("Using cached original content for %s", route)
        return await asyncio.shield(task)

    async def _extract(self, route: str, url: Optional[str]) -> ContentRecord:
        if self.source == STATIC_FILE:
            return await self._from_static_file(route)
        return await self._from_pre_javascript(route, url)

    async def _from_static_file(self, route: str) -> ContentRecord:
        path: Optional[Path] = None
        try:
            path = route_to_file(route, self.serve_dir)
            root = Path(self.serve_dir).resolve()
            if root not in path.resolve().parents:
                LOGGER.warning("Route %s resolves outside %s; no original content", route, self.serve_dir)
                return ContentRecord()

            LOGGER.debug("Reading original content for %s from %s", route, path)
            markup = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except (OSError, ValueError, UnicodeDecodeError) as exc:
            LOGGER.warning("Could not read original content for %s (%s): %s", route, path, exc)
            return ContentRecord()
        return parse_html_content(markup)

    async def _from_pre_javascript(self, route: str, url: Optional[str]) -> ContentRecord:
        if not url:
            LOGGER.warning("No URL for pre-javascript extraction of %s", route)
            return ContentRecord()

        LOGGER.debug("Extracting pre-javascript content for %s", url)
        try:
            async with self.browser.new_page() as page:
                await page.goto(url, wait_until="domcontentloaded", timeout=self.timeout)
                data = await page.evaluate(EXTRACT_CONTENT_SCRIPT)
        except Exception as exc:
            LOGGER.warning("Pre-javascript extraction failed for %s: %s", url, exc)
            return ContentRecord()
        return content_record_from_dom(data)

    def clear_cache(self) -> None:
        self._cache.clear()
        LOGGER.debug("Original content cache cleared")

    def cache_stats(self) -> Dict[str, object]:
        return {"size": len(self._cache), "keys": list(self._cache)}
