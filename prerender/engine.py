"""Prerender orchestration: resolve routes, render them, merge content."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional, Union

from .browser import BrowserManager, BrowserOptions
from .config import CONTENT_TYPES, ConfigError, PrerenderConfig, ensure_valid_config
from .document import ContentRecord, PrerenderResult, SnapshotResult
from .extractor import PRE_JAVASCRIPT, OriginalContentExtractor
from .markup import apply_strip_modes
from .merger import ContentMerger
from .routes import EffectiveConfig, resolve_effective_config
from .server import wait_for_server
from .site import RouteResolver

LOGGER = logging.getLogger(__name__)

SnapshotWriter = Callable[[SnapshotResult], Union[None, Awaitable[None]]]


class PrerenderEngine:
    """Renders every resolved route and hands each snapshot to a writer.

    Args:
        config: Validated configuration.
        base_url: URL of the running site; defaults to ``config.server_url``.
        writer: Optional callable (sync or async) receiving each
            :class:`SnapshotResult` as soon as its route completes.
        browser: Optional pre-built :class:`BrowserManager`. When given,
            the engine launches it if needed but does not close it.
        probe_server: Wait for ``base_url`` to answer before launching the
            browser.
    """

    def __init__(
        self,
        config: PrerenderConfig,
        *,
        base_url: Optional[str] = None,
        writer: Optional[SnapshotWriter] = None,
        browser: Optional[BrowserManager] = None,
        probe_server: bool = True,
    ) -> None:
        self.config = config
        self.base_url = base_url or config.server_url
        self.writer = writer
        self.probe_server = probe_server
        self.merger = ContentMerger()
        self._browser = browser

    def _build_browser(self) -> BrowserManager:
        return BrowserManager(
            BrowserOptions(
                headless=self.config.headless,
                timeout=self.config.timeout,
                wait_until=self.config.wait_until,
                block_domains=list(self.config.block_domains),
            )
        )

    async def run(self) -> PrerenderResult:
        """Run the whole pipeline.

        Raises:
            ConfigError: Before any server or browser work, if the
                configuration is invalid or no base URL is known.
            SnapshotError: If a route could not be rendered after retries.
        """
        started = time.monotonic()
        ensure_valid_config(self.config)
        if not self.base_url:
            raise ConfigError("A server URL is required to prerender")

        LOGGER.info("Starting prerender of %s", self.base_url)
        if self.probe_server:
            await wait_for_server(self.base_url, timeout=self.config.server_wait_timeout / 1000)

        owns_browser = self._browser is None
        browser = self._browser or self._build_browser()
        try:
            await browser.launch()
            resolver = RouteResolver(self.config, browser, self.base_url)
            routes = await resolver.resolve()
            LOGGER.info("Found %d route(s) to process", len(routes))

            extractor = OriginalContentExtractor(
                self.config.serve_dir,
                source=self.config.original_content_source,
                browser=browser if self.config.original_content_source == PRE_JAVASCRIPT else None,
                cache_enabled=self.config.cache_original_content,
                timeout=self.config.pre_javascript_timeout,
            )
            snapshots = await self._process_routes(routes, browser, extractor, resolver)
        finally:
            if owns_browser:
                await browser.close()

        elapsed_ms = int((time.monotonic() - started) * 1000)
        LOGGER.info("Prerendering completed in %dms", elapsed_ms)
        return PrerenderResult(
            snapshots=snapshots,
            routes=routes,
            stats={
                "total_pages": len(snapshots),
                "discovered_routes": len(routes),
                "crawl_time_ms": elapsed_ms,
            },
        )

    async def _process_routes(
        self,
        routes: List[str],
        browser: BrowserManager,
        extractor: OriginalContentExtractor,
        resolver: RouteResolver,
    ) -> List[SnapshotResult]:
        limit = asyncio.Semaphore(max(1, self.config.concurrency))
        snapshots: List[SnapshotResult] = []
        tasks = [
            asyncio.ensure_future(self._process_route(route, browser, extractor, resolver, limit, snapshots))
            for route in routes
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return snapshots

    def _needs_original(self, effective: EffectiveConfig) -> bool:
        defaults = self.config.inject_defaults
        return any(effective.inject.for_type(name).include_original(defaults) for name in CONTENT_TYPES)

    async def _process_route(
        self,
        route: str,
        browser: BrowserManager,
        extractor: OriginalContentExtractor,
        resolver: RouteResolver,
        limit: asyncio.Semaphore,
        snapshots: List[SnapshotResult],
    ) -> None:
        async with limit:
            url = resolver.resolve_url(route)
            effective = resolve_effective_config(route, self.config)
            LOGGER.debug("Processing %s -> %s with %s", route, url, effective)
            try:
                page = await browser.take_snapshot(
                    url,
                    wait_until=effective.wait_until,
                    timeout=effective.timeout,
                    extra_delay=effective.extra_delay,
                    retry=effective.retry,
                    retry_delay=self.config.retry_delay,
                    block_domains=effective.block_domains,
                    auto_fallback_network_idle=self.config.auto_fallback_network_idle,
                )
            except Exception as exc:
                LOGGER.error("Failed to process %s: %s", route, exc)
                raise

            if self._needs_original(effective):
                original = await extractor.extract(route, url)
            else:
                original = ContentRecord()

            merged = self.merger.merge_content(
                original,
                page.extracted,
                self.config.inject_defaults,
                effective.inject,
            )
            html = apply_strip_modes(page.html, effective.strip)
            html = self.merger.apply_merged_content(html, merged)

            snapshot = SnapshotResult(
                url=url,
                html=html,
                title=merged.title or page.extracted.title,
                meta={**page.extracted.meta, **merged.meta},
                status_code=page.status_code,
                timestamp=page.timestamp,
            )
            snapshots.append(snapshot)
            LOGGER.info("Processed: %s", route)
            LOGGER.debug("Title for %s: %s; meta: %s", route, snapshot.title, snapshot.meta)

        if self.writer is not None:
            written = self.writer(snapshot)
            if inspect.isawaitable(written):
                await written


async def prerender_async(
    config: PrerenderConfig,
    *,
    base_url: Optional[str] = None,
    writer: Optional[SnapshotWriter] = None,
    **kwargs: Any,
) -> PrerenderResult:
    """Prerender every route of the site served at ``base_url``."""
    engine = PrerenderEngine(config, base_url=base_url, writer=writer, **kwargs)
    return await engine.run()


def prerender(
    config: PrerenderConfig,
    *,
    base_url: Optional[str] = None,
    writer: Optional[SnapshotWriter] = None,
    **kwargs: Any,
) -> PrerenderResult:
    """Synchronous wrapper for prerender_async."""
    return asyncio.run(prerender_async(config, base_url=base_url, writer=writer, **kwargs))
