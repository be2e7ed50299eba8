"""Headless-browser prerendering for single-page sites.

This package renders each route of a running site in Chromium, captures
the post-script HTML and patches it with title, meta, head and body
content merged from up to three sources. It supports:

- Route discovery from explicit routes, ``sitemap.xml`` and a BFS link crawl
- Per-route overrides matched by exact path or ``*`` wildcard
- Retries with a one-time ``networkidle`` -> ``load`` fallback
- Blocking third-party domains globally or per route
- Original (pre-script) content from static files or an early DOM read

Example usage:

    from prerender import PrerenderConfig, prerender_async

    config = PrerenderConfig(
        server_url="http://localhost:4173",
        routes=["/", "/about"],
        wait_until="networkidle",
        block_domains=["youtube.com"],
    )
    result = await prerender_async(config)
    for snapshot in result.snapshots:
        print(snapshot.url, snapshot.title)

    # Write each snapshot as soon as it is ready
    from prerender.cli_output import write_snapshot

    await prerender_async(
        config,
        writer=lambda snapshot: write_snapshot(snapshot, "prerendered"),
    )
"""

from __future__ import annotations

from .browser import BrowserManager, BrowserOptions, NavigationError, SnapshotError, take_snapshot
from .config import (
    ConfigError,
    ContentInject,
    ContentTypeInject,
    CrawlSettings,
    InjectDefaults,
    PrerenderConfig,
    RouteConfig,
    config_from_dict,
    validate_config,
)
from .document import ContentRecord, MergedContent, PrerenderResult, RenderedPage, SnapshotResult
from .engine import PrerenderEngine, prerender, prerender_async
from .extractor import OriginalContentExtractor
from .merger import ContentMerger
from .routes import EffectiveConfig, resolve_effective_config
from .server import ServerUnavailableError, wait_for_server
from .site import RouteResolver

__all__ = [
    # Document types
    "ContentRecord",
    "MergedContent",
    "RenderedPage",
    "SnapshotResult",
    "PrerenderResult",
    # Config
    "PrerenderConfig",
    "RouteConfig",
    "CrawlSettings",
    "InjectDefaults",
    "ContentInject",
    "ContentTypeInject",
    "ConfigError",
    "config_from_dict",
    "validate_config",
    # Route config resolution
    "EffectiveConfig",
    "resolve_effective_config",
    # Components
    "RouteResolver",
    "BrowserManager",
    "BrowserOptions",
    "OriginalContentExtractor",
    "ContentMerger",
    # Errors
    "NavigationError",
    "SnapshotError",
    "ServerUnavailableError",
    # Entry points
    "PrerenderEngine",
    "prerender",
    "prerender_async",
    "take_snapshot",
    "wait_for_server",
]
