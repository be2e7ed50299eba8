"""Command-line interface for prerendering a running site."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .cli_config import load_env, resolve_config
from .cli_output import copy_static_assets, write_snapshot
from .config import CONTENT_SOURCES, STRIP_MODES, WAIT_STRATEGIES, PrerenderConfig, ensure_valid_config
from .engine import prerender_async


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="prerender",
        description="Prerender a running single-page site into static HTML files.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  # Prerender the site served at localhost:4173 into ./prerendered
  prerender --server-url http://localhost:4173

  # Use a config file and wait for network idle, blocking video embeds
  prerender -c prerender.config.json --wait-until networkidle \\
      --block-domains youtube.com googlevideo.com

  # Only render sitemap and explicit routes, flat file names
  prerender --server-url http://localhost:4173 --no-crawl --flat-output

  # Empty the rendered head except for its title
  prerender --server-url http://localhost:4173 --strip head-except-title
""",
    )

    parser.add_argument("-c", "--config", type=str, default=None, help="Path to a JSON configuration file")
    parser.add_argument("--server-url", type=str, default=None, help="URL of the running site")
    parser.add_argument("-s", "--serve-dir", type=str, default=None, help="Directory the site is served from (default: dist)")
    parser.add_argument("-o", "--out-dir", type=str, default=None, help="Output directory (default: prerendered)")
    parser.add_argument("--routes", nargs="+", default=None, help="Explicit routes to render")
    parser.add_argument("--concurrency", type=int, default=None, help="Routes rendered in parallel (default: 5)")
    parser.add_argument(
        "--strip",
        nargs="+",
        choices=STRIP_MODES,
        default=None,
        help="HTML stripping modes applied before injection",
    )
    parser.add_argument("--timeout", type=int, default=None, help="Navigation timeout in milliseconds (default: 5000)")
    parser.add_argument(
        "--wait-until",
        choices=WAIT_STRATEGIES,
        default=None,
        help="When navigation counts as finished (default: load)",
    )
    parser.add_argument("--retry", type=int, default=None, help="Retries after a failed snapshot (default: 2)")
    parser.add_argument("--block-domains", nargs="+", default=None, help="Domains to block while rendering")
    parser.add_argument(
        "--auto-fallback-network-idle",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Fall back from networkidle to load once on timeout (default: on)",
    )
    parser.add_argument(
        "--original-content-source",
        choices=CONTENT_SOURCES,
        default=None,
        help="Source for original content (default: static-file)",
    )
    parser.add_argument(
        "--cache-original-content",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Cache original content per route (default: on)",
    )
    parser.add_argument("--crawl-depth", type=int, default=None, help="Maximum link crawl depth (default: 3)")
    parser.add_argument("--crawl-concurrency", type=int, default=None, help="Pages crawled in parallel (default: 3)")
    parser.add_argument("--no-crawl", action="store_true", help="Disable link crawling")
    parser.add_argument(
        "--flat-output",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Write path-to-page.html instead of nested directories",
    )
    parser.add_argument("--dry-run", action="store_true", help="Validate and show the configuration, then exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    return parser.parse_args(argv)


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {
        "server_url": args.server_url,
        "serve_dir": args.serve_dir,
        "out_dir": args.out_dir,
        "routes": args.routes,
        "concurrency": args.concurrency,
        "strip": args.strip,
        "timeout": args.timeout,
        "wait_until": args.wait_until,
        "retry": args.retry,
        "block_domains": args.block_domains,
        "auto_fallback_network_idle": args.auto_fallback_network_idle,
        "original_content_source": args.original_content_source,
        "cache_original_content": args.cache_original_content,
        "flat_output": args.flat_output,
    }
    if args.no_crawl:
        overrides["crawl_links"] = False
    elif args.crawl_depth is not None or args.crawl_concurrency is not None:
        crawl: Dict[str, int] = {}
        if args.crawl_depth is not None:
            crawl["depth"] = args.crawl_depth
        if args.crawl_concurrency is not None:
            crawl["concurrency"] = args.crawl_concurrency
        overrides["crawl_links"] = crawl
    return overrides


def _log_config(config: PrerenderConfig, source: str) -> None:
    logging.info("Configuration source: %s", source)
    logging.info("Server URL: %s", config.server_url or "(not set)")
    logging.info("Serve directory: %s -> output directory: %s", config.serve_dir, config.out_dir)
    logging.info("Concurrency: %d, timeout: %dms, wait until: %s", config.concurrency, config.timeout, config.wait_until)
    logging.info("Strip modes: %s", ", ".join(config.strip) or "none")
    if config.block_domains:
        logging.info("Block domains: %s", ", ".join(config.block_domains))
    crawl = config.crawl_settings
    if crawl is None:
        logging.info("Link crawling: off")
    else:
        logging.info("Link crawling: depth %d, concurrency %d", crawl.depth, crawl.concurrency)
    logging.info(
        "Original content: %s (cache: %s)",
        config.original_content_source,
        config.cache_original_content,
    )


async def _run_async(args: argparse.Namespace) -> int:
    """Main async entry point."""
    config, source = resolve_config(args.config, _cli_overrides(args), cwd=Path.cwd())
    _log_config(config, source)

    ensure_valid_config(config)
    if args.dry_run:
        logging.info("Dry run: configuration is valid, nothing was rendered")
        return 0

    out_dir = copy_static_assets(config.serve_dir, config.out_dir)
    result = await prerender_async(
        config,
        writer=lambda snapshot: write_snapshot(snapshot, out_dir, config.flat_output),
    )
    logging.info(
        "Prerendered %d page(s) from %d route(s) in %.2fs",
        result.stats.get("total_pages", 0),
        result.stats.get("discovered_routes", 0),
        result.stats.get("crawl_time_ms", 0) / 1000,
    )
    logging.info("Output directory: %s", out_dir)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the prerender command."""
    args = _parse_args(argv)
    _setup_logging(args.verbose)
    load_env(cwd=Path.cwd(), load_env=load_dotenv)

    try:
        return asyncio.run(_run_async(args))
    except KeyboardInterrupt:
        logging.info("Interrupted")
        return 130
    except Exception as exc:
        logging.error("Prerendering failed: %s", exc)
        if args.verbose:
            logging.exception("Full traceback:")
        return 1


if __name__ == "__main__":
    sys.exit(main())
