"""Route normalization and per-route configuration resolution."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Iterable, List, Optional, Pattern, Sequence

from .config import ContentInject, ExcludePattern, PrerenderConfig, RouteConfig

LOGGER = logging.getLogger(__name__)

GLOBAL_WILDCARD = "*"


def normalize_route(route: str) -> str:
    """Strip query and fragment and ensure a leading ``/``.

    Total and idempotent: every string maps to exactly one route and
    normalizing a normalized route returns it unchanged.
    """
    clean = route.split("?", 1)[0].split("#", 1)[0]
    return clean if clean.startswith("/") else f"/{clean}"


def is_excluded(route: str, patterns: Iterable[ExcludePattern]) -> bool:
    """Return True if ``route`` contains a string pattern or matches a regex."""
    for pattern in patterns:
        if isinstance(pattern, str):
            if pattern and pattern in route:
                return True
        elif pattern.search(route):
            return True
    return False


@lru_cache(maxsize=256)
def _wildcard_regex(pattern: str) -> Pattern[str]:
    parts = (re.escape(part) for part in pattern.split(GLOBAL_WILDCARD))
    return re.compile("^" + ".*".join(parts) + "$")


def route_matches(route: str, pattern: str) -> bool:
    """Match ``route`` against an exact or ``*``-wildcard pattern."""
    if pattern == route or pattern == GLOBAL_WILDCARD:
        return True
    if GLOBAL_WILDCARD in pattern:
        return bool(_wildcard_regex(pattern).match(route))
    return False


def find_route_config(route: str, configs: Sequence[RouteConfig]) -> Optional[RouteConfig]:
    """Return the single highest-priority override for ``route``.

    Priority is exact match, then a wildcard pattern other than the bare
    ``*``, then the global ``*``. Within a tier the first declared wins.
    """
    for config in configs:
        if config.route == route:
            return config
    for config in configs:
        if (
            config.route != GLOBAL_WILDCARD
            and GLOBAL_WILDCARD in config.route
            and route_matches(route, config.route)
        ):
            return config
    for config in configs:
        if config.route == GLOBAL_WILDCARD:
            return config
    return None


@dataclass(frozen=True)
class EffectiveConfig:
    """Settings for one route after applying its best-matching override."""

    route: str
    wait_until: str
    timeout: int
    extra_delay: int
    block_domains: List[str] = field(default_factory=list)
    retry: int = 2
    strip: List[str] = field(default_factory=list)
    inject: ContentInject = field(default_factory=ContentInject)
    pattern: Optional[str] = None


def _pick(override, fallback):
    return fallback if override is None else override


def resolve_effective_config(route: str, config: PrerenderConfig) -> EffectiveConfig:
    """Compute the effective settings for ``route``.

    Only the chosen override applies; each field it leaves unset takes the
    global value.
    """
    matched = find_route_config(route, config.route_config)
    if matched is None:
        LOGGER.debug("Route %s: no override, using global settings", route)
        return EffectiveConfig(
            route=route,
            wait_until=config.wait_until,
            timeout=config.timeout,
            extra_delay=config.extra_delay,
            block_domains=list(config.block_domains),
            retry=config.retry,
            strip=list(config.strip),
            inject=config.inject,
        )

    LOGGER.debug("Route %s: using override pattern %r", route, matched.route)
    return EffectiveConfig(
        route=route,
        wait_until=_pick(matched.wait_until, config.wait_until),
        timeout=_pick(matched.timeout, config.timeout),
        extra_delay=_pick(matched.extra_delay, config.extra_delay),
        block_domains=list(_pick(matched.block_domains, config.block_domains)),
        retry=_pick(matched.retry, config.retry),
        strip=list(_pick(matched.strip, config.strip)),
        inject=config.inject.overlay(matched.inject),
        pattern=matched.route,
    )
