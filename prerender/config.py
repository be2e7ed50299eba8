"""Configuration records for prerender runs.

The configuration is a tree of dataclasses. ``config_from_dict`` builds it
from a plain mapping (for example a parsed JSON file) and
``validate_config`` checks the invariants that must hold before any server
or browser work starts.

Example usage:

    from prerender.config import config_from_dict, ensure_valid_config

    config = config_from_dict(
        {
            "server_url": "http://localhost:4173",
            "routes": ["/", "/about"],
            "wait_until": "networkidle",
            "route_config": [{"route": "/blog/*", "extra_delay": 500}],
            "inject": {"meta": {"static": {"description": "x"}}},
        }
    )
    ensure_valid_config(config)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional, Pattern, Union

LOGGER = logging.getLogger(__name__)

WAIT_STRATEGIES = ("load", "domcontentloaded", "networkidle", "commit")
STRIP_MODES = ("meta", "title", "head", "head-except-title", "body")
CONTENT_SOURCES = ("static-file", "pre-javascript")
CONTENT_TYPES = ("title", "meta", "head", "body")

ExcludePattern = Union[str, Pattern[str]]


class ConfigError(ValueError):
    """Raised when the configuration violates an invariant."""


@dataclass(frozen=True)
class InjectDefaults:
    """Per-source inclusion used when a content type has no override.

    ``static`` is kept for configuration compatibility: a static payload is
    always an explicit per-content-type setting, so it is the override and
    never falls back to this flag.
    """

    original: bool = False
    extracted: bool = False
    static: bool = True


@dataclass(frozen=True)
class ContentTypeInject:
    """Source inclusion for one content type (title, meta, head or body).

    ``original`` and ``extracted`` fall back to :class:`InjectDefaults` when
    unset. ``static`` carries the payload itself: a string for title, head
    and body, a ``{key: value}`` mapping for meta. ``False`` disables it.
    """

    original: Optional[bool] = None
    extracted: Optional[bool] = None
    static: Any = None

    def include_original(self, defaults: InjectDefaults) -> bool:
        return defaults.original if self.original is None else self.original

    def include_extracted(self, defaults: InjectDefaults) -> bool:
        return defaults.extracted if self.extracted is None else self.extracted

    def static_payload(self) -> Any:
        if self.static is None or isinstance(self.static, bool):
            return None
        return self.static

    def overlay(self, other: Optional["ContentTypeInject"]) -> "ContentTypeInject":
        """Return a copy where every field set on ``other`` wins."""
        if other is None:
            return self
        return ContentTypeInject(
            original=self.original if other.original is None else other.original,
            extracted=self.extracted if other.extracted is None else other.extracted,
            static=self.static if other.static is None else other.static,
        )


@dataclass(frozen=True)
class ContentInject:
    """Injection overrides, one record per content type."""

    title: ContentTypeInject = field(default_factory=ContentTypeInject)
    meta: ContentTypeInject = field(default_factory=ContentTypeInject)
    head: ContentTypeInject = field(default_factory=ContentTypeInject)
    body: ContentTypeInject = field(default_factory=ContentTypeInject)

    def for_type(self, content_type: str) -> ContentTypeInject:
        if content_type not in CONTENT_TYPES:
            raise KeyError(content_type)
        return getattr(self, content_type)

    def overlay(self, other: Optional["ContentInject"]) -> "ContentInject":
        if other is None:
            return self
        return ContentInject(
            **{name: self.for_type(name).overlay(other.for_type(name)) for name in CONTENT_TYPES}
        )


@dataclass(frozen=True)
class CrawlSettings:
    """Link-crawl limits."""

    depth: int = 3
    concurrency: int = 3


@dataclass(frozen=True)
class RouteConfig:
    """Overrides applied to routes matching ``route``.

    ``route`` is an exact path, a path containing ``*`` wildcards, or the
    bare global wildcard ``*``. Unset fields fall back to the global value.
    """

    route: str
    wait_until: Optional[str] = None
    timeout: Optional[int] = None
    extra_delay: Optional[int] = None
    block_domains: Optional[List[str]] = None
    retry: Optional[int] = None
    strip: Optional[List[str]] = None
    inject: Optional[ContentInject] = None


@dataclass
class PrerenderConfig:
    """Validated configuration for a prerender run.

    Durations (``timeout``, ``extra_delay``, ``retry_delay``,
    ``pre_javascript_timeout``, ``server_wait_timeout``) are milliseconds.
    """

    serve_dir: str = "dist"
    out_dir: str = "prerendered"
    routes: List[str] = field(default_factory=list)
    sitemap: str = "sitemap.xml"
    crawl_links: Union[bool, CrawlSettings] = True
    crawl_special_protocols: bool = False
    exclude: List[ExcludePattern] = field(default_factory=list)
    concurrency: int = 5
    timeout: int = 5000
    wait_until: str = "load"
    extra_delay: int = 0
    retry: int = 2
    retry_delay: int = 1000
    block_domains: List[str] = field(default_factory=list)
    auto_fallback_network_idle: bool = True
    strip: List[str] = field(default_factory=list)
    inject_defaults: InjectDefaults = field(default_factory=InjectDefaults)
    inject: ContentInject = field(default_factory=ContentInject)
    route_config: List[RouteConfig] = field(default_factory=list)
    original_content_source: str = "static-file"
    cache_original_content: bool = True
    pre_javascript_timeout: int = 10000
    flat_output: bool = False
    server_url: Optional[str] = None
    server_wait_timeout: int = 30000
    headless: bool = True

    @property
    def crawl_settings(self) -> Optional[CrawlSettings]:
        """Crawl limits, or ``None`` when link crawling is disabled."""
        if isinstance(self.crawl_links, CrawlSettings):
            return self.crawl_links
        return CrawlSettings() if self.crawl_links else None


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


# ---------------------------------------------------------------------------
# Building from mappings
# ---------------------------------------------------------------------------


def _check_keys(data: Mapping[str, Any], allowed: List[str], where: str) -> None:
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        raise ConfigError(f"Unknown {where} field(s): {', '.join(unknown)}")


def _content_type_from_dict(data: Any, where: str) -> ContentTypeInject:
    if data is None:
        return ContentTypeInject()
    if isinstance(data, ContentTypeInject):
        return data
    if not isinstance(data, Mapping):
        raise ConfigError(f"{where} must be a mapping")
    _check_keys(data, ["original", "extracted", "static"], where)
    static = data.get("static")
    if where.endswith(".meta") and static not in (None, False):
        if not isinstance(static, Mapping):
            raise ConfigError(f"{where}.static must map meta keys to values")
        static = {str(key): str(value) for key, value in static.items()}
    return ContentTypeInject(
        original=data.get("original"),
        extracted=data.get("extracted"),
        static=static,
    )


def inject_from_dict(data: Any, where: str = "inject") -> ContentInject:
    """Build a :class:`ContentInject` from ``{"meta": {...}, ...}``."""
    if data is None:
        return ContentInject()
    if isinstance(data, ContentInject):
        return data
    if not isinstance(data, Mapping):
        raise ConfigError(f"{where} must be a mapping")
    _check_keys(data, list(CONTENT_TYPES), where)
    return ContentInject(
        **{name: _content_type_from_dict(data.get(name), f"{where}.{name}") for name in CONTENT_TYPES}
    )


def _exclude_from_value(value: Any) -> ExcludePattern:
    if isinstance(value, (str, re.Pattern)):
        return value
    if isinstance(value, Mapping) and set(value) == {"regex"}:
        try:
            return re.compile(value["regex"])
        except re.error as exc:
            raise ConfigError(f"Invalid exclude regex {value['regex']!r}: {exc}") from exc
    raise ConfigError(f"Unsupported exclude pattern: {value!r}")


def _route_config_from_dict(data: Any) -> RouteConfig:
    if isinstance(data, RouteConfig):
        return data
    if not isinstance(data, Mapping) or "route" not in data:
        raise ConfigError("route_config entries need a 'route' pattern")
    _check_keys(data, [f.name for f in fields(RouteConfig)], "route_config")
    values = dict(data)
    if "inject" in values:
        values["inject"] = inject_from_dict(values["inject"], f"route_config[{data['route']}].inject")
    for key in ("block_domains", "strip"):
        if values.get(key) is not None:
            values[key] = list(values[key])
    return RouteConfig(**values)


def config_from_dict(data: Mapping[str, Any]) -> PrerenderConfig:
    """Build a :class:`PrerenderConfig` from a plain mapping.

    Raises:
        ConfigError: If the mapping holds unknown keys or malformed
            nested values.
    """
    allowed = [f.name for f in fields(PrerenderConfig)]
    _check_keys(data, allowed, "config")
    values: Dict[str, Any] = dict(data)

    crawl = values.get("crawl_links")
    if isinstance(crawl, Mapping):
        _check_keys(crawl, ["depth", "concurrency"], "crawl_links")
        values["crawl_links"] = CrawlSettings(**crawl)

    if "exclude" in values:
        values["exclude"] = [_exclude_from_value(item) for item in values["exclude"] or []]

    defaults = values.get("inject_defaults")
    if isinstance(defaults, Mapping):
        _check_keys(defaults, ["original", "extracted", "static"], "inject_defaults")
        values["inject_defaults"] = InjectDefaults(**defaults)

    if "inject" in values:
        values["inject"] = inject_from_dict(values["inject"])

    if "route_config" in values:
        values["route_config"] = [_route_config_from_dict(item) for item in values["route_config"] or []]

    for key in ("routes", "block_domains", "strip"):
        if key in values and values[key] is not None:
            values[key] = list(values[key])

    return PrerenderConfig(**values)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


_STRIP_CONFLICTS = {
    "meta": ("meta",),
    "title": ("title",),
    "head": ("head",),
    "body": ("body",),
    "head-except-title": ("head", "meta"),
}


def _strip_inject_warnings(strip: List[str], inject: ContentInject, where: str) -> List[str]:
    warnings = []
    for mode in strip:
        for content_type in _STRIP_CONFLICTS.get(mode, ()):
            record = inject.for_type(content_type)
            if record.original or record.extracted:
                warnings.append(
                    f"{where}strip mode '{mode}' removes {content_type} content, but "
                    f"inject.{content_type}.original or inject.{content_type}.extracted is "
                    f"enabled. Consider inject.{content_type}.static instead."
                )
    if "body" in strip and inject.body.original:
        warnings.append(
            f"{where}body content is stripped but original body content is injected. "
            "Verify this is intended (for example for hydration)."
        )
    return warnings


def _check_choices(values: List[str], choices: tuple, label: str, errors: List[str]) -> None:
    for value in values:
        if value not in choices:
            errors.append(f"Unknown {label} '{value}' (expected one of: {', '.join(choices)})")


def validate_config(config: PrerenderConfig) -> ValidationResult:
    """Check configuration invariants and collect advisory warnings."""
    result = ValidationResult()
    errors, warnings = result.errors, result.warnings

    if config.out_dir and config.out_dir == config.serve_dir:
        errors.append(
            f"Output directory '{config.out_dir}' cannot be the same as serve "
            f"directory '{config.serve_dir}'. This would overwrite source files."
        )
    if config.concurrency < 1:
        errors.append("concurrency must be at least 1")
    if config.retry < 0:
        errors.append("retry must not be negative")
    if config.timeout <= 0:
        errors.append("timeout must be positive")
    crawl = config.crawl_settings
    if crawl is not None and (crawl.depth < 0 or crawl.concurrency < 1):
        errors.append("crawl_links needs depth >= 0 and concurrency >= 1")

    _check_choices([config.wait_until], WAIT_STRATEGIES, "wait_until", errors)
    _check_choices(config.strip, STRIP_MODES, "strip mode", errors)
    _check_choices([config.original_content_source], CONTENT_SOURCES, "original_content_source", errors)

    warnings.extend(_strip_inject_warnings(config.strip, config.inject, ""))

    has_global_wildcard = any(rc.route == "*" for rc in config.route_config)
    if has_global_wildcard and len(config.route_config) > 1:
        warnings.append(
            "Global route pattern '*' is configured along with other patterns; "
            "it only applies to routes no other pattern matches."
        )
    for route_config in config.route_config:
        if route_config.wait_until is not None:
            _check_choices([route_config.wait_until], WAIT_STRATEGIES, "wait_until", errors)
        if route_config.strip:
            _check_choices(route_config.strip, STRIP_MODES, "strip mode", errors)
            inject = config.inject.overlay(route_config.inject)
            warnings.extend(
                _strip_inject_warnings(route_config.strip, inject, f"Route '{route_config.route}': ")
            )

    if config.timeout < 1000:
        warnings.append(f"Timeout {config.timeout}ms is very low; slow pages may time out.")
    elif config.timeout > 60000:
        warnings.append(f"Timeout {config.timeout}ms is very high; stalled pages hold a slot that long.")
    if config.wait_until == "networkidle" and not config.block_domains:
        warnings.append(
            "'networkidle' without blocked domains may time out on pages with "
            "external widgets. Consider block_domains or the 'load' strategy."
        )
    if config.concurrency > 10:
        warnings.append(f"High concurrency {config.concurrency} may overwhelm the target server.")
    if config.original_content_source == "pre-javascript" and not config.cache_original_content:
        warnings.append("'pre-javascript' original content without caching navigates twice per route.")

    return result


def ensure_valid_config(config: PrerenderConfig) -> ValidationResult:
    """Validate, log warnings, and raise :class:`ConfigError` on errors."""
    result = validate_config(config)
    for warning in result.warnings:
        LOGGER.warning("Config: %s", warning)
    if result.errors:
        raise ConfigError("Invalid configuration: " + "; ".join(result.errors))
    return result
