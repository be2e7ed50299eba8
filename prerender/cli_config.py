"""Configuration loading helpers for the CLI entrypoint."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .config import ConfigError, PrerenderConfig, config_from_dict

LOGGER = logging.getLogger(__name__)

CONFIG_FILES = ("prerender.config.json", ".prerenderrc.json")
SERVER_URL_ENV = "PRERENDER_SERVER_URL"


def load_env(*, cwd: Path, load_env: Callable[[Path], bool]) -> Optional[Path]:
    """Load ``.env`` from ``cwd`` if it exists and return its path."""
    local_env = cwd / ".env"
    if local_env.is_file():
        load_env(local_env)
        return local_env
    return None


def find_config_file(cwd: Path) -> Optional[Path]:
    for name in CONFIG_FILES:
        candidate = cwd / name
        if candidate.is_file():
            return candidate
    return None


def load_config_file(path: Path) -> Dict[str, Any]:
    """Read a JSON configuration file into a mapping.

    Raises:
        ConfigError: If the file cannot be read or is not a JSON object.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return data


def resolve_config(
    config_path: Optional[str],
    overrides: Mapping[str, Any],
    *,
    cwd: Path,
    environ: Optional[Mapping[str, str]] = None,
) -> Tuple[PrerenderConfig, str]:
    """Merge file values, environment and CLI overrides into a config.

    Precedence, lowest first: defaults, config file, ``PRERENDER_SERVER_URL``,
    CLI overrides. Mapping overrides such as ``crawl_links`` are merged
    key by key into the file value. Returns the config and a description of
    its source.
    """
    environ = os.environ if environ is None else environ

    if config_path:
        path = Path(config_path)
        if not path.is_absolute():
            path = cwd / path
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")
    else:
        path = find_config_file(cwd)

    values: Dict[str, Any] = {}
    source = "defaults"
    if path is not None:
        values.update(load_config_file(path))
        source = str(path)
        LOGGER.debug("Loaded config file %s", path)

    server_url = environ.get(SERVER_URL_ENV)
    if server_url and not values.get("server_url"):
        values["server_url"] = server_url
        LOGGER.debug("Using %s=%s", SERVER_URL_ENV, server_url)

    for key, value in overrides.items():
        if value is None:
            continue
        current = values.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            value = {**current, **value}
        values[key] = value
    return config_from_dict(values), source
