"""Output helpers for the CLI: map snapshot URLs to files and write them."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path, PurePosixPath
from typing import List, Union
from urllib.parse import unquote, urlparse

from .document import SnapshotResult

LOGGER = logging.getLogger(__name__)


def output_filename(url: str, flat: bool = False) -> str:
    """Return the output path (relative to the output directory) for ``url``.

    ``/`` becomes ``index.html``, ``/docs/`` becomes ``docs/index.html``,
    ``.html`` paths are kept and anything else gets an ``.html`` suffix.
    In flat mode path segments are joined with ``-`` instead of ``/``.
    """
    path = unquote(urlparse(url).path) or "/"
    segments = [part for part in PurePosixPath(path).parts if part not in ("/", ".", "..")]
    if not segments:
        return "index.html"

    if path.endswith("/"):
        segments.append("index.html")
    elif not segments[-1].endswith(".html"):
        segments[-1] = f"{segments[-1]}.html"

    if flat:
        if segments[-1] == "index.html" and len(segments) > 1:
            segments.pop()
            segments[-1] = f"{segments[-1]}.html"
        return "-".join(segments)
    return "/".join(segments)


def write_snapshot(snapshot: SnapshotResult, out_dir: Union[str, Path], flat: bool = False) -> Path:
    """Write ``snapshot.html`` below ``out_dir`` and return the file path."""
    path = Path(out_dir) / output_filename(snapshot.url, flat)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(snapshot.html, encoding="utf-8")
    LOGGER.info("Wrote %s", path)
    return path


def copy_static_assets(serve_dir: Union[str, Path], out_dir: Union[str, Path]) -> Path:
    """Copy everything below ``serve_dir`` into ``out_dir``.

    Rendered pages written afterwards replace their copied originals. An
    output directory nested inside ``serve_dir`` is not copied into itself.

    Raises:
        FileNotFoundError: If ``serve_dir`` is not a directory.
    """
    source = Path(serve_dir)
    target = Path(out_dir)
    if not source.is_dir():
        raise FileNotFoundError(f"Serve directory not found: {source}")

    resolved_target = target.resolve()

    def _skip_output(directory: str, names: List[str]) -> List[str]:
        return [name for name in names if (Path(directory) / name).resolve() == resolved_target]

    LOGGER.info("Copying static assets from %s to %s", source, target)
    shutil.copytree(source, target, dirs_exist_ok=True, ignore=_skip_output)
    return target
