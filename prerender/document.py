"""Data structures representing rendered routes and their content."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(slots=True)
class ContentRecord:
    """Title, meta map and head/body fragments from one content source.

    Used for both the original (pre-script) and the extracted (post-script)
    sources. An empty record is the degraded result of a failed extraction.
    """

    title: Optional[str] = None
    meta: Dict[str, str] = field(default_factory=dict)
    head: Optional[str] = None
    body: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.title or self.meta or self.head or self.body)


@dataclass(slots=True)
class MergedContent:
    """Resolved content for a route, ready to be patched into rendered HTML."""

    title: Optional[str] = None
    meta: Dict[str, str] = field(default_factory=dict)
    head: str = ""
    body: str = ""


@dataclass(slots=True)
class RenderedPage:
    """Post-script render of a single route as captured from the browser."""

    url: str
    html: str
    status_code: int
    extracted: ContentRecord = field(default_factory=ContentRecord)
    timestamp: int = 0


@dataclass(slots=True)
class SnapshotResult:
    """Unit handed to the output writer, one per route."""

    url: str
    html: str
    title: Optional[str]
    meta: Dict[str, str]
    status_code: int
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "html": self.html,
            "title": self.title,
            "meta": dict(self.meta),
            "status_code": self.status_code,
            "timestamp": self.timestamp,
        }


@dataclass
class PrerenderResult:
    """Result of a full prerender run."""

    snapshots: List[SnapshotResult] = field(default_factory=list)
    routes: List[str] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)
