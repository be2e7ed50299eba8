"""Pattern-based tag scanning for generated HTML.

These helpers scan markup with regular expressions instead of a conforming
parser. They expect well-formed generated documents; malformed or heavily
minified markup is not a target.

Meta tags are identified by a key derived from their attributes:

- ``charset`` for ``<meta charset="...">``
- ``http-equiv:<name>`` for ``<meta http-equiv="<name>" content="...">``
- the ``property`` value, e.g. ``og:title``
- the ``name`` value, e.g. ``description``
"""

from __future__ import annotations

import html as html_lib
import re
from typing import Dict, Iterable, List, Optional, Tuple

TITLE_RE = re.compile(r"<title(?:\s[^>]*)?>(.*?)</title\s*>", re.IGNORECASE | re.DOTALL)
TITLE_WITH_SPACE_RE = re.compile(r"<title(?:\s[^>]*)?>.*?</title\s*>\s*", re.IGNORECASE | re.DOTALL)
META_TAG_RE = re.compile(r"<meta\b[^>]*>", re.IGNORECASE)
META_TAG_WITH_SPACE_RE = re.compile(r"<meta\b[^>]*>\s*", re.IGNORECASE)
ATTRIBUTE_RE = re.compile(
    r"""([^\s=/>"']+)\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'=<>`]+))"""
)
HEAD_RE = re.compile(r"(<head(?:\s[^>]*)?>)(.*?)(</head\s*>)", re.IGNORECASE | re.DOTALL)
HEAD_OPEN_RE = re.compile(r"<head(?:\s[^>]*)?>", re.IGNORECASE)
HEAD_CLOSE_RE = re.compile(r"</head\s*>", re.IGNORECASE)
BODY_RE = re.compile(r"(<body(?:\s[^>]*)?>)(.*?)(</body\s*>)", re.IGNORECASE | re.DOTALL)
BODY_OPEN_RE = re.compile(r"<body(?:\s[^>]*)?>", re.IGNORECASE)
HTML_OPEN_RE = re.compile(r"<html(?:\s[^>]*)?>", re.IGNORECASE)
ANCHOR_HREF_RE = re.compile(
    r"""<a\s[^>]*?\bhref\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'>]+))""",
    re.IGNORECASE,
)

PROPERTY_PREFIXES = ("og:", "twitter:", "fb:")
HTTP_EQUIV_PREFIX = "http-equiv:"


def escape_html(text: str) -> str:
    return html_lib.escape(text, quote=True)


def parse_attributes(tag: str) -> Dict[str, str]:
    """Return the tag's attributes with lowercased names and unescaped values."""
    attributes: Dict[str, str] = {}
    for match in ATTRIBUTE_RE.finditer(tag):
        name = match.group(1).lower()
        value = next((group for group in match.groups()[1:] if group is not None), "")
        attributes.setdefault(name, html_lib.unescape(value))
    return attributes


def parse_meta_tag(tag: str) -> Optional[Tuple[str, str]]:
    """Return ``(key, content)`` for a meta tag, or None if it has no key."""
    attributes = parse_attributes(tag)
    if "charset" in attributes:
        return "charset", attributes["charset"]
    content = attributes.get("content")
    if content is None:
        return None
    if attributes.get("http-equiv"):
        return f"{HTTP_EQUIV_PREFIX}{attributes['http-equiv']}", content
    if attributes.get("property"):
        return attributes["property"], content
    if attributes.get("name"):
        return attributes["name"], content
    return None


def render_meta_tag(key: str, content: str) -> str:
    escaped = escape_html(content)
    if key == "charset":
        return f'<meta charset="{escaped}" />'
    if key.startswith(HTTP_EQUIV_PREFIX):
        http_equiv = escape_html(key[len(HTTP_EQUIV_PREFIX):])
        return f'<meta http-equiv="{http_equiv}" content="{escaped}" />'
    if key.startswith(PROPERTY_PREFIXES):
        return f'<meta property="{escape_html(key)}" content="{escaped}" />'
    return f'<meta name="{escape_html(key)}" content="{escaped}" />'


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def extract_title(markup: str) -> Optional[str]:
    match = TITLE_RE.search(markup)
    if not match:
        return None
    title = html_lib.unescape(match.group(1)).strip()
    return title or None


def extract_meta(markup: str) -> Dict[str, str]:
    """Collect meta tags into a key -> content map; later tags win."""
    meta: Dict[str, str] = {}
    for tag in META_TAG_RE.findall(markup):
        parsed = parse_meta_tag(tag)
        if parsed:
            meta[parsed[0]] = parsed[1]
    return meta


def extract_head(markup: str) -> Optional[str]:
    match = HEAD_RE.search(markup)
    return match.group(2).strip() if match else None


def extract_body(markup: str) -> Optional[str]:
    match = BODY_RE.search(markup)
    return match.group(2).strip() if match else None


def extract_hrefs(markup: str) -> List[str]:
    """Return the ``href`` of every anchor tag, in document order."""
    hrefs = []
    for match in ANCHOR_HREF_RE.finditer(markup):
        raw = next(group for group in match.groups() if group is not None)
        hrefs.append(html_lib.unescape(raw).strip())
    return hrefs


# ---------------------------------------------------------------------------
# Meta tag lookup and removal
# ---------------------------------------------------------------------------


def find_meta_content(markup: str, key: str) -> Optional[str]:
    """Return the content of the first meta tag with ``key``, if any."""
    for tag in META_TAG_RE.findall(markup):
        parsed = parse_meta_tag(tag)
        if parsed and parsed[0] == key:
            return parsed[1]
    return None


def remove_meta_tag(markup: str, key: str) -> str:
    """Remove every meta tag with ``key`` along with trailing whitespace."""

    def _drop(match: "re.Match[str]") -> str:
        parsed = parse_meta_tag(match.group(0))
        return "" if parsed and parsed[0] == key else match.group(0)

    return META_TAG_WITH_SPACE_RE.sub(_drop, markup)


def remove_meta_tags(markup: str) -> str:
    return META_TAG_WITH_SPACE_RE.sub("", markup)


def remove_title_tags(markup: str) -> str:
    return TITLE_WITH_SPACE_RE.sub("", markup)


# ---------------------------------------------------------------------------
# Injection
# ---------------------------------------------------------------------------


def inject_into_head(markup: str, content: str) -> str:
    """Insert ``content`` just before ``</head>``, creating a head if needed."""
    close = HEAD_CLOSE_RE.search(markup)
    if close:
        index = close.start()
        return f"{markup[:index]}    {content}\n  {markup[index:]}"

    opening = HEAD_OPEN_RE.search(markup)
    if opening:
        index = opening.end()
        return f"{markup[:index]}\n    {content}{markup[index:]}"

    html_open = HTML_OPEN_RE.search(markup)
    if html_open:
        index = html_open.end()
        return f"{markup[:index]}\n  <head>\n    {content}\n  </head>{markup[index:]}"

    return f"<head>\n  {content}\n</head>\n{markup}"


def inject_into_body(markup: str, content: str) -> str:
    """Insert ``content`` right after the opening ``<body>`` tag."""
    opening = BODY_OPEN_RE.search(markup)
    if opening:
        index = opening.end()
        return f"{markup[:index]}\n{content}{markup[index:]}"
    return f"{markup}\n{content}"


def replace_title(markup: str, title: str) -> str:
    """Replace the first ``<title>`` element or add one to the head."""
    tag = f"<title>{escape_html(title)}</title>"
    match = TITLE_RE.search(markup)
    if match:
        return markup[: match.start()] + tag + markup[match.end():]
    return inject_into_head(markup, tag)


# ---------------------------------------------------------------------------
# Strip directives
# ---------------------------------------------------------------------------


def _is_essential_meta(tag: str) -> bool:
    attributes = parse_attributes(tag)
    if "charset" in attributes:
        return True
    if attributes.get("name", "").lower() == "viewport":
        return True
    return attributes.get("http-equiv", "").lower() == "content-type"


def _strip_meta(markup: str) -> str:
    return META_TAG_WITH_SPACE_RE.sub(
        lambda match: match.group(0) if _is_essential_meta(match.group(0)) else "",
        markup,
    )


def _strip_head(markup: str, keep_title: bool) -> str:
    match = HEAD_RE.search(markup)
    if not match:
        return markup
    inner = ""
    if keep_title:
        title = TITLE_RE.search(match.group(2))
        inner = title.group(0) if title else ""
    return markup[: match.start()] + match.group(1) + inner + match.group(3) + markup[match.end():]


def _strip_body(markup: str) -> str:
    match = BODY_RE.search(markup)
    if not match:
        return markup
    return markup[: match.start()] + match.group(1) + match.group(3) + markup[match.end():]


def apply_strip_modes(markup: str, modes: Iterable[str]) -> str:
    """Apply strip directives in order.

    ``meta`` keeps charset, viewport and Content-Type tags; ``head`` empties
    the head; ``head-except-title`` keeps only its title; ``body`` empties
    the body element.
    """
    for mode in modes:
        if mode == "meta":
            markup = _strip_meta(markup)
        elif mode == "title":
            markup = remove_title_tags(markup)
        elif mode == "head":
            markup = _strip_head(markup, keep_title=False)
        elif mode == "head-except-title":
            markup = _strip_head(markup, keep_title=True)
        elif mode == "body":
            markup = _strip_body(markup)
        else:
            raise ValueError(f"Unknown strip mode: {mode}")
    return markup
