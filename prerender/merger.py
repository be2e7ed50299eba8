"""Merge original, extracted and static content and inject it into HTML."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .config import ContentInject, ContentTypeInject, InjectDefaults
from .document import ContentRecord, MergedContent
from .markup import (
    find_meta_content,
    inject_into_body,
    inject_into_head,
    remove_meta_tag,
    remove_meta_tags,
    remove_title_tags,
    render_meta_tag,
    replace_title,
)

LOGGER = logging.getLogger(__name__)


class ContentMerger:
    """Resolves final content per content type in the fixed order
    original -> extracted -> static, later sources overriding earlier ones.
    """

    def merge_content(
        self,
        original: ContentRecord,
        extracted: ContentRecord,
        defaults: InjectDefaults,
        inject: ContentInject,
    ) -> MergedContent:
        merged = MergedContent(
            title=self._merge_title(original, extracted, defaults, inject.title),
            meta=self._merge_meta(original, extracted, defaults, inject.meta),
            head=self._merge_head(original, extracted, defaults, inject),
            body=self._merge_body(original, extracted, defaults, inject.body),
        )
        LOGGER.debug(
            "Merged content: title=%s, meta=%d tag(s), head=%d chars, body=%d chars",
            "set" if merged.title else "none",
            len(merged.meta),
            len(merged.head),
            len(merged.body),
        )
        return merged

    def _merge_title(
        self,
        original: ContentRecord,
        extracted: ContentRecord,
        defaults: InjectDefaults,
        rules: ContentTypeInject,
    ) -> Optional[str]:
        title = None
        if rules.include_original(defaults) and original.title:
            title = original.title
            LOGGER.debug("Title: using original %r", title)
        if rules.include_extracted(defaults) and extracted.title:
            title = extracted.title
            LOGGER.debug("Title: using extracted %r", title)
        static = rules.static_payload()
        if static:
            title = str(static)
            LOGGER.debug("Title: using static %r", title)
        return title

    def _merge_meta(
        self,
        original: ContentRecord,
        extracted: ContentRecord,
        defaults: InjectDefaults,
        rules: ContentTypeInject,
    ) -> Dict[str, str]:
        meta: Dict[str, str] = {}
        if rules.include_original(defaults) and original.meta:
            meta.update(original.meta)
            LOGGER.debug("Meta: added %d original tag(s)", len(original.meta))
        if rules.include_extracted(defaults) and extracted.meta:
            meta.update(extracted.meta)
            LOGGER.debug("Meta: added %d extracted tag(s)", len(extracted.meta))
        static = rules.static_payload()
        if static:
            meta.update(static)
            LOGGER.debug("Meta: added %d static tag(s)", len(static))
        return meta

    def _merge_head(
        self,
        original: ContentRecord,
        extracted: ContentRecord,
        defaults: InjectDefaults,
        inject: ContentInject,
    ) -> str:
        rules = inject.head
        parts: List[str] = []
        if rules.include_original(defaults) and original.head:
            head = original.head
            # Meta and title are re-injected on their own; avoid duplicates.
            exclude_meta = inject.meta.original is False
            exclude_title = inject.title.original is False
            if exclude_meta:
                head = remove_meta_tags(head)
            if exclude_title:
                head = remove_title_tags(head)
            if exclude_meta or exclude_title:
                LOGGER.debug(
                    "Head: filtered original head (meta excluded: %s, title excluded: %s)",
                    exclude_meta,
                    exclude_title,
                )
            parts.append(head)
            LOGGER.debug("Head: added original content (%d chars)", len(head))
        if rules.include_extracted(defaults) and extracted.head:
            parts.append(extracted.head)
            LOGGER.debug("Head: added extracted content (%d chars)", len(extracted.head))
        static = rules.static_payload()
        if static:
            parts.append(str(static))
            LOGGER.debug("Head: added static content (%d chars)", len(str(static)))
        return "\n".join(parts)

    def _merge_body(
        self,
        original: ContentRecord,
        extracted: ContentRecord,
        defaults: InjectDefaults,
        rules: ContentTypeInject,
    ) -> str:
        parts: List[str] = []
        if rules.include_original(defaults) and original.body:
            parts.append(original.body)
            LOGGER.debug("Body: added original content (%d chars)", len(original.body))
        if rules.include_extracted(defaults) and extracted.body:
            parts.append(extracted.body)
            LOGGER.debug("Body: added extracted content (%d chars)", len(extracted.body))
        static = rules.static_payload()
        if static:
            parts.append(str(static))
            LOGGER.debug("Body: added static content (%d chars)", len(str(static)))
        return "\n".join(parts)

    # ------------------------------------------------------------------
    # Injection
    # ------------------------------------------------------------------

    def apply_merged_content(self, html: str, merged: MergedContent) -> str:
        """Patch ``html`` with merged title, meta, head and body content."""
        if merged.title:
            html = replace_title(html, merged.title)
        if merged.meta:
            html = self.inject_meta_tags(html, merged.meta)
        if merged.head:
            html = inject_into_head(html, merged.head)
        if merged.body:
            html = inject_into_body(html, merged.body)
        return html

    def inject_meta_tags(self, html: str, meta: Dict[str, str]) -> str:
        """Insert, replace or keep meta tags so each key ends with its value.

        Tags already carrying the same value are left untouched, so applying
        the same map twice does not change the document again.
        """
        pending: List[str] = []
        for key, content in meta.items():
            existing = find_meta_content(html, key)
            if existing is None:
                LOGGER.debug("Meta %r not found, injecting", key)
            elif existing != content:
                LOGGER.debug("Meta %r differs (%r -> %r), replacing", key, existing, content)
                html = remove_meta_tag(html, key)
            else:
                LOGGER.debug("Meta %r already present with the same content, skipping", key)
                continue
            pending.append(render_meta_tag(key, content))

        if not pending:
            return html
        return inject_into_head(html, "\n    ".join(pending))
