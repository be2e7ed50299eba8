"""Tests for prerender.markup module."""

from __future__ import annotations

import pytest

from prerender.markup import (
    apply_strip_modes,
    extract_body,
    extract_head,
    extract_hrefs,
    extract_meta,
    extract_title,
    find_meta_content,
    inject_into_body,
    inject_into_head,
    parse_attributes,
    parse_meta_tag,
    remove_meta_tag,
    remove_meta_tags,
    remove_title_tags,
    render_meta_tag,
    replace_title,
)

PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width">
  <meta http-equiv="Content-Type" content="text/html">
  <title>Home &amp; Garden</title>
  <meta name="description" content="Plants">
  <meta property="og:title" content="Home">
  <link rel="stylesheet" href="/app.css">
</head>
<body class="app">
  <div id="root"><a href="/about">About</a></div>
</body>
</html>"""


class TestParseAttributes:
    def test_quotes_and_case(self):
        attrs = parse_attributes("""<meta NAME="description" content='a "b"' data-x=1>""")
        assert attrs == {"name": "description", "content": 'a "b"', "data-x": "1"}

    def test_unescapes_values(self):
        assert parse_attributes('<meta content="a &amp; b">')["content"] == "a & b"


class TestParseMetaTag:
    @pytest.mark.parametrize(
        "tag, expected",
        [
            ('<meta charset="utf-8">', ("charset", "utf-8")),
            ('<meta http-equiv="refresh" content="5">', ("http-equiv:refresh", "5")),
            ('<meta property="og:image" content="/a.png">', ("og:image", "/a.png")),
            ('<meta name="robots" content="noindex">', ("robots", "noindex")),
            ('<meta name="robots">', None),
            ('<meta content="orphan">', None),
        ],
    )
    def test_keys(self, tag, expected):
        assert parse_meta_tag(tag) == expected


class TestRenderMetaTag:
    def test_name(self):
        assert render_meta_tag("description", "A & B") == '<meta name="description" content="A &amp; B" />'

    def test_property_prefixes(self):
        assert render_meta_tag("og:title", "T") == '<meta property="og:title" content="T" />'
        assert render_meta_tag("twitter:card", "s").startswith('<meta property="twitter:card"')

    def test_charset_and_http_equiv(self):
        assert render_meta_tag("charset", "utf-8") == '<meta charset="utf-8" />'
        assert render_meta_tag("http-equiv:refresh", "5") == '<meta http-equiv="refresh" content="5" />'

    def test_round_trip_key(self):
        for key in ("description", "og:title", "charset", "http-equiv:refresh"):
            assert parse_meta_tag(render_meta_tag(key, "v"))[0] == key


class TestExtraction:
    def test_title_unescaped(self):
        assert extract_title(PAGE) == "Home & Garden"

    def test_missing_title(self):
        assert extract_title("<html><head></head></html>") is None
        assert extract_title("<title>   </title>") is None

    def test_meta(self):
        meta = extract_meta(PAGE)
        assert meta == {
            "charset": "utf-8",
            "viewport": "width=device-width",
            "http-equiv:Content-Type": "text/html",
            "description": "Plants",
            "og:title": "Home",
        }

    def test_head_and_body(self):
        assert extract_head(PAGE).startswith('<meta charset="utf-8">')
        assert extract_head(PAGE).endswith('<link rel="stylesheet" href="/app.css">')
        assert extract_body(PAGE) == '<div id="root"><a href="/about">About</a></div>'
        assert extract_head("<p>no head</p>") is None
        assert extract_body("<p>no body</p>") is None

    def test_hrefs(self):
        markup = """<a href="/a">A</a><a class="x" href='/b?x=1&amp;y=2'>B</a><a href=/c>C</a><a name="n">N</a>"""
        assert extract_hrefs(markup) == ["/a", "/b?x=1&y=2", "/c"]


class TestMetaLookupAndRemoval:
    def test_find(self):
        assert find_meta_content(PAGE, "description") == "Plants"
        assert find_meta_content(PAGE, "keywords") is None

    def test_remove_one(self):
        result = remove_meta_tag(PAGE, "description")
        assert find_meta_content(result, "description") is None
        assert find_meta_content(result, "og:title") == "Home"

    def test_remove_all(self):
        result = remove_meta_tags(PAGE)
        assert "<meta" not in result
        assert "<title>" in result

    def test_remove_titles(self):
        assert "<title" not in remove_title_tags(PAGE)


class TestInjection:
    def test_head_before_close(self):
        markup = "<html><head><title>T</title></head><body></body></html>"
        assert inject_into_head(markup, "<x/>") == (
            "<html><head><title>T</title>    <x/>\n  </head><body></body></html>"
        )

    def test_head_open_only(self):
        assert inject_into_head("<head><body></body>", "<x/>") == "<head>\n    <x/><body></body>"

    def test_head_created_after_html(self):
        result = inject_into_head("<html><body></body></html>", "<x/>")
        assert result == "<html>\n  <head>\n    <x/>\n  </head><body></body></html>"

    def test_head_created_without_html(self):
        assert inject_into_head("<p>hi</p>", "<x/>") == "<head>\n  <x/>\n</head>\n<p>hi</p>"

    def test_body(self):
        assert inject_into_body('<body class="a"><p>1</p></body>', "<b/>") == '<body class="a">\n<b/><p>1</p></body>'
        assert inject_into_body("<p>1</p>", "<b/>") == "<p>1</p>\n<b/>"

    def test_replace_title(self):
        assert replace_title("<head><title>Old</title></head>", "A < B") == "<head><title>A &lt; B</title></head>"

    def test_replace_title_adds_missing(self):
        assert replace_title("<head></head>", "New") == "<head>    <title>New</title>\n  </head>"


class TestStripModes:
    def test_meta_keeps_essentials(self):
        result = apply_strip_modes(PAGE, ["meta"])
        meta = extract_meta(result)
        assert set(meta) == {"charset", "viewport", "http-equiv:Content-Type"}

    def test_title(self):
        result = apply_strip_modes(PAGE, ["title"])
        assert extract_title(result) is None
        assert "description" in extract_meta(result)

    def test_head(self):
        result = apply_strip_modes(PAGE, ["head"])
        assert "<head></head>" in result
        assert extract_body(result)

    def test_head_except_title(self):
        result = apply_strip_modes(PAGE, ["head-except-title"])
        assert "<head><title>Home &amp; Garden</title></head>" in result

    def test_body(self):
        result = apply_strip_modes(PAGE, ["body"])
        assert '<body class="app"></body>' in result
        assert extract_title(result) == "Home & Garden"

    def test_modes_apply_in_order(self):
        result = apply_strip_modes(PAGE, ["title", "head-except-title"])
        assert "<head></head>" in result

    def test_unknown_mode(self):
        with pytest.raises(ValueError, match="Unknown strip mode"):
            apply_strip_modes(PAGE, ["footer"])

    def test_no_modes(self):
        assert apply_strip_modes(PAGE, []) == PAGE
