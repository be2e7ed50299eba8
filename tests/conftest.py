"""Shared fixtures: strict test accounting and in-memory Playwright doubles."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from prerender.markup import extract_body, extract_head, extract_meta, extract_title

BASE_URL = "http://localhost:4173"

DEFAULT_HTML = "<html><head><title>Page</title></head><body><p>Hello</p></body></html>"


# ---------------------------------------------------------------------------
# Strict accounting: skipped, deselected or xfail tests fail the session
# ---------------------------------------------------------------------------


@dataclass
class _TestAccounting:
    deselected: int = 0
    skipped: int = 0
    xfailed: int = 0
    xpassed: int = 0


_ACCOUNTING = _TestAccounting()


def pytest_deselected(items):  # pragma: no cover - pytest hook
    _ACCOUNTING.deselected += len(items)


def pytest_runtest_logreport(report):  # pragma: no cover - pytest hook
    if report.when not in {"setup", "call"}:
        return
    if getattr(report, "wasxfail", False):
        if report.outcome == "skipped":
            _ACCOUNTING.xfailed += 1
        elif report.outcome == "passed":
            _ACCOUNTING.xpassed += 1
        return
    if report.outcome == "skipped":
        _ACCOUNTING.skipped += 1


def pytest_sessionfinish(session, exitstatus):  # pragma: no cover - pytest hook
    violations = [
        f"{name}={count}"
        for name, count in vars(_ACCOUNTING).items()
        if count
    ]
    if not violations:
        return
    reporter = session.config.pluginmanager.get_plugin("terminalreporter")
    if reporter:
        reporter.write_sep("=", f"Test accounting violations: {', '.join(violations)}")
    session.exitstatus = 1


# ---------------------------------------------------------------------------
# Playwright doubles
# ---------------------------------------------------------------------------


def dom_data(html: str) -> Dict[str, Any]:
    """What the content extraction script would return for ``html``."""
    return {
        "title": extract_title(html),
        "meta": extract_meta(html),
        "head": extract_head(html),
        "body": extract_body(html),
    }


@dataclass
class FakeEndpoint:
    html: str = DEFAULT_HTML
    status: int = 200
    status_text: str = "OK"
    headers: Dict[str, str] = field(default_factory=dict)
    early_html: Optional[str] = None
    timeout_on: Set[str] = field(default_factory=set)
    no_response: bool = False


class FakeResponse:
    def __init__(self, status: int = 200, status_text: str = "OK", headers: Optional[Dict[str, str]] = None):
        self.status = status
        self.status_text = status_text
        self.headers = headers or {}

    async def all_headers(self) -> Dict[str, str]:
        return dict(self.headers)


class FakeRoute:
    """A request intercepted by a route handler."""

    def __init__(self, url: str):
        self.request = SimpleNamespace(url=url)
        self.aborted = False
        self.continued = False

    async def abort(self):
        self.aborted = True

    async def continue_(self):
        self.continued = True


class FakeSite:
    """URL -> page behavior, plus a log of every navigation."""

    def __init__(self, base_url: str = BASE_URL):
        self.base_url = base_url
        self.pages: Dict[str, FakeEndpoint] = {}
        self.errors: Dict[str, List[BaseException]] = {}
        self.visits: List[Tuple[str, str, Optional[int]]] = []

    def add(self, route: str, html: str = DEFAULT_HTML, **kwargs: Any) -> FakeEndpoint:
        endpoint = FakeEndpoint(html=html, **kwargs)
        self.pages[self.base_url + route] = endpoint
        return endpoint

    def fail(self, route: str, *errors: BaseException) -> None:
        """Raise ``errors`` on the next navigations to ``route``, in order."""
        self.errors.setdefault(self.base_url + route, []).extend(errors)

    def visited(self, route: str) -> List[Tuple[str, str, Optional[int]]]:
        return [visit for visit in self.visits if visit[0] == self.base_url + route]

    def navigate(self, url: str, wait_until: str, timeout: Optional[int]) -> FakeEndpoint:
        self.visits.append((url, wait_until, timeout))
        pending = self.errors.get(url)
        if pending:
            raise pending.pop(0)
        endpoint = self.pages.get(url)
        if endpoint is None:
            return FakeEndpoint(html="<html><body>Not found</body></html>", status=404, status_text="Not Found")
        if wait_until in endpoint.timeout_on:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded.")
        return endpoint


class FakePage:
    def __init__(self, site: FakeSite, context: "FakeContext"):
        self.site = site
        self.context = context
        self.routes: List[Tuple[str, Any]] = []
        self.waits: List[int] = []
        self.closed = False
        self._html = ""

    async def goto(self, url: str, wait_until: str = "load", timeout: Optional[int] = None):
        await asyncio.sleep(0)
        endpoint = self.site.navigate(url, wait_until, timeout)
        early = wait_until == "domcontentloaded" and endpoint.early_html is not None
        self._html = endpoint.early_html if early else endpoint.html
        if endpoint.no_response:
            return None
        return FakeResponse(endpoint.status, endpoint.status_text, endpoint.headers)

    async def evaluate(self, script: str):
        return dom_data(self._html)

    async def content(self) -> str:
        return self._html

    async def wait_for_timeout(self, timeout: int) -> None:
        self.waits.append(timeout)

    async def route(self, pattern: str, handler: Any) -> None:
        self.routes.append((pattern, handler))

    async def unroute(self, pattern: str, handler: Any) -> None:
        self.routes.remove((pattern, handler))

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.context.open_pages -= 1

    def is_closed(self) -> bool:
        return self.closed


class FakeContext:
    def __init__(self, site: FakeSite, **options: Any):
        self.site = site
        self.options = options
        self.pages: List[FakePage] = []
        self.routes: List[Tuple[str, Any]] = []
        self.default_timeout: Optional[int] = None
        self.default_navigation_timeout: Optional[int] = None
        self.open_pages = 0
        self.max_open_pages = 0
        self.closed = False

    async def new_page(self) -> FakePage:
        page = FakePage(self.site, self)
        self.pages.append(page)
        self.open_pages += 1
        self.max_open_pages = max(self.max_open_pages, self.open_pages)
        return page

    async def route(self, pattern: str, handler: Any) -> None:
        self.routes.append((pattern, handler))

    def set_default_timeout(self, timeout: int) -> None:
        self.default_timeout = timeout

    def set_default_navigation_timeout(self, timeout: int) -> None:
        self.default_navigation_timeout = timeout

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self, site: FakeSite):
        self.site = site
        self.contexts: List[FakeContext] = []
        self.closed = False

    async def new_context(self, **options: Any) -> FakeContext:
        context = FakeContext(self.site, **options)
        self.contexts.append(context)
        return context

    async def close(self) -> None:
        self.closed = True


class FakeChromium:
    def __init__(self, site: FakeSite):
        self.site = site
        self.launches: List[Dict[str, Any]] = []
        self.browsers: List[FakeBrowser] = []

    async def launch(self, **options: Any) -> FakeBrowser:
        self.launches.append(options)
        browser = FakeBrowser(self.site)
        self.browsers.append(browser)
        return browser


class FakePlaywright:
    def __init__(self, site: FakeSite):
        self.chromium = FakeChromium(site)
        self.stopped = False

    @property
    def context(self) -> FakeContext:
        return self.chromium.browsers[-1].contexts[-1]

    async def stop(self) -> None:
        self.stopped = True


class _PlaywrightStarter:
    def __init__(self, playwright: FakePlaywright):
        self._playwright = playwright

    async def start(self) -> FakePlaywright:
        return self._playwright


@pytest.fixture
def site() -> FakeSite:
    return FakeSite()


@pytest.fixture
def fake_playwright(monkeypatch, site) -> FakePlaywright:
    """Route ``prerender.browser.async_playwright`` to the fake site."""
    playwright = FakePlaywright(site)
    monkeypatch.setattr("prerender.browser.async_playwright", lambda: _PlaywrightStarter(playwright))
    return playwright
