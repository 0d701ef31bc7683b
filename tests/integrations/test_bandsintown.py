from __future__ import annotations

from contextlib import asynccontextmanager
import json
from typing import Any
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from curator.config import ProxyConfig
from curator.integrations.bandsintown import (
    BandsintownEventSource,
    EventSourceBlockedError,
    HttpPageFetcher,
    PageResponse,
    build_events_url,
    build_http_proxy_url,
    parse_events_page,
)
from tests.support import SleepRecorder, make_scraper_config


def _page(names: list[str], *, has_next: bool = False) -> PageResponse:
    body: dict[str, Any] = {
        "events": [
            {"artistName": name, "startsAt": "2026-11-07T20:00:00", "venueName": "Club"}
            for name in names
        ]
    }
    if has_next:
        body["urlForNextPageOfEvents"] = "next"
    return PageResponse(status=200, text=json.dumps(body))


class _ScriptedFetcher:
    def __init__(self, responses: list[PageResponse | Exception]) -> None:
        self.responses = list(responses)
        self.urls: list[str] = []

    async def fetch(self, url: str) -> PageResponse:
        self.urls.append(url)
        if not self.responses:
            return _page([])
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _factory(fetcher: _ScriptedFetcher, sessions: list[str] | None = None):
    @asynccontextmanager
    async def factory(session_id: str):
        if sessions is not None:
            sessions.append(session_id)
        yield fetcher

    return factory


def test_build_events_url_contains_search_window() -> None:
    url = build_events_url(
        "https://events.test/", search_date="2026-11-07", latitude=52.5, longitude=13.4, page=2
    )
    query = parse_qs(urlparse(url).query)

    assert url.startswith("https://events.test/choose-dates/fetch-next/upcomingEvents?")
    assert query["date"] == ["2026-11-07T00:00:00,2026-11-07T23:00:00"]
    assert query["page"] == ["2"]
    assert query["latitude"] == ["52.5"]


def test_http_proxy_url_pins_session() -> None:
    proxy = ProxyConfig(url="http://proxy.test", port="8000", username="user", password="pw")

    assert build_http_proxy_url(proxy, "s1") == "http://user-sessid-s1:pw@proxy.test:8000"
    assert build_http_proxy_url(None, "s1") is None


@pytest.mark.parametrize(
    "response,reason",
    [
        (PageResponse(status=403, text="{}"), "HTTP 403"),
        (PageResponse(status=429, text="{}"), "HTTP 429"),
        (PageResponse(status=200, text="<html>Pardon Our Interruption</html>"), "soft block"),
        (PageResponse(status=200, text="<!doctype html><p>hi</p>"), "html challenge page"),
        (PageResponse(status=200, text="not json"), "invalid JSON"),
        (PageResponse(status=200, text="[1, 2]"), "unexpected payload"),
    ],
)
def test_parse_events_page_detects_blocks(response: PageResponse, reason: str) -> None:
    with pytest.raises(EventSourceBlockedError) as excinfo:
        parse_events_page(response)

    assert excinfo.value.reason.startswith(reason)


def test_parse_events_page_reads_events_and_pagination() -> None:
    events, has_next = parse_events_page(_page(["Foo", "Bar"], has_next=True))

    assert [event["artistName"] for event in events] == ["Foo", "Bar"]
    assert has_next


@pytest.mark.asyncio
async def test_http_strategy_walks_all_pages() -> None:
    http = _ScriptedFetcher([_page(["Foo"], has_next=True), _page(["Bar"])])
    browser = _ScriptedFetcher([])
    sleep = SleepRecorder()
    source = BandsintownEventSource(
        make_scraper_config(page_delay_s=0.5),
        http_fetcher_factory=_factory(http),
        browser_fetcher_factory=_factory(browser),
        sleep=sleep,
    )

    events = await source.fetch_events("2026-11-07", 52.5, 13.4)

    assert [event.artist_name for event in events] == ["Foo", "Bar"]
    assert len(http.urls) == 2
    assert browser.urls == []
    assert sleep.calls == [0.5]


@pytest.mark.asyncio
async def test_blocked_http_escalates_to_browser_with_same_session() -> None:
    http = _ScriptedFetcher([PageResponse(status=403, text="")])
    browser = _ScriptedFetcher([_page(["Foo"])])
    sessions: list[str] = []
    source = BandsintownEventSource(
        make_scraper_config(),
        http_fetcher_factory=_factory(http, sessions),
        browser_fetcher_factory=_factory(browser, sessions),
        sleep=SleepRecorder(),
    )

    events = await source.fetch_events("2026-11-07", 52.5, 13.4)

    assert [event.artist_name for event in events] == ["Foo"]
    assert len(sessions) == 2 and sessions[0] == sessions[1]


@pytest.mark.asyncio
async def test_zero_results_escalate_to_browser() -> None:
    http = _ScriptedFetcher([_page([])])
    browser = _ScriptedFetcher([_page(["Late Find"])])
    source = BandsintownEventSource(
        make_scraper_config(),
        http_fetcher_factory=_factory(http),
        browser_fetcher_factory=_factory(browser),
        sleep=SleepRecorder(),
    )

    events = await source.fetch_events("2026-11-07", 52.5, 13.4)

    assert [event.artist_name for event in events] == ["Late Find"]


@pytest.mark.asyncio
async def test_browser_block_keeps_partial_results() -> None:
    http = _ScriptedFetcher([PageResponse(status=429, text="")])
    browser = _ScriptedFetcher(
        [_page(["Foo"], has_next=True), PageResponse(status=200, text="Access Denied")]
    )
    source = BandsintownEventSource(
        make_scraper_config(),
        http_fetcher_factory=_factory(http),
        browser_fetcher_factory=_factory(browser),
        sleep=SleepRecorder(),
    )

    events = await source.fetch_events("2026-11-07", 52.5, 13.4)

    assert [event.artist_name for event in events] == ["Foo"]


@pytest.mark.asyncio
async def test_partial_http_results_survive_empty_browser_run() -> None:
    http = _ScriptedFetcher([_page(["Foo"], has_next=True), PageResponse(status=403, text="")])
    browser = _ScriptedFetcher([PageResponse(status=403, text="")])
    source = BandsintownEventSource(
        make_scraper_config(),
        http_fetcher_factory=_factory(http),
        browser_fetcher_factory=_factory(browser),
        sleep=SleepRecorder(),
    )

    events = await source.fetch_events("2026-11-07", 52.5, 13.4)

    assert [event.artist_name for event in events] == ["Foo"]


@pytest.mark.asyncio
async def test_browser_disabled_returns_http_result() -> None:
    http = _ScriptedFetcher([PageResponse(status=403, text="")])
    browser = _ScriptedFetcher([_page(["Foo"])])
    source = BandsintownEventSource(
        make_scraper_config(browser_enabled=False),
        http_fetcher_factory=_factory(http),
        browser_fetcher_factory=_factory(browser),
        sleep=SleepRecorder(),
    )

    assert await source.fetch_events("2026-11-07", 52.5, 13.4) == []
    assert browser.urls == []


@pytest.mark.asyncio
async def test_failing_fetcher_setup_never_raises() -> None:
    @asynccontextmanager
    async def broken(session_id: str):
        raise OSError("browser binary missing")
        yield  # pragma: no cover

    source = BandsintownEventSource(
        make_scraper_config(),
        http_fetcher_factory=broken,
        browser_fetcher_factory=broken,
        sleep=SleepRecorder(),
    )

    assert await source.fetch_events("2026-11-07", 52.5, 13.4) == []


@pytest.mark.asyncio
async def test_http_page_fetcher_uses_httpx_transport() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Accept"].startswith("application/json")
        return httpx.Response(200, json={"events": [{"artistName": "Foo"}]})

    async with HttpPageFetcher(timeout_s=5.0, transport=httpx.MockTransport(handler)) as fetcher:
        response = await fetcher.fetch("https://events.test/upcoming")

    events, has_next = parse_events_page(response)
    assert events == [{"artistName": "Foo"}]
    assert not has_next


@pytest.mark.asyncio
async def test_http_page_fetcher_maps_transport_errors_to_blocks() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with HttpPageFetcher(timeout_s=5.0, transport=httpx.MockTransport(handler)) as fetcher:
        with pytest.raises(EventSourceBlockedError):
            await fetcher.fetch("https://events.test/upcoming")
