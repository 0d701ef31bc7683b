"""Bandsintown event source with an HTTP strategy and a headless-browser fallback.

Both strategies walk the same paginated ``upcomingEvents`` endpoint. The HTTP
strategy is cheap but easily blocked; any sign of blocking (403/429, an HTML or
challenge page, a transport error, or simply zero results) escalates to a
Playwright-driven Chromium session. The browser path stops at the first block
and keeps what it already collected. :meth:`BandsintownEventSource.fetch_events`
never raises.
"""

from __future__ import annotations

import asyncio
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
import json
import random
import time
from typing import Any, Awaitable, Callable, Protocol
from urllib.parse import urlencode

import httpx
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from curator.config import ProxyConfig, ScraperConfig
from curator.core.types import Event
from curator.logging import get_logger
from curator.logging_events import log_event

logger = get_logger(__name__)

SOFT_BLOCK_MARKERS = ("Pardon Our Interruption", "human verification", "Access Denied")
BLOCK_STATUSES = frozenset({403, 429})

_BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Referer": "https://www.bandsintown.com/",
}

_CHROMIUM_ARGS = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-extensions",
    "--mute-audio",
    "--disable-background-timer-throttling",
    "--disable-renderer-backgrounding",
)


class EventSourceBlockedError(RuntimeError):
    """Raised inside the adapter when a page looks blocked or unreadable."""

    def __init__(self, reason: str, *, status: int | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.status = status


@dataclass(slots=True, frozen=True)
class PageResponse:
    status: int
    text: str


class PageFetcher(Protocol):
    async def fetch(self, url: str) -> PageResponse: ...


FetcherFactory = Callable[[str], AbstractAsyncContextManager[PageFetcher]]
Sleeper = Callable[[float], Awaitable[None]]


def build_events_url(
    base_url: str,
    *,
    search_date: str,
    latitude: float,
    longitude: float,
    page: int,
) -> str:
    query = urlencode(
        {
            "date": f"{search_date}T00:00:00,{search_date}T23:00:00",
            "page": page,
            "longitude": longitude,
            "latitude": latitude,
            "genre_query": "all-genres",
        },
        safe=":,",
    )
    return f"{base_url.rstrip('/')}/choose-dates/fetch-next/upcomingEvents?{query}"


def new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{random.randint(0, 999)}"


def _proxy_username(proxy: ProxyConfig, session_id: str) -> str | None:
    if not proxy.username:
        return None
    return f"{proxy.username}-sessid-{session_id}"


def build_http_proxy_url(proxy: ProxyConfig | None, session_id: str) -> str | None:
    if proxy is None:
        return None
    host = proxy.url.split("://", 1)[-1].rstrip("/")
    if proxy.port:
        host = f"{host}:{proxy.port}"
    username = _proxy_username(proxy, session_id)
    if username and proxy.password:
        return f"http://{username}:{proxy.password}@{host}"
    return f"http://{host}"


def parse_events_page(response: PageResponse) -> tuple[list[dict[str, Any]], bool]:
    """Decode one page into ``(raw events, has_next_page)``.

    Raises :class:`EventSourceBlockedError` for block statuses, challenge or
    HTML pages, and bodies that are not a JSON object.
    """

    if response.status in BLOCK_STATUSES:
        raise EventSourceBlockedError(f"HTTP {response.status}", status=response.status)
    text = response.text or ""
    for marker in SOFT_BLOCK_MARKERS:
        if marker in text:
            raise EventSourceBlockedError(f"soft block: {marker}", status=response.status)
    stripped = text.lstrip()
    if stripped.startswith("<") or "Cloudflare" in text[:2000]:
        raise EventSourceBlockedError("html challenge page", status=response.status)
    try:
        payload = json.loads(text)
    except ValueError as exc:
        raise EventSourceBlockedError("invalid JSON", status=response.status) from exc
    if not isinstance(payload, dict):
        raise EventSourceBlockedError("unexpected payload", status=response.status)
    events = [item for item in payload.get("events") or [] if isinstance(item, dict)]
    return events, bool(payload.get("urlForNextPageOfEvents"))


class HttpPageFetcher:
    """Plain HTTP strategy backed by :class:`httpx.AsyncClient`."""

    def __init__(
        self,
        *,
        timeout_s: float,
        proxy_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout_s = timeout_s
        self._proxy_url = proxy_url
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "HttpPageFetcher":
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout_s, connect=min(self._timeout_s, 10.0)),
            headers=_BROWSER_HEADERS,
            follow_redirects=True,
            proxy=self._proxy_url,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str) -> PageResponse:
        if self._client is None:
            raise RuntimeError("HttpPageFetcher used outside its context")
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise EventSourceBlockedError(f"transport error: {exc}") from exc
        return PageResponse(status=response.status_code, text=response.text)


class BrowserPageFetcher:
    """Headless Chromium strategy driven by Playwright."""

    def __init__(
        self,
        *,
        timeout_ms: int,
        proxy: ProxyConfig | None = None,
        session_id: str | None = None,
    ) -> None:
        self._timeout_ms = timeout_ms
        self._proxy = proxy
        self._session_id = session_id or new_session_id()
        self._playwright: Any = None
        self._browser: Any = None
        self._page: Any = None

    def _launch_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"headless": True, "args": list(_CHROMIUM_ARGS)}
        proxy = self._proxy
        if proxy is not None and proxy.port and proxy.username and proxy.password:
            host = proxy.url.split("://", 1)[-1].rstrip("/")
            options["proxy"] = {
                "server": f"http://{host}:{proxy.port}",
                "username": _proxy_username(proxy, self._session_id),
                "password": proxy.password,
            }
        elif proxy is not None:
            logger.warning("Proxy credentials incomplete; browser runs without proxy")
        return options

    async def __aenter__(self) -> "BrowserPageFetcher":
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(**self._launch_options())
            context = await self._browser.new_context(
                ignore_https_errors=True,
                user_agent=_BROWSER_HEADERS["User-Agent"],
            )
            self._page = await context.new_page()
        except BaseException:
            await self.__aexit__(None, None, None)
            raise
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def fetch(self, url: str) -> PageResponse:
        if self._page is None:
            raise RuntimeError("BrowserPageFetcher used outside its context")
        response = await self._page.goto(
            url, wait_until="domcontentloaded", timeout=self._timeout_ms
        )
        status = response.status if response is not None else 0
        text = await self._page.evaluate("() => document.body ? document.body.innerText : ''")
        return PageResponse(status=status, text=text or "")


@dataclass(slots=True)
class _CrawlResult:
    events: list[Event]
    blocked: str | None = None


class BandsintownEventSource:
    """Fetch raw event listings for a date and location."""

    def __init__(
        self,
        config: ScraperConfig,
        *,
        http_fetcher_factory: FetcherFactory | None = None,
        browser_fetcher_factory: FetcherFactory | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._config = config
        self._http_factory = http_fetcher_factory or self._default_http_fetcher
        self._browser_factory = browser_fetcher_factory or self._default_browser_fetcher
        self._sleep = sleep

    def _default_http_fetcher(self, session_id: str) -> HttpPageFetcher:
        return HttpPageFetcher(
            timeout_s=self._config.timeout_s,
            proxy_url=build_http_proxy_url(self._config.proxy, session_id),
        )

    def _default_browser_fetcher(self, session_id: str) -> BrowserPageFetcher:
        return BrowserPageFetcher(
            timeout_ms=self._config.browser_timeout_ms,
            proxy=self._config.proxy,
            session_id=session_id,
        )

    async def _crawl(
        self,
        fetcher: PageFetcher,
        *,
        search_date: str,
        latitude: float,
        longitude: float,
        page_delay_s: float,
    ) -> _CrawlResult:
        result = _CrawlResult(events=[])
        for page in range(1, self._config.max_pages + 1):
            url = build_events_url(
                self._config.base_url,
                search_date=search_date,
                latitude=latitude,
                longitude=longitude,
                page=page,
            )
            try:
                raw_events, has_next = parse_events_page(await fetcher.fetch(url))
            except EventSourceBlockedError as exc:
                result.blocked = exc.reason
                return result
            except PlaywrightError as exc:
                result.blocked = f"browser error: {exc}"
                return result
            if not raw_events:
                break
            for payload in raw_events:
                event = Event.from_payload(payload)
                if event is not None:
                    result.events.append(event)
            if not has_next:
                break
            if page_delay_s > 0:
                await self._sleep(page_delay_s)
        return result

    async def _run_strategy(
        self,
        strategy: str,
        factory: FetcherFactory,
        session_id: str,
        *,
        search_date: str,
        latitude: float,
        longitude: float,
        page_delay_s: float,
    ) -> _CrawlResult:
        try:
            async with factory(session_id) as fetcher:
                result = await self._crawl(
                    fetcher,
                    search_date=search_date,
                    latitude=latitude,
                    longitude=longitude,
                    page_delay_s=page_delay_s,
                )
        except (EventSourceBlockedError, PlaywrightError, httpx.HTTPError, OSError) as exc:
            logger.warning("%s scrape failed: %s", strategy, exc)
            result = _CrawlResult(events=[], blocked=str(exc) or type(exc).__name__)
        log_event(
            logger,
            "source.fetch",
            component="bandsintown",
            strategy=strategy,
            status="blocked" if result.blocked else "ok",
            count=len(result.events),
            reason=result.blocked,
        )
        return result

    async def fetch_events(self, search_date: str, latitude: float, longitude: float) -> list[Event]:
        """Return every listed event, possibly partial, never raising for blocks."""

        session_id = new_session_id()
        params = {"search_date": search_date, "latitude": latitude, "longitude": longitude}

        light = await self._run_strategy(
            "http",
            self._http_factory,
            session_id,
            page_delay_s=self._config.page_delay_s,
            **params,
        )
        if light.events and light.blocked is None:
            return light.events

        if not self._config.browser_enabled:
            return light.events

        log_event(
            logger,
            "source.escalate",
            component="bandsintown",
            status="browser",
            reason=light.blocked or "zero results",
            partial=len(light.events),
        )
        heavy = await self._run_strategy(
            "browser",
            self._browser_factory,
            session_id,
            page_delay_s=self._config.browser_page_delay_s,
            **params,
        )
        if heavy.events:
            return heavy.events
        return light.events


__all__ = [
    "BandsintownEventSource",
    "BrowserPageFetcher",
    "EventSourceBlockedError",
    "HttpPageFetcher",
    "PageResponse",
    "build_events_url",
    "build_http_proxy_url",
    "parse_events_page",
]
