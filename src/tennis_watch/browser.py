"""Playwright automation for the reservation site."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import structlog
from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Request,
    Route,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

LOGGER = structlog.get_logger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120 Safari/537.36"
)

BLOCKED_RESOURCE_TYPES = frozenset({"image", "media", "font"})
BLOCKED_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".woff", ".woff2", ".ttf")
NOISY_FAILURES = re.compile(r"ERR_FAILED|TIMED_OUT|ERR_ABORTED", re.IGNORECASE)


@dataclass(frozen=True)
class NavigationOutcome:
    """Status and final URL after a page transition."""

    status: Optional[int]
    url: str


class PageDriver(Protocol):
    """What the engine needs from a browser page."""

    @property
    def url(self) -> str: ...

    async def goto(self, url: str) -> NavigationOutcome: ...

    async def go_back(self) -> NavigationOutcome: ...

    async def click_nth(self, selector: str, index: int) -> None: ...

    async def content(self) -> str: ...

    async def text(self) -> str: ...

    async def screenshot(self, path: Path) -> None: ...

    async def wait(self, milliseconds: int) -> None: ...


def should_block(resource_type: str, url: str) -> bool:
    """Heavy resources are never needed to read availability."""
    if resource_type in BLOCKED_RESOURCE_TYPES:
        return True
    return url.split("?", 1)[0].lower().endswith(BLOCKED_EXTENSIONS)


class PlaywrightDriver:
    """Single Chromium page driven for the duration of one run."""

    def __init__(
        self,
        *,
        headless: bool = True,
        timeout_seconds: int = 120,
        proxy: Optional[dict[str, str]] = None,
        timezone: str = "Asia/Tokyo",
    ):
        self._headless = headless
        self._timeout_ms = timeout_seconds * 1000
        self._proxy = proxy
        self._timezone = timezone
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    async def __aenter__(self) -> "PlaywrightDriver":
        self._playwright = await async_playwright().start()
        LOGGER.info("browser.launch", headless=self._headless, proxy=bool(self._proxy))
        launch_kwargs = {"headless": self._headless}
        if self._proxy:
            launch_kwargs["proxy"] = self._proxy
        self._browser = await self._playwright.chromium.launch(**launch_kwargs)
        self._context = await self._browser.new_context(
            locale="ja-JP",
            timezone_id=self._timezone,
            user_agent=USER_AGENT,
            ignore_https_errors=True,
        )
        page = await self._context.new_page()
        page.set_default_timeout(self._timeout_ms)
        page.set_default_navigation_timeout(self._timeout_ms)
        await page.route("**/*", self._filter_request)
        page.on("requestfailed", self._on_request_failed)
        self._page = page
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._context:
            await self._context.close()
        if self._browser:
            await self._browser.close()
        if self._playwright:
            await self._playwright.stop()

    @property
    def page(self) -> Page:
        if not self._page:
            raise RuntimeError("Playwright page has not been initialised")
        return self._page

    @property
    def url(self) -> str:
        return self.page.url

    async def _filter_request(self, route: Route) -> None:
        request = route.request
        if should_block(request.resource_type, request.url):
            await route.abort()
        else:
            await route.continue_()

    def _on_request_failed(self, request: Request) -> None:
        failure = request.failure or ""
        if NOISY_FAILURES.search(failure):
            return
        LOGGER.debug("browser.request_failed", url=request.url, kind=request.resource_type, failure=failure)

    async def goto(self, url: str) -> NavigationOutcome:
        response = await self.page.goto(url, wait_until="domcontentloaded", timeout=self._timeout_ms)
        status = response.status if response else None
        LOGGER.debug("browser.goto", url=url, status=status, final_url=self.page.url)
        return NavigationOutcome(status=status, url=self.page.url)

    async def go_back(self) -> NavigationOutcome:
        response = await self.page.go_back(wait_until="domcontentloaded", timeout=self._timeout_ms)
        return NavigationOutcome(status=response.status if response else None, url=self.page.url)

    async def click_nth(self, selector: str, index: int) -> None:
        await self.page.locator(selector).nth(index).click(timeout=self._timeout_ms)
        # Postbacks may or may not navigate; a short load-state wait covers both.
        try:
            await self.page.wait_for_load_state("domcontentloaded", timeout=30_000)
        except PlaywrightTimeoutError:
            LOGGER.debug("browser.click.no_load_event", selector=selector, index=index)

    async def content(self) -> str:
        return await self.page.content()

    async def text(self) -> str:
        return await self.page.evaluate("() => document.body ? document.body.innerText : ''")

    async def screenshot(self, path: Path) -> None:
        await self.page.screenshot(path=str(path), full_page=True)

    async def wait(self, milliseconds: int) -> None:
        await self.page.wait_for_timeout(milliseconds)
