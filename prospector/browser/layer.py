"""Browser Layer: Playwright-based headless browser for rendered pages.

The Browser Layer has no decision-making authority. It renders pages,
performs the interactions a caller asks for, and returns DOM state. Each
fetch runs on its own page inside one shared context, so concurrent entity
workers never step on each other's navigation.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator

from playwright.async_api import Browser, BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError

from prospector.browser.types import PageSnapshot
from prospector.config.settings import BrowserConfig, TimeoutConfig
from prospector.errors import TransientFetchError
from prospector.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

_CLEAN_DOM_SCRIPT = """() => {
    const clone = document.documentElement.cloneNode(true);
    clone.querySelectorAll('script, style, noscript, link[rel=stylesheet]')
        .forEach(el => el.remove());
    return clone.outerHTML;
}"""


class ActionStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


@dataclass
class ActionResult:
    """Result of a browser interaction."""

    status: ActionStatus
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status == ActionStatus.SUCCESS


class BrowserLayer:
    """Playwright-backed page fetcher and interaction helper.

    Contract:
    - `fetch(url)` renders a page and returns its cleaned HTML, raising
      TransientFetchError on navigation failure or timeout
    - `open_page()` yields a fresh page for multi-step interactions
    - The browser is launched lazily on first use and torn down by `stop()`
    """

    def __init__(
        self,
        config: BrowserConfig | None = None,
        timeouts: TimeoutConfig | None = None,
    ) -> None:
        self._config = config or BrowserConfig()
        self._timeouts = timeouts or TimeoutConfig()
        self._playwright: Any = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._start_lock = asyncio.Lock()

    @property
    def started(self) -> bool:
        return self._context is not None

    @property
    def page_timeout_ms(self) -> int:
        return self._timeouts.page_load_timeout_s * 1000

    async def start(self) -> None:
        """Launch the browser and create an isolated context."""
        async with self._start_lock:
            if self._context is not None:
                return
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self._config.headless,
            )
            self._context = await self._browser.new_context(
                viewport={
                    "width": self._config.viewport_width,
                    "height": self._config.viewport_height,
                },
                user_agent=self._config.user_agent,
                locale=self._config.locale,
            )

    async def stop(self) -> None:
        """Clean up browser resources."""
        try:
            if self._context:
                await self._context.close()
            if self._browser:
                await self._browser.close()
            if self._playwright:
                await self._playwright.stop()
        except PlaywrightError as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.BROWSER_CLEANUP_FAILED,
                message=str(exc),
                suppressed=True,
            )
        finally:
            self._context = None
            self._browser = None
            self._playwright = None

    async def __aenter__(self) -> BrowserLayer:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    @asynccontextmanager
    async def open_page(self) -> AsyncIterator[Page]:
        """Yield a fresh page that is closed on exit."""
        if self._context is None:
            await self.start()
        assert self._context is not None
        page = await self._context.new_page()
        try:
            yield page
        finally:
            await page.close()

    async def navigate(self, page: Page, url: str) -> ActionResult:
        """Navigate to a URL and wait for the DOM to load."""
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=self.page_timeout_ms)
            return ActionResult(status=ActionStatus.SUCCESS, detail=f"Navigated to {url}")
        except PlaywrightError as e:
            return ActionResult(status=ActionStatus.FAILURE, detail=str(e))

    async def fill_form(self, page: Page, selector: str, value: str) -> ActionResult:
        """Type a value into a form field."""
        try:
            await page.fill(selector, value, timeout=10000)
            return ActionResult(status=ActionStatus.SUCCESS, detail=f"Filled {selector}")
        except PlaywrightError as e:
            return ActionResult(status=ActionStatus.FAILURE, detail=str(e))

    async def press_key(self, page: Page, key: str) -> ActionResult:
        try:
            await page.keyboard.press(key)
            return ActionResult(status=ActionStatus.SUCCESS, detail=f"Pressed {key}")
        except PlaywrightError as e:
            return ActionResult(status=ActionStatus.FAILURE, detail=str(e))

    async def wait_for(self, page: Page, selector: str, timeout_ms: int = 10000) -> ActionResult:
        """Wait for an element to appear in the DOM."""
        try:
            await page.wait_for_selector(selector, timeout=timeout_ms)
            return ActionResult(status=ActionStatus.SUCCESS, detail=f"Element {selector} appeared")
        except PlaywrightError as e:
            return ActionResult(status=ActionStatus.TIMEOUT, detail=str(e))

    async def settle(self, page: Page) -> None:
        """Give client-side rendering a moment to populate the page."""
        await page.wait_for_timeout(int(self._timeouts.dynamic_content_wait_s * 1000))

    async def capture_dom(self, page: Page) -> PageSnapshot:
        """Capture the page without scripts and styles."""
        html = await page.evaluate(_CLEAN_DOM_SCRIPT)
        return PageSnapshot(html=html, url=page.url, title=await page.title())

    async def fetch(self, url: str) -> PageSnapshot:
        """Render `url` and return its cleaned DOM.

        Launch, page creation and teardown failures surface as
        TransientFetchError like navigation failures do.
        """
        try:
            async with self.open_page() as page:
                result = await self.navigate(page, url)
                if not result.ok:
                    raise TransientFetchError(result.detail, url=url)
                await self.settle(page)
                return await self.capture_dom(page)
        except PlaywrightError as exc:
            raise TransientFetchError(str(exc), url=url) from exc
