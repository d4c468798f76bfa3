from __future__ import annotations

import logging
from typing import Any, Optional

from playwright.async_api import (
    Browser,
    ElementHandle,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from ..config import Settings, settings


class BrowserSession:
    def __init__(self, config: Optional[Settings] = None) -> None:
        self.config = config or settings
        self.browser: Browser | None = None
        self.page: Page | None = None
        self._playwright: Playwright | None = None

    async def __aenter__(self) -> "BrowserSession":
        self._playwright = await async_playwright().start()
        self.browser = await self._playwright.chromium.launch(headless=self.config.headless)
        self.page = await self.browser.new_page(
            viewport={"width": self.config.viewport_width, "height": self.config.viewport_height}
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.browser:
            await self.browser.close()
        if self._playwright:
            await self._playwright.stop()

    async def goto(self, url: str, wait_ms: int = 1500) -> None:
        """
        Navigate to a URL and give the survey app a moment to hydrate.
        """
        if not self.page:
            raise RuntimeError("Browser page is not initialized. Use within an async context manager.")

        await self.page.goto(url, wait_until="domcontentloaded", timeout=30000)
        try:
            await self.page.wait_for_load_state("networkidle", timeout=5000)
        except PlaywrightTimeoutError:
            logging.info("networkidle_wait_timed_out url=%s", url)

        if wait_ms > 0:
            await self.page.wait_for_timeout(wait_ms)

    def driver(self) -> "PageDriver":
        if not self.page:
            raise RuntimeError("Browser page is not initialized. Use within an async context manager.")
        return PageDriver(self.page)

    def __repr__(self) -> str:
        return f"BrowserSession(headless={self.config.headless})"


class PageDriver:
    """The small set of page capabilities the engine is written against.

    Lookups return None when nothing matches; actions raise Playwright errors
    on hard failure so callers can decide how to degrade.
    """

    def __init__(self, page: Page, action_timeout_ms: int = 5000) -> None:
        self.page = page
        self.action_timeout_ms = action_timeout_ms

    @property
    def url(self) -> str:
        return self.page.url

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self.page.evaluate(script, arg)

    async def query_selector(self, selector: str) -> ElementHandle | None:
        try:
            return await self.page.query_selector(selector)
        except PlaywrightError as exc:
            logging.debug("query_selector_failed selector=%s reason=%s", selector, exc)
            return None

    async def query_selector_all(self, selector: str) -> list[ElementHandle]:
        try:
            return await self.page.query_selector_all(selector)
        except PlaywrightError as exc:
            logging.debug("query_selector_all_failed selector=%s reason=%s", selector, exc)
            return []

    async def click(self, selector: str) -> None:
        await self.page.click(selector, timeout=self.action_timeout_ms)

    async def type(self, selector: str, text: str) -> None:
        try:
            await self.page.fill(selector, text, timeout=self.action_timeout_ms)
        except PlaywrightError:
            # Masked or custom inputs reject fill(); fall back to key presses.
            await self.page.click(selector, timeout=self.action_timeout_ms)
            await self.page.type(selector, text, timeout=self.action_timeout_ms)

    async def select(self, selector: str, label: str) -> None:
        await self.page.select_option(selector, label=label, timeout=self.action_timeout_ms)

    async def press(self, key: str) -> None:
        await self.page.keyboard.press(key)

    async def mouse_click(self, x: float, y: float) -> None:
        await self.page.mouse.click(x, y)

    async def bounding_box(self, selector: str) -> Optional[dict[str, float]]:
        handle = await self.query_selector(selector)
        if handle is None:
            return None
        return await handle.bounding_box()

    async def screenshot(self, path: str, selector: Optional[str] = None) -> None:
        if selector:
            await self.page.locator(selector).first.screenshot(path=path, timeout=self.action_timeout_ms)
        else:
            await self.page.screenshot(path=path, full_page=True)

    async def wait_for(self, predicate: str, timeout_ms: int, arg: Any = None) -> bool:
        try:
            await self.page.wait_for_function(predicate, arg=arg, timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            return False

    async def sleep(self, ms: int) -> None:
        if ms > 0:
            await self.page.wait_for_timeout(ms)
