from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from playwright.async_api import Browser, Page, Playwright, async_playwright

from ..config import BrowserConfig


logger = logging.getLogger(__name__)


class BrowserHandle:
    """
    Owns one Playwright driver + Chromium process for the lifetime of the caller.

    Each attempt gets an exclusive context/page via `open_page()`. If the browser disconnects,
    the next `open_page()` relaunches it; attempts already running fail on their own.
    """

    def __init__(self, settings: Optional[BrowserConfig] = None) -> None:
        self.settings = settings or BrowserConfig()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> "BrowserHandle":
        self._playwright = await async_playwright().start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def close(self) -> None:
        browser, self._browser = self._browser, None
        if browser is not None:
            try:
                await browser.close()
            except Exception:
                logger.debug("Browser close failed.", exc_info=True)
        pw, self._playwright = self._playwright, None
        if pw is not None:
            await pw.stop()

    async def _ensure_browser(self) -> Browser:
        async with self._lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser
            if self._playwright is None:
                raise RuntimeError("BrowserHandle is not started; use `async with BrowserHandle(...)`.")
            self._browser = await self._launch(self._playwright)
            self._browser.on("disconnected", self._on_disconnected)
            return self._browser

    def _on_disconnected(self, browser: Browser) -> None:
        logger.warning("Browser disconnected; it will be relaunched on the next attempt.")
        if self._browser is browser:
            self._browser = None

    async def _launch(self, p: Playwright) -> Browser:
        s = self.settings
        kwargs: dict = {"headless": s.headless, "slow_mo": int(s.slow_mo_ms or 0)}
        if s.channel:
            return await p.chromium.launch(channel=s.channel, **kwargs)

        # Prefer Playwright's bundled Chromium, but fall back to a system-installed browser if the
        # cache doesn't have Playwright browsers available.
        try:
            return await p.chromium.launch(**kwargs)
        except Exception as e:
            msg = str(e)
            if "Executable doesn't exist" not in msg:
                raise
            logger.warning(
                "Playwright Chromium executable missing; falling back to system browser channel. (%s)",
                msg,
            )

        # Try Chrome first, then Edge.
        try:
            return await p.chromium.launch(channel="chrome", **kwargs)
        except Exception:
            return await p.chromium.launch(channel="msedge", **kwargs)

    @asynccontextmanager
    async def open_page(self) -> AsyncIterator[Page]:
        browser = await self._ensure_browser()
        s = self.settings

        ctx_kwargs: dict = {"color_scheme": "light", "ignore_https_errors": bool(s.ignore_https_errors)}
        if s.user_agent:
            ctx_kwargs["user_agent"] = s.user_agent

        ctx = await browser.new_context(**ctx_kwargs)
        try:
            page = await ctx.new_page()
            page.set_default_timeout(s.default_timeout_ms)
            page.set_default_navigation_timeout(s.default_timeout_ms)
            yield page
        finally:
            try:
                await ctx.close()
            except Exception:
                logger.debug("Browser context close failed.", exc_info=True)
