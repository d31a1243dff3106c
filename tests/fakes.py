"""
In-memory stand-ins for the slice of the Playwright async API the session engine uses.

A `FakePage` walks through scripted `Screen`s: clicking an element listed in a screen's
`on_click` moves the page to another screen (optionally firing a main-frame navigation).
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from playwright.async_api import TimeoutError as PlaywrightTimeoutError


BASE = "https://app.example.com"

ENTRY = "button.LoginRegisterView__column__button"
EMAIL = 'input[placeholder="Adres email"]'
PASSWORD = 'input[type="password"]'
SUBMIT = 'button[type="submit"]'
DIGITS = 'input[autocomplete="one-time-code"]'

COOKIES = [
    {"name": "SESSION", "value": "abc123", "domain": "app.example.com", "path": "/", "httpOnly": True, "expires": -1},
    {"name": "XSRF-TOKEN", "value": "tok", "domain": ".example.com", "path": "/", "secure": True},
]


@dataclass
class Screen:
    url: str
    # selector -> number of matching elements
    elements: dict[str, int] = field(default_factory=dict)
    # selector -> seconds after entering the screen before it becomes visible
    delays: dict[str, float] = field(default_factory=dict)
    # selector -> name of the next screen
    on_click: dict[str, str] = field(default_factory=dict)
    # entering this screen fires a main-frame navigation
    navigates: bool = False


@dataclass
class FakeRequest:
    url: str
    method: str = "GET"
    resource_type: str = "document"
    failure: Optional[str] = None


@dataclass
class FakeResponse:
    status: int
    url: str = BASE + "/"
    request: FakeRequest = field(default_factory=lambda: FakeRequest(url=BASE + "/"))


class FakeElement:
    def __init__(self, page: "FakePage", selector: str, index: int) -> None:
        self.page = page
        self.selector = selector
        self.index = index
        self.value = ""

    async def focus(self) -> None:
        self.page.actions.append(("focus", self.selector, self.index))

    async def click(self, click_count: int = 1, **_kwargs: Any) -> None:
        self.page.actions.append(("click", self.selector, click_count))
        self.page._activate(self.selector)

    async def press(self, key: str) -> None:
        self.page.actions.append(("press", self.selector, key))
        if key == "Backspace":
            self.value = ""
        elif key == "Enter":
            self.page._activate(f"Enter@{self.selector}")

    async def type(self, text: str, delay: float = 0) -> None:
        self.page.actions.append(("type", self.selector, text))
        self.value += text


class FakeContext:
    def __init__(self, cookies: list[dict[str, Any]]) -> None:
        self._cookies = cookies

    async def cookies(self) -> list[dict[str, Any]]:
        return [dict(c) for c in self._cookies]


class FakePage:
    def __init__(
        self,
        screens: dict[str, Screen],
        *,
        start: str,
        entry_status: int = 200,
        goto_events: Optional[list[FakeResponse]] = None,
        cookies: Optional[list[dict[str, Any]]] = None,
        goto_error: Optional[BaseException] = None,
        evaluate_result: Any = None,
        wait_errors: Optional[dict[str, BaseException]] = None,
    ) -> None:
        self.screens = screens
        self.screen_name = start
        self._entered_at = time.monotonic()
        self.entry_status = entry_status
        self.goto_events = goto_events or []
        self.goto_error = goto_error
        self.evaluate_result = evaluate_result
        # screen name or selector -> error every matching wait_for_selector raises
        self.wait_errors = wait_errors or {}
        self.context = FakeContext(cookies if cookies is not None else COOKIES)
        self.main_frame = object()

        self.handlers: dict[str, list[Callable[[Any], None]]] = {}
        self.actions: list[tuple] = []
        self.waits_started: list[str] = []
        self.waits_cancelled: list[str] = []
        self.evaluate_calls: list[Any] = []
        self.screenshots = 0
        self.closed = False
        self._navigations = 0
        self._elements: dict[tuple[str, str, int], FakeElement] = {}

    # -- scripting helpers --------------------------------------------------------------

    @property
    def screen(self) -> Screen:
        return self.screens[self.screen_name]

    def _activate(self, key: str) -> None:
        nxt = self.screen.on_click.get(key)
        if nxt is None:
            return
        self.screen_name = nxt
        self._entered_at = time.monotonic()
        if self.screen.navigates:
            self._navigations += 1

    def _visible_count(self, selector: str) -> int:
        count = self.screen.elements.get(selector, 0)
        delay = self.screen.delays.get(selector, 0.0)
        if count and time.monotonic() - self._entered_at < delay:
            return 0
        return count

    def _element(self, selector: str, index: int = 0) -> FakeElement:
        key = (self.screen_name, selector, index)
        if key not in self._elements:
            self._elements[key] = FakeElement(self, selector, index)
        return self._elements[key]

    def elements_on(self, screen: str, selector: str) -> list[FakeElement]:
        return [el for (s, sel, _), el in sorted(self._elements.items()) if s == screen and sel == selector]

    def emit(self, event: str, payload: Any) -> None:
        for handler in list(self.handlers.get(event, [])):
            handler(payload)

    # -- Playwright surface -------------------------------------------------------------

    @property
    def url(self) -> str:
        return self.screen.url

    def on(self, event: str, handler: Callable[[Any], None]) -> None:
        self.handlers.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable[[Any], None]) -> None:
        self.handlers.get(event, []).remove(handler)

    async def goto(self, url: str, **_kwargs: Any) -> FakeResponse:
        self.actions.append(("goto", url))
        if self.goto_error is not None:
            raise self.goto_error
        for ev in self.goto_events:
            self.emit("response", ev)
        self.emit("response", FakeResponse(status=self.entry_status, url=url, request=FakeRequest(url=url)))
        return FakeResponse(status=self.entry_status, url=url, request=FakeRequest(url=url))

    async def wait_for_selector(self, selector: str, *, state: str = "visible", timeout: float = 30_000) -> FakeElement:
        self.waits_started.append(selector)
        deadline = time.monotonic() + timeout / 1000
        try:
            while time.monotonic() < deadline:
                error = self.wait_errors.get(self.screen_name) or self.wait_errors.get(selector)
                if error is not None:
                    raise error
                if self._visible_count(selector) > 0:
                    return self._element(selector)
                await asyncio.sleep(0.002)
        except asyncio.CancelledError:
            self.waits_cancelled.append(selector)
            raise
        raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")

    async def query_selector(self, selector: str) -> Optional[FakeElement]:
        return self._element(selector) if self._visible_count(selector) > 0 else None

    async def query_selector_all(self, selector: str) -> list[FakeElement]:
        return [self._element(selector, i) for i in range(self._visible_count(selector))]

    async def wait_for_event(
        self, event: str, *, predicate: Optional[Callable[[Any], bool]] = None, timeout: float = 30_000
    ) -> Any:
        start = self._navigations
        deadline = time.monotonic() + timeout / 1000
        while time.monotonic() < deadline:
            if self._navigations > start and (predicate is None or predicate(self.main_frame)):
                return self.main_frame
            await asyncio.sleep(0.002)
        raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded while waiting for event \"{event}\"")

    async def wait_for_load_state(self, state: str = "load", **_kwargs: Any) -> None:
        return None

    async def wait_for_timeout(self, timeout: float) -> None:
        await asyncio.sleep(timeout / 1000)

    async def screenshot(self, **_kwargs: Any) -> bytes:
        self.screenshots += 1
        return b"\x89PNG fake"

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        self.evaluate_calls.append(arg)
        if isinstance(self.evaluate_result, BaseException):
            raise self.evaluate_result
        return self.evaluate_result

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    """
    Hands out a fresh page per attempt and records that each one was closed.
    """

    def __init__(self, page_factory: Callable[[], FakePage]) -> None:
        self.page_factory = page_factory
        self.pages: list[FakePage] = []

    @asynccontextmanager
    async def open_page(self):
        page = self.page_factory()
        self.pages.append(page)
        try:
            yield page
        finally:
            page.closed = True


def portal_screens(
    *,
    entry_button: bool = True,
    digit_count: int = 6,
    second_factor: bool = True,
    final_url: str = BASE + "/dashboard",
    login_navigates: bool = False,
) -> tuple[dict[str, Screen], str]:
    """
    Scripted happy path: landing -> login form -> 2FA -> dashboard.
    """
    screens = {
        "landing": Screen(url=BASE + "/", elements={ENTRY: 1}, on_click={ENTRY: "login"}),
        "login": Screen(
            url=BASE + "/auth/login",
            elements={EMAIL: 1, PASSWORD: 1, SUBMIT: 1},
            on_click={SUBMIT: "2fa" if second_factor else "login"},
            navigates=login_navigates,
        ),
        "2fa": Screen(
            url=BASE + "/auth/2fa",
            elements={DIGITS: digit_count, SUBMIT: 1},
            on_click={SUBMIT: "home"},
        ),
        "home": Screen(url=final_url),
    }
    return screens, ("landing" if entry_button else "login")
