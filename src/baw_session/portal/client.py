from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, AsyncContextManager, Callable, Optional, Protocol, Sequence
from urllib.parse import urlparse

from playwright.async_api import ElementHandle, Page

from ..config import PortalConfig, TimeoutConfig
from ..errors import (
    AcquisitionError,
    BlockedError,
    ElementNotFoundError,
    InvalidInputError,
    LoginRejectedError,
    SecondFactorNotPresentedError,
    UnexpectedFieldCountError,
)
from ..models import AcquisitionResult, Credentials, DownstreamRequest, DownstreamResponse
from . import totp
from .api import fetch_in_page
from .diagnostics import DiagnosticCollector
from .resolver import click_and_wait_optional_navigation, find_present, resolve
from .result import assemble_result
from .selectors import PortalSelectors


logger = logging.getLogger(__name__)

SECOND_FACTOR_DIGITS = 6


class LoginStage(str, Enum):
    INIT = "init"
    NAVIGATE_ENTRY = "navigate_entry"
    OPEN_LOGIN_FORM = "open_login_form"
    ENTER_CREDENTIALS = "enter_credentials"
    SUBMIT_CREDENTIALS = "submit_credentials"
    AWAIT_SECOND_FACTOR = "await_second_factor"
    ENTER_SECOND_FACTOR = "enter_second_factor"
    SUBMIT_SECOND_FACTOR = "submit_second_factor"
    VERIFY_LOGGED_IN = "verify_logged_in"
    AUTHENTICATED = "authenticated"


class PageProvider(Protocol):
    def open_page(self) -> AsyncContextManager[Page]: ...


class UrlVerificationPolicy:
    """
    Heuristic "are we logged in" check: the URL is on the authenticated host and its path/fragment
    carries none of the auth markers (SPA routes like `/#/auth/login` count).
    """

    def __init__(self, authenticated_host: str, auth_path_markers: Sequence[str] = ("auth", "login")) -> None:
        self.authenticated_host = (authenticated_host or "").strip().lower()
        self.auth_path_markers = tuple(m.lower() for m in auth_path_markers if m)

    def __call__(self, url: str) -> bool:
        try:
            parsed = urlparse(url or "")
        except ValueError:
            return False
        host = (parsed.hostname or "").lower()
        if not host or not self.authenticated_host:
            return False
        if host != self.authenticated_host and not host.endswith("." + self.authenticated_host):
            return False
        route = f"{parsed.path}?{parsed.query}#{parsed.fragment}".lower()
        return not any(marker in route for marker in self.auth_path_markers)


def validate_credentials(creds: Optional[Credentials]) -> None:
    """
    Reject a run before any browser work: every field present, a numeric 2FA value must be a
    6-digit code, anything else must decode as a base32 secret.
    """
    missing = [
        name
        for name in ("email", "password", "totp")
        if not str(getattr(creds, name, "") or "").strip()
    ]
    if missing:
        raise InvalidInputError(f"Missing credentials: {', '.join(missing)}")

    value = str(creds.totp).strip()
    if value.isdigit():
        if not totp.is_precomputed_code(value):
            raise InvalidInputError(
                f"A precomputed 2FA code must be exactly {SECOND_FACTOR_DIGITS} ASCII digits (got {len(value)} characters)."
            )
        return
    totp.decode_secret(value)


class SessionAcquirer:
    """
    Drives one login attempt against the portal and always returns an `AcquisitionResult`.

    Flow: entry page -> (optional) "log in" control -> email/password -> 6-digit TOTP -> URL check.
    """

    def __init__(
        self,
        *,
        portal: PortalConfig,
        timeouts: Optional[TimeoutConfig] = None,
        selectors: Optional[PortalSelectors] = None,
        verification: Optional[Callable[[str], bool]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.portal = portal
        self.timeouts = timeouts or TimeoutConfig()
        self.selectors = selectors or PortalSelectors()
        self.verification = verification or UrlVerificationPolicy(
            portal.authenticated_host, portal.auth_path_markers
        )
        self._clock = clock

    async def acquire(
        self,
        browser: PageProvider,
        credentials: Credentials,
        *,
        downstream: Sequence[DownstreamRequest] = (),
    ) -> AcquisitionResult:
        started = time.monotonic()
        collector = DiagnosticCollector()

        def _elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        collector.step(LoginStage.INIT.value)
        try:
            validate_credentials(credentials)
        except AcquisitionError as e:
            logger.error("Session acquisition rejected before launch (%s): %s", e.kind.value, e)
            return assemble_result(error=e, diagnostics=collector.snapshot(), elapsed_ms=_elapsed_ms())

        error: Optional[BaseException] = None
        completed = False
        current_url = ""
        cookies: Optional[list[dict[str, Any]]] = None
        responses: list[DownstreamResponse] = []
        screenshot: Optional[bytes] = None

        try:
            async with browser.open_page() as page:
                collector.attach(page)
                try:
                    cookies, responses = await self._run(page, credentials, collector, downstream)
                    completed = True
                except Exception as e:
                    error = e
                    screenshot = getattr(e, "screenshot", None) or await self._best_effort_screenshot(page)
                finally:
                    current_url = self._current_url(page)
                    collector.detach(page)
        except Exception as e:
            # Opening (or closing) the page failed; only report it if the flow itself did not finish.
            if error is None and not completed:
                error = e
            else:
                logger.warning("Ignoring page cleanup failure: %s", e)

        if error is not None:
            kind = error.kind.value if isinstance(error, AcquisitionError) else "TransportFailure"
            logger.error("Session acquisition failed (%s): %s", kind, error)
        else:
            logger.info("Session acquired (url=%s cookies=%d)", current_url, len(cookies or []))

        return assemble_result(
            error=error,
            current_url=current_url,
            cookies=cookies,
            diagnostics=collector.snapshot(),
            screenshot=screenshot,
            downstream=responses,
            elapsed_ms=_elapsed_ms(),
        )

    async def _run(
        self,
        page: Page,
        creds: Credentials,
        collector: DiagnosticCollector,
        downstream: Sequence[DownstreamRequest],
    ) -> tuple[list[dict[str, Any]], list[DownstreamResponse]]:
        sel = self.selectors
        t = self.timeouts

        collector.step(LoginStage.NAVIGATE_ENTRY.value, self.portal.login_url)
        response = await page.goto(self.portal.login_url, wait_until="domcontentloaded", timeout=t.navigation_ms)
        status = response.status if response is not None else None
        if status == 403:
            raise BlockedError(self.portal.login_url, status)

        collector.step(LoginStage.OPEN_LOGIN_FORM.value, page.url)
        email_input = await self._open_login_form(page, collector)

        collector.step(LoginStage.ENTER_CREDENTIALS.value, page.url)
        await self._type_into(email_input, creds.email)
        _, password_input = await resolve(
            page, sel.password_input, timeout_ms=t.element_ms, stage=LoginStage.ENTER_CREDENTIALS.value
        )
        await self._type_into(password_input, creds.password)

        collector.step(LoginStage.SUBMIT_CREDENTIALS.value, page.url)
        await self._submit(page, sel.submit_button, fallback=password_input, stage=LoginStage.SUBMIT_CREDENTIALS)

        collector.step(LoginStage.AWAIT_SECOND_FACTOR.value, page.url)
        try:
            digit_selector, _ = await resolve(
                page,
                sel.second_factor_inputs,
                timeout_ms=t.second_factor_ms,
                stage=LoginStage.AWAIT_SECOND_FACTOR.value,
            )
        except ElementNotFoundError as e:
            raise SecondFactorNotPresentedError(sel.second_factor_inputs) from e

        collector.step(LoginStage.ENTER_SECOND_FACTOR.value, page.url)
        fields = await page.query_selector_all(digit_selector)
        if len(fields) != SECOND_FACTOR_DIGITS:
            raise UnexpectedFieldCountError(expected=SECOND_FACTOR_DIGITS, found=len(fields))
        await self._enter_second_factor(fields, creds.totp)

        collector.step(LoginStage.SUBMIT_SECOND_FACTOR.value, page.url)
        await self._submit(page, sel.second_factor_submit, fallback=fields[-1], stage=LoginStage.SUBMIT_SECOND_FACTOR)

        collector.step(LoginStage.VERIFY_LOGGED_IN.value, page.url)
        await page.wait_for_timeout(t.settle_delay_ms)
        url = page.url
        if not self.verification(url):
            raise LoginRejectedError(url, await self._best_effort_screenshot(page))
        if await find_present(page, sel.email_input) is not None:
            # Some UI versions keep the form mounted after login; the URL check is authoritative.
            logger.warning("Still seeing the email field after login (url=%s); treating as logged in.", url)

        collector.step(LoginStage.AUTHENTICATED.value, url)
        cookies = await page.context.cookies()
        responses = [await fetch_in_page(page, req) for req in downstream]
        return list(cookies), responses

    async def _open_login_form(self, page: Page, collector: DiagnosticCollector) -> ElementHandle:
        """
        Race the email field against the entry control. If the form is already rendered, skip the click.
        """
        sel = self.selectors
        t = self.timeouts
        matched, element = await resolve(
            page,
            sel.email_input + sel.entry_control,
            timeout_ms=t.element_ms,
            stage=LoginStage.OPEN_LOGIN_FORM.value,
        )
        if matched in sel.email_input:
            return element

        collector.step("click_entry_control", page.url)
        resolved = await click_and_wait_optional_navigation(
            page,
            element,
            stage=LoginStage.OPEN_LOGIN_FORM.value,
            navigation_timeout_ms=t.click_navigation_ms,
            expect=sel.email_input,
            expect_timeout_ms=t.element_ms,
        )
        if resolved is None:
            raise ElementNotFoundError(LoginStage.OPEN_LOGIN_FORM.value, sel.email_input, t.element_ms)
        return resolved[1]

    async def _type_into(self, element: ElementHandle, text: str) -> None:
        # Focus, select all, delete, then type at human pace (the form debounces input).
        await element.focus()
        await element.click(click_count=3)
        await element.press("Backspace")
        await element.type(text, delay=self.timeouts.typing_delay_ms)

    async def _enter_second_factor(self, fields: Sequence[ElementHandle], secret_or_code: str) -> None:
        value = secret_or_code.strip()
        # Computed here, not earlier: the flow above can take long enough to cross a 30s step.
        code = value if totp.is_precomputed_code(value) else totp.generate(value, now=self._clock())
        logger.info("Entering 2FA code %s", totp.mask_code(code))
        for field, digit in zip(fields, code):
            await field.focus()
            await field.type(digit, delay=self.timeouts.typing_delay_ms)

    async def _submit(
        self,
        page: Page,
        candidates: Sequence[str],
        *,
        fallback: ElementHandle,
        stage: LoginStage,
    ) -> None:
        t = self.timeouts
        try:
            _, button = await resolve(page, candidates, timeout_ms=t.click_navigation_ms, stage=stage.value)
        except ElementNotFoundError:
            logger.info("No submit control at stage %s; pressing Enter instead.", stage.value)
            await fallback.press("Enter")
            await page.wait_for_timeout(t.settle_delay_ms)
            return
        await click_and_wait_optional_navigation(
            page,
            button,
            stage=stage.value,
            navigation_timeout_ms=t.click_navigation_ms,
        )

    async def _best_effort_screenshot(self, page: Page) -> Optional[bytes]:
        try:
            return await page.screenshot(full_page=True)
        except Exception:
            logger.debug("Failed to capture failure screenshot.", exc_info=True)
            return None

    def _current_url(self, page: Page) -> str:
        try:
            return page.url or ""
        except Exception:
            return ""
