from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Sequence

from playwright.async_api import ElementHandle, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..errors import ElementNotFoundError


logger = logging.getLogger(__name__)

# Extra slack on top of the per-candidate timeout before the race is abandoned outright.
_RACE_GRACE_S = 0.5


async def _wait_visible(page: Page, selector: str, timeout_ms: int) -> Optional[ElementHandle]:
    return await page.wait_for_selector(selector, state="visible", timeout=timeout_ms)


async def resolve(
    page: Page,
    candidates: Sequence[str],
    *,
    timeout_ms: int,
    stage: str,
) -> tuple[str, ElementHandle]:
    """
    Race every candidate selector and return `(selector, element)` for the first that becomes visible.

    Losing waits are cancelled before returning. Raises `ElementNotFoundError` if nothing appears
    within `timeout_ms`. If every candidate fails with a browser error instead of timing out, the
    first such error is re-raised so the caller sees a transport failure.
    """
    if not candidates:
        raise ValueError(f"resolve() needs at least one candidate selector (stage={stage})")

    order = {sel: i for i, sel in enumerate(candidates)}
    tasks: dict[asyncio.Future, str] = {
        asyncio.ensure_future(_wait_visible(page, sel, timeout_ms)): sel for sel in candidates
    }
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_ms / 1000 + _RACE_GRACE_S
    pending: set[asyncio.Future] = set(tasks)
    # Non-timeout failures (page closed, browser gone, bad selector) in candidate order.
    errors: list[BaseException] = []
    timed_out = False

    try:
        while pending:
            remaining = deadline - loop.time()
            if remaining <= 0:
                timed_out = True
                break
            done, pending = await asyncio.wait(pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
            # Several candidates can land in the same tick; keep the preferred order among them.
            for task in sorted(done, key=lambda t: order[tasks[t]]):
                if task.cancelled():
                    timed_out = True
                    continue
                exc = task.exception()
                if exc is not None:
                    if isinstance(exc, PlaywrightTimeoutError):
                        timed_out = True
                    else:
                        logger.debug("Candidate %r failed at stage %s: %s", tasks[task], stage, exc)
                        errors.append(exc)
                    continue
                element = task.result()
                if element is not None:
                    logger.debug("Stage %s resolved via %r", stage, tasks[task])
                    return tasks[task], element
                timed_out = True
    finally:
        await _cancel_all(tasks)

    if errors and not timed_out:
        # Every candidate failed outright: the page itself is unusable, not merely missing the element.
        raise errors[0]
    raise ElementNotFoundError(stage, candidates, timeout_ms)


async def _cancel_all(tasks: dict[asyncio.Future, str]) -> None:
    for task in tasks:
        if not task.done():
            task.cancel()
    # Await everything so no wait outlives the race and no exception goes unretrieved.
    await asyncio.gather(*tasks, return_exceptions=True)


async def find_present(page: Page, candidates: Sequence[str]) -> Optional[str]:
    """
    Non-waiting probe: first candidate that currently matches an element.
    """
    for sel in candidates:
        try:
            if await page.query_selector(sel) is not None:
                return sel
        except Exception:
            logger.debug("query_selector failed for %r", sel, exc_info=True)
    return None


async def click_and_wait_optional_navigation(
    page: Page,
    element: ElementHandle,
    *,
    stage: str,
    navigation_timeout_ms: int,
    expect: Optional[Sequence[str]] = None,
    expect_timeout_ms: Optional[int] = None,
) -> Optional[tuple[str, Any]]:
    """
    Click `element` while tolerating either a full-page navigation or an in-place SPA transition.

    A missing navigation is never an error. If `expect` candidates are given, they are resolved after the
    click and their `(selector, element)` is returned; only their absence fails the step.
    """
    navigation = asyncio.ensure_future(
        page.wait_for_event(
            "framenavigated",
            predicate=lambda frame: frame == page.main_frame,
            timeout=navigation_timeout_ms,
        )
    )
    try:
        # Let the waiter subscribe before the click can trigger the navigation.
        await asyncio.sleep(0)
        await element.click()

        if expect:
            return await resolve(
                page,
                expect,
                timeout_ms=expect_timeout_ms or navigation_timeout_ms,
                stage=stage,
            )

        try:
            await navigation
        except PlaywrightTimeoutError:
            logger.debug("No navigation after click at stage %s (in-place transition).", stage)
            return None

        try:
            await page.wait_for_load_state("domcontentloaded", timeout=navigation_timeout_ms)
        except PlaywrightTimeoutError:
            logger.debug("Navigation at stage %s did not reach domcontentloaded in time.", stage)
        return None
    finally:
        if not navigation.done():
            navigation.cancel()
        await asyncio.gather(navigation, return_exceptions=True)
