from __future__ import annotations

import logging
import re
import time
from typing import Any, Optional

from playwright.async_api import Page

from ..models import BlockedResponse, DiagnosticsSnapshot, NetworkFailure, StepRecord


logger = logging.getLogger(__name__)


class DiagnosticCollector:
    """
    Per-attempt sink for things that explain a failed (or fragile) login:
    - 403 responses (edge/WAF blocks often hit secondary resources before the document itself)
    - transport-level request failures (DNS, timeout, abort)
    - the step trail written by the session state machine

    Listener callbacks are fail-open: inspecting an event must never break the login flow.
    Create one collector per acquisition attempt; records are never shared between attempts.
    """

    def __init__(self) -> None:
        self._blocked: list[BlockedResponse] = []
        self._net_errors: list[NetworkFailure] = []
        self._steps: list[StepRecord] = []
        self._started = time.monotonic()

    def attach(self, page: Page) -> None:
        page.on("response", self._on_response)
        page.on("requestfailed", self._on_request_failed)
        page.on("console", self._on_console)
        page.on("pageerror", self._on_page_error)

    def detach(self, page: Page) -> None:
        for event, handler in (
            ("response", self._on_response),
            ("requestfailed", self._on_request_failed),
            ("console", self._on_console),
            ("pageerror", self._on_page_error),
        ):
            try:
                page.remove_listener(event, handler)
            except Exception:
                logger.debug("Failed to remove %s listener.", event, exc_info=True)

    def step(self, name: str, url: str = "") -> None:
        n = len(self._steps) + 1
        safe = re.sub(r"[^a-zA-Z0-9_-]+", "_", name).strip("_")[:60] or "step"
        elapsed_ms = int((time.monotonic() - self._started) * 1000)
        self._steps.append(StepRecord(name=safe, url=url, elapsed_ms=elapsed_ms))
        logger.info("Step %02d %s (url=%s)", n, safe, url)

    def snapshot(self) -> DiagnosticsSnapshot:
        return DiagnosticsSnapshot(
            blocked_403=tuple(self._blocked),
            net_errors=tuple(self._net_errors),
            steps=tuple(self._steps),
        )

    def _on_response(self, response: Any) -> None:
        try:
            if response.status != 403:
                return
            request = response.request
            record = BlockedResponse(
                status=403,
                url=str(response.url),
                method=str(request.method),
                resource_type=str(request.resource_type),
            )
            self._blocked.append(record)
            logger.warning("403 %s %s (%s)", record.method, record.url, record.resource_type)
        except Exception:
            logger.debug("Failed to inspect response for diagnostics.", exc_info=True)

    def _on_request_failed(self, request: Any) -> None:
        try:
            record = NetworkFailure(
                url=str(request.url),
                method=str(request.method),
                resource_type=str(request.resource_type),
                reason=_failure_reason(request),
            )
            self._net_errors.append(record)
            logger.debug("Request failed: %s %s (%s)", record.method, record.url, record.reason)
        except Exception:
            logger.debug("Failed to inspect failed request for diagnostics.", exc_info=True)

    def _on_console(self, message: Any) -> None:
        try:
            logger.debug("[page console] %s: %s", message.type, message.text)
        except Exception:
            pass

    def _on_page_error(self, error: Any) -> None:
        try:
            logger.debug("[page error] %s", getattr(error, "message", None) or error)
        except Exception:
            pass


def _failure_reason(request: Any) -> str:
    # Playwright exposes `failure` as the error text (or None); older bindings used a dict.
    try:
        failure: Optional[Any] = request.failure
    except Exception:
        return ""
    if failure is None:
        return ""
    if isinstance(failure, dict):
        return str(failure.get("errorText") or "")
    return str(failure)
