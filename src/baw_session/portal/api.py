from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from playwright.async_api import Page

from ..models import DownstreamRequest, DownstreamResponse


logger = logging.getLogger(__name__)


# Runs inside the authenticated page so the request carries the portal's own cookies/credentials.
_FETCH_JS = """
async ({ url, method, headers, body }) => {
  const init = { method, headers: headers || {}, credentials: 'include' };
  if (body !== null && body !== undefined) {
    init.body = typeof body === 'string' ? body : JSON.stringify(body);
    if (!init.headers['Content-Type']) init.headers['Content-Type'] = 'application/json';
  }
  const res = await fetch(url, init);
  const text = await res.text();
  let parsed = null;
  let isJson = false;
  try { parsed = JSON.parse(text); isJson = true; } catch (_) {}
  return { status: res.status, ok: res.ok, url: res.url, isJson, body: isJson ? parsed : text };
}
"""


async def fetch_in_page(page: Page, request: DownstreamRequest) -> DownstreamResponse:
    """
    Execute `fetch()` from the page. Failures are captured in the response, never raised.
    """
    try:
        raw = await page.evaluate(
            _FETCH_JS,
            {
                "url": request.url,
                "method": request.method.upper(),
                "headers": dict(request.headers),
                "body": request.body,
            },
        )
    except Exception as e:
        logger.warning("In-page fetch failed for %s: %s", request.url, e)
        return DownstreamResponse(url=request.url, error=str(e))

    if not isinstance(raw, dict):
        return DownstreamResponse(url=request.url, error=f"Unexpected fetch result: {raw!r}")

    status = int(raw.get("status") or 0)
    logger.info("Fetched %s %s -> %s", request.method.upper(), request.url, status)
    return DownstreamResponse(
        url=str(raw.get("url") or request.url),
        status=status,
        ok=bool(raw.get("ok")),
        body=raw.get("body"),
    )


def expand_since(url: str, *, since_minutes: int, now: Optional[datetime] = None) -> str:
    """
    Replace `{since}` in a downstream URL with the ISO-8601 UTC instant `since_minutes` ago.
    """
    if "{since}" not in url:
        return url
    current = now or datetime.now(timezone.utc)
    since = (current - timedelta(minutes=max(int(since_minutes), 0))).replace(microsecond=0)
    return url.replace("{since}", since.isoformat().replace("+00:00", "Z"))
