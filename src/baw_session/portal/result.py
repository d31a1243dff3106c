from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from ..errors import AcquisitionError
from ..models import (
    AcquisitionResult,
    CookieRecord,
    DiagnosticsSnapshot,
    DownstreamResponse,
    ErrorKind,
)


logger = logging.getLogger(__name__)


def _cookie_records(cookies: Optional[Iterable[Any]]) -> tuple[CookieRecord, ...]:
    out: list[CookieRecord] = []
    for raw in cookies or ():
        try:
            out.append(CookieRecord(name=str(raw["name"]), value=str(raw["value"]), domain=str(raw.get("domain") or "")))
        except Exception:
            logger.debug("Skipping malformed cookie: %r", raw, exc_info=True)
    return tuple(out)


def assemble_result(
    *,
    error: Optional[BaseException] = None,
    current_url: str = "",
    cookies: Optional[Iterable[Any]] = None,
    diagnostics: Optional[DiagnosticsSnapshot] = None,
    screenshot: Optional[bytes] = None,
    downstream: Iterable[DownstreamResponse] = (),
    elapsed_ms: int = 0,
) -> AcquisitionResult:
    """
    Fold the terminal state of one attempt into an `AcquisitionResult`. Never raises.

    Only name/value/domain survive from each cookie; that is all a caller needs to rebuild the session.
    """
    diag = diagnostics or DiagnosticsSnapshot()
    try:
        if error is None:
            return AcquisitionResult(
                success=True,
                current_url=current_url or "",
                cookies=_cookie_records(cookies),
                diagnostics=diag,
                screenshot=screenshot,
                downstream=tuple(downstream),
                elapsed_ms=elapsed_ms,
            )

        if isinstance(error, AcquisitionError):
            kind = error.kind
            details = error.details()
        else:
            kind = ErrorKind.TRANSPORT_FAILURE
            details = {"exception": type(error).__name__}

        return AcquisitionResult(
            success=False,
            current_url=current_url or "",
            cookies=_cookie_records(cookies),
            diagnostics=diag,
            screenshot=screenshot,
            error_kind=kind,
            message=str(error) or type(error).__name__,
            error_details=details,
            elapsed_ms=elapsed_ms,
        )
    except Exception as e:
        # Last resort: keep the caller's contract even if something above was malformed.
        logger.debug("Result assembly failed; returning minimal failure.", exc_info=True)
        return AcquisitionResult(
            success=False,
            current_url=str(current_url or ""),
            diagnostics=diag if isinstance(diag, DiagnosticsSnapshot) else DiagnosticsSnapshot(),
            error_kind=ErrorKind.TRANSPORT_FAILURE,
            message=f"Result assembly failed: {e}",
            elapsed_ms=int(elapsed_ms or 0),
        )
