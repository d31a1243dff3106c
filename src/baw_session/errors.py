from __future__ import annotations

from typing import Any, Optional, Sequence

from .models import ErrorKind


class AcquisitionError(RuntimeError):
    """
    Base class for failures the session engine knows how to classify.

    Anything else raised while driving the browser is reported as `TransportFailure`.
    """

    kind: ErrorKind = ErrorKind.TRANSPORT_FAILURE

    def details(self) -> dict[str, Any]:
        return {}


class InvalidInputError(AcquisitionError):
    kind = ErrorKind.INVALID_INPUT


class InvalidSecretError(AcquisitionError):
    kind = ErrorKind.INVALID_SECRET


class BlockedError(AcquisitionError):
    """
    The portal answered the entry document with HTTP 403 (edge/WAF block, not a login problem).
    """

    kind = ErrorKind.BLOCKED

    def __init__(self, url: str, status: int = 403) -> None:
        super().__init__(f"Portal entry document returned HTTP {status} ({url}); blocked before login UI.")
        self.url = url
        self.status = status

    def details(self) -> dict[str, Any]:
        return {"url": self.url, "status": self.status}


class ElementNotFoundError(AcquisitionError):
    kind = ErrorKind.ELEMENT_NOT_FOUND

    def __init__(self, stage: str, candidates: Sequence[str], timeout_ms: Optional[int] = None) -> None:
        waited = f" within {timeout_ms}ms" if timeout_ms is not None else ""
        super().__init__(f"No element appeared at stage {stage}{waited} for any of: {list(candidates)}")
        self.stage = stage
        self.candidates = tuple(candidates)
        self.timeout_ms = timeout_ms

    def details(self) -> dict[str, Any]:
        return {"stage": self.stage, "candidates": list(self.candidates)}


class SecondFactorNotPresentedError(AcquisitionError):
    """
    The 2FA input group never appeared. Often means the first factor was rejected.
    """

    kind = ErrorKind.SECOND_FACTOR_NOT_PRESENTED

    def __init__(self, candidates: Sequence[str]) -> None:
        super().__init__(
            "Portal did not present the 2FA code inputs after submitting credentials "
            "(credentials may have been rejected)."
        )
        self.candidates = tuple(candidates)

    def details(self) -> dict[str, Any]:
        return {"candidates": list(self.candidates)}


class UnexpectedFieldCountError(AcquisitionError):
    kind = ErrorKind.UNEXPECTED_FIELD_COUNT

    def __init__(self, *, expected: int, found: int) -> None:
        super().__init__(f"Expected {expected} 2FA digit inputs, found {found}.")
        self.expected = expected
        self.found = found

    def details(self) -> dict[str, Any]:
        return {"expected": self.expected, "found": self.found}


class LoginRejectedError(AcquisitionError):
    kind = ErrorKind.LOGIN_REJECTED

    def __init__(self, url: str, screenshot: Optional[bytes] = None) -> None:
        super().__init__(f"Login did not complete; post-login URL failed verification: {url}")
        self.url = url
        self.screenshot = screenshot

    def details(self) -> dict[str, Any]:
        return {"url": self.url}
