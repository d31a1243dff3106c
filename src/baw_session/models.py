from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, Mapping, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, PlainSerializer


class ErrorKind(str, Enum):
    INVALID_INPUT = "InvalidInput"
    BLOCKED = "Blocked"
    ELEMENT_NOT_FOUND = "ElementNotFound"
    SECOND_FACTOR_NOT_PRESENTED = "SecondFactorNotPresented"
    UNEXPECTED_FIELD_COUNT = "UnexpectedFieldCount"
    LOGIN_REJECTED = "LoginRejected"
    INVALID_SECRET = "InvalidSecret"
    TRANSPORT_FAILURE = "TransportFailure"


@dataclass(frozen=True)
class Credentials:
    email: str
    password: str = field(repr=False)
    # Either a base32 TOTP secret or a precomputed 6-digit code.
    totp: str = field(repr=False)


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


# Read-only view: `frozen=True` only blocks attribute assignment, not item assignment on a dict field.
FrozenMapping = Annotated[Mapping[str, Any], AfterValidator(_freeze), PlainSerializer(_thaw)]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class CookieRecord(_Frozen):
    name: str
    value: str
    domain: str


class BlockedResponse(_Frozen):
    status: int = 403
    url: str
    method: str = ""
    resource_type: str = ""


class NetworkFailure(_Frozen):
    url: str
    method: str = ""
    resource_type: str = ""
    reason: str = ""


DiagnosticRecord = Union[BlockedResponse, NetworkFailure]


class StepRecord(_Frozen):
    name: str
    url: str = ""
    elapsed_ms: int = 0


class DiagnosticsSnapshot(_Frozen):
    blocked_403: tuple[BlockedResponse, ...] = ()
    net_errors: tuple[NetworkFailure, ...] = ()
    steps: tuple[StepRecord, ...] = ()


class DownstreamRequest(_Frozen):
    url: str
    method: str = "GET"
    headers: FrozenMapping = Field(default_factory=lambda: MappingProxyType({}))
    body: Optional[Any] = None


class DownstreamResponse(_Frozen):
    url: str
    status: int = 0
    ok: bool = False
    body: Optional[Any] = None
    error: Optional[str] = None


class AcquisitionResult(_Frozen):
    success: bool
    current_url: str = ""
    cookies: tuple[CookieRecord, ...] = ()
    diagnostics: DiagnosticsSnapshot = DiagnosticsSnapshot()
    screenshot: Optional[bytes] = None

    error_kind: Optional[ErrorKind] = None
    message: str = ""
    # Kind-specific context, e.g. {"stage": ..., "candidates": [...]} or {"expected": 6, "found": 5}.
    error_details: FrozenMapping = Field(default_factory=lambda: MappingProxyType({}))

    downstream: tuple[DownstreamResponse, ...] = ()
    elapsed_ms: int = 0

    def cookie_header(self) -> str:
        # Handy for replaying the session with a plain HTTP client.
        return "; ".join(f"{c.name}={c.value}" for c in self.cookies)
