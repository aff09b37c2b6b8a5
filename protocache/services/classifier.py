"""Map anything raised by the fetch path onto the fetch failure taxonomy.

Decision order, first match wins:

1. ``UpstreamApiError`` / ``httpx.HTTPStatusError`` -> ``http`` with a code
   derived from the status.
2. Fetcher deadline (``FetchTimeoutError``, ``httpx.TimeoutException``,
   ``TimeoutError``) -> ``timeout``.
3. Caller abort (``FetchAbortedError``, ``asyncio.CancelledError``) ->
   ``abort``.
4. A low-level network code on the error or its cause chain -> ``network``
   with the raw code.
5. A bare, well-known "fetch failed" message -> ``cors``.
6. Anything else -> ``unknown``.

:func:`classify_fetch_error` never raises.
"""

from __future__ import annotations

import asyncio
import errno
import socket
from typing import Any, Optional

import httpx

from protocache.errors import FetchAbortedError, FetchTimeoutError, UpstreamApiError
from protocache.results import FetchFailure

DEFAULT_MESSAGE = "Failed to fetch prototypes"
TIMEOUT_MESSAGE = "Upstream request timed out"
ABORTED_MESSAGE = "Upstream request aborted"

DEFAULT_NETWORK_ERROR_CODE = "NETWORK_ERROR"

KNOWN_FETCH_NETWORK_ERROR_MESSAGES = frozenset(
    (
        "Failed to fetch",
        "fetch failed",
        "Load failed",
        "NetworkError when attempting to fetch resource.",
        "All connection attempts failed",
    )
)

STATUS_CODE_MAP: dict[int, str] = {
    400: "CLIENT_BAD_REQUEST",
    401: "CLIENT_UNAUTHORIZED",
    403: "CLIENT_FORBIDDEN",
    404: "CLIENT_NOT_FOUND",
    405: "CLIENT_METHOD_NOT_ALLOWED",
    408: "CLIENT_TIMEOUT",
    429: "CLIENT_RATE_LIMITED",
    500: "SERVER_INTERNAL_ERROR",
    502: "SERVER_BAD_GATEWAY",
    503: "SERVER_SERVICE_UNAVAILABLE",
    504: "SERVER_GATEWAY_TIMEOUT",
}

_GAI_ERROR_NAMES: dict[int, str] = {
    getattr(socket, name): name for name in dir(socket) if name.startswith("EAI_")
}

# Cause chains are short in practice; the cap guards against cycles.
_MAX_CHAIN_DEPTH = 8


def map_http_status_to_code(status: Optional[int]) -> str:
    if status is None:
        return "UNKNOWN"
    mapped = STATUS_CODE_MAP.get(status)
    if mapped is not None:
        return mapped
    if status >= 500:
        return "SERVER_ERROR"
    if 400 <= status < 500:
        return "CLIENT_ERROR"
    return "UNKNOWN"


def _message_of(error: Any, default: str = DEFAULT_MESSAGE) -> str:
    if isinstance(error, BaseException):
        try:
            text = str(error)
        except Exception:  # noqa: BLE001 - broken __str__ must not escape
            text = ""
        return text or type(error).__name__ or default
    if isinstance(error, str) and error:
        return error
    return default


def _classify_upstream_api_error(error: UpstreamApiError) -> FetchFailure:
    return FetchFailure(
        kind="http",
        code=map_http_status_to_code(error.status),
        message=_message_of(error),
        status=error.status,
        details={
            "req": {"method": error.method, "url": error.url},
            "res": {"status_text": error.status_text},
        },
    )


def _classify_http_status_error(error: httpx.HTTPStatusError) -> FetchFailure:
    response = error.response
    request = error.request
    return FetchFailure(
        kind="http",
        code=map_http_status_to_code(response.status_code),
        message=_message_of(error),
        status=response.status_code,
        details={
            "req": {"method": request.method, "url": str(request.url)},
            "res": {"status_text": response.reason_phrase},
        },
    )


def _code_from(error: BaseException) -> Optional[str]:
    code = getattr(error, "code", None)
    if isinstance(code, str) and code:
        return code
    if isinstance(error, socket.gaierror) and error.errno in _GAI_ERROR_NAMES:
        return _GAI_ERROR_NAMES[error.errno]
    error_number = getattr(error, "errno", None)
    if isinstance(error_number, int) and error_number in errno.errorcode:
        return errno.errorcode[error_number]
    return None


def _find_network_code(error: Any) -> Optional[str]:
    if not isinstance(error, BaseException):
        code = getattr(error, "code", None)
        return code if isinstance(code, str) and code else None

    seen: set[int] = set()
    current: Optional[BaseException] = error
    depth = 0
    while current is not None and id(current) not in seen and depth < _MAX_CHAIN_DEPTH:
        seen.add(id(current))
        code = _code_from(current)
        if code is not None:
            return code
        current = current.__cause__ or current.__context__
        depth += 1
    return None


def _is_opaque_fetch_error(error: Any, message: str) -> bool:
    return (
        isinstance(error, (TypeError, httpx.TransportError))
        and message in KNOWN_FETCH_NETWORK_ERROR_MESSAGES
    )


def _is_deadline_error(error: Any) -> bool:
    if isinstance(error, (FetchTimeoutError, httpx.TimeoutException)):
        return True
    # A TimeoutError carrying an errno is a socket-level ETIMEDOUT, not our deadline.
    return isinstance(error, TimeoutError) and getattr(error, "errno", None) is None


def _classify_other(error: Any) -> FetchFailure:
    if _is_deadline_error(error):
        return FetchFailure(
            kind="timeout",
            code="TIMEOUT",
            message=TIMEOUT_MESSAGE,
            details={"res": {"code": "TIMEOUT"}},
        )

    if isinstance(error, (FetchAbortedError, asyncio.CancelledError)):
        return FetchFailure(
            kind="abort",
            code="ABORTED",
            message=ABORTED_MESSAGE,
            details={"res": {"code": "ABORTED"}},
        )

    message = _message_of(error)
    network_code = _find_network_code(error)
    if network_code is not None:
        return FetchFailure(
            kind="network",
            code=network_code,
            message=message,
            details={"res": {"code": network_code}},
        )

    if _is_opaque_fetch_error(error, message):
        return FetchFailure(
            kind="cors",
            code="CORS_BLOCKED",
            message=message,
            details={"res": {"code": DEFAULT_NETWORK_ERROR_CODE}},
        )

    return FetchFailure(kind="unknown", code="UNKNOWN", message=message, details={})


def classify_fetch_error(error: Any) -> FetchFailure:
    """Return the :class:`FetchFailure` describing ``error``."""

    try:
        if isinstance(error, UpstreamApiError):
            return _classify_upstream_api_error(error)
        if isinstance(error, httpx.HTTPStatusError):
            return _classify_http_status_error(error)
        return _classify_other(error)
    except Exception:  # noqa: BLE001 - classification must never raise
        return FetchFailure(
            kind="unknown",
            code="UNKNOWN",
            message=_message_of(error),
            details={},
        )


__all__ = [
    "KNOWN_FETCH_NETWORK_ERROR_MESSAGES",
    "STATUS_CODE_MAP",
    "classify_fetch_error",
    "map_http_status_to_code",
]
