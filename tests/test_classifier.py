"""Tests for fetch error classification."""

from __future__ import annotations

import asyncio
import errno
import socket

import httpx
import pytest

from protocache.errors import FetchAbortedError, FetchTimeoutError, UpstreamApiError
from protocache.services.classifier import (
    DEFAULT_MESSAGE,
    classify_fetch_error,
    map_http_status_to_code,
)


@pytest.mark.parametrize(
    ("status", "code"),
    [
        (400, "CLIENT_BAD_REQUEST"),
        (401, "CLIENT_UNAUTHORIZED"),
        (403, "CLIENT_FORBIDDEN"),
        (404, "CLIENT_NOT_FOUND"),
        (405, "CLIENT_METHOD_NOT_ALLOWED"),
        (408, "CLIENT_TIMEOUT"),
        (429, "CLIENT_RATE_LIMITED"),
        (418, "CLIENT_ERROR"),
        (500, "SERVER_INTERNAL_ERROR"),
        (502, "SERVER_BAD_GATEWAY"),
        (503, "SERVER_SERVICE_UNAVAILABLE"),
        (504, "SERVER_GATEWAY_TIMEOUT"),
        (599, "SERVER_ERROR"),
        (302, "UNKNOWN"),
        (None, "UNKNOWN"),
    ],
)
def test_map_http_status_to_code(status, code) -> None:
    assert map_http_status_to_code(status) == code


def test_upstream_api_error_is_http() -> None:
    error = UpstreamApiError(
        "API request failed: 404 Not Found",
        status=404,
        status_text="Not Found",
        method="GET",
        url="https://protopedia.net/v2/api/prototype/list",
    )

    failure = classify_fetch_error(error)

    assert failure.kind == "http"
    assert failure.code == "CLIENT_NOT_FOUND"
    assert failure.status == 404
    assert failure.message == "API request failed: 404 Not Found"
    assert failure.details == {
        "req": {"method": "GET", "url": "https://protopedia.net/v2/api/prototype/list"},
        "res": {"status_text": "Not Found"},
    }


def test_httpx_status_error_is_http() -> None:
    request = httpx.Request("GET", "https://example.com/prototype/list")
    response = httpx.Response(503, request=request)
    error = httpx.HTTPStatusError("service unavailable", request=request, response=response)

    failure = classify_fetch_error(error)

    assert (failure.kind, failure.code, failure.status) == (
        "http",
        "SERVER_SERVICE_UNAVAILABLE",
        503,
    )
    assert failure.details["req"]["url"] == "https://example.com/prototype/list"


@pytest.mark.parametrize(
    "error",
    [
        FetchTimeoutError(1000),
        httpx.ReadTimeout("read timed out"),
        TimeoutError(),
    ],
)
def test_deadline_errors_are_timeout(error) -> None:
    failure = classify_fetch_error(error)

    assert (failure.kind, failure.code) == ("timeout", "TIMEOUT")
    assert failure.status is None
    assert failure.details == {"res": {"code": "TIMEOUT"}}


@pytest.mark.parametrize("error", [FetchAbortedError(), asyncio.CancelledError()])
def test_abort_errors(error) -> None:
    failure = classify_fetch_error(error)

    assert (failure.kind, failure.code) == ("abort", "ABORTED")
    assert failure.message == "Upstream request aborted"


def test_network_code_attribute_is_preserved() -> None:
    class SystemCallError(Exception):
        code = "ECONNREFUSED"

    failure = classify_fetch_error(SystemCallError("connect ECONNREFUSED 127.0.0.1:443"))

    assert (failure.kind, failure.code) == ("network", "ECONNREFUSED")
    assert failure.details == {"res": {"code": "ECONNREFUSED"}}


def test_network_code_found_on_cause_chain() -> None:
    try:
        try:
            raise ConnectionRefusedError(errno.ECONNREFUSED, "Connection refused")
        except ConnectionRefusedError as inner:
            raise httpx.ConnectError("connection failed") from inner
    except httpx.ConnectError as outer:
        failure = classify_fetch_error(outer)

    assert (failure.kind, failure.code) == ("network", "ECONNREFUSED")
    assert failure.message == "connection failed"


def test_socket_timeout_with_errno_is_network() -> None:
    failure = classify_fetch_error(TimeoutError(errno.ETIMEDOUT, "timed out"))

    assert (failure.kind, failure.code) == ("network", "ETIMEDOUT")


def test_dns_failure_uses_gai_name() -> None:
    error = socket.gaierror(socket.EAI_NONAME, "Name or service not known")

    failure = classify_fetch_error(error)

    assert failure.kind == "network"
    assert failure.code == "EAI_NONAME"


@pytest.mark.parametrize(
    "message",
    [
        "Failed to fetch",
        "fetch failed",
        "Load failed",
        "NetworkError when attempting to fetch resource.",
    ],
)
def test_opaque_type_errors_are_cors(message: str) -> None:
    failure = classify_fetch_error(TypeError(message))

    assert (failure.kind, failure.code) == ("cors", "CORS_BLOCKED")
    assert failure.message == message
    assert failure.details == {"res": {"code": "NETWORK_ERROR"}}


def test_opaque_transport_error_without_cause_is_cors() -> None:
    failure = classify_fetch_error(httpx.ConnectError("All connection attempts failed"))

    assert (failure.kind, failure.code) == ("cors", "CORS_BLOCKED")


@pytest.mark.parametrize(
    ("error", "message"),
    [
        (ValueError("bad payload"), "bad payload"),
        (TypeError("something else"), "something else"),
        (RuntimeError(), "RuntimeError"),
        ("plain string", "plain string"),
        (None, DEFAULT_MESSAGE),
        (42, DEFAULT_MESSAGE),
        ({"weird": True}, DEFAULT_MESSAGE),
    ],
)
def test_unrecognized_inputs_are_unknown(error, message: str) -> None:
    failure = classify_fetch_error(error)

    assert (failure.kind, failure.code) == ("unknown", "UNKNOWN")
    assert failure.message == message
    assert failure.details == {}


def test_classification_is_deterministic() -> None:
    shapes = [
        lambda: UpstreamApiError("x", status=500),
        lambda: FetchTimeoutError(10),
        lambda: FetchAbortedError(),
        lambda: TypeError("fetch failed"),
        lambda: ValueError("nope"),
    ]
    for build in shapes:
        first = classify_fetch_error(build())
        second = classify_fetch_error(build())
        assert (first.kind, first.code) == (second.kind, second.code)


def test_broken_str_never_raises() -> None:
    class Broken(Exception):
        def __str__(self) -> str:
            raise RuntimeError("no string for you")

    failure = classify_fetch_error(Broken())

    assert failure.kind == "unknown"
    assert failure.message == "Broken"
