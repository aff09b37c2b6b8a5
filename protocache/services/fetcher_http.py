"""ProtoPedia API v2 fetcher built on httpx."""

from __future__ import annotations

import asyncio
import time
from contextlib import suppress
from typing import Any, Awaitable, Callable, Optional

import httpx

from logger import get_logger
from protocache.config import FetcherConfig
from protocache.errors import FetchAbortedError, FetchTimeoutError, UpstreamApiError
from protocache.models import FetchParams
from protocache.results import FetchResult, FetchSuccess
from protocache.services.classifier import classify_fetch_error
from protocache.services.fetcher_base import PrototypeFetcher

LOGGER = get_logger("protocache.fetcher")

LIST_PATH = "/prototype/list"


class ProtoPediaFetcher(PrototypeFetcher):
    """Fetch pages of raw prototypes from the ProtoPedia listing endpoint."""

    def __init__(
        self,
        config: FetcherConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config or FetcherConfig()
        if client is None:
            timeout_seconds = self._config.timeout_ms / 1000
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(timeout_seconds, connect=timeout_seconds),
                follow_redirects=True,
                headers=self._default_headers(),
            )
        else:
            self._client = client
        self._client_owner = client is None
        self._sleep = sleep

    def _default_headers(self) -> dict[str, str]:
        headers = {
            "User-Agent": self._config.user_agent,
            "Accept": "application/json",
        }
        if self._config.token:
            headers["Authorization"] = f"Bearer {self._config.token}"
        return headers

    async def aclose(self) -> None:  # noqa: D401 - inherited docstring
        if self._client_owner:
            await self._client.aclose()

    async def fetch_page(
        self,
        params: FetchParams,
        *,
        abort: Optional[asyncio.Event] = None,
    ) -> FetchResult:
        started = time.perf_counter()
        try:
            items = await self._fetch_with_retries(params, abort)
        except Exception as exc:
            failure = classify_fetch_error(exc)
            LOGGER.warning(
                "Fetch failed kind=%s code=%s status=%s: %s",
                failure.kind,
                failure.code,
                failure.status,
                failure.message,
            )
            return failure
        LOGGER.debug(
            "Fetched %s prototypes offset=%s limit=%s in %.0fms",
            len(items),
            params.offset,
            params.limit,
            (time.perf_counter() - started) * 1000,
        )
        return FetchSuccess(data=items)

    async def _fetch_with_retries(
        self, params: FetchParams, abort: Optional[asyncio.Event]
    ) -> list[Any]:
        url = f"{self._config.base_url.rstrip('/')}{LIST_PATH}"
        retries = max(self._config.retries, 1)
        delay = self._config.backoff_base
        last_error: Exception | None = None

        for attempt in range(1, retries + 1):
            try:
                LOGGER.debug(
                    "Prototype fetch attempt %s/%s url=%s params=%s",
                    attempt,
                    retries,
                    url,
                    params.to_query(),
                )
                response = await self._request(url, params, abort)
            except (httpx.TransportError, FetchTimeoutError) as exc:
                last_error = exc
                LOGGER.warning(
                    "Network error fetching prototypes (attempt %s/%s): %s",
                    attempt,
                    retries,
                    exc,
                )
                if attempt < retries:
                    await self._sleep(delay)
                    delay = min(delay * 2, self._config.backoff_max)
                    continue
                break

            status = response.status_code
            LOGGER.debug("Prototype fetch status=%s url=%s", status, response.url)
            if 200 <= status < 300:
                return _parse_results(response)

            error = _api_error_from(response)
            if status == 429 or status >= 500:
                last_error = error
                LOGGER.warning(
                    "Server error fetching prototypes (status %s, attempt %s/%s)",
                    status,
                    attempt,
                    retries,
                )
            else:
                raise error

            if attempt < retries:
                await self._sleep(delay)
                delay = min(delay * 2, self._config.backoff_max)

        if last_error is not None:
            raise last_error
        raise RuntimeError("Failed to fetch prototypes")

    async def _request(
        self, url: str, params: FetchParams, abort: Optional[asyncio.Event]
    ) -> httpx.Response:
        if abort is None:
            return await self._get_with_deadline(url, params)
        if abort.is_set():
            raise FetchAbortedError()

        request = asyncio.ensure_future(self._get_with_deadline(url, params))
        waiter = asyncio.ensure_future(abort.wait())
        try:
            done, _ = await asyncio.wait(
                {request, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
            if not request.done():
                request.cancel()
                with suppress(asyncio.CancelledError):
                    await request

        if request in done:
            return request.result()
        raise FetchAbortedError()

    async def _get_with_deadline(self, url: str, params: FetchParams) -> httpx.Response:
        try:
            async with asyncio.timeout(self._config.timeout_ms / 1000):
                return await self._client.get(url, params=params.to_query())
        except TimeoutError as exc:
            if isinstance(exc, FetchTimeoutError):
                raise
            raise FetchTimeoutError(self._config.timeout_ms) from exc


def _parse_results(response: httpx.Response) -> list[Any]:
    payload = response.json()
    if not isinstance(payload, dict):
        raise ValueError("Unexpected response body: expected a JSON object")
    results = payload.get("results")
    if results is None:
        return []
    if not isinstance(results, list):
        raise ValueError("Unexpected response body: 'results' is not a list")
    return results


def _api_error_from(response: httpx.Response) -> UpstreamApiError:
    payload: Any = None
    with suppress(ValueError):
        payload = response.json()
    status = response.status_code
    reason = response.reason_phrase
    return UpstreamApiError(
        f"API request failed: {status} {reason}".rstrip(),
        status=status,
        status_text=reason,
        method=response.request.method,
        url=str(response.request.url),
        payload=payload,
    )


__all__ = ["ProtoPediaFetcher"]
