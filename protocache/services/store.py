"""In-memory store holding the latest ProtoPedia snapshot.

The store keeps exactly one full snapshot of normalized prototypes together
with an id index, the time it was cached and its serialized size. Expired data
stays readable; staleness is only reported through :meth:`is_expired` and
:meth:`get_stats`. Refresh work is funnelled through :meth:`run_exclusive` so
that concurrent callers share a single upstream fetch.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import fields, is_dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, TypeVar

from logger import get_logger, info_domain
from protocache.config import StoreConfig
from protocache.errors import DataSizeExceededError, SizeEstimationError
from protocache.models import Prototype, Snapshot, SnapshotStats

T = TypeVar("T")

LOGGER = get_logger("protocache.store")

_ARRAY_BRACKETS_BYTES = 2


def _json_default(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {item.name: getattr(value, item.name) for item in fields(value)}
    if isinstance(value, Mapping):
        return dict(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _serialized_length(record: Any) -> int:
    encoded = json.dumps(
        record,
        default=_json_default,
        ensure_ascii=False,
        separators=(",", ":"),
    )
    return len(encoded.encode("utf-8"))


def _retrieve_outcome(task: asyncio.Future[Any]) -> None:
    # Every awaiter may have been cancelled; _run_refresh already logged the error.
    if not task.cancelled():
        task.exception()


class SnapshotStore:
    """Keep the full set of normalized prototypes with an id index."""

    def __init__(
        self,
        config: StoreConfig | None = None,
        *,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or StoreConfig()
        self._logger = logger or LOGGER
        self._clock = clock
        self._records: tuple[Prototype, ...] = ()
        self._index: dict[int, Prototype] = {}
        self._cached_at_ms: Optional[int] = None
        self._data_size_bytes = 0
        self._min_id: Optional[int] = None
        self._max_id: Optional[int] = None
        self._refresh_task: Optional[asyncio.Task[Any]] = None

        self._logger.info(
            "SnapshotStore initialized ttl_ms=%s max_data_size_bytes=%s",
            self._config.ttl_ms,
            self._config.max_data_size_bytes,
        )

    def get_config(self) -> StoreConfig:
        return self._config

    @property
    def size(self) -> int:
        return len(self._index)

    @property
    def cached_at(self) -> Optional[datetime]:
        if self._cached_at_ms is None:
            return None
        return datetime.fromtimestamp(self._cached_at_ms / 1000, tz=timezone.utc)

    @property
    def min_prototype_id(self) -> Optional[int]:
        return self._min_id

    @property
    def max_prototype_id(self) -> Optional[int]:
        return self._max_id

    def _now_ms(self) -> int:
        return round(self._clock() * 1000)

    def _elapsed_ms(self) -> int:
        if self._cached_at_ms is None:
            return 0
        return self._now_ms() - self._cached_at_ms

    def _remaining_ttl_ms(self) -> int:
        if self._cached_at_ms is None:
            return 0
        return max(0, self._config.ttl_ms - self._elapsed_ms())

    def is_expired(self) -> bool:
        """Return ``True`` when nothing is cached or the TTL has elapsed."""

        if self._cached_at_ms is None:
            return True
        return self._elapsed_ms() > self._config.ttl_ms

    def is_refresh_in_flight(self) -> bool:
        return self._refresh_task is not None

    def get_stats(self) -> SnapshotStats:
        return SnapshotStats(
            size=len(self._index),
            cached_at=self.cached_at,
            is_expired=self.is_expired(),
            remaining_ttl_ms=self._remaining_ttl_ms(),
            data_size_bytes=self._data_size_bytes,
            refresh_in_flight=self.is_refresh_in_flight(),
        )

    def _estimate_size(self, records: tuple[Prototype, ...]) -> int:
        """Measure the JSON size of ``records`` one record at a time."""

        try:
            total = _ARRAY_BRACKETS_BYTES + max(len(records) - 1, 0)
            for record in records:
                total += _serialized_length(record)
            return total
        except (TypeError, ValueError, RecursionError) as exc:
            if self._config.fail_closed_on_size_error:
                self._logger.warning(
                    "Failed to estimate payload size, rejecting snapshot: %s", exc
                )
                raise SizeEstimationError("unchanged") from exc
            self._logger.warning("Failed to estimate payload size, defaulting to 0: %s", exc)
            return 0

    def set_all(self, records: Iterable[Prototype]) -> int:
        """Replace the snapshot and return its size in bytes.

        Raises :class:`DataSizeExceededError` when the payload is larger than
        the configured ceiling; the previous snapshot is kept in that case.
        """

        incoming = tuple(records)
        data_size_bytes = self._estimate_size(incoming)

        if data_size_bytes > self._config.max_data_size_bytes:
            self._logger.warning(
                "Snapshot skipped: data exceeds maximum size data_size_bytes=%s max_data_size_bytes=%s count=%s",
                data_size_bytes,
                self._config.max_data_size_bytes,
                len(incoming),
            )
            raise DataSizeExceededError(
                data_size_bytes, self._config.max_data_size_bytes, "unchanged"
            )

        index: dict[int, Prototype] = {}
        for record in incoming:
            index[record.id] = record
        duplicates = len(incoming) - len(index)
        if duplicates:
            self._logger.warning(
                "Snapshot contains %s duplicate prototype ids; keeping the last occurrence",
                duplicates,
            )

        if index:
            min_id = min(index)
            max_id = max(index)
        else:
            min_id = max_id = None

        self._index = index
        self._records = tuple(index.values()) if duplicates else incoming
        self._min_id = min_id
        self._max_id = max_id
        self._cached_at_ms = self._now_ms()
        self._data_size_bytes = data_size_bytes

        info_domain(
            "protocache.store",
            f"Snapshot updated: {len(index)} prototypes",
            stage="SNAPSHOT_UPDATED",
            count=len(index),
            data_size_bytes=data_size_bytes,
        )
        return data_size_bytes

    def get_all(self) -> tuple[Prototype, ...]:
        """Return the cached prototypes in their original order."""

        return self._records

    def get_snapshot(self) -> Snapshot:
        return Snapshot(
            data=self._records,
            cached_at=self.cached_at,
            is_expired=self.is_expired(),
        )

    def get_by_prototype_id(self, prototype_id: int) -> Optional[Prototype]:
        return self._index.get(prototype_id)

    def get_prototype_ids(self) -> list[int]:
        """Return all cached ids in insertion order.

        Builds a new list on each call; keep the result instead of calling this
        inside a loop.
        """

        return list(self._index)

    def clear(self) -> None:
        previous_size = len(self._index)
        self._records = ()
        self._index = {}
        self._cached_at_ms = None
        self._data_size_bytes = 0
        self._min_id = None
        self._max_id = None
        self._logger.info("SnapshotStore cleared previous_size=%s", previous_size)

    async def run_exclusive(self, task: Callable[[], Awaitable[T]]) -> T:
        """Run ``task`` unless a refresh is already in flight.

        Late callers await the in-flight task instead of starting their own
        and receive the same result or exception.
        """

        current = self._refresh_task
        if current is None:
            current = asyncio.ensure_future(self._run_refresh(task))
            current.add_done_callback(_retrieve_outcome)
            self._refresh_task = current
        else:
            self._logger.debug("Refresh already in flight; joining it")
        return await asyncio.shield(current)

    async def _run_refresh(self, task: Callable[[], Awaitable[T]]) -> T:
        try:
            return await task()
        except Exception as exc:
            self._logger.error("SnapshotStore refresh task failed: %s", exc)
            raise
        finally:
            self._refresh_task = None


__all__ = ["SnapshotStore"]
