"""Snapshot repository: fetch, normalize and serve ProtoPedia prototypes.

Writes (:meth:`SnapshotRepository.setup_snapshot` and
:meth:`SnapshotRepository.refresh_snapshot`) always return a
:class:`SnapshotSuccess` or :class:`SnapshotFailure`; the only exception that
leaves this module is :class:`ValidationError` for out-of-contract arguments.
Reads never touch the network.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import replace
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from logger import get_logger, info_domain, log_event
from protocache.config import StoreConfig
from protocache.errors import DataSizeExceededError, SizeEstimationError, StoreError, ValidationError
from protocache.models import (
    DEFAULT_FETCH_PARAMS,
    FetchParams,
    Prototype,
    PrototypeAnalysis,
    SnapshotStats,
)
from protocache.results import (
    STORE_CAPACITY_EXCEEDED,
    STORE_SERIALIZATION_FAILED,
    STORE_UNKNOWN,
    FetchFailure,
    SnapshotFailure,
    SnapshotResult,
    SnapshotSuccess,
)
from protocache.services.classifier import classify_fetch_error
from protocache.services.events import RepositoryEvents, SnapshotOperation
from protocache.services.fetcher_base import PrototypeFetcher
from protocache.services.normalize import normalize_prototypes
from protocache.services.store import SnapshotStore

MODULE = "protocache.repository"

# Above this share of the population a shuffle is cheaper than rejection sampling.
SAMPLE_SIZE_THRESHOLD_RATIO = 0.5

Normalizer = Callable[[Iterable[Any]], Sequence[Prototype]]


def _validate_prototype_id(prototype_id: Any) -> int:
    if isinstance(prototype_id, bool) or not isinstance(prototype_id, int) or prototype_id <= 0:
        raise ValidationError(
            f"prototype_id must be a positive integer, got {prototype_id!r}",
            "prototype_id",
        )
    return prototype_id


def _validate_sample_size(size: Any) -> int:
    if isinstance(size, bool) or not isinstance(size, int) or size < 0:
        raise ValidationError(
            f"size must be a non-negative integer, got {size!r}",
            "size",
        )
    return size


def _store_failure(exc: Exception) -> SnapshotFailure:
    if isinstance(exc, DataSizeExceededError):
        return SnapshotFailure(
            origin="store",
            kind="storage_limit",
            code=STORE_CAPACITY_EXCEEDED,
            message=str(exc),
            details={
                "data_size_bytes": exc.data_size_bytes,
                "max_data_size_bytes": exc.max_data_size_bytes,
            },
            data_state=exc.data_state,
            cause=exc,
        )
    if isinstance(exc, SizeEstimationError):
        return SnapshotFailure(
            origin="store",
            kind="serialization",
            code=STORE_SERIALIZATION_FAILED,
            message=str(exc),
            data_state=exc.data_state,
            cause=exc,
        )
    data_state = exc.data_state if isinstance(exc, StoreError) else "unknown"
    return SnapshotFailure(
        origin="store",
        kind="unknown",
        code=STORE_UNKNOWN,
        message=str(exc) or type(exc).__name__,
        data_state=data_state,
        cause=exc,
    )


class SnapshotRepository:
    """In-memory ProtoPedia repository backed by a :class:`SnapshotStore`."""

    def __init__(
        self,
        fetcher: PrototypeFetcher,
        *,
        store: SnapshotStore | None = None,
        store_config: StoreConfig | None = None,
        normalizer: Normalizer = normalize_prototypes,
        rng: random.Random | None = None,
        enable_events: bool = False,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        if store is not None and store_config is not None:
            raise ValueError("Pass either store or store_config, not both")
        self._logger = logger or get_logger(MODULE)
        self._fetcher = fetcher
        self._store = store or SnapshotStore(store_config, logger=logger)
        self._normalizer = normalizer
        self._rng = rng or random.Random()
        self._events = RepositoryEvents(logger=logger) if enable_events else None
        self._last_fetch_params: FetchParams = DEFAULT_FETCH_PARAMS

    @property
    def events(self) -> Optional[RepositoryEvents]:
        return self._events

    @property
    def store(self) -> SnapshotStore:
        return self._store

    @property
    def last_fetch_params(self) -> FetchParams:
        return self._last_fetch_params

    def get_config(self) -> StoreConfig:
        return self._store.get_config()

    def get_stats(self) -> SnapshotStats:
        return self._store.get_stats()

    # ------------------------------------------------------------------
    # Snapshot management
    # ------------------------------------------------------------------
    async def setup_snapshot(
        self, params: FetchParams | Mapping[str, Any] | None = None
    ) -> SnapshotResult:
        """Fetch with ``params`` merged over the defaults and replace the snapshot.

        The merged params are remembered for :meth:`refresh_snapshot` only when
        the snapshot was actually replaced. A call that arrives while another
        setup or refresh is running joins it and gets the same result.
        """

        resolved = self._resolve_params(params)
        return await self._store.run_exclusive(
            lambda: self._fetch_and_store(resolved, "setup")
        )

    async def refresh_snapshot(self) -> SnapshotResult:
        """Re-run the last successful setup query (or the defaults)."""

        params = self._last_fetch_params
        return await self._store.run_exclusive(
            lambda: self._fetch_and_store(params, "refresh")
        )

    @staticmethod
    def _resolve_params(params: FetchParams | Mapping[str, Any] | None) -> FetchParams:
        if params is None:
            return DEFAULT_FETCH_PARAMS
        if isinstance(params, FetchParams):
            return params
        try:
            return DEFAULT_FETCH_PARAMS.merged(**dict(params))
        except TypeError as exc:
            raise ValidationError(str(exc), "params") from exc

    async def _fetch_and_store(
        self, params: FetchParams, operation: SnapshotOperation
    ) -> SnapshotResult:
        started = time.perf_counter()
        self._emit("snapshot_started", operation)
        log_event(
            "DEBUG",
            MODULE,
            f"Snapshot {operation} started",
            stage="SNAPSHOT_START",
            extra={"operation": operation, **params.to_query()},
        )

        result = await self._run_pipeline(params)

        elapsed_ms = round((time.perf_counter() - started) * 1000)
        if isinstance(result, SnapshotSuccess):
            if operation == "setup":
                self._last_fetch_params = params
            info_domain(
                MODULE,
                f"Snapshot {operation} completed",
                stage="SNAPSHOT_DONE",
                size=result.stats.size,
                data_size_bytes=result.stats.data_size_bytes,
                elapsed_ms=elapsed_ms,
            )
            self._emit("snapshot_completed", result.stats)
        else:
            log_event(
                "WARNING",
                MODULE,
                f"Snapshot {operation} failed: {result.message}",
                stage="SNAPSHOT_FAILED",
                extra={
                    "origin": result.origin,
                    "kind": result.kind,
                    "code": result.code,
                    "status": result.status,
                    "elapsed_ms": elapsed_ms,
                },
            )
            self._emit("snapshot_failed", result)
        return result

    async def _run_pipeline(self, params: FetchParams) -> SnapshotResult:
        try:
            fetched = await self._fetcher.fetch_page(params)
        except asyncio.CancelledError as exc:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            return SnapshotFailure.from_fetch_failure(classify_fetch_error(exc))
        except Exception as exc:  # noqa: BLE001 - every fetch error becomes a result
            return SnapshotFailure.from_fetch_failure(classify_fetch_error(exc))

        if isinstance(fetched, FetchFailure) or not fetched.ok:
            return SnapshotFailure.from_fetch_failure(fetched)

        try:
            prototypes = self._normalizer(fetched.data)
        except Exception as exc:  # noqa: BLE001 - normalizer bugs become results too
            self._logger.error("Normalizing fetched prototypes failed: %s", exc, exc_info=True)
            return SnapshotFailure(
                origin="unknown",
                kind="unknown",
                code="UNKNOWN",
                message=str(exc) or type(exc).__name__,
                data_state="unchanged",
                cause=exc,
            )

        try:
            self._store.set_all(prototypes)
        except Exception as exc:  # noqa: BLE001 - mapped onto the store taxonomy
            return _store_failure(exc)

        # The in-flight marker is cleared only after this task returns.
        stats = replace(self._store.get_stats(), refresh_in_flight=False)
        return SnapshotSuccess(stats=stats)

    def _emit(self, name: str, *args: Any) -> None:
        if self._events is not None:
            self._events.emit(name, *args)  # type: ignore[arg-type]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def get_all_from_snapshot(self) -> tuple[Prototype, ...]:
        return self._store.get_all()

    async def get_prototype_from_snapshot_by_prototype_id(
        self, prototype_id: int
    ) -> Optional[Prototype]:
        return self._store.get_by_prototype_id(_validate_prototype_id(prototype_id))

    async def get_prototype_ids_from_snapshot(self) -> list[int]:
        return self._store.get_prototype_ids()

    async def get_random_prototype_from_snapshot(self) -> Optional[Prototype]:
        records = self._store.get_all()
        if not records:
            return None
        index = min(int(self._rng.random() * len(records)), len(records) - 1)
        return records[index]

    async def get_random_sample_from_snapshot(self, size: int) -> list[Prototype]:
        """Return ``size`` distinct prototypes in random order.

        ``size`` larger than the snapshot yields the whole snapshot shuffled.
        """

        wanted = _validate_sample_size(size)
        records = self._store.get_all()
        population = len(records)
        if wanted == 0 or population == 0:
            return []

        if wanted >= population:
            shuffled = list(records)
            self._rng.shuffle(shuffled)
            return shuffled

        if wanted > population * SAMPLE_SIZE_THRESHOLD_RATIO:
            pool = list(records)
            for position in range(wanted):
                swap = self._rng.randrange(position, population)
                pool[position], pool[swap] = pool[swap], pool[position]
            return pool[:wanted]

        picked: set[int] = set()
        sample: list[Prototype] = []
        while len(sample) < wanted:
            index = self._rng.randrange(population)
            if index in picked:
                continue
            picked.add(index)
            sample.append(records[index])
        return sample

    async def analyze_prototypes(self) -> PrototypeAnalysis:
        return PrototypeAnalysis(
            min=self._store.min_prototype_id,
            max=self._store.max_prototype_id,
        )


__all__ = ["SAMPLE_SIZE_THRESHOLD_RATIO", "SnapshotRepository"]
