"""Tests for the snapshot repository."""

from __future__ import annotations

import asyncio
import math
import random

import pytest

from protocache.config import StoreConfig
from protocache.errors import FetchAbortedError, ValidationError
from protocache.models import FetchParams, Prototype
from protocache.results import FetchFailure, FetchSuccess, SnapshotFailure, SnapshotSuccess
from protocache.services.fetcher_base import PrototypeFetcher
from protocache.services.repository import SnapshotRepository
from protocache.services.store import SnapshotStore


class StubFetcher(PrototypeFetcher):
    """Fetcher returning (or raising) queued outcomes."""

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[FetchParams] = []

    async def fetch_page(self, params: FetchParams):
        self.calls.append(params)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _ok(*ids: int, **fields) -> FetchSuccess:
    return FetchSuccess(data=[{"id": item, "prototypeNm": f"proto-{item}", **fields} for item in ids])


def _populated(*ids: int, rng: random.Random | None = None) -> SnapshotRepository:
    repository = SnapshotRepository(StubFetcher(_ok(*ids)), rng=rng or random.Random(7))
    result = asyncio.run(repository.setup_snapshot())
    assert result.ok
    return repository


def test_setup_snapshot_populates_store_and_reads_by_id() -> None:
    async def _run() -> None:
        repository = SnapshotRepository(StubFetcher(_ok(1)))

        result = await repository.setup_snapshot({})

        assert isinstance(result, SnapshotSuccess)
        assert result.ok is True
        assert result.stats.size == 1
        assert result.stats.is_expired is False
        found = await repository.get_prototype_from_snapshot_by_prototype_id(1)
        assert found is not None and found.prototype_nm == "proto-1"
        assert await repository.get_prototype_from_snapshot_by_prototype_id(999) is None

    asyncio.run(_run())


def test_reads_never_fetch() -> None:
    async def _run() -> None:
        fetcher = StubFetcher(_ok(1, 2))
        repository = SnapshotRepository(fetcher)
        assert await repository.get_all_from_snapshot() == ()
        assert await repository.get_random_prototype_from_snapshot() is None
        assert await repository.get_random_sample_from_snapshot(3) == []
        assert await repository.get_prototype_ids_from_snapshot() == []
        assert fetcher.calls == []

    asyncio.run(_run())


def test_setup_merges_params_and_remembers_them_on_success() -> None:
    async def _run() -> None:
        fetcher = StubFetcher(_ok(1))
        repository = SnapshotRepository(fetcher)

        await repository.setup_snapshot({"limit": 50})
        await repository.refresh_snapshot()

        assert fetcher.calls == [FetchParams(offset=0, limit=50), FetchParams(offset=0, limit=50)]
        assert repository.last_fetch_params == FetchParams(limit=50)

    asyncio.run(_run())


def test_failed_setup_does_not_replace_remembered_params() -> None:
    async def _run() -> None:
        failure = FetchFailure(kind="http", code="SERVER_INTERNAL_ERROR", message="boom", status=500)
        fetcher = StubFetcher(_ok(1), failure, _ok(2))
        repository = SnapshotRepository(fetcher)

        await repository.setup_snapshot({"limit": 20})
        result = await repository.setup_snapshot({"limit": 99, "offset": 5})
        assert isinstance(result, SnapshotFailure)
        await repository.refresh_snapshot()

        assert fetcher.calls[-1] == FetchParams(limit=20)
        assert repository.last_fetch_params == FetchParams(limit=20)

    asyncio.run(_run())


def test_refresh_without_setup_uses_defaults() -> None:
    async def _run() -> None:
        fetcher = StubFetcher(_ok(1))
        repository = SnapshotRepository(fetcher)

        result = await repository.refresh_snapshot()

        assert result.ok
        assert fetcher.calls == [FetchParams()]
        assert repository.last_fetch_params == FetchParams()

    asyncio.run(_run())


def test_unknown_param_is_validation_error() -> None:
    repository = SnapshotRepository(StubFetcher(_ok(1)))

    with pytest.raises(ValidationError):
        asyncio.run(repository.setup_snapshot({"pageSize": 10}))


def test_fetch_failure_passes_through_and_keeps_snapshot() -> None:
    async def _run() -> None:
        failure = FetchFailure(
            kind="http",
            code="CLIENT_NOT_FOUND",
            message="API request failed: 404 Not Found",
            status=404,
            details={"req": {"method": "GET", "url": "u"}, "res": {"status_text": "Not Found"}},
        )
        repository = SnapshotRepository(StubFetcher(_ok(1, 2), failure))
        await repository.setup_snapshot()
        before = await repository.get_all_from_snapshot()

        result = await repository.refresh_snapshot()

        assert isinstance(result, SnapshotFailure)
        assert (result.origin, result.kind, result.code, result.status) == (
            "fetcher",
            "http",
            "CLIENT_NOT_FOUND",
            404,
        )
        assert result.error == "API request failed: 404 Not Found"
        assert result.details["res"]["status_text"] == "Not Found"
        assert await repository.get_all_from_snapshot() is before

    asyncio.run(_run())


def test_raised_abort_is_classified_and_store_untouched() -> None:
    async def _run() -> None:
        repository = SnapshotRepository(StubFetcher(_ok(1, 2, 3), FetchAbortedError()))
        await repository.setup_snapshot()
        stats_before = repository.get_stats()

        result = await repository.refresh_snapshot()

        assert isinstance(result, SnapshotFailure)
        assert (result.ok, result.kind, result.code) == (False, "abort", "ABORTED")
        assert result.origin == "fetcher"
        assert repository.get_stats() == stats_before
        assert await repository.get_prototype_ids_from_snapshot() == [1, 2, 3]

    asyncio.run(_run())


def test_raised_cancelled_error_from_fetcher_is_abort() -> None:
    async def _run() -> None:
        repository = SnapshotRepository(StubFetcher(asyncio.CancelledError()))

        result = await repository.setup_snapshot()

        assert isinstance(result, SnapshotFailure)
        assert (result.kind, result.code) == ("abort", "ABORTED")

    asyncio.run(_run())


def test_unexpected_fetch_exception_is_unknown() -> None:
    async def _run() -> None:
        repository = SnapshotRepository(StubFetcher(ValueError("weird")))

        result = await repository.setup_snapshot()

        assert isinstance(result, SnapshotFailure)
        assert (result.origin, result.kind, result.code) == ("fetcher", "unknown", "UNKNOWN")
        assert result.message == "weird"
        assert result.details == {}

    asyncio.run(_run())


def test_storage_limit_then_success() -> None:
    async def _run() -> None:
        huge = FetchSuccess(
            data=[{"id": item, "summary": "z" * 5_000} for item in range(1, 3_001)]
        )
        repository = SnapshotRepository(
            StubFetcher(huge, _ok(10, 11)),
            store_config=StoreConfig(max_data_size_bytes=10_000_000),
        )

        failed = await repository.setup_snapshot()
        assert isinstance(failed, SnapshotFailure)
        assert (failed.origin, failed.kind, failed.code) == (
            "store",
            "storage_limit",
            "STORE_CAPACITY_EXCEEDED",
        )
        assert failed.data_state == "unchanged"
        assert failed.details["max_data_size_bytes"] == 10_000_000
        assert repository.get_stats().size == 0

        succeeded = await repository.setup_snapshot()
        assert isinstance(succeeded, SnapshotSuccess)
        assert succeeded.stats.size == 2
        assert await repository.get_prototype_ids_from_snapshot() == [10, 11]

    asyncio.run(_run())


def test_size_estimation_failure_is_serialization_when_fail_closed() -> None:
    async def _run() -> None:
        repository = SnapshotRepository(
            StubFetcher(FetchSuccess(data=[Prototype(id=1, extra={"x": object()})])),
            store_config=StoreConfig(fail_closed_on_size_error=True),
        )

        result = await repository.setup_snapshot()

        assert isinstance(result, SnapshotFailure)
        assert (result.origin, result.kind, result.code) == (
            "store",
            "serialization",
            "STORE_SERIALIZATION_FAILED",
        )
        assert result.data_state == "unchanged"

    asyncio.run(_run())


def test_normalizer_crash_is_unknown_origin() -> None:
    def exploding(_items):
        raise RuntimeError("normalizer bug")

    async def _run() -> None:
        repository = SnapshotRepository(StubFetcher(_ok(1)), normalizer=exploding)

        result = await repository.setup_snapshot()

        assert isinstance(result, SnapshotFailure)
        assert (result.origin, result.kind, result.code) == ("unknown", "unknown", "UNKNOWN")
        assert result.message == "normalizer bug"
        assert isinstance(result.cause, RuntimeError)

    asyncio.run(_run())


@pytest.mark.parametrize("bad", [0, -1, 1.5, "1", None, True])
def test_prototype_id_validation(bad) -> None:
    repository = _populated(1)

    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(repository.get_prototype_from_snapshot_by_prototype_id(bad))
    assert excinfo.value.field == "prototype_id"


@pytest.mark.parametrize("bad", [-1, 1.5, math.nan, "2", None, False])
def test_sample_size_validation(bad) -> None:
    repository = _populated(1, 2, 3)

    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(repository.get_random_sample_from_snapshot(bad))
    assert excinfo.value.field == "size"


@pytest.mark.parametrize("size", [0, 1, 2, 3, 4, 5, 6, 8, 10])
def test_sample_sizes_are_distinct(size: int) -> None:
    repository = _populated(*range(1, 11))

    sample = asyncio.run(repository.get_random_sample_from_snapshot(size))

    ids = [item.id for item in sample]
    assert len(ids) == size
    assert len(set(ids)) == size


def test_sample_larger_than_population_returns_everything() -> None:
    repository = _populated(1, 2, 3)

    sample = asyncio.run(repository.get_random_sample_from_snapshot(10))

    assert sorted(item.id for item in sample) == [1, 2, 3]


def test_repeated_samples_cover_population() -> None:
    repository = _populated(1, 2, 3, 4, 5, rng=random.Random(2024))

    async def _run() -> set[int]:
        seen: set[int] = set()
        for _ in range(50):
            sample = await repository.get_random_sample_from_snapshot(2)
            assert len({item.id for item in sample}) == 2
            seen.update(item.id for item in sample)
        return seen

    assert asyncio.run(_run()) == {1, 2, 3, 4, 5}


def test_random_prototype_is_from_snapshot() -> None:
    repository = _populated(4, 5, 6)

    async def _run() -> set[int]:
        return {
            (await repository.get_random_prototype_from_snapshot()).id for _ in range(30)
        }

    picked = asyncio.run(_run())
    assert picked <= {4, 5, 6}
    assert len(picked) > 1


def test_analyze_prototypes_reports_id_range() -> None:
    async def _run() -> None:
        repository = SnapshotRepository(StubFetcher(_ok(8, 3, 15)))
        empty = await repository.analyze_prototypes()
        assert (empty.min, empty.max) == (None, None)

        await repository.setup_snapshot()
        analysis = await repository.analyze_prototypes()
        assert (analysis.min, analysis.max) == (3, 15)

    asyncio.run(_run())


def test_get_config_and_stats() -> None:
    config = StoreConfig(ttl_ms=5_000, max_data_size_bytes=1_000_000)
    repository = SnapshotRepository(StubFetcher(_ok(1)), store_config=config)

    assert repository.get_config() is config
    assert repository.get_stats().size == 0
    assert repository.events is None


def test_success_stats_do_not_report_refresh_in_flight() -> None:
    async def _run() -> None:
        repository = SnapshotRepository(StubFetcher(_ok(1, 2)), enable_events=True)
        completed = []
        assert repository.events is not None
        repository.events.on("snapshot_completed", completed.append)

        result = await repository.setup_snapshot()

        assert isinstance(result, SnapshotSuccess)
        assert result.stats.size == 2
        assert result.stats.refresh_in_flight is False
        assert [stats.refresh_in_flight for stats in completed] == [False]
        assert repository.get_stats().refresh_in_flight is False

    asyncio.run(_run())


def test_store_and_store_config_are_mutually_exclusive() -> None:
    with pytest.raises(ValueError, match="either store or store_config"):
        SnapshotRepository(
            StubFetcher(_ok(1)),
            store=SnapshotStore(),
            store_config=StoreConfig(ttl_ms=1_000),
        )
