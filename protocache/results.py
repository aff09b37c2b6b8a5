"""Result objects returned instead of raising across the public API."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Sequence, Union

from protocache.errors import DataState
from protocache.models import SnapshotStats

FetchFailureKind = Literal["http", "cors", "network", "timeout", "abort", "unknown"]
StoreFailureKind = Literal["storage_limit", "serialization", "unknown"]
FailureOrigin = Literal["fetcher", "store", "unknown"]

STORE_CAPACITY_EXCEEDED = "STORE_CAPACITY_EXCEEDED"
STORE_SERIALIZATION_FAILED = "STORE_SERIALIZATION_FAILED"
STORE_UNKNOWN = "STORE_UNKNOWN"


@dataclass(frozen=True, slots=True)
class FetchSuccess:
    """Page of raw (or already normalized) records from the upstream API."""

    data: Sequence[Any]

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class FetchFailure:
    """Classified failure of the fetch collaborator."""

    kind: FetchFailureKind
    code: str
    message: str
    status: Optional[int] = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return False

    @property
    def origin(self) -> FailureOrigin:
        return "fetcher"


FetchResult = Union[FetchSuccess, FetchFailure]


@dataclass(frozen=True, slots=True)
class SnapshotSuccess:
    """Successful setup or refresh with the stats of the new snapshot."""

    stats: SnapshotStats

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class SnapshotFailure:
    """Failed setup or refresh; the previous snapshot is still served."""

    origin: FailureOrigin
    kind: str
    code: str
    message: str
    status: Optional[int] = None
    details: dict[str, Any] = field(default_factory=dict)
    data_state: Optional[DataState] = None
    cause: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return False

    @property
    def error(self) -> str:
        return self.message

    @classmethod
    def from_fetch_failure(cls, failure: FetchFailure) -> "SnapshotFailure":
        return cls(
            origin="fetcher",
            kind=failure.kind,
            code=failure.code,
            message=failure.message,
            status=failure.status,
            details=dict(failure.details),
        )


SnapshotResult = Union[SnapshotSuccess, SnapshotFailure]


__all__ = [
    "FailureOrigin",
    "FetchFailure",
    "FetchFailureKind",
    "FetchResult",
    "FetchSuccess",
    "STORE_CAPACITY_EXCEEDED",
    "STORE_SERIALIZATION_FAILED",
    "STORE_UNKNOWN",
    "SnapshotFailure",
    "SnapshotResult",
    "SnapshotSuccess",
    "StoreFailureKind",
]
