"""Domain models used by the cache."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping, Optional


@dataclass(frozen=True, slots=True)
class Prototype:
    """Normalized ProtoPedia prototype kept in the snapshot."""

    id: int
    prototype_nm: str = ""
    summary: str = ""
    free_comment: str = ""
    system_description: str = ""
    status: Optional[int] = None
    release_flg: int = 2
    create_date: Optional[str] = None
    update_date: Optional[str] = None
    release_date: Optional[str] = None
    create_id: Optional[int] = None
    update_id: Optional[int] = None
    team_nm: str = ""
    users: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    materials: tuple[str, ...] = ()
    events: tuple[str, ...] = ()
    awards: tuple[str, ...] = ()
    main_url: str = ""
    official_link: Optional[str] = None
    video_url: Optional[str] = None
    related_links: tuple[str, ...] = ()
    view_count: int = 0
    good_count: int = 0
    comment_count: int = 0
    uuid: Optional[str] = None
    nid: Optional[str] = None
    revision: int = 0
    license_type: int = 1
    thanks_flg: int = 0
    slide_mode: Optional[int] = None
    extra: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        # Read-only view over a private copy so cached records cannot be edited in place.
        if not isinstance(self.extra, MappingProxyType):
            object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))


@dataclass(frozen=True, slots=True)
class FetchParams:
    """Query parameters for one page of the upstream listing."""

    offset: int = 0
    limit: int = 10
    prototype_id: Optional[int] = None

    def merged(self, **overrides: Any) -> "FetchParams":
        """Return a copy with the non-``None`` overrides applied."""

        values = {
            "offset": self.offset,
            "limit": self.limit,
            "prototype_id": self.prototype_id,
        }
        for key, value in overrides.items():
            if key not in values:
                raise TypeError(f"Unknown fetch parameter: {key}")
            if value is not None:
                values[key] = value
        return FetchParams(**values)

    def to_query(self) -> dict[str, int]:
        query = {"offset": self.offset, "limit": self.limit}
        if self.prototype_id is not None:
            query["prototypeId"] = self.prototype_id
        return query


DEFAULT_FETCH_PARAMS = FetchParams()


@dataclass(frozen=True, slots=True)
class SnapshotStats:
    """Point-in-time view of the cache health."""

    size: int
    cached_at: Optional[datetime]
    is_expired: bool
    remaining_ttl_ms: int
    data_size_bytes: int
    refresh_in_flight: bool


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Cached data together with its freshness metadata."""

    data: tuple[Prototype, ...]
    cached_at: Optional[datetime]
    is_expired: bool


@dataclass(frozen=True, slots=True)
class PrototypeAnalysis:
    """Identifier range of the current snapshot."""

    min: Optional[int]
    max: Optional[int]


__all__ = [
    "DEFAULT_FETCH_PARAMS",
    "FetchParams",
    "Prototype",
    "PrototypeAnalysis",
    "Snapshot",
    "SnapshotStats",
]
