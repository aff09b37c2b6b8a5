"""Normalization of raw ProtoPedia API records."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from logger import get_logger
from protocache.models import Prototype
from protocache.utils.time import normalize_timestamp

LOGGER = get_logger("protocache.normalize")

_TIMESTAMP_FIELDS = (
    ("createDate", "create_date"),
    ("updateDate", "update_date"),
    ("releaseDate", "release_date"),
)
_LIST_FIELDS = (
    ("users", "users"),
    ("tags", "tags"),
    ("materials", "materials"),
    ("events", "events"),
    ("awards", "awards"),
)
_RELATED_LINK_KEYS = (
    "relatedLink",
    "relatedLink2",
    "relatedLink3",
    "relatedLink4",
    "relatedLink5",
)
_KNOWN_KEYS = frozenset(
    {
        "id",
        "prototypeNm",
        "summary",
        "freeComment",
        "systemDescription",
        "status",
        "releaseFlg",
        "createId",
        "updateId",
        "teamNm",
        "mainUrl",
        "officialLink",
        "videoUrl",
        "viewCount",
        "goodCount",
        "commentCount",
        "uuid",
        "nid",
        "revision",
        "licenseType",
        "thanksFlg",
        "slideMode",
    }
    | {source for source, _ in _TIMESTAMP_FIELDS}
    | {source for source, _ in _LIST_FIELDS}
    | set(_RELATED_LINK_KEYS)
)


class InvalidPrototypeError(ValueError):
    """Raised when a raw record cannot be turned into a prototype."""


def split_pipe_separated(value: Any) -> tuple[str, ...]:
    if not isinstance(value, str) or not value:
        return ()
    return tuple(part.strip() for part in value.split("|") if part.strip())


def _as_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _timestamp_failed(original: Optional[str], normalized: Optional[str]) -> bool:
    return bool(original) and normalized == original and not str(normalized).endswith("Z")


def normalize_prototype(
    raw: Mapping[str, Any],
    *,
    index: int = 0,
    logger: logging.Logger | logging.LoggerAdapter | None = None,
) -> Prototype:
    """Convert one raw API record into a :class:`Prototype`."""

    prototype, _ = _normalize_record(raw, index, logger or LOGGER)
    return prototype


def _normalize_record(
    raw: Mapping[str, Any],
    index: int,
    log: logging.Logger | logging.LoggerAdapter,
) -> tuple[Prototype, int]:
    prototype_id = _as_int(raw.get("id"))
    if prototype_id is None:
        raise InvalidPrototypeError(f"Record at index {index} has no integer id: {raw.get('id')!r}")

    timestamps: dict[str, Optional[str]] = {}
    timestamp_warnings = 0
    for source, target in _TIMESTAMP_FIELDS:
        value = raw.get(source)
        # Non-string values (epoch numbers and the like) are parsed as their text form.
        original = None if value is None or value == "" else str(value)
        normalized = normalize_timestamp(original)
        if _timestamp_failed(original, normalized):
            timestamp_warnings += 1
            log.warning(
                "Failed to parse and normalize %s prototype_id=%s index=%s value=%r",
                source,
                prototype_id,
                index,
                original,
            )
        timestamps[target] = normalized

    lists = {target: split_pipe_separated(raw.get(source)) for source, target in _LIST_FIELDS}
    related_links = tuple(
        str(raw[key]) for key in _RELATED_LINK_KEYS if raw.get(key)
    )
    extra = {key: value for key, value in raw.items() if key not in _KNOWN_KEYS}

    prototype = Prototype(
        id=prototype_id,
        prototype_nm=_as_text(raw.get("prototypeNm")),
        summary=_as_text(raw.get("summary")),
        free_comment=_as_text(raw.get("freeComment")),
        system_description=_as_text(raw.get("systemDescription")),
        status=_as_int(raw.get("status")),
        release_flg=_as_int(raw.get("releaseFlg"), 2),
        create_id=_as_int(raw.get("createId")),
        update_id=_as_int(raw.get("updateId")),
        team_nm=_as_text(raw.get("teamNm")),
        main_url=_as_text(raw.get("mainUrl")),
        official_link=raw.get("officialLink") or None,
        video_url=raw.get("videoUrl") or None,
        related_links=related_links,
        view_count=_as_int(raw.get("viewCount"), 0),
        good_count=_as_int(raw.get("goodCount"), 0),
        comment_count=_as_int(raw.get("commentCount"), 0),
        uuid=raw.get("uuid") or None,
        nid=raw.get("nid") or None,
        revision=_as_int(raw.get("revision"), 0),
        license_type=_as_int(raw.get("licenseType"), 1),
        thanks_flg=_as_int(raw.get("thanksFlg"), 0),
        slide_mode=_as_int(raw.get("slideMode")),
        extra=extra,
        **timestamps,
        **lists,
    )
    return prototype, timestamp_warnings


def normalize_prototypes(
    items: Iterable[Any],
    *,
    logger: logging.Logger | logging.LoggerAdapter | None = None,
) -> list[Prototype]:
    """Normalize a page of records, skipping the ones without a usable id."""

    log = logger or LOGGER
    prototypes: list[Prototype] = []
    total = 0
    passthrough = 0
    skipped_invalid = 0
    timestamp_warnings = 0

    for index, item in enumerate(items):
        total += 1
        if isinstance(item, Prototype):
            passthrough += 1
            prototypes.append(item)
            continue
        if not isinstance(item, Mapping):
            skipped_invalid += 1
            log.warning("Skipping record %s: expected a mapping, got %s", index, type(item).__name__)
            continue
        try:
            prototype, warnings = _normalize_record(item, index, log)
        except InvalidPrototypeError as exc:
            skipped_invalid += 1
            log.warning("Skipping record %s: %s", index, exc)
            continue
        prototypes.append(prototype)
        timestamp_warnings += warnings

    log.info(
        "Prototypes normalized: total=%s valid=%s passthrough=%s skipped_invalid=%s timestamp_warnings=%s",
        total,
        len(prototypes),
        passthrough,
        skipped_invalid,
        timestamp_warnings,
    )
    return prototypes


__all__ = [
    "InvalidPrototypeError",
    "normalize_prototype",
    "normalize_prototypes",
    "split_pipe_separated",
]
