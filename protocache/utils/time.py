"""Timestamp parsing for upstream date strings."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

JST = timezone(timedelta(hours=9))

_PROTOPEDIA_PATTERN = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2}) (\d{2}):(\d{2}):(\d{2})\.(\d+)$"
)
_W3C_DTF_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2})?(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)


def to_utc_iso(moment: datetime) -> str:
    """Render ``moment`` as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""

    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def parse_protopedia_timestamp(value: str) -> Optional[str]:
    """Parse ``2024-01-15 12:34:56.0`` (JST) into a UTC ISO string."""

    if not isinstance(value, str) or not value:
        return None
    match = _PROTOPEDIA_PATTERN.match(value)
    if not match:
        return None
    year, month, day, hour, minute, second, fractional = match.groups()
    millis = int(fractional.ljust(3, "0")[:3])
    try:
        local = datetime(
            int(year),
            int(month),
            int(day),
            int(hour),
            int(minute),
            int(second),
            millis * 1000,
            tzinfo=JST,
        )
    except ValueError:
        return None
    return to_utc_iso(local)


def parse_w3c_dtf_timestamp(value: str) -> Optional[str]:
    """Parse a W3C-DTF datetime with an explicit offset into UTC ISO."""

    if not isinstance(value, str) or not value:
        return None
    if not _W3C_DTF_PATTERN.match(value):
        return None
    prepared = value[:-1] + "+00:00" if value[-1] in "Zz" else value
    # fromisoformat accepts at most six fractional digits.
    prepared = re.sub(r"\.(\d{6})\d+", r".\1", prepared)
    try:
        parsed = datetime.fromisoformat(prepared)
    except ValueError:
        return None
    return to_utc_iso(parsed)


def normalize_timestamp(value: Optional[str]) -> Optional[str]:
    """Return the UTC ISO form of ``value`` or ``value`` unchanged."""

    if value is None:
        return None
    return parse_protopedia_timestamp(value) or parse_w3c_dtf_timestamp(value) or value


__all__ = [
    "JST",
    "normalize_timestamp",
    "parse_protopedia_timestamp",
    "parse_w3c_dtf_timestamp",
    "to_utc_iso",
]
