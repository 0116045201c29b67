"""Utility helpers shared across the service."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Iterable, Iterator, Sequence, TypeVar


T = TypeVar("T")

_TZ_SUFFIX_RE = re.compile(r"([+-]\d{2}:\d{2}|Z)$")
_FRACTION_RE = re.compile(r"\.\d+$")


def chunked(items: Sequence[T] | Iterable[T], size: int) -> Iterator[list[T]]:
    """Yield lists of at most ``size`` items."""

    if size <= 0:
        raise ValueError("Chunk size must be positive")
    batch: list[T] = []
    for item in items:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


def utcnow() -> datetime:
    """Return a naive UTC timestamp for database columns."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_upstream_timestamp(timestamp: str) -> str:
    """Return a timestamp suitable for the upstream ``updated_at`` filter.

    Stash interprets filter values as local time without an offset and
    truncates sub-second precision in responses, so the offset is stripped and
    the fraction pinned to ``.999`` to avoid re-fetching the same records.
    """

    without_tz = _TZ_SUFFIX_RE.sub("", timestamp.strip())
    if _FRACTION_RE.search(without_tz):
        return _FRACTION_RE.sub(".999", without_tz)
    return f"{without_tz}.999"


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp, returning ``None`` for blanks."""

    if not value:
        return None
    cleaned = value.strip()
    if cleaned.endswith("Z"):
        cleaned = cleaned[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(cleaned)
    except ValueError:
        return None


def latest_timestamp(first: str | None, second: str | None) -> str | None:
    """Return the more recent of two raw timestamps."""

    if not first:
        return second
    if not second:
        return first
    first_dt = parse_timestamp(first)
    second_dt = parse_timestamp(second)
    if first_dt is None or second_dt is None:
        return max(first, second)
    if first_dt.tzinfo is None:
        first_dt = first_dt.replace(tzinfo=timezone.utc)
    if second_dt.tzinfo is None:
        second_dt = second_dt.replace(tzinfo=timezone.utc)
    return first if first_dt >= second_dt else second
