"""Range and conditional request evaluation for stores that do their own HTTP semantics.

Stores backed by a service that already understands these headers (S3) just
forward them; the in-memory store evaluates them here.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

from blobgate.storage import ByteRange, RangeNotSatisfiable

RANGE_HEADER = "range"
CONDITIONAL_HEADERS = (
    "if-match",
    "if-none-match",
    "if-modified-since",
    "if-unmodified-since",
)


def parse_range(value: str | None, size: int) -> ByteRange | None:
    """Resolve a `Range` header against an object of `size` bytes.

    Returns None when there is no header or it cannot be parsed, in which case the
    whole object is served. Only the first range of a multi-range header is used.
    """
    if value is None:
        return None
    unit, _, ranges = value.strip().partition("=")
    if unit.strip().lower() != "bytes" or not ranges:
        return None
    first = ranges.split(",")[0].strip()
    start, sep, end = first.partition("-")
    if not sep:
        return None
    start = start.strip()
    end = end.strip()
    try:
        if not start:
            # suffix range, the last N bytes
            suffix = int(end)
            if suffix <= 0 or size == 0:
                raise RangeNotSatisfiable(size)
            return ByteRange(offset=max(size - suffix, 0), end=size - 1)
        offset = int(start)
        last = int(end) if end else None
    except ValueError:
        return None
    if offset < 0 or (last is not None and last < offset):
        return None
    if offset >= size:
        raise RangeNotSatisfiable(size)
    if last is not None:
        last = min(last, size - 1)
    return ByteRange(offset=offset, end=last)


def _etags(value: str) -> list[str]:
    return [tag.strip() for tag in value.split(",") if tag.strip()]


def _opaque(tag: str) -> str:
    if tag.startswith("W/"):
        tag = tag[2:]
    return tag.strip('"')


def _matches(value: str, etag: str, *, weak: bool) -> bool:
    for tag in _etags(value):
        if tag == "*":
            return True
        if not weak and tag.startswith("W/"):
            continue
        if _opaque(tag) == etag:
            return True
    return False


def _parse_date(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def preconditions_hold(headers: Mapping[str, str], etag: str, uploaded: datetime | None) -> bool:
    """Evaluate GET preconditions in RFC 7232 order.

    False means the object must be returned without a body.
    """
    if uploaded is not None:
        uploaded = uploaded.replace(microsecond=0)

    if_match = headers.get("if-match")
    if if_match is not None:
        if not _matches(if_match, etag, weak=False):
            return False
    elif uploaded is not None:
        since = _parse_date(headers.get("if-unmodified-since"))
        if since is not None and uploaded > since:
            return False

    if_none_match = headers.get("if-none-match")
    if if_none_match is not None:
        if _matches(if_none_match, etag, weak=True):
            return False
    elif uploaded is not None:
        since = _parse_date(headers.get("if-modified-since"))
        if since is not None and uploaded <= since:
            return False

    return True
