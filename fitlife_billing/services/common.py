"""Shared service utilities: timestamp conversion and object access."""
from __future__ import annotations

from datetime import UTC, datetime
from typing import Any


def from_unix(value: Any) -> datetime | None:
    """Convert a Unix timestamp in seconds to an aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def to_unix(value: datetime | None) -> int | None:
    if value is None:
        return None
    return int(make_aware(value).timestamp())


def make_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is timezone-aware (UTC). SQLite doesn't preserve tz info."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def object_id(value: Any) -> str | None:
    """Return the id of a Stripe reference that may be expanded or a bare id."""
    if value is None:
        return None
    if isinstance(value, dict):
        ref = value.get("id")
        return str(ref) if ref else None
    return str(value)


def first_item(obj: dict[str, Any], key: str = "items") -> dict[str, Any]:
    """First element of a Stripe list field such as ``items.data``."""
    container = obj.get(key) or {}
    data = container.get("data") if isinstance(container, dict) else None
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return data[0]
    return {}
