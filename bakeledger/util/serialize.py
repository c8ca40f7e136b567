"""
Serialization boundary between in-memory entities and the stores.

Everything written to the document store or the local mirror passes
through :func:`sanitize` exactly once.
"""
from __future__ import annotations

import copy
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any


class _Sentinel:
    __slots__ = ("name",)

    def __init__(self, name: str):
        self.name = name

    def __repr__(self) -> str:
        return self.name

    def __deepcopy__(self, memo):
        return self

    def __copy__(self):
        return self


# A field that is absent. Never reaches a store: sanitize() turns it into None.
UNDEFINED = _Sentinel("UNDEFINED")

# Placeholder resolved by the document store to the commit instant.
SERVER_TIMESTAMP = _Sentinel("SERVER_TIMESTAMP")


def sanitize(value: Any) -> Any:
    """Replace UNDEFINED leaves with None and coerce values to JSON types."""
    if value is UNDEFINED:
        return None
    if value is SERVER_TIMESTAMP:
        return value
    if isinstance(value, dict):
        return {str(k): sanitize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize(v) for v in value]
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


def snapshot(entity: dict | None) -> dict | None:
    """Detached copy of an entity, safe to keep for rollback."""
    return copy.deepcopy(entity) if entity is not None else None


def to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))
