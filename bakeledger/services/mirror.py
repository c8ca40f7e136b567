"""
Local mirror: device-local key/value persistence plus the in-memory
collections the rest of the app reads from.

Every collection is mirrored here whatever the backend mode; a write to a
``MirrorCollection`` is persisted before the call returns.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Iterator

from sqlalchemy.orm import sessionmaker

from bakeledger.models.core import LocalEntry
from bakeledger.util.serialize import sanitize

logger = logging.getLogger(__name__)

TRANSACTIONS = "transactions"
EXCHANGE_RATES = "exchangeRates"
RECIPES = "recipes"
INGREDIENTS = "ingredients"
PRODUCTION = "production"
EVENT_HISTORY = "eventHistory"

ENTITY_COLLECTIONS = (TRANSACTIONS, EXCHANGE_RATES, RECIPES, INGREDIENTS, PRODUCTION)


def collection_key(scope: str, name: str) -> str:
    return f"{scope}:{name}"


class LocalMirrorStore:
    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    def get(self, key: str) -> Any:
        with self._sessions() as db:
            row = db.get(LocalEntry, key)
            return row.value if row else None

    def set(self, key: str, value: Any) -> None:
        with self._sessions() as db:
            if value is None:
                row = db.get(LocalEntry, key)
                if row:
                    db.delete(row)
            else:
                row = db.get(LocalEntry, key)
                if not row:
                    row = LocalEntry(key=key)
                    db.add(row)
                row.value = sanitize(value)
            db.commit()

    def keys(self, prefix: str = "") -> list[str]:
        with self._sessions() as db:
            q = db.query(LocalEntry.key)
            if prefix:
                q = q.filter(LocalEntry.key.startswith(prefix))
            return [k for (k,) in q.order_by(LocalEntry.key).all()]


class MirrorCollection:
    """A list of entity dicts persisted under one mirror key."""

    def __init__(self, store: LocalMirrorStore, key: str, sort_key: Callable[[dict], Any] | None = None):
        self.store = store
        self.key = key
        self._sort_key = sort_key
        stored = store.get(key)
        self._items: list[dict] = list(stored) if isinstance(stored, list) else []

    def __iter__(self) -> Iterator[dict]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> list[dict]:
        return self._items

    def index_of(self, entity_id: str) -> int:
        for i, item in enumerate(self._items):
            if item.get("id") == entity_id:
                return i
        return -1

    def get(self, entity_id: str) -> dict | None:
        i = self.index_of(entity_id)
        return self._items[i] if i != -1 else None

    def insert(self, item: dict, index: int = 0) -> None:
        index = max(0, min(index, len(self._items)))
        self._items.insert(index, item)
        self._resort()
        self.flush()

    def replace(self, index: int, item: dict) -> None:
        self._items[index] = item
        self._resort()
        self.flush()

    def remove(self, index: int) -> dict:
        item = self._items.pop(index)
        self.flush()
        return item

    def upsert(self, item: dict) -> None:
        i = self.index_of(item["id"])
        if i == -1:
            self.insert(item)
        else:
            self.replace(i, item)

    def reset(self, items: list[dict]) -> None:
        self._items = list(items)
        self._resort()
        self.flush()

    def reload(self) -> None:
        stored = self.store.get(self.key)
        self._items = list(stored) if isinstance(stored, list) else []
        self._resort()

    def flush(self) -> None:
        self.store.set(self.key, self._items)

    def _resort(self) -> None:
        if self._sort_key is not None:
            self._items.sort(key=self._sort_key, reverse=True)
