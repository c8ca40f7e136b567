"""
Remote document store over SQLAlchemy.

Documents live in collections addressed as ``(owner, collection)``. Writes
go through a ``WriteBatch`` that commits all of its operations in one
database transaction or none of them.
"""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from bakeledger.models.common import new_doc_id, utcnow
from bakeledger.models.core import RemoteDocument
from bakeledger.util.serialize import SERVER_TIMESTAMP, sanitize, to_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocRef:
    owner: str
    collection: str
    id: str

    @property
    def path(self) -> str:
        return f"users/{self.owner}/{self.collection}/{self.id}"


class CollectionRef:
    def __init__(self, store: "DocumentStore", owner: str, name: str):
        self.store = store
        self.owner = owner
        self.name = name

    def doc(self, doc_id: str | None = None) -> DocRef:
        """Reference a document; without an id a fresh one is generated."""
        return DocRef(self.owner, self.name, doc_id or new_doc_id())

    def get_all(self, order_by: Iterable[str] = ()) -> list[dict]:
        """All documents as ``{"id": ..., **data}``, newest first on each order key."""
        with self.store.session() as db:
            rows = db.execute(
                select(RemoteDocument).where(
                    RemoteDocument.owner == self.owner,
                    RemoteDocument.collection == self.name,
                ).order_by(RemoteDocument.created_at.desc())
            ).scalars().all()
            docs = [{**(r.data or {}), "id": r.doc_id} for r in rows]
        for key in reversed(list(order_by)):
            docs.sort(key=lambda d: (d.get(key) is not None, d.get(key) or ""), reverse=True)
        return docs

    def get(self, doc_id: str) -> dict | None:
        with self.store.session() as db:
            row = _find(db, self.doc(doc_id))
            return {**(row.data or {}), "id": row.doc_id} if row else None

    def set(self, doc_id: str, data: dict, merge: bool = False) -> None:
        batch = self.store.batch()
        batch.set(self.doc(doc_id), data, merge=merge)
        batch.commit()


def _find(db: Session, ref: DocRef) -> RemoteDocument | None:
    return db.execute(
        select(RemoteDocument).where(
            RemoteDocument.owner == ref.owner,
            RemoteDocument.collection == ref.collection,
            RemoteDocument.doc_id == ref.id,
        )
    ).scalar_one_or_none()


def _resolve_timestamps(data: Any, stamp: str) -> Any:
    if data is SERVER_TIMESTAMP:
        return stamp
    if isinstance(data, dict):
        return {k: _resolve_timestamps(v, stamp) for k, v in data.items()}
    if isinstance(data, list):
        return [_resolve_timestamps(v, stamp) for v in data]
    return data


class WriteBatch:
    """Staged set/update/delete operations, applied atomically by commit()."""

    def __init__(self, store: "DocumentStore"):
        self.store = store
        self._ops: list[tuple[str, DocRef, dict | None, bool]] = []
        self._committed = False

    def __len__(self) -> int:
        return len(self._ops)

    @property
    def refs(self) -> list[DocRef]:
        return [ref for _, ref, _, _ in self._ops]

    def set(self, ref: DocRef, data: dict, merge: bool = False) -> "WriteBatch":
        payload = sanitize({k: v for k, v in data.items() if k != "id"})
        self._ops.append(("set", ref, payload, merge))
        return self

    def update(self, ref: DocRef, fields: dict) -> "WriteBatch":
        self._ops.append(("update", ref, sanitize(fields), True))
        return self

    def delete(self, ref: DocRef) -> "WriteBatch":
        self._ops.append(("delete", ref, None, False))
        return self

    def commit(self) -> None:
        if self._committed:
            raise RuntimeError("batch already committed")
        self._committed = True
        stamp = to_iso(utcnow())
        with self.store.session() as db:
            try:
                for op, ref, payload, merge in self._ops:
                    row = _find(db, ref)
                    if op == "delete":
                        if row is not None:
                            db.delete(row)
                        continue
                    payload = _resolve_timestamps(copy.deepcopy(payload), stamp)
                    if op == "update" and row is None:
                        raise LookupError(f"no document to update at {ref.path}")
                    if row is None:
                        db.add(RemoteDocument(owner=ref.owner, collection=ref.collection, doc_id=ref.id, data=payload))
                    elif merge:
                        row.data = {**(row.data or {}), **payload}
                    else:
                        row.data = payload
                    db.flush()
                db.commit()
            except Exception:
                db.rollback()
                raise
        logger.debug("batch committed: %d ops", len(self._ops))


class DocumentStore:
    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    def session(self) -> Session:
        return self._sessions()

    def collection(self, owner: str, name: str) -> CollectionRef:
        return CollectionRef(self, owner, name)

    def batch(self) -> WriteBatch:
        return WriteBatch(self)
