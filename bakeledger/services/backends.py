"""
Where a mutation goes after it has been applied to the mirror.

``RemoteBackend`` replicates each mutation to the document store inside
one atomic batch together with its history entries, in a background task.
``LocalBackend`` only records history in the mirror; the mirror write is
already final. The workspace picks one per owner scope.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, TYPE_CHECKING

from bakeledger.services.docstore import DocumentStore, WriteBatch
from bakeledger.services.identity import Identity
from bakeledger.services.mirror import ENTITY_COLLECTIONS, EVENT_HISTORY, TRANSACTIONS, EXCHANGE_RATES
from bakeledger.util.audit import AuditLogWriter, local_id
from bakeledger.util.serialize import SERVER_TIMESTAMP

if TYPE_CHECKING:
    from bakeledger.services.sync import MutationPlan, Write

logger = logging.getLogger(__name__)

# called once the write is final: None on success, the exception on failure
SettleHandler = Callable[[Optional[BaseException]], None]

# reload ordering, newest first
ORDER_BY = {
    TRANSACTIONS: ("date", "createdAt"),
    EXCHANGE_RATES: ("date",),
}


class LocalBackend:
    remote = False

    def __init__(self, audit: AuditLogWriter):
        self.audit = audit

    @property
    def scope(self) -> str:
        return "local"

    def new_id(self, collection: str) -> str:
        return f"local_{local_id()}"

    async def dispatch(self, plan: "MutationPlan", on_settled: SettleHandler) -> None:
        for event in plan.events:
            await self.audit.record(event)
        on_settled(None)

    async def load(self) -> None:
        # the mirror already is the store
        return None

    async def history(self, limit: int | None = None) -> list[dict]:
        items = list(self.audit.local_log.items)
        return items[:limit] if limit else items

    async def drain(self) -> None:
        return None


class RemoteBackend:
    remote = True

    def __init__(self, user: Identity, docstore: DocumentStore, audit: AuditLogWriter):
        self.user = user
        self.docstore = docstore
        self.audit = audit
        self._pending: set[asyncio.Task] = set()

    @property
    def scope(self) -> str:
        return self.user.id

    @property
    def pending(self) -> int:
        return len(self._pending)

    def new_id(self, collection: str) -> str:
        return self.docstore.collection(self.user.id, collection).doc().id

    async def dispatch(self, plan: "MutationPlan", on_settled: SettleHandler) -> None:
        # fire-and-forget: the caller gets its result before the commit settles
        task = asyncio.create_task(self._commit(plan, on_settled), name=f"sync:{plan.label}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _commit(self, plan: "MutationPlan", on_settled: SettleHandler) -> None:
        batch = self.docstore.batch()
        try:
            for write in plan.writes:
                self._stage(batch, write)
            for event in plan.events:
                await self.audit.record(event, batch)
            await asyncio.to_thread(batch.commit)
        except Exception as exc:
            logger.error("sync of %s failed, rolling back: %s", plan.label, exc, exc_info=exc)
            on_settled(exc)
            return
        logger.debug("sync of %s committed (%d ops)", plan.label, len(batch))
        on_settled(None)

    def _stage(self, batch: WriteBatch, write: "Write") -> None:
        ref = self.docstore.collection(self.user.id, write.collection).doc(write.entity_id)
        if write.mode == "delete":
            batch.delete(ref)
            return
        payload = dict(write.remote_fields if write.remote_fields is not None else write.after)
        for field in write.stamp_fields:
            if field in payload:
                payload[field] = SERVER_TIMESTAMP
        if write.mode == "update":
            batch.update(ref, payload)
        else:
            batch.set(ref, payload, merge=write.mode == "merge")

    async def load(self) -> dict[str, list[dict]]:
        def _read():
            return {
                name: self.docstore.collection(self.user.id, name).get_all(ORDER_BY.get(name, ()))
                for name in ENTITY_COLLECTIONS
            }
        return await asyncio.to_thread(_read)

    async def history(self, limit: int | None = None) -> list[dict]:
        docs = await asyncio.to_thread(
            self.docstore.collection(self.user.id, EVENT_HISTORY).get_all, ("timestamp",)
        )
        return docs[:limit] if limit else docs

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


Backend = LocalBackend | RemoteBackend
