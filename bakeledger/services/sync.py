"""
Mutation pipeline shared by every entity operation.

A domain operation validates its input and builds a ``MutationPlan``: the
entity writes it wants and the history entries describing them. The engine
then applies the writes to the mirror synchronously, recomputes derived
values, and hands the plan to the backend. A remote backend commits in the
background; if that commit fails, the engine restores the exact snapshots it
took before applying and records the failure.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Literal, Mapping

from bakeledger.errors import SyncFailure
from bakeledger.services.backends import Backend
from bakeledger.services.mirror import MirrorCollection
from bakeledger.util.serialize import snapshot

logger = logging.getLogger(__name__)

WriteMode = Literal["set", "merge", "update", "delete"]


@dataclass
class Write:
    """
    One entity write.

    ``after`` is the full entity as the mirror should hold it (None removes
    it). ``remote_fields`` narrows what is sent to the document store, for
    partial updates. ``stamp_fields`` are replaced by the commit instant on
    the remote side.
    """
    collection: str
    entity_id: str
    after: dict | None
    mode: WriteMode = "set"
    remote_fields: dict | None = None
    stamp_fields: tuple[str, ...] = ()

    def __post_init__(self):
        if self.after is None:
            self.mode = "delete"


@dataclass
class MutationPlan:
    label: str
    writes: list[Write] = field(default_factory=list)
    events: list[dict] = field(default_factory=list)
    failure_message: str = "Could not save changes; they were reverted."

    def add(self, write: Write, *events: dict) -> "MutationPlan":
        self.writes.append(write)
        self.events.extend(events)
        return self


@dataclass
class _Snapshot:
    collection: str
    entity_id: str
    index: int
    prior: dict | None


@dataclass
class SyncState:
    sync_error: str | None = None
    failures: list[SyncFailure] = field(default_factory=list)
    committed: int = 0
    rolled_back: int = 0


class SyncEngine:
    def __init__(
        self,
        collections: Mapping[str, MirrorCollection],
        backend: Backend,
        on_applied: Callable[[], None] = lambda: None,
        state: SyncState | None = None,
    ):
        self.collections = collections
        self.backend = backend
        self.on_applied = on_applied
        self.state = state or SyncState()

    def new_id(self, collection: str) -> str:
        return self.backend.new_id(collection)

    async def execute(self, plan: MutationPlan) -> None:
        """Apply ``plan`` locally, then dispatch it. Returns before a remote commit settles."""
        if not plan.writes:
            self.on_applied()
            return
        snapshots = self._apply(plan)
        self.on_applied()
        logger.debug("applied %s locally (%d writes, %d events)", plan.label, len(plan.writes), len(plan.events))
        await self.backend.dispatch(plan, lambda exc: self._settle(plan, snapshots, exc))

    def _apply(self, plan: MutationPlan) -> list[_Snapshot]:
        # synchronous: nothing else runs between snapshot and apply
        snapshots = []
        for write in plan.writes:
            coll = self.collections[write.collection]
            i = coll.index_of(write.entity_id)
            prior = snapshot(coll.items[i]) if i != -1 else None
            snapshots.append(_Snapshot(write.collection, write.entity_id, i, prior))
            if write.after is None:
                if i != -1:
                    coll.remove(i)
            elif i == -1:
                coll.insert(snapshot(write.after), 0)
            else:
                coll.replace(i, snapshot(write.after))
        return snapshots

    def _settle(self, plan: MutationPlan, snapshots: list[_Snapshot], exc: BaseException | None) -> None:
        if exc is None:
            self.state.committed += 1
            self.state.sync_error = None
            return
        self._rollback(plan, snapshots, exc)

    def _rollback(self, plan: MutationPlan, snapshots: list[_Snapshot], exc: BaseException) -> None:
        for snap in reversed(snapshots):
            coll = self.collections[snap.collection]
            i = coll.index_of(snap.entity_id)
            if snap.prior is None:
                if i != -1:
                    coll.remove(i)
            elif i == -1:
                coll.insert(snapshot(snap.prior), snap.index)
            else:
                coll.replace(i, snapshot(snap.prior))
        self.on_applied()
        failure = SyncFailure(plan.failure_message, label=plan.label, cause=exc)
        self.state.sync_error = failure.message
        self.state.failures.append(failure)
        self.state.rolled_back += 1

    async def drain(self) -> None:
        await self.backend.drain()
