"""
Session context: everything one owner scope works against.

A ``Workspace`` holds the mirrored collections, the backend picked for the
current identity, the sync engine, and the user-visible status fields
(``error``, ``sync_error``, ``loading``, ``offline``). It follows the
identity context: when the owner scope changes it rebinds to the new scope's
mirror, picks the matching backend and reloads.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

import httpx
from sqlalchemy.exc import OperationalError

from bakeledger.errors import LedgerError
from bakeledger.services import rates
from bakeledger.services.backends import LocalBackend, RemoteBackend
from bakeledger.services.docstore import DocumentStore
from bakeledger.services.identity import Identity, IdentityContext
from bakeledger.services.mirror import (
    ENTITY_COLLECTIONS, EVENT_HISTORY, EXCHANGE_RATES, TRANSACTIONS,
    LocalMirrorStore, MirrorCollection, collection_key,
)
from bakeledger.services.sync import MutationPlan, SyncEngine, SyncState
from bakeledger.util.audit import AuditLogWriter

logger = logging.getLogger(__name__)


def _by_date_then_created(item: dict) -> tuple:
    return (item.get("date") or "", item.get("createdAt") or "")


def _by_date(item: dict) -> str:
    return item.get("date") or ""


SORT_KEYS: dict[str, Callable[[dict], Any]] = {
    TRANSACTIONS: _by_date_then_created,
    EXCHANGE_RATES: _by_date,
}


class Workspace:
    def __init__(
        self,
        identity: IdentityContext,
        docstore: DocumentStore,
        mirror_store: LocalMirrorStore,
        http: httpx.AsyncClient | None = None,
    ):
        self.identity = identity
        self.docstore = docstore
        self.mirror_store = mirror_store
        self.http = http

        self.error: str | None = None
        self.last_error: LedgerError | None = None
        self.loading = False
        self.offline = False
        self.current_daily_rate: dict | None = None
        # upstream rate responses, keyed by queried day; cleared on reload
        self.rate_cache: dict[str, dict] = {}

        # scope whose reload is in flight; a reload for another scope may run alongside
        self._loading_scope: str | None = None
        self._reload_task: asyncio.Task | None = None
        self._needs_reload = True
        self._bind()
        self._unsubscribe = identity.subscribe(self._on_identity)

    # -- binding -----------------------------------------------------------

    def _bind(self) -> None:
        self.scope = self.identity.scope
        self.collections = {
            name: MirrorCollection(self.mirror_store, collection_key(self.scope, name), SORT_KEYS.get(name))
            for name in ENTITY_COLLECTIONS
        }
        self.history_log = MirrorCollection(self.mirror_store, collection_key(self.scope, EVENT_HISTORY))
        self.audit = AuditLogWriter(self.identity, self.docstore, self.history_log)
        user: Identity | None = self.identity.current_user
        if user is not None:
            self.backend = RemoteBackend(user, self.docstore, self.audit)
        else:
            self.backend = LocalBackend(self.audit)
        self.sync_state = SyncState()
        self.engine = SyncEngine(self.collections, self.backend, self.refresh_derived, self.sync_state)
        self.rate_cache.clear()
        self.refresh_derived()
        logger.info("workspace bound to scope=%s (%s)", self.scope, "remote" if self.backend.remote else "local")

    def _on_identity(self, user: Identity | None, resolved: bool) -> None:
        if not resolved or self.identity.scope == self.scope:
            return
        self._bind()
        self._needs_reload = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._reload_task = loop.create_task(self.reload())

    # -- reads -------------------------------------------------------------

    @property
    def remote(self) -> bool:
        return self.backend.remote

    @property
    def sync_error(self) -> str | None:
        return self.sync_state.sync_error

    @property
    def failures(self):
        return self.sync_state.failures

    @property
    def pending(self) -> int:
        return getattr(self.backend, "pending", 0)

    def items(self, name: str) -> list[dict]:
        return self.collections[name].items

    def get(self, name: str, entity_id: str) -> dict | None:
        return self.collections[name].get(entity_id)

    def refresh_derived(self) -> None:
        self.current_daily_rate = rates.current_daily_rate(self)

    def new_id(self, collection: str) -> str:
        return self.engine.new_id(collection)

    async def execute(self, plan: MutationPlan) -> None:
        await self.engine.execute(plan)

    async def history(self, limit: int | None = None) -> list[dict]:
        return await self.backend.history(limit)

    # -- lifecycle ---------------------------------------------------------

    async def reload(self) -> bool:
        """
        Re-read every collection for the current scope.

        Returns False when a reload for the same scope is already running, or
        when the identity moved to another scope while reading; the new scope
        then has its own reload pending.
        """
        scope, backend = self.scope, self.backend
        if self._loading_scope == scope:
            logger.info("reload for scope=%s already running, skipped", scope)
            return False
        self._loading_scope = scope
        self.loading = True
        try:
            logger.info("reloading scope=%s", scope)
            data = await backend.load()
            if scope != self.scope:
                logger.info("scope changed from %s to %s during reload, result dropped", scope, self.scope)
                return False
            if data is None:
                for coll in self.collections.values():
                    coll.reload()
                self.history_log.reload()
            else:
                for name, docs in data.items():
                    self.collections[name].reset(docs)
            self.offline = False
        except OperationalError as exc:
            if scope != self.scope:
                return False
            logger.warning("document store unavailable, keeping cached data: %s", exc)
            self.offline = True
        finally:
            if self._loading_scope == scope:
                self._loading_scope = None
                self.loading = False
        self._needs_reload = False
        self.rate_cache.clear()
        self.refresh_derived()
        return True

    async def ready(self) -> "Workspace":
        if self._reload_task is not None and not self._reload_task.done():
            await self._reload_task
        if self._needs_reload:
            await self.reload()
        return self

    async def drain(self) -> None:
        """Wait for every dispatched batch to settle."""
        await self.engine.drain()

    async def close(self) -> None:
        await self.drain()
        self._unsubscribe()

    def status(self) -> dict:
        return {
            "scope": self.scope,
            "remote": self.remote,
            "loading": self.loading,
            "offline": self.offline,
            "error": self.error,
            "syncError": self.sync_error,
            "pending": self.pending,
            "committed": self.sync_state.committed,
            "rolledBack": self.sync_state.rolled_back,
        }


class WorkspaceRegistry:
    """One workspace per owner scope for the life of the process."""

    def __init__(self, docstore: DocumentStore, mirror_store: LocalMirrorStore, http: httpx.AsyncClient | None = None):
        self.docstore = docstore
        self.mirror_store = mirror_store
        self.http = http
        self._spaces: dict[str, Workspace] = {}

    def __len__(self) -> int:
        return len(self._spaces)

    async def get(self, user: Identity | None) -> Workspace:
        scope = user.id if user else "local"
        ws = self._spaces.get(scope)
        if ws is None:
            identity = IdentityContext()
            identity.resolve(user)
            ws = Workspace(identity, self.docstore, self.mirror_store, self.http)
            self._spaces[scope] = ws
        return await ws.ready()

    async def close(self) -> None:
        for ws in self._spaces.values():
            await ws.close()
        self._spaces.clear()
