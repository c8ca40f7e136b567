import asyncio
import logging
import random
import string
import time

from bakeledger.errors import ValidationError
from bakeledger.services.docstore import DocumentStore, WriteBatch
from bakeledger.services.identity import IdentityContext
from bakeledger.services.mirror import EVENT_HISTORY, MirrorCollection
from bakeledger.util.serialize import SERVER_TIMESTAMP, now_iso, sanitize

logger = logging.getLogger(__name__)

_RESERVED = ("id", "timestamp", "userId", "userName")


def local_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"{int(time.time() * 1000)}{suffix}"


class AuditLogWriter:
    """
    Appends event-history entries.

    Signed in: the entry is staged into the caller's batch (returned id is
    valid once the caller commits) or, without a batch, written on its own.
    Local-only: the entry is prepended to the mirror's history list.
    """

    def __init__(self, identity: IdentityContext, docstore: DocumentStore, local_log: MirrorCollection):
        self.identity = identity
        self.docstore = docstore
        self.local_log = local_log

    async def record(self, event: dict, batch: WriteBatch | None = None) -> str:
        if not event.get("eventType") or not event.get("entityType"):
            raise ValidationError("eventType and entityType are required for history entries.")

        details = sanitize({k: v for k, v in event.items() if k not in _RESERVED})
        user = self.identity.current_user
        user_name = self.identity.user_name

        if user is not None:
            ref = self.docstore.collection(user.id, EVENT_HISTORY).doc()
            entry = {**details, "timestamp": SERVER_TIMESTAMP, "userId": user.id, "userName": user_name}
            if batch is not None:
                batch.set(ref, entry)
                return ref.id
            own = self.docstore.batch()
            own.set(ref, entry)
            await asyncio.to_thread(own.commit)
            logger.debug("history entry %s written for %s", ref.id, details.get("eventType"))
            return ref.id

        entry_id = local_id()
        self.local_log.insert({**details, "id": entry_id, "timestamp": now_iso(), "userId": None, "userName": user_name})
        return entry_id
