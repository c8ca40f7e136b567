import functools
import logging
from typing import Any

from bakeledger.errors import LedgerError

logger = logging.getLogger(__name__)


def operation(failed: Any = None):
    """
    Boundary for a domain operation taking a workspace first: a
    ``LedgerError`` raised inside becomes ``failed`` plus a message on
    ``ws.error``.
    """
    def deco(fn):
        @functools.wraps(fn)
        async def wrapper(ws, *args, **kwargs):
            ws.error = None
            try:
                return await fn(ws, *args, **kwargs)
            except LedgerError as exc:
                logger.info("%s rejected: %s", fn.__name__, exc.message)
                ws.error = exc.message
                ws.last_error = exc
                return failed
        return wrapper
    return deco
