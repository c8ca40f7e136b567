"""
Identity context: who is signed in, and whether that is known yet.

The workspace subscribes to transitions of ``auth_resolved`` and to changes
of ``current_user.id`` to pick its backend and reload its collections.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

LOCAL_SCOPE = "local"
LOCAL_SYSTEM_NAME = "local system"


@dataclass(frozen=True)
class Identity:
    id: str
    display_name: Optional[str] = None
    email: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.email or LOCAL_SYSTEM_NAME


Listener = Callable[[Optional[Identity], bool], None]


class IdentityContext:
    def __init__(self, user: Identity | None = None, resolved: bool = False):
        self._user = user
        self._resolved = resolved
        self._listeners: list[Listener] = []

    @property
    def current_user(self) -> Identity | None:
        return self._user

    @property
    def auth_resolved(self) -> bool:
        return self._resolved

    @property
    def scope(self) -> str:
        return self._user.id if self._user else LOCAL_SCOPE

    @property
    def user_name(self) -> str:
        return self._user.label if self._user else LOCAL_SYSTEM_NAME

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return _unsubscribe

    def begin(self) -> None:
        """Auth is being (re)checked; the current user is not trustworthy yet."""
        if not self._resolved:
            return
        self._resolved = False
        self._notify()

    def resolve(self, user: Identity | None) -> None:
        """Auth finished: ``user`` is signed in, or None for local-only use."""
        changed = (not self._resolved) or (self.scope != (user.id if user else LOCAL_SCOPE))
        self._user = user
        self._resolved = True
        if changed:
            logger.info("identity resolved: scope=%s", self.scope)
            self._notify()

    def sign_out(self) -> None:
        self.resolve(None)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._user, self._resolved)
