from __future__ import annotations

import logging
from typing import Callable, List, Optional, Protocol

logger = logging.getLogger(__name__)

IdentityListener = Callable[[Optional[str]], None]


class IdentityProvider(Protocol):
    """An opaque user id, or None for a guest, plus change notifications."""

    @property
    def current(self) -> Optional[str]: ...

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]: ...


class StaticIdentity:
    """In-process identity holder; sign_in/sign_out stand in for an auth provider."""

    def __init__(self, user_id: Optional[str] = None) -> None:
        self._current = user_id or None
        self._listeners: List[IdentityListener] = []

    @property
    def current(self) -> Optional[str]:
        return self._current

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set(self, user_id: Optional[str]) -> None:
        user_id = user_id or None
        if user_id == self._current:
            return
        self._current = user_id
        logger.info("identity: now %s", user_id or "guest")
        for listener in list(self._listeners):
            listener(user_id)

    def sign_in(self, user_id: str) -> None:
        self.set(user_id)

    def sign_out(self) -> None:
        self.set(None)
