"""
Sync status shared by the reconciler and the task importer.

The host application renders a persistent indicator from these states.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)


class SyncState(Enum):
    """Current state of a sync channel."""

    OFFLINE = "offline"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


StateListener = Callable[[SyncState], None]


class StateBroadcaster:
    """Holds a SyncState and notifies listeners when it changes.

    Listeners are called immediately with the current state on
    subscription, then on every transition. Setting the same state twice
    does not notify again.
    """

    def __init__(self, initial: SyncState = SyncState.OFFLINE) -> None:
        self._state = initial
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> SyncState:
        return self._state

    def set(self, state: SyncState) -> None:
        if state == self._state:
            return
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Sync state listener failed")

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(self._state)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
