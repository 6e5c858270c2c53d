"""
Synchronous observer registry.

Callbacks run on the service loop, in subscription order, before emit()
returns. Observers must not start long-running work from a callback.
"""

import logging
from typing import Callable, List

logger = logging.getLogger(__name__)


class EventHook:
    """
    Multicast notification.

    Usage:
        hook = EventHook('on_connection_changed')
        hook.subscribe(lambda connected: print(connected))
        hook.emit(True)
    """

    def __init__(self, name: str):
        self.name = name
        self._callbacks: List[Callable] = []

    def subscribe(self, callback: Callable) -> Callable:
        """
        Register a callback (ignored if already registered).

        Returns:
            The callback, so this can be used as a decorator
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)
        return callback

    def unsubscribe(self, callback: Callable) -> bool:
        """
        Remove a callback.

        Returns:
            True if the callback was registered
        """
        try:
            self._callbacks.remove(callback)
            return True
        except ValueError:
            return False

    def emit(self, *args) -> None:
        """Call every subscriber with args. A failing subscriber is logged and skipped."""
        for callback in list(self._callbacks):
            try:
                callback(*args)
            except Exception:
                logger.exception(f"Observer of {self.name} raised")

    def clear(self) -> None:
        self._callbacks.clear()

    def __len__(self) -> int:
        return len(self._callbacks)
