"""Minimal signal object for change notifications."""

from __future__ import annotations

from typing import Callable, List


class Event:
    """Ordered list of callbacks invoked on ``emit``.

    Mirrors the ``signal.connect(slot)`` / ``signal.emit(...)`` convention of
    Qt signals without requiring an event loop. Callbacks run synchronously in
    connection order.
    """

    def __init__(self, name: str = "event"):
        self.name = name
        self._callbacks: List[Callable] = []

    def connect(self, callback: Callable) -> None:
        self._callbacks.append(callback)

    def disconnect(self, callback: Callable) -> None:
        """Remove a callback. Disconnecting an unknown callback is an error."""
        try:
            self._callbacks.remove(callback)
        except ValueError:
            raise ValueError(f"Callback {callback!r} is not connected to {self.name}") from None

    def emit(self, *args, **kwargs) -> None:
        # Copy so callbacks may disconnect themselves
        for callback in list(self._callbacks):
            callback(*args, **kwargs)

    def __len__(self) -> int:
        return len(self._callbacks)
