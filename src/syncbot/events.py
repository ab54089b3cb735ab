"""Minimal publish/subscribe hub for lifecycle notifications."""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Any, Callable

Listener = Callable[..., Any]


class EventEmitter:
    """Broadcast callback lists keyed by event name.

    Listeners run synchronously on the emitting thread, in registration
    order.  Exceptions raised by a listener propagate to ``emit``.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._any: list[Listener] = []
        self._lock = threading.Lock()

    def on(self, event: str, callback: Listener) -> Listener:
        with self._lock:
            self._listeners[event].append(callback)
        return callback

    def off(self, event: str, callback: Listener) -> None:
        with self._lock:
            listeners = self._listeners.get(event, [])
            if callback in listeners:
                listeners.remove(callback)

    def on_any(self, callback: Listener) -> Listener:
        """Register *callback* for every event; it receives ``(event, *args)``."""
        with self._lock:
            self._any.append(callback)
        return callback

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener for *event*.  Returns whether any listener ran."""
        with self._lock:
            listeners = list(self._listeners.get(event, ()))
            catch_all = list(self._any)
        for callback in listeners:
            callback(*args)
        for callback in catch_all:
            callback(event, *args)
        return bool(listeners or catch_all)
