"""Per-instance observer lists and fire-once subscriptions."""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any

__all__ = ['EventEmitter', 'OneShot']

Listener = Callable[..., Any]


class _Registration:
    __slots__ = ('fn', 'once')

    def __init__(self, fn: Listener, once: bool) -> None:
        self.fn = fn
        self.once = once


class EventEmitter:
    """Synchronous observer registry keyed by event name.

    Listeners run in registration order on the emitting call stack. Each
    ``emit`` works on a snapshot, so listeners added or removed during an
    emit only affect later emits. Exceptions raised by a listener propagate
    to the caller of ``emit``.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[_Registration]] = {}

    def on(self, event: str, fn: Listener) -> EventEmitter:
        """Register a persistent listener."""
        self._listeners.setdefault(event, []).append(_Registration(fn, once=False))
        return self

    def once(self, event: str, fn: Listener) -> EventEmitter:
        """Register a listener that is removed before its first call."""
        self._listeners.setdefault(event, []).append(_Registration(fn, once=True))
        return self

    def off(self, event: str, fn: Listener) -> EventEmitter:
        """Remove the most recently added registration of ``fn`` for ``event``."""
        registrations = self._listeners.get(event)
        if not registrations:
            return self
        for i in range(len(registrations) - 1, -1, -1):
            if registrations[i].fn is fn or registrations[i].fn == fn:
                del registrations[i]
                break
        if not registrations:
            del self._listeners[event]
        return self

    def remove_all_listeners(self, event: str | None = None) -> EventEmitter:
        """Remove every listener, or every listener of one event."""
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)
        return self

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener of ``event`` with ``args``.

        Returns:
            True if the event had listeners.
        """
        registrations = self._listeners.get(event)
        if not registrations:
            return False
        snapshot = list(registrations)
        for registration in snapshot:
            if registration.once:
                self._discard(event, registration)
            registration.fn(*args)
        return True

    def _discard(self, event: str, registration: _Registration) -> None:
        registrations = self._listeners.get(event)
        if registrations and registration in registrations:
            registrations.remove(registration)
            if not registrations:
                del self._listeners[event]


class _OneShotState(Enum):
    PENDING = 'pending'
    FIRED = 'fired'


class OneShot:
    """Fire-once subscription spanning several events of one emitter.

    Whichever subscribed event arrives first detaches every listener of this
    subscription and then runs its handler. Later events are ignored.

    Example:
        ```python
        shot = OneShot(pool)
        shot.subscribe('worker.message', lambda data, thread: callback(data, thread))
        shot.subscribe('complete', lambda: callback(None, None))
        ```
    """

    __slots__ = ('_emitter', '_listeners', '_state')

    def __init__(self, emitter: EventEmitter) -> None:
        self._emitter = emitter
        self._listeners: list[tuple[str, Listener]] = []
        self._state = _OneShotState.PENDING

    @property
    def fired(self) -> bool:
        return self._state is _OneShotState.FIRED

    def subscribe(self, event: str, handler: Listener) -> OneShot:
        def listener(*args: Any) -> None:
            if self._state is _OneShotState.FIRED:
                return
            self._state = _OneShotState.FIRED
            self.cancel()
            handler(*args)

        self._listeners.append((event, listener))
        self._emitter.on(event, listener)
        return self

    def cancel(self) -> None:
        """Detach all listeners of this subscription."""
        for event, listener in self._listeners:
            self._emitter.off(event, listener)
        self._listeners.clear()
