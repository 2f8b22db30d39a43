"""ThreadTransport: a worker module served from a dedicated OS thread."""

from __future__ import annotations

import threading
from typing import Any, Final

import aiologic

from klaw_threadpool._logging import get_logger
from klaw_threadpool.errors import TransportClosedError, TransportError
from klaw_threadpool.transports._worker import serve

__all__ = ['ThreadTransport']

logger = get_logger(__name__)

_CLOSED: Final = object()


class _Crashed:
    __slots__ = ('reason',)

    def __init__(self, reason: str) -> None:
        self.reason = reason


class ThreadTransport:
    """Runs the worker loop on a daemon thread.

    Both directions use unbounded ``aiologic.Queue`` instances: the worker
    thread blocks with ``green_get`` while the event loop awaits
    ``async_get``. A Python thread cannot be killed, so ``terminate()``
    lets the worker finish its current call, then stops it; the caller is
    released immediately.

    Attributes:
        name: Transport name used in errors and logs.
        source: The module the worker serves.
    """

    __slots__ = ('_closed', '_inbox', '_outbox', '_thread', 'name', 'source')

    def __init__(self, source: str, data: bytes, **options: Any) -> None:
        self.name = 'thread'
        self.source = source
        self._closed = False
        self._inbox: aiologic.Queue = aiologic.Queue()
        self._outbox: aiologic.Queue = aiologic.Queue()
        self._thread = threading.Thread(
            target=self._run,
            args=(data,),
            name=options.get('thread_name', f'klaw-threadpool:{source}'),
            daemon=options.get('daemon', True),
        )
        self._thread.start()
        logger.debug('transport.start', transport=self.name, source=source)

    def _run(self, data: bytes) -> None:
        try:
            serve(data, self._inbox.green_get, self._outbox.green_put)
        except Exception as exc:
            logger.exception('transport.crash', transport=self.name, source=self.source)
            self._outbox.green_put(_Crashed(f'{type(exc).__name__}: {exc}'))

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def thread(self) -> threading.Thread:
        return self._thread

    def send(self, frame: bytes) -> None:
        if self._closed:
            raise TransportClosedError(self.name)
        self._inbox.green_put(frame)

    async def receive(self) -> bytes:
        if self._closed:
            raise TransportClosedError(self.name)

        item = await self._outbox.async_get()

        if self._closed or item is _CLOSED:
            raise TransportClosedError(self.name)
        if isinstance(item, _Crashed):
            self._closed = True
            raise TransportError(item.reason, self.name)
        return item

    def terminate(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._inbox.green_put(None)
        self._outbox.green_put(_CLOSED)
        logger.debug('transport.terminate', transport=self.name, source=self.source)
