"""ProcessTransport: a worker module served from a child process."""

from __future__ import annotations

import multiprocessing
import threading
from multiprocessing.connection import Connection
from typing import Any, Final

import aiologic

from klaw_threadpool._logging import get_logger
from klaw_threadpool.errors import TransportClosedError, TransportError
from klaw_threadpool.transports._worker import serve

__all__ = ['ProcessTransport']

logger = get_logger(__name__)

_CLOSED: Final = object()


class _Crashed:
    __slots__ = ('reason',)

    def __init__(self, reason: str) -> None:
        self.reason = reason


def _process_main(conn: Connection, data: bytes) -> None:
    """Child entry point: serve over the pipe until the parent closes it."""

    def recv() -> bytes | None:
        try:
            return conn.recv_bytes()
        except EOFError:
            return None

    try:
        serve(data, recv, conn.send_bytes)
    finally:
        conn.close()


class ProcessTransport:
    """Runs the worker loop in a ``multiprocessing`` child process.

    Frames cross a duplex Pipe. A pump thread in the parent forwards replies
    into an ``aiologic.Queue`` that the event loop awaits; it also reports
    the child's death as a transport error. ``terminate()`` kills the child.

    Attributes:
        name: Transport name used in errors and logs.
        source: The module the worker serves.
    """

    __slots__ = ('_closed', '_conn', '_outbox', '_process', '_pump', 'name', 'source')

    def __init__(self, source: str, data: bytes, **options: Any) -> None:
        self.name = 'process'
        self.source = source
        self._closed = False
        self._outbox: aiologic.Queue = aiologic.Queue()

        ctx = multiprocessing.get_context(options.get('start_method', 'spawn'))
        self._conn, child_conn = ctx.Pipe(duplex=True)
        self._process = ctx.Process(
            target=_process_main,
            args=(child_conn, data),
            name=f'klaw-threadpool:{source}',
            daemon=options.get('daemon', True),
        )
        self._process.start()
        child_conn.close()

        self._pump = threading.Thread(target=self._pump_replies, name=f'klaw-threadpool-pump:{source}', daemon=True)
        self._pump.start()
        logger.debug('transport.start', transport=self.name, source=source, pid=self._process.pid)

    def _pump_replies(self) -> None:
        while True:
            try:
                frame = self._conn.recv_bytes()
            except (EOFError, OSError):
                break
            self._outbox.green_put(frame)

        self._conn.close()
        self._process.join()
        if not self._closed:
            self._outbox.green_put(_Crashed(f'worker process exited with code {self._process.exitcode}'))

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def process(self) -> multiprocessing.process.BaseProcess:
        return self._process

    def send(self, frame: bytes) -> None:
        if self._closed:
            raise TransportClosedError(self.name)
        try:
            self._conn.send_bytes(frame)
        except OSError as exc:
            raise TransportError(str(exc), self.name) from exc

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
        self._outbox.green_put(_CLOSED)
        self._process.terminate()
        logger.debug('transport.terminate', transport=self.name, source=self.source)
