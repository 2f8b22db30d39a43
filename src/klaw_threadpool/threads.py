"""Execution units: one task with a status lifecycle and an event stream.

Every unit moves READY -> ACTIVE -> SUCCESS | ERROR and emits, in order:

- ``init`` when it starts
- ``status(status, new, old, payload)`` on every transition
- exactly one of ``message(value)``, ``error(exc)`` or ``messageerror(exc)``
- ``exit(code)`` last, 0 on SUCCESS and 1 otherwise

``messageerror`` reports failures of the channel rather than of the task:
a response that could not be decoded, a dead transport, or a listener that
raised while the unit was settling.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Iterable
from typing import Any, Literal

import aiologic
import anyio
from anyio.abc import TaskGroup

from klaw_threadpool._logging import get_logger
from klaw_threadpool.errors import CancelledError, ChannelError
from klaw_threadpool.events import EventEmitter
from klaw_threadpool.protocol import MessageOptions, worker_call
from klaw_threadpool.status import Status, ThreadStatus
from klaw_threadpool.transports import ThreadTransport
from klaw_threadpool.transports.protocols import Transport, TransportHandle
from klaw_threadpool.wire import WorkerMessage, encode_message

__all__ = [
    'BaseThread',
    'ErrorChannel',
    'FunctionThread',
    'WorkerThread',
]

logger = get_logger(__name__)

ErrorChannel = Literal['error', 'messageerror']


class BaseThread(EventEmitter):
    """Lifecycle shared by every execution unit.

    Subclasses implement ``_work()``. Awaiting a unit (or ``wait()``)
    returns its message or raises its error, like klaw's ``TaskHandle``.

    Attributes:
        status: Current lifecycle flag with derived predicates.
        message: The value produced on success.
        error: The exception that settled the unit as ERROR.
        meta: Caller data carried alongside the unit.
        exit_code: 0 on SUCCESS, 1 on ERROR, None until the unit exits.
    """

    def __init__(self, meta: Any = None) -> None:
        super().__init__()
        self.status = ThreadStatus(Status.INIT)
        self.message: Any = None
        self.error: BaseException | None = None
        self.meta = meta
        self.exit_code: int | None = None
        self._exited = aiologic.Event()
        self._set_status(Status.READY)

    def __repr__(self) -> str:
        return f'<{type(self).__name__} {self.status!r}>'

    def _set_status(self, new: Status, payload: Any = None) -> None:
        old = self.status.value
        self.status.value = new
        self.emit('status', self.status, new, old, payload)

    async def _work(self) -> Any:
        raise NotImplementedError

    # --- Lifecycle ---

    def _begin(self) -> bool:
        """Move a READY unit to ACTIVE.

        Returns:
            False if an ``init`` or ``status`` listener raised; the unit has
            then already settled on ``messageerror`` and exited.
        """
        try:
            self.emit('init')
            self._set_status(Status.ACTIVE)
        except Exception as exc:
            self._settle_error(exc, 'messageerror')
            self._exit()
            return False
        logger.debug('thread.start', thread=type(self).__name__)
        return True

    def start(self, task_group: TaskGroup) -> bool:
        """Start the unit in ``task_group``.

        Returns:
            False if the unit was not READY (already started).
        """
        if not self.status.READY:
            return False
        if self._begin():
            task_group.start_soon(self._execute, name=repr(self))
        return True

    async def run(self) -> Any:
        """Start the unit in the current task and wait for it.

        Returns:
            The message of the unit.

        Raises:
            Exception: The error of the unit.
        """
        if self.status.READY and self._begin():
            await self._execute()
        return await self.wait()

    async def _execute(self) -> None:
        try:
            try:
                value = await self._work()
            except anyio.get_cancelled_exc_class():
                self._settle_error(CancelledError('owning task group was cancelled'), 'error')
                raise
            except ChannelError as exc:
                self._settle_error(exc, 'messageerror')
            except Exception as exc:
                self._settle_error(exc, 'error')
            else:
                self._settle_success(value)
        finally:
            self._exit()

    def _settle_success(self, value: Any) -> None:
        self.message = value
        try:
            self._set_status(Status.SUCCESS, value)
            self.emit('message', value)
        except Exception as exc:
            self._settle_error(exc, 'messageerror')

    def _settle_error(self, exc: BaseException, channel: ErrorChannel) -> None:
        # error is written once per run; later listener failures only go to messageerror.
        self.error = exc
        try:
            self._set_status(Status.ERROR, exc)
            self.emit(channel, exc)
        except Exception as listener_exc:
            if channel == 'messageerror':
                logger.exception('thread.listener_failed', thread=type(self).__name__, channel=channel)
            else:
                self._report_listener_failure(listener_exc)

    def _report_listener_failure(self, exc: Exception) -> None:
        try:
            self.emit('messageerror', exc)
        except Exception:
            logger.exception('thread.listener_failed', thread=type(self).__name__, channel='messageerror')

    def _exit(self) -> None:
        self.exit_code = 0 if self.status.SUCCESS else 1
        logger.debug('thread.exit', thread=type(self).__name__, exit_code=self.exit_code)
        try:
            self.emit('exit', self.exit_code)
        except Exception:
            logger.exception('thread.listener_failed', thread=type(self).__name__, channel='exit')
        finally:
            self._exited.set()

    @property
    def done(self) -> bool:
        return self._exited.is_set()

    async def wait(self) -> Any:
        """Wait for the unit to exit.

        Returns:
            The message of the unit.

        Raises:
            Exception: The error of the unit.
        """
        await self._exited
        if self.error is not None:
            raise self.error
        return self.message

    def __await__(self) -> Any:
        return self.wait().__await__()

    # --- Promise-like subscriptions ---

    def then(self, callback: Callable[[Any], Any]) -> BaseThread:
        """Call ``callback(message)`` on success."""
        self.on('message', callback)
        return self

    def catch(self, callback: Callable[[BaseException, ErrorChannel], Any]) -> BaseThread:
        """Call ``callback(error, channel)`` on either error channel."""
        self.on('error', lambda exc: callback(exc, 'error'))
        self.on('messageerror', lambda exc: callback(exc, 'messageerror'))
        return self

    def finally_(self, callback: Callable[[], Any]) -> BaseThread:
        """Call ``callback()`` when the unit exits."""
        self.on('exit', lambda _code: callback())
        return self


class FunctionThread(BaseThread):
    """Runs a zero-argument callable.

    Coroutine functions run on the event loop. Plain callables run on an OS
    worker thread through ``anyio.to_thread.run_sync``; if one returns an
    awaitable, it is awaited on the loop.

    Example:
        ```python
        async with anyio.create_task_group() as tg:
            thread = FunctionThread(lambda: sum(range(10)))
            thread.then(print)
            thread.start(tg)
        ```
    """

    def __init__(
        self,
        work: Callable[[], Any],
        meta: Any = None,
        limiter: anyio.CapacityLimiter | None = None,
    ) -> None:
        self.work = work
        self.limiter = limiter
        super().__init__(meta)

    async def _work(self) -> Any:
        if inspect.iscoroutinefunction(self.work):
            return await self.work()
        result = await anyio.to_thread.run_sync(self.work, limiter=self.limiter)
        if inspect.isawaitable(result):
            return await result
        return result


class WorkerThread(BaseThread):
    """Runs one export of a worker module over an ephemeral transport.

    Starting the unit creates the transport with the full request as its
    startup payload, emits ``online`` and waits for the single reply.
    """

    def __init__(
        self,
        filename: str,
        method: str | None = None,
        property: str | None = None,  # noqa: A002
        args: Iterable[Any] = (),
        meta: Any = None,
        transport: Transport = ThreadTransport,
        message_options: MessageOptions | None = None,
    ) -> None:
        self.request = WorkerMessage(filename=filename, method=method, property=property, args=tuple(args))
        self.transport = transport
        self.message_options = message_options or MessageOptions()
        self._worker: TransportHandle | None = None
        super().__init__(meta)

    @property
    def worker(self) -> TransportHandle | None:
        """The transport running this unit, once started."""
        return self._worker

    async def _work(self) -> Any:
        self._worker = self.transport(self.request.filename, encode_message(self.request))
        try:
            self.emit('online')
        except Exception:
            self._worker.terminate()
            raise
        return await worker_call(self._worker, None, self.message_options)

