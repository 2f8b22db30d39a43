"""Pools: schedule execution units through a TaskPool and rebroadcast their events.

A pool owns an anyio task group for its lifetime. Units added before the
pool is entered wait in the queue and start on entry:

    >>> async with FunctionPool(pool_size=2) as pool:
    ...     pool.all_settled(lambda threads: print(len(threads)))
    ...     for n in range(5):
    ...         pool.add_task(functools.partial(work, n))
    5

Events of every started unit are re-emitted on the pool as ``worker.init``,
``worker.status``, ``worker.message``, ``worker.messageerror``,
``worker.error`` and ``worker.exit`` with the unit as the last argument;
``complete`` fires once per drain.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from types import TracebackType
from typing import Any, Generic, TypeVar

import aiologic
import anyio
from anyio.abc import TaskGroup

from klaw_threadpool._config import get_config
from klaw_threadpool._logging import get_logger, log_context
from klaw_threadpool.errors import AggregateError
from klaw_threadpool.events import EventEmitter, OneShot
from klaw_threadpool.protocol import MessageOptions
from klaw_threadpool.resources import ResourceOracle, SystemInfo, get_monitor
from klaw_threadpool.task_pool import STATUS_ALL, StatusType, TaskPool
from klaw_threadpool.threads import BaseThread, ErrorChannel, FunctionThread, WorkerThread
from klaw_threadpool.transports import get_transport
from klaw_threadpool.transports.protocols import Transport

__all__ = ['BasePool', 'FunctionPool', 'WorkerPool']

logger = get_logger(__name__)

U = TypeVar('U', bound=BaseThread)


class BasePool(EventEmitter, Generic[U]):
    """Admission-controlled scheduler for execution units.

    On every tick (timer ping, new task, or a unit exiting) the pool starts
    queued units while it has free slots and the resource oracle reports a
    CPU below ``max_thread_threshold``. One unit's failure never stops the
    others.

    Args:
        pool_size: Maximum concurrently active units (default from config).
        ping_interval: Seconds between scheduling ticks (default from config).
        max_thread_threshold: CPU percent above which no unit starts.
        monitor: Resource oracle polled before each tick.
    """

    def __init__(
        self,
        pool_size: int | None = None,
        ping_interval: float | None = None,
        max_thread_threshold: float | None = None,
        monitor: ResourceOracle | None = None,
    ) -> None:
        super().__init__()
        config = get_config()
        self._pool: TaskPool[U] = TaskPool(emitter=self._on_pool_event)
        self.pool_size = config.pool_size if pool_size is None else pool_size
        self.ping_interval = config.ping_interval if ping_interval is None else ping_interval
        if max_thread_threshold is None:
            max_thread_threshold = config.max_thread_threshold
        self.max_thread_threshold = max_thread_threshold
        self._monitor: ResourceOracle = monitor if monitor is not None else get_monitor()
        self._task_group: TaskGroup | None = None
        self._task_group_cm: Any = None
        self._drained = aiologic.Event()
        self._drained.set()
        self._ticking = False
        self._started = 0
        self._log_name = f'{type(self).__name__}-{id(self):x}'

    # --- Context management ---

    async def __aenter__(self) -> BasePool[U]:
        self._task_group_cm = anyio.create_task_group()
        self._task_group = await self._task_group_cm.__aenter__()
        self._pool.task_group = self._task_group
        if self._pool.status('queued'):
            self._run_worker()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        cm, self._task_group_cm = self._task_group_cm, None
        if exc_type is not None:
            self._task_group.cancel_scope.cancel()
        try:
            # The timer stops itself once the queue drains, which lets the group exit.
            return await cm.__aexit__(exc_type, exc_val, exc_tb)
        finally:
            self._pool._stop_pinging()
            self._pool.task_group = None
            self._task_group = None

    async def join(self) -> None:
        """Wait until every unit added so far has exited and ``complete`` fired."""
        while not self._drained.is_set():
            await self._drained

    # --- Settings ---

    @property
    def pool_size(self) -> int:
        return self._pool.pool_size

    @pool_size.setter
    def pool_size(self, value: int) -> None:
        self._pool.pool_size = max(int(value), 1)

    @property
    def ping_interval(self) -> float:
        return self._pool.ping_interval

    @ping_interval.setter
    def ping_interval(self, value: float) -> None:
        self._pool.ping_interval = max(value, 0.001)

    @property
    def system(self) -> SystemInfo:
        """Hardware summary of the host."""
        return self._monitor.system

    # --- Status ---

    def status(
        self,
        fields: str | Sequence[str] = STATUS_ALL,
        format: str | int = StatusType.COUNT,  # noqa: A002
    ) -> Any:
        """Project the pool's buckets; see ``TaskPool.status``."""
        return self._pool.status(fields, format)  # type: ignore[arg-type]

    def is_completed(self, emit: bool = False) -> bool:
        return self._pool.is_completed(emit)

    def has_available_thread(self) -> bool:
        """Whether a slot is free and the host is not saturated."""
        return self._pool.has_available_slot() and self._monitor.is_any_thread_below(self.max_thread_threshold)

    # --- Scheduling ---

    def _enqueue(self, thread: U) -> U:
        self._pool.enqueue(thread)
        if self._drained.is_set():
            self._drained = aiologic.Event()
        self._run_worker()
        return thread

    def _on_pool_event(self, event: str) -> None:
        if event == 'ping':
            self._run_worker()
        elif event == 'complete':
            try:
                self.emit('complete')
            finally:
                self._drained.set()
        else:
            self.emit(event)

    def _run_worker(self) -> None:
        # A unit can exit synchronously inside start(); its exit tick is folded into this one.
        if self._ticking or self._task_group is None or not self._pool.is_ready():
            return
        if not self._monitor.is_any_thread_below(self.max_thread_threshold):
            return

        self._ticking = True
        try:
            self._start_ready()
        finally:
            self._ticking = False

    def _start_ready(self) -> None:
        skipped: set[U] = set()
        while (thread := self._pool.next()) is not None:
            if thread.done:
                # Started and finished outside the pool.
                self._pool.complete(thread)
                continue
            if not thread.status.READY:
                # Started outside the pool and still running; put it back once per tick.
                self._pool.enqueue(thread, check=True)
                if thread in skipped:
                    return
                skipped.add(thread)
                continue

            self._wire(thread)
            self._started += 1
            with log_context(pool=self._log_name, unit=self._started):
                logger.debug('pool.tick', thread=repr(thread), active=self._pool.status('active'))
                thread.start(self._task_group)

    def _wire(self, thread: U) -> None:
        thread.on('init', lambda: self.emit('worker.init', thread))
        thread.on(
            'status',
            lambda status, new, old, payload: self.emit('worker.status', status, new, old, payload, thread),
        )
        thread.on('message', lambda data: self.emit('worker.message', data, thread))
        thread.on('messageerror', lambda exc: self.emit('worker.messageerror', exc, thread))
        thread.on('error', lambda exc: self.emit('worker.error', exc, thread))

        def on_exit(code: int) -> None:
            self._pool.complete(thread)
            try:
                self.emit('worker.exit', code, thread)
            finally:
                self._run_worker()

        thread.on('exit', on_exit)

    # --- Combinators ---

    def then(self, callback: Callable[[Any, U], Any]) -> BasePool[U]:
        """Call ``callback(message, thread)`` on every success."""
        self.on('worker.message', callback)
        return self

    def catch(self, callback: Callable[[BaseException, ErrorChannel, U], Any]) -> BasePool[U]:
        """Call ``callback(error, channel, thread)`` on every failure."""
        self.on('worker.error', lambda exc, thread: callback(exc, 'error', thread))
        self.on('worker.messageerror', lambda exc, thread: callback(exc, 'messageerror', thread))
        return self

    def finally_(self, callback: Callable[[int, U], Any]) -> BasePool[U]:
        """Call ``callback(exit_code, thread)`` whenever a unit exits."""
        self.on('worker.exit', callback)
        return self

    def all_settled(self, callback: Callable[[list[U]], Any]) -> BasePool[U]:
        """Call ``callback(threads)`` with every completed unit, once per drain."""
        self.on('complete', lambda: callback(self._pool.status('completed', StatusType.RAW)))
        return self

    def all(self, callback: Callable[[list[U] | BaseException], Any]) -> BasePool[U]:
        """Call ``callback`` once: with the completed units, or the first error.

        Example:
            ```python
            pool.all(lambda result: print('failed' if isinstance(result, BaseException) else result))
            ```
        """
        shot = OneShot(self)
        shot.subscribe('worker.error', lambda exc, _thread: callback(exc))
        shot.subscribe('worker.messageerror', lambda exc, _thread: callback(exc))
        shot.subscribe('complete', lambda: callback(self._pool.status('completed', StatusType.RAW)))
        return self

    def any(self, callback: Callable[[Any, U | None], Any]) -> BasePool[U]:
        """Call ``callback`` once: with the first success and its unit.

        If the pool drains without a success, the callback receives an
        ``AggregateError`` of every unit's error and None.
        """

        def on_complete() -> None:
            threads: list[U] = self._pool.status('completed', StatusType.RAW)
            errors = [thread.error for thread in threads if thread.error is not None]
            callback(AggregateError(errors), None)

        shot = OneShot(self)
        shot.subscribe('worker.message', callback)
        shot.subscribe('complete', on_complete)
        return self

    def race(self, callback: Callable[[Any, U], Any]) -> BasePool[U]:
        """Call ``callback(result_or_error, thread)`` for the first unit to settle."""
        shot = OneShot(self)
        for event in ('worker.message', 'worker.error', 'worker.messageerror'):
            shot.subscribe(event, callback)
        return self


class FunctionPool(BasePool[FunctionThread]):
    """Pool of ``FunctionThread`` units.

    Example:
        ```python
        async with FunctionPool(pool_size=4) as pool:
            pool.then(lambda value, thread: print(thread.meta, value))
            for url in urls:
                pool.add_task(functools.partial(fetch, url), meta=url)
        ```
    """

    def __init__(
        self,
        pool_size: int | None = None,
        ping_interval: float | None = None,
        max_thread_threshold: float | None = None,
        monitor: ResourceOracle | None = None,
        limiter: anyio.CapacityLimiter | None = None,
    ) -> None:
        super().__init__(pool_size, ping_interval, max_thread_threshold, monitor)
        self.limiter = limiter

    def add_task(self, work: Callable[[], Any], meta: Any = None) -> FunctionThread:
        """Queue ``work`` and try to start it right away.

        Listeners attached to the returned unit after it settled do not see
        past events.
        """
        return self._enqueue(FunctionThread(work, meta=meta, limiter=self.limiter))


class WorkerPool(BasePool[WorkerThread]):
    """Pool of ``WorkerThread`` units running exports of one worker module.

    Besides the standard channels it rebroadcasts ``worker.online`` when a
    unit's transport comes up.

    Args:
        filename: Dotted module name or ``.py`` path of the worker module.
        transport: Transport factory (default from config).
        message_options: Per-call options shared by every unit.
    """

    def __init__(
        self,
        filename: str,
        transport: Transport | None = None,
        message_options: MessageOptions | None = None,
        pool_size: int | None = None,
        ping_interval: float | None = None,
        max_thread_threshold: float | None = None,
        monitor: ResourceOracle | None = None,
    ) -> None:
        super().__init__(pool_size, ping_interval, max_thread_threshold, monitor)
        self.filename = filename
        self.transport = transport if transport is not None else get_transport()
        self.message_options = message_options or MessageOptions(timeout=get_config().timeout)

    def _wire(self, thread: WorkerThread) -> None:
        thread.on('online', lambda: self.emit('worker.online', thread))
        super()._wire(thread)

    def add_task(self, method: str, *args: Any, meta: Any = None) -> WorkerThread:
        """Queue a call of ``method(*args)`` in the worker module."""
        thread = WorkerThread(
            self.filename,
            method=method,
            args=args,
            meta=meta,
            transport=self.transport,
            message_options=self.message_options,
        )
        return self._enqueue(thread)

    def add_property_task(self, name: str, meta: Any = None) -> WorkerThread:
        """Queue a read of the module attribute ``name``."""
        thread = WorkerThread(
            self.filename,
            property=name,
            meta=meta,
            transport=self.transport,
            message_options=self.message_options,
        )
        return self._enqueue(thread)
