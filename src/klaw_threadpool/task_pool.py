"""TaskPool: admission-controlled queue with queued/active/completed buckets."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Hashable, Sequence
from decimal import ROUND_HALF_UP, Decimal
from types import TracebackType
from typing import Any, Final, Generic, Literal, TypeVar

import anyio
from anyio.abc import TaskGroup

from klaw_threadpool._logging import get_logger
from klaw_threadpool.errors import InvalidStatusFieldError

__all__ = [
    'STATUS_ALL',
    'STATUS_FIELDS',
    'StatusType',
    'TaskPool',
    'round_half_away',
]

logger = get_logger(__name__)

STATUS_ALL: Final = '*'
STATUS_FIELDS: Final = ('queued', 'active', 'completed', 'remaining', 'started', 'total')

StatusField = Literal['queued', 'active', 'completed', 'remaining', 'started', 'total']


class StatusType:
    """Formats accepted by ``TaskPool.status``.

    - ``RAW``: lists of items
    - ``COUNT``: number of items
    - an ``int`` N: percentage of ``total`` rounded to N decimal places
      (``PERCENT`` is the default precision)
    """

    RAW: Final = 'raw'
    COUNT: Final = 'count'
    PERCENT: Final = 3


def round_half_away(num: float, precision: int = 0) -> float:
    """Round ``num`` to ``precision`` decimals, halves away from zero.

    >>> round_half_away(1.235, 2)
    1.24
    >>> round_half_away(-2.5)
    -3.0
    """
    quantum = Decimal(1).scaleb(-precision)
    return float(Decimal(str(num)).quantize(quantum, rounding=ROUND_HALF_UP))


T = TypeVar('T', bound=Hashable)


class TaskPool(Generic[T]):
    """Bookkeeping for a bounded pool of items.

    Items move ``queued`` (FIFO) -> ``active`` (at most ``pool_size``) ->
    ``completed``. The pool knows nothing about what an item does; its
    owner pulls items with ``next()`` and reports them with ``complete()``.

    Notifications are sent through ``emitter(event)``:

    - ``startPinging`` / ``stopPinging`` when the scheduling timer starts/stops
    - ``ping`` on every timer tick
    - ``complete`` once per drain, after the last active item completes

    Timing needs an anyio task group: pass one as ``task_group`` or use the
    pool as an async context manager. Without one the timer never runs and
    the drain check after ``complete()`` runs inline.

    Example:
        ```python
        async with TaskPool[str](pool_size=2, emitter=print) as pool:
            pool.enqueue('a')
            pool.enqueue('b')
            item = pool.next()
            pool.complete(item)
        ```
    """

    def __init__(
        self,
        ping_interval: float = 0.1,
        pool_size: int = 1,
        emitter: Callable[[str], Any] | None = None,
        task_group: TaskGroup | None = None,
    ) -> None:
        self.ping_interval = ping_interval
        self.pool_size = pool_size
        self.emitter = emitter
        self.task_group = task_group

        self._queued: deque[T] = deque()
        self._active: dict[T, None] = {}
        self._completed: list[T] = []

        self._has_completed = False
        self._ping_scope: anyio.CancelScope | None = None
        self._task_group_cm: Any = None

    async def __aenter__(self) -> TaskPool[T]:
        self._task_group_cm = anyio.create_task_group()
        self.task_group = await self._task_group_cm.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        self._stop_pinging()
        cm, self._task_group_cm = self._task_group_cm, None
        self.task_group = None
        return await cm.__aexit__(exc_type, exc_val, exc_tb)

    def _emit(self, event: str) -> None:
        if self.emitter is not None:
            self.emitter(event)

    # --- Scheduling timer ---

    @property
    def pinging(self) -> bool:
        """Whether the scheduling timer is running."""
        return self._ping_scope is not None

    def _start_pinging(self) -> None:
        if self._ping_scope is not None or self.task_group is None:
            return
        self._ping_scope = anyio.CancelScope()
        self._emit('startPinging')
        self.task_group.start_soon(self._ping_loop, self._ping_scope)

    async def _ping_loop(self, scope: anyio.CancelScope) -> None:
        with scope:
            while True:
                await anyio.sleep(self.ping_interval)
                self._emit('ping')

    def _stop_pinging(self) -> None:
        if self._ping_scope is None:
            return
        scope, self._ping_scope = self._ping_scope, None
        self._emit('stopPinging')
        scope.cancel()

    # --- Queue operations ---

    def has_available_slot(self) -> bool:
        return len(self._active) < self.pool_size

    def is_ready(self) -> bool:
        """Whether an item can be started now.

        Starts the scheduling timer on first use.
        """
        self._start_pinging()
        if self.is_completed():
            return False
        return bool(self._queued) and self.has_available_slot()

    def is_completed(self, emit: bool = False) -> bool:
        """Whether nothing is queued or active.

        Args:
            emit: When drained, stop the timer and send ``complete`` if it
                has not been sent since the last ``enqueue``.
        """
        complete = not self._queued and not self._active

        if emit and complete:
            self._stop_pinging()
            if not self._has_completed:
                self._has_completed = True
                logger.debug('pool.complete', completed=len(self._completed))
                self._emit('complete')

        return complete

    def enqueue(self, item: T, check: bool = False) -> None:
        """Append ``item`` to the queue.

        Args:
            item: The item to queue.
            check: If True and ``item`` is active, move it back to the queue.
        """
        if check and item in self._active:
            del self._active[item]
        self._queued.append(item)
        self._has_completed = False

    def next(self) -> T | None:
        """Move the head of the queue to ``active`` and return it.

        Returns:
            The item, or None if the pool is not ready.
        """
        if not self.is_ready():
            return None

        item = self._queued.popleft()
        self._active[item] = None
        self._has_completed = False
        return item

    def complete(self, item: T, check: bool = True) -> bool:
        """Move ``item`` from ``active`` to ``completed``.

        Args:
            item: The item to complete.
            check: If True, refuse items that are not active.

        Returns:
            False if ``check`` refused the item, otherwise True.
        """
        if check and item not in self._active:
            return False

        self._active.pop(item, None)
        self._completed.append(item)

        if self.task_group is not None:
            self.task_group.start_soon(self._deferred_completion_check)
        else:
            self.is_completed(emit=True)

        return True

    async def _deferred_completion_check(self) -> None:
        self.is_completed(emit=True)

    # --- Status ---

    def _buckets(self) -> dict[str, list[T]]:
        queued = list(self._queued)
        active = list(self._active)
        completed = list(self._completed)
        return {
            'queued': queued,
            'active': active,
            'completed': completed,
            'remaining': queued + active,
            'started': active + completed,
            'total': queued + active + completed,
        }

    def status(
        self,
        fields: StatusField | Sequence[StatusField] | Literal['*'] = STATUS_ALL,
        format: str | int = StatusType.COUNT,  # noqa: A002
    ) -> Any:
        """Project the buckets into lists, counts or percentages.

        Args:
            fields: One field name, a sequence of names, or ``'*'`` for all of
                queued, active, completed, remaining, started and total.
            format: ``StatusType.RAW``, ``StatusType.COUNT`` or an int precision
                for percentages of ``total``. Percentages of an empty pool are 0.0.

        Returns:
            A dict keyed by field for a sequence or ``'*'``, else a single value.

        Raises:
            InvalidStatusFieldError: If a field name is unknown.
            ValueError: If ``format`` is not recognised.
        """
        buckets = self._buckets()

        if isinstance(fields, str):
            keys = list(STATUS_FIELDS) if fields == STATUS_ALL else [fields]
        else:
            keys = list(fields)

        response: dict[str, Any] = {}
        total = len(buckets['total'])
        for key in keys:
            if key not in buckets:
                raise InvalidStatusFieldError(key)
            values = buckets[key]
            if format == StatusType.COUNT:
                response[key] = len(values)
            elif format == StatusType.RAW:
                response[key] = values
            elif isinstance(format, int) and not isinstance(format, bool):
                response[key] = round_half_away(len(values) / total * 100, format) if total else 0.0
            else:
                msg = f'Invalid status format: {format!r}'
                raise ValueError(msg)

        if isinstance(fields, str) and fields != STATUS_ALL:
            return response[fields]
        return response
