"""Thread lifecycle status: composable flags with named predicates."""

from __future__ import annotations

from enum import IntFlag

__all__ = ['Status', 'ThreadStatus']


class Status(IntFlag):
    """Lifecycle states of a thread.

    Each concrete state is a distinct bit so that the derived groups can be
    tested with a single AND:

    - ``COMPLETED`` = ``SUCCESS | ERROR``
    - ``STARTED`` = ``ACTIVE | COMPLETED``

    Example:
        ```python
        status = ThreadStatus()
        status.value = Status.SUCCESS
        assert status.value & Status.COMPLETED
        ```
    """

    INIT = 1
    READY = 2
    ACTIVE = 4
    SUCCESS = 8
    ERROR = 16
    COMPLETED = SUCCESS | ERROR
    STARTED = ACTIVE | COMPLETED


class ThreadStatus:
    """Holds the current Status of one thread.

    Only the last assigned value is stored; the group predicates
    (``COMPLETED``, ``STARTED``) are always computed from it.
    """

    __slots__ = ('_value',)

    def __init__(self, value: Status = Status.INIT) -> None:
        self._value = Status(value)

    @property
    def value(self) -> Status:
        """The current status value."""
        return self._value

    @value.setter
    def value(self, state: Status | int) -> None:
        self._value = Status(state)

    def _has(self, flag: Status) -> bool:
        return bool(self._value & flag)

    @property
    def INIT(self) -> bool:  # noqa: N802
        return self._has(Status.INIT)

    @property
    def READY(self) -> bool:  # noqa: N802
        return self._has(Status.READY)

    @property
    def ACTIVE(self) -> bool:  # noqa: N802
        return self._has(Status.ACTIVE)

    @property
    def SUCCESS(self) -> bool:  # noqa: N802
        return self._has(Status.SUCCESS)

    @property
    def ERROR(self) -> bool:  # noqa: N802
        return self._has(Status.ERROR)

    @property
    def STARTED(self) -> bool:  # noqa: N802
        """True once the thread is ACTIVE or has settled."""
        return self._has(Status.STARTED)

    @property
    def COMPLETED(self) -> bool:  # noqa: N802
        """True once the thread settled with SUCCESS or ERROR."""
        return self._has(Status.COMPLETED)

    def __repr__(self) -> str:
        return f'ThreadStatus({self._value.name})'
