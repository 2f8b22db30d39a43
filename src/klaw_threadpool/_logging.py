"""Structured logging for klaw-threadpool.

Library events are structlog events named ``<area>.<action>``
(``pool.tick``, ``thread.start``, ``thread.exit``, ``worker.call``, ...).
Each event carries the OS thread that logged it and whatever scheduling
context is bound with ``log_context``. A pool binds ``pool`` and ``unit``
around every start; anyio copies the context into the task and the worker
thread it spawns, so everything a unit logs can be traced back to its pool:

    {"event": "thread.exit", "pool": "FunctionPool-7f3a", "unit": 3,
     "os_thread": "MainThread", "exit_code": 0, ...}

Stdlib records (third-party libraries) go through the same pre-chain via
structlog's ProcessorFormatter. Library modules only obtain loggers;
``configure_logging`` (or ``init(log_level=...)``) installs the handler
and may be called again to switch level or renderer.
"""

from __future__ import annotations

import logging
import sys
import threading
import warnings
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

    LogHook = Callable[[dict[str, Any]], None]

__all__ = [
    'add_log_hook',
    'clear_log_hooks',
    'configure_logging',
    'get_logger',
    'log_context',
    'remove_log_hook',
]

_hooks: list[LogHook] = []


def _add_os_thread(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault('os_thread', threading.current_thread().name)
    return event_dict


def _run_hooks(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for hook in tuple(_hooks):
        try:
            hook(event_dict.copy())
        except Exception as exc:
            remove_log_hook(hook)
            warnings.warn(f'log hook {hook!r} raised {exc!r} and was removed', RuntimeWarning, stacklevel=2)
    return event_dict


def _pre_chain() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt='iso'),
        structlog.stdlib.ExtraAdder(),
        _add_os_thread,
        _run_hooks,
    ]


def configure_logging(level: str = 'INFO', *, json_output: bool = True) -> None:
    """Install the structlog pipeline and a stderr handler on the root logger.

    Args:
        level: Logging level ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL").
            Scheduling events (``pool.tick``, ``thread.*``) are DEBUG.
        json_output: JSON lines if True, colored console output otherwise.
    """
    # Loggers are not cached, so module-level loggers follow a reconfiguration.
    structlog.configure(
        processors=[
            *_pre_chain(),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    if json_output:
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_pre_chain(),
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


def log_context(**values: Any) -> AbstractContextManager[None]:
    """Bind ``values`` to every event logged in the current context.

    Tasks and worker threads started inside the block inherit the binding.
    """
    return structlog.contextvars.bound_contextvars(**values)


def add_log_hook(hook: LogHook) -> None:
    """Call ``hook`` with a copy of every event dict, e.g. to count failures.

    A hook that raises is removed and reported with a ``RuntimeWarning``.
    """
    _hooks.append(hook)


def remove_log_hook(hook: LogHook) -> None:
    if hook in _hooks:
        _hooks.remove(hook)


def clear_log_hooks() -> None:
    _hooks.clear()
