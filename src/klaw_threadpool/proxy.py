"""Module proxy: a worker module's exports as remote-callable functions.

``import_worker`` and friends load a module locally to discover its
exports, then wrap it in a ``ModuleProxy``. Reading an export from the
proxy returns a function that runs that export through a transport
instead of in the caller:

    >>> math = import_worker('tests.fixtures.math_module')
    >>> await math.add(1, 2)
    3
    >>> tasks = import_task_worker('tests.fixtures.math_module')
    >>> thunk = tasks.add(1, 2)   # nothing has run yet
    >>> await thunk()
    3

Each call of an ephemeral proxy spawns its own transport. A persistent
proxy keeps a single transport for every call until its terminate
function (``terminate`` by default) is called.
"""

from __future__ import annotations

import __future__
import enum
import os
from collections.abc import Awaitable, Callable, Mapping
from types import ModuleType
from typing import Any

import anyio
import msgspec
import wrapt

from klaw_threadpool._logging import get_logger, log_context
from klaw_threadpool._loader import load_module, normalize_filename
from klaw_threadpool.protocol import MessageOptions, worker_call
from klaw_threadpool.transports import ThreadTransport
from klaw_threadpool.transports.protocols import Transport, TransportHandle
from klaw_threadpool.wire import WorkerMessage, encode_message

__all__ = [
    'Export',
    'ExportKind',
    'ModuleProxy',
    'import_persistent_worker',
    'import_task_worker',
    'import_worker',
    'import_worker_proxy',
    'load_module',
    'normalize_filename',
]

logger = get_logger(__name__)

_FUTURE_FEATURES = tuple(getattr(__future__, name) for name in __future__.all_feature_names)


class ExportKind(enum.Enum):
    METHOD = 'method'
    PROPERTY = 'property'


class Export(msgspec.Struct, frozen=True, gc=False):
    """Dispatch-table entry for one module export."""

    name: str
    kind: ExportKind

    def message(self, filename: str, args: tuple[Any, ...] = ()) -> WorkerMessage:
        if self.kind is ExportKind.METHOD:
            return WorkerMessage(filename=filename, method=self.name, args=args)
        return WorkerMessage(filename=filename, property=self.name)


def resolve_exports(module: ModuleType) -> dict[str, Export]:
    """Build the dispatch table of a module's public names.

    Names listed in ``__all__`` when the module defines it, otherwise every
    name without a leading underscore. Imported modules and ``__future__``
    feature flags are never exported.
    """
    namespace = vars(module)
    names = namespace.get('__all__')
    if names is None:
        names = [name for name in namespace if not name.startswith('_')]

    exports: dict[str, Export] = {}
    for name in names:
        value = namespace.get(name)
        if isinstance(value, ModuleType) or any(value is feature for feature in _FUTURE_FEATURES):
            continue
        kind = ExportKind.METHOD if callable(value) else ExportKind.PROPERTY
        exports[name] = Export(name, kind)
    return exports


class ModuleProxy(wrapt.ObjectProxy):
    """Transparent wrapper turning module exports into worker calls.

    Dunder attributes (``__name__``, ``__doc__``, ...) are those of the
    wrapped module. Any other name resolves through the dispatch table:

    - the terminate key of a persistent proxy: a function closing its transport
    - a name the module does not export: None, and no transport is created
    - an export: a function running it in a worker, either immediately
      (returns a coroutine) or deferred (returns a zero-argument thunk)

    Unless ``message_options.terminate`` is set, a persistent proxy keeps its
    transport after each call and an ephemeral one tears it down.
    """

    def __init__(
        self,
        module: ModuleType,
        filename: str,
        *,
        persistent: bool = False,
        execute_immediately: bool = False,
        transport: Transport = ThreadTransport,
        message_options: MessageOptions | None = None,
    ) -> None:
        super().__init__(module)
        self._self_filename = filename
        self._self_persistent = persistent
        self._self_execute_immediately = execute_immediately
        self._self_transport = transport
        options = message_options or MessageOptions()
        if options.terminate is None:
            options = msgspec.structs.replace(options, terminate=not persistent)
        self._self_options = options
        self._self_exports = resolve_exports(module)
        self._self_lock = anyio.Lock()
        self._self_worker: TransportHandle | None = None

        if persistent:
            self._self_worker = transport(filename, encode_message(WorkerMessage(filename=filename)))

    @property
    def worker(self) -> TransportHandle | None:
        """The retained transport of a persistent proxy."""
        return self._self_worker

    @property
    def exports(self) -> Mapping[str, Export]:
        return self._self_exports

    def __getattr__(self, name: str) -> Any:
        if name.startswith('__'):
            return super().__getattr__(name)

        if self._self_persistent and name == self._self_options.terminate_key:
            return self._terminate_worker

        export = self._self_exports.get(name)
        if export is None:
            return None

        def run(*args: Any) -> Awaitable[Any]:
            return self._call(export.message(self._self_filename, args))

        if self._self_execute_immediately:
            return run

        def defer(*args: Any) -> Callable[[], Awaitable[Any]]:
            async def thunk() -> Any:
                return await run(*args)

            return thunk

        return defer

    async def _call(self, message: WorkerMessage) -> Any:
        options = self._self_options
        with log_context(worker=self._self_filename):
            if self._self_worker is None:
                handle = self._self_transport(self._self_filename, encode_message(message))
                return await worker_call(handle, None, options)

            async with self._self_lock:
                return await worker_call(self._self_worker, message, options)

    def _terminate_worker(self) -> None:
        if self._self_worker is not None:
            logger.debug('proxy.terminate', filename=self._self_filename)
            self._self_worker.terminate()

    def __repr__(self) -> str:
        mode = 'persistent' if self._self_persistent else 'ephemeral'
        return f'<ModuleProxy {self._self_filename!r} ({mode})>'


def import_worker_proxy(
    filename: str | os.PathLike[str],
    *,
    persistent: bool = False,
    execute_immediately: bool = False,
    transport: Transport = ThreadTransport,
    message_options: MessageOptions | Mapping[str, Any] | None = None,
    terminate_key: str | None = None,
) -> ModuleProxy:
    """Load ``filename`` and wrap it in a ``ModuleProxy``.

    Args:
        filename: Dotted module name or ``.py`` path.
        persistent: Reuse one transport for every call.
        execute_immediately: Calls return coroutines instead of thunks.
        transport: Factory creating the execution context.
        message_options: Per-call options; ``terminate`` defaults to
            ``not persistent``.
        terminate_key: Overrides ``message_options.terminate_key``.

    Raises:
        ImportError: If the module cannot be loaded.
        msgspec.ValidationError: If ``message_options`` is invalid.
    """
    name = normalize_filename(filename)
    module = load_module(name)

    options = MessageOptions.parse(message_options)
    if terminate_key is not None:
        options = msgspec.structs.replace(options, terminate_key=terminate_key)

    return ModuleProxy(
        module,
        name,
        persistent=persistent,
        execute_immediately=execute_immediately,
        transport=transport,
        message_options=options,
    )


def import_task_worker(
    filename: str | os.PathLike[str],
    *,
    transport: Transport = ThreadTransport,
    message_options: MessageOptions | Mapping[str, Any] | None = None,
) -> ModuleProxy:
    """Proxy whose calls return deferred thunks, one transport per call.

    The thunks fit ``FunctionPool.add_task``.
    """
    return import_worker_proxy(filename, transport=transport, message_options=message_options)


def import_worker(
    filename: str | os.PathLike[str],
    *,
    transport: Transport = ThreadTransport,
    message_options: MessageOptions | Mapping[str, Any] | None = None,
) -> ModuleProxy:
    """Proxy whose calls run immediately, one transport per call."""
    return import_worker_proxy(
        filename,
        execute_immediately=True,
        transport=transport,
        message_options=message_options,
    )


def import_persistent_worker(
    filename: str | os.PathLike[str],
    *,
    transport: Transport = ThreadTransport,
    message_options: MessageOptions | Mapping[str, Any] | None = None,
    terminate_key: str | None = None,
) -> ModuleProxy:
    """Proxy whose calls run immediately on one shared transport.

    Calls are serialised; the transport lives until the terminate function
    is called.
    """
    return import_worker_proxy(
        filename,
        persistent=True,
        execute_immediately=True,
        transport=transport,
        message_options=message_options,
        terminate_key=terminate_key,
    )
