"""
klaw_threadpool: bounded task pools over threads, processes and worker modules.

Provides an admission-controlled TaskPool, execution units with a bit-flag
status lifecycle, pools with Promise-like combinators, a request/response
protocol for running worker-module exports in another execution context,
and a module proxy that turns those exports into remote-callable functions.
"""

from klaw_threadpool._config import PoolConfig, TransportKind, get_config, init
from klaw_threadpool._loader import load_module, normalize_filename
from klaw_threadpool._logging import (
    add_log_hook,
    clear_log_hooks,
    configure_logging,
    get_logger,
    log_context,
    remove_log_hook,
)
from klaw_threadpool.errors import (
    AggregateError,
    Cancelled,
    CancelledError,
    ChannelError,
    InvalidStatusField,
    InvalidStatusFieldError,
    MessageDecodeError,
    MessageDecodeFailure,
    RemoteError,
    RemoteFailure,
    Timeout,
    TimeoutError,
    TransportClosed,
    TransportClosedError,
    TransportError,
    TransportFailure,
)
from klaw_threadpool.events import EventEmitter, OneShot
from klaw_threadpool.pool import BasePool, FunctionPool, WorkerPool
from klaw_threadpool.protocol import MessageOptions, worker_call
from klaw_threadpool.proxy import (
    ModuleProxy,
    import_persistent_worker,
    import_task_worker,
    import_worker,
    import_worker_proxy,
)
from klaw_threadpool.resources import ResourceMonitor, ResourceOracle, SystemInfo
from klaw_threadpool.status import Status, ThreadStatus
from klaw_threadpool.task_pool import STATUS_ALL, StatusType, TaskPool
from klaw_threadpool.threads import BaseThread, FunctionThread, WorkerThread
from klaw_threadpool.transports import ProcessTransport, ThreadTransport, Transport, TransportHandle, get_transport
from klaw_threadpool.wire import WorkerMessage

__all__ = [
    'STATUS_ALL',
    # Errors
    'AggregateError',
    # Pools
    'BasePool',
    # Threads
    'BaseThread',
    'Cancelled',
    'CancelledError',
    'ChannelError',
    # Events
    'EventEmitter',
    'FunctionPool',
    'FunctionThread',
    'InvalidStatusField',
    'InvalidStatusFieldError',
    'MessageDecodeError',
    'MessageDecodeFailure',
    # Protocol
    'MessageOptions',
    # Proxy
    'ModuleProxy',
    'OneShot',
    # Config
    'PoolConfig',
    # Transports
    'ProcessTransport',
    'RemoteError',
    'RemoteFailure',
    # Resources
    'ResourceMonitor',
    'ResourceOracle',
    # Status
    'Status',
    'StatusType',
    'SystemInfo',
    'TaskPool',
    'ThreadStatus',
    'ThreadTransport',
    'Timeout',
    'TimeoutError',
    'Transport',
    'TransportClosed',
    'TransportClosedError',
    'TransportError',
    'TransportFailure',
    'TransportHandle',
    'TransportKind',
    'WorkerMessage',
    'WorkerPool',
    'WorkerThread',
    # Logging
    'add_log_hook',
    'clear_log_hooks',
    'configure_logging',
    'get_config',
    'get_logger',
    'log_context',
    'get_transport',
    'import_persistent_worker',
    'import_task_worker',
    'import_worker',
    'import_worker_proxy',
    'init',
    'load_module',
    'normalize_filename',
    'remove_log_hook',
    'worker_call',
]
