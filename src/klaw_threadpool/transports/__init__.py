"""Transports: execution contexts reachable by the worker protocol.

- `ThreadTransport`: worker module served from an OS thread
- `ProcessTransport`: worker module served from a child process
"""

from klaw_threadpool._config import TransportKind
from klaw_threadpool.transports.process import ProcessTransport
from klaw_threadpool.transports.protocols import Transport, TransportHandle
from klaw_threadpool.transports.thread import ThreadTransport

__all__ = [
    'ProcessTransport',
    'ThreadTransport',
    'Transport',
    'TransportHandle',
    'get_transport',
]


def get_transport(kind: TransportKind | str | None = None) -> Transport:
    """Resolve a transport kind to its factory (default: the configured one)."""
    if kind is None:
        from klaw_threadpool._config import get_config

        kind = get_config().transport
    elif isinstance(kind, str):
        kind = TransportKind(kind.lower())

    if kind is TransportKind.PROCESS:
        return ProcessTransport
    return ThreadTransport
