"""Worker-side loop shared by every built-in transport.

Runs inside the execution context (an OS thread or a child process):
imports the module named by the startup envelope, answers the startup call
if it names one, then answers every later envelope until the inbound side
signals shutdown.
"""

from __future__ import annotations

import functools
import inspect
from collections.abc import Callable
from types import ModuleType

import anyio
import msgspec

from klaw_threadpool._loader import load_module
from klaw_threadpool.wire import Failure, Reply, WorkerMessage, decode_message, encode_response

__all__ = ['dispatch', 'serve']


def dispatch(module: ModuleType, message: WorkerMessage) -> bytes:
    """Run one request against ``module`` and encode its response.

    Exceptions raised by the export, and values that cannot be encoded,
    become a ``Failure`` response.
    """
    try:
        if message.property is not None:
            value = getattr(module, message.property)
        elif message.method is not None:
            fn = getattr(module, message.method)
            if inspect.iscoroutinefunction(fn):
                value = anyio.run(functools.partial(fn, *message.args))
            else:
                value = fn(*message.args)
        else:
            value = None
        return encode_response(Reply(value=value))
    except Exception as exc:
        return encode_response(Failure(error=str(exc), type=type(exc).__name__))


def serve(
    data: bytes,
    recv: Callable[[], bytes | None],
    send: Callable[[bytes], object],
) -> None:
    """Serve requests until ``recv`` returns None.

    Args:
        data: Encoded startup WorkerMessage.
        recv: Blocking read of the next request frame, None on shutdown.
        send: Post a response frame.

    Raises:
        ImportError: If the module named by the startup envelope cannot be loaded.
        msgspec.DecodeError: If the startup envelope is malformed.
    """
    startup = decode_message(data)
    module = load_module(startup.filename)

    if startup.method is not None or startup.property is not None:
        send(dispatch(module, startup))

    while (frame := recv()) is not None:
        try:
            message = decode_message(frame)
        except (msgspec.DecodeError, msgspec.ValidationError) as exc:
            send(encode_response(Failure(error=str(exc), type=type(exc).__name__)))
            continue
        send(dispatch(module, message))
