"""Wire types and MessagePack codec for worker calls.

A call travels to the worker as a ``WorkerMessage`` envelope and comes back
as one ``Response``, a tagged union of ``Reply`` (the value) and
``Failure`` (the export raised), told apart by their ``kind`` key:

    >>> from klaw_threadpool.wire import WorkerMessage, Reply, encode_message, decode_response, encode_response
    >>> frame = encode_message(WorkerMessage(filename='tests.fixtures.math_module', method='add', args=(1, 2)))
    >>> decode_response(encode_response(Reply(value=3)))
    Reply(value=3)

Encoders are kept per thread (msgspec encoders are not thread-safe); the
decoders are shared.
"""

from __future__ import annotations

import threading
from typing import Any

import msgspec

__all__ = [
    'Failure',
    'Reply',
    'Response',
    'WorkerMessage',
    'decode_message',
    'decode_response',
    'encode_message',
    'encode_response',
]


class WorkerMessage(msgspec.Struct, frozen=True, gc=False, omit_defaults=True):
    """Request envelope: which export of which module to run.

    Exactly one of ``method``/``property`` is meaningful; ``args`` only
    applies to ``method``. A message with neither only names the module
    (the startup payload of a persistent transport).

    Attributes:
        filename: Dotted module name or path of the module to import.
        method: Name of the function to call.
        property: Name of the attribute to read.
        args: Positional arguments for ``method``.
    """

    filename: str
    method: str | None = None
    property: str | None = None  # noqa: A003
    args: tuple[Any, ...] = ()


class Reply(msgspec.Struct, tag_field='kind', tag='reply', frozen=True, gc=False):
    """Successful response carrying the export's value."""

    value: Any = None


class Failure(msgspec.Struct, tag_field='kind', tag='failure', frozen=True, gc=False):
    """The export raised inside the worker.

    Attributes:
        error: The exception message.
        type: The exception class name.
    """

    error: str
    type: str = 'Exception'  # noqa: A003


Response = Reply | Failure


_local = threading.local()
_message_decoder: msgspec.msgpack.Decoder[WorkerMessage] = msgspec.msgpack.Decoder(WorkerMessage)
_response_decoder: msgspec.msgpack.Decoder[Response] = msgspec.msgpack.Decoder(Response)


def _encoder() -> msgspec.msgpack.Encoder:
    encoder = getattr(_local, 'encoder', None)
    if encoder is None:
        encoder = msgspec.msgpack.Encoder()
        _local.encoder = encoder
    return encoder


def encode_message(msg: WorkerMessage) -> bytes:
    """Encode a request envelope to MessagePack bytes."""
    return _encoder().encode(msg)


def decode_message(buf: bytes | bytearray | memoryview) -> WorkerMessage:
    """Decode a request envelope.

    Raises:
        msgspec.DecodeError: If the buffer is malformed.
        msgspec.ValidationError: If the data is not a WorkerMessage.
    """
    return _message_decoder.decode(buf)


def encode_response(response: Response) -> bytes:
    """Encode a response to MessagePack bytes.

    Raises:
        TypeError: If the reply value is not MessagePack-serializable.
    """
    return _encoder().encode(response)


def decode_response(buf: bytes | bytearray | memoryview) -> Response:
    """Decode a response.

    Raises:
        msgspec.DecodeError: If the buffer is malformed.
        msgspec.ValidationError: If the data is not a Reply or Failure.
    """
    return _response_decoder.decode(buf)
