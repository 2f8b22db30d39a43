"""Worker communication protocol: one request, exactly one settlement.

``worker_call`` posts an encoded ``WorkerMessage`` (or relies on the
transport's startup payload), then waits for the first of:

- a decoded ``Reply``                    -> returned to the caller
- a decoded ``Failure``                  -> ``RemoteError``
- an undecodable frame                   -> ``MessageDecodeError``
- a transport crash or termination       -> ``TransportError``
- the timeout                            -> ``TimeoutError``

Teardown happens once, in ``finally``: the transport is terminated when
``terminate`` is set or the call did not settle with a message.
"""

from __future__ import annotations

import builtins
from collections.abc import Mapping
from typing import Any

import anyio
import msgspec

from klaw_threadpool._logging import get_logger
from klaw_threadpool.errors import MessageDecodeError, RemoteError, TimeoutError
from klaw_threadpool.transports.protocols import TransportHandle
from klaw_threadpool.types import TerminateKey, TimeoutSeconds
from klaw_threadpool.wire import Failure, WorkerMessage, decode_response, encode_message

__all__ = ['MessageOptions', 'worker_call']

logger = get_logger(__name__)


class MessageOptions(msgspec.Struct, frozen=True, kw_only=True):
    """Options for one worker call.

    Attributes:
        timeout: Seconds to wait for the reply, 0 waits forever.
        terminate: Destroy the transport after a successful reply. None
            means "not persistent", i.e. terminate.
        terminate_key: Name under which a persistent proxy exposes its
            terminate function.
        return_event: Return the decoded ``Reply`` instead of its value.
    """

    timeout: TimeoutSeconds = 30.0
    terminate: bool | None = None
    terminate_key: TerminateKey = 'terminate'
    return_event: bool = False

    @classmethod
    def parse(cls, options: Mapping[str, Any] | MessageOptions | None = None) -> MessageOptions:
        """Build options from a plain mapping, validating constraints.

        Raises:
            msgspec.ValidationError: If a value is out of range or mistyped.
        """
        if options is None:
            return cls()
        if isinstance(options, MessageOptions):
            return options
        return msgspec.convert(dict(options), cls)

    @property
    def should_terminate(self) -> bool:
        return True if self.terminate is None else self.terminate


async def worker_call(
    handle: TransportHandle,
    message: WorkerMessage | None = None,
    options: MessageOptions | None = None,
) -> Any:
    """Perform one request/response exchange over ``handle``.

    Args:
        handle: Live transport. For an ephemeral transport the request was
            its startup payload and ``message`` is None.
        message: Envelope to post before waiting, if any.
        options: Timeout and teardown policy.

    Returns:
        The reply value, or the ``Reply`` itself with ``return_event``.

    Raises:
        RemoteError: The export raised inside the worker.
        MessageDecodeError: The response could not be decoded.
        TransportError: The transport crashed or was terminated.
        TimeoutError: No response within ``options.timeout`` seconds.
    """
    options = options or MessageOptions()
    settled_by_message = False

    try:
        if message is not None:
            handle.send(encode_message(message))

        try:
            if options.timeout:
                with anyio.fail_after(options.timeout):
                    frame = await handle.receive()
            else:
                frame = await handle.receive()
        except builtins.TimeoutError as exc:
            raise TimeoutError(options.timeout, 'worker call') from exc

        try:
            response = decode_response(frame)
        except (msgspec.DecodeError, msgspec.ValidationError) as exc:
            raise MessageDecodeError(str(exc)) from exc

        settled_by_message = True
        if isinstance(response, Failure):
            raise RemoteError(response.error, response.type)

        logger.debug('worker.call', transport=handle.name, target=_target(message))
        return response if options.return_event else response.value
    finally:
        if options.should_terminate or not settled_by_message:
            handle.terminate()


def _target(message: WorkerMessage | None) -> str | None:
    if message is None:
        return None
    return message.method or message.property

