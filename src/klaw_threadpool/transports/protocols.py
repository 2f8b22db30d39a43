"""Transport protocols: how the worker protocol reaches a remote module."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

__all__ = ['Transport', 'TransportHandle']


@runtime_checkable
class TransportHandle(Protocol):
    """One live execution context running a worker module.

    Frames are opaque bytes; the worker protocol owns encoding. After
    ``terminate()`` no further frame is delivered, but a ``receive()`` that
    is pending or issued later raises ``TransportClosedError`` so no caller
    is left waiting.
    """

    name: str

    @property
    def closed(self) -> bool:
        """Whether the transport has been terminated or has died."""
        ...

    def send(self, frame: bytes) -> None:
        """Post a request frame to the worker.

        Raises:
            TransportClosedError: If the transport is closed.
        """
        ...

    async def receive(self) -> bytes:
        """Wait for the next response frame.

        Raises:
            TransportError: If the worker crashed or disconnected.
            TransportClosedError: If the transport was terminated.
        """
        ...

    def terminate(self) -> None:
        """Destroy the execution context. Idempotent."""
        ...


class Transport(Protocol):
    """Factory creating a TransportHandle.

    ``data`` is the startup payload: the full encoded request for an
    ephemeral transport, or an envelope naming only the module for a
    persistent one.
    """

    def __call__(self, source: str, data: bytes, **options: Any) -> TransportHandle: ...
