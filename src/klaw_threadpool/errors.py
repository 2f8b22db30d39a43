"""Error types: dual struct+exception for Result-style and raise-based code."""

from __future__ import annotations

import msgspec

__all__ = [
    'AggregateError',
    'Cancelled',
    'CancelledError',
    'ChannelError',
    'InvalidStatusField',
    'InvalidStatusFieldError',
    'MessageDecodeError',
    'MessageDecodeFailure',
    'RemoteError',
    'RemoteFailure',
    'Timeout',
    'TimeoutError',
    'TransportClosed',
    'TransportClosedError',
    'TransportError',
    'TransportFailure',
]


# --- Pool Errors ---


class InvalidStatusField(msgspec.Struct, frozen=True, gc=False):
    """Unknown field requested from TaskPool.status() - struct variant."""

    field: str

    def to_exception(self) -> InvalidStatusFieldError:
        """Convert to exception for raise-based code."""
        return InvalidStatusFieldError(self.field)


class InvalidStatusFieldError(ValueError):
    """Unknown field requested from TaskPool.status() - exception variant."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f'Invalid status field: "{field}", when getting TaskPool status')

    def to_struct(self) -> InvalidStatusField:
        """Convert to struct for Result-based code."""
        return InvalidStatusField(self.field)


class AggregateError(Exception):
    """Every settled thread failed; carries all of their errors."""

    def __init__(self, errors: list[BaseException], message: str = 'No threads completed successfully') -> None:
        self.errors = list(errors)
        super().__init__(message)


# --- Remote Errors ---


class RemoteFailure(msgspec.Struct, frozen=True, gc=False):
    """The invoked export raised inside the worker - struct variant."""

    message: str
    type: str = 'Exception'

    def to_exception(self) -> RemoteError:
        """Convert to exception for raise-based code."""
        return RemoteError(self.message, self.type)


class RemoteError(Exception):
    """The invoked export raised inside the worker - exception variant."""

    def __init__(self, message: str, type: str = 'Exception') -> None:  # noqa: A002
        self.message = message
        self.type = type
        super().__init__(f'{type}: {message}')

    def to_struct(self) -> RemoteFailure:
        """Convert to struct for Result-based code."""
        return RemoteFailure(self.message, self.type)


# --- Channel Errors ---


class ChannelError(Exception):
    """Base for failures of the channel itself rather than of the called code.

    Threads report these on the ``messageerror`` channel.
    """


class MessageDecodeFailure(msgspec.Struct, frozen=True, gc=False):
    """Response could not be reconstructed - struct variant."""

    reason: str

    def to_exception(self) -> MessageDecodeError:
        """Convert to exception for raise-based code."""
        return MessageDecodeError(self.reason)


class MessageDecodeError(ChannelError):
    """Response could not be reconstructed - exception variant."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f'Could not decode worker response: {reason}')

    def to_struct(self) -> MessageDecodeFailure:
        """Convert to struct for Result-based code."""
        return MessageDecodeFailure(self.reason)


class TransportFailure(msgspec.Struct, frozen=True, gc=False):
    """Transport crashed or disconnected - struct variant."""

    message: str
    transport: str

    def to_exception(self) -> TransportError:
        """Convert to exception for raise-based code."""
        return TransportError(self.message, self.transport)


class TransportError(ChannelError):
    """Transport crashed or disconnected - exception variant."""

    def __init__(self, message: str, transport: str) -> None:
        self.message = message
        self.transport = transport
        super().__init__(f'[{transport}] {message}')

    def to_struct(self) -> TransportFailure:
        """Convert to struct for Result-based code."""
        return TransportFailure(self.message, self.transport)


class TransportClosed(msgspec.Struct, frozen=True, gc=False):
    """Transport was terminated while a call was pending - struct variant."""

    transport: str
    reason: str | None = None

    def to_exception(self) -> TransportClosedError:
        """Convert to exception for raise-based code."""
        return TransportClosedError(self.transport, self.reason)


class TransportClosedError(TransportError):
    """Transport was terminated while a call was pending - exception variant."""

    def __init__(self, transport: str, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(reason or 'Transport terminated', transport)

    def to_struct(self) -> TransportClosed:  # type: ignore[override]
        """Convert to struct for Result-based code."""
        return TransportClosed(self.transport, self.reason)


# --- Timeout/Cancellation Errors ---


class Timeout(msgspec.Struct, frozen=True, gc=False):
    """Operation timed out - struct variant for Result[T, Timeout]."""

    seconds: float
    operation: str | None = None

    def to_exception(self) -> TimeoutError:
        """Convert to exception for raise-based code."""
        return TimeoutError(self.seconds, self.operation)


class TimeoutError(Exception):  # noqa: A001 - intentionally shadows builtin
    """Operation timed out - exception variant."""

    def __init__(self, seconds: float, operation: str | None = None) -> None:
        self.seconds = seconds
        self.operation = operation
        msg = f'Timeout after {seconds}s'
        if operation:
            msg = f'{operation}: {msg}'
        super().__init__(msg)

    def to_struct(self) -> Timeout:
        """Convert to struct for Result-based code."""
        return Timeout(self.seconds, self.operation)


class Cancelled(msgspec.Struct, frozen=True, gc=False):
    """Operation was cancelled - struct variant for Result[T, Cancelled]."""

    reason: str | None = None

    def to_exception(self) -> CancelledError:
        """Convert to exception for raise-based code."""
        return CancelledError(self.reason)


class CancelledError(Exception):
    """Operation was cancelled - exception variant."""

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(reason or 'Operation cancelled')

    def to_struct(self) -> Cancelled:
        """Convert to struct for Result-based code."""
        return Cancelled(self.reason)
