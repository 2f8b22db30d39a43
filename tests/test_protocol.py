"""Tests for worker_call settlement, timeout and teardown policy."""

from __future__ import annotations

import anyio
import msgspec
import pytest

from klaw_threadpool.errors import MessageDecodeError, RemoteError, TimeoutError, TransportClosedError
from klaw_threadpool.protocol import MessageOptions, worker_call
from klaw_threadpool.wire import Failure, Reply, WorkerMessage, decode_message, encode_response
from tests.conftest import FakeTransport


def fake(*replies: bytes) -> FakeTransport:
    return FakeTransport('tests.fixtures.math_module', b'', replies=list(replies))


class TestMessageOptions:
    def test_defaults(self) -> None:
        options = MessageOptions()
        assert options.timeout == 30.0
        assert options.terminate is None
        assert options.should_terminate
        assert options.terminate_key == 'terminate'
        assert not options.return_event

    def test_parse_mapping(self) -> None:
        options = MessageOptions.parse({'timeout': 5, 'terminate': False})
        assert options.timeout == 5.0
        assert not options.should_terminate

    def test_parse_rejects_negative_timeout(self) -> None:
        with pytest.raises(msgspec.ValidationError):
            MessageOptions.parse({'timeout': -1})

    def test_parse_rejects_bad_terminate_key(self) -> None:
        with pytest.raises(msgspec.ValidationError):
            MessageOptions.parse({'terminate_key': 'not an identifier'})

    def test_parse_passes_instances_through(self) -> None:
        options = MessageOptions(timeout=1.0)
        assert MessageOptions.parse(options) is options
        assert MessageOptions.parse(None) == MessageOptions()


class TestWorkerCall:
    async def test_reply_value_and_terminate(self, fake_transports: list[FakeTransport]) -> None:
        handle = fake(encode_response(Reply(value=3)))

        assert await worker_call(handle) == 3
        assert handle.terminate_calls == 1

    async def test_message_is_sent(self, fake_transports: list[FakeTransport]) -> None:
        handle = fake(encode_response(Reply(value=6)))
        message = WorkerMessage(filename='tests.fixtures.math_module', method='multiply', args=(2, 3))

        await worker_call(handle, message)

        assert [decode_message(frame) for frame in handle.sent] == [message]

    async def test_persistent_success_keeps_transport(self, fake_transports: list[FakeTransport]) -> None:
        handle = fake(encode_response(Reply(value=1)))

        await worker_call(handle, None, MessageOptions(terminate=False))

        assert handle.terminate_calls == 0

    async def test_return_event(self, fake_transports: list[FakeTransport]) -> None:
        handle = fake(encode_response(Reply(value='x')))
        assert await worker_call(handle, None, MessageOptions(return_event=True)) == Reply(value='x')

    async def test_remote_failure_raises_remote_error(self, fake_transports: list[FakeTransport]) -> None:
        handle = fake(encode_response(Failure(error='boom', type='ValueError')))

        with pytest.raises(RemoteError, match='ValueError: boom') as exc_info:
            await worker_call(handle, None, MessageOptions(terminate=False))

        assert exc_info.value.type == 'ValueError'
        assert handle.terminate_calls == 0

    async def test_decode_error_destroys_transport(self, fake_transports: list[FakeTransport]) -> None:
        handle = fake(b'\xc1not msgpack')

        with pytest.raises(MessageDecodeError):
            await worker_call(handle, None, MessageOptions(terminate=False))

        assert handle.terminate_calls == 1

    async def test_timeout_destroys_transport_once(self, fake_transports: list[FakeTransport]) -> None:
        handle = fake()

        with anyio.fail_after(2):
            with pytest.raises(TimeoutError, match=r'worker call: Timeout after 0\.05s') as exc_info:
                await worker_call(handle, None, MessageOptions(timeout=0.05, terminate=False))

        assert exc_info.value.seconds == 0.05
        assert handle.terminate_calls == 1

    async def test_terminate_while_pending_rejects_call(self, fake_transports: list[FakeTransport]) -> None:
        handle = fake()
        errors: list[BaseException] = []

        async def call() -> None:
            try:
                await worker_call(handle, None, MessageOptions(timeout=0, terminate=False))
            except TransportClosedError as exc:
                errors.append(exc)

        with anyio.fail_after(2):
            async with anyio.create_task_group() as tg:
                tg.start_soon(call)
                await anyio.sleep(0.01)
                handle.terminate()

        assert len(errors) == 1
        assert handle.closed
