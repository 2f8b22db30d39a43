"""Tests for the module proxy and its import entry points."""

from __future__ import annotations

import types
from collections.abc import Callable
from pathlib import Path
from typing import Any

import anyio
import pytest

from klaw_threadpool import import_persistent_worker, import_task_worker, import_worker, load_module
from klaw_threadpool.errors import RemoteError, TransportClosedError
from klaw_threadpool.protocol import MessageOptions
from klaw_threadpool.proxy import ExportKind, ModuleProxy, import_worker_proxy, resolve_exports
from klaw_threadpool.wire import Reply, WorkerMessage, decode_message, encode_response
from tests.conftest import MATH_MODULE, FakeTransport


def scripted(*values: Any) -> Callable[..., FakeTransport]:
    """Transport factory whose handles reply with ``values`` in order."""

    def create(source: str, data: bytes, **options: Any) -> FakeTransport:
        return FakeTransport(source, data, replies=[encode_response(Reply(value=v)) for v in values])

    return create


class TestExports:
    def test_dispatch_table(self) -> None:
        exports = resolve_exports(load_module(MATH_MODULE))
        assert exports['add'].kind is ExportKind.METHOD
        assert exports['some_property'].kind is ExportKind.PROPERTY
        assert '__name__' not in exports

    def test_private_names_and_imports_are_not_exports(self) -> None:
        exports = resolve_exports(load_module(MATH_MODULE))
        assert '_calls' not in exports
        assert 'anyio' not in exports
        assert 'time' not in exports
        assert 'annotations' not in exports

    def test_dunder_all_limits_exports(self) -> None:
        module = types.ModuleType('limited')
        module.add = lambda a, b: a + b
        module.hidden = lambda: None
        module.__all__ = ['add']
        assert list(resolve_exports(module)) == ['add']

    async def test_private_name_reads_as_missing(self, fake_transports: list[FakeTransport]) -> None:
        proxy = import_worker(MATH_MODULE, transport=scripted())
        assert proxy._calls is None
        assert proxy.anyio is None
        assert fake_transports == []

    def test_load_module_by_path(self) -> None:
        path = Path(__file__).parent / 'fixtures' / 'math_module.py'
        module = load_module(path)
        assert module.add(1, 2) == 3
        assert load_module(str(path)) is module


class TestEphemeralProxy:
    async def test_missing_export_creates_no_transport(self, fake_transports: list[FakeTransport]) -> None:
        proxy = import_worker(MATH_MODULE, transport=scripted())
        assert proxy.does_not_exist is None
        assert fake_transports == []

    async def test_dunder_attributes_come_from_module(self) -> None:
        proxy = import_worker(MATH_MODULE, transport=scripted())
        assert proxy.__name__ == MATH_MODULE
        with pytest.raises(AttributeError):
            _ = proxy.__missing_dunder__

    async def test_immediate_call_seeds_transport_with_envelope(self, fake_transports: list[FakeTransport]) -> None:
        proxy = import_worker(MATH_MODULE, transport=scripted(5))

        assert await proxy.add(2, 3) == 5

        (handle,) = fake_transports
        assert decode_message(handle.data) == WorkerMessage(filename=MATH_MODULE, method='add', args=(2, 3))
        assert handle.sent == []
        assert handle.terminate_calls == 1

    async def test_property_read(self, fake_transports: list[FakeTransport]) -> None:
        proxy = import_worker(MATH_MODULE, transport=scripted('test value'))

        assert await proxy.some_property() == 'test value'
        assert decode_message(fake_transports[0].data).property == 'some_property'

    async def test_deferred_call_runs_on_thunk(self, fake_transports: list[FakeTransport]) -> None:
        proxy = import_task_worker(MATH_MODULE, transport=scripted(12))

        thunk = proxy.multiply(3, 4)
        assert fake_transports == []

        assert await thunk() == 12
        assert len(fake_transports) == 1

    async def test_each_call_gets_a_new_transport(self, fake_transports: list[FakeTransport]) -> None:
        proxy = import_worker(MATH_MODULE, transport=scripted(1))
        await proxy.add(0, 1)
        await proxy.add(0, 1)
        assert len(fake_transports) == 2

    async def test_real_thread_transport(self) -> None:
        proxy = import_worker(MATH_MODULE)
        with anyio.fail_after(5):
            assert await proxy.add(1, 2) == 3
            assert await proxy.fib(12) == 144
            assert await proxy.numbers() == [1, 2, 3]
            with pytest.raises(RemoteError, match='ValueError: kaput'):
                await proxy.fail('kaput')


class TestPersistentProxy:
    async def test_one_transport_seeded_with_filename(self, fake_transports: list[FakeTransport]) -> None:
        proxy = import_persistent_worker(MATH_MODULE, transport=scripted(3, 7))

        assert await proxy.add(1, 2) == 3
        assert await proxy.add(3, 4) == 7

        (handle,) = fake_transports
        assert decode_message(handle.data) == WorkerMessage(filename=MATH_MODULE)
        assert [decode_message(frame).args for frame in handle.sent] == [(1, 2), (3, 4)]
        assert handle.terminate_calls == 0

    async def test_terminate_key(self, fake_transports: list[FakeTransport]) -> None:
        proxy = import_persistent_worker(MATH_MODULE, transport=scripted(), terminate_key='close')

        assert proxy.terminate is None
        proxy.close()

        assert fake_transports[0].terminate_calls == 1

    async def test_terminate_rejects_pending_call(self, fake_transports: list[FakeTransport]) -> None:
        proxy = import_persistent_worker(MATH_MODULE, transport=scripted(), message_options={'timeout': 0})
        errors: list[BaseException] = []

        async def call() -> None:
            try:
                await proxy.add(1, 1)
            except TransportClosedError as exc:
                errors.append(exc)

        with anyio.fail_after(2):
            async with anyio.create_task_group() as tg:
                tg.start_soon(call)
                await anyio.sleep(0.01)
                proxy.terminate()

        assert len(errors) == 1

    async def test_concurrent_calls_are_serialised(self) -> None:
        proxy = import_persistent_worker(MATH_MODULE)
        results: list[int] = []

        async def call(a: int) -> None:
            results.append(await proxy.add(a, 0))

        try:
            with anyio.fail_after(5):
                async with anyio.create_task_group() as tg:
                    for a in range(5):
                        tg.start_soon(call, a)
        finally:
            proxy.terminate()

        assert sorted(results) == [0, 1, 2, 3, 4]

    async def test_options_default_to_keep_alive(self) -> None:
        proxy = import_worker_proxy(MATH_MODULE, persistent=True, transport=scripted())
        assert proxy._self_options.terminate is False
        proxy.terminate()

    async def test_direct_proxy_keeps_transport_after_call(self, fake_transports: list[FakeTransport]) -> None:
        proxy = ModuleProxy(
            load_module(MATH_MODULE),
            MATH_MODULE,
            persistent=True,
            execute_immediately=True,
            transport=scripted(3, 5),
            message_options=MessageOptions(timeout=5),
        )

        assert await proxy.add(1, 2) == 3
        assert fake_transports[0].terminate_calls == 0
        assert await proxy.add(2, 3) == 5

        proxy.terminate()
        assert fake_transports[0].terminate_calls == 1

    async def test_direct_ephemeral_proxy_tears_down(self, fake_transports: list[FakeTransport]) -> None:
        proxy = ModuleProxy(
            load_module(MATH_MODULE),
            MATH_MODULE,
            execute_immediately=True,
            transport=scripted(3),
            message_options=MessageOptions(timeout=5),
        )

        assert await proxy.add(1, 2) == 3
        assert fake_transports[0].terminate_calls == 1
