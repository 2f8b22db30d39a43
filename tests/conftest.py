"""Shared fixtures for klaw-threadpool tests."""

from __future__ import annotations

from collections.abc import Generator
from typing import Any

import anyio
import pytest

from klaw_threadpool import init
from klaw_threadpool.errors import TransportClosedError
from klaw_threadpool.resources import SystemInfo

MATH_MODULE = 'tests.fixtures.math_module'


class StubOracle:
    """Resource oracle whose answer is set by the test."""

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.calls = 0
        self.system = SystemInfo(cores=2, threads=4, memory=1024)

    def is_any_thread_below(self, threshold: float) -> bool:
        self.calls += 1
        return self.available


class FakeTransport:
    """In-memory transport handle with scripted replies.

    ``replies`` are returned by ``receive()`` in order; once exhausted,
    ``receive()`` blocks until ``terminate()`` wakes it.
    """

    instances: list[FakeTransport] = []

    def __init__(self, source: str, data: bytes, replies: list[bytes] | None = None, **options: Any) -> None:
        self.name = 'fake'
        self.source = source
        self.data = data
        self.sent: list[bytes] = []
        self.terminate_calls = 0
        self._replies = list(replies or [])
        self._closed_event = anyio.Event()
        FakeTransport.instances.append(self)

    @property
    def closed(self) -> bool:
        return self.terminate_calls > 0

    def send(self, frame: bytes) -> None:
        if self.closed:
            raise TransportClosedError(self.name)
        self.sent.append(frame)

    async def receive(self) -> bytes:
        if self.closed:
            raise TransportClosedError(self.name)
        if self._replies:
            return self._replies.pop(0)
        await self._closed_event.wait()
        raise TransportClosedError(self.name)

    def terminate(self) -> None:
        self.terminate_calls += 1
        self._closed_event.set()


@pytest.fixture(autouse=True)
def setup_config() -> None:
    """Pin pool defaults so tests do not depend on the host."""
    init(pool_size=2, ping_interval=0.01, timeout=5.0, transport='thread')


@pytest.fixture
def oracle() -> StubOracle:
    return StubOracle()


@pytest.fixture
def fake_transports() -> Generator[list[FakeTransport]]:
    FakeTransport.instances.clear()
    yield FakeTransport.instances
    FakeTransport.instances.clear()
