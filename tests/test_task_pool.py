"""Tests for TaskPool admission, draining and status projections."""

from __future__ import annotations

import anyio
import pytest
from hypothesis import given
from hypothesis import strategies as st

from klaw_threadpool.errors import InvalidStatusFieldError
from klaw_threadpool.task_pool import STATUS_ALL, StatusType, TaskPool, round_half_away


class Recorder:
    def __init__(self) -> None:
        self.events: list[str] = []

    def __call__(self, event: str) -> None:
        self.events.append(event)

    def count(self, event: str) -> int:
        return self.events.count(event)


class TestQueueOperations:
    def test_next_is_fifo(self) -> None:
        pool: TaskPool[str] = TaskPool(pool_size=3)
        for item in 'abc':
            pool.enqueue(item)

        assert [pool.next(), pool.next(), pool.next()] == ['a', 'b', 'c']

    def test_next_respects_pool_size(self) -> None:
        pool: TaskPool[int] = TaskPool(pool_size=2)
        for i in range(3):
            pool.enqueue(i)

        assert pool.next() == 0
        assert pool.next() == 1
        assert pool.next() is None
        assert pool.status('active') == 2

    def test_next_on_empty_pool(self) -> None:
        assert TaskPool[int]().next() is None

    def test_complete_requires_active_item(self) -> None:
        pool: TaskPool[str] = TaskPool()
        pool.enqueue('a')

        assert pool.complete('a') is False
        assert pool.status(STATUS_ALL) == {
            'queued': 1,
            'active': 0,
            'completed': 0,
            'remaining': 1,
            'started': 0,
            'total': 1,
        }

    def test_complete_without_check(self) -> None:
        pool: TaskPool[str] = TaskPool()
        assert pool.complete('a', check=False) is True
        assert pool.status('completed', StatusType.RAW) == ['a']

    def test_enqueue_with_check_moves_active_back(self) -> None:
        pool: TaskPool[str] = TaskPool()
        pool.enqueue('a')
        assert pool.next() == 'a'

        pool.enqueue('a', check=True)

        assert pool.status('active') == 0
        assert pool.status('queued', StatusType.RAW) == ['a']

    def test_has_available_slot(self) -> None:
        pool: TaskPool[str] = TaskPool(pool_size=1)
        assert pool.has_available_slot()
        pool.enqueue('a')
        pool.next()
        assert not pool.has_available_slot()


class TestCompletion:
    def test_complete_fires_once_per_drain(self) -> None:
        recorder = Recorder()
        pool: TaskPool[int] = TaskPool(pool_size=2, emitter=recorder)
        for i in range(5):
            pool.enqueue(i)

        completed = 0
        while (item := pool.next()) is not None or pool.status('active'):
            if item is None:
                item = pool.status('active', StatusType.RAW)[0]
            assert pool.complete(item)
            completed += 1

        assert completed == 5
        assert recorder.count('complete') == 1

        pool.is_completed(emit=True)
        pool.is_completed(emit=True)
        assert recorder.count('complete') == 1

        pool.enqueue(99)
        assert pool.complete(pool.next())
        assert recorder.count('complete') == 2

    def test_is_completed_without_emit_is_silent(self) -> None:
        recorder = Recorder()
        pool: TaskPool[int] = TaskPool(emitter=recorder)
        assert pool.is_completed()
        assert recorder.events == []

    async def test_completion_check_is_deferred_in_task_group(self) -> None:
        recorder = Recorder()
        async with TaskPool[str](ping_interval=0.01, emitter=recorder) as pool:
            pool.enqueue('a')
            item = pool.next()
            pool.complete(item)
            assert recorder.count('complete') == 0

            await anyio.sleep(0)
            await anyio.sleep(0)

        assert recorder.count('complete') == 1

    async def test_pinging_lifecycle(self) -> None:
        recorder = Recorder()
        async with TaskPool[str](ping_interval=0.01, emitter=recorder) as pool:
            pool.enqueue('a')
            pool.enqueue('b')
            assert pool.next() == 'a'
            assert pool.pinging
            await anyio.sleep(0.05)
            assert recorder.count('ping') >= 1

            pool.complete('a')
            assert pool.complete(pool.next())
            await anyio.sleep(0.02)
            assert not pool.pinging

        assert recorder.events[0] == 'startPinging'
        assert recorder.count('stopPinging') == 1
        assert recorder.count('complete') == 1


class TestStatus:
    def test_percentages(self) -> None:
        pool: TaskPool[str] = TaskPool(pool_size=2)
        pool.enqueue('a')
        pool.enqueue('b')
        pool.next()
        pool.complete(pool.next())

        result = pool.status(['queued', 'active', 'completed', 'total'], 2)

        assert result == {'queued': 0, 'active': 50.0, 'completed': 50.0, 'total': 100.0}

    def test_empty_pool_percentages_are_zero(self) -> None:
        pool: TaskPool[str] = TaskPool()
        assert pool.status(STATUS_ALL, StatusType.PERCENT) == dict.fromkeys(
            ('queued', 'active', 'completed', 'remaining', 'started', 'total'), 0.0
        )

    def test_raw_single_field(self) -> None:
        pool: TaskPool[str] = TaskPool()
        pool.enqueue('a')
        assert pool.status('remaining', StatusType.RAW) == ['a']

    def test_invalid_field_names_field(self) -> None:
        pool: TaskPool[str] = TaskPool()
        with pytest.raises(InvalidStatusFieldError, match='"invalidField"') as exc_info:
            pool.status('invalidField')  # type: ignore[arg-type]
        assert exc_info.value.field == 'invalidField'

    def test_invalid_format(self) -> None:
        with pytest.raises(ValueError, match='Invalid status format'):
            TaskPool[str]().status('total', 'bogus')

    def test_round_half_away(self) -> None:
        assert round_half_away(33.3333, 2) == 33.33
        assert round_half_away(0.125, 2) == 0.13
        assert round_half_away(-0.125, 2) == -0.13
        assert round_half_away(2.5) == 3.0


operations = st.lists(
    st.tuples(st.sampled_from(['enqueue', 'next', 'complete', 'requeue']), st.integers(0, 9)),
    max_size=60,
)


class TestInvariants:
    @given(pool_size=st.integers(1, 4), ops=operations)
    def test_buckets_stay_consistent(self, pool_size: int, ops: list[tuple[str, int]]) -> None:
        pool: TaskPool[object] = TaskPool(pool_size=pool_size)
        created: list[object] = []
        previous_total = 0

        for op, index in ops:
            if op == 'enqueue':
                item = object()
                created.append(item)
                pool.enqueue(item)
            elif op == 'next':
                pool.next()
            elif op == 'complete':
                active = pool.status('active', StatusType.RAW)
                if active:
                    pool.complete(active[index % len(active)])
            else:
                active = pool.status('active', StatusType.RAW)
                if active:
                    pool.enqueue(active[index % len(active)], check=True)

            buckets = pool.status(['queued', 'active', 'completed'], StatusType.RAW)
            assert len(buckets['active']) <= pool_size

            everything = buckets['queued'] + buckets['active'] + buckets['completed']
            assert len(everything) == len({id(item) for item in everything})
            assert len(everything) >= previous_total
            previous_total = len(everything)

        assert previous_total == len(created)

    @given(st.lists(st.integers(), max_size=20))
    def test_complete_of_queued_item_changes_nothing(self, items: list[int]) -> None:
        pool: TaskPool[int] = TaskPool()
        for item in items:
            pool.enqueue(item)
        before = pool.status(STATUS_ALL, StatusType.RAW)

        for item in items:
            if item not in pool.status('active', StatusType.RAW):
                assert pool.complete(item) is False

        assert pool.status(STATUS_ALL, StatusType.RAW) == before
