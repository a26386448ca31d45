"""Tests for the drop-when-full result channel."""

from __future__ import annotations

import asyncio

import pytest

from ratestorm._internal.errors import ChannelClosedError, ProgrammingError
from ratestorm.engine.channel import DEFAULT_CAPACITY, ResultChannel
from ratestorm.metrics.models import Outcome


def _ok(code: int = 200) -> Outcome:
    return Outcome.success(code, latency_ms=1.0)


class TestResultChannel:
    def test_defaults(self):
        channel = ResultChannel()
        assert channel.capacity == DEFAULT_CAPACITY
        assert channel.pending == 0
        assert not channel.closed

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError, match="capacity"):
            ResultChannel(capacity=0)

    def test_push_then_drain_preserves_order(self):
        channel = ResultChannel(capacity=10)
        for code in (200, 404, 503):
            assert channel.push(_ok(code)) is True

        assert channel.pending == 3
        drained = channel.drain()
        assert [o.status_code for o in drained] == [200, 404, 503]
        assert channel.pending == 0
        assert channel.pushed == 3

    def test_drain_on_empty_channel_returns_immediately(self):
        channel = ResultChannel()
        assert channel.drain() == []
        assert channel.drain() == []

    def test_full_channel_drops_and_counts(self):
        channel = ResultChannel(capacity=2)
        assert channel.push(_ok())
        assert channel.push(_ok())
        assert channel.push(_ok()) is False
        assert channel.push(_ok()) is False

        assert channel.pushed == 2
        assert channel.dropped == 2
        assert len(channel.drain()) == 2

        # Space is available again after a drain
        assert channel.push(_ok())

    def test_push_after_close_raises(self):
        channel = ResultChannel()
        channel.close()
        with pytest.raises(ChannelClosedError):
            channel.push(_ok())

    def test_closed_error_is_programming_error(self):
        channel = ResultChannel()
        channel.close()
        with pytest.raises(ProgrammingError):
            channel.push(_ok())

    def test_drain_after_close_returns_remaining(self):
        channel = ResultChannel()
        channel.push(_ok(201))
        channel.close()
        channel.close()

        assert channel.closed
        assert [o.status_code for o in channel.drain()] == [201]
        assert channel.drain() == []

    async def test_interleaved_push_and_drain_lose_nothing(self):
        channel = ResultChannel(capacity=1000)
        collected: list[Outcome] = []
        done = asyncio.Event()

        async def producer(worker_id: int) -> None:
            for _ in range(50):
                channel.push(Outcome.success(200, worker_id=worker_id))
                await asyncio.sleep(0)

        async def consumer() -> None:
            while not done.is_set():
                collected.extend(channel.drain())
                await asyncio.sleep(0)
            collected.extend(channel.drain())

        drain_task = asyncio.create_task(consumer())
        await asyncio.gather(*(producer(i) for i in range(4)))
        done.set()
        await drain_task

        assert len(collected) == 200 == channel.pushed
        assert channel.dropped == 0
