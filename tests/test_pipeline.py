from __future__ import annotations

import asyncio

import pytest

from clickhouse_client.exceptions import ChannelClosedError, FilterBuildError
from monitor.pipeline import run_pipeline


def test_result_of_consumer_is_returned():
    async def stream(channel):
        for i in range(10):
            await channel.send(i)

    async def consume(channel):
        return [row async for row in channel]

    assert asyncio.run(run_pipeline(stream, consume, capacity=2)) == list(range(10))


def test_stream_error_wins_over_result():
    async def stream(channel):
        await channel.send(1)
        raise FilterBuildError('bad filter')

    async def consume(channel):
        return [row async for row in channel]

    with pytest.raises(FilterBuildError):
        asyncio.run(run_pipeline(stream, consume))


def test_early_stream_failure_releases_consumer():
    async def stream(channel):
        raise FilterBuildError('failed before any node started')

    async def consume(channel):
        return [row async for row in channel]

    with pytest.raises(FilterBuildError):
        asyncio.run(asyncio.wait_for(run_pipeline(stream, consume), timeout=1))


def test_consumer_failure_stops_senders():
    async def stream(channel):
        for i in range(100):
            await channel.send(i)

    async def consume(channel):
        try:
            await channel.recv()
            raise RuntimeError('analyzer crashed')
        finally:
            channel.close_receiver()

    with pytest.raises(ChannelClosedError) as excinfo:
        asyncio.run(asyncio.wait_for(run_pipeline(stream, consume, capacity=1), timeout=1))

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert 'analyzer crashed' in str(excinfo.value)
