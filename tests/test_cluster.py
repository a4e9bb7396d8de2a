from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from clickhouse_client.channel import RowChannel
from clickhouse_client.cluster import ClickHouseCluster
from clickhouse_client.config import ConnectionProfile
from clickhouse_client.exceptions import ClickHouseConfigError, ClickHouseQueryError, FilterBuildError
from clickhouse_client.filters import ErrorFilter, QueryLogFilter, QueryParam
from clickhouse_client.rows import QueryLogStat
from monitor import pipeline


def _stat(fingerprint, duration):
    return QueryLogStat.from_row((
        fingerprint, 'SELECT 1',
        datetime(2024, 5, 4, 10, 0, tzinfo=timezone.utc),
        datetime(2024, 5, 4, 11, 0, tzinfo=timezone.utc),
        duration, 0, 0, 0, 0, 0, 0, 0, [], [], [],
    ))


class FakeNode:
    """Узел в памяти: отдаёт заранее заданные строки или падает после них"""

    def __init__(self, name, rows=(), error=None, delay=0.0):
        self.node = name
        self.rows = list(rows)
        self.error = error
        self.delay = delay
        self.calls = []
        self.disconnected = False
        self.closed = False

    async def stream(self, query, params, row_type, executor=None):
        self.calls.append((query, list(params), row_type))
        try:
            for row in self.rows:
                await asyncio.sleep(self.delay)
                yield row
            if self.error is not None:
                raise ClickHouseQueryError(self.node, self.error)
        finally:
            self.closed = True

    def disconnect(self):
        self.disconnected = True


def test_empty_cluster_is_rejected():
    with pytest.raises(ClickHouseConfigError):
        ClickHouseCluster([])
    with pytest.raises(ClickHouseConfigError):
        ClickHouseCluster.from_profile(ConnectionProfile(urls=[]))


def test_from_profile_creates_one_client_per_url():
    cluster = ClickHouseCluster.from_profile(ConnectionProfile(urls=['ch1', 'ch2:9001'], user='u'))
    assert [n.node for n in cluster.nodes] == ['ch1:9000', 'ch2:9001']


def test_rows_from_all_nodes_reach_the_receiver():
    nodes = [
        FakeNode('n1', [_stat(1, 10), _stat(2, 30)]),
        FakeNode('n2', [_stat(1, 40)]),
        FakeNode('n3', [_stat(3, 5)]),
    ]
    cluster = ClickHouseCluster(nodes)
    req = pipeline.TopQueriesRequest(filter=QueryLogFilter(last=timedelta(hours=1)), limit=2)

    top = asyncio.run(pipeline.top_queries(cluster, req, capacity=1))

    assert [q.normalized_query_hash for q in top] == [1, 2]
    assert top[0].total_query_duration_ms == 50
    # Все узлы получили один и тот же запрос
    assert len({node.calls[0][0] for node in nodes}) == 1


def test_one_failed_node_fails_the_whole_request():
    good = FakeNode('n1', [_stat(1, 10), _stat(2, 20)])
    bad = FakeNode('n2', [_stat(3, 30)], error='Code: 60. Unknown table')
    slow = FakeNode('n3', [_stat(4, 40)] * 3, delay=0.01)
    cluster = ClickHouseCluster([good, bad, slow])
    req = pipeline.TopQueriesRequest(filter=QueryLogFilter(last=timedelta(hours=1)))

    with pytest.raises(ClickHouseQueryError) as excinfo:
        asyncio.run(pipeline.top_queries(cluster, req))

    assert excinfo.value.node == 'n2'
    # Соседние узлы не отменяются
    assert slow.calls


def test_first_error_by_completion_wins():
    early = FakeNode('early', error='first')
    late = FakeNode('late', [_stat(1, 1)] * 3, error='second', delay=0.01)
    cluster = ClickHouseCluster([late, early])
    req = pipeline.TotalQueriesRequest(filter=QueryLogFilter(last=timedelta(hours=1)))

    with pytest.raises(ClickHouseQueryError) as excinfo:
        asyncio.run(pipeline.total_queries(cluster, req))

    assert excinfo.value.node == 'early'


def test_invalid_filter_fails_before_streaming():
    node = FakeNode('n1', [_stat(1, 1)])
    cluster = ClickHouseCluster([node])
    req = pipeline.TopQueriesRequest(filter=QueryLogFilter())

    with pytest.raises(FilterBuildError) as excinfo:
        asyncio.run(pipeline.top_queries(cluster, req))

    assert 'required' in str(excinfo.value)
    assert node.calls == []


def test_inspect_sends_fingerprint_first():
    node = FakeNode('n1', [_stat(7, 1)])
    cluster = ClickHouseCluster([node])
    req = pipeline.InspectQueryRequest(fingerprint=7, filter=QueryLogFilter(last=timedelta(hours=1)))

    found = asyncio.run(pipeline.inspect_query(cluster, req))

    query, params, _ = node.calls[0]
    assert found.normalized_query_hash == 7
    assert params[0] == QueryParam.uint64(7)
    assert query.count('?') == len(params)


def test_error_stream_binds_where_then_having():
    node = FakeNode('n1')
    cluster = ClickHouseCluster([node])
    req = pipeline.TopErrorsRequest(filter=ErrorFilter(min_count=3, codes=(60,)))

    assert asyncio.run(pipeline.top_errors(cluster, req)) == []

    query, params, _ = node.calls[0]
    assert params == [QueryParam.int32(60), QueryParam.uint64(3)]
    assert query.index('code IN') < query.index('count >=')


def test_cluster_stream_closes_channel():
    async def scenario():
        channel = RowChannel(4)
        cluster = ClickHouseCluster([FakeNode('n1', [_stat(1, 1)])])
        await cluster.stream('SELECT 1', [], QueryLogStat, channel)
        rows = [row async for row in channel]
        return rows

    assert len(asyncio.run(scenario())) == 1


def test_cancelled_stream_waits_for_every_node():
    nodes = [
        FakeNode('n1', [_stat(1, 1)] * 100, delay=0.01),
        FakeNode('n2', [_stat(2, 1)] * 100, delay=0.01),
    ]

    async def scenario():
        channel = RowChannel(1000)
        task = asyncio.create_task(ClickHouseCluster(nodes).stream('SELECT 1', [], QueryLogStat, channel))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        # К моменту выхода каждый узел уже закрыл свой поток строк
        return [node.closed for node in nodes]

    assert asyncio.run(asyncio.wait_for(scenario(), timeout=5)) == [True, True]


def test_close_disconnects_every_node():
    nodes = [FakeNode('n1'), FakeNode('n2')]
    ClickHouseCluster(nodes).close()
    assert all(n.disconnected for n in nodes)
