from __future__ import annotations

import asyncio
import threading
from datetime import datetime

import pytest
from clickhouse_driver.errors import NetworkError, ServerException

from clickhouse_client import client as client_module
from clickhouse_client.client import ClickHouseClient, bind_params
from clickhouse_client.config import ConnectionProfile
from clickhouse_client.exceptions import ClickHouseConnectionError, ClickHouseQueryError
from clickhouse_client.filters import QueryParam
from clickhouse_client.health_check import check_nodes
from clickhouse_client.rows import ErrorStat


class FakeDriver:
    """Подмена clickhouse_driver.Client: запоминает вызовы, отдаёт заготовленные строки"""

    instances: list = []
    rows: list = []
    error: Exception | None = None

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.calls = []
        self.disconnected = False
        FakeDriver.instances.append(self)

    def execute_iter(self, query, params=None, settings=None):
        self.calls.append((query, params, settings))
        for row in FakeDriver.rows:
            yield row
        if FakeDriver.error is not None:
            raise FakeDriver.error

    def execute(self, query, params=None):
        self.calls.append((query, params, None))
        if FakeDriver.error is not None:
            raise FakeDriver.error
        return [('24.3.1.1',)]

    def disconnect(self):
        self.disconnected = True


@pytest.fixture
def driver(monkeypatch):
    FakeDriver.instances = []
    FakeDriver.rows = []
    FakeDriver.error = None
    monkeypatch.setattr(client_module, 'ClickhouseDriver', FakeDriver)
    return FakeDriver


def _client(url='clickhouses://ch1', **profile):
    return ClickHouseClient(url, ConnectionProfile(urls=[url], user='reader', password='secret', **profile))


def _error_row(code=60):
    return (code, 'UNKNOWN_TABLE', 2, datetime(2024, 5, 4, 10, 0), 'missing')


def test_bind_params_numbers_placeholders():
    query, values = bind_params(
        "a = ? AND b IN (?, ?) AND c LIKE '%x'",
        [QueryParam.uint64(1), QueryParam.string('x'), QueryParam.string('y')],
    )

    assert query == "a = %(p0)s AND b IN (%(p1)s, %(p2)s) AND c LIKE '%%x'"
    assert values == {'p0': 1, 'p1': 'x', 'p2': 'y'}


def test_bind_params_rejects_mismatch():
    with pytest.raises(ValueError):
        bind_params('a = ?', [])


def test_connection_config_from_profile(driver):
    node = _client(accept_invalid_certificate=True)
    node.connect()

    kwargs = driver.instances[0].kwargs
    assert node.node == 'ch1:9440'
    assert kwargs['host'] == 'ch1'
    assert kwargs['port'] == 9440
    assert kwargs['secure'] is True
    assert kwargs['verify'] is False
    assert kwargs['user'] == 'reader'
    assert kwargs['password'] == 'secret'


def test_iter_rows_yields_typed_rows(driver):
    driver.rows = [_error_row(60), _error_row(81)]
    node = _client()

    rows = list(node.iter_rows('SELECT ? AS x', [QueryParam.int32(5)], ErrorStat))

    assert [r.code for r in rows] == [60, 81]
    query, params, settings = driver.instances[0].calls[0]
    assert query == 'SELECT %(p0)s AS x'
    assert params == {'p0': 5}
    assert settings == {'max_block_size': 65536}


def test_malformed_row_is_a_query_error(driver):
    driver.rows = [(1, 2)]

    with pytest.raises(ClickHouseQueryError) as excinfo:
        list(_client().iter_rows('SELECT 1', [], ErrorStat))

    assert excinfo.value.node == 'ch1:9440'


def test_driver_errors_are_wrapped(driver):
    driver.error = NetworkError('connection refused')
    with pytest.raises(ClickHouseConnectionError):
        list(_client().iter_rows('SELECT 1', [], ErrorStat))

    driver.error = ServerException('Unknown table', code=60)
    with pytest.raises(ClickHouseQueryError) as excinfo:
        list(_client().iter_rows('SELECT 1', [], ErrorStat))
    assert not isinstance(excinfo.value, ClickHouseConnectionError)


def test_stream_runs_driver_in_executor(driver):
    driver.rows = [_error_row(1), _error_row(2), _error_row(3)]

    async def collect():
        return [row.code async for row in _client().stream('SELECT 1', [], ErrorStat)]

    assert asyncio.run(collect()) == [1, 2, 3]


def test_cancelled_stream_waits_for_running_fetch(driver, monkeypatch):
    gate = threading.Event()
    events = []

    def execute_iter(self, query, params=None, settings=None):
        yield _error_row(1)
        events.append('fetching')
        gate.wait(timeout=5)
        events.append('fetched')
        yield _error_row(2)

    monkeypatch.setattr(driver, 'execute_iter', execute_iter)

    async def consume():
        async for _ in _client().stream('SELECT 1', [], ErrorStat):
            pass

    async def scenario():
        task = asyncio.create_task(consume())
        while 'fetching' not in events:
            await asyncio.sleep(0.01)
        task.cancel()
        # Чтение в потоке заканчивается уже после отмены
        asyncio.get_running_loop().call_later(0.05, gate.set)
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(asyncio.wait_for(scenario(), timeout=5))

    assert events == ['fetching', 'fetched']


def test_health_check_reports_each_node(driver):
    results = check_nodes([_client('ch1'), _client('ch2:9001')])

    assert [(h.node, h.ok, h.version) for h in results] == [
        ('ch1:9000', True, '24.3.1.1'),
        ('ch2:9001', True, '24.3.1.1'),
    ]
    assert all(d.disconnected for d in driver.instances)


def test_health_check_reports_failure(driver):
    driver.error = NetworkError('timed out')

    [health] = check_nodes([_client('ch1')])

    assert not health.ok
    assert 'timed out' in health.error
