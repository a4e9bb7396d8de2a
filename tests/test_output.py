from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
import yaml

from clickhouse_client.rows import ErrorStat, QueryLogStat, QueryLogTotal
from monitor import output


def _stat():
    return QueryLogStat.from_row((
        0xABC, 'SELECT *\n  FROM   events\tWHERE id IN [1, 2] AND name = [bold]',
        datetime(2024, 5, 4, 10, 0), datetime(2024, 5, 4, 11, 0),
        1, 2, 3, 4, 5, 6, 7, 8, ['alice'], ['db'], ['db.events'],
    ))


def test_compact_str():
    assert output.compact_str('  a\n\tb   c ') == 'a b c'
    assert output.compact_str('x' * 40) == 'x' * 30 + '…'


@pytest.mark.parametrize('value, expected', [
    (0, '0 B'),
    (999, '999 B'),
    (1000, '1 kB'),
    (1500, '1.5 kB'),
    (1024, '1.02 kB'),
    (2_000_000, '2 MB'),
    (3_250_000_000, '3.25 GB'),
    (2 ** 64 - 1, '18.45 EB'),
])
def test_format_impact_uses_decimal_units(value, expected):
    assert output.format_impact(value) == expected


def test_total_text_table_shows_decimal_impacts():
    text = output.total_queries(QueryLogTotal(queries_count=3, total_impact=1500, io_impact=2_000_000))

    assert '1.5 kB' in text
    assert '2 MB' in text
    assert 'KB' not in text


def test_queries_text_table():
    text = output.top_queries([_stat()])

    assert '0xabc' in text
    assert 'SELECT * FROM events WHERE id' in text
    assert 'Total Impact' in text


def test_queries_json():
    data = json.loads(output.top_queries([_stat()], 'json'))

    assert data[0]['normalized_query_hash'] == 0xABC
    assert data[0]['min_event_time'] == '2024-05-04T10:00:00+00:00'
    assert data[0]['users'] == ['alice']


def test_total_yaml():
    data = yaml.safe_load(output.total_queries(QueryLogTotal(queries_count=3, total_impact=10), 'yaml'))

    assert data['queries_count'] == 3
    assert data['total_impact'] == 10


def test_errors_text_table():
    err = ErrorStat(60, 'UNKNOWN_TABLE', 7, datetime(2024, 5, 4, 10, 0, tzinfo=timezone.utc), 'Table x.y does not exist')
    text = output.top_errors([err])

    assert 'UNKNOWN_TABLE' in text
    assert '2024-05-04T10:00:00+00:00' in text


def test_query_details():
    assert output.query_details(None) == 'Query fingerprint not found'
    assert json.loads(output.query_details(None, 'json')) is None
    assert 'db.events' in output.query_details(_stat())


def test_context_outputs():
    assert output.context_current(None) == 'No active context set'
    assert json.loads(output.context_current('prod', 'json')) == {'current': 'prod'}
    assert yaml.safe_load(output.context_list(['a', 'b'], 'yaml')) == {'profiles': ['a', 'b']}

    text = output.context_profile({
        'user': 'u', 'password': '', 'urls': ['ch1', 'ch2'], 'accept_invalid_certificate': False,
    })
    assert 'Password: (empty)' in text
    assert 'URLs: ch1, ch2' in text
