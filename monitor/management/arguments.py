"""
Общие аргументы management-команд и разбор человекочитаемых значений:
длительности ("15days 2min 2s", "100ms", ISO 8601), размеры ("10MiB")
и даты (RFC 3339 или YYYY-MM-DD).
"""
import argparse
import re
from datetime import datetime, timedelta, timezone

from django.utils.dateparse import parse_date, parse_datetime, parse_duration

from clickhouse_client import ErrorFilter, QueryLogFilter
from monitor.analyzer import QueriesSortBy

OUTPUT_FORMATS = ('text', 'json', 'yaml')

_DURATION_PART = re.compile(r'(\d+)\s*([a-zA-Z]+)')

# Месяц и год как в humantime: 30.44 и 365.25 суток
_DURATION_UNITS = {
    'nsec': timedelta(microseconds=0.001), 'ns': timedelta(microseconds=0.001),
    'usec': timedelta(microseconds=1), 'us': timedelta(microseconds=1),
    'msec': timedelta(milliseconds=1), 'millis': timedelta(milliseconds=1), 'ms': timedelta(milliseconds=1),
    'seconds': timedelta(seconds=1), 'second': timedelta(seconds=1), 'sec': timedelta(seconds=1),
    's': timedelta(seconds=1),
    'minutes': timedelta(minutes=1), 'minute': timedelta(minutes=1), 'min': timedelta(minutes=1),
    'mins': timedelta(minutes=1), 'm': timedelta(minutes=1),
    'hours': timedelta(hours=1), 'hour': timedelta(hours=1), 'hr': timedelta(hours=1),
    'hrs': timedelta(hours=1), 'h': timedelta(hours=1),
    'days': timedelta(days=1), 'day': timedelta(days=1), 'd': timedelta(days=1),
    'weeks': timedelta(weeks=1), 'week': timedelta(weeks=1), 'w': timedelta(weeks=1),
    'months': timedelta(seconds=2_630_016), 'month': timedelta(seconds=2_630_016),
    'M': timedelta(seconds=2_630_016),
    'years': timedelta(seconds=31_557_600), 'year': timedelta(seconds=31_557_600),
    'y': timedelta(seconds=31_557_600),
}

_SIZE = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*([a-zA-Z]*)\s*$')

_SIZE_UNITS = {
    '': 1, 'b': 1,
    'k': 10 ** 3, 'kb': 10 ** 3, 'ki': 2 ** 10, 'kib': 2 ** 10,
    'm': 10 ** 6, 'mb': 10 ** 6, 'mi': 2 ** 20, 'mib': 2 ** 20,
    'g': 10 ** 9, 'gb': 10 ** 9, 'gi': 2 ** 30, 'gib': 2 ** 30,
    't': 10 ** 12, 'tb': 10 ** 12, 'ti': 2 ** 40, 'tib': 2 ** 40,
    'p': 10 ** 15, 'pb': 10 ** 15, 'pi': 2 ** 50, 'pib': 2 ** 50,
}


def duration(value: str) -> timedelta:
    """Длительность: '15days 2min 2s', '100ms' или ISO 8601 ('P1DT2H')"""
    text = value.strip()
    if not text:
        raise argparse.ArgumentTypeError("empty duration")
    parts = _DURATION_PART.findall(text)
    if parts and _DURATION_PART.sub('', text).strip() == '':
        total = timedelta()
        for amount, unit in parts:
            if unit not in _DURATION_UNITS:
                raise argparse.ArgumentTypeError(f"unknown time unit '{unit}' in '{value}'")
            total += int(amount) * _DURATION_UNITS[unit]
        return total

    parsed = parse_duration(text)
    if parsed is None or parsed < timedelta():
        raise argparse.ArgumentTypeError(
            f"invalid duration '{value}', expected e.g. '15days 2min 2s', '100ms' or 'P1DT2H'"
        )
    return parsed


def byte_size(value: str) -> int:
    """Размер в байтах: 1000, 10KB, 1.5GiB"""
    match = _SIZE.match(value)
    unit = match.group(2).lower() if match else None
    if not match or unit not in _SIZE_UNITS:
        raise argparse.ArgumentTypeError(f"invalid size '{value}', expected e.g. 512B, 10KB, 1GiB")
    return int(float(match.group(1)) * _SIZE_UNITS[unit])


def date_or_datetime(value: str) -> datetime:
    """
    RFC 3339 ('2024-05-04T15:00:00Z') или дата ('2024-05-04', полночь UTC)
    """
    try:
        parsed = parse_datetime(value)
        if parsed is not None:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed

        day = parse_date(value)
    except ValueError:
        day = None

    if day is None:
        raise argparse.ArgumentTypeError(
            "Invalid datetime format. Use RFC3339 (e.g. 2024-05-01T10:30:00Z) or YYYY-MM-DD."
        )
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def sort_metric(value: str) -> QueriesSortBy:
    try:
        return QueriesSortBy.from_cli(value)
    except ValueError as e:
        choices = ', '.join(item.cli_name for item in QueriesSortBy)
        raise argparse.ArgumentTypeError(f"{e}. Choose from: {choices}") from e


def non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative integer, got {value}")
    return number


def add_common_arguments(parser) -> None:
    parser.add_argument('--config', help='Path to the context profiles file')
    parser.add_argument(
        '--context',
        help='Context profile to use instead of the stored default',
    )
    parser.add_argument(
        '--out',
        choices=OUTPUT_FORMATS,
        default='text',
        help='Output format: text (default), json or yaml',
    )


def add_connection_arguments(parser) -> None:
    group = parser.add_argument_group('connection')
    group.add_argument(
        '-U', '--url',
        dest='urls',
        action='append',
        default=[],
        help='ClickHouse node address (can be specified multiple times)',
    )
    group.add_argument('-u', '--user', help='ClickHouse username')
    secret = group.add_mutually_exclusive_group()
    secret.add_argument('-p', '--password', help='ClickHouse password')
    secret.add_argument(
        '-i', '--interactive-password',
        action='store_true',
        help='Read ClickHouse password from an interactive prompt',
    )
    group.add_argument(
        '--accept-invalid-certificate',
        action='store_true',
        default=None,
        help='Accept invalid (e.g. self-signed) TLS certificates. Not recommended for production',
    )


def add_query_filter_arguments(parser) -> None:
    group = parser.add_argument_group('query filters')
    window = group.add_mutually_exclusive_group(required=True)
    window.add_argument(
        '--from',
        dest='from_time',
        type=date_or_datetime,
        help='Lower bound for event_time (inclusive), RFC3339 or YYYY-MM-DD',
    )
    window.add_argument(
        '--last',
        type=duration,
        help="Only queries from the last period, e.g. '15days 2min 2s'",
    )
    group.add_argument(
        '--to',
        dest='to_time',
        type=date_or_datetime,
        help='Upper bound for event_time (exclusive), RFC3339 or YYYY-MM-DD',
    )
    group.add_argument('--query-user', dest='users', action='append', default=[],
                       help='Filter by the user who executed the query (repeatable)')
    group.add_argument('--database', dest='databases', action='append', default=[],
                       help='Filter by database name (repeatable)')
    group.add_argument('--table', dest='tables', action='append', default=[],
                       help='Filter by table name (repeatable)')
    group.add_argument('--min-query-duration', type=duration,
                       help='Minimum query duration, e.g. 100ms, 1s')
    group.add_argument('--min-read-rows', type=non_negative_int,
                       help='Minimum number of rows read')
    group.add_argument('--min-read-data', type=byte_size,
                       help='Minimum amount of data read, e.g. 10MB, 1GiB')


def add_error_filter_arguments(parser) -> None:
    group = parser.add_argument_group('error filters')
    group.add_argument('--last', type=duration,
                       help="Only errors seen within the last period, e.g. '1h'")
    group.add_argument('--min-count', type=non_negative_int,
                       help='Drop errors seen fewer than N times across all nodes')
    group.add_argument('--code', dest='codes', type=int, action='append', default=[],
                       help='Filter by ClickHouse error code (repeatable)')


def build_query_filter(options) -> QueryLogFilter:
    """Фильтр query_log из опций команды"""
    return QueryLogFilter(
        from_time=options.get('from_time'),
        to_time=options.get('to_time'),
        last=options.get('last'),
        users=tuple(options.get('users') or ()),
        databases=tuple(options.get('databases') or ()),
        tables=tuple(options.get('tables') or ()),
        min_query_duration=options.get('min_query_duration'),
        min_read_rows=options.get('min_read_rows'),
        min_read_bytes=options.get('min_read_data'),
    )


def build_error_filter(options) -> ErrorFilter:
    return ErrorFilter(
        last=options.get('last'),
        min_count=options.get('min_count'),
        codes=tuple(options.get('codes') or ()),
    )


def add_limit_argument(parser, default: int) -> None:
    parser.add_argument('--limit', type=non_negative_int, default=default,
                        help=f'Number of output rows (default {default})')
