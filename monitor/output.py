"""
Вывод результатов команд: текстовые таблицы (rich), JSON и YAML.

Функции возвращают готовую строку; печатает её сама команда через self.stdout.
"""
import dataclasses
import io
import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import yaml
from django.template.defaultfilters import filesizeformat
from rich.console import Console
from rich.table import Table
from rich.text import Text

from clickhouse_client.rows import ErrorStat, QueryLogStat, QueryLogTotal

MAX_COLUMN_LEN = 30
TABLE_WIDTH = 160


def compact_str(value: str, max_len: int = MAX_COLUMN_LEN) -> str:
    """Схлопнуть пробелы и переносы, обрезать до max_len с многоточием"""
    compact = ' '.join((value or '').split())
    if len(compact) > max_len:
        compact = compact[:max_len] + '…'
    return compact


def format_hash(value: int) -> str:
    return f"{value:#x}"


def format_size(value: int) -> str:
    # filesizeformat отдаёт неразрывный пробел
    return str(filesizeformat(value)).replace('\xa0', ' ')


DECIMAL_UNITS = ('B', 'kB', 'MB', 'GB', 'TB', 'PB', 'EB')


def format_impact(value: int) -> str:
    """Оценка влияния в десятичных единицах (шаг 1000): 1500 -> '1.5 kB'"""
    if value < 1000:
        return f"{value} B"
    scaled = float(value)
    unit = 0
    while scaled >= 1000 and unit < len(DECIMAL_UNITS) - 1:
        scaled /= 1000
        unit += 1
    number = f"{scaled:.2f}".rstrip('0').rstrip('.')
    return f"{number} {DECIMAL_UNITS[unit]}"


def format_time(value: Optional[datetime]) -> str:
    return value.isoformat() if value is not None else '-'


def _plain(value: Any) -> Any:
    """Привести dataclass/datetime к типам, понятным json и yaml"""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {k: _plain(v) for k, v in dataclasses.asdict(value).items()}
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def serialize(data: Any, fmt: str) -> str:
    data = _plain(data)
    if fmt == 'json':
        return json.dumps(data, indent=2, ensure_ascii=False)
    if fmt == 'yaml':
        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True).rstrip('\n')
    raise ValueError(f"Unsupported structured output format: {fmt}")


def _render(table: Table) -> str:
    buffer = io.StringIO()
    console = Console(file=buffer, width=TABLE_WIDTH, color_system=None, highlight=False)
    console.print(table)
    return buffer.getvalue().rstrip('\n')


def _table(*headers: str) -> Table:
    table = Table(show_header=True, header_style='bold')
    for header in headers:
        table.add_column(header)
    return table


def _row(table: Table, *cells: str) -> None:
    # Text, чтобы квадратные скобки в SQL не разбирались как разметка rich
    table.add_row(*(Text(cell) for cell in cells))


# --- queries / total / inspect ---

def top_queries(queries: Sequence[QueryLogStat], fmt: str = 'text') -> str:
    if fmt != 'text':
        return serialize(list(queries), fmt)

    table = _table(
        'Hash', 'Query', 'Total Impact', 'IO Impact', 'Network Impact',
        'CPU Impact', 'Memory Impact', 'Time Impact',
    )
    for q in queries:
        _row(
            table,
            format_hash(q.normalized_query_hash),
            compact_str(q.query),
            format_impact(q.total_impact),
            format_impact(q.io_impact),
            format_impact(q.network_impact),
            format_impact(q.cpu_impact),
            format_impact(q.memory_impact),
            format_impact(q.time_impact),
        )
    return _render(table)


def total_queries(total: QueryLogTotal, fmt: str = 'text') -> str:
    if fmt != 'text':
        return serialize(total, fmt)

    table = _table(
        'Queries', 'Total Impact', 'IO Impact', 'Network Impact',
        'CPU Impact', 'Memory Impact', 'Time Impact',
    )
    _row(
        table,
        str(total.queries_count),
        format_impact(total.total_impact),
        format_impact(total.io_impact),
        format_impact(total.network_impact),
        format_impact(total.cpu_impact),
        format_impact(total.memory_impact),
        format_impact(total.time_impact),
    )
    return _render(table)


def query_details(query: Optional[QueryLogStat], fmt: str = 'text') -> str:
    """Подробности одного отпечатка; None значит «не найден»"""
    if fmt != 'text':
        return serialize(query, fmt)
    if query is None:
        return 'Query fingerprint not found'

    table = Table(show_header=False)
    table.add_column('Field', style='bold')
    table.add_column('Value')
    details = [
        ('Hash', format_hash(query.normalized_query_hash)),
        ('Query', ' '.join(query.query.split())),
        ('First seen', format_time(query.min_event_time)),
        ('Last seen', format_time(query.max_event_time)),
        ('Users', ', '.join(query.users)),
        ('Databases', ', '.join(query.databases)),
        ('Tables', ', '.join(query.tables)),
        ('Query duration', f"{query.total_query_duration_ms} ms"),
        ('Read rows', str(query.total_read_rows)),
        ('Read data', format_size(query.total_read_bytes)),
        ('Memory usage', format_size(query.total_memory_usage)),
        ('User time', f"{query.total_user_time_us} us"),
        ('System time', f"{query.total_system_time_us} us"),
        ('Network receive', format_size(query.total_network_receive_bytes)),
        ('Network send', format_size(query.total_network_send_bytes)),
        ('Total impact', format_impact(query.total_impact)),
        ('IO impact', format_impact(query.io_impact)),
        ('Network impact', format_impact(query.network_impact)),
        ('CPU impact', format_impact(query.cpu_impact)),
        ('Memory impact', format_impact(query.memory_impact)),
        ('Time impact', format_impact(query.time_impact)),
    ]
    for name, value in details:
        _row(table, name, value)
    return _render(table)


# --- errors ---

def top_errors(errors: Sequence[ErrorStat], fmt: str = 'text') -> str:
    if fmt != 'text':
        return serialize(list(errors), fmt)

    table = _table('Code', 'Name', 'Count', 'Last Seen', 'Message')
    for e in errors:
        _row(
            table,
            str(e.code),
            e.name,
            str(e.count),
            format_time(e.last_error_time),
            compact_str(e.error_message),
        )
    return _render(table)


# --- context ---

def context_config_path(path: str, fmt: str = 'text') -> str:
    if fmt != 'text':
        return serialize({'config_path': path}, fmt)
    return path


def context_list(names: List[str], fmt: str = 'text') -> str:
    if fmt != 'text':
        return serialize({'profiles': names}, fmt)
    table = _table('Name')
    for name in names:
        _row(table, name)
    return _render(table)


def context_current(active: Optional[str], fmt: str = 'text') -> str:
    if fmt != 'text':
        return serialize({'current': active}, fmt)
    return active if active else 'No active context set'


def context_profile(printable: Dict[str, Any], fmt: str = 'text') -> str:
    if fmt != 'text':
        return serialize(printable, fmt)
    password = printable['password'] or '(empty)'
    return '\n'.join([
        'Profile:',
        f"  URLs: {', '.join(printable['urls'])}",
        f"  User: {printable['user']}",
        f"  Password: {password}",
        f"  Accept invalid certificate: {printable['accept_invalid_certificate']}",
    ])
