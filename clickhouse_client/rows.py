import logging
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

U64_MAX = 2 ** 64 - 1

RAW_FIELDS = (
    'total_query_duration_ms',
    'total_read_rows',
    'total_read_bytes',
    'total_memory_usage',
    'total_user_time_us',
    'total_system_time_us',
    'total_network_receive_bytes',
    'total_network_send_bytes',
)

# Порядок важен только для вывода
IMPACT_FIELDS = (
    'io_impact',
    'network_impact',
    'cpu_impact',
    'memory_impact',
    'time_impact',
    'total_impact',
)


def saturating_add(*values: int) -> int:
    """Сложение u64 с насыщением: никогда не переполняется"""
    return min(sum(values), U64_MAX)


def saturating_mul(a: int, b: int) -> int:
    return min(a * b, U64_MAX)


def _counter(value) -> int:
    # memory_usage в query_log знаковый, отрицательные суммы считаем нулём
    value = int(value or 0)
    if value < 0:
        return 0
    return min(value, U64_MAX)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class ImpactWeights:
    """
    Веса композитных оценок влияния.

    Таблица по умолчанию совпадает с формулами из запросов к query_log,
    чтобы результаты были сравнимы между запусками.
    """
    read_rows: int = 100
    read_bytes: int = 1
    network_bytes: int = 10
    cpu_time_us: int = 10_000
    memory_bytes: int = 10
    duration_ms: int = 1_000_000

    @classmethod
    def from_mapping(cls, mapping: Optional[Dict[str, int]]) -> 'ImpactWeights':
        if not mapping:
            return cls()
        known = {f.name for f in fields(cls)}
        unknown = set(mapping) - known
        if unknown:
            logger.warning(f"Ignoring unknown impact weights: {sorted(unknown)}")
        return cls(**{k: int(v) for k, v in mapping.items() if k in known})

    def score(
        self,
        duration_ms: int,
        read_rows: int,
        read_bytes: int,
        memory_usage: int,
        user_time_us: int,
        system_time_us: int,
        network_receive_bytes: int,
        network_send_bytes: int,
    ) -> Dict[str, int]:
        io_impact = saturating_add(
            saturating_mul(read_rows, self.read_rows),
            saturating_mul(read_bytes, self.read_bytes),
        )
        network_impact = saturating_mul(
            saturating_add(network_receive_bytes, network_send_bytes), self.network_bytes
        )
        cpu_impact = saturating_mul(
            saturating_add(user_time_us, system_time_us), self.cpu_time_us
        )
        memory_impact = saturating_mul(memory_usage, self.memory_bytes)
        time_impact = saturating_mul(duration_ms, self.duration_ms)

        return {
            'io_impact': io_impact,
            'network_impact': network_impact,
            'cpu_impact': cpu_impact,
            'memory_impact': memory_impact,
            'time_impact': time_impact,
            'total_impact': saturating_add(
                io_impact, network_impact, cpu_impact, memory_impact, time_impact
            ),
        }


DEFAULT_WEIGHTS = ImpactWeights()


def _check_width(row: Sequence, expected: int, name: str) -> None:
    if len(row) != expected:
        raise ValueError(f"{name}: expected {expected} columns, got {len(row)}")


@dataclass
class QueryLogStat:
    """Статистика по одному отпечатку запроса (normalized_query_hash)"""
    normalized_query_hash: int
    query: str
    min_event_time: Optional[datetime]
    max_event_time: Optional[datetime]
    # Базовые метрики (raw values)
    total_query_duration_ms: int = 0
    total_read_rows: int = 0
    total_read_bytes: int = 0
    total_memory_usage: int = 0
    total_user_time_us: int = 0
    total_system_time_us: int = 0
    total_network_receive_bytes: int = 0
    total_network_send_bytes: int = 0
    users: List[str] = field(default_factory=list)
    databases: List[str] = field(default_factory=list)
    tables: List[str] = field(default_factory=list)
    # Композитные показатели
    io_impact: int = 0
    network_impact: int = 0
    cpu_impact: int = 0
    memory_impact: int = 0
    time_impact: int = 0
    total_impact: int = 0

    COLUMN_COUNT = 15

    @classmethod
    def from_row(cls, row: Sequence, weights: ImpactWeights = DEFAULT_WEIGHTS) -> 'QueryLogStat':
        """
        Парсинг строки сгруппированного query_log.

        Оценки влияния считаются здесь, из сумм одного узла; дальше
        при слиянии они только складываются.
        """
        _check_width(row, cls.COLUMN_COUNT, cls.__name__)
        (
            fingerprint, query, min_event_time, max_event_time,
            duration_ms, read_rows, read_bytes, memory_usage,
            user_time_us, system_time_us, net_recv, net_send,
            users, databases, tables
        ) = row

        raw = {
            'total_query_duration_ms': _counter(duration_ms),
            'total_read_rows': _counter(read_rows),
            'total_read_bytes': _counter(read_bytes),
            'total_memory_usage': _counter(memory_usage),
            'total_user_time_us': _counter(user_time_us),
            'total_system_time_us': _counter(system_time_us),
            'total_network_receive_bytes': _counter(net_recv),
            'total_network_send_bytes': _counter(net_send),
        }
        impact = weights.score(
            duration_ms=raw['total_query_duration_ms'],
            read_rows=raw['total_read_rows'],
            read_bytes=raw['total_read_bytes'],
            memory_usage=raw['total_memory_usage'],
            user_time_us=raw['total_user_time_us'],
            system_time_us=raw['total_system_time_us'],
            network_receive_bytes=raw['total_network_receive_bytes'],
            network_send_bytes=raw['total_network_send_bytes'],
        )
        return cls(
            normalized_query_hash=int(fingerprint),
            query=query or '',
            min_event_time=_as_utc(min_event_time),
            max_event_time=_as_utc(max_event_time),
            users=sorted(set(users or ())),
            databases=sorted(set(databases or ())),
            tables=sorted(set(tables or ())),
            **raw,
            **impact,
        )


@dataclass
class QueryLogTotal:
    """Суммарная нагрузка по всем подходящим запросам, без группировки"""
    queries_count: int = 0
    io_impact: int = 0
    network_impact: int = 0
    cpu_impact: int = 0
    memory_impact: int = 0
    time_impact: int = 0
    total_impact: int = 0

    COLUMN_COUNT = 9

    @classmethod
    def from_row(cls, row: Sequence, weights: ImpactWeights = DEFAULT_WEIGHTS) -> 'QueryLogTotal':
        _check_width(row, cls.COLUMN_COUNT, cls.__name__)
        (
            queries_count, duration_ms, read_rows, read_bytes, memory_usage,
            user_time_us, system_time_us, net_recv, net_send
        ) = row
        impact = weights.score(
            duration_ms=_counter(duration_ms),
            read_rows=_counter(read_rows),
            read_bytes=_counter(read_bytes),
            memory_usage=_counter(memory_usage),
            user_time_us=_counter(user_time_us),
            system_time_us=_counter(system_time_us),
            network_receive_bytes=_counter(net_recv),
            network_send_bytes=_counter(net_send),
        )
        return cls(queries_count=_counter(queries_count), **impact)


@dataclass
class ErrorStat:
    """
    Ошибки из system.errors, сгруппированные по коду:
    имя, количество, время последней ошибки и её сообщение.
    """
    code: int
    name: str
    count: int
    last_error_time: Optional[datetime]
    error_message: str

    COLUMN_COUNT = 5

    @classmethod
    def from_row(cls, row: Sequence, weights: ImpactWeights = DEFAULT_WEIGHTS) -> 'ErrorStat':
        _check_width(row, cls.COLUMN_COUNT, cls.__name__)
        code, name, count, last_error_time, error_message = row
        return cls(
            code=int(code),
            name=name or '',
            count=_counter(count),
            last_error_time=_as_utc(last_error_time),
            error_message=error_message or '',
        )
