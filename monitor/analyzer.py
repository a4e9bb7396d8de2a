"""
Потоковый анализатор строк из system.query_log и system.errors.

Анализатор читает общий канал, пока узлы не закончат отправку,
сливает строки по ключу группировки и после закрытия канала
отдаёт ранжированный топ (или одну суммарную запись).
"""
import enum
import logging
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from clickhouse_client.channel import RowChannel
from clickhouse_client.rows import (
    IMPACT_FIELDS,
    RAW_FIELDS,
    ErrorStat,
    QueryLogStat,
    QueryLogTotal,
    saturating_add,
)

logger = logging.getLogger(__name__)


class QueriesSortBy(enum.Enum):
    """Метрика для ранжирования отпечатков запросов (по убыванию)"""
    TOTAL_IMPACT = 'total_impact'
    IO_IMPACT = 'io_impact'
    CPU_IMPACT = 'cpu_impact'
    MEMORY_IMPACT = 'memory_impact'
    TIME_IMPACT = 'time_impact'
    NETWORK_IMPACT = 'network_impact'
    QUERY_DURATION = 'total_query_duration_ms'
    READ_ROWS = 'total_read_rows'
    READ_BYTES = 'total_read_bytes'
    MEMORY_USAGE = 'total_memory_usage'
    USER_TIME = 'total_user_time_us'
    SYSTEM_TIME = 'total_system_time_us'
    NETWORK_RECEIVE = 'total_network_receive_bytes'
    NETWORK_SEND = 'total_network_send_bytes'

    @property
    def cli_name(self) -> str:
        return self.name.lower().replace('_', '-')

    @classmethod
    def from_cli(cls, value: str) -> 'QueriesSortBy':
        for item in cls:
            if value in (item.cli_name, item.value):
                return item
        raise ValueError(f"Unknown sort metric: {value}")


class AnalyzerState(enum.Enum):
    COLLECTING = 'collecting'
    FINALIZED = 'finalized'


class AnalyzerStateError(RuntimeError):
    """Операция недоступна в текущем состоянии анализатора"""


def _merge_sorted_unique(target: List[str], source: List[str]) -> List[str]:
    return sorted(set(target).union(source))


class StreamingAnalyzer:
    """
    Накопитель статистики для одного запуска.

    Таблицы группировки принадлежат только задаче-получателю,
    блокировки не нужны. После finalize() состояние неизменно.
    """

    def __init__(self):
        self.state = AnalyzerState.COLLECTING
        self.queries: Dict[int, QueryLogStat] = {}
        self.errors: Dict[int, ErrorStat] = {}
        self.total_queries = QueryLogTotal()

    def _ensure_collecting(self) -> None:
        if self.state is not AnalyzerState.COLLECTING:
            raise AnalyzerStateError("Analyzer is finalized, no more rows can be merged")

    def _ensure_finalized(self) -> None:
        if self.state is not AnalyzerState.FINALIZED:
            raise AnalyzerStateError("Analyzer is still collecting, call finalize() first")

    # --- Слияние строк ---

    def merge_query(self, log: QueryLogStat) -> None:
        self._ensure_collecting()
        existing = self.queries.get(log.normalized_query_hash)
        if existing is None:
            self.queries[log.normalized_query_hash] = replace(log)
            return

        # Базовые метрики (raw values)
        for name in RAW_FIELDS:
            setattr(existing, name, saturating_add(getattr(existing, name), getattr(log, name)))

        # Time bounds
        if log.max_event_time is not None and (
                existing.max_event_time is None or log.max_event_time > existing.max_event_time):
            existing.max_event_time = log.max_event_time
        if log.min_event_time is not None and (
                existing.min_event_time is None or log.min_event_time < existing.min_event_time):
            existing.min_event_time = log.min_event_time

        existing.users = _merge_sorted_unique(existing.users, log.users)
        existing.databases = _merge_sorted_unique(existing.databases, log.databases)
        existing.tables = _merge_sorted_unique(existing.tables, log.tables)

        # Композитные показатели уже посчитаны на узлах, просто складываем
        for name in IMPACT_FIELDS:
            setattr(existing, name, saturating_add(getattr(existing, name), getattr(log, name)))

    def merge_query_total(self, log: QueryLogTotal) -> None:
        self._ensure_collecting()
        total = self.total_queries
        total.queries_count = saturating_add(total.queries_count, log.queries_count)
        for name in IMPACT_FIELDS:
            setattr(total, name, saturating_add(getattr(total, name), getattr(log, name)))

    def merge_error(self, err: ErrorStat) -> None:
        self._ensure_collecting()
        existing = self.errors.get(err.code)
        if existing is None:
            self.errors[err.code] = replace(err)
            return

        # Имя и сообщение остаются от первой строки
        existing.count = saturating_add(existing.count, err.count)
        if err.last_error_time is not None and (
                existing.last_error_time is None or err.last_error_time > existing.last_error_time):
            existing.last_error_time = err.last_error_time

    # --- Чтение канала ---

    async def collect(self, channel: RowChannel, merge: Callable) -> int:
        """
        Читать канал до закрытия отправителями и сливать каждую строку.
        При любой ошибке получатель закрывается, отправители получат ChannelClosedError.
        """
        self._ensure_collecting()
        received = 0
        try:
            async for row in channel:
                merge(row)
                received += 1
        finally:
            channel.close_receiver()
        logger.debug(f"Analyzer received {received} rows")
        return received

    def finalize(self) -> 'StreamingAnalyzer':
        self.state = AnalyzerState.FINALIZED
        return self

    # --- Результаты ---

    def top_queries(self, limit: int, sort_by: QueriesSortBy = QueriesSortBy.TOTAL_IMPACT) -> List[QueryLogStat]:
        """
        Топ отпечатков по убыванию метрики; при равенстве — по возрастанию отпечатка.
        """
        self._ensure_finalized()
        metric = sort_by.value
        ranked = sorted(
            self.queries.values(),
            key=lambda q: (-getattr(q, metric), q.normalized_query_hash),
        )
        return ranked[:limit]

    def top_errors(self, limit: int) -> List[ErrorStat]:
        """Топ ошибок: count по убыванию, затем code по возрастанию"""
        self._ensure_finalized()
        ranked = sorted(self.errors.values(), key=lambda e: (-e.count, e.code))
        return ranked[:limit]

    def total(self) -> QueryLogTotal:
        self._ensure_finalized()
        return self.total_queries

    def query(self, fingerprint: int) -> Optional[QueryLogStat]:
        self._ensure_finalized()
        return self.queries.get(fingerprint)


async def top_queries(channel: RowChannel, limit: int, sort_by: QueriesSortBy) -> List[QueryLogStat]:
    """
    Собрать поток QueryLogStat, сгруппировать по normalized_query_hash
    и вернуть первые ``limit`` записей по выбранной метрике.
    """
    analyzer = StreamingAnalyzer()
    await analyzer.collect(channel, analyzer.merge_query)
    return analyzer.finalize().top_queries(limit, sort_by)


async def total_queries(channel: RowChannel) -> QueryLogTotal:
    """
    Сложить все строки QueryLogTotal в одну запись.
    """
    analyzer = StreamingAnalyzer()
    await analyzer.collect(channel, analyzer.merge_query_total)
    return analyzer.finalize().total()


async def inspect_query(channel: RowChannel, fingerprint: int) -> Optional[QueryLogStat]:
    analyzer = StreamingAnalyzer()
    await analyzer.collect(channel, analyzer.merge_query)
    return analyzer.finalize().query(fingerprint)


async def top_errors(channel: RowChannel, limit: int) -> List[ErrorStat]:
    """
    Собрать поток ErrorStat, сгруппировать по коду и вернуть
    ``limit`` самых частых ошибок.
    """
    analyzer = StreamingAnalyzer()
    await analyzer.collect(channel, analyzer.merge_error)
    return analyzer.finalize().top_errors(limit)
