import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, TypeVar

from clickhouse_client.channel import DEFAULT_CAPACITY, RowChannel
from clickhouse_client.cluster import ClickHouseCluster
from clickhouse_client.exceptions import ChannelClosedError
from clickhouse_client.filters import ErrorFilter, QueryLogFilter
from clickhouse_client.rows import ErrorStat, QueryLogStat, QueryLogTotal

from . import analyzer
from .analyzer import QueriesSortBy

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_LIMIT = 5


@dataclass
class TopQueriesRequest:
    filter: QueryLogFilter
    limit: int = DEFAULT_LIMIT
    sort_by: QueriesSortBy = QueriesSortBy.TOTAL_IMPACT


@dataclass
class TotalQueriesRequest:
    filter: QueryLogFilter


@dataclass
class InspectQueryRequest:
    fingerprint: int
    filter: QueryLogFilter


@dataclass
class TopErrorsRequest:
    filter: ErrorFilter = field(default_factory=ErrorFilter)
    limit: int = DEFAULT_LIMIT


async def run_pipeline(
    stream: Callable[[RowChannel], Awaitable[None]],
    consume: Callable[[RowChannel], Awaitable[T]],
    capacity: int = DEFAULT_CAPACITY,
) -> T:
    """
    Запустить отправку строк с узлов и анализатор одновременно.

    Результат анализатора возвращается только если все узлы отработали
    успешно; иначе пробрасывается ошибка потока, частичного результата нет.
    """
    channel = RowChannel(capacity)

    async def produce():
        try:
            await stream(channel)
        finally:
            # Ошибка до запуска узлов тоже должна отпустить получателя
            await channel.close()

    stream_result, consume_result = await asyncio.gather(
        produce(), consume(channel), return_exceptions=True
    )

    if isinstance(stream_result, BaseException):
        if isinstance(consume_result, BaseException):
            logger.error(f"Analyzer failed: {consume_result!r}")
            if isinstance(stream_result, ChannelClosedError):
                # Закрытый канал лишь следствие, пользователю нужна причина
                raise ChannelClosedError(
                    f"{stream_result}: analyzer failed: {consume_result!r}"
                ) from consume_result
            raise stream_result from consume_result
        raise stream_result
    if isinstance(consume_result, BaseException):
        raise consume_result
    return consume_result


async def top_queries(
    cluster: ClickHouseCluster, req: TopQueriesRequest, capacity: int = DEFAULT_CAPACITY
) -> List[QueryLogStat]:
    """
    Самые тяжёлые запросы из system.query_log, сгруппированные
    по normalized_query_hash и отсортированные по выбранной метрике.
    """
    log_filter = req.filter.validate()
    return await run_pipeline(
        lambda channel: cluster.stream_logs_by_fingerprint(log_filter, channel),
        lambda channel: analyzer.top_queries(channel, req.limit, req.sort_by),
        capacity,
    )


async def total_queries(
    cluster: ClickHouseCluster, req: TotalQueriesRequest, capacity: int = DEFAULT_CAPACITY
) -> QueryLogTotal:
    log_filter = req.filter.validate()
    return await run_pipeline(
        lambda channel: cluster.stream_logs_total(log_filter, channel),
        analyzer.total_queries,
        capacity,
    )


async def inspect_query(
    cluster: ClickHouseCluster, req: InspectQueryRequest, capacity: int = DEFAULT_CAPACITY
) -> Optional[QueryLogStat]:
    """Подробности по одному отпечатку запроса со всех узлов"""
    log_filter = req.filter.validate()
    return await run_pipeline(
        lambda channel: cluster.stream_log_by_fingerprint(req.fingerprint, log_filter, channel),
        lambda channel: analyzer.inspect_query(channel, req.fingerprint),
        capacity,
    )


async def top_errors(
    cluster: ClickHouseCluster, req: TopErrorsRequest, capacity: int = DEFAULT_CAPACITY
) -> List[ErrorStat]:
    """
    Самые частые ошибки из system.errors, сгруппированные по коду.
    """
    return await run_pipeline(
        lambda channel: cluster.stream_errors_by_code(req.filter, channel),
        lambda channel: analyzer.top_errors(channel, req.limit),
        capacity,
    )
