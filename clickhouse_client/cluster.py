import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import aclosing
from typing import List, Optional, Sequence

from .channel import RowChannel
from .client import DEFAULT_MAX_BLOCK_SIZE, ClickHouseClient
from .config import ConnectionProfile
from .exceptions import ClickHouseClientError, ClickHouseConfigError
from .filters import ErrorFilter, QueryLogFilter, QueryParam
from .rows import DEFAULT_WEIGHTS, ErrorStat, ImpactWeights, QueryLogStat, QueryLogTotal
from .system_queries import system_queries

logger = logging.getLogger(__name__)


class ClickHouseCluster:
    """
    Набор независимых узлов ClickHouse.

    Один и тот же запрос выполняется на всех узлах одновременно,
    строки со всех узлов уходят в общий ограниченный канал.
    Порядок строк сохраняется только в пределах одного узла.
    """

    def __init__(self, nodes: Sequence[ClickHouseClient]):
        if not nodes:
            raise ClickHouseConfigError("At least one ClickHouse node is required")
        self.nodes: List[ClickHouseClient] = list(nodes)

    @classmethod
    def from_profile(
        cls,
        profile: ConnectionProfile,
        weights: ImpactWeights = DEFAULT_WEIGHTS,
        max_block_size: int = DEFAULT_MAX_BLOCK_SIZE,
    ) -> 'ClickHouseCluster':
        if not profile.urls:
            raise ClickHouseConfigError("Profile has no ClickHouse node URLs")
        return cls([
            ClickHouseClient(url, profile, weights=weights, max_block_size=max_block_size)
            for url in profile.urls
        ])

    def close(self) -> None:
        for node in self.nodes:
            node.disconnect()

    async def _pump(self, node, query: str, params, row_type, channel: RowChannel, executor) -> int:
        """Переслать все строки одного узла в канал"""
        sent = 0
        async with aclosing(node.stream(query, params, row_type, executor)) as rows:
            async for row in rows:
                await channel.send(row)
                sent += 1
        logger.info(f"Node {node.node}: {sent} rows streamed")
        return sent

    async def stream(
        self,
        query: str,
        params: Sequence[QueryParam],
        row_type,
        channel: RowChannel,
    ) -> None:
        """
        Выполнить запрос на всех узлах и переслать строки в канал.

        Ждём завершения всех узлов (соседей не отменяем), затем
        пробрасываем первую по времени ошибку. Частичного успеха нет:
        уже отправленные строки остаются у получателя, но результатом
        будет исключение. Канал закрывается в любом случае.
        """
        first_error: Optional[Exception] = None
        executor = ThreadPoolExecutor(max_workers=len(self.nodes), thread_name_prefix='clickcheck-node')
        tasks = [
            asyncio.create_task(self._pump(node, query, params, row_type, channel, executor))
            for node in self.nodes
        ]

        try:
            for finished in asyncio.as_completed(tasks):
                try:
                    await finished
                except ClickHouseClientError as e:
                    logger.error(f"Stream failed: {e}")
                    if first_error is None:
                        first_error = e
                except Exception as e:
                    logger.exception(f"Unexpected stream failure: {e}")
                    if first_error is None:
                        first_error = e
        finally:
            # Сюда с незавершёнными задачами попадаем только при отмене
            for task in tasks:
                if not task.done():
                    task.cancel()
            # Пул можно останавливать только после того, как задачи закрыли свои потоки строк
            await asyncio.gather(*tasks, return_exceptions=True)
            await channel.close()
            executor.shutdown(wait=False)

        if first_error is not None:
            raise first_error

    async def stream_logs_by_fingerprint(self, log_filter: QueryLogFilter, channel: RowChannel) -> None:
        """
        Статистика query_log, сгруппированная по отпечатку (normalized_query_hash).
        """
        where_clause, params = log_filter.build_where()
        query = system_queries.get_logs_by_fingerprint(where_clause)
        await self.stream(query, params, QueryLogStat, channel)

    async def stream_log_by_fingerprint(
        self, fingerprint: int, log_filter: QueryLogFilter, channel: RowChannel
    ) -> None:
        """
        Подробная статистика по одному отпечатку запроса.
        """
        where_clause, params = log_filter.build_where()
        query = system_queries.get_log_by_fingerprint(where_clause)
        await self.stream(query, [QueryParam.uint64(fingerprint), *params], QueryLogStat, channel)

    async def stream_logs_total(self, log_filter: QueryLogFilter, channel: RowChannel) -> None:
        """
        Суммарная статистика query_log без группировки.
        """
        where_clause, params = log_filter.build_where()
        query = system_queries.get_logs_total(where_clause)
        await self.stream(query, params, QueryLogTotal, channel)

    async def stream_errors_by_code(self, error_filter: ErrorFilter, channel: RowChannel) -> None:
        """
        Ошибки из system.errors, сгруппированные по коду.
        """
        where_clause, where_params = error_filter.build_where()
        having_clause, having_params = error_filter.build_having()
        query = system_queries.get_errors_by_code(where_clause, having_clause)
        await self.stream(query, [*where_params, *having_params], ErrorStat, channel)
