import asyncio
import logging
import re
from concurrent.futures import Executor
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional, Sequence, Tuple

from clickhouse_driver import Client as ClickhouseDriver
from clickhouse_driver.errors import Error as ClickhouseError, NetworkError

from .config import ClickHouseConfig, ConnectionProfile, node_label
from .exceptions import ClickHouseConnectionError, ClickHouseQueryError
from .filters import QueryParam
from .rows import DEFAULT_WEIGHTS, ImpactWeights

logger = logging.getLogger(__name__)

DEFAULT_MAX_BLOCK_SIZE = 65536

_PLACEHOLDER = re.compile(r'\?')
_DONE = object()


def bind_params(query: str, params: Sequence[QueryParam]) -> Tuple[str, Dict[str, Any]]:
    """
    Перевести позиционные плейсхолдеры ``?`` в именованные плейсхолдеры драйвера.

    Значения экранирует clickhouse_driver: числа подставляются как есть,
    даты и строки — в кавычках.
    """
    # '%' в тексте запроса для драйвера служебный символ
    query = query.replace('%', '%%')
    names = iter(range(len(params)))
    count = len(_PLACEHOLDER.findall(query))
    if count != len(params):
        raise ValueError(f"Query has {count} placeholders, but {len(params)} parameters given")

    bound = _PLACEHOLDER.sub(lambda _: f"%(p{next(names)})s", query)
    values = {f"p{i}": param.driver_value() for i, param in enumerate(params)}
    return bound, values


class ClickHouseClient:
    """
    Клиент одного узла ClickHouse.
    Каждый экземпляр создаёт **отдельное подключение**; повторов нет,
    любая ошибка превращается в ClickHouseQueryError с именем узла.
    """

    def __init__(
        self,
        url: str,
        profile: ConnectionProfile,
        weights: ImpactWeights = DEFAULT_WEIGHTS,
        max_block_size: int = DEFAULT_MAX_BLOCK_SIZE,
    ):
        self.url = url
        self.node = node_label(url)
        self.weights = weights
        self.max_block_size = max_block_size
        self._client: Optional[ClickhouseDriver] = None
        self._config = ClickHouseConfig.get_connection_config(url, profile)

    def __enter__(self):
        """Контекстный менеджер: создаёт подключение при входе"""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Контекстный менеджер: закрывает подключение при выходе"""
        self.disconnect()

    def connect(self) -> None:
        """Создать клиент драйвера (само соединение открывается при первом запросе)"""
        if self._client is not None:
            return

        try:
            self._client = ClickhouseDriver(**self._config)
            logger.debug(f"Connected to ClickHouse: {self.node}")
        except Exception as e:
            raise ClickHouseConnectionError(self.node, e) from e

    def disconnect(self) -> None:
        """Закрыть подключение"""
        if self._client is not None:
            try:
                self._client.disconnect()
                logger.debug(f"Disconnected from ClickHouse: {self.node}")
            except Exception as e:
                logger.warning(f"Error disconnecting from {self.node}: {e}")
            finally:
                self._client = None

    def iter_rows(self, query: str, params: Sequence[QueryParam], row_type) -> Iterator[Any]:
        """
        Выполнить запрос и лениво отдавать типизированные строки.

        Args:
            query: шаблон с позиционными плейсхолдерами ``?``
            params: параметры в порядке плейсхолдеров
            row_type: класс строки с методом from_row()
        """
        bound_query, values = bind_params(query, params)
        self.connect()

        try:
            rows = self._client.execute_iter(
                bound_query,
                values,
                settings={'max_block_size': self.max_block_size},
            )
            for raw in rows:
                try:
                    yield row_type.from_row(raw, self.weights)
                except (TypeError, ValueError) as e:
                    raise ClickHouseQueryError(self.node, f"malformed response row: {e}") from e
        except NetworkError as e:
            raise ClickHouseConnectionError(self.node, e) from e
        except ClickhouseError as e:
            raise ClickHouseQueryError(self.node, e) from e

    async def stream(
        self,
        query: str,
        params: Sequence[QueryParam],
        row_type,
        executor: Optional[Executor] = None,
    ) -> AsyncIterator[Any]:
        """
        Асинхронная версия iter_rows: блокирующее чтение драйвера
        выполняется в пуле потоков, строки отдаются по одной.
        """
        loop = asyncio.get_running_loop()
        rows = self.iter_rows(query, params, row_type)
        pending = None
        try:
            while True:
                # shield: при отмене next() в потоке всё равно доработает до конца
                pending = loop.run_in_executor(executor, next, rows, _DONE)
                row = await asyncio.shield(pending)
                if row is _DONE:
                    break
                yield row
        finally:
            # Генератор нельзя закрывать, пока в потоке выполняется его next()
            if pending is not None and not pending.done():
                await asyncio.gather(pending, return_exceptions=True)
            # Прерванный поток нужно закрыть в том же пуле, драйвер не потокобезопасен
            await loop.run_in_executor(executor, rows.close)

    def execute(self, query: str, params: Sequence[QueryParam] = ()) -> List[tuple]:
        """Выполнить короткий запрос целиком (служебные проверки)"""
        bound_query, values = bind_params(query, params)
        self.connect()
        try:
            return self._client.execute(bound_query, values)
        except NetworkError as e:
            raise ClickHouseConnectionError(self.node, e) from e
        except ClickhouseError as e:
            raise ClickHouseQueryError(self.node, e) from e

    def get_server_version(self) -> Optional[str]:
        """Получить версию сервера ClickHouse"""
        from .system_queries import system_queries

        result = self.execute(system_queries.get_server_version())
        return result[0][0] if result else None
