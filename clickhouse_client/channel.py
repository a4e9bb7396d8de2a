import asyncio
import logging

from .exceptions import ChannelClosedError

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 128

_END_OF_STREAM = object()


class RowChannel:
    """
    Ограниченный канал строк: много отправителей (узлы), один получатель.

    Полный канал приостанавливает отправителя, пока получатель не
    освободит место. Отправляющая сторона закрывается один раз, после
    завершения всех узлов; получатель читает до конца потока.
    Если получатель завершился раньше, отправка падает с ChannelClosedError.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"Channel capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._receiver_closed = asyncio.Event()
        self._sender_closed = False

    @property
    def receiver_closed(self) -> bool:
        return self._receiver_closed.is_set()

    async def send(self, row) -> None:
        if self._sender_closed:
            raise ChannelClosedError("send on a channel whose sending side is closed")
        if self.receiver_closed:
            raise ChannelClosedError("receiver terminated before all rows were sent")

        try:
            self._queue.put_nowait(row)
            return
        except asyncio.QueueFull:
            pass

        # Медленный путь: ждём места в очереди или закрытия получателя
        put = asyncio.ensure_future(self._queue.put(row))
        closed = asyncio.ensure_future(self._receiver_closed.wait())
        try:
            await asyncio.wait({put, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for fut in (put, closed):
                if not fut.done():
                    fut.cancel()
        if not put.done() or put.cancelled():
            raise ChannelClosedError("receiver terminated before all rows were sent")

    async def close(self) -> None:
        """Закрыть отправляющую сторону: получатель дочитает очередь и остановится"""
        if self._sender_closed:
            return
        self._sender_closed = True
        if self.receiver_closed:
            return
        put = asyncio.ensure_future(self._queue.put(_END_OF_STREAM))
        closed = asyncio.ensure_future(self._receiver_closed.wait())
        try:
            await asyncio.wait({put, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for fut in (put, closed):
                if not fut.done():
                    fut.cancel()

    def close_receiver(self) -> None:
        """Получатель больше не читает; ждущие отправители будут разбужены"""
        if not self.receiver_closed:
            logger.debug("Row channel receiver closed")
        self._receiver_closed.set()

    async def recv(self):
        """Следующая строка или None, если поток закончился"""
        if self.receiver_closed:
            return None
        row = await self._queue.get()
        if row is _END_OF_STREAM:
            self._receiver_closed.set()
            return None
        return row

    def __aiter__(self):
        return self

    async def __anext__(self):
        row = await self.recv()
        if row is None:
            raise StopAsyncIteration
        return row
