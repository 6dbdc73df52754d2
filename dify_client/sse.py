"""
Server-sent events：解码与分发。

每个活动中的流由两个任务驱动：

- ``decode_stream`` 逐行读取 HTTP 响应，把原始 ``Event`` 放入有界的
  ``EventQueue``；
- ``dispatch`` 从该队列取出原始事件，把 ``data`` 载荷校验为调用方的类型，
  再将 ``StreamEvent`` 交给调用方迭代的 ``EventStream``。

两个任务在每个 await 点都观察同一个 ``Context``。解码任务无论以何种方式退出，
都会结束 ``EventQueue``，分发任务因此总能收到终止事件。
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Generic, Optional, Type, TypeVar

import httpx
from pydantic import TypeAdapter, ValidationError

from . import log
from .context import Context
from .exceptions import ContextCancelledError, DifyStreamError, StreamClosedError
from .schemas import StreamEvent

T = TypeVar("T")

DEFAULT_BUFFER_SIZE = 10

DATA_FIELD = "data"


@dataclass
class Event:
    """解码器产生的原始事件"""

    type: str = ""
    data: bytes = b""
    done: bool = False
    error: Optional[BaseException] = None

    @property
    def terminal(self) -> bool:
        return self.done or self.error is not None


class EventQueue(asyncio.Queue):
    """解码器与分发器之间的有界原始事件队列。

    解码器退出时调用 ``end()``；队列取空且已结束后，``next_event()`` 返回一个
    携带结束原因的错误事件，而不是永远等待。
    """

    def __init__(self, maxsize: int = DEFAULT_BUFFER_SIZE):
        super().__init__(maxsize)
        self._ended = asyncio.Event()
        self._end_cause: Optional[BaseException] = None

    @property
    def ended(self) -> bool:
        return self._ended.is_set()

    def end(self, cause: Optional[BaseException] = None) -> None:
        """标记生产者已退出。只有第一次调用生效。"""
        if self._ended.is_set():
            return
        self._end_cause = cause
        self._ended.set()

    async def next_event(self) -> Event:
        if not self.empty():
            return self.get_nowait()
        if self.ended:
            return self._end_event()

        getter = asyncio.ensure_future(self.get())
        ender = asyncio.ensure_future(self._ended.wait())
        try:
            done, _ = await asyncio.wait({getter, ender}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            ender.cancel()
            if not getter.done():
                getter.cancel()
        if getter in done:
            return getter.result()
        if not self.empty():
            return self.get_nowait()
        return self._end_event()

    def _end_event(self) -> Event:
        cause = self._end_cause or DifyStreamError("event stream ended without a terminal event")
        return Event(error=cause)


# ── 解码 ──


def decode_line(line: bytes) -> Optional[Event]:
    """解析一行 SSE，仅 ``data`` 字段返回 ``Event``。

    没有冒号的行（空行、保活）以及其他字段都被忽略；注释行的字段名为空，
    同样被忽略。
    """
    line = line.rstrip(b"\r\n")
    field, sep, value = line.partition(b":")
    if not sep:
        return None
    if value.startswith(b" "):
        value = value[1:]
    if field.decode("utf-8", errors="replace") != DATA_FIELD:
        return None
    return Event(type=DATA_FIELD, data=bytes(value))


async def iter_lines(response: httpx.Response) -> AsyncIterator[bytes]:
    """按 ``\\n`` 切分响应体；末尾没有换行的最后一行也会返回。"""
    buffer = bytearray()
    async for chunk in response.aiter_bytes():
        buffer.extend(chunk)
        while True:
            idx = buffer.find(b"\n")
            if idx < 0:
                break
            line = bytes(buffer[: idx + 1])
            del buffer[: idx + 1]
            yield line
    if buffer:
        yield bytes(buffer)


async def _next_line(lines: AsyncIterator[bytes]) -> Optional[bytes]:
    try:
        return await lines.__anext__()
    except StopAsyncIteration:
        return None


async def decode_stream(
    response: httpx.Response,
    events: EventQueue,
    ctx: Context,
    logger: Optional[log.Logger] = None,
) -> None:
    """把 ``response`` 解码到 ``events``，直到 EOF、失败或取消。

    EOF 放入一个 ``Event(done=True)``。读取失败会记录日志，并作为队列的结束原因
    交给分发器。任何退出路径都会结束队列并关闭响应。
    """
    logger = logger or log.get_logger()
    lines = iter_lines(response)
    cause: Optional[BaseException] = None
    try:
        while True:
            line = await ctx.guard(_next_line(lines))
            if line is None:
                await ctx.guard(events.put(Event(done=True)))
                return
            event = decode_line(line)
            if event is not None:
                await ctx.guard(events.put(event))
    except ContextCancelledError as e:
        logger.debug("stop decoding event stream: %s", e)
        cause = e
    except asyncio.CancelledError:
        logger.debug("event stream decoder cancelled")
        cause = DifyStreamError("event stream decoder cancelled")
        raise
    except Exception as e:
        logger.error("failed to read event stream: %s", e)
        cause = e
    finally:
        events.end(cause)
        try:
            await response.aclose()
        except (httpx.HTTPError, OSError) as e:
            logger.error("failed to close the http body: %s", e)


# ── 消费端 ──


class EventStream(Generic[T]):
    """有界、单消费者的 ``StreamEvent[T]`` 序列。

    生产者调用 ``send`` / ``offer``，最后调用 ``close``。终止事件被接受后，
    流拒绝后续事件。用 ``async for`` 迭代；流关闭且取空后迭代结束。
    """

    def __init__(self, ctx: Context, maxsize: int = DEFAULT_BUFFER_SIZE):
        self._ctx = ctx
        self._queue: "asyncio.Queue[StreamEvent[T]]" = asyncio.Queue(maxsize=maxsize)
        self._closed = asyncio.Event()
        self._terminal_sent = False
        self._task: Optional["asyncio.Task[None]"] = None

    @property
    def context(self) -> Context:
        return self._ctx

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def send(self, event: StreamEvent[T]) -> None:
        """等待空位后入队；取消时抛出异常。"""
        if self.closed or self._terminal_sent:
            raise StreamClosedError()
        await self._ctx.guard(self._queue.put(event))
        if event.terminal:
            self._terminal_sent = True

    def offer(self, event: StreamEvent[T]) -> bool:
        """仅在流未关闭且当前有空位时入队。"""
        if self.closed or self._terminal_sent or self._queue.full():
            return False
        self._queue.put_nowait(event)
        if event.terminal:
            self._terminal_sent = True
        return True

    def close(self) -> None:
        self._closed.set()

    def attach(self, task: "asyncio.Task[None]") -> None:
        self._task = task

    async def aclose(self) -> None:
        """停止消费：取消本次调用，等待生产者退出并丢弃缓冲中的事件。"""
        self._ctx.cancel()
        self.close()
        if self._task is not None and not self._task.done():
            await asyncio.wait({self._task})
        while not self._queue.empty():
            self._queue.get_nowait()

    async def __aenter__(self) -> "EventStream[T]":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    def __aiter__(self) -> "EventStream[T]":
        return self

    async def __anext__(self) -> StreamEvent[T]:
        if not self._queue.empty():
            return self._queue.get_nowait()
        if self.closed:
            raise StopAsyncIteration

        getter = asyncio.ensure_future(self._queue.get())
        closer = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait({getter, closer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closer.cancel()
            if not getter.done():
                getter.cancel()
        if getter in done:
            return getter.result()
        if not self._queue.empty():
            return self._queue.get_nowait()
        raise StopAsyncIteration

    async def collect(self) -> list:
        """把整个流读成列表。"""
        return [event async for event in self]


# ── 分发 ──


async def dispatch(
    events: EventQueue,
    stream: EventStream[T],
    response_type: Type[T],
    logger: Optional[log.Logger] = None,
) -> None:
    """把原始事件转换为 ``StreamEvent[response_type]`` 送入 ``stream``。

    第一个终止事件之后停止；任何退出路径都会关闭 ``stream``。
    """
    logger = logger or log.get_logger()
    ctx = stream.context
    adapter = TypeAdapter(response_type)
    try:
        while True:
            try:
                raw = await ctx.guard(events.next_event())
            except ContextCancelledError as e:
                logger.debug("event stream cancelled: %s", e)
                stream.offer(StreamEvent[response_type](err=str(e)))
                return

            if raw.done:
                await stream.send(StreamEvent[response_type](done=True))
                return
            if raw.error is not None:
                await stream.send(StreamEvent[response_type](err=str(raw.error) or type(raw.error).__name__))
                return

            try:
                data = adapter.validate_json(raw.data)
            except ValidationError as e:
                logger.error("failed to decode event payload: %s", e)
                await stream.send(StreamEvent[response_type](err=str(e)))
                return
            await stream.send(StreamEvent[response_type](type=raw.type, data=data))
    except (ContextCancelledError, StreamClosedError) as e:
        logger.debug("abandon event delivery: %s", e)
    finally:
        stream.close()
