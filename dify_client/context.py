"""
单次客户端调用的取消上下文。

``Context`` 从调用开始就附着在调用上，参与该调用的每个任务都会观察它。
它通过 ``cancel()`` 或截止时间到达而结束。``guard()`` 让任意 awaitable 与上下文
竞争，阻塞点（HTTP 发送、读行、队列读写）在调用被取消后立即停止。
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, List, Optional, TypeVar

from .exceptions import ContextCancelledError, DeadlineExceededError

T = TypeVar("T")


class Context:
    def __init__(self, timeout: Optional[float] = None):
        self._done = asyncio.Event()
        self._err: Optional[ContextCancelledError] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._children: List["Context"] = []
        self._parent: Optional["Context"] = None
        self.timeout = timeout
        if timeout is not None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(timeout, self._expire)

    @classmethod
    def with_timeout(cls, timeout: float) -> "Context":
        """创建 ``timeout`` 秒后自动取消的上下文。

        必须在运行中的事件循环内调用。
        """
        return cls(timeout=timeout)

    def _expire(self) -> None:
        self._finish(DeadlineExceededError(self.timeout or 0))

    def _finish(self, err: ContextCancelledError) -> None:
        if self._done.is_set():
            return
        self._err = err
        self._done.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._parent is not None and self in self._parent._children:
            self._parent._children.remove(self)
        children, self._children = self._children, []
        for child in children:
            child._finish(err)

    def child(self, timeout: Optional[float] = None) -> "Context":
        """随本上下文结束、也可单独取消的子上下文"""
        ctx = Context(timeout=timeout)
        if self.done():
            ctx._finish(self._err)  # type: ignore[arg-type]
        else:
            self._children.append(ctx)
            ctx._parent = self
        return ctx

    def cancel(self, reason: str = "context canceled") -> None:
        """取消上下文，只有第一次调用生效"""
        self._finish(ContextCancelledError(reason))

    def done(self) -> bool:
        return self._done.is_set()

    @property
    def err(self) -> Optional[ContextCancelledError]:
        """取消原因；上下文存活时为 ``None``"""
        return self._err

    async def wait(self) -> None:
        await self._done.wait()

    async def guard(self, aw: Awaitable[T]) -> T:
        """等待 ``aw``，除非上下文先结束。

        取消先到时取消 ``aw`` 并抛出上下文的 ``ContextCancelledError``；
        与取消同时完成的结果仍会返回。
        """
        if self.done():
            _discard(aw)
            raise self._err  # type: ignore[misc]

        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._done.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is None:
            # 取消过程中已完成，保留结果
            return task.result()
        raise self._err  # type: ignore[misc]


def _discard(aw: Awaitable[Any]) -> None:
    close = getattr(aw, "close", None)
    if close is not None:
        close()
    elif isinstance(aw, asyncio.Future):
        aw.cancel()


def background() -> Context:
    """调用方未提供上下文时使用：只有显式 ``cancel()`` 才会结束"""
    return Context()
