import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple

import httpx
from pydantic import BaseModel
from pydantic_core import PydanticSerializationError, to_jsonable_python

from . import log
from .context import Context, background
from .exceptions import (
    DifyConnectionError,
    DifyError,
    DifyRateLimitError,
    DifyRequestError,
    DifyStreamError,
    DifyTimeoutError,
)
from .query import query_values
from .request import Request
from .sse import DEFAULT_BUFFER_SIZE, EventQueue, decode_stream

# 秒
DEFAULT_TIMEOUT = 30.0

SSE_HEADERS = {
    "Accept": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


@dataclass
class Response:
    """阻塞调用读取完毕的 HTTP 响应"""

    status_code: int
    body: bytes
    headers: httpx.Headers

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body)


class DifyClient:
    """
    Dify HTTP 请求执行器

    所有调用共享一个 ``httpx.AsyncClient``；用 ``aclose()`` 或 async with 关闭。
    关闭时会取消仍在解码的流，对应的事件流以一个错误事件结束。不做重试。
    """

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[log.Logger] = None,
    ):
        self._timeout = timeout
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._logger = logger
        self._tasks: Set["asyncio.Task[None]"] = set()

    @property
    def logger(self) -> log.Logger:
        return self._logger or log.get_logger()

    async def aclose(self) -> None:
        # 被取消的解码任务会结束各自的事件队列
        tasks = set(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)
        await self._http.aclose()

    async def __aenter__(self) -> "DifyClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    # ── 请求组装 ──

    def build_request(self, req: Request) -> httpx.Request:
        """把 ``req`` 转换为 ``httpx.Request``。

        URL 或请求体无法构造时抛出 ``DifyRequestError``。
        """
        url = build_url(req.base_url, req.path, req.query)

        headers = dict(req.headers)
        headers["Authorization"] = f"Bearer {req.auth_token}"
        if req.files is not None:
            return self._http.build_request(
                req.method, url, headers=headers, files=req.files, data=req.data
            )

        headers["Content-Type"] = "application/json"
        return self._http.build_request(
            req.method, url, headers=headers, content=marshal_body(req.body)
        )

    # ── 执行 ──

    async def send(self, req: Request, ctx: Optional[Context] = None) -> Response:
        """发送阻塞请求并读取完整响应体"""
        ctx = ctx or background()
        http_req = self.build_request(req)
        resp = await ctx.guard(self._dispatch(http_req))
        try:
            body = await ctx.guard(resp.aread())
        except httpx.HTTPError as e:
            raise DifyStreamError(f"failed to read response body: {e}") from e
        finally:
            await self._close(resp)
        return Response(status_code=resp.status_code, body=body, headers=resp.headers)

    async def send_stream(
        self, req: Request, ctx: Optional[Context] = None
    ) -> EventQueue:
        """打开 SSE 流。

        收到响应头后立即返回，解码在后台任务中继续并写入返回的队列。
        非 200 状态抛出 ``DifyError``，不启动解码。
        """
        ctx = ctx or background()
        http_req = self.build_request(req)
        http_req.headers.update(SSE_HEADERS)

        resp = await ctx.guard(self._dispatch(http_req))
        if resp.status_code != httpx.codes.OK:
            try:
                await ctx.guard(resp.aread())
                err = error_from_response(resp.status_code, resp.content, resp.headers)
            except httpx.HTTPError:
                err = DifyError(f"HTTP error resp code: {resp.status_code}", status_code=resp.status_code)
            finally:
                await self._close(resp)
            raise err

        events = EventQueue(maxsize=DEFAULT_BUFFER_SIZE)
        task = asyncio.create_task(decode_stream(resp, events, ctx, self.logger))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return events

    async def _dispatch(self, http_req: httpx.Request) -> httpx.Response:
        try:
            return await self._http.send(http_req, stream=True)
        except httpx.TimeoutException as e:
            raise DifyTimeoutError(f"failed to send HTTP request: {e}", timeout=self._timeout) from e
        except httpx.RequestError as e:
            raise DifyConnectionError(f"failed to send HTTP request: {e}") from e

    async def _close(self, resp: httpx.Response) -> None:
        try:
            await resp.aclose()
        except (httpx.HTTPError, OSError) as e:
            self.logger.error("failed to close the http body: %s", e)


def marshal_body(body: Any) -> Optional[bytes]:
    """把请求体序列化为 JSON；``None`` 表示没有请求体"""
    if body is None:
        return None
    try:
        if isinstance(body, BaseModel):
            return body.model_dump_json(by_alias=True).encode()
        return json.dumps(to_jsonable_python(body)).encode()
    except (PydanticSerializationError, TypeError, ValueError) as e:
        raise DifyRequestError(f"failed to marshal request body: {e}") from e


def join_url(base_url: str, *elems: str) -> str:
    """把路径片段拼接到 ``base_url``，不重复也不丢失斜杠。

    解析 ``.`` 与 ``..``，保留最后一个片段的结尾斜杠。
    """
    try:
        url = httpx.URL(base_url)
    except httpx.InvalidURL as e:
        raise DifyRequestError(f"invalid base url {base_url!r}: {e}") from e
    if not elems:
        return str(url)

    segments: List[str] = []
    for part in [url.path, *elems]:
        for seg in part.split("/"):
            if seg in ("", "."):
                continue
            if seg == "..":
                if segments:
                    segments.pop()
                continue
            segments.append(seg)
    path = "/" + "/".join(segments)
    if elems[-1].endswith("/") and path != "/":
        path += "/"
    try:
        return str(url.copy_with(path=path))
    except httpx.InvalidURL as e:
        raise DifyRequestError(f"invalid url path {path!r}: {e}") from e


def build_url(base_url: str, path: str, query_structs: Tuple[Any, ...] = ()) -> str:
    """拼接 ``base_url`` 与 ``path``，并追加 ``query_structs`` 中的参数。

    参数追加在 URL 已有查询之后；多个结构体中的同名键按顺序累积所有值。
    """
    url = httpx.URL(join_url(base_url, path))

    values: Dict[str, List[str]] = {}
    for key, value in url.params.multi_items():
        values.setdefault(key, []).append(value)
    for query_struct in query_structs:
        try:
            encoded = query_values(query_struct)
        except TypeError as e:
            raise DifyRequestError(str(e)) from e
        for key, vals in encoded.items():
            values.setdefault(key, []).extend(vals)

    if not values:
        return str(url)
    params = [(key, v) for key, vals in values.items() for v in vals]
    return str(url.copy_with(params=httpx.QueryParams(params)))


def error_from_response(status_code: int, body: bytes, headers: Optional[httpx.Headers] = None) -> DifyError:
    """根据 Dify 错误响应体构造 ``DifyError``"""
    try:
        payload = json.loads(body) if body else {}
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        payload = {"message": body.decode("utf-8", errors="replace")}

    message = payload.get("message") or f"HTTP error resp code: {status_code}"
    code = payload.get("code", "unknown")

    if status_code == 429:
        retry_after = 60
        if headers is not None:
            try:
                retry_after = int(headers.get("Retry-After", 60))
            except ValueError:
                pass
        err: DifyError = DifyRateLimitError(message, retry_after=retry_after)
        err.raw_response = payload
        return err

    return DifyError(message=message, code=code, status_code=status_code, raw_response=payload)
