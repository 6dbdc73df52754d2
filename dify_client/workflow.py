from __future__ import annotations

import asyncio
from typing import Optional

import httpx
from pydantic import ValidationError

from . import log
from .client import DEFAULT_TIMEOUT, DifyClient, error_from_response
from .context import Context, background
from .exceptions import DifyDecodeError, DifyError, ResponseModeError
from .request import Request, builder_pool
from .schemas import (
    BLOCKING_MODE,
    STREAMING_MODE,
    RunWorkflowRequest,
    RunWorkflowResponse,
    StreamEvent,
)
from .sse import EventStream, dispatch

RUN_PATH = "v1/workflows/run"


class WorkflowService:
    """以阻塞或流式模式执行已发布的 Dify 工作流"""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        client: Optional[DifyClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[log.Logger] = None,
    ):
        self._base_url = base_url
        self._api_key = api_key
        self._logger = logger
        self._owns_client = client is None
        self._client = client or DifyClient(timeout=timeout, transport=transport, logger=logger)

    @property
    def client(self) -> DifyClient:
        return self._client

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "WorkflowService":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    def _run_request(self, req: RunWorkflowRequest) -> Request:
        builder = builder_pool.acquire()
        try:
            return (
                builder.base_url(self._base_url)
                .token(self._api_key)
                .path(RUN_PATH)
                .method("POST")
                .body(req)
                .build()
            )
        finally:
            builder_pool.release(builder)

    async def run(
        self, req: RunWorkflowRequest, ctx: Optional[Context] = None
    ) -> RunWorkflowResponse:
        """执行工作流并阻塞等待完整结果。

        ``req.response_mode`` 必须为 ``blocking``；工作流未发布时失败。
        """
        if req.response_mode != BLOCKING_MODE:
            raise ResponseModeError(BLOCKING_MODE, req.response_mode)

        resp = await self._client.send(self._run_request(req), ctx)
        if resp.status_code >= 400:
            raise error_from_response(resp.status_code, resp.body, resp.headers)
        try:
            return RunWorkflowResponse.model_validate_json(resp.body)
        except ValidationError as e:
            raise DifyDecodeError(f"failed to decode workflow response: {e}", raw=resp.body) from e

    async def run_stream(
        self, req: RunWorkflowRequest, ctx: Optional[Context] = None
    ) -> EventStream[RunWorkflowResponse]:
        """执行工作流，事件到达即返回。

        ``req.response_mode`` 必须为 ``streaming``。返回的流每个工作流事件对应一个
        ``StreamEvent``，并以唯一的终止事件结束：正常结束为 ``done``，否则为
        ``err``（包括打开流失败、客户端关闭）。对流调用 ``aclose()`` 会停止本次调用。
        """
        if req.response_mode != STREAMING_MODE:
            raise ResponseModeError(STREAMING_MODE, req.response_mode)

        request = self._run_request(req)
        stream_ctx = (ctx or background()).child()
        stream: EventStream[RunWorkflowResponse] = EventStream(stream_ctx)
        stream.attach(asyncio.create_task(self._pump(request, stream)))
        return stream

    async def _pump(self, request: Request, stream: EventStream[RunWorkflowResponse]) -> None:
        logger = self._logger or log.get_logger()
        try:
            try:
                events = await self._client.send_stream(request, stream.context)
            except DifyError as e:
                logger.error("failed to open workflow stream: %s", e)
                stream.offer(StreamEvent[RunWorkflowResponse](err=e.message))
                return
            await dispatch(events, stream, RunWorkflowResponse, logger)
        finally:
            stream.close()
            # 让仍阻塞在满队列上的解码任务退出
            stream.context.cancel("event stream finished")
