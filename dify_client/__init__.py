"""
Dify API 客户端

封装 Dify 工作流 API：
- 工作流执行（阻塞模式与流式 SSE 模式）
- 上传文件作为工作流输入
"""

from .client import DifyClient, Response
from .context import Context
from .exceptions import (
    ContextCancelledError,
    DeadlineExceededError,
    DifyConnectionError,
    DifyDecodeError,
    DifyError,
    DifyRateLimitError,
    DifyRequestError,
    DifyStreamError,
    DifyTimeoutError,
    RequestBuildError,
    ResponseModeError,
    StreamClosedError,
)
from .factory import DifyServiceFactory, create_dify_service
from .file import FileService
from .request import Request, RequestBuilder, RequestBuilderPool
from .schemas import (
    BLOCKING_MODE,
    STREAMING_MODE,
    RunWorkflowRequest,
    RunWorkflowRequestFile,
    RunWorkflowResponse,
    RunWorkflowResponseData,
    StreamEvent,
    UploadFileRequest,
    UploadFileResponse,
)
from .sse import EventStream
from .workflow import WorkflowService

__all__ = [
    "BLOCKING_MODE",
    "STREAMING_MODE",
    "Context",
    "ContextCancelledError",
    "DeadlineExceededError",
    "DifyClient",
    "DifyConnectionError",
    "DifyDecodeError",
    "DifyError",
    "DifyRateLimitError",
    "DifyRequestError",
    "DifyServiceFactory",
    "DifyStreamError",
    "DifyTimeoutError",
    "EventStream",
    "FileService",
    "Request",
    "RequestBuildError",
    "RequestBuilder",
    "RequestBuilderPool",
    "Response",
    "ResponseModeError",
    "RunWorkflowRequest",
    "RunWorkflowRequestFile",
    "RunWorkflowResponse",
    "RunWorkflowResponseData",
    "StreamClosedError",
    "StreamEvent",
    "UploadFileRequest",
    "UploadFileResponse",
    "WorkflowService",
    "create_dify_service",
]
