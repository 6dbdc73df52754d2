"""Dify 工作流与文件 API 的请求/响应模型"""

from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

T = TypeVar("T")

STREAMING_MODE = "streaming"
BLOCKING_MODE = "blocking"


# ── 工作流 ──


class RunWorkflowRequestFile(BaseModel):
    type: str
    transfer_method: str
    url: str = ""
    upload_file_id: str = ""


class RunWorkflowRequest(BaseModel):
    inputs: Dict[str, Any] = {}
    response_mode: str = BLOCKING_MODE
    user: str
    files: List[RunWorkflowRequestFile] = []


class RunWorkflowResponseData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    workflow_id: str = ""
    status: str = ""
    outputs: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    elapsed_time: Optional[float] = None
    total_tokens: Optional[int] = Field(None, validation_alias=AliasChoices("total_tokens", "total_token"))
    total_steps: Optional[int] = None
    created_at: Optional[int] = None
    finished_at: Optional[int] = None


class RunWorkflowResponse(BaseModel):
    """阻塞模式响应体，或流式模式中的单个事件（此时 ``event`` 有值）"""

    event: str = ""
    workflow_run_id: str = ""
    task_id: str = ""
    data: RunWorkflowResponseData = Field(default_factory=RunWorkflowResponseData)


class StreamEvent(BaseModel, Generic[T]):
    """``EventStream`` 交付的单个事件。

    终止事件的 ``done`` 为真或 ``err`` 非空，其后不再有事件。
    """

    type: str = ""
    data: Optional[T] = None
    err: str = ""
    done: bool = False

    @property
    def terminal(self) -> bool:
        return self.done or bool(self.err)


# ── 文件 ──


class UploadFileRequest(BaseModel):
    file: bytes
    filename: str
    content_type: str = "application/octet-stream"
    user: str


class UploadFileResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    size: int = 0
    extension: str = ""
    mime_type: str = Field("", validation_alias=AliasChoices("mime_type", "mine_type"))
    created_by: str = Field("", validation_alias=AliasChoices("created_by", "create_by"))
    created_at: int = Field(0, validation_alias=AliasChoices("created_at", "create_time"))
