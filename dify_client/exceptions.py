from typing import Optional, Sequence


class DifyError(Exception):
    """Dify 客户端所有异常的基类"""

    def __init__(
        self,
        message: str,
        code: str = "dify_error",
        status_code: int = 500,
        raw_response: Optional[dict] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.raw_response = raw_response
        super().__init__(self.message)


class RequestBuildError(DifyError):
    """请求缺少必填字段。

    每个缺失字段占一行，多个缺失会一并报告。
    """

    def __init__(self, missing: Sequence[str]):
        self.missing = list(missing)
        message = "\n".join(
            f"failed to create the request, should have a {name}" for name in self.missing
        )
        super().__init__(message, code="invalid_request", status_code=400)


class DifyRequestError(DifyError):
    """请求描述无法转换为 HTTP 请求（URL 或请求体错误）"""

    def __init__(self, message: str):
        super().__init__(message, code="invalid_request", status_code=400)


class DifyConnectionError(DifyError):
    """网络连接异常"""

    def __init__(self, message: str = "failed to connect to Dify"):
        super().__init__(message, code="connection_error")


class DifyTimeoutError(DifyError):
    """请求超时"""

    def __init__(self, message: str = "Dify request timed out", timeout: float = 0):
        self.timeout = timeout
        super().__init__(message, code="timeout")


class DifyRateLimitError(DifyError):
    """请求频率限制 (HTTP 429)，不重试"""

    def __init__(self, message: str = "Dify rate limit exceeded", retry_after: int = 60):
        self.retry_after = retry_after
        super().__init__(message, code="rate_limit", status_code=429)


class DifyStreamError(DifyError):
    """读取响应体中途失败"""

    def __init__(self, message: str = "Dify response stream interrupted"):
        super().__init__(message, code="stream_error")


class DifyDecodeError(DifyError):
    """响应内容不是预期类型的合法 JSON"""

    def __init__(self, message: str, raw: bytes = b""):
        self.raw = raw
        super().__init__(message, code="decode_error")


class ResponseModeError(DifyError):
    """response_mode 与所调用的方法不匹配"""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"response mode must be {expected}, got {actual!r}",
            code="invalid_response_mode",
            status_code=400,
        )


class ContextCancelledError(DifyError):
    """调用的 Context 在操作完成前被取消"""

    def __init__(self, message: str = "context canceled"):
        super().__init__(message, code="canceled", status_code=499)


class DeadlineExceededError(ContextCancelledError):
    """调用的 Context 超过截止时间"""

    def __init__(self, timeout: float = 0):
        self.timeout = timeout
        super().__init__(f"context deadline exceeded after {timeout}s")
        self.code = "deadline_exceeded"


class StreamClosedError(DifyError):
    """向已关闭的 EventStream 投递事件"""

    def __init__(self, message: str = "event stream is closed"):
        super().__init__(message, code="stream_closed")
