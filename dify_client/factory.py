"""
Dify 服务工厂

围绕一个共享的 ``DifyClient`` 创建工作流与文件服务。
"""

from typing import Optional

import httpx

from . import log
from .client import DifyClient
from .config import DifySettings, mask
from .file import FileService
from .workflow import WorkflowService


class DifyServiceFactory:
    """按需创建共享同一 HTTP 客户端的服务"""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[log.Logger] = None,
    ):
        """
        Args:
            base_url: Dify API 地址，如 ``https://api.dify.ai``
            api_key: 应用 API Key，以 Bearer token 发送
            timeout: HTTP 超时（秒）
        """
        self._base_url = base_url
        self._api_key = api_key
        self._logger = logger
        self._client = DifyClient(timeout=timeout, transport=transport, logger=logger)
        self._workflow_service: Optional[WorkflowService] = None
        self._file_service: Optional[FileService] = None

    @property
    def client(self) -> DifyClient:
        return self._client

    @property
    def workflow(self) -> WorkflowService:
        if self._workflow_service is None:
            self._workflow_service = WorkflowService(
                self._base_url, self._api_key, client=self._client, logger=self._logger
            )
        return self._workflow_service

    @property
    def files(self) -> FileService:
        if self._file_service is None:
            self._file_service = FileService(
                self._base_url, self._api_key, client=self._client, logger=self._logger
            )
        return self._file_service

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "DifyServiceFactory":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()


def create_dify_service(
    base_url: str = "",
    api_key: str = "",
    timeout: Optional[float] = None,
    *,
    settings: Optional[DifySettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> DifyServiceFactory:
    """
    创建 ``DifyServiceFactory``。

    未传入的参数从 ``DifySettings`` 读取（``DIFY_BASE_URL``、``DIFY_API_KEY``、
    ``DIFY_TIMEOUT``）；``DIFY_LOG_LEVEL`` 应用到全局 logger。

    Raises:
        ValueError: 未配置 base URL
    """
    settings = settings or DifySettings()
    url = base_url or settings.DIFY_BASE_URL
    if not url:
        raise ValueError("Dify base_url is not configured; set DIFY_BASE_URL or pass base_url")

    log.set_level(settings.DIFY_LOG_LEVEL)
    key = api_key or settings.DIFY_API_KEY
    log.debug("creating Dify services base_url=%s api_key=%s", url, mask(key))
    return DifyServiceFactory(
        base_url=url,
        api_key=key,
        timeout=timeout if timeout is not None else settings.DIFY_TIMEOUT,
        transport=transport,
    )
