from __future__ import annotations

from typing import Optional

import httpx
from pydantic import ValidationError

from . import log
from .client import DEFAULT_TIMEOUT, DifyClient, error_from_response
from .context import Context
from .exceptions import DifyDecodeError
from .request import builder_pool
from .schemas import UploadFileRequest, UploadFileResponse

UPLOAD_PATH = "v1/files/upload"


class FileService:
    """上传文件，供工作流输入使用"""

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
        self._owns_client = client is None
        self._client = client or DifyClient(timeout=timeout, transport=transport, logger=logger)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def upload(
        self, req: UploadFileRequest, ctx: Optional[Context] = None
    ) -> UploadFileResponse:
        """以 multipart 表单代 ``req.user`` 上传 ``req.file``"""
        builder = builder_pool.acquire()
        try:
            request = (
                builder.base_url(self._base_url)
                .token(self._api_key)
                .path(UPLOAD_PATH)
                .method("POST")
                .files({"file": (req.filename, req.file, req.content_type)})
                .data({"user": req.user})
                .build()
            )
        finally:
            builder_pool.release(builder)

        resp = await self._client.send(request, ctx)
        if resp.status_code >= 400:
            raise error_from_response(resp.status_code, resp.body, resp.headers)
        try:
            return UploadFileResponse.model_validate_json(resp.body)
        except ValidationError as e:
            raise DifyDecodeError(f"failed to decode upload response: {e}", raw=resp.body) from e
