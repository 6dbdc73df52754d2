"""
请求描述对象及其链式构建器。

``Request`` 描述一次对 Dify 的 HTTP 调用，由 ``RequestBuilder`` 组装，构建后不可变：

    req = (
        RequestBuilder()
        .base_url("https://api.dify.ai")
        .token(api_key)
        .path("v1/workflows/run")
        .method("POST")
        .body(payload)
        .build()
    )
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .exceptions import RequestBuildError


@dataclass(frozen=True)
class Request:
    base_url: str
    path: str
    method: str
    auth_token: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    query: Tuple[Any, ...] = ()
    # multipart 上传
    files: Optional[Mapping[str, Any]] = None
    data: Optional[Mapping[str, Any]] = None


class RequestBuilder:
    """``Request`` 的链式构建器，每个 setter 都返回构建器本身"""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        """恢复为空状态"""
        self._base_url = ""
        self._path = ""
        self._method = ""
        self._token = ""
        self._headers: Dict[str, str] = {}
        self._body: Any = None
        self._query: List[Any] = []
        self._files: Optional[Mapping[str, Any]] = None
        self._data: Optional[Mapping[str, Any]] = None

    def base_url(self, base_url: str) -> "RequestBuilder":
        self._base_url = base_url
        return self

    def path(self, path: str) -> "RequestBuilder":
        """相对 base URL 的路径，如 ``v1/workflows/run``"""
        self._path = path
        return self

    def path_param(self, param: str) -> "RequestBuilder":
        """在路径后追加 ``/param``"""
        self._path = f"{self._path}/{param}"
        return self

    def token(self, token: str) -> "RequestBuilder":
        self._token = token
        return self

    def method(self, method: str) -> "RequestBuilder":
        self._method = method.upper()
        return self

    def body(self, body: Any) -> "RequestBuilder":
        self._body = body
        return self

    def query(self, query_struct: Any) -> "RequestBuilder":
        """追加一个查询结构体，按添加顺序编码"""
        self._query.append(query_struct)
        return self

    def headers(self, headers: Mapping[str, str]) -> "RequestBuilder":
        """替换附加请求头"""
        self._headers = dict(headers)
        return self

    def files(self, files: Mapping[str, Any]) -> "RequestBuilder":
        self._files = files
        return self

    def data(self, data: Mapping[str, Any]) -> "RequestBuilder":
        self._data = data
        return self

    def build(self) -> Request:
        missing = []
        if not self._base_url:
            missing.append("BaseURL")
        if not self._path:
            missing.append("Path")
        if not self._method:
            missing.append("Method")
        if missing:
            raise RequestBuildError(missing)

        return Request(
            base_url=self._base_url,
            path=self._path,
            method=self._method,
            auth_token=self._token,
            headers=MappingProxyType(dict(self._headers)),
            body=self._body,
            query=tuple(self._query),
            files=self._files,
            data=self._data,
        )


class RequestBuilderPool:
    """``RequestBuilder`` 复用池。

    归还时重置，取出的构建器总是空的。
    """

    def __init__(self, max_size: int = 32):
        self._max_size = max_size
        self._free: List[RequestBuilder] = []
        self._mu = threading.Lock()

    def acquire(self) -> RequestBuilder:
        with self._mu:
            if self._free:
                return self._free.pop()
        return RequestBuilder()

    def release(self, builder: RequestBuilder) -> None:
        builder.reset()
        with self._mu:
            if len(self._free) < self._max_size:
                self._free.append(builder)

    def __len__(self) -> int:
        with self._mu:
            return len(self._free)


# 各服务共享
builder_pool = RequestBuilderPool()
