"""把查询结构体编码为 URL 参数"""

from __future__ import annotations

import dataclasses
import enum
from collections.abc import Mapping
from typing import Any, Dict, List

from pydantic import BaseModel


def query_values(obj: Any) -> Dict[str, List[str]]:
    """返回有序的 参数名 → 字符串值列表 映射。

    ``obj`` 可以是 pydantic 模型（使用别名，丢弃 ``None`` 字段）、dataclass 或 mapping。
    dataclass 字段从 ``url`` 元数据标签取参数名，如
    ``field(metadata={"url": "name,omitempty"})``；标签为 ``"-"`` 时跳过该字段。
    """
    if obj is None:
        return {}
    if isinstance(obj, BaseModel):
        items = obj.model_dump(mode="json", by_alias=True, exclude_none=True).items()
        return _encode_items(items)
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return _encode_dataclass(obj)
    if isinstance(obj, Mapping):
        return _encode_items(obj.items())
    raise TypeError(f"query struct must be a model, dataclass or mapping, got {type(obj).__name__}")


def _encode_dataclass(obj: Any) -> Dict[str, List[str]]:
    values: Dict[str, List[str]] = {}
    for f in dataclasses.fields(obj):
        tag = f.metadata.get("url", "")
        name, _, opts = tag.partition(",")
        if name == "-":
            continue
        name = name or f.name
        value = getattr(obj, f.name)
        if "omitempty" in opts.split(",") and _is_empty(value):
            continue
        encoded = _encode_value(value)
        if encoded:
            values.setdefault(name, []).extend(encoded)
    return values


def _encode_items(items: Any) -> Dict[str, List[str]]:
    values: Dict[str, List[str]] = {}
    for key, value in items:
        encoded = _encode_value(value)
        if encoded:
            values.setdefault(str(key), []).extend(encoded)
    return values


def _encode_value(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        out: List[str] = []
        for v in value:
            out.extend(_encode_value(v))
        return out
    if isinstance(value, bool):
        return ["true" if value else "false"]
    if isinstance(value, enum.Enum):
        return [str(value.value)]
    return [str(value)]


def _is_empty(value: Any) -> bool:
    return value is None or value is False or value == 0 or value == "" or value == [] or value == ()
