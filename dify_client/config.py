"""
客户端配置

加载优先级（高 → 低）：
  1. 环境变量
  2. 工作目录下的 ``.env`` 文件
  3. 下方默认值
"""

from pydantic_settings import BaseSettings

from .client import DEFAULT_TIMEOUT


class DifySettings(BaseSettings):
    DIFY_BASE_URL: str = ""
    DIFY_API_KEY: str = ""
    DIFY_TIMEOUT: float = DEFAULT_TIMEOUT
    DIFY_LOG_LEVEL: str = "info"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


def mask(val: str, show: int = 6) -> str:
    """脱敏：只保留前 ``show`` 个字符"""
    if not val:
        return "(unset)"
    return val[:show] + "***" if len(val) > show else val
