"""
Dify 客户端的分级日志。

基于标准库 ``logging``。客户端与 SSE 解码器在构造时接收 ``Logger``；未提供时使用
全局默认实例，可通过 ``set_logger`` 替换。
"""

from __future__ import annotations

import enum
import logging
import sys
import threading
from typing import IO, Any, Optional, Protocol, runtime_checkable

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"


class Level(enum.IntEnum):
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARN = logging.WARNING
    ERROR = logging.ERROR
    FATAL = logging.CRITICAL

    def __str__(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: "str | int | Level") -> "Level":
        if isinstance(value, Level):
            return value
        if isinstance(value, int):
            return cls(value)
        name = value.strip().upper()
        if name == "WARNING":
            name = "WARN"
        try:
            return cls[name]
        except KeyError:
            raise ValueError(f"invalid log level: {value!r}") from None


@runtime_checkable
class Logger(Protocol):
    def debug(self, msg: str, *args: Any) -> None: ...

    def info(self, msg: str, *args: Any) -> None: ...

    def warn(self, msg: str, *args: Any) -> None: ...

    def error(self, msg: str, *args: Any) -> None: ...

    def fatal(self, msg: str, *args: Any) -> None: ...

    def set_level(self, level: Level) -> None: ...

    def get_level(self) -> Level: ...


class ColorFormatter(logging.Formatter):
    """按级别为每条日志加上 ANSI 颜色"""

    RESET = "\033[0m"
    COLORS = {
        logging.DEBUG: "\033[37m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[41m\033[97m",
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno, self.RESET)
        return f"{color}{super().format(record)}{self.RESET}"


class StdLogger:
    """基于 ``logging.Logger`` 的 ``Logger`` 实现。

    级别阈值保存在这里并由锁保护，修改时不影响全局 ``logging`` 配置。
    """

    def __init__(self, logger: logging.Logger, level: Level = Level.INFO):
        self._logger = logger
        self._level = level
        self._mu = threading.Lock()

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def set_level(self, level: Level) -> None:
        level = Level.parse(level)
        with self._mu:
            self._level = level

    def get_level(self) -> Level:
        with self._mu:
            return self._level

    def _can_log_at(self, level: Level) -> bool:
        return level >= self.get_level()

    def debug(self, msg: str, *args: Any) -> None:
        if self._can_log_at(Level.DEBUG):
            self._logger.log(logging.DEBUG, msg, *args, stacklevel=2)

    def info(self, msg: str, *args: Any) -> None:
        if self._can_log_at(Level.INFO):
            self._logger.log(logging.INFO, msg, *args, stacklevel=2)

    def warn(self, msg: str, *args: Any) -> None:
        if self._can_log_at(Level.WARN):
            self._logger.log(logging.WARNING, msg, *args, stacklevel=2)

    def error(self, msg: str, *args: Any) -> None:
        if self._can_log_at(Level.ERROR):
            self._logger.log(logging.ERROR, msg, *args, stacklevel=2)

    def fatal(self, msg: str, *args: Any) -> None:
        # 无论阈值如何都输出
        self._logger.log(logging.CRITICAL, msg, *args, stacklevel=2)
        sys.exit(1)


def new_logger(
    stream: Optional[IO[str]] = None,
    level: "Level | str" = Level.INFO,
    *,
    name: str = "dify_client",
    color: bool = False,
) -> StdLogger:
    """创建写入 ``stream``（默认 stderr）的 ``StdLogger``"""
    logger = logging.getLogger(name)
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    formatter_cls = ColorFormatter if color else logging.Formatter
    handler.setFormatter(formatter_cls(DEFAULT_FORMAT, datefmt=DEFAULT_DATEFMT))
    logger.handlers = [handler]
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return StdLogger(logger, Level.parse(level))


# ── 全局默认 ──

_global_logger: Logger = StdLogger(logging.getLogger("dify_client"), Level.INFO)
_global_mu = threading.Lock()


def get_logger() -> Logger:
    with _global_mu:
        return _global_logger


def set_logger(logger: Logger) -> None:
    global _global_logger
    with _global_mu:
        _global_logger = logger


def set_level(level: "Level | str") -> None:
    get_logger().set_level(Level.parse(level))


def debug(msg: str, *args: Any) -> None:
    get_logger().debug(msg, *args)


def info(msg: str, *args: Any) -> None:
    get_logger().info(msg, *args)


def warn(msg: str, *args: Any) -> None:
    get_logger().warn(msg, *args)


def error(msg: str, *args: Any) -> None:
    get_logger().error(msg, *args)


def fatal(msg: str, *args: Any) -> None:
    get_logger().fatal(msg, *args)
