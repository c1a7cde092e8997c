"""
Logging configuration for the Karmada dashboard API.
统一的日志配置模块：标准库 logging 负责输出（彩色控制台 / JSON），
structlog 负责业务代码中的结构化事件，并通过标准库 handler 输出。
"""
import json
import logging
import sys
from typing import Any, Dict, Optional

import structlog

from karmada_dashboard.config import get_settings

from .request_context import request_id_var, username_var

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_CONFIGURED = False


class ContextFilter(logging.Filter):
    """把 request_id / username 自动注入 LogRecord。"""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        rid = getattr(record, "request_id", None) or request_id_var.get()
        user = getattr(record, "username", None) or username_var.get()
        if rid is not None:
            record.request_id = rid
        if user is not None:
            record.username = user
        if not hasattr(record, "service"):
            record.service = "karmada-dashboard-api"
        return True


class ColoredFormatter(logging.Formatter):
    """彩色日志格式化器（用于控制台输出）"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        log_color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{log_color}{record.levelname}{self.RESET}"
        return super().format(record)


class JSONFormatter(logging.Formatter):
    """JSON 结构化日志格式化器，敏感字段脱敏。"""

    REDACT_KEYS = {"password", "passwd", "secret", "token", "authorization", "jwt"}
    _RESERVED = {
        "args", "asctime", "created", "exc_info", "exc_text", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs", "message", "msg", "name",
        "pathname", "process", "processName", "relativeCreated", "stack_info", "thread",
        "threadName", "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in self._RESERVED:
                continue
            payload[key] = self.redact(key, value)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)

    @classmethod
    def redact(cls, key: str, value: Any) -> Any:
        if key.lower() in cls.REDACT_KEYS and value:
            return "***REDACTED***"
        return value


def _redact_event_dict(_logger: Any, _method: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for key in list(event_dict):
        event_dict[key] = JSONFormatter.redact(key, event_dict[key])
    return event_dict


def _add_request_context(_logger: Any, _method: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    rid = request_id_var.get()
    if rid and "request_id" not in event_dict:
        event_dict["request_id"] = rid
    return event_dict


def setup_logging(level: Optional[str] = None, use_color: bool = True) -> logging.Logger:
    """配置日志系统（root logger + structlog），重复调用无副作用。

    Args:
        level: 日志级别，默认读取配置 LOG_LEVEL
        use_color: 控制台为 TTY 时是否使用彩色输出

    Returns:
        logging.Logger: 服务根日志记录器
    """
    global _CONFIGURED
    logger = logging.getLogger("karmada_dashboard")
    if _CONFIGURED:
        return logger

    settings = get_settings()
    root = logging.getLogger()
    root.setLevel((level or settings.log_level).upper())
    for h in list(root.handlers):
        root.removeHandler(h)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.addFilter(ContextFilter())
    if settings.log_json:
        console_handler.setFormatter(JSONFormatter(datefmt=LOG_DATE_FORMAT))
    elif use_color and sys.stdout.isatty():
        console_handler.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    else:
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    root.addHandler(console_handler)

    # 让 uvicorn / fastapi 的日志走 root handlers
    for log_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        lg = logging.getLogger(log_name)
        lg.handlers = []
        lg.propagate = True
    # kubernetes 客户端的 urllib3 连接日志过于冗长
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            _add_request_context,
            _redact_event_dict,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(key_order=["event"], drop_missing=True),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    _CONFIGURED = True
    return logger


def get_logger(name: str) -> logging.Logger:
    """获取标准库日志记录器（异常处理器等非业务代码使用）"""
    return logging.getLogger(name)
