"""
Core module initialization.
导出日志、安全与请求上下文工具
"""
from .logging import setup_logging, get_logger
from .request_context import request_id_var
from .security import (
    create_access_token,
    get_password_hash,
    validate_token,
    verify_password,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "request_id_var",
    "create_access_token",
    "get_password_hash",
    "validate_token",
    "verify_password",
]
