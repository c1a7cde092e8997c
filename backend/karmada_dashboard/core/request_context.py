"""
Request-scoped context variables.

让日志（stdlib 与 structlog）自动携带 request_id 与当前用户名。
"""

from __future__ import annotations

from contextvars import ContextVar
from typing import Optional


request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
username_var: ContextVar[Optional[str]] = ContextVar("username", default=None)
