from typing import Any, Dict, Optional
import json
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from kubernetes.client.exceptions import ApiException
from starlette.exceptions import HTTPException as StarletteHTTPException


logger = logging.getLogger(__name__)


class AppException(Exception):
    """统一应用异常基类：code 写入响应 envelope，status_code 为 HTTP 状态码（默认 200）。"""

    def __init__(
        self,
        message: str,
        *,
        code: int = 500,
        status_code: int = 200,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class BadRequestError(AppException):
    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", 400)
        super().__init__(message, **kwargs)


class UnauthorizedError(AppException):
    def __init__(self, message: str = "Unauthorized", **kwargs: Any) -> None:
        kwargs.setdefault("code", 401)
        kwargs.setdefault("status_code", 401)
        super().__init__(message, **kwargs)


class ForbiddenError(AppException):
    def __init__(self, message: str = "Forbidden", **kwargs: Any) -> None:
        kwargs.setdefault("code", 403)
        super().__init__(message, **kwargs)


class NotFoundError(AppException):
    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", 404)
        super().__init__(message, **kwargs)


def envelope(data: Any = None, *, code: int = 200, message: str = "success") -> Dict[str, Any]:
    return {"code": code, "message": message, "data": data}


def api_exception_message(exc: ApiException) -> str:
    """Pull the Status.message out of a Kubernetes API error body."""
    body = getattr(exc, "body", None)
    if body:
        try:
            parsed = json.loads(body)
            if isinstance(parsed, dict) and parsed.get("message"):
                return str(parsed["message"])
        except (TypeError, ValueError):
            pass
    return exc.reason or str(exc)


def error_response(request: Request, *, message: str, code: int, status_code: int = 200, details: Optional[Dict[str, Any]] = None) -> JSONResponse:
    req_id = getattr(request.state, "request_id", None)
    request.state.skip_envelope = True
    payload = envelope(details or None, code=code, message=message)
    headers = {"X-Request-ID": req_id} if req_id else None
    return JSONResponse(status_code=status_code, content=payload, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """注册全局异常处理器，错误统一为 {code, message, data} envelope。"""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        message = exc.detail if isinstance(exc.detail, str) else "request failed"
        logger.warning("HTTPException: status=%s path=%s", exc.status_code, request.url.path)
        return error_response(request, message=message, code=exc.status_code, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        errors = exc.errors()
        first = errors[0] if errors else {}
        loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"invalid request body: {loc} {first.get('msg', '')}".strip()
        logger.info("ValidationError: path=%s errors=%d", request.url.path, len(errors))
        return error_response(request, message=message, code=400)

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):  # type: ignore[override]
        logger.warning("AppException: code=%s path=%s message=%s", exc.code, request.url.path, exc.message)
        return error_response(
            request,
            message=exc.message,
            code=exc.code,
            status_code=exc.status_code,
            details=exc.details,
        )

    @app.exception_handler(ApiException)
    async def kubernetes_exception_handler(request: Request, exc: ApiException):  # type: ignore[override]
        message = api_exception_message(exc)
        logger.warning("KubernetesApiException: status=%s path=%s message=%s", exc.status, request.url.path, message)
        return error_response(request, message=message, code=exc.status or 500)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):  # type: ignore[override]
        logger.exception("UnhandledException: path=%s", request.url.path)
        return error_response(request, message=str(exc) or "internal server error", code=500)
