import json
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from karmada_dashboard.api.router import api_router, public_router
from karmada_dashboard.config import get_settings
from karmada_dashboard.core.logging import get_logger, setup_logging
from karmada_dashboard.core.request_context import request_id_var
from karmada_dashboard.dependencies import get_fga_client, get_user_store
from karmada_dashboard.exceptions import envelope, register_exception_handlers
from karmada_dashboard.services.users import bootstrap_admin


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logger = get_logger(__name__)
    settings = get_settings()

    # 启动时创建管理员账号与 OpenFGA 授权关系
    result = await bootstrap_admin(get_user_store(), get_fga_client(), settings)
    logger.info("管理员初始化完成: etcd=%s openfga=%s", result["etcd"], result["fga"])

    yield

    logger.info("正在关闭应用...")


# 日志初始化需尽早执行
setup_logging()

settings = get_settings()

app = FastAPI(
    title="Karmada Dashboard API",
    description="Karmada 多集群管理后端API",
    version="1.0.0",
    lifespan=lifespan,
)


# ============ request_id + 统一成功响应包装 ============
@app.middleware("http")
async def request_id_and_envelope(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        # 错误响应已由异常处理器包装；透传的响应（如 Porch）保持原样
        if getattr(request.state, "skip_envelope", False):
            return response
        if response.status_code >= 400 or response.status_code == 204:
            return response

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            return response

        body = b""
        async for chunk in response.body_iterator:
            body += chunk

        try:
            payload = json.loads(body) if body else None
        except ValueError:
            headers = dict(response.headers)
            return Response(content=body, status_code=response.status_code, headers=headers)

        headers = dict(response.headers)
        headers.pop("content-length", None)
        return JSONResponse(status_code=response.status_code, content=envelope(payload), headers=headers)
    finally:
        request_id_var.reset(token)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册全局异常处理
register_exception_handlers(app)

# 注册路由
app.include_router(public_router)
app.include_router(api_router)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
