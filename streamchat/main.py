"""
streamchat.main
~~~~~~~~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from streamchat.api import chat_ws, stream_endpoints
from streamchat.core.errors import ChatError
from streamchat.core.logging import get_logger, setup_logging
from streamchat.core.rate_limit import limiter
from streamchat.core.settings import settings
from streamchat.db import close_mongo, connect_mongo, get_database
from streamchat.db.base import ChatStore
from streamchat.db.chat_repository import MongoChatStore
from streamchat.db.memory_store import MemoryChatStore, seed_demo_data
from streamchat.schemas.api_response import ApiResponse
from streamchat.services.gateway import ChatGateway
from streamchat.services.message_pipeline import MessagePipeline
from streamchat.services.room_registry import RoomRegistry

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


async def _build_store() -> ChatStore:
    """按 ``STORAGE_BACKEND`` 构建持久化后端。"""
    if settings.STORAGE_BACKEND == "mongo":
        await connect_mongo()
        return MongoChatStore(get_database())

    store = MemoryChatStore()
    if settings.SEED_DEMO_DATA:
        await seed_demo_data(store)
    return store


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    store = await _build_store()
    registry = RoomRegistry()
    pipeline = MessagePipeline(
        store=store,
        registry=registry,
        default_donation_message=settings.DEFAULT_DONATION_MESSAGE,
    )
    app.state.store = store
    app.state.registry = registry
    app.state.pipeline = pipeline
    app.state.chat_gateway = ChatGateway(
        registry=registry,
        pipeline=pipeline,
        store=store,
        history_limit=settings.CHAT_HISTORY_LIMIT,
        send_queue_size=settings.WS_SEND_QUEUE_SIZE,
    )
    logger.info(
        "🚀 应用已启动 | env=%s | storage=%s | ws=%s | log_level=%s",
        settings.ENVIRONMENT,
        settings.STORAGE_BACKEND,
        settings.WS_PATH,
        settings.effective_log_level,
    )
    yield
    # ── 关闭 ──
    if settings.STORAGE_BACKEND == "mongo":
        await close_mongo()
    logger.info("👋 应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="直播间实时聊天后端",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

if settings.allow_cors_all_origins:
    # dev / test 环境：允许所有来源，方便本地调试
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(stream_endpoints.router, prefix="/api", tags=["Stream Chat"])
app.include_router(chat_ws.router, tags=["WebSocket Chat"])


# ── 异常处理器 ────────────────────────────────────────────────────────

@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    """聊天核心异常 → 对应 HTTP 状态码 + ApiResponse.fail()。"""
    response = ApiResponse.fail(msg=exc.message, code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=response.model_dump())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """请求参数校验失败 → 400 + ApiResponse.fail()。"""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        msg = f"Invalid request: {field} {first.get('msg', '')}".strip()
    else:
        msg = "Invalid request"
    logger.warning("请求校验失败: %s %s -> %s", request.method, request.url.path, msg)
    response = ApiResponse.fail(msg=msg, code=400)
    return JSONResponse(status_code=400, content=response.model_dump())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    response = ApiResponse.fail(msg=detail, code=500, data=None)
    return JSONResponse(status_code=500, content=response.model_dump())


@app.get("/health", tags=["System"])
async def health_check(request: Request) -> JSONResponse:
    """验证服务是否正常运行。"""
    registry: RoomRegistry = request.app.state.registry
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "storage": settings.STORAGE_BACKEND,
            "active_rooms": len(registry.room_ids()),
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "streamchat.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,
        log_level=settings.effective_log_level.lower(),
    )
