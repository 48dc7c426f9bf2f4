import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .api.conversation_routes import router as conversation_router
from .api.pricing_routes import router as pricing_router
from .errors import error_response_for, status_code_for
from .exceptions import SwitchyardError
from .logging_config import logger


class HealthResponse(BaseModel):
    status: str = "ok"


async def handle_switchyard_error(request: Request, exc: SwitchyardError):
    """
    领域异常统一转换为 ErrorResponse，body 结构与 http_error 抛出的 HTTPException 一致。
    """

    payload = error_response_for(exc)
    if payload.code >= 500:
        logger.warning(
            "%s %s failed: %s (%s)",
            request.method,
            request.url.path,
            exc.error_code,
            exc.message,
        )
    else:
        logger.info(
            "%s %s rejected: %s (%s)",
            request.method,
            request.url.path,
            exc.error_code,
            exc.message,
        )
    return JSONResponse(status_code=status_code_for(exc), content={"detail": payload.model_dump()})


async def handle_unexpected_error(request: Request, exc: Exception):
    """
    全局异常处理器，统一返回结构化错误响应并打印日志。
    """

    error_id = uuid.uuid4().hex
    logger.exception(
        "Unhandled error %s %s (error_id=%s)",
        request.method,
        request.url.path,
        error_id,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error_code": "internal_error",
            "message": "服务器内部错误，请稍后再试",
            "error_id": error_id,
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    应用生命周期管理：
    - startup: 按需建表；使用进程内事件队列时挂上 analytics 消费者并启动后台线程
    - shutdown: 停止事件队列，释放驱动连接
    """
    from .db import engine
    from .deps import get_switchyard_service, reset_switchyard_service
    from .models import Base
    from .services.event_bus import QueueEventPublisher
    from .settings import settings
    from .tasks.analytics import dispatch_event

    if settings.auto_create_tables:
        Base.metadata.create_all(bind=engine)

    # 测试中 get_switchyard_service 可能被 dependency_overrides 替换，这里保持一致。
    provide = app.dependency_overrides.get(get_switchyard_service, get_switchyard_service)
    service = provide()
    queue_publisher = service.publisher if isinstance(service.publisher, QueueEventPublisher) else None
    if queue_publisher is not None:
        queue_publisher.subscribe(dispatch_event)
        queue_publisher.start()

    yield

    if queue_publisher is not None:
        queue_publisher.stop()
    reset_switchyard_service()


def create_app() -> FastAPI:
    from .settings import settings

    docs_url = "/docs" if settings.enable_api_docs else None
    redoc_url = "/redoc" if settings.enable_api_docs else None
    openapi_url = "/openapi.json" if settings.enable_api_docs else None

    app = FastAPI(
        title="Switchyard",
        version="0.1.0",
        docs_url=docs_url,
        redoc_url=redoc_url,
        openapi_url=openapi_url,
        lifespan=lifespan,
    )

    app.add_exception_handler(SwitchyardError, handle_switchyard_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    if not settings.enable_api_docs:
        logger.info(
            "API docs routes are disabled (environment=%s); set ENABLE_API_DOCS=true to enable.",
            settings.environment,
        )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("HTTP %s %s", request.method, request.url.path)
        response = await call_next(request)
        logger.info("HTTP %s %s -> %s", request.method, request.url.path, response.status_code)
        return response

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse()

    # 会话切换 / 历史 / 费用
    app.include_router(conversation_router)
    # 定价解析 / 覆盖 / 对比
    app.include_router(pricing_router)

    return app


__all__ = ["create_app", "handle_switchyard_error", "handle_unexpected_error"]
