"""
Hazel FastAPI 主应用
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder

from hz_core.config import get_settings
from hz_core.utils.logger import setup_logging, get_logger
from hz_core.utils.errors import HazelException
from hz_core.database import get_db_manager
from hz_core.event_bus import get_event_bus
from hz_core.middleware.logging import LoggingMiddleware
from hz_core.models.base import utcnow
from hz_core.api import api_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    settings = get_settings()

    logger.info("Starting Hazel fulfillment service", version=settings.api_version)

    db_manager = get_db_manager()
    if not await db_manager.check_connection():
        raise RuntimeError("Database connection failed")

    event_bus = get_event_bus()
    await event_bus.initialize()

    logger.info("Hazel fulfillment service started")

    yield

    logger.info("Shutting down Hazel fulfillment service")

    try:
        await event_bus.shutdown()
        await db_manager.close()
        logger.info("Hazel fulfillment service shutdown complete")
    except Exception:
        logger.error("Error during application shutdown", exc_info=True)


def create_app() -> FastAPI:
    """创建 FastAPI 应用"""
    settings = get_settings()

    setup_logging(
        log_level=settings.log_level,
        log_format=settings.log_format
    )

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="Hazel order fulfillment and inventory reservation API",
        docs_url="/docs" if settings.api_debug else None,
        redoc_url="/redoc" if settings.api_debug else None,
        openapi_url="/openapi.json" if settings.api_debug else None,
        lifespan=lifespan
    )

    app.add_middleware(LoggingMiddleware)

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.exception_handler(HazelException)
    async def hazel_exception_handler(request: Request, exc: HazelException):
        """业务异常统一转换为 Problem Details"""
        if exc.status >= 500:
            logger.error("Request failed", code=exc.code, detail=exc.detail)
        else:
            logger.info("Request rejected", code=exc.code, status=exc.status)
        return exc.to_response(request)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """处理 Pydantic 验证异常"""
        logger.warning("Request validation failed", path=request.url.path, errors=str(exc.errors()))
        return JSONResponse(
            status_code=422,
            content={
                "ok": False,
                "error": {
                    "type": "about:blank",
                    "title": "Validation Failed",
                    "status": 422,
                    "detail": "Request validation failed",
                    "code": "VALIDATION_ERROR",
                    "validation_errors": jsonable_encoder(exc.errors())
                }
            }
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """处理 FastAPI HTTP 异常"""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "ok": False,
                "error": {
                    "type": "about:blank",
                    "title": str(exc.detail),
                    "status": exc.status_code,
                    "detail": str(exc.detail),
                    "code": f"HTTP_{exc.status_code}"
                }
            }
        )

    @app.get("/healthz")
    async def health_check():
        """健康检查端点"""
        return {"status": "healthy", "timestamp": utcnow().isoformat()}

    return app


app = create_app()


def main() -> None:
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "hz_core.app:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug,
        log_level=settings.log_level.lower(),
        access_log=False,  # 使用自定义日志中间件
    )


if __name__ == "__main__":
    main()
