"""
FastAPI 应用入口
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from blog_auth.api.auth import router as auth_router
from blog_auth.clients.redis_client import close_redis_client
from blog_auth.config import config
from blog_auth.core.exceptions import AuthException, ProviderNotAvailableError, build_error_body
from blog_auth.core.logger import logger, setup_logging
from blog_auth.database import dispose_engine, init_db


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    setup_logging()
    config.validate()
    init_db()
    logger.info("blog-auth 启动: environment={}", config.environment)
    try:
        yield
    finally:
        await close_redis_client()
        dispose_engine()
        logger.info("blog-auth 已关闭")


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthException)
    async def handle_auth_exception(request: Request, exc: AuthException) -> JSONResponse:
        if exc.detail:
            logger.debug("认证失败: path={}, code={}, detail={}", request.url.path, exc.error_code.value, exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=build_error_body(exc.status_code, exc.message, exc.error_code.value),
        )

    @app.exception_handler(ProviderNotAvailableError)
    async def handle_provider_not_available(
        request: Request, exc: ProviderNotAvailableError
    ) -> JSONResponse:
        logger.info("请求了不可用的登录方式: {}", exc.provider_type)
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=build_error_body(status.HTTP_404_NOT_FOUND, "不支持的登录方式", "provider_not_available"),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content=build_error_body(422, "请求参数错误", "invalid_request"),
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=build_error_body(exc.status_code, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("未处理的异常: path={}", request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=build_error_body(status.HTTP_500_INTERNAL_SERVER_ERROR, "服务器内部错误"),
        )


def create_app() -> FastAPI:
    app = FastAPI(title="Blog Auth", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(auth_router)

    logger.debug("FastAPI 应用已初始化")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("blog_auth.main:app", host="0.0.0.0", port=8000)
