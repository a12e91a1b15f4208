"""FastAPI application entry point."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from contractflow.api.dependencies import build_langfuse_client, build_prompt_cache
from contractflow.api.v1.endpoints import health
from contractflow.api.v1.router import api_router
from contractflow.core.config import settings
from contractflow.core.database import close_database, init_database
from contractflow.core.exceptions import AppError, ValidationError, http_status_for
from contractflow.core.temporal_client import close_temporal_client
from contractflow.utils.logging import get_logger
from contractflow.utils.responses import create_error_response, error_response_from

LOGGER = get_logger(__name__, level=settings.log_level)


class RootResponse(BaseModel):
    """Root endpoint response payload."""

    message: str = Field(..., description="Service status message")
    version: str = Field(..., description="Running application version")
    docs: str = Field(..., description="Path to the interactive API docs")
    health: str = Field(..., description="Path to the health check endpoint")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    LOGGER.info("Validating configuration...")
    if not settings.llm.groq_api_key:
        LOGGER.error("GROQ_API_KEY is missing")

    LOGGER.info(
        "Starting application",
        extra={
            "app_name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
        },
    )

    try:
        await asyncio.wait_for(
            init_database(auto_migrate=settings.auto_migrate),
            timeout=settings.db_init_timeout,
        )
        LOGGER.info("Database initialized successfully")
    except asyncio.TimeoutError:
        LOGGER.error(f"Database initialization timed out after {settings.db_init_timeout}s")
    except Exception as e:
        LOGGER.error(f"Database initialization failed: {e}", exc_info=True)

    app.state.langfuse_client = build_langfuse_client()
    app.state.prompt_cache = build_prompt_cache(app.state.langfuse_client)
    if settings.langfuse.warm_prompts:
        summary = await app.state.prompt_cache.warm_cache(
            settings.langfuse.warm_prompts, settings.langfuse.prompt_label
        )
        LOGGER.info("Prompt cache warmed", extra=summary)

    yield

    LOGGER.info("Shutting down application")
    close_temporal_client()
    await close_database()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Contract PDF extraction, validation and review workflows",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid4()))
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    status_code = http_status_for(exc)
    log = LOGGER.error if status_code >= 500 else LOGGER.warning
    log(
        f"Request failed: {exc.message}",
        extra={"path": request.url.path, "error_code": exc.code, "retryable": exc.retryable},
    )
    return JSONResponse(status_code=status_code, content=error_response_from(exc, request))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=create_error_response(
            code=ValidationError.code,
            message="Request validation failed",
            details=details,
            request=request,
        ),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    LOGGER.error(f"Unhandled error: {exc}", exc_info=True, extra={"path": request.url.path})
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=create_error_response(
            code=AppError.code,
            message="Internal server error",
            request=request,
        ),
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

app.include_router(api_router, prefix=settings.api_v1_prefix)
app.include_router(health.router, prefix="/health", tags=["Health"])


@app.get(
    "/",
    response_model=RootResponse,
    tags=["Root"],
    summary="Root endpoint",
    operation_id="get_public_root_metadata",
)
async def root() -> RootResponse:
    return RootResponse(
        message="Server is running",
        version=settings.app_version,
        docs="/docs",
        health="/health",
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "contractflow.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
