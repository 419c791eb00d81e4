from contextlib import asynccontextmanager
from typing import Optional
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog
import uvicorn

from orbia.application.api.route import agent, memory, tools
from orbia.application.container import ServiceContainer
from orbia.config import Settings, get_settings
from orbia.domain.errors import ErrorCode, OrbiaError
from orbia.infrastructure.observability.logging import (
    bind_request_context, clear_request_context, setup_logging
)

logger = structlog.get_logger(__name__)


def create_app(settings: Optional[Settings] = None, container: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the HTTP application.

    The lifespan starts the given container (or one built from settings) and
    stops it on shutdown.
    """

    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_format, settings.service_name)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = container or ServiceContainer(settings)
        await services.start()
        app.state.container = services
        logger.info("Agent API started", service=settings.service_name)
        try:
            yield
        finally:
            await services.stop()
            logger.info("Agent API shutdown")

    app = FastAPI(title="Orbia Agent API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        clear_request_context("user_id", "thread_id")
        bind_request_context(request_id=request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(OrbiaError)
    async def orbia_error_handler(request: Request, exc: OrbiaError):
        log = logger.error if exc.status_code >= 500 else logger.info
        log("Request failed", path=request.url.path, code=exc.code.value, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        fields = {
            ".".join(str(part) for part in error["loc"] if part != "body"): error["msg"]
            for error in exc.errors()
        }
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "code": ErrorCode.INVALID_REQUEST.value, "fields": fields}
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error", path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "code": ErrorCode.INTERNAL_ERROR.value}
        )

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": settings.service_name}

    app.include_router(agent.router)
    app.include_router(memory.router)
    app.include_router(tools.router)

    return app


def main():
    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
