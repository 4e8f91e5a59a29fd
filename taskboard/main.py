"""FastAPI entrypoint for the taskboard service."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from taskboard.config import load_config
from taskboard.document_store import DocumentStore
from taskboard.errors import TaskboardError, error_response
from taskboard.identity import TokenCodec
from taskboard.observability import configure_logging, get_logger
from taskboard.tasks_api import tasks_router

REQUEST_ID_HEADER = "X-Request-Id"
UNAUTHORIZED_CODES = {"AUTH_REQUIRED", "INVALID_TOKEN", "INVALID_USER_ID"}

log = get_logger("http")


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        config = load_config()
        configure_logging(config.log_format)
        app.state.config = config
        app.state.store = DocumentStore.load(config.store_path)
        app.state.token_codec = TokenCodec(config.token_key, config.token_ttl_seconds)
        log.info("service_started", store_path=str(config.store_path))
        yield
        log.info("service_stopped")

    app = FastAPI(lifespan=lifespan)

    @app.middleware("http")
    async def bind_request_context(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id, path=request.url.path
        )
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    @app.exception_handler(TaskboardError)
    def handle_taskboard_error(request: Request, exc: TaskboardError) -> JSONResponse:
        status_code = 401 if exc.error.code in UNAUTHORIZED_CODES else 400
        return JSONResponse(status_code=status_code, content=error_response(exc.error))

    @app.get("/health", status_code=200)
    def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(tasks_router)
    return app


app = create_app()
