"""Task HTTP endpoints: filtered listing and the JSON export download."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from taskboard.constants import (
    ALL_CATEGORIES,
    EXPORT_FILENAME,
    OWNER_FIELD,
    TASKS_COLLECTION,
)
from taskboard.document_store import DocumentStore
from taskboard.errors import StoreError, TaskboardError, success_response
from taskboard.identity import (
    AUTHORIZATION_HEADER,
    TokenCodec,
    get_request_user,
    parse_bearer_token,
)
from taskboard.observability import get_logger
from taskboard.task_models import Task, materialize_task, sort_newest_first
from taskboard.view import derive_view

EXPORT_PATH = "/api/tasks/export"

tasks_router = APIRouter()

log = get_logger("tasks_api")


def _load_user_tasks(request: Request, user_id: str) -> list[Task]:
    store: DocumentStore = request.app.state.store
    documents = store.query(TASKS_COLLECTION, OWNER_FIELD, user_id, auth=user_id)
    return sort_newest_first(materialize_task(document) for document in documents)


@tasks_router.get("/api/tasks")
def list_tasks(
    request: Request, category: str = ALL_CATEGORIES, search: str = ""
) -> dict[str, Any]:
    """List the caller's tasks filtered by category and title search."""
    user = get_request_user(request)
    try:
        tasks = _load_user_tasks(request, user.uid)
    except StoreError as exc:
        raise TaskboardError(
            "STORE_ERROR", "Tasks could not be loaded.", {"code": exc.code}
        ) from exc

    view = derive_view(tasks, category, search)
    return success_response(
        {
            "tasks": [task.to_dict() for task in view.filtered_tasks],
            "summary": {
                "total": view.total,
                "completed": len(view.completed_tasks),
                "pending": len(view.pending_tasks),
                "completionPercentage": view.completion_percentage,
            },
            "emptyState": view.empty_state,
        }
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@tasks_router.api_route(
    EXPORT_PATH, methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
)
def export_tasks(request: Request) -> JSONResponse:
    """Return the caller's tasks as a downloadable JSON document.

    Only a missing or malformed ``Authorization`` header is answered with
    401; a token that fails verification is reported like any other failure.
    """
    if request.method != "GET":
        return _error(405, "Method not allowed")

    try:
        token = parse_bearer_token(request.headers.get(AUTHORIZATION_HEADER))
    except TaskboardError as exc:
        log.info("export_unauthorized", code=exc.error.code)
        return _error(401, "Unauthorized")

    try:
        codec: TokenCodec = request.app.state.token_codec
        user = codec.verify(token)
        tasks = [task.to_dict() for task in _load_user_tasks(request, user.uid)]
    except Exception:
        log.exception("export_failed")
        return _error(500, "Internal server error")

    log.info("tasks_exported", user_id=user.uid, count=len(tasks))
    return JSONResponse(
        status_code=200,
        content=tasks,
        headers={
            "Content-Disposition": f"attachment; filename={EXPORT_FILENAME}",
        },
    )
