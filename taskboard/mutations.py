"""Create, toggle and delete operations against the task collection."""

from __future__ import annotations

from typing import Callable

from taskboard.constants import (
    DEFAULT_CATEGORY,
    DEFAULT_PRIORITY,
    TASKS_COLLECTION,
)
from taskboard.document_store import SERVER_TIMESTAMP, DocumentStore
from taskboard.errors import StoreError
from taskboard.identity import IdentitySession, User
from taskboard.issues import Operation, classify_store_error
from taskboard.observability import get_logger
from taskboard.sync import TaskSyncEngine

Confirm = Callable[[], bool]

log = get_logger("mutations")


class MutationGateway:
    """Issues writes for the signed-in user.

    Every operation needs a signed-in user and an online engine; otherwise
    it is rejected and returns ``False`` without writing. Writes are not
    applied locally: the next snapshot from the live query shows them.
    Store failures are classified and reported through the engine.
    """

    def __init__(
        self,
        store: DocumentStore,
        session: IdentitySession,
        engine: TaskSyncEngine,
        *,
        index_url: str | None = None,
    ) -> None:
        self._store = store
        self._session = session
        self._engine = engine
        self._index_url = index_url
        self._creating = False

    @property
    def creating(self) -> bool:
        return self._creating

    def create(self, title: str) -> bool:
        cleaned = title.strip() if isinstance(title, str) else ""
        if not cleaned:
            return False
        if self._creating:
            log.info("mutation_rejected", operation="create", reason="in_progress")
            return False
        user = self._writable_user(Operation.CREATE)
        if user is None:
            return False

        self._creating = True
        self._engine.clear_issue()
        try:
            doc_id = self._store.add(
                TASKS_COLLECTION,
                {
                    "title": cleaned,
                    "completed": False,
                    "category": DEFAULT_CATEGORY,
                    "userId": user.uid,
                    "createdAt": SERVER_TIMESTAMP,
                    "updatedAt": SERVER_TIMESTAMP,
                    "priority": DEFAULT_PRIORITY,
                },
                auth=user.uid,
            )
        except StoreError as exc:
            self._fail(exc, Operation.CREATE)
            return False
        finally:
            self._creating = False
        log.info("task_created", task_id=doc_id, user_id=user.uid)
        return True

    def toggle(self, task_id: str, current_completed: bool) -> bool:
        user = self._writable_user(Operation.TOGGLE)
        if user is None:
            return False

        self._engine.clear_issue()
        try:
            self._store.update(
                TASKS_COLLECTION,
                task_id,
                {"completed": not current_completed, "updatedAt": SERVER_TIMESTAMP},
                auth=user.uid,
            )
        except StoreError as exc:
            self._fail(exc, Operation.TOGGLE)
            return False
        log.info("task_toggled", task_id=task_id, completed=not current_completed)
        return True

    def delete(self, task_id: str, confirm: Confirm) -> bool:
        user = self._writable_user(Operation.DELETE)
        if user is None:
            return False
        if not confirm():
            log.debug("delete_declined", task_id=task_id)
            return False

        self._engine.clear_issue()
        try:
            self._store.delete(TASKS_COLLECTION, task_id, auth=user.uid)
        except StoreError as exc:
            self._fail(exc, Operation.DELETE)
            return False
        log.info("task_deleted", task_id=task_id, user_id=user.uid)
        return True

    def _writable_user(self, operation: Operation) -> User | None:
        user = self._session.current_user
        if user is None:
            log.info("mutation_rejected", operation=operation.value, reason="signed_out")
            return None
        if self._engine.offline:
            log.info("mutation_rejected", operation=operation.value, reason="offline")
            return None
        return user

    def _fail(self, error: StoreError, operation: Operation) -> None:
        issue = classify_store_error(error, operation, index_url=self._index_url)
        log.warning(
            "mutation_failed",
            operation=operation.value,
            code=error.code,
            kind=issue.kind.value,
            error=error.message,
        )
        self._engine.report(issue)
