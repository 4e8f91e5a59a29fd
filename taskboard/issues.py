"""Classification of store failures into user-facing issue categories."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from taskboard.document_store import (
    FAILED_PRECONDITION,
    PERMISSION_DENIED,
    UNAVAILABLE,
)
from taskboard.errors import StoreError

DISCONNECTED_MARKER = "INTERNET_DISCONNECTED"


class IssueKind(str, Enum):
    INDEX_REQUIRED = "index_required"
    UNAVAILABLE = "unavailable"
    PERMISSION_DENIED = "permission_denied"
    GENERIC = "generic"


class Operation(str, Enum):
    LOAD = "load"
    CREATE = "create"
    TOGGLE = "toggle"
    DELETE = "delete"


_GENERIC_PREFIXES = {
    Operation.LOAD: "Failed to load tasks",
    Operation.CREATE: "Failed to add task",
    Operation.TOGGLE: "Failed to update task",
    Operation.DELETE: "Failed to delete task",
}

_OFFLINE_MESSAGES = {
    Operation.LOAD: "You are offline. Tasks will sync when connection is restored.",
    Operation.CREATE: "You are offline. Tasks cannot be added until connection is restored.",
    Operation.TOGGLE: "You are offline. Tasks cannot be updated until connection is restored.",
    Operation.DELETE: "You are offline. Tasks cannot be deleted until connection is restored.",
}

INDEX_REQUIRED_MESSAGE = (
    "Database index required. Please create the composite index for the tasks query."
)
PERMISSION_DENIED_MESSAGE = "Permission denied. Please check the store access rules."


@dataclass(frozen=True)
class SyncIssue:
    """A classified failure ready to show in an error banner."""

    kind: IssueKind
    message: str
    remediation_url: str | None = None


def classify_store_error(
    error: StoreError,
    operation: Operation = Operation.LOAD,
    *,
    index_url: str | None = None,
) -> SyncIssue:
    """Map a store error code onto the four issue categories."""
    if error.code == FAILED_PRECONDITION:
        return SyncIssue(
            IssueKind.INDEX_REQUIRED, INDEX_REQUIRED_MESSAGE, remediation_url=index_url
        )
    if error.code == UNAVAILABLE or DISCONNECTED_MARKER in error.message:
        return SyncIssue(IssueKind.UNAVAILABLE, _OFFLINE_MESSAGES[operation])
    if error.code == PERMISSION_DENIED:
        return SyncIssue(IssueKind.PERMISSION_DENIED, PERMISSION_DENIED_MESSAGE)
    return SyncIssue(
        IssueKind.GENERIC, f"{_GENERIC_PREFIXES[operation]}: {error.message}"
    )
