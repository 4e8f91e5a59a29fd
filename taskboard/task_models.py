"""Task record and materialization of raw store documents."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from taskboard.constants import DEFAULT_CATEGORY, DEFAULT_PRIORITY
from taskboard.document_store import DocumentSnapshot


@dataclass(frozen=True)
class Task:
    id: str
    title: str
    completed: bool
    category: str
    priority: str
    user_id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the document field names and ISO-8601 timestamps."""
        return {
            "id": self.id,
            "title": self.title,
            "completed": self.completed,
            "category": self.category,
            "priority": self.priority,
            "userId": self.user_id,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


def materialize_task(
    snapshot: DocumentSnapshot, now: Callable[[], datetime] = _utc_now
) -> Task:
    """Build a Task from a document.

    Timestamps that have not resolved yet fall back to the local clock, so a
    freshly written task may sort slightly out of place until its server
    timestamp arrives in a later snapshot.
    """
    data = snapshot.data
    created_at = _as_datetime(data.get("createdAt")) or now()
    updated_at = _as_datetime(data.get("updatedAt")) or now()
    return Task(
        id=snapshot.id,
        title=str(data.get("title") or ""),
        completed=bool(data.get("completed", False)),
        category=str(data.get("category") or DEFAULT_CATEGORY),
        priority=str(data.get("priority") or DEFAULT_PRIORITY),
        user_id=str(data.get("userId") or ""),
        created_at=created_at,
        updated_at=updated_at,
    )


def sort_newest_first(tasks: Iterable[Task]) -> list[Task]:
    return sorted(tasks, key=lambda task: task.created_at, reverse=True)
