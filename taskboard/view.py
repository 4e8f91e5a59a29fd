"""Filtered views and counters derived from the synchronized task list."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from taskboard.constants import ALL_CATEGORIES, CATEGORY_FILTERS
from taskboard.errors import TaskboardError
from taskboard.task_models import Task, sort_newest_first

NO_TASKS = "no_tasks"
NO_MATCHES = "no_matches"


@dataclass(frozen=True)
class TaskView:
    filtered_tasks: tuple[Task, ...]
    completed_tasks: tuple[Task, ...]
    pending_tasks: tuple[Task, ...]
    total: int
    completion_percentage: int
    empty_state: str | None


def validate_category(category: str) -> str:
    if category not in CATEGORY_FILTERS:
        raise TaskboardError(
            "INVALID_CATEGORY",
            "category must be All or a known task category.",
            {"category": category, "allowed": list(CATEGORY_FILTERS)},
        )
    return category


def completion_percentage(completed: int, total: int) -> int:
    """Whole percentage of completed tasks, rounding halves up; 0 when empty."""
    if total <= 0:
        return 0
    return (200 * completed + total) // (2 * total)


def matches_filters(task: Task, category: str, search: str) -> bool:
    if category != ALL_CATEGORIES and task.category != category:
        return False
    return search.lower() in task.title.lower()


def derive_view(
    tasks: Iterable[Task], category: str = ALL_CATEGORIES, search: str = ""
) -> TaskView:
    """Compute the visible tasks and the counters for the stats cards.

    The completed/pending partition always covers the full list; only
    ``filtered_tasks`` depends on the category and search inputs.
    """
    category = validate_category(category)
    all_tasks = tuple(tasks)
    filtered = tuple(
        sort_newest_first(
            task for task in all_tasks if matches_filters(task, category, search)
        )
    )
    completed = tuple(task for task in all_tasks if task.completed)
    pending = tuple(task for task in all_tasks if not task.completed)

    if not all_tasks:
        empty_state: str | None = NO_TASKS
    elif not filtered:
        empty_state = NO_MATCHES
    else:
        empty_state = None

    return TaskView(
        filtered_tasks=filtered,
        completed_tasks=completed,
        pending_tasks=pending,
        total=len(all_tasks),
        completion_percentage=completion_percentage(len(completed), len(all_tasks)),
        empty_state=empty_state,
    )
