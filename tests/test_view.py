from datetime import datetime, timedelta, timezone

import pytest

from taskboard.errors import TaskboardError
from taskboard.task_models import Task
from taskboard.view import (
    NO_MATCHES,
    NO_TASKS,
    completion_percentage,
    derive_view,
)

BASE = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _task(task_id, *, title="Task", category="Personal", completed=False, minutes=0):
    created = BASE + timedelta(minutes=minutes)
    return Task(
        id=task_id,
        title=title,
        completed=completed,
        category=category,
        priority="medium",
        user_id="alice",
        created_at=created,
        updated_at=created,
    )


def test_category_filter_keeps_only_matching_tasks():
    tasks = [
        _task("w", category="Work"),
        _task("p", category="Personal"),
        _task("s", category="Study"),
    ]

    view = derive_view(tasks, "Work", "")

    assert [task.id for task in view.filtered_tasks] == ["w"]


def test_search_is_case_insensitive_substring():
    tasks = [
        _task("a", title="Buy MILK"),
        _task("b", title="Call mom"),
        _task("c", title="Oat milk latte"),
    ]

    view = derive_view(tasks, "All", "Milk")

    assert {task.id for task in view.filtered_tasks} == {"a", "c"}


def test_filtered_tasks_are_newest_first_regardless_of_input_order():
    tasks = [_task("old", minutes=1), _task("new", minutes=30), _task("mid", minutes=10)]

    view = derive_view(tasks)

    assert [task.id for task in view.filtered_tasks] == ["new", "mid", "old"]


@pytest.mark.parametrize(
    ("completed", "total", "expected"),
    [(0, 0, 0), (1, 3, 33), (2, 3, 67), (1, 8, 13), (3, 3, 100), (0, 4, 0)],
)
def test_completion_percentage(completed, total, expected):
    assert completion_percentage(completed, total) == expected


def test_counters_cover_the_unfiltered_list():
    tasks = [
        _task("a", category="Work", completed=True),
        _task("b", category="Work"),
        _task("c", category="Health"),
    ]

    view = derive_view(tasks, "Health", "")

    assert view.total == 3
    assert [task.id for task in view.completed_tasks] == ["a"]
    assert [task.id for task in view.pending_tasks] == ["b", "c"]
    assert view.completion_percentage == 33


def test_search_never_changes_partition():
    tasks = [_task("a", title="Alpha", completed=True), _task("b", title="Beta")]

    unfiltered = derive_view(tasks, "All", "")
    searched = derive_view(tasks, "All", "zzz")

    assert searched.completed_tasks == unfiltered.completed_tasks
    assert searched.pending_tasks == unfiltered.pending_tasks
    assert searched.filtered_tasks == ()


def test_derive_view_is_idempotent():
    tasks = [_task("a", category="Study", minutes=2), _task("b", category="Work")]

    assert derive_view(tasks, "Study", "task") == derive_view(tasks, "Study", "task")


def test_empty_states():
    assert derive_view([]).empty_state == NO_TASKS
    assert derive_view([_task("a")], "Work", "").empty_state == NO_MATCHES
    assert derive_view([_task("a")]).empty_state is None


def test_unknown_category_is_rejected():
    with pytest.raises(TaskboardError) as excinfo:
        derive_view([_task("a")], "Chores", "")

    assert excinfo.value.error.code == "INVALID_CATEGORY"
