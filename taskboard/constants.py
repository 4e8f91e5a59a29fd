"""Shared constants for the task domain."""

from __future__ import annotations

TASKS_COLLECTION = "tasks"
OWNER_FIELD = "userId"

ALL_CATEGORIES = "All"
CATEGORIES = ("Work", "Personal", "Study", "Health")
CATEGORY_FILTERS = (ALL_CATEGORIES,) + CATEGORIES
DEFAULT_CATEGORY = "Personal"
DEFAULT_PRIORITY = "medium"

EXPORT_FILENAME = "tasks-export.json"
DEFAULT_TOKEN_TTL_SECONDS = 3600
