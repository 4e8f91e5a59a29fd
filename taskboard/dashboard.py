"""Dashboard view state: live tasks, filters and write actions for one user."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from taskboard.constants import ALL_CATEGORIES
from taskboard.document_store import DocumentStore
from taskboard.identity import IdentitySession, User
from taskboard.issues import SyncIssue
from taskboard.mutations import Confirm, MutationGateway
from taskboard.network import NetworkMonitor
from taskboard.sync import TaskSyncEngine
from taskboard.view import TaskView, derive_view, validate_category


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Dashboard:
    """Mounts the sync engine and exposes the view and its actions.

    Use as a context manager so the live subscription is released even
    when the body raises::

        with Dashboard(store, session, network) as dashboard:
            dashboard.add_task("Buy milk")
            dashboard.view.filtered_tasks
    """

    def __init__(
        self,
        store: DocumentStore,
        session: IdentitySession,
        network: NetworkMonitor,
        *,
        index_url: str | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.session = session
        self.engine = TaskSyncEngine(
            store, session, network, index_url=index_url, clock=clock
        )
        self.gateway = MutationGateway(store, session, self.engine, index_url=index_url)
        self.selected_category = ALL_CATEGORIES
        self.search_term = ""

    def mount(self) -> None:
        self.engine.start()

    def unmount(self) -> None:
        self.engine.stop()

    def __enter__(self) -> "Dashboard":
        self.mount()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unmount()

    @property
    def user(self) -> User | None:
        return self.session.current_user

    @property
    def view(self) -> TaskView:
        return derive_view(self.engine.tasks, self.selected_category, self.search_term)

    @property
    def loading(self) -> bool:
        return self.engine.state.loading

    @property
    def offline(self) -> bool:
        return self.engine.offline

    @property
    def error(self) -> SyncIssue | None:
        return self.engine.issue

    @property
    def can_add(self) -> bool:
        return not self.offline and not self.gateway.creating

    def select_category(self, category: str) -> None:
        self.selected_category = validate_category(category)

    def set_search(self, term: str) -> None:
        self.search_term = term

    def clear_search(self) -> None:
        self.search_term = ""

    def add_task(self, title: str) -> bool:
        return self.gateway.create(title)

    def toggle_task(self, task_id: str, completed: bool) -> bool:
        return self.gateway.toggle(task_id, completed)

    def delete_task(self, task_id: str, confirm: Confirm) -> bool:
        return self.gateway.delete(task_id, confirm)

    def dismiss_error(self) -> None:
        self.engine.clear_issue()

    def logout(self) -> None:
        self.session.logout()
