"""Live task synchronization for the signed-in user.

``TaskStream`` wraps one live query on the task collection as a cancellable
sequence of tagged events: ``Snapshot`` carries the full, newest-first task
list and ``SyncError`` carries a classified failure. ``TaskSyncEngine`` owns
at most one stream at a time, publishes the resulting state and reopens the
stream whenever the signed-in user changes.
"""

from __future__ import annotations

import itertools
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterator, Union

from taskboard.constants import OWNER_FIELD, TASKS_COLLECTION
from taskboard.document_store import DocumentSnapshot, DocumentStore
from taskboard.errors import StoreError
from taskboard.identity import IdentitySession, User
from taskboard.issues import IssueKind, Operation, SyncIssue, classify_store_error
from taskboard.network import NetworkMonitor
from taskboard.observability import get_logger
from taskboard.task_models import Task, materialize_task, sort_newest_first

log = get_logger("sync")


class SyncPhase(str, Enum):
    IDLE = "idle"
    SUBSCRIBING = "subscribing"
    SYNCED = "synced"
    ERRORED = "errored"


@dataclass(frozen=True)
class Snapshot:
    tasks: tuple[Task, ...]


@dataclass(frozen=True)
class SyncError:
    kind: IssueKind
    message: str
    remediation_url: str | None = None

    @property
    def issue(self) -> SyncIssue:
        return SyncIssue(self.kind, self.message, self.remediation_url)


SyncEvent = Union[Snapshot, SyncError]
EventSink = Callable[[SyncEvent], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TaskStream:
    """Cancellable stream of sync events for one user's tasks.

    Without a ``sink`` events are buffered and drained by iterating the
    stream. After ``close()`` the live query is unsubscribed and anything the
    store still delivers is dropped.
    """

    def __init__(
        self,
        store: DocumentStore,
        user_id: str,
        *,
        sink: EventSink | None = None,
        index_url: str | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.user_id = user_id
        self._sink = sink
        self._index_url = index_url
        self._clock = clock
        self._buffer: deque[SyncEvent] = deque()
        self._closed = False
        self._unsubscribe = store.watch(
            TASKS_COLLECTION,
            OWNER_FIELD,
            user_id,
            self._on_snapshot,
            self._on_error,
            auth=user_id,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._buffer.clear()
        self._unsubscribe()

    def __iter__(self) -> Iterator[SyncEvent]:
        while self._buffer:
            yield self._buffer.popleft()

    def __enter__(self) -> "TaskStream":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _on_snapshot(self, documents: list[DocumentSnapshot]) -> None:
        tasks = []
        for document in documents:
            task = materialize_task(document, self._clock)
            if task.user_id != self.user_id:
                log.warning(
                    "foreign_task_dropped", task_id=task.id, user_id=self.user_id
                )
                continue
            tasks.append(task)
        self._emit(Snapshot(tuple(sort_newest_first(tasks))))

    def _on_error(self, error: StoreError) -> None:
        issue = classify_store_error(error, Operation.LOAD, index_url=self._index_url)
        log.warning(
            "sync_error",
            user_id=self.user_id,
            code=error.code,
            kind=issue.kind.value,
            error=error.message,
        )
        self._emit(SyncError(issue.kind, issue.message, issue.remediation_url))

    def _emit(self, event: SyncEvent) -> None:
        if self._closed:
            log.debug("late_event_dropped", user_id=self.user_id)
            return
        if self._sink is not None:
            self._sink(event)
        else:
            self._buffer.append(event)


@dataclass(frozen=True)
class SyncState:
    phase: SyncPhase = SyncPhase.IDLE
    tasks: tuple[Task, ...] = ()
    loading: bool = False
    offline: bool = False
    issue: SyncIssue | None = None
    user: User | None = None


StateListener = Callable[[SyncState], None]


class TaskSyncEngine:
    """Keeps the published task list in step with the store.

    ``start()`` subscribes for the current user and follows user and
    network changes; ``stop()`` releases the subscription. The engine is
    also a context manager so the subscription is released on every exit
    path.
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
        self._store = store
        self._session = session
        self._network = network
        self._index_url = index_url
        self._clock = clock
        self._state = SyncState()
        self._stream: TaskStream | None = None
        self._generations = itertools.count(1)
        self._active_generation: int | None = None
        self._detach: list[Callable[[], None]] = []
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def tasks(self) -> tuple[Task, ...]:
        return self._state.tasks

    @property
    def issue(self) -> SyncIssue | None:
        return self._state.issue

    @property
    def offline(self) -> bool:
        return self._state.offline

    @property
    def phase(self) -> SyncPhase:
        return self._state.phase

    @property
    def running(self) -> bool:
        return bool(self._detach)

    def start(self) -> None:
        if self.running:
            return
        self._detach = [
            self._session.add_listener(self._on_user_changed),
            self._network.add_listener(self._on_network_changed),
        ]
        self._publish(offline=not self._network.online)
        self._subscribe(self._session.current_user)

    def stop(self) -> None:
        if not self.running:
            return
        for detach in self._detach:
            detach()
        self._detach = []
        self._unsubscribe()
        self._publish(phase=SyncPhase.IDLE, loading=False)

    def __enter__(self) -> "TaskSyncEngine":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def report(self, issue: SyncIssue) -> None:
        """Publish an issue raised outside the live query, e.g. by a write."""
        self._publish(issue=issue)

    def clear_issue(self) -> None:
        if self._state.issue is not None:
            self._publish(issue=None)

    def _subscribe(self, user: User | None) -> None:
        if user != self._state.user:
            self._publish(tasks=(), issue=None)
        if user is None:
            self._publish(phase=SyncPhase.IDLE, loading=False, user=None)
            return
        generation = next(self._generations)
        self._active_generation = generation
        self._publish(phase=SyncPhase.SUBSCRIBING, loading=True, user=user)
        log.info("subscription_opened", user_id=user.uid)
        self._stream = TaskStream(
            self._store,
            user.uid,
            sink=lambda event: self._apply(generation, event),
            index_url=self._index_url,
            clock=self._clock,
        )

    def _unsubscribe(self) -> None:
        self._active_generation = None
        if self._stream is None:
            return
        stream, self._stream = self._stream, None
        try:
            stream.close()
        finally:
            log.info("subscription_closed", user_id=stream.user_id)

    def _apply(self, generation: int, event: SyncEvent) -> None:
        if generation != self._active_generation:
            log.debug("stale_event_ignored", generation=generation)
            return
        if isinstance(event, Snapshot):
            self._publish(
                phase=SyncPhase.SYNCED,
                tasks=event.tasks,
                loading=False,
                offline=False,
                issue=None,
            )
            return
        changes: dict[str, object] = {
            "phase": SyncPhase.ERRORED,
            "loading": False,
            "issue": event.issue,
        }
        if event.kind is IssueKind.UNAVAILABLE:
            changes["offline"] = True
        self._publish(**changes)

    def _on_user_changed(self, user: User | None) -> None:
        if user == self._state.user:
            return
        self._unsubscribe()
        self._subscribe(user)

    def _on_network_changed(self, online: bool) -> None:
        self._publish(offline=not online)

    def _publish(self, **changes: object) -> None:
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            listener(self._state)
