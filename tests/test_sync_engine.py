from datetime import datetime, timedelta, timezone

import pytest

from taskboard.document_store import SERVER_TIMESTAMP, DocumentStore
from taskboard.errors import StoreError
from taskboard.identity import IdentitySession, User
from taskboard.issues import IssueKind
from taskboard.network import NetworkMonitor
from taskboard.sync import Snapshot, SyncPhase, TaskStream, TaskSyncEngine

ALICE = User(uid="alice", email="alice@example.com")
BOB = User(uid="bob", email="bob@example.com")
INDEX_URL = "https://console.example.com/indexes/tasks"


class _TickingClock:
    def __init__(self):
        self.current = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        self.current += timedelta(seconds=1)
        return self.current


class _RejectingStore:
    """Store double whose live queries fail with a fixed error code."""

    def __init__(self, code, message="boom"):
        self.error = StoreError(code, message)
        self.unsubscribed = 0

    def watch(self, collection, field_name, value, on_next, on_error, *, auth=None):
        on_error(self.error)

        def unsubscribe():
            self.unsubscribed += 1

        return unsubscribe


def _add(store, user_id, title):
    return store.add(
        "tasks",
        {
            "title": title,
            "completed": False,
            "category": "Personal",
            "priority": "medium",
            "userId": user_id,
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        },
    )


def _setup(*, deferred=False, online=True, user=ALICE):
    store = DocumentStore(clock=_TickingClock(), deferred=deferred)
    session = IdentitySession()
    if user is not None:
        session.open(user)
    network = NetworkMonitor(online)
    engine = TaskSyncEngine(store, session, network, index_url=INDEX_URL)
    return store, session, network, engine


def _titles(engine):
    return [task.title for task in engine.tasks]


def test_start_without_user_stays_idle():
    store, _, _, engine = _setup(user=None)

    engine.start()

    assert engine.phase is SyncPhase.IDLE
    assert store.live_query_count == 0


def test_snapshot_publishes_own_tasks_newest_first():
    store, _, _, engine = _setup()
    _add(store, "alice", "first")
    _add(store, "bob", "not mine")
    _add(store, "alice", "second")

    engine.start()

    assert engine.phase is SyncPhase.SYNCED
    assert _titles(engine) == ["second", "first"]
    assert {task.user_id for task in engine.tasks} == {"alice"}
    assert engine.state.loading is False

    _add(store, "alice", "third")

    assert _titles(engine) == ["third", "second", "first"]
    assert store.live_query_count == 1


def test_missing_timestamps_use_local_clock():
    store = DocumentStore()
    session = IdentitySession()
    session.open(ALICE)
    local_now = datetime(2030, 1, 1, tzinfo=timezone.utc)
    engine = TaskSyncEngine(store, session, NetworkMonitor(), clock=lambda: local_now)
    store.set("tasks", "pending", {"title": "pending", "userId": "alice"})

    engine.start()

    assert engine.tasks[0].created_at == local_now
    assert engine.tasks[0].updated_at == local_now


def test_loading_until_first_snapshot():
    store, _, _, engine = _setup(deferred=True)

    engine.start()

    assert engine.phase is SyncPhase.SUBSCRIBING
    assert engine.state.loading is True

    store.flush()

    assert engine.phase is SyncPhase.SYNCED
    assert engine.state.loading is False


def test_initial_offline_flag_comes_from_network():
    _, _, _, engine = _setup(deferred=True, online=False)

    engine.start()

    assert engine.offline is True


def test_unavailable_store_keeps_tasks_and_recovers():
    store, _, _, engine = _setup()
    _add(store, "alice", "keep me")
    engine.start()

    store.set_available(False)

    assert engine.phase is SyncPhase.ERRORED
    assert engine.issue.kind is IssueKind.UNAVAILABLE
    assert engine.offline is True
    assert _titles(engine) == ["keep me"]

    store.set_available(True)

    assert engine.phase is SyncPhase.SYNCED
    assert engine.issue is None
    assert engine.offline is False


@pytest.mark.parametrize(
    ("code", "kind"),
    [
        ("failed-precondition", IssueKind.INDEX_REQUIRED),
        ("permission-denied", IssueKind.PERMISSION_DENIED),
        ("internal", IssueKind.GENERIC),
    ],
)
def test_subscription_errors_are_classified(code, kind):
    store = _RejectingStore(code)
    session = IdentitySession()
    session.open(ALICE)
    engine = TaskSyncEngine(store, session, NetworkMonitor(), index_url=INDEX_URL)

    engine.start()

    assert engine.phase is SyncPhase.ERRORED
    assert engine.issue.kind is kind
    assert engine.state.loading is False
    assert engine.tasks == ()
    if kind is IssueKind.INDEX_REQUIRED:
        assert engine.issue.remediation_url == INDEX_URL
    if kind is IssueKind.GENERIC:
        assert engine.issue.message == "Failed to load tasks: boom"


def test_network_transitions_toggle_offline_flag_only():
    store, _, network, engine = _setup()
    _add(store, "alice", "stays")
    engine.start()

    network.set_online(False)

    assert engine.offline is True
    assert _titles(engine) == ["stays"]
    assert engine.issue is None

    network.set_online(True)

    assert engine.offline is False


def test_stop_unsubscribes_and_ignores_late_snapshots():
    store, _, network, engine = _setup(deferred=True)
    _add(store, "alice", "before")
    engine.start()
    store.flush()
    stream = engine._stream

    _add(store, "alice", "late")
    engine.stop()
    store.flush()
    stream._on_snapshot([])

    assert store.live_query_count == 0
    assert engine.phase is SyncPhase.IDLE
    assert _titles(engine) == ["before"]

    network.set_online(False)
    assert engine.offline is False


def test_restart_for_another_user_drops_previous_tasks():
    store = DocumentStore(clock=_TickingClock(), deferred=True)
    session = IdentitySession()
    handle = session.open(ALICE)
    engine = TaskSyncEngine(store, session, NetworkMonitor(True))
    _add(store, "alice", "alice secret")
    _add(store, "bob", "bob task")
    engine.start()
    store.flush()
    assert _titles(engine) == ["alice secret"]

    engine.stop()
    session.close(handle)
    session.open(BOB)
    engine.start()

    assert engine.state.user == BOB
    assert engine.tasks == ()
    assert engine.phase is SyncPhase.SUBSCRIBING

    store.flush()
    assert _titles(engine) == ["bob task"]
    assert all(task.user_id == "bob" for task in engine.tasks)


def test_restart_after_logout_clears_tasks():
    store, session, _, engine = _setup()
    _add(store, "alice", "alice secret")
    engine.start()
    engine.stop()

    session.logout()
    engine.start()

    assert engine.phase is SyncPhase.IDLE
    assert engine.state.user is None
    assert engine.tasks == ()


def test_context_manager_releases_subscription_on_error():
    store, _, _, engine = _setup()

    with pytest.raises(RuntimeError):
        with engine:
            assert store.live_query_count == 1
            raise RuntimeError("render failed")

    assert store.live_query_count == 0


def test_user_change_resubscribes_for_new_user():
    store, session, _, engine = _setup()
    _add(store, "alice", "alice task")
    _add(store, "bob", "bob task")
    engine.start()

    session.open(BOB)

    assert _titles(engine) == ["bob task"]
    assert engine.state.user == BOB
    assert store.live_query_count == 1

    _add(store, "alice", "alice again")

    assert _titles(engine) == ["bob task"]

    session.logout()

    assert engine.phase is SyncPhase.IDLE
    assert engine.tasks == ()
    assert store.live_query_count == 0


def test_stream_unsubscribes_exactly_once():
    store = _RejectingStore("internal")

    stream = TaskStream(store, "alice")
    stream.close()
    stream.close()

    assert store.unsubscribed == 1


def test_listeners_see_each_published_state():
    store, _, _, engine = _setup()
    phases = []
    remove = engine.add_listener(lambda state: phases.append(state.phase))

    engine.start()
    remove()
    _add(store, "alice", "unseen")

    assert phases[-1] is SyncPhase.SYNCED
    assert SyncPhase.SUBSCRIBING in phases
    assert len([phase for phase in phases if phase is SyncPhase.SYNCED]) == 1


def test_stream_buffers_events_without_sink():
    store = DocumentStore()
    _add(store, "alice", "buffered")

    with TaskStream(store, "alice") as stream:
        events = list(stream)
        assert len(events) == 1
        assert isinstance(events[0], Snapshot)
        assert events[0].tasks[0].title == "buffered"
        assert list(stream) == []

    _add(store, "alice", "after close")

    assert stream.closed is True
    assert list(stream) == []
