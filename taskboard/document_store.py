"""In-process document store with live queries and server timestamps.

Documents live in named collections keyed by an opaque id. Clients query
with a single equality filter and may keep a live query open: the store
redelivers the full matching set to the query's callback after every
change. Writes and queries performed on behalf of a user (``auth=<uid>``)
are checked against ownership rules; ``auth=None`` is the trusted admin
path used by server-side code.
"""

from __future__ import annotations

import copy
import itertools
import json
import os
import tempfile
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from taskboard.constants import OWNER_FIELD
from taskboard.errors import StoreError
from taskboard.observability import get_logger

FAILED_PRECONDITION = "failed-precondition"
UNAVAILABLE = "unavailable"
PERMISSION_DENIED = "permission-denied"
NOT_FOUND = "not-found"
INVALID_ARGUMENT = "invalid-argument"

_TIMESTAMP_KEY = "$timestamp"

log = get_logger("document_store")

Clock = Callable[[], datetime]
SnapshotCallback = Callable[[list["DocumentSnapshot"]], None]
ErrorCallback = Callable[[StoreError], None]


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class DocumentSnapshot:
    id: str
    data: dict[str, Any]

    def get(self, name: str, default: Any = None) -> Any:
        return self.data.get(name, default)


@dataclass
class _LiveQuery:
    collection: str
    field_name: str
    value: Any
    on_next: SnapshotCallback
    on_error: ErrorCallback
    auth: str | None
    active: bool = True

    def matches(self, data: dict[str, Any]) -> bool:
        return data.get(self.field_name) == self.value


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_document_id() -> str:
    return uuid.uuid4().hex[:20]


def _disconnected() -> StoreError:
    return StoreError(UNAVAILABLE, "Store backend unreachable: INTERNET_DISCONNECTED")


class DocumentStore:
    """Document collections with equality queries and live notification.

    With ``deferred=True`` change notifications are queued instead of being
    delivered inside the write call; ``flush()`` delivers them in order.
    """

    def __init__(
        self,
        path: Path | None = None,
        *,
        clock: Clock | None = None,
        id_factory: Callable[[], str] | None = None,
        deferred: bool = False,
    ) -> None:
        self.path = path
        self.deferred = deferred
        self._clock = clock or _utc_now
        self._id_factory = id_factory or _new_document_id
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._indexes: set[tuple[str, tuple[str, ...]]] = set()
        self._live_queries: dict[int, _LiveQuery] = {}
        self._query_ids = itertools.count(1)
        self._pending: deque[Callable[[], None]] = deque()
        self._available = True

    @classmethod
    def load(cls, path: Path, **kwargs: Any) -> "DocumentStore":
        """Open a store persisted at ``path``, creating it on first save."""
        store = cls(path, **kwargs)
        if not path.exists():
            return store
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise StoreError(
                INVALID_ARGUMENT, f"Store file is not valid JSON: {path}"
            ) from exc
        if not isinstance(raw, dict):
            raise StoreError(INVALID_ARGUMENT, f"Store file must hold an object: {path}")
        for name, documents in (raw.get("collections") or {}).items():
            store._collections[name] = {
                doc_id: _decode_value(data) for doc_id, data in documents.items()
            }
        for collection, fields in raw.get("indexes") or []:
            store._indexes.add((collection, tuple(fields)))
        return store

    def save(self) -> None:
        if self.path is None:
            return
        payload = {
            "collections": {
                name: {
                    doc_id: _encode_value(data) for doc_id, data in documents.items()
                }
                for name, documents in self._collections.items()
            },
            "indexes": [
                [collection, list(fields)]
                for collection, fields in sorted(self._indexes)
            ],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        _atomic_write(
            self.path, json.dumps(payload, indent=2, sort_keys=True) + "\n"
        )

    @property
    def available(self) -> bool:
        return self._available

    def set_available(self, available: bool) -> None:
        """Simulate losing or regaining the connection to the store backend."""
        if available == self._available:
            return
        self._available = available
        log.info("store_availability_changed", available=available)
        for query in list(self._live_queries.values()):
            if available:
                self._schedule(query, self._deliver_snapshot)
            else:
                error = _disconnected()
                self._schedule(query, lambda q, err=error: q.on_error(err))

    def create_index(self, collection: str, fields: tuple[str, ...]) -> None:
        self._indexes.add((collection, tuple(fields)))
        self.save()

    def query(
        self,
        collection: str,
        field_name: str,
        value: Any,
        *,
        auth: str | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[DocumentSnapshot]:
        self._check_available()
        self._check_query(collection, field_name, value, auth, order_by)
        results = self._matching(collection, lambda data: data.get(field_name) == value)
        if order_by is not None:
            results.sort(key=lambda snap: snap.data.get(order_by), reverse=descending)
        return results

    def get(
        self, collection: str, doc_id: str, *, auth: str | None = None
    ) -> DocumentSnapshot | None:
        self._check_available()
        data = self._collections.get(collection, {}).get(doc_id)
        if data is None:
            return None
        if auth is not None and data.get(OWNER_FIELD) != auth:
            raise StoreError(PERMISSION_DENIED, "Missing or insufficient permissions.")
        return DocumentSnapshot(id=doc_id, data=copy.deepcopy(data))

    def add(
        self, collection: str, data: dict[str, Any], *, auth: str | None = None
    ) -> str:
        self._check_available()
        if not isinstance(data, dict):
            raise StoreError(INVALID_ARGUMENT, "Document data must be an object.")
        if auth is not None and data.get(OWNER_FIELD) != auth:
            raise StoreError(PERMISSION_DENIED, "Missing or insufficient permissions.")
        doc_id = self._id_factory()
        self._collections.setdefault(collection, {})[doc_id] = self._resolve(data)
        log.debug("document_added", collection=collection, doc_id=doc_id)
        self._commit(collection)
        return doc_id

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Write a document verbatim under a known id (admin path)."""
        self._check_available()
        self._collections.setdefault(collection, {})[doc_id] = self._resolve(data)
        self._commit(collection)

    def update(
        self,
        collection: str,
        doc_id: str,
        changes: dict[str, Any],
        *,
        auth: str | None = None,
    ) -> None:
        self._check_available()
        current = self._existing(collection, doc_id, auth)
        if auth is not None and OWNER_FIELD in changes and changes[OWNER_FIELD] != auth:
            raise StoreError(PERMISSION_DENIED, "Missing or insufficient permissions.")
        current.update(self._resolve(changes))
        log.debug("document_updated", collection=collection, doc_id=doc_id)
        self._commit(collection)

    def delete(
        self, collection: str, doc_id: str, *, auth: str | None = None
    ) -> None:
        self._check_available()
        self._existing(collection, doc_id, auth)
        del self._collections[collection][doc_id]
        log.debug("document_deleted", collection=collection, doc_id=doc_id)
        self._commit(collection)

    def watch(
        self,
        collection: str,
        field_name: str,
        value: Any,
        on_next: SnapshotCallback,
        on_error: ErrorCallback,
        *,
        auth: str | None = None,
        order_by: str | None = None,
    ) -> Callable[[], None]:
        """Open a live query and return its unsubscribe callable.

        The current matching set is delivered first, then again after every
        change. Rule and index violations end the query through ``on_error``;
        connectivity loss reports ``unavailable`` and resumes on reconnect.
        """
        query_id = next(self._query_ids)
        query = _LiveQuery(collection, field_name, value, on_next, on_error, auth)

        def unsubscribe() -> None:
            query.active = False
            self._live_queries.pop(query_id, None)

        try:
            self._check_query(collection, field_name, value, auth, order_by)
        except StoreError as exc:
            rejection = exc
            query.active = False
            self._schedule(query, lambda q: on_error(rejection), force=True)
            return unsubscribe

        self._live_queries[query_id] = query
        if self._available:
            self._schedule(query, self._deliver_snapshot)
        else:
            error = _disconnected()
            self._schedule(query, lambda q: q.on_error(error))
        return unsubscribe

    def flush(self) -> int:
        """Deliver queued notifications; returns how many were delivered."""
        delivered = 0
        while self._pending:
            self._pending.popleft()()
            delivered += 1
        return delivered

    @property
    def live_query_count(self) -> int:
        return len(self._live_queries)

    def _check_available(self) -> None:
        if not self._available:
            raise _disconnected()

    def _check_query(
        self,
        collection: str,
        field_name: str,
        value: Any,
        auth: str | None,
        order_by: str | None,
    ) -> None:
        if auth is not None and (field_name != OWNER_FIELD or value != auth):
            raise StoreError(PERMISSION_DENIED, "Missing or insufficient permissions.")
        if (
            order_by is not None
            and order_by != field_name
            and (collection, (field_name, order_by)) not in self._indexes
        ):
            raise StoreError(
                FAILED_PRECONDITION,
                f"The query requires an index on {collection} ({field_name}, {order_by}).",
            )

    def _existing(
        self, collection: str, doc_id: str, auth: str | None
    ) -> dict[str, Any]:
        current = self._collections.get(collection, {}).get(doc_id)
        if current is None:
            raise StoreError(NOT_FOUND, f"No document found: {collection}/{doc_id}")
        if auth is not None and current.get(OWNER_FIELD) != auth:
            raise StoreError(PERMISSION_DENIED, "Missing or insufficient permissions.")
        return current

    def _resolve(self, data: dict[str, Any]) -> dict[str, Any]:
        now = self._clock()
        return {
            key: now if value is SERVER_TIMESTAMP else copy.deepcopy(value)
            for key, value in data.items()
        }

    def _matching(
        self, collection: str, predicate: Callable[[dict[str, Any]], bool]
    ) -> list[DocumentSnapshot]:
        return [
            DocumentSnapshot(id=doc_id, data=copy.deepcopy(data))
            for doc_id, data in self._collections.get(collection, {}).items()
            if predicate(data)
        ]

    def _commit(self, collection: str) -> None:
        self.save()
        for query in list(self._live_queries.values()):
            if query.collection == collection:
                self._schedule(query, self._deliver_snapshot)

    def _deliver_snapshot(self, query: _LiveQuery) -> None:
        query.on_next(self._matching(query.collection, query.matches))

    def _schedule(
        self,
        query: _LiveQuery,
        delivery: Callable[[_LiveQuery], None],
        *,
        force: bool = False,
    ) -> None:
        def run() -> None:
            if force or query.active:
                delivery(query)

        if self.deferred:
            self._pending.append(run)
        else:
            run()


def _encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return {_TIMESTAMP_KEY: value.isoformat()}
    if isinstance(value, dict):
        return {key: _encode_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_encode_value(item) for item in value]
    return value


def _decode_value(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {_TIMESTAMP_KEY}:
            return datetime.fromisoformat(value[_TIMESTAMP_KEY])
        return {key: _decode_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_decode_value(item) for item in value]
    return value


def _atomic_write(target_path: Path, content: str) -> None:
    temp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=target_path.parent, delete=False
        ) as temp_file:
            temp_path = Path(temp_file.name)
            temp_file.write(content)
            temp_file.flush()
            os.fsync(temp_file.fileno())
        os.replace(temp_path, target_path)
    finally:
        if temp_path is not None and temp_path.exists():
            try:
                temp_path.unlink()
            except OSError:
                pass
