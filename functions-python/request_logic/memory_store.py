"""
In-process DocumentStore.

Suitable for tests and local runs. It mirrors the parts of Firestore the
triggers rely on:

  - transactions validate every document (and every listed collection) they
    read at commit time and are re-run from scratch on conflict, up to
    ``max_attempts``; reads after the first write are rejected as in
    Firestore;
  - writes inside one commit are applied atomically; an ``update`` on a
    missing document fails the whole commit with ``NotFound``;
  - every commit publishes one ``DocumentEvent`` per changed document to the
    subscribers (see ``dispatcher.Dispatcher``) and refreshes live query
    watchers.
"""

from __future__ import annotations

import copy
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from firebase_admin import firestore as admin_fs
from google.api_core import exceptions as gexc

from .store import DocumentEvent, Snapshot, Unsubscribe, WhereClause

T = TypeVar("T")

_MISSING = object()


class _Conflict(Exception):
    pass


@dataclass
class _Write:
    op: str
    path: str
    data: Optional[Dict[str, Any]] = None
    merge: bool = False


@dataclass
class _Watcher:
    collection_path: Optional[str]
    doc_path: Optional[str]
    callback: Callable[..., None]
    where: Optional[WhereClause] = None
    order_by: Optional[str] = None
    descending: bool = False


def _parent(path: str) -> str:
    return path.rsplit("/", 1)[0]


def _lookup(data: Dict[str, Any], field_path: str) -> Any:
    cur: Any = data
    for part in field_path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return _MISSING
        cur = cur[part]
    return cur


def _matches(data: Dict[str, Any], field_path: str, op: str, value: Any) -> bool:
    actual = _lookup(data, field_path)
    if actual is _MISSING:
        return False
    if op == "==":
        return actual == value
    if op == "!=":
        return actual != value
    if op == "in":
        return actual in value
    if op == "not-in":
        return actual not in value
    if op == "array-contains":
        return isinstance(actual, list) and value in actual
    if op == "array-contains-any":
        return isinstance(actual, list) and any(v in actual for v in value)
    try:
        if op == "<":
            return actual < value
        if op == "<=":
            return actual <= value
        if op == ">":
            return actual > value
        if op == ">=":
            return actual >= value
    except TypeError:
        return False
    raise ValueError(f"Unsupported query operator: {op}")


def _resolve(value: Any, current: Any, now: datetime) -> Any:
    if value is admin_fs.SERVER_TIMESTAMP:
        return now
    if isinstance(value, admin_fs.Increment):
        base = current if isinstance(current, (int, float)) and not isinstance(current, bool) else 0
        return base + value.value
    if isinstance(value, admin_fs.ArrayUnion):
        out = list(current) if isinstance(current, list) else []
        for v in value.values:
            if v not in out:
                out.append(copy.deepcopy(v))
        return out
    if isinstance(value, admin_fs.ArrayRemove):
        out = list(current) if isinstance(current, list) else []
        return [v for v in out if v not in value.values]
    if isinstance(value, dict):
        return {k: _resolve(v, None, now) for k, v in value.items() if v is not admin_fs.DELETE_FIELD}
    return copy.deepcopy(value)


def _merge(target: Dict[str, Any], data: Dict[str, Any], now: datetime) -> None:
    for key, value in data.items():
        if value is admin_fs.DELETE_FIELD:
            target.pop(key, None)
        elif isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value, now)
        else:
            target[key] = _resolve(value, target.get(key), now)


def _apply_update(target: Dict[str, Any], data: Dict[str, Any], now: datetime) -> None:
    for field_path, value in data.items():
        parts = field_path.split(".")
        cur = target
        for part in parts[:-1]:
            nxt = cur.get(part)
            if not isinstance(nxt, dict):
                if value is admin_fs.DELETE_FIELD:
                    cur = None
                    break
                nxt = {}
                cur[part] = nxt
            cur = nxt
        if cur is None:
            continue
        leaf = parts[-1]
        if value is admin_fs.DELETE_FIELD:
            cur.pop(leaf, None)
        else:
            cur[leaf] = _resolve(value, cur.get(leaf), now)


class MemoryTransaction:
    def __init__(self, store: "MemoryStore"):
        self._store = store
        self._reads: Dict[str, int] = {}
        self._collection_reads: Dict[str, int] = {}
        self._writes: List[_Write] = []

    def _check_read(self) -> None:
        if self._writes:
            raise ValueError("Transactions require all reads to be executed before all writes.")

    def get(self, path: str) -> Snapshot:
        self._check_read()
        snap, version = self._store._read_versioned(path)
        self._reads.setdefault(path, version)
        return snap

    def list(self, collection_path: str) -> List[Snapshot]:
        self._check_read()
        snaps, collection_version, versions = self._store._list_versioned(collection_path)
        self._collection_reads.setdefault(collection_path, collection_version)
        for path, version in versions.items():
            self._reads.setdefault(path, version)
        return snaps

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        self._writes.append(_Write("set", path, data, merge))

    def update(self, path: str, data: Dict[str, Any]) -> None:
        self._writes.append(_Write("update", path, data))

    def delete(self, path: str) -> None:
        self._writes.append(_Write("delete", path))


class MemoryBatch:
    def __init__(self, store: "MemoryStore"):
        self._store = store
        self._writes: List[_Write] = []

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        self._writes.append(_Write("set", path, data, merge))

    def update(self, path: str, data: Dict[str, Any]) -> None:
        self._writes.append(_Write("update", path, data))

    def delete(self, path: str) -> None:
        self._writes.append(_Write("delete", path))

    def commit(self) -> None:
        self._store._write(self._writes)
        self._writes = []


class MemoryStore:
    def __init__(self, max_attempts: int = 5):
        self._lock = threading.RLock()
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._versions: Dict[str, int] = {}
        self._collection_versions: Dict[str, int] = {}
        self._clock = 0
        self._subscribers: List[Callable[[DocumentEvent], None]] = []
        self._watchers: Dict[int, _Watcher] = {}
        self._watcher_ids = 0
        self._max_attempts = max_attempts

    # -------------------------
    # Reads
    # -------------------------

    def _read_versioned(self, path: str) -> Tuple[Snapshot, int]:
        with self._lock:
            return Snapshot(path, copy.deepcopy(self._docs.get(path))), self._versions.get(path, 0)

    def _list_versioned(self, collection_path: str) -> Tuple[List[Snapshot], int, Dict[str, int]]:
        with self._lock:
            paths = sorted(p for p in self._docs if _parent(p) == collection_path)
            snaps = [Snapshot(p, copy.deepcopy(self._docs[p])) for p in paths]
            versions = {p: self._versions.get(p, 0) for p in paths}
            return snaps, self._collection_versions.get(collection_path, 0), versions

    def get(self, path: str) -> Snapshot:
        return self._read_versioned(path)[0]

    def list(self, collection_path: str) -> List[Snapshot]:
        return self._list_versioned(collection_path)[0]

    def where(self, collection_path: str, field_path: str, op: str, value: Any) -> List[Snapshot]:
        return [s for s in self.list(collection_path) if _matches(s.data or {}, field_path, op, value)]

    def collection_group(self, group: str, field_path: str, op: str, value: Any) -> List[Snapshot]:
        with self._lock:
            paths = sorted(p for p in self._docs if p.split("/")[-2] == group)
            snaps = [Snapshot(p, copy.deepcopy(self._docs[p])) for p in paths]
        return [s for s in snaps if _matches(s.data or {}, field_path, op, value)]

    # -------------------------
    # Writes
    # -------------------------

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        self._write([_Write("set", path, data, merge)])

    def update(self, path: str, data: Dict[str, Any]) -> None:
        self._write([_Write("update", path, data)])

    def delete(self, path: str) -> None:
        self._write([_Write("delete", path)])

    def batch(self) -> MemoryBatch:
        return MemoryBatch(self)

    def new_id(self) -> str:
        return uuid.uuid4().hex[:20]

    def run_transaction(self, fn: Callable[[MemoryTransaction], T]) -> T:
        for _ in range(self._max_attempts):
            txn = MemoryTransaction(self)
            result = fn(txn)
            try:
                events = self._commit(txn._writes, txn._reads, txn._collection_reads)
            except _Conflict:
                continue
            self._publish(events)
            return result
        raise gexc.Aborted(f"Transaction failed to commit after {self._max_attempts} attempts.")

    def _write(self, writes: List[_Write]) -> None:
        if writes:
            self._publish(self._commit(writes))

    def _commit(
        self,
        writes: List[_Write],
        reads: Optional[Dict[str, int]] = None,
        collection_reads: Optional[Dict[str, int]] = None,
    ) -> List[DocumentEvent]:
        with self._lock:
            for path, version in (reads or {}).items():
                if self._versions.get(path, 0) != version:
                    raise _Conflict(path)
            for collection_path, version in (collection_reads or {}).items():
                if self._collection_versions.get(collection_path, 0) != version:
                    raise _Conflict(collection_path)

            now = datetime.now(timezone.utc)
            staged: Dict[str, Optional[Dict[str, Any]]] = {}
            for w in writes:
                current = staged[w.path] if w.path in staged else copy.deepcopy(self._docs.get(w.path))
                if w.op == "delete":
                    staged[w.path] = None
                elif w.op == "update":
                    if current is None:
                        raise gexc.NotFound(f"No document to update: {w.path}")
                    _apply_update(current, w.data or {}, now)
                    staged[w.path] = current
                elif w.merge and current is not None:
                    _merge(current, w.data or {}, now)
                    staged[w.path] = current
                else:
                    staged[w.path] = _resolve(w.data or {}, None, now)

            events: List[DocumentEvent] = []
            for path, after in staged.items():
                before = self._docs.get(path)
                if before == after:
                    continue
                if after is None:
                    self._docs.pop(path, None)
                else:
                    self._docs[path] = after
                if (before is None) != (after is None):
                    parent = _parent(path)
                    self._collection_versions[parent] = self._collection_versions.get(parent, 0) + 1
                self._clock += 1
                self._versions[path] = self._clock
                events.append(DocumentEvent(path, copy.deepcopy(before), copy.deepcopy(after)))
            return events

    # -------------------------
    # Change streams
    # -------------------------

    def subscribe(self, listener: Callable[[DocumentEvent], None]) -> Unsubscribe:
        """Receive every committed DocumentEvent, in commit order."""
        with self._lock:
            self._subscribers.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._subscribers:
                    self._subscribers.remove(listener)

        return _unsubscribe

    def watch(
        self,
        collection_path: str,
        callback: Callable[[List[Snapshot]], None],
        where: Optional[WhereClause] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> Unsubscribe:
        watcher = _Watcher(collection_path, None, callback, where, order_by, descending)
        return self._add_watcher(watcher)

    def watch_document(self, path: str, callback: Callable[[Snapshot], None]) -> Unsubscribe:
        return self._add_watcher(_Watcher(None, path, callback))

    def _add_watcher(self, watcher: _Watcher) -> Unsubscribe:
        with self._lock:
            self._watcher_ids += 1
            watcher_id = self._watcher_ids
            self._watchers[watcher_id] = watcher
        self._notify_watcher(watcher)

        def _unsubscribe() -> None:
            with self._lock:
                self._watchers.pop(watcher_id, None)

        return _unsubscribe

    def _query(self, watcher: _Watcher) -> List[Snapshot]:
        snaps = self.list(watcher.collection_path)
        if watcher.where is not None:
            snaps = [s for s in snaps if _matches(s.data or {}, *watcher.where)]
        if watcher.order_by:
            # like Firestore, documents without the ordering field are left out
            snaps = [s for s in snaps if _lookup(s.data or {}, watcher.order_by) is not _MISSING]
            snaps.sort(key=lambda s: _lookup(s.data, watcher.order_by), reverse=watcher.descending)
        return snaps

    def _notify_watcher(self, watcher: _Watcher) -> None:
        if watcher.doc_path is not None:
            watcher.callback(self.get(watcher.doc_path))
        else:
            watcher.callback(self._query(watcher))

    def _publish(self, events: List[DocumentEvent]) -> None:
        if not events:
            return
        with self._lock:
            subscribers = list(self._subscribers)
            watchers = list(self._watchers.values())
        for event in events:
            for listener in subscribers:
                listener(event)
        touched_docs = {e.path for e in events}
        touched_collections = {_parent(e.path) for e in events}
        for watcher in watchers:
            if watcher.doc_path in touched_docs or watcher.collection_path in touched_collections:
                self._notify_watcher(watcher)
