"""
Document store seam.

Handlers talk to a ``DocumentStore`` using slash separated document paths
(``requests/abc/offers/uid``). ``FirestoreStore`` backs it with the Admin
SDK client in production; ``memory_store.MemoryStore`` backs it in tests and
local runs. Writes may contain the Firestore sentinels
(``SERVER_TIMESTAMP``, ``DELETE_FIELD``, ``Increment``) on both backends.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple, TypeVar

from firebase_admin import firestore as admin_fs
from google.cloud.firestore import Client, Transaction

T = TypeVar("T")

WhereClause = Tuple[str, str, Any]
Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class Snapshot:
    path: str
    data: Optional[Dict[str, Any]] = None

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def exists(self) -> bool:
        return self.data is not None

    def to_dict(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self.data) if self.data is not None else None

    def get(self, key: str, default: Any = None) -> Any:
        return (self.data or {}).get(key, default)


class EventKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    WRITTEN = "written"


@dataclass
class DocumentEvent:
    """One committed change to one document, shaped like a trigger event."""

    path: str
    before: Optional[Dict[str, Any]]
    after: Optional[Dict[str, Any]]
    params: Dict[str, str] = field(default_factory=dict)

    @property
    def kind(self) -> EventKind:
        if self.before is None:
            return EventKind.CREATED
        if self.after is None:
            return EventKind.DELETED
        return EventKind.UPDATED

    @property
    def data(self) -> Optional[Dict[str, Any]]:
        """The document as the trigger sees it: after, or before for deletes."""
        return self.after if self.after is not None else self.before


class StoreTransaction(Protocol):
    def get(self, path: str) -> Snapshot: ...

    def list(self, collection_path: str) -> List[Snapshot]: ...

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None: ...

    def update(self, path: str, data: Dict[str, Any]) -> None: ...

    def delete(self, path: str) -> None: ...


class StoreBatch(Protocol):
    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None: ...

    def update(self, path: str, data: Dict[str, Any]) -> None: ...

    def delete(self, path: str) -> None: ...

    def commit(self) -> None: ...


class DocumentStore(Protocol):
    def get(self, path: str) -> Snapshot: ...

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None: ...

    def update(self, path: str, data: Dict[str, Any]) -> None: ...

    def delete(self, path: str) -> None: ...

    def list(self, collection_path: str) -> List[Snapshot]: ...

    def where(self, collection_path: str, field_path: str, op: str, value: Any) -> List[Snapshot]: ...

    def collection_group(self, group: str, field_path: str, op: str, value: Any) -> List[Snapshot]: ...

    def batch(self) -> StoreBatch: ...

    def run_transaction(self, fn: Callable[[StoreTransaction], T]) -> T: ...

    def watch(
        self,
        collection_path: str,
        callback: Callable[[List[Snapshot]], None],
        where: Optional[WhereClause] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> Unsubscribe: ...

    def watch_document(self, path: str, callback: Callable[[Snapshot], None]) -> Unsubscribe: ...

    def new_id(self) -> str: ...


def delete_in_batches(store: DocumentStore, doc_paths: Iterable[str], batch_size: int) -> int:
    """Delete documents in write batches of at most ``batch_size``. Returns the count."""
    count = 0
    batch = store.batch()
    pending = 0
    for path in doc_paths:
        batch.delete(path)
        pending += 1
        count += 1
        if pending >= batch_size:
            batch.commit()
            batch = store.batch()
            pending = 0
    if pending:
        batch.commit()
    return count


# -------------------------
# Firestore backend
# -------------------------

def _wrap(snap) -> Snapshot:
    return Snapshot(path=snap.reference.path, data=snap.to_dict() if snap.exists else None)


class _FirestoreTransaction:
    def __init__(self, db: Client, transaction: Transaction):
        self._db = db
        self._txn = transaction

    def get(self, path: str) -> Snapshot:
        return _wrap(self._db.document(path).get(transaction=self._txn))

    def list(self, collection_path: str) -> List[Snapshot]:
        return [_wrap(s) for s in self._db.collection(collection_path).stream(transaction=self._txn)]

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        self._txn.set(self._db.document(path), data, merge=merge)

    def update(self, path: str, data: Dict[str, Any]) -> None:
        self._txn.update(self._db.document(path), data)

    def delete(self, path: str) -> None:
        self._txn.delete(self._db.document(path))


class _FirestoreBatch:
    def __init__(self, db: Client):
        self._db = db
        self._batch = db.batch()

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        self._batch.set(self._db.document(path), data, merge=merge)

    def update(self, path: str, data: Dict[str, Any]) -> None:
        self._batch.update(self._db.document(path), data)

    def delete(self, path: str) -> None:
        self._batch.delete(self._db.document(path))

    def commit(self) -> None:
        self._batch.commit()


class FirestoreStore:
    """DocumentStore over ``google.cloud.firestore.Client``."""

    def __init__(self, client: Client, max_attempts: int = 5):
        self._db = client
        self._max_attempts = max_attempts

    def get(self, path: str) -> Snapshot:
        return _wrap(self._db.document(path).get())

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        self._db.document(path).set(data, merge=merge)

    def update(self, path: str, data: Dict[str, Any]) -> None:
        self._db.document(path).update(data)

    def delete(self, path: str) -> None:
        self._db.document(path).delete()

    def list(self, collection_path: str) -> List[Snapshot]:
        return [_wrap(s) for s in self._db.collection(collection_path).stream()]

    def where(self, collection_path: str, field_path: str, op: str, value: Any) -> List[Snapshot]:
        query = self._db.collection(collection_path).where(filter=admin_fs.FieldFilter(field_path, op, value))
        return [_wrap(s) for s in query.stream()]

    def collection_group(self, group: str, field_path: str, op: str, value: Any) -> List[Snapshot]:
        query = self._db.collection_group(group).where(filter=admin_fs.FieldFilter(field_path, op, value))
        return [_wrap(s) for s in query.stream()]

    def batch(self) -> _FirestoreBatch:
        return _FirestoreBatch(self._db)

    def run_transaction(self, fn: Callable[[StoreTransaction], T]) -> T:
        @admin_fs.transactional
        def _run(transaction: Transaction) -> T:
            # re-invoked by the SDK on contention, so fn must not keep state between calls
            return fn(_FirestoreTransaction(self._db, transaction))

        return _run(self._db.transaction(max_attempts=self._max_attempts))

    def watch(
        self,
        collection_path: str,
        callback: Callable[[List[Snapshot]], None],
        where: Optional[WhereClause] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> Unsubscribe:
        query = self._db.collection(collection_path)
        if where is not None:
            query = query.where(filter=admin_fs.FieldFilter(*where))
        if order_by:
            direction = admin_fs.Query.DESCENDING if descending else admin_fs.Query.ASCENDING
            query = query.order_by(order_by, direction=direction)
        watch = query.on_snapshot(lambda docs, changes, read_time: callback([_wrap(d) for d in docs]))
        return watch.unsubscribe

    def watch_document(self, path: str, callback: Callable[[Snapshot], None]) -> Unsubscribe:
        def _on_snapshot(docs, changes, read_time) -> None:
            for snap in docs:
                callback(_wrap(snap))

        watch = self._db.document(path).on_snapshot(_on_snapshot)
        return watch.unsubscribe

    def new_id(self) -> str:
        return self._db.collection("_ids").document().id
