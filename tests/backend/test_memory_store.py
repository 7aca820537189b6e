import datetime

import pytest
from firebase_admin import firestore
from google.api_core import exceptions as gexc

from request_logic.memory_store import MemoryStore
from request_logic.store import EventKind, delete_in_batches


class CountingStore(MemoryStore):
    def __init__(self):
        super().__init__()
        self.commits = []

    def _write(self, writes):
        self.commits.append(len(writes))
        super()._write(writes)


def test_update_on_missing_document_fails():
    store = MemoryStore()
    with pytest.raises(gexc.NotFound):
        store.update("users/ghost", {"name": "Ghost"})
    assert not store.get("users/ghost").exists


def test_failed_batch_applies_nothing():
    store = MemoryStore()
    batch = store.batch()
    batch.set("users/a", {"name": "A"})
    batch.update("users/missing", {"name": "B"})
    with pytest.raises(gexc.NotFound):
        batch.commit()
    assert not store.get("users/a").exists


def test_sentinels_and_dotted_updates():
    store = MemoryStore()
    store.set("users/a", {"name": "A", "tags": ["x"], "trustBadges": {"skilled": 1}, "note": "tmp"})
    store.update(
        "users/a",
        {
            "helpsCompleted": firestore.Increment(2),
            "trustBadges.skilled": firestore.Increment(1),
            "trustBadges.punctual": firestore.Increment(1),
            "tags": firestore.ArrayUnion(["x", "y"]),
            "note": firestore.DELETE_FIELD,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        },
    )
    doc = store.get("users/a").to_dict()
    assert doc["helpsCompleted"] == 2
    assert doc["trustBadges"] == {"skilled": 2, "punctual": 1}
    assert doc["tags"] == ["x", "y"]
    assert "note" not in doc
    assert isinstance(doc["updatedAt"], datetime.datetime)

    store.update("users/a", {"tags": firestore.ArrayRemove(["x"])})
    assert store.get("users/a").get("tags") == ["y"]


def test_set_merge_keeps_other_fields():
    store = MemoryStore()
    store.set("users/a", {"name": "A", "profile": {"area": "North", "skills": ["paint"]}})
    store.set("users/a", {"profile": {"area": "South"}}, merge=True)
    assert store.get("users/a").get("profile") == {"area": "South", "skills": ["paint"]}


def test_snapshots_are_copies():
    store = MemoryStore()
    store.set("users/a", {"tags": ["x"]})
    store.get("users/a").data["tags"].append("mutated")
    assert store.get("users/a").get("tags") == ["x"]


def test_transaction_retries_after_conflicting_write():
    store = MemoryStore()
    store.set("counters/c", {"n": 1})
    seen = []

    def bump(txn):
        snap = txn.get("counters/c")
        seen.append(snap.get("n"))
        if len(seen) == 1:
            # a concurrent writer lands between our read and our commit
            store.update("counters/c", {"n": 5})
        txn.update("counters/c", {"n": snap.get("n") + 1})
        return snap.get("n")

    assert store.run_transaction(bump) == 5
    assert seen == [1, 5]
    assert store.get("counters/c").get("n") == 6


def test_transaction_conflict_on_listed_collection():
    store = MemoryStore()
    store.set("requests/r1", {"offerCount": 0})
    attempts = []

    def recount(txn):
        offers = txn.list("requests/r1/offers")
        attempts.append(len(offers))
        if len(attempts) == 1:
            store.set("requests/r1/offers/hank", {"helperId": "hank"})
        txn.update("requests/r1", {"offerCount": len(offers)})

    store.run_transaction(recount)
    assert attempts == [0, 1]
    assert store.get("requests/r1").get("offerCount") == 1


def test_transaction_gives_up_after_max_attempts():
    store = MemoryStore(max_attempts=2)
    store.set("counters/c", {"n": 0})

    def always_contended(txn):
        txn.get("counters/c")
        store.update("counters/c", {"n": firestore.Increment(1)})
        txn.update("counters/c", {"n": -1})

    with pytest.raises(gexc.Aborted):
        store.run_transaction(always_contended)
    assert store.get("counters/c").get("n") == 2


def test_transaction_rejects_reads_after_writes():
    store = MemoryStore()

    def bad(txn):
        txn.set("a/1", {"x": 1})
        txn.get("a/2")

    with pytest.raises(ValueError):
        store.run_transaction(bad)
    assert not store.get("a/1").exists


def test_transaction_error_discards_writes():
    store = MemoryStore()

    def boom(txn):
        txn.get("a/1")
        txn.set("a/1", {"x": 1})
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        store.run_transaction(boom)
    assert not store.get("a/1").exists


def test_queries():
    store = MemoryStore()
    store.set("requests/r1", {"userId": "alice", "status": "open"})
    store.set("requests/r2", {"userId": "bob", "status": "completed"})
    store.set("requests/r1/offers/hank", {"helperId": "hank"})
    store.set("requests/r2/offers/hank", {"helperId": "hank"})
    store.set("requests/r2/offers/hera", {"helperId": "hera"})

    assert [s.id for s in store.where("requests", "userId", "==", "alice")] == ["r1"]
    assert [s.id for s in store.where("requests", "status", "in", ["open", "completed"])] == ["r1", "r2"]
    assert [s.path for s in store.collection_group("offers", "helperId", "==", "hank")] == [
        "requests/r1/offers/hank",
        "requests/r2/offers/hank",
    ]
    # sub-collections are not part of their parent collection
    assert [s.id for s in store.list("requests")] == ["r1", "r2"]


def test_subscribers_receive_one_event_per_changed_document():
    store = MemoryStore()
    events = []
    unsubscribe = store.subscribe(events.append)

    store.set("users/a", {"name": "A"})
    store.set("users/a", {"name": "A"})  # unchanged, no event
    store.update("users/a", {"name": "B"})
    store.delete("users/a")
    store.delete("users/a")  # already gone, no event
    unsubscribe()
    store.set("users/b", {"name": "B"})

    assert [e.kind for e in events] == [EventKind.CREATED, EventKind.UPDATED, EventKind.DELETED]
    assert events[1].before == {"name": "A"} and events[1].after == {"name": "B"}
    assert events[2].data == {"name": "B"}


def test_watch_orders_filters_and_unsubscribes():
    store = MemoryStore()
    seen = []
    unsubscribe = store.watch(
        "requests", lambda snaps: seen.append([s.id for s in snaps]),
        where=("status", "==", "open"), order_by="rank", descending=True,
    )
    store.set("requests/a", {"status": "open", "rank": 1})
    store.set("requests/b", {"status": "open", "rank": 2})
    store.set("requests/c", {"status": "completed", "rank": 3})
    unsubscribe()
    store.set("requests/d", {"status": "open", "rank": 4})

    assert seen[0] == []
    assert seen[-1] == ["b", "a"]
    assert all("d" not in ids for ids in seen)


def test_watch_document():
    store = MemoryStore()
    seen = []
    store.watch_document("requests/r1/actions/a1", lambda snap: seen.append(snap.get("status")))
    store.set("requests/r1/actions/a1", {"type": "make_offer"})
    store.update("requests/r1/actions/a1", {"status": "processed"})
    assert seen == [None, None, "processed"]


def test_delete_in_batches_chunks_commits():
    store = CountingStore()
    for i in range(5):
        store.set(f"things/t{i}", {"i": i})
    store.commits.clear()

    assert delete_in_batches(store, [s.path for s in store.list("things")], batch_size=2) == 5
    assert store.commits == [2, 2, 1]
    assert store.list("things") == []
