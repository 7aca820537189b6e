from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import pytest
from firebase_admin import firestore

from request_logic import paths
from request_logic.client import append_action
from request_logic.config import Settings
from request_logic.dispatcher import Dispatcher
from request_logic.memory_store import MemoryStore
from request_logic.triggers import TriggerContext

ALICE = "alice"
HANK = "hank"
HERA = "hera"


class FakeNotifier:
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None

    def send(self, token: str, title: str, body: str, data: Dict[str, str]) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append({"token": token, "title": title, "body": body, "data": data})


class FakeIdentity:
    def __init__(self, known=None):
        self.known = set(known or [])
        self.deleted: List[str] = []

    def delete_user(self, uid: str) -> bool:
        if uid not in self.known:
            return False
        self.known.discard(uid)
        self.deleted.append(uid)
        return True


class FakeBlobs:
    def __init__(self, files=None):
        self.files = set(files or [])
        self.deleted: List[str] = []

    def delete_file(self, path: str) -> bool:
        if path not in self.files:
            return False
        self.files.discard(path)
        self.deleted.append(path)
        return True


def profile(name: str, token: Optional[str] = None) -> Dict[str, Any]:
    return {
        "name": name,
        "photoUrl": f"https://img.example/{name.lower()}.jpg",
        "fcmToken": token or "",
        "skills": [],
        "area": "Riverside",
        "helpsCompleted": 0,
        "requestsPosted": 0,
        "trustBadges": {},
    }


def help_request(owner: str = ALICE, owner_name: str = "Alice", status: str = "open", **extra) -> Dict[str, Any]:
    doc = {
        "userId": owner,
        "userName": owner_name,
        "title": "Move a sofa",
        "description": "Two flights of stairs",
        "category": "Moving",
        "type": "VOLUNTEER",
        "status": status,
        "offerCount": 0,
        "createdAt": firestore.SERVER_TIMESTAMP,
    }
    doc.update(extra)
    return doc


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity(known=[ALICE, HANK, HERA])


@pytest.fixture
def blobs() -> FakeBlobs:
    return FakeBlobs(files=[f"profile_images/{ALICE}.jpg"])


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def ctx(store, notifier, identity, blobs, settings) -> TriggerContext:
    return TriggerContext(store=store, notifier=notifier, identity=identity, blobs=blobs, settings=settings)


@pytest.fixture
def dispatcher(store, ctx) -> Dispatcher:
    d = Dispatcher(store, ctx)
    yield d
    d.close()


@pytest.fixture
def seeded(store, dispatcher) -> MemoryStore:
    """Three profiles and one open request r1 owned by Alice, triggers settled."""
    store.set(paths.user(ALICE), profile("Alice", "tok-alice"))
    store.set(paths.user(HANK), profile("Hank", "tok-hank"))
    store.set(paths.user(HERA), profile("Hera"))
    store.set(paths.request("r1"), help_request())
    dispatcher.run_until_idle()
    return store


@pytest.fixture
def act(store, dispatcher) -> Callable[..., Dict[str, Any]]:
    """Append an action, let every trigger run, and return the action document."""

    def _act(request_id: str, action_type: str, by: str, **payload) -> Dict[str, Any]:
        action_id = append_action(store, request_id, action_type, by, payload)
        dispatcher.run_until_idle()
        return store.get(paths.action(request_id, action_id)).to_dict()

    return _act
