"""
Client-side operations on the store.

Clients never mutate request, offer or chat state directly: they append an
action and watch the documents the backend writes in response. The only
other client writes are chat messages and hiding a chat.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Union

from firebase_admin import firestore as admin_fs

from . import paths
from .models import SYSTEM_SENDER, ActionType, MessageType, RequestStatus
from .store import DocumentStore, Snapshot, Unsubscribe


def append_action(
    store: DocumentStore,
    request_id: str,
    action_type: Union[ActionType, str],
    created_by: str,
    payload: Optional[Dict[str, Any]] = None,
) -> str:
    """Queue an intent on a request. Returns the new action id."""
    action_type = ActionType(action_type)
    action_id = store.new_id()
    store.set(
        paths.action(request_id, action_id),
        {
            "type": action_type.value,
            "createdBy": created_by,
            "payload": dict(payload or {}),
            "createdAt": admin_fs.SERVER_TIMESTAMP,
        },
    )
    return action_id


def send_message(store: DocumentStore, chat_id: str, sender_id: str, text: str) -> str:
    if sender_id == SYSTEM_SENDER:
        raise ValueError("'system' is reserved for backend messages")
    message_id = store.new_id()
    batch = store.batch()
    batch.set(
        paths.message(chat_id, message_id),
        {
            "senderId": sender_id,
            "text": text,
            "timestamp": admin_fs.SERVER_TIMESTAMP,
            "type": MessageType.USER.value,
        },
    )
    batch.update(paths.chat(chat_id), {"lastMessage": text, "lastMessageTimestamp": admin_fs.SERVER_TIMESTAMP})
    batch.commit()
    return message_id


def hide_chat(store: DocumentStore, chat_id: str, user_id: str) -> None:
    store.update(paths.chat(chat_id), {"deletedBy": admin_fs.ArrayUnion([user_id])})


# -------------------------
# Live queries
# -------------------------

def watch_open_requests(store: DocumentStore, callback: Callable[[List[Snapshot]], None]) -> Unsubscribe:
    return store.watch(
        paths.REQUESTS, callback,
        where=("status", "==", RequestStatus.OPEN.value), order_by="createdAt", descending=True,
    )


def watch_user_requests(
    store: DocumentStore, user_id: str, callback: Callable[[List[Snapshot]], None]
) -> Unsubscribe:
    return store.watch(
        paths.REQUESTS, callback, where=("userId", "==", user_id), order_by="createdAt", descending=True
    )


def watch_user_chats(
    store: DocumentStore, user_id: str, callback: Callable[[List[Snapshot]], None]
) -> Unsubscribe:
    def _visible(chats: List[Snapshot]) -> None:
        callback([c for c in chats if user_id not in (c.get("deletedBy") or [])])

    return store.watch(
        paths.CHATS, _visible,
        where=("participants", "array-contains", user_id), order_by="lastMessageTimestamp", descending=True,
    )


def watch_messages(store: DocumentStore, chat_id: str, callback: Callable[[List[Snapshot]], None]) -> Unsubscribe:
    return store.watch(paths.messages(chat_id), callback, order_by="timestamp")


def watch_offers(store: DocumentStore, request_id: str, callback: Callable[[List[Snapshot]], None]) -> Unsubscribe:
    return store.watch(paths.offers(request_id), callback, order_by="createdAt", descending=True)


def watch_action(
    store: DocumentStore, request_id: str, action_id: str, callback: Callable[[Snapshot], None]
) -> Unsubscribe:
    return store.watch_document(paths.action(request_id, action_id), callback)
