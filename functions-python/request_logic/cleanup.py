"""
Cascade deletes.

Firestore never deletes sub-collections with their parent, so removing a
request, a user or an abandoned chat is followed by explicit deletion of
everything that hangs off it. Each step is best-effort and logged; there is
no compensation when a later step fails after an earlier one succeeded.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from firebase_admin.exceptions import FirebaseError
from firebase_functions import logger
from google.api_core import exceptions as gexc

from . import paths
from .config import Settings
from .projections import adjust_requests_posted
from .services import BlobStore, IdentityProvider
from .store import DocumentStore, delete_in_batches


def delete_chat(store: DocumentStore, chat_id: str, batch_size: int) -> int:
    """Delete a chat's messages, then the chat itself. Returns messages deleted."""
    messages = store.list(paths.messages(chat_id))
    deleted = delete_in_batches(store, (m.path for m in messages), batch_size)
    if deleted:
        logger.info(f"[CLEANUP] Deleted {deleted} messages for chat {chat_id}.", chatId=chat_id)
    chat_path = paths.chat(chat_id)
    if store.get(chat_path).exists:
        store.delete(chat_path)
        logger.info(f"[CLEANUP] Deleted chat document {chat_id}.", chatId=chat_id)
    return deleted


def cleanup_request(
    store: DocumentStore,
    request_id: str,
    deleted: Optional[Dict[str, Any]],
    settings: Settings,
) -> None:
    owner_id = (deleted or {}).get("userId")
    logger.info(f"[CLEANUP] Request {request_id} by user {owner_id} was deleted.",
                requestId=request_id, userId=owner_id)

    adjust_requests_posted(store, owner_id, -1)

    try:
        children = store.list(paths.offers(request_id)) + store.list(paths.actions(request_id))
        count = delete_in_batches(store, (s.path for s in children), settings.batch_size)
        if count:
            logger.info(f"[CLEANUP] Deleted {count} offers and actions of request {request_id}.",
                        requestId=request_id)
    except gexc.GoogleAPICallError as exc:
        logger.error(f"[CLEANUP] Failed to delete offers/actions for request {request_id}: {exc}",
                     requestId=request_id)

    try:
        delete_chat(store, request_id, settings.batch_size)
    except gexc.GoogleAPICallError as exc:
        logger.error(f"[CLEANUP] Failed to clean up chat data for request {request_id}: {exc}",
                     requestId=request_id)


def _owned_paths(store: DocumentStore, user_id: str) -> List[str]:
    owned: List[str] = []
    for snap in store.where(paths.REQUESTS, "userId", "==", user_id):
        logger.info(f"[CLEANUP] Deleting request {snap.id} created by user {user_id}.", userId=user_id)
        owned.append(snap.path)
    for snap in store.collection_group(paths.OFFERS, "helperId", "==", user_id):
        logger.info(f"[CLEANUP] Deleting offer {snap.path} made by user {user_id}.", userId=user_id)
        owned.append(snap.path)
    for snap in store.where(paths.REVIEWS, "reviewerId", "==", user_id):
        logger.info(f"[CLEANUP] Deleting review {snap.id} by user {user_id}.", userId=user_id)
        owned.append(snap.path)
    return owned


def cleanup_user(
    store: DocumentStore,
    identity: IdentityProvider,
    blobs: BlobStore,
    user_id: str,
    settings: Settings,
) -> int:
    """Remove everything a deleted profile owned. Returns Firestore documents deleted.

    Deleted requests cascade further through ``cleanup_request`` when their
    own delete triggers fire.
    """
    logger.info(f"[USER DELETED] Starting cleanup for user {user_id}.", userId=user_id)

    try:
        if identity.delete_user(user_id):
            logger.info(f"[CLEANUP] Deleted user from Firebase Auth: {user_id}", userId=user_id)
    except FirebaseError as exc:
        logger.error(f"[CLEANUP] Failed to delete auth user {user_id}: {exc}", userId=user_id)

    image_path = settings.profile_image_path(user_id)
    try:
        if blobs.delete_file(image_path):
            logger.info(f"[CLEANUP] Deleted profile image {image_path} from Storage.", userId=user_id)
    except gexc.GoogleAPICallError as exc:
        logger.error(f"[CLEANUP] Error deleting profile image {image_path}: {exc}", userId=user_id)

    try:
        deleted = delete_in_batches(store, _owned_paths(store, user_id), settings.batch_size)
    except gexc.GoogleAPICallError as exc:
        logger.error(f"[CLEANUP] Failed during Firestore cleanup for user {user_id}: {exc}", userId=user_id)
        return 0
    logger.info(f"[CLEANUP] Firestore data cleanup complete for user {user_id}.", userId=user_id, deleted=deleted)
    return deleted


def hard_delete_if_abandoned(
    store: DocumentStore,
    chat_id: str,
    after: Optional[Dict[str, Any]],
    settings: Settings,
) -> bool:
    """Hard delete a chat once every participant has hidden it."""
    if not after or "participants" not in after or "deletedBy" not in after:
        return False
    participants = after.get("participants") or []
    deleted_by = after.get("deletedBy") or []
    if len(deleted_by) < len(participants):
        return False

    logger.info(f"[HARD DELETE] All users have deleted chat {chat_id}. Cleaning up.", chatId=chat_id)
    try:
        delete_chat(store, chat_id, settings.batch_size)
    except gexc.GoogleAPICallError as exc:
        logger.error(f"[HARD DELETE] Failed during hard delete for chat {chat_id}: {exc}", chatId=chat_id)
        return False
    return True
