"""
Derived fields kept up to date by triggers.

offerCount is recomputed from the full offer set on every offer write, so
replayed deliveries leave it correct. requestsPosted and unreadCount are
plain increments and may drift under replays; ``reconcile`` repairs
requestsPosted. Trust badges are applied at most once per reviewer and
request.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from firebase_admin import firestore as admin_fs
from firebase_functions import logger
from google.api_core import exceptions as gexc

from . import paths
from .errors import ErrorCode, LifecycleError
from .lifecycle import SystemMessage
from .models import SYSTEM_SENDER, RequestStatus, Review, ReviewState, SystemMessageType, parse_status
from .store import DocumentStore, StoreTransaction

COMPLETED_MESSAGE_ID = "status_completed"


def recompute_offer_count(store: DocumentStore, request_id: str) -> Optional[int]:
    request_path = paths.request(request_id)

    def _recount(txn: StoreTransaction) -> Optional[int]:
        request = txn.get(request_path)
        if not request.exists:
            return None
        count = len(txn.list(paths.offers(request_id)))
        if request.get("offerCount") != count:
            txn.update(request_path, {"offerCount": count})
        return count

    try:
        count = store.run_transaction(_recount)
    except gexc.GoogleAPICallError as exc:
        logger.error(f"[OFFER COUNT] Error updating offer count for request {request_id}: {exc}",
                     requestId=request_id)
        return None
    if count is None:
        logger.info(f"[OFFER COUNT] Request {request_id} no longer exists; skipping.", requestId=request_id)
    else:
        logger.info(f"[OFFER COUNT] Updated to {count} for request {request_id}", requestId=request_id)
    return count


def adjust_requests_posted(store: DocumentStore, user_id: Optional[str], delta: int) -> bool:
    if not user_id:
        return False
    try:
        store.update(paths.user(user_id), {"requestsPosted": admin_fs.Increment(delta)})
    except gexc.NotFound:
        logger.warn(f"[STATS] Profile {user_id} not found; requestsPosted left unchanged.", userId=user_id)
        return False
    except gexc.GoogleAPICallError as exc:
        logger.error(f"[STATS] Failed to adjust requestsPosted for user {user_id}: {exc}", userId=user_id)
        return False
    logger.info(f"[STATS] Adjusted requestsPosted by {delta} for user {user_id}", userId=user_id)
    return True


def sync_chat_status(
    store: DocumentStore,
    request_id: str,
    before: Optional[Dict[str, Any]],
    after: Optional[Dict[str, Any]],
) -> bool:
    """Mirror the request status onto its chat so chat lists can show it.

    Completion also posts a closing system message under a fixed id, so a
    redelivered event rewrites it instead of adding another.
    """
    if before is None or after is None:
        return False
    status = after.get("status")
    if before.get("status") == status:
        return False
    chat_path = paths.chat(request_id)
    if not store.get(chat_path).exists:
        return False
    batch = store.batch()
    batch.update(chat_path, {"requestStatus": status, "lastUpdated": admin_fs.SERVER_TIMESTAMP})
    if parse_status(status) is RequestStatus.COMPLETED:
        text = "This job has been completed. Thank you!"
        message = SystemMessage(text, SystemMessageType.STATUS_CHANGE, text)
        batch.set(paths.message(request_id, COMPLETED_MESSAGE_ID), message.to_document())
    try:
        batch.commit()
    except gexc.NotFound:
        return False
    logger.info(f"[SYNC] Request {request_id} status '{before.get('status')}' -> '{status}' synced to chat.",
                requestId=request_id)
    return True


def increment_unread(store: DocumentStore, chat_id: str, message: Dict[str, Any]) -> int:
    sender_id = message.get("senderId")
    if sender_id == SYSTEM_SENDER:
        return 0
    chat = store.get(paths.chat(chat_id))
    if not chat.exists:
        logger.error(f"[UNREAD] Chat {chat_id} not found.", chatId=chat_id)
        return 0
    updates = {
        f"unreadCount.{uid}": admin_fs.Increment(1)
        for uid in chat.get("participants") or []
        if uid != sender_id
    }
    if not updates:
        return 0
    try:
        store.update(chat.path, updates)
    except gexc.GoogleAPICallError as exc:
        logger.error(f"[UNREAD] Error updating unread count for chat {chat_id}: {exc}", chatId=chat_id)
        return 0
    return len(updates)


def _apply_review(txn: StoreTransaction, review: Review) -> bool:
    request_path = paths.request(review.request_id)
    request = txn.get(request_path)
    if not request.exists:
        raise LifecycleError(ErrorCode.ERR_REQUEST_NOT_FOUND, f"Request {review.request_id} not found.")
    if parse_status(request.get("status")) is not RequestStatus.COMPLETED:
        raise LifecycleError(ErrorCode.ERR_WRONG_STATUS, "Only completed requests can be reviewed.")
    parties = {request.get("userId"), request.get("responderId")}
    if review.reviewer_id not in parties or review.reviewee_id not in parties:
        raise LifecycleError(ErrorCode.ERR_NOT_AUTHORIZED, "Reviewer and reviewee must be the two parties of the request.")
    reviewee_path = paths.user(review.reviewee_id)
    if not txn.get(reviewee_path).exists:
        raise LifecycleError(ErrorCode.ERR_PROFILE_NOT_FOUND, f"Reviewee profile {review.reviewee_id} not found.")

    review_status = request.get("reviewStatus") or {}
    if review_status.get(review.reviewer_id) == ReviewState.COMPLETED.value:
        return False

    if review.badges:
        txn.update(reviewee_path, {f"trustBadges.{badge}": admin_fs.Increment(1) for badge in review.badges})
    txn.update(request_path, {f"reviewStatus.{review.reviewer_id}": ReviewState.COMPLETED.value})
    return True


def apply_review(store: DocumentStore, review_id: str, data: Dict[str, Any], max_badges: int) -> bool:
    """Credit the reviewee's trust badges and close the reviewer's review slot."""
    review_path = f"{paths.REVIEWS}/{review_id}"
    try:
        review = Review.from_document(data, max_badges)
        applied = store.run_transaction(lambda txn: _apply_review(txn, review))
    except LifecycleError as err:
        logger.error(f"[REVIEW] Rejected review {review_id}: {err.message}", reviewId=review_id, code=err.code.value)
        try:
            store.update(review_path, {"status": "rejected", "errorMessage": err.message})
        except gexc.NotFound:
            logger.warn(f"[REVIEW] Review {review_id} was deleted before it could be marked.", reviewId=review_id)
        return False

    if applied:
        logger.info(f"[REVIEW] Updated badges for user {review.reviewee_id}.",
                    reviewId=review_id, badges=review.badges)
    else:
        logger.info(f"[REVIEW] Review {review_id} was already applied.", reviewId=review_id)
    return applied
