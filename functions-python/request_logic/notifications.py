"""Push notifications for new chat messages and completed requests."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from firebase_admin.exceptions import FirebaseError
from firebase_functions import logger

from . import paths
from .models import SYSTEM_SENDER, MessageType, RequestStatus, ReviewState, parse_status
from .services import Notifier
from .store import DocumentStore, StoreTransaction


def preview(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def deliver(
    notifier: Notifier,
    user_id: str,
    token: str,
    title: str,
    body: str,
    data: Dict[str, Any],
) -> bool:
    """Fire and forget: failures are logged, never retried."""
    try:
        notifier.send(token, title, body, {k: str(v) for k, v in data.items()})
    except (FirebaseError, ValueError) as exc:
        logger.error(f"[FCM] Error sending notification to user {user_id}: {exc}", userId=user_id)
        return False
    logger.info(f"[FCM] Successfully sent notification to user {user_id}.", userId=user_id)
    return True


def _token(store: DocumentStore, user_id: str) -> Optional[str]:
    profile = store.get(paths.user(user_id))
    token = profile.get("fcmToken") if profile.exists else None
    return token or None


def notify_new_message(
    store: DocumentStore,
    notifier: Notifier,
    chat_id: str,
    message: Dict[str, Any],
    preview_chars: int = 100,
) -> bool:
    sender_id = message.get("senderId")
    if sender_id == SYSTEM_SENDER or message.get("type") == MessageType.SYSTEM.value:
        logger.info(f"[FCM] System message detected in chat {chat_id}. No notification sent.", chatId=chat_id)
        return False

    chat = store.get(paths.chat(chat_id))
    if not chat.exists:
        logger.error(f"[FCM] Chat document {chat_id} not found.", chatId=chat_id)
        return False
    recipient_id = next((uid for uid in chat.get("participants") or [] if uid != sender_id), None)
    if not recipient_id:
        logger.warn(f"[FCM] Could not find a recipient in chat {chat_id}.", chatId=chat_id)
        return False

    token = _token(store, recipient_id)
    if not token:
        logger.warn(f"[FCM] Recipient {recipient_id} does not have an FCM token.", userId=recipient_id)
        return False

    sender_name = ((chat.get("participantInfo") or {}).get(sender_id) or {}).get("name") or "Someone"
    return deliver(
        notifier,
        recipient_id,
        token,
        title=f"New message from {sender_name}",
        body=preview(message.get("text") or "", preview_chars),
        data={"chatId": chat_id, "senderName": sender_name, "screen": "chat"},
    )


def _init_review_status(txn: StoreTransaction, request_id: str, party_ids) -> List[str]:
    """Open a pending review slot for each party that has none. Returns the ids opened."""
    request = txn.get(paths.request(request_id))
    if not request.exists:
        return []
    existing = request.get("reviewStatus") or {}
    # never reset a review that was already completed
    opened = [uid for uid in party_ids if uid not in existing]
    if opened:
        txn.update(request.path, {f"reviewStatus.{uid}": ReviewState.PENDING.value for uid in opened})
    return opened


def start_review_process(
    store: DocumentStore,
    notifier: Notifier,
    request_id: str,
    before: Optional[Dict[str, Any]],
    after: Optional[Dict[str, Any]],
) -> int:
    """On the transition into ``completed``, open review slots and prompt both parties.

    A party is prompted only when this call opened their slot, so a replayed
    transition does not prompt again. Returns the number of prompts delivered.
    """
    if after is None or parse_status(after.get("status")) is not RequestStatus.COMPLETED:
        return 0
    if before is not None and parse_status(before.get("status")) is RequestStatus.COMPLETED:
        return 0

    requester_id = after.get("userId")
    helper_id = after.get("responderId")
    if not requester_id or not helper_id:
        logger.error(f"[REVIEW] Completed request {request_id} is missing its parties.", requestId=request_id)
        return 0
    logger.info(f"[REVIEW] Request {request_id} completed. Initiating review process.", requestId=request_id)

    opened = store.run_transaction(lambda txn: _init_review_status(txn, request_id, (requester_id, helper_id)))

    prompts = (
        (requester_id, helper_id, after.get("responderName") or "your helper", False),
        (helper_id, requester_id, after.get("userName") or "the requester", True),
    )
    sent = 0
    for user_id, reviewee_id, reviewee_name, is_helper in prompts:
        if user_id not in opened:
            continue
        token = _token(store, user_id)
        if not token:
            logger.warn(f"[REVIEW] User {user_id} has no FCM token; skipping prompt.", userId=user_id)
            continue
        sent += deliver(
            notifier,
            user_id,
            token,
            title="How was your experience?",
            body=f"Leave feedback for {reviewee_name} to earn Trust Badges!",
            data={
                "screen": "review",
                "requestId": request_id,
                "revieweeId": reviewee_id,
                "isHelperReviewing": "true" if is_helper else "false",
            },
        )
    logger.info(f"[REVIEW] Sent {sent} review notifications.", requestId=request_id)
    return sent
