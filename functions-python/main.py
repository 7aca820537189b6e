# functions-python/main.py
"""
Firebase Cloud Functions (Gen2, Python): Firestore triggers for AidLink.

Every function here is a thin binding: it turns the platform event into a
``DocumentEvent`` and hands it to the matching handler in
``request_logic.triggers``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import firebase_admin
from firebase_admin import firestore as admin_fs
from firebase_functions import firestore_fn, logger, options, scheduler_fn
from google.cloud.firestore import Client

from request_logic import reconcile, triggers
from request_logic.config import load_settings
from request_logic.services import FcmNotifier, FirebaseBlobStore, FirebaseIdentityProvider
from request_logic.store import DocumentEvent, FirestoreStore
from request_logic.triggers import TriggerContext

settings = load_settings()

# -------------------------
# Region and timeout
# -------------------------
options.set_global_options(region=settings.region, timeout_sec=settings.timeout_sec)

# -------------------------
# Admin SDK
# -------------------------
if not firebase_admin._apps:
    # For local debugging point the SDK at the emulators:
    #   FIRESTORE_EMULATOR_HOST=127.0.0.1:8080
    #   FIREBASE_AUTH_EMULATOR_HOST=127.0.0.1:9099
    firebase_admin.initialize_app()

db: Client = admin_fs.client()

ctx = TriggerContext(
    store=FirestoreStore(db, max_attempts=settings.transaction_max_attempts),
    notifier=FcmNotifier(),
    identity=FirebaseIdentityProvider(),
    blobs=FirebaseBlobStore(),
    settings=settings,
)

# -------------------------
# Event conversion
# -------------------------

def _doc(snap) -> Optional[Dict[str, Any]]:
    if snap is None or not snap.exists:
        return None
    return snap.to_dict()


def _created(event: firestore_fn.Event[Optional[firestore_fn.DocumentSnapshot]]) -> DocumentEvent:
    return DocumentEvent(event.document, None, _doc(event.data), dict(event.params))


def _deleted(event: firestore_fn.Event[Optional[firestore_fn.DocumentSnapshot]]) -> DocumentEvent:
    return DocumentEvent(event.document, _doc(event.data), None, dict(event.params))


def _written(
    event: firestore_fn.Event[firestore_fn.Change[Optional[firestore_fn.DocumentSnapshot]]],
) -> DocumentEvent:
    change = event.data
    before = _doc(change.before) if change else None
    after = _doc(change.after) if change else None
    return DocumentEvent(event.document, before, after, dict(event.params))


# -------------------------
# Requests
# -------------------------

@firestore_fn.on_document_created(document="requests/{requestId}/actions/{actionId}")
def handle_request_actions(event: firestore_fn.Event[Optional[firestore_fn.DocumentSnapshot]]) -> None:
    if event.data is None:
        logger.warn("Action document data is missing.")
        return
    triggers.handle_request_action(ctx, _created(event))


@firestore_fn.on_document_written(document="requests/{requestId}/offers/{offerId}")
def update_offer_count(event: firestore_fn.Event[firestore_fn.Change[Optional[firestore_fn.DocumentSnapshot]]]) -> None:
    triggers.update_offer_count(ctx, _written(event))


@firestore_fn.on_document_created(document="requests/{requestId}")
def increment_requests_posted(event: firestore_fn.Event[Optional[firestore_fn.DocumentSnapshot]]) -> None:
    triggers.increment_requests_posted(ctx, _created(event))


@firestore_fn.on_document_written(document="requests/{requestId}")
def sync_request_status_to_chat(event: firestore_fn.Event[firestore_fn.Change[Optional[firestore_fn.DocumentSnapshot]]]) -> None:
    triggers.sync_request_status_to_chat(ctx, _written(event))


@firestore_fn.on_document_written(document="requests/{requestId}")
def on_request_completed(event: firestore_fn.Event[firestore_fn.Change[Optional[firestore_fn.DocumentSnapshot]]]) -> None:
    triggers.on_request_completed(ctx, _written(event))


@firestore_fn.on_document_deleted(document="requests/{requestId}")
def cleanup_request_data(event: firestore_fn.Event[Optional[firestore_fn.DocumentSnapshot]]) -> None:
    triggers.cleanup_request_data(ctx, _deleted(event))


# -------------------------
# Users
# -------------------------

@firestore_fn.on_document_deleted(document="users/{userId}")
def cleanup_user_data(event: firestore_fn.Event[Optional[firestore_fn.DocumentSnapshot]]) -> None:
    triggers.cleanup_user_data(ctx, _deleted(event))


# -------------------------
# Chats
# -------------------------

@firestore_fn.on_document_written(document="chats/{chatId}")
def handle_chat_deletion(event: firestore_fn.Event[firestore_fn.Change[Optional[firestore_fn.DocumentSnapshot]]]) -> None:
    triggers.handle_chat_deletion(ctx, _written(event))


@firestore_fn.on_document_created(document="chats/{chatId}/messages/{messageId}")
def send_new_message_notification(event: firestore_fn.Event[Optional[firestore_fn.DocumentSnapshot]]) -> None:
    triggers.send_new_message_notification(ctx, _created(event))


@firestore_fn.on_document_created(document="chats/{chatId}/messages/{messageId}")
def update_unread_count(event: firestore_fn.Event[Optional[firestore_fn.DocumentSnapshot]]) -> None:
    triggers.update_unread_count(ctx, _created(event))


# -------------------------
# Reviews
# -------------------------

@firestore_fn.on_document_created(document="reviews/{reviewId}")
def on_review_created(event: firestore_fn.Event[Optional[firestore_fn.DocumentSnapshot]]) -> None:
    if event.data is None:
        logger.warn("[REVIEW] Review document data is missing.")
        return
    triggers.on_review_created(ctx, _created(event))


# -------------------------
# Scheduled repair
# -------------------------

@scheduler_fn.on_schedule(schedule=settings.reconcile_schedule)
def reconcile_counters(event: scheduler_fn.ScheduledEvent) -> None:
    stale = reconcile.sweep_stale_offers(ctx.store, settings.batch_size)
    fixed = reconcile.reconcile_user_counters(ctx.store)
    logger.info(f"[RECONCILE] Done: {stale} stale offers removed, {fixed} profiles corrected.")
