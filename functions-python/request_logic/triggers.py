"""
Trigger handlers.

Every handler takes a ``TriggerContext`` and a ``DocumentEvent`` and is safe
to run more than once for the same event. ``main.py`` binds them to the
Cloud Functions Firestore triggers; ``dispatcher.Dispatcher`` drives them
from a ``MemoryStore`` change stream.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from . import cleanup, engine, notifications, projections
from .config import Settings
from .services import BlobStore, IdentityProvider, Notifier
from .store import DocumentEvent, DocumentStore, EventKind


@dataclass
class TriggerContext:
    store: DocumentStore
    notifier: Notifier
    identity: IdentityProvider
    blobs: BlobStore
    settings: Settings = field(default_factory=Settings)


Handler = Callable[[TriggerContext, DocumentEvent], Any]


@dataclass(frozen=True)
class Trigger:
    name: str
    pattern: str
    kind: EventKind
    handler: Handler

    def matches(self, event: DocumentEvent) -> Optional[Dict[str, str]]:
        if self.kind is not EventKind.WRITTEN and self.kind is not event.kind:
            return None
        return match_path(self.pattern, event.path)


TRIGGERS: List[Trigger] = []


def trigger(pattern: str, kind: EventKind) -> Callable[[Handler], Handler]:
    def _register(fn: Handler) -> Handler:
        TRIGGERS.append(Trigger(fn.__name__, pattern, kind, fn))
        return fn

    return _register


def match_path(pattern: str, path: str) -> Optional[Dict[str, str]]:
    """Match ``requests/{requestId}`` style patterns; returns the captured params."""
    want = pattern.split("/")
    got = path.split("/")
    if len(want) != len(got):
        return None
    params: Dict[str, str] = {}
    for w, g in zip(want, got):
        if w.startswith("{") and w.endswith("}"):
            params[w[1:-1]] = g
        elif w != g:
            return None
    return params


# -------------------------
# Requests
# -------------------------

@trigger("requests/{requestId}/actions/{actionId}", EventKind.CREATED)
def handle_request_action(ctx: TriggerContext, event: DocumentEvent) -> engine.ActionOutcome:
    return engine.process_action(ctx.store, event.params["requestId"], event.params["actionId"], ctx.settings)


@trigger("requests/{requestId}/offers/{offerId}", EventKind.WRITTEN)
def update_offer_count(ctx: TriggerContext, event: DocumentEvent) -> Optional[int]:
    return projections.recompute_offer_count(ctx.store, event.params["requestId"])


@trigger("requests/{requestId}", EventKind.CREATED)
def increment_requests_posted(ctx: TriggerContext, event: DocumentEvent) -> bool:
    return projections.adjust_requests_posted(ctx.store, (event.after or {}).get("userId"), 1)


@trigger("requests/{requestId}", EventKind.WRITTEN)
def sync_request_status_to_chat(ctx: TriggerContext, event: DocumentEvent) -> bool:
    return projections.sync_chat_status(ctx.store, event.params["requestId"], event.before, event.after)


@trigger("requests/{requestId}", EventKind.WRITTEN)
def on_request_completed(ctx: TriggerContext, event: DocumentEvent) -> int:
    return notifications.start_review_process(
        ctx.store, ctx.notifier, event.params["requestId"], event.before, event.after
    )


@trigger("requests/{requestId}", EventKind.DELETED)
def cleanup_request_data(ctx: TriggerContext, event: DocumentEvent) -> None:
    cleanup.cleanup_request(ctx.store, event.params["requestId"], event.before, ctx.settings)


# -------------------------
# Users
# -------------------------

@trigger("users/{userId}", EventKind.DELETED)
def cleanup_user_data(ctx: TriggerContext, event: DocumentEvent) -> int:
    return cleanup.cleanup_user(ctx.store, ctx.identity, ctx.blobs, event.params["userId"], ctx.settings)


# -------------------------
# Chats
# -------------------------

@trigger("chats/{chatId}", EventKind.WRITTEN)
def handle_chat_deletion(ctx: TriggerContext, event: DocumentEvent) -> bool:
    return cleanup.hard_delete_if_abandoned(ctx.store, event.params["chatId"], event.after, ctx.settings)


@trigger("chats/{chatId}/messages/{messageId}", EventKind.CREATED)
def send_new_message_notification(ctx: TriggerContext, event: DocumentEvent) -> bool:
    return notifications.notify_new_message(
        ctx.store, ctx.notifier, event.params["chatId"], event.after or {}, ctx.settings.message_preview_chars
    )


@trigger("chats/{chatId}/messages/{messageId}", EventKind.CREATED)
def update_unread_count(ctx: TriggerContext, event: DocumentEvent) -> int:
    return projections.increment_unread(ctx.store, event.params["chatId"], event.after or {})


# -------------------------
# Reviews
# -------------------------

@trigger("reviews/{reviewId}", EventKind.CREATED)
def on_review_created(ctx: TriggerContext, event: DocumentEvent) -> bool:
    return projections.apply_review(
        ctx.store, event.params["reviewId"], event.after or {}, ctx.settings.max_badges_per_review
    )
