"""
Action processor.

Each action appended to ``requests/{requestId}/actions`` is applied in one
store transaction: re-read action, request, chat and the profiles the action
needs, plan the transition (see ``lifecycle``), write it, and mark the action
processed. A failed precondition or a store failure at commit aborts the
transaction and is recorded on the action afterwards with a separate update.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from firebase_admin import firestore as admin_fs
from firebase_functions import logger
from google.api_core import exceptions as gexc

from . import lifecycle, paths
from .config import Settings
from .errors import ErrorCode, LifecycleError
from .models import Action, ActionStatus, ActionType, RequestStatus, action_status
from .store import DocumentStore, StoreTransaction, delete_in_batches


@dataclass
class ActionOutcome:
    status: ActionStatus
    action_type: Optional[ActionType] = None
    new_status: Optional[RequestStatus] = None
    error: Optional[LifecycleError] = None
    # True when the action was already handled by an earlier delivery
    skipped: bool = False
    clear_offers: bool = False


def _apply_action(
    txn: StoreTransaction, store: DocumentStore, request_id: str, action_id: str
) -> ActionOutcome:
    action_path = paths.action(request_id, action_id)
    action_snap = txn.get(action_path)
    if not action_snap.exists or action_status(action_snap.data) is not ActionStatus.PENDING:
        return ActionOutcome(action_status(action_snap.data), skipped=True)
    action = Action.from_document(action_snap.data)

    request_snap = txn.get(paths.request(request_id))
    if not request_snap.exists:
        raise LifecycleError(ErrorCode.ERR_REQUEST_NOT_FOUND, "Request document not found.")

    profile_ids, needs_chat = lifecycle.reads_for(action, request_snap.data)
    chat_snap = txn.get(paths.chat(request_id)) if needs_chat else None
    profiles = {}
    for uid in profile_ids:
        snap = txn.get(paths.user(uid))
        if snap.exists:
            profiles[uid] = snap.data

    state = lifecycle.RequestState(
        request_id=request_id,
        request=request_snap.data,
        chat=chat_snap.data if chat_snap is not None and chat_snap.exists else None,
        profiles=profiles,
    )
    transition = lifecycle.plan(action, state)

    # all reads are done; writes only from here on
    if transition.request_update:
        txn.update(paths.request(request_id), transition.request_update)
    if transition.offer is not None:
        helper_id, offer = transition.offer
        txn.set(paths.offer(request_id, helper_id), offer)
    if transition.chat_create is not None:
        txn.set(paths.chat(request_id), transition.chat_create)
    elif transition.chat_update:
        txn.update(paths.chat(request_id), transition.chat_update)
    if transition.system_message is not None:
        txn.set(paths.message(request_id, store.new_id()), transition.system_message.to_document())
    for uid, deltas in transition.increments.items():
        txn.update(paths.user(uid), {f: admin_fs.Increment(n) for f, n in deltas.items()})

    txn.update(
        action_path,
        {"status": ActionStatus.PROCESSED.value, "processedAt": admin_fs.SERVER_TIMESTAMP},
    )
    return ActionOutcome(
        ActionStatus.PROCESSED,
        action_type=action.type,
        new_status=transition.new_status,
        clear_offers=transition.clear_offers,
    )


def _record_error(store: DocumentStore, request_id: str, action_id: str, error: LifecycleError) -> None:
    try:
        store.update(
            paths.action(request_id, action_id),
            {
                "status": ActionStatus.ERROR.value,
                "errorMessage": error.message,
                "errorCode": error.code.value,
                "errorTimestamp": admin_fs.SERVER_TIMESTAMP,
            },
        )
    except gexc.NotFound:
        logger.warn(f"[ACTION] Action {action_id} vanished before its error could be recorded.",
                    requestId=request_id, actionId=action_id)


def clear_offers(store: DocumentStore, request_id: str, batch_size: int) -> int:
    """Delete every offer on a request. Best-effort: failures are logged."""
    try:
        offers = store.list(paths.offers(request_id))
        deleted = delete_in_batches(store, (s.path for s in offers), batch_size)
    except gexc.GoogleAPICallError as exc:
        logger.error(f"[ACTION] Failed to clean up offers for request {request_id}: {exc}",
                     requestId=request_id)
        return 0
    logger.info(f"[ACTION] Deleted {deleted} offers.", requestId=request_id)
    return deleted


def process_action(
    store: DocumentStore,
    request_id: str,
    action_id: str,
    settings: Optional[Settings] = None,
) -> ActionOutcome:
    settings = settings or Settings()
    logger.info(f"[ACTION] Processing action {action_id} for request {request_id}",
                requestId=request_id, actionId=action_id)
    try:
        outcome = store.run_transaction(lambda txn: _apply_action(txn, store, request_id, action_id))
    except LifecycleError as err:
        logger.error(f"[ACTION] Transaction failed for action {action_id}: {err.message}",
                     requestId=request_id, actionId=action_id, code=err.code.value)
        _record_error(store, request_id, action_id, err)
        return ActionOutcome(ActionStatus.ERROR, error=err)
    except gexc.GoogleAPICallError as exc:
        # commit-time failures (NotFound on a write, Aborted after the retry budget)
        err = LifecycleError(
            ErrorCode.ERR_INTERNAL,
            f"Failed to apply action: {exc.message}",
            details={"grpcStatus": type(exc).__name__},
        )
        logger.error(f"[ACTION] Transaction failed for action {action_id}: {exc}",
                     requestId=request_id, actionId=action_id, code=err.code.value)
        _record_error(store, request_id, action_id, err)
        return ActionOutcome(ActionStatus.ERROR, error=err)

    if outcome.skipped:
        logger.info(f"[ACTION] Action {action_id} already {outcome.status.value}; nothing to do.",
                    requestId=request_id, actionId=action_id)
        return outcome

    logger.info(f"[ACTION] Transaction committed for action '{outcome.action_type.value}'.",
                requestId=request_id, actionId=action_id,
                status=outcome.new_status.value if outcome.new_status else None)
    if outcome.clear_offers:
        clear_offers(store, request_id, settings.batch_size)
    return outcome
