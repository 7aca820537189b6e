"""
Request lifecycle rules.

This module encapsulates the state machine of a help request in a testable
manner, independent of Firestore: every action type has a planner that
validates the action against the request state re-read inside the
transaction and returns the writes to make as a ``Transition``. Planners are
pure, so the store may re-run them freely when a transaction is retried.

    open -> in_progress -> pending_completion -> completed
                 |
                 +-> open   (cancel_request)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from firebase_admin import firestore as admin_fs

from .errors import ErrorCode, LifecycleError
from .models import (
    SYSTEM_SENDER,
    Action,
    ActionType,
    MessageType,
    OfferStatus,
    RequestStatus,
    SystemMessageType,
    parse_status,
)

TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    RequestStatus.OPEN: frozenset({RequestStatus.IN_PROGRESS}),
    RequestStatus.IN_PROGRESS: frozenset({RequestStatus.PENDING_COMPLETION, RequestStatus.OPEN}),
    RequestStatus.PENDING_COMPLETION: frozenset({RequestStatus.COMPLETED}),
    RequestStatus.COMPLETED: frozenset(),
}

# statuses in which responderId must be set
ASSIGNED_STATUSES = frozenset(
    {RequestStatus.IN_PROGRESS, RequestStatus.PENDING_COMPLETION, RequestStatus.COMPLETED}
)


def can_transition(src: Optional[RequestStatus], dst: RequestStatus) -> bool:
    return src is not None and dst in TRANSITIONS[src]


def check_transition(src: Optional[RequestStatus], dst: RequestStatus) -> None:
    if not can_transition(src, dst):
        raise LifecycleError(
            ErrorCode.ERR_ILLEGAL_TRANSITION,
            f"Illegal status transition from {src.value if src else None} to {dst.value}.",
            details={"from": src.value if src else None, "to": dst.value},
        )


@dataclass
class RequestState:
    """What a planner may look at: documents re-read inside the transaction."""

    request_id: str
    request: Dict[str, Any]
    chat: Optional[Dict[str, Any]] = None
    # only profiles that exist are present
    profiles: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def status(self) -> Optional[RequestStatus]:
        return parse_status(self.request.get("status"))

    @property
    def owner_id(self) -> Optional[str]:
        return self.request.get("userId")

    @property
    def responder_id(self) -> Optional[str]:
        return self.request.get("responderId")


@dataclass
class SystemMessage:
    text: str
    system_type: SystemMessageType
    summary: str

    def to_document(self) -> Dict[str, Any]:
        return {
            "senderId": SYSTEM_SENDER,
            "text": self.text,
            "timestamp": admin_fs.SERVER_TIMESTAMP,
            "type": MessageType.SYSTEM.value,
            "systemType": self.system_type.value,
        }


@dataclass
class Transition:
    new_status: Optional[RequestStatus] = None
    request_update: Dict[str, Any] = field(default_factory=dict)
    offer: Optional[Tuple[str, Dict[str, Any]]] = None
    chat_create: Optional[Dict[str, Any]] = None
    chat_update: Dict[str, Any] = field(default_factory=dict)
    system_message: Optional[SystemMessage] = None
    # user id -> {field: delta}
    increments: Dict[str, Dict[str, int]] = field(default_factory=dict)
    clear_offers: bool = False


def _require_status(state: RequestState, expected: RequestStatus, what: str) -> None:
    if state.status is not expected:
        current = state.request.get("status")
        raise LifecycleError(
            ErrorCode.ERR_WRONG_STATUS,
            f"Cannot {what}. Current status: {current}.",
            details={"status": current, "expected": expected.value},
        )


def _require_actor(actual: str, expected: Optional[str], message: str) -> None:
    if not expected or actual != expected:
        raise LifecycleError(ErrorCode.ERR_NOT_AUTHORIZED, message, details={"user": actual})


def _move_to(state: RequestState, transition: Transition, dst: RequestStatus) -> Transition:
    check_transition(state.status, dst)
    transition.new_status = dst
    transition.request_update["status"] = dst.value
    return transition


def _post(state: RequestState, transition: Transition, message: SystemMessage) -> Transition:
    """Attach a system message when the request has a chat."""
    if state.chat is None:
        return transition
    transition.system_message = message
    transition.chat_update.update(
        {"lastMessage": message.summary, "lastMessageTimestamp": admin_fs.SERVER_TIMESTAMP}
    )
    return transition


# -------------------------
# Planners
# -------------------------

def plan_make_offer(action: Action, state: RequestState) -> Transition:
    _require_status(state, RequestStatus.OPEN, "make an offer on a request that is not open")
    helper_id = action.created_by
    if helper_id == state.owner_id:
        raise LifecycleError(ErrorCode.ERR_OWN_REQUEST, "User cannot make an offer on their own request.")
    profile = state.profiles.get(helper_id)
    if profile is None:
        raise LifecycleError(ErrorCode.ERR_PROFILE_NOT_FOUND, f"Helper profile {helper_id} not found.")

    offer = {
        "helperId": helper_id,
        "helperName": profile.get("name", ""),
        "helperPhotoUrl": profile.get("photoUrl", ""),
        "status": OfferStatus.PENDING.value,
        "createdAt": admin_fs.SERVER_TIMESTAMP,
    }
    return Transition(offer=(helper_id, offer))


def plan_accept_offer(action: Action, state: RequestState) -> Transition:
    _require_status(state, RequestStatus.OPEN, "accept an offer on this request")
    owner_id = state.owner_id
    _require_actor(
        action.created_by, owner_id,
        f"User {action.created_by} is not authorized to accept offers for this request.",
    )
    helper_id = action.helper_id
    if not helper_id:
        raise LifecycleError(ErrorCode.ERR_INPUT_MISSING, "Missing 'helperId' in action data for 'accept_offer'.")
    if helper_id == owner_id:
        raise LifecycleError(ErrorCode.ERR_OWN_REQUEST, "The requester cannot accept their own offer.")
    requester = state.profiles.get(owner_id)
    responder = state.profiles.get(helper_id)
    if requester is None or responder is None:
        raise LifecycleError(ErrorCode.ERR_PROFILE_NOT_FOUND, "Requester or chosen responder profile not found.")

    participants = [owner_id, helper_id]
    transition = _move_to(state, Transition(clear_offers=True), RequestStatus.IN_PROGRESS)
    transition.request_update.update(
        {
            "responderId": helper_id,
            "responderName": responder.get("name", ""),
            "participants": participants,
        }
    )

    text = f"{requester.get('name') or 'The requester'} accepted the offer! You can now chat."
    message = SystemMessage(text, SystemMessageType.OFFER_ACCEPTED, text)
    transition.system_message = message
    transition.chat_create = {
        "participants": participants,
        "participantInfo": {
            owner_id: {"name": requester.get("name", ""), "photoUrl": requester.get("photoUrl") or ""},
            helper_id: {"name": responder.get("name", ""), "photoUrl": responder.get("photoUrl") or ""},
        },
        "createdAt": admin_fs.SERVER_TIMESTAMP,
        "lastMessage": message.text,
        "lastMessageTimestamp": admin_fs.SERVER_TIMESTAMP,
        "requestId": state.request_id,
        "requestStatus": RequestStatus.IN_PROGRESS.value,
        "helperId": helper_id,
        "requesterId": owner_id,
        "deletedBy": [],
        "unreadCount": {owner_id: 0, helper_id: 0},
    }
    return transition


def plan_cancel_request(action: Action, state: RequestState) -> Transition:
    _require_status(state, RequestStatus.IN_PROGRESS, "cancel a request that is not in progress")
    _require_actor(action.created_by, state.owner_id, "Only the requester can cancel.")

    transition = _move_to(state, Transition(), RequestStatus.OPEN)
    transition.request_update.update(
        {
            "responderId": None,
            "responderName": None,
            "participants": admin_fs.DELETE_FIELD,
        }
    )
    text = "The requester has canceled this job. The request is now open for other helpers."
    return _post(state, transition, SystemMessage(text, SystemMessageType.REQUEST_CANCELLED, text))


def plan_mark_complete(action: Action, state: RequestState) -> Transition:
    _require_status(state, RequestStatus.IN_PROGRESS, "mark complete")
    _require_actor(action.created_by, state.responder_id, f"User {action.created_by} is not the assigned helper.")

    transition = _move_to(state, Transition(), RequestStatus.PENDING_COMPLETION)
    name = state.request.get("responderName") or "The helper"
    return _post(
        state,
        transition,
        SystemMessage(
            f"{name} (the helper) has marked this job as complete. Please confirm to finalize the request.",
            SystemMessageType.JOB_COMPLETED,
            "Job marked as complete",
        ),
    )


def plan_mark_not_complete(action: Action, state: RequestState) -> Transition:
    _require_status(state, RequestStatus.IN_PROGRESS, "mark not complete")
    _require_actor(
        action.created_by, state.responder_id, "Only the assigned helper can mark a job as not complete."
    )

    # status stays in_progress
    name = state.request.get("responderName") or "The helper"
    return _post(
        state,
        Transition(),
        SystemMessage(
            f"{name} (the helper) has marked this job as not complete. Please discuss any issues.",
            SystemMessageType.JOB_NOT_COMPLETED,
            "Job marked as not complete",
        ),
    )


def plan_confirm_complete(action: Action, state: RequestState) -> Transition:
    _require_status(state, RequestStatus.PENDING_COMPLETION, "confirm completion")
    _require_actor(
        action.created_by, state.owner_id, f"User {action.created_by} is not authorized to confirm completion."
    )
    responder_id = state.responder_id
    if not state.owner_id or not responder_id:
        raise LifecycleError(ErrorCode.ERR_INPUT_MISSING, "Missing user IDs on request document.")
    if responder_id not in state.profiles:
        raise LifecycleError(
            ErrorCode.ERR_PROFILE_NOT_FOUND,
            f"Helper profile {responder_id} not found.",
            details={"user": responder_id},
        )

    transition = _move_to(state, Transition(), RequestStatus.COMPLETED)
    transition.increments[responder_id] = {"helpsCompleted": 1}
    transition = _post(
        state,
        transition,
        SystemMessage(
            "Job confirmed and completed! This chat is now archived.",
            SystemMessageType.JOB_CONFIRMED,
            "Job completed",
        ),
    )
    if state.chat is not None:
        transition.chat_update["archived"] = True
    return transition


_PLANNERS: Dict[ActionType, Callable[[Action, RequestState], Transition]] = {
    ActionType.MAKE_OFFER: plan_make_offer,
    ActionType.ACCEPT_OFFER: plan_accept_offer,
    ActionType.CANCEL_REQUEST: plan_cancel_request,
    ActionType.MARK_COMPLETE: plan_mark_complete,
    ActionType.MARK_NOT_COMPLETE: plan_mark_not_complete,
    ActionType.CONFIRM_COMPLETE: plan_confirm_complete,
}

_missing = set(ActionType) - set(_PLANNERS)
if _missing:
    raise RuntimeError(f"No planner for action types: {sorted(t.value for t in _missing)}")

_CHAT_ACTIONS = frozenset(
    {
        ActionType.CANCEL_REQUEST,
        ActionType.MARK_COMPLETE,
        ActionType.MARK_NOT_COMPLETE,
        ActionType.CONFIRM_COMPLETE,
    }
)


def reads_for(action: Action, request: Dict[str, Any]) -> Tuple[List[str], bool]:
    """Return (profile ids to read, whether the chat must be read) for an action."""
    if action.type is ActionType.MAKE_OFFER:
        return [action.created_by], False
    if action.type is ActionType.ACCEPT_OFFER:
        ids = [uid for uid in (request.get("userId"), action.helper_id) if uid]
        return list(dict.fromkeys(ids)), False
    if action.type is ActionType.CONFIRM_COMPLETE:
        responder_id = request.get("responderId")
        return ([responder_id] if responder_id else []), True
    return [], action.type in _CHAT_ACTIONS


def plan(action: Action, state: RequestState) -> Transition:
    return _PLANNERS[action.type](action, state)
