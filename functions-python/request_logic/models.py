"""
Document shapes shared by the triggers.

Status fields travel as plain strings in Firestore so the mobile client can
read them directly; inside the backend they are always converted to the
enums below before any decision is made.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ErrorCode, LifecycleError

SYSTEM_SENDER = "system"


class RequestStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    PENDING_COMPLETION = "pending_completion"
    COMPLETED = "completed"


class ActionType(str, Enum):
    MAKE_OFFER = "make_offer"
    ACCEPT_OFFER = "accept_offer"
    CANCEL_REQUEST = "cancel_request"
    MARK_COMPLETE = "mark_complete"
    MARK_NOT_COMPLETE = "mark_not_complete"
    CONFIRM_COMPLETE = "confirm_complete"


class ActionStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    ERROR = "error"


class OfferStatus(str, Enum):
    PENDING = "pending"


class CompensationType(str, Enum):
    FEE = "FEE"
    VOLUNTEER = "VOLUNTEER"


class MessageType(str, Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"


class SystemMessageType(str, Enum):
    OFFER_ACCEPTED = "offer_accepted"
    REQUEST_CANCELLED = "request_cancelled"
    JOB_COMPLETED = "job_completed"
    JOB_NOT_COMPLETED = "job_not_completed"
    JOB_CONFIRMED = "job_confirmed"
    STATUS_CHANGE = "status_change"


class ReviewState(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


HELPER_BADGES = ("skilled", "punctual", "friendly", "communicator", "above_beyond")
REQUESTER_BADGES = ("clear_instructions", "respectful", "good_communicator", "prepared")
ALL_BADGES = frozenset(HELPER_BADGES + REQUESTER_BADGES)


def parse_status(value: Any) -> Optional[RequestStatus]:
    try:
        return RequestStatus(value)
    except ValueError:
        return None


def action_status(data: Optional[Dict[str, Any]]) -> ActionStatus:
    """Clients never write ``status``; a missing value means pending."""
    raw = (data or {}).get("status") or ActionStatus.PENDING.value
    try:
        return ActionStatus(raw)
    except ValueError:
        return ActionStatus.PENDING


class Action(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: ActionType
    created_by: str = Field(alias="createdBy", min_length=1)
    payload: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _lift_legacy_helper_id(cls, data: Any) -> Any:
        # older clients put helperId next to type instead of inside payload
        if isinstance(data, dict) and data.get("helperId") and "helperId" not in (data.get("payload") or {}):
            data = dict(data)
            data["payload"] = {**(data.get("payload") or {}), "helperId": data["helperId"]}
        return data

    @property
    def helper_id(self) -> Optional[str]:
        value = self.payload.get("helperId")
        return value if isinstance(value, str) and value else None

    @classmethod
    def from_document(cls, data: Optional[Dict[str, Any]]) -> "Action":
        try:
            return cls.model_validate(data or {})
        except ValidationError as exc:
            raise LifecycleError(
                ErrorCode.ERR_INVALID_ACTION,
                f"Invalid action document: {exc.errors()[0].get('msg', 'malformed')}.",
                details={"errors": [e.get("loc") for e in exc.errors()]},
            ) from exc


class Review(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    request_id: str = Field(alias="requestId", min_length=1)
    reviewer_id: str = Field(alias="reviewerId", min_length=1)
    reviewee_id: str = Field(alias="revieweeId", min_length=1)
    sentiment: Optional[str] = None
    badges: List[str] = Field(default_factory=list)

    @field_validator("badges")
    @classmethod
    def _known_badges(cls, badges: List[str]) -> List[str]:
        unknown = [b for b in badges if b not in ALL_BADGES]
        if unknown:
            raise ValueError(f"unknown badge ids: {', '.join(unknown)}")
        if len(set(badges)) != len(badges):
            raise ValueError("duplicate badge ids")
        return badges

    @classmethod
    def from_document(cls, data: Optional[Dict[str, Any]], max_badges: int) -> "Review":
        try:
            review = cls.model_validate(data or {})
        except ValidationError as exc:
            raise LifecycleError(
                ErrorCode.ERR_INVALID_REVIEW,
                f"Invalid review document: {exc.errors()[0].get('msg', 'malformed')}.",
            ) from exc
        if len(review.badges) > max_badges:
            raise LifecycleError(
                ErrorCode.ERR_INVALID_REVIEW,
                f"A review may carry at most {max_badges} badges.",
                details={"badges": len(review.badges)},
            )
        if review.reviewer_id == review.reviewee_id:
            raise LifecycleError(ErrorCode.ERR_INVALID_REVIEW, "Users cannot review themselves.")
        return review
