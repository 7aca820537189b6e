from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    ERR_INTERNAL = "ERR_INTERNAL"
    ERR_INVALID_ACTION = "ERR_INVALID_ACTION"
    ERR_INVALID_REVIEW = "ERR_INVALID_REVIEW"
    ERR_REQUEST_NOT_FOUND = "ERR_REQUEST_NOT_FOUND"
    ERR_PROFILE_NOT_FOUND = "ERR_PROFILE_NOT_FOUND"
    ERR_WRONG_STATUS = "ERR_WRONG_STATUS"
    ERR_NOT_AUTHORIZED = "ERR_NOT_AUTHORIZED"
    ERR_OWN_REQUEST = "ERR_OWN_REQUEST"
    ERR_INPUT_MISSING = "ERR_INPUT_MISSING"
    ERR_ILLEGAL_TRANSITION = "ERR_ILLEGAL_TRANSITION"


class LifecycleError(Exception):
    """Raised when an action or review violates a precondition.

    Attributes:
        code: ErrorCode enum
        message: human readable text, recorded on the action document
        details: optional structured data (e.g. {'status': 'open'})
    """

    def __init__(
        self,
        code: ErrorCode,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message or code.value
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code.value, "message": self.message, "details": self.details}
