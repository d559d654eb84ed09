'''
    Error taxonomy for the delivery engine.

    Every failure the core reports carries an ErrorKind so the transport
    layer can map it to a socket error frame or an HTTP status without
    inspecting messages. Failures are raised as ChatError subclasses inside
    the core and surfaced as SendResult values at the send boundary.
'''

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from messenger.models.message import MessageRecord


class ErrorKind(str, Enum):
    VALIDATION = "ValidationError"
    ACCESS_DENIED = "AccessDenied"
    RECIPIENT_BLOCKED = "RecipientBlocked"
    NOT_FOUND = "NotFound"
    TRANSIENT_STORE_FAILURE = "TransientStoreFailure"


class ChatError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION
    retryable: bool = False

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.kind.value)
        self.detail = detail or self.kind.value


class ValidationFailed(ChatError):
    kind = ErrorKind.VALIDATION


class AccessDenied(ChatError):
    kind = ErrorKind.ACCESS_DENIED


class RecipientBlocked(AccessDenied):
    kind = ErrorKind.RECIPIENT_BLOCKED


class NotFound(ChatError):
    kind = ErrorKind.NOT_FOUND


class TransientStoreFailure(ChatError):
    kind = ErrorKind.TRANSIENT_STORE_FAILURE
    retryable = True


_RETRYABLE = {ErrorKind.TRANSIENT_STORE_FAILURE}


@dataclass(frozen=True)
class SendResult:
    """Outcome of a send: the persisted message, or the reason it was refused."""

    message: Optional["MessageRecord"] = None
    error: Optional[ErrorKind] = None
    detail: str = ""
    duplicate: bool = False

    @classmethod
    def ok(cls, message: "MessageRecord", duplicate: bool = False) -> "SendResult":
        return cls(message=message, duplicate=duplicate)

    @classmethod
    def err(cls, kind: ErrorKind, detail: str = "") -> "SendResult":
        return cls(error=kind, detail=detail or kind.value)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    @property
    def retryable(self) -> bool:
        return self.error in _RETRYABLE

    def to_payload(self) -> Dict[str, Any]:
        if self.is_ok:
            return {"ok": True, "message": self.message.to_public()}
        return {
            "ok": False,
            "code": self.error.value,
            "message": self.detail,
            "retryable": self.retryable,
        }
