"""
Tagged result values passed between validation, rate limiting, workflows and
route handlers.

Expected outcomes (validation failures, duplicates, expired tokens, provider
failures) are returned as Err instead of raised; exceptions are reserved for
programming errors and unrecoverable infrastructure failures.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """
    Successful outcome.

    Attributes:
        value: Payload rendered under "data"
        status_code: HTTP status for the response
        code: Optional machine-readable outcome code (e.g. "EMAIL_SENT")
        message: Optional human-readable message
    """
    value: T
    status_code: int = 200
    code: Optional[str] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """
    Failed outcome.

    Attributes:
        code: Machine-readable error code (e.g. "TOKEN_NOT_FOUND")
        message: Human-readable error message
        status_code: HTTP status for the response
        details: Extra top-level envelope fields (e.g. emailSent, messageId)
    """
    code: str
    message: str
    status_code: int = 400
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]
