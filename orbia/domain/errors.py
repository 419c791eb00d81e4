from typing import Any, Dict, Optional
from enum import Enum


class ErrorCode(str, Enum):
    """Error taxonomy shared by tools, stores, the executor and the HTTP layer"""
    UNAUTHENTICATED = "UNAUTHENTICATED"
    NO_ACCOUNT_LINKED = "NO_ACCOUNT_LINKED"
    INVALID_TOKEN = "INVALID_TOKEN"
    INVALID_REQUEST = "INVALID_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


HTTP_STATUS_BY_CODE: Dict[ErrorCode, int] = {
    ErrorCode.UNAUTHENTICATED: 401,
    ErrorCode.NO_ACCOUNT_LINKED: 400,
    ErrorCode.INVALID_TOKEN: 401,
    ErrorCode.INVALID_REQUEST: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.UPSTREAM_ERROR: 502,
    ErrorCode.INTERNAL_ERROR: 500,
}


class OrbiaError(Exception):
    """Base class for errors that carry a taxonomy code"""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        details: Optional[Any] = None,
        fields: Optional[Dict[str, str]] = None
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details
        self.fields = fields

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_CODE.get(self.code, 500)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code.value}
        if self.details is not None:
            body["details"] = self.details
        if self.fields:
            body["fields"] = self.fields
        return body


class InvalidRequestError(OrbiaError):
    code = ErrorCode.INVALID_REQUEST


class UnauthenticatedError(OrbiaError):
    code = ErrorCode.UNAUTHENTICATED


class MemoryNotFoundError(OrbiaError):
    code = ErrorCode.NOT_FOUND


class ThreadNotFoundError(OrbiaError):
    code = ErrorCode.NOT_FOUND


class StoreTimeoutError(OrbiaError):
    """A store operation exceeded its timeout"""
    code = ErrorCode.UPSTREAM_ERROR


class StoreUnavailableError(OrbiaError):
    """A store or embedding back-end call failed"""
    code = ErrorCode.UPSTREAM_ERROR


class CheckpointConflictError(OrbiaError):
    """Optimistic version check failed on checkpoint save"""

    def __init__(self, thread_id: str, expected_version: Optional[int], current_version: Optional[int]):
        super().__init__(
            f"Checkpoint for thread {thread_id} changed concurrently",
            details={"expected_version": expected_version, "current_version": current_version}
        )
        self.thread_id = thread_id
        self.expected_version = expected_version
        self.current_version = current_version


class ThreadConflictError(OrbiaError):
    """A thread already exists for the user (uniqueness constraint)"""


class CredentialError(OrbiaError):
    """The credential provider could not produce a usable token"""
    code = ErrorCode.INVALID_TOKEN


class AgentExecutionError(OrbiaError):
    """Single structured error surfaced by an agent invocation"""
