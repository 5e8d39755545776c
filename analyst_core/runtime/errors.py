"""
Error model shared by the agent and its service clients.

Every failure carries a machine-readable code and a retry classification,
so the control loop and the HTTP client can decide whether trying again
makes sense without inspecting exception types.
"""

from __future__ import annotations

import uuid
from typing import Any


class ErrorCode:
    """Error codes used across the project. Each code equals its own name."""

    # Transport
    TIMEOUT = "TIMEOUT"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"

    # Reasoning backend
    BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"
    MALFORMED_MODEL_OUTPUT = "MALFORMED_MODEL_OUTPUT"
    EMPTY_MODEL_RESPONSE = "EMPTY_MODEL_RESPONSE"

    # Tool dispatch
    UNKNOWN_TOOL = "UNKNOWN_TOOL"
    INVALID_ARGUMENTS = "INVALID_ARGUMENTS"
    TOOL_EXECUTION_FAILED = "TOOL_EXECUTION_FAILED"
    TOOL_REPORTED_ERROR = "TOOL_REPORTED_ERROR"
    REPEATED_FAILURE = "REPEATED_FAILURE"

    # Control loop
    RECURSION_LIMIT_EXCEEDED = "RECURSION_LIMIT_EXCEEDED"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class ServiceError(Exception):
    """Base error with a code and a retry classification.

    Attributes:
        code: One of the ErrorCode values
        message_safe: Message fit for logs and for the reasoning backend
        message_debug: Extra detail (raw payloads, reprs), never shown to the backend
        retryable: Whether repeating the same operation may succeed
        cause: Underlying exception, if any
        debug_id: Short id for correlating a failure across log lines
    """

    retryable: bool = False

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        retryable: bool | None = None,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(message_safe)
        self.code = code
        self.message_safe = message_safe
        self.message_debug = message_debug
        if retryable is not None:
            self.retryable = retryable
        self.cause = cause
        self.debug_id = debug_id or uuid.uuid4().hex[:8]

    def __str__(self) -> str:
        return f"[{self.code}] {self.message_safe}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, message_safe={self.message_safe!r}, "
            f"retryable={self.retryable}, debug_id={self.debug_id!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Public fields only; message_debug stays out."""
        return {"code": self.code, "message": self.message_safe, "debug_id": self.debug_id}


class RetryableError(ServiceError):
    """Transient failure: timeouts, refused connections, 5xx, an unreachable backend."""

    retryable = True


class TerminalError(ServiceError):
    """Permanent failure: bad input, auth errors, contract violations by a collaborator."""

    retryable = False
