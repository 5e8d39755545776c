"""
Agent error taxonomy.

Every failure kind the control loop can surface, mapped onto the
ServiceError hierarchy so callers can branch on ``code`` or ``retryable``.
"""

from __future__ import annotations

from typing import Iterable

from analyst_core.runtime.errors import ErrorCode, RetryableError, ServiceError, TerminalError


class AgentError(ServiceError):
    """Base shared by every agent failure kind; catch it to handle the whole family."""


class BackendUnavailable(AgentError, RetryableError):
    """The reasoning backend could not be reached or answered with a transport error."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(
            code=ErrorCode.BACKEND_UNAVAILABLE,
            message_safe=message,
            message_debug=repr(cause) if cause else None,
            cause=cause,
        )


_REJECTION_CODES = {
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
}


class BackendRejected(AgentError, TerminalError):
    """The reasoning backend refused the request (bad key, unknown model, invalid payload)."""

    def __init__(self, status_code: int, message: str, cause: Exception | None = None):
        self.status_code = status_code
        super().__init__(
            code=_REJECTION_CODES.get(status_code, ErrorCode.INVALID_INPUT),
            message_safe=message,
            message_debug=repr(cause) if cause else None,
            cause=cause,
        )


class MalformedModelOutput(AgentError, TerminalError):
    """The backend answered, but not with a usable assistant message."""

    def __init__(self, message: str, raw: str | None = None):
        super().__init__(
            code=ErrorCode.MALFORMED_MODEL_OUTPUT,
            message_safe=message,
            message_debug=raw[:500] if raw else None,
        )


class EmptyModelResponse(AgentError, TerminalError):
    """The backend produced no message at all."""

    def __init__(self, message: str = "Reasoning backend returned no message"):
        super().__init__(code=ErrorCode.EMPTY_MODEL_RESPONSE, message_safe=message)


class UnknownTool(AgentError, TerminalError):
    """A tool invocation named a tool that is not registered."""

    def __init__(self, tool_name: str, available: Iterable[str] = ()):
        self.tool_name = tool_name
        self.available = sorted(available)
        super().__init__(
            code=ErrorCode.UNKNOWN_TOOL,
            message_safe=(
                f"Unknown tool '{tool_name}'. "
                f"Available tools: {', '.join(self.available) or '(none)'}"
            ),
        )


class InvalidArguments(AgentError, TerminalError):
    """Tool arguments failed validation against the tool's input schema."""

    def __init__(self, tool_name: str, problems: list[str]):
        self.tool_name = tool_name
        self.problems = problems
        super().__init__(
            code=ErrorCode.INVALID_ARGUMENTS,
            message_safe=f"Invalid arguments for tool '{tool_name}': {'; '.join(problems)}",
        )


class ToolExecutionFailed(AgentError, TerminalError):
    """A tool implementation raised instead of returning an error string."""

    def __init__(self, tool_name: str, cause: Exception):
        self.tool_name = tool_name
        super().__init__(
            code=ErrorCode.TOOL_EXECUTION_FAILED,
            message_safe=f"Tool '{tool_name}' failed unexpectedly: {type(cause).__name__}: {cause}",
            cause=cause,
        )


class RecursionLimitExceeded(AgentError, TerminalError):
    """The run needed more Decision-Step entries than the configured ceiling."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(
            code=ErrorCode.RECURSION_LIMIT_EXCEEDED,
            message_safe=f"Recursion limit of {limit} decisions reached without a final answer",
        )
