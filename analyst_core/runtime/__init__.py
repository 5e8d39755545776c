"""
Service runtime layer for the file analyst agent.

This package provides shared infrastructure for reliability and observability:
- RunContext: Run-scoped context with correlation IDs
- ServiceError: Standardized errors with retry semantics
- ServiceHttpClient: Pooled async HTTP client with automatic headers
- RetryPolicy: Configurable retry behavior
"""

from .context import RunContext
from .errors import ErrorCode, ServiceError, RetryableError, TerminalError
from .http_client import ServiceHttpClient
from .retry import RetryPolicy, sync_with_retry, with_retry

__all__ = [
    "RunContext",
    "ErrorCode",
    "ServiceError",
    "RetryableError",
    "TerminalError",
    "ServiceHttpClient",
    "RetryPolicy",
    "sync_with_retry",
    "with_retry",
]
