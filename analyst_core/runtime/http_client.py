"""
Shared async HTTP client for calls to external services.

This module provides a pooled HTTP client that injects correlation and
bearer-token headers and retries transient failures.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
from loguru import logger

from .context import RunContext
from .errors import ErrorCode, RetryableError, ServiceError, TerminalError
from .retry import RetryPolicy

_TERMINAL_STATUS = {
    401: (ErrorCode.UNAUTHORIZED, "Unauthorized"),
    403: (ErrorCode.FORBIDDEN, "Forbidden"),
    404: (ErrorCode.NOT_FOUND, "Resource not found"),
}


class ServiceHttpClient:
    """Shared HTTP client for external service communication.

    Features:
    - Connection pooling via httpx.AsyncClient
    - Automatic header injection (X-Request-Id, X-Task-Id, Authorization)
    - Retry on transient failures (429, 502, 503, 504, timeouts, connect errors)
    - Structured error conversion

    Example:
        client = ServiceHttpClient("https://benchmark.example", auth_token="hf_...")
        async with client:
            response = await client.get("/random-question", context)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        retry_policy: RetryPolicy | None = None,
        auth_token: str | None = None,
        user_agent: str | None = None,
        max_connections: int = 20,
        max_keepalive: int = 5,
    ):
        """Initialize the HTTP client.

        Args:
            base_url: Base URL for all requests.
            timeout: Default timeout in seconds.
            retry_policy: Retry configuration. Uses default if None.
            auth_token: Optional bearer token sent with every request.
            user_agent: Optional User-Agent identifying this service.
            max_connections: Maximum total connections in pool.
            max_keepalive: Maximum keepalive connections.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.auth_token = auth_token
        self.user_agent = user_agent

        self._limits = httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive,
            keepalive_expiry=30.0,
        )
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                limits=self._limits,
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release connections."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ServiceHttpClient":
        await self._get_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _build_url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _build_headers(self, context: RunContext, extra: dict[str, str] | None) -> dict[str, str]:
        headers = dict(extra or {})
        headers.update(context.get_headers())
        if self.user_agent:
            headers.setdefault("User-Agent", self.user_agent)
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        status = response.status_code
        if status >= 500:
            raise RetryableError(
                code=ErrorCode.SERVICE_UNAVAILABLE,
                message_safe=f"Service returned {status}",
                message_debug=response.text[:500] if response.text else None,
            )
        if status in _TERMINAL_STATUS:
            code, message = _TERMINAL_STATUS[status]
            raise TerminalError(code=code, message_safe=message)
        if status >= 400:
            raise TerminalError(
                code=ErrorCode.INVALID_INPUT,
                message_safe=f"Request failed with status {status}",
                message_debug=response.text[:500] if response.text else None,
            )

    async def request(
        self,
        method: str,
        path: str,
        context: RunContext,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make an HTTP request with automatic header injection and retry.

        Args:
            method: HTTP method (GET, POST, etc.).
            path: Request path.
            context: RunContext for header injection and correlation.
            **kwargs: Additional arguments passed to httpx.

        Returns:
            The HTTP response.

        Raises:
            RetryableError: For transient failures after max retries.
            TerminalError: For permanent failures (4xx, etc.).
            ServiceError: For other errors.
        """
        client = await self._get_client()
        url = self._build_url(path)
        headers = self._build_headers(context, kwargs.pop("headers", None))
        attempts = self.retry_policy.max_attempts
        log = logger.bind(request_id=context.request_id)

        for attempt in range(attempts):
            last_attempt = attempt + 1 >= attempts
            try:
                response = await client.request(method=method, url=url, headers=headers, **kwargs)
            except httpx.TimeoutException as e:
                if last_attempt:
                    raise RetryableError(
                        code=ErrorCode.TIMEOUT,
                        message_safe=f"Request timed out after {self.timeout}s",
                        cause=e,
                    )
                reason = "Timeout"
            except httpx.ConnectError as e:
                if last_attempt:
                    raise RetryableError(
                        code=ErrorCode.CONNECTION_ERROR,
                        message_safe="Failed to connect to service",
                        cause=e,
                    )
                reason = "Connection error"
            except Exception as e:
                log.error(f"Unexpected error: {e}")
                raise ServiceError(
                    code=ErrorCode.INTERNAL_ERROR,
                    message_safe="Unexpected error during request",
                    message_debug=str(e),
                    cause=e,
                )
            else:
                if not (self.retry_policy.should_retry_status(response.status_code) and not last_attempt):
                    self._raise_for_status(response)
                    return response
                reason = f"status={response.status_code}"

            delay = self.retry_policy.calculate_delay(attempt)
            log.info(f"Retry {attempt + 1}/{attempts} for {method} {path} ({reason}) in {delay:.2f}s")
            await asyncio.sleep(delay)

        raise RuntimeError("Retry loop exited unexpectedly")

    async def get(self, path: str, context: RunContext, **kwargs: Any) -> httpx.Response:
        """Make a GET request."""
        return await self.request("GET", path, context, **kwargs)

    async def post(self, path: str, context: RunContext, **kwargs: Any) -> httpx.Response:
        """Make a POST request."""
        return await self.request("POST", path, context, **kwargs)
