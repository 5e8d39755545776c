"""
Benchmark Service HTTP Client.

Fetches evaluation questions and their attached files, and submits
answers for scoring, using the ServiceHttpClient from analyst_core.runtime.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import aiofiles
from loguru import logger
from pydantic import BaseModel

from analyst_core.config import settings
from analyst_core.runtime import RunContext, ServiceHttpClient


class BenchmarkQuestion(BaseModel):
    """One evaluation task."""

    task_id: str
    question: str
    file_name: str | None = None

    @property
    def has_file(self) -> bool:
        return bool(self.file_name)


class SubmissionResult(BaseModel):
    """Verdict for a submitted answer."""

    correct: bool = False
    score: float | None = None

    model_config = {"extra": "allow"}


class BenchmarkClient:
    """Async client for the benchmark service.

    Every request carries the bearer token; transient failures (429,
    5xx, timeouts) are retried by ServiceHttpClient.

    Example:
        async with BenchmarkClient(token="hf_...") as client:
            question = await client.get_random_question()
            ...
            result = await client.submit(question.task_id, "42")
    """

    def __init__(
        self,
        token: str,
        base_url: str | None = None,
        timeout: float | None = None,
    ):
        """Initialize the Benchmark client.

        Args:
            token: Bearer token for the benchmark service.
            base_url: Base URL of the service. Defaults to BENCHMARK_API_BASE.
            timeout: Request timeout in seconds. Defaults to BENCHMARK_TIMEOUT_SECONDS.
        """
        if not token:
            raise ValueError("A benchmark token is required (set HF_TOKEN)")
        self._http = ServiceHttpClient(
            base_url=base_url or settings.BENCHMARK_API_BASE,
            timeout=timeout or settings.BENCHMARK_TIMEOUT_SECONDS,
            auth_token=token,
            user_agent=settings.SERVICE_NAME,
        )

    async def close(self) -> None:
        """Close the HTTP client and release connections."""
        await self._http.close()

    async def __aenter__(self) -> "BenchmarkClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def get_random_question(self, context: RunContext | None = None) -> BenchmarkQuestion:
        """Fetch a random evaluation question."""
        ctx = context or RunContext.new()
        response = await self._http.get("/random-question", ctx)
        question = BenchmarkQuestion.model_validate(response.json())
        logger.bind(request_id=ctx.request_id).info(f"Question {question.task_id}: {question.question[:100]}")
        return question

    async def download_file(
        self,
        task_id: str,
        file_name: str,
        dest_dir: str | Path,
        context: RunContext | None = None,
    ) -> Path:
        """Download the file attached to a task into `dest_dir`.

        Returns:
            Path of the written file.
        """
        ctx = context or RunContext.new(task_id=task_id)
        response = await self._http.get(f"/files/{task_id}", ctx)

        dest = Path(dest_dir)
        dest.mkdir(parents=True, exist_ok=True)
        # Base name only: the file must land inside dest_dir
        path = dest / Path(file_name).name
        async with aiofiles.open(path, "wb") as f:
            await f.write(response.content)

        logger.bind(request_id=ctx.request_id).info(f"Downloaded {path.name} ({len(response.content)} bytes)")
        return path

    async def submit(
        self,
        task_id: str,
        answer: str,
        context: RunContext | None = None,
    ) -> SubmissionResult:
        """Submit an answer; the answer is sent trimmed."""
        ctx = context or RunContext.new(task_id=task_id)
        response = await self._http.post(
            "/submit",
            ctx,
            json={"task_id": task_id, "answer": answer.strip()},
        )
        result = SubmissionResult.model_validate(response.json())
        logger.bind(request_id=ctx.request_id).info(
            f"Submission for {task_id}: correct={result.correct}, score={result.score}"
        )
        return result
