"""
Run-scoped context for agent runs and outbound service calls.

RunContext carries the correlation ID of one agent run (and, for the
evaluation harness, the benchmark task it answers) so log lines and
HTTP requests belonging to the same run can be tied together.
"""

from __future__ import annotations

import uuid

from pydantic import BaseModel


class RunContext(BaseModel):
    """Run-scoped context.

    Attributes:
        request_id: Unique identifier for run tracing.
        task_id: Optional benchmark task the run answers.
    """

    request_id: str
    task_id: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def new(cls, task_id: str | None = None) -> "RunContext":
        """Create a context with a fresh request_id."""
        return cls(request_id=uuid.uuid4().hex[:12], task_id=task_id)

    def for_task(self, task_id: str) -> "RunContext":
        """Return a copy bound to a benchmark task."""
        return self.model_copy(update={"task_id": task_id})

    def get_headers(self) -> dict[str, str]:
        """Get HTTP headers for propagating context."""
        headers = {"X-Request-Id": self.request_id}
        if self.task_id:
            headers["X-Task-Id"] = self.task_id
        return headers
