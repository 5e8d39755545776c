from .benchmark import BenchmarkClient, BenchmarkQuestion, SubmissionResult

__all__ = [
    "BenchmarkClient",
    "BenchmarkQuestion",
    "SubmissionResult",
]
