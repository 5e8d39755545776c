"""External service clients used by the evaluation harness."""
