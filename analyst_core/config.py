"""
Unified configuration for the file analyst agent.

This module provides a single Settings class that consolidates all
environment variables used by the agent, its reasoning backends and the
evaluation harness.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

# Determine project root for .env file loading (allows running from any CWD)
PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """
    Unified settings for the file analyst agent.

    Environment variables are loaded from .env file and can be overridden
    by actual environment variables.
    """

    # Service identification
    SERVICE_NAME: str = "file-analyst"
    LOG_LEVEL: str = "INFO"

    # Reasoning backend (any OpenAI-compatible endpoint, LM Studio by default)
    LLM_BACKEND: Literal["langchain", "openai"] = "langchain"
    LLM_BASE_URL: str = "http://127.0.0.1:1234/v1"
    LLM_API_KEY: str = "lm-studio"
    LLM_MODEL_ID: str = "lmstudio-community/Qwen2.5-7B-Instruct-1M-GGUF"
    LLM_TEMPERATURE: float = 0.0
    LLM_MAX_TOKENS: int = 2048
    LLM_TIMEOUT_SECONDS: float = 120.0

    # Control loop
    AGENT_MAX_DECISIONS: int = 25
    AGENT_MAX_IDENTICAL_FAILURES: int = 2
    AGENT_PARALLEL_TOOLS: bool = False

    # Local input files
    DATA_DIR: str = "data-test"

    # document_deep_analyst
    DOCUMENT_CHUNK_SIZE: int = 1000
    DOCUMENT_CHUNK_OVERLAP: int = 200
    DOCUMENT_TOP_K: int = 4

    # Evaluation service
    BENCHMARK_API_BASE: str = "https://huggingface.co/spaces/gaia-benchmark/leaderboard"
    BENCHMARK_TIMEOUT_SECONDS: float = 60.0
    HF_TOKEN: str = ""

    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        extra="ignore"
    )


# Global settings instance
settings = Settings()  # type: ignore
