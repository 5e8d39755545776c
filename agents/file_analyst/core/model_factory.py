"""
Model factory for creating LangChain chat models, and the backend that
adapts them to the agent's `Model` interface.
"""
from __future__ import annotations

from typing import Any, List, Literal, Optional

import openai
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_openai import ChatOpenAI
from loguru import logger

from analyst_core.config import Settings, settings as default_settings

from ..errors import MalformedModelOutput
from .models import AsyncModel, ChatMessage, Model, OpenAIModel, ToolCall, new_call_id, translate_openai_error

ModelType = Literal["openai"]


class ModelFactory:
    """
    Factory for creating LLM instances with consistent configuration.

    Supports any OpenAI-compatible endpoint (hosted or a local inference
    server such as LM Studio).
    """

    @staticmethod
    def create_model(
        model_name: str,
        model_type: ModelType = "openai",
        temperature: Optional[float] = None,
        **kwargs,
    ) -> BaseChatModel:
        """
        Create an LLM instance based on the specified type.

        Args:
            model_name: Specific model name
            model_type: Type of model ("openai")
            temperature: Temperature for generation. Defaults to 0.0
            **kwargs: Additional provider-specific parameters (base_url, api_key, timeout, ...)

        Raises:
            ValueError: If model_type is not supported

        Examples:
            >>> model = ModelFactory.create_model("qwen2.5-7b-instruct", base_url="http://127.0.0.1:1234/v1")
        """
        temperature = temperature if temperature is not None else 0.0

        logger.info(f"Creating model - type: {model_type}, name: {model_name}, temp: {temperature}")

        if model_type == "openai":
            return ModelFactory._create_openai_model(model_name, temperature, **kwargs)

        raise ValueError(
            f"Unsupported model_type: {model_type}. "
            f"Must be one of: 'openai'"
        )

    @staticmethod
    def _create_openai_model(model_name: str, temperature: float, **kwargs) -> ChatOpenAI:
        # Retrying belongs to the control loop, not the SDK
        kwargs.setdefault("max_retries", 0)
        model = ChatOpenAI(model=model_name, temperature=temperature, **kwargs)
        logger.info(f"OpenAI model created - model: {model_name}, temperature: {temperature}")
        return model


def to_langchain(message: ChatMessage) -> BaseMessage:
    """Convert a ChatMessage into the matching LangChain message class."""
    if message.role == "system":
        return SystemMessage(content=message.text)
    if message.role == "user":
        return HumanMessage(content=message.text)
    if message.role == "tool":
        return ToolMessage(content=message.text, tool_call_id=message.tool_call_id or "", name=message.name)
    return AIMessage(
        content=message.text,
        tool_calls=[
            {"name": tc.name, "args": tc.arguments, "id": tc.id, "type": "tool_call"}
            for tc in message.tool_calls
        ],
    )


def _content_text(content: Any) -> Optional[str]:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [p if isinstance(p, str) else p.get("text", "") for p in content if isinstance(p, (str, dict))]
        return "".join(parts)
    return None


def from_langchain(message: BaseMessage) -> ChatMessage:
    """
    Convert a LangChain AI message into an assistant ChatMessage.

    Raises:
        MalformedModelOutput: If the model emitted tool calls LangChain could not parse
    """
    invalid = getattr(message, "invalid_tool_calls", None) or []
    if invalid:
        first = invalid[0]
        raise MalformedModelOutput(
            f"Model emitted an unparseable call to tool '{first.get('name')}': {first.get('error')}",
            raw=str(first.get("args")),
        )

    tool_calls = tuple(
        ToolCall(id=tc.get("id") or new_call_id(), name=tc["name"], arguments=tc.get("args") or {})
        for tc in (getattr(message, "tool_calls", None) or [])
    )
    return ChatMessage(role="assistant", content=_content_text(message.content), tool_calls=tool_calls)


class ChatModelBackend(Model, AsyncModel):
    """
    Backend over any LangChain chat model.

    Tool schemas are bound per call with `bind_tools`, so one backend can
    serve registries of different shapes.

    Usage:
    ```python
    backend = ChatModelBackend(ModelFactory.create_model("gpt-4o-mini"), timeout=60)
    ```
    """

    def __init__(self, chat_model: BaseChatModel, timeout: Optional[float] = None):
        self.chat_model = chat_model
        self.timeout = timeout

    def _runnable(self, tools: Optional[List[dict]]):
        return self.chat_model.bind_tools(tools) if tools else self.chat_model

    def generate(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[dict]] = None,
        **kwargs,
    ) -> Optional[ChatMessage]:
        try:
            response = self._runnable(tools).invoke([to_langchain(m) for m in messages], **kwargs)
        except openai.OpenAIError as e:
            raise translate_openai_error(e, self.timeout) from e
        return from_langchain(response) if response is not None else None

    async def generate_async(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[dict]] = None,
        **kwargs,
    ) -> Optional[ChatMessage]:
        try:
            response = await self._runnable(tools).ainvoke([to_langchain(m) for m in messages], **kwargs)
        except openai.OpenAIError as e:
            raise translate_openai_error(e, self.timeout) from e
        return from_langchain(response) if response is not None else None


def create_backend(config: Optional[Settings] = None) -> Model:
    """Build the reasoning backend selected by `LLM_BACKEND`."""
    config = config or default_settings

    if config.LLM_BACKEND == "openai":
        return OpenAIModel(
            model_id=config.LLM_MODEL_ID,
            base_url=config.LLM_BASE_URL,
            api_key=config.LLM_API_KEY,
            temperature=config.LLM_TEMPERATURE,
            max_tokens=config.LLM_MAX_TOKENS,
            timeout=config.LLM_TIMEOUT_SECONDS,
        )

    chat_model = ModelFactory.create_model(
        config.LLM_MODEL_ID,
        temperature=config.LLM_TEMPERATURE,
        base_url=config.LLM_BASE_URL,
        api_key=config.LLM_API_KEY,
        max_tokens=config.LLM_MAX_TOKENS,
        timeout=config.LLM_TIMEOUT_SECONDS,
    )
    return ChatModelBackend(chat_model, timeout=config.LLM_TIMEOUT_SECONDS)
