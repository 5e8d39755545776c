"""
Message and Model Abstraction Layer

This module defines the conversation message types and the abstract Model
class every reasoning backend must implement. A backend:
1. Takes the ordered list of chat messages plus the tool schemas it may use
2. Returns exactly one assistant message (free text and/or tool invocations)

Messages are frozen Pydantic models so conversation snapshots can be
shared between loop iterations unchanged.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence, Tuple, Union
import json
import uuid

from loguru import logger
from pydantic import BaseModel, Field

from ..errors import BackendRejected, BackendUnavailable, EmptyModelResponse, MalformedModelOutput

Role = Literal["system", "user", "assistant", "tool"]


def new_call_id() -> str:
    """Generate a correlation id for invocations the backend left unnamed."""
    return f"call_{uuid.uuid4().hex[:8]}"


class ToolCall(BaseModel):
    """
    One requested tool invocation.

    Attributes:
        id: Correlation identifier echoed by the matching tool-result message
        name: The tool's registered name
        arguments: Structured arguments for the tool
    """
    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "forbid", "frozen": True}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": json.dumps(self.arguments, ensure_ascii=False),
            },
        }


class ChatMessage(BaseModel):
    """
    A single turn in the conversation.

    Attributes:
        role: One of "system", "user", "assistant", "tool"
        content: The text content of the message
        tool_calls: Invocations requested by an assistant message, in order
        tool_call_id: For tool results, the id of the invocation answered
        name: For tool results, the tool that produced it
        error_code: For tool results, the error kind when the call failed
    """
    role: Role
    content: Optional[str] = Field(default=None)
    tool_calls: Tuple[ToolCall, ...] = Field(default=())
    tool_call_id: Optional[str] = Field(default=None)
    name: Optional[str] = Field(default=None)
    error_code: Optional[str] = Field(default=None)

    model_config = {"extra": "forbid", "frozen": True}

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role="user", content=content)

    @classmethod
    def tool_result(
        cls,
        call: ToolCall,
        content: str,
        error_code: Optional[str] = None,
    ) -> "ChatMessage":
        return cls(
            role="tool",
            content=content,
            tool_call_id=call.id,
            name=call.name,
            error_code=error_code,
        )

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @property
    def text(self) -> str:
        """Content as text, empty string when absent."""
        return self.content or ""

    def to_dict(self) -> dict:
        """Convert to the OpenAI chat-completions wire format."""
        result: Dict[str, Any] = {"role": self.role}
        if self.content is not None or self.role != "assistant":
            result["content"] = self.content or ""
        if self.tool_calls:
            result["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            result["tool_call_id"] = self.tool_call_id
        return result


def coerce_arguments(raw: Union[Dict[str, Any], str, None], tool_name: str) -> Dict[str, Any]:
    """
    Normalize tool-call arguments to a dict.

    Raises:
        MalformedModelOutput: If the arguments are not a JSON object
    """
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedModelOutput(
                f"Arguments for tool '{tool_name}' are not valid JSON: {e}", raw=raw
            )
        if isinstance(parsed, dict):
            return parsed
    raise MalformedModelOutput(
        f"Arguments for tool '{tool_name}' must be a JSON object", raw=str(raw)
    )


def _extract_json_object(content: str) -> Optional[str]:
    """Return the first balanced {...} block, preferring fenced code blocks."""
    if "```" in content:
        start = content.find("```")
        newline = content.find("\n", start)
        end = content.find("```", start + 3)
        if newline != -1 and end > newline:
            content = content[newline + 1:end]

    brace_start = content.find("{")
    if brace_start == -1:
        return None

    depth = 0
    for i, char in enumerate(content[brace_start:], brace_start):
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return content[brace_start:i + 1]
    return None


def translate_openai_error(error: Exception, timeout: Optional[float] = None) -> Exception:
    """Map an `openai` SDK exception onto the agent error taxonomy."""
    import openai

    if isinstance(error, openai.APITimeoutError):
        return BackendUnavailable(f"Reasoning backend timed out after {timeout}s", cause=error)
    if isinstance(error, openai.APIConnectionError):
        return BackendUnavailable("Could not connect to the reasoning backend", cause=error)
    if isinstance(error, openai.APIStatusError):
        status = error.status_code
        if status in (408, 429) or status >= 500:
            return BackendUnavailable(f"Reasoning backend returned status {status}", cause=error)
        return BackendRejected(status, f"Reasoning backend rejected the request with status {status}", cause=error)
    if isinstance(error, openai.APIResponseValidationError):
        return MalformedModelOutput(f"Reasoning backend response failed validation: {error}")
    return BackendUnavailable(f"Reasoning backend error: {error}", cause=error)


class Model(ABC):
    """
    Abstract base class for reasoning backends.

    All backends must implement `generate`. Backends without native tool
    calling can rely on `parse_tool_calls`, which recovers a JSON action
    block from the message text.

    To create a custom backend:

    ```python
    class MyBackend(Model):
        def generate(self, messages, tools=None, **kwargs) -> ChatMessage:
            response = my_api_call([m.to_dict() for m in messages], tools)
            return ChatMessage(role="assistant", content=response)
    ```
    """

    @abstractmethod
    def generate(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[dict]] = None,
        **kwargs,
    ) -> Optional[ChatMessage]:
        """
        Generate the next assistant message.

        Args:
            messages: System directive followed by the conversation, in order
            tools: Tool schemas (OpenAI function format) the backend may invoke
            **kwargs: Additional backend-specific parameters

        Returns:
            The assistant message, or None if the backend produced nothing

        Raises:
            BackendUnavailable: Transport or service failure
            BackendRejected: The backend refused the request (4xx other than 408/429)
            MalformedModelOutput: The response could not be interpreted
        """
        ...

    def parse_tool_calls(
        self,
        message: ChatMessage,
        tool_names: Optional[Iterable[str]] = None,
    ) -> ChatMessage:
        """
        Recover a tool call written as JSON text, if the message has none.

        Only `{"name": ..., "arguments": {...}}` blocks naming a known tool
        are converted; anything else is left as a final answer.
        """
        if message.tool_calls or not message.content:
            return message

        json_str = _extract_json_object(message.content)
        if json_str is None:
            return message

        try:
            action = json.loads(json_str)
        except json.JSONDecodeError:
            return message

        if not isinstance(action, dict) or not isinstance(action.get("name"), str):
            return message
        known = set(tool_names) if tool_names is not None else None
        if known is not None and action["name"] not in known:
            return message

        call = ToolCall(
            id=new_call_id(),
            name=action["name"],
            arguments=coerce_arguments(action.get("arguments"), action["name"]),
        )
        logger.debug(f"Recovered text tool call: {call.name}")
        return message.model_copy(update={"tool_calls": (call,)})

    def __call__(self, messages: List[ChatMessage], **kwargs) -> Optional[ChatMessage]:
        return self.generate(messages, **kwargs)


class AsyncModel(ABC):
    """
    Mixin for backends with a native async client.

    Backends should inherit from both Model and AsyncModel to support
    both sync and async control loops.
    """

    @abstractmethod
    async def generate_async(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[dict]] = None,
        **kwargs,
    ) -> Optional[ChatMessage]:
        ...


class MockModel(Model):
    """
    A scripted backend for tests.

    Each scripted item is returned in order; an exception instance is
    raised instead of returned. Once the script runs out, a plain
    final answer is returned.

    Usage:
    ```python
    model = MockModel([
        ChatMessage(role="assistant", tool_calls=[ToolCall(id="c1", name="file_inspector", arguments={...})]),
        ChatMessage(role="assistant", content="42"),
    ])
    ```
    """

    def __init__(self, responses: Sequence[Union[ChatMessage, Exception, None]]):
        self.responses = list(responses)
        self.call_count = 0
        self.received: List[List[ChatMessage]] = []
        self.received_tools: List[Optional[List[dict]]] = []

    def generate(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[dict]] = None,
        **kwargs,
    ) -> Optional[ChatMessage]:
        self.received.append(list(messages))
        self.received_tools.append(tools)
        if self.call_count >= len(self.responses):
            self.call_count += 1
            return ChatMessage(role="assistant", content="Mock complete")

        response = self.responses[self.call_count]
        self.call_count += 1
        if isinstance(response, Exception):
            raise response
        return response


class OpenAIModel(Model, AsyncModel):
    """
    Backend over the `openai` SDK, for any OpenAI-compatible endpoint.

    The client is built with an explicit timeout and without SDK-level
    retries; retrying is the control loop's decision.

    Usage:
    ```python
    model = OpenAIModel(base_url="http://127.0.0.1:1234/v1", api_key="lm-studio",
                        model_id="qwen2.5-7b-instruct", timeout=60)
    ```
    """

    def __init__(
        self,
        model_id: str,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: int = 2048,
        timeout: float = 120.0,
    ):
        from openai import AsyncOpenAI, OpenAI

        self.model_id = model_id
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client = OpenAI(base_url=base_url, api_key=api_key, timeout=timeout, max_retries=0)
        self._async_client = AsyncOpenAI(base_url=base_url, api_key=api_key, timeout=timeout, max_retries=0)

    def _build_params(self, messages: List[ChatMessage], tools: Optional[List[dict]], **kwargs) -> dict:
        params = {
            "model": self.model_id,
            "messages": [msg.to_dict() for msg in messages],
            "temperature": kwargs.get("temperature", self.temperature),
            "max_tokens": kwargs.get("max_tokens", self.max_tokens),
        }
        if tools:
            params["tools"] = tools
            params["tool_choice"] = "auto"
        return params

    def _translate_error(self, error: Exception) -> Exception:
        return translate_openai_error(error, self.timeout)

    def _to_message(self, response: Any) -> Optional[ChatMessage]:
        if not getattr(response, "choices", None):
            raise EmptyModelResponse("Reasoning backend returned no choices")
        choice = response.choices[0].message
        if choice is None:
            return None

        tool_calls = tuple(
            ToolCall(
                id=tc.id or new_call_id(),
                name=tc.function.name,
                arguments=coerce_arguments(tc.function.arguments, tc.function.name),
            )
            for tc in (choice.tool_calls or [])
        )
        return ChatMessage(role="assistant", content=choice.content, tool_calls=tool_calls)

    def generate(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[dict]] = None,
        **kwargs,
    ) -> Optional[ChatMessage]:
        import openai

        try:
            response = self._client.chat.completions.create(**self._build_params(messages, tools, **kwargs))
        except openai.OpenAIError as e:
            raise self._translate_error(e) from e
        return self._to_message(response)

    async def generate_async(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[dict]] = None,
        **kwargs,
    ) -> Optional[ChatMessage]:
        import openai

        try:
            response = await self._async_client.chat.completions.create(
                **self._build_params(messages, tools, **kwargs)
            )
        except openai.OpenAIError as e:
            raise self._translate_error(e) from e
        return self._to_message(response)
