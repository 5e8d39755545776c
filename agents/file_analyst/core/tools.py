"""
Tool Abstraction Layer

This module defines the abstract Tool class and the registry the control
loop dispatches through. Tools are defined by:
1. name: Unique identifier
2. description: What the tool does (the backend reads it to decide when to call)
3. inputs: Dictionary defining input parameters
4. output_type: Type of output
5. forward(): The actual implementation

A tool is expected to turn its own failures into descriptive error
strings wrapped in ToolFailure. The registry validates arguments
against `inputs` before calling `forward`, and converts anything a
tool still raises into ToolExecutionFailed.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Type, get_type_hints
import asyncio
import inspect

from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError, create_model

from ..errors import InvalidArguments, ToolExecutionFailed, UnknownTool

_JSON_TYPES: Dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "array": list,
    "object": dict,
    "any": Any,
}


class ToolFailure(str):
    """
    Error text returned by a tool instead of a result.

    It reads like any other result for the backend; the dispatch step
    records it as a failed call so repeated identical failures can be
    stopped. Plain strings are always successes, whatever their wording.
    """


class Tool(ABC):
    """
    Abstract base class for tools.

    Example:
    ```python
    class WordCountTool(Tool):
        name = "word_count"
        description = "Counts the words in a text"
        inputs = {
            "text": {"type": "string", "description": "Text to count"}
        }
        output_type = "string"

        def forward(self, text: str) -> str:
            return str(len(text.split()))
    ```
    """

    name: str
    description: str
    inputs: Dict[str, dict]
    output_type: str = "string"

    _arguments_model: Optional[Type[BaseModel]] = None

    @abstractmethod
    def forward(self, **kwargs) -> Any:
        """Execute the tool with validated arguments."""
        ...

    def __call__(self, **kwargs) -> Any:
        return self.forward(**kwargs)

    def arguments_model(self) -> Type[BaseModel]:
        """Pydantic model mirroring `inputs`, built once per tool instance."""
        if self._arguments_model is None:
            fields: Dict[str, Any] = {}
            for param_name, info in self.inputs.items():
                py_type = _JSON_TYPES.get(info.get("type", "any"), Any)
                if info.get("nullable", False):
                    fields[param_name] = (Optional[py_type], None)
                else:
                    fields[param_name] = (py_type, ...)
            self._arguments_model = create_model(
                f"{self.name}_arguments",
                __config__=ConfigDict(extra="forbid"),
                **fields,
            )
        return self._arguments_model

    def validate_arguments(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """
        Check arguments against the declared input schema.

        Raises:
            InvalidArguments: With one entry per schema violation
        """
        try:
            validated = self.arguments_model().model_validate(arguments)
        except ValidationError as e:
            problems = [
                f"{'.'.join(str(p) for p in err['loc']) or '(root)'}: {err['msg']}"
                for err in e.errors()
            ]
            raise InvalidArguments(self.name, problems) from e
        return validated.model_dump(exclude_unset=True)

    def to_schema(self) -> dict:
        """
        Convert tool to JSON schema for LLM tool calling.
        Compatible with OpenAI function calling format.
        """
        properties = {}
        required = []

        for param_name, param_info in self.inputs.items():
            prop = {"description": param_info.get("description", "")}
            if param_info.get("type", "any") != "any":
                prop["type"] = param_info["type"]
            if "enum" in param_info:
                prop["enum"] = param_info["enum"]
            properties[param_name] = prop

            if not param_info.get("nullable", False):
                required.append(param_name)

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": required,
                },
            },
        }


class FunctionTool(Tool):
    """
    A Tool wrapper around a regular function.
    Created automatically by the @tool decorator.
    """

    def __init__(
        self,
        func: Callable,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ):
        self._func = func
        self.name = name or func.__name__
        self.description = description or inspect.getdoc(func) or f"Tool: {self.name}"
        self.inputs = self._extract_inputs(func)

    @staticmethod
    def _extract_inputs(func: Callable) -> Dict[str, dict]:
        sig = inspect.signature(func)
        hints = get_type_hints(func)
        type_names = {py: name for name, py in _JSON_TYPES.items() if py is not Any}

        return {
            param_name: {
                "type": type_names.get(hints.get(param_name), "any"),
                "description": f"Parameter: {param_name}",
                "nullable": param.default is not inspect.Parameter.empty,
            }
            for param_name, param in sig.parameters.items()
        }

    def forward(self, **kwargs) -> Any:
        return self._func(**kwargs)


def tool(func: Callable = None, *, name: str = None, description: str = None):
    """
    Decorator to create a Tool from a function.

    Usage:
    ```python
    @tool
    def shout(text: str) -> str:
        '''Upper-case the text.'''
        return text.upper()

    @tool(name="yell", description="Upper-case the text")
    def shout(text: str) -> str:
        return text.upper()
    ```
    """
    def decorator(f):
        return FunctionTool(f, name=name, description=description)

    if func is not None:
        return decorator(func)
    return decorator


class ToolRegistry:
    """
    Name-indexed, load-time table of tools.

    Registered once at startup; dispatch looks tools up by name and never
    reflects over the backend's request beyond that.
    """

    def __init__(self, tools: Iterable[Tool] = ()):
        self._tools: Dict[str, Tool] = {}
        for t in tools:
            self.register(t)

    def register(self, t: Tool) -> Tool:
        if t.name in self._tools:
            raise ValueError(f"Tool '{t.name}' is already registered")
        self._tools[t.name] = t
        return t

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def get(self, name: str) -> Tool:
        """
        Raises:
            UnknownTool: If no tool is registered under `name`
        """
        try:
            return self._tools[name]
        except KeyError:
            raise UnknownTool(name, self._tools) from None

    def schemas(self) -> List[dict]:
        return [t.to_schema() for t in self._tools.values()]

    def invoke(self, name: str, arguments: Dict[str, Any]) -> str:
        """
        Look up, validate and run a tool.

        Raises:
            UnknownTool, InvalidArguments, ToolExecutionFailed
        """
        t = self.get(name)
        validated = t.validate_arguments(arguments)
        try:
            result = t.forward(**validated)
        except Exception as e:
            logger.opt(exception=e).error(f"Tool '{name}' raised instead of returning an error")
            raise ToolExecutionFailed(name, e) from e
        if result is None:
            return ""
        return result if isinstance(result, str) else str(result)

    async def invoke_async(self, name: str, arguments: Dict[str, Any]) -> str:
        """Run `invoke` in a worker thread so file I/O never blocks the event loop."""
        return await asyncio.to_thread(self.invoke, name, arguments)
