# Core abstractions
from .models import AsyncModel, ChatMessage, MockModel, Model, OpenAIModel, ToolCall
from .model_factory import ChatModelBackend, ModelFactory, create_backend
from .prompts import DIRECTIVE_RULES, DirectiveRule, build_system_prompt
from .tools import FunctionTool, Tool, ToolFailure, ToolRegistry, tool

__all__ = [
    "Model",
    "AsyncModel",
    "ChatMessage",
    "ToolCall",
    "MockModel",
    "OpenAIModel",
    "ChatModelBackend",
    "ModelFactory",
    "create_backend",
    "Tool",
    "FunctionTool",
    "ToolFailure",
    "ToolRegistry",
    "tool",
    "DirectiveRule",
    "DIRECTIVE_RULES",
    "build_system_prompt",
]
