"""
File Analyst Agent

A tool-using agent that answers questions about local CSV, JSON, PDF and
text files. The control loop alternates between the reasoning backend
and the tool registry until the backend gives a final answer.
"""
from .agent import AgentResult, FileAnalystAgent, LoopPhase
from .core import (
    ChatMessage,
    ChatModelBackend,
    MockModel,
    Model,
    ModelFactory,
    OpenAIModel,
    Tool,
    ToolCall,
    ToolFailure,
    ToolRegistry,
    create_backend,
    tool,
)
from .errors import (
    AgentError,
    BackendRejected,
    BackendUnavailable,
    EmptyModelResponse,
    InvalidArguments,
    MalformedModelOutput,
    RecursionLimitExceeded,
    ToolExecutionFailed,
    UnknownTool,
)
from .state import ConversationState, merge
from .tools import DataQueryTool, DocumentAnalystTool, FileInspectorTool, build_default_registry
from .workflow import AgentWorkflow

__all__ = [
    # Control loop
    "FileAnalystAgent",
    "AgentResult",
    "LoopPhase",
    "AgentWorkflow",
    # State
    "ConversationState",
    "merge",
    # Backends
    "Model",
    "ChatMessage",
    "ToolCall",
    "MockModel",
    "OpenAIModel",
    "ChatModelBackend",
    "ModelFactory",
    "create_backend",
    # Tools
    "Tool",
    "ToolRegistry",
    "ToolFailure",
    "tool",
    "FileInspectorTool",
    "DataQueryTool",
    "DocumentAnalystTool",
    "build_default_registry",
    # Errors
    "AgentError",
    "BackendUnavailable",
    "BackendRejected",
    "MalformedModelOutput",
    "EmptyModelResponse",
    "UnknownTool",
    "InvalidArguments",
    "ToolExecutionFailed",
    "RecursionLimitExceeded",
]
