"""
FileAnalystAgent

The control loop: a state machine that alternates between asking the
reasoning backend for the next action (Deciding) and running the tools
it requested (Dispatching) until the backend answers without tool calls
(Done).

    Deciding --(tool calls)--> Dispatching --(always)--> Deciding
    Deciding --(no tool calls)--> Done

Every step returns new messages; the loop folds them into an immutable
ConversationState with `merge`. A ceiling on Deciding entries bounds
each run.
"""
from __future__ import annotations

import asyncio
import json
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from loguru import logger

from analyst_core.config import settings
from analyst_core.runtime import RetryPolicy, RunContext, sync_with_retry, with_retry
from analyst_core.runtime.errors import ErrorCode

from .core.models import AsyncModel, ChatMessage, Model, ToolCall, new_call_id
from .core.prompts import DIRECTIVE_RULES, DirectiveRule, build_system_prompt
from .core.tools import ToolFailure, ToolRegistry
from .errors import (
    AgentError,
    EmptyModelResponse,
    InvalidArguments,
    MalformedModelOutput,
    RecursionLimitExceeded,
    ToolExecutionFailed,
    UnknownTool,
)
from .state import ConversationState, fragment, merge


class LoopPhase(str, Enum):
    DECIDING = "deciding"
    DISPATCHING = "dispatching"
    DONE = "done"


@dataclass
class AgentResult:
    """
    Result of an agent run.

    Attributes:
        output: The final answer, stripped of surrounding whitespace
        state: The final conversation state (final assistant message included)
        decisions: Number of Decision-Step entries the run used
        phases: Every phase the loop entered, in order
    """
    output: str
    state: ConversationState
    decisions: int
    phases: List[LoopPhase] = field(default_factory=list)


def invocation_key(call: ToolCall) -> str:
    """Identity of an invocation for repeated-failure detection."""
    return f"{call.name}:{json.dumps(call.arguments, sort_keys=True, ensure_ascii=False, default=str)}"


def is_failure(message: ChatMessage) -> bool:
    """A tool result flagged with an error code; the wording of the text is never consulted."""
    return message.error_code is not None


def failure_counts(messages: Sequence[ChatMessage]) -> Counter:
    """Failed results per invocation key, derived from the conversation log."""
    keys = {}
    counts: Counter = Counter()
    for message in messages:
        if message.role == "assistant":
            keys.update({call.id: invocation_key(call) for call in message.tool_calls})
        elif message.role == "tool" and is_failure(message) and message.tool_call_id in keys:
            counts[keys[message.tool_call_id]] += 1
    return counts


class FileAnalystAgent:
    """
    Tool-using agent that answers questions about local files.

    Example:
    ```python
    from agents.file_analyst import FileAnalystAgent, build_default_registry, create_backend

    agent = FileAnalystAgent(model=create_backend(), registry=build_default_registry())
    result = agent.run("What is the average Salary?", files=["data-test/employees.csv"])
    print(result.output)
    ```

    Args:
        model: Reasoning backend
        registry: Tools the backend may invoke
        max_decisions: Recursion ceiling, the maximum Decision-Step entries per run
        retry_policy: Retry BackendUnavailable inside one Decision Step; None means a single attempt
        max_identical_failures: Failed results tolerated per identical invocation before it is skipped; 0 disables
        parallel_tools: Run the invocations of one Dispatching phase concurrently (async runs only)
        rules: Directive rules rendered into the system prompt
    """

    def __init__(
        self,
        model: Model,
        registry: ToolRegistry,
        max_decisions: Optional[int] = None,
        retry_policy: Optional[RetryPolicy] = None,
        max_identical_failures: Optional[int] = None,
        parallel_tools: Optional[bool] = None,
        rules: Sequence[DirectiveRule] = DIRECTIVE_RULES,
    ):
        self.model = model
        self.registry = registry
        self.max_decisions = max_decisions if max_decisions is not None else settings.AGENT_MAX_DECISIONS
        if self.max_decisions < 1:
            raise ValueError("max_decisions must be at least 1")
        self.retry_policy = retry_policy
        self.max_identical_failures = (
            max_identical_failures
            if max_identical_failures is not None
            else settings.AGENT_MAX_IDENTICAL_FAILURES
        )
        self.parallel_tools = parallel_tools if parallel_tools is not None else settings.AGENT_PARALLEL_TOOLS
        self.rules = tuple(rules)

    # =========================================================================
    # Decision Step
    # =========================================================================

    def _build_messages(self, state: ConversationState) -> List[ChatMessage]:
        directive = ChatMessage.system(build_system_prompt(state.known_files, self.rules))
        return [directive, *state.messages]

    def _check_decision(self, response: Optional[ChatMessage]) -> ChatMessage:
        if response is None:
            raise EmptyModelResponse()
        if not isinstance(response, ChatMessage) or response.role != "assistant":
            raise MalformedModelOutput(
                f"Expected an assistant message, got {type(response).__name__}",
                raw=repr(response),
            )

        response = self.model.parse_tool_calls(response, self.registry.names)
        if not response.has_tool_calls and not response.text.strip():
            raise EmptyModelResponse("Reasoning backend returned neither text nor tool calls")

        # Every result must correlate to exactly one request
        seen = set()
        calls = []
        for call in response.tool_calls:
            if call.id in seen:
                call = call.model_copy(update={"id": new_call_id()})
            seen.add(call.id)
            calls.append(call)
        return response.model_copy(update={"tool_calls": tuple(calls)})

    def decide(self, state: ConversationState) -> ChatMessage:
        """
        Ask the backend for the next assistant message.

        Does not modify `state`; the caller merges the returned message.

        Raises:
            BackendUnavailable: The backend could not be reached
            MalformedModelOutput: The response could not be interpreted
            EmptyModelResponse: The backend produced nothing
        """
        response = self.model.generate(self._build_messages(state), tools=self.registry.schemas())
        return self._check_decision(response)

    async def decide_async(self, state: ConversationState) -> ChatMessage:
        messages = self._build_messages(state)
        tools = self.registry.schemas()
        if isinstance(self.model, AsyncModel):
            response = await self.model.generate_async(messages, tools=tools)
        else:
            response = await asyncio.to_thread(self.model.generate, messages, tools=tools)
        return self._check_decision(response)

    # =========================================================================
    # Dispatch Step
    # =========================================================================

    def _skip_repeated(self, call: ToolCall, failures: Counter) -> Optional[ChatMessage]:
        failed = failures[invocation_key(call)]
        if not self.max_identical_failures or failed < self.max_identical_failures:
            return None
        logger.warning(f"Skipping '{call.name}': identical call already failed {failed} times")
        return ChatMessage.tool_result(
            call,
            f"ERROR: This exact call to '{call.name}' already failed {failed} times and was not run again. "
            "Do not repeat it: change the arguments or explain the problem to the user.",
            error_code=ErrorCode.REPEATED_FAILURE,
        )

    @staticmethod
    def _error_result(call: ToolCall, error: AgentError) -> ChatMessage:
        logger.warning(f"Tool call '{call.name}' ({call.id}) failed: {error}")
        return ChatMessage.tool_result(call, f"ERROR: {error.message_safe}", error_code=error.code)

    @staticmethod
    def _tool_result(call: ToolCall, content: str) -> ChatMessage:
        if isinstance(content, ToolFailure):
            logger.warning(f"Tool '{call.name}' ({call.id}) reported an error")
            return ChatMessage.tool_result(call, str(content), error_code=ErrorCode.TOOL_REPORTED_ERROR)
        return ChatMessage.tool_result(call, content)

    def _dispatch_one(self, call: ToolCall, failures: Counter) -> ChatMessage:
        skipped = self._skip_repeated(call, failures)
        if skipped is not None:
            return skipped
        logger.info(f"Calling tool '{call.name}' with {call.arguments}")
        try:
            content = self.registry.invoke(call.name, call.arguments)
        except (UnknownTool, InvalidArguments, ToolExecutionFailed) as e:
            return self._error_result(call, e)
        return self._tool_result(call, content)

    async def _dispatch_one_async(self, call: ToolCall, failures: Counter) -> ChatMessage:
        skipped = self._skip_repeated(call, failures)
        if skipped is not None:
            return skipped
        logger.info(f"Calling tool '{call.name}' with {call.arguments}")
        try:
            content = await self.registry.invoke_async(call.name, call.arguments)
        except (UnknownTool, InvalidArguments, ToolExecutionFailed) as e:
            return self._error_result(call, e)
        return self._tool_result(call, content)

    def dispatch(self, calls: Sequence[ToolCall], state: ConversationState) -> List[ChatMessage]:
        """
        Run every requested invocation, in order.

        Returns exactly one tool-result message per call, correlated by id.
        Tool failures become error results; nothing here fails the run.
        """
        failures = failure_counts(state.messages)
        return [self._dispatch_one(call, failures) for call in calls]

    async def dispatch_async(self, calls: Sequence[ToolCall], state: ConversationState) -> List[ChatMessage]:
        """Async dispatch; concurrent when `parallel_tools` is set, results kept in request order."""
        failures = failure_counts(state.messages)
        if self.parallel_tools and len(calls) > 1:
            # gather preserves argument order
            return list(await asyncio.gather(*[self._dispatch_one_async(c, failures) for c in calls]))
        return [await self._dispatch_one_async(c, failures) for c in calls]

    # =========================================================================
    # Control Loop
    # =========================================================================

    def _decide_with_retry(self, state: ConversationState):
        return sync_with_retry(self.retry_policy)(self.decide)(state)

    def _enter_deciding(self, decisions: int) -> int:
        if decisions >= self.max_decisions:
            logger.error(f"Recursion limit of {self.max_decisions} decisions reached")
            raise RecursionLimitExceeded(self.max_decisions)
        logger.debug(f"-> deciding ({decisions + 1}/{self.max_decisions})")
        return decisions + 1

    @staticmethod
    def _start(question: str, files: Iterable[str]) -> ConversationState:
        state = ConversationState.initial(question, files)
        logger.info(f"Run started - question: {question[:100]!r}, files: {len(state.known_files)}")
        return state

    @staticmethod
    def _finish(message: ChatMessage, state: ConversationState, decisions: int,
                phases: List[LoopPhase]) -> AgentResult:
        phases.append(LoopPhase.DONE)
        logger.info(f"Run complete - decisions: {decisions}, messages: {len(state.messages)}")
        return AgentResult(output=message.text.strip(), state=state, decisions=decisions, phases=phases)

    def run(
        self,
        question: str,
        files: Iterable[str] = (),
        context: Optional[RunContext] = None,
    ) -> AgentResult:
        """
        Run the loop until the backend answers without tool calls.

        Args:
            question: The user's question
            files: Paths the agent may inspect
            context: Correlation context for log lines (a fresh one if omitted)

        Raises:
            RecursionLimitExceeded: More than `max_decisions` Decision-Step entries were needed
            EmptyModelResponse, MalformedModelOutput, BackendUnavailable: From the Decision Step
        """
        ctx = context or RunContext.new()
        with logger.contextualize(request_id=ctx.request_id):
            state = self._start(question, files)
            phases: List[LoopPhase] = []
            decisions = 0

            while True:
                decisions = self._enter_deciding(decisions)
                phases.append(LoopPhase.DECIDING)
                message = self._decide_with_retry(state)
                state = merge(state, fragment([message]))

                if not message.has_tool_calls:
                    return self._finish(message, state, decisions, phases)

                phases.append(LoopPhase.DISPATCHING)
                logger.debug(f"-> dispatching {len(message.tool_calls)} call(s)")
                results = self.dispatch(message.tool_calls, state)
                state = merge(state, fragment(results))

    async def run_async(
        self,
        question: str,
        files: Iterable[str] = (),
        context: Optional[RunContext] = None,
    ) -> AgentResult:
        """Async variant of `run`; same transitions, same errors."""
        ctx = context or RunContext.new()
        decide = with_retry(self.retry_policy)(self.decide_async)
        with logger.contextualize(request_id=ctx.request_id):
            state = self._start(question, files)
            phases: List[LoopPhase] = []
            decisions = 0

            while True:
                decisions = self._enter_deciding(decisions)
                phases.append(LoopPhase.DECIDING)
                message = await decide(state)
                state = merge(state, fragment([message]))

                if not message.has_tool_calls:
                    return self._finish(message, state, decisions, phases)

                phases.append(LoopPhase.DISPATCHING)
                logger.debug(f"-> dispatching {len(message.tool_calls)} call(s)")
                results = await self.dispatch_async(message.tool_calls, state)
                state = merge(state, fragment(results))
