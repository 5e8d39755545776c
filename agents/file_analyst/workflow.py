"""
LangGraph workflow for the file analyst.

The same Decision and Dispatch steps as FileAnalystAgent, compiled into
a StateGraph:

    START -> agent -> [has tool calls?] -> tools -> agent
                            |
                           END

Channel reducers are the conversation-state merge functions, and the
agent node enforces the decision ceiling through the `iterations`
counter.
"""
from __future__ import annotations

from typing import Annotated, Any, FrozenSet, Iterable, List, Optional, Sequence, TypedDict

from langchain_core.runnables import RunnableLambda
from langgraph.errors import GraphRecursionError
from langgraph.graph import END, START, StateGraph
from loguru import logger

from analyst_core.runtime import RunContext, sync_with_retry, with_retry

from .agent import AgentResult, FileAnalystAgent, LoopPhase
from .core.models import ChatMessage
from .errors import RecursionLimitExceeded
from .state import ConversationState, merge_known_files, merge_messages


class WorkflowState(TypedDict):
    """
    Graph state.

    Attributes:
        messages: Conversation log, merged append-only
        known_files: File paths, merged by set union
        iterations: Decision-Step entries so far
    """
    messages: Annotated[Sequence[ChatMessage], merge_messages]
    known_files: Annotated[FrozenSet[str], merge_known_files]
    iterations: int


def _snapshot(state: WorkflowState) -> ConversationState:
    return ConversationState(
        messages=tuple(state.get("messages", ())),
        known_files=frozenset(state.get("known_files", ())),
    )


def _phases(messages: Sequence[ChatMessage]) -> List[LoopPhase]:
    phases: List[LoopPhase] = []
    for message in messages:
        if message.role == "assistant":
            phases.append(LoopPhase.DECIDING)
            if message.has_tool_calls:
                phases.append(LoopPhase.DISPATCHING)
    phases.append(LoopPhase.DONE)
    return phases


class AgentWorkflow:
    """
    LangGraph rendition of the control loop.

    Example:
    ```python
    workflow = AgentWorkflow(FileAnalystAgent(model=create_backend(), registry=build_default_registry()))
    result = workflow.invoke("How many rows?", files=["data-test/sales.csv"])
    ```
    """

    def __init__(self, agent: FileAnalystAgent):
        self.agent = agent
        self._graph = self._build_graph().compile()
        logger.info("Workflow built with nodes=['agent', 'tools']")

    # -- nodes --------------------------------------------------------------

    def _check_ceiling(self, state: WorkflowState) -> int:
        iterations = state.get("iterations", 0)
        if iterations >= self.agent.max_decisions:
            raise RecursionLimitExceeded(self.agent.max_decisions)
        return iterations

    def _agent_node(self, state: WorkflowState) -> dict:
        iterations = self._check_ceiling(state)
        message = sync_with_retry(self.agent.retry_policy)(self.agent.decide)(_snapshot(state))
        return {"messages": [message], "iterations": iterations + 1}

    async def _agent_node_async(self, state: WorkflowState) -> dict:
        iterations = self._check_ceiling(state)
        message = await with_retry(self.agent.retry_policy)(self.agent.decide_async)(_snapshot(state))
        return {"messages": [message], "iterations": iterations + 1}

    def _tools_node(self, state: WorkflowState) -> dict:
        snapshot = _snapshot(state)
        return {"messages": self.agent.dispatch(snapshot.last_message.tool_calls, snapshot)}

    async def _tools_node_async(self, state: WorkflowState) -> dict:
        snapshot = _snapshot(state)
        return {"messages": await self.agent.dispatch_async(snapshot.last_message.tool_calls, snapshot)}

    @staticmethod
    def _route(state: WorkflowState) -> str:
        messages = state.get("messages", ())
        if messages and messages[-1].has_tool_calls:
            return "tools"
        return END

    def _build_graph(self) -> StateGraph:
        graph = StateGraph(WorkflowState)

        graph.add_node("agent", RunnableLambda(self._agent_node, afunc=self._agent_node_async))
        graph.add_node("tools", RunnableLambda(self._tools_node, afunc=self._tools_node_async))

        graph.add_edge(START, "agent")
        graph.add_conditional_edges("agent", self._route, {"tools": "tools", END: END})
        graph.add_edge("tools", "agent")
        return graph

    # -- entry points -------------------------------------------------------

    def _config(self) -> dict:
        # Room for every allowed decision and dispatch, so the agent node's own check fires first
        return {"recursion_limit": 2 * self.agent.max_decisions + 2}

    @staticmethod
    def _input(question: str, files: Iterable[str]) -> dict:
        initial = ConversationState.initial(question, files)
        return {"messages": list(initial.messages), "known_files": initial.known_files, "iterations": 0}

    def _result(self, final: dict) -> AgentResult:
        state = _snapshot(final)
        answer = state.last_message
        logger.info(
            f"Workflow complete - iterations: {final.get('iterations', 0)}, "
            f"messages: {len(state.messages)}"
        )
        return AgentResult(
            output=answer.text.strip() if answer else "",
            state=state,
            decisions=final.get("iterations", 0),
            phases=_phases(state.messages),
        )

    def invoke(self, question: str, files: Iterable[str] = (), context: Optional[RunContext] = None) -> AgentResult:
        ctx = context or RunContext.new()
        with logger.contextualize(request_id=ctx.request_id):
            logger.info(f"Workflow invoke - input: {question[:100]!r}")
            try:
                final = self._graph.invoke(self._input(question, files), config=self._config())
            except GraphRecursionError as e:
                raise RecursionLimitExceeded(self.agent.max_decisions) from e
            return self._result(final)

    async def ainvoke(
        self, question: str, files: Iterable[str] = (), context: Optional[RunContext] = None
    ) -> AgentResult:
        ctx = context or RunContext.new()
        with logger.contextualize(request_id=ctx.request_id):
            logger.info(f"Workflow ainvoke - input: {question[:100]!r}")
            try:
                final: Any = await self._graph.ainvoke(self._input(question, files), config=self._config())
            except GraphRecursionError as e:
                raise RecursionLimitExceeded(self.agent.max_decisions) from e
            return self._result(final)
