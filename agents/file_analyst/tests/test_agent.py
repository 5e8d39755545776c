"""Unit tests for the FileAnalystAgent control loop."""

import time

import pytest
from loguru import logger

from agents.file_analyst.agent import FileAnalystAgent, LoopPhase, failure_counts, invocation_key
from agents.file_analyst.core.models import ChatMessage, MockModel, Model, ToolCall
from agents.file_analyst.core.tools import ToolRegistry, tool
from agents.file_analyst.errors import (
    AgentError,
    BackendRejected,
    BackendUnavailable,
    EmptyModelResponse,
    MalformedModelOutput,
    RecursionLimitExceeded,
)
from agents.file_analyst.state import ConversationState, orphaned_tool_results
from analyst_core.runtime import RetryPolicy, RunContext


def answer(text):
    return ChatMessage(role="assistant", content=text)


def calls(*tool_calls):
    return ChatMessage(role="assistant", tool_calls=tuple(tool_calls))


def call(name, call_id="c1", **arguments):
    return ToolCall(id=call_id, name=name, arguments=arguments)


class AlwaysCallsTool(Model):
    """Backend that never stops requesting a tool."""

    def __init__(self, name="echo"):
        self.name = name
        self.calls = 0

    def generate(self, messages, tools=None, **kwargs):
        self.calls += 1
        return calls(call(self.name, call_id=f"c{self.calls}", text=f"turn {self.calls}"))


class TestScenarios:
    """End-to-end loop behavior with scripted backends."""

    def test_plain_answer_finishes_in_one_decision(self, echo_registry):
        """'What is 2+2?' with no files goes Deciding -> Done."""
        model = MockModel([answer("4")])
        agent = FileAnalystAgent(model=model, registry=echo_registry)

        result = agent.run("What is 2+2?")

        assert result.output == "4"
        assert result.decisions == 1
        assert result.phases == [LoopPhase.DECIDING, LoopPhase.DONE]
        assert [m.role for m in result.state.messages] == ["user", "assistant"]
        assert model.call_count == 1

    def test_file_inspection_round_trip(self, file_registry, employees_csv):
        """One tool call then an answer gives exactly four messages."""
        path = str(employees_csv)
        model = MockModel([
            calls(call("file_inspector", filePath=path)),
            answer("  3 employees  "),
        ])
        agent = FileAnalystAgent(model=model, registry=file_registry)

        result = agent.run("How many employees?", files=[path])

        messages = result.state.messages
        assert [m.role for m in messages] == ["user", "assistant", "tool", "assistant"]
        assert messages[2].tool_call_id == "c1"
        assert "Name: Ana, Position: Developer, Salary: 5000" in messages[2].content
        assert result.phases == [
            LoopPhase.DECIDING, LoopPhase.DISPATCHING, LoopPhase.DECIDING, LoopPhase.DONE,
        ]
        assert result.output == "3 employees"
        assert result.state.known_files == frozenset({path})

    def test_invalid_query_does_not_fail_the_run(self, file_registry, employees_csv):
        """A broken query comes back as correction text and the loop continues."""
        path = str(employees_csv)
        model = MockModel([
            calls(call("data_query_engine", queryCode="table.filter(", filePath=path)),
            answer("I could not compute it"),
        ])
        agent = FileAnalystAgent(model=model, registry=file_registry)

        result = agent.run("Average salary?", files=[path])

        tool_result = result.state.messages[2]
        assert tool_result.content.startswith("ERROR IN QUERY:")
        assert "COMMON FIXES" in tool_result.content
        assert tool_result.error_code == "TOOL_REPORTED_ERROR"
        assert result.output == "I could not compute it"

    def test_query_result_reaches_the_backend(self, file_registry, employees_csv):
        """The second decision sees the query output."""
        path = str(employees_csv)
        model = MockModel([
            calls(call(
                "data_query_engine",
                queryCode="table.filter(d => d.Salary > 6000).rollup({ total: aq.op.sum('Salary') })",
                filePath=path,
            )),
            answer("16000"),
        ])
        agent = FileAnalystAgent(model=model, registry=file_registry)

        agent.run("Total of salaries above 6000?", files=[path])

        seen = model.received[1][-1]
        assert seen.role == "tool"
        assert seen.content.startswith("QUERY SUCCESSFUL:")
        assert "16000" in seen.content


class TestRecursionCeiling:
    """Tests for the decision ceiling."""

    @pytest.mark.parametrize("limit", [1, 3, 5])
    def test_stops_at_exactly_the_ceiling(self, echo_registry, limit):
        """The backend is consulted exactly `limit` times before failing."""
        model = AlwaysCallsTool()
        agent = FileAnalystAgent(model=model, registry=echo_registry, max_decisions=limit)

        with pytest.raises(RecursionLimitExceeded) as exc_info:
            agent.run("loop forever")

        assert model.calls == limit
        assert exc_info.value.limit == limit

    def test_answer_on_last_allowed_decision_succeeds(self, echo_registry):
        """Finishing on decision N of N is not an error."""
        model = MockModel([calls(call("echo", text="a")), calls(call("echo", "c2", text="b")), answer("ok")])
        agent = FileAnalystAgent(model=model, registry=echo_registry, max_decisions=3)

        assert agent.run("q").decisions == 3

    def test_rejects_non_positive_ceiling(self, echo_registry):
        """A ceiling below one is a configuration error."""
        with pytest.raises(ValueError):
            FileAnalystAgent(model=MockModel([]), registry=echo_registry, max_decisions=0)


class TestDecisionStep:
    """Tests for decide()."""

    def test_presents_directive_history_and_schemas(self, echo_registry):
        """System directive first, then history, plus every tool schema."""
        model = MockModel([answer("done")])
        agent = FileAnalystAgent(model=model, registry=echo_registry)
        state = ConversationState.initial("question?", files=["b.csv", "a.txt"])

        agent.decide(state)

        sent = model.received[0]
        assert sent[0].role == "system"
        assert "FILES: [a.txt, b.csv]" in sent[0].content
        assert sent[1:] == list(state.messages)
        names = [s["function"]["name"] for s in model.received_tools[0]]
        assert names == ["echo", "explode", "complain"]

    def test_does_not_modify_state(self, echo_registry):
        """The caller's snapshot is unchanged after a decision."""
        agent = FileAnalystAgent(model=MockModel([answer("x")]), registry=echo_registry)
        state = ConversationState.initial("q", files=["f.csv"])
        before = state.model_copy()

        agent.decide(state)

        assert state == before
        assert len(state.messages) == 1

    def test_none_is_empty_model_response(self, echo_registry):
        """A backend that returns nothing is fatal."""
        agent = FileAnalystAgent(model=MockModel([None]), registry=echo_registry)

        with pytest.raises(EmptyModelResponse):
            agent.run("q")

    def test_blank_text_is_empty_model_response(self, echo_registry):
        """Whitespace with no tool calls is not a final answer."""
        agent = FileAnalystAgent(model=MockModel([answer("   ")]), registry=echo_registry)

        with pytest.raises(EmptyModelResponse):
            agent.run("q")

    def test_wrong_role_is_malformed(self, echo_registry):
        """Only assistant messages are accepted."""
        agent = FileAnalystAgent(model=MockModel([ChatMessage.user("hi")]), registry=echo_registry)

        with pytest.raises(MalformedModelOutput):
            agent.run("q")

    def test_recovers_json_tool_call_from_text(self, echo_registry):
        """A JSON action block naming a known tool is dispatched."""
        model = MockModel([
            answer('I will call it: {"name": "echo", "arguments": {"text": "hello"}}'),
            answer("hello"),
        ])
        agent = FileAnalystAgent(model=model, registry=echo_registry)

        result = agent.run("q")

        assert result.state.messages[2].content == "hello"
        assert result.decisions == 2

    def test_duplicate_call_ids_are_made_unique(self, echo_registry):
        """Each result must correlate to exactly one request."""
        model = MockModel([
            calls(call("echo", "dup", text="a"), call("echo", "dup", text="b")),
            answer("done"),
        ])
        agent = FileAnalystAgent(model=model, registry=echo_registry)

        result = agent.run("q")

        request = result.state.messages[1]
        assert len({c.id for c in request.tool_calls}) == 2
        assert orphaned_tool_results(result.state.messages) == []


class TestBackendFailures:
    """Tests for backend errors and the optional retry policy."""

    def test_backend_unavailable_propagates(self, echo_registry):
        """Without a policy the error reaches the caller."""
        agent = FileAnalystAgent(model=MockModel([BackendUnavailable("down")]), registry=echo_registry)

        with pytest.raises(BackendUnavailable):
            agent.run("q")

    def test_whole_family_catchable_as_agent_error(self, echo_registry):
        """Every loop-level failure is an AgentError."""
        agent = FileAnalystAgent(model=MockModel([None]), registry=echo_registry)

        with pytest.raises(AgentError):
            agent.run("q")

    def test_retry_policy_retries_within_one_decision(self, echo_registry):
        """Retries do not count against the ceiling."""
        model = MockModel([BackendUnavailable("blip"), BackendUnavailable("blip"), answer("4")])
        agent = FileAnalystAgent(
            model=model,
            registry=echo_registry,
            max_decisions=1,
            retry_policy=RetryPolicy(max_attempts=3, base_delay=0.0, jitter=False),
        )

        result = agent.run("What is 2+2?")

        assert result.output == "4"
        assert result.decisions == 1
        assert model.call_count == 3

    def test_malformed_output_is_not_retried(self, echo_registry):
        """Only BackendUnavailable is retryable."""
        model = MockModel([MalformedModelOutput("garbage"), answer("never reached")])
        agent = FileAnalystAgent(
            model=model,
            registry=echo_registry,
            retry_policy=RetryPolicy(max_attempts=3, base_delay=0.0, jitter=False),
        )

        with pytest.raises(MalformedModelOutput):
            agent.run("q")
        assert model.call_count == 1

    def test_rejected_request_is_not_retried(self, echo_registry):
        """A 401 from the backend fails fast, even with a retry policy."""
        model = MockModel([BackendRejected(401, "bad key"), answer("never reached")])
        agent = FileAnalystAgent(
            model=model,
            registry=echo_registry,
            retry_policy=RetryPolicy(max_attempts=3, base_delay=0.0, jitter=False),
        )

        with pytest.raises(BackendRejected):
            agent.run("q")
        assert model.call_count == 1


class TestDispatchStep:
    """Tests for dispatch()."""

    def test_one_result_per_call_in_order(self, echo_registry):
        """Results follow request order and echo the correlation ids."""
        agent = FileAnalystAgent(model=MockModel([]), registry=echo_registry)
        requested = [call("echo", "a", text="1"), call("echo", "b", text="2"), call("echo", "c", text="3")]

        results = agent.dispatch(requested, ConversationState.initial("q"))

        assert [r.tool_call_id for r in results] == ["a", "b", "c"]
        assert [r.content for r in results] == ["1", "2", "3"]

    def test_unknown_tool_becomes_error_result(self, echo_registry):
        """Unknown names produce an UNKNOWN_TOOL result, never a silent no-op."""
        agent = FileAnalystAgent(model=MockModel([]), registry=echo_registry)

        [result] = agent.dispatch([call("nope", text="x")], ConversationState.initial("q"))

        assert result.error_code == "UNKNOWN_TOOL"
        assert result.content.startswith("ERROR: Unknown tool 'nope'")
        assert "echo" in result.content

    def test_invalid_arguments_become_error_result(self, echo_registry):
        """Schema violations are reported per field."""
        agent = FileAnalystAgent(model=MockModel([]), registry=echo_registry)

        [result] = agent.dispatch([call("echo", wrong="x")], ConversationState.initial("q"))

        assert result.error_code == "INVALID_ARGUMENTS"
        assert "text" in result.content
        assert "wrong" in result.content

    def test_raising_tool_becomes_error_result(self, echo_registry):
        """A tool that raises yields TOOL_EXECUTION_FAILED instead of aborting."""
        agent = FileAnalystAgent(model=MockModel([]), registry=echo_registry)

        [result] = agent.dispatch([call("explode", text="x")], ConversationState.initial("q"))

        assert result.error_code == "TOOL_EXECUTION_FAILED"
        assert "RuntimeError" in result.content

    def test_unknown_tool_run_still_completes(self, echo_registry):
        """The backend can recover after an unknown tool."""
        model = MockModel([calls(call("nope", text="x")), answer("sorry")])
        agent = FileAnalystAgent(model=model, registry=echo_registry)

        result = agent.run("q")

        assert result.output == "sorry"
        assert result.state.messages[2].error_code == "UNKNOWN_TOOL"


class TestRepeatedFailureGuard:
    """Tests for short-circuiting identical failing calls."""

    def test_third_identical_failure_is_skipped(self, echo_registry):
        """After two failures the same call is not executed again."""
        model = MockModel([
            calls(call("complain", "c1", text="x")),
            calls(call("complain", "c2", text="x")),
            calls(call("complain", "c3", text="x")),
            answer("I cannot process x"),
        ])
        agent = FileAnalystAgent(model=model, registry=echo_registry, max_identical_failures=2)

        result = agent.run("q")

        tool_results = [m for m in result.state.messages if m.role == "tool"]
        assert [m.error_code for m in tool_results] == [
            "TOOL_REPORTED_ERROR", "TOOL_REPORTED_ERROR", "REPEATED_FAILURE",
        ]
        assert "already failed 2 times" in tool_results[2].content

    def test_different_arguments_are_not_skipped(self, echo_registry):
        """Changing the arguments resets the guard."""
        model = MockModel([
            calls(call("complain", "c1", text="x")),
            calls(call("complain", "c2", text="x")),
            calls(call("complain", "c3", text="y")),
            answer("done"),
        ])
        agent = FileAnalystAgent(model=model, registry=echo_registry, max_identical_failures=2)

        result = agent.run("q")

        assert result.state.messages[6].content == "ERROR: could not process y"

    def test_zero_disables_the_guard(self, echo_registry):
        """max_identical_failures=0 never skips."""
        model = MockModel([calls(call("complain", f"c{i}", text="x")) for i in range(4)] + [answer("done")])
        agent = FileAnalystAgent(model=model, registry=echo_registry, max_identical_failures=0)

        result = agent.run("q")

        assert all(m.error_code == "TOOL_REPORTED_ERROR" for m in result.state.messages if m.role == "tool")

    def test_failure_counts_use_canonical_arguments(self):
        """Argument order does not change the invocation key."""
        first = ToolCall(id="a", name="t", arguments={"x": 1, "y": 2})
        second = ToolCall(id="b", name="t", arguments={"y": 2, "x": 1})
        messages = [
            ChatMessage(role="assistant", tool_calls=(first,)),
            ChatMessage.tool_result(first, "ERROR: bad", error_code="TOOL_REPORTED_ERROR"),
            ChatMessage(role="assistant", tool_calls=(second,)),
            ChatMessage.tool_result(second, "fine"),
        ]

        assert invocation_key(first) == invocation_key(second)
        assert failure_counts(messages)[invocation_key(first)] == 1

    def test_text_starting_with_error_is_a_success(self, echo_registry):
        """File content that begins with 'ERROR' is data, not a failure."""
        model = MockModel([
            calls(call("echo", "c1", text="ERROR 2024-05-01 disk full")),
            calls(call("echo", "c2", text="ERROR 2024-05-01 disk full")),
            calls(call("echo", "c3", text="ERROR 2024-05-01 disk full")),
            answer("The log reports a full disk"),
        ])
        agent = FileAnalystAgent(model=model, registry=echo_registry, max_identical_failures=2)

        result = agent.run("q")

        tool_results = [m for m in result.state.messages if m.role == "tool"]
        assert [m.content for m in tool_results] == ["ERROR 2024-05-01 disk full"] * 3
        assert all(m.error_code is None for m in tool_results)

    def test_error_log_file_is_read_every_time(self, file_registry, tmp_path):
        """Re-reading a log whose first line is 'ERROR:' is never skipped."""
        log = tmp_path / "service.log.txt"
        log.write_text("ERROR: connection refused\nINFO: retrying\n", encoding="utf-8")
        path = str(log)
        model = MockModel([
            calls(call("file_inspector", f"c{i}", filePath=path)) for i in range(3)
        ] + [answer("One error")])
        agent = FileAnalystAgent(model=model, registry=file_registry, max_identical_failures=1)

        result = agent.run("Any errors?", files=[path])

        tool_results = [m for m in result.state.messages if m.role == "tool"]
        assert all(m.content.startswith("ERROR: connection refused") for m in tool_results)
        assert all(m.error_code is None for m in tool_results)

    def test_failure_counts_ignore_unflagged_text(self):
        """Only results with an error code count as failures."""
        first = ToolCall(id="a", name="t", arguments={})
        messages = [
            ChatMessage(role="assistant", tool_calls=(first,)),
            ChatMessage.tool_result(first, "ERROR: looks bad but is file content"),
        ]

        assert failure_counts(messages)[invocation_key(first)] == 0

    def test_reported_errors_are_flagged(self, file_registry, tmp_path):
        """A tool's own error text gets an error code on its result."""
        path = str(tmp_path / "missing.csv")
        model = MockModel([calls(call("file_inspector", filePath=path)), answer("not found")])
        agent = FileAnalystAgent(model=model, registry=file_registry)

        result = agent.run("q", files=[path])

        tool_result = result.state.messages[2]
        assert tool_result.content.startswith("ERROR: File not found")
        assert tool_result.error_code == "TOOL_REPORTED_ERROR"
        assert type(tool_result.content) is str


class TestAsyncLoop:
    """Tests for run_async()."""

    @pytest.mark.asyncio
    async def test_same_transitions_as_sync(self, file_registry, employees_csv):
        """The async loop produces the same four-message conversation."""
        path = str(employees_csv)
        model = MockModel([calls(call("file_inspector", filePath=path)), answer("3")])
        agent = FileAnalystAgent(model=model, registry=file_registry)

        result = await agent.run_async("How many rows?", files=[path])

        assert result.output == "3"
        assert len(result.state.messages) == 4

    @pytest.mark.asyncio
    async def test_parallel_dispatch_keeps_request_order(self):
        """Concurrent tool runs are reassembled in request order."""

        @tool
        def slow(text: str) -> str:
            """Sleeps before answering."""
            time.sleep(0.05)
            return f"slow:{text}"

        @tool
        def fast(text: str) -> str:
            """Answers immediately."""
            return f"fast:{text}"

        model = MockModel([
            calls(call("slow", "s", text="1"), call("fast", "f", text="2")),
            answer("done"),
        ])
        agent = FileAnalystAgent(model=model, registry=ToolRegistry([slow, fast]), parallel_tools=True)

        result = await agent.run_async("q")

        results = result.state.messages[2:4]
        assert [r.tool_call_id for r in results] == ["s", "f"]
        assert [r.content for r in results] == ["slow:1", "fast:2"]

    @pytest.mark.asyncio
    async def test_ceiling_applies_to_async(self, echo_registry):
        """The async loop honors the same ceiling."""
        model = AlwaysCallsTool()
        agent = FileAnalystAgent(model=model, registry=echo_registry, max_decisions=2)

        with pytest.raises(RecursionLimitExceeded):
            await agent.run_async("q")
        assert model.calls == 2

    @pytest.mark.asyncio
    async def test_async_retry(self, echo_registry):
        """BackendUnavailable is retried on the async path too."""
        model = MockModel([BackendUnavailable("blip"), answer("ok")])
        agent = FileAnalystAgent(
            model=model,
            registry=echo_registry,
            retry_policy=RetryPolicy(max_attempts=2, base_delay=0.0, jitter=False),
        )

        result = await agent.run_async("q")

        assert result.output == "ok"


class TestRunLogging:
    """Log lines emitted during a run carry its request id."""

    @pytest.fixture
    def captured(self):
        records = []
        sink_id = logger.add(lambda m: records.append(m.record), level="DEBUG")
        yield records
        logger.remove(sink_id)

    def test_every_run_line_is_tagged(self, echo_registry, captured):
        model = MockModel([calls(call("echo", text="hi")), answer("done")])
        agent = FileAnalystAgent(model=model, registry=echo_registry)

        agent.run("q", context=RunContext(request_id="req-42"))

        run_lines = [r for r in captured if r["name"] == "agents.file_analyst.agent"]
        assert any("Run started" in r["message"] for r in run_lines)
        assert any("Run complete" in r["message"] for r in run_lines)
        assert all(r["extra"].get("request_id") == "req-42" for r in run_lines)

    def test_id_is_released_after_the_run(self, echo_registry, captured):
        agent = FileAnalystAgent(model=MockModel([answer("done")]), registry=echo_registry)
        agent.run("q", context=RunContext(request_id="req-42"))

        logger.info("after the run")

        assert "request_id" not in captured[-1]["extra"]

    @pytest.mark.asyncio
    async def test_async_run_lines_are_tagged(self, echo_registry, captured):
        agent = FileAnalystAgent(model=MockModel([answer("done")]), registry=echo_registry)

        await agent.run_async("q", context=RunContext(request_id="req-7"))

        run_lines = [r for r in captured if r["name"] == "agents.file_analyst.agent"]
        assert run_lines
        assert all(r["extra"].get("request_id") == "req-7" for r in run_lines)
