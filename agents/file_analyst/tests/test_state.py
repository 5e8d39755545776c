"""Unit tests for conversation state and its reducer."""

import pytest

from agents.file_analyst.core.models import ChatMessage, ToolCall
from agents.file_analyst.state import (
    ConversationState,
    fragment,
    merge,
    merge_known_files,
    merge_messages,
    orphaned_tool_results,
    pending_tool_calls,
)


def msgs(*texts):
    return tuple(ChatMessage.user(t) for t in texts)


class TestMergeKnownFiles:
    """Tests for the file-set reducer."""

    def test_union_without_duplicates(self):
        """merge({a,b}, {b,c}) = {a,b,c}."""
        assert merge_known_files({"a", "b"}, {"b", "c"}) == frozenset({"a", "b", "c"})

    def test_idempotent(self):
        """Merging a set with itself changes nothing."""
        files = frozenset({"x.csv", "y.pdf"})
        assert merge_known_files(files, files) == files

    def test_repeated_inputs_collapse(self):
        """Repetition inside the incoming value is deduplicated."""
        assert merge_known_files([], ["a", "a", "a"]) == frozenset({"a"})

    @pytest.mark.parametrize("a, b", [({"1"}, {"2"}), ({"1", "2"}, {"2", "3"}), (set(), {"z"})])
    def test_commutative(self, a, b):
        """Order of arguments does not change membership."""
        assert merge_known_files(a, b) == merge_known_files(b, a)


class TestMergeMessages:
    """Tests for the message reducer."""

    def test_incoming_follows_existing(self):
        """Concatenation keeps insertion order."""
        merged = merge_messages(msgs("1", "2"), msgs("3"))
        assert [m.content for m in merged] == ["1", "2", "3"]

    def test_duplicates_are_kept(self):
        """Messages are a log, not a set."""
        merged = merge_messages(msgs("same"), msgs("same"))
        assert len(merged) == 2


class TestMerge:
    """Tests for merging whole snapshots."""

    def test_inputs_are_not_modified(self):
        """merge returns a new snapshot and leaves both inputs intact."""
        existing = ConversationState(messages=msgs("q"), known_files=frozenset({"a"}))
        incoming = fragment(msgs("r"), files=["b"])

        merged = merge(existing, incoming)

        assert merged is not existing
        assert len(existing.messages) == 1
        assert existing.known_files == frozenset({"a"})
        assert [m.content for m in merged.messages] == ["q", "r"]
        assert merged.known_files == frozenset({"a", "b"})

    def test_associative(self):
        """(a + b) + c == a + (b + c)."""
        a = fragment(msgs("1"), ["x"])
        b = fragment(msgs("2"), ["y"])
        c = fragment(msgs("3"), ["x", "z"])

        assert merge(merge(a, b), c) == merge(a, merge(b, c))

    def test_repeated_file_merges_are_idempotent(self):
        """Re-merging the same files every iteration never grows the set."""
        state = ConversationState.initial("q", files=["a.csv"])
        for _ in range(3):
            state = state.merge(fragment(files=["a.csv"]))

        assert state.known_files == frozenset({"a.csv"})

    def test_state_is_frozen(self):
        """Snapshots cannot be mutated in place."""
        state = ConversationState.initial("q")
        with pytest.raises(Exception):
            state.messages = ()

    def test_initial_state(self):
        """Seeded with one user message and the offered files."""
        state = ConversationState.initial("What?", files=["a", "a", "b"])

        assert state.last_message == ChatMessage.user("What?")
        assert state.known_files == frozenset({"a", "b"})


class TestCorrelation:
    """Tests for tool-result correlation helpers."""

    def _request(self, *ids):
        return ChatMessage(
            role="assistant",
            tool_calls=tuple(ToolCall(id=i, name="t", arguments={}) for i in ids),
        )

    def _result(self, call_id):
        return ChatMessage(role="tool", content="ok", tool_call_id=call_id, name="t")

    def test_well_formed_log_has_no_orphans(self):
        """Every result answers an open request of the preceding assistant message."""
        log = [ChatMessage.user("q"), self._request("a", "b"), self._result("a"), self._result("b")]
        assert orphaned_tool_results(log) == []

    def test_unknown_id_is_orphaned(self):
        """A result for an id that was never requested is orphaned."""
        orphan = self._result("zzz")
        assert orphaned_tool_results([self._request("a"), orphan]) == [orphan]

    def test_second_answer_is_orphaned(self):
        """A request can only be answered once."""
        log = [self._request("a"), self._result("a"), self._result("a")]
        assert orphaned_tool_results(log) == [log[2]]

    def test_answer_to_older_request_is_orphaned(self):
        """Results must answer the immediately preceding assistant message."""
        stale = self._result("a")
        log = [self._request("a"), self._result("a"), self._request("b"), stale]
        assert orphaned_tool_results(log) == [stale]

    def test_pending_tool_calls(self):
        """Only unanswered requests of the latest assistant message are pending."""
        state = ConversationState(messages=(self._request("a", "b"), self._result("a")))
        assert [c.id for c in pending_tool_calls(state)] == ["b"]
