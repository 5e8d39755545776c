"""
Conversation state and its reducer.

A run's state is an immutable snapshot: the ordered message log plus the
set of file paths the agent knows about. Every step returns a fragment
and the control loop folds it in with `merge`, which never touches its
inputs.
"""

from __future__ import annotations

from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from .core.models import ChatMessage, ToolCall


def merge_messages(
    existing: Sequence[ChatMessage], incoming: Sequence[ChatMessage]
) -> Tuple[ChatMessage, ...]:
    """Append-only: incoming messages follow existing ones, order untouched."""
    return tuple(existing) + tuple(incoming)


def merge_known_files(existing: Iterable[str], incoming: Iterable[str]) -> FrozenSet[str]:
    """Set union; repeated or re-merged paths never produce duplicates."""
    return frozenset(existing) | frozenset(incoming)


class ConversationState(BaseModel):
    """
    Snapshot of one run.

    Attributes:
        messages: Conversation log in insertion order (system directive excluded)
        known_files: Paths the agent may inspect
    """
    messages: Tuple[ChatMessage, ...] = Field(default=())
    known_files: FrozenSet[str] = Field(default=frozenset())

    model_config = {"frozen": True}

    @classmethod
    def initial(cls, question: str, files: Iterable[str] = ()) -> "ConversationState":
        """Seed state for a new run: the user's question and the files offered."""
        return cls(messages=(ChatMessage.user(question),), known_files=frozenset(files))

    @property
    def last_message(self) -> Optional[ChatMessage]:
        return self.messages[-1] if self.messages else None

    def merge(self, incoming: "ConversationState") -> "ConversationState":
        return merge(self, incoming)


def merge(existing: ConversationState, incoming: ConversationState) -> ConversationState:
    """
    Fold a state fragment into a snapshot, producing a new snapshot.

    Messages concatenate (existing first); known files are unioned.
    Associative, and idempotent on the file set.
    """
    return ConversationState(
        messages=merge_messages(existing.messages, incoming.messages),
        known_files=merge_known_files(existing.known_files, incoming.known_files),
    )


def fragment(
    messages: Sequence[ChatMessage] = (), files: Iterable[str] = ()
) -> ConversationState:
    """Build the fragment a single step hands back to the loop."""
    return ConversationState(messages=tuple(messages), known_files=frozenset(files))


def orphaned_tool_results(messages: Sequence[ChatMessage]) -> List[ChatMessage]:
    """
    Tool results that do not answer an open request of the assistant
    message immediately preceding their run of tool results.

    A result is orphaned when there is no such assistant message, when
    its id is not among that message's requests, or when the request was
    already answered.
    """
    orphans: List[ChatMessage] = []
    open_calls: Optional[set] = None

    for message in messages:
        if message.role == "assistant":
            open_calls = {call.id for call in message.tool_calls}
        elif message.role == "tool":
            if open_calls is None or message.tool_call_id not in open_calls:
                orphans.append(message)
            else:
                open_calls.discard(message.tool_call_id)
        else:
            open_calls = None
    return orphans


def pending_tool_calls(state: ConversationState) -> Tuple[ToolCall, ...]:
    """Invocations of the latest assistant message that have no result yet."""
    for index in range(len(state.messages) - 1, -1, -1):
        message = state.messages[index]
        if message.role == "assistant":
            answered = {
                m.tool_call_id for m in state.messages[index + 1:] if m.role == "tool"
            }
            return tuple(c for c in message.tool_calls if c.id not in answered)
    return ()
