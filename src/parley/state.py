"""Externally visible conversation state."""

from __future__ import annotations

from dataclasses import dataclass, field

from parley.messages import Message
from parley.providers import EchoProvider, Provider
from parley.tools import AgentTool

DEFAULT_MODEL = "echo"


@dataclass(frozen=True)
class AgentState:
    """Snapshot of one conversation.

    Only the owning Conversation replaces it. Lists are never mutated after a
    snapshot is published; changes produce a new snapshot with new lists.
    """

    provider: Provider
    system_prompt: str | None = None
    messages: list[Message] = field(default_factory=list)
    tools: list[AgentTool] = field(default_factory=list)
    is_streaming: bool = False
    pending_tool_calls: frozenset[str] = frozenset()
    error: str | None = None


def default_provider() -> Provider:
    return Provider(adapter=EchoProvider(), model=DEFAULT_MODEL)


def default_state() -> AgentState:
    """Build a fresh default state; never shared between conversations."""
    return AgentState(provider=default_provider())
