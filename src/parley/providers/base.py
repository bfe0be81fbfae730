"""Provider adapter contract."""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from republic import Tool

from parley.cancellation import AbortSignal
from parley.messages import AssistantMessage, Message


@dataclass(frozen=True)
class ProviderRequest:
    """Everything one provider call needs, captured at call time."""

    model: str
    messages: list[Message]
    system_prompt: str | None = None
    tools: list[Tool] = field(default_factory=list)
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TextDelta:
    delta: str


@dataclass(frozen=True)
class ThinkingDelta:
    delta: str


@dataclass(frozen=True)
class ToolCallRequest:
    call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TurnComplete:
    """Terminal event carrying the final assistant message."""

    message: AssistantMessage


@dataclass(frozen=True)
class TurnError:
    """Terminal event for a failed generation."""

    reason: str


type ProviderEvent = TextDelta | ThinkingDelta | ToolCallRequest | TurnComplete | TurnError


@runtime_checkable
class ProviderAdapter(Protocol):
    """Turns conversation state into a stream of generation events.

    Adapters must stop producing events and settle promptly once the signal is
    raised.
    """

    def run(self, request: ProviderRequest, signal: AbortSignal) -> AsyncIterator[ProviderEvent]: ...


@dataclass(frozen=True)
class Provider:
    """Selected adapter, model and provider options."""

    adapter: ProviderAdapter
    model: str
    options: Mapping[str, Any] = field(default_factory=dict)
