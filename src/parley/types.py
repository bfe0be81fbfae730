"""Shared literal types and aliases."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING, Literal, get_args

if TYPE_CHECKING:
    from parley.events import AgentEvent
    from parley.messages import Message

QueueMode = Literal["all", "one-at-a-time"]
TurnStatus = Literal["completed", "error", "aborted"]
StopReason = Literal["stop", "length", "tool_use", "error", "aborted"]
MessageRole = Literal["user", "assistant", "tool_result", "custom"]

QUEUE_MODES: tuple[str, ...] = get_args(QueueMode)

type Listener = Callable[[AgentEvent], None]
type MessageTransformer = Callable[[list[Message]], list[Message] | Awaitable[list[Message]]]


class TurnPhase(str, Enum):
    """Position of the conversation in the per-turn state machine."""

    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    TOOL_PENDING = "tool_pending"
    FINALIZING = "finalizing"
