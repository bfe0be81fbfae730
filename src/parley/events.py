"""Lifecycle events published by a conversation.

Events are notifications only. They are delivered synchronously to the listeners
registered at emit time and are never stored.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Annotated, Any, Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from parley.messages import Message, ToolResultMessage
from parley.types import Listener, MessageRole, StopReason, TurnStatus


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)


class TurnStartEvent(_Event):
    type: Literal["turn_start"] = "turn_start"
    turn_id: str


class TurnEndEvent(_Event):
    type: Literal["turn_end"] = "turn_end"
    turn_id: str
    status: TurnStatus
    error: str | None = None
    messages: list[Message] = Field(default_factory=list)


class StreamStartEvent(_Event):
    """One provider call within a turn is about to be sent."""

    type: Literal["stream_start"] = "stream_start"
    turn_id: str
    step: int


class StreamEndEvent(_Event):
    type: Literal["stream_end"] = "stream_end"
    turn_id: str
    step: int
    stop_reason: StopReason
    error: str | None = None


class MessageStartEvent(_Event):
    type: Literal["message_start"] = "message_start"
    message_id: str
    message_type: MessageRole
    message: Message | None = None


class MessageUpdateEvent(_Event):
    type: Literal["message_update"] = "message_update"
    message_id: str
    message_type: MessageRole
    message: Message
    delta: str | None = None


class MessageEndEvent(_Event):
    type: Literal["message_end"] = "message_end"
    message_id: str
    message_type: MessageRole
    message: Message


class ToolExecutionStartEvent(_Event):
    type: Literal["tool_execution_start"] = "tool_execution_start"
    tool_call_id: str
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolExecutionEndEvent(_Event):
    type: Literal["tool_execution_end"] = "tool_execution_end"
    tool_call_id: str
    tool_name: str
    result: ToolResultMessage
    is_error: bool


AgentEvent = Annotated[
    TurnStartEvent
    | TurnEndEvent
    | StreamStartEvent
    | StreamEndEvent
    | MessageStartEvent
    | MessageUpdateEvent
    | MessageEndEvent
    | ToolExecutionStartEvent
    | ToolExecutionEndEvent,
    Field(discriminator="type"),
]


class EventPublisher:
    """Listener registry with snapshot-then-deliver semantics."""

    def __init__(self) -> None:
        # dict keys keep subscription order
        self._listeners: dict[Listener, None] = {}

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners[listener] = None

        def unsubscribe() -> None:
            self._listeners.pop(listener, None)

        return unsubscribe

    def clear(self) -> None:
        self._listeners.clear()

    def emit(self, event: AgentEvent) -> None:
        for listener in tuple(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("conversation.listener.error event={}", event.type)
