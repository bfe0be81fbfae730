"""Conversation session core.

The Conversation is the only writer of conversation state. It serializes turns
(at most one in flight), drains queued input into the next turn, supports
cooperative cancellation and publishes lifecycle events to subscribers.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable, Iterable
from contextvars import ContextVar
from dataclasses import replace
from typing import Any, Self

from loguru import logger

from parley.cancellation import AbortSignal
from parley.config import Settings
from parley.errors import (
    InvalidContinueError,
    NothingToContinueError,
    SessionBusyError,
    SessionClosedError,
)
from parley.events import (
    AgentEvent,
    EventPublisher,
    MessageEndEvent,
    MessageStartEvent,
    MessageUpdateEvent,
    TurnEndEvent,
    TurnStartEvent,
)
from parley.messages import Attachment, CustomMessage, Message, build_user_message, new_message_id
from parley.providers import Provider
from parley.queue import MessageQueue, QueuedMessage, validate_queue_mode
from parley.runner import DEFAULT_MAX_STEPS, TurnCallbacks, TurnContext, TurnOutcome, TurnRunner
from parley.state import AgentState, default_provider, default_state
from parley.tools import AgentTool
from parley.types import Listener, MessageTransformer, QueueMode, TurnPhase

CONTINUABLE_ROLES = frozenset({"user", "tool_result"})

_session_context: ContextVar[str] = ContextVar("session")


def current_session() -> str:
    """Get the id of the conversation whose turn is running in this context."""
    return _session_context.get("-")


def _identity(messages: list[Message]) -> list[Message]:
    return messages


class Conversation:
    """Owns one conversation's state and runs its turns."""

    def __init__(
        self,
        *,
        provider: Provider | None = None,
        system_prompt: str | None = None,
        messages: Iterable[Message] | None = None,
        tools: Iterable[AgentTool] | None = None,
        message_transformer: MessageTransformer | None = None,
        queue_mode: QueueMode = "one-at-a-time",
        max_steps: int = DEFAULT_MAX_STEPS,
        session_id: str | None = None,
        runner: TurnRunner | None = None,
    ) -> None:
        self.session_id = session_id or new_message_id()
        self._state = replace(
            default_state(),
            provider=provider or default_provider(),
            system_prompt=system_prompt,
            messages=list(messages or []),
            tools=list(tools or []),
        )
        self._transformer: MessageTransformer = message_transformer or _identity
        self._queue_mode: QueueMode = validate_queue_mode(queue_mode)
        self._max_steps = max_steps
        self._runner = runner or TurnRunner()
        self._publisher = EventPublisher()
        self._queue = MessageQueue()
        self._abort_signal: AbortSignal | None = None
        self._running_turn: asyncio.Task[TurnOutcome] | None = None
        self._phase = TurnPhase.IDLE
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings, *, provider: Provider | None = None, **kwargs: Any) -> Conversation:
        if provider is None:
            provider = replace(default_provider(), model=settings.model)
        return cls(
            provider=provider,
            system_prompt=settings.system_prompt,
            queue_mode=settings.queue_mode,
            max_steps=settings.max_steps,
            **kwargs,
        )

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        await self.close()

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def phase(self) -> TurnPhase:
        return self._phase

    @property
    def is_running(self) -> bool:
        return self._running_turn is not None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def queue_mode(self) -> QueueMode:
        return self._queue_mode

    @property
    def queued_messages(self) -> tuple[QueuedMessage, ...]:
        return self._queue.snapshot()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self._publisher.subscribe(listener)

    # State mutators: update state immediately, never emit. Turns already in
    # flight keep the inputs they captured.

    def set_system_prompt(self, text: str | None) -> None:
        self._state = replace(self._state, system_prompt=text)

    def set_provider(self, provider: Provider) -> None:
        self._state = replace(self._state, provider=provider)

    def set_tools(self, tools: Iterable[AgentTool]) -> None:
        self._state = replace(self._state, tools=list(tools))

    def set_queue_mode(self, mode: QueueMode) -> None:
        self._queue_mode = validate_queue_mode(mode)

    def replace_messages(self, messages: Iterable[Message]) -> None:
        self._state = replace(self._state, messages=list(messages))

    def append_message(self, message: Message) -> None:
        self._state = replace(self._state, messages=[*self._state.messages, message])

    def append_messages(self, messages: Iterable[Message]) -> None:
        self._state = replace(self._state, messages=[*self._state.messages, *messages])

    def remove_message(self, message_id: str) -> bool:
        remaining = [message for message in self._state.messages if message.id != message_id]
        if len(remaining) == len(self._state.messages):
            return False
        self._state = replace(self._state, messages=remaining)
        return True

    def update_message(self, message_id: str, updater: Callable[[Message], Message]) -> bool:
        """Replace one message by the updater's result; the stored value is never mutated."""
        for index, message in enumerate(self._state.messages):
            if message.id != message_id:
                continue
            updated = updater(message)
            if updated.id != message_id:
                updated = updated.model_copy(update={"id": message_id})
            messages = list(self._state.messages)
            messages[index] = updated
            self._state = replace(self._state, messages=messages)
            return True
        return False

    def clear_messages(self) -> None:
        self._state = replace(self._state, messages=[])

    def clear_message_queue(self) -> None:
        self._queue.clear()

    async def queue_message(self, message: Message) -> None:
        """Queue a message for the next turn; does not start one."""
        self._ensure_open()
        transformed = await self._transform([message])
        self._queue.put(QueuedMessage(original=message, llm=transformed[0] if transformed else None))

    def abort(self, reason: str = "aborted") -> None:
        if self._abort_signal is not None:
            logger.info("turn.abort session={} reason={}", self.session_id, reason)
            self._abort_signal.abort(reason)

    async def wait_for_idle(self) -> None:
        """Return once no turn is running, whatever way the running turns end."""
        while (task := self._running_turn) is not None:
            await asyncio.wait({task})

    def reset(self) -> None:
        """Clear history, turn state and the queue. Only legal while idle."""
        if self._running_turn is not None:
            raise SessionBusyError("Cannot reset while a turn is running; abort() and wait_for_idle() first")
        self._state = replace(
            self._state,
            messages=[],
            is_streaming=False,
            pending_tool_calls=frozenset(),
            error=None,
        )
        self._queue.clear()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.abort("closed")
        await self.wait_for_idle()
        self._publisher.clear()
        self._queue.clear()

    async def add_custom_message(self, payload: dict[str, Any]) -> CustomMessage:
        """Show a custom message right away; append it once no turn is running."""
        self._ensure_open()
        message = CustomMessage(content=dict(payload))
        self._emit(MessageStartEvent(message_id=message.id, message_type="custom", message=message))
        self._emit(MessageUpdateEvent(message_id=message.id, message_type="custom", message=message))
        await self.wait_for_idle()
        self.append_message(message)
        self._emit(MessageEndEvent(message_id=message.id, message_type="custom", message=message))
        return message

    async def prompt(self, text: str, attachments: list[Attachment] | None = None) -> TurnOutcome:
        """Append a user message and run a turn for it.

        The message enters history immediately. When another turn is running the
        provider call waits for it to finish, and the message is moved after
        whatever that turn appended so the request ends with it.
        """
        self._ensure_open()
        message = build_user_message(text, attachments)
        self.append_message(message)
        self._emit_message(message)
        return await self._run_turn(continuing=False, request_id=message.id)

    async def continue_(self) -> TurnOutcome:
        """Run a turn from the current history without adding a message."""
        self._ensure_open()
        return await self._run_turn(continuing=True)

    async def _run_turn(self, *, continuing: bool, request_id: str | None = None) -> TurnOutcome:
        await self.wait_for_idle()
        self._ensure_open()

        # Slot acquisition: nothing from here to the shield suspends.
        if request_id is not None:
            self._move_to_end(request_id)
        turn = TurnContext(
            turn_id=new_message_id(),
            provider=self._state.provider,
            system_prompt=self._state.system_prompt,
            tools=list(self._state.tools),
            max_steps=self._max_steps,
        )
        history = list(self._state.messages)
        drained = self._queue.drain(self._queue_mode)
        signal = AbortSignal()
        self._abort_signal = signal
        self._state = replace(self._state, is_streaming=True, error=None)
        self._set_phase(TurnPhase.SENDING)
        # Set before any emit so listeners see the turn as running.
        task = asyncio.create_task(self._execute_turn(turn, history, drained, signal, continuing=continuing))
        self._running_turn = task
        logger.info("turn.start session={} turn={} queued={}", self.session_id, turn.turn_id, len(drained))
        self._emit(TurnStartEvent(turn_id=turn.turn_id))
        for item in drained:
            self.append_message(item.original)
            self._emit_message(item.original)

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.done():
                signal.abort("cancelled")
            raise

    async def _execute_turn(
        self,
        turn: TurnContext,
        history: list[Message],
        drained: list[QueuedMessage],
        signal: AbortSignal,
        *,
        continuing: bool,
    ) -> TurnOutcome:
        token = _session_context.set(self.session_id)
        outcome: TurnOutcome | None = None
        failure: BaseException | None = None
        try:
            llm_messages = await self._transform(history)
            llm_messages.extend(item.llm for item in drained if item.llm is not None)
            if continuing:
                _check_continuable(llm_messages)
            outcome = await self._runner.run(turn, llm_messages, signal, self._callbacks())
            return outcome
        except BaseException as exc:
            failure = exc
            raise
        finally:
            self._finalize_turn(turn, outcome, failure)
            _session_context.reset(token)

    def _finalize_turn(self, turn: TurnContext, outcome: TurnOutcome | None, failure: BaseException | None) -> None:
        self._set_phase(TurnPhase.FINALIZING)
        if outcome is not None:
            status, error, messages = outcome.status, outcome.error, outcome.messages
        elif isinstance(failure, asyncio.CancelledError):
            status, error, messages = "aborted", None, []
        else:
            status, error, messages = "error", str(failure), []
        self._state = replace(
            self._state,
            is_streaming=False,
            pending_tool_calls=frozenset(),
            error=error if status == "error" else None,
        )
        if self._running_turn is asyncio.current_task():
            self._running_turn = None
        self._abort_signal = None
        logger.info("turn.end session={} turn={} status={}", self.session_id, turn.turn_id, status)
        self._emit(TurnEndEvent(turn_id=turn.turn_id, status=status, error=error, messages=messages))
        self._set_phase(TurnPhase.IDLE)

    def _move_to_end(self, message_id: str) -> None:
        messages = list(self._state.messages)
        for index, message in enumerate(messages):
            if message.id == message_id:
                if index != len(messages) - 1:
                    messages.append(messages.pop(index))
                    self.replace_messages(messages)
                return

    def _callbacks(self) -> TurnCallbacks:
        return TurnCallbacks(
            emit=self._emit,
            append_message=self.append_message,
            add_pending_tool_call=self._add_pending_tool_call,
            remove_pending_tool_call=self._remove_pending_tool_call,
            set_phase=self._set_phase,
        )

    def _add_pending_tool_call(self, call_id: str) -> None:
        self._state = replace(self._state, pending_tool_calls=self._state.pending_tool_calls | {call_id})

    def _remove_pending_tool_call(self, call_id: str) -> None:
        self._state = replace(self._state, pending_tool_calls=self._state.pending_tool_calls - {call_id})

    def _set_phase(self, phase: TurnPhase) -> None:
        self._phase = phase

    async def _transform(self, messages: list[Message]) -> list[Message]:
        result = self._transformer(list(messages))
        if inspect.isawaitable(result):
            result = await result
        return list(result)

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError(f"Conversation {self.session_id} is closed")

    def _emit_message(self, message: Message) -> None:
        self._emit(MessageStartEvent(message_id=message.id, message_type=message.role, message=message))
        self._emit(MessageUpdateEvent(message_id=message.id, message_type=message.role, message=message))
        self._emit(MessageEndEvent(message_id=message.id, message_type=message.role, message=message))

    def _emit(self, event: AgentEvent) -> None:
        self._publisher.emit(event)


def _check_continuable(messages: list[Message]) -> None:
    if not messages:
        raise NothingToContinueError("No messages to continue from")
    last = messages[-1]
    if last.role not in CONTINUABLE_ROLES:
        raise InvalidContinueError(f"Cannot continue from message role: {last.role}")
