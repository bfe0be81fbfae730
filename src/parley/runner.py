"""Turn runner.

A turn alternates provider calls and tool executions until the assistant answers
without requesting tools. The runner holds no conversation state: it reports every
change through TurnCallbacks and the Conversation applies them.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from parley.cancellation import AbortSignal, wait_until_aborted
from parley.errors import AbortError, ProviderError
from parley.events import (
    AgentEvent,
    MessageEndEvent,
    MessageStartEvent,
    MessageUpdateEvent,
    StreamEndEvent,
    StreamStartEvent,
    ToolExecutionEndEvent,
    ToolExecutionStartEvent,
)
from parley.messages import (
    AssistantMessage,
    Message,
    TextContent,
    ThinkingContent,
    ToolCall,
    ToolResultMessage,
    build_tool_result_message,
    new_message_id,
)
from parley.providers import (
    Provider,
    ProviderEvent,
    ProviderRequest,
    TextDelta,
    ThinkingDelta,
    ToolCallRequest,
    TurnComplete,
    TurnError,
)
from parley.tools import AgentTool, ToolRegistry
from parley.types import StopReason, TurnPhase, TurnStatus

DEFAULT_MAX_STEPS = 20
MISSING_FINAL_ERROR = "provider_error: stream ended without a final message"


@dataclass(frozen=True)
class TurnContext:
    """Inputs captured when the turn acquired its slot."""

    turn_id: str
    provider: Provider
    system_prompt: str | None = None
    tools: list[AgentTool] = field(default_factory=list)
    max_steps: int = DEFAULT_MAX_STEPS


@dataclass(frozen=True)
class TurnOutcome:
    """Result of one complete turn."""

    turn_id: str
    status: TurnStatus
    messages: list[Message] = field(default_factory=list)
    steps: int = 0
    error: str | None = None


@dataclass(frozen=True)
class TurnCallbacks:
    emit: Callable[[AgentEvent], None]
    append_message: Callable[[Message], None]
    add_pending_tool_call: Callable[[str], None]
    remove_pending_tool_call: Callable[[str], None]
    set_phase: Callable[[TurnPhase], None]


@dataclass
class _PartialAssistant:
    message_id: str
    model: str
    blocks: list[TextContent | ThinkingContent | ToolCall] = field(default_factory=list)
    started: bool = False

    def add_text(self, delta: str) -> None:
        last = self.blocks[-1] if self.blocks else None
        if isinstance(last, TextContent):
            self.blocks[-1] = TextContent(text=last.text + delta)
        else:
            self.blocks.append(TextContent(text=delta))

    def add_thinking(self, delta: str) -> None:
        last = self.blocks[-1] if self.blocks else None
        if isinstance(last, ThinkingContent):
            self.blocks[-1] = ThinkingContent(thinking=last.thinking + delta)
        else:
            self.blocks.append(ThinkingContent(thinking=delta))

    def build(self, *, stop_reason: StopReason = "stop", error_message: str | None = None) -> AssistantMessage:
        return AssistantMessage(
            id=self.message_id,
            content=list(self.blocks),
            model=self.model,
            stop_reason=stop_reason,
            error_message=error_message,
        )


@dataclass(frozen=True)
class _StepResult:
    message: AssistantMessage | None
    tool_calls: list[ToolCall] = field(default_factory=list)
    error: str | None = None
    aborted: bool = False


class TurnRunner:
    """Runs one turn against the provider and the declared tools."""

    async def run(
        self,
        context: TurnContext,
        messages: list[Message],
        signal: AbortSignal,
        callbacks: TurnCallbacks,
    ) -> TurnOutcome:
        registry = ToolRegistry(context.tools)
        declarations = registry.declarations()
        outgoing = list(messages)
        produced: list[Message] = []
        step = 0

        def record(message: Message) -> None:
            callbacks.append_message(message)
            produced.append(message)
            outgoing.append(message)

        def finish(status: TurnStatus, error: str | None = None) -> TurnOutcome:
            return TurnOutcome(
                turn_id=context.turn_id,
                status=status,
                messages=list(produced),
                steps=step,
                error=error,
            )

        while True:
            if signal.aborted:
                return finish("aborted")
            if step >= context.max_steps:
                logger.warning("turn.max_steps turn={} max_steps={}", context.turn_id, context.max_steps)
                return finish("error", f"max_steps_reached={context.max_steps}")

            step += 1
            logger.info("provider.step turn={} step={} model={}", context.turn_id, step, context.provider.model)
            callbacks.set_phase(TurnPhase.SENDING)
            callbacks.emit(StreamStartEvent(turn_id=context.turn_id, step=step))
            request = ProviderRequest(
                model=context.provider.model,
                messages=list(outgoing),
                system_prompt=context.system_prompt,
                tools=declarations,
                options=dict(context.provider.options),
            )
            result = await self._stream(context, request, signal, callbacks)
            if result.message is not None:
                record(result.message)
            callbacks.emit(
                StreamEndEvent(
                    turn_id=context.turn_id,
                    step=step,
                    stop_reason=result.message.stop_reason if result.message is not None else "aborted",
                    error=result.error,
                )
            )
            if result.aborted:
                return finish("aborted")
            if result.error is not None:
                return finish("error", result.error)
            if not result.tool_calls:
                return finish("completed")

            callbacks.set_phase(TurnPhase.TOOL_PENDING)
            for call in result.tool_calls:
                if signal.aborted:
                    return finish("aborted")
                tool_message, aborted = await self._execute_tool(registry, call, signal, callbacks)
                record(tool_message)
                if aborted:
                    return finish("aborted")

    async def _stream(
        self,
        context: TurnContext,
        request: ProviderRequest,
        signal: AbortSignal,
        callbacks: TurnCallbacks,
    ) -> _StepResult:
        partial = _PartialAssistant(message_id=new_message_id(), model=request.model)
        requested: dict[str, ToolCall] = {}
        final: AssistantMessage | None = None
        error: str | None = None
        aborted = False

        stream = context.provider.adapter.run(request, signal)
        try:
            iterator = aiter(stream)
            while True:
                signal.raise_if_aborted()
                event = await wait_until_aborted(_next_event(iterator), signal)
                if event is None:
                    error = MISSING_FINAL_ERROR
                    break
                self._start_message(partial, callbacks)
                if isinstance(event, TurnComplete):
                    final = event.message
                    break
                if isinstance(event, TurnError):
                    error = event.reason
                    break
                self._apply_delta(event, partial, requested, callbacks)
        except AbortError:
            aborted = True
        except ProviderError as exc:
            logger.warning("provider.stream.failed model={} error={}", request.model, exc)
            error = str(exc)
        except Exception as exc:
            logger.exception("provider.stream.error model={}", request.model)
            error = f"provider_error: {exc!s}"
        finally:
            await _close_stream(stream)

        if aborted:
            if not partial.started:
                return _StepResult(message=None, aborted=True)
            message = partial.build(stop_reason="aborted")
            callbacks.emit(MessageEndEvent(message_id=message.id, message_type="assistant", message=message))
            return _StepResult(message=message, aborted=True)

        if error is not None or final is None:
            self._start_message(partial, callbacks)
            error = error or MISSING_FINAL_ERROR
            message = partial.build(stop_reason="error", error_message=error)
            callbacks.emit(MessageEndEvent(message_id=message.id, message_type="assistant", message=message))
            return _StepResult(message=message, error=error)

        message = _merge_final(final, partial, requested)
        for call in message.tool_calls:
            if call.id not in requested:
                callbacks.add_pending_tool_call(call.id)
        callbacks.emit(MessageEndEvent(message_id=message.id, message_type="assistant", message=message))
        return _StepResult(message=message, tool_calls=message.tool_calls)

    def _start_message(self, partial: _PartialAssistant, callbacks: TurnCallbacks) -> None:
        if partial.started:
            return
        partial.started = True
        callbacks.set_phase(TurnPhase.STREAMING)
        callbacks.emit(
            MessageStartEvent(message_id=partial.message_id, message_type="assistant", message=partial.build())
        )

    def _apply_delta(
        self,
        event: ProviderEvent,
        partial: _PartialAssistant,
        requested: dict[str, ToolCall],
        callbacks: TurnCallbacks,
    ) -> None:
        delta: str | None = None
        if isinstance(event, TextDelta):
            partial.add_text(event.delta)
            delta = event.delta
        elif isinstance(event, ThinkingDelta):
            partial.add_thinking(event.delta)
            delta = event.delta
        elif isinstance(event, ToolCallRequest):
            call = ToolCall(id=event.call_id, name=event.name, arguments=dict(event.arguments))
            partial.blocks.append(call)
            requested[call.id] = call
            callbacks.add_pending_tool_call(call.id)
        else:
            logger.warning("provider.event.unknown kind={}", type(event).__name__)
            return
        callbacks.emit(
            MessageUpdateEvent(
                message_id=partial.message_id,
                message_type="assistant",
                message=partial.build(),
                delta=delta,
            )
        )

    async def _execute_tool(
        self,
        registry: ToolRegistry,
        call: ToolCall,
        signal: AbortSignal,
        callbacks: TurnCallbacks,
    ) -> tuple[ToolResultMessage, bool]:
        callbacks.emit(ToolExecutionStartEvent(tool_call_id=call.id, tool_name=call.name, arguments=call.arguments))
        aborted = False
        try:
            message = await registry.execute(call, signal)
        except AbortError as exc:
            aborted = True
            message = build_tool_result_message(
                call, [TextContent(text="Tool execution aborted")], details={}, error=exc
            )
        finally:
            callbacks.remove_pending_tool_call(call.id)

        callbacks.emit(
            ToolExecutionEndEvent(
                tool_call_id=call.id,
                tool_name=call.name,
                result=message,
                is_error=message.is_error,
            )
        )
        callbacks.emit(MessageStartEvent(message_id=message.id, message_type="tool_result", message=message))
        callbacks.emit(MessageEndEvent(message_id=message.id, message_type="tool_result", message=message))
        return message, aborted


def _merge_final(
    final: AssistantMessage,
    partial: _PartialAssistant,
    requested: dict[str, ToolCall],
) -> AssistantMessage:
    """Pin the streamed id onto the adapter's final message and keep every requested call."""
    update: dict[str, Any] = {"id": partial.message_id}
    if not final.model:
        update["model"] = partial.model
    present = {call.id for call in final.tool_calls}
    missing = [call for call_id, call in requested.items() if call_id not in present]
    if missing:
        update["content"] = [*final.content, *missing]
    return final.model_copy(update=update)


async def _next_event(iterator: AsyncIterator[ProviderEvent]) -> ProviderEvent | None:
    try:
        return await anext(iterator)
    except StopAsyncIteration:
        return None


async def _close_stream(stream: object) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()
