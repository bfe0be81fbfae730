"""Parley conversation walkthrough.

This script shows the core conversation behaviours:
1. A provider that asks for a tool, and the tool loop that answers it
2. Messages queued while a turn is running
3. Aborting a turn and keeping the partial answer
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import AsyncIterator

from pydantic import BaseModel, Field

from parley import AbortSignal, Conversation, Provider, ProviderRequest, ToolResult, agent_tool
from parley.events import AgentEvent
from parley.logging_utils import configure_logging
from parley.messages import AssistantMessage, TextContent, ToolCall, ToolResultMessage, UserMessage
from parley.providers import ProviderEvent, TextDelta, ToolCallRequest, TurnComplete

# ============================================================================
# A TOY PROVIDER
# ============================================================================

SUM_RE = re.compile(r"(-?\d+)\s*\+\s*(-?\d+)")


class CalculatorProvider:
    """Asks for the `add` tool when the user writes `a + b`, echoes otherwise."""

    async def run(self, request: ProviderRequest, signal: AbortSignal) -> AsyncIterator[ProviderEvent]:
        last = request.messages[-1] if request.messages else None
        if isinstance(last, ToolResultMessage):
            async for event in self._say(f"The answer is {last.text}.", request.model, signal):
                yield event
            return

        text = last.text if isinstance(last, UserMessage) else ""
        if match := SUM_RE.search(text):
            arguments = {"a": int(match.group(1)), "b": int(match.group(2))}
            call = ToolCall(id=f"call-{len(request.messages)}", name="add", arguments=arguments)
            yield ToolCallRequest(call.id, call.name, arguments)
            yield TurnComplete(AssistantMessage(content=[call], model=request.model, stop_reason="tool_use"))
            return

        async for event in self._say(f"You said: {text}", request.model, signal):
            yield event

    async def _say(self, text: str, model: str, signal: AbortSignal) -> AsyncIterator[ProviderEvent]:
        for word in text.split(" "):
            if signal.aborted:
                return
            yield TextDelta(word + " ")
            await asyncio.sleep(0.05)
        yield TurnComplete(AssistantMessage(content=[TextContent(text=text)], model=model))


class AddParams(BaseModel):
    a: int = Field(description="First addend")
    b: int = Field(description="Second addend")


@agent_tool(name="add", description="Add two integers", parameters=AddParams, label="Add")
async def add(call_id: str, params: AddParams, signal: AbortSignal) -> ToolResult:
    return ToolResult.text(str(params.a + params.b), details={"a": params.a, "b": params.b})


# ============================================================================
# EXAMPLES
# ============================================================================


def print_event(event: AgentEvent) -> None:
    if event.type == "message_update" and event.delta:
        print(event.delta, end="", flush=True)
    elif event.type == "message_end" and event.message_type == "assistant":
        print()
    elif event.type in {"turn_start", "turn_end", "tool_execution_start", "tool_execution_end"}:
        print(f"  [{event.type}]")


async def tool_loop_example(conversation: Conversation) -> None:
    print("\n== tool loop ==")
    outcome = await conversation.prompt("What is 19 + 23?")
    print(f"status={outcome.status} steps={outcome.steps}")


async def queue_example(conversation: Conversation) -> None:
    print("\n== queued messages ==")
    conversation.set_queue_mode("one-at-a-time")
    await conversation.queue_message(UserMessage(content=[TextContent(text="first queued")]))
    await conversation.queue_message(UserMessage(content=[TextContent(text="second queued")]))
    await conversation.continue_()
    print(f"still queued: {len(conversation.queued_messages)}")
    await conversation.continue_()
    print(f"still queued: {len(conversation.queued_messages)}")


async def abort_example(conversation: Conversation) -> None:
    print("\n== abort ==")
    turn = asyncio.create_task(conversation.prompt("tell me a rather long story about nothing at all"))
    await asyncio.sleep(0.12)
    conversation.abort()
    outcome = await turn
    last = conversation.state.messages[-1]
    print(f"status={outcome.status} incomplete={getattr(last, 'is_incomplete', False)}")


async def main() -> None:
    configure_logging()
    provider = Provider(adapter=CalculatorProvider(), model="calculator")
    async with Conversation(provider=provider, tools=[add]) as conversation:
        conversation.subscribe(print_event)
        await tool_loop_example(conversation)
        await queue_example(conversation)
        await abort_example(conversation)


if __name__ == "__main__":
    asyncio.run(main())
