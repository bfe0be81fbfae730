import asyncio
from dataclasses import dataclass, field

import pytest
from conftest import ScriptedAdapter, reply
from pydantic import BaseModel

from parley.cancellation import AbortSignal
from parley.errors import ProviderError
from parley.messages import AssistantMessage, Message, TextContent, ToolCall, UserMessage
from parley.providers import Provider, TextDelta, ToolCallRequest, TurnComplete, TurnError
from parley.runner import MISSING_FINAL_ERROR, TurnCallbacks, TurnContext, TurnRunner
from parley.tools import AgentTool, ToolResult
from parley.types import TurnPhase


@dataclass
class Recorder:
    events: list = field(default_factory=list)
    messages: list[Message] = field(default_factory=list)
    pending: set[str] = field(default_factory=set)
    phases: list[TurnPhase] = field(default_factory=list)

    def callbacks(self) -> TurnCallbacks:
        return TurnCallbacks(
            emit=self.events.append,
            append_message=self.messages.append,
            add_pending_tool_call=self.pending.add,
            remove_pending_tool_call=self.pending.discard,
            set_phase=self.phases.append,
        )

    def types(self) -> list[str]:
        return [event.type for event in self.events]


class AddParams(BaseModel):
    a: int
    b: int


class NoParams(BaseModel):
    pass


def _context(adapter, tools=(), max_steps: int = 20) -> TurnContext:
    return TurnContext(
        turn_id="turn-1",
        provider=Provider(adapter=adapter, model="stub"),
        system_prompt="be brief",
        tools=list(tools),
        max_steps=max_steps,
    )


def _prompt(text: str = "hi") -> list[Message]:
    return [UserMessage(content=[TextContent(text=text)])]


@pytest.mark.asyncio
async def test_text_only_turn_streams_and_completes() -> None:
    adapter = ScriptedAdapter([TextDelta("Hel"), TextDelta("lo"), reply("Hello")])
    recorder = Recorder()

    outcome = await TurnRunner().run(_context(adapter), _prompt(), AbortSignal(), recorder.callbacks())

    assert outcome.status == "completed"
    assert outcome.steps == 1
    assert outcome.error is None
    assert [message.text for message in outcome.messages] == ["Hello"]
    assert recorder.messages == outcome.messages
    assert recorder.types() == [
        "stream_start",
        "message_start",
        "message_update",
        "message_update",
        "message_end",
        "stream_end",
    ]
    assert [event.delta for event in recorder.events if event.type == "message_update"] == ["Hel", "lo"]
    assert len({event.message_id for event in recorder.events if event.type.startswith("message_")}) == 1
    assert recorder.events[-2].message.id == outcome.messages[0].id
    assert recorder.phases == [TurnPhase.SENDING, TurnPhase.STREAMING]
    assert adapter.requests[0].system_prompt == "be brief"
    assert adapter.requests[0].model == "stub"


@pytest.mark.asyncio
async def test_tool_calls_are_executed_and_the_provider_called_again() -> None:
    recorder = Recorder()
    pending_during_call: list[set[str]] = []

    async def _add(call_id: str, params: AddParams, signal: AbortSignal) -> ToolResult:
        pending_during_call.append(set(recorder.pending))
        return ToolResult.text(str(params.a + params.b))

    add = AgentTool(name="add", description="Add", parameters=AddParams, execute=_add)
    call = ToolCall(id="c1", name="add", arguments={"a": 2, "b": 3})
    adapter = ScriptedAdapter(
        [
            ToolCallRequest("c1", "add", {"a": 2, "b": 3}),
            TurnComplete(AssistantMessage(content=[call], stop_reason="tool_use")),
        ],
        [reply("The sum is 5")],
    )

    outcome = await TurnRunner().run(_context(adapter, [add]), _prompt("2+3?"), AbortSignal(), recorder.callbacks())

    assert outcome.status == "completed"
    assert outcome.steps == 2
    assert [message.role for message in outcome.messages] == ["assistant", "tool_result", "assistant"]
    assert outcome.messages[1].text == "5"
    assert pending_during_call == [{"c1"}]
    assert recorder.pending == set()
    assert [tool.name for tool in adapter.requests[0].tools] == ["add"]
    assert [message.role for message in adapter.requests[1].messages] == ["user", "assistant", "tool_result"]
    assert TurnPhase.TOOL_PENDING in recorder.phases
    assert "tool_execution_start" in recorder.types()
    assert "tool_execution_end" in recorder.types()


@pytest.mark.asyncio
async def test_streamed_tool_call_missing_from_final_message_is_kept() -> None:
    async def _add(call_id: str, params: AddParams, signal: AbortSignal) -> ToolResult:
        return ToolResult.text(str(params.a + params.b))

    add = AgentTool(name="add", description="Add", parameters=AddParams, execute=_add)
    adapter = ScriptedAdapter([ToolCallRequest("c1", "add", {"a": 1, "b": 1}), reply("")], [reply("2")])
    recorder = Recorder()

    outcome = await TurnRunner().run(_context(adapter, [add]), _prompt(), AbortSignal(), recorder.callbacks())

    first = outcome.messages[0]
    assert isinstance(first, AssistantMessage)
    assert [call.id for call in first.tool_calls] == ["c1"]
    assert outcome.messages[1].text == "2"


@pytest.mark.asyncio
async def test_provider_error_keeps_partial_content() -> None:
    adapter = ScriptedAdapter([TextDelta("par"), TurnError("rate limited")])
    recorder = Recorder()

    outcome = await TurnRunner().run(_context(adapter), _prompt(), AbortSignal(), recorder.callbacks())

    assert outcome.status == "error"
    assert outcome.error == "rate limited"
    (message,) = outcome.messages
    assert message.stop_reason == "error"
    assert message.error_message == "rate limited"
    assert message.text == "par"
    assert recorder.events[-1].error == "rate limited"


@pytest.mark.asyncio
async def test_raising_adapter_ends_the_turn_in_error() -> None:
    class RaisingAdapter:
        async def run(self, request, signal):
            yield TextDelta("x")
            raise RuntimeError("connection reset")

    recorder = Recorder()

    outcome = await TurnRunner().run(_context(RaisingAdapter()), _prompt(), AbortSignal(), recorder.callbacks())

    assert outcome.status == "error"
    assert outcome.error == "provider_error: connection reset"
    assert outcome.messages[0].text == "x"


@pytest.mark.asyncio
async def test_provider_error_reason_is_kept_verbatim() -> None:
    class OverloadedAdapter:
        async def run(self, request, signal):
            yield TextDelta("half")
            raise ProviderError("model overloaded")

    recorder = Recorder()

    outcome = await TurnRunner().run(_context(OverloadedAdapter()), _prompt(), AbortSignal(), recorder.callbacks())

    assert outcome.status == "error"
    assert outcome.error == "model overloaded"
    assert outcome.messages[0].text == "half"
    assert outcome.messages[0].error_message == "model overloaded"


@pytest.mark.asyncio
async def test_stream_without_final_message_is_an_error() -> None:
    recorder = Recorder()

    outcome = await TurnRunner().run(
        _context(ScriptedAdapter([TextDelta("x")])), _prompt(), AbortSignal(), recorder.callbacks()
    )

    assert outcome.status == "error"
    assert outcome.error == MISSING_FINAL_ERROR


@pytest.mark.asyncio
async def test_max_steps_bounds_tool_loops() -> None:
    class LoopingAdapter:
        def __init__(self) -> None:
            self.calls = 0

        async def run(self, request, signal):
            self.calls += 1
            yield TurnComplete(AssistantMessage(content=[ToolCall(id=f"c{self.calls}", name="noop")]))

    async def _noop(call_id: str, params: NoParams, signal: AbortSignal) -> ToolResult:
        return ToolResult.text("ok")

    noop = AgentTool(name="noop", description="Nothing", parameters=NoParams, execute=_noop)
    adapter = LoopingAdapter()
    recorder = Recorder()

    outcome = await TurnRunner().run(
        _context(adapter, [noop], max_steps=2), _prompt(), AbortSignal(), recorder.callbacks()
    )

    assert outcome.status == "error"
    assert outcome.error == "max_steps_reached=2"
    assert outcome.steps == 2
    assert adapter.calls == 2
    assert [message.role for message in outcome.messages] == ["assistant", "tool_result"] * 2


@pytest.mark.asyncio
async def test_already_aborted_signal_sends_nothing() -> None:
    adapter = ScriptedAdapter([reply("never")])
    signal = AbortSignal()
    signal.abort()
    recorder = Recorder()

    outcome = await TurnRunner().run(_context(adapter), _prompt(), signal, recorder.callbacks())

    assert outcome.status == "aborted"
    assert outcome.steps == 0
    assert adapter.requests == []
    assert recorder.events == []


@pytest.mark.asyncio
async def test_abort_during_tool_execution_records_an_aborted_result() -> None:
    started = asyncio.Event()

    async def _slow(call_id: str, params: NoParams, signal: AbortSignal) -> ToolResult:
        started.set()
        await asyncio.sleep(10)
        return ToolResult.text("late")

    slow = AgentTool(name="slow", description="Slow", parameters=NoParams, execute=_slow)
    adapter = ScriptedAdapter([TurnComplete(AssistantMessage(content=[ToolCall(id="c1", name="slow")]))])
    recorder = Recorder()
    signal = AbortSignal()

    task = asyncio.create_task(TurnRunner().run(_context(adapter, [slow]), _prompt(), signal, recorder.callbacks()))
    await started.wait()
    assert recorder.pending == {"c1"}
    signal.abort()
    outcome = await asyncio.wait_for(task, timeout=1)

    assert outcome.status == "aborted"
    assert recorder.pending == set()
    tool_result = outcome.messages[-1]
    assert tool_result.role == "tool_result"
    assert tool_result.is_error
    assert tool_result.text == "Tool execution aborted"
    assert len(adapter.requests) == 1
