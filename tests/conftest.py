from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from parley.cancellation import AbortSignal
from parley.messages import AssistantMessage, TextContent, ToolResultMessage, UserMessage
from parley.providers import Provider, ProviderEvent, ProviderRequest, TextDelta, TurnComplete
from parley.session import Conversation


def last_input_text(request: ProviderRequest) -> str:
    for message in reversed(request.messages):
        if isinstance(message, UserMessage | ToolResultMessage):
            return message.text
    return ""


def reply(text: str, **kwargs: Any) -> TurnComplete:
    return TurnComplete(AssistantMessage(content=[TextContent(text=text)], **kwargs))


class ScriptedAdapter:
    """Replays one scripted event list per provider call."""

    def __init__(self, *scripts: list[ProviderEvent]) -> None:
        self.scripts = list(scripts)
        self.requests: list[ProviderRequest] = []

    async def run(self, request: ProviderRequest, signal: AbortSignal) -> AsyncIterator[ProviderEvent]:
        self.requests.append(request)
        events = self.scripts.pop(0) if self.scripts else [reply("done")]
        for event in events:
            yield event
            await asyncio.sleep(0)


class CountingEchoAdapter:
    """Answers `echo: <last input>` and tracks how many calls overlap."""

    def __init__(self) -> None:
        self.active = 0
        self.max_active = 0
        self.calls = 0
        self.requests: list[ProviderRequest] = []

    async def run(self, request: ProviderRequest, signal: AbortSignal) -> AsyncIterator[ProviderEvent]:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.calls += 1
        self.requests.append(request)
        try:
            await asyncio.sleep(0)
            yield reply(f"echo: {last_input_text(request)}")
        finally:
            self.active -= 1


class BlockingAdapter:
    """Streams its chunks, then blocks until released or cancelled."""

    def __init__(self, chunks: tuple[str, ...] = ("partial ",)) -> None:
        self.chunks = chunks
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.requests: list[ProviderRequest] = []

    async def run(self, request: ProviderRequest, signal: AbortSignal) -> AsyncIterator[ProviderEvent]:
        self.requests.append(request)
        for chunk in self.chunks:
            yield TextDelta(chunk)
        self.started.set()
        await self.release.wait()
        yield reply("".join(self.chunks) + "done")


@pytest.fixture
def echo_adapter() -> CountingEchoAdapter:
    return CountingEchoAdapter()


@pytest.fixture
def blocking_adapter() -> BlockingAdapter:
    return BlockingAdapter()


@pytest.fixture
def make_conversation() -> Callable[..., Conversation]:
    def _make(adapter: Any, **kwargs: Any) -> Conversation:
        return Conversation(provider=Provider(adapter=adapter, model="stub"), **kwargs)

    return _make
