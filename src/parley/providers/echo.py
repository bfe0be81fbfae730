"""Builtin echo provider."""

from __future__ import annotations

import asyncio
import re
from collections.abc import AsyncIterator

from parley.cancellation import AbortSignal
from parley.messages import AssistantMessage, TextContent, ToolResultMessage, UserMessage
from parley.providers.base import ProviderEvent, ProviderRequest, TextDelta, TurnComplete

CHUNK_RE = re.compile(r"\S+\s*|\s+")


class EchoProvider:
    """Streams the latest user or tool-result text back, one word at a time."""

    def __init__(self, prefix: str = "") -> None:
        self._prefix = prefix

    async def run(self, request: ProviderRequest, signal: AbortSignal) -> AsyncIterator[ProviderEvent]:
        text = f"{self._prefix}{_last_input_text(request)}"
        for chunk in CHUNK_RE.findall(text):
            if signal.aborted:
                return
            yield TextDelta(chunk)
            await asyncio.sleep(0)
        if signal.aborted:
            return
        yield TurnComplete(AssistantMessage(content=[TextContent(text=text)], model=request.model))


def _last_input_text(request: ProviderRequest) -> str:
    for message in reversed(request.messages):
        if isinstance(message, UserMessage | ToolResultMessage):
            return message.text
    return ""
