"""Tool declarations and the registry a turn executes tool calls through."""

from __future__ import annotations

import json
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from pydantic import BaseModel, ValidationError
from republic import Tool

from parley.cancellation import AbortSignal, wait_until_aborted
from parley.errors import AbortError, ToolArgumentsError, ToolNotFoundError
from parley.messages import (
    FileContent,
    ImageContent,
    TextContent,
    ToolCall,
    ToolResultMessage,
    build_tool_result_message,
)

type ToolExecutor = Callable[[str, Any, AbortSignal], Awaitable[ToolResult]]


def _preview(value: Any, width: int = 30) -> str:
    """Render one argument value for the call log, clipped to width characters."""
    try:
        rendered = json.dumps(value, ensure_ascii=False)
    except TypeError:
        rendered = repr(value)
    if len(rendered) <= width:
        return rendered
    return rendered[: width - 3] + "..."


@dataclass(frozen=True)
class ToolResult:
    """Output of one tool execution."""

    content: list[TextContent | ImageContent | FileContent] = field(default_factory=list)
    details: Any = None

    @classmethod
    def text(cls, text: str, details: Any = None) -> ToolResult:
        return cls(content=[TextContent(text=text)], details=details)


@dataclass(frozen=True)
class AgentTool:
    """A named tool with a pydantic parameter model and an async executor."""

    name: str
    description: str
    parameters: type[BaseModel]
    execute: ToolExecutor
    label: str = ""

    def schema(self) -> dict[str, Any]:
        return self.parameters.model_json_schema()

    def declaration(self) -> Tool:
        return Tool(
            name=self.name,
            description=self.description,
            parameters=self.schema(),
            handler=None,
            context=False,
        )

    def validate(self, arguments: dict[str, Any]) -> BaseModel:
        try:
            return self.parameters.model_validate(arguments)
        except ValidationError as exc:
            raise ToolArgumentsError(f"Invalid arguments for tool {self.name}: {exc}") from exc


def agent_tool(
    *,
    name: str,
    description: str,
    parameters: type[BaseModel],
    label: str = "",
) -> Callable[[ToolExecutor], AgentTool]:
    """Decorate an async executor into an AgentTool."""

    def decorator(func: ToolExecutor) -> AgentTool:
        return AgentTool(name=name, description=description, parameters=parameters, execute=func, label=label)

    return decorator


class ToolRegistry:
    """Name-indexed set of tools available to one turn."""

    def __init__(self, tools: Iterable[AgentTool] | None = None) -> None:
        self._tools: dict[str, AgentTool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: AgentTool) -> None:
        self._tools[tool.name] = tool

    def has(self, name: str) -> bool:
        return name in self._tools

    def lookup(self, name: str) -> AgentTool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return sorted(self._tools)

    def declarations(self) -> list[Tool]:
        """Tool declarations handed to the provider adapter."""
        return [self._tools[name].declaration() for name in self.names()]

    def _log_tool_call(self, call: ToolCall) -> None:
        params = ", ".join(f"{key}={_preview(value)}" for key, value in call.arguments.items())
        logger.info("tool.call.start name={} call_id={} {{ {} }}", call.name, call.id, params)

    async def execute(self, call: ToolCall, signal: AbortSignal) -> ToolResultMessage:
        """Run one tool call and encode its outcome as a tool-result message.

        Tool failures become error results. AbortError propagates so the turn
        can finish in the aborted state.
        """
        self._log_tool_call(call)
        start = time.monotonic()
        try:
            tool = self._tools.get(call.name)
            if tool is None:
                raise ToolNotFoundError(call.name, self.names())
            params = tool.validate(call.arguments)
            result = await wait_until_aborted(tool.execute(call.id, params, signal), signal)
        except AbortError:
            raise
        except Exception as exc:
            logger.exception("tool.call.error name={}", call.name)
            return build_tool_result_message(call, [TextContent(text=str(exc))], details={}, error=exc)
        finally:
            duration = time.monotonic() - start
            logger.info("tool.call.end name={} duration={:.3f}ms", call.name, duration * 1000)
        return build_tool_result_message(call, list(result.content), details=result.details)
