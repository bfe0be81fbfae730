"""Tool declarations and execution for Parley."""

from .registry import AgentTool, ToolExecutor, ToolRegistry, ToolResult, agent_tool

__all__ = [
    "AgentTool",
    "ToolExecutor",
    "ToolRegistry",
    "ToolResult",
    "agent_tool",
]
