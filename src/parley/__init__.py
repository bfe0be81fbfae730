"""Parley - conversation session core for tool-using LLM clients."""

from .cancellation import AbortSignal
from .config import Settings, get_settings
from .errors import (
    AbortError,
    InvalidContinueError,
    MisuseError,
    NothingToContinueError,
    ParleyError,
    ProviderError,
    SessionBusyError,
    SessionClosedError,
    ToolExecutionError,
)
from .messages import (
    AssistantMessage,
    Attachment,
    CustomMessage,
    Message,
    TextContent,
    ToolCall,
    ToolResultMessage,
    UserMessage,
)
from .providers import EchoProvider, Provider, ProviderAdapter, ProviderRequest
from .queue import QueuedMessage
from .runner import TurnOutcome, TurnRunner
from .session import Conversation, current_session
from .state import AgentState
from .tools import AgentTool, ToolRegistry, ToolResult, agent_tool
from .types import QueueMode, TurnPhase

__version__ = "0.1.0"

__all__ = [
    "AbortError",
    "AbortSignal",
    "AgentState",
    "AgentTool",
    "AssistantMessage",
    "Attachment",
    "Conversation",
    "CustomMessage",
    "EchoProvider",
    "InvalidContinueError",
    "Message",
    "MisuseError",
    "NothingToContinueError",
    "ParleyError",
    "Provider",
    "ProviderAdapter",
    "ProviderError",
    "ProviderRequest",
    "QueueMode",
    "QueuedMessage",
    "SessionBusyError",
    "SessionClosedError",
    "Settings",
    "TextContent",
    "ToolCall",
    "ToolExecutionError",
    "ToolRegistry",
    "ToolResult",
    "ToolResultMessage",
    "TurnOutcome",
    "TurnPhase",
    "TurnRunner",
    "UserMessage",
    "agent_tool",
    "current_session",
    "get_settings",
]
