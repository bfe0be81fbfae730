"""Application-level exception types for Parley."""

from __future__ import annotations


class ParleyError(Exception):
    """Base exception for Parley."""


class MisuseError(ParleyError):
    """Base exception for caller contract violations."""


class SessionBusyError(MisuseError):
    """Raised when an operation requires an idle conversation but a turn is running."""


class SessionClosedError(MisuseError):
    """Raised when a closed conversation is used again."""


class NothingToContinueError(MisuseError):
    """Raised when continue_ has neither history nor queued input to send."""


class InvalidContinueError(MisuseError):
    """Raised when the provider-ready history cannot be continued from."""


class InvalidQueueModeError(MisuseError):
    """Raised when a queue mode is not one of the supported values."""


class ProviderError(ParleyError):
    """Raised by provider adapters for terminal generation failures."""


class ToolExecutionError(ParleyError):
    """Raised by tools to report a human-readable failure."""


class ToolNotFoundError(ToolExecutionError):
    """Raised when the model requests a tool that is not declared."""

    def __init__(self, name: str, available: list[str]) -> None:
        names = ", ".join(available) or "none"
        super().__init__(f'Tool "{name}" not found. Available tools: {names}')
        self.name = name


class ToolArgumentsError(ToolExecutionError):
    """Raised when tool call arguments fail validation."""


class AbortError(ParleyError):
    """Raised when cancellation is observed mid-turn."""

    def __init__(self, reason: str = "aborted") -> None:
        super().__init__(reason)
        self.reason = reason
