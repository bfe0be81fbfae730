"""Provider adapters for Parley."""

from .base import (
    Provider,
    ProviderAdapter,
    ProviderEvent,
    ProviderRequest,
    TextDelta,
    ThinkingDelta,
    ToolCallRequest,
    TurnComplete,
    TurnError,
)
from .echo import EchoProvider

__all__ = [
    "EchoProvider",
    "Provider",
    "ProviderAdapter",
    "ProviderEvent",
    "ProviderRequest",
    "TextDelta",
    "ThinkingDelta",
    "ToolCallRequest",
    "TurnComplete",
    "TurnError",
]
