"""Conversation message model.

Messages are immutable values. History only grows by appending new values or is
replaced wholesale, so a message handed to observers never changes afterwards.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from parley.types import StopReason


def new_message_id() -> str:
    """Generate a fresh message identifier."""
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class TextContent(_Frozen):
    type: Literal["text"] = "text"
    text: str
    metadata: dict[str, Any] | None = None


class ImageContent(_Frozen):
    type: Literal["image"] = "image"
    data: str
    mime_type: str
    metadata: dict[str, Any] | None = None


class FileContent(_Frozen):
    type: Literal["file"] = "file"
    data: str
    mime_type: str
    filename: str
    metadata: dict[str, Any] | None = None


class ThinkingContent(_Frozen):
    type: Literal["thinking"] = "thinking"
    thinking: str


class ToolCall(_Frozen):
    """A tool invocation requested by the assistant."""

    type: Literal["tool_call"] = "tool_call"
    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


UserContent = Annotated[TextContent | ImageContent | FileContent, Field(discriminator="type")]
AssistantContent = Annotated[TextContent | ThinkingContent | ToolCall, Field(discriminator="type")]


class ErrorDetails(_Frozen):
    name: str
    message: str


class _BaseMessage(_Frozen):
    id: str = Field(default_factory=new_message_id)
    timestamp: datetime = Field(default_factory=_utcnow)


class UserMessage(_BaseMessage):
    role: Literal["user"] = "user"
    content: list[UserContent] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return _join_text(self.content)


class AssistantMessage(_BaseMessage):
    role: Literal["assistant"] = "assistant"
    content: list[AssistantContent] = Field(default_factory=list)
    model: str = ""
    stop_reason: StopReason = "stop"
    error_message: str | None = None

    @property
    def text(self) -> str:
        return _join_text(self.content)

    @property
    def tool_calls(self) -> list[ToolCall]:
        return [block for block in self.content if isinstance(block, ToolCall)]

    @property
    def is_incomplete(self) -> bool:
        """Whether generation was cut short by cancellation."""
        return self.stop_reason == "aborted"


class ToolResultMessage(_BaseMessage):
    role: Literal["tool_result"] = "tool_result"
    tool_call_id: str
    tool_name: str
    content: list[UserContent] = Field(default_factory=list)
    details: Any = None
    is_error: bool = False
    error: ErrorDetails | None = None

    @property
    def text(self) -> str:
        return _join_text(self.content)


class CustomMessage(_BaseMessage):
    """Application-specific record kept in history for observers."""

    role: Literal["custom"] = "custom"
    content: dict[str, Any] = Field(default_factory=dict)


Message = Annotated[
    UserMessage | AssistantMessage | ToolResultMessage | CustomMessage,
    Field(discriminator="role"),
]


class Attachment(_Frozen):
    """File or image supplied alongside a prompt."""

    id: str = Field(default_factory=new_message_id)
    type: Literal["image", "file"]
    file_name: str
    mime_type: str
    content: str  # base64, without a data URL prefix
    size: int | None = None


def build_user_message(text: str, attachments: list[Attachment] | None = None) -> UserMessage:
    """Build a user message from prompt text and optional attachments."""
    content: list[TextContent | ImageContent | FileContent] = [TextContent(text=text)]
    for attachment in attachments or []:
        metadata = {"file_name": attachment.file_name, "size": attachment.size or 0}
        if attachment.type == "image":
            content.append(ImageContent(data=attachment.content, mime_type=attachment.mime_type, metadata=metadata))
        else:
            content.append(
                FileContent(
                    data=attachment.content,
                    mime_type=attachment.mime_type,
                    filename=attachment.file_name,
                    metadata=metadata,
                )
            )
    return UserMessage(content=content)


def build_tool_result_message(
    call: ToolCall,
    content: list[TextContent | ImageContent | FileContent],
    *,
    details: Any = None,
    error: BaseException | None = None,
) -> ToolResultMessage:
    """Build the tool-result message answering one tool call."""
    error_details = None
    if error is not None:
        error_details = ErrorDetails(name=type(error).__name__, message=str(error))
    return ToolResultMessage(
        tool_call_id=call.id,
        tool_name=call.name,
        content=content,
        details=details,
        is_error=error is not None,
        error=error_details,
    )


def _join_text(blocks: list[Any]) -> str:
    return "".join(block.text for block in blocks if isinstance(block, TextContent))
