"""Queue of messages submitted while a turn may be running."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass

from parley.errors import InvalidQueueModeError
from parley.messages import Message
from parley.types import QUEUE_MODES, QueueMode


@dataclass(frozen=True)
class QueuedMessage:
    """An authored message and its provider-ready form.

    ``llm`` is None when the transformer filtered the message out: it still enters
    history but is not sent to the provider.
    """

    original: Message
    llm: Message | None = None


def validate_queue_mode(mode: str) -> QueueMode:
    if mode not in QUEUE_MODES:
        raise InvalidQueueModeError(f"Unknown queue mode: {mode!r}. Expected one of {', '.join(QUEUE_MODES)}")
    return mode  # type: ignore[return-value]


class MessageQueue:
    """FIFO of queued messages; each item is consumed exactly once."""

    def __init__(self) -> None:
        self._items: deque[QueuedMessage] = deque()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[QueuedMessage]:
        return iter(tuple(self._items))

    def put(self, item: QueuedMessage) -> None:
        self._items.append(item)

    def drain(self, mode: QueueMode) -> list[QueuedMessage]:
        """Remove and return the items the next turn consumes."""
        validate_queue_mode(mode)
        if not self._items:
            return []
        if mode == "all":
            drained = list(self._items)
            self._items.clear()
            return drained
        return [self._items.popleft()]

    def snapshot(self) -> tuple[QueuedMessage, ...]:
        return tuple(self._items)

    def clear(self) -> None:
        self._items.clear()
