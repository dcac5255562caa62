"""
The in-memory conversation.

An ordered sequence of frozen ``Message``s.  It only grows by ``append``;
the two exceptions are ``replace_prefix`` (compaction) and ``truncate``
(rolling back a user message whose first round produced nothing).
"""

from __future__ import annotations

from typing import Iterator

from aicli.llm.types import Message


class Conversation:
    def __init__(self, messages: list[Message] | None = None) -> None:
        self._messages: list[Message] = list(messages or [])

    @property
    def messages(self) -> list[Message]:
        """A copy of the current messages."""
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def __getitem__(self, index):
        return self._messages[index]

    @property
    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def append(self, message: Message) -> int:
        """Append *message* and return its index."""
        self._messages.append(message)
        return len(self._messages) - 1

    def extend(self, messages: list[Message]) -> None:
        self._messages.extend(messages)

    def replace_prefix(self, count: int, replacement: list[Message]) -> None:
        """Replace the first *count* messages with *replacement*."""
        if count < 0 or count > len(self._messages):
            raise ValueError(f"prefix length {count} out of range 0..{len(self._messages)}")
        self._messages[:count] = replacement

    def truncate(self, length: int) -> list[Message]:
        """Drop every message from index *length* on; returns the dropped ones."""
        dropped = self._messages[length:]
        del self._messages[length:]
        return dropped

    def clear(self) -> None:
        self._messages.clear()
