"""
Message models for conversation history.

WHAT: Conversation messages and the store that owns them
WHY: Streaming writes go through one owner addressed by message id
HOW: Dataclass messages in an ordered, id-indexed store
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterator, Literal, Optional


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Message:
    """Message in conversation history."""
    role: Literal["user", "assistant", "system"]
    content: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    origin_provider: Optional[str] = None
    origin_model: Optional[str] = None

    @property
    def is_user(self) -> bool:
        return self.role == "user"


class MessageStore:
    """
    Ordered message history for one conversation.

    Messages are addressed by id; the only in-place mutation is
    append_content, used by the streaming flush callback.
    """

    def __init__(self, messages: list[Message] | None = None):
        self._messages: list[Message] = list(messages or [])

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def append(self, message: Message) -> str:
        self._messages.append(message)
        return message.id

    def get(self, message_id: str) -> Message | None:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def append_content(self, message_id: str, text: str) -> None:
        """Append streamed text to a message and stamp its update time."""
        message = self.get(message_id)
        if message is None:
            raise KeyError(f"Message not found: {message_id}")
        message.content += text
        message.updated_at = _now()

    def remove(self, message_id: str) -> bool:
        for i, message in enumerate(self._messages):
            if message.id == message_id:
                del self._messages[i]
                return True
        return False

    def last_user_message(self) -> Message | None:
        for message in reversed(self._messages):
            if message.is_user:
                return message
        return None

    def clear(self) -> None:
        self._messages.clear()
