#!/usr/bin/env python3
"""Chat message model shared by the parser, the history service and the front ends."""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
FENCE = "`"


class MessageKind(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    # only ever synthesized by callers when a history can't be read
    ERROR = "error"


@dataclass(frozen=True)
class ChatMessage:
    kind: MessageKind
    content: str
    timestamp: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


def from_epoch_millis(millis: Optional[int]) -> Optional[datetime]:
    """Convert milliseconds since the Unix epoch to an aware UTC datetime.

    Values outside the range ``datetime`` can represent give None.
    """
    if millis is None:
        return None
    try:
        return EPOCH + timedelta(milliseconds=millis)
    except OverflowError:
        return None


def clean_response(value: str) -> Optional[str]:
    """Return the whitespace-stripped response, or None for a fence-only value.

    A value that is nothing but whitespace and backticks (``"\\n```\\n"``) is a
    code-fence artifact. Backticks are only used to decide that; a kept value
    keeps its backticks.
    """
    stripped = value.strip()
    if not stripped.strip(FENCE):
        return None
    return stripped


@dataclass
class RequestUnit:
    """Fields captured from one object of the ``requests`` array."""

    user_text: Optional[str] = None
    response_texts: List[str] = field(default_factory=list)
    timestamp_millis: Optional[int] = None

    def add_response(self, value: str) -> None:
        cleaned = clean_response(value)
        if cleaned is not None:
            self.response_texts.append(cleaned)

    def to_messages(self) -> List[ChatMessage]:
        """User text first, then each reply in array order, all with one timestamp."""
        timestamp = from_epoch_millis(self.timestamp_millis)
        messages = []
        if self.user_text:
            messages.append(ChatMessage(MessageKind.USER, self.user_text, timestamp))
        for text in self.response_texts:
            messages.append(ChatMessage(MessageKind.ASSISTANT, text, timestamp))
        return messages
