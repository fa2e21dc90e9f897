"""Value types for threads, messages and summaries."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Optional


class Role(IntEnum):
    """Author of a message. The integer value is what the database stores."""

    SYSTEM = 1
    USER = 2
    ASSISTANT = 3

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class Message:
    role: Role
    content: str
    timestamp: float
    tokens: int = 0

    def as_api(self) -> Dict[str, str]:
        """Return the message in the shape the chat completions API expects."""
        return {"role": self.role.label, "content": self.content}


@dataclass(frozen=True)
class Summary:
    """Condensed text standing in for conversation messages ``[start_index, end_index)``."""

    start_index: int
    end_index: int
    content: str

    def covers(self, index: int) -> bool:
        return self.start_index <= index < self.end_index


@dataclass(frozen=True)
class ThreadInfo:
    id: str
    model: str
    title: Optional[str]
    last_active: Optional[float]
    preview: Optional[str]

    @property
    def display_name(self) -> str:
        """Title if one was synthesized, otherwise the first user message."""
        text = self.title or self.preview or "(empty thread)"
        text = " ".join(text.split())
        return text if len(text) <= 60 else text[:57] + "..."
