"""In-memory chat transcript for the current session."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List


@dataclass(frozen=True)
class ChatLine:
    sender_is_local: bool
    text: str

    def to_dict(self) -> dict:
        return {"local": self.sender_is_local, "text": self.text}


class ChatLog:
    """Append-only while a session lasts, cleared when it ends."""

    def __init__(self):
        self._lines: List[ChatLine] = []

    def append(self, sender_is_local: bool, text: str) -> ChatLine:
        line = ChatLine(sender_is_local, text)
        self._lines.append(line)
        return line

    def clear(self) -> None:
        self._lines = []

    def __iter__(self) -> Iterator[ChatLine]:
        return iter(list(self._lines))

    def __len__(self) -> int:
        return len(self._lines)

    def texts(self) -> List[str]:
        return [line.text for line in self._lines]
