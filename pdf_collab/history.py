"""
Linear undo/redo log of whole-document snapshots.
"""

from dataclasses import dataclass
from typing import List, Optional

DEFAULT_LIMIT = 50


@dataclass(frozen=True)
class HistoryEntry:
    data: bytes
    url: Optional[str] = None


class HistoryStack:
    """Snapshots of the recomposed document with a single cursor.

    ``cursor`` is -1 while the stack is empty and otherwise always points
    at a valid entry.  When more than ``limit`` entries are held the oldest
    is dropped and the cursor shifts with it.
    """

    def __init__(self, limit: Optional[int] = DEFAULT_LIMIT) -> None:
        if limit is not None and limit < 1:
            raise ValueError('history limit must be at least 1')
        self.limit = limit
        self._entries: List[HistoryEntry] = []
        self.cursor = -1

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def current(self) -> Optional[HistoryEntry]:
        return self._entries[self.cursor] if self.cursor >= 0 else None

    @property
    def can_undo(self) -> bool:
        return self.cursor > 0

    @property
    def can_redo(self) -> bool:
        return 0 <= self.cursor < len(self._entries) - 1

    def push(self, data: bytes, url: Optional[str] = None) -> HistoryEntry:
        # bytes() copies mutable buffers so later reuse by the caller
        # cannot reach into the log.
        entry = HistoryEntry(bytes(data), url)
        del self._entries[self.cursor + 1:]
        self._entries.append(entry)
        if self.limit is not None and len(self._entries) > self.limit:
            del self._entries[:len(self._entries) - self.limit]
        self.cursor = len(self._entries) - 1
        return entry

    def undo(self) -> Optional[HistoryEntry]:
        if not self.can_undo:
            return None
        self.cursor -= 1
        return self._entries[self.cursor]

    def redo(self) -> Optional[HistoryEntry]:
        if not self.can_redo:
            return None
        self.cursor += 1
        return self._entries[self.cursor]

    def clear(self) -> None:
        self._entries.clear()
        self.cursor = -1
