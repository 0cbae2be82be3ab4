"""
Outgoing edit bookkeeping.

Every edit lives in the waiting table from the moment it is created until
the server accepts it or rejects it for good. While it waits it is either
in the outgoing buffer (not yet sent, or queued again after a rate limit)
or in flight.
"""

import logging
import time
from typing import Dict, List, NamedTuple, Optional, Tuple

from .coords import char_to_tile, tile_to_char
from .events import WriteResult, WriteStatus

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 512
PERMANENT_REJECTIONS = frozenset({1, 4})


class Edit(NamedTuple):
    """A character edit, in the field order the server expects."""

    tile_y: int
    tile_x: int
    char_y: int
    char_x: int
    timestamp: int
    char: str
    edit_id: int
    color: int
    bg_color: int

    @property
    def coords(self) -> Tuple[int, int]:
        """Character coordinates of the edited cell."""
        return tile_to_char(self.tile_x, self.tile_y, self.char_x, self.char_y)


class WriteBuffer:
    """Buffer, waiting table and edit id counter of one session."""

    def __init__(self):
        self._next_edit_id = 0
        self._buffer: List[Edit] = []
        self._waiting: Dict[int, Edit] = {}

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def waiting(self) -> Dict[int, Edit]:
        return self._waiting

    def is_empty(self) -> bool:
        return not self._buffer and not self._waiting

    def add(self, x: int, y: int, char: str, color: int, bg_color: int) -> Edit:
        """Create an edit with a fresh id and queue it."""
        tile_x, tile_y, char_x, char_y = char_to_tile(x, y)
        self._next_edit_id += 1
        edit = Edit(
            tile_y,
            tile_x,
            char_y,
            char_x,
            int(time.time() * 1000),
            char,
            self._next_edit_id,
            color,
            bg_color,
        )
        self._buffer.append(edit)
        self._waiting[edit.edit_id] = edit
        return edit

    def take_batch(self, size: int = MAX_BATCH_SIZE) -> List[Edit]:
        """Remove and return up to size edits from the front of the buffer."""
        batch = self._buffer[:size]
        del self._buffer[:size]
        return batch

    def resolve(self, accepted: List[int], rejected: Dict[int, int]) -> List[WriteResult]:
        """
        Apply a write acknowledgment.

        Ids that are no longer waiting (for instance after clear()) are
        ignored. Rate-limited edits keep their id and go to the back of
        the buffer.

        Returns:
            One result per edit that was still waiting
        """
        results: List[WriteResult] = []

        for edit_id in accepted:
            edit = self._waiting.pop(edit_id, None)
            if edit is not None:
                results.append(WriteResult(edit, WriteStatus.ACCEPTED))

        for edit_id, reason in rejected.items():
            if reason in PERMANENT_REJECTIONS:
                edit = self._waiting.pop(edit_id, None)
                if edit is not None:
                    logger.warning("Edit %d at %s rejected (reason %d)", edit_id, edit.coords, reason)
                    results.append(WriteResult(edit, WriteStatus.REJECTED, reason))
            else:
                edit = self._waiting.get(edit_id)
                if edit is not None:
                    self._buffer.append(edit)
                    results.append(WriteResult(edit, WriteStatus.RATE_LIMITED, reason))

        return results

    def clear(self) -> None:
        self._buffer.clear()
        self._waiting.clear()

    def get(self, edit_id: int) -> Optional[Edit]:
        return self._waiting.get(edit_id)
