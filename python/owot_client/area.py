"""
Splitting rectangular areas into per-tile operations.

The server only clears or protects one tile (or part of one tile) per
message, so an area is cut along tile edges first.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

from .coords import TILE_HEIGHT, TILE_WIDTH, char_to_tile
from .tile import Protection

# One operation per 1/80 s keeps us under the server's rate limit.
OPERATION_DELAY = 1 / 80


@dataclass(frozen=True)
class TilePiece:
    """The part of one tile covered by an area."""

    tile_x: int
    tile_y: int
    char_x: int
    char_y: int
    char_width: int
    char_height: int

    @property
    def whole(self) -> bool:
        return self.char_width == TILE_WIDTH and self.char_height == TILE_HEIGHT

    def clear_frame(self) -> Dict[str, Any]:
        frame: Dict[str, Any] = {
            "kind": "clear_tile",
            "tileX": self.tile_x,
            "tileY": self.tile_y,
        }
        if not self.whole:
            frame.update(self._sub_rectangle())
        return frame

    def protect_frame(self, level: Optional[Protection]) -> Dict[str, Any]:
        """
        Build a protect frame; a level of None removes protection.
        """
        data: Dict[str, Any] = {
            "tileX": self.tile_x,
            "tileY": self.tile_y,
            "type": level.wire_name if level is not None else "public",
            "precise": not self.whole,
        }
        if not self.whole:
            data.update(self._sub_rectangle())
        return {
            "kind": "protect",
            "action": "protect" if level is not None else "unprotect",
            "data": data,
        }

    def _sub_rectangle(self) -> Dict[str, int]:
        return {
            "charX": self.char_x,
            "charY": self.char_y,
            "charWidth": self.char_width,
            "charHeight": self.char_height,
        }


def split_area(x1: int, y1: int, x2: int, y2: int) -> Iterator[TilePiece]:
    """
    Cut the inclusive character rectangle between two corners into tiles.

    Tiles are yielded row by row. Tiles on the edge of the area get the
    exact sub-rectangle that lies inside it; inner tiles are whole.
    """
    min_x, max_x = sorted((x1, x2))
    min_y, max_y = sorted((y1, y2))
    min_tile_x, min_tile_y, min_char_x, min_char_y = char_to_tile(min_x, min_y)
    max_tile_x, max_tile_y, max_char_x, max_char_y = char_to_tile(max_x, max_y)

    for tile_y in range(min_tile_y, max_tile_y + 1):
        top = min_char_y if tile_y == min_tile_y else 0
        bottom = max_char_y if tile_y == max_tile_y else TILE_HEIGHT - 1

        for tile_x in range(min_tile_x, max_tile_x + 1):
            left = min_char_x if tile_x == min_tile_x else 0
            right = max_char_x if tile_x == max_tile_x else TILE_WIDTH - 1

            yield TilePiece(
                tile_x=tile_x,
                tile_y=tile_y,
                char_x=left,
                char_y=top,
                char_width=right - left + 1,
                char_height=bottom - top + 1,
            )
