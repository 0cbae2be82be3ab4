"""
Tile decoding and the client-side tile cache.

A raw tile, as sent in fetch and tileUpdate messages, looks like:

    {
        "content": "<128 characters>",
        "properties": {
            "writability": 0 | 1 | 2 | null,
            "char": "@<packed per-cell protection>",
            "color": [<128 ints>],
            "bgcolor": [<128 ints>],
            "cell_props": {"<row>": {"<col>": {"link": {...}}}}
        }
    }

or null for a tile nobody has written to.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple, Union

from .coords import TILE_AREA, TILE_WIDTH, char_to_tile, parse_tile_key
from .text import split_chars

logger = logging.getLogger(__name__)

B64_TABLE = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"

DEFAULT_COLOR = 0x000000
NO_BACKGROUND = -1

Link = Union[str, Tuple[int, int]]


class Protection(IntEnum):
    """Cell protection levels."""

    PUBLIC = 0
    MEMBER_ONLY = 1
    OWNER_ONLY = 2

    @property
    def wire_name(self) -> str:
        return self.name.lower().replace("_", "-")


@dataclass(frozen=True)
class Char:
    """
    A single decoded cell.

    protection is None when neither the cell nor its tile sets a level,
    meaning the world's default applies. link is a URL string, a
    (link_tile_x, link_tile_y) pair, or None.
    """

    char: str
    color: int
    bg_color: int
    protection: Optional[Protection]
    link: Optional[Link]


def _level(value: Optional[int]) -> Optional[Protection]:
    if value is None:
        return None
    return Protection(value)


def decode_char_protection(packed: Any) -> List[Optional[Protection]]:
    """
    Decode per-cell protection into 128 entries.

    Each base64 character of a packed string carries three 2-bit fields,
    most significant first. A field of 0 means "inherit the tile default"
    (None); 1, 2 and 3 mean levels 0, 1 and 2. A leading "@" marks the
    packed form and is skipped. Cells past the end of the data inherit.
    """
    output: List[Optional[Protection]] = [None] * TILE_AREA
    if not packed:
        return output

    if isinstance(packed, list):
        for i, value in enumerate(packed[:TILE_AREA]):
            output[i] = _level(value)
        return output

    data = packed[1:] if packed.startswith("@") else packed
    for i, symbol in enumerate(data):
        byte = B64_TABLE.index(symbol)
        for j, shift in enumerate((4, 2, 0)):
            cell = i * 3 + j
            if cell >= TILE_AREA:
                break
            field = byte >> shift & 3
            output[cell] = None if field == 0 else Protection(field - 1)

    return output


def decode_links(cell_props: Optional[Dict[str, Any]]) -> List[Optional[Link]]:
    """Decode the sparse row/column cell properties into 128 links."""
    links: List[Optional[Link]] = [None] * TILE_AREA
    if not cell_props:
        return links

    for row, columns in cell_props.items():
        for col, props in columns.items():
            link = props.get("link")
            if not link:
                continue
            index = int(row) * TILE_WIDTH + int(col)
            if not 0 <= index < TILE_AREA:
                continue
            if link.get("type") == "url":
                links[index] = link.get("url", "")
            elif link.get("type") == "coord":
                links[index] = (int(link["link_tileX"]), int(link["link_tileY"]))
            else:
                logger.debug("Ignoring link of unknown type %r", link.get("type"))

    return links


def _fill(values: Optional[List[Any]], default: Any) -> List[Any]:
    values = list(values or [])[:TILE_AREA]
    return values + [default] * (TILE_AREA - len(values))


class Tile:
    """
    A decoded 16x8 tile.

    All per-cell lists always hold exactly 128 entries, in row-major order.
    """

    def __init__(self, x: int, y: int, data: Optional[Dict[str, Any]]):
        self.x = x
        self.y = y
        self.blank = data is None

        if data is None:
            self.content = [" "] * TILE_AREA
            self.color = [DEFAULT_COLOR] * TILE_AREA
            self.bg_color = [NO_BACKGROUND] * TILE_AREA
            self.writability: Optional[Protection] = None
            self.protections: List[Optional[Protection]] = [None] * TILE_AREA
            self.links: List[Optional[Link]] = [None] * TILE_AREA
            return

        properties = data.get("properties") or {}
        bg_color = properties.get("bgcolor", properties.get("bcolor"))

        self.content = _fill(split_chars(data.get("content") or ""), " ")
        self.color = _fill(properties.get("color"), DEFAULT_COLOR)
        self.bg_color = _fill(bg_color, NO_BACKGROUND)
        self.writability = _level(properties.get("writability"))
        self.protections = decode_char_protection(properties.get("char"))
        self.links = decode_links(properties.get("cell_props"))

    def __repr__(self) -> str:
        return f"Tile(x={self.x}, y={self.y}, blank={self.blank})"

    def get_char(self, char_x: int, char_y: int) -> Char:
        """
        Get a cell of this tile.

        Args:
            char_x: Column inside the tile (0-15)
            char_y: Row inside the tile (0-7)

        Returns:
            The cell, with protection resolved against the tile default
        """
        i = char_y * TILE_WIDTH + char_x
        protection = self.protections[i]
        if protection is None:
            protection = self.writability

        return Char(
            char=self.content[i],
            color=self.color[i],
            bg_color=self.bg_color[i],
            protection=protection,
            link=self.links[i],
        )


class TileCache:
    """Sparse mapping of (tile_x, tile_y) to the last decoded Tile."""

    def __init__(self):
        self._tiles: Dict[Tuple[int, int], Tile] = {}

    def __len__(self) -> int:
        return len(self._tiles)

    def __contains__(self, coords: Tuple[int, int]) -> bool:
        return coords in self._tiles

    def get(self, tile_x: int, tile_y: int) -> Optional[Tile]:
        return self._tiles.get((tile_x, tile_y))

    def update(self, raw_tiles: Dict[str, Optional[Dict[str, Any]]]) -> Dict[str, Tile]:
        """
        Decode and store raw tiles keyed by "tileY,tileX".

        A tile that cannot be decoded is logged and skipped; the cache
        keeps whatever it held for that tile before.

        Returns:
            The decoded tiles, under the same keys
        """
        decoded: Dict[str, Tile] = {}
        for key, raw in raw_tiles.items():
            try:
                tile_x, tile_y = parse_tile_key(key)
                tile = Tile(tile_x, tile_y, raw)
            except (AttributeError, KeyError, TypeError, ValueError):
                logger.warning("Skipping undecodable tile %r", key, exc_info=True)
                continue
            self._tiles[(tile_x, tile_y)] = tile
            decoded[key] = tile
        return decoded

    def get_char(self, x: int, y: int) -> Optional[Char]:
        """Get a cell by character coordinates, or None if its tile is unknown."""
        tile_x, tile_y, char_x, char_y = char_to_tile(x, y)
        tile = self._tiles.get((tile_x, tile_y))
        if tile is None:
            return None
        return tile.get_char(char_x, char_y)

    def clear(self) -> None:
        self._tiles.clear()
