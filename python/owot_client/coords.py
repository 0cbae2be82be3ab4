"""Conversions between character coordinates and tile coordinates."""

from typing import Tuple

TILE_WIDTH = 16
TILE_HEIGHT = 8
TILE_AREA = TILE_WIDTH * TILE_HEIGHT


def char_to_tile(x: int, y: int) -> Tuple[int, int, int, int]:
    """
    Convert character coordinates to tile coordinates.

    Example:
        >>> tile_x, tile_y, char_x, char_y = char_to_tile(-1, 9)
        >>> (tile_x, tile_y, char_x, char_y)
        (-1, 1, 15, 1)
    """
    tile_x, char_x = divmod(x, TILE_WIDTH)
    tile_y, char_y = divmod(y, TILE_HEIGHT)
    return tile_x, tile_y, char_x, char_y


def tile_to_char(tile_x: int, tile_y: int, char_x: int, char_y: int) -> Tuple[int, int]:
    """
    Convert tile coordinates to character coordinates.

    Example:
        >>> tile_to_char(-1, 1, 15, 1)
        (-1, 9)
    """
    return tile_x * TILE_WIDTH + char_x, tile_y * TILE_HEIGHT + char_y


def tile_key(tile_x: int, tile_y: int) -> str:
    """Protocol key of a tile: "tileY,tileX"."""
    return f"{tile_y},{tile_x}"


def parse_tile_key(key: str) -> Tuple[int, int]:
    """Parse a "tileY,tileX" protocol key into (tile_x, tile_y)."""
    tile_y, tile_x = key.split(",")
    return int(tile_x), int(tile_y)
