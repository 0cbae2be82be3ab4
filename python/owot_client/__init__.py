"""
OWOT Client - Python client library for Our World of Text.

This library connects to a world's websocket and provides typed events,
a tile cache and a batching write pipeline for bots.

Example usage:
    >>> import asyncio
    >>> from owot_client import OwotClient
    >>>
    >>> async def main():
    ...     async with OwotClient("wss://ourworldoftext.com/ws/?hide=1") as client:
    ...         # Read a character
    ...         await client.fetch_tiles(-1, 0, 0, 0)
    ...         print(client.get_char(-7, 7))
    ...
    ...         # Write some text and wait for the server to accept it
    ...         client.write_text(0, 0, "hello\\nworld", color=0x008000)
    ...         await client.wait_for_writes()
    ...
    ...         # React to chat
    ...         client.on("chat", lambda e: print(f"{e.nickname}: {e.message}"))
    >>>
    >>> asyncio.run(main())
"""

__version__ = "0.1.0"

# Main client
from .client import OwotClient, connect

# Login
from .auth import check_token, login

# Coordinates and text
from .coords import char_to_tile, tile_to_char
from .text import split_chars

# Types
from .events import (
    ChatDeleteEvent,
    ChatEvent,
    ChatLocation,
    CmdEvent,
    CursorEvent,
    Stats,
    TileUpdateEvent,
    UserCountEvent,
    WriteResult,
    WriteStatus,
)
from .tile import Char, Protection, Tile
from .writes import Edit

# Errors
from .errors import (
    AuthenticationError,
    DisconnectedError,
    OwotError,
    ProtocolError,
    RequestTimeoutError,
    ValidationError,
)

__all__ = [
    # Version
    "__version__",
    # Client
    "OwotClient",
    "connect",
    # Login
    "check_token",
    "login",
    # Coordinates and text
    "char_to_tile",
    "tile_to_char",
    "split_chars",
    # Types
    "ChatDeleteEvent",
    "ChatEvent",
    "ChatLocation",
    "CmdEvent",
    "CursorEvent",
    "Stats",
    "TileUpdateEvent",
    "UserCountEvent",
    "WriteResult",
    "WriteStatus",
    "Char",
    "Protection",
    "Tile",
    "Edit",
    # Errors
    "AuthenticationError",
    "DisconnectedError",
    "OwotError",
    "ProtocolError",
    "RequestTimeoutError",
    "ValidationError",
]
