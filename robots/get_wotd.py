#!/usr/bin/env python3
"""Print the front page's word of the day.

The word of the day is the first URL link on row 7, between columns -14
and 15. With --watch the bot keeps running and prints every new one.

Usage:
    python get_wotd.py [--watch]
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from owot_client import OwotClient, TileUpdateEvent
from owot_client.tile import TileCache

from common import add_connection_args, run_bot

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("get_wotd")

WOTD_ROW = 7
WOTD_COLUMNS = range(-14, 16)
# Tiles (-1, 0) and (0, 0) hold the row
WOTD_TILES = (-1, 0, 0, 0)


def find_wotd(tiles: TileCache) -> Optional[str]:
    """Return the first URL link on the word of the day row."""
    for x in WOTD_COLUMNS:
        char = tiles.get_char(x, WOTD_ROW)
        if char is not None and isinstance(char.link, str):
            return char.link
    return None


async def run(args: argparse.Namespace, token: Optional[str]) -> int:
    async with OwotClient(args.url, token) as client:
        await client.fetch_tiles(*WOTD_TILES)
        wotd = find_wotd(client.tiles)
        if wotd is None:
            logger.warning("No word of the day link found")
        else:
            print(wotd, flush=True)

        if not args.watch:
            return 0 if wotd is not None else 1

        def on_tile_update(event: TileUpdateEvent):
            nonlocal wotd
            if not (event.has_tile(-1, 0) or event.has_tile(0, 0)):
                return
            new_wotd = find_wotd(client.tiles)
            # A removed link keeps the last word
            if new_wotd is None or new_wotd == wotd:
                return
            wotd = new_wotd
            print(wotd, flush=True)

        client.set_boundary(*WOTD_TILES)
        client.on("tile_update", on_tile_update)

        stopped = asyncio.Event()
        client.once("disconnected", stopped.set)
        await stopped.wait()
    return 0


def main():
    parser = argparse.ArgumentParser(description="Print the word of the day")
    add_connection_args(parser)
    parser.add_argument(
        "--watch", action="store_true",
        help="Keep running and print each new word of the day",
    )
    args = parser.parse_args()
    sys.exit(run_bot(run, args))


if __name__ == "__main__":
    main()
