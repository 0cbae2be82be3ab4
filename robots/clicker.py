#!/usr/bin/env python3
"""A click counter anyone can play.

Writes "Clicks: N" on the world with a com:click link in front of it.
Clicking the link sends a "click" command, which bumps the counter.

Usage:
    python clicker.py [--x -8] [--y -1] [--interval 0.1]
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from owot_client import CmdEvent, OwotClient

from common import add_connection_args, run_bot

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("clicker")

CLICK_COMMAND = "click"
COUNTER_COLOR = 0x008000


class ClickCounter:
    """Counts "click" commands."""

    def __init__(self):
        self.clicks = 0

    def on_cmd(self, event: CmdEvent):
        if event.data != CLICK_COMMAND:
            return
        self.clicks += 1

    def label(self) -> str:
        return f"Clicks: {self.clicks} "


async def run(args: argparse.Namespace, token: Optional[str]):
    counter = ClickCounter()
    async with OwotClient(args.url, token, flush_interval=args.interval) as client:
        client.on("cmd", counter.on_cmd)
        client.url_link(args.x, args.y, f"com:{CLICK_COMMAND}")
        logger.info("Counter placed at (%d, %d)", args.x, args.y)

        shown = None
        while client.connected:
            label = counter.label()
            if label != shown:
                client.write_text(args.x + 1, args.y, label, COUNTER_COLOR)
                shown = label
            await asyncio.sleep(args.interval)


def main():
    parser = argparse.ArgumentParser(description="Click counter bot")
    add_connection_args(parser)
    parser.add_argument("--x", type=int, default=-8, help="Column of the link")
    parser.add_argument("--y", type=int, default=-1, help="Row of the counter")
    parser.add_argument(
        "--interval", type=float, default=0.1,
        help="Seconds between counter refreshes",
    )
    args = parser.parse_args()
    sys.exit(run_bot(run, args))


if __name__ == "__main__":
    main()
