#!/usr/bin/env python3
"""A scrolling news ticker whose text anyone can change from chat.

Send "!ticker <text>" in chat to replace the text.

Usage:
    python newsticker.py [--x -16] [--y -9] [--width 32] [--text "..."]
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from owot_client import ChatEvent, OwotClient

from common import add_connection_args, run_bot

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("newsticker")

TICKER_COMMAND = "!ticker "
TICKER_COLOR = 0x008000
DEFAULT_TEXT = "europe and lice go back to textwall"


def ticker_window(text: str, position: int, width: int) -> str:
    """
    The visible part of the ticker.

    Args:
        text: Ticker text
        position: Index of the text shown in the leftmost cell. Negative
            positions scroll the text in from the right.
        width: Number of cells

    Returns:
        Exactly width characters
    """
    padded = text.ljust(width)
    window = padded[max(0, position):position + width]
    if position < 0:
        return window.rjust(width)
    return window.ljust(width)


class Ticker:
    """Scroll state of the ticker."""

    def __init__(self, text: str, width: int):
        self.text = text
        self.width = width
        self.position = -width

    def step(self) -> str:
        """Return the current window and scroll one cell."""
        window = ticker_window(self.text, self.position, self.width)
        self.position += 1
        if self.position > len(self.text):
            self.position = -self.width
        return window

    def handle_command(self, message: str) -> Optional[str]:
        """Take new text from a chat command. Returns the text, or None."""
        if not message.startswith(TICKER_COMMAND):
            return None
        self.text = message[len(TICKER_COMMAND):]
        logger.info("Ticker text changed to %r", self.text)
        return self.text


async def run(args: argparse.Namespace, token: Optional[str]):
    ticker = Ticker(args.text, args.width)
    async with OwotClient(args.url, token, flush_interval=args.interval) as client:

        def on_chat(event: ChatEvent):
            if ticker.handle_command(event.message) is not None:
                client.chat("ok", event.location, "newsticker")

        client.on("chat", on_chat)

        while client.connected:
            client.write_text(args.x, args.y, ticker.step(), TICKER_COLOR)
            await asyncio.sleep(args.interval)


def main():
    parser = argparse.ArgumentParser(description="News ticker bot")
    add_connection_args(parser)
    parser.add_argument("--x", type=int, default=-16, help="Column of the ticker")
    parser.add_argument("--y", type=int, default=-9, help="Row of the ticker")
    parser.add_argument("--width", type=int, default=32, help="Ticker width in cells")
    parser.add_argument("--text", default=DEFAULT_TEXT, help="Initial ticker text")
    parser.add_argument(
        "--interval", type=float, default=0.1,
        help="Seconds between scroll steps",
    )
    args = parser.parse_args()
    sys.exit(run_bot(run, args))


if __name__ == "__main__":
    main()
