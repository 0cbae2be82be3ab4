#!/usr/bin/env python3
"""Print a world's page chat history and exit.

Usage:
    python chathistory.py [--url wss://ourworldoftext.com/ws/?hide=1] [--global]
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
logger = logging.getLogger("chathistory")


def format_chat(event: ChatEvent) -> str:
    name = event.nickname or event.real_username or f"[{event.id}]"
    return f"[{event.date:%Y-%m-%d %H:%M:%S}] {name}: {event.message}"


async def run(args: argparse.Namespace, token: Optional[str]) -> int:
    client = OwotClient(args.url, token)
    finished = asyncio.Event()
    received = []

    def on_history():
        received.append(True)
        finished.set()

    client.once("chathistory", on_history)
    client.once("disconnected", finished.set)
    client.start()

    await finished.wait()
    await client.close()

    if not received:
        logger.error("Disconnected before the chat history arrived")
        return 1

    history = client.global_chat_history if args.global_chat else client.page_chat_history
    for event in history:
        print(format_chat(event))
    return 0


def main():
    parser = argparse.ArgumentParser(description="Print the chat history of a world")
    add_connection_args(parser)
    parser.add_argument(
        "--global", dest="global_chat", action="store_true",
        help="Print the global chat instead of the page chat",
    )
    args = parser.parse_args()
    sys.exit(run_bot(run, args))


if __name__ == "__main__":
    main()
