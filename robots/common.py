"""Connection options shared by the bots.

Every option falls back to an environment variable:

    OWOT_URL          Websocket URL of the world
    OWOT_TOKEN        Uvias token
    UVIAS_LOGIN       Uvias login name, used when no token is given
    UVIAS_PASSWORD    Uvias password
    UVIAS_TOKEN_FILE  File where the token from a login is cached
"""

import argparse
import asyncio
import logging
import os
from typing import Awaitable, Callable, Optional

from owot_client import OwotError, login
from owot_client.client import DEFAULT_URL

logger = logging.getLogger("robots")


def add_connection_args(parser: argparse.ArgumentParser):
    parser.add_argument(
        "--url", default=os.environ.get("OWOT_URL", DEFAULT_URL),
        help="World websocket URL (default: $OWOT_URL or the front page)",
    )
    parser.add_argument(
        "--token", default=os.environ.get("OWOT_TOKEN"),
        help="Uvias token (default: $OWOT_TOKEN)",
    )
    parser.add_argument(
        "--login", default=os.environ.get("UVIAS_LOGIN"),
        help="Uvias login name, used when no token is given",
    )
    parser.add_argument(
        "--password", default=os.environ.get("UVIAS_PASSWORD"),
        help="Uvias password",
    )
    parser.add_argument(
        "--token-file", default=os.environ.get("UVIAS_TOKEN_FILE"),
        help="Cache the token from a login in this file",
    )


def resolve_token(args: argparse.Namespace) -> Optional[str]:
    """Use the given token, or log in when credentials are given."""
    if args.token:
        return args.token
    if args.login and args.password:
        return login(args.login, args.password, token_file=args.token_file)
    logger.info("No credentials given, connecting anonymously")
    return None


Bot = Callable[[argparse.Namespace, Optional[str]], Awaitable[Optional[int]]]


def run_bot(run: Bot, args: argparse.Namespace) -> int:
    """
    Resolve the token, run a bot and return its exit status.

    Logging in is a blocking HTTP exchange, so it happens before the
    event loop starts.
    """
    try:
        token = resolve_token(args)
        return asyncio.run(run(args, token)) or 0
    except KeyboardInterrupt:
        logger.info("Shutting down")
        return 0
    except OwotError as e:
        logger.error("%s", e)
        return 1
