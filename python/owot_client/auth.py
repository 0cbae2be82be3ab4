"""
Uvias login.

Accounts on ourworldoftext.com are Uvias accounts. Logging in yields a
token that OwotClient sends as the "token" cookie.
"""

import logging
import re
from pathlib import Path
from typing import Optional, Union

import requests

from .errors import AuthenticationError

logger = logging.getLogger(__name__)

LOGIN_URL = "https://uvias.com/api/auth/uvias"
CHECK_URL = "https://ourworldoftext.com/accounts/member_autocomplete/"
DEFAULT_TIMEOUT = 30.0

_TOKEN_PATTERN = re.compile(r"uviastoken=(.+?);")


def check_token(token: str, timeout: float = DEFAULT_TIMEOUT) -> bool:
    """
    Check whether a token is still accepted.

    Args:
        token: A Uvias token
        timeout: Request timeout in seconds

    Returns:
        False if the server answers 403 or 500 or cannot be reached
    """
    try:
        response = requests.get(
            CHECK_URL,
            headers={"Cookie": f"token={token}"},
            timeout=timeout,
        )
    except requests.RequestException as e:
        logger.debug("Token check failed: %s", e)
        return False
    return response.status_code not in (403, 500)


def login(
    login_name: str,
    password: str,
    token_file: Optional[Union[str, Path]] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> str:
    """
    Log in to Uvias.

    Args:
        login_name: Uvias login name
        password: Uvias password
        token_file: Optional path where the token is cached. A cached token
            that still passes check_token is returned without logging in.
        timeout: Request timeout in seconds

    Returns:
        The token

    Raises:
        AuthenticationError: The response carried no cookie or no token
    """
    if token_file is not None:
        path = Path(token_file)
        if path.is_file():
            token = path.read_text(encoding="utf-8").strip()
            if token and check_token(token, timeout):
                logger.info("Reusing cached token from %s", path)
                return token

    try:
        response = requests.post(
            LOGIN_URL,
            data={
                "service": "uvias",
                "loginname": login_name,
                "pass": password,
                "persistent": "on",
            },
            allow_redirects=False,
            timeout=timeout,
        )
    except requests.RequestException as e:
        raise AuthenticationError(f"Login request failed: {e}") from e

    cookie = response.headers.get("Set-Cookie")
    if not cookie:
        raise AuthenticationError("no cookie", response.status_code, response.text)

    match = _TOKEN_PATTERN.search(cookie)
    if not match:
        raise AuthenticationError("no token", response.status_code, response.text)

    token = match.group(1)
    if token_file is not None:
        Path(token_file).write_text(token, encoding="utf-8")
    logger.info("Logged in as %s", login_name)
    return token
