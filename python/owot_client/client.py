"""
Websocket client for Our World of Text.

Provides a Python interface to a world's websocket: typed events for
everything the server sends, a cache of fetched tiles, and a write
pipeline that batches edits and retries rate-limited ones.
"""

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .area import OPERATION_DELAY, split_area
from .coords import char_to_tile, tile_to_char
from .emitter import EventEmitter
from .errors import DisconnectedError, ProtocolError, RequestTimeoutError, ValidationError
from .events import (
    ChatDeleteEvent,
    ChatEvent,
    ChatLocation,
    CmdEvent,
    CursorEvent,
    Stats,
    TileUpdateEvent,
    UserCountEvent,
)
from .messages import (
    AnnouncementMessage,
    ChannelMessage,
    ChatDeleteMessage,
    ChatHistoryMessage,
    ChatMessage,
    CmdMessage,
    CursorMessage,
    FetchMessage,
    PingMessage,
    StatsMessage,
    TileUpdateMessage,
    UserCountMessage,
    WriteMessage,
    parse_message,
)
from .text import split_chars
from .tile import DEFAULT_COLOR, NO_BACKGROUND, Char, Protection, TileCache
from .writes import MAX_BATCH_SIZE, Edit, WriteBuffer

logger = logging.getLogger(__name__)

DEFAULT_URL = "wss://ourworldoftext.com/ws/?hide=1"
MAX_FETCH_TILES = 2500
MIN_FLUSH_INTERVAL = 0.001


class OwotClient(EventEmitter):
    """
    Client for one world's websocket.

    The connection runs in a background task started by start() (or by
    the module-level connect()). Outgoing operations may be called before
    the connection is open; their frames are queued and sent once it is.
    The session is usable after the "connected" event, which fires when
    the server tells us our channel.

    Example:
        >>> async with OwotClient("wss://ourworldoftext.com/ws/?hide=1") as client:
        ...     await client.fetch_tiles(-1, 0, 0, 0)
        ...     client.write_text(0, 0, "hello")
        ...     await client.wait_for_writes()
    """

    def __init__(
        self,
        url: str = DEFAULT_URL,
        token: Optional[str] = None,
        flush_interval: float = 0.0,
        request_timeout: Optional[float] = None,
    ):
        """
        Initialize the client.

        Args:
            url: Websocket URL of the world. Add ?hide=1 to stay out of the
                user count.
            token: Uvias token to connect with an account
            flush_interval: Seconds between write buffer flushes
            request_timeout: Seconds to wait for ping, stats and fetch
                responses. None waits forever.
        """
        super().__init__()
        self.url = url
        self.token = token
        self.request_timeout = request_timeout
        self._flush_interval = flush_interval

        self.channel_id: Optional[str] = None
        self.chat_id: int = -1
        self.user_count: Optional[int] = None
        self.page_chat_history: List[ChatEvent] = []
        self.global_chat_history: List[ChatEvent] = []
        self.guest_cursors: Dict[str, Tuple[int, int]] = {}

        self.tiles = TileCache()
        self.writes = WriteBuffer()

        self._next_ping_id = 0
        self._next_stats_id = 0
        self._next_fetch_id = 0
        self._pending_pings: Dict[int, "asyncio.Future[Any]"] = {}
        self._pending_stats: Dict[int, "asyncio.Future[Any]"] = {}
        self._pending_fetches: Dict[int, "asyncio.Future[Any]"] = {}

        self._outgoing: "asyncio.Queue[str]" = asyncio.Queue()
        self._connected = asyncio.Event()
        self._open = False
        self._ws: Any = None
        self._run_task: Optional["asyncio.Task[None]"] = None
        self._flush_task: Optional["asyncio.Task[None]"] = None

        self._handlers: Dict[str, Callable[[Any], None]] = {
            "cmd": self._on_cmd,
            "chat": self._on_chat,
            "write": self._on_write,
            "tileUpdate": self._on_tile_update,
            "fetch": self._on_fetch,
            "chathistory": self._on_chat_history,
            "ping": self._on_ping,
            "channel": self._on_channel,
            "user_count": self._on_user_count,
            "announcement": self._on_announcement,
            "chatdelete": self._on_chat_delete,
            "cursor": self._on_cursor,
            "stats": self._on_stats,
        }

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    def start(self) -> None:
        """Start connecting in the background. Must run inside an event loop."""
        if self._run_task is None:
            self._run_task = asyncio.get_running_loop().create_task(self._run())

    async def wait_until_connected(self) -> None:
        """
        Wait for the "connected" event.

        Raises:
            DisconnectedError: The connection ended first
        """
        if self._connected.is_set():
            return
        if self._run_task is None:
            await self._connected.wait()
            return

        waiter = asyncio.ensure_future(self._connected.wait())
        await asyncio.wait({waiter, self._run_task}, return_when=asyncio.FIRST_COMPLETED)
        if not waiter.done():
            waiter.cancel()
            raise DisconnectedError(f"Connection to {self.url} closed before the session started")

    async def close(self) -> None:
        """Close the connection and stop the flush timer."""
        self._stop_flush_timer()
        if self._ws is not None:
            await self._ws.close()
        if self._run_task is not None:
            await self._run_task

    async def __aenter__(self) -> "OwotClient":
        self.start()
        await self.wait_until_connected()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _run(self) -> None:
        headers = {"Cookie": f"token={self.token}"} if self.token else None
        try:
            async with websockets.connect(self.url, additional_headers=headers) as ws:
                self._ws = ws
                logger.info("Connected to %s", self.url)
                self._on_open()
                sender = asyncio.create_task(self._send_loop(ws))
                try:
                    async for frame in ws:
                        try:
                            self._receive(frame)
                        except Exception:
                            logger.exception("Failed to process frame")
                finally:
                    sender.cancel()
        except ConnectionClosed as e:
            logger.info("Connection to %s closed: %s", self.url, e)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.error("Connection to %s failed: %s", self.url, e)
        finally:
            self._ws = None
            self._open = False
            self._connected.clear()
            self._stop_flush_timer()
            logger.info("Disconnected from %s", self.url)
            self.emit("disconnected")

    async def _send_loop(self, ws: Any) -> None:
        try:
            while True:
                frame = await self._outgoing.get()
                await ws.send(frame)
        except ConnectionClosed:
            logger.debug("Send loop stopped, connection closed")

    def _on_open(self) -> None:
        self._open = True
        self._transmit({"kind": "chathistory"})
        self._transmit({"kind": "cmd_opt"})
        self.set_flush_interval(self._flush_interval)

    def _transmit(self, payload: Dict[str, Any]) -> None:
        """Queue a JSON frame for sending."""
        logger.debug("-> %s", payload["kind"])
        self._outgoing.put_nowait(json.dumps(payload))

    def _receive(self, frame: Union[str, bytes]) -> None:
        try:
            data = json.loads(frame)
        except ValueError:
            logger.warning("Ignoring frame that is not JSON: %.80r", frame)
            return
        self._handle_message(data)

    def _handle_message(self, data: Any) -> None:
        """Dispatch one decoded frame to state updates and events."""
        if isinstance(data, dict):
            self.emit("message", data)

        try:
            message = parse_message(data)
        except ProtocolError as e:
            logger.warning("Ignoring frame: %s", e)
            return

        try:
            self._handlers[message.kind](message)
        except Exception:
            logger.exception("Failed to handle %s message", message.kind)
            return
        self.emit(f"message_{message.kind}", message)

    # -------------------------------------------------------------------------
    # Incoming messages
    # -------------------------------------------------------------------------

    def _on_cmd(self, message: CmdMessage) -> None:
        self.emit("cmd", CmdEvent.from_message(message))

    def _on_chat(self, message: ChatMessage) -> None:
        self.emit("chat", ChatEvent.from_message(message))

    def _on_write(self, message: WriteMessage) -> None:
        for result in self.writes.resolve(message.accepted, message.rejected):
            self.emit("write_result", result)
        if self.writes.is_empty():
            self.emit("write_buffer_empty")

    def _on_tile_update(self, message: TileUpdateMessage) -> None:
        tiles = self.tiles.update(message.tiles)
        self.emit("tile_update", TileUpdateEvent(channel=message.channel, tiles=tiles))

    def _on_fetch(self, message: FetchMessage) -> None:
        try:
            self.tiles.update(message.tiles)
        finally:
            if message.request is not None:
                self._resolve(self._pending_fetches, message.request, None)

    def _on_chat_history(self, message: ChatHistoryMessage) -> None:
        self.global_chat_history = [ChatEvent.from_message(m) for m in message.global_chat_prev]
        self.page_chat_history = [ChatEvent.from_message(m) for m in message.page_chat_prev]
        self.emit("chathistory")

    def _on_ping(self, message: PingMessage) -> None:
        self._resolve(self._pending_pings, message.id, None)

    def _on_channel(self, message: ChannelMessage) -> None:
        self.channel_id = message.sender
        self.chat_id = message.id
        self.user_count = message.initial_user_count
        self._connected.set()
        logger.info("Session started: channel=%s chat_id=%d", self.channel_id, self.chat_id)
        self.emit("connected")

    def _on_user_count(self, message: UserCountMessage) -> None:
        old = self.user_count
        self.user_count = message.count
        self.emit("user_count", UserCountEvent(old=old, new=message.count))

    def _on_announcement(self, message: AnnouncementMessage) -> None:
        self.emit("announcement", message.text)

    def _on_chat_delete(self, message: ChatDeleteMessage) -> None:
        self.emit("chat_delete", ChatDeleteEvent(id=message.id, time=message.time))

    def _on_cursor(self, message: CursorMessage) -> None:
        if message.channel == self.channel_id:
            return

        position = None
        if message.hidden or not message.position:
            self.guest_cursors.pop(message.channel, None)
        else:
            p = message.position
            position = tile_to_char(p["tileX"], p["tileY"], p["charX"], p["charY"])
            self.guest_cursors[message.channel] = position

        self.emit("cursor", CursorEvent(channel=message.channel, position=position))

    def _on_stats(self, message: StatsMessage) -> None:
        creation_date = None
        if message.creation_date is not None:
            creation_date = datetime.fromtimestamp(message.creation_date / 1000, tz=timezone.utc)
        self._resolve(self._pending_stats, message.id, Stats(creation_date, message.views))

    # -------------------------------------------------------------------------
    # Correlated requests
    # -------------------------------------------------------------------------

    def _resolve(self, pending: Dict[int, "asyncio.Future[Any]"], request_id: Any, value: Any) -> None:
        future = pending.pop(request_id, None)
        if future is None:
            logger.debug("No pending request with id %r", request_id)
            return
        if not future.done():
            future.set_result(value)

    async def _request(
        self,
        pending: Dict[int, "asyncio.Future[Any]"],
        request_id: int,
        payload: Dict[str, Any],
    ) -> Any:
        future = asyncio.get_running_loop().create_future()
        pending[request_id] = future
        self._transmit(payload)

        awaitable: Awaitable[Any] = future
        if self.request_timeout is not None:
            awaitable = asyncio.wait_for(future, self.request_timeout)
        try:
            return await awaitable
        except asyncio.TimeoutError:
            raise RequestTimeoutError(
                f"No {payload['kind']} response for request {request_id} "
                f"after {self.request_timeout}s"
            ) from None
        finally:
            pending.pop(request_id, None)

    async def ping(self) -> float:
        """
        Check the connection speed.

        Returns:
            Round trip time in milliseconds
        """
        self._next_ping_id += 1
        ping_id = self._next_ping_id
        start = time.monotonic()
        await self._request(self._pending_pings, ping_id, {"kind": "ping", "id": ping_id})
        return (time.monotonic() - start) * 1000

    async def stats(self) -> Stats:
        """Get the world's creation date and view count."""
        self._next_stats_id += 1
        stats_id = self._next_stats_id
        return await self._request(self._pending_stats, stats_id, {"kind": "stats", "id": stats_id})

    async def fetch_tiles(self, min_x: int, min_y: int, max_x: int, max_y: int) -> None:
        """
        Fetch the tiles in a rectangle into the tile cache.

        Args:
            min_x: Leftmost tile column
            min_y: Topmost tile row
            max_x: Rightmost tile column (inclusive)
            max_y: Bottom tile row (inclusive)

        Raises:
            ValidationError: The rectangle is inverted or covers more than
                2500 tiles. Nothing is sent.
        """
        if max_x < min_x or max_y < min_y:
            raise ValidationError(f"Inverted fetch rectangle ({min_x}, {min_y}, {max_x}, {max_y})")
        area = (max_x - min_x + 1) * (max_y - min_y + 1)
        if area > MAX_FETCH_TILES:
            raise ValidationError(f"Fetch rectangle covers {area} tiles, the limit is {MAX_FETCH_TILES}")

        request_id = self._next_fetch_id
        self._next_fetch_id += 1
        await self._request(
            self._pending_fetches,
            request_id,
            {
                "kind": "fetch",
                "request": request_id,
                "fetchRectangles": [{"minX": min_x, "minY": min_y, "maxX": max_x, "maxY": max_y}],
            },
        )

    # -------------------------------------------------------------------------
    # Tiles and settings
    # -------------------------------------------------------------------------

    def get_char(self, x: int, y: int) -> Optional[Char]:
        """Get a cached cell, or None if its tile was never fetched."""
        return self.tiles.get_char(x, y)

    def set_boundary(self, min_x: int, min_y: int, max_x: int, max_y: int) -> None:
        """Only receive tile updates for this rectangle of tiles."""
        self._transmit({
            "kind": "boundary",
            "minX": min_x,
            "minY": min_y,
            "maxX": max_x,
            "maxY": max_y,
            "centerX": (max_x - min_x) // 2 + min_x,
            "centerY": (max_y - min_y) // 2 + min_y,
        })

    def receive_updates(self, on: bool = True) -> None:
        """Turn tile update events on or off."""
        self._transmit({"kind": "config", "updates": on})

    def receive_cmd_ips(self, on: bool = True) -> None:
        """Include sender IPs in cmd events. Requires operator rights."""
        self._transmit({"kind": "config", "descriptiveCmd": on})

    def receive_boundless_updates(self, on: bool = True) -> None:
        """Receive tile updates outside the boundary. Requires operator rights."""
        self._transmit({"kind": "config", "localFilter": not on})

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def write_char(
        self,
        x: int,
        y: int,
        char: str,
        color: int = DEFAULT_COLOR,
        bg_color: int = NO_BACKGROUND,
    ) -> Edit:
        """Queue a character edit. It is sent on the next flush."""
        return self.writes.add(x, y, char, color, bg_color)

    def write_text(
        self,
        x: int,
        y: int,
        text: str,
        color: int = DEFAULT_COLOR,
        bg_color: int = NO_BACKGROUND,
    ) -> None:
        """
        Queue edits for a block of text.

        A newline moves back to column x on the next row.
        """
        column = x
        for char in split_chars(text):
            if char == "\n":
                column = x
                y += 1
                continue
            self.write_char(column, y, char, color, bg_color)
            column += 1

    def flush_writes(self) -> None:
        """Send up to 512 buffered edits."""
        if not len(self.writes):
            return
        batch = self.writes.take_batch(MAX_BATCH_SIZE)
        self._transmit({"kind": "write", "edits": [list(edit) for edit in batch]})

    def set_flush_interval(self, interval: float) -> None:
        """
        Set the seconds between flushes, replacing the running timer.

        Before the connection opens this only records the interval.
        """
        self._flush_interval = interval
        self._stop_flush_timer()
        if self._open:
            self._flush_task = asyncio.get_running_loop().create_task(self._flush_loop(interval))

    def clear_write_buffer(self) -> None:
        """Forget all unsent and unacknowledged edits."""
        self.writes.clear()
        self.emit("write_buffer_empty")

    async def wait_for_writes(self) -> None:
        """Wait until every queued edit has been accepted or rejected."""
        if self.writes.is_empty():
            return
        future = asyncio.get_running_loop().create_future()

        def done() -> None:
            if not future.done():
                future.set_result(None)

        self.once("write_buffer_empty", done)
        await future

    async def _flush_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(max(interval, MIN_FLUSH_INTERVAL))
            self.flush_writes()

    def _stop_flush_timer(self) -> None:
        if self._flush_task is not None:
            self._flush_task.cancel()
            self._flush_task = None

    # -------------------------------------------------------------------------
    # Chat, commands, cursor and links
    # -------------------------------------------------------------------------

    def chat(
        self,
        message: str,
        location: Union[ChatLocation, str] = ChatLocation.PAGE,
        nickname: str = "",
        color: str = "#000000",
    ) -> None:
        """Send a chat message."""
        self._transmit({
            "kind": "chat",
            "nickname": nickname,
            "message": message,
            "location": ChatLocation(location).value,
            "color": color,
        })

    def cmd(self, data: str, include_username: bool = False) -> None:
        """Send a command to every client on the world."""
        self._transmit({"kind": "cmd", "data": data, "include_username": include_username})

    def move_cursor(self, x: int, y: int) -> None:
        """Move the guest cursor, showing it if it is hidden."""
        tile_x, tile_y, char_x, char_y = char_to_tile(x, y)
        self._transmit({
            "kind": "cursor",
            "position": {"tileX": tile_x, "tileY": tile_y, "charX": char_x, "charY": char_y},
        })

    def hide_cursor(self) -> None:
        self._transmit({"kind": "cursor", "hidden": True})

    def url_link(self, x: int, y: int, url: str) -> None:
        """Put a URL link on a cell."""
        tile_x, tile_y, char_x, char_y = char_to_tile(x, y)
        self._transmit({
            "kind": "link",
            "data": {"tileY": tile_y, "tileX": tile_x, "charY": char_y, "charX": char_x, "url": url},
            "type": "url",
        })

    def coord_link(self, x: int, y: int, link_tile_x: int, link_tile_y: int) -> None:
        """Put a link to another tile on a cell."""
        tile_x, tile_y, char_x, char_y = char_to_tile(x, y)
        self._transmit({
            "kind": "link",
            "data": {
                "tileY": tile_y,
                "tileX": tile_x,
                "charY": char_y,
                "charX": char_x,
                "link_tileX": link_tile_x,
                "link_tileY": link_tile_y,
            },
            "type": "coord",
        })

    # -------------------------------------------------------------------------
    # Areas
    # -------------------------------------------------------------------------

    async def clear_area(self, x1: int, y1: int, x2: int, y2: int) -> None:
        """Clear every cell between two corners (inclusive)."""
        for i, piece in enumerate(split_area(x1, y1, x2, y2)):
            if i:
                await asyncio.sleep(OPERATION_DELAY)
            self._transmit(piece.clear_frame())

    async def protect_area(
        self,
        x1: int,
        y1: int,
        x2: int,
        y2: int,
        level: Optional[Union[Protection, int]] = Protection.PUBLIC,
    ) -> None:
        """
        Protect every cell between two corners (inclusive).

        Args:
            level: Protection level, or None to remove protection

        Raises:
            ValidationError: level is not a protection level
        """
        if level is not None:
            try:
                level = Protection(level)
            except ValueError:
                raise ValidationError(f"Unknown protection level: {level!r}") from None

        for i, piece in enumerate(split_area(x1, y1, x2, y2)):
            if i:
                await asyncio.sleep(OPERATION_DELAY)
            self._transmit(piece.protect_frame(level))

    async def unprotect_area(self, x1: int, y1: int, x2: int, y2: int) -> None:
        await self.protect_area(x1, y1, x2, y2, None)


def connect(
    url: str = DEFAULT_URL,
    token: Optional[str] = None,
    flush_interval: float = 0.0,
    request_timeout: Optional[float] = None,
) -> OwotClient:
    """
    Create a client and start connecting.

    Must be called from a running event loop. Listen for "connected" or
    await wait_until_connected() before relying on the session.
    """
    client = OwotClient(url, token, flush_interval, request_timeout)
    client.start()
    return client
