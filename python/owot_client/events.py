"""
Event types emitted by OwotClient.

Uses dataclasses for structured events and a str Enum for chat locations.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Dict, Optional, Tuple

from .coords import tile_key, tile_to_char
from .messages import ChatMessage, CmdMessage

if TYPE_CHECKING:
    from .tile import Tile
    from .writes import Edit


class ChatLocation(str, Enum):
    """Where a chat message is shown."""

    PAGE = "page"
    GLOBAL = "global"


class WriteStatus(str, Enum):
    """Outcome of a single edit."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class CmdEvent:
    """
    A command received from another client.

    username, uvias_id and ip are only set when the sender is registered
    (ip additionally requires receive_cmd_ips). coords is the clicked
    cell in character coordinates when the command came from a link.
    """

    data: str
    sender_channel: str
    registered: bool
    username: Optional[str] = None
    uvias_id: Optional[str] = None
    ip: Optional[str] = None
    coords: Optional[Tuple[int, int]] = None

    @classmethod
    def from_message(cls, message: CmdMessage) -> "CmdEvent":
        coords = None
        if message.coords:
            coords = tile_to_char(*message.coords)
        return cls(
            data=message.data,
            sender_channel=message.sender,
            registered=bool(message.username),
            username=message.username,
            uvias_id=message.id,
            ip=message.ip,
            coords=coords,
        )


@dataclass(frozen=True)
class ChatEvent:
    """A chat message with everything known about its sender."""

    id: int
    nickname: str
    registered: bool
    op: bool
    admin: bool
    staff: bool
    location: ChatLocation
    message: str
    color: str
    date: datetime
    real_username: Optional[str] = None
    rank_name: Optional[str] = None
    rank_color: Optional[str] = None
    private_message: Optional[str] = None
    custom_meta: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_message(cls, message: ChatMessage) -> "ChatEvent":
        try:
            location = ChatLocation(message.location)
        except ValueError:
            location = ChatLocation.PAGE
        return cls(
            id=message.id,
            nickname=message.nickname,
            registered=message.registered,
            op=message.op,
            admin=message.admin,
            staff=message.staff,
            location=location,
            message=message.message,
            color=message.color,
            date=datetime.fromtimestamp(message.date / 1000, tz=timezone.utc),
            real_username=message.real_username,
            rank_name=message.rank_name,
            rank_color=message.rank_color,
            private_message=message.private_message,
            custom_meta=dict(message.custom_meta or {}),
        )


@dataclass(frozen=True)
class TileUpdateEvent:
    """
    Tiles changed by someone.

    tiles is keyed by the protocol's "tileY,tileX" string. channel is the
    editor's channel as reported by the server and is not to be trusted.
    """

    channel: str
    tiles: Dict[str, "Tile"]

    def has_tile(self, tile_x: int, tile_y: int) -> bool:
        return tile_key(tile_x, tile_y) in self.tiles


@dataclass(frozen=True)
class UserCountEvent:
    old: Optional[int]
    new: int


@dataclass(frozen=True)
class ChatDeleteEvent:
    id: int
    time: int


@dataclass(frozen=True)
class CursorEvent:
    """A guest cursor moved; position is None when it was hidden."""

    channel: str
    position: Optional[Tuple[int, int]]


@dataclass(frozen=True)
class WriteResult:
    edit: "Edit"
    status: WriteStatus
    reason: Optional[int] = None


@dataclass(frozen=True)
class Stats:
    """World statistics."""

    creation_date: Optional[datetime]
    views: int
