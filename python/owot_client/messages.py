"""
Incoming protocol messages.

Every frame the server sends is a JSON object tagged with a "kind" field.
Each kind the client understands has a frozen dataclass here, built from
the decoded JSON with from_dict. parse_message picks the class by kind.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Type

from .errors import ProtocolError


@dataclass(frozen=True)
class CmdMessage:
    """A command sent by another client, usually through a com: link."""

    kind = "cmd"

    data: str
    sender: str
    username: Optional[str] = None
    id: Optional[str] = None
    ip: Optional[str] = None
    coords: Optional[Tuple[int, int, int, int]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CmdMessage":
        coords = data.get("coords")
        return cls(
            data=data.get("data", ""),
            sender=data.get("sender", ""),
            username=data.get("username"),
            id=data.get("id"),
            ip=data.get("ip"),
            coords=tuple(coords) if coords else None,
        )


@dataclass(frozen=True)
class ChatMessage:
    """A chat message, live or from the history backlog."""

    kind = "chat"

    id: int
    nickname: str
    registered: bool
    op: bool
    admin: bool
    staff: bool
    location: str
    message: str
    color: str
    date: int
    real_username: Optional[str] = None
    rank_name: Optional[str] = None
    rank_color: Optional[str] = None
    private_message: Optional[str] = None
    custom_meta: Optional[Dict[str, str]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        return cls(
            id=data.get("id", 0),
            nickname=data.get("nickname", ""),
            registered=bool(data.get("registered", False)),
            op=bool(data.get("op", False)),
            admin=bool(data.get("admin", False)),
            staff=bool(data.get("staff", False)),
            location=data.get("location", "page"),
            message=data.get("message", ""),
            color=data.get("color", "#000000"),
            date=data.get("date", 0),
            real_username=data.get("realUsername"),
            rank_name=data.get("rankName"),
            rank_color=data.get("rankColor"),
            private_message=data.get("privateMessage"),
            custom_meta=data.get("customMeta"),
        )


@dataclass(frozen=True)
class WriteMessage:
    """
    Acknowledgment of previously sent edits.

    rejected maps edit ids to a reason code.
    """

    kind = "write"

    accepted: List[int]
    rejected: Dict[int, int]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WriteMessage":
        return cls(
            accepted=[int(edit_id) for edit_id in data.get("accepted") or []],
            rejected={
                int(edit_id): int(code)
                for edit_id, code in (data.get("rejected") or {}).items()
            },
        )


@dataclass(frozen=True)
class TileUpdateMessage:
    kind = "tileUpdate"

    channel: str
    tiles: Dict[str, Optional[Dict[str, Any]]]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TileUpdateMessage":
        return cls(channel=data.get("channel", ""), tiles=data.get("tiles") or {})


@dataclass(frozen=True)
class FetchMessage:
    kind = "fetch"

    tiles: Dict[str, Optional[Dict[str, Any]]]
    request: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FetchMessage":
        return cls(tiles=data.get("tiles") or {}, request=data.get("request"))


@dataclass(frozen=True)
class ChatHistoryMessage:
    kind = "chathistory"

    global_chat_prev: List[ChatMessage] = field(default_factory=list)
    page_chat_prev: List[ChatMessage] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatHistoryMessage":
        return cls(
            global_chat_prev=[
                ChatMessage.from_dict(m) for m in data.get("global_chat_prev") or []
            ],
            page_chat_prev=[
                ChatMessage.from_dict(m) for m in data.get("page_chat_prev") or []
            ],
        )


@dataclass(frozen=True)
class PingMessage:
    kind = "ping"

    id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PingMessage":
        return cls(id=data.get("id"))


@dataclass(frozen=True)
class ChannelMessage:
    """First message of a session: who we are on this world."""

    kind = "channel"

    sender: str
    id: int
    initial_user_count: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChannelMessage":
        chat_id = data.get("id")
        return cls(
            sender=data.get("sender", ""),
            id=-1 if chat_id is None else chat_id,
            initial_user_count=data.get("initial_user_count"),
        )


@dataclass(frozen=True)
class UserCountMessage:
    kind = "user_count"

    count: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserCountMessage":
        return cls(count=data.get("count", 0))


@dataclass(frozen=True)
class AnnouncementMessage:
    kind = "announcement"

    text: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnnouncementMessage":
        return cls(text=data.get("text", ""))


@dataclass(frozen=True)
class ChatDeleteMessage:
    kind = "chatdelete"

    id: int
    time: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatDeleteMessage":
        return cls(id=data.get("id", 0), time=data.get("time", 0))


@dataclass(frozen=True)
class CursorMessage:
    """A guest cursor moved, or was hidden (position is None)."""

    kind = "cursor"

    channel: str
    hidden: bool = False
    position: Optional[Dict[str, int]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CursorMessage":
        return cls(
            channel=data.get("channel", ""),
            hidden=bool(data.get("hidden", False)),
            position=data.get("position"),
        )


@dataclass(frozen=True)
class StatsMessage:
    kind = "stats"

    id: Optional[int] = None
    creation_date: Optional[int] = None
    views: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatsMessage":
        return cls(
            id=data.get("id"),
            creation_date=data.get("creationDate"),
            views=data.get("views", 0),
        )


MESSAGE_TYPES: Dict[str, Type[Any]] = {
    message_type.kind: message_type
    for message_type in (
        CmdMessage,
        ChatMessage,
        WriteMessage,
        TileUpdateMessage,
        FetchMessage,
        ChatHistoryMessage,
        PingMessage,
        ChannelMessage,
        UserCountMessage,
        AnnouncementMessage,
        ChatDeleteMessage,
        CursorMessage,
        StatsMessage,
    )
}


def parse_message(data: Any) -> Any:
    """
    Decode a JSON frame into its message class.

    Raises:
        ProtocolError: The frame is not an object, has no kind, or has a
            kind this client does not know
    """
    if not isinstance(data, dict):
        raise ProtocolError("Frame is not a JSON object", response=data)

    kind = data.get("kind")
    message_type = MESSAGE_TYPES.get(kind)
    if message_type is None:
        raise ProtocolError(f"Unknown message kind: {kind!r}", response=data)

    try:
        return message_type.from_dict(data)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise ProtocolError(f"Malformed {kind} message: {e}", response=data) from e
