"""
Tests for OwotClient.

The client is driven without a socket: incoming frames go straight to
_handle_message and outgoing frames are read back from the send queue.
"""

import asyncio
import json

import pytest
from websockets.asyncio.server import serve

import owot_client.client as client_module
from owot_client import OwotClient, connect
from owot_client.errors import DisconnectedError, RequestTimeoutError, ValidationError
from owot_client.events import ChatLocation, WriteStatus
from owot_client.tile import Protection


def sent(client):
    """Pop every queued outgoing frame."""
    frames = []
    while not client._outgoing.empty():
        frames.append(json.loads(client._outgoing.get_nowait()))
    return frames


def record(client, event):
    """Collect the arguments of every emission of event."""
    calls = []
    client.on(event, lambda *args: calls.append(args[0] if len(args) == 1 else args))
    return calls


@pytest.fixture
def client():
    return OwotClient("ws://test/ws/")


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


def test_channel_message_starts_session(client):
    connected = record(client, "connected")
    client._handle_message({"kind": "channel", "sender": "me", "id": 12, "initial_user_count": 4})
    assert client.connected
    assert client.channel_id == "me"
    assert client.chat_id == 12
    assert client.user_count == 4
    assert len(connected) == 1


def test_user_count(client):
    counts = record(client, "user_count")
    client._handle_message({"kind": "channel", "sender": "me", "id": 1, "initial_user_count": 4})
    client._handle_message({"kind": "user_count", "count": 6})
    assert client.user_count == 6
    assert (counts[0].old, counts[0].new) == (4, 6)


def test_raw_message_events(client):
    raw = record(client, "message")
    typed = record(client, "message_announcement")
    announcements = record(client, "announcement")
    client._handle_message({"kind": "announcement", "text": "maintenance"})
    assert raw == [{"kind": "announcement", "text": "maintenance"}]
    assert typed[0].text == "maintenance"
    assert announcements == ["maintenance"]


def test_unknown_kind_is_ignored(client, caplog):
    raw = record(client, "message")
    client._handle_message({"kind": "teleport"})
    assert raw == [{"kind": "teleport"}]
    assert "Unknown message kind" in caplog.text


def test_non_json_frame_is_ignored(client, caplog):
    client._receive("not json")
    assert "not JSON" in caplog.text


def test_failing_listener_does_not_stop_dispatch(client, caplog):
    calls = []

    def broken(event):
        raise RuntimeError("boom")

    client.on("announcement", broken)
    client.on("announcement", calls.append)
    client._handle_message({"kind": "announcement", "text": "hi"})
    assert calls == ["hi"]
    assert "boom" in caplog.text


def test_once_listener(client):
    calls = []
    client.once("announcement", calls.append)
    client._handle_message({"kind": "announcement", "text": "a"})
    client._handle_message({"kind": "announcement", "text": "b"})
    assert calls == ["a"]


@pytest.mark.asyncio
async def test_on_open_arms_flush_timer(client):
    client._on_open()
    assert [f["kind"] for f in sent(client)] == ["chathistory", "cmd_opt"]
    assert client._flush_task is not None
    client._stop_flush_timer()


@pytest.mark.asyncio
async def test_wait_until_connected_fails_when_run_ends(client):
    async def run():
        return None

    client._run_task = asyncio.ensure_future(run())
    with pytest.raises(DisconnectedError):
        await client.wait_until_connected()


# ---------------------------------------------------------------------------
# Chat and commands
# ---------------------------------------------------------------------------


def test_cmd_event(client):
    events = record(client, "cmd")
    client._handle_message({
        "kind": "cmd",
        "data": "click",
        "sender": "chan",
        "username": "bob",
        "id": "77",
        "coords": [-1, 0, 15, 7],
    })
    event = events[0]
    assert event.data == "click"
    assert event.sender_channel == "chan"
    assert event.registered
    assert event.username == "bob"
    assert event.uvias_id == "77"
    assert event.coords == (-1, 7)


def test_cmd_event_anonymous(client):
    events = record(client, "cmd")
    client._handle_message({"kind": "cmd", "data": "x", "sender": "chan"})
    assert not events[0].registered
    assert events[0].username is None
    assert events[0].coords is None


def test_chat_event(client):
    events = record(client, "chat")
    client._handle_message({
        "kind": "chat",
        "id": 3,
        "nickname": "n",
        "registered": False,
        "op": False,
        "admin": False,
        "staff": False,
        "location": "global",
        "message": "hello",
        "color": "#123456",
        "date": 0,
    })
    event = events[0]
    assert event.location == ChatLocation.GLOBAL
    assert event.message == "hello"
    assert event.date.year == 1970
    assert event.custom_meta == {}


def test_chat_history(client):
    fired = record(client, "chathistory")
    client._handle_message({
        "kind": "chathistory",
        "page_chat_prev": [{"id": 1, "message": "page"}],
        "global_chat_prev": [{"id": 2, "message": "global", "location": "global"}],
    })
    assert fired == [()]
    assert [e.message for e in client.page_chat_history] == ["page"]
    assert [e.message for e in client.global_chat_history] == ["global"]


def test_chat_delete(client):
    events = record(client, "chat_delete")
    client._handle_message({"kind": "chatdelete", "id": 9, "time": 100})
    assert (events[0].id, events[0].time) == (9, 100)


def test_send_chat_and_cmd(client):
    client.chat("hi", "global", "bot", "#ff0000")
    client.cmd("ping", include_username=True)
    assert sent(client) == [
        {"kind": "chat", "nickname": "bot", "message": "hi", "location": "global", "color": "#ff0000"},
        {"kind": "cmd", "data": "ping", "include_username": True},
    ]


# ---------------------------------------------------------------------------
# Cursors and links
# ---------------------------------------------------------------------------


def test_guest_cursors(client):
    events = record(client, "cursor")
    client._handle_message({"kind": "channel", "sender": "me", "id": 1})
    client._handle_message({
        "kind": "cursor",
        "channel": "other",
        "position": {"tileX": 1, "tileY": -1, "charX": 2, "charY": 3},
    })
    assert client.guest_cursors == {"other": (18, -5)}
    assert events[0].position == (18, -5)

    client._handle_message({"kind": "cursor", "channel": "other", "hidden": True})
    assert client.guest_cursors == {}
    assert events[1].position is None


def test_own_cursor_is_ignored(client):
    events = record(client, "cursor")
    client._handle_message({"kind": "channel", "sender": "me", "id": 1})
    client._handle_message({
        "kind": "cursor",
        "channel": "me",
        "position": {"tileX": 0, "tileY": 0, "charX": 0, "charY": 0},
    })
    assert client.guest_cursors == {}
    assert events == []


def test_move_and_hide_cursor(client):
    client.move_cursor(-1, 9)
    client.hide_cursor()
    assert sent(client) == [
        {"kind": "cursor", "position": {"tileX": -1, "tileY": 1, "charX": 15, "charY": 1}},
        {"kind": "cursor", "hidden": True},
    ]


def test_links(client):
    client.url_link(17, 3, "com:click")
    client.coord_link(0, 0, 5, 6)
    url, coord = sent(client)
    assert url == {
        "kind": "link",
        "data": {"tileY": 0, "tileX": 1, "charY": 3, "charX": 1, "url": "com:click"},
        "type": "url",
    }
    assert coord["type"] == "coord"
    assert coord["data"]["link_tileX"] == 5
    assert coord["data"]["link_tileY"] == 6


# ---------------------------------------------------------------------------
# Tiles
# ---------------------------------------------------------------------------


def test_tile_update(client):
    events = record(client, "tile_update")
    client._handle_message({
        "kind": "tileUpdate",
        "channel": "editor",
        "tiles": {"0,-1": {"content": "x" * 128, "properties": {}}},
    })
    event = events[0]
    assert event.channel == "editor"
    assert list(event.tiles) == ["0,-1"]
    assert event.has_tile(-1, 0)
    assert client.get_char(-16, 0).char == "x"


def test_boundary(client):
    client.set_boundary(-3, -2, 4, 5)
    assert sent(client) == [{
        "kind": "boundary",
        "minX": -3,
        "minY": -2,
        "maxX": 4,
        "maxY": 5,
        "centerX": 0,
        "centerY": 1,
    }]


def test_config_toggles(client):
    client.receive_updates(False)
    client.receive_cmd_ips(True)
    client.receive_boundless_updates(True)
    assert sent(client) == [
        {"kind": "config", "updates": False},
        {"kind": "config", "descriptiveCmd": True},
        {"kind": "config", "localFilter": False},
    ]


@pytest.mark.asyncio
async def test_fetch_tiles_fills_cache(client):
    assert client.get_char(3, 3) is None

    task = asyncio.ensure_future(client.fetch_tiles(0, 0, 1, 0))
    await asyncio.sleep(0)
    (frame,) = sent(client)
    assert frame == {
        "kind": "fetch",
        "request": 0,
        "fetchRectangles": [{"minX": 0, "minY": 0, "maxX": 1, "maxY": 0}],
    }

    client._handle_message({
        "kind": "fetch",
        "request": 0,
        "tiles": {"0,0": {"content": "abc", "properties": {}}, "0,1": None},
    })
    await task
    assert client.get_char(1, 0).char == "b"
    assert client.get_char(3, 3) is not None
    assert client.get_char(20, 0).char == " "


@pytest.mark.asyncio
async def test_fetch_responses_are_matched_by_request(client):
    first = asyncio.ensure_future(client.fetch_tiles(0, 0, 0, 0))
    second = asyncio.ensure_future(client.fetch_tiles(1, 1, 1, 1))
    await asyncio.sleep(0)
    assert [f["request"] for f in sent(client)] == [0, 1]

    client._handle_message({"kind": "fetch", "request": 1, "tiles": {}})
    await asyncio.sleep(0)
    assert second.done()
    assert not first.done()

    client._handle_message({"kind": "fetch", "request": 0, "tiles": {}})
    await first


@pytest.mark.asyncio
async def test_fetch_too_many_tiles(client):
    with pytest.raises(ValidationError, match="10201"):
        await client.fetch_tiles(0, 0, 100, 100)
    assert sent(client) == []


@pytest.mark.asyncio
async def test_fetch_limit_is_inclusive(client):
    task = asyncio.ensure_future(client.fetch_tiles(0, 0, 49, 49))
    await asyncio.sleep(0)
    assert len(sent(client)) == 1
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_fetch_inverted_rectangle(client):
    with pytest.raises(ValidationError):
        await client.fetch_tiles(5, 0, 0, 0)


# ---------------------------------------------------------------------------
# Ping and stats
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_ping(client):
    task = asyncio.ensure_future(client.ping())
    await asyncio.sleep(0)
    (frame,) = sent(client)
    assert frame == {"kind": "ping", "id": 1}

    client._handle_message({"kind": "ping", "id": 999})
    await asyncio.sleep(0)
    assert not task.done()

    client._handle_message({"kind": "ping", "id": 1})
    elapsed = await task
    assert elapsed >= 0
    assert client._pending_pings == {}


@pytest.mark.asyncio
async def test_ping_ids_increase(client):
    tasks = [asyncio.ensure_future(client.ping()) for _ in range(3)]
    await asyncio.sleep(0)
    assert [f["id"] for f in sent(client)] == [1, 2, 3]
    for ping_id in (3, 1, 2):
        client._handle_message({"kind": "ping", "id": ping_id})
    await asyncio.gather(*tasks)


@pytest.mark.asyncio
async def test_stats(client):
    task = asyncio.ensure_future(client.stats())
    await asyncio.sleep(0)
    (frame,) = sent(client)
    assert frame == {"kind": "stats", "id": 1}

    client._handle_message({"kind": "stats", "id": 1, "creationDate": 1600000000000, "views": 1234})
    stats = await task
    assert stats.views == 1234
    assert stats.creation_date.year == 2020


@pytest.mark.asyncio
async def test_request_timeout():
    client = OwotClient("ws://test/ws/", request_timeout=0.01)
    with pytest.raises(RequestTimeoutError):
        await client.ping()
    assert client._pending_pings == {}


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


def test_write_text_handles_newlines(client):
    client.write_text(0, 0, "ab\ncd")
    client.flush_writes()
    (frame,) = sent(client)
    cells = [((e[1] * 16 + e[3], e[0] * 8 + e[2]), e[5]) for e in frame["edits"]]
    assert cells == [((0, 0), "a"), ((1, 0), "b"), ((0, 1), "c"), ((1, 1), "d")]


def test_write_text_returns_to_start_column(client):
    client.write_text(-5, 2, "x\ny")
    edits = [client.writes.get(i) for i in (1, 2)]
    assert [e.coords for e in edits] == [(-5, 2), (-5, 3)]


def test_write_char_defaults(client):
    edit = client.write_char(3, 4, "z")
    assert edit.color == 0x000000
    assert edit.bg_color == -1
    assert edit.edit_id == 1


def test_flush_is_bounded(client):
    for i in range(600):
        client.write_char(i, 0, "a")
    client.flush_writes()
    (frame,) = sent(client)
    assert frame["kind"] == "write"
    assert len(frame["edits"]) == 512
    assert len(client.writes) == 88

    client.flush_writes()
    (frame,) = sent(client)
    assert len(frame["edits"]) == 88
    assert len(client.writes) == 0


def test_flush_with_empty_buffer_sends_nothing(client):
    client.flush_writes()
    assert sent(client) == []


def write_seven(client):
    for i in range(7):
        client.write_char(i, 0, str(i))
    client.flush_writes()
    sent(client)


def test_rate_limited_edit_is_resent(client):
    results = record(client, "write_result")
    empty = record(client, "write_buffer_empty")
    write_seven(client)

    client._handle_message({"kind": "write", "accepted": [1, 2, 3, 4, 5, 6], "rejected": {"7": 2}})
    assert 7 in client.writes.waiting
    assert results[-1].status == WriteStatus.RATE_LIMITED
    assert empty == []

    client.flush_writes()
    (frame,) = sent(client)
    assert [e[6] for e in frame["edits"]] == [7]


def test_permanently_rejected_edit_is_dropped(client):
    results = record(client, "write_result")
    empty = record(client, "write_buffer_empty")
    write_seven(client)

    client._handle_message({"kind": "write", "accepted": [1, 2, 3, 4, 5, 6], "rejected": {"7": 1}})
    assert 7 not in client.writes.waiting
    assert results[-1].status == WriteStatus.REJECTED
    assert results[-1].edit.edit_id == 7
    assert len(empty) == 1

    client.flush_writes()
    assert sent(client) == []


def test_accepted_results(client):
    results = record(client, "write_result")
    write_seven(client)
    client._handle_message({"kind": "write", "accepted": [1, 2], "rejected": {}})
    assert [(r.edit.edit_id, r.status) for r in results] == [
        (1, WriteStatus.ACCEPTED),
        (2, WriteStatus.ACCEPTED),
    ]


def test_clear_write_buffer(client):
    empty = record(client, "write_buffer_empty")
    results = record(client, "write_result")
    write_seven(client)
    client.write_char(10, 10, "q")

    client.clear_write_buffer()
    assert len(empty) == 1
    assert client.writes.is_empty()

    client._handle_message({"kind": "write", "accepted": [1], "rejected": {"2": 2}})
    assert results == []
    client.flush_writes()
    assert sent(client) == []


@pytest.mark.asyncio
async def test_wait_for_writes(client):
    await client.wait_for_writes()

    client.write_char(0, 0, "a")
    client.flush_writes()
    waiter = asyncio.ensure_future(client.wait_for_writes())
    await asyncio.sleep(0)
    assert not waiter.done()

    client._handle_message({"kind": "write", "accepted": [1], "rejected": {}})
    await waiter


@pytest.mark.asyncio
async def test_flush_timer(client):
    client._open = True
    client.set_flush_interval(0.01)
    client.write_char(0, 0, "a")
    await asyncio.sleep(0.05)
    frames = sent(client)
    assert [f["kind"] for f in frames] == ["write"]
    client._stop_flush_timer()


@pytest.mark.asyncio
async def test_set_flush_interval_replaces_timer(client):
    client._open = True
    client.set_flush_interval(10)
    first = client._flush_task
    client.set_flush_interval(20)
    with pytest.raises(asyncio.CancelledError):
        await first
    assert client._flush_task is not first
    client._stop_flush_timer()


def test_set_flush_interval_before_open_only_records(client):
    client.set_flush_interval(0.5)
    assert client._flush_task is None
    assert client._flush_interval == 0.5


# ---------------------------------------------------------------------------
# Areas
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_clear_area(client, monkeypatch):
    monkeypatch.setattr(client_module, "OPERATION_DELAY", 0)
    await client.clear_area(0, 0, 31, 7)
    assert sent(client) == [
        {"kind": "clear_tile", "tileX": 0, "tileY": 0},
        {"kind": "clear_tile", "tileX": 1, "tileY": 0},
    ]


@pytest.mark.asyncio
async def test_protect_area_partial_tile(client, monkeypatch):
    monkeypatch.setattr(client_module, "OPERATION_DELAY", 0)
    await client.protect_area(2, 1, 4, 1, Protection.OWNER_ONLY)
    assert sent(client) == [{
        "kind": "protect",
        "action": "protect",
        "data": {
            "tileX": 0,
            "tileY": 0,
            "type": "owner-only",
            "precise": True,
            "charX": 2,
            "charY": 1,
            "charWidth": 3,
            "charHeight": 1,
        },
    }]


@pytest.mark.asyncio
async def test_unprotect_area(client, monkeypatch):
    monkeypatch.setattr(client_module, "OPERATION_DELAY", 0)
    await client.unprotect_area(0, 0, 15, 7)
    (frame,) = sent(client)
    assert frame["action"] == "unprotect"
    assert frame["data"]["precise"] is False


@pytest.mark.asyncio
async def test_protect_area_rejects_unknown_level(client):
    with pytest.raises(ValidationError):
        await client.protect_area(0, 0, 1, 1, 7)
    assert sent(client) == []


@pytest.mark.asyncio
async def test_area_operations_are_paced(client):
    start = asyncio.get_running_loop().time()
    await client.clear_area(0, 0, 16 * 3 - 1, 7)
    elapsed = asyncio.get_running_loop().time() - start
    assert len(sent(client)) == 3
    assert elapsed >= 2 * client_module.OPERATION_DELAY * 0.9


# ---------------------------------------------------------------------------
# Malformed frames
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "frame",
    [
        {"kind": "write", "accepted": [], "rejected": [[7, 2]]},
        {"kind": "chathistory", "page_chat_prev": [1]},
        {"kind": "cursor", "channel": "other", "position": 5},
    ],
)
def test_malformed_frame_does_not_stop_dispatch(client, frame, caplog):
    announcements = record(client, "announcement")
    client._handle_message(frame)
    client._handle_message({"kind": "announcement", "text": "still here"})
    assert announcements == ["still here"]
    assert caplog.text


@pytest.mark.asyncio
async def test_fetch_resolves_when_a_tile_cannot_be_decoded(client):
    task = asyncio.ensure_future(client.fetch_tiles(0, 0, 1, 0))
    await asyncio.sleep(0)
    sent(client)

    client._handle_message({
        "kind": "fetch",
        "request": 0,
        "tiles": {
            "0,0": {"content": "a", "properties": {"char": "@!!"}},
            "0,1": {"content": "b", "properties": {}},
        },
    })
    await asyncio.wait_for(task, 1)
    assert client.get_char(0, 0) is None
    assert client.get_char(16, 0).char == "b"


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


def server_url(server):
    host, port = next(iter(server.sockets)).getsockname()[:2]
    return f"ws://{host}:{port}/ws/"


@pytest.mark.asyncio
async def test_session_over_websocket():
    handshake = {}
    opening = []
    release = asyncio.Event()

    async def world(ws):
        handshake["cookie"] = ws.request.headers.get("Cookie")
        for _ in range(2):
            opening.append(json.loads(await ws.recv()))
        await ws.send(json.dumps({"kind": "channel", "sender": "chan", "id": 3, "initial_user_count": 2}))
        await ws.send(json.dumps({"kind": "chathistory", "page_chat_prev": [1]}))
        await ws.send("not json")
        await ws.send(json.dumps({"kind": "announcement", "text": "still here"}))
        await release.wait()

    async with serve(world, "127.0.0.1", 0) as server:
        client = connect(server_url(server), token="secret")
        announcement = asyncio.get_running_loop().create_future()
        client.once("announcement", announcement.set_result)
        disconnected = asyncio.Event()
        client.once("disconnected", disconnected.set)

        await asyncio.wait_for(client.wait_until_connected(), 5)
        assert client.connected
        assert (client.channel_id, client.chat_id, client.user_count) == ("chan", 3, 2)

        assert await asyncio.wait_for(announcement, 5) == "still here"

        release.set()
        await asyncio.wait_for(disconnected.wait(), 5)

    assert handshake["cookie"] == "token=secret"
    assert [f["kind"] for f in opening] == ["chathistory", "cmd_opt"]
    assert not client.connected
    await client.close()


@pytest.mark.asyncio
async def test_requests_and_close_over_websocket():
    writes = []

    async def world(ws):
        assert ws.request.headers.get("Cookie") is None
        await ws.send(json.dumps({"kind": "channel", "sender": "chan", "id": 1}))
        async for frame in ws:
            data = json.loads(frame)
            if data["kind"] == "ping":
                await ws.send(json.dumps({"kind": "ping", "id": data["id"]}))
            elif data["kind"] == "write":
                writes.append(data["edits"])
                ids = [edit[6] for edit in data["edits"]]
                await ws.send(json.dumps({"kind": "write", "accepted": ids, "rejected": {}}))

    async with serve(world, "127.0.0.1", 0) as server:
        disconnected = []
        async with OwotClient(server_url(server), flush_interval=0.01, request_timeout=5) as client:
            client.on("disconnected", lambda: disconnected.append(True))
            assert await client.ping() >= 0

            client.write_text(0, 0, "hi")
            await asyncio.wait_for(client.wait_for_writes(), 5)

        assert disconnected == [True]
        assert not client.connected
        assert client._flush_task is None

    assert [[edit[5] for edit in batch] for batch in writes] == [["h", "i"]]


@pytest.mark.asyncio
async def test_connection_refused():
    async with serve(lambda ws: None, "127.0.0.1", 0) as server:
        url = server_url(server)

    client = OwotClient(url)
    disconnected = asyncio.Event()
    client.once("disconnected", disconnected.set)
    client.start()
    with pytest.raises(DisconnectedError):
        await asyncio.wait_for(client.wait_until_connected(), 5)
    assert disconnected.is_set()
    await client.close()


class TimingOutConnect:
    def __init__(self, *args, **kwargs):
        pass

    async def __aenter__(self):
        raise asyncio.TimeoutError()

    async def __aexit__(self, *exc_info):
        return False


@pytest.mark.asyncio
async def test_handshake_timeout_ends_run_quietly(monkeypatch):
    monkeypatch.setattr(client_module.websockets, "connect", TimingOutConnect)
    client = OwotClient("ws://test/ws/")
    disconnected = asyncio.Event()
    client.once("disconnected", disconnected.set)
    client.start()

    with pytest.raises(DisconnectedError):
        await client.wait_until_connected()
    await client._run_task
    assert disconnected.is_set()
