"""Tests for chatfanin.bridge.server."""

import asyncio
import json
import socket

import httpx
import pytest
import websockets
from fastapi.testclient import TestClient

from chatfanin.bridge.server import BridgeSession, ExtensionBridgeServer, SessionState
from chatfanin.chat.base_client import ChatPlatform


def comment(id="a1", username="bob", text="hi", **extra):
    data = {"id": id, "username": username, "text": text, "timestamp": 1700000000000}
    data.update(extra)
    return {"type": "comment", "data": data}


@pytest.fixture
def sink():
    return []


@pytest.fixture
def server(sink):
    return ExtensionBridgeServer(port=0, on_message=sink.append, ping_interval=None)


@pytest.fixture
def client(server):
    with TestClient(server.app) as test_client:
        yield test_client


def sync(ws):
    """Round-trip a ping so every earlier frame has been handled."""
    ws.send_json({"type": "ping"})
    assert ws.receive_json()["type"] == "pong"


# ============================================================================
# HTTP liveness
# ============================================================================


class TestHealth:
    """Tests for the plain-HTTP liveness probe."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "clients": 0}

    def test_any_path(self, client):
        response = client.get("/some/other/path")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_counts_connected_clients(self, client):
        with client.websocket_connect("/") as ws:
            sync(ws)
            assert client.get("/").json()["clients"] == 1


# ============================================================================
# WebSocket protocol
# ============================================================================


class TestProtocol:
    """Tests for the extension message protocol over the ASGI app."""

    def test_comment_without_platform_is_instagram(self, client, sink):
        with client.websocket_connect("/") as ws:
            ws.send_json(comment())
            sync(ws)

        assert len(sink) == 1
        assert sink[0].platform == ChatPlatform.INSTAGRAM
        assert sink[0].username == "bob"

    def test_path_hint_sets_platform(self, client, sink):
        with client.websocket_connect("/tiktok") as ws:
            ws.send_json(comment())
            sync(ws)

        assert sink[0].platform == ChatPlatform.TIKTOK

    def test_connected_message_platform_used_as_default(self, client, sink):
        with client.websocket_connect("/") as ws:
            ws.send_json({"type": "connected", "platform": "facebook", "url": "https://facebook.com/live"})
            ws.send_json(comment())
            sync(ws)

        assert sink[0].platform == ChatPlatform.FACEBOOK

    def test_newline_delimited_documents(self, client, sink):
        frame = "\n".join(json.dumps(comment(id=str(i))) for i in range(3))
        with client.websocket_connect("/") as ws:
            ws.send_text(frame)
            sync(ws)

        assert [m.id for m in sink] == ["0", "1", "2"]

    def test_malformed_json_keeps_connection(self, client, sink):
        frame = "{not json\n" + json.dumps(comment(id="ok"))
        with client.websocket_connect("/") as ws:
            ws.send_text("{broken")
            ws.send_text(frame)
            sync(ws)

        assert [m.id for m in sink] == ["ok"]

    def test_binary_frame_decoded(self, client, sink):
        with client.websocket_connect("/") as ws:
            ws.send_bytes(json.dumps(comment(id="bin")).encode("utf-8"))
            sync(ws)

        assert [m.id for m in sink] == ["bin"]

    def test_blank_comment_and_unknown_types_ignored(self, client, sink):
        with client.websocket_connect("/") as ws:
            ws.send_json(comment(text="  "))
            ws.send_json({"type": "status", "state": "scanning"})
            ws.send_json({"type": "mystery"})
            ws.send_json([1, 2, 3])
            sync(ws)

        assert sink == []

    def test_pong_recorded(self, client, server):
        with client.websocket_connect("/") as ws:
            ws.send_json({"type": "pong"})
            sync(ws)
            session = server.sessions[0]
            assert session.last_pong is not None
            assert session.state == SessionState.OPEN

    def test_sink_error_does_not_close_connection(self, sink):
        def broken(message):
            raise RuntimeError("bus down")

        server = ExtensionBridgeServer(port=0, on_message=broken, ping_interval=None)
        with TestClient(server.app) as client:
            with client.websocket_connect("/") as ws:
                ws.send_json(comment())
                sync(ws)

    def test_async_sink_awaited(self):
        received = []

        async def sink(message):
            await asyncio.sleep(0)
            received.append(message)

        server = ExtensionBridgeServer(port=0, on_message=sink, ping_interval=None)
        with TestClient(server.app) as client:
            with client.websocket_connect("/") as ws:
                ws.send_json(comment())
                sync(ws)

        assert len(received) == 1

    def test_client_callbacks(self):
        events = []
        server = ExtensionBridgeServer(
            port=0,
            on_client_connected=lambda cid: events.append(("in", cid)),
            on_client_disconnected=lambda cid: events.append(("out", cid)),
            ping_interval=None,
        )
        with TestClient(server.app) as client:
            with client.websocket_connect("/") as ws:
                sync(ws)
                client_id = server.sessions[0].client_id

        assert events[0] == ("in", client_id)
        assert len(client_id) == 8
        assert server.client_count == 0

    def test_server_keepalive_ping(self):
        server = ExtensionBridgeServer(port=0, ping_interval=0.05)
        with TestClient(server.app) as client:
            with client.websocket_connect("/") as ws:
                message = ws.receive_json()

        assert message["type"] == "ping"
        assert isinstance(message["timestamp"], int)

    def test_keepalive_task_finished_on_disconnect(self):
        """The session's ping task has ended by the time it is marked closed."""
        server = ExtensionBridgeServer(port=0, ping_interval=5.0)
        with TestClient(server.app) as client:
            with client.websocket_connect("/") as ws:
                sync(ws)
                session = server.sessions[0]
                assert session.ping_task is not None
                assert not session.ping_task.done()

        assert session.state == SessionState.CLOSED
        assert session.ping_task.done()
        assert not session.ping_task.cancelled()


class TestHandleFrame:
    """Tests for handle_frame() without a connection."""

    async def test_returns_accepted_count(self, server, sink):
        frame = json.dumps(comment(id="1")) + "\n\n" + json.dumps(comment(id="2", text=""))
        assert await server.handle_frame(frame) == 1
        assert [m.id for m in sink] == ["1"]

    async def test_pretty_printed_document(self, server, sink):
        assert await server.handle_frame(json.dumps(comment(), indent=2)) == 1


# ============================================================================
# Real socket lifecycle
# ============================================================================


class TestLifecycle:
    """Tests for start()/stop() on a real port."""

    async def test_start_serves_http_and_stop_closes(self):
        server = ExtensionBridgeServer(port=0, ping_interval=None)
        await server.start()
        try:
            assert server.is_running
            assert server.port != 0
            async with httpx.AsyncClient() as http:
                response = await http.get(f"http://127.0.0.1:{server.port}/")
            assert response.json() == {"status": "ok", "clients": 0}
        finally:
            await server.stop()

        assert not server.is_running

    async def test_websocket_end_to_end_and_going_away_on_stop(self):
        received = asyncio.Queue()
        server = ExtensionBridgeServer(port=0, on_message=received.put_nowait, ping_interval=None)
        await server.start()
        try:
            async with websockets.connect(f"ws://127.0.0.1:{server.port}/instagram") as ws:
                await ws.send(json.dumps(comment(id="live")))
                message = await asyncio.wait_for(received.get(), 2.0)
                assert message.id == "live"
                assert server.client_count == 1

                await server.stop()
                with pytest.raises(websockets.ConnectionClosed):
                    await asyncio.wait_for(ws.recv(), 2.0)
                assert ws.close_code == 1001
        finally:
            await server.stop()

    async def test_broadcast(self):
        server = ExtensionBridgeServer(port=0, ping_interval=None)
        await server.start()
        try:
            async with websockets.connect(f"ws://127.0.0.1:{server.port}/") as ws:
                await ws.send(json.dumps({"type": "ping"}))
                await asyncio.wait_for(ws.recv(), 2.0)

                assert await server.broadcast({"type": "notice", "text": "hello"}) == 1
                payload = json.loads(await asyncio.wait_for(ws.recv(), 2.0))
                assert payload == {"type": "notice", "text": "hello"}
        finally:
            await server.stop()

    async def test_bind_failure_raises_oserror(self):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        try:
            server = ExtensionBridgeServer(port=blocker.getsockname()[1], ping_interval=None)
            with pytest.raises(OSError):
                await server.start()
            assert not server.is_running
        finally:
            blocker.close()

    async def test_stop_is_idempotent(self):
        server = ExtensionBridgeServer(port=0, ping_interval=None)
        await server.stop()
        await server.start()
        await server.stop()
        await server.stop()
        assert server.sessions == []


class TestBridgeSession:
    """Tests for BridgeSession defaults."""

    def test_defaults(self):
        session = BridgeSession(client_id="deadbeef", websocket=None)
        assert session.state == SessionState.ACCEPTING
        assert session.last_pong is None
        assert session.comments_accepted == 0
