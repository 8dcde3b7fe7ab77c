"""Tests for chatfanin.bridge.ingestor."""

import asyncio
import json
import socket

import pytest
import websockets

from chatfanin.bridge.ingestor import ExtensionBridgeIngestor
from chatfanin.chat.base_client import ChatPlatform, ConnectionState
from chatfanin.chat.chat_bus import ChatBus


async def wait_for_state(ingestor, state, timeout=2.0):
    async def _poll():
        while ingestor.state != state:
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


class TestExtensionBridgeIngestor:
    """Tests for ExtensionBridgeIngestor."""

    def test_defaults(self):
        ingestor = ExtensionBridgeIngestor()
        assert ingestor.port == 9876
        assert ingestor.host == "127.0.0.1"
        assert ingestor.platform == ChatPlatform.INSTAGRAM
        assert not ingestor.is_extension_connected

    async def test_comments_flow_through_bus(self):
        ingestor = ExtensionBridgeIngestor(port=0, ping_interval=None)
        received = asyncio.Queue()
        with ChatBus(stats_interval=0) as bus:
            bus.subscribe(received.put_nowait)
            bus.attach(ingestor)

            await ingestor.start()
            await wait_for_state(ingestor, ConnectionState.CONNECTED)
            try:
                async with websockets.connect(f"ws://127.0.0.1:{ingestor.port}/tiktok") as ws:
                    assert await ingestor.wait_for_extension(timeout=2.0)
                    assert ingestor.is_extension_connected

                    comment = {"type": "comment", "data": {"id": "c1", "username": "Fan", "text": "hello"}}
                    await ws.send(json.dumps(comment))
                    await ws.send(json.dumps(comment))
                    message = await asyncio.wait_for(received.get(), 2.0)

                    await ws.send(json.dumps({"type": "ping"}))
                    await asyncio.wait_for(ws.recv(), 2.0)
            finally:
                await ingestor.stop()

            stats = bus.get_statistics()

        assert message.platform == ChatPlatform.TIKTOK
        assert message.username == "fan"
        assert stats.delivered == 1
        assert stats.duplicates == 1
        assert ingestor.state == ConnectionState.DISCONNECTED
        assert ingestor.server is None

    async def test_wait_for_extension_timeout(self):
        ingestor = ExtensionBridgeIngestor(port=0, ping_interval=None)
        await ingestor.start()
        try:
            await wait_for_state(ingestor, ConnectionState.CONNECTED)
            assert await ingestor.wait_for_extension(timeout=0.05) is False
        finally:
            await ingestor.stop()

    async def test_port_in_use_goes_to_error(self):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        try:
            ingestor = ExtensionBridgeIngestor(port=blocker.getsockname()[1], ping_interval=None)
            await ingestor.start()
            await asyncio.wait_for(ingestor.wait_until_stopped(), 2.0)

            assert ingestor.state == ConnectionState.ERROR
            assert "바인딩 실패" in ingestor.last_error
            await ingestor.stop()
        finally:
            blocker.close()

    async def test_listen_without_server(self):
        with pytest.raises(ConnectionError):
            await ExtensionBridgeIngestor(port=0).listen()
