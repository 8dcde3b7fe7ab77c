"""Pytest fixtures for chatfanin tests."""

import asyncio
import tempfile
from datetime import datetime
from pathlib import Path

import pytest

from chatfanin.chat.base_client import ChatIngestor, ChatMessage, ChatPlatform
from chatfanin.chat.chat_bus import ChatBus


class FakeIngestor(ChatIngestor):
    """In-memory ingestor driven by the test.

    connect() raises connect_error if set. listen() blocks until drop() is called,
    then returns (peer closed) or raises listen_error.
    """

    def __init__(self, identifier="fake", platform=ChatPlatform.TWITCH, connect_error=None, listen_error=None, **kwargs):
        kwargs.setdefault("reconnect_delay", 0.01)
        super().__init__(identifier, **kwargs)
        self._platform = platform
        self.connect_error = connect_error
        self.listen_error = listen_error
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.connect_started = asyncio.Event()
        self.connect_gate = None
        self._drop = asyncio.Event()

    @property
    def platform(self) -> ChatPlatform:
        return self._platform

    async def connect(self):
        self.connect_calls += 1
        self.connect_started.set()
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error

    async def disconnect(self):
        self.disconnect_calls += 1

    async def listen(self):
        await self._drop.wait()
        self._drop.clear()
        if self.listen_error is not None:
            raise self.listen_error

    def drop(self):
        self._drop.set()

    async def emit(self, message: ChatMessage):
        await self._publish(message)


def _make_message(id="1", platform=ChatPlatform.TWITCH, username="alice", text="hi", **kwargs) -> ChatMessage:
    return ChatMessage(
        id=id,
        platform=platform,
        username=username,
        display_name=kwargs.pop("display_name", username),
        text=text,
        timestamp=kwargs.pop("timestamp", datetime(2024, 1, 1, 12, 0, 0)),
        **kwargs,
    )


@pytest.fixture
def make_message():
    """Factory for ChatMessage instances."""
    return _make_message


@pytest.fixture
def bus():
    """ChatBus without the statistics thread."""
    chat_bus = ChatBus(stats_interval=0)
    yield chat_bus
    chat_bus.dispose()


@pytest.fixture
def fake_ingestor():
    return FakeIngestor()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
