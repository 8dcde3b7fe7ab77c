"""
채팅 수집 모듈
여러 플랫폼의 채팅을 수집해 하나의 스트림으로 합치는 모듈
(IngestorFactory는 chatfanin.chat.client_factory에서 import)
"""

from .base_client import (
    ChatIngestor,
    ChatMessage,
    ChatMessageType,
    ChatPlatform,
    ConnectionState,
    FatalIngestorError,
    IngestorError,
    StateChange,
)
from .chat_bus import BusStatistics, ChatBus
from .chzzk_client import ChzzkIngestor
from .dedup_cache import DedupCache
from .rate_gate import RateGate
from .twitch_client import TwitchIrcIngestor

__all__ = [
    "BusStatistics",
    "ChatBus",
    "ChatIngestor",
    "ChatMessage",
    "ChatMessageType",
    "ChatPlatform",
    "ChzzkIngestor",
    "ConnectionState",
    "DedupCache",
    "FatalIngestorError",
    "IngestorError",
    "RateGate",
    "StateChange",
    "TwitchIrcIngestor",
]
